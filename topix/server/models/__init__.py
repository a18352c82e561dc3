"""Pydantic models for API requests and responses."""

from topix.server.models.common import ErrorResponse, HealthResponse, StatusResponse
from topix.server.models.headline import (
    HeadlineListResponse,
    HeadlineResponse,
    HeadlineStatusUpdate,
)
from topix.server.models.plugin import (
    FetchResponse,
    PluginHealthListResponse,
    PluginHealthResponse,
    PluginListResponse,
    PluginResponse,
    ReloadResponse,
)

__all__ = [
    "ErrorResponse",
    "FetchResponse",
    "HealthResponse",
    "HeadlineListResponse",
    "HeadlineResponse",
    "HeadlineStatusUpdate",
    "PluginHealthListResponse",
    "PluginHealthResponse",
    "PluginListResponse",
    "PluginResponse",
    "ReloadResponse",
    "StatusResponse",
]
