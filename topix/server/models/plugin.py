"""Pydantic models for plugin API."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PluginResponse(BaseModel):
    """Response model for a loaded plugin.

    Attributes:
        id: Plugin identifier
        name: Display name
        version: Plugin version
        author: Plugin author
        description: What the plugin fetches
        builtin: Shipped with Topix (as opposed to a user plugin)
        enabled: Enabled in the configuration
        initialized: Initialized by the runtime
        state: Scheduling state (unscheduled, scheduled or running)
        schedule: Cron expression
        next_run: Next scheduled fetch
        last_run: Last successful fetch
        last_error: Message of the last failure
        retention: Retention policy description
    """

    id: str
    name: str
    version: str
    author: str
    description: str = ""
    builtin: bool = False
    enabled: bool = False
    initialized: bool = False
    state: str = "unscheduled"
    schedule: Optional[str] = None
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    retention: str = "unlimited"


class PluginListResponse(BaseModel):
    plugins: List[PluginResponse]
    total: int


class PluginHealthResponse(BaseModel):
    """Health of one plugin."""

    plugin_id: str
    healthy: bool
    message: Optional[str] = None
    last_checked: datetime


class PluginHealthListResponse(BaseModel):
    plugins: Dict[str, PluginHealthResponse]
    healthy: int
    total: int


class FetchResponse(BaseModel):
    """Response model for a manual fetch.

    Attributes:
        plugin_id: Plugin that was fetched
        count: Number of headlines fetched
        headline_ids: Identifiers of the fetched headlines
    """

    plugin_id: str
    count: int
    headline_ids: List[str] = Field(default_factory=list)


class ReloadResponse(BaseModel):
    """Response model for a plugin reload."""

    plugin_id: str
    initialized: bool
    message: str
