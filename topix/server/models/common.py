"""Common Pydantic models for API requests and responses.

This module contains shared response models used across the API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """Health check response model.

    Attributes:
        status: Service health status
        uptime: Seconds since the service started
        started_at: When the service started
    """

    status: str = Field(default="healthy", description="Service health status")
    uptime: float = Field(default=0.0, description="Seconds since the service started")
    started_at: Optional[datetime] = Field(default=None, description="When the service started")


class StatusResponse(BaseModel):
    """Service status response model.

    Attributes:
        state: Lifecycle state (stopped, starting, running, stopping)
        version: Application version
        pid: Process id of the service
        started_at: When the service started
        uptime: Seconds since the service started
        plugins: Plugin and headline counts
        scheduler: Scheduler status and jobs
        keyring_available: Whether credentials are stored in the OS keyring
        database_connected: Whether the headline store is reachable
    """

    state: str
    version: str
    pid: Optional[int] = None
    started_at: Optional[datetime] = None
    uptime: float = 0.0
    plugins: Dict[str, int] = Field(default_factory=dict)
    scheduler: Dict[str, Any] = Field(default_factory=dict)
    keyring_available: bool = False
    database_connected: bool = False


class ErrorResponse(BaseModel):
    """Standard error response model.

    Attributes:
        error: Error type or code
        message: Human-readable error message
        detail: Additional error details
        timestamp: When the error occurred
    """

    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[Any] = Field(
        default=None, description="Additional error details"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow, description="Error timestamp"
    )
