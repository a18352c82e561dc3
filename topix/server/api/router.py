"""API router with core endpoints.

This module groups the plugin and headline routers under ``/api`` and
provides the service status endpoint.
"""

import logging

from fastapi import APIRouter, Depends, status

from topix import __version__
from topix.server.api import headlines, plugins
from topix.server.api.dependencies import get_service
from topix.server.models.common import StatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

router.include_router(plugins.router)
router.include_router(headlines.router)


@router.get(
    "/status",
    response_model=StatusResponse,
    status_code=status.HTTP_200_OK,
    tags=["status"],
    summary="Get service status",
    description="Returns lifecycle state, plugin counts, scheduler jobs and store connectivity",
)
async def get_status(service=Depends(get_service)) -> StatusResponse:
    """Get service status endpoint.

    Example:
        >>> GET /api/status
        >>> {
        >>>     "state": "running",
        >>>     "version": "0.1.0",
        >>>     "plugins": {"total_plugins": 2, "enabled_plugins": 1, ...},
        >>>     ...
        >>> }
    """
    info = service.status()
    return StatusResponse(
        state=info["state"],
        version=__version__,
        pid=info.get("pid"),
        started_at=info.get("started_at"),
        uptime=info.get("uptime", 0.0),
        plugins=service.runtime.get_stats(),
        scheduler=service.scheduler.get_status(),
        keyring_available=service.vault.is_primary_available(),
        database_connected=service.store.is_healthy(),
    )
