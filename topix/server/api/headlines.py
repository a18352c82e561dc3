"""Headline API endpoints.

Provides REST endpoints for reading the curated headlines and updating
their read/starred/archived status.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from topix.server.api.dependencies import get_config_manager, get_store
from topix.server.models.headline import (
    HeadlineListResponse,
    HeadlineResponse,
    HeadlineStatusUpdate,
)
from topix.server.services.config_manager import ConfigManager
from topix.server.store import HeadlineStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/headlines",
    tags=["headlines"],
)


@router.get(
    "",
    response_model=HeadlineListResponse,
    status_code=status.HTTP_200_OK,
    summary="List headlines",
    description="Returns headlines newest first, optionally only those above the importance threshold",
)
async def list_headlines(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of headlines"),
    offset: int = Query(0, ge=0, description="Number of headlines to skip"),
    important: bool = Query(False, description="Only headlines at or above the importance threshold"),
    plugin_id: Optional[str] = Query(None, description="Only headlines of this plugin"),
    store: HeadlineStore = Depends(get_store),
    config_manager: ConfigManager = Depends(get_config_manager),
) -> HeadlineListResponse:
    """List headlines.

    Example:
        >>> GET /api/headlines?limit=20&important=true
    """
    min_importance = None
    if important:
        min_importance = config_manager.get_importance_config()["default_threshold"]

    headlines = store.headlines.list_headlines(
        limit=limit,
        offset=offset,
        plugin_id=plugin_id,
        min_importance=min_importance,
    )
    return HeadlineListResponse(
        headlines=[HeadlineResponse(**asdict(h)) for h in headlines],
        total=store.headlines.count_headlines(plugin_id=plugin_id, min_importance=min_importance),
        limit=limit,
        offset=offset,
    )


@router.patch(
    "/{headline_id}",
    response_model=HeadlineResponse,
    status_code=status.HTTP_200_OK,
    summary="Update headline status",
)
async def update_headline(
    headline_id: str,
    update: HeadlineStatusUpdate,
    store: HeadlineStore = Depends(get_store),
) -> HeadlineResponse:
    """Update the read/starred/archived flags of a headline.

    Raises:
        HTTPException: If headline not found
    """
    headline = store.headlines.update_status(headline_id, **update.model_dump(exclude_none=True))
    if headline is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Headline not found",
        )
    return HeadlineResponse(**asdict(headline))
