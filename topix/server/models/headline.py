"""Pydantic models for headline API.

Defines request/response models for listing headlines and updating their
read/starred/archived status.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HeadlineResponse(BaseModel):
    """Response model for a headline."""

    id: str
    plugin_id: str
    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    pub_date: datetime
    created_at: datetime
    category: str
    tags: List[str] = Field(default_factory=list)
    importance_score: float = 0.0
    importance_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    starred: bool = False
    archived: bool = False

    model_config = {"from_attributes": True}


class HeadlineListResponse(BaseModel):
    """Response model for listing headlines.

    Attributes:
        headlines: Page of headlines, newest first
        total: Number of headlines in the store
        limit: Page size
        offset: Page offset
    """

    headlines: List[HeadlineResponse]
    total: int
    limit: int
    offset: int


class HeadlineStatusUpdate(BaseModel):
    """Request model for updating headline status.

    Only provided fields are changed.
    """

    read: Optional[bool] = Field(None, description="Mark as read or unread")
    starred: Optional[bool] = Field(None, description="Star or unstar")
    archived: Optional[bool] = Field(None, description="Archive or restore")
