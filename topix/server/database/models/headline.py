"""Headline database model.

Stores headlines produced by plugin fetches, including importance scoring
results and the user-facing status flags.
"""

from sqlalchemy import Boolean, Column, Float, String, Text

from topix.server.database.session import Base
from topix.server.database.types import UTCDateTime, utcnow


class HeadlineRecord(Base):
    """Headline model.

    Headline content is immutable once written; only the status flags and the
    importance fields are updated in place.

    Attributes:
        id: Unique identifier (UUID string supplied by the plugin)
        plugin_id: Owning plugin identifier
        title: Headline text
        description: Optional longer description
        link: Optional link to the source
        pub_date: Publication/event timestamp (drives retention ordering)
        created_at: When the headline was stored
        category: Plugin-defined category
        tags: JSON array of tags
        importance_score: Score between 0.0 and 1.0
        importance_reason: Optional explanation for the score
        meta: JSON object with plugin-specific data (column "metadata")
        read: Marked as read
        starred: Starred by the user
        archived: Removed from the feed
    """

    __tablename__ = "headlines"

    id = Column(String, primary_key=True)
    plugin_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    link = Column(String, nullable=True)
    pub_date = Column(UTCDateTime, nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    category = Column(String, nullable=False, default="general")
    tags = Column(Text, nullable=False, default="[]")  # JSON string
    importance_score = Column(Float, nullable=False, default=0.0)
    importance_reason = Column(Text, nullable=True)
    meta = Column("metadata", Text, nullable=False, default="{}")  # JSON string
    read = Column(Boolean, nullable=False, default=False)
    starred = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<HeadlineRecord(id={self.id}, plugin={self.plugin_id}, "
            f"title={self.title!r}, score={self.importance_score})>"
        )
