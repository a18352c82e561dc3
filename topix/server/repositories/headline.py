"""Repository for headline operations.

Provides the database access layer for headlines: inserts from plugin
fetches, feed queries, status flag updates and retention sweeps.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from topix.server.database.models.headline import HeadlineRecord
from topix.server.database.session import commit_session
from topix.server.database.types import utcnow
from topix.server.plugins.types import Headline

logger = logging.getLogger(__name__)

STATUS_FLAGS = ("read", "starred", "archived")


class HeadlineRepository:
    """Repository for managing stored headlines."""

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def insert_many(self, headlines: Iterable[Headline]) -> int:
        """Persist headlines produced by a fetch.

        Headlines whose id is already stored are left untouched, since stored
        content is immutable. Repeated ids within the batch keep the first.

        Args:
            headlines: Headlines to store

        Returns:
            Number of headlines inserted

        Raises:
            SQLAlchemyError: If the batch violates a constraint (nothing is stored)
        """
        inserted = 0
        seen = set()
        for headline in headlines:
            if headline.id in seen:
                logger.warning(f"Duplicate headline id {headline.id} in batch, skipping")
                continue
            seen.add(headline.id)
            if self.db.get(HeadlineRecord, headline.id) is not None:
                logger.debug(f"Headline {headline.id} already stored, skipping")
                continue
            self.db.add(self._to_record(headline))
            inserted += 1
        commit_session(self.db)
        return inserted

    def get(self, headline_id: str) -> Optional[Headline]:
        """Get a headline by id.

        Args:
            headline_id: Headline identifier

        Returns:
            Headline or None if not found
        """
        record = self.db.get(HeadlineRecord, headline_id)
        return self._to_headline(record) if record else None

    def list_headlines(
        self,
        limit: int = 50,
        offset: int = 0,
        plugin_id: Optional[str] = None,
        category: Optional[str] = None,
        min_importance: Optional[float] = None,
        include_archived: bool = False,
    ) -> List[Headline]:
        """List headlines, newest publication first.

        Args:
            limit: Maximum number of headlines
            offset: Number of headlines to skip
            plugin_id: Only headlines of this plugin
            category: Only headlines in this category
            min_importance: Only headlines scoring at least this much
            include_archived: Include archived headlines

        Returns:
            List of headlines
        """
        query = self._filtered(plugin_id, category, min_importance, include_archived)
        records = (
            query.order_by(HeadlineRecord.pub_date.desc(), HeadlineRecord.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [self._to_headline(r) for r in records]

    def get_plugin_history(
        self,
        plugin_id: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[Headline]:
        """Get previously stored headlines of one plugin, newest first.

        Args:
            plugin_id: Plugin identifier
            limit: Maximum number of headlines
            since: Only headlines published at or after this time

        Returns:
            List of headlines
        """
        query = self.db.query(HeadlineRecord).filter(HeadlineRecord.plugin_id == plugin_id)
        if since is not None:
            query = query.filter(HeadlineRecord.pub_date >= since)
        query = query.order_by(HeadlineRecord.pub_date.desc())
        if limit is not None:
            query = query.limit(limit)
        return [self._to_headline(r) for r in query.all()]

    def update_status(self, headline_id: str, **flags: bool) -> Optional[Headline]:
        """Update the read/starred/archived flags of a headline.

        Args:
            headline_id: Headline identifier
            **flags: Flag values keyed by flag name; None values are ignored

        Returns:
            Updated headline or None if not found

        Raises:
            ValueError: If an unknown flag is given
        """
        unknown = set(flags) - set(STATUS_FLAGS)
        if unknown:
            raise ValueError(f"Unknown status flags: {sorted(unknown)}")

        record = self.db.get(HeadlineRecord, headline_id)
        if not record:
            logger.warning(f"Headline {headline_id} not found")
            return None

        for name, value in flags.items():
            if value is not None:
                setattr(record, name, bool(value))
        commit_session(self.db)
        self.db.refresh(record)
        return self._to_headline(record)

    def update_importance(
        self, headline_id: str, score: float, reason: Optional[str] = None
    ) -> Optional[Headline]:
        """Update the importance fields of a headline."""
        record = self.db.get(HeadlineRecord, headline_id)
        if not record:
            return None
        record.importance_score = max(0.0, min(1.0, score))
        record.importance_reason = reason
        commit_session(self.db)
        self.db.refresh(record)
        return self._to_headline(record)

    def delete_keep_latest(self, plugin_id: str, keep: int) -> int:
        """Delete all but the ``keep`` most recent headlines of a plugin.

        Recency is by publication time, ties broken by creation time.

        Args:
            plugin_id: Plugin identifier
            keep: Number of headlines to retain

        Returns:
            Number of headlines deleted
        """
        keep_ids = [
            row.id
            for row in self.db.query(HeadlineRecord.id)
            .filter(HeadlineRecord.plugin_id == plugin_id)
            .order_by(HeadlineRecord.pub_date.desc(), HeadlineRecord.created_at.desc())
            .limit(keep)
            .all()
        ]
        query = self.db.query(HeadlineRecord).filter(HeadlineRecord.plugin_id == plugin_id)
        if keep_ids:
            query = query.filter(HeadlineRecord.id.notin_(keep_ids))
        deleted = query.delete(synchronize_session=False)
        commit_session(self.db)
        if deleted:
            logger.info(f"Retention removed {deleted} headlines for plugin {plugin_id}")
        return deleted

    def delete_older_than(self, plugin_id: str, hours: int, now: Optional[datetime] = None) -> int:
        """Delete headlines of a plugin published before now minus ``hours``.

        Args:
            plugin_id: Plugin identifier
            hours: Age limit in hours
            now: Reference time (defaults to the current time)

        Returns:
            Number of headlines deleted
        """
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        deleted = (
            self.db.query(HeadlineRecord)
            .filter(HeadlineRecord.plugin_id == plugin_id, HeadlineRecord.pub_date < cutoff)
            .delete(synchronize_session=False)
        )
        commit_session(self.db)
        if deleted:
            logger.info(f"Retention removed {deleted} headlines for plugin {plugin_id}")
        return deleted

    def count(self, plugin_id: Optional[str] = None) -> int:
        """Count stored headlines, optionally for one plugin."""
        query = self.db.query(HeadlineRecord)
        if plugin_id:
            query = query.filter(HeadlineRecord.plugin_id == plugin_id)
        return query.count()

    def count_headlines(
        self,
        plugin_id: Optional[str] = None,
        category: Optional[str] = None,
        min_importance: Optional[float] = None,
        include_archived: bool = False,
    ) -> int:
        """Count the headlines ``list_headlines`` would page through with the same filters."""
        return self._filtered(plugin_id, category, min_importance, include_archived).count()

    def _filtered(
        self,
        plugin_id: Optional[str],
        category: Optional[str],
        min_importance: Optional[float],
        include_archived: bool,
    ):
        query = self.db.query(HeadlineRecord)
        if plugin_id:
            query = query.filter(HeadlineRecord.plugin_id == plugin_id)
        if category:
            query = query.filter(HeadlineRecord.category == category)
        if min_importance is not None:
            query = query.filter(HeadlineRecord.importance_score >= min_importance)
        if not include_archived:
            query = query.filter(HeadlineRecord.archived == False)  # noqa: E712
        return query

    @staticmethod
    def _to_record(headline: Headline) -> HeadlineRecord:
        return HeadlineRecord(
            id=headline.id,
            plugin_id=headline.plugin_id,
            title=headline.title,
            description=headline.description,
            link=headline.link,
            pub_date=headline.pub_date,
            created_at=headline.created_at,
            category=headline.category,
            tags=json.dumps(list(headline.tags)),
            importance_score=headline.importance_score,
            importance_reason=headline.importance_reason,
            meta=json.dumps(headline.metadata, default=str),
            read=headline.read,
            starred=headline.starred,
            archived=headline.archived,
        )

    @staticmethod
    def _to_headline(record: HeadlineRecord) -> Headline:
        return Headline(
            id=record.id,
            plugin_id=record.plugin_id,
            title=record.title,
            description=record.description,
            link=record.link,
            pub_date=record.pub_date,
            created_at=record.created_at,
            category=record.category,
            tags=_parse_json(record.tags, [], record.id),
            importance_score=record.importance_score,
            importance_reason=record.importance_reason,
            metadata=_parse_json(record.meta, {}, record.id),
            read=record.read,
            starred=record.starred,
            archived=record.archived,
        )


def _parse_json(raw: Optional[str], default: Any, headline_id: str) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse stored JSON for headline {headline_id}: {e}")
        return default
