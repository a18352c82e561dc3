"""Repository for the user preference mirror."""

import json
import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from topix.server.database.models.preference import UserPreference
from topix.server.database.session import commit_session

logger = logging.getLogger(__name__)


class PreferenceRepository:
    """Key/value access to the ``user_preferences`` table."""

    def __init__(self, db: Session):
        self.db = db

    def set_many(self, values: Dict[str, Any]) -> None:
        """Store several preference sections in one commit.

        Args:
            values: Section name to JSON-serializable value
        """
        for key, value in values.items():
            record = self.db.get(UserPreference, key)
            if record is None:
                record = UserPreference(key=key)
                self.db.add(record)
            record.value = json.dumps(value)
        commit_session(self.db)

    def get_all(self) -> Dict[str, Any]:
        """Get every stored preference section; unreadable values are skipped."""
        result: Dict[str, Any] = {}
        for record in self.db.query(UserPreference).order_by(UserPreference.key).all():
            try:
                result[record.key] = json.loads(record.value)
            except json.JSONDecodeError:
                logger.error(f"Failed to parse preference {record.key}")
        return result
