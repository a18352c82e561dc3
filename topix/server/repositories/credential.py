"""Repository for credential rows in the ``auth`` table."""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from topix.server.database.models.credential import CredentialRecord
from topix.server.database.session import commit_session
from topix.server.database.types import utcnow

logger = logging.getLogger(__name__)


class CredentialRepository:
    """Raw access to stored credential payloads (at most one per plugin).

    Payloads are stored and returned as opaque JSON text; decoding and
    malformed-payload handling belong to the vault.
    """

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, plugin_id: str, auth_type: str, payload: str, has_secret: bool) -> CredentialRecord:
        """Create or replace the credential row of a plugin.

        Args:
            plugin_id: Plugin identifier
            auth_type: oauth2, apikey, basic or custom
            payload: JSON text to store
            has_secret: Whether the payload holds the secret

        Returns:
            Stored CredentialRecord
        """
        record = self.db.get(CredentialRecord, plugin_id)
        if record is None:
            record = CredentialRecord(plugin_id=plugin_id)
            self.db.add(record)

        record.auth_type = auth_type
        record.credentials = payload
        record.has_secret = has_secret
        record.updated_at = utcnow()
        commit_session(self.db)
        self.db.refresh(record)
        logger.debug(f"Stored credential row for {plugin_id} (secret={has_secret})")
        return record

    def get(self, plugin_id: str) -> Optional[CredentialRecord]:
        return self.db.get(CredentialRecord, plugin_id)

    def delete(self, plugin_id: str) -> bool:
        record = self.db.get(CredentialRecord, plugin_id)
        if not record:
            return False
        self.db.delete(record)
        commit_session(self.db)
        return True

    def list_plugin_ids(self) -> List[str]:
        rows = self.db.query(CredentialRecord.plugin_id).order_by(CredentialRecord.plugin_id).all()
        return [row.plugin_id for row in rows]
