"""Credential database model.

Holds credential metadata for every plugin with stored credentials, and the
full secret payload when the OS keyring is unavailable.
"""

from sqlalchemy import Boolean, Column, String, Text

from topix.server.database.session import Base
from topix.server.database.types import UTCDateTime, utcnow


class CredentialRecord(Base):
    """Credential model (at most one row per plugin).

    Attributes:
        plugin_id: Plugin identifier
        auth_type: oauth2, apikey, basic or custom
        credentials: JSON payload; only {"type": ...} when has_secret is False
        has_secret: Whether the payload includes the secret itself
        created_at: Timestamp when the credential was first stored
        updated_at: Timestamp when the credential was last replaced
    """

    __tablename__ = "auth"

    plugin_id = Column(String, primary_key=True)
    auth_type = Column(String, nullable=False)
    credentials = Column(Text, nullable=False)
    has_secret = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<CredentialRecord(plugin={self.plugin_id}, type={self.auth_type}, "
            f"has_secret={self.has_secret})>"
        )
