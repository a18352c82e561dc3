"""
Credential data models.

A credential is a type tag plus a type-specific payload. OAuth2 payloads
are wrapped by ``OAuth2Token`` for expiry checks and refresh.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from topix.server.plugins.types import AUTH_TYPES

from .exceptions import CredentialFormatError


@dataclass
class Credential:
    """
    Stored credential of one plugin.

    Attributes:
        auth_type: oauth2, apikey, basic or custom
        data: Type-specific payload (secrets included); may not contain a ``type`` key
    """

    auth_type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.auth_type not in AUTH_TYPES:
            raise CredentialFormatError(f"Unknown auth type: {self.auth_type}")
        if "type" in self.data:
            raise CredentialFormatError("Credential payload may not use the reserved key 'type'")

    def to_json(self) -> str:
        """
        Serialize to the JSON text kept by the backends.

        Returns:
            JSON object with a ``type`` key and the payload fields
        """
        return json.dumps({"type": self.auth_type, **self.data})

    @classmethod
    def from_json(cls, text: str) -> "Credential":
        """
        Parse the JSON text kept by the backends.

        Raises:
            CredentialFormatError: If the text is not a JSON object with a known type
        """
        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            raise CredentialFormatError(f"Credential payload is not valid JSON: {e}") from e
        if not isinstance(payload, dict) or "type" not in payload:
            raise CredentialFormatError("Credential payload must be an object with a type")
        auth_type = payload.pop("type")
        return cls(auth_type=auth_type, data=payload)


@dataclass
class OAuth2Token:
    """
    OAuth2 credential payload.

    Attributes:
        access_token: Short-lived access token for API calls
        expires_at: When the access token expires (timezone-aware UTC)
        refresh_token: Long-lived token; empty means not refreshable
        token_url: Token endpoint used for refresh
        client_id: OAuth client id
        client_secret: OAuth client secret
        scope: Granted OAuth scopes
    """

    access_token: str
    expires_at: datetime
    refresh_token: str = ""
    token_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scope: Optional[str] = None

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at

    def expires_within(self, seconds: int) -> bool:
        """
        Check if token expires within given seconds.

        Args:
            seconds: Number of seconds to check

        Returns:
            True if token will expire within the specified time
        """
        return datetime.now(timezone.utc) + timedelta(seconds=seconds) >= self.expires_at

    @property
    def is_refreshable(self) -> bool:
        return bool(self.refresh_token)

    @classmethod
    def from_credential(cls, credential: Credential) -> "OAuth2Token":
        """
        Build from an ``oauth2`` credential.

        Raises:
            CredentialFormatError: If the payload is not a usable OAuth2 token
        """
        if credential.auth_type != "oauth2":
            raise CredentialFormatError(f"Expected oauth2 credential, got {credential.auth_type}")
        data = credential.data
        try:
            expires_at = datetime.fromisoformat(str(data["expires_at"]).replace("Z", "+00:00"))
            access_token = data["access_token"]
        except (KeyError, ValueError) as e:
            raise CredentialFormatError(f"Invalid OAuth2 credential: {e}") from e
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=data.get("refresh_token") or "",
            token_url=data.get("token_url"),
            client_id=data.get("client_id"),
            client_secret=data.get("client_secret"),
            scope=data.get("scope"),
        )

    def to_credential(self, base: Optional[Credential] = None) -> Credential:
        """
        Convert back to a credential, keeping unrelated fields of ``base``.
        """
        data = dict(base.data) if base else {}
        data.update(
            {
                "access_token": self.access_token,
                "expires_at": self.expires_at.isoformat(),
                "refresh_token": self.refresh_token,
            }
        )
        for key in ("token_url", "client_id", "client_secret", "scope"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return Credential(auth_type="oauth2", data=data)
