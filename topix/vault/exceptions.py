"""
Exception classes for the credential vault.

Vault errors never escape to plugins or the service: backend failures
trigger the fallback, and failed refreshes resolve to "no credential".
"""

from topix.server.exceptions import TopixError


class VaultError(TopixError):
    """Base exception for all credential vault errors."""

    pass


class VaultBackendError(VaultError):
    """Secret backend operation failed (backend unavailable or locked)."""

    pass


class CredentialFormatError(VaultError):
    """Stored credential payload is malformed."""

    pass


class TokenRefreshError(VaultError):
    """Failed to refresh an OAuth2 access token."""

    pass
