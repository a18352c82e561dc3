"""
Credential vault for plugin authentication.

This package stores plugin credentials in the OS keyring, falling back to
the Headline Store when the keyring is unavailable, and refreshes OAuth2
tokens before they expire.
"""

from .backends import KeyringBackend, StoreBackend
from .credential_vault import CredentialVault
from .exceptions import CredentialFormatError, TokenRefreshError, VaultBackendError, VaultError
from .models import Credential, OAuth2Token

__all__ = [
    "Credential",
    "CredentialFormatError",
    "CredentialVault",
    "KeyringBackend",
    "OAuth2Token",
    "StoreBackend",
    "TokenRefreshError",
    "VaultBackendError",
    "VaultError",
]
