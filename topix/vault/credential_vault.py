"""
Credential vault with OS keyring primary and Headline Store fallback.

This module manages plugin credentials including:
- Primary storage in the OS keyring, metadata mirrored to the store
- One-way demotion to the store backend when the keyring fails
- OAuth2 validation and refresh with retry and exponential backoff
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import httpx

from .backends import KeyringBackend, StoreBackend
from .exceptions import CredentialFormatError, TokenRefreshError, VaultBackendError
from .models import Credential, OAuth2Token

logger = logging.getLogger(__name__)

REFRESH_MARGIN_SECONDS = 5 * 60


class CredentialVault:
    """
    Stores and retrieves plugin credentials.

    The primary (keyring) backend is used while it works. The first failure
    demotes it for the rest of the session; from then on every operation
    uses the store backend. Credentials written to or read from the keyring
    in this session are kept in memory and copied into the store on
    demotion, so they stay retrievable after the keyring goes away.
    """

    def __init__(
        self,
        fallback: StoreBackend,
        primary: Optional[KeyringBackend] = None,
        refresh_margin: int = REFRESH_MARGIN_SECONDS,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        http_timeout: float = 30.0,
    ):
        """
        Initialize credential vault.

        Args:
            fallback: Store backend
            primary: Keyring backend (None to use the store only)
            refresh_margin: Refresh OAuth2 tokens expiring within this many seconds
            max_retries: Retries for OAuth2 refresh on network or server errors
            retry_base_delay: Base delay in seconds for exponential backoff
            http_timeout: Timeout of the token refresh request
        """
        self.primary = primary
        self.fallback = fallback
        self.refresh_margin = refresh_margin
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.http_timeout = http_timeout
        self._primary_available = primary is not None
        self._session_cache: Dict[str, Credential] = {}

    def is_primary_available(self) -> bool:
        return self._primary_available

    @property
    def active_backend(self) -> str:
        return self.primary.name if self._primary_available else self.fallback.name

    def _demote(self, error: Exception) -> None:
        """Switch to the store backend for the rest of the session."""
        if not self._primary_available:
            return
        self._primary_available = False
        logger.warning(f"Keyring unavailable, falling back to database storage: {error}")

        for plugin_id, credential in self._session_cache.items():
            try:
                self.fallback.store(plugin_id, credential)
            except Exception as e:
                logger.error(f"Failed to move credential for {plugin_id} to database: {e}")
        self._session_cache.clear()

    async def store(self, plugin_id: str, credential: Credential) -> None:
        """
        Store credentials for a plugin, replacing any existing ones.

        Args:
            plugin_id: Plugin identifier
            credential: Credential to store
        """
        if self._primary_available:
            try:
                await asyncio.to_thread(self.primary.store, plugin_id, credential)
                self._session_cache[plugin_id] = credential
                self.fallback.store_metadata(plugin_id, credential)
                logger.info(f"Stored credentials for {plugin_id} in keyring")
                return
            except VaultBackendError as e:
                self._demote(e)

        self.fallback.store(plugin_id, credential)
        logger.info(f"Stored credentials for {plugin_id} in database (keyring unavailable)")

    async def get(self, plugin_id: str) -> Optional[Credential]:
        """
        Retrieve credentials for a plugin.

        Returns:
            Credential, or None if missing or malformed
        """
        if self._primary_available:
            try:
                credential = await asyncio.to_thread(self.primary.get, plugin_id)
                if credential is not None:
                    self._session_cache[plugin_id] = credential
                    return credential
            except CredentialFormatError as e:
                logger.warning(f"Keyring credential for {plugin_id} is malformed, ignoring: {e}")
                return None
            except VaultBackendError as e:
                self._demote(e)

        return self.fallback.get(plugin_id)

    async def delete(self, plugin_id: str) -> bool:
        """
        Delete credentials for a plugin from every backend.

        Returns:
            True if anything was deleted
        """
        deleted = False
        self._session_cache.pop(plugin_id, None)
        if self._primary_available:
            try:
                deleted = await asyncio.to_thread(self.primary.delete, plugin_id)
            except VaultBackendError as e:
                self._demote(e)

        deleted = self.fallback.delete(plugin_id) or deleted
        logger.info(f"Deleted credentials for {plugin_id}")
        return deleted

    async def list(self) -> List[Dict[str, str]]:
        """
        List plugins with stored credentials.

        Returns:
            ``{"plugin_id", "auth_type"}`` entries
        """
        if self._primary_available:
            try:
                return await asyncio.to_thread(self.primary.list)
            except VaultBackendError as e:
                self._demote(e)

        return self.fallback.list()

    async def has_credentials(self, plugin_id: str) -> bool:
        return await self.get(plugin_id) is not None

    async def validate(self, plugin_id: str) -> Optional[Credential]:
        """
        Get an OAuth2 credential that is valid beyond the refresh margin.

        Returns the stored credential unchanged when it expires more than
        ``refresh_margin`` seconds from now; otherwise refreshes it.

        Returns:
            Valid credential, or None if missing or not refreshable
        """
        credential = await self.get(plugin_id)
        if credential is None or credential.auth_type != "oauth2":
            return None
        try:
            token = OAuth2Token.from_credential(credential)
        except CredentialFormatError as e:
            logger.warning(f"OAuth2 credential for {plugin_id} is malformed: {e}")
            return None

        if not token.expires_within(self.refresh_margin):
            return credential

        logger.info(f"Token for {plugin_id} expires soon (within {self.refresh_margin}s), refreshing...")
        return await self.refresh(plugin_id, credential)

    async def refresh(self, plugin_id: str, credential: Optional[Credential] = None) -> Optional[Credential]:
        """
        Refresh an OAuth2 access token and store the result.

        Fails closed: without a refresh token no request is made.

        Args:
            plugin_id: Plugin identifier
            credential: Current credential (loaded when not given)

        Returns:
            Refreshed credential, or None if refresh is impossible or failed
        """
        if credential is None:
            credential = await self.get(plugin_id)
        if credential is None or credential.auth_type != "oauth2":
            return None

        try:
            token = OAuth2Token.from_credential(credential)
        except CredentialFormatError as e:
            logger.warning(f"OAuth2 credential for {plugin_id} is malformed: {e}")
            return None

        if not token.is_refreshable:
            logger.warning(f"No refresh token available for {plugin_id}")
            return None
        if not token.token_url:
            logger.error(f"Token URL not found in credentials for {plugin_id}")
            return None

        try:
            data = await self._request_refresh(token)
            refreshed = OAuth2Token(
                access_token=data["access_token"],
                # Refresh token may or may not be returned; keep existing if not
                refresh_token=data.get("refresh_token") or token.refresh_token,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"])),
                token_url=token.token_url,
                client_id=token.client_id,
                client_secret=token.client_secret,
                scope=data.get("scope", token.scope),
            )
        except TokenRefreshError as e:
            logger.error(f"Failed to refresh OAuth2 token for {plugin_id}: {e}")
            return None
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid response from token endpoint for {plugin_id}: {e}")
            return None

        updated = refreshed.to_credential(base=credential)
        await self.store(plugin_id, updated)
        logger.info(f"Refreshed OAuth2 token for {plugin_id}")
        return updated

    async def _request_refresh(self, token: OAuth2Token) -> dict:
        """
        POST the refresh grant, retrying network and server errors.

        Raises:
            TokenRefreshError: On a 4xx response or after all retries
        """
        form = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": token.client_id or "",
            "client_secret": token.client_secret or "",
        }

        for attempt in range(self.max_retries + 1):
            logger.info(f"Refreshing access token (attempt {attempt + 1}/{self.max_retries + 1})")
            try:
                async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                    response = await client.post(token.token_url, data=form)
            except httpx.HTTPError as e:
                logger.warning(f"Network error during token refresh: {e}")
                error: str = f"Network error during token refresh: {e}"
            else:
                if response.status_code == 200:
                    return response.json()
                # Don't retry on 400-level errors (bad refresh token, etc.)
                if 400 <= response.status_code < 500:
                    raise TokenRefreshError(
                        f"Token refresh failed with status {response.status_code}. "
                        f"The refresh token may have expired."
                    )
                error = f"Token refresh failed with status {response.status_code}"

            if attempt < self.max_retries:
                delay = self.retry_base_delay * 2 ** attempt  # Exponential backoff: 1s, 2s, 4s
                logger.warning(f"Retrying after {delay}s: {error}")
                await asyncio.sleep(delay)

        raise TokenRefreshError(f"{error} after {self.max_retries + 1} attempts")
