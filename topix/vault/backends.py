"""
Secret storage backends for the credential vault.

Both backends expose ``store``, ``get``, ``delete`` and ``list``. The
keyring backend talks to the OS-native secret store; the store backend
keeps credentials in the Headline Store ``auth`` table.
"""

import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

import keyring
from keyring.backend import KeyringBackend as KeyringImplementation
from keyring.errors import KeyringError, PasswordDeleteError

from topix.server.store import HeadlineStore

from .exceptions import CredentialFormatError, VaultBackendError
from .models import Credential

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "com.topix.app"
INDEX_ACCOUNT = "__topix_index__"


class KeyringBackend:
    """
    OS keyring backend (macOS Keychain, Secret Service, Windows Credential Locker).

    Keyring cannot enumerate entries, so an index entry under the same
    service namespace lists every stored plugin id. All calls block and are
    run off the event loop by the vault.
    """

    name = "keyring"

    def __init__(self, service: str = DEFAULT_SERVICE, implementation: Optional[KeyringImplementation] = None):
        """
        Initialize keyring backend.

        Args:
            service: Service namespace for all entries
            implementation: Keyring implementation to use (default: the
                platform keyring chosen by ``keyring``)
        """
        self.service = service
        self._keyring = implementation

    @property
    def keyring(self) -> KeyringImplementation:
        return self._keyring or keyring.get_keyring()

    def store(self, plugin_id: str, credential: Credential) -> None:
        """
        Store a credential.

        Raises:
            VaultBackendError: If the keyring rejects the write
        """
        with _keyring_errors("store"):
            self.keyring.set_password(self.service, plugin_id, credential.to_json())
            index = self._read_index()
            if plugin_id not in index:
                index.append(plugin_id)
                self._write_index(index)

    def get(self, plugin_id: str) -> Optional[Credential]:
        """
        Get a credential.

        Returns:
            Credential or None if no entry exists

        Raises:
            VaultBackendError: If the keyring cannot be read
            CredentialFormatError: If the stored entry is malformed
        """
        with _keyring_errors("read"):
            secret = self.keyring.get_password(self.service, plugin_id)
        if secret is None:
            return None
        return Credential.from_json(secret)

    def delete(self, plugin_id: str) -> bool:
        """
        Delete a credential.

        Returns:
            True if an entry was deleted

        Raises:
            VaultBackendError: If the keyring rejects the delete
        """
        with _keyring_errors("delete"):
            try:
                self.keyring.delete_password(self.service, plugin_id)
                deleted = True
            except PasswordDeleteError:
                deleted = False
            index = self._read_index()
            if plugin_id in index:
                index.remove(plugin_id)
                self._write_index(index)
        return deleted

    def list(self) -> List[Dict[str, str]]:
        """
        List every credential under the service namespace.

        Raises:
            VaultBackendError: If the keyring cannot be read
        """
        entries = []
        with _keyring_errors("list"):
            plugin_ids = self._read_index()
            for plugin_id in plugin_ids:
                secret = self.keyring.get_password(self.service, plugin_id)
                if secret is None:
                    continue
                try:
                    auth_type = Credential.from_json(secret).auth_type
                except CredentialFormatError:
                    logger.warning(f"Skipping malformed keyring entry for {plugin_id}")
                    continue
                entries.append({"plugin_id": plugin_id, "auth_type": auth_type})
        return entries

    def _read_index(self) -> List[str]:
        raw = self.keyring.get_password(self.service, INDEX_ACCOUNT)
        if not raw:
            return []
        try:
            index = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Keyring index entry is corrupted, rebuilding")
            return []
        return [str(i) for i in index] if isinstance(index, list) else []

    def _write_index(self, index: List[str]) -> None:
        self.keyring.set_password(self.service, INDEX_ACCOUNT, json.dumps(sorted(index)))


@contextmanager
def _keyring_errors(action: str) -> Iterator[None]:
    """Translate keyring failures into ``VaultBackendError``."""
    try:
        yield
    except (KeyringError, RuntimeError, OSError) as e:
        raise VaultBackendError(f"Keyring {action} failed: {e}") from e


class StoreBackend:
    """
    Headline Store backend (``auth`` table).

    Rows written with ``secret=False`` hold only the auth type; they keep
    ``list`` complete while the secret lives in the keyring.
    """

    name = "store"

    def __init__(self, store: HeadlineStore):
        self.headline_store = store

    def store_credential(self, plugin_id: str, credential: Credential, secret: bool = True) -> None:
        payload = credential.to_json() if secret else json.dumps({"type": credential.auth_type})
        self.headline_store.credentials.upsert(plugin_id, credential.auth_type, payload, has_secret=secret)

    def store(self, plugin_id: str, credential: Credential) -> None:
        self.store_credential(plugin_id, credential, secret=True)

    def store_metadata(self, plugin_id: str, credential: Credential) -> None:
        self.store_credential(plugin_id, credential, secret=False)

    def get(self, plugin_id: str) -> Optional[Credential]:
        """
        Get a credential holding its secret.

        Returns:
            Credential, or None if missing, metadata-only or malformed
        """
        record = self.headline_store.credentials.get(plugin_id)
        if record is None or not record.has_secret:
            return None
        try:
            return Credential.from_json(record.credentials)
        except CredentialFormatError as e:
            logger.warning(f"Stored credential for {plugin_id} is malformed, ignoring: {e}")
            return None

    def delete(self, plugin_id: str) -> bool:
        return self.headline_store.credentials.delete(plugin_id)

    def list(self) -> List[Dict[str, str]]:
        entries = []
        for plugin_id in self.headline_store.credentials.list_plugin_ids():
            record = self.headline_store.credentials.get(plugin_id)
            entries.append({"plugin_id": plugin_id, "auth_type": record.auth_type})
        return entries
