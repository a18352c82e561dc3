"""Headline Store: the embedded database shared by every component.

The store owns one engine and one session. All access happens from the
event loop thread, so writes are ordered per process.
"""

import logging
from typing import Optional

from topix.server.database import models  # noqa: F401  (registers ORM tables)
from topix.server.database.migrations import run_migrations
from topix.server.database.session import (
    check_database_connection,
    create_db_engine,
    create_session_factory,
)
from topix.server.repositories import (
    CredentialRepository,
    HeadlineRepository,
    PluginConfigRepository,
    PreferenceRepository,
)

logger = logging.getLogger(__name__)


class HeadlineStore:
    """Embedded store holding headlines, plugin configs, credentials and preferences.

    Example:
        >>> store = HeadlineStore("sqlite:///:memory:")
        >>> store.headlines.count()
        0
        >>> store.close()
    """

    def __init__(self, database_url: str, echo: bool = False):
        """Open the store and bring its schema up to date.

        Args:
            database_url: SQLAlchemy database URL
            echo: Log SQL statements
        """
        self.database_url = database_url
        self.engine = create_db_engine(database_url, echo=echo)
        run_migrations(self.engine)
        self.session = create_session_factory(self.engine)()

        self.headlines = HeadlineRepository(self.session)
        self.plugin_configs = PluginConfigRepository(self.session)
        self.credentials = CredentialRepository(self.session)
        self.preferences = PreferenceRepository(self.session)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def is_healthy(self) -> bool:
        return not self._closed and check_database_connection(self.engine)

    def rollback(self) -> None:
        """Discard any uncommitted changes of the shared session."""
        if not self._closed:
            self.session.rollback()

    def close(self) -> None:
        """Close the session and dispose of the engine. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self.session.close()
        finally:
            self.engine.dispose()
        logger.info("Headline store closed")


def open_store(database_url: str, echo: bool = False) -> Optional[HeadlineStore]:
    """Open a store, returning None (and logging) when the database is unusable.

    Used by out-of-process readers such as the CLI, which degrade gracefully
    when no store exists yet.
    """
    try:
        return HeadlineStore(database_url, echo=echo)
    except Exception as e:
        logger.error(f"Failed to open headline store at {database_url}: {e}")
        return None
