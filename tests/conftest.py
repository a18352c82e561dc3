"""Shared pytest fixtures.

Provides an in-memory headline store, settings rooted in a temporary data
directory, configurable fake plugins and an in-memory keyring.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest
from keyring.backend import KeyringBackend as KeyringImplementation
from keyring.errors import KeyringError, PasswordDeleteError

from topix.server.config import Settings
from topix.server.plugins.base import BasePlugin, FetchContext
from topix.server.plugins.registry import PluginRegistry
from topix.server.plugins.types import (
    Headline,
    PluginDescriptor,
    PluginRuntimeConfig,
    RetentionPolicy,
)
from topix.server.store import HeadlineStore


class FakePlugin(BasePlugin):
    """Plugin returning a fixed number of headlines per fetch.

    Attributes:
        per_fetch: Headlines produced by each fetch
        retention: Retention policy reported to the runtime
        fail_with: Exception raised by fetch when set
        fail_initialize: Exception raised by initialize when set
        gate: Event fetch waits on before returning, when set
        fetch_count: Number of fetches started
        contexts: Fetch contexts received
        histories: Stored history each fetch saw when it ran
    """

    descriptor = PluginDescriptor(id="fake", name="Fake", version="1.0.0", author="tests")

    def __init__(
        self,
        plugin_id: str = "fake",
        per_fetch: int = 2,
        retention: Optional[RetentionPolicy] = None,
    ):
        super().__init__()
        self.descriptor = PluginDescriptor(id=plugin_id, name=plugin_id.title(), version="1.0.0", author="tests")
        self.per_fetch = per_fetch
        self.retention = retention or RetentionPolicy.unlimited()
        self.fail_with: Optional[Exception] = None
        self.fail_initialize: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.fetch_count = 0
        self.initialize_count = 0
        self.shutdown_count = 0
        self.contexts: List[FetchContext] = []
        self.histories: List[List[Headline]] = []
        self.pub_dates: Optional[List[datetime]] = None

    async def initialize(self, config: PluginRuntimeConfig) -> None:
        self.initialize_count += 1
        if self.fail_initialize is not None:
            raise self.fail_initialize
        await super().initialize(config)

    async def shutdown(self) -> None:
        self.shutdown_count += 1
        await super().shutdown()

    async def fetch(self, context: FetchContext) -> List[Headline]:
        self.fetch_count += 1
        self.contexts.append(context)
        self.histories.append(context.get_history())
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

        now = datetime.now(timezone.utc)
        headlines = []
        for i in range(self.per_fetch):
            pub_date = self.pub_dates[i] if self.pub_dates else now + timedelta(seconds=self.fetch_count * 10 + i)
            headlines.append(
                Headline.create(
                    self.descriptor.id,
                    f"{self.descriptor.id} headline {self.fetch_count}.{i}",
                    pub_date=pub_date,
                    tags=["test"],
                )
            )
        return headlines

    def retention_policy(self) -> RetentionPolicy:
        return self.retention


class MemoryKeyring(KeyringImplementation):
    """Keyring implementation keeping passwords in a dict.

    Set ``fail`` to make every call raise ``KeyringError``.
    """

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords: Dict[tuple, str] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise KeyringError("Keyring is locked")

    def get_password(self, service, username):
        self._check()
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self._check()
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        self._check()
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("Password not found")
        del self.passwords[(service, username)]


def runtime_config(
    plugin_id: str,
    enabled: bool = True,
    schedule: str = "*/15 * * * *",
    config: Optional[dict] = None,
) -> PluginRuntimeConfig:
    return PluginRuntimeConfig(plugin_id=plugin_id, enabled=enabled, schedule=schedule, config=config or {})


@pytest.fixture
def store() -> Generator[HeadlineStore, None, None]:
    """Create an in-memory headline store, closed after the test."""
    headline_store = HeadlineStore("sqlite:///:memory:")
    yield headline_store
    headline_store.close()


@pytest.fixture
def registry() -> PluginRegistry:
    """Empty plugin registry (no built-in or user plugins)."""
    return PluginRegistry(plugins_dir=None, builtin_package=None)


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary data directory.

    Example:
        >>> def test_something(settings):
        >>>     assert settings.config_path.parent == settings.get_data_dir()
    """
    return Settings(
        data_dir=str(tmp_path / "topix"),
        host="127.0.0.1",
        port=0,
        config_debounce_ms=50,
        stop_timeout_seconds=2.0,
        watch_force_polling=True,
        log_to_file=False,
    )


@pytest.fixture
def config_file(settings: Settings) -> Path:
    """Write a config file with the LLM disabled and return its path."""
    settings.ensure_data_dir()
    settings.config_path.write_text(
        "llm:\n"
        "  provider: none\n"
        "plugins:\n"
        "  alpha:\n"
        "    enabled: true\n"
        "    schedule: '*/5 * * * *'\n"
    )
    return settings.config_path


@pytest.fixture
def make_plugin():
    """Factory for fake plugins: ``make_plugin("alpha", per_fetch=2, retention=...)``."""
    return FakePlugin


@pytest.fixture
def make_config():
    """Factory for runtime configurations: ``make_config("alpha", enabled=False)``."""
    return runtime_config
