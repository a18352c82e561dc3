"""Plugin runtime: lifecycle, fetch pipeline and hot reload.

The runtime owns the initialize/shutdown lifecycle of every loaded plugin
and runs fetches through a per-plugin in-flight guard, so a plugin never
has two fetches running at once and is never reconfigured mid-fetch.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from topix.server.exceptions import (
    FetchInProgressError,
    PluginExecutionError,
    PluginNotEnabledError,
    PluginNotFoundError,
    TopixError,
)
from topix.server.plugins.base import FetchContext, Plugin
from topix.server.plugins.reconcile import ReloadPlan, plan_reload
from topix.server.plugins.registry import PluginRegistry
from topix.server.plugins.types import Headline, HealthStatus, PluginRuntimeConfig
from topix.server.store import HeadlineStore

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of one plugin fetch within ``fetch_all``.

    Attributes:
        plugin_id: Plugin identifier
        success: Whether the fetch completed
        headlines: Number of headlines returned by the plugin
        skipped: True when a fetch was already in flight
        error: Failure message
    """

    plugin_id: str
    success: bool
    headlines: int = 0
    skipped: bool = False
    error: Optional[str] = None


class PluginRuntime:
    """Runs loaded plugins against their runtime configuration.

    Example:
        >>> runtime = PluginRuntime(registry, store)
        >>> await runtime.initialize(configs)
        >>> headlines = await runtime.fetch_one("weather")
    """

    def __init__(
        self,
        registry: PluginRegistry,
        store: HeadlineStore,
        vault: Optional[Any] = None,
        scorer: Optional[Any] = None,
        stop_timeout: float = 10.0,
    ):
        """Initialize plugin runtime.

        Args:
            registry: Registry of loaded plugins
            store: Headline store
            vault: Credential vault used to fill ``FetchContext.credentials``
            scorer: Importance scorer applied to fetched headlines
            stop_timeout: Seconds to wait for an in-flight fetch before
                shutting a plugin down
        """
        self.registry = registry
        self.store = store
        self.vault = vault
        self.scorer = scorer
        self.stop_timeout = stop_timeout
        self._initialized: set = set()
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def sync_configs(self, configs: Mapping[str, PluginRuntimeConfig]) -> Dict[str, PluginRuntimeConfig]:
        """Write desired configurations to the store, keeping run-state.

        Stored plugins missing from ``configs`` are marked disabled.

        Args:
            configs: Desired configurations keyed by plugin id

        Returns:
            Applied configurations keyed by plugin id
        """
        for plugin_id, stored in self.applied_configs().items():
            if plugin_id not in configs and stored.enabled:
                stored.enabled = False
                self.store.plugin_configs.upsert(stored)
                logger.info(f"Plugin {plugin_id} removed from config, marked disabled")

        for config in configs.values():
            self.store.plugin_configs.upsert(config)
        return self.applied_configs()

    def applied_configs(self) -> Dict[str, PluginRuntimeConfig]:
        return {c.plugin_id: c for c in self.store.plugin_configs.list_configs()}

    def get_plugin_config(self, plugin_id: str) -> Optional[PluginRuntimeConfig]:
        return self.store.plugin_configs.get_config(plugin_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, configs: Mapping[str, PluginRuntimeConfig]) -> int:
        """Sync configurations and initialize every enabled plugin.

        Initialization failures are recorded as the plugin's last error and
        leave that plugin un-initialized.

        Args:
            configs: Desired configurations keyed by plugin id

        Returns:
            Number of plugins initialized
        """
        applied = self.sync_configs(configs)
        count = 0
        for plugin_id, config in applied.items():
            if not config.enabled:
                continue
            if plugin_id not in self.registry:
                logger.warning(f"Plugin {plugin_id} is enabled but not loaded, skipping")
                continue
            if await self._initialize_plugin(plugin_id, config):
                count += 1
        logger.info(f"Initialized {count} plugins")
        return count

    async def reload(self, configs: Mapping[str, PluginRuntimeConfig]) -> ReloadPlan:
        """Plan and apply a configuration change.

        Args:
            configs: New configurations keyed by plugin id

        Returns:
            The applied plan (the caller applies its scheduling actions)
        """
        plan = plan_reload(self.applied_configs(), configs, set(self.registry.ids()))
        logger.info(f"Reloading plugin configuration: {plan.describe()}")
        self.sync_configs(configs)
        await self.apply_plan(plan)
        return plan

    async def apply_plan(self, plan: ReloadPlan) -> None:
        """Apply the lifecycle actions of a reload plan.

        Each plugin is handled independently; one failure does not stop the
        others.
        """
        for plugin_id in plan.orphaned:
            logger.warning(f"Plugin {plugin_id} is enabled but not loaded, skipping")

        for plugin_id in plan.shutdown:
            await self._shutdown_plugin(plugin_id)

        for plugin_id in plan.reinitialize:
            if await self._shutdown_plugin(plugin_id):
                config = self.get_plugin_config(plugin_id)
                if config is not None:
                    await self._initialize_plugin(plugin_id, config)

        for plugin_id in plan.initialize:
            config = self.get_plugin_config(plugin_id)
            if config is not None:
                await self._initialize_plugin(plugin_id, config)

    async def reinitialize_plugin(self, plugin_id: str) -> bool:
        """Shut down and initialize a plugin with its current configuration.

        Args:
            plugin_id: Plugin identifier

        Returns:
            True if the plugin initialized successfully

        Raises:
            PluginNotFoundError: If no plugin has this id
            PluginNotEnabledError: If the plugin has no enabled configuration
        """
        self._require_plugin(plugin_id)
        config = self._require_enabled_config(plugin_id)
        if not await self._shutdown_plugin(plugin_id):
            return False
        return await self._initialize_plugin(plugin_id, config)

    async def shutdown(self) -> None:
        """Shut down every initialized plugin, waiting for in-flight fetches."""
        for plugin_id in list(self._initialized):
            await self._shutdown_plugin(plugin_id)
        logger.info("Plugin runtime shut down")

    def is_initialized(self, plugin_id: str) -> bool:
        return plugin_id in self._initialized

    def is_fetching(self, plugin_id: str) -> bool:
        lock = self._locks.get(plugin_id)
        return bool(lock and lock.locked())

    async def _initialize_plugin(self, plugin_id: str, config: PluginRuntimeConfig) -> bool:
        plugin = self.registry.get(plugin_id)
        if plugin is None:
            return False
        try:
            await plugin.initialize(config)
        except Exception as e:
            message = f"Initialization failed: {e}"
            logger.error(f"Plugin {plugin_id} {message}", exc_info=True)
            self._initialized.discard(plugin_id)
            self.store.plugin_configs.record_run(plugin_id, error=message)
            return False

        self._initialized.add(plugin_id)
        logger.info(f"Initialized plugin {plugin_id}")
        return True

    async def _shutdown_plugin(self, plugin_id: str) -> bool:
        """Shut a plugin down once no fetch is in flight.

        Returns:
            False if an in-flight fetch did not finish within ``stop_timeout``
        """
        if plugin_id not in self._initialized:
            return True
        plugin = self.registry.get(plugin_id)
        lock = self._lock_for(plugin_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timed out waiting for in-flight fetch of {plugin_id} before shutdown")
            return False

        try:
            await plugin.shutdown()
            logger.info(f"Shut down plugin {plugin_id}")
        except Exception as e:
            logger.error(f"Plugin {plugin_id} shutdown failed: {e}", exc_info=True)
        finally:
            self._initialized.discard(plugin_id)
            lock.release()
        return True

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_one(self, plugin_id: str) -> List[Headline]:
        """Fetch, store and apply retention for one plugin.

        Args:
            plugin_id: Plugin identifier

        Returns:
            Headlines returned by the plugin

        Raises:
            PluginNotFoundError: If no plugin has this id
            PluginNotEnabledError: If the plugin has no enabled configuration
            FetchInProgressError: If a fetch for the plugin is already running
            PluginExecutionError: If the plugin is not initialized or the fetch failed
        """
        plugin = self._require_plugin(plugin_id)
        config = self._require_enabled_config(plugin_id)

        lock = self._lock_for(plugin_id)
        if lock.locked():
            logger.info(f"Fetch already in progress for {plugin_id}, skipping trigger")
            raise FetchInProgressError(plugin_id)

        async with lock:
            return await self._run_fetch(plugin, config)

    async def fetch_all(self) -> Dict[str, FetchResult]:
        """Fetch every enabled, loaded plugin; failures are isolated.

        Returns:
            FetchResult per plugin id
        """
        results: Dict[str, FetchResult] = {}
        for plugin_id, config in self.applied_configs().items():
            if not config.enabled or plugin_id not in self.registry:
                continue
            try:
                headlines = await self.fetch_one(plugin_id)
                results[plugin_id] = FetchResult(plugin_id, success=True, headlines=len(headlines))
            except FetchInProgressError as e:
                results[plugin_id] = FetchResult(plugin_id, success=False, skipped=True, error=str(e))
            except TopixError as e:
                results[plugin_id] = FetchResult(plugin_id, success=False, error=str(e))

        total = sum(r.headlines for r in results.values())
        logger.info(f"Fetched {total} total headlines from {len(results)} plugins")
        return results

    async def _run_fetch(self, plugin: Plugin, config: PluginRuntimeConfig) -> List[Headline]:
        plugin_id = config.plugin_id
        if plugin_id not in self._initialized:
            reason = config.last_error or "Plugin is not initialized"
            raise PluginExecutionError(plugin_id, reason)

        try:
            context = FetchContext(
                plugin_id=plugin_id,
                config=config.config,
                last_run=config.last_run,
                credentials=await self._load_credentials(plugin),
                history=self.store.headlines.get_plugin_history,
            )
            headlines = list(await plugin.fetch(context))
            for headline in headlines:
                if headline.plugin_id != plugin_id:
                    logger.warning(f"Headline {headline.id} from {plugin_id} had plugin_id {headline.plugin_id}")
                    headline.plugin_id = plugin_id

            await self._score(headlines, config)
            self.store.headlines.insert_many(headlines)
            self._apply_retention(plugin)
            self.store.plugin_configs.record_run(plugin_id)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Error fetching from {plugin_id}: {message}", exc_info=True)
            # Drop anything the failed fetch left pending before recording the error
            self.store.rollback()
            self.store.plugin_configs.record_run(plugin_id, error=message)
            raise PluginExecutionError(plugin_id, message) from e

        logger.info(f"Fetched {len(headlines)} headlines from {plugin.descriptor.name}")
        return headlines

    async def _load_credentials(self, plugin: Plugin) -> Optional[Dict[str, Any]]:
        requirement = plugin.describe_auth_requirement()
        if requirement is None or self.vault is None:
            return None
        plugin_id = plugin.descriptor.id
        if requirement.type == "oauth2":
            credential = await self.vault.validate(plugin_id)
        else:
            credential = await self.vault.get(plugin_id)
        return credential.data if credential else None

    async def _score(self, headlines: List[Headline], config: PluginRuntimeConfig) -> None:
        if self.scorer is None or not headlines:
            return
        try:
            await self.scorer.score_headlines(headlines, config.importance)
        except Exception as e:
            logger.warning(f"Importance scoring failed for {config.plugin_id}: {e}")

    def _apply_retention(self, plugin: Plugin) -> int:
        policy = plugin.retention_policy()
        plugin_id = plugin.descriptor.id
        if policy.kind == "count":
            return self.store.headlines.delete_keep_latest(plugin_id, policy.value)
        if policy.kind == "duration":
            return self.store.headlines.delete_older_than(plugin_id, policy.value)
        return 0

    # ------------------------------------------------------------------
    # Health and stats
    # ------------------------------------------------------------------

    async def check_health(self, plugin_id: str) -> HealthStatus:
        """Run a plugin's health check; failures become unhealthy results.

        Raises:
            PluginNotFoundError: If no plugin has this id
        """
        plugin = self._require_plugin(plugin_id)
        try:
            return await plugin.health_check()
        except Exception as e:
            return HealthStatus(healthy=False, message=str(e) or "Health check failed")

    async def check_all_health(self) -> Dict[str, HealthStatus]:
        return {plugin_id: await self.check_health(plugin_id) for plugin_id in self.registry.ids()}

    def get_stats(self) -> Dict[str, int]:
        """Aggregate plugin and headline counts."""
        configs = self.applied_configs()
        enabled = [
            pid for pid, c in configs.items() if c.enabled and pid in self.registry
        ]
        return {
            "total_plugins": len(self.registry),
            "enabled_plugins": len(enabled),
            "initialized_plugins": len(self._initialized),
            "total_headlines": self.store.headlines.count(),
        }

    def _require_plugin(self, plugin_id: str) -> Plugin:
        plugin = self.registry.get(plugin_id)
        if plugin is None:
            raise PluginNotFoundError(plugin_id)
        return plugin

    def _require_enabled_config(self, plugin_id: str) -> PluginRuntimeConfig:
        config = self.get_plugin_config(plugin_id)
        if config is None or not config.enabled:
            raise PluginNotEnabledError(plugin_id)
        return config

    def _lock_for(self, plugin_id: str) -> asyncio.Lock:
        lock = self._locks.get(plugin_id)
        if lock is None:
            lock = self._locks[plugin_id] = asyncio.Lock()
        return lock
