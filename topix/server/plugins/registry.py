"""Plugin discovery and registration.

Scans the built-in ``topix.plugins`` package and the user plugin directory
for plugin classes, validates each candidate against the plugin contract and
keeps the accepted instances in a lookup map keyed by plugin id.
"""

import importlib
import importlib.util
import inspect
import logging
import pkgutil
import sys
from pathlib import Path
from types import ModuleType
from typing import Dict, List, Optional

from topix.server.plugins.base import Plugin, missing_contract_members
from topix.server.plugins.types import PluginDescriptor

logger = logging.getLogger(__name__)

BUILTIN_PACKAGE = "topix.plugins"


class PluginRegistry:
    """Lookup map of loaded plugins keyed by id.

    Discovery never aborts: invalid candidates, import errors and id
    collisions are logged and skipped.
    """

    def __init__(self, plugins_dir: Optional[Path] = None, builtin_package: Optional[str] = BUILTIN_PACKAGE):
        """Initialize plugin registry.

        Args:
            plugins_dir: User plugin directory to scan (``*.py`` files)
            builtin_package: Package holding built-in plugins (None to skip)
        """
        self.plugins_dir = plugins_dir
        self.builtin_package = builtin_package
        self._plugins: Dict[str, Plugin] = {}
        self._builtin_ids: set = set()

    def register(self, plugin: Plugin, builtin: bool = False) -> bool:
        """Register a plugin instance after validating the contract.

        Args:
            plugin: Plugin instance
            builtin: Whether the plugin ships with Topix

        Returns:
            True if registered, False if rejected
        """
        missing = missing_contract_members(plugin)
        if missing:
            logger.warning(
                f"Rejected plugin {type(plugin).__name__}: missing contract members {missing}"
            )
            return False

        plugin_id = plugin.descriptor.id
        if plugin_id in self._plugins:
            if plugin_id in self._builtin_ids and not builtin:
                logger.warning(f"User plugin {plugin_id} collides with a built-in plugin, skipping")
            else:
                logger.warning(f"Plugin {plugin_id} already registered")
            return False

        self._plugins[plugin_id] = plugin
        if builtin:
            self._builtin_ids.add(plugin_id)
        logger.info(f"Registered plugin: {plugin_id} ({plugin.descriptor.name} v{plugin.descriptor.version})")
        return True

    def discover(self) -> int:
        """Discover and register built-in and user plugins.

        Built-ins are registered first so they win id collisions.

        Returns:
            Number of plugins registered by this call
        """
        registered = 0
        for module in self._builtin_modules():
            registered += self._register_module(module, builtin=True)
        for module in self._user_modules():
            registered += self._register_module(module, builtin=False)
        logger.info(f"Loaded {registered} plugins")
        return registered

    def get(self, plugin_id: str) -> Optional[Plugin]:
        return self._plugins.get(plugin_id)

    def list_plugins(self) -> List[Plugin]:
        return list(self._plugins.values())

    def ids(self) -> List[str]:
        return list(self._plugins)

    def is_builtin(self, plugin_id: str) -> bool:
        return plugin_id in self._builtin_ids

    def __contains__(self, plugin_id: object) -> bool:
        return plugin_id in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    def _builtin_modules(self) -> List[ModuleType]:
        if not self.builtin_package:
            return []
        try:
            package = importlib.import_module(self.builtin_package)
        except Exception as e:
            logger.error(f"Failed to import built-in plugin package {self.builtin_package}: {e}")
            return []

        modules = []
        for info in pkgutil.iter_modules(package.__path__):
            if info.name.startswith("_"):
                continue
            name = f"{self.builtin_package}.{info.name}"
            try:
                modules.append(importlib.import_module(name))
            except Exception as e:
                logger.error(f"Failed to import built-in plugin {name}: {e}", exc_info=True)
        return modules

    def _user_modules(self) -> List[ModuleType]:
        if self.plugins_dir is None or not self.plugins_dir.exists():
            logger.info(f"Plugins directory {self.plugins_dir} does not exist")
            return []

        modules = []
        for plugin_file in sorted(self.plugins_dir.glob("*.py")):
            if plugin_file.name.startswith("_"):
                continue
            module_name = f"topix_user_plugins.{plugin_file.stem}"
            try:
                spec = importlib.util.spec_from_file_location(module_name, plugin_file)
                if spec and spec.loader:
                    module = importlib.util.module_from_spec(spec)
                    sys.modules[module_name] = module
                    spec.loader.exec_module(module)
                    modules.append(module)
            except Exception as e:
                sys.modules.pop(module_name, None)
                logger.error(f"Failed to import plugin from {plugin_file}: {e}", exc_info=True)
        return modules

    def _register_module(self, module: ModuleType, builtin: bool) -> int:
        registered = 0
        for _, cls in inspect.getmembers(module, inspect.isclass):
            if cls.__module__ != module.__name__:
                continue
            if not isinstance(getattr(cls, "descriptor", None), PluginDescriptor):
                continue
            if inspect.isabstract(cls):
                logger.warning(f"Plugin class {cls.__name__} is abstract, skipping")
                continue
            try:
                plugin = cls()
            except Exception as e:
                logger.error(f"Failed to instantiate plugin {cls.__name__}: {e}", exc_info=True)
                continue
            if self.register(plugin, builtin=builtin):
                registered += 1
        return registered
