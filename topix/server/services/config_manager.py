"""Configuration manager for the YAML config file.

Holds the validated in-memory ``ConfigDocument``. Readers get copies; every
mutator validates the updated document and persists it atomically before
the in-memory document is replaced.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from topix.server.exceptions import ConfigValidationError
from topix.server.plugins.types import PluginRuntimeConfig
from topix.server.services.config_document import (
    ConfigDocument,
    default_document,
    dump_document,
    load_document,
    validate_document,
)

logger = logging.getLogger(__name__)

LLM_PROVIDERS = ("ollama", "openrouter", "none")


class ConfigManager:
    """Manages user preferences and plugin configuration from the config file.

    Example:
        >>> manager = ConfigManager(Path("~/.topix/config.yaml").expanduser())
        >>> manager.set_preference("feed.title", "Morning Brief")
        >>> manager.get_feed_config()["title"]
        'Morning Brief'
    """

    def __init__(self, path: Path):
        """Load the config file.

        A missing file yields the defaults; an invalid file yields the
        defaults and logs every validation error.

        Args:
            path: Path of the YAML config file
        """
        self.path = Path(path)
        self._document = self._load_initial()

    def _load_initial(self) -> ConfigDocument:
        if not self.path.exists():
            logger.info(f"Config file {self.path} not found, using defaults")
            return default_document()
        try:
            return load_document(self.path)
        except ConfigValidationError as e:
            for error in e.errors:
                logger.error(f"Invalid config: {error}")
            logger.error("Using default configuration")
            return default_document()

    @property
    def document(self) -> ConfigDocument:
        """A copy of the current document."""
        return self._document.model_copy(deep=True)

    def reload(self) -> ConfigDocument:
        """Reload the config file.

        The new document only takes effect when it validates. A missing file
        keeps the current document.

        Returns:
            The current document after reloading

        Raises:
            ConfigValidationError: If the file is invalid (current document kept)
        """
        if not self.path.exists():
            logger.warning(f"Config file {self.path} not found, keeping current configuration")
            return self.document

        self._document = load_document(self.path)
        logger.info("Configuration reloaded from file")
        return self.document

    def _apply(self, raw: Dict[str, Any]) -> None:
        """Validate, persist and swap in an updated document."""
        document = validate_document(raw)
        dump_document(document, self.path)
        self._document = document

    def _raw(self) -> Dict[str, Any]:
        return self._document.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self) -> Dict[str, Any]:
        """Get feed, importance and llm sections."""
        return self._document.preferences()

    def set_preferences(self, prefs: Dict[str, Any]) -> None:
        """Replace the preference sections given in ``prefs``.

        Raises:
            ConfigValidationError: If the resulting document is invalid
        """
        raw = self._raw()
        for section in ("feed", "importance", "llm"):
            if section in prefs:
                raw[section] = prefs[section]
        self._apply(raw)
        logger.info("Updated user preferences")

    def get_preference(self, path: str) -> Any:
        """Get a preference value by dotted path, e.g. ``feed.title``.

        Returns:
            The value, or None if the path does not exist
        """
        value: Any = self.get_preferences()
        for part in path.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return None
        return value

    def set_preference(self, path: str, value: Any) -> None:
        """Set a preference value by dotted path, e.g. ``llm.provider``.

        Raises:
            ValueError: If the path is empty
            ConfigValidationError: If the resulting document is invalid
        """
        parts = [p for p in path.split(".") if p]
        if not parts:
            raise ValueError("Invalid preference path")

        prefs = self.get_preferences()
        current = prefs
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value
        self.set_preferences(prefs)

    def get_feed_config(self) -> Dict[str, Any]:
        return self.get_preferences()["feed"]

    def set_feed_config(self, config: Dict[str, Any]) -> None:
        self._merge_section("feed", config)

    def get_importance_config(self) -> Dict[str, Any]:
        return self.get_preferences()["importance"]

    def set_importance_config(self, config: Dict[str, Any]) -> None:
        self._merge_section("importance", config)

    def get_llm_config(self) -> Dict[str, Any]:
        return self.get_preferences()["llm"]

    def set_llm_config(self, config: Dict[str, Any]) -> None:
        self._merge_section("llm", config)

    def set_llm_provider(self, provider: str) -> None:
        """Select the LLM provider (ollama, openrouter or none)."""
        self._merge_section("llm", {"provider": provider})

    def _merge_section(self, section: str, partial: Dict[str, Any]) -> None:
        prefs = self.get_preferences()
        prefs[section] = {**prefs[section], **partial}
        self.set_preferences({section: prefs[section]})

    def reset_to_defaults(self) -> None:
        """Reset the preference sections to defaults. Plugin configuration is kept."""
        self.set_preferences(default_document().preferences())
        logger.info("Reset preferences to defaults")

    def export_config(self) -> str:
        """Export preferences as a JSON string."""
        return json.dumps(self.get_preferences(), indent=2)

    def import_config(self, data: str) -> None:
        """Import preferences from a JSON string.

        Raises:
            ValueError: If the string is not a JSON object
            ConfigValidationError: If the imported preferences are invalid
        """
        try:
            prefs = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to import configuration: {e}") from e
        if not isinstance(prefs, dict):
            raise ValueError("Failed to import configuration: expected a JSON object")
        self.set_preferences(prefs)
        logger.info("Imported configuration")

    def get_summary(self) -> Dict[str, Any]:
        document = self._document
        return {
            "feed_title": document.feed.title,
            "llm_provider": document.llm.provider,
            "importance_threshold": document.importance.default_threshold,
            "plugins_configured": len(document.plugins),
            "plugins_enabled": sum(1 for p in document.plugins.values() if p.enabled),
        }

    def get_full_config(self) -> Dict[str, Any]:
        return self._raw()

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def get_plugin_configs(self) -> Dict[str, PluginRuntimeConfig]:
        return self._document.plugin_runtime_configs()

    def get_plugin_config(self, plugin_id: str) -> Optional[PluginRuntimeConfig]:
        entry = self._document.plugins.get(plugin_id)
        return entry.to_runtime_config(plugin_id) if entry else None

    def set_plugin_config(self, plugin_id: str, config: Dict[str, Any]) -> None:
        """Merge ``config`` into the entry of a plugin (created if missing).

        Args:
            plugin_id: Plugin identifier
            config: Entry fields (enabled, schedule, config, importance)

        Raises:
            ConfigValidationError: If the resulting document is invalid
        """
        raw = self._raw()
        entry = copy.deepcopy(raw["plugins"].get(plugin_id, {}))
        entry.update(config)
        raw["plugins"][plugin_id] = entry
        self._apply(raw)
        logger.info(f"Updated config for plugin {plugin_id}")

    def remove_plugin_config(self, plugin_id: str) -> bool:
        raw = self._raw()
        if plugin_id not in raw["plugins"]:
            return False
        del raw["plugins"][plugin_id]
        self._apply(raw)
        logger.info(f"Removed config for plugin {plugin_id}")
        return True
