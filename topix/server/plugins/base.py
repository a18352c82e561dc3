"""Plugin contract for Topix data sources.

Defines the interface every data-source plugin satisfies. The runtime only
relies on the ``Plugin`` protocol; ``BasePlugin`` is a convenience base class
supplying sensible defaults so a plugin only has to provide a descriptor and
``fetch``.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from topix.server.plugins.types import (
    AuthRequirement,
    Headline,
    HealthStatus,
    PluginDescriptor,
    PluginRuntimeConfig,
    RetentionPolicy,
    ValidationResult,
)

logger = logging.getLogger(__name__)

# Members a candidate must expose to be accepted by the registry
CONTRACT_MEMBERS = (
    "descriptor",
    "initialize",
    "shutdown",
    "fetch",
    "describe_config_schema",
    "validate_config",
    "describe_auth_requirement",
    "health_check",
    "retention_policy",
)

HistoryQuery = Callable[..., List[Headline]]


class FetchContext:
    """Context object passed to ``Plugin.fetch``.

    Attributes:
        plugin_id: Id of the plugin being fetched
        config: Plugin-specific configuration payload
        last_run: Time of the previous successful fetch
        credentials: Stored credential payload, if the plugin needs one
    """

    def __init__(
        self,
        plugin_id: str,
        config: Optional[Dict[str, Any]] = None,
        last_run: Optional[datetime] = None,
        credentials: Optional[Dict[str, Any]] = None,
        history: Optional[HistoryQuery] = None,
    ):
        self.plugin_id = plugin_id
        self.config = config or {}
        self.last_run = last_run
        self.credentials = credentials
        self._history = history

    def get_history(
        self, limit: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[Headline]:
        """Previously stored headlines of this plugin, newest first.

        Args:
            limit: Maximum number of headlines
            since: Only headlines published at or after this time

        Returns:
            List of headlines (empty when no store is attached)
        """
        if self._history is None:
            return []
        return self._history(self.plugin_id, limit=limit, since=since)


@runtime_checkable
class Plugin(Protocol):
    """Structural interface every data-source plugin satisfies."""

    descriptor: PluginDescriptor

    async def initialize(self, config: PluginRuntimeConfig) -> None: ...

    async def shutdown(self) -> None: ...

    async def fetch(self, context: FetchContext) -> List[Headline]: ...

    def describe_config_schema(self) -> Dict[str, Any]: ...

    def validate_config(self, raw: Any) -> ValidationResult: ...

    def describe_auth_requirement(self) -> Optional[AuthRequirement]: ...

    async def health_check(self) -> HealthStatus: ...

    def retention_policy(self) -> RetentionPolicy: ...


def missing_contract_members(candidate: Any) -> List[str]:
    """List contract members a plugin candidate lacks.

    Args:
        candidate: Plugin instance to inspect

    Returns:
        Names of missing (or non-callable) members; empty when compliant
    """
    missing = []
    for name in CONTRACT_MEMBERS:
        try:
            value = getattr(candidate, name)
        except Exception:
            missing.append(name)
            continue
        if name == "descriptor":
            if not isinstance(value, PluginDescriptor):
                missing.append(name)
        elif not callable(value):
            missing.append(name)
    return missing


class BasePlugin(ABC):
    """Base class for data-source plugins.

    Subclasses set ``descriptor`` and implement ``fetch``. Lifecycle hooks,
    schema validation, health and retention have overridable defaults.

    Example:
        >>> class MyPlugin(BasePlugin):
        >>>     descriptor = PluginDescriptor(
        >>>         id="my_plugin", name="My Plugin", version="1.0.0", author="me"
        >>>     )
        >>>
        >>>     async def fetch(self, context: FetchContext) -> List[Headline]:
        >>>         return [Headline.create(self.descriptor.id, "Hello")]
    """

    descriptor: PluginDescriptor

    def __init__(self) -> None:
        self.config: Optional[PluginRuntimeConfig] = None

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.name

    async def initialize(self, config: PluginRuntimeConfig) -> None:
        """Prepare the plugin for fetching.

        Override to open connections or load resources keyed to the config.
        The default validates the config payload and keeps a reference to it.

        Args:
            config: Runtime configuration of this plugin

        Raises:
            ValueError: If the config payload is invalid
        """
        result = self.validate_config(config.config)
        if not result.valid:
            raise ValueError(f"Invalid config: {', '.join(result.errors)}")
        self.config = config

    async def shutdown(self) -> None:
        """Release resources acquired in ``initialize``."""
        self.config = None

    @abstractmethod
    async def fetch(self, context: FetchContext) -> List[Headline]:
        """Fetch new headlines.

        Args:
            context: Fetch context with config, credentials and history

        Returns:
            Headlines produced by this fetch

        Raises:
            Exception: Any exception is recorded as the plugin's last error
        """
        pass

    def describe_config_schema(self) -> Dict[str, Any]:
        """Get the schema of the plugin config payload.

        Returns:
            ``{"type": "object", "properties": {...}, "required": [...]}``
        """
        return {"type": "object", "properties": {}, "required": []}

    def validate_config(self, raw: Any) -> ValidationResult:
        """Validate a config payload against ``describe_config_schema``.

        Checks the payload is a mapping, required keys are present, declared
        types match and enum values are respected.

        Args:
            raw: Config payload to validate

        Returns:
            ValidationResult listing every problem found
        """
        if not isinstance(raw, dict):
            return ValidationResult(valid=False, errors=["Config must be an object"])

        schema = self.describe_config_schema()
        properties = schema.get("properties", {})
        errors = [f"Missing required field: {name}" for name in schema.get("required", []) if name not in raw]

        for name, prop in properties.items():
            if name not in raw:
                continue
            value = raw[name]
            expected = prop.get("type")
            if expected and not _matches_type(value, expected):
                errors.append(f"Field {name} must be of type {expected}")
            elif "enum" in prop and value not in prop["enum"]:
                errors.append(f"Field {name} must be one of {prop['enum']}")

        return ValidationResult(valid=not errors, errors=errors)

    def describe_auth_requirement(self) -> Optional[AuthRequirement]:
        return None

    async def health_check(self) -> HealthStatus:
        """Report plugin health; initialized plugins are healthy by default."""
        if self.config is None:
            return HealthStatus(healthy=False, message="Plugin not initialized")
        return HealthStatus(healthy=True, message="OK")

    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy.unlimited()

    def config_value(self, key: str, default: Any = None) -> Any:
        """Get a config payload value, falling back to the schema default."""
        if self.config is not None and key in self.config.config:
            return self.config.config[key]
        prop = self.describe_config_schema().get("properties", {}).get(key, {})
        return prop.get("default", default)


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def _matches_type(value: Any, expected: str) -> bool:
    check = _TYPE_CHECKS.get(expected)
    return check(value) if check else True
