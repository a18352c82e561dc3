"""
Exception classes for the Topix service.

This module defines the exception hierarchy shared by the plugin runtime,
configuration layer and service lifecycle controller.
"""

from typing import List, Optional


class TopixError(Exception):
    """Base exception for all Topix service errors."""

    pass


class PluginNotFoundError(TopixError):
    """No loaded plugin has the requested id."""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"Plugin {plugin_id} not found")


class PluginNotEnabledError(TopixError):
    """Plugin is loaded but has no configuration or is disabled."""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"Plugin {plugin_id} is not enabled")


class PluginExecutionError(TopixError):
    """Plugin failed while initializing or fetching headlines."""

    def __init__(self, plugin_id: str, message: str):
        self.plugin_id = plugin_id
        self.message = message
        super().__init__(f"Plugin {plugin_id} failed: {message}")


class FetchInProgressError(TopixError):
    """A fetch for the plugin is already running; the trigger was coalesced."""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"Fetch already in progress for plugin {plugin_id}")


class ConfigValidationError(TopixError):
    """Configuration document failed structural validation."""

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message or f"Invalid configuration ({len(self.errors)} errors)")


class LLMError(TopixError):
    """Text generation request failed or no provider is configured."""

    pass


class ServiceError(TopixError):
    """Service lifecycle operation failed."""

    pass


class ServiceAlreadyRunningError(ServiceError):
    """Service is already running in this or another process."""

    pass


class PortInUseError(ServiceError):
    """HTTP listener could not bind its port."""

    pass
