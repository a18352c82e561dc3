"""Plugin contract, registry and runtime."""

from topix.server.plugins.base import BasePlugin, FetchContext, Plugin
from topix.server.plugins.types import (
    AuthField,
    AuthRequirement,
    Headline,
    HealthStatus,
    ImportanceConfig,
    ImportanceRule,
    PluginDescriptor,
    PluginRuntimeConfig,
    RetentionPolicy,
    ValidationResult,
)

__all__ = [
    "AuthField",
    "AuthRequirement",
    "BasePlugin",
    "FetchContext",
    "Headline",
    "HealthStatus",
    "ImportanceConfig",
    "ImportanceRule",
    "Plugin",
    "PluginDescriptor",
    "PluginRuntimeConfig",
    "RetentionPolicy",
    "ValidationResult",
]
