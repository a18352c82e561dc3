"""Data access layer repositories."""

from topix.server.repositories.credential import CredentialRepository
from topix.server.repositories.headline import HeadlineRepository
from topix.server.repositories.plugin_config import PluginConfigRepository
from topix.server.repositories.preference import PreferenceRepository

__all__ = [
    "CredentialRepository",
    "HeadlineRepository",
    "PluginConfigRepository",
    "PreferenceRepository",
]
