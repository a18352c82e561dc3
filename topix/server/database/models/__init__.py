"""Database models for the Headline Store.

Models:
    HeadlineRecord: Headlines produced by plugin fetches
    PluginConfigRecord: Applied plugin runtime configuration and run-state
    CredentialRecord: Credential metadata (and fallback secrets)
    UserPreference: Mirror of the applied preference sections
"""

from .credential import CredentialRecord
from .headline import HeadlineRecord
from .plugin_config import PluginConfigRecord
from .preference import UserPreference

__all__ = [
    "HeadlineRecord",
    "PluginConfigRecord",
    "CredentialRecord",
    "UserPreference",
]
