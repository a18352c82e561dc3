"""Core value types shared by plugins, the runtime and the store.

Plugins produce ``Headline`` objects and describe themselves with a
``PluginDescriptor``, a config schema, an optional ``AuthRequirement`` and a
``RetentionPolicy``. The runtime pairs each plugin with a
``PluginRuntimeConfig`` built from the config file.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

AUTH_TYPES = ("oauth2", "apikey", "basic", "custom")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PluginDescriptor:
    """Static plugin identity.

    Attributes:
        id: Unique plugin id (lookup key)
        name: Display name
        version: Plugin version
        author: Plugin author
        description: What the plugin fetches
    """

    id: str
    name: str
    version: str
    author: str
    description: str = ""


@dataclass(frozen=True)
class RetentionPolicy:
    """How many headlines a plugin keeps after each successful fetch.

    Tagged variant: ``count`` keeps the N most recent by publication time,
    ``duration`` keeps headlines newer than now minus ``value`` hours,
    ``unlimited`` keeps everything.
    """

    kind: str
    value: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind not in ("count", "duration", "unlimited"):
            raise ValueError(f"Unknown retention policy kind: {self.kind}")
        if self.kind != "unlimited" and (self.value is None or self.value < 0):
            raise ValueError(f"Retention policy {self.kind} needs a non-negative value")

    @classmethod
    def count(cls, n: int) -> "RetentionPolicy":
        return cls("count", n)

    @classmethod
    def duration(cls, hours: int) -> "RetentionPolicy":
        return cls("duration", hours)

    @classmethod
    def unlimited(cls) -> "RetentionPolicy":
        return cls("unlimited")

    def describe(self) -> str:
        if self.kind == "count":
            return f"keep last {self.value}"
        if self.kind == "duration":
            return f"keep last {self.value}h"
        return "unlimited"


@dataclass
class ValidationResult:
    """Result of validating a raw plugin configuration."""

    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class HealthStatus:
    """Plugin health check result."""

    healthy: bool
    message: Optional[str] = None
    last_checked: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class AuthField:
    """One credential input a plugin needs (e.g. an API key)."""

    name: str
    type: str  # "text" | "password" | "url"
    label: str
    required: bool = True
    default: Optional[str] = None


@dataclass(frozen=True)
class AuthRequirement:
    """Authentication a plugin needs before it can fetch."""

    type: str
    description: str
    fields: List[AuthField] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.type not in AUTH_TYPES:
            raise ValueError(f"Unknown auth type: {self.type}")


@dataclass(frozen=True)
class ImportanceRule:
    """Weighting rule, e.g. ``title contains 'urgent'`` with weight 1.5."""

    condition: str
    weight: float


@dataclass(frozen=True)
class ImportanceConfig:
    """Per-plugin importance weighting parameters."""

    llm_enabled: bool = True
    base_weight: float = 1.0
    threshold: float = 0.5
    rules: List[ImportanceRule] = field(default_factory=list)


@dataclass
class PluginRuntimeConfig:
    """Mutable runtime configuration of one plugin.

    Attributes:
        plugin_id: Plugin identifier
        enabled: Whether the plugin should be initialized and scheduled
        schedule: Cron expression
        config: Plugin-specific configuration payload
        importance: Importance weighting parameters
        last_run: Timestamp of the last successful fetch
        last_error: Message of the last failure
    """

    plugin_id: str
    enabled: bool
    schedule: str
    config: Dict[str, Any] = field(default_factory=dict)
    importance: ImportanceConfig = field(default_factory=ImportanceConfig)
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None

    def same_settings(self, other: "PluginRuntimeConfig") -> bool:
        """Whether plugin-visible settings (config payload and importance) match."""
        return self.config == other.config and self.importance == other.importance


@dataclass
class Headline:
    """One unit of curated content produced by a plugin fetch.

    Attributes:
        id: Unique identifier
        plugin_id: Source plugin
        title: Headline text (required)
        description: Optional longer description
        link: Optional link to source
        pub_date: Publication/event date
        created_at: When the headline was created
        category: Plugin-defined category
        tags: Searchable tags
        importance_score: 0.0 - 1.0
        importance_reason: Why it's important
        metadata: Plugin-specific data
        read: Marked as read
        starred: Starred by the user
        archived: Removed from the feed
    """

    id: str
    plugin_id: str
    title: str
    pub_date: datetime
    description: Optional[str] = None
    link: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    category: str = "general"
    tags: List[str] = field(default_factory=list)
    importance_score: float = 0.0
    importance_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    read: bool = False
    starred: bool = False
    archived: bool = False

    @classmethod
    def create(cls, plugin_id: str, title: str, **kwargs: Any) -> "Headline":
        """Build a new headline with a fresh id, defaulting pub_date to now."""
        kwargs.setdefault("pub_date", _utcnow())
        return cls(id=str(uuid.uuid4()), plugin_id=plugin_id, title=title, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
