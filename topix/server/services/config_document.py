"""Pydantic models for the YAML configuration file.

The config file holds the feed settings, importance defaults, LLM provider
settings and the per-plugin configuration map. Every section is type and
range checked here before a document may take effect.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from topix.server.exceptions import ConfigValidationError
from topix.server.plugins.types import ImportanceConfig, ImportanceRule, PluginRuntimeConfig

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "*/15 * * * *"

DEFAULT_LLM_PROMPT = """Rate the importance of this headline from 0.0 to 1.0.

Headline: {title}
Description: {description}
Source: {plugin}

Context: {context}

Respond with JSON: {{"score": 0.75, "reason": "Brief explanation"}}"""

FILE_HEADER = """# Topix Configuration
# This file is automatically reloaded when changed while the service is running
# Edit this file to configure plugins and preferences

"""


class FeedSettings(BaseModel):
    """RSS feed settings."""

    title: str = "My Personal Feed"
    description: str = "Curated headlines from multiple sources"
    max_items: int = Field(default=100, ge=1, description="Max items in RSS feed")
    ttl: int = Field(default=60, ge=0, description="Time-to-live in minutes")


class ImportanceSettings(BaseModel):
    """Global importance scoring settings."""

    default_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    context: str = "Your personal context for importance scoring"
    llm_prompt: str = DEFAULT_LLM_PROMPT


class OllamaSettings(BaseModel):
    endpoint: str = "http://localhost:11434"
    model: str = "llama3.2:3b"
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")


class OpenRouterSettings(BaseModel):
    endpoint: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "meta-llama/llama-3.1-8b-instruct"
    api_key: str = ""
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")


class LLMSettings(BaseModel):
    """Text generation provider settings."""

    provider: Literal["ollama", "openrouter", "none"] = "ollama"
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    openrouter: Optional[OpenRouterSettings] = None


class ImportanceRuleEntry(BaseModel):
    condition: str
    weight: float = Field(default=1.0, ge=0.0, le=2.0)


class PluginImportanceEntry(BaseModel):
    """Per-plugin importance overrides."""

    llm_enabled: bool = True
    base_weight: float = Field(default=1.0, ge=0.0, le=2.0)
    threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    rules: List[ImportanceRuleEntry] = Field(default_factory=list)

    @field_validator("rules", mode="before")
    @classmethod
    def none_rules_to_empty(cls, v):
        return [] if v is None else v


class PluginEntry(BaseModel):
    """Configuration of one plugin.

    The schedule is checked when it is installed; an unparseable expression
    keeps the plugin's previous timer.
    """

    enabled: bool = True
    schedule: str = DEFAULT_SCHEDULE
    config: Dict[str, Any] = Field(default_factory=dict)
    importance: PluginImportanceEntry = Field(default_factory=PluginImportanceEntry)

    @field_validator("config", "importance", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return {} if v is None else v

    def to_runtime_config(self, plugin_id: str) -> PluginRuntimeConfig:
        return PluginRuntimeConfig(
            plugin_id=plugin_id,
            enabled=self.enabled,
            schedule=self.schedule,
            config=dict(self.config),
            importance=ImportanceConfig(
                llm_enabled=self.importance.llm_enabled,
                base_weight=self.importance.base_weight,
                threshold=self.importance.threshold,
                rules=[ImportanceRule(r.condition, r.weight) for r in self.importance.rules],
            ),
        )


class ConfigDocument(BaseModel):
    """Complete configuration file structure."""

    feed: FeedSettings = Field(default_factory=FeedSettings)
    importance: ImportanceSettings = Field(default_factory=ImportanceSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    plugins: Dict[str, PluginEntry] = Field(default_factory=dict)

    @field_validator("feed", "importance", "llm", "plugins", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return {} if v is None else v

    def plugin_runtime_configs(self) -> Dict[str, PluginRuntimeConfig]:
        return {pid: entry.to_runtime_config(pid) for pid, entry in self.plugins.items()}

    def preferences(self) -> Dict[str, Any]:
        """The user preference sections (everything except plugins)."""
        return self.model_dump(include={"feed", "importance", "llm"})


def default_document() -> ConfigDocument:
    return ConfigDocument()


def format_validation_errors(error: ValidationError) -> List[str]:
    """Flatten pydantic errors to ``section.field: message`` strings."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        messages.append(f"{location}: {item['msg']}")
    return messages


def validate_document(raw: Any) -> ConfigDocument:
    """Validate a raw (parsed YAML or JSON) document.

    Args:
        raw: Parsed document; None is treated as an empty document

    Returns:
        Validated ConfigDocument

    Raises:
        ConfigValidationError: With every problem found
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigValidationError(["config: Config must be a mapping"])
    try:
        return ConfigDocument.model_validate(raw)
    except ValidationError as e:
        raise ConfigValidationError(format_validation_errors(e)) from e


def load_document(path: Path) -> ConfigDocument:
    """Read and validate the config file.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigValidationError: If the file is not valid YAML or fails validation
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigValidationError([f"config: Invalid YAML: {e}"]) from e
    return validate_document(raw)


def dump_document(document: ConfigDocument, path: Path) -> None:
    """Write the document atomically (temp file in the same directory, then replace).

    Readers of the file never observe a partially written document.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    body = yaml.safe_dump(
        document.model_dump(mode="json"),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=120,
    )

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(FILE_HEADER + body)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.debug(f"Saved configuration to {path}")
