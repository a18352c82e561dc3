"""Plugin configuration database model.

Stores the runtime configuration of each plugin as last applied from the
config file, together with its run-state (last run time and last error).
"""

from sqlalchemy import Boolean, Column, Float, String, Text

from topix.server.database.session import Base
from topix.server.database.types import UTCDateTime, utcnow


class PluginConfigRecord(Base):
    """Plugin runtime configuration model.

    Attributes:
        plugin_id: Unique plugin identifier
        enabled: Whether plugin is currently enabled
        schedule: Cron expression
        config: JSON string with plugin-specific configuration
        llm_enabled: Whether importance scoring may use the LLM
        base_weight: Importance multiplier (0.0 - 2.0)
        threshold: Minimum importance score (0.0 - 1.0)
        importance_rules: JSON array of {condition, weight}
        last_run: Timestamp of the last successful fetch
        last_error: Message of the last failure, cleared on success
        updated_at: Timestamp when config was last modified
    """

    __tablename__ = "plugin_configs"

    plugin_id = Column(String, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    schedule = Column(String, nullable=False)
    config = Column(Text, nullable=False, default="{}")  # JSON string
    llm_enabled = Column(Boolean, nullable=False, default=True)
    base_weight = Column(Float, nullable=False, default=1.0)
    threshold = Column(Float, nullable=False, default=0.5)
    importance_rules = Column(Text, nullable=False, default="[]")  # JSON string
    last_run = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        """String representation for debugging.

        Returns:
            Formatted string with plugin config details
        """
        return (
            f"<PluginConfigRecord(plugin={self.plugin_id}, "
            f"enabled={self.enabled}, schedule={self.schedule!r})>"
        )
