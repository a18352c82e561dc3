"""Repository for plugin configuration operations.

Provides the database access layer for plugin runtime configuration as
applied from the config file, and for the per-plugin run-state.
"""

import json
import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from topix.server.database.models.plugin_config import PluginConfigRecord
from topix.server.database.session import commit_session
from topix.server.database.types import utcnow
from topix.server.plugins.types import ImportanceConfig, ImportanceRule, PluginRuntimeConfig

logger = logging.getLogger(__name__)


class PluginConfigRepository:
    """Repository for managing plugin configuration.

    Configuration fields mirror the config file; ``last_run`` and
    ``last_error`` are owned by the runtime and survive config syncs.
    """

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def upsert(self, config: PluginRuntimeConfig) -> PluginRuntimeConfig:
        """Create or update the configuration of a plugin.

        Run-state already stored for the plugin is preserved.

        Args:
            config: Desired runtime configuration

        Returns:
            Stored configuration including run-state
        """
        record = self.db.get(PluginConfigRecord, config.plugin_id)
        if record is None:
            record = PluginConfigRecord(plugin_id=config.plugin_id)
            self.db.add(record)
            logger.info(f"Created config for plugin {config.plugin_id}")

        record.enabled = config.enabled
        record.schedule = config.schedule
        record.config = json.dumps(config.config)
        record.llm_enabled = config.importance.llm_enabled
        record.base_weight = config.importance.base_weight
        record.threshold = config.importance.threshold
        record.importance_rules = json.dumps(
            [{"condition": r.condition, "weight": r.weight} for r in config.importance.rules]
        )
        record.updated_at = utcnow()

        commit_session(self.db)
        self.db.refresh(record)
        return self._to_config(record)

    def get_config(self, plugin_id: str) -> Optional[PluginRuntimeConfig]:
        """Get plugin configuration by id.

        Args:
            plugin_id: Plugin identifier

        Returns:
            PluginRuntimeConfig or None if not found
        """
        record = self.db.get(PluginConfigRecord, plugin_id)
        return self._to_config(record) if record else None

    def list_configs(self, enabled_only: bool = False) -> List[PluginRuntimeConfig]:
        """List all plugin configurations.

        Args:
            enabled_only: If True, only return enabled plugins

        Returns:
            List of PluginRuntimeConfig instances
        """
        query = self.db.query(PluginConfigRecord)
        if enabled_only:
            query = query.filter(PluginConfigRecord.enabled == True)  # noqa: E712
        return [self._to_config(r) for r in query.order_by(PluginConfigRecord.plugin_id).all()]

    def record_run(self, plugin_id: str, error: Optional[str] = None) -> None:
        """Record the outcome of a fetch or initialization.

        A success sets ``last_run`` and clears ``last_error``; a failure only
        records the error message.

        Args:
            plugin_id: Plugin identifier
            error: Failure message, or None on success
        """
        record = self.db.get(PluginConfigRecord, plugin_id)
        if not record:
            logger.warning(f"Plugin config {plugin_id} not found")
            return

        if error is None:
            record.last_run = utcnow()
            record.last_error = None
        else:
            record.last_error = error
        commit_session(self.db)

    def delete_config(self, plugin_id: str) -> bool:
        """Delete plugin configuration.

        Args:
            plugin_id: Plugin identifier

        Returns:
            True if deleted, False if not found
        """
        record = self.db.get(PluginConfigRecord, plugin_id)
        if not record:
            return False

        self.db.delete(record)
        commit_session(self.db)
        logger.info(f"Deleted config for plugin {plugin_id}")
        return True

    def _to_config(self, record: PluginConfigRecord) -> PluginRuntimeConfig:
        rules = [
            ImportanceRule(condition=str(r.get("condition", "")), weight=float(r.get("weight", 1.0)))
            for r in self._parse(record.importance_rules, [], record.plugin_id)
            if isinstance(r, dict)
        ]
        return PluginRuntimeConfig(
            plugin_id=record.plugin_id,
            enabled=record.enabled,
            schedule=record.schedule,
            config=self._parse(record.config, {}, record.plugin_id),
            importance=ImportanceConfig(
                llm_enabled=record.llm_enabled,
                base_weight=record.base_weight,
                threshold=record.threshold,
                rules=rules,
            ),
            last_run=record.last_run,
            last_error=record.last_error,
        )

    @staticmethod
    def _parse(raw: Optional[str], default: Any, plugin_id: str) -> Any:
        if not raw:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Failed to parse stored config for {plugin_id}")
            return default
