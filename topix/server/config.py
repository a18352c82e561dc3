"""Configuration management for the Topix service.

This module handles process-level settings loaded from environment variables,
providing sensible defaults for a single-user local installation. The
user-editable feed/plugin configuration lives in the YAML config file and is
handled by ``topix.server.services.config_manager``.
"""

import logging
import os
from pathlib import Path

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process configuration settings.

    Attributes:
        app_name: Application name
        version: Application version
        debug: Debug mode flag
        data_dir: Directory holding the database, config file and markers
        host: HTTP listener host address
        port: HTTP listener port number
        config_debounce_ms: Quiet window before a config file change is applied
        stop_timeout_seconds: Bounded wait used while stopping the service
        keyring_service: Namespace used for entries in the OS keyring
        watch_force_polling: Poll the config file instead of using OS events
        log_to_file: Also write logs to <data_dir>/logs/topix.log
    """

    app_name: str = "Topix"
    version: str = "0.1.0"
    debug: bool = False

    data_dir: str = "~/.topix"

    # HTTP listener
    host: str = "127.0.0.1"
    port: int = 3000

    config_debounce_ms: int = 500
    stop_timeout_seconds: float = 10.0

    keyring_service: str = "com.topix.app"
    watch_force_polling: bool = False
    log_to_file: bool = True

    class Config:
        """Pydantic configuration."""
        env_prefix = "TOPIX_"
        case_sensitive = False

    def get_data_dir(self) -> Path:
        """Get expanded data directory as Path object.

        Returns:
            Resolved data directory path
        """
        return Path(os.path.expanduser(self.data_dir))

    @property
    def database_path(self) -> Path:
        return self.get_data_dir() / "topix.db"

    @property
    def database_url(self) -> str:
        """Get SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        return f"sqlite:///{self.database_path}"

    @property
    def config_path(self) -> Path:
        return self.get_data_dir() / "config.yaml"

    @property
    def plugins_dir(self) -> Path:
        return self.get_data_dir() / "plugins"

    @property
    def log_dir(self) -> Path:
        return self.get_data_dir() / "logs"

    @property
    def pid_file(self) -> Path:
        return self.get_data_dir() / "topix.pid"

    @property
    def status_file(self) -> Path:
        return self.get_data_dir() / "topix.status.json"

    def ensure_data_dir(self) -> Path:
        """Create the data directory and its subdirectories if needed.

        Returns:
            The data directory path
        """
        data_dir = self.get_data_dir()
        for path in (data_dir, self.plugins_dir, self.log_dir):
            if not path.exists():
                path.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created directory: {path}")
        return data_dir


# Default settings instance, used by the CLI entry point
settings = Settings()
