"""
Configuration management for cardtasks.

Loads settings from config.ini with environment variable overrides.
"""

import configparser
import os
from pathlib import Path
from typing import Any, Dict, Optional

from cardtasks.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{Path.home() / '.cardtasks' / 'cardtasks.db'}"
DEFAULT_LOCK_TIMEOUT = 10.0


class Config:
    """Engine configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file, defaults to ~/.cardtasks/config.ini
        """
        self.config_path = config_path or self._default_config_path()
        self._config = configparser.ConfigParser()
        self._load()

    def _default_config_path(self) -> Path:
        """Get default config path."""
        return Path.home() / ".cardtasks" / "config.ini"

    def _load(self):
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                self._config.read(self.config_path)
                logger.info(f"Loaded configuration from {self.config_path}")
            except configparser.Error as e:
                logger.warning(f"Failed to read config file: {e}. Using defaults.")
        else:
            logger.debug(f"Config file not found at {self.config_path}. Using defaults.")

    def get_database_config(self) -> Dict[str, Any]:
        """
        Get database configuration with environment overrides.

        Environment variables take precedence over config file:
        - CARDTASKS_DATABASE_URL
        - CARDTASKS_DATABASE_ECHO

        Returns:
            Dictionary with database configuration
        """
        echo_env = os.getenv('CARDTASKS_DATABASE_ECHO', '').lower()
        config = {
            'url': os.getenv('CARDTASKS_DATABASE_URL') or
                   self._config.get('database', 'url', fallback=DEFAULT_DATABASE_URL),
            'echo': (
                echo_env == 'true'
                if echo_env
                else self._config.getboolean('database', 'echo', fallback=False)
            ),
        }

        logger.debug(f"Database config: url={config['url']}, echo={config['echo']}")

        return config

    def _lock_timeout(self) -> float:
        """Parse the lock timeout, falling back to the default on bad values."""
        raw = os.getenv('CARDTASKS_LOCK_TIMEOUT') or self.get(
            'engine', 'lock_timeout', fallback=str(DEFAULT_LOCK_TIMEOUT)
        )
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Invalid lock_timeout {raw!r}. Using default {DEFAULT_LOCK_TIMEOUT}.")
            return DEFAULT_LOCK_TIMEOUT

    def get_engine_config(self) -> Dict[str, Any]:
        """
        Get task engine configuration with environment overrides.

        Environment variables take precedence over config file:
        - CARDTASKS_LOCK_TIMEOUT (seconds to wait for a card's lock)
        - CARDTASKS_NOTIFY_ENABLED

        Returns:
            Dictionary with engine configuration
        """
        notify_env = os.getenv('CARDTASKS_NOTIFY_ENABLED', '').lower()
        config = {
            'lock_timeout': self._lock_timeout(),
            'notify_enabled': (
                notify_env == 'true'
                if notify_env
                else self._config.getboolean('engine', 'notify_enabled', fallback=True)
            ),
        }

        logger.debug(f"Engine config: lock_timeout={config['lock_timeout']}, "
                     f"notify_enabled={config['notify_enabled']}")

        return config

    def get(self, section: str, key: str, fallback: Any = None) -> Any:
        """
        Get configuration value with fallback.

        Args:
            section: Config section name
            key: Config key name
            fallback: Default value if not found

        Returns:
            Configuration value or fallback
        """
        return self._config.get(section, key, fallback=fallback)

