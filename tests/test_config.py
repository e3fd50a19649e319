"""
Tests for configuration management.

Tests the Config class and configuration loading from files and environment variables.
"""

from pathlib import Path

import pytest

from cardtasks.config import DEFAULT_DATABASE_URL, DEFAULT_LOCK_TIMEOUT, Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove cardtasks environment overrides for every test."""
    for name in ("CARDTASKS_DATABASE_URL", "CARDTASKS_DATABASE_ECHO",
                 "CARDTASKS_LOCK_TIMEOUT", "CARDTASKS_NOTIFY_ENABLED"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("""
[database]
url = sqlite+aiosqlite:///tmp/board.db
echo = true

[engine]
lock_timeout = 2.5
notify_enabled = false
""")
    return path


class TestConfig:
    """Tests for Config class."""

    def test_default_config_path(self):
        """Test default config path is ~/.cardtasks/config.ini."""
        config = Config()
        assert config.config_path == Path.home() / ".cardtasks" / "config.ini"

    def test_custom_config_path(self, tmp_path):
        custom_path = tmp_path / "custom.ini"
        config = Config(custom_path)
        assert config.config_path == custom_path

    def test_missing_config_file_uses_defaults(self, tmp_path):
        config = Config(tmp_path / "nonexistent.ini")

        assert config.get_database_config() == {'url': DEFAULT_DATABASE_URL, 'echo': False}
        assert config.get_engine_config() == {
            'lock_timeout': DEFAULT_LOCK_TIMEOUT,
            'notify_enabled': True,
        }

    def test_config_file_parsing(self, config_file):
        config = Config(config_file)

        assert config.get_database_config() == {
            'url': 'sqlite+aiosqlite:///tmp/board.db',
            'echo': True,
        }
        assert config.get_engine_config() == {'lock_timeout': 2.5, 'notify_enabled': False}

    def test_environment_overrides(self, config_file, monkeypatch):
        """Test environment variables take precedence over the file."""
        monkeypatch.setenv("CARDTASKS_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        monkeypatch.setenv("CARDTASKS_DATABASE_ECHO", "false")
        monkeypatch.setenv("CARDTASKS_LOCK_TIMEOUT", "0.5")
        monkeypatch.setenv("CARDTASKS_NOTIFY_ENABLED", "TRUE")

        config = Config(config_file)

        assert config.get_database_config() == {'url': 'sqlite+aiosqlite:///:memory:', 'echo': False}
        assert config.get_engine_config() == {'lock_timeout': 0.5, 'notify_enabled': True}

    def test_get_with_fallback(self, config_file):
        config = Config(config_file)

        assert config.get('engine', 'lock_timeout') == '2.5'
        assert config.get('engine', 'missing', fallback='x') == 'x'
        assert config.get('nope', 'key') is None

    def test_invalid_lock_timeout_env_uses_default(self, config_file, monkeypatch):
        monkeypatch.setenv("CARDTASKS_LOCK_TIMEOUT", "abc")

        config = Config(config_file)
        assert config.get_engine_config()['lock_timeout'] == DEFAULT_LOCK_TIMEOUT

    def test_invalid_lock_timeout_in_file_uses_default(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[engine]\nlock_timeout = soon\n")

        config = Config(path)
        assert config.get_engine_config()['lock_timeout'] == DEFAULT_LOCK_TIMEOUT

    def test_malformed_file_uses_defaults(self, tmp_path):
        path = tmp_path / "broken.ini"
        path.write_text("this is not an ini file\n")

        config = Config(path)
        assert config.get_engine_config()['lock_timeout'] == DEFAULT_LOCK_TIMEOUT
