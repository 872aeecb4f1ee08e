"""
Tests for the INI-backed configuration.
"""

from unittest.mock import patch

import pytest

from quest_tracker.config import ConfigManager, ConfigSection
from quest_tracker.constants import DEFAULT_LOADED_STATUSES, GameStatus


@pytest.fixture
def fresh_config(tmp_path):
    """A ConfigManager reading from a temp config.ini, restoring the shared instance afterwards"""
    config_file = tmp_path / "config.ini"
    previous = ConfigManager._instance
    with patch('quest_tracker.config.get_config_path', return_value=str(config_file)):
        ConfigManager._instance = None
        yield ConfigManager()
    ConfigManager._instance = previous


class TestConfigManager:

    def test_defaults(self, fresh_config):
        assert fresh_config.get_pool_size() == 3
        assert fresh_config.get_persistence_timeout() == 5.0
        assert fresh_config.get_strict_invariants() is False
        assert fresh_config.get_default_statuses() == list(DEFAULT_LOADED_STATUSES)
        assert fresh_config.get_db_path().name == "games.db"

    def test_setters_persist(self, fresh_config, tmp_path):
        fresh_config.set_db_path(str(tmp_path / "other.db"))
        fresh_config.set_strict_invariants(True)
        fresh_config.set_persistence_timeout(1.5)

        assert (tmp_path / "config.ini").exists()
        assert fresh_config.get_db_path() == tmp_path / "other.db"
        assert fresh_config.get_strict_invariants() is True
        assert fresh_config.get_persistence_timeout() == 1.5

    def test_non_positive_timeout_rejected(self, fresh_config):
        fresh_config[ConfigSection.SYNC]["PersistenceTimeoutSeconds"] = "0"
        with pytest.raises(ValueError):
            fresh_config.get_persistence_timeout()

    def test_unknown_default_status_skipped(self, fresh_config):
        fresh_config[ConfigSection.LIBRARY]["DefaultStatuses"] = "backlog, wishlist ,dropped"
        assert fresh_config.get_default_statuses() == [GameStatus.BACKLOG, GameStatus.DROPPED]

    def test_existing_file_values_win(self, tmp_path):
        config_file = tmp_path / "config.ini"
        config_file.write_text("[Database]\nPoolSize = 7\n")
        previous = ConfigManager._instance
        try:
            with patch('quest_tracker.config.get_config_path', return_value=str(config_file)):
                ConfigManager._instance = None
                config = ConfigManager()
            assert config.get_pool_size() == 7
            assert config.get_persistence_timeout() == 5.0
        finally:
            ConfigManager._instance = previous
