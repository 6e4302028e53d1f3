"""Unit tests for configuration validation (pungpung/config.py)"""
import pytest

from pungpung import config
from pungpung.exceptions import ConfigurationError


class TestConfigValidation:
    """Test validate_config against module-level settings"""

    def test_defaults_are_valid(self, monkeypatch):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
        config.validate_config()

    def test_reward_defaults(self):
        """Test the reward constants match the XP economy"""
        assert config.GOAL_AWARD_XP == 10
        assert config.LIKE_XP == 5
        assert config.MISSION_BONUS_XP == 10

    def test_unknown_storage_backend(self, monkeypatch):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "sqlite")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()

        assert exc_info.value.config_key == "STORAGE_BACKEND"

    def test_postgres_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "postgres")
        monkeypatch.setattr(config, "DATABASE_URL", "")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()

        assert exc_info.value.config_key == "DATABASE_URL"

    def test_invalid_timezone(self, monkeypatch):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
        monkeypatch.setattr(config, "LOCAL_TIMEZONE", "Mars/Olympus_Mons")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()

        assert exc_info.value.config_key == "LOCAL_TIMEZONE"

    def test_rewards_must_be_positive(self, monkeypatch):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
        monkeypatch.setattr(config, "LIKE_XP", 0)

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()

        assert exc_info.value.config_key == "LIKE_XP"

    def test_transaction_attempts(self, monkeypatch):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
        monkeypatch.setattr(config, "TRANSACTION_MAX_ATTEMPTS", 0)

        with pytest.raises(ConfigurationError):
            config.validate_config()
