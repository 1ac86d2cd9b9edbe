"""
Tests for environment-driven configuration.
"""

import pytest
from addrmigrate.config import MigrationConfig
from addrmigrate.retry import exponential_backoff, linear_backoff


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """No .env file and no ADDRMIGRATE_* variables leak into tests."""
    monkeypatch.chdir(tmp_path)
    for name in [
        "DATABASE_URL", "BATCH_SIZE", "MAX_ATTEMPTS", "RETRY_BASE_DELAY",
        "RETRY_MAX_DELAY", "RETRY_BACKOFF", "BATCH_PAUSE", "RESOLVER_URL",
        "RESOLVER_TIMEOUT", "LOG_LEVEL",
    ]:
        monkeypatch.delenv(f"ADDRMIGRATE_{name}", raising=False)


class TestMigrationConfig:
    """Test MigrationConfig loading."""

    def test_defaults(self):
        config = MigrationConfig.from_env()

        assert config.batch_size == 50
        assert config.max_attempts == 3
        assert config.resolver_url is None
        assert config.database_url == "sqlite:///data/orders.db"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ADDRMIGRATE_BATCH_SIZE", "10")
        monkeypatch.setenv("ADDRMIGRATE_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("ADDRMIGRATE_RESOLVER_URL", "https://geo.example.com")
        monkeypatch.setenv("ADDRMIGRATE_LOG_LEVEL", "debug")

        config = MigrationConfig.from_env()

        assert config.batch_size == 10
        assert config.max_attempts == 5
        assert config.resolver_url == "https://geo.example.com"
        assert config.log_level == "DEBUG"

    def test_reads_dotenv_file(self, tmp_path, monkeypatch):
        # Registers the variable with monkeypatch so the value dotenv sets is undone
        monkeypatch.setenv("ADDRMIGRATE_BATCH_SIZE", "1")
        monkeypatch.delenv("ADDRMIGRATE_BATCH_SIZE")
        (tmp_path / ".env").write_text("ADDRMIGRATE_BATCH_SIZE=7\n")

        assert MigrationConfig.from_env().batch_size == 7

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("ADDRMIGRATE_BATCH_SIZE", "lots")
        with pytest.raises(ValueError, match="BATCH_SIZE"):
            MigrationConfig.from_env()

    def test_zero_batch_size_rejected(self, monkeypatch):
        monkeypatch.setenv("ADDRMIGRATE_BATCH_SIZE", "0")
        with pytest.raises(ValueError):
            MigrationConfig.from_env()

    def test_negative_delay_rejected(self, monkeypatch):
        monkeypatch.setenv("ADDRMIGRATE_RETRY_BASE_DELAY", "-1")
        with pytest.raises(ValueError):
            MigrationConfig.from_env()

    def test_unknown_backoff_rejected(self):
        with pytest.raises(ValueError):
            MigrationConfig(retry_backoff="fibonacci")

    def test_overrides_skip_none(self):
        config = MigrationConfig().with_overrides(batch_size=5, database_url=None)

        assert config.batch_size == 5
        assert config.database_url == MigrationConfig().database_url

    def test_retry_policy(self):
        policy = MigrationConfig(max_attempts=4, retry_base_delay=0.2).retry_policy()

        assert policy.max_attempts == 4
        assert policy.base_delay == 0.2
        assert policy.backoff is linear_backoff

    def test_exponential_policy(self, monkeypatch):
        monkeypatch.setenv("ADDRMIGRATE_RETRY_BACKOFF", "Exponential")

        assert MigrationConfig.from_env().retry_policy().backoff is exponential_backoff
