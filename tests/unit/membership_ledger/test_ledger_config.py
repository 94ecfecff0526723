"""
Unit Tests for Ledger Configuration
"""

from core.config import InfraConfig, LedgerConfig


class TestLedgerConfig:

    def test_defaults(self, monkeypatch):
        for name in ("MEMBERSHIP_LEDGER_PORT", "SUMMARY_CACHE_TTL_SECONDS", "STORE_RETRY_ATTEMPTS"):
            monkeypatch.delenv(name, raising=False)

        config = LedgerConfig.from_env()

        assert config.service_port == 8260
        assert config.summary_cache_ttl_seconds == 300.0
        assert config.store_retry_attempts == 3

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MEMBERSHIP_LEDGER_PORT", "9100")
        monkeypatch.setenv("SUMMARY_CACHE_TTL_SECONDS", "0")
        monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")

        config = LedgerConfig.from_env()

        assert config.service_port == 9100
        assert config.summary_cache_ttl_seconds == 0.0
        assert config.notifications_enabled is False

    def test_malformed_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("STORE_RETRY_ATTEMPTS", "many")

        assert LedgerConfig.from_env().store_retry_attempts == 3


class TestInfraConfig:

    def test_dsn_and_nats_server(self):
        config = InfraConfig(postgres_user="club", postgres_password="pw", postgres_db="ledger")

        assert config.postgres_dsn == "postgresql://club:pw@localhost:5432/ledger"
        assert config.nats_server == "nats://localhost:4222"

    def test_explicit_nats_url_wins(self):
        assert InfraConfig(nats_url="nats://bus:4222").nats_server == "nats://bus:4222"
