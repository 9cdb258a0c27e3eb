"""Tests for logging, metrics, health checks and environment config."""

import json
import logging

import pytest

from money_ledger.db import InMemoryStore, SqliteStore, StorageConfig
from money_ledger.observability import (
    MetricsCollector,
    StructuredFormatter,
    TextFormatter,
    check_health,
    get_logger,
    get_metrics,
)


def _record(**fields) -> logging.LogRecord:
    record = logging.LogRecord("money_ledger.test", logging.INFO, __file__, 1, "Movement applied", None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


class TestLogging:

    def test_keyword_fields_become_record_attributes(self, caplog):
        logger = get_logger("money_ledger.test")

        with caplog.at_level(logging.INFO, logger="money_ledger.test"):
            logger.info("User added", user_id=7)

        [record] = caplog.records
        assert record.getMessage() == "User added"
        assert record.user_id == 7

    def test_json_formatter(self):
        line = StructuredFormatter().format(_record(account_id=3, amount="12.50"))
        data = json.loads(line)

        assert data["level"] == "INFO"
        assert data["logger"] == "money_ledger.test"
        assert data["message"] == "Movement applied"
        assert data["account_id"] == 3
        assert data["amount"] == "12.50"
        assert "lineno" not in data

    def test_json_formatter_stringifies_unserialisable_fields(self):
        from decimal import Decimal

        data = json.loads(StructuredFormatter().format(_record(balance=Decimal("1.5"))))
        assert data["balance"] == "1.5"

    def test_text_formatter(self):
        line = TextFormatter().format(_record(account_id=3))

        assert "INFO" in line
        assert "Movement applied" in line
        assert "account_id=3" in line


class TestMetrics:

    def test_summary(self):
        metrics = MetricsCollector()
        metrics.record_movement(1.0, success=True)
        metrics.record_movement(3.0, success=True)
        metrics.record_movement(2.0, success=False)
        metrics.record_guard_timeout()
        metrics.record_migrations(7)

        summary = metrics.get_summary()

        assert summary["movements_applied"] == 2
        assert summary["movements_failed"] == 1
        assert summary["guard_timeouts"] == 1
        assert summary["migrations_applied"] == 7
        assert summary["movement_latency_p50_ms"] == 2.0
        assert summary["guard_wait_p50_ms"] is None

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.record_movement(1.0, success=True)
        metrics.reset()

        assert metrics.get_summary()["movements_applied"] == 0
        assert metrics.movement_latencies_ms == []

    def test_store_bring_up_records_migrations(self):
        SqliteStore(StorageConfig.memory()).close()
        assert get_metrics().migrations_applied == 7


class TestHealth:

    def test_liveness_only(self):
        status = check_health()
        assert status.healthy
        assert status.checks == {"liveness": {"status": "healthy"}}

    def test_healthy_store(self, sqlite_store):
        status = check_health(sqlite_store)

        assert status.healthy
        assert status.checks["store"]["schema_version"] == 7
        assert status.checks["store"]["user_count"] == 0

    def test_in_memory_store_has_no_schema(self):
        status = check_health(InMemoryStore())

        assert status.healthy
        assert "schema_version" not in status.checks["store"]

    def test_closed_store_is_unhealthy(self):
        store = SqliteStore(StorageConfig.memory())
        store.close()

        status = check_health(store)

        assert not status.healthy
        assert status.checks["store"]["status"] == "unhealthy"


class TestConfig:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "MONEY_LEDGER_DATABASE_PATH",
            "MONEY_LEDGER_MEMORY",
            "MONEY_LEDGER_APPLY_MIGRATIONS",
            "MONEY_LEDGER_LOCK_TIMEOUT",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults_to_memory(self):
        config = StorageConfig.from_env()

        assert config.memory_base
        assert config.target == ":memory:"
        assert config.apply_migrations
        assert config.lock_timeout is None
        assert config.describe() == "memory"

    def test_path_from_env(self, monkeypatch):
        monkeypatch.setenv("MONEY_LEDGER_DATABASE_PATH", "/var/lib/ledger.db3")
        monkeypatch.setenv("MONEY_LEDGER_LOCK_TIMEOUT", "2.5")
        monkeypatch.setenv("MONEY_LEDGER_APPLY_MIGRATIONS", "false")

        config = StorageConfig.from_env()

        assert not config.memory_base
        assert config.target == "/var/lib/ledger.db3"
        assert config.lock_timeout == 2.5
        assert not config.apply_migrations

    def test_memory_flag_wins(self, monkeypatch):
        monkeypatch.setenv("MONEY_LEDGER_DATABASE_PATH", "/var/lib/ledger.db3")
        monkeypatch.setenv("MONEY_LEDGER_MEMORY", "yes")

        assert StorageConfig.from_env().memory_base
