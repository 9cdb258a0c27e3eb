"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with keyword fields
- Metrics collection (movement latency, guard waits, migrations)
- Health check utilities

Configuration:
- MONEY_LEDGER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- MONEY_LEDGER_LOG_FORMAT: json, text (default: json in production)
- MONEY_LEDGER_PRODUCTION: Enable production mode

Usage:
    from money_ledger.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Movement applied", account_id=account.id, amount=str(amount))
"""

import json
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional

# Standard LogRecord attributes that are never copied into the JSON body
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "levelname", "levelno",
    "pathname", "filename", "module", "lineno", "funcName",
    "exc_info", "exc_text", "stack_info", "message", "msecs",
    "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
))


# ============================================================
# CONFIGURATION
# ============================================================

def _is_production() -> bool:
    return os.environ.get("MONEY_LEDGER_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("MONEY_LEDGER_LOG_LEVEL", "INFO").upper()
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level_str, logging.INFO)


def _use_json_logging() -> bool:
    format_str = os.environ.get("MONEY_LEDGER_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return _is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000000+00:00",
        "level": "INFO",
        "logger": "money_ledger.db.store",
        "message": "Movement applied",
        "account_id": 3,
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {record.name}: {record.getMessage()}"

        fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if fields:
            msg += " " + " ".join(f"{k}={v}" for k, v in fields.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into record fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("User added", user_id=user.id)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the process.

    Call this once at startup (the management CLI does).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())

    if _use_json_logging():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)


# ============================================================
# METRICS
# ============================================================

_MAX_SAMPLES = 1000


@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    Counters are updated from many threads, so every write takes a lock.
    """

    # Counters
    movements_applied: int = 0
    movements_failed: int = 0
    migrations_applied: int = 0
    guard_timeouts: int = 0

    # Histograms (simplified as bounded lists)
    movement_latencies_ms: list = field(default_factory=list)
    guard_wait_ms: list = field(default_factory=list)

    _lock: Lock = field(default_factory=Lock, repr=False)

    def record_movement(self, latency_ms: float, success: bool) -> None:
        """Record one money movement."""
        with self._lock:
            if success:
                self.movements_applied += 1
            else:
                self.movements_failed += 1
            self.movement_latencies_ms.append(latency_ms)
            if len(self.movement_latencies_ms) > _MAX_SAMPLES:
                self.movement_latencies_ms = self.movement_latencies_ms[-_MAX_SAMPLES:]

    def record_guard_wait(self, wait_ms: float) -> None:
        """Record how long a unit of work waited for the connection."""
        with self._lock:
            self.guard_wait_ms.append(wait_ms)
            if len(self.guard_wait_ms) > _MAX_SAMPLES:
                self.guard_wait_ms = self.guard_wait_ms[-_MAX_SAMPLES:]

    def record_guard_timeout(self) -> None:
        with self._lock:
            self.guard_timeouts += 1

    def record_migrations(self, count: int) -> None:
        with self._lock:
            self.migrations_applied += count

    def reset(self) -> None:
        """Zero every counter (for tests)."""
        with self._lock:
            self.movements_applied = 0
            self.movements_failed = 0
            self.migrations_applied = 0
            self.guard_timeouts = 0
            self.movement_latencies_ms = []
            self.guard_wait_ms = []

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        with self._lock:
            return {
                "movements_applied": self.movements_applied,
                "movements_failed": self.movements_failed,
                "migrations_applied": self.migrations_applied,
                "guard_timeouts": self.guard_timeouts,
                "movement_latency_p50_ms": percentile(self.movement_latencies_ms, 0.5),
                "movement_latency_p95_ms": percentile(self.movement_latencies_ms, 0.95),
                "guard_wait_p50_ms": percentile(self.guard_wait_ms, 0.5),
                "guard_wait_p95_ms": percentile(self.guard_wait_ms, 0.95),
            }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(store=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        store: SqliteStore (or any store exposing schema_version/get_users)
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if store is not None:
        try:
            users = store.get_users()
            check = {"status": "healthy", "user_count": len(users)}
            schema_version = getattr(store, "schema_version", None)
            if callable(schema_version):
                check["schema_version"] = schema_version()
            checks["store"] = check
        except Exception as e:
            checks["store"] = {
                "status": "unhealthy",
                "error": str(e),
            }
            all_healthy = False

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
