"""
Storage Configuration

Handles the connection target and bring-up behaviour of the store.

Environment Variables:
    MONEY_LEDGER_DATABASE_PATH: SQLite file path (takes precedence)
    MONEY_LEDGER_MEMORY: Use an in-memory database ("1", "true", "yes")
    MONEY_LEDGER_APPLY_MIGRATIONS: Run migrations on open (default true)
    MONEY_LEDGER_LOCK_TIMEOUT: Seconds to wait for the connection guard
        (unset = wait forever)
"""

import os
from dataclasses import dataclass
from typing import Optional

MEMORY_TARGET = ":memory:"

_TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class StorageConfig:
    """Connection target and bring-up settings for a store."""
    connection_string: str = ""
    memory_base: bool = False

    # Bring the schema to the latest version while opening
    apply_migrations: bool = True

    # Guard acquisition timeout in seconds, None blocks indefinitely
    lock_timeout: Optional[float] = None

    @classmethod
    def memory(cls, apply_migrations: bool = True) -> "StorageConfig":
        """Configuration for a private in-memory database."""
        return cls(connection_string="", memory_base=True, apply_migrations=apply_migrations)

    @classmethod
    def from_path(cls, path: str, apply_migrations: bool = True) -> "StorageConfig":
        """Configuration for a database file at `path`."""
        return cls(connection_string=str(path), memory_base=False, apply_migrations=apply_migrations)

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """
        Load configuration from environment variables.

        Falls back to an in-memory database when no path is configured.
        """
        path = get_database_path()
        timeout = os.getenv("MONEY_LEDGER_LOCK_TIMEOUT")
        return cls(
            connection_string=path or "",
            memory_base=path is None,
            apply_migrations=_env_flag("MONEY_LEDGER_APPLY_MIGRATIONS", True),
            lock_timeout=float(timeout) if timeout else None,
        )

    @property
    def target(self) -> str:
        """The string handed to sqlite3.connect()."""
        if self.memory_base:
            return MEMORY_TARGET
        return self.connection_string

    def describe(self) -> str:
        """Short human-readable target, for logs."""
        return "memory" if self.memory_base else self.connection_string


def get_database_path() -> Optional[str]:
    """
    Get the database file path from environment.

    Returns None if memory mode is requested or nothing is configured.
    """
    if _env_flag("MONEY_LEDGER_MEMORY", False):
        return None

    path = os.getenv("MONEY_LEDGER_DATABASE_PATH")
    if path:
        return path

    return None
