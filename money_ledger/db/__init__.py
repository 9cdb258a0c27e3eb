"""
Database Layer for the Money Ledger

Provides:
- SQLite schema migrations
- The connection guard around the single physical connection
- Storage interfaces (SQLite for real use, in-memory fake for tests)
- Configuration
"""

from .errors import (
    StorageError,
    StoreUnavailableError,
    MigrationError,
    UniqueViolationError,
    NotFoundError,
    QueryFailedError,
    LockUnavailableError,
    InvalidTransactionError,
    InvalidRequestError,
)
from .config import StorageConfig, get_database_path
from .guard import ConnectionGuard
from .migrations import MIGRATIONS, Migration, Migrations
from .store import (
    UserStore,
    AccountStore,
    TransactionStore,
    DataProvider,
    SqliteStore,
    InMemoryStore,
)
from .aio import AsyncStore

__all__ = [
    # Errors
    "StorageError",
    "StoreUnavailableError",
    "MigrationError",
    "UniqueViolationError",
    "NotFoundError",
    "QueryFailedError",
    "LockUnavailableError",
    "InvalidTransactionError",
    "InvalidRequestError",
    # Config
    "StorageConfig",
    "get_database_path",
    # Machinery
    "ConnectionGuard",
    "MIGRATIONS",
    "Migration",
    "Migrations",
    # Stores
    "UserStore",
    "AccountStore",
    "TransactionStore",
    "DataProvider",
    "SqliteStore",
    "InMemoryStore",
    "AsyncStore",
]
