"""
SQLite connection helpers.

Connections are opened in autocommit mode (isolation_level=None) so that
transactions are always explicit:

    with transaction(conn):
        conn.execute("UPDATE ...")
        conn.execute("INSERT ...")
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from ..observability import get_logger
from .config import StorageConfig
from .errors import StoreUnavailableError

logger = get_logger(__name__)


def open_connection(config: StorageConfig) -> sqlite3.Connection:
    """
    Open (or create) the physical store described by `config`.

    The handle may be used from any thread; the ConnectionGuard is what
    makes that safe.

    Raises:
        StoreUnavailableError: if the file cannot be opened or created
    """
    target = config.target
    if not target:
        raise StoreUnavailableError("No database path configured")

    try:
        conn = sqlite3.connect(target, check_same_thread=False, isolation_level=None)
        # sqlite3.connect is lazy about some failures; touch the file now
        conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        raise StoreUnavailableError(
            f"Cannot open store at {config.describe()}: {e}"
        ) from e

    logger.debug("Opened store", target=config.describe())
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection, mode: str = "IMMEDIATE") -> Generator[sqlite3.Connection, None, None]:
    """
    Run the with-block inside one native transaction.

    Commits on normal exit, rolls back and re-raises on any exception.
    A failed COMMIT (SQLITE_BUSY while another connection reads) is rolled
    back too, so the connection never stays inside an open transaction.
    IMMEDIATE takes the write lock up front so a concurrent writer on
    another connection fails at BEGIN rather than mid-way.
    """
    conn.execute(f"BEGIN {mode}")
    try:
        yield conn
    except BaseException:
        _rollback_quietly(conn)
        raise

    try:
        conn.execute("COMMIT")
    except BaseException:
        _rollback_quietly(conn)
        raise


def _rollback_quietly(conn: sqlite3.Connection) -> None:
    # The caller re-raises the original error; a failed ROLLBACK is only logged
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.error("Rollback failed", error=str(e))
