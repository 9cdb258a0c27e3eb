"""
Schema Migrations

An ordered, numbered list of schema changes and the engine that applies it.

The engine is linear: steps rename columns and backfill data,
so each one assumes exactly the schema left by the steps before it.
Reordering or skipping is never safe.

Bookkeeping lives in the `_migrations` table, one row per applied version.
Each step and its bookkeeping row commit in the same transaction.

Usage:
    MIGRATIONS.validate()
    applied = MIGRATIONS.to_latest(conn)
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from ..observability import get_logger, get_metrics
from .connection import transaction
from .errors import MigrationError

logger = get_logger(__name__)

BOOKKEEPING_TABLE = "_migrations"

Statements = Union[str, Sequence[str]]


def _normalize(statements: Optional[Statements]) -> Optional[tuple]:
    if statements is None:
        return None
    if isinstance(statements, str):
        statements = (statements,)
    return tuple(statements)


def _is_blank(statement: str) -> bool:
    """True if the statement is only whitespace, semicolons and -- comments."""
    for line in statement.splitlines():
        code = line.split("--", 1)[0].strip().strip(";").strip()
        if code:
            return False
    return True


@dataclass(frozen=True)
class Migration:
    """
    One schema change.

    `up` and `down` may be a single statement or a sequence of statements.
    Statements run one at a time on the same transaction, so a step may
    combine DDL and backfill.
    """
    version: int
    description: str
    up: Statements
    down: Optional[Statements] = None

    def __post_init__(self):
        object.__setattr__(self, "up", _normalize(self.up))
        object.__setattr__(self, "down", _normalize(self.down))

    @property
    def reversible(self) -> bool:
        return self.down is not None


class Migrations:
    """
    The migration engine.

    INVARIANTS:
    - Versions are 1, 2, 3, ... with no gaps
    - Steps apply in ascending order, each in its own transaction
    - Applying against an up-to-date database is a no-op
    - A failed step aborts immediately; nothing is retried
    """

    def __init__(self, steps: Sequence[Migration]):
        self._steps = tuple(steps)

    @property
    def steps(self) -> tuple:
        return self._steps

    @property
    def latest_version(self) -> int:
        return self._steps[-1].version if self._steps else 0

    # ================================================================
    # VALIDATION
    # ================================================================

    def validate(self, downgrades: bool = False) -> None:
        """
        Check the step list for internal consistency.

        1. There is at least one step
        2. Versions start at 1 and are contiguous
        3. No step is empty (up, and down when declared)
        4. The whole list applies cleanly to a fresh database
        5. With `downgrades`, it also rolls back to version 0 when every
           step is reversible

        Store bring-up checks upgrades only. Down actions may use
        statements (DROP COLUMN) that an older linked SQLite lacks, and
        that must not stop an upgrade.

        A failure here is a defect in the shipped list, not a runtime
        condition.

        Raises:
            MigrationError: on the first inconsistency found
        """
        if not self._steps:
            raise MigrationError("Migration list is empty")

        for expected, step in enumerate(self._steps, start=1):
            if step.version != expected:
                raise MigrationError(
                    f"Migration versions must be contiguous from 1: "
                    f"expected {expected}, got {step.version}"
                )
            if not step.up or all(_is_blank(s) for s in step.up):
                raise MigrationError(f"Migration {step.version} has an empty up action")
            if step.down is not None and (not step.down or all(_is_blank(s) for s in step.down)):
                raise MigrationError(f"Migration {step.version} has an empty down action")

        # Dry run against a throwaway database
        scratch = sqlite3.connect(":memory:", isolation_level=None)
        try:
            self._migrate(scratch, self.latest_version)
            if downgrades and all(step.reversible for step in self._steps):
                self._migrate(scratch, 0)
        except MigrationError as e:
            raise MigrationError(f"Dry run failed: {e}") from e
        finally:
            scratch.close()

    # ================================================================
    # BOOKKEEPING
    # ================================================================

    @staticmethod
    def _ensure_bookkeeping(conn: sqlite3.Connection) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {BOOKKEEPING_TABLE} (
                Version INTEGER PRIMARY KEY,
                Description TEXT NOT NULL,
                AppliedAt TEXT NOT NULL
            )
        """)

    @staticmethod
    def current_version(conn: sqlite3.Connection) -> int:
        """Highest applied version, 0 for a database never migrated."""
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (BOOKKEEPING_TABLE,),
        ).fetchone()
        if row is None:
            return 0
        return conn.execute(
            f"SELECT COALESCE(MAX(Version), 0) FROM {BOOKKEEPING_TABLE}"
        ).fetchone()[0]

    # ================================================================
    # APPLY
    # ================================================================

    def to_latest(self, conn: sqlite3.Connection) -> list[int]:
        """
        Apply every step newer than the database's current version.

        Returns:
            The versions applied, in order (empty when already current)

        Raises:
            MigrationError: if a step fails; earlier steps stay committed
        """
        return self.to_version(conn, self.latest_version)

    def to_version(self, conn: sqlite3.Connection, target: int) -> list[int]:
        """
        Move the schema to exactly `target`.

        Upward moves run `up` actions in ascending order; downward moves run
        `down` actions in descending order.

        Returns:
            The versions applied (upward) or reverted (downward), in order
        """
        versions = self._migrate(conn, target)
        if versions:
            get_metrics().record_migrations(len(versions))
            logger.info(
                "Schema migrated",
                versions=versions,
                schema_version=self.current_version(conn),
            )
        return versions

    def _migrate(self, conn: sqlite3.Connection, target: int) -> list[int]:
        if target < 0 or target > self.latest_version:
            raise MigrationError(
                f"Target version {target} outside 0..{self.latest_version}"
            )

        try:
            self._ensure_bookkeeping(conn)
            current = self.current_version(conn)
        except sqlite3.Error as e:
            raise MigrationError(f"Cannot read schema version: {e}") from e

        if current > self.latest_version:
            raise MigrationError(
                f"Database is at version {current}, newer than the "
                f"latest known version {self.latest_version}"
            )

        done = []
        if target >= current:
            for step in self._steps[current:target]:
                self._apply_up(conn, step)
                done.append(step.version)
        else:
            for step in reversed(self._steps[target:current]):
                self._apply_down(conn, step)
                done.append(step.version)
        return done

    def _apply_up(self, conn: sqlite3.Connection, step: Migration) -> None:
        try:
            with transaction(conn):
                for statement in step.up:
                    conn.execute(statement)
                conn.execute(
                    f"INSERT INTO {BOOKKEEPING_TABLE} (Version, Description, AppliedAt) "
                    f"VALUES (?, ?, ?)",
                    (step.version, step.description, datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.Error as e:
            raise MigrationError(
                f"Migration {step.version} ({step.description}) failed: {e}"
            ) from e
        logger.debug("Applied migration", version=step.version, description=step.description)

    def _apply_down(self, conn: sqlite3.Connection, step: Migration) -> None:
        if not step.reversible:
            raise MigrationError(
                f"Migration {step.version} ({step.description}) cannot be reverted"
            )
        try:
            with transaction(conn):
                for statement in step.down:
                    conn.execute(statement)
                conn.execute(
                    f"DELETE FROM {BOOKKEEPING_TABLE} WHERE Version = ?",
                    (step.version,),
                )
        except sqlite3.Error as e:
            raise MigrationError(
                f"Reverting migration {step.version} ({step.description}) failed: {e}"
            ) from e
        logger.debug("Reverted migration", version=step.version, description=step.description)


# ============================================================
# SHIPPED SCHEMA HISTORY
# ============================================================

MIGRATIONS = Migrations([
    Migration(
        1, "create users",
        up="CREATE TABLE IF NOT EXISTS Users (Id INTEGER PRIMARY KEY, Name TEXT, CreationDate DATE)",
        down="DROP TABLE Users",
    ),
    Migration(
        2, "add unique user number",
        up=(
            "CREATE TABLE NewUsers (Id INTEGER PRIMARY KEY, Name TEXT, Number TEXT UNIQUE, CreationDate DATE)",
            # Existing users get a random token until a real number is assigned
            "INSERT INTO NewUsers (Id, Name, Number, CreationDate) "
            "SELECT Id, Name, lower(hex(randomblob(6))), CreationDate FROM Users",
            "DROP TABLE Users",
            "ALTER TABLE NewUsers RENAME TO Users",
        ),
        down=(
            "CREATE TABLE OldUsers (Id INTEGER PRIMARY KEY, Name TEXT, CreationDate DATE)",
            "INSERT INTO OldUsers (Id, Name, CreationDate) SELECT Id, Name, CreationDate FROM Users",
            "DROP TABLE Users",
            "ALTER TABLE OldUsers RENAME TO Users",
        ),
    ),
    Migration(
        3, "create accounts",
        up="CREATE TABLE IF NOT EXISTS Accounts (Id INTEGER PRIMARY KEY, Name TEXT, UserId INTEGER, "
           "Count DECIMAL, FOREIGN KEY(UserId) REFERENCES Users(Id))",
        down="DROP TABLE Accounts",
    ),
    Migration(
        4, "rename account count, add creation date",
        up=(
            "ALTER TABLE Accounts RENAME COLUMN Count TO MoneyCount",
            "ALTER TABLE Accounts ADD COLUMN CreationDate DATE",
        ),
        down=(
            "ALTER TABLE Accounts DROP COLUMN CreationDate",
            "ALTER TABLE Accounts RENAME COLUMN MoneyCount TO Count",
        ),
    ),
    Migration(
        5, "create transactions",
        up="CREATE TABLE IF NOT EXISTS Transactions (Id TEXT PRIMARY KEY, Amount DECIMAL, Description TEXT, "
           "UserId INTEGER, AccountId INTEGER, PaymentType INTEGER, CreationDate TEXT, "
           "FOREIGN KEY(UserId) REFERENCES Users(Id), FOREIGN KEY(AccountId) REFERENCES Accounts(Id))",
        down="DROP TABLE Transactions",
    ),
    Migration(
        6, "add transaction payment target",
        up="ALTER TABLE Transactions ADD COLUMN PaymentTarget TEXT",
        down="ALTER TABLE Transactions DROP COLUMN PaymentTarget",
    ),
    Migration(
        7, "index user names",
        up="CREATE INDEX IF NOT EXISTS user_name ON Users (Name)",
        down="DROP INDEX IF EXISTS user_name",
    ),
])
