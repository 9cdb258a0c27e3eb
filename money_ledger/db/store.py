"""
Storage Abstraction

This module defines the three capability interfaces of the ledger and
provides two implementations:
- SqliteStore: the real store, one SQLite connection behind a ConnectionGuard
- InMemoryStore: a pure-Python fake with the same semantics, for tests

Capabilities:
- UserStore: add / list / find by number / delete users
- AccountStore: add / list / find / delete accounts, overwrite balances
- TransactionStore: apply money movements, read the immutable ledger

MONEY MOVEMENT CONTRACT:
execute_transaction() updates the balance and appends the ledger record
inside ONE database transaction, on ONE borrowed connection:

    with guard.borrow() as conn, transaction(conn):
        balance = read(account)
        write(account, balance + delta)
        insert(ledger_record)

A reader can never see a balance change without its ledger record, and a
failure in either statement leaves neither behind.
"""

import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Generator, Optional
from uuid import uuid4

from ..observability import get_logger, get_metrics
from ..schemas import (
    Account,
    AddAccountRequest,
    AddUserRequest,
    MoneyTransaction,
    PaymentType,
    TransactionIntent,
    User,
)
from .config import StorageConfig
from .connection import open_connection, transaction
from .errors import (
    InvalidTransactionError,
    MigrationError,
    NotFoundError,
    QueryFailedError,
    StorageError,
    UniqueViolationError,
)
from .guard import ConnectionGuard
from .migrations import MIGRATIONS, Migrations

logger = get_logger(__name__)


# ============================================================
# CAPABILITY INTERFACES
# ============================================================

class UserStore(ABC):
    """Storage operations for users."""

    @abstractmethod
    def add_user(self, request: AddUserRequest) -> User:
        """
        Store a new user.

        Returns:
            The user with its store-assigned id and creation date

        Raises:
            UniqueViolationError: if the number is already taken
        """
        pass

    @abstractmethod
    def get_users(self) -> list[User]:
        """All users, in store-native row order."""
        pass

    @abstractmethod
    def get_user_by_number(self, number: str) -> User:
        """
        Find the single user with this external number.

        Raises:
            NotFoundError: if zero rows match, or more than one does
        """
        pass

    @abstractmethod
    def delete_user_by_id(self, user_id: int) -> None:
        """Delete a user. Deleting a missing id is not an error."""
        pass


class AccountStore(ABC):
    """Storage operations for accounts."""

    @abstractmethod
    def add_account(self, request: AddAccountRequest) -> Account:
        """Open an account with its initial balance."""
        pass

    @abstractmethod
    def delete_account(self, account: Account) -> None:
        """Delete an account by its id. Idempotent."""
        pass

    @abstractmethod
    def set_balance(self, account_id: int, balance: Decimal) -> None:
        """
        Overwrite an account balance.

        Internal to money movements: callers that want to move money use
        TransactionStore.execute_transaction(), which keeps the ledger
        in step with the balance.

        Raises:
            NotFoundError: if the account does not exist
        """
        pass

    @abstractmethod
    def get_accounts(self) -> list[Account]:
        """All accounts."""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Account:
        """
        Fetch one account by id.

        Raises:
            NotFoundError: if it does not exist
        """
        pass

    @abstractmethod
    def search_account_by_user(self, user_id: int) -> Account:
        """
        Find the single account owned by a user.

        The schema allows several accounts per user; several matches are a
        data problem to fix upstream, so they are reported as NotFoundError
        rather than silently picking one.
        """
        pass


class TransactionStore(ABC):
    """Money movements and the append-only ledger."""

    @abstractmethod
    def execute_transaction(self, intent: TransactionIntent) -> MoneyTransaction:
        """
        Apply a signed amount to an account and append the ledger record.

        Both effects happen atomically or not at all.

        Returns:
            The immutable ledger record that was written

        Raises:
            InvalidTransactionError: unknown payment type or negative amount
            NotFoundError: the account no longer exists
        """
        pass

    @abstractmethod
    def get_transactions(self) -> list[MoneyTransaction]:
        """The whole ledger, oldest first."""
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> MoneyTransaction:
        """
        Fetch one ledger record.

        Raises:
            NotFoundError: if it does not exist
        """
        pass

    @abstractmethod
    def get_transactions_for_account(self, account_id: int) -> list[MoneyTransaction]:
        """Ledger records for one account, oldest first."""
        pass


class DataProvider(UserStore, AccountStore, TransactionStore):
    """Everything a ledger backend provides."""
    pass


# ============================================================
# SHARED HELPERS
# ============================================================

def _today() -> date:
    return datetime.now(timezone.utc).date()


def _signed_delta(intent: TransactionIntent) -> tuple[PaymentType, Decimal]:
    """
    Validate an intent and compute the balance delta.

    The intent may have been built without validation (model_construct),
    so the checks are repeated here.
    """
    try:
        payment_type = PaymentType(intent.payment_type)
    except (ValueError, TypeError) as e:
        raise InvalidTransactionError(
            f"Unknown payment type: {intent.payment_type!r}"
        ) from e

    amount = intent.amount
    if amount is None:
        raise InvalidTransactionError("Transaction amount is missing")
    try:
        amount = Decimal(str(amount))
    except InvalidOperation as e:
        raise InvalidTransactionError(f"Invalid amount: {intent.amount!r}") from e
    if not amount.is_finite() or amount < 0:
        raise InvalidTransactionError(
            f"Amount must be a non-negative magnitude, got {amount}"
        )

    if payment_type == PaymentType.INCOME:
        return payment_type, amount
    return payment_type, -amount


def _build_record(intent: TransactionIntent, payment_type: PaymentType) -> MoneyTransaction:
    return MoneyTransaction(
        id=str(uuid4()),
        amount=Decimal(str(intent.amount)),
        description=intent.description or "",
        payment_target=intent.payment_target or "",
        account_id=intent.account.id,
        user_id=intent.account.user_id,
        payment_type=payment_type,
        creation_date=intent.created_at or datetime.now(timezone.utc),
    )


# ============================================================
# SQLITE IMPLEMENTATION
# ============================================================

_USER_COLUMNS = "Id, Name, Number, CreationDate"
_ACCOUNT_COLUMNS = "Id, Name, UserId, MoneyCount, CreationDate"
_TRANSACTION_COLUMNS = (
    "Id, Amount, Description, UserId, AccountId, PaymentType, CreationDate, PaymentTarget"
)


def _money_param(value: Any) -> str:
    # Bound as text; the DECIMAL column's numeric affinity stores a number
    return str(Decimal(str(value)))


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _to_date(value: Any) -> date:
    # Rows backfilled by old schemas may carry no usable date
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    return _today()


@contextmanager
def _translate_errors(operation: str) -> Generator[None, None, None]:
    """Map driver and row-mapping failures onto the storage error kinds."""
    try:
        yield
    except StorageError:
        raise
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e):
            raise UniqueViolationError(f"{operation}: {e}") from e
        raise QueryFailedError(f"{operation}: {e}") from e
    except sqlite3.Error as e:
        raise QueryFailedError(f"{operation}: {e}") from e
    except (ValueError, TypeError) as e:
        raise QueryFailedError(f"{operation}: cannot map row: {e}") from e


class SqliteStore(DataProvider):
    """
    SQLite implementation of every storage capability.

    One physical connection, owned by a ConnectionGuard. Every method
    borrows the guard for its whole duration, so the store can be shared
    by any number of threads.

    Usage:
        with SqliteStore(StorageConfig.from_path("ledger.db3")) as store:
            user = store.add_user(AddUserRequest(name="scam", number="88005553535"))
    """

    def __init__(self, config: StorageConfig, migrations: Migrations = MIGRATIONS):
        """
        Open the store, optionally migrate it, and guard the connection.

        Args:
            config: Connection target and bring-up settings
            migrations: Migration list to apply (the shipped one by default)

        Raises:
            StoreUnavailableError: the database cannot be opened or created
            MigrationError: the migration list is invalid or a step failed
        """
        self._config = config
        self._migrations = migrations

        conn = open_connection(config)

        if config.apply_migrations:
            try:
                migrations.validate()
                migrations.to_latest(conn)
            except MigrationError:
                logger.error("Store bring-up aborted by migrations", target=config.describe())
                conn.close()
                raise

        self._guard = ConnectionGuard(conn, timeout=config.lock_timeout)
        logger.info("Store opened", target=config.describe())

    @property
    def config(self) -> StorageConfig:
        return self._config

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection. Idempotent."""
        self._guard.close()

    # ================================================================
    # SCHEMA
    # ================================================================

    def schema_version(self) -> int:
        """Currently applied migration version."""
        with self._guard.borrow() as conn, _translate_errors("read schema version"):
            return self._migrations.current_version(conn)

    def migrate(self, target: Optional[int] = None) -> list[int]:
        """
        Migrate the open store to `target` (latest by default).

        For stores opened with apply_migrations=False.
        """
        with self._guard.borrow() as conn:
            if target is None:
                return self._migrations.to_latest(conn)
            return self._migrations.to_version(conn, target)

    # ================================================================
    # ROW MAPPING
    # ================================================================

    @staticmethod
    def _row_to_user(row: tuple) -> User:
        return User(id=row[0], name=row[1] or "", number=row[2], creation_date=_to_date(row[3]))

    @staticmethod
    def _row_to_account(row: tuple) -> Account:
        return Account(
            id=row[0],
            name=row[1] or "",
            user_id=row[2],
            balance=_to_decimal(row[3]),
            creation_date=_to_date(row[4]),
        )

    @staticmethod
    def _row_to_transaction(row: tuple) -> MoneyTransaction:
        return MoneyTransaction(
            id=row[0],
            amount=_to_decimal(row[1]),
            description=row[2] or "",
            user_id=row[3],
            account_id=row[4],
            payment_type=PaymentType(row[5]),
            creation_date=datetime.fromisoformat(row[6]),
            payment_target=row[7] or "",
        )

    @staticmethod
    def _fetch_one(conn: sqlite3.Connection, sql: str, params: tuple, what: str) -> tuple:
        # Two rows are enough to tell "one" from "several"
        rows = conn.execute(sql, params).fetchmany(2)
        if not rows:
            raise NotFoundError(f"{what} not found")
        if len(rows) > 1:
            logger.warning("Single-row lookup matched several rows", lookup=what)
            raise NotFoundError(f"{what} is ambiguous: several rows match")
        return rows[0]

    # ================================================================
    # USERS
    # ================================================================

    def add_user(self, request: AddUserRequest) -> User:
        created = _today()
        with self._guard.borrow() as conn, _translate_errors("add user"):
            cursor = conn.execute(
                "INSERT INTO Users (Name, Number, CreationDate) VALUES (?, ?, ?)",
                (request.name, request.number, created.isoformat()),
            )
            user_id = cursor.lastrowid

        logger.debug("User added", user_id=user_id)
        return User(id=user_id, name=request.name, number=request.number, creation_date=created)

    def get_users(self) -> list[User]:
        with self._guard.borrow() as conn, _translate_errors("list users"):
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM Users").fetchall()
            return [self._row_to_user(row) for row in rows]

    def get_user_by_number(self, number: str) -> User:
        with self._guard.borrow() as conn, _translate_errors("find user"):
            row = self._fetch_one(
                conn,
                f"SELECT {_USER_COLUMNS} FROM Users WHERE Number = ?",
                (number,),
                f"User with number {number!r}",
            )
            return self._row_to_user(row)

    def delete_user_by_id(self, user_id: int) -> None:
        with self._guard.borrow() as conn, _translate_errors("delete user"):
            conn.execute("DELETE FROM Users WHERE Id = ?", (user_id,))

    # ================================================================
    # ACCOUNTS
    # ================================================================

    def add_account(self, request: AddAccountRequest) -> Account:
        created = _today()
        with self._guard.borrow() as conn, _translate_errors("add account"):
            cursor = conn.execute(
                "INSERT INTO Accounts (Name, UserId, MoneyCount, CreationDate) VALUES (?, ?, ?, ?)",
                (request.name, request.user_id, _money_param(request.initial_balance), created.isoformat()),
            )
            account_id = cursor.lastrowid

        logger.debug("Account added", account_id=account_id, user_id=request.user_id)
        return Account(
            id=account_id,
            user_id=request.user_id,
            name=request.name,
            balance=request.initial_balance,
            creation_date=created,
        )

    def delete_account(self, account: Account) -> None:
        with self._guard.borrow() as conn, _translate_errors("delete account"):
            conn.execute("DELETE FROM Accounts WHERE Id = ?", (account.id,))

    def set_balance(self, account_id: int, balance: Decimal) -> None:
        with self._guard.borrow() as conn, _translate_errors("set balance"):
            self._write_balance(conn, account_id, balance)

    def get_accounts(self) -> list[Account]:
        with self._guard.borrow() as conn, _translate_errors("list accounts"):
            rows = conn.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM Accounts").fetchall()
            return [self._row_to_account(row) for row in rows]

    def get_account(self, account_id: int) -> Account:
        with self._guard.borrow() as conn, _translate_errors("get account"):
            row = self._fetch_one(
                conn,
                f"SELECT {_ACCOUNT_COLUMNS} FROM Accounts WHERE Id = ?",
                (account_id,),
                f"Account {account_id}",
            )
            return self._row_to_account(row)

    def search_account_by_user(self, user_id: int) -> Account:
        with self._guard.borrow() as conn, _translate_errors("find account"):
            row = self._fetch_one(
                conn,
                f"SELECT {_ACCOUNT_COLUMNS} FROM Accounts WHERE UserId = ?",
                (user_id,),
                f"Account for user {user_id}",
            )
            return self._row_to_account(row)

    @staticmethod
    def _read_balance(conn: sqlite3.Connection, account_id: int) -> Decimal:
        row = conn.execute(
            "SELECT MoneyCount FROM Accounts WHERE Id = ?", (account_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Account {account_id} not found")
        return _to_decimal(row[0])

    @staticmethod
    def _write_balance(conn: sqlite3.Connection, account_id: int, balance: Decimal) -> None:
        cursor = conn.execute(
            "UPDATE Accounts SET MoneyCount = ? WHERE Id = ?",
            (_money_param(balance), account_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account {account_id} not found")

    # ================================================================
    # MONEY MOVEMENTS
    # ================================================================

    def execute_transaction(self, intent: TransactionIntent) -> MoneyTransaction:
        payment_type, delta = _signed_delta(intent)
        record = _build_record(intent, payment_type)
        account_id = intent.account.id

        start = time.perf_counter()
        try:
            with self._guard.borrow() as conn, \
                    _translate_errors("execute transaction"), \
                    transaction(conn):
                # Re-read under the guard: the intent's snapshot may be stale
                balance = self._read_balance(conn, account_id)
                self._write_balance(conn, account_id, balance + delta)
                self._insert_transaction(conn, record)
        except StorageError as e:
            get_metrics().record_movement((time.perf_counter() - start) * 1000, success=False)
            logger.warning(
                "Money movement rolled back",
                account_id=account_id,
                transaction_id=record.id,
                error=str(e),
            )
            raise

        latency_ms = (time.perf_counter() - start) * 1000
        get_metrics().record_movement(latency_ms, success=True)
        logger.info(
            "Money movement applied",
            account_id=account_id,
            transaction_id=record.id,
            payment_type=payment_type.name,
            amount=str(record.amount),
            duration_ms=round(latency_ms, 2),
        )
        return record

    @staticmethod
    def _insert_transaction(conn: sqlite3.Connection, record: MoneyTransaction) -> None:
        conn.execute(
            f"INSERT INTO Transactions ({_TRANSACTION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                _money_param(record.amount),
                record.description,
                record.user_id,
                record.account_id,
                int(record.payment_type),
                record.creation_date.isoformat(),
                record.payment_target,
            ),
        )

    def get_transactions(self) -> list[MoneyTransaction]:
        with self._guard.borrow() as conn, _translate_errors("list transactions"):
            rows = conn.execute(
                f"SELECT {_TRANSACTION_COLUMNS} FROM Transactions ORDER BY rowid"
            ).fetchall()
            return [self._row_to_transaction(row) for row in rows]

    def get_transaction(self, transaction_id: str) -> MoneyTransaction:
        with self._guard.borrow() as conn, _translate_errors("get transaction"):
            row = self._fetch_one(
                conn,
                f"SELECT {_TRANSACTION_COLUMNS} FROM Transactions WHERE Id = ?",
                (transaction_id,),
                f"Transaction {transaction_id}",
            )
            return self._row_to_transaction(row)

    def get_transactions_for_account(self, account_id: int) -> list[MoneyTransaction]:
        with self._guard.borrow() as conn, _translate_errors("list account transactions"):
            rows = conn.execute(
                f"SELECT {_TRANSACTION_COLUMNS} FROM Transactions WHERE AccountId = ? ORDER BY rowid",
                (account_id,),
            ).fetchall()
            return [self._row_to_transaction(row) for row in rows]


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryStore(DataProvider):
    """
    In-memory implementation of every storage capability.

    Suitable for:
    - Unit tests of code that consumes the store interfaces
    - Development without a database file

    NOT suitable for:
    - Anything that must survive the process
    """

    def __init__(self):
        self._users: list[User] = []
        self._accounts: list[Account] = []
        self._transactions: list[MoneyTransaction] = []
        self._next_user_id = 1
        self._next_account_id = 1
        self._lock = Lock()

    # Users

    def add_user(self, request: AddUserRequest) -> User:
        with self._lock:
            if any(u.number == request.number for u in self._users):
                raise UniqueViolationError(
                    f"add user: number {request.number!r} already exists"
                )
            user = User(
                id=self._next_user_id,
                name=request.name,
                number=request.number,
                creation_date=_today(),
            )
            self._next_user_id += 1
            self._users.append(user)
            return user

    def get_users(self) -> list[User]:
        with self._lock:
            return list(self._users)

    def get_user_by_number(self, number: str) -> User:
        with self._lock:
            matches = [u for u in self._users if u.number == number]
        if len(matches) != 1:
            raise NotFoundError(f"User with number {number!r} not found")
        return matches[0]

    def delete_user_by_id(self, user_id: int) -> None:
        with self._lock:
            self._users = [u for u in self._users if u.id != user_id]

    # Accounts

    def add_account(self, request: AddAccountRequest) -> Account:
        with self._lock:
            account = Account(
                id=self._next_account_id,
                user_id=request.user_id,
                name=request.name,
                balance=request.initial_balance,
                creation_date=_today(),
            )
            self._next_account_id += 1
            self._accounts.append(account)
            return account

    def delete_account(self, account: Account) -> None:
        with self._lock:
            self._accounts = [a for a in self._accounts if a.id != account.id]

    def _index_of(self, account_id: int) -> int:
        # Caller holds self._lock
        for i, account in enumerate(self._accounts):
            if account.id == account_id:
                return i
        raise NotFoundError(f"Account {account_id} not found")

    def set_balance(self, account_id: int, balance: Decimal) -> None:
        with self._lock:
            i = self._index_of(account_id)
            self._accounts[i] = self._accounts[i].model_copy(update={"balance": Decimal(str(balance))})

    def get_accounts(self) -> list[Account]:
        with self._lock:
            return list(self._accounts)

    def get_account(self, account_id: int) -> Account:
        with self._lock:
            return self._accounts[self._index_of(account_id)]

    def search_account_by_user(self, user_id: int) -> Account:
        with self._lock:
            matches = [a for a in self._accounts if a.user_id == user_id]
        if len(matches) != 1:
            raise NotFoundError(f"Account for user {user_id} not found")
        return matches[0]

    # Transactions

    def execute_transaction(self, intent: TransactionIntent) -> MoneyTransaction:
        payment_type, delta = _signed_delta(intent)
        record = _build_record(intent, payment_type)
        with self._lock:
            i = self._index_of(intent.account.id)
            current = self._accounts[i]
            self._accounts[i] = current.model_copy(update={"balance": current.balance + delta})
            self._transactions.append(record)
        return record

    def get_transactions(self) -> list[MoneyTransaction]:
        with self._lock:
            return list(self._transactions)

    def get_transaction(self, transaction_id: str) -> MoneyTransaction:
        with self._lock:
            for record in self._transactions:
                if record.id == transaction_id:
                    return record
        raise NotFoundError(f"Transaction {transaction_id} not found")

    def get_transactions_for_account(self, account_id: int) -> list[MoneyTransaction]:
        with self._lock:
            return [t for t in self._transactions if t.account_id == account_id]

    def clear(self) -> None:
        """Drop all data (for testing only)."""
        with self._lock:
            self._users.clear()
            self._accounts.clear()
            self._transactions.clear()
            self._next_user_id = 1
            self._next_account_id = 1
