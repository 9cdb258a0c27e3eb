"""
Async access to a store.

Every store call is synchronous and may block on the ConnectionGuard, so
coroutines must not call it on the event loop thread. AsyncStore runs each
call in the default thread pool:

    store = AsyncStore(SqliteStore(StorageConfig.memory()))
    user = await store.add_user(AddUserRequest(name="scam", number="1"))

Cancelling an awaiting coroutine does not interrupt a statement that is
already running; it only stops waiting for the result.
"""

import asyncio
from decimal import Decimal

from ..schemas import (
    Account,
    AddAccountRequest,
    AddUserRequest,
    MoneyTransaction,
    TransactionIntent,
    User,
)
from .store import DataProvider


class AsyncStore:
    """Coroutine facade over any DataProvider."""

    def __init__(self, store: DataProvider):
        self._store = store

    @property
    def store(self) -> DataProvider:
        """The wrapped synchronous store."""
        return self._store

    # Users

    async def add_user(self, request: AddUserRequest) -> User:
        return await asyncio.to_thread(self._store.add_user, request)

    async def get_users(self) -> list[User]:
        return await asyncio.to_thread(self._store.get_users)

    async def get_user_by_number(self, number: str) -> User:
        return await asyncio.to_thread(self._store.get_user_by_number, number)

    async def delete_user_by_id(self, user_id: int) -> None:
        await asyncio.to_thread(self._store.delete_user_by_id, user_id)

    # Accounts

    async def add_account(self, request: AddAccountRequest) -> Account:
        return await asyncio.to_thread(self._store.add_account, request)

    async def delete_account(self, account: Account) -> None:
        await asyncio.to_thread(self._store.delete_account, account)

    async def set_balance(self, account_id: int, balance: Decimal) -> None:
        await asyncio.to_thread(self._store.set_balance, account_id, balance)

    async def get_accounts(self) -> list[Account]:
        return await asyncio.to_thread(self._store.get_accounts)

    async def get_account(self, account_id: int) -> Account:
        return await asyncio.to_thread(self._store.get_account, account_id)

    async def search_account_by_user(self, user_id: int) -> Account:
        return await asyncio.to_thread(self._store.search_account_by_user, user_id)

    # Transactions

    async def execute_transaction(self, intent: TransactionIntent) -> MoneyTransaction:
        return await asyncio.to_thread(self._store.execute_transaction, intent)

    async def get_transactions(self) -> list[MoneyTransaction]:
        return await asyncio.to_thread(self._store.get_transactions)

    async def get_transaction(self, transaction_id: str) -> MoneyTransaction:
        return await asyncio.to_thread(self._store.get_transaction, transaction_id)

    async def get_transactions_for_account(self, account_id: int) -> list[MoneyTransaction]:
        return await asyncio.to_thread(self._store.get_transactions_for_account, account_id)
