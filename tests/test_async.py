"""Tests for the coroutine facade."""

import asyncio
from decimal import Decimal

import pytest

from money_ledger.db import AsyncStore, InMemoryStore, NotFoundError, SqliteStore, StorageConfig
from money_ledger.schemas import (
    AddAccountRequest,
    AddUserRequest,
    PaymentType,
    TransactionIntent,
)


@pytest.fixture
def async_store():
    store = SqliteStore(StorageConfig.memory())
    yield AsyncStore(store)
    store.close()


def test_wraps_the_given_store():
    inner = InMemoryStore()
    assert AsyncStore(inner).store is inner


def test_user_and_account_round_trip(async_store):
    async def scenario():
        user = await async_store.add_user(AddUserRequest(name="scam", number="88005553535"))
        account = await async_store.add_account(
            AddAccountRequest(user_id=user.id, name="main", initial_balance=Decimal("10"))
        )
        await async_store.set_balance(account.id, Decimal("20"))
        found = await async_store.search_account_by_user(user.id)
        return user, found

    user, found = asyncio.run(scenario())

    assert found.user_id == user.id
    assert found.balance == Decimal("20")


def test_errors_propagate(async_store):
    with pytest.raises(NotFoundError):
        asyncio.run(async_store.get_user_by_number("missing"))


def test_concurrent_movements_compose(async_store):
    """Movements gathered on one loop are serialised by the guard."""
    async def scenario():
        account = await async_store.add_account(AddAccountRequest(user_id=1, name="shared"))

        def intent(payment_type, amount):
            return TransactionIntent(
                account=account,
                amount=Decimal(amount),
                description="",
                payment_type=payment_type,
                payment_target="",
            )

        await asyncio.gather(
            async_store.execute_transaction(intent(PaymentType.INCOME, "100")),
            async_store.execute_transaction(intent(PaymentType.OUTCOME, "40")),
        )
        balance = (await async_store.get_account(account.id)).balance
        ledger = await async_store.get_transactions_for_account(account.id)
        return balance, ledger

    balance, ledger = asyncio.run(scenario())

    assert balance == Decimal("60")
    assert sorted(t.payment_type for t in ledger) == [PaymentType.INCOME, PaymentType.OUTCOME]


def test_deletes(async_store):
    async def scenario():
        user = await async_store.add_user(AddUserRequest(name="a", number="1"))
        account = await async_store.add_account(AddAccountRequest(user_id=user.id, name="x"))
        await async_store.delete_account(account)
        await async_store.delete_user_by_id(user.id)
        return await async_store.get_users(), await async_store.get_accounts()

    assert asyncio.run(scenario()) == ([], [])
