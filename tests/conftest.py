"""Shared fixtures for the money ledger tests."""

import pytest
from decimal import Decimal

from money_ledger.db import InMemoryStore, SqliteStore, StorageConfig
from money_ledger.observability import get_metrics
from money_ledger.schemas import AddAccountRequest, AddUserRequest


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; start every test from zero."""
    get_metrics().reset()
    yield


@pytest.fixture
def sqlite_store():
    """A migrated in-memory SQLite store."""
    store = SqliteStore(StorageConfig.memory())
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "memory"])
def store(request):
    """Every DataProvider implementation, for behaviour they must share."""
    if request.param == "sqlite":
        s = SqliteStore(StorageConfig.memory())
        yield s
        s.close()
    else:
        yield InMemoryStore()


@pytest.fixture
def user_and_account(store):
    """The reference user with a 50000 account."""
    user = store.add_user(AddUserRequest(name="scam", number="88005553535"))
    account = store.add_account(
        AddAccountRequest(user_id=user.id, name="TEST ACCOUNT", initial_balance=Decimal("50000.0"))
    )
    return user, account
