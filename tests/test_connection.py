"""Tests for the explicit transaction helper."""

import sqlite3

import pytest

from money_ledger.db.connection import transaction


class _ScriptedConnection:
    """Records statements and fails the ones it is told to."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.in_transaction = False
        self.statements = []

    def execute(self, sql):
        self.statements.append(sql)
        if sql in self.fail_on:
            raise sqlite3.OperationalError(f"{sql} failed")
        if sql.startswith("BEGIN"):
            self.in_transaction = True
        elif sql in ("COMMIT", "ROLLBACK"):
            self.in_transaction = False


class TestTransaction:

    def test_commits_on_success(self):
        conn = _ScriptedConnection()

        with transaction(conn):
            conn.execute("UPDATE x")

        assert conn.statements == ["BEGIN IMMEDIATE", "UPDATE x", "COMMIT"]

    def test_rolls_back_on_error(self):
        conn = _ScriptedConnection()

        with pytest.raises(ValueError):
            with transaction(conn):
                raise ValueError("boom")

        assert conn.statements == ["BEGIN IMMEDIATE", "ROLLBACK"]

    def test_failed_commit_is_rolled_back(self):
        conn = _ScriptedConnection(fail_on={"COMMIT"})

        with pytest.raises(sqlite3.OperationalError, match="COMMIT failed"):
            with transaction(conn):
                conn.execute("UPDATE x")

        assert conn.statements[-1] == "ROLLBACK"
        assert not conn.in_transaction

    def test_failed_rollback_keeps_original_error(self):
        conn = _ScriptedConnection(fail_on={"ROLLBACK"})

        with pytest.raises(ValueError, match="boom"):
            with transaction(conn):
                raise ValueError("boom")

    def test_failed_rollback_after_failed_commit(self):
        conn = _ScriptedConnection(fail_on={"COMMIT", "ROLLBACK"})

        with pytest.raises(sqlite3.OperationalError, match="COMMIT failed"):
            with transaction(conn):
                pass

    def test_real_connection_left_clean(self):
        conn = sqlite3.connect(":memory:", isolation_level=None)
        conn.execute("CREATE TABLE t (x)")

        with pytest.raises(sqlite3.IntegrityError):
            with transaction(conn):
                conn.execute("INSERT INTO t VALUES (1)")
                raise sqlite3.IntegrityError("constraint")

        assert not conn.in_transaction
        assert conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0
