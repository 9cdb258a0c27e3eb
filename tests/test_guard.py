"""
Tests for the connection guard.

The guard is the single chokepoint that makes one sqlite3 connection safe
to share: exclusive, fair, released on every exit path, never reentrant.
"""

import sqlite3
import threading
import time

import pytest

from money_ledger.db import ConnectionGuard, LockUnavailableError
from money_ledger.observability import get_metrics


@pytest.fixture
def guard():
    conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    g = ConnectionGuard(conn)
    yield g
    g.close()


def _wait_for_waiters(guard: ConnectionGuard, count: int, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while len(guard._waiters) < count:
        if time.monotonic() > deadline:
            raise AssertionError(f"expected {count} waiters, have {len(guard._waiters)}")
        time.sleep(0.001)


class TestBorrow:
    """Basic borrow/run behaviour."""

    def test_run_returns_result(self, guard):
        assert guard.run(lambda conn: conn.execute("SELECT 41 + 1").fetchone()[0]) == 42

    def test_released_after_exception(self, guard):
        with pytest.raises(RuntimeError):
            with guard.borrow():
                raise RuntimeError("unit of work failed")

        # Would block forever if the failure leaked the guard
        assert guard.run(lambda conn: 1) == 1

    def test_reentrant_borrow_is_refused(self, guard):
        with guard.borrow():
            with pytest.raises(LockUnavailableError, match="reentrant"):
                with guard.borrow():
                    pass

        assert guard.run(lambda conn: "ok") == "ok"

    def test_closed_guard_refuses(self, guard):
        conn = guard.run(lambda c: c)
        guard.close()

        assert guard.closed
        with pytest.raises(LockUnavailableError, match="closed"):
            guard.run(lambda c: 1)
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")

    def test_close_is_idempotent(self, guard):
        guard.close()
        guard.close()


class TestExclusion:
    """At most one unit of work holds the connection."""

    def test_never_two_holders(self, guard):
        active = 0
        peak = 0
        counter_lock = threading.Lock()

        def unit(conn):
            nonlocal active, peak
            with counter_lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.002)
            with counter_lock:
                active -= 1

        threads = [threading.Thread(target=guard.run, args=(unit,)) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak == 1

    def test_waiters_served_in_arrival_order(self, guard):
        order = []

        def worker(i):
            guard.run(lambda conn: order.append(i))

        threads = []
        with guard.borrow():
            for i in range(5):
                t = threading.Thread(target=worker, args=(i,))
                t.start()
                _wait_for_waiters(guard, i + 1)
                threads.append(t)

        for t in threads:
            t.join()

        assert order == [0, 1, 2, 3, 4]

    def test_timed_out_waiter_gives_up(self, guard):
        errors = []

        def worker():
            try:
                guard.run(lambda conn: None, timeout=0.05)
            except LockUnavailableError as e:
                errors.append(e)

        with guard.borrow():
            t = threading.Thread(target=worker)
            t.start()
            t.join()

        assert len(errors) == 1
        assert "Timed out" in str(errors[0])
        assert len(guard._waiters) == 0
        assert get_metrics().guard_timeouts == 1
        # Still usable afterwards
        assert guard.run(lambda conn: 1) == 1

    def test_default_timeout_from_constructor(self):
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        guard = ConnectionGuard(conn, timeout=0.05)
        errors = []

        def worker():
            try:
                with guard.borrow():
                    pass
            except LockUnavailableError as e:
                errors.append(e)

        with guard.borrow():
            t = threading.Thread(target=worker)
            t.start()
            t.join()

        assert len(errors) == 1
        guard.close()

    def test_close_outwaits_default_timeout(self):
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        guard = ConnectionGuard(conn, timeout=0.05)
        holding = threading.Event()

        def slow_unit():
            with guard.borrow():
                holding.set()
                time.sleep(0.2)

        t = threading.Thread(target=slow_unit)
        t.start()
        holding.wait()

        guard.close()
        t.join()

        assert guard.closed
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")

    def test_waiters_released_by_close_get_error(self, guard):
        errors = []

        def worker():
            try:
                guard.run(lambda conn: None)
            except LockUnavailableError as e:
                errors.append(e)

        with guard.borrow():
            # The closer queues first, the worker behind it
            closer = threading.Thread(target=guard.close)
            closer.start()
            _wait_for_waiters(guard, 1)
            t = threading.Thread(target=worker)
            t.start()
            _wait_for_waiters(guard, 2)

        t.join()
        closer.join()

        assert guard.closed
        assert len(errors) == 1
