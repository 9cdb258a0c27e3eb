"""
Connection Guard

Owns the single physical database connection and hands it out to one unit
of work at a time.

    with guard.borrow() as conn:
        conn.execute(...)

    result = guard.run(lambda conn: conn.execute(...).fetchall())

RULES:
- Every statement, reads included, runs inside a borrow.
- Waiters are served in arrival order, so nobody starves.
- A unit of work must NOT borrow again. Reentrant use from the owning
  thread raises LockUnavailableError instead of deadlocking.
- A waiter that times out never touches the connection.
"""

import time
from collections import deque
from contextlib import contextmanager
from threading import Event, Lock, get_ident
from typing import Any, Callable, Generator, Optional, TypeVar

from ..observability import get_logger, get_metrics
from .errors import LockUnavailableError

logger = get_logger(__name__)

T = TypeVar("T")


class ConnectionGuard:
    """
    FIFO mutual exclusion around one connection.

    The connection object is never exposed outside borrow()/run().
    """

    def __init__(self, connection: Any, timeout: Optional[float] = None):
        """
        Args:
            connection: The physical handle. The guard takes ownership.
            timeout: Default seconds to wait for access (None = forever).
        """
        self._connection = connection
        self._timeout = timeout

        self._mutex = Lock()  # protects the fields below
        self._waiters: deque[Event] = deque()
        self._busy = False
        self._owner: Optional[int] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _acquire(self, timeout: Optional[float]) -> None:
        ident = get_ident()
        start = time.perf_counter()

        with self._mutex:
            if self._closed:
                raise LockUnavailableError("Connection guard is closed")
            if self._owner == ident:
                raise LockUnavailableError(
                    "Connection guard is not reentrant: "
                    "a unit of work tried to borrow the connection again"
                )
            if not self._busy and not self._waiters:
                self._busy = True
                self._owner = ident
                return
            waiter = Event()
            self._waiters.append(waiter)

        if not waiter.wait(timeout):
            with self._mutex:
                # Still queued means nobody handed us the connection
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                    get_metrics().record_guard_timeout()
                    raise LockUnavailableError(
                        f"Timed out after {timeout}s waiting for the connection"
                    )

        with self._mutex:
            if self._closed:
                self._release_locked()
                raise LockUnavailableError("Connection guard is closed")
            self._owner = ident

        get_metrics().record_guard_wait((time.perf_counter() - start) * 1000)

    def _release_locked(self) -> None:
        # Caller holds self._mutex
        self._owner = None
        if self._waiters:
            # Hand off directly so arrivals cannot overtake the queue
            self._waiters.popleft().set()
        else:
            self._busy = False

    def _release(self) -> None:
        with self._mutex:
            self._release_locked()

    @contextmanager
    def borrow(self, timeout: Optional[float] = None) -> Generator[Any, None, None]:
        """
        Borrow the connection for the duration of the with-block.

        Access is released on every exit path, including exceptions.

        Raises:
            LockUnavailableError: closed guard, reentrant use, or timeout
        """
        self._acquire(self._timeout if timeout is None else timeout)
        try:
            yield self._connection
        finally:
            self._release()

    def run(self, unit: Callable[[Any], T], timeout: Optional[float] = None) -> T:
        """Run `unit(connection)` with exclusive access and return its result."""
        with self.borrow(timeout) as conn:
            return unit(conn)

    def close(self) -> None:
        """
        Close the connection after any in-flight unit of work finishes.

        Idempotent. Later borrows raise LockUnavailableError. Waits as long
        as it takes, ignoring the guard's default timeout.
        """
        if self._closed:
            return
        try:
            self._acquire(None)
        except LockUnavailableError:
            # Lost a race with another close()
            if self._closed:
                return
            raise
        try:
            with self._mutex:
                self._closed = True
            self._connection.close()
        finally:
            self._release()
        logger.debug("Connection guard closed")
