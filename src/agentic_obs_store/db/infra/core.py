# db/infra/core.py
"""
Connection pool, deadlines and transaction helpers.

Every store operation runs inside one transaction obtained from
ConnectionPool.transaction():

- reads use a deferred BEGIN so multi-statement reads see one snapshot
- writes take the pool's write lock and BEGIN IMMEDIATE, retrying while
  SQLite reports the database as locked/busy until the deadline expires
- a progress handler aborts running statements once the deadline expires
  or the caller's cancel event is set; the transaction is rolled back and
  the connection goes back to the pool
"""
import json
import logging
import queue
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterator, Optional

from agentic_obs_store.errors import (
    AlreadyExistsError,
    InvalidStateError,
    OperationCancelledError,
    StoreError,
    StoreIOError,
)

logger = logging.getLogger(__name__)

# VM instructions between deadline checks while a statement runs
PROGRESS_STEPS = 1000

_POLL_SLICE = 0.05


# -----------------------
# Timestamps
# -----------------------

def to_db_timestamp(value: datetime) -> str:
    """
    Serialize a datetime for storage: UTC, ISO-8601, microsecond precision.
    Naive datetimes are taken to be UTC. Fixed width keeps lexical order
    equal to chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def utc_timestamp() -> str:
    return to_db_timestamp(datetime.now(UTC))


def parse_db_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        logger.error("Unparseable timestamp %r", value)
        raise InvalidStateError(f"unparseable timestamp {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def load_json_field(value: str | None, what: str):
    """
    Decode a JSON column. Unlike lenient UI helpers, corrupt payloads are a
    data-integrity bug and raise InvalidStateError.
    """
    if value is None or not value.strip():
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        logger.error("Corrupt JSON payload in %s", what)
        raise InvalidStateError(f"corrupt serialized payload in {what}: {exc}") from exc


# -----------------------
# Deadlines
# -----------------------

class Deadline:
    """
    Caller-supplied bound on an operation: a monotonic expiry, a cancel
    event, or both.
    """

    def __init__(
        self,
        expires_at: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.expires_at = expires_at
        self.cancel_event = cancel_event

    @classmethod
    def after(cls, seconds: float, cancel_event: Optional[threading.Event] = None) -> "Deadline":
        return cls(time.monotonic() + seconds, cancel_event)

    @classmethod
    def cancellable(cls, cancel_event: threading.Event) -> "Deadline":
        return cls(None, cancel_event)

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        if self.cancelled():
            return True
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self, operation: str) -> None:
        if self.cancelled():
            raise OperationCancelledError(operation, "cancelled by caller")
        if self.expired():
            raise OperationCancelledError(operation, "deadline exceeded")

    def __repr__(self):
        return f"Deadline(remaining={self.remaining()!r}, cancelled={self.cancelled()!r})"


# -----------------------
# Error translation
# -----------------------

def is_lock_error(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.IntegrityError) and "UNIQUE constraint failed" in str(exc)


def is_interrupt(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and "interrupted" in str(exc).lower()


def translate_db_error(
    exc: sqlite3.Error,
    operation: str,
    identifier: object = None,
    *,
    kind: str | None = None,
) -> StoreError:
    """
    Map an sqlite3 error onto the store taxonomy.

    kind names the entity for unique violations (e.g. "preset"); callers that
    cannot collide pass None and get a StoreIOError instead.
    """
    if kind is not None and is_unique_violation(exc):
        return AlreadyExistsError(kind, identifier)
    if is_interrupt(exc):
        return OperationCancelledError(operation, "interrupted by deadline")
    return StoreIOError(operation, identifier, str(exc))


# -----------------------
# Connection pool
# -----------------------

class ConnectionPool:
    """
    Bounded pool of SQLite connections to one database file.

    Sized for a few concurrent readers; writes are serialized through a
    single in-process write lock since the engine allows one writer anyway.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        max_connections: int = 4,
        busy_timeout_ms: int = 5000,
        journal_mode: str = "WAL",
        operation_timeout: float = 30.0,
    ):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")

        self.path = str(path)
        self.max_connections = max_connections
        self.busy_timeout_ms = busy_timeout_ms
        self.journal_mode = journal_mode
        self.operation_timeout = operation_timeout

        self._idle: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue()
        self._slots = threading.BoundedSemaphore(max_connections)
        self._write_lock = threading.Lock()
        self._closed = False

    # -----------------------
    # internal helpers
    # -----------------------

    def _connect(self) -> sqlite3.Connection:
        logger.debug("Opening SQLite connection to %s", self.path)
        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000,
            isolation_level=None,  # transactions are managed explicitly
            check_same_thread=False,
        )
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            conn.execute(f"PRAGMA journal_mode = {self.journal_mode}")
        except Exception:
            conn.close()
            raise
        return conn

    def _acquire(self, primitive, deadline: Deadline, operation: str) -> None:
        while True:
            deadline.check(operation)
            remaining = deadline.remaining()
            slice_ = _POLL_SLICE if remaining is None else min(_POLL_SLICE, remaining)
            if primitive.acquire(timeout=slice_):
                return

    def _begin(self, conn: sqlite3.Connection, write: bool, deadline: Deadline, operation: str) -> None:
        statement = "BEGIN IMMEDIATE" if write else "BEGIN"
        delay = 0.01
        while True:
            deadline.check(operation)
            try:
                conn.execute(statement)
                return
            except sqlite3.OperationalError as exc:
                if not is_lock_error(exc):
                    raise translate_db_error(exc, operation) from exc
                logger.debug("Database busy while starting %s, retrying", operation)
                remaining = deadline.remaining()
                time.sleep(delay if remaining is None else min(delay, remaining))
                delay = min(delay * 2, 0.25)

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # an expired deadline must not interrupt the rollback itself
        conn.set_progress_handler(None, 0)
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    # -----------------------
    # public API
    # -----------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def resolve(self, deadline: Optional[Deadline]) -> Deadline:
        """Operations never run unbounded: fall back to the pool's timeout."""
        if deadline is None:
            return Deadline.after(self.operation_timeout)
        return deadline

    @contextmanager
    def connection(self, deadline: Optional[Deadline] = None, operation: str = "acquire connection") -> Iterator[sqlite3.Connection]:
        """
        Borrow a connection for the duration of the block. The deadline is
        enforced while waiting for a free slot and while statements run.
        """
        deadline = self.resolve(deadline)
        if self._closed:
            raise StoreIOError(operation, self.path, "connection pool is closed")

        self._acquire(self._slots, deadline, operation)
        try:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                try:
                    conn = self._connect()
                except sqlite3.Error as exc:
                    logger.exception("Failed to open database at %s", self.path)
                    raise StoreIOError("open database", self.path, str(exc)) from exc

            conn.set_progress_handler(lambda: 1 if deadline.expired() else 0, PROGRESS_STEPS)
            try:
                yield conn
            finally:
                conn.set_progress_handler(None, 0)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if self._closed:
                    conn.close()
                else:
                    self._idle.put(conn)
        finally:
            self._slots.release()

    @contextmanager
    def transaction(
        self,
        *,
        write: bool = False,
        deadline: Optional[Deadline] = None,
        operation: str = "run transaction",
    ) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection inside an open transaction.
        Commits on normal exit, rolls back on any exception.
        """
        deadline = self.resolve(deadline)
        with self.connection(deadline, operation) as conn:
            if write:
                self._acquire(self._write_lock, deadline, operation)
            try:
                self._begin(conn, write, deadline, operation)
                try:
                    yield conn
                except BaseException:
                    self._rollback(conn)
                    raise
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    self._rollback(conn)
                    raise translate_db_error(exc, operation) from exc
            finally:
                if write:
                    self._write_lock.release()

    def ping(self, deadline: Optional[Deadline] = None) -> None:
        try:
            with self.connection(deadline, "ping database") as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            raise StoreIOError("ping database", self.path, str(exc)) from exc

    def close(self) -> None:
        """Close idle connections; borrowed ones are closed when returned. Idempotent."""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
        logger.debug("Closed connection pool for %s", self.path)


# -----------------------
# DAO base
# -----------------------

class BaseDAO:
    """
    Construction modes:

    - SomeDAO(pool=ConnectionPool(...))   each call runs in its own transaction
    - SomeDAO(conn=sqlite3.Connection)    calls join the caller's transaction
    """

    def __init__(self, pool: Optional[ConnectionPool] = None, conn: Optional[sqlite3.Connection] = None):
        if conn is None and pool is None:
            raise ValueError(f"{type(self).__name__} requires either pool or conn")

        self._pool = pool
        self._conn = conn

    @contextmanager
    def _connection(
        self,
        *,
        write: bool = False,
        deadline: Optional[Deadline] = None,
        operation: str = "run transaction",
    ) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection.
        If DAO was constructed with a connection, reuse it.
        Otherwise, open a new transaction from the pool.
        """
        if self._conn is not None:
            if deadline is not None:
                deadline.check(operation)
            yield self._conn
        else:
            with self._pool.transaction(write=write, deadline=deadline, operation=operation) as conn:
                yield conn
