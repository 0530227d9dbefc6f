"""db/kv.py

String key-value tables. Two key-spaces with identical shape:

- "config"  durable settings (connection, feature toggles, dashboard server)
- "state"   mutable runtime state (first run, last connection, ...)

Construction modes:

- KeyValueDAO("state", pool=pool)
- KeyValueDAO("state", conn=sqlite3.Connection)

Values are opaque strings; type coercion belongs to db/settings.py.
"""
import logging
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterable, Optional, Tuple

from agentic_obs_store.db.infra.core import (
    BaseDAO,
    ConnectionPool,
    Deadline,
    translate_db_error,
    utc_timestamp,
)
from agentic_obs_store.db.infra.sql_utils import placeholders
from agentic_obs_store.errors import NotFoundError

logger = logging.getLogger(__name__)

CONFIG_TABLE = "config"
STATE_TABLE = "state"
KEY_VALUE_TABLES = (CONFIG_TABLE, STATE_TABLE)


class KeyValueDAO(BaseDAO):
    def __init__(self, table: str, pool: Optional[ConnectionPool] = None, conn=None):
        if table not in KEY_VALUE_TABLES:
            raise ValueError(f"unknown key-value table {table!r}; expected one of {KEY_VALUE_TABLES}")
        super().__init__(pool=pool, conn=conn)
        self.table = table

    @property
    def _kind(self) -> str:
        return f"{self.table} key"

    # -----------------------
    # READ operations
    # -----------------------

    def get(self, key: str, *, deadline: Optional[Deadline] = None) -> str:
        logger.debug("Loading %s key %s from DB", self.table, key)
        try:
            with self._connection(deadline=deadline, operation=f"get {self._kind}") as conn:
                row = conn.execute(
                    f"SELECT value FROM {self.table} WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Failed to load %s key %s from DB", self.table, key)
            raise translate_db_error(exc, f"get {self._kind}", key) from exc

        if row is None:
            raise NotFoundError(self._kind, key)
        return row["value"]

    def get_many(self, keys: Iterable[str], *, deadline: Optional[Deadline] = None) -> Dict[str, str]:
        """Values for the keys that exist; absent keys are simply missing."""
        keys = list(keys)
        if not keys:
            return {}
        marks = placeholders(len(keys))
        logger.debug("Loading %d %s keys from DB", len(keys), self.table)
        try:
            with self._connection(deadline=deadline, operation=f"get {self._kind}s") as conn:
                rows = conn.execute(
                    f"SELECT key, value FROM {self.table} WHERE key IN ({marks})",
                    tuple(keys),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to load %s keys from DB", self.table)
            raise translate_db_error(exc, f"get {self._kind}s", keys) from exc

        return {row["key"]: row["value"] for row in rows}

    def list(self, *, deadline: Optional[Deadline] = None) -> Dict[str, str]:
        logger.debug("Listing %s entries from DB", self.table)
        try:
            with self._connection(deadline=deadline, operation=f"list {self.table}") as conn:
                rows = conn.execute(
                    f"SELECT key, value FROM {self.table} ORDER BY key"
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to list %s entries from DB", self.table)
            raise translate_db_error(exc, f"list {self.table}") from exc

        return {row["key"]: row["value"] for row in rows}

    # -----------------------
    # WRITE operations
    # -----------------------

    def set(self, key: str, value: str, *, deadline: Optional[Deadline] = None) -> None:
        self.set_many([(key, value)], deadline=deadline)

    def set_many(self, items: Iterable[Tuple[str, str]], *, deadline: Optional[Deadline] = None) -> None:
        """Upsert several keys in one transaction."""
        items = list(items)
        for key, value in items:
            if not isinstance(value, str):
                raise TypeError(f"{self.table} values must be strings, got {type(value).__name__} for {key!r}")

        logger.info("Saving %d %s key(s) to DB", len(items), self.table)
        try:
            with self._connection(write=True, deadline=deadline, operation=f"set {self._kind}") as conn:
                ts = utc_timestamp()
                conn.executemany(
                    f"""
                    INSERT INTO {self.table} (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    [(key, value, ts) for key, value in items],
                )
        except sqlite3.Error as exc:
            logger.exception("Failed to save %s keys to DB", self.table)
            raise translate_db_error(exc, f"set {self._kind}", [k for k, _ in items]) from exc

    def delete(self, key: str, *, deadline: Optional[Deadline] = None) -> None:
        """Deleting an absent key succeeds."""
        logger.info("Deleting %s key %s from DB", self.table, key)
        try:
            with self._connection(write=True, deadline=deadline, operation=f"delete {self._kind}") as conn:
                conn.execute(
                    f"DELETE FROM {self.table} WHERE key = ?",
                    (key,),
                )
        except sqlite3.Error as exc:
            logger.exception("Failed to delete %s key %s from DB", self.table, key)
            raise translate_db_error(exc, f"delete {self._kind}", key) from exc


# -----------------------
# Transaction-scoped DAO
# -----------------------

@contextmanager
def kv_dao(pool: ConnectionPool, table: str, deadline: Optional[Deadline] = None):
    """
    Yield a KeyValueDAO bound to a single write transaction.
    """
    with pool.transaction(write=True, deadline=deadline, operation=f"update {table}") as conn:
        yield KeyValueDAO(table, conn=conn)
