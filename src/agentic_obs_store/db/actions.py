"""db/actions.py

Append-only audit trail of executed actions plus aggregate statistics.

Construction modes:

- ActionLogDAO(pool=pool)
- ActionLogDAO(conn=sqlite3.Connection)

Listings are newest first (created_at, then id, descending). A limit <= 0
falls back to the DAO's default_limit.
"""
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, UTC
from typing import List, Optional

from agentic_obs_store.db.infra.core import (
    BaseDAO,
    ConnectionPool,
    Deadline,
    to_db_timestamp,
    translate_db_error,
    utc_timestamp,
)
from agentic_obs_store.models import ActionRecord, ActionStats, OperationCount

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100
TOP_OPERATIONS = 5

_COLUMNS = "id, label, operation_name, input, output, success, duration_ms, created_at"


def _row_to_record(row) -> ActionRecord:
    return ActionRecord(
        id=row["id"],
        label=row["label"],
        operation_name=row["operation_name"] or "",
        input=row["input"] or "",
        output=row["output"] or "",
        success=bool(row["success"]),
        duration_ms=row["duration_ms"] or 0,
        created_at=row["created_at"],
    )


class ActionLogDAO(BaseDAO):
    def __init__(
        self,
        pool: Optional[ConnectionPool] = None,
        conn: Optional[sqlite3.Connection] = None,
        default_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        super().__init__(pool=pool, conn=conn)
        self.default_limit = default_limit if default_limit > 0 else DEFAULT_HISTORY_LIMIT

    def _limit(self, limit: int) -> int:
        return limit if limit > 0 else self.default_limit

    def _select(self, where: str, params: tuple, limit: int, operation: str, deadline: Optional[Deadline]) -> List[ActionRecord]:
        try:
            with self._connection(deadline=deadline, operation=operation) as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM action_log
                    {where}
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    params + (self._limit(limit),),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to %s", operation)
            raise translate_db_error(exc, operation) from exc

        return [_row_to_record(row) for row in rows]

    # -----------------------
    # WRITE operations
    # -----------------------

    def append(self, record: ActionRecord, *, deadline: Optional[Deadline] = None) -> int:
        logger.debug("Recording action %s (%s)", record.label, record.operation_name or "-")
        try:
            with self._connection(write=True, deadline=deadline, operation="append action") as conn:
                cur = conn.execute(
                    """
                    INSERT INTO action_log
                        (label, operation_name, input, output, success, duration_ms, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.label,
                        record.operation_name,
                        record.input,
                        record.output,
                        int(bool(record.success)),
                        int(record.duration_ms),
                        utc_timestamp(),
                    ),
                )
                return cur.lastrowid
        except sqlite3.Error as exc:
            logger.exception("Failed to record action %s", record.label)
            raise translate_db_error(exc, "append action", record.label) from exc

    def prune_older_than(self, age: timedelta, *, deadline: Optional[Deadline] = None) -> int:
        """
        Delete records created more than age ago. A zero or negative age
        deletes everything. Returns the number of rows removed.
        """
        try:
            with self._connection(write=True, deadline=deadline, operation="prune action log") as conn:
                if age <= timedelta(0):
                    deleted = conn.execute("DELETE FROM action_log").rowcount
                else:
                    cutoff = to_db_timestamp(datetime.now(UTC) - age)
                    deleted = conn.execute(
                        "DELETE FROM action_log WHERE created_at < ?",
                        (cutoff,),
                    ).rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to prune action log")
            raise translate_db_error(exc, "prune action log") from exc

        logger.info("Pruned %d action record(s) older than %s", deleted, age)
        return deleted

    # -----------------------
    # READ operations
    # -----------------------

    def recent(self, limit: int = 0, *, deadline: Optional[Deadline] = None) -> List[ActionRecord]:
        return self._select("", (), limit, "list recent actions", deadline)

    def by_operation(self, operation_name: str, limit: int = 0, *, deadline: Optional[Deadline] = None) -> List[ActionRecord]:
        return self._select(
            "WHERE operation_name = ?", (operation_name,), limit, "list actions by operation", deadline
        )

    def since(self, ts: datetime, limit: int = 0, *, deadline: Optional[Deadline] = None) -> List[ActionRecord]:
        """Records created at or after ts."""
        return self._select(
            "WHERE created_at >= ?", (to_db_timestamp(ts),), limit, "list actions since", deadline
        )

    def count(self, *, deadline: Optional[Deadline] = None) -> int:
        try:
            with self._connection(deadline=deadline, operation="count actions") as conn:
                return conn.execute("SELECT COUNT(*) FROM action_log").fetchone()[0]
        except sqlite3.Error as exc:
            logger.exception("Failed to count actions")
            raise translate_db_error(exc, "count actions") from exc

    def stats(
        self,
        *,
        include_failed: bool = True,
        include_zero_durations: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> ActionStats:
        """
        Aggregate statistics over the whole log, read from one snapshot.

        avg_duration_ms averages duration_ms over the records selected by the
        two flags; 0.0 when nothing qualifies. top_operations holds at most
        five non-empty operation names by count, ties going to the name
        recorded first.
        """
        conditions = []
        if not include_zero_durations:
            conditions.append("duration_ms > 0")
        if not include_failed:
            conditions.append("success = 1")
        avg_where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        try:
            with self._connection(deadline=deadline, operation="compute action stats") as conn:
                total, successful = conn.execute(
                    "SELECT COUNT(*), COALESCE(SUM(success = 1), 0) FROM action_log"
                ).fetchone()
                avg = conn.execute(
                    f"SELECT AVG(duration_ms) FROM action_log {avg_where}"
                ).fetchone()[0]
                top_rows = conn.execute(
                    """
                    SELECT operation_name, COUNT(*) AS n, MIN(id) AS first_id
                    FROM action_log
                    WHERE operation_name IS NOT NULL AND operation_name != ''
                    GROUP BY operation_name
                    ORDER BY n DESC, first_id ASC
                    LIMIT ?
                    """,
                    (TOP_OPERATIONS,),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to compute action stats")
            raise translate_db_error(exc, "compute action stats") from exc

        return ActionStats(
            total=total,
            successful=successful,
            failed=total - successful,
            avg_duration_ms=float(avg) if avg is not None else 0.0,
            top_operations=[OperationCount(row["operation_name"], row["n"]) for row in top_rows],
        )


# -----------------------
# Transaction-scoped DAO
# -----------------------

@contextmanager
def action_log_dao(
    pool: ConnectionPool,
    deadline: Optional[Deadline] = None,
    default_limit: int = DEFAULT_HISTORY_LIMIT,
):
    with pool.transaction(write=True, deadline=deadline, operation="update action log") as conn:
        yield ActionLogDAO(conn=conn, default_limit=default_limit)
