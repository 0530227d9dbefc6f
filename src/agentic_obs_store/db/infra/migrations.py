"""
Schema migration engine.

MIGRATIONS is a fixed, ordered sequence of idempotent DDL statements
rendered from SCHEMA and INDEXES. Applying it:

- runs every statement inside one write transaction
- records len(MIGRATIONS) as the single schema_version row
- rolls everything back if any statement fails

Re-running against an up-to-date database is a no-op. A database whose
recorded version is newer than len(MIGRATIONS) is refused.
"""
import logging
import sqlite3
from typing import Optional, Sequence

from agentic_obs_store.db.infra.core import (
    ConnectionPool,
    Deadline,
    is_interrupt,
    utc_timestamp,
)
from agentic_obs_store.db.infra.schema import INDEXES, SCHEMA
from agentic_obs_store.db.infra.sql_utils import quote_column_list, quote_ident
from agentic_obs_store.errors import MigrationError, OperationCancelledError

logger = logging.getLogger(__name__)


def render_create_table(table: str, table_def: dict) -> str:
    columns = table_def["columns"]
    constraints = table_def.get("constraints", {})

    col_defs = [f"{quote_ident(c)} {typ}" for c, typ in columns.items()]

    for fk in constraints.get("foreign_keys", []):
        clause = f"FOREIGN KEY({quote_column_list(fk['column'])}) REFERENCES {fk['references']}"
        if fk.get("on_delete"):
            clause += f" ON DELETE {fk['on_delete']}"
        col_defs.append(clause)

    return f"CREATE TABLE IF NOT EXISTS {quote_ident(table)} ({', '.join(col_defs)})"


def render_create_index(name: str, table: str, columns: Sequence[str]) -> str:
    return (
        f"CREATE INDEX IF NOT EXISTS {quote_ident(name)} "
        f"ON {quote_ident(table)} ({quote_column_list(columns)})"
    )


def build_migrations() -> tuple[str, ...]:
    statements = [render_create_table(t, d) for t, d in SCHEMA.items()]
    statements += [render_create_index(n, t, cols) for n, t, cols in INDEXES]
    return tuple(statements)


MIGRATIONS = build_migrations()


def current_schema_version(conn: sqlite3.Connection) -> Optional[int]:
    """Recorded schema version, or None for a database never migrated."""
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ).fetchone()
    if not row:
        return None
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0]


def run_migrations(conn: sqlite3.Connection, migrations: Optional[Sequence[str]] = None) -> int:
    """
    Apply migrations on a connection that is already inside a write
    transaction. The caller commits or rolls back.
    """
    migrations = MIGRATIONS if migrations is None else migrations
    target = len(migrations)

    existing = current_schema_version(conn)
    if existing is not None and existing > target:
        raise MigrationError(
            "migrate schema",
            existing,
            f"database schema version {existing} is newer than supported version {target}",
        )

    for step, statement in enumerate(migrations):
        try:
            conn.execute(statement)
        except sqlite3.Error as exc:
            if is_interrupt(exc):
                raise OperationCancelledError("migrate schema", "interrupted by deadline") from exc
            logger.error("Migration step %d failed: %s", step, exc)
            raise MigrationError(f"apply migration step {step}", None, str(exc)) from exc

    if existing != target:
        # exactly one row
        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (target, utc_timestamp()),
        )
        logger.info("Schema migrated from version %s to %d", existing, target)
    else:
        logger.debug("Schema already at version %d", target)

    return target


def apply_migrations(conn: sqlite3.Connection, migrations: Optional[Sequence[str]] = None) -> int:
    """
    Apply migrations on a bare connection (autocommit mode, no open
    transaction), managing the transaction here.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        version = run_migrations(conn, migrations)
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
    return version


def migrate(
    pool: ConnectionPool,
    *,
    deadline: Optional[Deadline] = None,
    migrations: Optional[Sequence[str]] = None,
) -> int:
    logger.info("Applying schema migrations to %s", pool.path)
    try:
        with pool.transaction(write=True, deadline=deadline, operation="migrate schema") as conn:
            return run_migrations(conn, migrations)
    except MigrationError:
        logger.exception("Schema migration failed for %s", pool.path)
        raise
