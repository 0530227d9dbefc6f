# db/infra/maintenance.py
"""
Bulk retention helpers used by the admin CLI.

- trim_all_sources / preview_trim   keep the latest N images per source
- prune_actions / preview_prune     drop action records older than a cutoff

Each mutating helper runs in a single write transaction; the preview
helpers are read-only and report exactly the rows the mutation would hit.
"""
import logging
import sqlite3
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, List, Optional

from agentic_obs_store.db.actions import ActionLogDAO
from agentic_obs_store.db.captures import CaptureDAO
from agentic_obs_store.db.infra.core import (
    ConnectionPool,
    Deadline,
    to_db_timestamp,
    translate_db_error,
)

logger = logging.getLogger(__name__)


def _selected_sources(dao: CaptureDAO, source_name: Optional[str], deadline: Optional[Deadline]):
    if source_name:
        return [dao.get_source_by_name(source_name, deadline=deadline)]
    return dao.list_sources(deadline=deadline)


def trim_all_sources(
    pool: ConnectionPool,
    keep: int,
    source_name: Optional[str] = None,
    *,
    deadline: Optional[Deadline] = None,
) -> Dict[str, int]:
    """
    Keep the `keep` most recent images of every source (or only of
    `source_name`). Returns {source name: images deleted}.
    """
    if keep is None or keep < 0:
        raise ValueError("keep must be a non-negative integer")

    deleted: Dict[str, int] = {}
    with pool.transaction(write=True, deadline=deadline, operation="trim captured images") as conn:
        dao = CaptureDAO(conn=conn)
        for source in _selected_sources(dao, source_name, deadline):
            deleted[source.name] = dao.trim_to_latest(source.id, keep, deadline=deadline)

    logger.info(
        "Trimmed %d captured image(s) (keep=%d) for source=%s",
        sum(deleted.values()),
        keep,
        source_name or "<all>",
    )
    return deleted


def preview_trim(
    pool: ConnectionPool,
    keep: int,
    source_name: Optional[str] = None,
    *,
    deadline: Optional[Deadline] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Images trim_all_sources() WOULD delete: {source name: [{id, captured_at,
    size_bytes}, ...]}. Sources with nothing to delete are left out.
    """
    if keep is None or keep < 0:
        raise ValueError("keep must be a non-negative integer")

    result: Dict[str, List[Dict[str, Any]]] = {}
    try:
        with pool.transaction(deadline=deadline, operation="preview image trim") as conn:
            dao = CaptureDAO(conn=conn)
            for source in _selected_sources(dao, source_name, deadline):
                rows = conn.execute(
                    """
                    SELECT id, captured_at, size_bytes
                    FROM captured_images
                    WHERE source_id = ?
                    ORDER BY captured_at DESC, id DESC
                    """,
                    (source.id,),
                ).fetchall()
                doomed = [dict(r) for r in rows[keep:]]
                if doomed:
                    result[source.name] = doomed
    except sqlite3.Error as exc:
        logger.exception("Failed to preview image trim")
        raise translate_db_error(exc, "preview image trim", source_name) from exc
    return result


def prune_actions(
    pool: ConnectionPool,
    older_than: timedelta,
    *,
    deadline: Optional[Deadline] = None,
) -> int:
    return ActionLogDAO(pool=pool).prune_older_than(older_than, deadline=deadline)


def preview_prune(
    pool: ConnectionPool,
    older_than: timedelta,
    *,
    deadline: Optional[Deadline] = None,
) -> List[Dict[str, Any]]:
    """Action records prune_actions() WOULD delete, oldest first."""
    try:
        with pool.transaction(deadline=deadline, operation="preview action prune") as conn:
            if older_than <= timedelta(0):
                rows = conn.execute(
                    "SELECT id, label, operation_name, created_at FROM action_log ORDER BY created_at, id"
                ).fetchall()
            else:
                cutoff = to_db_timestamp(datetime.now(UTC) - older_than)
                rows = conn.execute(
                    """
                    SELECT id, label, operation_name, created_at
                    FROM action_log
                    WHERE created_at < ?
                    ORDER BY created_at, id
                    """,
                    (cutoff,),
                ).fetchall()
    except sqlite3.Error as exc:
        logger.exception("Failed to preview action prune")
        raise translate_db_error(exc, "preview action prune") from exc
    return [dict(r) for r in rows]
