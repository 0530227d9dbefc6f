# agentic_obs_store/db/infra/backup_utils.py
"""
Online backup of the datastore file.

Functions:
- make_backup_path(db_path) -> Path
- create_backup(pool, dest=None) -> Path
- create_backup_from_file(db_path, dest=None) -> Path

Both use the sqlite3 online backup API (sqlite3.Connection.backup), so the
copy is a consistent snapshot even while other connections keep writing.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from agentic_obs_store.db.infra.core import ConnectionPool, Deadline
from agentic_obs_store.errors import StoreIOError

logger = logging.getLogger(__name__)


def make_backup_path(db_path: Path | str) -> Path:
    db_path = Path(db_path)
    ext = db_path.suffix or ".sqlite"
    ts = datetime.now().strftime("%y%m%d-%H%M%S")
    return db_path.with_name(f"{db_path.stem}_backup_{ts}{ext}")


def _copy_into(src: sqlite3.Connection, backup_path: Path) -> None:
    dest = sqlite3.connect(backup_path)
    try:
        src.backup(dest)
    finally:
        dest.close()


def _discard_partial(backup_path: Path) -> None:
    try:
        backup_path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove partial backup %s", backup_path)


def create_backup(
    pool: ConnectionPool,
    dest: Optional[Path | str] = None,
    *,
    deadline: Optional[Deadline] = None,
) -> Path:
    """
    Back up the database behind an open pool.

    Returns the path of the backup file; raises StoreIOError on failure and
    leaves no partial file behind.
    """
    backup_path = Path(dest) if dest else make_backup_path(pool.path)
    logger.info("Backing up %s to %s", pool.path, backup_path)
    try:
        with pool.connection(deadline, "back up database") as conn:
            _copy_into(conn, backup_path)
    except sqlite3.Error as exc:
        logger.exception("Failed to back up %s", pool.path)
        _discard_partial(backup_path)
        raise StoreIOError("back up database", str(backup_path), str(exc)) from exc
    return backup_path


def create_backup_from_file(db_path: Path | str, dest: Optional[Path | str] = None) -> Path:
    """Back up a datastore file that no pool has open."""
    db_path = Path(db_path)
    if not db_path.exists():
        raise StoreIOError("back up database", str(db_path), "database file not found")

    backup_path = Path(dest) if dest else make_backup_path(db_path)
    logger.info("Backing up %s to %s", db_path, backup_path)
    try:
        src = sqlite3.connect(db_path)
        try:
            _copy_into(src, backup_path)
        finally:
            src.close()
    except sqlite3.Error as exc:
        logger.exception("Failed to back up %s", db_path)
        _discard_partial(backup_path)
        raise StoreIOError("back up database", str(backup_path), str(exc)) from exc
    return backup_path
