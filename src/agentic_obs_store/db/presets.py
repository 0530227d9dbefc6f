"""db/presets.py

Named presets: a target scene plus an ordered list of per-element
visibility/settings snapshots, stored as JSON.

Construction modes:

- PresetDAO(pool=pool)
- PresetDAO(conn=sqlite3.Connection)

Support for atomic multi-step operations:

with preset_dao(pool) as dao:
    dao.delete_by_target("Old Scene")
    dao.create(Preset(name="intro", target="New Scene", elements=[...]))
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import List, Optional

from agentic_obs_store.db.infra.core import (
    BaseDAO,
    ConnectionPool,
    Deadline,
    load_json_field,
    translate_db_error,
    utc_timestamp,
)
from agentic_obs_store.errors import AlreadyExistsError, InvalidStateError, NotFoundError
from agentic_obs_store.models import Preset, PresetElement

logger = logging.getLogger(__name__)

KIND = "preset"

_COLUMNS = "id, name, target, elements, created_at"


def _serialize_elements(elements: List[PresetElement]) -> str:
    return json.dumps([e.to_dict() for e in elements])


def _row_to_preset(row) -> Preset:
    what = f"preset {row['name']!r} elements"
    decoded = load_json_field(row["elements"], what)
    if decoded is None:
        decoded = []
    if not isinstance(decoded, list):
        logger.error("Corrupt JSON payload in %s: expected a list", what)
        raise InvalidStateError(f"corrupt serialized payload in {what}: expected a list")
    try:
        elements = [PresetElement.from_dict(item) for item in decoded]
    except (KeyError, TypeError) as exc:
        logger.error("Corrupt element in %s: %s", what, exc)
        raise InvalidStateError(f"corrupt serialized payload in {what}: {exc}") from exc

    return Preset(
        id=row["id"],
        name=row["name"],
        target=row["target"],
        elements=elements,
        created_at=row["created_at"],
    )


class PresetDAO(BaseDAO):

    # -----------------------
    # READ operations
    # -----------------------

    def get(self, name: str, *, deadline: Optional[Deadline] = None) -> Preset:
        logger.debug("Loading preset %s from DB", name)
        try:
            with self._connection(deadline=deadline, operation="get preset") as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM presets WHERE name = ?",
                    (name,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Failed to load preset %s from DB", name)
            raise translate_db_error(exc, "get preset", name) from exc

        if row is None:
            raise NotFoundError(KIND, name)
        return _row_to_preset(row)

    def get_by_id(self, preset_id: int, *, deadline: Optional[Deadline] = None) -> Preset:
        logger.debug("Loading preset #%s from DB", preset_id)
        try:
            with self._connection(deadline=deadline, operation="get preset") as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM presets WHERE id = ?",
                    (preset_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Failed to load preset #%s from DB", preset_id)
            raise translate_db_error(exc, "get preset", preset_id) from exc

        if row is None:
            raise NotFoundError(KIND, preset_id, f"preset with ID {preset_id} not found")
        return _row_to_preset(row)

    def list(self, target: Optional[str] = None, *, deadline: Optional[Deadline] = None) -> List[Preset]:
        """All presets, or only those for target; newest first."""
        logger.debug("Loading presets from DB (target=%s)", target or "<all>")
        try:
            with self._connection(deadline=deadline, operation="list presets") as conn:
                if target:
                    rows = conn.execute(
                        f"""
                        SELECT {_COLUMNS} FROM presets
                        WHERE target = ?
                        ORDER BY created_at DESC, id DESC
                        """,
                        (target,),
                    ).fetchall()
                else:
                    rows = conn.execute(
                        f"SELECT {_COLUMNS} FROM presets ORDER BY created_at DESC, id DESC"
                    ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to load presets from DB")
            raise translate_db_error(exc, "list presets", target) from exc

        return [_row_to_preset(row) for row in rows]

    def count(self, *, deadline: Optional[Deadline] = None) -> int:
        try:
            with self._connection(deadline=deadline, operation="count presets") as conn:
                return conn.execute("SELECT COUNT(*) FROM presets").fetchone()[0]
        except sqlite3.Error as exc:
            logger.exception("Failed to count presets")
            raise translate_db_error(exc, "count presets") from exc

    # -----------------------
    # WRITE operations
    # -----------------------

    def create(self, preset: Preset, *, deadline: Optional[Deadline] = None) -> int:
        elements_json = _serialize_elements(preset.elements)

        logger.info("Saving preset %s to DB", preset.name)
        try:
            with self._connection(write=True, deadline=deadline, operation="create preset") as conn:
                cur = conn.execute(
                    """
                    INSERT INTO presets (name, target, elements, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (preset.name, preset.target, elements_json, utc_timestamp()),
                )
                preset_id = cur.lastrowid
        except sqlite3.Error as exc:
            error = translate_db_error(exc, "create preset", preset.name, kind=KIND)
            if isinstance(error, AlreadyExistsError):
                logger.info("Preset %s already exists", preset.name)
            else:
                logger.exception("Failed to save preset %s to DB", preset.name)
            raise error from exc

        return preset_id

    def update(self, preset: Preset, *, deadline: Optional[Deadline] = None) -> None:
        """Replace target and elements of the preset called preset.name."""
        elements_json = _serialize_elements(preset.elements)

        logger.info("Updating preset %s in DB", preset.name)
        try:
            with self._connection(write=True, deadline=deadline, operation="update preset") as conn:
                cur = conn.execute(
                    "UPDATE presets SET target = ?, elements = ? WHERE name = ?",
                    (preset.target, elements_json, preset.name),
                )
                updated = cur.rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to update preset %s in DB", preset.name)
            raise translate_db_error(exc, "update preset", preset.name) from exc

        if updated == 0:
            raise NotFoundError(KIND, preset.name)

    def rename(self, old_name: str, new_name: str, *, deadline: Optional[Deadline] = None) -> None:
        logger.info("Renaming preset %s -> %s", old_name, new_name)
        try:
            with self._connection(write=True, deadline=deadline, operation="rename preset") as conn:
                cur = conn.execute(
                    "UPDATE presets SET name = ? WHERE name = ?",
                    (new_name, old_name),
                )
                updated = cur.rowcount
        except sqlite3.Error as exc:
            error = translate_db_error(exc, "rename preset", new_name, kind=KIND)
            if not isinstance(error, AlreadyExistsError):
                logger.exception("Failed to rename preset %s -> %s", old_name, new_name)
            raise error from exc

        if updated == 0:
            raise NotFoundError(KIND, old_name)

    def delete(self, name: str, *, deadline: Optional[Deadline] = None) -> None:
        logger.info("Deleting preset %s from DB", name)
        try:
            with self._connection(write=True, deadline=deadline, operation="delete preset") as conn:
                deleted = conn.execute(
                    "DELETE FROM presets WHERE name = ?",
                    (name,),
                ).rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to delete preset %s from DB", name)
            raise translate_db_error(exc, "delete preset", name) from exc

        if deleted == 0:
            raise NotFoundError(KIND, name)

    def delete_by_id(self, preset_id: int, *, deadline: Optional[Deadline] = None) -> None:
        logger.info("Deleting preset #%s from DB", preset_id)
        try:
            with self._connection(write=True, deadline=deadline, operation="delete preset") as conn:
                deleted = conn.execute(
                    "DELETE FROM presets WHERE id = ?",
                    (preset_id,),
                ).rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to delete preset #%s from DB", preset_id)
            raise translate_db_error(exc, "delete preset", preset_id) from exc

        if deleted == 0:
            raise NotFoundError(KIND, preset_id, f"preset with ID {preset_id} not found")

    def delete_by_target(self, target: str, *, deadline: Optional[Deadline] = None) -> int:
        """Remove every preset for target (e.g. the scene was removed). Zero matches is fine."""
        logger.info("Deleting presets for target %s", target)
        try:
            with self._connection(write=True, deadline=deadline, operation="delete presets by target") as conn:
                return conn.execute(
                    "DELETE FROM presets WHERE target = ?",
                    (target,),
                ).rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to delete presets for target %s", target)
            raise translate_db_error(exc, "delete presets by target", target) from exc


# -----------------------
# Transaction-scoped DAO
# -----------------------

@contextmanager
def preset_dao(pool: ConnectionPool, deadline: Optional[Deadline] = None):
    """
    Yield a PresetDAO bound to a single transaction.
    """
    with pool.transaction(write=True, deadline=deadline, operation="update presets") as conn:
        yield PresetDAO(conn=conn)
