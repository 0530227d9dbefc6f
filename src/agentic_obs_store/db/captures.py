"""db/captures.py

Capture sources and the images they produce.

Construction modes:

- CaptureDAO(pool=pool)
- CaptureDAO(conn=sqlite3.Connection)

Images are append-only; save_image() never trims. Retention is the
separate trim_to_latest() call so capture latency is not tied to cleanup
cost. Deleting a source cascades to its images (ON DELETE CASCADE).
"""
import logging
import sqlite3
from contextlib import contextmanager
from typing import List, Optional

from agentic_obs_store.db.infra.core import (
    BaseDAO,
    ConnectionPool,
    Deadline,
    translate_db_error,
    utc_timestamp,
)
from agentic_obs_store.errors import (
    AlreadyExistsError,
    InvalidStateError,
    NoImagesError,
    NotFoundError,
)
from agentic_obs_store.models import (
    DEFAULT_CADENCE_MS,
    DEFAULT_QUALITY,
    MIN_CADENCE_MS,
    CapturedImage,
    CaptureSource,
    ImageFormat,
)

logger = logging.getLogger(__name__)

KIND = "capture source"

_SOURCE_COLUMNS = (
    "id, name, target, cadence_ms, format, width, height, quality, enabled, created_at, updated_at"
)
_IMAGE_COLUMNS = "id, source_id, payload, mime_type, captured_at, size_bytes"

_FORMAT_ALIASES = {"png": "png", "jpg": "jpg", "jpeg": "jpg"}


def normalize_source(source: CaptureSource) -> CaptureSource:
    """
    Apply defaults for unset cadence/format/quality and validate the rest.
    Raises ValueError for out-of-range values.
    """
    cadence = source.cadence_ms if source.cadence_ms and source.cadence_ms > 0 else DEFAULT_CADENCE_MS
    if cadence < MIN_CADENCE_MS:
        raise ValueError(f"cadence_ms must be at least {MIN_CADENCE_MS}, got {cadence}")

    fmt = source.format or ImageFormat.PNG
    if not isinstance(fmt, ImageFormat):
        alias = _FORMAT_ALIASES.get(str(fmt).strip().lower())
        if alias is None:
            raise ValueError(f"unsupported image format {source.format!r}; expected png or jpg")
        fmt = ImageFormat(alias)

    quality = source.quality if source.quality and source.quality > 0 else DEFAULT_QUALITY
    if quality > 100:
        raise ValueError(f"quality must be between 0 and 100, got {quality}")

    if source.width < 0 or source.height < 0:
        raise ValueError("width and height must be non-negative (0 = native size)")

    return CaptureSource(
        id=source.id,
        name=source.name,
        target=source.target,
        cadence_ms=cadence,
        format=fmt,
        width=source.width,
        height=source.height,
        quality=quality,
        enabled=bool(source.enabled),
        created_at=source.created_at,
        updated_at=source.updated_at,
    )


def _row_to_source(row) -> CaptureSource:
    try:
        fmt = ImageFormat(row["format"])
    except ValueError:
        logger.error("Capture source %r has unknown format %r", row["name"], row["format"])
        raise InvalidStateError(f"capture source {row['name']!r} has unknown format {row['format']!r}")
    return CaptureSource(
        id=row["id"],
        name=row["name"],
        target=row["target"],
        cadence_ms=row["cadence_ms"],
        format=fmt,
        width=row["width"] or 0,
        height=row["height"] or 0,
        quality=row["quality"],
        enabled=bool(row["enabled"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_image(row) -> CapturedImage:
    return CapturedImage(
        id=row["id"],
        source_id=row["source_id"],
        payload=row["payload"],
        mime_type=row["mime_type"],
        captured_at=row["captured_at"],
        size_bytes=row["size_bytes"],
    )


class CaptureDAO(BaseDAO):

    # -----------------------
    # Sources: READ
    # -----------------------

    def get_source(self, source_id: int, *, deadline: Optional[Deadline] = None) -> CaptureSource:
        logger.debug("Loading capture source #%s from DB", source_id)
        try:
            with self._connection(deadline=deadline, operation="get capture source") as conn:
                row = conn.execute(
                    f"SELECT {_SOURCE_COLUMNS} FROM capture_sources WHERE id = ?",
                    (source_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Failed to load capture source #%s from DB", source_id)
            raise translate_db_error(exc, "get capture source", source_id) from exc

        if row is None:
            raise NotFoundError(KIND, source_id, f"capture source with ID {source_id} not found")
        return _row_to_source(row)

    def get_source_by_name(self, name: str, *, deadline: Optional[Deadline] = None) -> CaptureSource:
        logger.debug("Loading capture source %s from DB", name)
        try:
            with self._connection(deadline=deadline, operation="get capture source") as conn:
                row = conn.execute(
                    f"SELECT {_SOURCE_COLUMNS} FROM capture_sources WHERE name = ?",
                    (name,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Failed to load capture source %s from DB", name)
            raise translate_db_error(exc, "get capture source", name) from exc

        if row is None:
            raise NotFoundError(KIND, name)
        return _row_to_source(row)

    def list_sources(self, *, deadline: Optional[Deadline] = None) -> List[CaptureSource]:
        """All sources, newest first."""
        logger.debug("Loading capture sources from DB")
        try:
            with self._connection(deadline=deadline, operation="list capture sources") as conn:
                rows = conn.execute(
                    f"SELECT {_SOURCE_COLUMNS} FROM capture_sources ORDER BY created_at DESC, id DESC"
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Failed to load capture sources from DB")
            raise translate_db_error(exc, "list capture sources") from exc

        return [_row_to_source(row) for row in rows]

    # -----------------------
    # Sources: WRITE
    # -----------------------

    def create_source(self, source: CaptureSource, *, deadline: Optional[Deadline] = None) -> int:
        source = normalize_source(source)

        logger.info("Saving capture source %s to DB", source.name)
        try:
            with self._connection(write=True, deadline=deadline, operation="create capture source") as conn:
                ts = utc_timestamp()
                cur = conn.execute(
                    """
                    INSERT INTO capture_sources
                        (name, target, cadence_ms, format, width, height, quality, enabled, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source.name,
                        source.target,
                        source.cadence_ms,
                        source.format.value,
                        source.width,
                        source.height,
                        source.quality,
                        int(source.enabled),
                        ts,
                        ts,
                    ),
                )
                source_id = cur.lastrowid
        except sqlite3.Error as exc:
            error = translate_db_error(exc, "create capture source", source.name, kind=KIND)
            if isinstance(error, AlreadyExistsError):
                logger.info("Capture source %s already exists", source.name)
            else:
                logger.exception("Failed to save capture source %s to DB", source.name)
            raise error from exc

        return source_id

    def update_source(self, source: CaptureSource, *, deadline: Optional[Deadline] = None) -> None:
        """Replace every mutable field of the source with ID source.id."""
        if source.id is None:
            raise ValueError("update_source requires source.id")
        source = normalize_source(source)

        logger.info("Updating capture source #%s in DB", source.id)
        try:
            with self._connection(write=True, deadline=deadline, operation="update capture source") as conn:
                updated = conn.execute(
                    """
                    UPDATE capture_sources
                    SET target = ?, cadence_ms = ?, format = ?, width = ?, height = ?,
                        quality = ?, enabled = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        source.target,
                        source.cadence_ms,
                        source.format.value,
                        source.width,
                        source.height,
                        source.quality,
                        int(source.enabled),
                        utc_timestamp(),
                        source.id,
                    ),
                ).rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to update capture source #%s in DB", source.id)
            raise translate_db_error(exc, "update capture source", source.id) from exc

        if updated == 0:
            raise NotFoundError(KIND, source.id, f"capture source with ID {source.id} not found")

    def delete_source(self, source_id: int, *, deadline: Optional[Deadline] = None) -> None:
        """Delete the source and, through the foreign key, all of its images."""
        logger.info("Deleting capture source #%s from DB", source_id)
        try:
            with self._connection(write=True, deadline=deadline, operation="delete capture source") as conn:
                deleted = conn.execute(
                    "DELETE FROM capture_sources WHERE id = ?",
                    (source_id,),
                ).rowcount
                if deleted == 0:
                    raise NotFoundError(KIND, source_id, f"capture source with ID {source_id} not found")

                remaining = conn.execute(
                    "SELECT COUNT(*) FROM captured_images WHERE source_id = ?",
                    (source_id,),
                ).fetchone()[0]
                if remaining:
                    # foreign_keys pragma off or FK missing from the table definition
                    logger.error("Cascade delete left %d image(s) for capture source #%s", remaining, source_id)
                    raise InvalidStateError(
                        f"cascade delete left {remaining} image(s) for capture source {source_id}"
                    )
        except sqlite3.Error as exc:
            logger.exception("Failed to delete capture source #%s from DB", source_id)
            raise translate_db_error(exc, "delete capture source", source_id) from exc

    # -----------------------
    # Images
    # -----------------------

    def save_image(self, image: CapturedImage, *, deadline: Optional[Deadline] = None) -> int:
        """Append an image stamped with the current time. No retention check."""
        logger.debug("Saving %d-byte image for capture source #%s", image.size_bytes, image.source_id)
        try:
            with self._connection(write=True, deadline=deadline, operation="save captured image") as conn:
                cur = conn.execute(
                    """
                    INSERT INTO captured_images (source_id, payload, mime_type, captured_at, size_bytes)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (image.source_id, image.payload, image.mime_type, utc_timestamp(), image.size_bytes),
                )
                image_id = cur.lastrowid
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc):
                raise NotFoundError(
                    KIND, image.source_id, f"capture source with ID {image.source_id} not found"
                ) from exc
            logger.exception("Failed to save image for capture source #%s", image.source_id)
            raise translate_db_error(exc, "save captured image", image.source_id) from exc
        except sqlite3.Error as exc:
            logger.exception("Failed to save image for capture source #%s", image.source_id)
            raise translate_db_error(exc, "save captured image", image.source_id) from exc

        return image_id

    def get_latest_image(self, source_id: int, *, deadline: Optional[Deadline] = None) -> CapturedImage:
        logger.debug("Loading latest image for capture source #%s", source_id)
        try:
            with self._connection(deadline=deadline, operation="get latest captured image") as conn:
                row = conn.execute(
                    f"""
                    SELECT {_IMAGE_COLUMNS}
                    FROM captured_images
                    WHERE source_id = ?
                    ORDER BY captured_at DESC, id DESC
                    LIMIT 1
                    """,
                    (source_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Failed to load latest image for capture source #%s", source_id)
            raise translate_db_error(exc, "get latest captured image", source_id) from exc

        if row is None:
            raise NoImagesError(source_id)
        return _row_to_image(row)

    def trim_to_latest(self, source_id: int, keep_count: int, *, deadline: Optional[Deadline] = None) -> int:
        """
        Delete every image of the source except the keep_count most recent.
        keep_count <= 0 deletes all. Returns the number deleted.
        """
        keep = max(0, keep_count)
        try:
            with self._connection(write=True, deadline=deadline, operation="trim captured images") as conn:
                deleted = conn.execute(
                    """
                    DELETE FROM captured_images
                    WHERE source_id = ? AND id NOT IN (
                        SELECT id FROM captured_images
                        WHERE source_id = ?
                        ORDER BY captured_at DESC, id DESC
                        LIMIT ?
                    )
                    """,
                    (source_id, source_id, keep),
                ).rowcount
        except sqlite3.Error as exc:
            logger.exception("Failed to trim images for capture source #%s", source_id)
            raise translate_db_error(exc, "trim captured images", source_id) from exc

        if deleted:
            logger.info("Trimmed %d image(s) for capture source #%s (keep=%d)", deleted, source_id, keep)
        return deleted

    def count_images(self, source_id: int, *, deadline: Optional[Deadline] = None) -> int:
        try:
            with self._connection(deadline=deadline, operation="count captured images") as conn:
                return conn.execute(
                    "SELECT COUNT(*) FROM captured_images WHERE source_id = ?",
                    (source_id,),
                ).fetchone()[0]
        except sqlite3.Error as exc:
            logger.exception("Failed to count images for capture source #%s", source_id)
            raise translate_db_error(exc, "count captured images", source_id) from exc


# -----------------------
# Transaction-scoped DAO
# -----------------------

@contextmanager
def capture_dao(pool: ConnectionPool, deadline: Optional[Deadline] = None):
    """
    Yield a CaptureDAO bound to a single transaction, e.g. to save an image
    and trim in one step.
    """
    with pool.transaction(write=True, deadline=deadline, operation="update captures") as conn:
        yield CaptureDAO(conn=conn)
