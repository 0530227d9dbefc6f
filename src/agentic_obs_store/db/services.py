# src/agentic_obs_store/db/services.py
"""
StateStore: the single handle front-ends share.

Owns the connection pool for one datastore file and exposes one DAO per
component. Every DAO call runs in its own transaction; use atomic() to
compose several calls into one.

    store = StateStore(load_store_config()).open()
    try:
        store.settings.save_connection_settings(...)
    finally:
        store.close()
"""
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from agentic_obs_store.config import StoreConfig
from agentic_obs_store.db.actions import ActionLogDAO
from agentic_obs_store.db.captures import CaptureDAO
from agentic_obs_store.db.infra.core import ConnectionPool, Deadline, translate_db_error
from agentic_obs_store.db.infra.migrations import current_schema_version, migrate
from agentic_obs_store.db.kv import CONFIG_TABLE, STATE_TABLE, KeyValueDAO
from agentic_obs_store.db.presets import PresetDAO
from agentic_obs_store.db.settings import CONFIG_KEY_HOST, SettingsDAO
from agentic_obs_store.errors import InvalidStateError, StoreIOError

logger = logging.getLogger(__name__)


@dataclass
class StoreSession:
    """DAOs sharing one open transaction (see StateStore.atomic)."""
    config: KeyValueDAO
    state: KeyValueDAO
    settings: SettingsDAO
    presets: PresetDAO
    captures: CaptureDAO
    actions: ActionLogDAO


def is_first_run_path(path: Path | str) -> bool:
    """
    True when the datastore file does not exist yet or holds no connection
    host. Opens the file read-only: never creates or migrates it.
    """
    path = Path(path)
    if not path.exists():
        return True

    try:
        conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error as exc:
        logger.warning("Could not open %s to check for first run: %s", path, exc)
        return True
    try:
        row = conn.execute(
            "SELECT COUNT(*) FROM config WHERE key = ?",
            (CONFIG_KEY_HOST,),
        ).fetchone()
    except sqlite3.Error as exc:
        # unmigrated or foreign file
        logger.debug("No usable config table in %s: %s", path, exc)
        return True
    finally:
        conn.close()
    return row[0] == 0


class StateStore:
    def __init__(self, config: StoreConfig):
        self.config = config
        self._pool: Optional[ConnectionPool] = None

        self.config_kv: Optional[KeyValueDAO] = None
        self.state_kv: Optional[KeyValueDAO] = None
        self.settings: Optional[SettingsDAO] = None
        self.presets: Optional[PresetDAO] = None
        self.captures: Optional[CaptureDAO] = None
        self.actions: Optional[ActionLogDAO] = None

    # -----------------------
    # lifecycle
    # -----------------------

    @property
    def path(self) -> Path:
        return self.config.path

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            raise InvalidStateError("state store is not open")
        return self._pool

    @property
    def is_open(self) -> bool:
        return self._pool is not None and not self._pool.closed

    def open(self, *, deadline: Optional[Deadline] = None) -> "StateStore":
        """
        Create the parent directory, open the pool and migrate the schema.
        Any failure closes the pool again and propagates.
        """
        if self.is_open:
            return self

        cfg = self.config
        try:
            cfg.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.exception("Failed to create datastore directory %s", cfg.path.parent)
            raise StoreIOError("create datastore directory", str(cfg.path.parent), str(exc)) from exc

        pool = ConnectionPool(
            cfg.path,
            max_connections=cfg.max_connections,
            busy_timeout_ms=cfg.busy_timeout_ms,
            journal_mode=cfg.journal_mode,
            operation_timeout=cfg.operation_timeout,
        )
        try:
            pool.ping(deadline)
            migrate(pool, deadline=deadline)
        except Exception:
            logger.exception("Failed to open state store at %s", cfg.path)
            pool.close()
            raise

        self._pool = pool
        self.config_kv = KeyValueDAO(CONFIG_TABLE, pool=pool)
        self.state_kv = KeyValueDAO(STATE_TABLE, pool=pool)
        self.settings = SettingsDAO(pool=pool)
        self.presets = PresetDAO(pool=pool)
        self.captures = CaptureDAO(pool=pool)
        self.actions = ActionLogDAO(pool=pool, default_limit=cfg.history_limit)
        logger.info("Opened state store at %s", cfg.path)
        return self

    def close(self) -> None:
        """Release every pooled connection. Safe to call twice."""
        if self._pool is None:
            return
        self._pool.close()
        self._pool = None
        logger.info("Closed state store at %s", self.config.path)

    def __enter__(self) -> "StateStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # -----------------------
    # operations
    # -----------------------

    def migrate(self, *, deadline: Optional[Deadline] = None) -> int:
        return migrate(self.pool, deadline=deadline)

    def schema_version(self, *, deadline: Optional[Deadline] = None) -> Optional[int]:
        try:
            with self.pool.transaction(deadline=deadline, operation="read schema version") as conn:
                return current_schema_version(conn)
        except sqlite3.Error as exc:
            logger.exception("Failed to read schema version")
            raise translate_db_error(exc, "read schema version") from exc

    def ping(self, *, deadline: Optional[Deadline] = None) -> None:
        self.pool.ping(deadline)

    @contextmanager
    def atomic(self, *, deadline: Optional[Deadline] = None) -> Iterator[StoreSession]:
        """
        Yield DAOs bound to one write transaction. Everything done through
        them commits together, or rolls back together if the block raises.
        """
        with self.pool.transaction(write=True, deadline=deadline, operation="run atomic block") as conn:
            yield StoreSession(
                config=KeyValueDAO(CONFIG_TABLE, conn=conn),
                state=KeyValueDAO(STATE_TABLE, conn=conn),
                settings=SettingsDAO(conn=conn),
                presets=PresetDAO(conn=conn),
                captures=CaptureDAO(conn=conn),
                actions=ActionLogDAO(conn=conn, default_limit=self.config.history_limit),
            )
