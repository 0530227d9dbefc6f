"""Store configuration and logging setup."""
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import dotenv_values

DATA_DIR = Path(".agentic-obs")
DB_FILE = Path("db.sqlite")
DOTENV_FILE = Path(".env")

ENV_DB_PATH = "AGENTIC_OBS_DB_PATH"
ENV_POOL_SIZE = "AGENTIC_OBS_DB_POOL_SIZE"
ENV_BUSY_TIMEOUT_MS = "AGENTIC_OBS_DB_BUSY_TIMEOUT_MS"
ENV_OPERATION_TIMEOUT = "AGENTIC_OBS_DB_OPERATION_TIMEOUT"
ENV_HISTORY_LIMIT = "AGENTIC_OBS_HISTORY_LIMIT"
ENV_LOG_LEVEL = "LOG_LEVEL"

DEFAULT_POOL_SIZE = 4
DEFAULT_BUSY_TIMEOUT_MS = 5000
DEFAULT_OPERATION_TIMEOUT = 30.0
DEFAULT_HISTORY_LIMIT = 100


def default_db_path() -> Path:
    """~/.agentic-obs/db.sqlite, or ./.agentic-obs/db.sqlite without a home dir."""
    try:
        home = Path.home()
    except RuntimeError:
        home = Path(".")
    return (home / DATA_DIR / DB_FILE).resolve()


@dataclass(frozen=True)
class StoreConfig:
    """
    Everything the store needs to open its datastore.
    Passed explicitly to StateStore; there is no process-wide default store.
    """
    path: Path
    max_connections: int = DEFAULT_POOL_SIZE
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    # seconds; applied to every operation called without its own deadline
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT
    journal_mode: str = "WAL"
    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __post_init__(self):
        object.__setattr__(self, "path", Path(self.path))
        if self.max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        if self.busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be non-negative")
        if self.operation_timeout <= 0:
            raise ValueError("operation_timeout must be positive")
        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")

    def with_overrides(self, **overrides) -> "StoreConfig":
        return replace(self, **overrides)


def _read_env(dotenv_path: Path | str | None) -> dict[str, str]:
    values: dict[str, str] = {}
    path = Path(dotenv_path) if dotenv_path else DOTENV_FILE
    if path.exists():
        values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    # process environment wins over the .env file
    for key in (
        ENV_DB_PATH,
        ENV_POOL_SIZE,
        ENV_BUSY_TIMEOUT_MS,
        ENV_OPERATION_TIMEOUT,
        ENV_HISTORY_LIMIT,
        ENV_LOG_LEVEL,
    ):
        if key in os.environ:
            values[key] = os.environ[key]
    return values


def _as_int(values: dict[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def _as_float(values: dict[str, str], key: str, default: float) -> float:
    raw = values.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


def load_store_config(dotenv_path: Path | str | None = None, **overrides) -> StoreConfig:
    """
    Build a StoreConfig from a .env file and the process environment.

    Keyword overrides (e.g. path=...) take precedence over both.
    """
    values = _read_env(dotenv_path)

    db_path = values.get(ENV_DB_PATH)
    cfg = StoreConfig(
        path=Path(db_path).expanduser() if db_path else default_db_path(),
        max_connections=_as_int(values, ENV_POOL_SIZE, DEFAULT_POOL_SIZE),
        busy_timeout_ms=_as_int(values, ENV_BUSY_TIMEOUT_MS, DEFAULT_BUSY_TIMEOUT_MS),
        operation_timeout=_as_float(values, ENV_OPERATION_TIMEOUT, DEFAULT_OPERATION_TIMEOUT),
        history_limit=_as_int(values, ENV_HISTORY_LIMIT, DEFAULT_HISTORY_LIMIT),
    )
    if overrides:
        cfg = cfg.with_overrides(**overrides)
    return cfg


def log_level_from_env(dotenv_path: Path | str | None = None) -> str:
    return _read_env(dotenv_path).get(ENV_LOG_LEVEL, "INFO").upper()


def configure_logging(level: str = "INFO", log_file: Path | str | None = None):
    root = logging.getLogger()
    if root.handlers:
        return

    from logging.handlers import RotatingFileHandler

    # console/basic config
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if log_file is None:
        return

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,  # 5 MB per file
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
