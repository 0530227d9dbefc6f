"""db/settings.py

Typed views over the key-value tables. Each setting is stored as its own
key so partial writes are tolerated; nothing is persisted as a blob.

Serialization contract (shared with any other reader of the database):

- booleans are the literal strings "true" / "false"
- integers are base-10 strings
- timestamps are UTC ISO-8601 strings

Defaulting is deliberately asymmetric:

- ConnectionSettings are all-or-nothing: any missing key -> NotFoundError
- FeatureToggles fail open: missing or unrecognised -> True
- DashboardServerSettings fail soft: missing or invalid -> built-in default
"""
import logging
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Dict, Optional

from agentic_obs_store.db.infra.core import (
    BaseDAO,
    ConnectionPool,
    Deadline,
    parse_db_timestamp,
    to_db_timestamp,
)
from agentic_obs_store.db.kv import CONFIG_TABLE, STATE_TABLE, KeyValueDAO
from agentic_obs_store.errors import InvalidStateError, NotFoundError
from agentic_obs_store.models import (
    FEATURE_GROUPS,
    ConnectionSettings,
    DashboardServerSettings,
    FeatureToggles,
)

logger = logging.getLogger(__name__)

TRUE_LITERAL = "true"
FALSE_LITERAL = "false"

# Config keys
CONFIG_KEY_HOST = "obs_host"
CONFIG_KEY_PORT = "obs_port"
CONFIG_KEY_SECRET = "obs_password"
CONNECTION_KEYS = (CONFIG_KEY_HOST, CONFIG_KEY_PORT, CONFIG_KEY_SECRET)

FEATURE_KEY_PREFIX = "tool_group_"

CONFIG_KEY_WEBSERVER_ENABLED = "webserver_enabled"
CONFIG_KEY_WEBSERVER_HOST = "webserver_host"
CONFIG_KEY_WEBSERVER_PORT = "webserver_port"

# State keys
STATE_KEY_FIRST_RUN = "first_run"
STATE_KEY_LAST_CONNECTED = "last_connected"
STATE_KEY_APP_VERSION = "app_version"
STATE_KEY_AUTO_RECONNECT = "auto_reconnect"

DEFAULT_DASHBOARD_SETTINGS = DashboardServerSettings()


def feature_key(group: str) -> str:
    if group not in FEATURE_GROUPS:
        raise ValueError(f"unknown feature group {group!r}; expected one of {FEATURE_GROUPS}")
    return FEATURE_KEY_PREFIX + group


def encode_bool(value: bool) -> str:
    return TRUE_LITERAL if value else FALSE_LITERAL


def decode_bool(raw: str) -> Optional[bool]:
    """True/False for the two literals, None for anything else."""
    if raw == TRUE_LITERAL:
        return True
    if raw == FALSE_LITERAL:
        return False
    return None


def _parse_port(raw: str) -> Optional[int]:
    try:
        port = int(raw.strip())
    except (AttributeError, ValueError):
        return None
    if not 1 <= port <= 65535:
        return None
    return port


class SettingsDAO(BaseDAO):
    """
    Construction modes:

    - SettingsDAO(pool=pool)
    - SettingsDAO(conn=sqlite3.Connection)
    """

    def __init__(self, pool: Optional[ConnectionPool] = None, conn=None):
        super().__init__(pool=pool, conn=conn)
        self.config = KeyValueDAO(CONFIG_TABLE, pool=pool, conn=conn)
        self.state = KeyValueDAO(STATE_TABLE, pool=pool, conn=conn)

    # -----------------------
    # Connection settings (all or nothing)
    # -----------------------

    def load_connection_settings(self, *, deadline: Optional[Deadline] = None) -> ConnectionSettings:
        values = self.config.get_many(CONNECTION_KEYS, deadline=deadline)

        missing = [k for k in CONNECTION_KEYS if k not in values]
        if missing:
            raise NotFoundError(
                "connection settings",
                missing,
                f"connection settings incomplete (missing {', '.join(missing)}); run the setup process",
            )

        raw_port = values[CONFIG_KEY_PORT]
        try:
            port = int(raw_port)
        except ValueError:
            logger.error("Persisted %s is not an integer: %r", CONFIG_KEY_PORT, raw_port)
            raise InvalidStateError(f"invalid persisted {CONFIG_KEY_PORT} value {raw_port!r}")

        return ConnectionSettings(
            host=values[CONFIG_KEY_HOST],
            port=port,
            secret=values[CONFIG_KEY_SECRET],
        )

    def save_connection_settings(self, settings: ConnectionSettings, *, deadline: Optional[Deadline] = None) -> None:
        logger.info("Saving connection settings for %s:%s", settings.host, settings.port)
        self.config.set_many(
            [
                (CONFIG_KEY_HOST, settings.host),
                (CONFIG_KEY_PORT, str(int(settings.port))),
                (CONFIG_KEY_SECRET, settings.secret or ""),
            ],
            deadline=deadline,
        )

    # -----------------------
    # Feature toggles (fail open)
    # -----------------------

    def load_feature_toggles(self, *, deadline: Optional[Deadline] = None) -> FeatureToggles:
        keys = {group: feature_key(group) for group in FEATURE_GROUPS}
        values = self.config.get_many(keys.values(), deadline=deadline)

        flags: Dict[str, bool] = {}
        for group, key in keys.items():
            raw = values.get(key)
            if raw is None:
                flags[group] = True
                continue
            decoded = decode_bool(raw)
            if decoded is None:
                logger.warning("Unrecognised value %r for %s; treating as enabled", raw, key)
                decoded = True
            flags[group] = decoded
        return FeatureToggles(**flags)

    def save_feature_toggles(self, toggles: FeatureToggles, *, deadline: Optional[Deadline] = None) -> None:
        logger.info("Saving feature toggles: %s", ", ".join(toggles.enabled_groups()) or "<none enabled>")
        self.config.set_many(
            [(feature_key(group), encode_bool(enabled)) for group, enabled in toggles.as_dict().items()],
            deadline=deadline,
        )

    # -----------------------
    # Dashboard server settings (fail soft)
    # -----------------------

    def load_dashboard_settings(self, *, deadline: Optional[Deadline] = None) -> DashboardServerSettings:
        values = self.config.get_many(
            (CONFIG_KEY_WEBSERVER_ENABLED, CONFIG_KEY_WEBSERVER_HOST, CONFIG_KEY_WEBSERVER_PORT),
            deadline=deadline,
        )
        default = DEFAULT_DASHBOARD_SETTINGS

        enabled = default.enabled
        raw = values.get(CONFIG_KEY_WEBSERVER_ENABLED)
        if raw is not None:
            decoded = decode_bool(raw)
            if decoded is None:
                logger.warning("Invalid %s value %r; using default", CONFIG_KEY_WEBSERVER_ENABLED, raw)
            else:
                enabled = decoded

        host = values.get(CONFIG_KEY_WEBSERVER_HOST) or default.host

        port = default.port
        raw = values.get(CONFIG_KEY_WEBSERVER_PORT)
        if raw is not None:
            parsed = _parse_port(raw)
            if parsed is None:
                logger.warning("Invalid %s value %r; using default", CONFIG_KEY_WEBSERVER_PORT, raw)
            else:
                port = parsed

        return DashboardServerSettings(enabled=enabled, host=host, port=port)

    def save_dashboard_settings(self, settings: DashboardServerSettings, *, deadline: Optional[Deadline] = None) -> None:
        logger.info("Saving dashboard server settings (enabled=%s, %s:%s)", settings.enabled, settings.host, settings.port)
        self.config.set_many(
            [
                (CONFIG_KEY_WEBSERVER_ENABLED, encode_bool(settings.enabled)),
                (CONFIG_KEY_WEBSERVER_HOST, settings.host),
                (CONFIG_KEY_WEBSERVER_PORT, str(int(settings.port))),
            ],
            deadline=deadline,
        )

    # -----------------------
    # Well-known state keys
    # -----------------------

    def is_first_run(self, *, deadline: Optional[Deadline] = None) -> bool:
        try:
            raw = self.state.get(STATE_KEY_FIRST_RUN, deadline=deadline)
        except NotFoundError:
            return True
        return raw == TRUE_LITERAL

    def mark_first_run_complete(self, *, deadline: Optional[Deadline] = None) -> None:
        self.state.set(STATE_KEY_FIRST_RUN, FALSE_LITERAL, deadline=deadline)

    def record_successful_connection(
        self,
        when: Optional[datetime] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> None:
        self.state.set(STATE_KEY_LAST_CONNECTED, to_db_timestamp(when or datetime.now(UTC)), deadline=deadline)

    def get_last_connected_time(self, *, deadline: Optional[Deadline] = None) -> Optional[datetime]:
        """None if a connection was never recorded."""
        try:
            raw = self.state.get(STATE_KEY_LAST_CONNECTED, deadline=deadline)
        except NotFoundError:
            return None
        return parse_db_timestamp(raw)

    def set_auto_reconnect(self, enabled: bool, *, deadline: Optional[Deadline] = None) -> None:
        self.state.set(STATE_KEY_AUTO_RECONNECT, encode_bool(enabled), deadline=deadline)

    def get_auto_reconnect(self, *, deadline: Optional[Deadline] = None) -> bool:
        try:
            raw = self.state.get(STATE_KEY_AUTO_RECONNECT, deadline=deadline)
        except NotFoundError:
            return True
        return raw == TRUE_LITERAL

    def set_app_version(self, version: str, *, deadline: Optional[Deadline] = None) -> None:
        self.state.set(STATE_KEY_APP_VERSION, version, deadline=deadline)

    def get_app_version(self, *, deadline: Optional[Deadline] = None) -> str:
        return self.state.get(STATE_KEY_APP_VERSION, deadline=deadline)


# -----------------------
# Transaction-scoped DAO
# -----------------------

@contextmanager
def settings_dao(pool: ConnectionPool, deadline: Optional[Deadline] = None):
    """
    Yield a SettingsDAO bound to a single write transaction, e.g. to save
    connection settings and mark the first run complete together.
    """
    with pool.transaction(write=True, deadline=deadline, operation="update settings") as conn:
        yield SettingsDAO(conn=conn)
