# tests/test_settings.py
import logging
from datetime import datetime, UTC

import pytest

from agentic_obs_store.config import StoreConfig
from agentic_obs_store.db.services import StateStore, is_first_run_path
from agentic_obs_store.db.settings import SettingsDAO, settings_dao
from agentic_obs_store.errors import InvalidStateError, NotFoundError
from agentic_obs_store.models import (
    ConnectionSettings,
    DashboardServerSettings,
    FeatureToggles,
)


def _open_store(tmp_path) -> StateStore:
    return StateStore(StoreConfig(path=tmp_path / "settings.sqlite")).open()


# -----------------------
# Connection settings
# -----------------------

def test_connection_settings_round_trip(tmp_path):
    store = _open_store(tmp_path)
    try:
        saved = ConnectionSettings(host="192.168.1.20", port=4455, secret="s3cret")
        store.settings.save_connection_settings(saved)

        assert store.settings.load_connection_settings() == saved
        # stored as three separate string keys
        assert store.config_kv.get("obs_port") == "4455"
    finally:
        store.close()


def test_connection_settings_are_all_or_nothing(tmp_path):
    store = _open_store(tmp_path)
    try:
        with pytest.raises(NotFoundError):
            store.settings.load_connection_settings()

        store.config_kv.set("obs_host", "localhost")
        store.config_kv.set("obs_port", "4455")
        with pytest.raises(NotFoundError, match="obs_password"):
            store.settings.load_connection_settings()

        store.config_kv.set("obs_password", "")
        assert store.settings.load_connection_settings() == ConnectionSettings("localhost", 4455, "")
    finally:
        store.close()


def test_malformed_port_is_invalid_state(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.config_kv.set_many([("obs_host", "h"), ("obs_port", "not-a-port"), ("obs_password", "")])
        with pytest.raises(InvalidStateError):
            store.settings.load_connection_settings()
    finally:
        store.close()


# -----------------------
# Feature toggles
# -----------------------

def test_toggles_default_to_enabled_when_nothing_written(tmp_path):
    store = _open_store(tmp_path)
    try:
        assert store.settings.load_feature_toggles() == FeatureToggles()
    finally:
        store.close()


def test_partially_written_toggles_fail_open(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.config_kv.set("tool_group_audio", "false")
        store.config_kv.set("tool_group_filters", "true")

        toggles = store.settings.load_feature_toggles()

        assert toggles.audio is False
        assert toggles.filters is True
        unwritten = {k: v for k, v in toggles.as_dict().items() if k not in ("audio", "filters")}
        assert len(unwritten) == 6
        assert all(unwritten.values())
    finally:
        store.close()


def test_unrecognised_toggle_literal_is_enabled_with_warning(tmp_path, caplog):
    store = _open_store(tmp_path)
    try:
        store.config_kv.set("tool_group_visual", "False")
        with caplog.at_level(logging.WARNING, logger="agentic_obs_store.db.settings"):
            toggles = store.settings.load_feature_toggles()
        assert toggles.visual is True
        assert "tool_group_visual" in caplog.text
    finally:
        store.close()


def test_toggles_round_trip_writes_every_flag(tmp_path):
    store = _open_store(tmp_path)
    try:
        saved = FeatureToggles(core=True, sources=False, audio=False, transitions=False)
        store.settings.save_feature_toggles(saved)

        assert store.settings.load_feature_toggles() == saved
        written = [k for k in store.config_kv.list() if k.startswith("tool_group_")]
        assert len(written) == 8
        assert store.config_kv.get("tool_group_sources") == "false"
        assert store.config_kv.get("tool_group_core") == "true"
    finally:
        store.close()


# -----------------------
# Dashboard server settings
# -----------------------

def test_dashboard_settings_defaults(tmp_path):
    store = _open_store(tmp_path)
    try:
        assert store.settings.load_dashboard_settings() == DashboardServerSettings(True, "localhost", 8765)
    finally:
        store.close()


def test_dashboard_settings_invalid_values_fall_back(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.config_kv.set_many(
            [
                ("webserver_enabled", "maybe"),
                ("webserver_host", "0.0.0.0"),
                ("webserver_port", "70000"),
            ]
        )
        loaded = store.settings.load_dashboard_settings()
        assert loaded == DashboardServerSettings(enabled=True, host="0.0.0.0", port=8765)

        store.config_kv.set("webserver_port", "abc")
        assert store.settings.load_dashboard_settings().port == 8765
    finally:
        store.close()


def test_dashboard_settings_round_trip(tmp_path):
    store = _open_store(tmp_path)
    try:
        saved = DashboardServerSettings(enabled=False, host="127.0.0.1", port=9000)
        store.settings.save_dashboard_settings(saved)
        assert store.settings.load_dashboard_settings() == saved
    finally:
        store.close()


# -----------------------
# Well-known state keys
# -----------------------

def test_first_run_flag(tmp_path):
    store = _open_store(tmp_path)
    try:
        assert store.settings.is_first_run() is True
        store.settings.mark_first_run_complete()
        assert store.settings.is_first_run() is False
        assert store.state_kv.get("first_run") == "false"
    finally:
        store.close()


def test_last_connected_time(tmp_path, caplog):
    store = _open_store(tmp_path)
    try:
        assert store.settings.get_last_connected_time() is None

        when = datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=UTC)
        store.settings.record_successful_connection(when)
        assert store.settings.get_last_connected_time() == when

        store.state_kv.set("last_connected", "yesterday")
        with caplog.at_level(logging.ERROR, logger="agentic_obs_store.db.infra.core"):
            with pytest.raises(InvalidStateError):
                store.settings.get_last_connected_time()
        assert "yesterday" in caplog.text
    finally:
        store.close()


def test_auto_reconnect_and_app_version(tmp_path):
    store = _open_store(tmp_path)
    try:
        assert store.settings.get_auto_reconnect() is True
        store.settings.set_auto_reconnect(False)
        assert store.settings.get_auto_reconnect() is False

        with pytest.raises(NotFoundError):
            store.settings.get_app_version()
        store.settings.set_app_version("0.9.1")
        assert store.settings.get_app_version() == "0.9.1"
    finally:
        store.close()


def test_settings_dao_commits_or_rolls_back_as_one(tmp_path):
    store = _open_store(tmp_path)
    try:
        with pytest.raises(RuntimeError):
            with settings_dao(store.pool) as dao:
                dao.save_connection_settings(ConnectionSettings("h", 4455, "pw"))
                dao.mark_first_run_complete()
                raise RuntimeError("setup aborted")

        assert store.settings.is_first_run() is True
        with pytest.raises(NotFoundError):
            store.settings.load_connection_settings()

        with settings_dao(store.pool) as dao:
            dao.save_connection_settings(ConnectionSettings("h", 4455, "pw"))
            dao.mark_first_run_complete()
        assert SettingsDAO(pool=store.pool).is_first_run() is False
    finally:
        store.close()


# -----------------------
# Static first-run check
# -----------------------

def test_is_first_run_path(tmp_path):
    db_path = tmp_path / "first.sqlite"
    assert is_first_run_path(db_path) is True
    assert not db_path.exists()

    store = StateStore(StoreConfig(path=db_path)).open()
    try:
        assert is_first_run_path(db_path) is True
        store.settings.save_connection_settings(ConnectionSettings("localhost", 4455))
        assert is_first_run_path(db_path) is False
    finally:
        store.close()


def test_is_first_run_path_on_unmigrated_file(tmp_path):
    db_path = tmp_path / "empty.sqlite"
    db_path.write_bytes(b"")
    assert is_first_run_path(db_path) is True
