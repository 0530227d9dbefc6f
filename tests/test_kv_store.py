# tests/test_kv_store.py
import pytest

from agentic_obs_store.config import StoreConfig
from agentic_obs_store.db.kv import KeyValueDAO, kv_dao
from agentic_obs_store.db.services import StateStore
from agentic_obs_store.errors import NotFoundError


def _open_store(tmp_path) -> StateStore:
    return StateStore(StoreConfig(path=tmp_path / "kv.sqlite")).open()


def test_set_get_list_delete(tmp_path):
    store = _open_store(tmp_path)
    try:
        kv = store.state_kv
        kv.set("alpha", "1")
        kv.set("beta", "two")
        kv.set("alpha", "one")  # upsert

        assert kv.get("alpha") == "one"
        assert kv.list() == {"alpha": "one", "beta": "two"}

        kv.delete("alpha")
        kv.delete("alpha")  # absent key is fine
        with pytest.raises(NotFoundError) as exc_info:
            kv.get("alpha")
        assert exc_info.value.identifier == "alpha"
        assert kv.list() == {"beta": "two"}
    finally:
        store.close()


def test_config_and_state_are_separate_key_spaces(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.config_kv.set("shared", "config-value")
        store.state_kv.set("shared", "state-value")

        assert store.config_kv.get("shared") == "config-value"
        assert store.state_kv.get("shared") == "state-value"
    finally:
        store.close()


def test_values_must_be_strings(tmp_path):
    store = _open_store(tmp_path)
    try:
        with pytest.raises(TypeError):
            store.config_kv.set("port", 4455)
        assert store.config_kv.list() == {}
    finally:
        store.close()


def test_unknown_table_is_rejected(tmp_path):
    store = _open_store(tmp_path)
    try:
        with pytest.raises(ValueError):
            KeyValueDAO("presets", pool=store.pool)
    finally:
        store.close()


def test_get_many_skips_absent_keys(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.config_kv.set_many([("a", "1"), ("b", "2")])
        assert store.config_kv.get_many(["a", "b", "c"]) == {"a": "1", "b": "2"}
        assert store.config_kv.get_many([]) == {}
    finally:
        store.close()


def test_transaction_scoped_writes_roll_back_together(tmp_path):
    store = _open_store(tmp_path)
    try:
        with pytest.raises(RuntimeError):
            with kv_dao(store.pool, "config") as dao:
                dao.set("first", "1")
                dao.set("second", "2")
                raise RuntimeError("boom")

        assert store.config_kv.list() == {}

        with kv_dao(store.pool, "config") as dao:
            dao.set("first", "1")
            dao.set("second", "2")
        assert store.config_kv.list() == {"first": "1", "second": "2"}
    finally:
        store.close()


def test_values_survive_reopen(tmp_path):
    store = _open_store(tmp_path)
    store.state_kv.set("app_version", "1.2.3")
    store.close()

    reopened = _open_store(tmp_path)
    try:
        assert reopened.state_kv.get("app_version") == "1.2.3"
    finally:
        reopened.close()
