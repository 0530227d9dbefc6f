# tests/test_presets.py
import logging

import pytest

from agentic_obs_store.config import StoreConfig
from agentic_obs_store.db.presets import preset_dao
from agentic_obs_store.db.services import StateStore
from agentic_obs_store.errors import AlreadyExistsError, InvalidStateError, NotFoundError
from agentic_obs_store.models import Preset, PresetElement


def _open_store(tmp_path) -> StateStore:
    return StateStore(StoreConfig(path=tmp_path / "presets.sqlite")).open()


def _preset(name: str, target: str = "Main") -> Preset:
    return Preset(
        name=name,
        target=target,
        elements=[
            PresetElement("Camera", True),
            PresetElement(
                "Overlay",
                False,
                {"opacity": 0.5, "crop": {"left": 10, "right": 0}, "tags": ["a", "b"], "extra": {}},
            ),
            PresetElement("Mic", True, {}),
        ],
    )


def test_create_and_get_round_trip(tmp_path):
    store = _open_store(tmp_path)
    try:
        original = _preset("intro")
        preset_id = store.presets.create(original)

        by_name = store.presets.get("intro")
        by_id = store.presets.get_by_id(preset_id)

        assert by_name.id == preset_id
        assert by_name.elements == original.elements
        assert by_id.elements == original.elements
        assert by_name.target == "Main"
        assert by_name.created_at is not None
    finally:
        store.close()


def test_duplicate_name_fails_second_time(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("intro"))
        with pytest.raises(AlreadyExistsError) as exc_info:
            store.presets.create(_preset("intro", target="Other"))
        assert exc_info.value.identifier == "intro"
        assert store.presets.count() == 1
    finally:
        store.close()


def test_missing_presets_are_not_found(tmp_path):
    store = _open_store(tmp_path)
    try:
        with pytest.raises(NotFoundError):
            store.presets.get("nope")
        with pytest.raises(NotFoundError):
            store.presets.get_by_id(42)
        with pytest.raises(NotFoundError):
            store.presets.update(_preset("nope"))
        with pytest.raises(NotFoundError):
            store.presets.delete("nope")
        with pytest.raises(NotFoundError):
            store.presets.delete_by_id(42)
    finally:
        store.close()


def test_list_is_newest_first_and_filters_by_target(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("a", "Main"))
        store.presets.create(_preset("b", "BRB"))
        store.presets.create(_preset("c", "Main"))

        assert [p.name for p in store.presets.list()] == ["c", "b", "a"]
        assert [p.name for p in store.presets.list("Main")] == ["c", "a"]
        assert store.presets.list("Nowhere") == []
    finally:
        store.close()


def test_update_replaces_target_and_elements(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("intro"))
        store.presets.update(Preset("intro", "Gaming", [PresetElement("Game", True)]))

        loaded = store.presets.get("intro")
        assert loaded.target == "Gaming"
        assert loaded.elements == [PresetElement("Game", True)]
    finally:
        store.close()


def test_rename(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("old"))
        store.presets.create(_preset("taken"))

        with pytest.raises(AlreadyExistsError):
            store.presets.rename("old", "taken")
        with pytest.raises(NotFoundError):
            store.presets.rename("missing", "whatever")

        store.presets.rename("old", "new")
        assert store.presets.get("new").elements == _preset("x").elements
        with pytest.raises(NotFoundError):
            store.presets.get("old")
    finally:
        store.close()


def test_delete_by_name_id_and_target(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("a", "Main"))
        b_id = store.presets.create(_preset("b", "Main"))
        store.presets.create(_preset("c", "BRB"))
        store.presets.create(_preset("d", "Old Scene"))

        store.presets.delete("a")
        store.presets.delete_by_id(b_id)
        assert store.presets.delete_by_target("Old Scene") == 1
        assert store.presets.delete_by_target("Old Scene") == 0

        assert [p.name for p in store.presets.list()] == ["c"]
    finally:
        store.close()


def test_corrupt_elements_are_invalid_state(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("broken"))
        store.presets.create(_preset("not-a-list"))
        with store.pool.transaction(write=True) as conn:
            conn.execute("UPDATE presets SET elements = '{not json' WHERE name = 'broken'")
            conn.execute("""UPDATE presets SET elements = '{"name": "x"}' WHERE name = 'not-a-list'""")

        with pytest.raises(InvalidStateError):
            store.presets.get("broken")
        with pytest.raises(InvalidStateError):
            store.presets.get("not-a-list")
        with pytest.raises(InvalidStateError):
            store.presets.list()
    finally:
        store.close()


def test_transaction_scoped_replace(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("intro", "Old Scene"))

        with pytest.raises(AlreadyExistsError):
            with preset_dao(store.pool) as dao:
                dao.delete_by_target("Old Scene")
                dao.create(_preset("dup", "New Scene"))
                dao.create(_preset("dup", "New Scene"))

        # nothing from the failed block was kept
        assert [p.name for p in store.presets.list()] == ["intro"]
    finally:
        store.close()


def test_non_boolean_visible_is_invalid_state(tmp_path, caplog):
    store = _open_store(tmp_path)
    try:
        store.presets.create(_preset("stringly"))
        with store.pool.transaction(write=True) as conn:
            conn.execute(
                """UPDATE presets SET elements = '[{"name": "Camera", "visible": "false"}]' WHERE name = 'stringly'"""
            )

        with caplog.at_level(logging.ERROR, logger="agentic_obs_store.db.presets"):
            with pytest.raises(InvalidStateError, match="visible"):
                store.presets.get("stringly")
        assert "stringly" in caplog.text
    finally:
        store.close()


def test_element_from_dict_requires_a_boolean():
    assert PresetElement.from_dict({"name": "Camera", "visible": False}) == PresetElement("Camera", False)
    with pytest.raises(TypeError):
        PresetElement.from_dict({"name": "Camera", "visible": 1})
