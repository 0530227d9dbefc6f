# tests/test_action_log.py
from datetime import datetime, timedelta, UTC

import pytest

import agentic_obs_store.db.actions as actions
from agentic_obs_store.config import StoreConfig
from agentic_obs_store.db.actions import ActionLogDAO
from agentic_obs_store.db.services import StateStore
from agentic_obs_store.models import ActionRecord, OperationCount


def _open_store(tmp_path, **overrides) -> StateStore:
    return StateStore(StoreConfig(path=tmp_path / "actions.sqlite", **overrides)).open()


def _freeze_clock(monkeypatch, when: datetime) -> None:
    stamp = when.isoformat(timespec="microseconds")
    monkeypatch.setattr(actions, "utc_timestamp", lambda: stamp)


def test_append_with_only_a_label(tmp_path):
    store = _open_store(tmp_path)
    try:
        record_id = store.actions.append(ActionRecord(label="Switched scene"))
        [loaded] = store.actions.recent()

        assert loaded.id == record_id
        assert loaded.label == "Switched scene"
        assert (loaded.operation_name, loaded.input, loaded.output) == ("", "", "")
        assert loaded.success is False
        assert loaded.duration_ms == 0
        assert loaded.created_at is not None
    finally:
        store.close()


def test_recent_is_newest_first_with_default_limit(tmp_path):
    store = _open_store(tmp_path, history_limit=5)
    try:
        for n in range(8):
            store.actions.append(ActionRecord(label=f"action {n}", operation_name="set_scene"))

        assert [r.label for r in store.actions.recent(3)] == ["action 7", "action 6", "action 5"]
        assert len(store.actions.recent(0)) == 5
        assert len(store.actions.recent(-1)) == 5
        assert len(store.actions.recent(100)) == 8
        assert store.actions.count() == 8
    finally:
        store.close()


def test_default_limit_is_one_hundred(tmp_path):
    store = _open_store(tmp_path)
    try:
        dao = ActionLogDAO(pool=store.pool)
        assert dao.default_limit == 100
        assert ActionLogDAO(pool=store.pool, default_limit=0).default_limit == 100
    finally:
        store.close()


def test_by_operation_filters(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.actions.append(ActionRecord(label="a", operation_name="set_scene"))
        store.actions.append(ActionRecord(label="b", operation_name="toggle_mute"))
        store.actions.append(ActionRecord(label="c", operation_name="set_scene"))

        assert [r.label for r in store.actions.by_operation("set_scene")] == ["c", "a"]
        assert [r.label for r in store.actions.by_operation("set_scene", 1)] == ["c"]
        assert store.actions.by_operation("unknown") == []
    finally:
        store.close()


def test_since_uses_lower_time_bound(tmp_path, monkeypatch):
    store = _open_store(tmp_path)
    try:
        base = datetime(2024, 1, 1, tzinfo=UTC)
        for day in range(5):
            _freeze_clock(monkeypatch, base + timedelta(days=day))
            store.actions.append(ActionRecord(label=f"day {day}"))

        records = store.actions.since(base + timedelta(days=2))
        assert [r.label for r in records] == ["day 4", "day 3", "day 2"]
        assert [r.label for r in store.actions.since(base + timedelta(days=2), 1)] == ["day 4"]
    finally:
        store.close()


def _seed_stats_records(store: StateStore) -> None:
    store.actions.append(ActionRecord(label="ok 1", operation_name="set_scene", success=True, duration_ms=100))
    store.actions.append(ActionRecord(label="ok 2", operation_name="set_scene", success=True, duration_ms=200))
    store.actions.append(ActionRecord(label="fail", operation_name="toggle_mute", success=False, duration_ms=50))


def test_stats_default_averages_failed_records_too(tmp_path):
    store = _open_store(tmp_path)
    try:
        _seed_stats_records(store)
        stats = store.actions.stats()

        assert (stats.total, stats.successful, stats.failed) == (3, 2, 1)
        assert stats.avg_duration_ms == pytest.approx(350 / 3)
        assert stats.success_ratio == pytest.approx(2 / 3)
        assert stats.top_operations == [
            OperationCount("set_scene", 2),
            OperationCount("toggle_mute", 1),
        ]
    finally:
        store.close()


def test_stats_can_average_successful_records_only(tmp_path):
    store = _open_store(tmp_path)
    try:
        _seed_stats_records(store)
        stats = store.actions.stats(include_failed=False)

        assert (stats.total, stats.successful, stats.failed) == (3, 2, 1)
        assert stats.avg_duration_ms == pytest.approx(150.0)
    finally:
        store.close()


def test_stats_zero_durations(tmp_path):
    store = _open_store(tmp_path)
    try:
        store.actions.append(ActionRecord(label="instant", success=True, duration_ms=0))
        store.actions.append(ActionRecord(label="slow", success=True, duration_ms=300))

        assert store.actions.stats().avg_duration_ms == pytest.approx(300.0)
        assert store.actions.stats(include_zero_durations=True).avg_duration_ms == pytest.approx(150.0)
    finally:
        store.close()


def test_stats_on_empty_log(tmp_path):
    store = _open_store(tmp_path)
    try:
        stats = store.actions.stats()
        assert (stats.total, stats.successful, stats.failed) == (0, 0, 0)
        assert stats.avg_duration_ms == 0.0
        assert stats.top_operations == []
        assert stats.success_ratio == 0.0
    finally:
        store.close()


def test_top_operations_ties_go_to_first_recorded(tmp_path):
    store = _open_store(tmp_path)
    try:
        for name in ["b", "a", "c", "c", "b", "a", "c", "d", "e", "f", "g", "", "", "", "", ""]:
            store.actions.append(ActionRecord(label="x", operation_name=name))

        top = store.actions.stats().top_operations
        assert [(o.operation_name, o.count) for o in top] == [
            ("c", 3),
            ("b", 2),
            ("a", 2),
            ("d", 1),
            ("e", 1),
        ]
    finally:
        store.close()


def test_prune_older_than(tmp_path, monkeypatch):
    store = _open_store(tmp_path)
    try:
        now = datetime.now(UTC)
        _freeze_clock(monkeypatch, now - timedelta(days=40))
        store.actions.append(ActionRecord(label="old"))
        _freeze_clock(monkeypatch, now - timedelta(days=31))
        store.actions.append(ActionRecord(label="older than a month"))
        _freeze_clock(monkeypatch, now - timedelta(days=1))
        store.actions.append(ActionRecord(label="recent"))

        assert store.actions.prune_older_than(timedelta(days=30)) == 2
        assert [r.label for r in store.actions.recent()] == ["recent"]
    finally:
        store.close()


def test_prune_with_zero_age_deletes_everything(tmp_path):
    store = _open_store(tmp_path)
    try:
        for n in range(3):
            store.actions.append(ActionRecord(label=f"a{n}"))

        assert store.actions.prune_older_than(timedelta(0)) == 3
        assert store.actions.recent() == []
    finally:
        store.close()


def test_transaction_scoped_log_keeps_default_limit(tmp_path):
    store = _open_store(tmp_path)
    try:
        with actions.action_log_dao(store.pool, default_limit=2) as dao:
            for n in range(3):
                dao.append(ActionRecord(label=f"batch {n}"))
            assert [r.label for r in dao.recent()] == ["batch 2", "batch 1"]

        assert store.actions.count() == 3
    finally:
        store.close()
