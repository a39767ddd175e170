"""Tests for the SQLite storage layer."""

import json
import sqlite3
from datetime import timedelta

import pytest

from conftest import NOW, make_event, make_sample, make_snapshot

from dev_resource_monitor.categories import DEFAULT_CATEGORIES, categories_to_json
from dev_resource_monitor.config import AppSettings
from dev_resource_monitor.models import ResourceUsage, TriggerType
from dev_resource_monitor.storage import (
    SCHEMA_VERSION,
    DatabaseNotAvailable,
    Storage,
    event_to_dict,
    init_database,
    require_database,
    snapshot_to_dict,
)


class TestInitDatabase:
    def test_creates_schema_with_wal(self, tmp_db):
        init_database(tmp_db)
        conn = sqlite3.connect(tmp_db)
        try:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
            tables = {
                r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
            version = conn.execute(
                "SELECT value FROM settings WHERE key = 'schema_version'"
            ).fetchone()[0]
        finally:
            conn.close()

        assert mode == "wal"
        assert {"snapshots", "threshold_events", "settings", "categories"} <= tables
        assert int(version) == SCHEMA_VERSION

    def test_schema_mismatch_recreates(self, tmp_db):
        conn = sqlite3.connect(tmp_db)
        conn.execute("CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT, updated_at REAL)")
        conn.execute("INSERT INTO settings VALUES ('schema_version', '1', 0)")
        conn.execute("CREATE TABLE legacy (x INTEGER)")
        conn.commit()
        conn.close()

        init_database(tmp_db)

        conn = sqlite3.connect(tmp_db)
        try:
            tables = {
                r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()
        assert "legacy" not in tables
        assert "snapshots" in tables

    def test_matching_version_keeps_data(self, tmp_db):
        store = Storage(tmp_db, cleanup_on_open=False)
        store.save_snapshot(make_snapshot(timestamp=NOW))
        store.close()

        init_database(tmp_db)

        store = Storage(tmp_db, cleanup_on_open=False)
        assert store.snapshot_count() == 1
        store.close()

    def test_corrupt_file_recreated(self, tmp_db):
        tmp_db.write_bytes(b"this is not a database" * 100)
        store = Storage(tmp_db, cleanup_on_open=False)
        assert store.available
        assert store.snapshot_count() == 0
        store.close()


class TestSnapshots:
    def test_upsert_by_id(self, storage):
        """Saving the same id twice keeps one row with the latest values."""
        storage.save_snapshot(make_snapshot(snapshot_id="X", total_cpu=100.0))
        storage.save_snapshot(make_snapshot(snapshot_id="X", total_cpu=200.0))

        snapshots = storage.load_snapshots(NOW - timedelta(hours=1), NOW)
        assert len(snapshots) == 1
        assert snapshots[0].total_cpu == 200.0

    def test_roundtrip_preserves_fields(self, storage):
        top = [make_sample(pid=7, name="node", cpu=12.5, mem=256.0)]
        breakdown = {"dev-tools": ResourceUsage(12.5, 256.0, 1)}
        saved = make_snapshot(top_processes=top, breakdown=breakdown, cpu_core_count=12)
        storage.save_snapshot(saved)

        loaded = storage.load_snapshots(NOW - timedelta(minutes=1), NOW)[0]
        assert loaded.id == saved.id
        assert loaded.timestamp == NOW
        assert loaded.cpu_core_count == 12
        assert loaded.top_processes == top
        assert loaded.category_breakdown == breakdown

    def test_range_inclusive_and_ascending(self, storage):
        for minutes in (30, 10, 20, 90):
            storage.save_snapshot(
                make_snapshot(total_cpu=float(minutes), timestamp=NOW - timedelta(minutes=minutes))
            )

        snapshots = storage.load_snapshots(NOW - timedelta(minutes=30), NOW - timedelta(minutes=10))
        assert [s.total_cpu for s in snapshots] == [30.0, 20.0, 10.0]

    def test_last_hours(self, storage):
        storage.save_snapshot(make_snapshot(timestamp=NOW - timedelta(minutes=30)))
        storage.save_snapshot(make_snapshot(timestamp=NOW - timedelta(hours=3)))
        assert len(storage.load_snapshots_last_hours(1)) == 1
        assert len(storage.load_snapshots_last_days(1)) == 2

    def test_corrupt_process_json_is_empty(self, storage):
        snapshot = make_snapshot(top_processes=[make_sample()])
        storage.save_snapshot(snapshot)
        storage._conn.execute(
            "UPDATE snapshots SET top_processes = 'not json', category_breakdown = '[1]'"
        )
        storage._conn.commit()

        loaded = storage.load_snapshots(NOW - timedelta(minutes=1), NOW)[0]
        assert loaded.top_processes == []
        assert loaded.category_breakdown == {}


class TestEvents:
    def test_most_recent_first(self, storage):
        old = make_event(age=timedelta(hours=2))
        new = make_event(age=timedelta(minutes=5))
        storage.save_event(old)
        storage.save_event(new)
        assert [e.id for e in storage.load_events()] == [new.id, old.id]

    def test_window(self, storage):
        storage.save_event(make_event(age=timedelta(days=3)))
        storage.save_event(make_event(age=timedelta(hours=1)))
        assert len(storage.load_events(last_days=1)) == 1
        assert len(storage.load_events(last_days=7)) == 2

    def test_roundtrip_keeps_full_process_list(self, storage):
        processes = [make_sample(pid=i, cpu=float(i)) for i in range(30)]
        event = make_event(trigger_type=TriggerType.MEMORY, value=91.5, processes=processes)
        storage.save_event(event)

        loaded = storage.load_event(event.id)
        assert loaded.trigger_type is TriggerType.MEMORY
        assert loaded.trigger_value == 91.5
        assert loaded.all_processes == processes

    def test_load_by_prefix(self, storage):
        event = make_event()
        storage.save_event(event)
        assert storage.load_event(event.id[:8]).id == event.id
        assert storage.load_event("does-not-exist") is None

    def test_unknown_trigger_type_skipped(self, storage):
        good = make_event()
        bad = make_event()
        storage.save_event(good)
        storage.save_event(bad)
        storage._conn.execute(
            "UPDATE threshold_events SET trigger_type = 'Disk' WHERE id = ?", (bad.id,)
        )
        storage._conn.commit()

        assert [e.id for e in storage.load_events()] == [good.id]
        assert storage.load_event(bad.id) is None

    def test_last_event_and_count(self, storage):
        assert storage.last_event() is None
        storage.save_event(make_event(age=timedelta(hours=1)))
        latest = make_event()
        storage.save_event(latest)
        assert storage.last_event().id == latest.id
        assert storage.event_count() == 2


class TestSettings:
    def test_defaults_when_never_saved(self, storage):
        assert storage.load_settings() == AppSettings()

    def test_persists_across_reopen(self, tmp_db):
        store = Storage(tmp_db)
        store.save_settings(AppSettings(cpu_threshold=75.0))
        store.close()

        store = Storage(tmp_db)
        assert store.load_settings().cpu_threshold == 75.0
        store.close()

    def test_save_replaces_whole_record(self, storage):
        storage.save_settings(AppSettings(cpu_threshold=75.0, sound_enabled=True))
        storage.save_settings(AppSettings(memory_threshold=60.0))
        loaded = storage.load_settings()
        assert loaded.cpu_threshold == 80.0
        assert loaded.memory_threshold == 60.0
        assert loaded.sound_enabled is False

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            json.dumps({"cpu_threshold": 75.0}),
            json.dumps({**AppSettings().to_dict(), "cpu_threshold": 500.0}),
            json.dumps({**AppSettings().to_dict(), "cpu_threshold": "high"}),
        ],
    )
    def test_unusable_settings_fall_back_to_defaults(self, storage, payload):
        storage._conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES ('app_settings', ?)", (payload,)
        )
        storage._conn.commit()
        assert storage.load_settings() == AppSettings()


class TestCategories:
    def test_absent_is_none_not_empty(self, storage):
        assert storage.load_categories() is None

    def test_empty_list_is_distinct_from_absent(self, storage):
        storage.save_categories([])
        assert storage.load_categories() == []

    def test_roundtrip(self, storage):
        storage.save_categories(DEFAULT_CATEGORIES)
        assert storage.load_categories() == DEFAULT_CATEGORIES

    def test_corrupt_is_none(self, storage):
        storage._conn.execute(
            "INSERT INTO categories (key, value) VALUES ('all_categories', '{\"oops\": 1}')"
        )
        storage._conn.commit()
        assert storage.load_categories() is None

    @pytest.mark.parametrize("patterns", [[5], "node", None])
    def test_non_string_patterns_are_none(self, storage, patterns):
        data = json.loads(categories_to_json(DEFAULT_CATEGORIES))
        data["categories"][0]["apps"][0]["process_names"] = patterns
        storage._conn.execute(
            "INSERT INTO categories (key, value) VALUES ('all_categories', ?)",
            (json.dumps(data),),
        )
        storage._conn.commit()
        assert storage.load_categories() is None


class TestCleanup:
    def test_removes_old_rows(self, storage):
        storage.save_snapshot(make_snapshot(timestamp=NOW - timedelta(days=40)))
        storage.save_snapshot(make_snapshot(timestamp=NOW - timedelta(days=1)))
        storage.save_event(make_event(age=timedelta(days=45)))
        storage.save_event(make_event(age=timedelta(days=2)))

        assert storage.cleanup() == (1, 1)
        assert storage.snapshot_count() == 1
        assert storage.event_count() == 1

    def test_keep_days_override(self, storage):
        storage.save_snapshot(make_snapshot(timestamp=NOW - timedelta(days=5)))
        assert storage.cleanup(keep_days=7) == (0, 0)
        assert storage.cleanup(keep_days=3) == (1, 0)

    def test_cleanup_on_open_uses_retention(self, tmp_db):
        store = Storage(tmp_db, clock=lambda: NOW.timestamp(), cleanup_on_open=False)
        store.save_snapshot(make_snapshot(timestamp=NOW - timedelta(days=10)))
        store.close()

        store = Storage(tmp_db, retention_days=7, clock=lambda: NOW.timestamp())
        assert store.snapshot_count() == 0
        store.close()


class TestUnavailable:
    def test_closed_store_absorbs_errors(self, tmp_db):
        store = Storage(tmp_db)
        store.close()

        store.save_snapshot(make_snapshot())
        store.save_event(make_event())
        assert not store.available
        assert store.load_snapshots_last_hours(1) == []
        assert store.load_events() == []
        assert store.load_settings() == AppSettings()
        assert store.load_categories() is None
        assert store.cleanup() == (0, 0)


class TestRequireDatabase:
    def test_missing_raises(self, tmp_db, capsys):
        with pytest.raises(DatabaseNotAvailable):
            with require_database(tmp_db):
                pass
        assert "Database not found" in capsys.readouterr().out

    def test_missing_exits(self, tmp_db):
        with pytest.raises(SystemExit) as exc_info:
            with require_database(tmp_db, exit_on_missing=True):
                pass
        assert exc_info.value.code == 1

    def test_yields_open_store_and_closes(self, tmp_db):
        Storage(tmp_db).close()
        with require_database(tmp_db) as store:
            assert store.available
        assert not store.available


def test_json_exports_use_iso_timestamps():
    snapshot = snapshot_to_dict(make_snapshot())
    event = event_to_dict(make_event(processes=[make_sample()]))
    assert snapshot["timestamp"] == NOW.isoformat()
    assert event["timestamp"] == NOW.isoformat()
    assert event["trigger_type"] == "CPU"
    assert json.loads(json.dumps(event))["all_processes"][0]["pid"] == 100
