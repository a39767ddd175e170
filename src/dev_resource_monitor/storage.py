"""SQLite storage layer for dev-resource-monitor.

One connection, shared across threads and serialized by a lock: callers
block rather than interleave, so each upsert is atomic. Storage errors are
absorbed here; writes become no-ops and reads return empty results, so the
monitor keeps running with a broken database.
"""

import json
import sqlite3
import threading
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog

from dev_resource_monitor.categories import (
    AppCategory,
    categories_from_json,
    categories_to_json,
)
from dev_resource_monitor.config import AppSettings
from dev_resource_monitor.models import (
    ProcessSample,
    ResourceSnapshot,
    ResourceUsage,
    ThresholdEvent,
    TriggerType,
)

log = structlog.get_logger()

SCHEMA_VERSION = 2  # Added cpu_core_count to snapshots

SETTINGS_KEY = "app_settings"
CATEGORIES_KEY = "all_categories"

SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    timestamp REAL NOT NULL,
    total_cpu REAL NOT NULL,
    total_memory_mb REAL NOT NULL,
    total_system_memory_mb REAL NOT NULL,
    cpu_core_count INTEGER NOT NULL,
    category_breakdown TEXT NOT NULL,  -- JSON {category_id: usage}
    top_processes TEXT NOT NULL        -- JSON [process]
);

CREATE TABLE IF NOT EXISTS threshold_events (
    id TEXT PRIMARY KEY,
    timestamp REAL NOT NULL,
    trigger_type TEXT NOT NULL,
    trigger_value REAL NOT NULL,
    threshold REAL NOT NULL,
    all_processes TEXT NOT NULL        -- JSON [process]
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL
);

CREATE TABLE IF NOT EXISTS categories (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_timestamp ON snapshots(timestamp);
CREATE INDEX IF NOT EXISTS idx_threshold_events_timestamp ON threshold_events(timestamp);
"""


def init_database(db_path: Path) -> None:
    """Initialize database with WAL mode and schema.

    If the database exists with a different schema version, it is deleted
    and recreated. No migrations - schema mismatch means fresh start.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if db_path.exists():
        conn = sqlite3.connect(db_path)
        try:
            existing_version = _get_schema_version_raw(conn)
        except sqlite3.DatabaseError:
            # Corrupted or incompatible DB
            existing_version = None
        finally:
            conn.close()

        if existing_version == SCHEMA_VERSION:
            return

        log.info(
            "schema_mismatch",
            existing=existing_version,
            expected=SCHEMA_VERSION,
            action="recreate",
        )
        for suffix in ("", "-wal", "-shm"):
            path = db_path.with_name(db_path.name + suffix)
            if path.exists():
                path.unlink()

    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
            ("schema_version", str(SCHEMA_VERSION), time.time()),
        )
        conn.commit()
        log.info("database_initialized", path=str(db_path), version=SCHEMA_VERSION)
    finally:
        conn.close()


def _get_schema_version_raw(conn: sqlite3.Connection) -> int:
    """Get schema version without error handling (for init_database use)."""
    row = conn.execute("SELECT value FROM settings WHERE key = 'schema_version'").fetchone()
    return int(row[0]) if row else 0


def _to_epoch(ts: datetime) -> float:
    return ts.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, timezone.utc)


def _processes_to_json(processes: list[ProcessSample]) -> str:
    return json.dumps([p.to_dict() for p in processes])


def _processes_from_json(payload: str, record_id: str) -> list[ProcessSample]:
    """Decode a process list, empty if the payload is corrupt."""
    try:
        return [ProcessSample.from_dict(p) for p in json.loads(payload)]
    except (ValueError, TypeError, KeyError) as e:
        log.warning("corrupt_process_payload", record_id=record_id, error=str(e))
        return []


def _breakdown_from_json(payload: str, record_id: str) -> dict[str, ResourceUsage]:
    """Decode a category breakdown, empty if the payload is corrupt."""
    try:
        data = json.loads(payload)
        return {cid: ResourceUsage.from_dict(u) for cid, u in data.items()}
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        log.warning("corrupt_breakdown_payload", record_id=record_id, error=str(e))
        return {}


def snapshot_to_dict(snapshot: ResourceSnapshot) -> dict:
    """JSON-ready representation of a snapshot (ISO-8601 timestamp)."""
    return {
        "id": snapshot.id,
        "timestamp": snapshot.timestamp.isoformat(),
        "total_cpu": snapshot.total_cpu,
        "total_memory_mb": snapshot.total_memory_mb,
        "total_system_memory_mb": snapshot.total_system_memory_mb,
        "cpu_core_count": snapshot.cpu_core_count,
        "memory_percent": snapshot.memory_percent,
        "category_breakdown": {k: v.to_dict() for k, v in snapshot.category_breakdown.items()},
        "top_processes": [p.to_dict() for p in snapshot.top_processes],
    }


def event_to_dict(event: ThresholdEvent) -> dict:
    """JSON-ready representation of a threshold event (ISO-8601 timestamp)."""
    return {
        "id": event.id,
        "timestamp": event.timestamp.isoformat(),
        "trigger_type": event.trigger_type.value,
        "trigger_value": event.trigger_value,
        "threshold": event.threshold,
        "all_processes": [p.to_dict() for p in event.all_processes],
    }


class Storage:
    """Thread-safe store for snapshots, threshold events, settings and categories."""

    def __init__(
        self,
        db_path: Path,
        retention_days: int = 30,
        clock: Callable[[], float] = time.time,
        cleanup_on_open: bool = True,
    ):
        self.db_path = db_path
        self.retention_days = retention_days
        self._clock = clock
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        try:
            init_database(db_path)
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        except (sqlite3.Error, OSError) as e:
            log.error("database_open_failed", path=str(db_path), error=str(e))
            self._conn = None

        if cleanup_on_open:
            self.cleanup()

    @property
    def available(self) -> bool:
        """True if the database opened successfully."""
        return self._conn is not None

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _now(self) -> datetime:
        return _from_epoch(self._clock())

    def _write(self, op: str, sql: str, params: tuple = ()) -> int:
        """Run one write statement and commit; returns rows affected, 0 on failure."""
        with self._lock:
            if self._conn is None:
                return 0
            try:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                log.warning("database_write_failed", op=op, error=str(e))
                self._conn.rollback()
                return 0

    def _read(self, op: str, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run one query; returns [] on failure."""
        with self._lock:
            if self._conn is None:
                return []
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                log.warning("database_read_failed", op=op, error=str(e))
                return []

    # --- Snapshots ---

    def save_snapshot(self, snapshot: ResourceSnapshot) -> None:
        """Insert a snapshot, replacing any existing row with the same id."""
        breakdown = json.dumps({k: v.to_dict() for k, v in snapshot.category_breakdown.items()})
        self._write(
            "save_snapshot",
            """INSERT OR REPLACE INTO snapshots
               (id, timestamp, total_cpu, total_memory_mb, total_system_memory_mb,
                cpu_core_count, category_breakdown, top_processes)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                snapshot.id,
                _to_epoch(snapshot.timestamp),
                snapshot.total_cpu,
                snapshot.total_memory_mb,
                snapshot.total_system_memory_mb,
                snapshot.cpu_core_count,
                breakdown,
                _processes_to_json(snapshot.top_processes),
            ),
        )

    def _row_to_snapshot(self, row: sqlite3.Row) -> ResourceSnapshot:
        return ResourceSnapshot(
            id=row["id"],
            timestamp=_from_epoch(row["timestamp"]),
            total_cpu=row["total_cpu"],
            total_memory_mb=row["total_memory_mb"],
            total_system_memory_mb=row["total_system_memory_mb"],
            cpu_core_count=row["cpu_core_count"],
            category_breakdown=_breakdown_from_json(row["category_breakdown"], row["id"]),
            top_processes=_processes_from_json(row["top_processes"], row["id"]),
        )

    def load_snapshots(self, start: datetime, end: datetime) -> list[ResourceSnapshot]:
        """Snapshots with start <= timestamp <= end, oldest first."""
        rows = self._read(
            "load_snapshots",
            """SELECT * FROM snapshots
               WHERE timestamp >= ? AND timestamp <= ?
               ORDER BY timestamp ASC""",
            (_to_epoch(start), _to_epoch(end)),
        )
        return [self._row_to_snapshot(r) for r in rows]

    def load_snapshots_last_hours(self, hours: float) -> list[ResourceSnapshot]:
        end = self._now()
        return self.load_snapshots(end - timedelta(hours=hours), end)

    def load_snapshots_last_days(self, days: float) -> list[ResourceSnapshot]:
        end = self._now()
        return self.load_snapshots(end - timedelta(days=days), end)

    def snapshot_count(self) -> int:
        rows = self._read("snapshot_count", "SELECT COUNT(*) FROM snapshots")
        return rows[0][0] if rows else 0

    # --- Threshold events ---

    def save_event(self, event: ThresholdEvent) -> None:
        """Insert an event, replacing any existing row with the same id."""
        self._write(
            "save_event",
            """INSERT OR REPLACE INTO threshold_events
               (id, timestamp, trigger_type, trigger_value, threshold, all_processes)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                event.id,
                _to_epoch(event.timestamp),
                event.trigger_type.value,
                event.trigger_value,
                event.threshold,
                _processes_to_json(event.all_processes),
            ),
        )

    def _row_to_event(self, row: sqlite3.Row) -> ThresholdEvent | None:
        try:
            trigger_type = TriggerType(row["trigger_type"])
        except ValueError:
            log.warning("unknown_trigger_type", record_id=row["id"], value=row["trigger_type"])
            return None
        return ThresholdEvent(
            id=row["id"],
            timestamp=_from_epoch(row["timestamp"]),
            trigger_type=trigger_type,
            trigger_value=row["trigger_value"],
            threshold=row["threshold"],
            all_processes=_processes_from_json(row["all_processes"], row["id"]),
        )

    def _rows_to_events(self, rows: list[sqlite3.Row]) -> list[ThresholdEvent]:
        events = (self._row_to_event(r) for r in rows)
        return [e for e in events if e is not None]

    def load_events(self, last_days: float = 7) -> list[ThresholdEvent]:
        """Events from the last N days, most recent first."""
        cutoff = self._now() - timedelta(days=last_days)
        rows = self._read(
            "load_events",
            "SELECT * FROM threshold_events WHERE timestamp >= ? ORDER BY timestamp DESC",
            (_to_epoch(cutoff),),
        )
        return self._rows_to_events(rows)

    def load_event(self, event_id: str) -> ThresholdEvent | None:
        """One event by id (a unique id prefix is also accepted)."""
        rows = self._read(
            "load_event",
            "SELECT * FROM threshold_events WHERE id = ? OR id LIKE ? LIMIT 2",
            (event_id, f"{event_id}%"),
        )
        exact = [r for r in rows if r["id"] == event_id]
        if exact:
            rows = exact
        if len(rows) != 1:
            return None
        return self._row_to_event(rows[0])

    def last_event(self) -> ThresholdEvent | None:
        rows = self._read(
            "last_event",
            "SELECT * FROM threshold_events ORDER BY timestamp DESC LIMIT 1",
        )
        events = self._rows_to_events(rows)
        return events[0] if events else None

    def event_count(self) -> int:
        rows = self._read("event_count", "SELECT COUNT(*) FROM threshold_events")
        return rows[0][0] if rows else 0

    # --- Settings ---

    def save_settings(self, settings: AppSettings) -> None:
        """Replace the stored settings row."""
        self._write(
            "save_settings",
            "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
            (SETTINGS_KEY, json.dumps(settings.to_dict()), self._clock()),
        )

    def load_settings(self) -> AppSettings:
        """Last saved settings, or defaults if none are stored or they are unusable."""
        rows = self._read(
            "load_settings", "SELECT value FROM settings WHERE key = ?", (SETTINGS_KEY,)
        )
        if not rows:
            return AppSettings()
        try:
            settings = AppSettings.from_dict(json.loads(rows[0]["value"]))
            settings.validate()
        except (ValueError, TypeError) as e:  # SettingsError and JSONDecodeError included
            log.warning("stored_settings_invalid", error=str(e))
            return AppSettings()
        return settings

    # --- Categories ---

    def save_categories(self, categories: list[AppCategory]) -> None:
        """Replace the stored category catalog with the full list."""
        self._write(
            "save_categories",
            "INSERT OR REPLACE INTO categories (key, value, updated_at) VALUES (?, ?, ?)",
            (CATEGORIES_KEY, categories_to_json(categories), self._clock()),
        )

    def load_categories(self) -> list[AppCategory] | None:
        """Stored catalog, or None if nothing usable was ever saved.

        None is distinct from an empty list: the caller decides whether to
        fall back to the built-in catalog.
        """
        rows = self._read(
            "load_categories", "SELECT value FROM categories WHERE key = ?", (CATEGORIES_KEY,)
        )
        if not rows:
            return None
        try:
            return categories_from_json(rows[0]["value"])
        except ValueError as e:
            log.warning("stored_categories_invalid", error=str(e))
            return None

    # --- Retention ---

    def cleanup(self, keep_days: int | None = None) -> tuple[int, int]:
        """Delete snapshots and events older than keep_days, then compact.

        Args:
            keep_days: Days to keep (defaults to retention_days)

        Returns:
            Tuple of (snapshots_deleted, events_deleted)
        """
        days = self.retention_days if keep_days is None else keep_days
        cutoff = self._clock() - days * 86400

        snapshots_deleted = self._write(
            "cleanup_snapshots", "DELETE FROM snapshots WHERE timestamp < ?", (cutoff,)
        )
        events_deleted = self._write(
            "cleanup_events", "DELETE FROM threshold_events WHERE timestamp < ?", (cutoff,)
        )

        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.execute("VACUUM")
                except sqlite3.Error as e:
                    log.warning("vacuum_failed", error=str(e))

        if snapshots_deleted or events_deleted:
            log.info(
                "retention_cleanup",
                keep_days=days,
                snapshots_deleted=snapshots_deleted,
                events_deleted=events_deleted,
            )
        return snapshots_deleted, events_deleted


class DatabaseNotAvailable(Exception):
    """Raised when database doesn't exist and command should exit gracefully."""

    pass


@contextmanager
def require_database(
    db_path: Path, *, exit_on_missing: bool = False
) -> Generator[Storage, None, None]:
    """Context manager for commands requiring database access.

    Args:
        db_path: Path to the database file
        exit_on_missing: If True, raise SystemExit(1) on missing database.
                        If False, raise DatabaseNotAvailable.

    Yields:
        Storage: Open store (no retention cleanup on open)

    Raises:
        DatabaseNotAvailable: If database doesn't exist and exit_on_missing is False
        SystemExit: If database doesn't exist and exit_on_missing is True
    """
    import click

    if not db_path.exists():
        if exit_on_missing:
            click.echo("Error: Database not found", err=True)
            raise SystemExit(1)
        click.echo("Database not found. Run 'dev-resource-monitor daemon' first.")
        raise DatabaseNotAvailable()

    storage = Storage(db_path, cleanup_on_open=False)
    try:
        yield storage
    finally:
        storage.close()
