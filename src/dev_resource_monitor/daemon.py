"""Background daemon for dev-resource-monitor.

Monitor owns the poll loop and sequences one cycle as
sampler -> CPU delta engine -> aggregator -> threshold monitor -> store.
The OS read runs in a worker thread; everything that mutates state runs
on the event loop. Daemon wraps a Monitor with PID file, signal handling
and logging setup.
"""

import asyncio
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

import psutil
import structlog

from dev_resource_monitor import logging as applog
from dev_resource_monitor.aggregator import ResourceAggregator
from dev_resource_monitor.categories import DEFAULT_CATEGORIES, AppCategory
from dev_resource_monitor.config import AppSettings, Config, SettingsError
from dev_resource_monitor.cpu import CpuDeltaEngine, normalized_cpu_percent
from dev_resource_monitor.models import (
    AppGroup,
    CategoryUsage,
    CoreUsage,
    ProcessSample,
    ResourceSnapshot,
    ThresholdEvent,
)
from dev_resource_monitor.notifications import Notifier
from dev_resource_monitor.sampler import RawSample, Sampler
from dev_resource_monitor.storage import Storage
from dev_resource_monitor.thresholds import ThresholdMonitor

log = structlog.get_logger()

StateListener = Callable[["MonitorState"], None]


def _log_failure(name: str) -> Callable[[asyncio.Future], None]:
    """Done-callback that logs an exception left on a background future."""

    def callback(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            log.error(f"{name}_failed", error=str(exc), exc_info=exc)

    return callback


@dataclass
class MonitorState:
    """Latest published results, replaced field by field after each cycle."""

    processes: list[ProcessSample] = field(default_factory=list)
    category_usages: list[CategoryUsage] = field(default_factory=list)
    app_groups: list[AppGroup] = field(default_factory=list)
    core_usages: list[CoreUsage] = field(default_factory=list)
    snapshot: ResourceSnapshot | None = None
    is_monitoring: bool = False
    last_update: datetime | None = None
    last_event: ThresholdEvent | None = None
    poll_count: int = 0
    _listeners: list[StateListener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called after every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        """Call every listener; a failing listener is logged and skipped."""
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                log.exception("state_listener_failed")


class Monitor:
    """Runs the sampling pipeline and publishes results through MonitorState."""

    def __init__(
        self,
        config: Config,
        storage: Storage,
        sampler: Sampler | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.storage = storage
        self.sampler = sampler or Sampler()
        self._clock = clock

        self.settings: AppSettings = storage.load_settings()
        self.categories: list[AppCategory] = storage.load_categories() or list(DEFAULT_CATEGORIES)

        self.storage.retention_days = self.settings.history_retention_days
        self.storage.cleanup()

        self.state = MonitorState(last_event=storage.last_event())
        self.aggregator = ResourceAggregator(self.categories)
        self.notifier = notifier or Notifier(self.settings)

        self.thresholds = ThresholdMonitor(
            cpu_threshold=self.settings.cpu_threshold,
            memory_threshold=self.settings.memory_threshold,
            cooldown_seconds=self.settings.threshold_cooldown_seconds,
            enabled=self.settings.thresholds_enabled,
            clock=clock,
        )
        self.thresholds.last_event = self.state.last_event
        self.thresholds.add_listener(self._persist_event)
        self.thresholds.add_listener(self._notify_event)

        # First delta needs a baseline
        self.cpu = CpuDeltaEngine()
        self.cpu.update(self.sampler.read_cpu_ticks())

        self._running = False
        self._generation = 0  # Bumped on stop; cycles from an older generation are dropped
        self._cycle_lock = asyncio.Lock()
        # Worker-thread read; outlives a timed-out cycle until the OS call returns
        self._inflight: asyncio.Future | None = None
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._prune_task: asyncio.Task | None = None
        self._last_snapshot_save = clock()

    @property
    def is_monitoring(self) -> bool:
        return self._running

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the poll loop and the auto-prune task."""
        if self._running:
            return
        self._running = True
        self.state.is_monitoring = True
        self.state.notify()
        log.info("monitoring_started", poll_interval=self.settings.poll_interval_seconds)

        self._loop_task = asyncio.create_task(self._main_loop())
        self._prune_task = asyncio.create_task(self._auto_prune())

    async def stop(self) -> None:
        """Stop polling; a cycle still in flight has its result dropped."""
        if not self._running:
            return
        self._running = False
        self._generation += 1
        self._wake.set()

        for task in (self._loop_task, self._prune_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop_task = None
        self._prune_task = None

        self.state.is_monitoring = False
        self.state.notify()
        log.info("monitoring_stopped", polls=self.state.poll_count)

    async def refresh(self) -> ResourceSnapshot | None:
        """Run one cycle now, even if monitoring is stopped."""
        return await self._run_cycle()

    # --- Cycle ---

    async def _read_sample(self) -> RawSample | None:
        """OS read in a worker thread, bounded by the configured timeout.

        A read that timed out keeps running in its thread; no new read starts
        until it returns, and its late result is discarded.
        """
        if self._inflight is not None and not self._inflight.done():
            log.debug("cycle_skipped", reason="previous sample still running")
            return None

        timeout = self.config.system.sample_timeout
        self._inflight = asyncio.ensure_future(asyncio.to_thread(self.sampler.sample))
        self._inflight.add_done_callback(_log_failure("sample"))
        try:
            return await asyncio.wait_for(asyncio.shield(self._inflight), timeout)
        except asyncio.TimeoutError:
            log.warning("sample_timeout", timeout=timeout)
            return None

    async def _run_cycle(self) -> ResourceSnapshot | None:
        """One poll cycle. Returns the new snapshot, or None if nothing was published."""
        if self._cycle_lock.locked():
            log.debug("cycle_skipped", reason="previous cycle still running")
            return None

        async with self._cycle_lock:
            generation = self._generation
            raw = await self._read_sample()
            if generation != self._generation:
                log.debug("cycle_dropped", reason="monitoring stopped")
                return None
            if raw is None or (not raw.processes and not raw.cpu_ticks):
                return None
            return self._apply(raw)

    def _apply(self, raw: RawSample) -> ResourceSnapshot:
        core_usages = self.cpu.update(raw.cpu_ticks)
        if core_usages:
            total_cpu = normalized_cpu_percent(core_usages)
        else:
            # Counter read failed this tick; keep the last known headline value
            total_cpu = self.state.snapshot.total_cpu if self.state.snapshot else 0.0
            core_usages = self.state.core_usages

        processes = self.aggregator.enrich_all(raw.processes)
        snapshot = self.aggregator.create_snapshot(
            raw.processes,
            total_system_memory_mb=self.sampler.total_system_memory_mb,
            total_cpu=total_cpu,
            total_memory_mb=raw.used_memory_mb,
            cpu_core_count=len(core_usages) or self.sampler.cpu_core_count,
            timestamp=raw.timestamp,
        )

        state = self.state
        state.processes = processes
        state.category_usages = self.aggregator.group_by_category(raw.processes)
        state.app_groups = self.aggregator.group_by_app(raw.processes)
        state.core_usages = core_usages
        state.snapshot = snapshot
        state.last_update = raw.timestamp
        state.poll_count += 1

        event = self.thresholds.check(snapshot, processes)
        now = self._clock()
        if event is not None:
            state.last_event = event
            self.storage.save_snapshot(snapshot)
            self._last_snapshot_save = now
        elif now - self._last_snapshot_save >= self.config.system.snapshot_interval:
            self.save_current_snapshot()
            self._last_snapshot_save = now

        state.notify()
        return snapshot

    def _persist_event(self, event: ThresholdEvent) -> None:
        self.storage.save_event(event)

    def _notify_event(self, event: ThresholdEvent) -> None:
        applog.threshold_breach(event)
        # osascript can take seconds; keep it off the event loop
        future = asyncio.get_running_loop().run_in_executor(
            None, self.notifier.threshold_alert, event
        )
        future.add_done_callback(_log_failure("notification"))

    def save_current_snapshot(self) -> None:
        """Persist the latest snapshot, if any."""
        snapshot = self.state.snapshot
        if snapshot is None:
            return
        self.storage.save_snapshot(snapshot)
        log.debug("snapshot_saved", snapshot_id=snapshot.id)
        applog.snapshot_saved(len(snapshot.top_processes), snapshot.cpu_percent)

    # --- User actions ---

    def update_settings(self, settings: AppSettings) -> bool:
        """Apply and persist new settings.

        Returns:
            False (keeping the previous settings) if validation fails
        """
        try:
            settings.validate()
        except SettingsError as e:
            log.warning("settings_rejected", error=str(e))
            applog.settings_rejected(str(e))
            return False

        self.settings = settings
        self.thresholds.update_settings(
            cpu_threshold=settings.cpu_threshold,
            memory_threshold=settings.memory_threshold,
            cooldown_seconds=settings.threshold_cooldown_seconds,
            enabled=settings.thresholds_enabled,
        )
        self.notifier.update_settings(settings)
        self.storage.retention_days = settings.history_retention_days
        self.storage.save_settings(settings)
        # Restart the current sleep so a new poll interval applies now
        self._wake.set()
        log.info("settings_updated", poll_interval=settings.poll_interval_seconds)
        return True

    def set_poll_interval(self, seconds: float) -> bool:
        return self.update_settings(replace(self.settings, poll_interval_seconds=seconds))

    def update_categories(self, categories: list[AppCategory]) -> None:
        """Replace the whole catalog, persist it and re-aggregate the last process list."""
        self.categories = list(categories)
        self.aggregator.update_categories(self.categories)
        self.storage.save_categories(self.categories)
        log.info("categories_updated", count=len(self.categories))

        state = self.state
        raw_processes = [replace(p, category_id=None, app_name=None) for p in state.processes]
        state.processes = self.aggregator.enrich_all(raw_processes)
        state.category_usages = self.aggregator.group_by_category(raw_processes)
        state.app_groups = self.aggregator.group_by_app(raw_processes)
        if state.snapshot is not None:
            previous = state.snapshot
            state.snapshot = self.aggregator.create_snapshot(
                raw_processes,
                total_system_memory_mb=previous.total_system_memory_mb,
                total_cpu=previous.total_cpu,
                total_memory_mb=previous.total_memory_mb,
                cpu_core_count=previous.cpu_core_count,
                timestamp=previous.timestamp,
            )
        state.notify()

    # --- Background loops ---

    async def _sleep(self, seconds: float) -> None:
        """Sleep up to seconds, returning early when woken."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _main_loop(self) -> None:
        """Poll at the configured interval until stopped.

        A slow cycle lengthens the effective interval; missed ticks are not
        queued.
        """
        heartbeat_every = max(1, self.config.system.heartbeat_samples)
        loop = asyncio.get_running_loop()

        while self._running:
            iteration_start = loop.time()
            try:
                snapshot = await self._run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.exception("cycle_failed", error=str(e))
                applog.sample_failed(str(e))
                snapshot = None

            if snapshot is not None and self.state.poll_count % heartbeat_every == 0:
                applog.heartbeat(
                    snapshot.cpu_percent,
                    snapshot.memory_percent,
                    len(self.state.processes),
                    self.state.poll_count,
                )

            elapsed = loop.time() - iteration_start
            await self._sleep(self.settings.poll_interval_seconds - elapsed)
            self._wake.clear()

    async def _auto_prune(self) -> None:
        """Run retention cleanup at the configured interval."""
        interval = self.config.system.auto_prune_interval_hours * 3600
        while self._running:
            await asyncio.sleep(interval)
            applog.auto_prune_started()
            snapshots_deleted, events_deleted = await asyncio.to_thread(
                self.storage.cleanup, self.settings.history_retention_days
            )
            applog.auto_prune_complete(snapshots_deleted, events_deleted)


class Daemon:
    """Process-level wrapper: PID file, signals, storage and monitor lifecycle."""

    def __init__(self, config: Config):
        self.config = config
        self.storage: Storage | None = None
        self.monitor: Monitor | None = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the daemon and block until shutdown is requested."""
        from importlib.metadata import version

        applog.version_info("dev-resource-monitor", version("dev-resource-monitor"))

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        if self._check_already_running():
            log.error("daemon_already_running")
            raise RuntimeError("Daemon is already running")

        self._write_pid_file()

        self.storage = Storage(self.config.db_path, cleanup_on_open=False)
        applog.database_status(
            str(self.config.db_path), self.storage.snapshot_count(), self.storage.event_count()
        )

        self.monitor = Monitor(self.config, self.storage)
        settings = self.monitor.settings
        applog.thresholds_summary(
            settings.cpu_threshold,
            settings.memory_threshold,
            settings.threshold_cooldown_seconds,
            settings.thresholds_enabled,
        )

        await self.monitor.start()
        applog.daemon_started(settings.poll_interval_seconds)

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        applog.daemon_stopping()
        if self.monitor is not None:
            await self.monitor.stop()
            self.monitor.save_current_snapshot()
            self.monitor = None
        if self.storage is not None:
            self.storage.close()
            self.storage = None
        self._remove_pid_file()
        applog.daemon_stopped()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        applog.signal_received(sig.name)
        self._shutdown_event.set()

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file if it is ours."""
        path = self.config.pid_path
        if path.exists() and path.read_text().strip() == str(os.getpid()):
            path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if daemon is already running.

        Verifies that the PID in the PID file belongs to a dev-resource-monitor
        process, so a stale file whose PID was reused does not block startup.
        """
        pid_path = self.config.pid_path
        if not pid_path.exists():
            return False

        try:
            pid = int(pid_path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            pid_path.unlink()
            return False

        try:
            proc = psutil.Process(pid)
            cmdline_str = " ".join(proc.cmdline()).lower()
        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
            pid_path.unlink()
            return False
        except psutil.AccessDenied:
            # Can't inspect process - assume it's running to be safe
            log.warning("pid_check_access_denied", pid=pid)
            applog.already_running(pid)
            return True

        if "dev-resource-monitor" in cmdline_str or "dev_resource_monitor" in cmdline_str:
            applog.already_running(pid)
            return True

        log.warning("pid_file_stale", reason="different process", pid=pid)
        pid_path.unlink()
        return False


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()

    applog.configure(config)

    daemon = Daemon(config)
    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
