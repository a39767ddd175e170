"""Process table and CPU counter sampling via psutil.

The sampler is purely observational and never raises: any OS read that
fails degrades to "no data" for that part of the tick.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import psutil
import structlog

from dev_resource_monitor.cpu import CpuTicks
from dev_resource_monitor.models import ProcessSample, utc_now

log = structlog.get_logger()

BYTES_PER_MB = 1024 * 1024

# Attributes fetched per process in one pass
_PROCESS_ATTRS = ["pid", "name", "exe", "cmdline", "cpu_percent", "memory_info", "ppid"]


@dataclass
class RawSample:
    """Everything read from the OS in one tick, before any aggregation."""

    timestamp: datetime
    processes: list[ProcessSample] = field(default_factory=list)
    cpu_ticks: list[CpuTicks] = field(default_factory=list)
    used_memory_mb: float = 0.0
    elapsed_ms: int = 0


@contextmanager
def cpu_tick_reader() -> Iterator[list[CpuTicks]]:
    """Read per-core cumulative CPU counters for the duration of a block.

    The counters are copied out of psutil's per-core records into plain
    tuples, so nothing from the OS read outlives the block.
    """
    raw = psutil.cpu_times(percpu=True)
    try:
        yield [
            CpuTicks(
                user=t.user,
                system=t.system,
                idle=t.idle,
                nice=getattr(t, "nice", 0.0),  # Not reported on Windows
            )
            for t in raw
        ]
    finally:
        del raw


def _command_path(info: dict) -> str:
    """Best available full command path for a process."""
    exe = info.get("exe")
    if exe:
        return exe
    cmdline = info.get("cmdline") or []
    if cmdline:
        return cmdline[0]
    return info.get("name") or ""


class Sampler:
    """Reads the live process table, per-core CPU counters and memory usage."""

    def __init__(self) -> None:
        self.total_system_memory_mb = self._read_total_memory_mb()

    @staticmethod
    def _read_total_memory_mb() -> float:
        """Physical memory size in MB, 0 if it cannot be read."""
        try:
            return psutil.virtual_memory().total / BYTES_PER_MB
        except (OSError, psutil.Error) as e:
            log.warning("total_memory_read_failed", error=str(e))
            return 0.0

    @property
    def cpu_core_count(self) -> int:
        """Logical CPU count."""
        return psutil.cpu_count() or 0

    def read_processes(self) -> list[ProcessSample]:
        """Snapshot every running process.

        Processes that exit mid-read, zombies and processes we may not inspect
        are skipped. If the process table itself cannot be read, returns [].
        """
        processes: list[ProcessSample] = []
        try:
            for proc in psutil.process_iter(attrs=_PROCESS_ATTRS):
                try:
                    info = proc.info
                    mem_info = info.get("memory_info")
                    memory_mb = mem_info.rss / BYTES_PER_MB if mem_info else 0.0
                    processes.append(
                        ProcessSample(
                            pid=info.get("pid", proc.pid),
                            name=info.get("name") or "",
                            command_path=_command_path(info),
                            cpu_percent=info.get("cpu_percent") or 0.0,
                            memory_mb=memory_mb,
                            parent_pid=info.get("ppid") or 0,
                        )
                    )
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    continue
        except (OSError, psutil.Error) as e:
            log.warning("process_table_read_failed", error=str(e))
            return []
        return processes

    def read_cpu_ticks(self) -> list[CpuTicks]:
        """Per-core cumulative counters, [] if they cannot be read."""
        try:
            with cpu_tick_reader() as ticks:
                return ticks
        except (OSError, psutil.Error) as e:
            log.warning("cpu_ticks_read_failed", error=str(e))
            return []

    def read_used_memory_mb(self) -> float:
        """Memory in use from OS-level accounting (total - available), in MB."""
        try:
            vm = psutil.virtual_memory()
            return (vm.total - vm.available) / BYTES_PER_MB
        except (OSError, psutil.Error) as e:
            log.warning("used_memory_read_failed", error=str(e))
            return 0.0

    def sample(self) -> RawSample:
        """Read processes, CPU counters and used memory for one tick."""
        start = time.monotonic()
        timestamp = utc_now()
        processes = self.read_processes()
        ticks = self.read_cpu_ticks()
        used = self.read_used_memory_mb()
        elapsed_ms = int((time.monotonic() - start) * 1000)
        return RawSample(
            timestamp=timestamp,
            processes=processes,
            cpu_ticks=ticks,
            used_memory_mb=used,
            elapsed_ms=elapsed_ms,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Process termination
# ─────────────────────────────────────────────────────────────────────────────

PROTECTED_PROCESS_NAMES = frozenset(
    {
        "kernel_task",
        "launchd",
        "WindowServer",
        "loginwindow",
        "SystemUIServer",
        "Dock",
        "Finder",
        "cfprefsd",
        "distnoted",
        "trustd",
        "securityd",
        "systemd",
        "init",
        "kthreadd",
    }
)

PROTECTED_PATH_PREFIXES = ("/System/", "/usr/libexec/", "/sbin/", "/usr/sbin/")


class ProtectedProcessError(Exception):
    """Raised when a system-critical process is targeted for termination."""


class TerminateResult(Enum):
    """Outcome of a termination request."""

    SUCCESS = "success"
    PROTECTED = "protected"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    FAILED = "failed"


def is_system_process(sample: ProcessSample) -> bool:
    """Return True for processes that must never be terminated."""
    if sample.name in PROTECTED_PROCESS_NAMES:
        return True
    if sample.pid <= 1:
        return True
    return sample.command_path.startswith(PROTECTED_PATH_PREFIXES)


def ensure_terminable(sample: ProcessSample) -> None:
    """Raise ProtectedProcessError if sample is a system process."""
    if is_system_process(sample):
        raise ProtectedProcessError(f"{sample.name} (PID {sample.pid}) is a system process")


def describe_process(pid: int) -> ProcessSample | None:
    """Read a single process by pid, None if it is gone or unreadable."""
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            info = {
                "name": proc.name(),
                "exe": _safe_exe(proc),
                "cmdline": [],
                "memory_info": proc.memory_info(),
                "ppid": proc.ppid(),
            }
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return None
    except psutil.AccessDenied:
        return ProcessSample(pid=pid, name="", command_path="")
    return ProcessSample(
        pid=pid,
        name=info["name"] or "",
        command_path=_command_path(info),
        memory_mb=info["memory_info"].rss / BYTES_PER_MB,
        parent_pid=info["ppid"] or 0,
    )


def _safe_exe(proc: psutil.Process) -> str:
    try:
        return proc.exe()
    except (psutil.AccessDenied, psutil.ZombieProcess, OSError):
        return ""


def terminate_process(pid: int, force: bool = False) -> TerminateResult:
    """Send SIGTERM (or SIGKILL with force) to a non-system process.

    Protection is checked before any signal is sent.
    """
    sample = describe_process(pid)
    if sample is None:
        return TerminateResult.NOT_FOUND

    try:
        ensure_terminable(sample)
    except ProtectedProcessError as e:
        log.warning("terminate_refused", pid=pid, name=sample.name, reason=str(e))
        return TerminateResult.PROTECTED

    try:
        proc = psutil.Process(pid)
        if force:
            proc.kill()
        else:
            proc.terminate()
    except psutil.NoSuchProcess:
        return TerminateResult.NOT_FOUND
    except psutil.AccessDenied:
        return TerminateResult.PERMISSION_DENIED
    except (OSError, psutil.Error) as e:
        log.warning("terminate_failed", pid=pid, error=str(e))
        return TerminateResult.FAILED

    log.info("process_terminated", pid=pid, name=sample.name, force=force)
    return TerminateResult.SUCCESS
