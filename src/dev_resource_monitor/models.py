"""Data models shared by the sampler, aggregator, monitor and storage."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def new_id() -> str:
    """Return a fresh record id."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is present."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class ProcessSample:
    """One observed process at sample time.

    Produced fresh on every poll. Only persisted as part of a snapshot's
    top processes or an event's full process capture.
    """

    pid: int
    name: str
    command_path: str = ""
    cpu_percent: float = 0.0  # Per-process, can exceed 100 on multi-core
    memory_mb: float = 0.0  # Resident set size
    parent_pid: int = 0
    category_id: str | None = None
    app_name: str | None = None  # Friendly name, e.g. "Visual Studio Code" for "Electron"

    @property
    def display_name(self) -> str:
        """Friendly app name when resolved, raw process name otherwise."""
        return self.app_name or self.name

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "pid": self.pid,
            "name": self.name,
            "command_path": self.command_path,
            "cpu_percent": self.cpu_percent,
            "memory_mb": self.memory_mb,
            "parent_pid": self.parent_pid,
            "category_id": self.category_id,
            "app_name": self.app_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessSample":
        """Deserialize from a dictionary."""
        return cls(
            pid=int(data["pid"]),
            name=data["name"],
            command_path=data.get("command_path", ""),
            cpu_percent=float(data.get("cpu_percent", 0.0)),
            memory_mb=float(data.get("memory_mb", 0.0)),
            parent_pid=int(data.get("parent_pid", 0)),
            category_id=data.get("category_id"),
            app_name=data.get("app_name"),
        )


@dataclass(frozen=True)
class CoreUsage:
    """Utilization of a single CPU core, 0-100%."""

    core: int
    usage: float


@dataclass(frozen=True)
class ResourceUsage:
    """Additive CPU/memory/process-count triple.

    ResourceUsage() is the identity for +, so sum(usages, ResourceUsage())
    folds any number of buckets together.
    """

    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    process_count: int = 0

    def __add__(self, other: "ResourceUsage") -> "ResourceUsage":
        if not isinstance(other, ResourceUsage):
            return NotImplemented
        return ResourceUsage(
            cpu_percent=self.cpu_percent + other.cpu_percent,
            memory_mb=self.memory_mb + other.memory_mb,
            process_count=self.process_count + other.process_count,
        )

    @classmethod
    def of(cls, samples: list[ProcessSample]) -> "ResourceUsage":
        """Total usage of a list of process samples."""
        return cls(
            cpu_percent=sum(s.cpu_percent for s in samples),
            memory_mb=sum(s.memory_mb for s in samples),
            process_count=len(samples),
        )

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "cpu_percent": self.cpu_percent,
            "memory_mb": self.memory_mb,
            "process_count": self.process_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResourceUsage":
        """Deserialize from a dictionary."""
        return cls(
            cpu_percent=float(data.get("cpu_percent", 0.0)),
            memory_mb=float(data.get("memory_mb", 0.0)),
            process_count=int(data.get("process_count", 0)),
        )


@dataclass(frozen=True)
class CategoryUsage:
    """Usage of one category plus the processes that produced it."""

    id: str
    name: str
    color: str
    usage: ResourceUsage
    processes: list[ProcessSample]

    @property
    def cpu_percent(self) -> float:
        return self.usage.cpu_percent

    @property
    def memory_mb(self) -> float:
        return self.usage.memory_mb

    @property
    def process_count(self) -> int:
        return self.usage.process_count


@dataclass(frozen=True)
class AppGroup:
    """Processes grouped under one application name."""

    name: str
    processes: list[ProcessSample]

    @property
    def total_cpu(self) -> float:
        return sum(p.cpu_percent for p in self.processes)

    @property
    def total_memory_mb(self) -> float:
        return sum(p.memory_mb for p in self.processes)

    @property
    def process_count(self) -> int:
        return len(self.processes)


@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time aggregate resource reading.

    total_cpu is already normalized to 0-100% (mean of per-core usage).
    total_memory_mb comes from OS-level accounting, not process RSS sums.
    """

    total_cpu: float
    total_memory_mb: float
    total_system_memory_mb: float
    cpu_core_count: int
    category_breakdown: dict[str, ResourceUsage]
    top_processes: list[ProcessSample]
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def cpu_percent(self) -> float:
        """CPU usage as a percentage of total system capacity."""
        return self.total_cpu

    @property
    def memory_percent(self) -> float:
        """Memory usage as a percentage of total system memory."""
        if self.total_system_memory_mb <= 0:
            return 0.0
        return self.total_memory_mb / self.total_system_memory_mb * 100


class TriggerType(Enum):
    """Metric that caused a threshold event."""

    CPU = "CPU"
    MEMORY = "Memory"


@dataclass(frozen=True)
class ThresholdEvent:
    """A single threshold breach with the full process list at breach time."""

    trigger_type: TriggerType
    trigger_value: float
    threshold: float
    all_processes: list[ProcessSample]
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def description(self) -> str:
        """Human-readable description, e.g. 'CPU reached 85.0% (threshold: 80.0%)'."""
        return (
            f"{self.trigger_type.value} reached {self.trigger_value:.1f}% "
            f"(threshold: {self.threshold:.1f}%)"
        )

    def top_processes_by_trigger(self, count: int | None = None) -> list[ProcessSample]:
        """Processes sorted by the metric that triggered this event."""
        if self.trigger_type is TriggerType.CPU:
            ranked = sorted(self.all_processes, key=lambda p: p.cpu_percent, reverse=True)
        else:
            ranked = sorted(self.all_processes, key=lambda p: p.memory_mb, reverse=True)
        return ranked if count is None else ranked[:count]
