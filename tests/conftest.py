"""Shared test fixtures for dev-resource-monitor."""

import asyncio
import contextlib
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator
from unittest.mock import PropertyMock, patch

import pytest

from dev_resource_monitor.config import Config
from dev_resource_monitor.models import (
    ProcessSample,
    ResourceSnapshot,
    ResourceUsage,
    ThresholdEvent,
    TriggerType,
)
from dev_resource_monitor.storage import Storage

# Fixed reference time for storage tests
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for cooldown and retention tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(condition, timeout=1.0, interval=0.01):
    """Wait until condition() returns True, or timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    """Create a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def config(tmp_path: Path) -> Iterator[Config]:
    """Config whose directories all live under tmp_path."""
    dirs = {
        "config_dir": tmp_path / "config",
        "data_dir": tmp_path / "data",
        "state_dir": tmp_path / "state",
        "runtime_dir": tmp_path / "run",
    }
    with contextlib.ExitStack() as stack:
        for name, path in dirs.items():
            stack.enter_context(
                patch.object(Config, name, new_callable=PropertyMock, return_value=path)
            )
        yield Config()


@pytest.fixture
def storage(tmp_db: Path) -> Iterator[Storage]:
    """Open store whose clock is pinned to NOW."""
    store = Storage(tmp_db, clock=lambda: NOW.timestamp())
    yield store
    store.close()


def make_sample(
    pid: int = 100,
    name: str = "proc",
    cpu: float = 0.0,
    mem: float = 0.0,
    command_path: str = "",
    parent_pid: int = 1,
) -> ProcessSample:
    """Create a ProcessSample for testing."""
    return ProcessSample(
        pid=pid,
        name=name,
        command_path=command_path or f"/usr/local/bin/{name}",
        cpu_percent=cpu,
        memory_mb=mem,
        parent_pid=parent_pid,
    )


def make_snapshot(
    total_cpu: float = 10.0,
    total_memory_mb: float = 4096.0,
    total_system_memory_mb: float = 16384.0,
    cpu_core_count: int = 8,
    timestamp: datetime | None = None,
    snapshot_id: str | None = None,
    top_processes: list[ProcessSample] | None = None,
    breakdown: dict[str, ResourceUsage] | None = None,
) -> ResourceSnapshot:
    """Create a ResourceSnapshot for testing."""
    kwargs = {}
    if snapshot_id is not None:
        kwargs["id"] = snapshot_id
    return ResourceSnapshot(
        total_cpu=total_cpu,
        total_memory_mb=total_memory_mb,
        total_system_memory_mb=total_system_memory_mb,
        cpu_core_count=cpu_core_count,
        category_breakdown=breakdown if breakdown is not None else {},
        top_processes=top_processes or [],
        timestamp=timestamp or NOW,
        **kwargs,
    )


def make_event(
    trigger_type: TriggerType = TriggerType.CPU,
    value: float = 90.0,
    threshold: float = 80.0,
    age: timedelta = timedelta(0),
    processes: list[ProcessSample] | None = None,
) -> ThresholdEvent:
    """Create a ThresholdEvent timestamped `age` before NOW."""
    return ThresholdEvent(
        trigger_type=trigger_type,
        trigger_value=value,
        threshold=threshold,
        all_processes=processes or [],
        timestamp=NOW - age,
    )
