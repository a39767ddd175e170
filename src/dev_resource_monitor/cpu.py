"""Per-core CPU utilization from cumulative tick counters.

The OS only exposes cumulative user/system/idle/nice counters per core, so
utilization is computed from the difference between two consecutive
readings:

    delta  = ticks[t] - ticks[t-1]            (component-wise)
    usage  = 100 * (user + system + nice) / (user + system + idle + nice)

A zero (or negative) total delta yields 0 and every result is clamped to
[0, 100]. The headline system CPU is the mean across cores, so it stays on a
0-100% scale regardless of core count.
"""

from typing import NamedTuple

from dev_resource_monitor.models import CoreUsage


class CpuTicks(NamedTuple):
    """Cumulative CPU counters for one core."""

    user: float
    system: float
    idle: float
    nice: float


def core_usage(previous: CpuTicks, current: CpuTicks) -> float:
    """Utilization (0-100) of one core between two readings."""
    d_user = current.user - previous.user
    d_system = current.system - previous.system
    d_idle = current.idle - previous.idle
    d_nice = current.nice - previous.nice

    total = d_user + d_system + d_idle + d_nice
    if total <= 0:
        return 0.0

    usage = (d_user + d_system + d_nice) / total * 100.0
    return max(0.0, min(100.0, usage))


def normalized_cpu_percent(usages: list[CoreUsage]) -> float:
    """Arithmetic mean of per-core usage, 0 when there are no cores."""
    if not usages:
        return 0.0
    return sum(u.usage for u in usages) / len(usages)


class CpuDeltaEngine:
    """Carries the previous tick vector between polls.

    Cores are identified by position only. A core with no previous reading
    (first poll, or the core count grew) reports 0 for that poll.
    """

    def __init__(self) -> None:
        self._previous: list[CpuTicks] = []

    @property
    def previous(self) -> list[CpuTicks]:
        """Last tick vector seen (copy)."""
        return list(self._previous)

    def update(self, ticks: list[CpuTicks]) -> list[CoreUsage]:
        """Compute per-core usage against the previous reading and store ticks.

        An empty reading (sampler failure) leaves the previous vector in place
        so the next successful poll still has a baseline.
        """
        if not ticks:
            return []

        usages = []
        for i, current in enumerate(ticks):
            if i < len(self._previous):
                usage = core_usage(self._previous[i], current)
            else:
                usage = 0.0
            usages.append(CoreUsage(core=i, usage=usage))

        self._previous = list(ticks)
        return usages

    def reset(self) -> None:
        """Forget the previous reading."""
        self._previous = []
