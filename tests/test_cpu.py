"""Tests for the CPU delta engine."""

import pytest

from dev_resource_monitor.cpu import (
    CpuDeltaEngine,
    CpuTicks,
    core_usage,
    normalized_cpu_percent,
)
from dev_resource_monitor.models import CoreUsage


def test_core_usage_from_two_readings():
    """30 active of 70 total ticks is ~42.9%."""
    usage = core_usage(CpuTicks(100, 50, 850, 0), CpuTicks(120, 60, 890, 0))
    assert usage == pytest.approx(42.857, abs=0.01)


def test_core_usage_uses_delta_total():
    """Deltas (20, 10, 20, 0): 30 active of 50 total."""
    usage = core_usage(CpuTicks(100, 50, 850, 0), CpuTicks(120, 60, 870, 0))
    assert usage == 60.0


def test_core_usage_counts_nice_as_active():
    usage = core_usage(CpuTicks(0, 0, 0, 0), CpuTicks(0, 0, 50, 50))
    assert usage == 50.0


def test_zero_delta_is_zero():
    ticks = CpuTicks(100, 50, 850, 0)
    assert core_usage(ticks, ticks) == 0.0


def test_negative_total_is_zero():
    """Counter reset (e.g. after sleep/wake) yields 0, never a negative."""
    assert core_usage(CpuTicks(100, 100, 100, 0), CpuTicks(0, 0, 0, 0)) == 0.0


def test_usage_clamped_to_100():
    # Idle went backwards while active advanced
    usage = core_usage(CpuTicks(0, 0, 100, 0), CpuTicks(100, 0, 90, 0))
    assert usage == 100.0


def test_usage_clamped_to_0():
    usage = core_usage(CpuTicks(100, 0, 0, 0), CpuTicks(90, 0, 100, 0))
    assert usage == 0.0


class TestNormalizedCpuPercent:
    def test_mean_of_cores(self):
        usages = [CoreUsage(0, 100.0), CoreUsage(1, 0.0), CoreUsage(2, 50.0), CoreUsage(3, 50.0)]
        assert normalized_cpu_percent(usages) == 50.0

    def test_empty_is_zero(self):
        assert normalized_cpu_percent([]) == 0.0

    def test_stays_within_bounds(self):
        usages = [CoreUsage(i, 100.0) for i in range(16)]
        assert normalized_cpu_percent(usages) == 100.0


class TestCpuDeltaEngine:
    def test_first_update_reports_zero(self):
        engine = CpuDeltaEngine()
        usages = engine.update([CpuTicks(100, 50, 850, 0), CpuTicks(10, 10, 10, 0)])
        assert [u.usage for u in usages] == [0.0, 0.0]
        assert [u.core for u in usages] == [0, 1]

    def test_second_update_uses_previous(self):
        engine = CpuDeltaEngine()
        engine.update([CpuTicks(100, 50, 850, 0)])
        usages = engine.update([CpuTicks(120, 60, 890, 0)])
        assert usages[0].usage == pytest.approx(42.857, abs=0.01)

    def test_new_cores_report_zero_for_one_tick(self):
        engine = CpuDeltaEngine()
        engine.update([CpuTicks(0, 0, 0, 0)])
        usages = engine.update([CpuTicks(50, 0, 50, 0), CpuTicks(500, 0, 0, 0)])
        assert usages[0].usage == 50.0
        assert usages[1].usage == 0.0

        usages = engine.update([CpuTicks(100, 0, 100, 0), CpuTicks(600, 0, 100, 0)])
        assert usages[1].usage == 50.0

    def test_fewer_cores_uses_prefix(self):
        engine = CpuDeltaEngine()
        engine.update([CpuTicks(0, 0, 0, 0), CpuTicks(0, 0, 0, 0)])
        usages = engine.update([CpuTicks(25, 0, 75, 0)])
        assert len(usages) == 1
        assert usages[0].usage == 25.0

    def test_empty_reading_keeps_baseline(self):
        engine = CpuDeltaEngine()
        engine.update([CpuTicks(100, 50, 850, 0)])
        assert engine.update([]) == []
        assert engine.previous == [CpuTicks(100, 50, 850, 0)]

        usages = engine.update([CpuTicks(120, 60, 890, 0)])
        assert usages[0].usage == pytest.approx(42.857, abs=0.01)

    def test_reset(self):
        engine = CpuDeltaEngine()
        engine.update([CpuTicks(0, 0, 0, 0)])
        engine.reset()
        assert engine.previous == []
        assert engine.update([CpuTicks(50, 0, 50, 0)])[0].usage == 0.0
