"""Tests for data models."""

from datetime import timezone

from conftest import make_sample, make_snapshot

from dev_resource_monitor.models import (
    ProcessSample,
    ResourceUsage,
    ThresholdEvent,
    TriggerType,
    parse_timestamp,
)


class TestResourceUsage:
    def test_zero_is_identity(self):
        usage = ResourceUsage(cpu_percent=12.5, memory_mb=300.0, process_count=3)
        assert usage + ResourceUsage() == usage
        assert ResourceUsage() + usage == usage

    def test_addition_is_commutative(self):
        a = ResourceUsage(1.0, 2.0, 3)
        b = ResourceUsage(10.0, 20.0, 30)
        assert a + b == b + a == ResourceUsage(11.0, 22.0, 33)

    def test_sum_folds_buckets(self):
        buckets = [ResourceUsage(1.0, 1.0, 1)] * 4
        assert sum(buckets, ResourceUsage()) == ResourceUsage(4.0, 4.0, 4)

    def test_of_samples(self):
        samples = [make_sample(cpu=10.0, mem=100.0), make_sample(cpu=5.0, mem=50.0)]
        assert ResourceUsage.of(samples) == ResourceUsage(15.0, 150.0, 2)


class TestResourceSnapshot:
    def test_cpu_percent_is_total_cpu(self):
        assert make_snapshot(total_cpu=42.0).cpu_percent == 42.0

    def test_memory_percent(self):
        snapshot = make_snapshot(total_memory_mb=4096.0, total_system_memory_mb=16384.0)
        assert snapshot.memory_percent == 25.0

    def test_memory_percent_zero_denominator(self):
        assert make_snapshot(total_system_memory_mb=0.0).memory_percent == 0.0
        assert make_snapshot(total_system_memory_mb=-1.0).memory_percent == 0.0


class TestProcessSample:
    def test_display_name_prefers_app_name(self):
        sample = ProcessSample(pid=1, name="Electron", app_name="Visual Studio Code")
        assert sample.display_name == "Visual Studio Code"
        assert ProcessSample(pid=1, name="Electron").display_name == "Electron"

    def test_dict_roundtrip(self):
        sample = ProcessSample(
            pid=42,
            name="node",
            command_path="/usr/local/bin/node",
            cpu_percent=12.5,
            memory_mb=256.0,
            parent_pid=7,
            category_id="dev-tools",
            app_name="Node.js",
        )
        assert ProcessSample.from_dict(sample.to_dict()) == sample


class TestThresholdEvent:
    def test_description(self):
        event = ThresholdEvent(TriggerType.CPU, 85.0, 80.0, [])
        assert event.description == "CPU reached 85.0% (threshold: 80.0%)"

    def test_memory_description_uses_display_value(self):
        event = ThresholdEvent(TriggerType.MEMORY, 91.26, 90.0, [])
        assert event.description == "Memory reached 91.3% (threshold: 90.0%)"

    def test_top_processes_by_cpu(self):
        procs = [
            make_sample(pid=1, cpu=5.0, mem=900.0),
            make_sample(pid=2, cpu=50.0, mem=10.0),
            make_sample(pid=3, cpu=20.0, mem=500.0),
        ]
        event = ThresholdEvent(TriggerType.CPU, 90.0, 80.0, procs)
        assert [p.pid for p in event.top_processes_by_trigger(2)] == [2, 3]

    def test_top_processes_by_memory(self):
        procs = [
            make_sample(pid=1, cpu=5.0, mem=900.0),
            make_sample(pid=2, cpu=50.0, mem=10.0),
            make_sample(pid=3, cpu=20.0, mem=500.0),
        ]
        event = ThresholdEvent(TriggerType.MEMORY, 90.0, 80.0, procs)
        assert [p.pid for p in event.top_processes_by_trigger()] == [1, 3, 2]

    def test_ids_are_unique(self):
        a = ThresholdEvent(TriggerType.CPU, 90.0, 80.0, [])
        b = ThresholdEvent(TriggerType.CPU, 90.0, 80.0, [])
        assert a.id != b.id


def test_parse_timestamp_assumes_utc():
    parsed = parse_timestamp("2025-06-01T12:00:00")
    assert parsed.tzinfo == timezone.utc
    assert parse_timestamp("2025-06-01T12:00:00+02:00").utcoffset().total_seconds() == 7200
