"""Tests for configuration and user settings."""

from pathlib import Path
from unittest.mock import patch

import pytest

from dev_resource_monitor.config import AppSettings, Config, SettingsError, SystemConfig


class TestConfigDefaults:
    def test_system_defaults(self):
        config = Config()
        assert config.system.sample_timeout == 10.0
        assert config.system.snapshot_interval == 60.0
        assert config.system.auto_prune_interval_hours == 24
        assert config.system.heartbeat_samples == 60

    def test_paths(self):
        with patch("dev_resource_monitor.config.Path.home", return_value=Path("/home/dev")):
            config = Config()
            assert config.config_path == Path("/home/dev/.config/dev-resource-monitor/config.toml")
            assert config.db_path == Path("/home/dev/.local/share/dev-resource-monitor/monitor.db")
            assert config.log_path == Path("/home/dev/.local/state/dev-resource-monitor/daemon.log")
        assert config.pid_path == Path("/tmp/dev-resource-monitor/daemon.pid")


class TestConfigFile:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert Config.load(tmp_path / "absent.toml") == Config()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "config.toml"
        config = Config(system=SystemConfig(sample_timeout=3.0, heartbeat_samples=10))
        config.save(path)

        assert "[system]" in path.read_text()
        loaded = Config.load(path)
        assert loaded.system.sample_timeout == 3.0
        assert loaded.system.heartbeat_samples == 10
        assert loaded.system.snapshot_interval == 60.0

    def test_partial_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[system]\nsnapshot_interval = 120.0\n")
        loaded = Config.load(path)
        assert loaded.system.snapshot_interval == 120.0
        assert loaded.system.sample_timeout == 10.0

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[system\nbroken")
        with pytest.raises(ValueError, match="Failed to parse"):
            Config.load(path)

    @pytest.mark.parametrize(
        "body",
        [
            "sample_timeout = 0",
            "snapshot_interval = -5",
            "auto_prune_interval_hours = 0",
        ],
    )
    def test_invalid_values(self, tmp_path, body):
        path = tmp_path / "config.toml"
        path.write_text(f"[system]\n{body}\n")
        with pytest.raises(ValueError):
            Config.load(path)


class TestAppSettings:
    def test_defaults_are_valid(self):
        AppSettings().validate()

    def test_bounds_inclusive(self):
        AppSettings(
            cpu_threshold=1.0, memory_threshold=100.0, poll_interval_seconds=60.0
        ).validate()
        AppSettings(history_retention_days=365, poll_interval_seconds=1.0).validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cpu_threshold": 0.5},
            {"memory_threshold": 101.0},
            {"poll_interval_seconds": 0.5},
            {"poll_interval_seconds": 61.0},
            {"history_retention_days": 0},
            {"history_retention_days": 366},
            {"threshold_cooldown_seconds": -1.0},
            {"default_view_mode": "Compact"},
            {"default_history_chart_mode": "Pie"},
        ],
    )
    def test_out_of_range_rejected(self, kwargs):
        with pytest.raises(SettingsError):
            AppSettings(**kwargs).validate()

    def test_error_lists_every_problem(self):
        with pytest.raises(SettingsError) as exc_info:
            AppSettings(cpu_threshold=0.0, memory_threshold=200.0).validate()
        assert "cpu_threshold" in str(exc_info.value)
        assert "memory_threshold" in str(exc_info.value)

    def test_dict_roundtrip(self):
        settings = AppSettings(cpu_threshold=75.0, sound_enabled=True, default_view_mode="Detailed")
        assert AppSettings.from_dict(settings.to_dict()) == settings

    def test_from_dict_accepts_whole_number_floats(self):
        data = {**AppSettings().to_dict(), "cpu_threshold": 75}
        loaded = AppSettings.from_dict(data)
        assert loaded.cpu_threshold == 75.0
        assert isinstance(loaded.cpu_threshold, float)

    def test_from_dict_rejects_partial_record(self):
        with pytest.raises(SettingsError, match="Missing"):
            AppSettings.from_dict({"cpu_threshold": 75.0})

    @pytest.mark.parametrize(
        "field_name,value",
        [("sound_enabled", 1), ("history_retention_days", True), ("default_view_mode", 3)],
    )
    def test_from_dict_rejects_wrong_types(self, field_name, value):
        data = {**AppSettings().to_dict(), field_name: value}
        with pytest.raises(SettingsError, match="wrong type"):
            AppSettings.from_dict(data)

    def test_from_dict_ignores_unknown_keys(self):
        data = {**AppSettings().to_dict(), "legacy_option": "x"}
        assert AppSettings.from_dict(data) == AppSettings()
