"""Configuration system for dev-resource-monitor.

Two layers:
- Config: daemon/file configuration in TOML (paths, sampler timeout,
  snapshot cadence, log rotation). Edited by hand or via `config edit`.
- AppSettings: user settings (poll interval, thresholds, notifications,
  retention). Persisted as a single JSON row in the database and replaced
  as a whole on every save.
"""

from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Accepted ranges for user settings (inclusive)
THRESHOLD_RANGE = (1.0, 100.0)
POLL_INTERVAL_RANGE = (1.0, 60.0)
RETENTION_DAYS_RANGE = (1, 365)

VIEW_MODES = ("Grouped", "Detailed")
HISTORY_CHART_MODES = ("Bar", "Line")


class SettingsError(ValueError):
    """Raised when user settings fail validation."""


@dataclass
class SystemConfig:
    """Daemon loop configuration."""

    sample_timeout: float = 10.0  # Max seconds for one OS read before the tick is dropped
    snapshot_interval: float = 60.0  # Seconds between persisted snapshots
    auto_prune_interval_hours: int = 24  # Hours between retention cleanups
    heartbeat_samples: int = 60  # Log heartbeat every N polls
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "dev-resource-monitor"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def data_dir(self) -> Path:
        """Data directory."""
        return Path.home() / ".local" / "share" / "dev-resource-monitor"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "dev-resource-monitor"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (PID file)."""
        return Path("/tmp/dev-resource-monitor")

    @property
    def db_path(self) -> Path:
        """Database path."""
        return self.data_dir / "monitor.db"

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        doc.add("system", _dataclass_to_table(self.system))

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(system=_load_system_config(data.get("system", {})))


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data, using dataclass defaults for missing fields."""
    d = SystemConfig()

    sample_timeout = data.get("sample_timeout", d.sample_timeout)
    snapshot_interval = data.get("snapshot_interval", d.snapshot_interval)
    auto_prune_interval_hours = data.get("auto_prune_interval_hours", d.auto_prune_interval_hours)

    if sample_timeout <= 0:
        raise ValueError(f"sample_timeout must be > 0, got {sample_timeout}")
    if snapshot_interval <= 0:
        raise ValueError(f"snapshot_interval must be > 0, got {snapshot_interval}")
    if auto_prune_interval_hours < 1:
        raise ValueError(
            f"auto_prune_interval_hours must be >= 1, got {auto_prune_interval_hours}"
        )

    return SystemConfig(
        sample_timeout=sample_timeout,
        snapshot_interval=snapshot_interval,
        auto_prune_interval_hours=auto_prune_interval_hours,
        heartbeat_samples=data.get("heartbeat_samples", d.heartbeat_samples),
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )


@dataclass
class AppSettings:
    """User settings, stored as one row and replaced as a whole."""

    # Polling
    poll_interval_seconds: float = 5.0
    # Thresholds
    cpu_threshold: float = 80.0
    memory_threshold: float = 80.0
    thresholds_enabled: bool = True
    threshold_cooldown_seconds: float = 60.0
    # Notifications
    notifications_enabled: bool = True
    sound_enabled: bool = False
    silent_logging: bool = False  # Record events but never show a notification
    # Display
    show_in_menu_bar: bool = True
    show_percent_in_menu_bar: bool = True
    default_view_mode: str = "Grouped"
    default_history_chart_mode: str = "Bar"
    # History
    history_retention_days: int = 30
    # Launch
    launch_at_login: bool = False

    def validate(self) -> None:
        """Check every range-constrained field.

        Raises:
            SettingsError: Listing every field that is out of range.
        """
        problems = []
        lo, hi = THRESHOLD_RANGE
        for name in ("cpu_threshold", "memory_threshold"):
            value = getattr(self, name)
            if not lo <= value <= hi:
                problems.append(f"{name} must be in [{lo:g}, {hi:g}], got {value}")
        lo, hi = POLL_INTERVAL_RANGE
        if not lo <= self.poll_interval_seconds <= hi:
            problems.append(
                f"poll_interval_seconds must be in [{lo:g}, {hi:g}], "
                f"got {self.poll_interval_seconds}"
            )
        lo_days, hi_days = RETENTION_DAYS_RANGE
        if not lo_days <= self.history_retention_days <= hi_days:
            problems.append(
                f"history_retention_days must be in [{lo_days}, {hi_days}], "
                f"got {self.history_retention_days}"
            )
        if self.threshold_cooldown_seconds < 0:
            problems.append(
                f"threshold_cooldown_seconds must be >= 0, got {self.threshold_cooldown_seconds}"
            )
        if self.default_view_mode not in VIEW_MODES:
            problems.append(f"default_view_mode must be one of {VIEW_MODES}")
        if self.default_history_chart_mode not in HISTORY_CHART_MODES:
            problems.append(f"default_history_chart_mode must be one of {HISTORY_CHART_MODES}")
        if problems:
            raise SettingsError("; ".join(problems))

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AppSettings":
        """Deserialize a complete settings record.

        Every field must be present: a partial record is rejected rather than
        merged with defaults. Unknown keys are ignored.

        Raises:
            SettingsError: If a field is missing or has the wrong type.
        """
        values = {}
        for f in fields(cls):
            if f.name not in data:
                raise SettingsError(f"Missing settings field: {f.name}")
            value = data[f.name]
            # JSON has no int/float distinction for whole numbers
            if f.type is float and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            if isinstance(value, bool) != (f.type is bool) or not isinstance(value, f.type):
                raise SettingsError(f"Settings field {f.name} has wrong type: {value!r}")
            values[f.name] = value
        return cls(**values)
