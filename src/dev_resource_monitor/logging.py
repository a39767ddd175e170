"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (daemon_started, threshold_breach, heartbeat, etc.)
5. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from dev_resource_monitor.config import Config
    from dev_resource_monitor.models import ThresholdEvent

# Rich console for colorful human-readable output
_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    PRUNE = "🧹"
    SAVE = "💾"
    HEARTBEAT = "[magenta]♡[/]"
    ALERT = "[bright_red]▲[/]"
    SIGNAL = "⚡"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Styling Helpers
# ─────────────────────────────────────────────────────────────────────────────


def percent_color(value: float, threshold: float = 80.0) -> str:
    """Return Rich color name for a utilization percentage."""
    if value > threshold:
        return "bright_red"
    if value > threshold * 0.75:
        return "bright_yellow"
    return "green"


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def daemon_started(poll_interval: float) -> None:
    """Log daemon startup complete."""
    info(f"Monitoring started [dim](every {poll_interval:g}s)[/]", Icon.OK)


def daemon_stopping() -> None:
    """Log daemon shutdown initiated."""
    info("Daemon stopping...", Icon.WAIT)


def daemon_stopped() -> None:
    """Log daemon shutdown complete."""
    info("Daemon stopped", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def threshold_breach(event: ThresholdEvent) -> None:
    """Log a threshold event with its top three processes."""
    top = ", ".join(p.display_name for p in event.top_processes_by_trigger(3)) or "none"
    c = percent_color(event.trigger_value, event.threshold)
    warn(
        f"[{c}]{event.trigger_type.value} {event.trigger_value:.1f}%[/] "
        f"over {event.threshold:.0f}% [dim](top: {top})[/]",
        Icon.ALERT,
    )


def heartbeat(cpu_percent: float, memory_percent: float, process_count: int, polls: int) -> None:
    """Log periodic heartbeat stats."""
    cc = percent_color(cpu_percent)
    mc = percent_color(memory_percent)
    info(
        f"cpu [{cc}]{cpu_percent:.1f}%[/], mem [{mc}]{memory_percent:.1f}%[/], "
        f"[cyan]{process_count}[/] processes [dim]({polls} polls)[/]",
        Icon.HEARTBEAT,
    )


def snapshot_saved(process_count: int, cpu_percent: float) -> None:
    """Log snapshot persisted."""
    info(f"[dim]Snapshot saved: {process_count} top processes, cpu {cpu_percent:.1f}%[/]", Icon.SAVE)


def auto_prune_started() -> None:
    """Log auto-prune started."""
    info("[dim]Auto-pruning...[/]", Icon.PRUNE)


def auto_prune_complete(snapshots_deleted: int, events_deleted: int) -> None:
    """Log auto-prune complete."""
    info(f"[dim]Pruned {snapshots_deleted} snapshots, {events_deleted} events[/]")


def sample_failed(error_msg: str) -> None:
    """Log sample collection failed."""
    error(f"Sample failed: {error_msg}", Icon.FAIL)


def settings_rejected(error_msg: str) -> None:
    """Log rejected settings update."""
    warn(f"Settings rejected: {error_msg}")


def already_running(pid: int | None = None) -> None:
    """Log daemon already running error."""
    if pid:
        error(f"Another daemon already running [dim](PID {pid})[/]", Icon.FAIL)
    else:
        error("Another daemon already running", Icon.FAIL)


def database_status(path: str, snapshots: int, events: int) -> None:
    """Log database open status."""
    info(f"Database [cyan]{path}[/] [dim]({snapshots} snapshots, {events} events)[/]")


def version_info(name: str, version: str) -> None:
    """Log version info."""
    info(f"[bold cyan]{name}[/] v{version}")


def thresholds_summary(cpu: float, memory: float, cooldown: float, enabled: bool) -> None:
    """Log threshold configuration."""
    state = "[green]on[/]" if enabled else "[dim]off[/]"
    info(
        f"Thresholds {state}: cpu>[cyan]{cpu:g}%[/] mem>[cyan]{memory:g}%[/] "
        f"[dim](cooldown {cooldown:g}s)[/]"
    )


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Configure structlog to write JSON Lines to a rotating log file.

    Console output is handled by Rich (see log functions above); structlog
    only writes to the JSON file for machine parsing. Both use local time.

    Args:
        config: Application config with paths
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("daemon"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
