"""Formatting utilities for consistent output across CLI, logs and notifications."""

from datetime import datetime

from dev_resource_monitor.models import utc_now


def format_percent(value: float, decimals: int = 1) -> str:
    """Format a percentage value (e.g. "45.2%")."""
    return f"{value:.{decimals}f}%"


def format_memory(mb: float) -> str:
    """Format memory in MB or GB as appropriate.

    Returns:
        - >= 1024 MB: "1.5 GB"
        - >= 100 MB: "512 MB"
        - below: "42.3 MB"
    """
    if mb >= 1024:
        return f"{mb / 1024:.1f} GB"
    if mb >= 100:
        return f"{mb:.0f} MB"
    return f"{mb:.1f} MB"


def format_cpu(value: float) -> str:
    """Format a per-process CPU percentage with precision scaled to magnitude."""
    if value >= 100:
        return f"{value:.0f}%"
    if value >= 10:
        return f"{value:.1f}%"
    return f"{value:.2f}%"


def format_duration(seconds: float) -> str:
    """Format a span compactly: "< 1 min", "5 min", "2h 15m" or "3d"."""
    if seconds < 60:
        return "< 1 min"
    if seconds < 3600:
        return f"{int(seconds // 60)} min"
    if seconds < 86400:
        hours = int(seconds // 3600)
        minutes = int(seconds % 3600 // 60)
        return f"{hours}h {minutes}m"
    return f"{int(seconds // 86400)}d"


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'} ago"


def format_relative_time(timestamp: datetime, *, now: datetime | None = None) -> str:
    """Format how long ago timestamp was ("Just now", "5 minutes ago", "1 day ago").

    Args:
        timestamp: Aware datetime in the past
        now: Reference time (defaults to the current UTC time)
    """
    if now is None:
        now = utc_now()
    elapsed = (now - timestamp).total_seconds()

    if elapsed < 60:
        return "Just now"
    if elapsed < 3600:
        return _plural(int(elapsed // 60), "minute")
    if elapsed < 86400:
        return _plural(int(elapsed // 3600), "hour")
    return _plural(int(elapsed // 86400), "day")


def format_timestamp(timestamp: datetime) -> str:
    """Format an aware timestamp in local time for tables."""
    return timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")
