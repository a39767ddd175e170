"""macOS notification delivery for threshold alerts."""

import subprocess

import structlog

from dev_resource_monitor.config import AppSettings
from dev_resource_monitor.models import ThresholdEvent

log = structlog.get_logger()

ALERT_TITLE = "Resource Threshold Exceeded"


def _escape(text: str) -> str:
    """Escape text for an AppleScript string literal."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def send_notification(
    title: str,
    message: str,
    sound: bool = False,
    subtitle: str | None = None,
) -> bool:
    """Send a macOS notification via osascript.

    Args:
        title: Notification title
        message: Notification body
        sound: Whether to play default sound
        subtitle: Optional subtitle

    Returns:
        True if notification was sent successfully
    """
    sound_part = 'sound name "Funk"' if sound else ""
    subtitle_part = f'subtitle "{_escape(subtitle)}"' if subtitle else ""

    script = (
        f'display notification "{_escape(message)}" '
        f'with title "{_escape(title)}" {subtitle_part} {sound_part}'
    )

    try:
        subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            timeout=5,
            check=True,
        )
        log.debug("notification_sent", title=title)
        return True
    except (subprocess.TimeoutExpired, subprocess.CalledProcessError, OSError) as e:
        log.warning("notification_failed", error=str(e))
        return False


class Notifier:
    """Sends threshold alerts according to the user's notification settings."""

    def __init__(self, settings: AppSettings):
        self.settings = settings

    def update_settings(self, settings: AppSettings) -> None:
        self.settings = settings

    def threshold_alert(self, event: ThresholdEvent) -> bool:
        """Notify about a threshold event with its top three processes.

        Returns:
            True if a notification was delivered
        """
        if not self.settings.notifications_enabled or self.settings.silent_logging:
            return False

        top = ", ".join(p.display_name for p in event.top_processes_by_trigger(3))
        return send_notification(
            title=ALERT_TITLE,
            message=event.description,
            sound=self.settings.sound_enabled,
            subtitle=f"Top: {top}" if top else None,
        )
