"""Threshold monitor: CPU/memory breach detection with a cooldown window.

States are Idle (evaluating) and Cooldown (suppressing). The cooldown is a
deadline compared against an injected monotonic clock on every check, so it
needs no timers and can be driven deterministically in tests.
"""

import time
from collections.abc import Callable

import structlog

from dev_resource_monitor.formatting import format_relative_time
from dev_resource_monitor.models import (
    ProcessSample,
    ResourceSnapshot,
    ThresholdEvent,
    TriggerType,
)

log = structlog.get_logger()

EventListener = Callable[[ThresholdEvent], None]


class ThresholdMonitor:
    """Emits at most one ThresholdEvent per cooldown window."""

    def __init__(
        self,
        cpu_threshold: float = 80.0,
        memory_threshold: float = 80.0,
        cooldown_seconds: float = 60.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cpu_threshold = cpu_threshold
        self.memory_threshold = memory_threshold
        self.cooldown_seconds = cooldown_seconds
        self.enabled = enabled
        self._clock = clock
        self._cooldown_until: float | None = None
        self._listeners: list[EventListener] = []
        self.last_event: ThresholdEvent | None = None

    @property
    def in_cooldown(self) -> bool:
        return self._cooldown_until is not None and self._clock() < self._cooldown_until

    @property
    def cooldown_until(self) -> float | None:
        """Clock value at which the current cooldown ends, None if never armed."""
        return self._cooldown_until

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback run for every emitted event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        self._listeners.remove(listener)

    def update_settings(
        self,
        cpu_threshold: float | None = None,
        memory_threshold: float | None = None,
        cooldown_seconds: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Change thresholds in place; None leaves a value unchanged.

        A new cooldown length applies from the next event; an active
        cooldown keeps its deadline.
        """
        if cpu_threshold is not None:
            self.cpu_threshold = cpu_threshold
        if memory_threshold is not None:
            self.memory_threshold = memory_threshold
        if cooldown_seconds is not None:
            self.cooldown_seconds = cooldown_seconds
        if enabled is not None:
            self.enabled = enabled

    def check(
        self, snapshot: ResourceSnapshot, all_processes: list[ProcessSample]
    ) -> ThresholdEvent | None:
        """Evaluate one snapshot, emitting an event on a strict breach.

        CPU is checked before memory and at most one event is emitted per
        call. all_processes is the full process list, not just the top ten.
        """
        if not self.enabled or self.in_cooldown:
            return None

        event = None
        if snapshot.cpu_percent > self.cpu_threshold:
            event = ThresholdEvent(
                trigger_type=TriggerType.CPU,
                trigger_value=snapshot.cpu_percent,
                threshold=self.cpu_threshold,
                all_processes=list(all_processes),
            )
        elif snapshot.memory_percent > self.memory_threshold:
            event = ThresholdEvent(
                trigger_type=TriggerType.MEMORY,
                trigger_value=snapshot.memory_percent,
                threshold=self.memory_threshold,
                all_processes=list(all_processes),
            )

        if event is not None:
            self._trigger(event)
        return event

    def _trigger(self, event: ThresholdEvent) -> None:
        self.last_event = event
        self._cooldown_until = self._clock() + self.cooldown_seconds
        log.info(
            "threshold_exceeded",
            trigger=event.trigger_type.value,
            value=round(event.trigger_value, 1),
            threshold=event.threshold,
        )
        # Each consumer is independent: one failing must not skip the others
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("threshold_listener_failed", event_id=event.id)

    def reset_cooldown(self) -> None:
        """Return to Idle immediately."""
        self._cooldown_until = None

    def time_since_last_event(self) -> str | None:
        """Humanized age of the last event, None if there is none."""
        if self.last_event is None:
            return None
        return format_relative_time(self.last_event.timestamp)
