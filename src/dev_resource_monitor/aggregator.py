"""Category matching and per-poll aggregation.

Each process is assigned to at most one category: enabled categories are
tried in catalog order, apps within a category in declared order, and the
first app whose patterns match the process name or its command path wins.
"""

from dataclasses import replace
from datetime import datetime

from dev_resource_monitor.categories import OTHER_CATEGORY_ID, AppCategory
from dev_resource_monitor.models import (
    AppGroup,
    CategoryUsage,
    ProcessSample,
    ResourceSnapshot,
    ResourceUsage,
    utc_now,
)

TOP_PROCESS_COUNT = 10


class ResourceAggregator:
    """Groups process samples by category and application."""

    def __init__(self, categories: list[AppCategory]):
        self._categories = list(categories)

    @property
    def categories(self) -> list[AppCategory]:
        """Current catalog (copy)."""
        return list(self._categories)

    @property
    def enabled_categories(self) -> list[AppCategory]:
        return [c for c in self._categories if c.is_enabled]

    def update_categories(self, categories: list[AppCategory]) -> None:
        """Replace the catalog used for matching."""
        self._categories = list(categories)

    def _other_enabled(self) -> bool:
        return any(c.id == OTHER_CATEGORY_ID and c.is_enabled for c in self._categories)

    def find_category_and_app(self, sample: ProcessSample) -> tuple[str, str] | None:
        """Return (category_id, app_name) of the first matching app, or None."""
        for category in self.enabled_categories:
            for app in category.apps:
                if app.matches(sample.name) or app.matches(sample.command_path):
                    return category.id, app.name
        return None

    def enrich(self, sample: ProcessSample) -> ProcessSample:
        """Copy of sample with category_id and app_name resolved, if any match."""
        match = self.find_category_and_app(sample)
        if match is None:
            return sample
        category_id, app_name = match
        return replace(sample, category_id=category_id, app_name=app_name)

    def enrich_all(self, samples: list[ProcessSample]) -> list[ProcessSample]:
        return [self.enrich(s) for s in samples]

    def group_by_category(self, samples: list[ProcessSample]) -> list[CategoryUsage]:
        """Per-category usage in catalog order.

        Unmatched processes go to "other" only while that category is enabled.
        Empty categories are omitted, except "other" which is always reported
        when enabled.
        """
        enabled = self.enabled_categories
        grouped: dict[str, list[ProcessSample]] = {c.id: [] for c in enabled}
        other_enabled = self._other_enabled()

        for sample in samples:
            match = self.find_category_and_app(sample)
            if match is not None:
                category_id, app_name = match
                grouped[category_id].append(
                    replace(sample, category_id=category_id, app_name=app_name)
                )
            elif other_enabled:
                grouped[OTHER_CATEGORY_ID].append(replace(sample, category_id=OTHER_CATEGORY_ID))

        usages = []
        for category in enabled:
            processes = grouped[category.id]
            if not processes and category.id != OTHER_CATEGORY_ID:
                continue
            usages.append(
                CategoryUsage(
                    id=category.id,
                    name=category.name,
                    color=category.color,
                    usage=ResourceUsage.of(processes),
                    processes=processes,
                )
            )
        return usages

    def group_by_app(self, samples: list[ProcessSample]) -> list[AppGroup]:
        """Group by friendly app name, falling back to the raw process name.

        Sorted by total CPU, highest first; groups with equal CPU keep the
        order in which they were first seen.
        """
        grouped: dict[str, list[ProcessSample]] = {}
        for sample in samples:
            enriched = self.enrich(sample)
            key = enriched.app_name or sample.name
            grouped.setdefault(key, []).append(enriched)

        groups = [AppGroup(name=name, processes=procs) for name, procs in grouped.items()]
        groups.sort(key=lambda g: g.total_cpu, reverse=True)
        return groups

    def top_processes(
        self, samples: list[ProcessSample], count: int = TOP_PROCESS_COUNT
    ) -> list[ProcessSample]:
        """Highest-CPU processes, ties in enumeration order, enriched."""
        ranked = sorted(samples, key=lambda s: s.cpu_percent, reverse=True)
        return self.enrich_all(ranked[:count])

    def create_snapshot(
        self,
        samples: list[ProcessSample],
        total_system_memory_mb: float,
        total_cpu: float,
        total_memory_mb: float,
        cpu_core_count: int,
        timestamp: datetime | None = None,
    ) -> ResourceSnapshot:
        """Build a snapshot from this poll's processes.

        total_cpu (normalized) and total_memory_mb (OS accounting) are taken
        as given; only the category breakdown and top processes are derived
        here.
        """
        breakdown = {u.id: u.usage for u in self.group_by_category(samples)}
        return ResourceSnapshot(
            total_cpu=total_cpu,
            total_memory_mb=total_memory_mb,
            total_system_memory_mb=total_system_memory_mb,
            cpu_core_count=cpu_core_count,
            category_breakdown=breakdown,
            top_processes=self.top_processes(samples),
            timestamp=timestamp or utc_now(),
        )
