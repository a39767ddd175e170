"""CLI commands for dev-resource-monitor."""

import click


@click.group()
@click.version_option()
def main() -> None:
    """Watch CPU and memory use of developer tools, grouped by category."""
    pass


@main.command()
def daemon() -> None:
    """Run the background monitor."""
    import asyncio

    from dev_resource_monitor.daemon import run_daemon

    asyncio.run(run_daemon())


def _daemon_running(pid_path) -> bool:
    """True if the PID file points at a live process."""
    import psutil

    if not pid_path.exists():
        return False
    try:
        return psutil.pid_exists(int(pid_path.read_text().strip()))
    except ValueError:
        return False


def _load_catalog(config):
    """Stored category catalog, or the built-in one."""
    from dev_resource_monitor.categories import DEFAULT_CATEGORIES
    from dev_resource_monitor.storage import Storage

    if not config.db_path.exists():
        return list(DEFAULT_CATEGORIES)
    storage = Storage(config.db_path, cleanup_on_open=False)
    try:
        return storage.load_categories() or list(DEFAULT_CATEGORIES)
    finally:
        storage.close()


@main.command()
@click.option("--interval", "-i", default=1.0, help="Seconds between the two CPU readings")
def status(interval: float) -> None:
    """Take one sample and show usage by category."""
    import time

    from dev_resource_monitor.aggregator import ResourceAggregator
    from dev_resource_monitor.config import Config
    from dev_resource_monitor.cpu import CpuDeltaEngine, normalized_cpu_percent
    from dev_resource_monitor.formatting import format_cpu, format_memory, format_percent
    from dev_resource_monitor.sampler import Sampler

    config = Config.load()
    click.echo(f"Daemon: {'running' if _daemon_running(config.pid_path) else 'stopped'}")

    sampler = Sampler()
    engine = CpuDeltaEngine()
    # Per-process and per-core CPU both need a first reading to diff against
    engine.update(sampler.read_cpu_ticks())
    sampler.read_processes()
    time.sleep(interval)
    raw = sampler.sample()

    usages = engine.update(raw.cpu_ticks)
    aggregator = ResourceAggregator(_load_catalog(config))
    snapshot = aggregator.create_snapshot(
        raw.processes,
        total_system_memory_mb=sampler.total_system_memory_mb,
        total_cpu=normalized_cpu_percent(usages),
        total_memory_mb=raw.used_memory_mb,
        cpu_core_count=len(usages) or sampler.cpu_core_count,
        timestamp=raw.timestamp,
    )

    click.echo(
        f"CPU: {format_percent(snapshot.cpu_percent)} across {snapshot.cpu_core_count} cores"
    )
    click.echo(
        f"Memory: {format_memory(snapshot.total_memory_mb)} of "
        f"{format_memory(snapshot.total_system_memory_mb)} "
        f"({format_percent(snapshot.memory_percent)})"
    )
    click.echo(f"Processes: {len(raw.processes)}")

    click.echo(f"\n{'Category':24}  {'CPU':>8}  {'Memory':>10}  {'Procs':>6}")
    click.echo("-" * 54)
    for usage in aggregator.group_by_category(raw.processes):
        click.echo(
            f"{usage.name[:24]:24}  {format_cpu(usage.cpu_percent):>8}  "
            f"{format_memory(usage.memory_mb):>10}  {usage.process_count:>6}"
        )

    click.echo(f"\n{'Top process':30}  {'PID':>7}  {'CPU':>8}  {'Memory':>10}")
    click.echo("-" * 61)
    for proc in snapshot.top_processes:
        click.echo(
            f"{proc.display_name[:30]:30}  {proc.pid:>7}  {format_cpu(proc.cpu_percent):>8}  "
            f"{format_memory(proc.memory_mb):>10}"
        )


@main.group(invoke_without_command=True)
@click.option("--days", "-d", default=7, help="Days of events to show")
@click.pass_context
def events(ctx, days: int) -> None:
    """List threshold events, most recent first.

    Use 'events show <id>' to view the processes captured with an event.
    """
    from dev_resource_monitor.config import Config
    from dev_resource_monitor.formatting import format_relative_time, format_timestamp
    from dev_resource_monitor.storage import DatabaseNotAvailable, require_database

    ctx.ensure_object(dict)
    ctx.obj["config"] = Config.load()

    if ctx.invoked_subcommand is not None:
        return

    config = ctx.obj["config"]

    try:
        with require_database(config.db_path) as storage:
            events_list = storage.load_events(last_days=days)

            if not events_list:
                click.echo("No events recorded.")
                return

            click.echo(
                f"{'ID':8}  {'Time':19}  {'Trigger':7}  {'Value':>7}  {'Threshold':>9}  Top"
            )
            click.echo("-" * 80)
            for event in events_list:
                top = ", ".join(p.display_name for p in event.top_processes_by_trigger(3))
                click.echo(
                    f"{event.id[:8]:8}  {format_timestamp(event.timestamp):19}  "
                    f"{event.trigger_type.value:7}  {event.trigger_value:>6.1f}%  "
                    f"{event.threshold:>8.1f}%  {top}"
                )
            click.echo(f"\nLast event: {format_relative_time(events_list[0].timestamp)}")
    except DatabaseNotAvailable:
        return


@events.command("show")
@click.argument("event_id")
@click.option("--limit", "-n", default=10, help="Number of processes to show (0 for all)")
@click.pass_context
def events_show(ctx, event_id: str, limit: int) -> None:
    """Show one event and the processes captured with it."""
    from dev_resource_monitor.formatting import format_cpu, format_memory, format_timestamp
    from dev_resource_monitor.storage import DatabaseNotAvailable, require_database

    config = ctx.obj["config"]

    try:
        with require_database(config.db_path) as storage:
            event = storage.load_event(event_id)
            if event is None:
                click.echo(f"Event {event_id} not found.")
                return

            click.echo(f"Event {event.id}")
            click.echo(f"Time: {format_timestamp(event.timestamp)}")
            click.echo(event.description)
            click.echo(f"Processes captured: {len(event.all_processes)}")

            procs = event.top_processes_by_trigger(limit or None)
            click.echo(f"\n{'Process':30}  {'PID':>7}  {'CPU':>8}  {'Memory':>10}")
            click.echo("-" * 61)
            for proc in procs:
                click.echo(
                    f"{proc.display_name[:30]:30}  {proc.pid:>7}  "
                    f"{format_cpu(proc.cpu_percent):>8}  {format_memory(proc.memory_mb):>10}"
                )
    except DatabaseNotAvailable:
        return


@main.command()
@click.option("--hours", "-H", default=24, help="Hours of history to show")
@click.option("--format", "-f", "fmt", type=click.Choice(["table", "json", "csv"]), default="table")
def history(hours: int, fmt: str) -> None:
    """Query saved snapshots."""
    import json

    from dev_resource_monitor.config import Config
    from dev_resource_monitor.formatting import (
        format_duration,
        format_memory,
        format_timestamp,
    )
    from dev_resource_monitor.storage import (
        DatabaseNotAvailable,
        require_database,
        snapshot_to_dict,
    )

    config = Config.load()

    try:
        with require_database(config.db_path) as storage:
            snapshots = storage.load_snapshots_last_hours(hours)

            if not snapshots:
                click.echo(f"No snapshots in the last {hours} hour{'s' if hours != 1 else ''}.")
                return

            if fmt == "json":
                click.echo(json.dumps([snapshot_to_dict(s) for s in snapshots], indent=2))
            elif fmt == "csv":
                click.echo("id,timestamp,cpu_percent,memory_mb,memory_percent,cpu_core_count")
                for s in snapshots:
                    click.echo(
                        f"{s.id},{s.timestamp.isoformat()},{s.cpu_percent:.2f},"
                        f"{s.total_memory_mb:.1f},{s.memory_percent:.2f},{s.cpu_core_count}"
                    )
            else:
                click.echo(f"Snapshots: {len(snapshots)}")
                span = (snapshots[-1].timestamp - snapshots[0].timestamp).total_seconds()
                click.echo(
                    f"Time range: {format_timestamp(snapshots[0].timestamp)} "
                    f"to {format_timestamp(snapshots[-1].timestamp)} ({format_duration(span)})"
                )

                cpu = [s.cpu_percent for s in snapshots]
                mem = [s.memory_percent for s in snapshots]
                click.echo(
                    f"CPU - Min: {min(cpu):.1f}%, Max: {max(cpu):.1f}%, "
                    f"Avg: {sum(cpu) / len(cpu):.1f}%"
                )
                click.echo(
                    f"Memory - Min: {min(mem):.1f}%, Max: {max(mem):.1f}%, "
                    f"Avg: {sum(mem) / len(mem):.1f}%"
                )

                # Average usage per category over the window
                totals: dict[str, list[float]] = {}
                for s in snapshots:
                    for category_id, usage in s.category_breakdown.items():
                        bucket = totals.setdefault(category_id, [0.0, 0.0])
                        bucket[0] += usage.cpu_percent
                        bucket[1] += usage.memory_mb
                if totals:
                    click.echo("\nAverage by category:")
                    ranked = sorted(totals.items(), key=lambda kv: kv[1][0], reverse=True)
                    for category_id, (cpu_sum, mem_sum) in ranked:
                        click.echo(
                            f"  {category_id}: cpu {cpu_sum / len(snapshots):.1f}%, "
                            f"mem {format_memory(mem_sum / len(snapshots))}"
                        )
    except DatabaseNotAvailable:
        return


@main.command()
@click.option("--days", default=None, type=int, help="Override retention days")
@click.option("--dry-run", is_flag=True, help="Show what would be deleted")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
def prune(days: int | None, dry_run: bool, force: bool) -> None:
    """Delete snapshots and events older than the retention period."""
    from dev_resource_monitor.config import Config
    from dev_resource_monitor.storage import Storage

    config = Config.load()

    if not config.db_path.exists():
        click.echo("Database not found. Run 'dev-resource-monitor daemon' first.")
        return

    storage = Storage(config.db_path, cleanup_on_open=False)
    try:
        days = days or storage.load_settings().history_retention_days

        if dry_run:
            click.echo(f"Would prune snapshots and events older than {days} days")
            return

        if not force:
            click.confirm(f"Delete snapshots and events older than {days} days?", abort=True)

        snapshots_deleted, events_deleted = storage.cleanup(keep_days=days)
    finally:
        storage.close()

    click.echo(f"Deleted {snapshots_deleted} snapshots, {events_deleted} events")


@main.group()
def config() -> None:
    """Manage daemon configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from dev_resource_monitor.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo(f"Database: {cfg.db_path}")
    click.echo(f"Log file: {cfg.log_path}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  sample_timeout = {cfg.system.sample_timeout}")
    click.echo(f"  snapshot_interval = {cfg.system.snapshot_interval}")
    click.echo(f"  auto_prune_interval_hours = {cfg.system.auto_prune_interval_hours}")
    click.echo(f"  heartbeat_samples = {cfg.system.heartbeat_samples}")
    click.echo(f"  log_max_bytes = {cfg.system.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.system.log_backup_count}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from dev_resource_monitor.config import Config

    cfg = Config.load()

    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from dev_resource_monitor.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


@main.group()
def settings() -> None:
    """View and change monitoring settings."""
    pass


@settings.command("show")
def settings_show() -> None:
    """Display the saved settings."""
    from dev_resource_monitor.config import AppSettings, Config
    from dev_resource_monitor.storage import Storage

    cfg = Config.load()
    if cfg.db_path.exists():
        storage = Storage(cfg.db_path, cleanup_on_open=False)
        try:
            current = storage.load_settings()
        finally:
            storage.close()
    else:
        current = AppSettings()

    for key, value in current.to_dict().items():
        click.echo(f"{key} = {value}")


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_setting(field_type: type, raw: str):
    """Convert a command-line string to a settings field value."""
    if field_type is bool:
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise click.BadParameter(f"expected a boolean, got {raw!r}")
    try:
        return field_type(raw)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


@settings.command("set")
@click.argument("key")
@click.argument("value")
def settings_set(key: str, value: str) -> None:
    """Change one setting (e.g. 'settings set cpu_threshold 75')."""
    from dataclasses import fields, replace

    from dev_resource_monitor.config import AppSettings, Config, SettingsError
    from dev_resource_monitor.storage import Storage

    types = {f.name: f.type for f in fields(AppSettings)}
    if key not in types:
        raise click.BadParameter(f"unknown setting {key!r}", param_hint="KEY")

    cfg = Config.load()
    storage = Storage(cfg.db_path, cleanup_on_open=False)
    try:
        updated = replace(storage.load_settings(), **{key: _parse_setting(types[key], value)})
        try:
            updated.validate()
        except SettingsError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)
        storage.save_settings(updated)
    finally:
        storage.close()

    click.echo(f"{key} = {getattr(updated, key)}")
    if _daemon_running(cfg.pid_path):
        click.echo("Restart the daemon to apply.")


@main.group()
def categories() -> None:
    """Manage application categories."""
    pass


def _save_catalog(cfg, catalog) -> None:
    from dev_resource_monitor.storage import Storage

    storage = Storage(cfg.db_path, cleanup_on_open=False)
    try:
        storage.save_categories(catalog)
    finally:
        storage.close()


@categories.command("list")
@click.option("--verbose", "-v", is_flag=True, help="Show app patterns")
def categories_list(verbose: bool) -> None:
    """List categories in match order."""
    from dev_resource_monitor.config import Config

    for category in _load_catalog(Config.load()):
        flags = []
        if category.is_built_in:
            flags.append("built-in")
        if not category.is_enabled:
            flags.append("disabled")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{category.id:16} {category.name} ({len(category.apps)} apps){suffix}")
        if verbose:
            for app in category.apps:
                kind = "regex" if app.use_regex else "contains"
                click.echo(f"    {app.name}: {', '.join(app.process_names)} ({kind})")


@categories.command("add")
@click.argument("category_id")
@click.argument("name")
@click.option("--color", default="#8E8E93", help="Hex color")
@click.option("--app", "app_name", required=True, help="Friendly app name")
@click.option("--pattern", "-p", "patterns", multiple=True, required=True, help="Match pattern")
@click.option("--regex", is_flag=True, help="Treat patterns as regular expressions")
def categories_add(
    category_id: str, name: str, color: str, app_name: str, patterns: tuple, regex: bool
) -> None:
    """Add a category with one app definition."""
    from dev_resource_monitor.categories import AppCategory, AppDefinition, add_category
    from dev_resource_monitor.config import Config

    cfg = Config.load()
    category = AppCategory(
        id=category_id,
        name=name,
        color=color,
        apps=(AppDefinition(name=app_name, process_names=patterns, use_regex=regex),),
    )
    try:
        catalog = add_category(_load_catalog(cfg), category)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    _save_catalog(cfg, catalog)
    click.echo(f"Added category {category_id}")


@categories.command("remove")
@click.argument("category_id")
def categories_remove(category_id: str) -> None:
    """Delete a user-defined category."""
    from dev_resource_monitor.categories import ProtectedCategoryError, remove_category
    from dev_resource_monitor.config import Config

    cfg = Config.load()
    try:
        catalog = remove_category(_load_catalog(cfg), category_id)
    except ProtectedCategoryError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except KeyError:
        click.echo(f"Error: no category {category_id!r}", err=True)
        raise SystemExit(1)
    _save_catalog(cfg, catalog)
    click.echo(f"Removed category {category_id}")


@categories.command("enable")
@click.argument("category_id")
def categories_enable(category_id: str) -> None:
    """Include a category in aggregation."""
    _set_enabled(category_id, True)


@categories.command("disable")
@click.argument("category_id")
def categories_disable(category_id: str) -> None:
    """Exclude a category from aggregation."""
    _set_enabled(category_id, False)


def _set_enabled(category_id: str, enabled: bool) -> None:
    from dev_resource_monitor.categories import set_category_enabled
    from dev_resource_monitor.config import Config

    cfg = Config.load()
    try:
        catalog = set_category_enabled(_load_catalog(cfg), category_id, enabled)
    except KeyError:
        click.echo(f"Error: no category {category_id!r}", err=True)
        raise SystemExit(1)
    _save_catalog(cfg, catalog)
    click.echo(f"{'Enabled' if enabled else 'Disabled'} category {category_id}")


@main.command()
@click.argument("pid", type=int)
@click.option("--force", "-f", is_flag=True, help="Send SIGKILL instead of SIGTERM")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def kill(pid: int, force: bool, yes: bool) -> None:
    """Terminate a process (system processes are refused)."""
    from dev_resource_monitor.sampler import (
        TerminateResult,
        describe_process,
        is_system_process,
        terminate_process,
    )

    proc = describe_process(pid)
    if proc is None:
        click.echo(f"No process with PID {pid}.", err=True)
        raise SystemExit(1)

    label = f"{proc.name or '?'} (PID {pid})"
    if is_system_process(proc):
        click.echo(f"Refusing to terminate system process {label}.", err=True)
        raise SystemExit(1)

    if not yes:
        click.confirm(f"{'Kill' if force else 'Terminate'} {label}?", abort=True)

    result = terminate_process(pid, force=force)
    messages = {
        TerminateResult.SUCCESS: f"Sent {'SIGKILL' if force else 'SIGTERM'} to {label}",
        TerminateResult.PROTECTED: f"Refusing to terminate system process {label}.",
        TerminateResult.NOT_FOUND: f"Process {pid} exited before it could be signalled.",
        TerminateResult.PERMISSION_DENIED: f"Permission denied for {label}.",
        TerminateResult.FAILED: f"Failed to terminate {label}.",
    }
    if result is TerminateResult.SUCCESS:
        click.echo(messages[result])
    else:
        click.echo(messages[result], err=True)
        raise SystemExit(1)
