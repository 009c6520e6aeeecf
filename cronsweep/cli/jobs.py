"""Cronsweep jobs command - Manage scheduled jobs."""

import json
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console

from cronsweep.cli.error_handler import NotFoundError, ValidationError, handle_errors
from cronsweep.cli.output import (
    format_timestamp,
    print_json,
    print_key_value,
    print_result,
    print_table,
)
from cronsweep.cron.exceptions import ScheduleError
from cronsweep.cron.scheduler import CronScheduler
from cronsweep.events import EventBus, EventLogger

app = typer.Typer(help="Manage scheduled jobs.")
console = Console()


def get_scheduler() -> CronScheduler:
    """Create a scheduler for the CLI's configuration with events mirrored to the log."""
    from cronsweep.config import get_config

    event_bus = EventBus()
    event_bus.subscribe_all(EventLogger())
    return CronScheduler(get_config(), event_bus=event_bus)


def _json_requested(local_flag: bool) -> bool:
    from cronsweep.main import is_json

    return local_flag or is_json()


def parse_args(values: List[str]) -> Dict[str, Any]:
    """Parse repeated ``key=value`` options into named arguments.

    Values are decoded as JSON when possible, so ``days=30`` gives an int and
    ``tags=["a","b"]`` a list; anything else is kept as a string.

    Raises:
        ValidationError: If an item has no '=' or an empty key
    """
    args: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValidationError(f"Invalid argument '{item}', expected key=value")
        try:
            args[key] = json.loads(raw)
        except json.JSONDecodeError:
            args[key] = raw
    return args


@app.command("list")
@handle_errors
def list_jobs(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON.",
    ),
) -> None:
    """List all scheduled jobs.

    Example:
        cronsweep jobs list
        cronsweep jobs list --json
    """
    scheduler = get_scheduler()
    jobs = scheduler.list_jobs()
    last_runs = scheduler.last_runs()

    rows = []
    for job_id, job in sorted(jobs.items()):
        try:
            next_run = scheduler.next_run(job_id)
        except ScheduleError:
            next_run = None
        rows.append({
            "id": job_id,
            "schedule": job.schedule,
            "target": job.target,
            "once": job.once,
            "last_run": last_runs.get(job_id),
            "next_run": next_run.strftime("%Y-%m-%d %H:%M") if next_run else None,
        })

    if _json_requested(json_output):
        print_json(rows)
        return

    if not rows:
        console.print("[dim]No jobs scheduled.[/dim]")
        return

    for row in rows:
        row["last_run"] = format_timestamp(row["last_run"])
        row["next_run"] = row["next_run"] or "N/A"

    print_table(
        rows,
        ["id", "schedule", "target", "once", "last_run", "next_run"],
        title="Scheduled Jobs",
        column_styles={"id": "cyan", "schedule": "green", "target": "magenta"},
    )


@app.command("show")
@handle_errors
def show_job(
    job_id: str = typer.Argument(
        ...,
        help="ID of the job to show.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON.",
    ),
) -> None:
    """Show a job's definition and run state.

    Example:
        cronsweep jobs show nightly-report
    """
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)

    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")

    last_run = scheduler.last_runs().get(job_id)
    next_run = scheduler.next_run(job_id)

    if _json_requested(json_output):
        print_json({
            "id": job.id,
            **job.to_dict(),
            "last_run": last_run,
            "next_run": next_run.isoformat() if next_run else None,
        })
        return

    print_key_value(
        {
            "ID": job.id,
            "Schedule": job.schedule,
            "Target": job.target,
            "Arguments": json.dumps(job.args) if job.args else None,
            "One-time": job.once,
            "Last run": format_timestamp(last_run),
            "Next run": next_run,
        },
        title=f"Job {job.id}",
    )


@app.command("schedule")
@handle_errors
def schedule_job(
    job_id: str = typer.Argument(
        ...,
        help="Unique job ID. An existing job with this ID is replaced.",
    ),
    expression: str = typer.Argument(
        ...,
        help="Cron expression (e.g., '*/5 * * * *' for every five minutes).",
    ),
    target: str = typer.Argument(
        ...,
        help="Entry point in 'module::function' or 'module::Class.method' form.",
    ),
    arg: Optional[List[str]] = typer.Option(
        None,
        "--arg",
        "-a",
        help="Named argument as key=value (repeatable; values parsed as JSON when possible).",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Remove the job after its first successful run.",
    ),
) -> None:
    """Schedule a job.

    Example:
        cronsweep jobs schedule nightly-report "0 3 * * *" reports::build --arg days=1
        cronsweep jobs schedule warmup "*/5 * * * *" cache::Warmer.run --once
    """
    scheduler = get_scheduler()
    job = scheduler.schedule(expression, job_id, target, parse_args(arg or []), once=once)
    next_run = scheduler.next_run(job.id)

    print_result(
        True,
        f"Job scheduled: {job.id}",
        {
            "Schedule": job.schedule,
            "Target": job.target,
            "Arguments": json.dumps(job.args) if job.args else None,
            "One-time": "yes" if job.once else None,
            "Next run": next_run.strftime("%Y-%m-%d %H:%M") if next_run else "never",
        },
    )


@app.command("unschedule")
@handle_errors
def unschedule_job(
    job_id: str = typer.Argument(
        ...,
        help="ID of the job to remove.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Remove a scheduled job.

    Example:
        cronsweep jobs unschedule nightly-report
        cronsweep jobs unschedule nightly-report --force
    """
    scheduler = get_scheduler()

    if scheduler.get_job(job_id) is None:
        raise NotFoundError(f"Job not found: {job_id}")

    if not force:
        confirm = typer.confirm(f"Remove job '{job_id}'?")
        if not confirm:
            raise typer.Abort()

    if not scheduler.unschedule(job_id):
        raise NotFoundError(f"Job not found: {job_id}")

    print_result(True, f"Job removed: {job_id}")


@app.command("locks")
@handle_errors
def list_locks() -> None:
    """Show job lock files currently present and their age.

    A lock older than the stale threshold is reclaimed by the next dispatch.

    Example:
        cronsweep jobs locks
    """
    from cronsweep.cli.output import format_duration

    scheduler = get_scheduler()
    held = scheduler.locks.held_locks()

    if _json_requested(False):
        print_json(held)
        return

    if not held:
        console.print("[dim]No job locks held.[/dim]")
        return

    stale_after = scheduler.locks.stale_after
    print_table(
        [
            {
                "lock": name,
                "age": format_duration(age),
                "stale": age >= stale_after,
            }
            for name, age in held.items()
        ],
        ["lock", "age", "stale"],
        title="Job Locks",
        column_styles={"lock": "cyan"},
    )


@app.command("next")
@handle_errors
def next_runs(
    expression: str = typer.Argument(
        ...,
        help="Cron expression to preview.",
    ),
    count: int = typer.Option(
        5,
        "--count",
        "-n",
        help="Number of fire times to show.",
        min=1,
        max=100,
    ),
) -> None:
    """Preview when a cron expression fires.

    Example:
        cronsweep jobs next "*/15 * * * *"
        cronsweep jobs next "0 9 * * 1" --count 3
    """
    from cronsweep.config import get_config
    from cronsweep.cron.expression import next_run, parse_schedule

    parse_schedule(expression)
    tz = get_config().get_tzinfo()

    moment = None
    times = []
    for _ in range(count):
        moment = next_run(expression, moment, tz)
        if moment is None:
            break
        times.append(moment)

    if _json_requested(False):
        print_json([t.isoformat() for t in times])
        return

    if not times:
        console.print(f"[yellow]'{expression}' does not fire within the next year[/yellow]")
        return

    console.print(f"[bold]Next fire times for[/bold] [green]{expression}[/green]")
    for t in times:
        console.print(f"  {t.strftime('%Y-%m-%d %H:%M %a')}")
