"""Cronsweep dispatch command - Run every job due this minute.

Meant to be triggered once a minute by the system scheduler:

    * * * * * cronsweep dispatch
"""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console

from cronsweep.cli.error_handler import handle_errors
from cronsweep.cli.exit_codes import ExitCode
from cronsweep.cli.output import format_duration, format_file_size, print_json, print_table
from cronsweep.cron.job import DispatchReport, JobOutcome

app = typer.Typer(help="Run all jobs that are due now.")
console = Console()

logger = logging.getLogger(__name__)

_OUTCOME_LABELS = {
    JobOutcome.COMPLETED: "[green]completed[/green]",
    JobOutcome.FAILED: "[red]failed[/red]",
    JobOutcome.SKIPPED_LOCKED: "[yellow]skipped (locked)[/yellow]",
}


@app.callback(invoke_without_command=True)
@handle_errors
def dispatch(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output the sweep report as JSON.",
    ),
    now: Optional[int] = typer.Option(
        None,
        "--now",
        help="Evaluate schedules at this Unix timestamp instead of the current time.",
    ),
) -> None:
    """Run one sweep over the registry, executing every due job.

    Exits with code 1 if any job failed.

    Example:
        cronsweep dispatch
        cronsweep dispatch --json
    """
    from cronsweep.cli.jobs import get_scheduler
    from cronsweep.main import is_json, is_quiet

    scheduler = get_scheduler()
    report = asyncio.run(scheduler.dispatch(now))

    if json_output or is_json():
        print_json(report.to_dict())
    elif not is_quiet():
        _print_report(report)

    if report.failed:
        logger.error(f"{len(report.failed)} job(s) failed during dispatch")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)


def _print_report(report: DispatchReport) -> None:
    ran = [r for r in report.results if r.outcome != JobOutcome.NOT_DUE]

    if not ran:
        console.print(f"[dim]No jobs due ({len(report.results)} registered).[/dim]")
        return

    rows = []
    for result in ran:
        rows.append({
            "job": result.job_id,
            "outcome": _OUTCOME_LABELS[result.outcome],
            "elapsed": format_duration(result.elapsed) if result.started_at else "",
            "peak_memory": format_file_size(result.memory_peak) if result.started_at else "",
            "details": result.error or ("removed (one-time)" if result.removed else ""),
        })

    print_table(
        rows,
        ["job", "outcome", "elapsed", "peak_memory", "details"],
        title="Dispatch Report",
        column_styles={"job": "cyan"},
    )
    console.print(
        f"{len(report.completed)} completed, {len(report.failed)} failed, "
        f"{len(report.skipped)} skipped"
    )
