"""Main CLI entry point for cronsweep."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cronsweep import __app_name__, __version__
from cronsweep.cli import config, dispatch, jobs
from cronsweep.cli.exit_codes import ExitCode

# Create the main Typer app
app = typer.Typer(
    name=__app_name__,
    help="Cronsweep - recurring job scheduler driven by a once-a-minute sweep.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Console for CLI output
console = Console()

# Register command groups
app.add_typer(jobs.app, name="jobs")
app.add_typer(dispatch.app, name="dispatch")
app.add_typer(config.app, name="config")

# Global state for CLI options
_global_state: dict[str, bool] = {
    "verbose": False,
    "debug": False,
    "json": False,
    "quiet": False,
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    default_level: int = logging.WARNING,
) -> None:
    """Set up logging configuration based on CLI options.

    Args:
        verbose: Enable INFO level logging
        debug: Enable DEBUG level logging
        quiet: Suppress non-error output
        log_file: Optional log file path (rotated at max_size)
        max_size: Maximum log file size in bytes before rotating
        backup_count: Number of rotated log files to keep
        default_level: Level used when no verbosity option is given
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = default_level

    if debug:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size,
            backupCount=backup_count,
        )
        # The file always gets everything from INFO up, even in quiet mode
        file_handler.setLevel(min(level, logging.INFO))
        handlers.append(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        handlers.append(logging.NullHandler())

    root_level = min(level, logging.INFO) if log_file else level

    logging.basicConfig(
        level=root_level,
        format=format_str,
        handlers=handlers,
        force=True,
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging configured: level={logging.getLevelName(level)}, debug={debug}")


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in JSON format where applicable.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to a rotating file (overrides logging.file from the config).",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Cronsweep - recurring job scheduler driven by a once-a-minute sweep.

    Jobs are registered with a cron expression and a Python entry point.
    The system crontab runs [cyan]cronsweep dispatch[/cyan] every minute, which
    executes every job that is due.

    [bold]Commands:[/bold]

    • [cyan]jobs[/cyan] - Schedule, list and remove jobs
    • [cyan]dispatch[/cyan] - Run all jobs due now
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        cronsweep config init --base-dir /var/lib/cronsweep
        cronsweep jobs schedule nightly "0 3 * * *" reports::build --arg days=1
        cronsweep jobs list
        cronsweep dispatch
    """
    from cronsweep.config import ConfigurationError, load_config, log_level, set_config

    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["json"] = json_output
    _global_state["quiet"] = quiet

    if quiet and verbose:
        console.print("[red]Error:[/red] --quiet and --verbose are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    if quiet and debug:
        console.print("[red]Error:[/red] --quiet and --debug are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    try:
        loaded = load_config(config_file)
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
    set_config(loaded)

    _setup_logging(
        verbose=verbose,
        debug=debug,
        quiet=quiet,
        log_file=log_file or loaded.logging.file,
        max_size=loaded.logging.max_size,
        backup_count=loaded.logging.backup_count,
        default_level=log_level(loaded),
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Cronsweep v{__version__} starting")
    logger.debug(f"Options: verbose={verbose}, debug={debug}, json={json_output}, quiet={quiet}")


def is_json() -> bool:
    return _global_state.get("json", False)


def is_quiet() -> bool:
    return _global_state.get("quiet", False)


__all__ = [
    "app",
    "console",
    "is_json",
    "is_quiet",
]


if __name__ == "__main__":
    app()
