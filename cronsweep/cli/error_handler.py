"""Global exception handling for the cronsweep CLI.

Commands are wrapped with ``handle_errors`` so that CLI errors and errors
raised by the cron core are reported the same way, with a message on stderr
and a specific exit code.
"""

from functools import wraps
from typing import Any, Callable, TypeVar
import logging

import typer
from rich.console import Console

from cronsweep.cli.exit_codes import ExitCode
from cronsweep.cron import exceptions as cron_errors

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class CronsweepError(Exception):
    """Base exception for CLI-level errors.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(CronsweepError):
    """Configuration file or option problem detected by the CLI."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class ValidationError(CronsweepError):
    """Invalid user input, such as a malformed --arg value."""

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(CronsweepError):
    """Requested job does not exist."""

    exit_code = ExitCode.NOT_FOUND


# Most specific first
_CRON_EXIT_CODES: list[tuple[type[cron_errors.CronError], int]] = [
    (cron_errors.ScheduleError, ExitCode.SCHEDULE_ERROR),
    (cron_errors.TargetFormatError, ExitCode.TARGET_ERROR),
    (cron_errors.ConfigurationError, ExitCode.CONFIGURATION_ERROR),
    (cron_errors.ResolutionError, ExitCode.TARGET_ERROR),
    (cron_errors.BindingError, ExitCode.TARGET_ERROR),
    (cron_errors.LockTimeoutError, ExitCode.LOCK_TIMEOUT),
    (cron_errors.PersistenceError, ExitCode.STORAGE_ERROR),
]


def exit_code_for(error: cron_errors.CronError) -> int:
    """Map a cron core error to a CLI exit code."""
    for error_type, code in _CRON_EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return ExitCode.GENERAL_ERROR


def cron_error_details(error: cron_errors.CronError) -> dict[str, Any]:
    details: dict[str, Any] = {}
    if error.job_id:
        details["job"] = error.job_id
    path = getattr(error, "path", None)
    if path:
        details["path"] = path
    parameter = getattr(error, "parameter", None)
    if parameter:
        details["parameter"] = parameter
    return details


def _report(message: str, details: dict[str, Any]) -> None:
    console.print(f"[red]Error:[/red] {message}")
    for key, value in details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    Handles:

    - CronsweepError subclasses: message and the subclass's exit code
    - CronError from the cron core: message and a mapped exit code
    - KeyboardInterrupt: cancellation message with exit code 130
    - Other exceptions: generic error with exit code 1

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise NotFoundError("Job not found: nightly")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CronsweepError as e:
            logger.error(
                f"CronsweepError: {e.message}",
                extra={"exit_code": e.exit_code, "details": e.details},
            )
            _report(e.message, e.details)
            raise typer.Exit(code=e.exit_code)

        except cron_errors.CronError as e:
            exit_code = exit_code_for(e)
            logger.error(f"{type(e).__name__}: {e}", extra={"exit_code": exit_code})
            _report(e.message, cron_error_details(e))
            raise typer.Exit(code=exit_code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except (typer.Exit, typer.Abort):
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --verbose for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
