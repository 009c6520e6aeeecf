"""Cronsweep config command - Configuration management."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from cronsweep.cli.error_handler import (
    ConfigurationError,
    CronsweepError,
    ValidationError,
    handle_errors,
)
from cronsweep.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage cronsweep configuration.")
console = Console()


@app.command("show")
@handle_errors
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (paths, cron, logging).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
) -> None:
    """Show current configuration.

    Example:
        cronsweep config show
        cronsweep config show cron
        cronsweep config show --format yaml
    """
    from cronsweep.config import config_to_dict, export_config_json, export_config_yaml, get_config

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config), "yaml", theme="monokai"))
        return
    elif format == "json":
        console.print(Syntax(export_config_json(config), "json", theme="monokai"))
        return
    elif format != "table":
        raise ValidationError(f"Unknown format: {format}. Choose from: table, yaml, json")

    data = config_to_dict(config)
    sections = {
        "paths": {
            "config_dir": data["config_dir"],
            "base_dir": data["base_dir"],
            "registry": str(config.registry_path),
            "timestamps": str(config.timestamps_path),
            "locks": str(config.lock_path),
        },
        "cron": data["cron"],
        "logging": data["logging"],
    }

    if section and section not in sections:
        raise ValidationError(f"Unknown section: {section}. Choose from: {', '.join(sections)}")

    console.print("[bold]Cronsweep Configuration[/bold]")
    console.print()

    for name in [section] if section else list(sections):
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        for key, value in sections[name].items():
            if isinstance(value, list):
                value = ", ".join(value) or "None"
            table.add_row(key, "" if value is None else str(value))

        console.print(table)
        console.print()


@app.command("set")
@handle_errors
def set_config(
    key: str = typer.Argument(
        ...,
        help="Configuration key (format: section.key, e.g., cron.stale_lock_seconds).",
    ),
    value: str = typer.Argument(
        ...,
        help="Value to set.",
    ),
) -> None:
    """Set a configuration value.

    Example:
        cronsweep config set cron.stale_lock_seconds 7200
        cronsweep config set cron.timezone Europe/Berlin
        cronsweep config set logging.level INFO
    """
    from cronsweep.config import clear_config_cache, default_config_path, set_config_value

    if "." not in key:
        raise ValidationError("Key must be in format: section.key")

    section, config_key = key.split(".", 1)

    try:
        set_config_value(section, config_key, value, default_config_path())
    except ValueError as e:
        raise ValidationError(str(e)) from e

    clear_config_cache()
    console.print(f"[green]✓[/green] Set {section}.{config_key} = {value}")


@app.command("init")
@handle_errors
def init_config(
    base_dir: Optional[Path] = typer.Option(
        None,
        "--base-dir",
        "-b",
        help="Directory holding the job registry, run-state and locks.",
    ),
    timezone: Optional[str] = typer.Option(
        None,
        "--timezone",
        "-t",
        help="IANA timezone for evaluating schedules (default: local time).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
) -> None:
    """Initialize cronsweep configuration and create the base directory.

    Example:
        cronsweep config init
        cronsweep config init --base-dir /var/lib/cronsweep --timezone UTC
    """
    from cronsweep.config import CronsweepConfig, default_config_path, save_config

    config_path = default_config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=1)

    config = CronsweepConfig(config_dir=config_path.parent)
    if base_dir is not None:
        config.base_dir = base_dir.expanduser().resolve()
    if timezone:
        config.cron.timezone = timezone
        config.get_tzinfo()

    try:
        config.base_dir.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        raise CronsweepError(
            f"Permission denied creating base directory {config.base_dir}",
            exit_code=ExitCode.PERMISSION_DENIED,
        ) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot create base directory {config.base_dir}: {e}") from e

    save_config(config, config_path)

    console.print(f"[green]✓[/green] Configuration initialized at {config_path}")
    console.print(f"  [dim]Base directory:[/dim] {config.base_dir}")
    console.print()
    console.print("Add this line to your crontab to run due jobs every minute:")
    console.print("  [cyan]* * * * * cronsweep dispatch[/cyan]")


@app.command("path")
def config_path() -> None:
    """Show configuration file and data paths.

    Example:
        cronsweep config path
    """
    from cronsweep.cli.output import format_path
    from cronsweep.config import default_config_path, get_config

    config_file_path = default_config_path()
    config = get_config()

    console.print(f"[bold]Config file:[/bold] {format_path(config_file_path)}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")
    console.print(f"[bold]Base directory:[/bold] {format_path(config.base_dir)}")
    console.print(f"[bold]Registry:[/bold] {format_path(config.registry_path)}")


@app.command("validate")
@handle_errors
def validate_config() -> None:
    """Validate current configuration.

    Example:
        cronsweep config validate
    """
    from cronsweep.config import get_config, validate_config as do_validate

    config = get_config()

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    errors = do_validate(config)

    all_passed = True
    for error in errors:
        if error.severity == "error":
            status = "[red]✗[/red]"
            all_passed = False
        else:
            status = "[yellow]![/yellow]"
        console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    if errors:
        console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=1)
