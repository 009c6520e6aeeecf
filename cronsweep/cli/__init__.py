"""CLI command modules for cronsweep.

This package contains the command implementations and supporting utilities
for error handling and output formatting.
"""

from cronsweep.cli import config, dispatch, jobs

from cronsweep.cli.exit_codes import ExitCode
from cronsweep.cli.error_handler import (
    CronsweepError,
    ConfigurationError,
    ValidationError,
    NotFoundError,
    exit_code_for,
    handle_errors,
)
from cronsweep.cli.output import (
    print_json,
    print_table,
    print_result,
    print_key_value,
    format_file_size,
    format_duration,
    format_timestamp,
    format_path,
)

__all__ = [
    # Command modules
    "config",
    "dispatch",
    "jobs",
    # Exit codes
    "ExitCode",
    # Error handling
    "CronsweepError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "exit_code_for",
    "handle_errors",
    # Output
    "print_json",
    "print_table",
    "print_result",
    "print_key_value",
    "format_file_size",
    "format_duration",
    "format_timestamp",
    "format_path",
]
