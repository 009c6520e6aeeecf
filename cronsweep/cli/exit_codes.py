"""Exit codes for the cronsweep CLI.

A system crontab entry running ``cronsweep dispatch`` only sees the exit
status, so every failure class maps to its own code.
"""


class ExitCode:
    """Exit codes for the cronsweep CLI.

    - 0: Success
    - 1: General error, or at least one job failed during dispatch
    - 2: Configuration error (missing base directory, bad config file)
    - 3: Invalid cron expression
    - 4: Target cannot be resolved or called
    - 5: Timed out waiting for the registry lock
    - 6: Registry, run-state or lock file error
    - 7: Invalid argument
    - 8: Not found
    - 9: Permission denied
    - 130: Cancelled (Ctrl+C)
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    SCHEDULE_ERROR = 3
    TARGET_ERROR = 4
    LOCK_TIMEOUT = 5
    STORAGE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8
    PERMISSION_DENIED = 9

    # 128 + SIGINT
    CANCELLED = 130

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code."""
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.SCHEDULE_ERROR: "SCHEDULE_ERROR",
            cls.TARGET_ERROR: "TARGET_ERROR",
            cls.LOCK_TIMEOUT: "LOCK_TIMEOUT",
            cls.STORAGE_ERROR: "STORAGE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.PERMISSION_DENIED: "PERMISSION_DENIED",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code."""
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred or a job failed",
            cls.CONFIGURATION_ERROR: "Configuration error or missing base directory",
            cls.SCHEDULE_ERROR: "Invalid cron expression",
            cls.TARGET_ERROR: "Job target could not be resolved or called",
            cls.LOCK_TIMEOUT: "Timed out waiting for the registry lock",
            cls.STORAGE_ERROR: "Registry, run-state or lock file error",
            cls.INVALID_ARGUMENT: "Invalid command-line argument",
            cls.NOT_FOUND: "Requested job not found",
            cls.PERMISSION_DENIED: "Permission denied",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")
