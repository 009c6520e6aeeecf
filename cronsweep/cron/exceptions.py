"""Exceptions for cron scheduling and dispatch."""


class CronError(Exception):
    """Base exception for cron errors."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id:
            return f"{self.message} (job: {self.job_id})"
        return self.message


class ConfigurationError(CronError):
    """Raised for unusable configuration, such as a missing base directory.

    Configuration errors are fatal for the call that triggers them.
    """
    pass


class ScheduleError(ConfigurationError):
    """Raised when a cron expression is malformed."""
    pass


class TargetFormatError(ConfigurationError):
    """Raised when a job target is not in 'module::entrypoint' form."""
    pass


class ResolutionError(CronError):
    """Raised when a job target cannot be resolved to a callable."""
    pass


class BindingError(CronError):
    """Raised when named arguments cannot satisfy the entry point signature."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        parameter: str | None = None,
    ) -> None:
        super().__init__(message, job_id)
        self.parameter = parameter


class PersistenceError(CronError):
    """Raised when registry, run-state or lock files cannot be read or written."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, job_id)
        self.path = path

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.path:
            parts.append(f"(path: {self.path})")
        return " ".join(parts)


class LockTimeoutError(PersistenceError):
    """Raised when the state lock cannot be acquired in time."""
    pass
