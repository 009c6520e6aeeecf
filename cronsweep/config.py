"""
Cronsweep Configuration Management.

Handles loading, saving, and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

import yaml

from cronsweep.cron.exceptions import ConfigurationError

# Configuration directory and file constants
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "cronsweep"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_BASE_DIR = Path.home() / ".local" / "share" / "cronsweep"

ENV_PREFIX = "CRONSWEEP_"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class CronSettings:
    """Configuration for job storage, locking and dispatch."""

    # File names under the base directory
    registry_file: str = "cron-jobs.json"
    timestamps_file: str = "cron-timestamps.json"
    lock_dir: str = "cron-locks"
    state_lock_file: str = "cron-state.lock"

    # Job locks older than this are considered abandoned
    stale_lock_seconds: int = 3600

    # Registry/run-state lock
    state_lock_timeout: float = 10.0
    state_lock_stale_seconds: int = 300

    # IANA timezone for evaluating schedules; None means local time
    timezone: Optional[str] = None

    # Measure peak memory of each job with tracemalloc
    track_memory: bool = True

    # Extra directories searched for target modules after the base directory
    target_paths: list[Path] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class CronsweepConfig:
    """Main configuration container for Cronsweep."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    base_dir: Path = DEFAULT_BASE_DIR

    # Sub-configurations
    cron: CronSettings = field(default_factory=CronSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def registry_path(self) -> Path:
        return self.base_dir / self.cron.registry_file

    @property
    def timestamps_path(self) -> Path:
        return self.base_dir / self.cron.timestamps_file

    @property
    def lock_path(self) -> Path:
        return self.base_dir / self.cron.lock_dir

    @property
    def state_lock_path(self) -> Path:
        return self.base_dir / self.cron.state_lock_file

    @property
    def target_search_paths(self) -> List[Path]:
        return [self.base_dir, *self.cron.target_paths]

    def get_tzinfo(self) -> Optional[tzinfo]:
        """Timezone for schedule evaluation (None for local time).

        Raises:
            ConfigurationError: If the timezone name is unknown
        """
        if not self.cron.timezone:
            return None
        try:
            return ZoneInfo(self.cron.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {self.cron.timezone}") from e


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = ENV_PREFIX,
) -> CronsweepConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/cronsweep/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = CronsweepConfig()

    if config_path is None:
        config_path = default_config_path(env_prefix)

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def default_config_path(env_prefix: str = ENV_PREFIX) -> Path:
    """Config file location, honouring the <prefix>CONFIG_DIR override."""
    env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir) / DEFAULT_CONFIG_FILE
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def _load_from_file(path: Path, config: CronsweepConfig) -> CronsweepConfig:
    """Load configuration from a TOML file.

    Raises:
        ConfigurationError: If the file is not valid TOML
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

    if "cron" in data:
        for key, value in data["cron"].items():
            if key == "target_paths":
                config.cron.target_paths = [Path(p) for p in value]
            elif key == "timezone":
                config.cron.timezone = value or None
            elif hasattr(config.cron, key):
                setattr(config.cron, key, value)

    if "logging" in data:
        for key, value in data["logging"].items():
            if key == "file":
                config.logging.file = Path(value) if value else None
            elif hasattr(config.logging, key):
                setattr(config.logging, key, value)

    # Top-level settings
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "base_dir" in data:
        config.base_dir = Path(data["base_dir"])

    return config


def _load_from_env(config: CronsweepConfig, prefix: str) -> CronsweepConfig:
    """Load configuration from environment variables."""

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}BASE_DIR"):
        config.base_dir = Path(env_val)

    # Cron settings
    if env_val := os.environ.get(f"{prefix}STALE_LOCK_SECONDS"):
        try:
            config.cron.stale_lock_seconds = int(env_val)
        except ValueError as e:
            raise ConfigurationError(f"{prefix}STALE_LOCK_SECONDS must be an integer: {env_val}") from e
    if env_val := os.environ.get(f"{prefix}TIMEZONE"):
        config.cron.timezone = env_val
    if env_val := os.environ.get(f"{prefix}TRACK_MEMORY"):
        config.cron.track_memory = env_val.lower() in ("true", "1", "yes")
    if env_val := os.environ.get(f"{prefix}TARGET_PATHS"):
        config.cron.target_paths = [Path(p) for p in env_val.split(os.pathsep) if p]

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()
    if env_val := os.environ.get(f"{prefix}LOG_FILE"):
        config.logging.file = Path(env_val)

    return config


def _toml_str(value: Any) -> str:
    # JSON string escaping is valid for TOML basic strings
    return json.dumps(str(value))


def save_config(config: CronsweepConfig, path: Optional[Path] = None) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save
        path: Path to save to (default: config.config_dir / config.toml)
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE

    path.parent.mkdir(parents=True, exist_ok=True)

    target_paths = ", ".join(_toml_str(p) for p in config.cron.target_paths)

    lines = [
        "# Cronsweep Configuration",
        "# Generated automatically - edit with care",
        "",
        f"config_dir = {_toml_str(config.config_dir)}",
        f"base_dir = {_toml_str(config.base_dir)}",
        "",
        "[cron]",
        f"registry_file = {_toml_str(config.cron.registry_file)}",
        f"timestamps_file = {_toml_str(config.cron.timestamps_file)}",
        f"lock_dir = {_toml_str(config.cron.lock_dir)}",
        f"state_lock_file = {_toml_str(config.cron.state_lock_file)}",
        f"stale_lock_seconds = {config.cron.stale_lock_seconds}",
        f"state_lock_timeout = {float(config.cron.state_lock_timeout)}",
        f"state_lock_stale_seconds = {config.cron.state_lock_stale_seconds}",
        f"timezone = {_toml_str(config.cron.timezone or '')}",
        f"track_memory = {str(config.cron.track_memory).lower()}",
        f"target_paths = [{target_paths}]",
        "",
        "[logging]",
        f"level = {_toml_str(config.logging.level)}",
        f"format = {_toml_str(config.logging.format)}",
        f"file = {_toml_str(config.logging.file or '')}",
        f"max_size = {config.logging.max_size}",
        f"backup_count = {config.logging.backup_count}",
        "",
    ]

    with open(path, "w") as f:
        f.write("\n".join(lines))


def ensure_base_dir(config: CronsweepConfig) -> Path:
    """Confirm the base directory exists and is writable.

    The directory is never created here: pointing cronsweep at a wrong
    location must fail loudly instead of silently starting an empty registry.

    Raises:
        ConfigurationError: If the directory is missing or not writable
    """
    base_dir = config.base_dir
    if not base_dir.is_dir():
        raise ConfigurationError(f"Cron base path does not exist: {base_dir}")
    if not os.access(base_dir, os.W_OK | os.X_OK):
        raise ConfigurationError(f"Cron base path is not writable: {base_dir}")
    return base_dir


def get_default_config() -> CronsweepConfig:
    """Get the default configuration."""
    return CronsweepConfig()


# Configuration instance for the CLI process (lazy-loaded)
_global_config: Optional[CronsweepConfig] = None


def get_config() -> CronsweepConfig:
    """Get the CLI process's configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: CronsweepConfig) -> None:
    """Set the CLI process's configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the cached configuration."""
    global _global_config
    _global_config = None


def set_config_value(section: str, key: str, value: str, config_path: Optional[Path] = None) -> None:
    """
    Set a single configuration value and persist to file.

    Args:
        section: Configuration section ('cron' or 'logging')
        key: Configuration key within the section
        value: Value to set (converted to the type of the current value)
        config_path: Path to config file (default: resolved config path)

    Raises:
        ValueError: If the section or key is unknown or the value does not convert
    """
    if config_path is None:
        config_path = default_config_path()

    config = load_config(config_path)

    if section not in ("cron", "logging"):
        raise ValueError(f"Unknown configuration section: {section}")
    section_obj = getattr(config, section)

    if not hasattr(section_obj, key):
        raise ValueError(f"Unknown configuration key: {section}.{key}")

    current_value = getattr(section_obj, key)
    current_type = type(current_value)

    converted_value: Any
    if key == "target_paths":
        converted_value = [Path(p) for p in value.split(os.pathsep) if p]
    elif key in ("timezone", "file"):
        converted_value = (Path(value) if key == "file" else value) if value else None
    elif current_type == bool:
        converted_value = value.lower() in ("true", "1", "yes", "on")
    elif current_type == int:
        converted_value = int(value)
    elif current_type == float:
        converted_value = float(value)
    else:
        converted_value = value

    setattr(section_obj, key, converted_value)
    save_config(config, config_path)


def validate_config(config: Optional[CronsweepConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    try:
        ensure_base_dir(config)
    except ConfigurationError as e:
        errors.append(ValidationError(field="base_dir", message=e.message, severity="error"))

    if config.cron.stale_lock_seconds <= 0:
        errors.append(ValidationError(
            field="cron.stale_lock_seconds",
            message="Must be a positive number of seconds.",
            severity="error",
        ))
    elif config.cron.stale_lock_seconds < 60:
        errors.append(ValidationError(
            field="cron.stale_lock_seconds",
            message="Locks younger than a minute will be reclaimed; running jobs may be started twice.",
            severity="warning",
        ))

    if config.cron.state_lock_timeout <= 0:
        errors.append(ValidationError(
            field="cron.state_lock_timeout",
            message="Must be a positive number of seconds.",
            severity="error",
        ))

    try:
        config.get_tzinfo()
    except ConfigurationError as e:
        errors.append(ValidationError(field="cron.timezone", message=e.message, severity="error"))

    for target_path in config.cron.target_paths:
        if not target_path.is_dir():
            errors.append(ValidationError(
                field="cron.target_paths",
                message=f"Target directory does not exist: {target_path}",
                severity="warning",
            ))

    if config.logging.level.upper() not in _LOG_LEVELS:
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level: {config.logging.level}",
            severity="error",
        ))

    return errors


def config_to_dict(config: CronsweepConfig) -> dict[str, Any]:
    """Convert configuration to a plain dictionary."""
    return {
        "config_dir": str(config.config_dir),
        "base_dir": str(config.base_dir),
        "cron": {
            "registry_file": config.cron.registry_file,
            "timestamps_file": config.cron.timestamps_file,
            "lock_dir": config.cron.lock_dir,
            "state_lock_file": config.cron.state_lock_file,
            "stale_lock_seconds": config.cron.stale_lock_seconds,
            "state_lock_timeout": config.cron.state_lock_timeout,
            "state_lock_stale_seconds": config.cron.state_lock_stale_seconds,
            "timezone": config.cron.timezone,
            "track_memory": config.cron.track_memory,
            "target_paths": [str(p) for p in config.cron.target_paths],
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
            "max_size": config.logging.max_size,
            "backup_count": config.logging.backup_count,
        },
    }


def export_config_yaml(config: CronsweepConfig) -> str:
    """Export configuration as a YAML string."""
    return yaml.dump(config_to_dict(config), default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: CronsweepConfig) -> str:
    """Export configuration as a JSON string."""
    return json.dumps(config_to_dict(config), indent=2)


def log_level(config: CronsweepConfig) -> int:
    """Numeric logging level for the configured level name."""
    return getattr(logging, config.logging.level.upper(), logging.WARNING)
