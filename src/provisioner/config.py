"""Runtime options and engine constants with validation.

Runtime options (config file path, log destination, retry overrides) are
layered: command-line flags win over environment variables, which win over
the YAML configuration file. Invalid options raise ConfigurationError
before the provisioning engine is started.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


class LogFormat(str, Enum):
    """Supported event log formats."""

    TEXT = "text"
    JSON = "json"


# Process exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 2

# The only shape this engine provisions
SUPPORTED_SHAPE = "VM.Standard.A1.Flex"

# Lifecycle states that count as an active managed instance
ACTIVE_LIFECYCLE_STATES: frozenset[str] = frozenset({"PROVISIONING", "STARTING", "RUNNING"})

DEFAULT_CONFIG_FILE = "./a1-spec.yaml"
DEFAULT_LOG_FILE = "./a1-provision.log"
DEFAULT_SSH_PUBLIC_KEY_PATH = "./keys/ampere_a1_key.pub"
DEFAULT_OCI_CONFIG_FILE = "~/.oci/config"

DEFAULT_MANAGED_TAG_KEY = "ManagedBy"
DEFAULT_MANAGED_TAG_VALUE = "A1RetryScript"

# Retry cadence defaults with documented bounds
DEFAULT_RETRY_INTERVAL_SECONDS = 45
DEFAULT_RETRY_JITTER_SECONDS = 15
DEFAULT_PEAK_START_HOUR = 0
DEFAULT_PEAK_END_HOUR = 3
DEFAULT_PEAK_INTERVAL_SECONDS = 20
DEFAULT_PEAK_JITTER_SECONDS = 5
MIN_RETRY_INTERVAL_SECONDS = 1
MAX_RETRY_INTERVAL_SECONDS = 86400

# Provider call bounds
PROVIDER_CALL_TIMEOUT_SECONDS = 120
NETWORK_READY_TIMEOUT_SECONDS = 300
NETWORK_READY_POLL_SECONDS = 3

# Security constraints - enforced limits on local input
MAX_CONFIG_FILE_SIZE_BYTES = 256 * 1024
MAX_SSH_PUBLIC_KEY_BYTES = 16 * 1024

PEAK_HOURS_PATTERN = r"^([0-9]{1,2})-([0-9]{1,2})$"


def parse_peak_hours(value: str) -> tuple[int, int]:
    """Parse an ``H-H`` local-hour window such as ``0-3`` or ``22-2``.

    Raises:
        ConfigurationError: If the value is malformed or an hour is outside 0-23.
    """
    match = re.match(PEAK_HOURS_PATTERN, value.strip())
    if not match:
        raise ConfigurationError(f"peak hours must be in H-H format, e.g. 0-3: {value}")
    start, end = int(match.group(1)), int(match.group(2))
    if start > 23 or end > 23:
        raise ConfigurationError(f"peak hours must be between 0 and 23: {value}")
    return start, end


@dataclass(frozen=True)
class RetryOverrides:
    """Retry settings supplied on the command line or environment.

    Any peak override turns the peak window on, matching how the
    overrides are documented in ``a1-provision run --help``.
    """

    interval_seconds: int | None = None
    jitter_seconds: int | None = None
    peak_hours: tuple[int, int] | None = None
    peak_interval_seconds: int | None = None
    peak_jitter_seconds: int | None = None

    @property
    def enables_peak(self) -> bool:
        return (
            self.peak_hours is not None
            or self.peak_interval_seconds is not None
            or self.peak_jitter_seconds is not None
        )

    @property
    def is_empty(self) -> bool:
        return (
            self.interval_seconds is None
            and self.jitter_seconds is None
            and not self.enables_peak
        )


@dataclass(frozen=True)
class RunOptions:
    """Options for a single provisioning run.

    All fields are validated at construction time. Invalid options raise
    ConfigurationError immediately rather than failing mid-run.
    """

    config_path: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_FILE))
    log_file: Path = field(default_factory=lambda: Path(DEFAULT_LOG_FILE))
    log_format: LogFormat = LogFormat.TEXT
    overrides: RetryOverrides = field(default_factory=RetryOverrides)

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.config_path.is_file():
            errors.append(f"Config file not found: {self.config_path}")

        if self.log_file.is_dir():
            errors.append(f"--log-file must be a file path, not a directory: {self.log_file}")

        for name, value in (
            ("interval", self.overrides.interval_seconds),
            ("peak interval", self.overrides.peak_interval_seconds),
        ):
            if value is not None and not (
                MIN_RETRY_INTERVAL_SECONDS <= value <= MAX_RETRY_INTERVAL_SECONDS
            ):
                errors.append(
                    f"{name} must be between {MIN_RETRY_INTERVAL_SECONDS} "
                    f"and {MAX_RETRY_INTERVAL_SECONDS} seconds: {value}"
                )

        for name, value in (
            ("jitter", self.overrides.jitter_seconds),
            ("peak jitter", self.overrides.peak_jitter_seconds),
        ):
            if value is not None and value < 0:
                errors.append(f"{name} must not be negative: {value}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **cli_values: object) -> RunOptions:
        """Build options from environment variables, overridden by CLI values.

        CLI values that are None fall back to the environment.

        Environment Variables:
            A1_CONFIG: Path to the YAML configuration file (default: ./a1-spec.yaml)
            A1_LOG_FILE: Event log file (default: ./a1-provision.log)
            A1_LOG_FORMAT: text or json (default: text)
            A1_RETRY_INTERVAL / A1_RETRY_JITTER: Standard retry cadence overrides
            A1_PEAK_HOURS: Peak window as H-H, e.g. 0-3
            A1_PEAK_INTERVAL / A1_PEAK_JITTER: Peak retry cadence overrides
        """

        def pick(key: str, env_key: str) -> str | None:
            value = cli_values.get(key)
            if value is not None:
                return str(value)
            return os.environ.get(env_key) or None

        def get_int(key: str, env_key: str) -> int | None:
            value = pick(key, env_key)
            if value is None:
                return None
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{env_key} must be an integer: {value}") from e

        def get_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.TEXT
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(f"log format must be one of {valid}: {value}") from e

        peak_hours_raw = pick("peak_hours", "A1_PEAK_HOURS")

        return cls(
            config_path=Path(pick("config_path", "A1_CONFIG") or DEFAULT_CONFIG_FILE).expanduser(),
            log_file=Path(pick("log_file", "A1_LOG_FILE") or DEFAULT_LOG_FILE).expanduser(),
            log_format=get_format(pick("log_format", "A1_LOG_FORMAT")),
            overrides=RetryOverrides(
                interval_seconds=get_int("interval", "A1_RETRY_INTERVAL"),
                jitter_seconds=get_int("jitter", "A1_RETRY_JITTER"),
                peak_hours=parse_peak_hours(peak_hours_raw) if peak_hours_raw else None,
                peak_interval_seconds=get_int("peak_interval", "A1_PEAK_INTERVAL"),
                peak_jitter_seconds=get_int("peak_jitter", "A1_PEAK_JITTER"),
            ),
        )
