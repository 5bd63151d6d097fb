"""Main entry point for the A1 Flex provisioner.

Wires the runtime options, configuration file, OCI credentials and SSH key
into a ProvisionReconciler and maps the run outcome to a process exit code:

- 0: instance launched, or one was already active
- 1: fatal error (configuration, credentials, network, launch)
- 2: interrupted by SIGINT/SIGTERM
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .auth import build_oci_config
from .config import EXIT_FAILURE, ConfigurationError, LogFormat, RunOptions
from .events import Event
from .gateway import OciGateway
from .keys import SSHKeyError, ensure_ssh_key_pair, read_public_key
from .reconciler import ProvisionReconciler
from .spec_loader import SpecLoadError, load_spec

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "event",
    }
)


def _event_code(record: logging.LogRecord) -> str:
    event = getattr(record, "event", None)
    if event is None:
        return "-"
    return event.value if isinstance(event, Enum) else str(event)


class TextFormatter(logging.Formatter):
    """``<UTC ts> [LEVEL] [EVENT] message`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        line = f"{timestamp} [{record.levelname}] [{_event_code(record)}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "event": _event_code(record),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value.value if isinstance(value, Enum) else value

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_file: Path | None, log_format: LogFormat = LogFormat.TEXT) -> None:
    """Send the event log to stdout and, if given, to a fresh log file."""
    formatter: logging.Formatter = (
        JsonFormatter() if log_format == LogFormat.JSON else TextFormatter()
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Reduce noise from the OCI SDK
    logging.getLogger("oci").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def main(options: RunOptions) -> int:
    """Run one provisioning session.

    Returns:
        Exit code (0 success, 1 failure, 2 interrupted).
    """
    logger = logging.getLogger(__name__)

    try:
        spec = load_spec(options.config_path).with_overrides(options.overrides)
        oci_config = build_oci_config(spec.oci)
        public_key_path = ensure_ssh_key_pair(spec.instance.ssh_public_key_path)
        public_key = read_public_key(public_key_path)
    except (ConfigurationError, SpecLoadError) as e:
        logger.error(f"Configuration error: {e}", extra={"event": Event.FATAL})
        return EXIT_FAILURE
    except SSHKeyError as e:
        logger.error(f"SSH key error: {e}", extra={"event": Event.FATAL})
        return EXIT_FAILURE

    reconciler = ProvisionReconciler(spec, OciGateway.from_config(oci_config), public_key)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        reconciler.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        result = await reconciler.run()
    except Exception as e:
        logger.exception(f"Unhandled exception: {e}", extra={"event": Event.FATAL})
        return EXIT_FAILURE
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    return result.exit_code
