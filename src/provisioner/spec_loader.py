"""Configuration file loading with validation.

SECURITY: File reads enforce a size limit. Input validation is performed at
the boundary so the engine only ever sees a validated ProvisionSpec.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_CONFIG_FILE_SIZE_BYTES
from .events import Event
from .models import ProvisionSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when the configuration file cannot be loaded or fails validation."""

    pass


def load_spec(config_path: Path) -> ProvisionSpec:
    """Load and validate the provisioning configuration from YAML.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated spec instance.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not config_path.exists():
        raise SpecLoadError(f"Config file not found: {config_path}")

    # SECURITY: Check file size before reading
    try:
        size_bytes = config_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat config file {config_path}: {e}") from e

    if size_bytes > MAX_CONFIG_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Config file exceeds maximum size of {MAX_CONFIG_FILE_SIZE_BYTES} bytes: {config_path}"
        )

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read config file {config_path}: {e}") from e

    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(document, dict):
        raise SpecLoadError(f"Config file must contain a YAML mapping: {config_path}")

    try:
        spec = ProvisionSpec.model_validate(document)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            loc = ".".join(str(part) for part in error["loc"]) or "<root>"
            msg = error["msg"]
            problems.append(f"  - {loc}: {msg}")

        details = "\n".join(problems)
        raise SpecLoadError(f"Validation failed for {config_path}:\n{details}") from e

    logger.info(
        "Loaded configuration from %s",
        config_path,
        extra={"event": Event.CONFIG, "region": spec.oci.region},
    )
    return spec
