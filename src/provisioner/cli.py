"""A1 Flex provisioner CLI (a1-provision).

Usage:
    a1-provision setup                      # Write a1-spec.yaml and SSH key pair
    a1-provision run --config a1-spec.yaml  # Retry until the instance exists
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from .config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_OCI_CONFIG_FILE,
    DEFAULT_SSH_PUBLIC_KEY_PATH,
    EXIT_INTERRUPTED,
    ConfigurationError,
    LogFormat,
    RunOptions,
)
from .config_template import PLACEHOLDER_COMPARTMENT, PLACEHOLDER_REGION, write_default_config
from .events import Event
from .keys import SSHKeyError, ensure_ssh_key_pair
from .main import main, setup_logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="a1-provision")
def cli() -> None:
    """A1 Flex provisioner (a1-provision).

    Launches one VM.Standard.A1.Flex instance on OCI, retrying across
    availability domains until capacity becomes available.

    \b
    Quick Start:
        a1-provision setup                       # Create a1-spec.yaml and SSH keys
        a1-provision run --config a1-spec.yaml   # Start the retry loop
    """
    pass


# =============================================================================
# Run
# =============================================================================


@cli.command()
@click.option(
    "--config", "config_path", type=click.Path(path_type=Path), default=None,
    help=f"YAML configuration file [env A1_CONFIG, default {DEFAULT_CONFIG_FILE}]",
)
@click.option("--interval", type=int, default=None, help="Retry interval seconds [env A1_RETRY_INTERVAL]")
@click.option("--jitter", type=int, default=None, help="Max extra random seconds [env A1_RETRY_JITTER]")
@click.option(
    "--peak-hours", default=None,
    help="Local hour window H-H with its own cadence, enables peak mode [env A1_PEAK_HOURS]",
)
@click.option(
    "--peak-interval", type=int, default=None,
    help="Retry interval during peak hours, enables peak mode [env A1_PEAK_INTERVAL]",
)
@click.option(
    "--peak-jitter", type=int, default=None,
    help="Jitter during peak hours, enables peak mode [env A1_PEAK_JITTER]",
)
@click.option(
    "--log-file", type=click.Path(path_type=Path), default=None,
    help="Event log file, truncated at start [env A1_LOG_FILE]",
)
@click.option(
    "--log-format", type=click.Choice([f.value for f in LogFormat]), default=None,
    help="Event log format [env A1_LOG_FORMAT]",
)
def run(**values: Any) -> None:
    """Retry launching the instance until it exists.

    Exits 0 when an instance was launched or one is already active,
    1 on a fatal error and 2 when interrupted.
    """
    try:
        options = RunOptions.from_env(**values)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(options.log_file, options.log_format)
    try:
        exit_code = asyncio.run(main(options))
    except KeyboardInterrupt:
        logger.warning("Interrupted", extra={"event": Event.INTERRUPTED})
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


# =============================================================================
# Setup
# =============================================================================


def _read_setup_paths(config_path: Path) -> tuple[Path, Path]:
    """SSH key and OCI config paths from a possibly incomplete config file."""
    key_path = DEFAULT_SSH_PUBLIC_KEY_PATH
    oci_config_file = DEFAULT_OCI_CONFIG_FILE
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise click.ClickException(f"Cannot read {config_path}: {e}") from e

    if isinstance(raw, dict):
        instance = raw.get("instance") or {}
        oci_section = raw.get("oci") or {}
        key_path = instance.get("ssh_public_key_path") or key_path
        oci_config_file = oci_section.get("config_file") or oci_config_file
    return Path(str(key_path)).expanduser(), Path(str(oci_config_file)).expanduser()


@cli.command()
@click.option(
    "--config", "config_path", type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG_FILE, show_default=True, help="Configuration file to create",
)
@click.option(
    "--yes", "-y", "assume_yes", is_flag=True, envvar="A1_ASSUME_YES",
    help="Non-interactive mode (no prompts, placeholder values)",
)
def setup(config_path: Path, assume_yes: bool) -> None:
    """Create a default configuration file and SSH key pair.

    Existing files are never replaced.
    """
    setup_logging(None)

    if config_path.exists():
        logger.info(
            f"Found existing {config_path}, not replacing",
            extra={"event": Event.SETUP, "path": str(config_path)},
        )
    else:
        region, compartment = PLACEHOLDER_REGION, PLACEHOLDER_COMPARTMENT
        if not assume_yes:
            region = click.prompt("OCI region", default=PLACEHOLDER_REGION)
            compartment = click.prompt("Compartment OCID", default=PLACEHOLDER_COMPARTMENT)
        write_default_config(config_path, region=region, compartment_ocid=compartment)
        logger.info(
            f"Created default {config_path}",
            extra={"event": Event.SETUP, "path": str(config_path)},
        )

    key_path, oci_config_file = _read_setup_paths(config_path)
    try:
        ensure_ssh_key_pair(key_path)
    except SSHKeyError as e:
        raise click.ClickException(str(e)) from e

    if oci_config_file.is_file():
        logger.info(
            f"Found existing OCI config at {oci_config_file}",
            extra={"event": Event.SETUP, "path": str(oci_config_file)},
        )
    else:
        logger.warning(
            f"No OCI config found at {oci_config_file}; create one with 'oci setup config'",
            extra={"event": Event.SETUP, "path": str(oci_config_file)},
        )

    logger.info("Setup completed", extra={"event": Event.SETUP_DONE})
    click.echo("\nNext steps:")
    click.echo("  1. Upload your OCI API public key in the Console (Profile -> API keys)")
    click.echo(f"  2. Set oci.compartment_ocid in {config_path}")
    click.echo(f"  3. a1-provision run --config {config_path}")


if __name__ == "__main__":
    cli()
