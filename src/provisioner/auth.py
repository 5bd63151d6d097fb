"""OCI credentials loading and access preflight.

Credentials come from an OCI API-key config file (``oci setup config``
format). The configured region always wins over the profile's region so
that one profile can drive runs in several regions.

Preflight order matches what a fresh account most often gets wrong:
1. The profile cannot authenticate at all (key not uploaded, wrong fingerprint)
2. The compartment OCID is wrong or not visible to the user
"""

from __future__ import annotations

import logging
from typing import Any

import oci

from .config import ConfigurationError
from .events import Event
from .gateway import GatewayError, OciGateway, run_blocking
from .models import OciSection

logger = logging.getLogger(__name__)


class AuthCheckError(Exception):
    """Raised when the OCI profile cannot authenticate or reach the compartment.

    This is fatal: retrying cannot fix a credential or permission problem.
    """

    pass


def build_oci_config(section: OciSection) -> dict[str, Any]:
    """Load and validate the OCI SDK config for the configured profile.

    Raises:
        ConfigurationError: If the file or profile is missing or invalid.
    """
    try:
        oci_config = oci.config.from_file(
            file_location=str(section.config_file),
            profile_name=section.profile,
        )
        oci_config["region"] = section.region
        oci.config.validate_config(oci_config)
    except oci.exceptions.ClientError as e:
        raise ConfigurationError(
            f"Invalid OCI config '{section.config_file}' profile '{section.profile}': {e}"
        ) from e

    logger.info(
        "Using OCI profile",
        extra={
            "profile": section.profile,
            "region": section.region,
            "config_file": str(section.config_file),
        },
    )
    return oci_config


async def verify_access(gateway: OciGateway, section: OciSection) -> None:
    """Confirm the credentials work and the target compartment is reachable.

    Raises:
        AuthCheckError: If either check fails.
    """
    logger.info(
        "Validating OCI credentials and region",
        extra={"event": Event.AUTH_CHECK, "region": section.region},
    )

    try:
        await run_blocking(gateway.list_regions)
    except GatewayError as e:
        raise AuthCheckError(
            f"Unable to authenticate. Verify config '{section.config_file}' "
            f"and profile '{section.profile}': {e}"
        ) from e

    try:
        name = await run_blocking(gateway.get_compartment, section.compartment_ocid)
    except GatewayError as e:
        raise AuthCheckError(
            f"Cannot access compartment {section.compartment_ocid}: {e}"
        ) from e

    logger.info(
        "Compartment accessible",
        extra={
            "event": Event.AUTH_CHECK,
            "compartment_id": section.compartment_ocid,
            "compartment_name": name,
        },
    )
