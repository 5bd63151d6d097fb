"""Single launch attempt and its classification.

A launch either succeeds, fails with a transient capacity or throttling
condition that is worth retrying, or fails for a reason that retrying will
not fix (bad parameters, quota, authorization). Classification is a plain
keyword match over the provider's error text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from oci.core.models import (
    CreateVnicDetails,
    InstanceSourceViaImageDetails,
    LaunchInstanceDetails,
    LaunchInstanceShapeConfigDetails,
)

from .events import Event
from .gateway import GatewayError, OciGateway, run_blocking
from .models import ProvisionSpec

logger = logging.getLogger(__name__)

# Lower-case substrings that mark a launch failure as transient
RETRYABLE_ERROR_MARKERS: tuple[str, ...] = (
    "out of host capacity",
    "capacity",
    "temporarily unavailable",
    "too many requests",
    "service unavailable",
    "timeout",
    "timed out",
    "internal error",
)


class LaunchOutcome(str, Enum):
    """Classification of one launch attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify_launch_error(text: str) -> LaunchOutcome:
    """Classify a failed launch from its error text.

    Matching is case-insensitive. Anything not listed in
    RETRYABLE_ERROR_MARKERS is fatal.
    """
    lowered = (text or "").lower()
    if any(marker in lowered for marker in RETRYABLE_ERROR_MARKERS):
        return LaunchOutcome.RETRYABLE
    return LaunchOutcome.FATAL


@dataclass(frozen=True)
class LaunchResult:
    """Outcome of one launch attempt."""

    outcome: LaunchOutcome
    availability_domain: str
    display_name: str
    instance_id: str | None = None
    error: str | None = None


class LaunchAttempter:
    """Issues launch requests built from the configuration and resolved inputs."""

    def __init__(
        self,
        gateway: OciGateway,
        spec: ProvisionSpec,
        *,
        subnet_id: str,
        image_id: str,
        ssh_public_key: str,
    ) -> None:
        self._gateway = gateway
        self._spec = spec
        self._subnet_id = subnet_id
        self._image_id = image_id
        self._ssh_public_key = ssh_public_key

    def build_details(self, availability_domain: str, display_name: str) -> LaunchInstanceDetails:
        instance = self._spec.instance
        return LaunchInstanceDetails(
            availability_domain=availability_domain,
            compartment_id=self._spec.oci.compartment_ocid,
            shape=instance.shape,
            shape_config=LaunchInstanceShapeConfigDetails(
                ocpus=instance.ocpus,
                memory_in_gbs=instance.memory_gb,
            ),
            create_vnic_details=CreateVnicDetails(
                subnet_id=self._subnet_id,
                assign_public_ip=instance.assign_public_ip,
            ),
            display_name=display_name,
            source_details=InstanceSourceViaImageDetails(
                source_type="image",
                image_id=self._image_id,
                boot_volume_size_in_gbs=instance.boot_volume_gb,
            ),
            metadata={"ssh_authorized_keys": self._ssh_public_key},
            freeform_tags=self._spec.management.freeform_tags,
        )

    async def attempt(self, availability_domain: str, display_name: str) -> LaunchResult:
        """Issue exactly one launch request and classify the result."""
        details = self.build_details(availability_domain, display_name)
        try:
            instance_id = await run_blocking(self._gateway.launch_instance, details)
        except GatewayError as e:
            error = str(e)
            outcome = classify_launch_error(error)
            if outcome == LaunchOutcome.RETRYABLE:
                logger.warning(
                    f"Retryable launch error in {availability_domain}: {error}",
                    extra={"event": Event.LAUNCH_RETRYABLE, "availability_domain": availability_domain},
                )
            else:
                logger.error(
                    f"Non-retryable launch error in {availability_domain}: {error}",
                    extra={"event": Event.LAUNCH_FATAL, "availability_domain": availability_domain},
                )
            return LaunchResult(
                outcome=outcome,
                availability_domain=availability_domain,
                display_name=display_name,
                error=error,
            )

        logger.info(
            f"Launch accepted for {display_name}",
            extra={
                "event": Event.LAUNCH_SUCCESS,
                "instance_id": instance_id,
                "availability_domain": availability_domain,
            },
        )
        return LaunchResult(
            outcome=LaunchOutcome.SUCCESS,
            availability_domain=availability_domain,
            display_name=display_name,
            instance_id=instance_id,
        )
