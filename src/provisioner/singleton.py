"""Singleton enforcement for the managed instance.

An instance is managed when it has the configured shape and carries the
managed-by tag. It counts as active while PROVISIONING, STARTING or
RUNNING. Instances that match the tag but not the shape are left alone and
are not counted; this engine never terminates anything.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from .config import ACTIVE_LIFECYCLE_STATES
from .gateway import InstanceSummary, OciGateway, run_blocking

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "n/a"


@dataclass(frozen=True)
class InstanceReport:
    """Terminal report for an active managed instance."""

    instance_id: str
    display_name: str
    lifecycle_state: str
    availability_domain: str
    private_ip: str = NOT_AVAILABLE
    public_ip: str = NOT_AVAILABLE


def next_display_name(prefix: str, existing: Iterable[str]) -> str:
    """Next ``<prefix>-<n>`` name, one past the highest numeric suffix in use.

    Only names of the exact form ``<prefix>-<digits>`` are considered, so
    ``A1-Flex-3`` counts but ``A1-Flex-3-old`` does not.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    highest = 0
    for name in existing:
        match = pattern.match(name or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1}"


def fallback_display_name(prefix: str, now: datetime) -> str:
    """Name used when existing names cannot be listed."""
    return f"{prefix}-{int(now.timestamp())}"


class InstanceMonitor:
    """Queries the compartment for managed instances."""

    def __init__(
        self,
        gateway: OciGateway,
        compartment_id: str,
        shape: str,
        tag_key: str,
        tag_value: str,
    ) -> None:
        self._gateway = gateway
        self._compartment_id = compartment_id
        self._shape = shape
        self._tag_key = tag_key
        self._tag_value = tag_value

    def is_managed_active(self, instance: InstanceSummary) -> bool:
        return (
            instance.shape == self._shape
            and instance.freeform_tags.get(self._tag_key) == self._tag_value
            and instance.lifecycle_state in ACTIVE_LIFECYCLE_STATES
        )

    async def active_instances(self) -> list[InstanceSummary]:
        instances = await run_blocking(self._gateway.list_instances, self._compartment_id)
        return [i for i in instances if self.is_managed_active(i)]

    async def count_active(self) -> int:
        """Number of active managed instances.

        Raises:
            GatewayError: If the provider cannot be queried.
        """
        return len(await self.active_instances())

    async def existing_display_names(self) -> list[str]:
        """Display names of every instance in the compartment, any state."""
        instances = await run_blocking(self._gateway.list_instances, self._compartment_id)
        return [i.display_name for i in instances if i.display_name]

    async def describe_active(self, instance_id: str | None = None) -> InstanceReport | None:
        """Report for ``instance_id`` or the first active managed instance.

        When ``instance_id`` is not listed yet, the first active managed
        instance is reported instead. Returns None if neither exists.
        Addresses come from the first attached VNIC and are reported as
        ``n/a`` when no VNIC is attached yet.
        """
        instances = await run_blocking(self._gateway.list_instances, self._compartment_id)
        instance = next((i for i in instances if instance_id and i.id == instance_id), None)
        if instance is None:
            instance = next((i for i in instances if self.is_managed_active(i)), None)
        if instance is None:
            return None

        private_ip = public_ip = NOT_AVAILABLE
        vnic_ids = await run_blocking(
            self._gateway.list_vnic_ids, self._compartment_id, instance.id
        )
        if vnic_ids:
            addresses = await run_blocking(self._gateway.get_vnic_addresses, vnic_ids[0])
            private_ip = addresses.private_ip or NOT_AVAILABLE
            public_ip = addresses.public_ip or NOT_AVAILABLE

        return InstanceReport(
            instance_id=instance.id,
            display_name=instance.display_name,
            lifecycle_state=instance.lifecycle_state,
            availability_domain=instance.availability_domain,
            private_ip=private_ip,
            public_ip=public_ip,
        )
