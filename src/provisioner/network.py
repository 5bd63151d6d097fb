"""Idempotent find-or-create for the instance's network topology.

One generic resolve operation serves every network object kind. Each kind
is described by a ResourceKind descriptor (gateway kind, display name,
create request builder, readiness predicate). The topology is resolved in
strict dependency order:

    VCN -> internet gateway -> route table -> security list -> subnet

Lookups match the exact display name inside the compartment (and VCN).
Tags are applied on creation but never used as a lookup filter, so objects
created by hand with the same names are reused too.

Any failure here is fatal to the run: network errors indicate configuration
or permission problems, and retrying blindly risks duplicate objects.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from oci.core.models import (
    CreateInternetGatewayDetails,
    CreateRouteTableDetails,
    CreateSecurityListDetails,
    CreateSubnetDetails,
    CreateVcnDetails,
    EgressSecurityRule,
    IngressSecurityRule,
    PortRange,
    RouteRule,
    TcpOptions,
)

from .config import NETWORK_READY_POLL_SECONDS, NETWORK_READY_TIMEOUT_SECONDS
from .events import Event
from .gateway import GatewayError, NetworkKind, NetworkObject, OciGateway, run_blocking
from .models import NetworkSection

logger = logging.getLogger(__name__)

ANYWHERE_CIDR = "0.0.0.0/0"
SSH_PORT = 22
TCP_PROTOCOL = "6"

READY_STATES: frozenset[str] = frozenset({"AVAILABLE"})
DEAD_STATES: frozenset[str] = frozenset({"TERMINATING", "TERMINATED"})

Sleeper = Callable[[float], Awaitable[None]]


class NetworkSetupError(Exception):
    """Raised when a network object cannot be found, created or made ready."""

    pass


def _is_available(obj: NetworkObject) -> bool:
    return obj.lifecycle_state in READY_STATES


@dataclass
class BuildContext:
    """Settings and the ids resolved so far, used to build create requests."""

    compartment_id: str
    freeform_tags: dict[str, str]
    network: NetworkSection
    resolved: dict[NetworkKind, str] = field(default_factory=dict)

    @property
    def vcn_id(self) -> str | None:
        return self.resolved.get(NetworkKind.VCN)


@dataclass(frozen=True)
class ResourceKind:
    """Descriptor for one network object kind.

    ``name_of`` picks the display name from the network settings and
    ``build_details`` produces the ``Create*Details`` request used when no
    live object with that name exists.
    """

    kind: NetworkKind
    label: str
    name_of: Callable[[NetworkSection], str]
    build_details: Callable[[BuildContext], Any]
    in_vcn: bool = True
    is_ready: Callable[[NetworkObject], bool] = _is_available

    def is_live(self, obj: NetworkObject) -> bool:
        return obj.lifecycle_state not in DEAD_STATES


def _vcn_details(ctx: BuildContext) -> CreateVcnDetails:
    return CreateVcnDetails(
        compartment_id=ctx.compartment_id,
        display_name=ctx.network.vcn.display_name,
        cidr_block=ctx.network.vcn.cidr_block,
        freeform_tags=ctx.freeform_tags,
    )


def _internet_gateway_details(ctx: BuildContext) -> CreateInternetGatewayDetails:
    return CreateInternetGatewayDetails(
        compartment_id=ctx.compartment_id,
        vcn_id=ctx.vcn_id,
        display_name=ctx.network.internet_gateway_display_name,
        is_enabled=True,
        freeform_tags=ctx.freeform_tags,
    )


def _route_table_details(ctx: BuildContext) -> CreateRouteTableDetails:
    # Default route through the internet gateway
    return CreateRouteTableDetails(
        compartment_id=ctx.compartment_id,
        vcn_id=ctx.vcn_id,
        display_name=ctx.network.route_table_display_name,
        route_rules=[
            RouteRule(
                destination=ANYWHERE_CIDR,
                destination_type="CIDR_BLOCK",
                network_entity_id=ctx.resolved[NetworkKind.INTERNET_GATEWAY],
            )
        ],
        freeform_tags=ctx.freeform_tags,
    )


def _security_list_details(ctx: BuildContext) -> CreateSecurityListDetails:
    # SSH in, everything out
    return CreateSecurityListDetails(
        compartment_id=ctx.compartment_id,
        vcn_id=ctx.vcn_id,
        display_name=ctx.network.security_list_display_name,
        egress_security_rules=[EgressSecurityRule(destination=ANYWHERE_CIDR, protocol="all")],
        ingress_security_rules=[
            IngressSecurityRule(
                source=ANYWHERE_CIDR,
                protocol=TCP_PROTOCOL,
                tcp_options=TcpOptions(
                    destination_port_range=PortRange(min=SSH_PORT, max=SSH_PORT)
                ),
            )
        ],
        freeform_tags=ctx.freeform_tags,
    )


def _subnet_details(ctx: BuildContext) -> CreateSubnetDetails:
    subnet = ctx.network.subnet
    return CreateSubnetDetails(
        compartment_id=ctx.compartment_id,
        vcn_id=ctx.vcn_id,
        display_name=subnet.display_name,
        cidr_block=subnet.cidr_block,
        route_table_id=ctx.resolved[NetworkKind.ROUTE_TABLE],
        security_list_ids=[ctx.resolved[NetworkKind.SECURITY_LIST]],
        prohibit_public_ip_on_vnic=subnet.prohibit_public_ip_on_vnic,
        freeform_tags=ctx.freeform_tags,
    )


VCN = ResourceKind(
    NetworkKind.VCN, "VCN", lambda n: n.vcn.display_name, _vcn_details, in_vcn=False
)
INTERNET_GATEWAY = ResourceKind(
    NetworkKind.INTERNET_GATEWAY,
    "Internet Gateway",
    lambda n: n.internet_gateway_display_name,
    _internet_gateway_details,
)
ROUTE_TABLE = ResourceKind(
    NetworkKind.ROUTE_TABLE,
    "Route Table",
    lambda n: n.route_table_display_name,
    _route_table_details,
)
SECURITY_LIST = ResourceKind(
    NetworkKind.SECURITY_LIST,
    "Security List",
    lambda n: n.security_list_display_name,
    _security_list_details,
)
SUBNET = ResourceKind(
    NetworkKind.SUBNET, "Subnet", lambda n: n.subnet.display_name, _subnet_details
)

# Dependency order: each kind may only reference ids resolved before it
TOPOLOGY_ORDER: tuple[ResourceKind, ...] = (
    VCN,
    INTERNET_GATEWAY,
    ROUTE_TABLE,
    SECURITY_LIST,
    SUBNET,
)


@dataclass(frozen=True)
class NetworkTopology:
    """Identifiers of the resolved network objects."""

    vcn_id: str
    internet_gateway_id: str
    route_table_id: str
    security_list_id: str
    subnet_id: str


@dataclass
class ResolveStats:
    """Create/reuse counts for one topology resolution."""

    created: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)


async def _default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class NetworkResolver:
    """Resolves the fixed network topology for one compartment."""

    def __init__(
        self,
        gateway: OciGateway,
        compartment_id: str,
        freeform_tags: dict[str, str],
        *,
        sleeper: Sleeper | None = None,
        ready_timeout_seconds: float = NETWORK_READY_TIMEOUT_SECONDS,
        poll_interval_seconds: float = NETWORK_READY_POLL_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._compartment_id = compartment_id
        self._tags = dict(freeform_tags)
        self._sleep = sleeper or _default_sleep
        self._ready_timeout = ready_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self.stats = ResolveStats()

    async def resolve(
        self,
        kind: ResourceKind,
        display_name: str,
        details: Any,
        vcn_id: str | None = None,
    ) -> str:
        """Return the id of the named object, creating it if it does not exist.

        Args:
            kind: Descriptor of the object kind.
            display_name: Exact display name to look up.
            details: ``Create*Details`` used only when the object is missing.
            vcn_id: Parent VCN for kinds that live inside one.

        Raises:
            NetworkSetupError: On any provider failure or readiness timeout.
        """
        if kind.in_vcn and not vcn_id:
            raise NetworkSetupError(f"{kind.label} '{display_name}' requires a VCN id")

        try:
            existing = await run_blocking(
                self._gateway.list_network_objects,
                kind.kind,
                self._compartment_id,
                display_name,
                vcn_id if kind.in_vcn else None,
            )
        except GatewayError as e:
            raise NetworkSetupError(f"Failed to look up {kind.label} '{display_name}': {e}") from e

        live = [obj for obj in existing if obj.display_name == display_name and kind.is_live(obj)]
        if live:
            found = live[0]
            logger.info(
                f"Reusing {kind.label} '{display_name}' ({found.id})",
                extra={"event": Event.NET_REUSE, "kind": kind.kind.value, "resource_id": found.id},
            )
            self.stats.reused.append(kind.kind.value)
            return found.id

        logger.info(
            f"Creating {kind.label} '{display_name}'",
            extra={"event": Event.NET_CREATE, "kind": kind.kind.value},
        )
        try:
            created = await run_blocking(self._gateway.create_network_object, kind.kind, details)
        except GatewayError as e:
            raise NetworkSetupError(f"Failed to create {kind.label} '{display_name}': {e}") from e

        await self._wait_until_ready(kind, created)
        self.stats.created.append(kind.kind.value)
        return created.id

    async def _wait_until_ready(self, kind: ResourceKind, obj: NetworkObject) -> None:
        deadline = time.monotonic() + self._ready_timeout
        current = obj
        while not kind.is_ready(current):
            if not kind.is_live(current):
                raise NetworkSetupError(
                    f"{kind.label} {obj.id} entered {current.lifecycle_state} while provisioning"
                )
            if time.monotonic() >= deadline:
                raise NetworkSetupError(
                    f"{kind.label} {obj.id} not available after {self._ready_timeout:.0f}s "
                    f"(state {current.lifecycle_state})"
                )
            await self._sleep(self._poll_interval)
            try:
                current = await run_blocking(self._gateway.get_network_object, kind.kind, obj.id)
            except GatewayError as e:
                raise NetworkSetupError(f"Failed to poll {kind.label} {obj.id}: {e}") from e

    async def ensure_topology(self, network: NetworkSection) -> NetworkTopology:
        """Resolve every object of the topology in dependency order."""
        context = BuildContext(self._compartment_id, self._tags, network)
        for kind in TOPOLOGY_ORDER:
            context.resolved[kind.kind] = await self.resolve(
                kind,
                kind.name_of(network),
                kind.build_details(context),
                vcn_id=context.vcn_id,
            )

        ids = context.resolved
        topology = NetworkTopology(
            vcn_id=ids[NetworkKind.VCN],
            internet_gateway_id=ids[NetworkKind.INTERNET_GATEWAY],
            route_table_id=ids[NetworkKind.ROUTE_TABLE],
            security_list_id=ids[NetworkKind.SECURITY_LIST],
            subnet_id=ids[NetworkKind.SUBNET],
        )
        logger.info(
            "Network ready",
            extra={
                "event": Event.NETWORK_READY,
                "vcn_id": topology.vcn_id,
                "subnet_id": topology.subnet_id,
                "internet_gateway_id": topology.internet_gateway_id,
                "route_table_id": topology.route_table_id,
                "security_list_id": topology.security_list_id,
                "created_kinds": list(self.stats.created),
                "reused_kinds": list(self.stats.reused),
            },
        )
        return topology
