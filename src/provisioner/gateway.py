"""OCI provider gateway.

Thin adapter over the OCI Python SDK identity, compute and virtual-network
clients. Every call either returns plain records or raises GatewayError;
no provisioning decisions are made here.

The SDK is synchronous. The engine runs on asyncio, so callers wrap each
gateway call with run_blocking(), which moves it to the default executor
and bounds it with a timeout. Exactly one call is in flight at a time.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

import oci

from .config import PROVIDER_CALL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (connect, read) timeouts handed to every SDK client
CLIENT_TIMEOUT_SECONDS = (10, 60)


class GatewayError(Exception):
    """Raised when a provider request fails.

    The string form carries the HTTP status, service error code and message
    so that callers can classify failures from the text alone.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        self.operation = operation
        self.message = message
        self.status = status
        self.code = code
        super().__init__(self._render())

    def _render(self) -> str:
        detail = " ".join(str(p) for p in (self.status, self.code) if p)
        if detail:
            return f"{self.operation} failed ({detail}): {self.message}"
        return f"{self.operation} failed: {self.message}"


class NetworkKind(str, Enum):
    """Network object kinds managed by the engine."""

    VCN = "vcn"
    INTERNET_GATEWAY = "internet_gateway"
    ROUTE_TABLE = "route_table"
    SECURITY_LIST = "security_list"
    SUBNET = "subnet"


@dataclass(frozen=True)
class _NetworkCalls:
    list_method: str
    create_method: str
    get_method: str


_NETWORK_CALLS: dict[NetworkKind, _NetworkCalls] = {
    NetworkKind.VCN: _NetworkCalls("list_vcns", "create_vcn", "get_vcn"),
    NetworkKind.INTERNET_GATEWAY: _NetworkCalls(
        "list_internet_gateways", "create_internet_gateway", "get_internet_gateway"
    ),
    NetworkKind.ROUTE_TABLE: _NetworkCalls(
        "list_route_tables", "create_route_table", "get_route_table"
    ),
    NetworkKind.SECURITY_LIST: _NetworkCalls(
        "list_security_lists", "create_security_list", "get_security_list"
    ),
    NetworkKind.SUBNET: _NetworkCalls("list_subnets", "create_subnet", "get_subnet"),
}


@dataclass(frozen=True)
class NetworkObject:
    """A VCN, gateway, route table, security list or subnet."""

    kind: NetworkKind
    id: str
    display_name: str
    lifecycle_state: str
    freeform_tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InstanceSummary:
    """Compute instance as returned by list_instances."""

    id: str
    display_name: str
    shape: str
    lifecycle_state: str
    availability_domain: str = ""
    freeform_tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageSummary:
    """Platform image candidate."""

    id: str
    display_name: str
    lifecycle_state: str
    time_created: datetime | None = None


@dataclass(frozen=True)
class VnicAddresses:
    """Addresses of a VNIC. Missing values are None."""

    private_ip: str | None = None
    public_ip: str | None = None


@contextmanager
def _provider_call(operation: str) -> Iterator[None]:
    """Translate SDK exceptions into GatewayError."""
    try:
        yield
    except oci.exceptions.ServiceError as e:
        raise GatewayError(operation, str(e.message), status=e.status, code=e.code) from e
    except (oci.exceptions.RequestException, oci.exceptions.ConnectTimeout) as e:
        # ConnectTimeout does not derive from the SDK's RequestException
        raise GatewayError(operation, str(e)) from e


async def run_blocking(
    func: Callable[..., T],
    *args: Any,
    timeout: float = PROVIDER_CALL_TIMEOUT_SECONDS,
    **kwargs: Any,
) -> T:
    """Run a blocking gateway call in the default executor with a timeout.

    Raises:
        GatewayError: If the call does not complete within ``timeout`` seconds.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
            timeout=timeout,
        )
    except TimeoutError as e:
        name = getattr(func, "__name__", "provider call")
        raise GatewayError(name, f"request timed out after {timeout:.0f}s") from e


def _tags(model: Any) -> dict[str, str]:
    return dict(getattr(model, "freeform_tags", None) or {})


class OciGateway:
    """Synchronous adapter over the OCI SDK clients."""

    def __init__(
        self,
        identity_client: Any,
        compute_client: Any,
        network_client: Any,
    ) -> None:
        self._identity = identity_client
        self._compute = compute_client
        self._network = network_client

    @classmethod
    def from_config(cls, oci_config: dict[str, Any]) -> OciGateway:
        """Create SDK clients from a validated OCI config dict."""
        kwargs = {"timeout": CLIENT_TIMEOUT_SECONDS}
        return cls(
            identity_client=oci.identity.IdentityClient(oci_config, **kwargs),
            compute_client=oci.core.ComputeClient(oci_config, **kwargs),
            network_client=oci.core.VirtualNetworkClient(oci_config, **kwargs),
        )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def list_regions(self) -> list[str]:
        with _provider_call("list_regions"):
            regions = self._identity.list_regions().data
        return [r.name for r in regions]

    def get_compartment(self, compartment_id: str) -> str:
        """Return the compartment name; raises if it is not accessible."""
        with _provider_call("get_compartment"):
            compartment = self._identity.get_compartment(compartment_id).data
        return str(getattr(compartment, "name", "") or compartment_id)

    def list_availability_domains(self, compartment_id: str) -> list[str]:
        with _provider_call("list_availability_domains"):
            domains = self._identity.list_availability_domains(compartment_id).data
        return [d.name for d in domains]

    # -------------------------------------------------------------------------
    # Virtual network
    # -------------------------------------------------------------------------

    def list_network_objects(
        self,
        kind: NetworkKind,
        compartment_id: str,
        display_name: str,
        vcn_id: str | None = None,
    ) -> list[NetworkObject]:
        """List objects of one kind with an exact display name."""
        calls = _NETWORK_CALLS[kind]
        kwargs: dict[str, Any] = {"compartment_id": compartment_id, "display_name": display_name}
        if vcn_id is not None:
            kwargs["vcn_id"] = vcn_id

        with _provider_call(calls.list_method):
            items = oci.pagination.list_call_get_all_results(
                getattr(self._network, calls.list_method), **kwargs
            ).data
        return [self._to_network_object(kind, item) for item in items]

    def create_network_object(self, kind: NetworkKind, details: Any) -> NetworkObject:
        """Create an object from an ``oci.core.models.Create*Details`` instance."""
        calls = _NETWORK_CALLS[kind]
        with _provider_call(calls.create_method):
            created = getattr(self._network, calls.create_method)(details).data
        return self._to_network_object(kind, created)

    def get_network_object(self, kind: NetworkKind, object_id: str) -> NetworkObject:
        calls = _NETWORK_CALLS[kind]
        with _provider_call(calls.get_method):
            item = getattr(self._network, calls.get_method)(object_id).data
        return self._to_network_object(kind, item)

    def get_vnic_addresses(self, vnic_id: str) -> VnicAddresses:
        with _provider_call("get_vnic"):
            vnic = self._network.get_vnic(vnic_id).data
        return VnicAddresses(
            private_ip=getattr(vnic, "private_ip", None) or None,
            public_ip=getattr(vnic, "public_ip", None) or None,
        )

    @staticmethod
    def _to_network_object(kind: NetworkKind, model: Any) -> NetworkObject:
        return NetworkObject(
            kind=kind,
            id=model.id,
            display_name=getattr(model, "display_name", "") or "",
            lifecycle_state=getattr(model, "lifecycle_state", "") or "",
            freeform_tags=_tags(model),
        )

    # -------------------------------------------------------------------------
    # Compute
    # -------------------------------------------------------------------------

    def list_images(
        self,
        compartment_id: str,
        shape: str,
        operating_system: str,
        operating_system_version: str,
    ) -> list[ImageSummary]:
        """List images for a shape/OS/version, newest first."""
        with _provider_call("list_images"):
            images = oci.pagination.list_call_get_all_results(
                self._compute.list_images,
                compartment_id=compartment_id,
                shape=shape,
                operating_system=operating_system,
                operating_system_version=operating_system_version,
                sort_by="TIMECREATED",
                sort_order="DESC",
            ).data
        return [
            ImageSummary(
                id=image.id,
                display_name=getattr(image, "display_name", "") or "",
                lifecycle_state=getattr(image, "lifecycle_state", "") or "",
                time_created=getattr(image, "time_created", None),
            )
            for image in images
        ]

    def list_instances(self, compartment_id: str) -> list[InstanceSummary]:
        with _provider_call("list_instances"):
            instances = oci.pagination.list_call_get_all_results(
                self._compute.list_instances,
                compartment_id=compartment_id,
            ).data
        return [
            InstanceSummary(
                id=instance.id,
                display_name=getattr(instance, "display_name", "") or "",
                shape=getattr(instance, "shape", "") or "",
                lifecycle_state=getattr(instance, "lifecycle_state", "") or "",
                availability_domain=getattr(instance, "availability_domain", "") or "",
                freeform_tags=_tags(instance),
            )
            for instance in instances
        ]

    def list_vnic_ids(self, compartment_id: str, instance_id: str) -> list[str]:
        """VNIC ids attached to an instance, in attachment order."""
        with _provider_call("list_vnic_attachments"):
            attachments = oci.pagination.list_call_get_all_results(
                self._compute.list_vnic_attachments,
                compartment_id=compartment_id,
                instance_id=instance_id,
            ).data
        return [a.vnic_id for a in attachments if getattr(a, "vnic_id", None)]

    def launch_instance(self, details: Any) -> str:
        """Issue a single launch request; returns the new instance id."""
        with _provider_call("launch_instance"):
            instance = self._compute.launch_instance(details).data
        return str(instance.id)
