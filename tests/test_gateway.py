"""Tests for the OCI provider gateway with mocked SDK clients."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import oci
import pytest

from provisioner.gateway import (
    GatewayError,
    NetworkKind,
    OciGateway,
    run_blocking,
)


def _response(data: object) -> SimpleNamespace:
    return SimpleNamespace(data=data)


def _service_error(status: int, code: str, message: str) -> oci.exceptions.ServiceError:
    return oci.exceptions.ServiceError(status, code, {}, message)


@pytest.fixture
def clients() -> SimpleNamespace:
    return SimpleNamespace(identity=MagicMock(), compute=MagicMock(), network=MagicMock())


@pytest.fixture
def gateway(clients: SimpleNamespace) -> OciGateway:
    return OciGateway(clients.identity, clients.compute, clients.network)


class TestGatewayError:
    """Tests for the error text used by launch classification."""

    def test_renders_status_and_code(self) -> None:
        error = GatewayError("launch_instance", "Out of host capacity.", status=500, code="InternalError")
        assert str(error) == "launch_instance failed (500 InternalError): Out of host capacity."

    def test_renders_without_status(self) -> None:
        assert str(GatewayError("get_vnic", "boom")) == "get_vnic failed: boom"


class TestIdentityCalls:
    """Tests for identity client calls."""

    def test_list_regions(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.identity.list_regions.return_value = _response(
            [SimpleNamespace(name="us-ashburn-1"), SimpleNamespace(name="eu-frankfurt-1")]
        )
        assert gateway.list_regions() == ["us-ashburn-1", "eu-frankfurt-1"]

    def test_service_error_translated(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.identity.get_compartment.side_effect = _service_error(
            404, "NotAuthorizedOrNotFound", "Authorization failed or requested resource not found"
        )

        with pytest.raises(GatewayError) as exc_info:
            gateway.get_compartment("ocid1.compartment.oc1..x")

        error = exc_info.value
        assert error.status == 404
        assert error.code == "NotAuthorizedOrNotFound"
        assert "get_compartment failed (404 NotAuthorizedOrNotFound)" in str(error)

    def test_request_exception_translated(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.identity.list_regions.side_effect = oci.exceptions.RequestException("connection reset")

        with pytest.raises(GatewayError) as exc_info:
            gateway.list_regions()
        assert "connection reset" in str(exc_info.value)

    def test_list_availability_domains(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.identity.list_availability_domains.return_value = _response(
            [SimpleNamespace(name="AD-1"), SimpleNamespace(name="AD-2")]
        )
        assert gateway.list_availability_domains("ocid1.compartment.oc1..x") == ["AD-1", "AD-2"]
        clients.identity.list_availability_domains.assert_called_once_with("ocid1.compartment.oc1..x")


class TestNetworkCalls:
    """Tests for the generic network object calls."""

    def test_list_uses_kind_method_and_filters(
        self, gateway: OciGateway, clients: SimpleNamespace
    ) -> None:
        subnet = SimpleNamespace(
            id="ocid1.subnet.oc1..s",
            display_name="ampere-subnet",
            lifecycle_state="AVAILABLE",
            freeform_tags={"ManagedBy": "A1RetryScript"},
        )
        with patch(
            "oci.pagination.list_call_get_all_results", return_value=_response([subnet])
        ) as paginate:
            result = gateway.list_network_objects(
                NetworkKind.SUBNET, "ocid1.compartment.oc1..x", "ampere-subnet", vcn_id="ocid1.vcn.oc1..v"
            )

        paginate.assert_called_once_with(
            clients.network.list_subnets,
            compartment_id="ocid1.compartment.oc1..x",
            display_name="ampere-subnet",
            vcn_id="ocid1.vcn.oc1..v",
        )
        assert len(result) == 1
        assert result[0].kind == NetworkKind.SUBNET
        assert result[0].id == "ocid1.subnet.oc1..s"
        assert result[0].freeform_tags == {"ManagedBy": "A1RetryScript"}

    def test_list_vcn_without_vcn_filter(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        with patch(
            "oci.pagination.list_call_get_all_results", return_value=_response([])
        ) as paginate:
            gateway.list_network_objects(NetworkKind.VCN, "ocid1.compartment.oc1..x", "ampere-vcn")

        kwargs = paginate.call_args.kwargs
        assert "vcn_id" not in kwargs
        assert paginate.call_args.args[0] is clients.network.list_vcns

    def test_create_and_get(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        created = SimpleNamespace(
            id="ocid1.internetgateway.oc1..g",
            display_name="ampere-igw",
            lifecycle_state="PROVISIONING",
            freeform_tags=None,
        )
        clients.network.create_internet_gateway.return_value = _response(created)
        clients.network.get_internet_gateway.return_value = _response(
            SimpleNamespace(**{**vars(created), "lifecycle_state": "AVAILABLE"})
        )
        details = object()

        obj = gateway.create_network_object(NetworkKind.INTERNET_GATEWAY, details)
        polled = gateway.get_network_object(NetworkKind.INTERNET_GATEWAY, obj.id)

        clients.network.create_internet_gateway.assert_called_once_with(details)
        assert obj.lifecycle_state == "PROVISIONING"
        assert obj.freeform_tags == {}
        assert polled.lifecycle_state == "AVAILABLE"

    def test_vnic_addresses(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.network.get_vnic.return_value = _response(
            SimpleNamespace(private_ip="10.10.1.5", public_ip=None)
        )
        addresses = gateway.get_vnic_addresses("ocid1.vnic.oc1..n")
        assert addresses.private_ip == "10.10.1.5"
        assert addresses.public_ip is None


class TestComputeCalls:
    """Tests for compute client calls."""

    def test_list_images_newest_first(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        image = SimpleNamespace(
            id="ocid1.image.oc1..i",
            display_name="Canonical-Ubuntu-22.04-aarch64-2024.06.01-0",
            lifecycle_state="AVAILABLE",
            time_created=datetime(2024, 6, 1, tzinfo=UTC),
        )
        with patch(
            "oci.pagination.list_call_get_all_results", return_value=_response([image])
        ) as paginate:
            images = gateway.list_images(
                "ocid1.compartment.oc1..x", "VM.Standard.A1.Flex", "Canonical Ubuntu", "22.04"
            )

        kwargs = paginate.call_args.kwargs
        assert kwargs["sort_by"] == "TIMECREATED"
        assert kwargs["sort_order"] == "DESC"
        assert kwargs["shape"] == "VM.Standard.A1.Flex"
        assert images[0].id == "ocid1.image.oc1..i"

    def test_list_instances(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        instance = SimpleNamespace(
            id="ocid1.instance.oc1..a",
            display_name="A1-Flex-1",
            shape="VM.Standard.A1.Flex",
            lifecycle_state="RUNNING",
            availability_domain="AD-1",
            freeform_tags={"ManagedBy": "A1RetryScript"},
        )
        with patch("oci.pagination.list_call_get_all_results", return_value=_response([instance])):
            instances = gateway.list_instances("ocid1.compartment.oc1..x")

        assert instances[0].display_name == "A1-Flex-1"
        assert instances[0].freeform_tags == {"ManagedBy": "A1RetryScript"}

    def test_list_vnic_ids_skips_missing(self, gateway: OciGateway) -> None:
        attachments = [SimpleNamespace(vnic_id=None), SimpleNamespace(vnic_id="ocid1.vnic.oc1..n")]
        with patch("oci.pagination.list_call_get_all_results", return_value=_response(attachments)):
            assert gateway.list_vnic_ids("c", "i") == ["ocid1.vnic.oc1..n"]

    def test_launch_returns_id(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.compute.launch_instance.return_value = _response(SimpleNamespace(id="ocid1.instance.oc1..new"))
        assert gateway.launch_instance(object()) == "ocid1.instance.oc1..new"

    def test_launch_capacity_error(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.compute.launch_instance.side_effect = _service_error(
            500, "InternalError", "Out of host capacity."
        )
        with pytest.raises(GatewayError) as exc_info:
            gateway.launch_instance(object())
        assert "Out of host capacity" in str(exc_info.value)


class TestRunBlocking:
    """Tests for executor offloading."""

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        assert await run_blocking(lambda a, b=0: a + b, 2, b=3) == 5

    @pytest.mark.asyncio
    async def test_timeout_raises_gateway_error(self) -> None:
        def slow_call() -> None:
            time.sleep(0.5)

        with pytest.raises(GatewayError) as exc_info:
            await run_blocking(slow_call, timeout=0.05)
        assert "slow_call" in str(exc_info.value)
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_gateway_errors_propagate(self) -> None:
        def failing() -> None:
            raise GatewayError("list_instances", "boom")

        with pytest.raises(GatewayError):
            await run_blocking(failing)


class TestConnectTimeout:
    """Connect timeouts surface as GatewayError like any other transport failure."""

    def test_launch_connect_timeout(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.compute.launch_instance.side_effect = oci.exceptions.ConnectTimeout(
            "Connection to endpoint timed out"
        )

        with pytest.raises(GatewayError) as exc_info:
            gateway.launch_instance(object())

        assert str(exc_info.value) == "launch_instance failed: Connection to endpoint timed out"
        assert exc_info.value.status is None

    def test_list_instances_connect_timeout(self, gateway: OciGateway) -> None:
        error = oci.exceptions.ConnectTimeout("Connection to endpoint timed out")
        with patch("oci.pagination.list_call_get_all_results", side_effect=error):
            with pytest.raises(GatewayError) as exc_info:
                gateway.list_instances("ocid1.compartment.oc1..x")
        assert exc_info.value.operation == "list_instances"

    def test_network_connect_timeout(self, gateway: OciGateway, clients: SimpleNamespace) -> None:
        clients.network.create_vcn.side_effect = oci.exceptions.ConnectTimeout("timed out")

        with pytest.raises(GatewayError):
            gateway.create_network_object(NetworkKind.VCN, object())
