"""Tests for the network find-or-create resolver."""

from __future__ import annotations

import pytest
from conftest import RecordingSleeper
from oci.core.models import CreateVcnDetails
from oci_mock import DEFAULT_COMPARTMENT, MockGateway, MockOciState

from provisioner.gateway import NetworkKind
from provisioner.models import ProvisionSpec
from provisioner.network import (
    ROUTE_TABLE,
    SUBNET,
    TOPOLOGY_ORDER,
    VCN,
    BuildContext,
    NetworkResolver,
    NetworkSetupError,
)

TAGS = {"ManagedBy": "A1RetryScript"}


def _vcn_details(name: str = "ampere-vcn") -> CreateVcnDetails:
    return CreateVcnDetails(
        compartment_id=DEFAULT_COMPARTMENT, display_name=name, cidr_block="10.10.0.0/16"
    )


def _resolver(gateway: MockGateway, sleeper: RecordingSleeper, **kwargs: float) -> NetworkResolver:
    return NetworkResolver(gateway, DEFAULT_COMPARTMENT, TAGS, sleeper=sleeper, **kwargs)


class TestResourceKinds:
    """Tests for the per-kind descriptors."""

    def test_order_matches_dependencies(self) -> None:
        assert [kind.kind for kind in TOPOLOGY_ORDER] == [
            NetworkKind.VCN,
            NetworkKind.INTERNET_GATEWAY,
            NetworkKind.ROUTE_TABLE,
            NetworkKind.SECURITY_LIST,
            NetworkKind.SUBNET,
        ]
        assert [kind.in_vcn for kind in TOPOLOGY_ORDER] == [False, True, True, True, True]

    def test_names_from_settings(self, spec: ProvisionSpec) -> None:
        assert VCN.name_of(spec.network) == spec.network.vcn.display_name
        assert SUBNET.name_of(spec.network) == spec.network.subnet.display_name

    def test_builders_use_resolved_ids(self, spec: ProvisionSpec) -> None:
        context = BuildContext(DEFAULT_COMPARTMENT, TAGS, spec.network)
        context.resolved[NetworkKind.VCN] = "ocid1.vcn.oc1..v"
        context.resolved[NetworkKind.INTERNET_GATEWAY] = "ocid1.internetgateway.oc1..g"
        context.resolved[NetworkKind.ROUTE_TABLE] = "ocid1.routetable.oc1..r"
        context.resolved[NetworkKind.SECURITY_LIST] = "ocid1.securitylist.oc1..s"

        route_table = ROUTE_TABLE.build_details(context)
        subnet = SUBNET.build_details(context)

        assert route_table.vcn_id == "ocid1.vcn.oc1..v"
        assert route_table.route_rules[0].network_entity_id == "ocid1.internetgateway.oc1..g"
        assert subnet.route_table_id == "ocid1.routetable.oc1..r"
        assert subnet.security_list_ids == ["ocid1.securitylist.oc1..s"]
        assert subnet.cidr_block == spec.network.subnet.cidr_block
        assert subnet.freeform_tags == TAGS


class TestResolve:
    """Tests for the generic resolve operation."""

    @pytest.mark.asyncio
    async def test_second_resolve_reuses(self, sleeper: RecordingSleeper) -> None:
        """Resolving the same name twice creates once and reuses once."""
        gateway = MockGateway()
        resolver = _resolver(gateway, sleeper)

        first = await resolver.resolve(VCN, "ampere-vcn", _vcn_details())
        second = await resolver.resolve(VCN, "ampere-vcn", _vcn_details())

        assert first == second
        assert gateway.state.create_calls == [NetworkKind.VCN]
        assert resolver.stats.created == ["vcn"]
        assert resolver.stats.reused == ["vcn"]

    @pytest.mark.asyncio
    async def test_terminated_object_not_reused(self, sleeper: RecordingSleeper) -> None:
        state = MockOciState()
        dead = state.add_network(NetworkKind.VCN, "ampere-vcn", lifecycle_state="TERMINATED")
        gateway = MockGateway(state)

        vcn_id = await _resolver(gateway, sleeper).resolve(VCN, "ampere-vcn", _vcn_details())

        assert vcn_id != dead.id
        assert state.create_calls == [NetworkKind.VCN]

    @pytest.mark.asyncio
    async def test_child_requires_vcn(self, sleeper: RecordingSleeper) -> None:
        with pytest.raises(NetworkSetupError):
            await _resolver(MockGateway(), sleeper).resolve(SUBNET, "ampere-subnet", object())

    @pytest.mark.asyncio
    async def test_waits_until_available(self, sleeper: RecordingSleeper) -> None:
        state = MockOciState(created_polls_until_available=2)
        gateway = MockGateway(state)

        await _resolver(gateway, sleeper, poll_interval_seconds=3).resolve(
            VCN, "ampere-vcn", _vcn_details()
        )

        assert gateway.call_count("get_network_object") == 2
        assert sleeper.delays == [3, 3]

    @pytest.mark.asyncio
    async def test_readiness_timeout(self, sleeper: RecordingSleeper) -> None:
        state = MockOciState(created_polls_until_available=1000)

        with pytest.raises(NetworkSetupError) as exc_info:
            await _resolver(MockGateway(state), sleeper, ready_timeout_seconds=0).resolve(
                VCN, "ampere-vcn", _vcn_details()
            )

        assert "not available" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_create_failure_is_fatal(self, sleeper: RecordingSleeper) -> None:
        state = MockOciState(fail_network_create=NetworkKind.VCN)

        with pytest.raises(NetworkSetupError) as exc_info:
            await _resolver(MockGateway(state), sleeper).resolve(VCN, "ampere-vcn", _vcn_details())

        assert "LimitExceeded" in str(exc_info.value)


class TestEnsureTopology:
    """Tests for resolving the full topology."""

    @pytest.mark.asyncio
    async def test_creates_in_dependency_order(
        self, spec: ProvisionSpec, sleeper: RecordingSleeper
    ) -> None:
        gateway = MockGateway()

        topology = await _resolver(gateway, sleeper).ensure_topology(spec.network)

        assert gateway.state.create_calls == [
            NetworkKind.VCN,
            NetworkKind.INTERNET_GATEWAY,
            NetworkKind.ROUTE_TABLE,
            NetworkKind.SECURITY_LIST,
            NetworkKind.SUBNET,
        ]
        records = gateway.state.networks
        route_table = records[topology.route_table_id].details
        assert route_table.route_rules[0].destination == "0.0.0.0/0"
        assert route_table.route_rules[0].network_entity_id == topology.internet_gateway_id

        security_list = records[topology.security_list_id].details
        ingress = security_list.ingress_security_rules[0]
        assert ingress.protocol == "6"
        assert ingress.tcp_options.destination_port_range.min == 22
        assert ingress.tcp_options.destination_port_range.max == 22
        assert security_list.egress_security_rules[0].protocol == "all"

        subnet = records[topology.subnet_id]
        assert subnet.vcn_id == topology.vcn_id
        assert subnet.details.route_table_id == topology.route_table_id
        assert subnet.details.security_list_ids == [topology.security_list_id]
        assert subnet.obj.freeform_tags == TAGS

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(
        self, spec: ProvisionSpec, sleeper: RecordingSleeper
    ) -> None:
        gateway = MockGateway()
        first = await _resolver(gateway, sleeper).ensure_topology(spec.network)
        gateway.state.create_calls.clear()

        second_resolver = _resolver(gateway, sleeper)
        second = await second_resolver.ensure_topology(spec.network)

        assert second == first
        assert gateway.state.create_calls == []
        assert len(second_resolver.stats.reused) == 5

    @pytest.mark.asyncio
    async def test_reuses_manually_created_untagged_vcn(
        self, spec: ProvisionSpec, sleeper: RecordingSleeper
    ) -> None:
        """Lookups match by name only, never by tag."""
        state = MockOciState()
        existing = state.add_network(NetworkKind.VCN, "ampere-vcn")
        gateway = MockGateway(state)

        topology = await _resolver(gateway, sleeper).ensure_topology(spec.network)

        assert topology.vcn_id == existing.id
        assert NetworkKind.VCN not in state.create_calls

    @pytest.mark.asyncio
    async def test_same_name_in_other_vcn_not_reused(
        self, spec: ProvisionSpec, sleeper: RecordingSleeper
    ) -> None:
        state = MockOciState()
        state.add_network(NetworkKind.VCN, "ampere-vcn")
        foreign = state.add_network(
            NetworkKind.SUBNET, "ampere-subnet", vcn_id="ocid1.vcn.oc1..elsewhere"
        )
        gateway = MockGateway(state)

        topology = await _resolver(gateway, sleeper).ensure_topology(spec.network)

        assert topology.subnet_id != foreign.id
