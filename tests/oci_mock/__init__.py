"""OCI API Mock for Integration Testing.

This module provides an in-memory implementation of the provider gateway
that enables testing the provisioning engine without OCI connectivity.

Key Features:
- In-memory state for network objects, instances, images and VNICs
- Network objects that become AVAILABLE after a configurable number of polls
- Launch outcome queue for scripting capacity and fatal errors
- Error injection for auth, compartment, AD listing and instance listing

Usage:
    from oci_mock import MockGateway, MockOciState, capacity_error

    state = MockOciState()
    state.launch_outcomes.extend([capacity_error(), None])
    gateway = MockGateway(state)

    reconciler = ProvisionReconciler(spec, gateway, public_key, sleeper=fake_sleep)
    result = await reconciler.run()

    assert len(state.launch_requests) == 2
"""

from .gateway import LAUNCHED_PRIVATE_IP, LAUNCHED_PUBLIC_IP, MockGateway
from .state import (
    DEFAULT_ADS,
    DEFAULT_COMPARTMENT,
    MockNetworkRecord,
    MockOciState,
    capacity_error,
    fatal_error,
)

__all__ = [
    "DEFAULT_ADS",
    "DEFAULT_COMPARTMENT",
    "LAUNCHED_PRIVATE_IP",
    "LAUNCHED_PUBLIC_IP",
    "MockGateway",
    "MockNetworkRecord",
    "MockOciState",
    "capacity_error",
    "fatal_error",
]
