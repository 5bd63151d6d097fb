"""Pytest configuration and fixtures."""

import logging
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for oci_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from oci_mock import DEFAULT_COMPARTMENT  # noqa: E402

from provisioner.models import ProvisionSpec  # noqa: E402

TEST_PUBLIC_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQDtest test@example"


class RecordingSleeper:
    """Sleeper that returns immediately and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_spec_data(**sections: dict) -> dict:
    """Minimal valid configuration document, with sections merged in."""
    data: dict = {
        "oci": {
            "region": "us-ashburn-1",
            "compartment_ocid": DEFAULT_COMPARTMENT,
        },
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    return data


@pytest.fixture
def spec_data() -> dict:
    return make_spec_data()


@pytest.fixture
def spec(spec_data: dict) -> ProvisionSpec:
    return ProvisionSpec.model_validate(spec_data)


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def fixed_clock():
    """Clock pinned to 12:00 local time (outside the default peak window)."""
    moment = datetime(2024, 6, 1, 12, 0, 0).astimezone()
    return lambda: moment


@pytest.fixture
def restore_root_logging():
    """Undo setup_logging() handler and level changes after the test."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(saved_level)
