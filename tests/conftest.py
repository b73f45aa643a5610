"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for redfish_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from redfish_controller.config import ControllerConfig  # noqa: E402
from redfish_controller.endpoint_lock import EndpointLockManager  # noqa: E402
from redfish_controller.models import RedfishServer  # noqa: E402
from redfish_controller.reconciler import Reconciler  # noqa: E402
from redfish_mock import MockBMC  # noqa: E402


@pytest.fixture
def bmc() -> MockBMC:
    """A 16G iDRAC with the host powered on."""
    return MockBMC()


@pytest.fixture
def server(bmc: MockBMC) -> RedfishServer:
    """Connection parameters for the bmc fixture."""
    return RedfishServer(endpoint=bmc.address, user="root", password="calvin")


@pytest.fixture
def config(tmp_path: Path) -> ControllerConfig:
    """Configuration with poll intervals short enough for tests."""
    return ControllerConfig(
        job_poll_interval_seconds=0.01,
        power_poll_interval_seconds=0.01,
        specs_dir=tmp_path,
    )


@pytest.fixture
def reconciler(config: ControllerConfig) -> Reconciler:
    """Reconciler with its own lock manager, isolated from other tests."""
    return Reconciler(config, lock_manager=EndpointLockManager())
