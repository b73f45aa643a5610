"""Redfish BMC mock for integration testing.

This module provides an in-memory Dell iDRAC that lets the reconciler run
end to end without a device.

Key Features:
- Resource documents for BIOS, boot, manager attributes, NIC, storage
  controller, volumes and AccountService, with their attribute registries
- Settings objects that stage changes until the host is reset
- Job and task progressions scripted per test
- Power state machine driven by ComputerSystem.Reset
- Manager restarts that drop the manager off the network for a few reads
- Failure injection per method and URI

Usage:
    from redfish_mock import MockBMC, MockRedfishContext

    bmc = MockBMC()
    with MockRedfishContext(bmc):
        result = await reconciler.reconcile_spec(spec)

    assert bmc.bios_attributes["LogicalProc"] == "Disabled"
"""

from .bmc import MockBMC, MockCall, MockJob
from .client import MockRedfishClient
from .context import MockRedfishContext

__all__ = [
    "MockBMC",
    "MockCall",
    "MockJob",
    "MockRedfishClient",
    "MockRedfishContext",
]
