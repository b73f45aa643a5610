"""Integration tests for network device function reconciliation."""

from __future__ import annotations

from typing import Any

import pytest
from redfish_mock import MockBMC, MockRedfishContext
from redfish_mock.bmc import (
    CLEAR_PENDING_URI,
    NIC_ADAPTER_ID,
    NIC_FUNCTION_ID,
    NIC_FUNCTION_URI,
    NIC_OEM_SETTINGS_URI,
    NIC_OEM_URI,
    NIC_SETTINGS_URI,
)

from redfish_controller.errors import (
    ConstraintViolation,
    StateReadError,
    UnsupportedApplyTime,
    ValidationRuleViolation,
)
from redfish_controller.models import (
    NetworkAttributes,
    NICSpec,
    OemNetworkAttributes,
    RedfishServer,
)
from redfish_controller.nic import NETWORK_GROUP, OEM_GROUP
from redfish_controller.payload import SETTINGS_APPLY_TIME_KEY, ApplyTimePolicy
from redfish_controller.reconciler import ReconcilePhase, Reconciler


def nic_spec(server: RedfishServer, **kwargs: Any) -> NICSpec:
    return NICSpec(
        redfish_server=server,
        network_adapter_id=NIC_ADAPTER_ID,
        network_device_function_id=NIC_FUNCTION_ID,
        **kwargs,
    )


class TestOemNetworkAttributes:
    """Tests for the Dell registry-typed network attribute group."""

    @pytest.mark.asyncio
    async def test_oem_attributes_on_reset(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(
            server,
            oem_network_attributes=OemNetworkAttributes(
                attributes={"WakeOnLan": "Enabled", "VLanId": "100", "BlnkLeds": 0}
            ),
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert result.success, result.error
        assert result.diff == {OEM_GROUP: {"WakeOnLan": "Enabled", "VLanId": 100}}
        patch = bmc.calls_to("PATCH", NIC_OEM_SETTINGS_URI)[0]
        assert patch.body == {
            "Attributes": {"WakeOnLan": "Enabled", "VLanId": 100},
            SETTINGS_APPLY_TIME_KEY: {"ApplyTime": "OnReset"},
        }
        assert bmc.resets == ["ForceRestart"]
        assert ReconcilePhase.POLLING in result.phases
        assert result.final_state is not None
        assert result.final_state[OEM_GROUP]["VLanId"] == 100

    @pytest.mark.asyncio
    async def test_clear_pending_with_nothing_pending(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        """The device's "no pending data" answer is not a failure."""
        spec = nic_spec(
            server,
            apply_time=ApplyTimePolicy.IMMEDIATE,
            oem_network_attributes=OemNetworkAttributes(
                attributes={"BlnkLeds": 5}, clear_pending=True
            ),
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert result.success, result.error
        assert [call.uri for call in bmc.writes] == [CLEAR_PENDING_URI, NIC_OEM_SETTINGS_URI]
        assert result.submissions == 1
        assert bmc.documents[NIC_OEM_URI]["Attributes"]["BlnkLeds"] == 5

    @pytest.mark.asyncio
    async def test_vlan_out_of_bounds(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(
            server, oem_network_attributes=OemNetworkAttributes(attributes={"VLanId": 5000})
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert isinstance(result.error, ConstraintViolation)
        assert "above the upper bound 4094" in str(result.error)
        assert bmc.writes == []

    @pytest.mark.asyncio
    async def test_read_only_attribute(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(
            server, oem_network_attributes=OemNetworkAttributes(attributes={"ChipMdl": "X710"})
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert isinstance(result.error, ConstraintViolation)
        assert result.error.attribute == "ChipMdl"

    @pytest.mark.asyncio
    async def test_missing_dell_link(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        del bmc.documents[NIC_FUNCTION_URI]["Links"]
        spec = nic_spec(
            server, oem_network_attributes=OemNetworkAttributes(attributes={"WakeOnLan": "Enabled"})
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert isinstance(result.error, StateReadError)
        assert "DellNetworkAttributes" in str(result.error)


class TestNetworkAttributes:
    """Tests for the standard network function settings group."""

    @pytest.mark.asyncio
    async def test_mtu_change(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(server, network_attributes=NetworkAttributes(ethernet={"MTUSize": 9000}))

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert result.success, result.error
        assert result.diff == {NETWORK_GROUP: {"Ethernet": {"MTUSize": 9000}}}
        patch = bmc.calls_to("PATCH", NIC_SETTINGS_URI)[0]
        assert patch.body == {
            "Ethernet": {"MTUSize": 9000},
            SETTINGS_APPLY_TIME_KEY: {"ApplyTime": "OnReset"},
        }
        assert bmc.resets == ["ForceRestart"]
        assert bmc.documents[NIC_FUNCTION_URI]["Ethernet"]["MTUSize"] == 9000
        assert bmc.documents[NIC_FUNCTION_URI]["Ethernet"]["VLAN"]["VLANId"] == 1

    @pytest.mark.asyncio
    async def test_matching_settings_are_noop(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(
            server,
            network_attributes=NetworkAttributes(
                ethernet={"MTUSize": 1500, "VLAN": {"VLANEnable": False}},
                net_dev_func_type="Ethernet",
            ),
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert result.success
        assert not result.changed
        assert bmc.writes == []

    @pytest.mark.asyncio
    async def test_immediate_rejected(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(
            server,
            apply_time=ApplyTimePolicy.IMMEDIATE,
            network_attributes=NetworkAttributes(ethernet={"MTUSize": 9000}),
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert isinstance(result.error, UnsupportedApplyTime)
        assert result.error.group == NETWORK_GROUP
        assert bmc.writes == []

    @pytest.mark.asyncio
    async def test_both_groups_rejected(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = nic_spec(
            server,
            network_attributes=NetworkAttributes(ethernet={"MTUSize": 9000}),
            oem_network_attributes=OemNetworkAttributes(attributes={"WakeOnLan": "Enabled"}),
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert isinstance(result.error, ValidationRuleViolation)
        assert result.error.rule == "nic_attribute_groups"
        assert bmc.writes == []

    @pytest.mark.asyncio
    async def test_one_group_changing_is_allowed(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        """Both groups may be declared as long as only one differs."""
        spec = nic_spec(
            server,
            network_attributes=NetworkAttributes(ethernet={"MTUSize": 9000}),
            oem_network_attributes=OemNetworkAttributes(attributes={"WakeOnLan": "Disabled"}),
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert result.success, result.error
        assert list(result.diff) == [NETWORK_GROUP]
        assert bmc.calls_to("PATCH", NIC_OEM_SETTINGS_URI) == []
