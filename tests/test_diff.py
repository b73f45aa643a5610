"""Tests for desired/current comparison."""

from __future__ import annotations

import pytest
from redfish_mock.bmc import BIOS_REGISTRY

from redfish_controller.diff import attribute_diff, prune_none, select, structural_diff
from redfish_controller.errors import TypeCoercionError, UnknownAttribute
from redfish_controller.registry import AttributeRegistry


@pytest.fixture
def registry() -> AttributeRegistry:
    return AttributeRegistry.from_document(
        "BiosAttributeRegistry", {"RegistryEntries": {"Attributes": BIOS_REGISTRY}}
    )


class TestAttributeDiff:
    """Tests for attribute_diff."""

    @pytest.mark.parametrize("desired", [10, "10"])
    def test_string_current_matches_int_desired(
        self, registry: AttributeRegistry, desired: object
    ) -> None:
        """A device string "10" equals a desired 10 or "10" for an Integer attribute."""
        diff = attribute_diff({"AcPwrRcvryUserDelay": desired}, {"AcPwrRcvryUserDelay": "10"}, registry)

        assert diff == {}

    def test_changed_integer_is_included(self, registry: AttributeRegistry) -> None:
        diff = attribute_diff({"AcPwrRcvryUserDelay": 11}, {"AcPwrRcvryUserDelay": "10"}, registry)

        assert diff == {"AcPwrRcvryUserDelay": 11}

    def test_diff_carries_coerced_value(self, registry: AttributeRegistry) -> None:
        diff = attribute_diff({"AcPwrRcvryUserDelay": "30"}, {"AcPwrRcvryUserDelay": 10}, registry)

        assert diff == {"AcPwrRcvryUserDelay": 30}

    def test_only_changed_entries(self, registry: AttributeRegistry) -> None:
        desired = {"LogicalProc": "Enabled", "SriovGlobalEnable": "Enabled"}
        current = {"LogicalProc": "Enabled", "SriovGlobalEnable": "Disabled"}

        assert attribute_diff(desired, current, registry) == {"SriovGlobalEnable": "Enabled"}

    def test_null_current_always_differs(self, registry: AttributeRegistry) -> None:
        """Write-only attributes read back as null and are always submitted."""
        diff = attribute_diff({"SetupPassword": "s3cret"}, {"SetupPassword": None}, registry)

        assert diff == {"SetupPassword": "s3cret"}

    def test_unknown_attribute(self, registry: AttributeRegistry) -> None:
        with pytest.raises(UnknownAttribute):
            attribute_diff({"NotInRegistry": "x"}, {}, registry)

    def test_unparseable_current_value(self, registry: AttributeRegistry) -> None:
        """A current value that does not parse is an error, never a string comparison."""
        with pytest.raises(TypeCoercionError):
            attribute_diff({"AcPwrRcvryUserDelay": 10}, {"AcPwrRcvryUserDelay": "ten"}, registry)


class TestStructuralDiff:
    """Tests for structural_diff."""

    def test_nested_leaves_only(self) -> None:
        desired = {"Ethernet": {"MTUSize": 9000, "VLAN": {"VLANEnable": True, "VLANId": 1}}}
        current = {"Ethernet": {"MTUSize": 1500, "MACAddress": "x", "VLAN": {"VLANEnable": False, "VLANId": 1}}}

        assert structural_diff(desired, current) == {
            "Ethernet": {"MTUSize": 9000, "VLAN": {"VLANEnable": True}}
        }

    def test_none_is_unmanaged(self) -> None:
        assert structural_diff({"A": None, "B": 1}, {"A": 5, "B": 1}) == {}

    def test_lists_compared_whole(self) -> None:
        desired = {"ServiceAddresses": ["dc1", "dc2"]}
        assert structural_diff(desired, {"ServiceAddresses": ["dc2", "dc1"]}) == desired
        assert structural_diff(desired, {"ServiceAddresses": ["dc1", "dc2"]}) == {}

    def test_missing_nested_document_is_pruned(self) -> None:
        desired = {"Authentication": {"KerberosKeytab": "abc", "Other": None}}

        assert structural_diff(desired, {}) == {"Authentication": {"KerberosKeytab": "abc"}}


def test_prune_none() -> None:
    assert prune_none({"A": None, "B": {"C": None}, "D": {"E": 1}}) == {"D": {"E": 1}}


def test_select_projects_desired_keys() -> None:
    current = {"A": 1, "B": {"C": 2, "D": 3}, "E": 4}

    assert select(current, {"A": None, "B": {"C": None}, "Z": None}) == {"A": 1, "B": {"C": 2}}
