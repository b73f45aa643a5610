"""Tests for Pydantic spec models."""

import pytest
from pydantic import ValidationError

from redfish_controller.models import (
    BiosSpec,
    BootOrderSpec,
    DellStorageControllerSettings,
    DirectoryServiceSpec,
    ManagerAttributesSpec,
    NICSpec,
    PowerSpec,
    RedfishServer,
    SecurityAction,
    StorageControllerSpec,
    get_spec_class,
)
from redfish_controller.payload import ApplyTimePolicy
from redfish_controller.power import ResetType


class TestRedfishServer:
    """Tests for RedfishServer model."""

    def test_to_endpoint(self) -> None:
        server = RedfishServer.model_validate(
            {"endpoint": "BMC-01.example.com", "user": "root", "password": "calvin", "sslInsecure": True}
        )

        endpoint = server.to_endpoint()
        assert endpoint.key == "bmc-01.example.com"
        assert endpoint.base_url == "https://BMC-01.example.com"
        assert endpoint.ssl_insecure is True

    def test_password_hidden(self) -> None:
        server = RedfishServer(endpoint="bmc", user="root", password="calvin")
        assert "calvin" not in repr(server)

    def test_endpoint_required(self) -> None:
        with pytest.raises(ValidationError):
            RedfishServer(endpoint="", user="root", password="calvin")


class TestBiosSpec:
    """Tests for BiosSpec model."""

    def test_defaults(self) -> None:
        spec = BiosSpec.model_validate({"attributes": {"LogicalProc": "Disabled"}})

        assert spec.kind == "Bios"
        assert spec.apply_time is ApplyTimePolicy.ON_RESET
        assert spec.reset_type is ResetType.FORCE_RESTART
        assert spec.job_timeout is None
        assert spec.reset_timeout is None

    def test_camel_case_fields(self) -> None:
        spec = BiosSpec.model_validate(
            {
                "applyTime": "AtMaintenanceWindowStart",
                "maintenanceWindow": {"startTime": "2026-11-01T02:00:00Z", "durationSeconds": 600},
                "resetType": "GracefulRestart",
                "jobTimeout": 60,
                "attributes": {"AcPwrRcvryUserDelay": 30},
            }
        )

        assert spec.apply_time is ApplyTimePolicy.AT_MAINTENANCE_WINDOW_START
        assert spec.maintenance_window is not None
        assert spec.maintenance_window.duration_seconds == 600
        assert spec.reset_type is ResetType.GRACEFUL_RESTART
        assert spec.job_timeout == 60

    def test_invalid_apply_time(self) -> None:
        with pytest.raises(ValidationError):
            BiosSpec.model_validate({"applyTime": "Eventually"})

    def test_non_positive_job_timeout(self) -> None:
        with pytest.raises(ValidationError):
            BiosSpec.model_validate({"jobTimeout": 0})


class TestBootOrderSpec:
    """Tests for BootOrderSpec model."""

    def test_duplicates_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            BootOrderSpec.model_validate({"bootOrder": ["Boot0000", "Boot0000"]})
        assert "duplicates" in str(exc_info.value)

    def test_boot_options(self) -> None:
        spec = BootOrderSpec.model_validate(
            {"bootOptions": [{"bootOptionReference": "Boot0001", "bootOptionEnabled": False}]}
        )
        assert spec.boot_options is not None
        assert spec.boot_options[0].boot_option_enabled is False


class TestManagerAttributesSpec:
    """Tests for ManagerAttributesSpec model."""

    def test_defaults_to_immediate(self) -> None:
        spec = ManagerAttributesSpec.model_validate({"attributes": {"WebServer.1.Timeout": 600}})
        assert spec.group == "iDRAC"
        assert spec.apply_time is ApplyTimePolicy.IMMEDIATE

    def test_unknown_group(self) -> None:
        with pytest.raises(ValidationError):
            ManagerAttributesSpec.model_validate({"group": "BMC"})


class TestNICSpec:
    """Tests for NICSpec model."""

    def test_network_attributes_to_redfish(self) -> None:
        spec = NICSpec.model_validate(
            {
                "networkAdapterId": "NIC.Integrated.1",
                "networkDeviceFunctionId": "NIC.Integrated.1-1-1",
                "networkAttributes": {"ethernet": {"MTUSize": 9000}, "iscsiBoot": None},
            }
        )
        assert spec.network_attributes is not None
        assert spec.network_attributes.to_redfish() == {
            "Ethernet": {"MTUSize": 9000},
            "FibreChannel": None,
            "iSCSIBoot": None,
            "NetDevFuncType": None,
        }

    def test_ids_required(self) -> None:
        with pytest.raises(ValidationError):
            NICSpec.model_validate({"networkAdapterId": "NIC.Integrated.1"})


class TestStorageControllerSpec:
    """Tests for StorageControllerSpec model."""

    def test_settings_to_redfish(self) -> None:
        settings = DellStorageControllerSettings(controller_mode="HBA", patrol_read_mode="Manual")
        document = settings.to_redfish()

        assert document["ControllerMode"] == "HBA"
        assert document["PatrolReadMode"] == "Manual"
        assert document["CheckConsistencyMode"] is None

    def test_security(self) -> None:
        spec = StorageControllerSpec.model_validate(
            {
                "storageId": "RAID.Integrated.1-1",
                "controllerId": "RAID.Integrated.1-1",
                "security": {"action": "SetControllerKey", "keyId": "key-1", "key": "Passw0rd!"},
            }
        )
        assert spec.security is not None
        assert spec.security.action is SecurityAction.SET_CONTROLLER_KEY
        assert "Passw0rd!" not in repr(spec)

    def test_rate_bounds(self) -> None:
        with pytest.raises(ValidationError):
            StorageControllerSpec.model_validate(
                {
                    "storageId": "RAID.Integrated.1-1",
                    "controllerId": "RAID.Integrated.1-1",
                    "controllerRates": {"rebuildRatePercent": 101},
                }
            )


class TestDirectoryServiceSpec:
    """Tests for DirectoryServiceSpec model."""

    def test_provider_required(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            DirectoryServiceSpec.model_validate({})
        assert "one of active_directory or ldap is required" in str(exc_info.value)

    def test_variants(self) -> None:
        spec = DirectoryServiceSpec.model_validate(
            {
                "activeDirectory": {
                    "serviceEnabled": True,
                    "remoteRoleMapping": [{"remoteGroup": "admins", "localRole": "Administrator"}],
                },
                "ldap": {"serviceEnabled": False},
            }
        )

        variants = spec.variants()
        assert [variant.type for variant in variants] == ["ActiveDirectory", "LDAP"]
        assert variants[0].to_redfish()["RemoteRoleMapping"] == [
            {"RemoteGroup": "admins", "LocalRole": "Administrator"}
        ]


class TestPowerSpec:
    """Tests for PowerSpec model."""

    def test_valid(self) -> None:
        spec = PowerSpec.model_validate({"desiredPowerAction": "ForceOff", "maximumWaitTime": 60})
        assert spec.desired_power_action is ResetType.FORCE_OFF
        assert spec.maximum_wait_time == 60

    def test_interval_cannot_exceed_wait(self) -> None:
        with pytest.raises(ValidationError):
            PowerSpec.model_validate(
                {"desiredPowerAction": "On", "maximumWaitTime": 5, "checkInterval": 10}
            )


class TestSpecRegistry:
    """Tests for get_spec_class."""

    @pytest.mark.parametrize(
        ("kind", "spec_class"),
        [
            ("Bios", BiosSpec),
            ("BootOrder", BootOrderSpec),
            ("ManagerAttributes", ManagerAttributesSpec),
            ("NIC", NICSpec),
            ("StorageController", StorageControllerSpec),
            ("DirectoryService", DirectoryServiceSpec),
            ("Power", PowerSpec),
        ],
    )
    def test_known_kinds(self, kind: str, spec_class: type) -> None:
        assert get_spec_class(kind) is spec_class

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError) as exc_info:
            get_spec_class("Firmware")
        assert "Unknown resource kind 'Firmware'" in str(exc_info.value)
