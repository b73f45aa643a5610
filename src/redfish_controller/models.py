"""Pydantic models for desired-state specifications.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Translation of snake_case spec fields to Redfish document fields
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .payload import ApplyTimePolicy, MaintenanceWindow
from .power import ResetType
from .redfish_client import ManagedEndpoint

AttributeValue = str | int | bool

# =============================================================================
# Base Models
# =============================================================================


class RedfishServer(BaseModel):
    """Connection parameters for one BMC."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    endpoint: Annotated[str, Field(min_length=1)]
    user: Annotated[str, Field(min_length=1)]
    password: str = Field(repr=False)
    ssl_insecure: bool = Field(False, alias="sslInsecure")

    def to_endpoint(self) -> ManagedEndpoint:
        return ManagedEndpoint(
            address=self.endpoint,
            username=self.user,
            password=self.password,
            ssl_insecure=self.ssl_insecure,
        )


class ResourceSpec(BaseModel):
    """Common fields of every reconciled resource."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    kind: ClassVar[str] = ""

    redfish_server: RedfishServer | None = Field(None, alias="redfishServer")
    system_id: str | None = Field(None, alias="systemId")

    apply_time: ApplyTimePolicy = Field(ApplyTimePolicy.ON_RESET, alias="applyTime")
    maintenance_window: MaintenanceWindow | None = Field(None, alias="maintenanceWindow")

    # Reboot-to-apply parameters, used when apply_time is OnReset
    reset_type: ResetType = Field(ResetType.FORCE_RESTART, alias="resetType")
    # Unset timeouts fall back to RESET_TIMEOUT / JOB_TIMEOUT, then the resource default
    reset_timeout: Annotated[int | None, Field(gt=0, alias="resetTimeout")] = None
    job_timeout: Annotated[int | None, Field(gt=0, alias="jobTimeout")] = None


# =============================================================================
# BIOS and boot order
# =============================================================================


class BiosSpec(ResourceSpec):
    """BIOS attributes of a ComputerSystem."""

    kind: ClassVar[str] = "Bios"

    attributes: dict[str, AttributeValue] = Field(default_factory=dict)


class BootOptionSpec(BaseModel):
    """Enablement of one BootOptions member."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    boot_option_reference: Annotated[str, Field(min_length=1, alias="bootOptionReference")]
    boot_option_enabled: bool = Field(alias="bootOptionEnabled")


class BootOrderSpec(ResourceSpec):
    """Boot order and boot option enablement of a ComputerSystem."""

    kind: ClassVar[str] = "BootOrder"

    boot_order: list[str] | None = Field(None, alias="bootOrder")
    boot_options: list[BootOptionSpec] | None = Field(None, alias="bootOptions")

    @field_validator("boot_order")
    @classmethod
    def validate_boot_order(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and len(set(v)) != len(v):
            raise ValueError("boot_order must not contain duplicates")
        return v


# =============================================================================
# Manager (iDRAC) attributes
# =============================================================================


class ManagerAttributesSpec(ResourceSpec):
    """Dell manager attribute group (iDRAC, LifecycleController or System)."""

    kind: ClassVar[str] = "ManagerAttributes"

    group: Literal["iDRAC", "LifecycleController", "System"] = "iDRAC"
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    apply_time: ApplyTimePolicy = Field(ApplyTimePolicy.IMMEDIATE, alias="applyTime")


# =============================================================================
# Network adapter
# =============================================================================


class OemNetworkAttributes(BaseModel):
    """Registry-typed Dell network attributes."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    clear_pending: bool = Field(False, alias="clearPending")


class NetworkAttributes(BaseModel):
    """Standard NetworkDeviceFunction settings."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    ethernet: dict[str, Any] | None = None
    fibre_channel: dict[str, Any] | None = Field(None, alias="fibreChannel")
    iscsi_boot: dict[str, Any] | None = Field(None, alias="iscsiBoot")
    net_dev_func_type: str | None = Field(None, alias="netDevFuncType")

    def to_redfish(self) -> dict[str, Any]:
        return {
            "Ethernet": self.ethernet,
            "FibreChannel": self.fibre_channel,
            "iSCSIBoot": self.iscsi_boot,
            "NetDevFuncType": self.net_dev_func_type,
        }


class NICSpec(ResourceSpec):
    """One network device function of a network adapter."""

    kind: ClassVar[str] = "NIC"

    network_adapter_id: Annotated[str, Field(min_length=1, alias="networkAdapterId")]
    network_device_function_id: Annotated[
        str, Field(min_length=1, alias="networkDeviceFunctionId")
    ]
    oem_network_attributes: OemNetworkAttributes | None = Field(
        None, alias="oemNetworkAttributes"
    )
    network_attributes: NetworkAttributes | None = Field(None, alias="networkAttributes")


# =============================================================================
# Storage controller
# =============================================================================


class ControllerRates(BaseModel):
    """Standard StorageController.ControllerRates."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    consistency_check_rate_percent: Annotated[
        int | None, Field(ge=0, le=100, alias="consistencyCheckRatePercent")
    ] = None
    rebuild_rate_percent: Annotated[int | None, Field(ge=0, le=100, alias="rebuildRatePercent")] = (
        None
    )

    def to_redfish(self) -> dict[str, Any]:
        return {
            "ConsistencyCheckRatePercent": self.consistency_check_rate_percent,
            "RebuildRatePercent": self.rebuild_rate_percent,
        }


# snake_case spec field -> Oem.Dell.DellStorageController field
STORAGE_CONTROLLER_FIELDS: dict[str, str] = {
    "controller_mode": "ControllerMode",
    "check_consistency_mode": "CheckConsistencyMode",
    "copyback_mode": "CopybackMode",
    "load_balance_mode": "LoadBalanceMode",
    "enhanced_auto_import_foreign_configuration_mode": "EnhancedAutoImportForeignConfigurationMode",
    "patrol_read_unconfigured_area_mode": "PatrolReadUnconfiguredAreaMode",
    "patrol_read_mode": "PatrolReadMode",
    "background_initialization_rate_percent": "BackgroundInitializationRatePercent",
    "reconstruct_rate_percent": "ReconstructRatePercent",
}


class DellStorageControllerSettings(BaseModel):
    """Oem.Dell.DellStorageController settings."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    controller_mode: Literal["RAID", "HBA", "EnhancedHBA"] | None = Field(
        None, alias="controllerMode"
    )
    check_consistency_mode: Literal["Normal", "StopOnError"] | None = Field(
        None, alias="checkConsistencyMode"
    )
    copyback_mode: Literal["On", "OnWithSMART", "Off"] | None = Field(None, alias="copybackMode")
    load_balance_mode: Literal["Automatic", "Disabled"] | None = Field(
        None, alias="loadBalanceMode"
    )
    enhanced_auto_import_foreign_configuration_mode: Literal["Enabled", "Disabled"] | None = Field(
        None, alias="enhancedAutoImportForeignConfigurationMode"
    )
    patrol_read_unconfigured_area_mode: Literal["Enabled", "Disabled"] | None = Field(
        None, alias="patrolReadUnconfiguredAreaMode"
    )
    patrol_read_mode: Literal["Automatic", "Manual", "Disabled"] | None = Field(
        None, alias="patrolReadMode"
    )
    background_initialization_rate_percent: Annotated[
        int | None, Field(ge=0, le=100, alias="backgroundInitializationRatePercent")
    ] = None
    reconstruct_rate_percent: Annotated[
        int | None, Field(ge=0, le=100, alias="reconstructRatePercent")
    ] = None

    def to_redfish(self) -> dict[str, Any]:
        return {
            redfish_name: getattr(self, field_name)
            for field_name, redfish_name in STORAGE_CONTROLLER_FIELDS.items()
        }


class SecurityAction(str, Enum):
    """DellRaidService security actions."""

    SET_CONTROLLER_KEY = "SetControllerKey"
    RE_KEY = "ReKey"
    REMOVE_CONTROLLER_KEY = "RemoveControllerKey"
    ENABLE_SECURITY = "EnableSecurity"
    DISABLE_SECURITY = "DisableSecurity"


class StorageSecuritySpec(BaseModel):
    """Controller encryption key action."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    action: SecurityAction
    key_id: str | None = Field(None, alias="keyId")
    key: str | None = Field(None, repr=False)
    old_key: str | None = Field(None, alias="oldKey", repr=False)
    mode: Literal["LKM", "SEKM"] | None = None


class StorageControllerSpec(ResourceSpec):
    """Settings and security of one storage controller."""

    kind: ClassVar[str] = "StorageController"

    storage_id: Annotated[str, Field(min_length=1, alias="storageId")]
    controller_id: Annotated[str, Field(min_length=1, alias="controllerId")]
    controller_rates: ControllerRates | None = Field(None, alias="controllerRates")
    storage_controller: DellStorageControllerSettings | None = Field(
        None, alias="storageController"
    )
    security: StorageSecuritySpec | None = None


# =============================================================================
# Directory service
# =============================================================================


class RemoteRoleMapping(BaseModel):
    """Directory group to local role mapping."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    remote_group: Annotated[str, Field(min_length=1, alias="remoteGroup")]
    local_role: Annotated[str, Field(min_length=1, alias="localRole")]

    def to_redfish(self) -> dict[str, Any]:
        return {"RemoteGroup": self.remote_group, "LocalRole": self.local_role}


class DirectoryProviderConfig(BaseModel):
    """Fields shared by Active Directory and LDAP."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    service_enabled: bool | None = Field(None, alias="serviceEnabled")
    service_addresses: list[str] | None = Field(None, alias="serviceAddresses")
    remote_role_mapping: list[RemoteRoleMapping] | None = Field(None, alias="remoteRoleMapping")

    # Companion iDRAC attributes (e.g. ActiveDirectory.1.AuthTimeout)
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)

    def _service_document(self) -> dict[str, Any]:
        mapping = None
        if self.remote_role_mapping is not None:
            mapping = [entry.to_redfish() for entry in self.remote_role_mapping]
        return {
            "ServiceEnabled": self.service_enabled,
            "ServiceAddresses": self.service_addresses,
            "RemoteRoleMapping": mapping,
        }


class ActiveDirectoryConfig(DirectoryProviderConfig):
    """AccountService.ActiveDirectory."""

    type: Literal["ActiveDirectory"] = "ActiveDirectory"
    kerberos_keytab: str | None = Field(None, alias="kerberosKeytab", repr=False)

    def to_redfish(self) -> dict[str, Any]:
        document = self._service_document()
        if self.kerberos_keytab is not None:
            document["Authentication"] = {"KerberosKeytab": self.kerberos_keytab}
        return document


class LDAPSearchSettings(BaseModel):
    """LDAPService.SearchSettings."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    base_distinguished_names: list[str] | None = Field(None, alias="baseDistinguishedNames")
    username_attribute: str | None = Field(None, alias="usernameAttribute")
    group_name_attribute: str | None = Field(None, alias="groupNameAttribute")

    def to_redfish(self) -> dict[str, Any]:
        return {
            "BaseDistinguishedNames": self.base_distinguished_names,
            "UsernameAttribute": self.username_attribute,
            "GroupNameAttribute": self.group_name_attribute,
        }


class LDAPConfig(DirectoryProviderConfig):
    """AccountService.LDAP."""

    type: Literal["LDAP"] = "LDAP"
    search_settings: LDAPSearchSettings | None = Field(None, alias="searchSettings")

    def to_redfish(self) -> dict[str, Any]:
        document = self._service_document()
        if self.search_settings is not None:
            document["LDAPService"] = {"SearchSettings": self.search_settings.to_redfish()}
        return document


class DirectoryServiceSpec(ResourceSpec):
    """Directory service auth provider (Active Directory or LDAP)."""

    kind: ClassVar[str] = "DirectoryService"

    active_directory: ActiveDirectoryConfig | None = Field(None, alias="activeDirectory")
    ldap: LDAPConfig | None = None
    apply_time: ApplyTimePolicy = Field(ApplyTimePolicy.IMMEDIATE, alias="applyTime")

    @model_validator(mode="after")
    def validate_provider_present(self) -> DirectoryServiceSpec:
        if self.active_directory is None and self.ldap is None:
            raise ValueError("one of active_directory or ldap is required")
        return self

    def variants(self) -> list[ActiveDirectoryConfig | LDAPConfig]:
        return [v for v in (self.active_directory, self.ldap) if v is not None]


# =============================================================================
# Storage volume
# =============================================================================


class StorageVolumeSpec(ResourceSpec):
    """A virtual disk on a storage controller, identified by its name.

    The disk layout (type, capacity, drives) is only used on creation; an
    existing volume only has its cache policies reconciled.
    """

    kind: ClassVar[str] = "StorageVolume"

    storage_id: Annotated[str, Field(min_length=1, alias="storageId")]
    volume_name: Annotated[str, Field(min_length=1, alias="volumeName")]
    volume_type: (
        Literal[
            "NonRedundant",
            "Mirrored",
            "StripedWithParity",
            "SpannedMirrors",
            "SpannedStripesWithParity",
        ]
        | None
    ) = Field(None, alias="volumeType")
    raid_type: Literal["RAID0", "RAID1", "RAID5", "RAID6", "RAID10", "RAID50", "RAID60"] | None = (
        Field(None, alias="raidType")
    )
    drives: Annotated[list[str], Field(min_length=1)]
    capacity_bytes: Annotated[int | None, Field(ge=1_000_000_000, alias="capacityBytes")] = None
    optimum_io_size_bytes: Annotated[int | None, Field(gt=0, alias="optimumIoSizeBytes")] = None

    read_cache_policy: Literal["Off", "ReadAhead", "AdaptiveReadAhead"] = Field(
        "Off", alias="readCachePolicy"
    )
    write_cache_policy: Literal["WriteThrough", "ProtectedWriteBack", "UnprotectedWriteBack"] = (
        Field("UnprotectedWriteBack", alias="writeCachePolicy")
    )
    disk_cache_policy: Literal["Enabled", "Disabled"] = Field("Enabled", alias="diskCachePolicy")

    apply_time: ApplyTimePolicy = Field(ApplyTimePolicy.IMMEDIATE, alias="applyTime")

    @field_validator("drives")
    @classmethod
    def validate_drives(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("drives must not contain duplicates")
        return v

    @model_validator(mode="after")
    def validate_layout(self) -> StorageVolumeSpec:
        if self.volume_type is None and self.raid_type is None:
            raise ValueError("one of volume_type or raid_type is required")
        return self

    def cache_settings(self) -> dict[str, Any]:
        """Settings an existing volume is reconciled to, as Redfish fields."""
        return {
            "ReadCachePolicy": self.read_cache_policy,
            "WriteCachePolicy": self.write_cache_policy,
            "Oem": {"Dell": {"DellVolume": {"DiskCachePolicy": self.disk_cache_policy}}},
        }


# =============================================================================
# Manager reset
# =============================================================================


class ManagerResetSpec(ResourceSpec):
    """Restart of the manager (iDRAC) followed by a wait for it to answer again."""

    kind: ClassVar[str] = "ManagerReset"

    manager_id: str | None = Field(None, alias="managerId")
    reset_type: ResetType = Field(ResetType.GRACEFUL_RESTART, alias="resetType")
    # Seconds after the reset before reachability checks start
    settle_time: Annotated[int, Field(ge=0, alias="settleTime")] = 30
    check_interval: Annotated[float | None, Field(gt=0, alias="checkInterval")] = None

    @field_validator("reset_type")
    @classmethod
    def validate_reset_type(cls, v: ResetType) -> ResetType:
        if v is not ResetType.GRACEFUL_RESTART:
            raise ValueError("managers only support the GracefulRestart reset type")
        return v


# =============================================================================
# Power
# =============================================================================


class PowerSpec(ResourceSpec):
    """Standalone host power operation."""

    kind: ClassVar[str] = "Power"

    desired_power_action: ResetType = Field(alias="desiredPowerAction")
    # Unset values fall back to RESET_TIMEOUT and POWER_POLL_INTERVAL
    maximum_wait_time: Annotated[int | None, Field(gt=0, alias="maximumWaitTime")] = None
    check_interval: Annotated[float | None, Field(gt=0, alias="checkInterval")] = None

    @model_validator(mode="after")
    def validate_interval(self) -> PowerSpec:
        if (
            self.check_interval is not None
            and self.maximum_wait_time is not None
            and self.check_interval > self.maximum_wait_time
        ):
            raise ValueError("check_interval cannot exceed maximum_wait_time")
        return self


# =============================================================================
# Spec Registry
# =============================================================================

SPEC_CLASSES: dict[str, type[ResourceSpec]] = {
    spec_class.kind: spec_class
    for spec_class in (
        BiosSpec,
        BootOrderSpec,
        ManagerAttributesSpec,
        NICSpec,
        StorageControllerSpec,
        DirectoryServiceSpec,
        StorageVolumeSpec,
        PowerSpec,
        ManagerResetSpec,
    )
}


def get_spec_class(kind: str) -> type[ResourceSpec]:
    """Get the spec class for a resource kind.

    Raises:
        ValueError: If kind is not recognized.
    """
    spec_class = SPEC_CLASSES.get(kind)
    if spec_class is None:
        raise ValueError(f"Unknown resource kind '{kind}'. Valid kinds: {sorted(SPEC_CLASSES)}")
    return spec_class
