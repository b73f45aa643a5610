"""Storage controller settings and security reconciliation.

Controller settings (ControllerRates and Oem.Dell.DellStorageController) are
patched to the controller's settings object. Security actions go through
DellRaidService and are submitted on their own; which actions exist depends
on the server generation.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import GENERATION_SEVENTEEN
from .diff import select, structural_diff
from .errors import UnsupportedApplyTime, ValidationRuleViolation
from .handlers import CurrentState, ResourceHandler, Submission
from .models import SecurityAction, StorageControllerSpec, StorageSecuritySpec
from .payload import ApplyTimePolicy, build, validate_apply_time
from .redfish_client import (
    RedfishClient,
    get_system,
    odata_id,
    server_generation,
    settings_object_uri,
    supported_apply_times,
)
from .registry import RegistryClient

logger = logging.getLogger(__name__)

SETTINGS_GROUP = "storage_controller"
SECURITY_GROUP = "security"

ENCRYPTION_MODES = {
    "LocalKeyManagement": "LKM",
    "SecureEnterpriseKeyManager": "SEKM",
}

CONTROLLER_MODE_POLICIES = (
    ApplyTimePolicy.ON_RESET,
    ApplyTimePolicy.IN_MAINTENANCE_WINDOW_ON_RESET,
)

# action -> (required fields, generation 17+ only)
SECURITY_ACTION_RULES: dict[SecurityAction, tuple[tuple[str, ...], bool]] = {
    SecurityAction.SET_CONTROLLER_KEY: (("key_id", "key"), False),
    SecurityAction.RE_KEY: (("key_id", "key", "old_key", "mode"), False),
    SecurityAction.REMOVE_CONTROLLER_KEY: ((), False),
    SecurityAction.ENABLE_SECURITY: ((), True),
    SecurityAction.DISABLE_SECURITY: ((), True),
}

SECURITY_FIELDS = ("key_id", "key", "old_key", "mode")


def _dell_controller(document: dict[str, Any]) -> dict[str, Any]:
    return ((document.get("Oem") or {}).get("Dell") or {}).get("DellStorageController") or {}


def security_state(controller: dict[str, Any]) -> dict[str, Any]:
    """Key state as reported by Oem.Dell.DellStorageController."""
    dell = _dell_controller(controller)
    status = str(dell.get("SecurityStatus") or "")
    return {
        "key_assigned": "KeyAssigned" in status,
        "key_id": dell.get("KeyID") or "",
        "mode": ENCRYPTION_MODES.get(str(dell.get("EncryptionMode") or ""), ""),
    }


def security_action_needed(security: StorageSecuritySpec, state: dict[str, Any]) -> bool:
    """Whether the requested action would change the controller's key state."""
    action = security.action
    if action in (SecurityAction.SET_CONTROLLER_KEY, SecurityAction.ENABLE_SECURITY):
        return not state["key_assigned"]
    if action in (SecurityAction.REMOVE_CONTROLLER_KEY, SecurityAction.DISABLE_SECURITY):
        return state["key_assigned"]
    # ReKey
    if not state["key_assigned"]:
        return False
    return security.key_id != state["key_id"] or (security.mode or "") != state["mode"]


def check_security_fields(security: StorageSecuritySpec, generation: int | None) -> None:
    """Enforce the companion fields and server generation of a security action.

    Raises:
        ValidationRuleViolation: If a required field is missing, an unused
            field is set, or the action is unavailable on this generation.
    """
    action = security.action
    required, seventeen_only = SECURITY_ACTION_RULES[action]
    modern = generation is not None and generation >= GENERATION_SEVENTEEN

    if seventeen_only and not modern:
        raise ValidationRuleViolation(
            "security_action",
            f"{action.value} is only supported on 17G and above servers",
        )
    if not seventeen_only and modern:
        raise ValidationRuleViolation(
            "security_action",
            f"{action.value} is not supported on 17G and above servers",
        )

    for field_name in SECURITY_FIELDS:
        is_set = getattr(security, field_name) is not None
        if field_name in required and not is_set:
            raise ValidationRuleViolation(
                "security_action", f"{action.value} requires {field_name}"
            )
        if field_name not in required and is_set:
            raise ValidationRuleViolation(
                "security_action", f"{action.value} does not accept {field_name}"
            )


def security_body(security: StorageSecuritySpec, controller_id: str) -> dict[str, Any]:
    action = security.action
    if action is SecurityAction.SET_CONTROLLER_KEY:
        return {"Keyid": security.key_id, "Key": security.key, "TargetFQDD": controller_id}
    if action is SecurityAction.RE_KEY:
        return {
            "Keyid": security.key_id,
            "Mode": security.mode,
            "NewKey": security.key,
            "OldKey": security.old_key,
            "TargetFQDD": controller_id,
        }
    if action is SecurityAction.DISABLE_SECURITY:
        return {"ControllerFQDD": controller_id}
    return {"TargetFQDD": controller_id}


class StorageControllerHandler(ResourceHandler[StorageControllerSpec]):
    """Storage/<storage>/Controllers/<controller>."""

    group = SETTINGS_GROUP

    def desired_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {}
        if self.spec.controller_rates is not None:
            document["ControllerRates"] = self.spec.controller_rates.to_redfish()
        if self.spec.storage_controller is not None:
            document["Oem"] = {
                "Dell": {"DellStorageController": self.spec.storage_controller.to_redfish()}
            }
        return document

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        system = await get_system(client, self.spec.system_id)
        system_uri = odata_id(system)
        controller_uri = (
            f"{system_uri}/Storage/{self.spec.storage_id}/Controllers/{self.spec.controller_id}"
        )
        controller = await client.get(controller_uri)

        attributes = select(controller, self.desired_document())
        security = security_state(controller)
        if self.spec.security is not None:
            attributes[SECURITY_GROUP] = {
                "key_assigned": security["key_assigned"],
                "key_id": security["key_id"],
                "mode": security["mode"],
            }

        return CurrentState(
            attributes=attributes,
            context={
                "controller": controller,
                "controller_uri": controller_uri,
                "settings_uri": settings_object_uri(controller) or f"{controller_uri}/Settings",
                "raid_service_uri": f"{system_uri}/Oem/Dell/DellRaidService",
                "generation": server_generation(system),
                "security": security,
            },
            supported_apply_times=supported_apply_times(controller),
        )

    def diff(self, current: CurrentState) -> dict[str, Any]:
        diff = structural_diff(self.desired_document(), current.context["controller"])
        security = self.spec.security
        if security is not None and security_action_needed(security, current.context["security"]):
            diff[SECURITY_GROUP] = security.action.value
        return diff

    def _controller_mode_change(self, diff: dict[str, Any]) -> bool:
        return "ControllerMode" in _dell_controller(diff)

    def _settings_changes(self, diff: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in diff.items() if key != SECURITY_GROUP}

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        settings = self._settings_changes(diff)
        generation = current.context["generation"]

        if SECURITY_GROUP in diff and settings:
            raise ValidationRuleViolation(
                "storage_controller_security",
                "security actions and controller attribute changes cannot be applied together",
            )

        if SECURITY_GROUP in diff:
            assert self.spec.security is not None
            check_security_fields(self.spec.security, generation)
            return

        if self._controller_mode_change(diff):
            changed = dict(_dell_controller(diff))
            changed.pop("ControllerMode")
            if changed or "ControllerRates" in diff:
                raise ValidationRuleViolation(
                    "controller_mode",
                    "controller_mode cannot be changed together with other attributes "
                    "such as check_consistency_mode",
                )
            if self.apply_time not in CONTROLLER_MODE_POLICIES:
                raise UnsupportedApplyTime(
                    "controller_mode",
                    self.apply_time.value,
                    "controller_mode only applies with OnReset or InMaintenanceWindowOnReset",
                )

        desired = self.spec.storage_controller
        if desired is not None:
            mode = desired.controller_mode or _dell_controller(current.context["controller"]).get(
                "ControllerMode"
            )
            if mode == "HBA" and desired.enhanced_auto_import_foreign_configuration_mode == "Enabled":
                raise ValidationRuleViolation(
                    "enhanced_auto_import_foreign_configuration_mode",
                    "cannot be Enabled while the controller is in HBA mode",
                )

        if (
            generation is not None
            and generation >= GENERATION_SEVENTEEN
            and self.apply_time.is_maintenance_window
        ):
            raise UnsupportedApplyTime(
                self.group,
                self.apply_time.value,
                "maintenance windows are not supported on 17G and above servers",
            )

        validate_apply_time(
            self.apply_time,
            self.maintenance_window,
            self.group,
            supported=current.supported_apply_times,
        )

    def requires_reset(self, diff: dict[str, Any]) -> bool:
        if SECURITY_GROUP in diff:
            return False
        return super().requires_reset(diff)

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        if SECURITY_GROUP in diff:
            assert self.spec.security is not None
            action = self.spec.security.action.value
            uri = f"{current.context['raid_service_uri']}/Actions/DellRaidService.{action}"
            body = security_body(self.spec.security, self.spec.controller_id)
            return [Submission("POST", uri, body, f"security {action}", expects_job=True)]

        body = build(
            self._settings_changes(diff),
            self.apply_time,
            self.maintenance_window,
            attributes_key=None,
        )
        return [
            Submission("PATCH", current.context["settings_uri"], body, self.group, expects_job=True)
        ]
