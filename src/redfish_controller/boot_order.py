"""Boot order and boot option reconciliation."""

from __future__ import annotations

import logging
from typing import Any

from .config import DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS, GENERATION_SEVENTEEN
from .errors import UnknownAttribute, ValidationRuleViolation
from .handlers import CurrentState, ResourceHandler, Submission
from .models import BootOrderSpec
from .payload import ApplyTimePolicy, build
from .redfish_client import (
    RedfishClient,
    collection_members,
    get_system,
    odata_id,
    server_generation,
    settings_object_uri,
)
from .registry import RegistryClient

logger = logging.getLogger(__name__)


class BootOrderHandler(ResourceHandler[BootOrderSpec]):
    """ComputerSystem.Boot.BootOrder and BootOptions[].BootOptionEnabled.

    The two are changed in separate calls: a reorder must list every
    existing boot device, and option enablement is patched per option.
    """

    group = "boot_order"
    default_policy = ApplyTimePolicy.ON_RESET
    default_job_timeout = DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        system = await get_system(client, self.spec.system_id)
        boot = system.get("Boot") or {}
        boot_order = [str(entry) for entry in boot.get("BootOrder") or []]

        options: dict[str, bool] = {}
        option_uris: dict[str, str] = {}
        if self.spec.boot_options is not None:
            options_uri = odata_id(boot.get("BootOptions")) or f"{odata_id(system)}/BootOptions"
            for member_uri in await collection_members(client, options_uri):
                option = await client.get(member_uri)
                reference = str(option.get("BootOptionReference") or option.get("Id", ""))
                options[reference] = bool(option.get("BootOptionEnabled", False))
                option_uris[reference] = member_uri

        # 17G systems take boot order changes through the system settings object
        patch_uri = odata_id(system)
        generation = server_generation(system)
        if generation is not None and generation >= GENERATION_SEVENTEEN:
            patch_uri = settings_object_uri(system) or patch_uri

        attributes: dict[str, Any] = {"boot_order": boot_order}
        if self.spec.boot_options is not None:
            attributes["boot_options"] = options
        return CurrentState(
            attributes=attributes,
            context={"patch_uri": patch_uri, "option_uris": option_uris},
        )

    def diff(self, current: CurrentState) -> dict[str, Any]:
        diff: dict[str, Any] = {}

        if self.spec.boot_order is not None:
            if self.spec.boot_order != current.attributes["boot_order"]:
                diff["boot_order"] = list(self.spec.boot_order)

        if self.spec.boot_options is not None:
            existing: dict[str, bool] = current.attributes.get("boot_options", {})
            changed: dict[str, bool] = {}
            for option in self.spec.boot_options:
                if option.boot_option_reference not in existing:
                    raise UnknownAttribute(option.boot_option_reference, "BootOptions")
                if existing[option.boot_option_reference] != option.boot_option_enabled:
                    changed[option.boot_option_reference] = option.boot_option_enabled
            if changed:
                diff["boot_options"] = changed

        return diff

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        super().validate(diff, current)

        if "boot_order" in diff and "boot_options" in diff:
            raise ValidationRuleViolation(
                "boot_order",
                "boot_order and boot_options cannot be changed in the same call",
            )

        if "boot_order" in diff:
            existing = current.attributes["boot_order"]
            unknown = [device for device in diff["boot_order"] if device not in existing]
            if unknown:
                raise ValidationRuleViolation(
                    "boot_order",
                    f"new boot order and old boot order must be equal; unknown devices {unknown}",
                )
            if len(diff["boot_order"]) != len(existing):
                raise ValidationRuleViolation(
                    "boot_order", "all boot devices are required for this operation"
                )

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        if "boot_order" in diff:
            body = build(
                {"Boot": {"BootOrder": diff["boot_order"]}},
                self.apply_time,
                self.maintenance_window,
                attributes_key=None,
                default_policy=self.default_policy,
            )
            return [Submission("PATCH", current.context["patch_uri"], body, "boot order")]

        option_uris: dict[str, str] = current.context["option_uris"]
        return [
            Submission(
                "PATCH",
                option_uris[reference],
                {"BootOptionEnabled": enabled},
                f"boot option {reference}",
            )
            for reference, enabled in diff.get("boot_options", {}).items()
        ]
