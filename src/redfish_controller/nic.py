"""Network device function reconciliation.

Two independent attribute groups per function:

- oem_network_attributes: Dell registry-typed attributes under
  DellNetworkAttributes/<fqdd>, validated against NetworkAttributesRegistry_<fqdd>.
- network_attributes: standard Ethernet/FibreChannel/iSCSIBoot/NetDevFuncType
  settings, which only apply on reset.

Only one group may change per call.
"""

from __future__ import annotations

import logging
from typing import Any

from .diff import attribute_diff, select, structural_diff
from .errors import ValidationRuleViolation
from .handlers import CurrentState, ResourceHandler, Submission
from .models import NICSpec
from .payload import build, validate_apply_time
from .redfish_client import (
    RedfishClient,
    RedfishError,
    get_system,
    odata_id,
    settings_object_uri,
    supported_apply_times,
)
from .registry import RegistryClient, check_value

logger = logging.getLogger(__name__)

OEM_GROUP = "oem_network_attributes"
NETWORK_GROUP = "network_attributes"
NO_PENDING_DATA = "No pending data to delete"


def _dell_network_attributes_uri(function: dict[str, Any]) -> str:
    for container in (function.get("Links") or {}, function):
        dell = (container.get("Oem") or {}).get("Dell") or {}
        uri = odata_id(dell.get("DellNetworkAttributes"))
        if uri:
            return uri
    return ""


class NICHandler(ResourceHandler[NICSpec]):
    """NetworkAdapters/<adapter>/NetworkDeviceFunctions/<function>."""

    group = "nic"

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        system = await get_system(client, self.spec.system_id)
        function_uri = (
            f"{odata_id(system)}/NetworkAdapters/{self.spec.network_adapter_id}"
            f"/NetworkDeviceFunctions/{self.spec.network_device_function_id}"
        )
        function = await client.get(function_uri)

        attributes: dict[str, Any] = {}
        context: dict[str, Any] = {"function_uri": function_uri, "supported": {}}
        registry = None

        if self.spec.network_attributes is not None:
            attributes[NETWORK_GROUP] = select(function, self.spec.network_attributes.to_redfish())
            context["function"] = function
            context["network_settings_uri"] = (
                settings_object_uri(function) or f"{function_uri}/Settings"
            )
            context["supported"][NETWORK_GROUP] = supported_apply_times(function)

        if self.spec.oem_network_attributes is not None:
            dell_uri = _dell_network_attributes_uri(function)
            if not dell_uri:
                raise RedfishError(
                    f"{function_uri} does not link DellNetworkAttributes", uri=function_uri
                )
            dell = await client.get(dell_uri)
            device_id = str(dell.get("Id") or self.spec.network_device_function_id)
            registry = await registries.fetch_matching(
                lambda member_id: member_id.startswith("NetworkAttribute")
                and member_id.endswith(device_id),
                f"NetworkAttributesRegistry_{device_id}",
            )
            attributes[OEM_GROUP] = dict(dell.get("Attributes") or {})
            context["oem_settings_uri"] = f"{dell_uri}/Settings"
            context["supported"][OEM_GROUP] = supported_apply_times(dell)

        return CurrentState(attributes=attributes, context=context, registry=registry)

    def diff(self, current: CurrentState) -> dict[str, Any]:
        diff: dict[str, Any] = {}

        oem = self.spec.oem_network_attributes
        if oem is not None and current.registry is not None:
            changed = attribute_diff(
                oem.attributes, current.attributes.get(OEM_GROUP, {}), current.registry
            )
            if changed:
                diff[OEM_GROUP] = changed

        network = self.spec.network_attributes
        if network is not None:
            changed = structural_diff(network.to_redfish(), current.context.get("function", {}))
            if changed:
                diff[NETWORK_GROUP] = changed

        return diff

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        if OEM_GROUP in diff and NETWORK_GROUP in diff:
            raise ValidationRuleViolation(
                "nic_attribute_groups",
                "oem_network_attributes and network_attributes cannot be updated in the same call",
            )

        group = NETWORK_GROUP if NETWORK_GROUP in diff else OEM_GROUP
        validate_apply_time(
            self.apply_time,
            self.maintenance_window,
            group,
            supported=current.context["supported"].get(group),
            rejects_immediate=group == NETWORK_GROUP,
        )

        if current.registry is not None:
            for name, value in diff.get(OEM_GROUP, {}).items():
                check_value(current.registry, name, value)

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        if NETWORK_GROUP in diff:
            body = build(
                diff[NETWORK_GROUP],
                self.apply_time,
                self.maintenance_window,
                attributes_key=None,
            )
            return [
                Submission(
                    "PATCH",
                    current.context["network_settings_uri"],
                    body,
                    NETWORK_GROUP,
                    expects_job=True,
                )
            ]

        submissions: list[Submission] = []
        settings_uri = current.context["oem_settings_uri"]
        oem = self.spec.oem_network_attributes
        if oem is not None and oem.clear_pending:
            submissions.append(
                Submission(
                    "POST",
                    f"{settings_uri}/Actions/DellManager.ClearPending",
                    {},
                    "clear pending network attributes",
                    tolerated_error=NO_PENDING_DATA,
                )
            )
        body = build(diff[OEM_GROUP], self.apply_time, self.maintenance_window)
        submissions.append(Submission("PATCH", settings_uri, body, OEM_GROUP, expects_job=True))
        return submissions
