"""Dell manager attribute reconciliation (iDRAC, LifecycleController, System).

All three groups live under Managers/<id>/Oem/Dell/DellAttributes and are
described by ManagerAttributeRegistry. Changes apply immediately; no job
is created and the host is never rebooted.
"""

from __future__ import annotations

import logging
from typing import Any

from .diff import attribute_diff
from .errors import UnknownAttribute, UnsupportedApplyTime
from .handlers import CurrentState, ResourceHandler, Submission
from .models import ManagerAttributesSpec
from .payload import OPERATION_APPLY_TIME_KEY, ApplyTimePolicy, build
from .redfish_client import RedfishClient, RedfishError, get_manager, odata_id
from .registry import AttributeRegistry, RegistryClient

logger = logging.getLogger(__name__)

MANAGER_ATTRIBUTE_REGISTRY = "ManagerAttributeRegistry"


async def find_attribute_resource(client: RedfishClient, group: str) -> str:
    """Return the DellAttributes URI for a group ("iDRAC", "LifecycleController", "System")."""
    manager = await get_manager(client)
    links = ((manager.get("Links") or {}).get("Oem") or {}).get("Dell") or {}
    candidates = [odata_id(link) for link in links.get("DellAttributes") or []]
    if not candidates:
        manager_uri = odata_id(manager)
        collection = await client.get(f"{manager_uri}/Oem/Dell/DellAttributes")
        candidates = [odata_id(member) for member in collection.get("Members", [])]

    for uri in candidates:
        if uri.rstrip("/").rsplit("/", 1)[-1].startswith(group):
            return uri
    raise RedfishError(f"No DellAttributes resource found for {group}")


def check_group_membership(
    registry: AttributeRegistry, names: list[str], group: str
) -> None:
    """Reject attributes the registry assigns to a different group."""
    for name in names:
        entry = registry.get(name)
        if entry.id and not entry.id.startswith(group):
            raise UnknownAttribute(name, f"{registry.name} ({group} attributes)")


class ManagerAttributesHandler(ResourceHandler[ManagerAttributesSpec]):
    """One DellAttributes group."""

    resets_host = False
    default_policy = ApplyTimePolicy.IMMEDIATE

    def __init__(self, spec: ManagerAttributesSpec) -> None:
        super().__init__(spec)
        self.group = f"{spec.group}_attributes"

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        uri = await find_attribute_resource(client, self.spec.group)
        document = await client.get(uri)
        registry = await registries.fetch(MANAGER_ATTRIBUTE_REGISTRY)
        return CurrentState(
            attributes=dict(document.get("Attributes") or {}),
            context={"uri": uri},
            registry=registry,
        )

    def diff(self, current: CurrentState) -> dict[str, Any]:
        assert current.registry is not None
        check_group_membership(current.registry, list(self.spec.attributes), self.spec.group)
        return attribute_diff(self.spec.attributes, current.attributes, current.registry)

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        if self.apply_time is not ApplyTimePolicy.IMMEDIATE:
            raise UnsupportedApplyTime(
                self.group, self.apply_time.value, "manager attributes only apply immediately"
            )
        super().validate(diff, current)

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        body = build(
            diff,
            self.apply_time,
            apply_time_key=OPERATION_APPLY_TIME_KEY,
            default_policy=self.default_policy,
        )
        return [Submission("PATCH", current.context["uri"], body, self.group)]
