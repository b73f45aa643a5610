"""BIOS attribute reconciliation."""

from __future__ import annotations

import logging
from typing import Any

from .config import DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS
from .diff import attribute_diff
from .handlers import CurrentState, ResourceHandler, Submission
from .models import BiosSpec
from .payload import build
from .redfish_client import (
    RedfishClient,
    get_system,
    odata_id,
    settings_object_uri,
    supported_apply_times,
)
from .registry import RegistryClient

logger = logging.getLogger(__name__)

DEFAULT_BIOS_REGISTRY = "BiosAttributeRegistry"


class BiosHandler(ResourceHandler[BiosSpec]):
    """Bios.Attributes, validated against the BIOS attribute registry."""

    group = "bios_attributes"
    default_job_timeout = DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        system = await get_system(client, self.spec.system_id)
        bios_uri = odata_id(system.get("Bios"))
        if not bios_uri:
            bios_uri = f"{odata_id(system)}/Bios"
        bios = await client.get(bios_uri)

        registry_name = bios.get("AttributeRegistry") or DEFAULT_BIOS_REGISTRY
        registry = await registries.fetch(registry_name)

        attributes = dict(bios.get("Attributes") or {})
        return CurrentState(
            attributes=attributes,
            context={
                "bios_uri": bios_uri,
                "settings_uri": settings_object_uri(bios) or f"{bios_uri}/Settings",
            },
            registry=registry,
            supported_apply_times=supported_apply_times(bios),
        )

    def diff(self, current: CurrentState) -> dict[str, Any]:
        assert current.registry is not None
        return attribute_diff(self.spec.attributes, current.attributes, current.registry)

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        body = build(diff, self.apply_time, self.maintenance_window)
        return [
            Submission(
                "PATCH",
                current.context["settings_uri"],
                body,
                description="bios settings",
                expects_job=True,
            )
        ]
