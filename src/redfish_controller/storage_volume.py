"""Storage volume (virtual disk) reconciliation.

A volume is identified by its name within one Storage resource. A missing
volume is created by POSTing to the Volumes collection with an operation
apply time; an existing volume only has its cache policies patched through
its settings object. The disk layout of an existing volume is never
changed, so a layout that differs from the desired one is only reported.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS
from .diff import prune_none, select, structural_diff
from .errors import ValidationRuleViolation
from .handlers import CurrentState, ResourceHandler, Submission
from .models import StorageVolumeSpec
from .payload import OPERATION_APPLY_TIME_KEY, apply_time_object, build
from .redfish_client import (
    RedfishClient,
    collection_members,
    get_system,
    odata_id,
    settings_object_uri,
)
from .registry import RegistryClient

logger = logging.getLogger(__name__)

MAINTENANCE_WINDOW_KEY = "@Redfish.MaintenanceWindow"


def operation_apply_times(storage: dict[str, Any]) -> list[str] | None:
    """Apply times the Storage resource advertises for volume operations."""
    support = storage.get("@Redfish.OperationApplyTimeSupport") or {}
    values = support.get("SupportedValues")
    if isinstance(values, list):
        return [str(value) for value in values]
    return None


def linked_uris(links: Any) -> list[str]:
    if not isinstance(links, list):
        return []
    return [uri for uri in (odata_id(link) for link in links) if uri]


class StorageVolumeHandler(ResourceHandler[StorageVolumeSpec]):
    """Systems/<system>/Storage/<storage>/Volumes/<volume>."""

    group = "storage_volume"
    default_job_timeout = DEFAULT_SETTINGS_JOB_TIMEOUT_SECONDS

    def layout(self) -> dict[str, Any]:
        """Creation-only fields; drives are listed by name."""
        return {
            "VolumeType": self.spec.volume_type,
            "RAIDType": self.spec.raid_type,
            "CapacityBytes": self.spec.capacity_bytes,
            "OptimumIOSizeBytes": self.spec.optimum_io_size_bytes,
            "Drives": list(self.spec.drives),
        }

    async def _find_volume(
        self, client: RedfishClient, volumes_uri: str
    ) -> dict[str, Any] | None:
        for uri in await collection_members(client, volumes_uri):
            volume = await client.get(uri)
            if volume.get("Name") == self.spec.volume_name:
                return volume
        return None

    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        system = await get_system(client, self.spec.system_id)
        storage_uri = f"{odata_id(system)}/Storage/{self.spec.storage_id}"
        storage = await client.get(storage_uri)

        drives: dict[str, str] = {}
        for uri in linked_uris(storage.get("Drives")):
            drive = await client.get(uri)
            drives[str(drive.get("Name") or drive.get("Id") or uri)] = uri

        volumes_uri = odata_id(storage.get("Volumes")) or f"{storage_uri}/Volumes"
        volume = await self._find_volume(client, volumes_uri)

        attributes: dict[str, Any] = {"exists": volume is not None}
        volume_uri = ""
        if volume is not None:
            volume_uri = odata_id(volume)
            names = {uri: name for name, uri in drives.items()}
            attributes.update(select(volume, self.spec.cache_settings()))
            attributes["volume_uri"] = volume_uri
            linked = linked_uris((volume.get("Links") or {}).get("Drives"))
            attributes["drives"] = [names.get(uri, uri) for uri in linked]

        return CurrentState(
            attributes=attributes,
            context={
                "storage_uri": storage_uri,
                "volumes_uri": volumes_uri,
                "drives": drives,
                "volume": volume,
                "volume_uri": volume_uri,
            },
            supported_apply_times=operation_apply_times(storage),
        )

    def diff(self, current: CurrentState) -> dict[str, Any]:
        volume = current.context["volume"]
        if volume is None:
            return prune_none(
                {"Name": self.spec.volume_name, **self.layout(), **self.spec.cache_settings()}
            )

        self._report_layout_drift(volume, current)
        return structural_diff(self.spec.cache_settings(), volume)

    def _report_layout_drift(self, volume: dict[str, Any], current: CurrentState) -> None:
        drifted = [
            key
            for key, wanted in self.layout().items()
            if key != "Drives" and wanted is not None and volume.get(key) not in (None, wanted)
        ]
        if sorted(current.attributes.get("drives", [])) != sorted(self.spec.drives):
            drifted.append("Drives")
        if drifted:
            logger.warning(
                "Existing volume layout differs from the desired layout and is left unchanged",
                extra={"volume": self.spec.volume_name, "fields": drifted},
            )

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        super().validate(diff, current)
        if current.context["volume"] is not None:
            return

        missing = [name for name in self.spec.drives if name not in current.context["drives"]]
        if missing:
            raise ValidationRuleViolation(
                "drives",
                f"{', '.join(missing)} not attached to storage {self.spec.storage_id}",
            )

    def _create(self, diff: dict[str, Any], current: CurrentState) -> Submission:
        drives = current.context["drives"]
        body = dict(diff)
        body["Drives"] = [{"@odata.id": drives[name]} for name in self.spec.drives]
        body[OPERATION_APPLY_TIME_KEY] = self.apply_time.value

        window = apply_time_object(self.apply_time, self.maintenance_window)
        window.pop("ApplyTime")
        if window:
            body[MAINTENANCE_WINDOW_KEY] = window

        return Submission(
            "POST",
            current.context["volumes_uri"],
            body,
            f"create volume {self.spec.volume_name}",
            expects_job=True,
        )

    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        volume = current.context["volume"]
        if volume is None:
            return [self._create(diff, current)]

        settings_uri = settings_object_uri(volume) or f"{current.context['volume_uri']}/Settings"
        body = build(diff, self.apply_time, self.maintenance_window, attributes_key=None)
        return [Submission("PATCH", settings_uri, body, self.group, expects_job=True)]
