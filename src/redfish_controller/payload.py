"""Apply-time policies and PATCH body construction.

Pure functions only: nothing here talks to a device. The orchestrator
validates the policy, builds the body and then submits it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .errors import UnsupportedApplyTime

SETTINGS_APPLY_TIME_KEY = "@Redfish.SettingsApplyTime"
OPERATION_APPLY_TIME_KEY = "@Redfish.OperationApplyTime"


class ApplyTimePolicy(str, Enum):
    """When a submitted change takes effect on the device."""

    IMMEDIATE = "Immediate"
    ON_RESET = "OnReset"
    AT_MAINTENANCE_WINDOW_START = "AtMaintenanceWindowStart"
    IN_MAINTENANCE_WINDOW_ON_RESET = "InMaintenanceWindowOnReset"

    @property
    def is_maintenance_window(self) -> bool:
        return self in (
            ApplyTimePolicy.AT_MAINTENANCE_WINDOW_START,
            ApplyTimePolicy.IN_MAINTENANCE_WINDOW_ON_RESET,
        )

    @property
    def requires_reset(self) -> bool:
        """Only OnReset reboots the host synchronously."""
        return self is ApplyTimePolicy.ON_RESET

    @property
    def waits_for_job(self) -> bool:
        """Maintenance-window changes run later; their jobs are not awaited."""
        return not self.is_maintenance_window


class MaintenanceWindow(BaseModel):
    """Scheduled window for deferred changes."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    start_time: datetime = Field(alias="startTime")
    duration_seconds: int = Field(gt=0, alias="durationSeconds")

    def start_time_iso(self) -> str:
        return self.start_time.isoformat()


def validate_apply_time(
    policy: ApplyTimePolicy,
    maintenance_window: MaintenanceWindow | None,
    group: str,
    *,
    supported: Iterable[str] | None = None,
    rejects_immediate: bool = False,
) -> None:
    """Reject policies the attribute group cannot honour.

    Args:
        policy: Requested apply time.
        maintenance_window: Window for maintenance-window policies.
        group: Attribute group name used in error messages.
        supported: Apply times advertised by the device, when it advertises any.
        rejects_immediate: True for groups that only apply on reset.

    Raises:
        UnsupportedApplyTime: If the policy is unusable for this group.
    """
    if policy.is_maintenance_window and maintenance_window is None:
        raise UnsupportedApplyTime(group, policy.value, "a maintenance window is required")

    if rejects_immediate and policy is ApplyTimePolicy.IMMEDIATE:
        raise UnsupportedApplyTime(group, policy.value, "changes only apply on reset")

    if supported is not None:
        allowed = list(supported)
        if allowed and policy.value not in allowed:
            raise UnsupportedApplyTime(
                group, policy.value, f"device supports {', '.join(allowed)}"
            )


def apply_time_object(
    policy: ApplyTimePolicy, maintenance_window: MaintenanceWindow | None
) -> dict[str, Any]:
    settings: dict[str, Any] = {"ApplyTime": policy.value}
    if policy.is_maintenance_window and maintenance_window is not None:
        settings["MaintenanceWindowStartTime"] = maintenance_window.start_time_iso()
        settings["MaintenanceWindowDurationInSeconds"] = maintenance_window.duration_seconds
    return settings


def build(
    diff: Mapping[str, Any],
    policy: ApplyTimePolicy,
    maintenance_window: MaintenanceWindow | None = None,
    *,
    attributes_key: str | None = "Attributes",
    apply_time_key: str = SETTINGS_APPLY_TIME_KEY,
    default_policy: ApplyTimePolicy | None = None,
) -> dict[str, Any]:
    """Build a PATCH body for an attribute diff.

    The diff goes under attributes_key (or is merged at the top level when
    attributes_key is None, for structured resources). The apply-time object
    is added unless the policy equals the target's implicit default.
    """
    body: dict[str, Any] = {}
    if attributes_key is None:
        body.update(diff)
    else:
        body[attributes_key] = dict(diff)

    if policy is not default_policy:
        body[apply_time_key] = apply_time_object(policy, maintenance_window)
    return body
