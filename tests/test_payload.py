"""Tests for apply-time validation and PATCH body construction."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from redfish_controller.errors import UnsupportedApplyTime
from redfish_controller.payload import (
    OPERATION_APPLY_TIME_KEY,
    SETTINGS_APPLY_TIME_KEY,
    ApplyTimePolicy,
    MaintenanceWindow,
    build,
    validate_apply_time,
)


@pytest.fixture
def window() -> MaintenanceWindow:
    return MaintenanceWindow(start_time=datetime(2026, 11, 1, 2, 0, tzinfo=UTC), duration_seconds=3600)


class TestApplyTimePolicy:
    """Tests for ApplyTimePolicy properties."""

    def test_only_on_reset_requires_reset(self) -> None:
        assert ApplyTimePolicy.ON_RESET.requires_reset
        assert not ApplyTimePolicy.IMMEDIATE.requires_reset
        assert not ApplyTimePolicy.AT_MAINTENANCE_WINDOW_START.requires_reset
        assert not ApplyTimePolicy.IN_MAINTENANCE_WINDOW_ON_RESET.requires_reset

    def test_maintenance_windows_do_not_wait(self) -> None:
        assert ApplyTimePolicy.IMMEDIATE.waits_for_job
        assert ApplyTimePolicy.ON_RESET.waits_for_job
        assert not ApplyTimePolicy.AT_MAINTENANCE_WINDOW_START.waits_for_job
        assert not ApplyTimePolicy.IN_MAINTENANCE_WINDOW_ON_RESET.waits_for_job


class TestMaintenanceWindow:
    """Tests for MaintenanceWindow."""

    def test_camel_case_aliases(self) -> None:
        window = MaintenanceWindow.model_validate(
            {"startTime": "2026-11-01T02:00:00+00:00", "durationSeconds": 600}
        )
        assert window.duration_seconds == 600
        assert window.start_time_iso() == "2026-11-01T02:00:00+00:00"

    def test_duration_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            MaintenanceWindow(start_time=datetime.now(UTC), duration_seconds=0)


class TestValidateApplyTime:
    """Tests for validate_apply_time."""

    def test_maintenance_window_required(self) -> None:
        with pytest.raises(UnsupportedApplyTime) as exc_info:
            validate_apply_time(
                ApplyTimePolicy.AT_MAINTENANCE_WINDOW_START, None, "bios_attributes"
            )
        assert exc_info.value.group == "bios_attributes"
        assert "maintenance window is required" in str(exc_info.value)

    def test_maintenance_window_present(self, window: MaintenanceWindow) -> None:
        validate_apply_time(
            ApplyTimePolicy.IN_MAINTENANCE_WINDOW_ON_RESET, window, "bios_attributes"
        )

    def test_immediate_rejected_for_reset_only_group(self) -> None:
        with pytest.raises(UnsupportedApplyTime) as exc_info:
            validate_apply_time(
                ApplyTimePolicy.IMMEDIATE, None, "network_attributes", rejects_immediate=True
            )
        assert "network_attributes" in str(exc_info.value)

    def test_device_supported_list(self) -> None:
        with pytest.raises(UnsupportedApplyTime) as exc_info:
            validate_apply_time(
                ApplyTimePolicy.IMMEDIATE, None, "bios_attributes", supported=["OnReset"]
            )
        assert "device supports OnReset" in str(exc_info.value)

    def test_empty_supported_list_is_ignored(self) -> None:
        validate_apply_time(ApplyTimePolicy.IMMEDIATE, None, "bios_attributes", supported=[])


class TestBuild:
    """Tests for build."""

    def test_attributes_with_apply_time(self) -> None:
        body = build({"LogicalProc": "Disabled"}, ApplyTimePolicy.ON_RESET)

        assert body == {
            "Attributes": {"LogicalProc": "Disabled"},
            SETTINGS_APPLY_TIME_KEY: {"ApplyTime": "OnReset"},
        }

    def test_maintenance_window_fields(self, window: MaintenanceWindow) -> None:
        body = build({"LogicalProc": "Disabled"}, ApplyTimePolicy.AT_MAINTENANCE_WINDOW_START, window)

        assert body[SETTINGS_APPLY_TIME_KEY] == {
            "ApplyTime": "AtMaintenanceWindowStart",
            "MaintenanceWindowStartTime": "2026-11-01T02:00:00+00:00",
            "MaintenanceWindowDurationInSeconds": 3600,
        }

    def test_default_policy_omits_apply_time(self) -> None:
        body = build(
            {"WebServer.1.Timeout": 600},
            ApplyTimePolicy.IMMEDIATE,
            apply_time_key=OPERATION_APPLY_TIME_KEY,
            default_policy=ApplyTimePolicy.IMMEDIATE,
        )

        assert body == {"Attributes": {"WebServer.1.Timeout": 600}}

    def test_structured_body(self) -> None:
        body = build(
            {"Ethernet": {"MTUSize": 9000}},
            ApplyTimePolicy.ON_RESET,
            attributes_key=None,
        )

        assert body == {
            "Ethernet": {"MTUSize": 9000},
            SETTINGS_APPLY_TIME_KEY: {"ApplyTime": "OnReset"},
        }

    def test_operation_apply_time_key(self) -> None:
        body = build(
            {"A": 1},
            ApplyTimePolicy.ON_RESET,
            apply_time_key=OPERATION_APPLY_TIME_KEY,
            default_policy=ApplyTimePolicy.IMMEDIATE,
        )

        assert body[OPERATION_APPLY_TIME_KEY] == {"ApplyTime": "OnReset"}
