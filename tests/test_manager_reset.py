"""Tests for manager (iDRAC) restarts."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError
from redfish_mock import MockBMC, MockRedfishClient, MockRedfishContext
from redfish_mock.bmc import MANAGER_RESET_URI, MANAGER_URI

from redfish_controller.errors import (
    ManagerUnreachable,
    StateReadError,
    SubmissionError,
    ValidationRuleViolation,
)
from redfish_controller.manager_reset import ManagerResetOperator
from redfish_controller.models import ManagerResetSpec, RedfishServer
from redfish_controller.power import ResetType
from redfish_controller.reconciler import ReconcilePhase, Reconciler
from redfish_controller.redfish_client import ManagedEndpoint
from redfish_controller.spec_loader import load_spec


def make_client(bmc: MockBMC) -> MockRedfishClient:
    return MockRedfishClient(bmc, ManagedEndpoint(bmc.address, "root", "calvin"))


class TestManagerResetOperator:
    """Tests for ManagerResetOperator against the mock BMC."""

    @pytest.mark.asyncio
    async def test_waits_until_manager_answers(self, bmc: MockBMC) -> None:
        bmc.manager_downtime = 2

        result = await ManagerResetOperator().operate(
            make_client(bmc), ResetType.GRACEFUL_RESTART, max_wait=5, poll_interval=0.01
        )

        assert bmc.manager_resets == ["GracefulRestart"]
        assert len(bmc.calls_to("POST", MANAGER_RESET_URI)) == 1
        assert result.manager_id == "iDRAC.Embedded.1"
        # Two refused reads, then the manager is back
        assert result.polls == 3

    @pytest.mark.asyncio
    async def test_manager_by_id(self, bmc: MockBMC) -> None:
        await ManagerResetOperator("iDRAC.Embedded.1").operate(
            make_client(bmc), ResetType.GRACEFUL_RESTART, max_wait=5, poll_interval=0.01
        )

        assert bmc.calls_to("GET", "/redfish/v1/Managers") == []
        assert bmc.manager_resets == ["GracefulRestart"]

    @pytest.mark.asyncio
    async def test_unknown_manager(self, bmc: MockBMC) -> None:
        with pytest.raises(StateReadError):
            await ManagerResetOperator("iDRAC.Embedded.9").operate(
                make_client(bmc), ResetType.GRACEFUL_RESTART, max_wait=5, poll_interval=0.01
            )

        assert bmc.manager_resets == []

    @pytest.mark.asyncio
    async def test_manager_never_returns(self, bmc: MockBMC) -> None:
        bmc.manager_downtime = 1000

        with pytest.raises(ManagerUnreachable) as exc_info:
            await ManagerResetOperator().operate(
                make_client(bmc), ResetType.GRACEFUL_RESTART, max_wait=0.05, poll_interval=0.01
            )

        assert exc_info.value.uri == MANAGER_URI
        assert "Connection refused" in exc_info.value.last_error
        assert bmc.manager_resets == ["GracefulRestart"]

    @pytest.mark.asyncio
    async def test_settle_time_cut_by_deadline(self, bmc: MockBMC) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(ManagerUnreachable):
            await ManagerResetOperator().operate(
                make_client(bmc),
                ResetType.GRACEFUL_RESTART,
                max_wait=10,
                poll_interval=0.01,
                settle_seconds=10,
                deadline=started + 0.1,
            )

        assert loop.time() - started < 0.5
        # The read before the reset only
        assert len(bmc.calls_to("GET", MANAGER_URI)) == 1

    @pytest.mark.asyncio
    async def test_reset_rejected(self, bmc: MockBMC) -> None:
        bmc.fail("POST", MANAGER_RESET_URI, "Server is busy", 409)

        with pytest.raises(SubmissionError) as exc_info:
            await ManagerResetOperator().operate(
                make_client(bmc), ResetType.GRACEFUL_RESTART, max_wait=5, poll_interval=0.01
            )

        assert exc_info.value.status_code == 409
        assert exc_info.value.uri == MANAGER_RESET_URI

    @pytest.mark.asyncio
    async def test_disallowed_reset_type(self, bmc: MockBMC) -> None:
        action = bmc.documents[MANAGER_URI]["Actions"]["#Manager.Reset"]
        action["ResetType@Redfish.AllowableValues"] = ["ForceRestart"]

        with pytest.raises(ValidationRuleViolation, match="GracefulRestart is not allowed"):
            await ManagerResetOperator().operate(
                make_client(bmc), ResetType.GRACEFUL_RESTART, max_wait=5, poll_interval=0.01
            )

        assert bmc.manager_resets == []


class TestManagerResetReconcile:
    """Manager restarts run under the endpoint lock like power operations."""

    @pytest.mark.asyncio
    async def test_reconcile(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        spec = ManagerResetSpec(redfish_server=server, settle_time=0)

        with MockRedfishContext(bmc) as ctx:
            result = await reconciler.reconcile_spec(spec)

        assert result.success, result.error
        assert result.changed
        assert result.phases == [
            ReconcilePhase.LOCKED,
            ReconcilePhase.MANAGER_RESETTING,
            ReconcilePhase.RELEASED,
        ]
        assert result.final_state == {
            "manager_id": "iDRAC.Embedded.1",
            "reset_type": "GracefulRestart",
            "reachable": True,
        }
        assert all(client.closed for client in ctx.clients)
        assert not reconciler.lock_manager.is_locked(bmc.key)

    @pytest.mark.asyncio
    async def test_unreachable_after_reset(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        """The accepted reset still counts as a change."""
        bmc.manager_downtime = 1000
        spec = ManagerResetSpec(redfish_server=server, settle_time=0, check_interval=0.01)

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec, deadline_seconds=0.1)

        assert isinstance(result.error, ManagerUnreachable)
        assert result.changed
        assert result.final_state is None
        assert not reconciler.lock_manager.is_locked(bmc.key)

    @pytest.mark.asyncio
    async def test_reset_timeout_bounds_wait(
        self, bmc: MockBMC, server: RedfishServer, reconciler: Reconciler
    ) -> None:
        bmc.manager_downtime = 1000
        spec = ManagerResetSpec(
            redfish_server=server, settle_time=0, check_interval=0.5, reset_timeout=1
        )

        with MockRedfishContext(bmc):
            result = await reconciler.reconcile_spec(spec)

        assert isinstance(result.error, ManagerUnreachable)
        assert result.error.max_wait == 1
        assert len(bmc.calls_to("GET", MANAGER_URI)) == 3


class TestManagerResetSpec:
    def test_defaults(self) -> None:
        spec = ManagerResetSpec()

        assert spec.reset_type is ResetType.GRACEFUL_RESTART
        assert spec.manager_id is None
        assert spec.settle_time == 30

    def test_only_graceful_restart(self) -> None:
        with pytest.raises(ValidationError, match="GracefulRestart"):
            ManagerResetSpec(reset_type=ResetType.FORCE_RESTART)

    def test_loaded_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "idrac-reset.yaml"
        path.write_text("kind: ManagerReset\nmanagerId: iDRAC.Embedded.1\nsettleTime: 60\n")

        spec = load_spec(path)

        assert isinstance(spec, ManagerResetSpec)
        assert spec.manager_id == "iDRAC.Embedded.1"
        assert spec.settle_time == 60
