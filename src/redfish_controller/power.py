"""Host power operations.

The reset action is issued once; afterwards only PowerState is polled
until the host reaches the state implied by the reset type or the wait
budget runs out. Used standalone and as the reboot-to-apply step of
attribute reconciliation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import (
    PowerTimeoutError,
    StateReadError,
    SubmissionError,
    ValidationRuleViolation,
)
from .jobs import poll_budget, sleep_before_poll
from .redfish_client import RedfishClient, RedfishError, get_system, odata_id

logger = logging.getLogger(__name__)

RESET_ACTION = "#ComputerSystem.Reset"


class PowerState(str, Enum):
    """Host power states reported by ComputerSystem.PowerState."""

    ON = "On"
    OFF = "Off"
    POWERING_ON = "PoweringOn"
    POWERING_OFF = "PoweringOff"
    PAUSED = "Paused"


class ResetType(str, Enum):
    """ComputerSystem.Reset ResetType values."""

    ON = "On"
    FORCE_ON = "ForceOn"
    FORCE_OFF = "ForceOff"
    GRACEFUL_SHUTDOWN = "GracefulShutdown"
    GRACEFUL_RESTART = "GracefulRestart"
    FORCE_RESTART = "ForceRestart"
    POWER_CYCLE = "PowerCycle"
    NMI = "Nmi"
    PUSH_POWER_BUTTON = "PushPowerButton"


_OFF_RESETS = {ResetType.FORCE_OFF, ResetType.GRACEFUL_SHUTDOWN}
_ON_RESETS = {ResetType.ON, ResetType.FORCE_ON}
_RESTART_RESETS = {
    ResetType.FORCE_RESTART,
    ResetType.GRACEFUL_RESTART,
    ResetType.POWER_CYCLE,
    ResetType.NMI,
}


def plan_reset(
    reset_type: ResetType, current: PowerState
) -> tuple[PowerState, ResetType | None]:
    """Work out the target state and the reset to send.

    Returns:
        (target power state, reset type to issue or None when already there).
    """
    if reset_type in _OFF_RESETS:
        return PowerState.OFF, None if current is PowerState.OFF else reset_type
    if reset_type in _ON_RESETS:
        return PowerState.ON, None if current is PowerState.ON else reset_type
    if reset_type in _RESTART_RESETS:
        # A restart of a host that is off is a plain power on
        if current is PowerState.OFF:
            return PowerState.ON, ResetType.ON
        return PowerState.ON, reset_type
    # PushPowerButton toggles
    if current in (PowerState.ON, PowerState.POWERING_ON):
        return PowerState.OFF, reset_type
    return PowerState.ON, reset_type


@dataclass
class PowerResult:
    """Outcome of a power operation."""

    reset_type: ResetType
    issued: ResetType | None
    initial_state: PowerState
    final_state: PowerState
    polls: int = 0
    elapsed_seconds: float = 0.0

    @property
    def changed(self) -> bool:
        return self.issued is not None

    @property
    def reported_state(self) -> str:
        """State reported back to callers; restarts report Reset_On."""
        if self.issued is not None and self.reset_type in _RESTART_RESETS:
            return f"Reset_{self.final_state.value}"
        return self.final_state.value


def _parse_state(system: dict[str, Any]) -> PowerState:
    value = system.get("PowerState")
    try:
        return PowerState(value)
    except ValueError as e:
        raise StateReadError(f"Unrecognised PowerState {value!r}") from e


class PowerOperator:
    """Issues ComputerSystem.Reset and waits for the resulting power state."""

    def __init__(self, system_id: str | None = None) -> None:
        self._system_id = system_id

    async def _read_system(self, client: RedfishClient) -> dict[str, Any]:
        try:
            return await get_system(client, self._system_id)
        except RedfishError as e:
            raise StateReadError(f"Failed to read ComputerSystem power state: {e}") from e

    async def read_state(self, client: RedfishClient) -> PowerState:
        return _parse_state(await self._read_system(client))

    async def operate(
        self,
        client: RedfishClient,
        reset_type: ResetType,
        max_wait: float,
        poll_interval: float,
        deadline: float | None = None,
    ) -> PowerResult:
        """Drive the host to the state implied by reset_type.

        Args:
            client: Client for the endpoint.
            reset_type: Requested reset.
            max_wait: Seconds to wait for the target state.
            poll_interval: Seconds between PowerState polls.
            deadline: Optional absolute event-loop time after which polling stops.

        Returns:
            PowerResult with the final state.

        Raises:
            ValidationRuleViolation: If the device does not allow reset_type.
            SubmissionError: If the reset action is rejected.
            PowerTimeoutError: If the target state is not reached in time.
        """
        started = time.monotonic()
        system = await self._read_system(client)
        initial = _parse_state(system)
        target, issued = plan_reset(reset_type, initial)

        if issued is None:
            logger.info(
                "Host already in requested power state",
                extra={"reset_type": reset_type.value, "power_state": initial.value},
            )
            return PowerResult(reset_type, None, initial, initial)

        action = (system.get("Actions") or {}).get(RESET_ACTION) or {}
        allowed = action.get("ResetType@Redfish.AllowableValues")
        if isinstance(allowed, list) and allowed and issued.value not in allowed:
            raise ValidationRuleViolation(
                "reset_type", f"{issued.value} is not allowed; device supports {', '.join(allowed)}"
            )

        target_uri = action.get("target") or f"{odata_id(system)}/Actions/ComputerSystem.Reset"
        try:
            await client.post(target_uri, {"ResetType": issued.value})
        except RedfishError as e:
            raise SubmissionError(target_uri, str(e), e.status_code) from e

        logger.info(
            "Reset issued",
            extra={
                "reset_type": issued.value,
                "initial_state": initial.value,
                "target_state": target.value,
            },
        )

        state = initial
        polls = 0
        for _ in range(poll_budget(max_wait, poll_interval)):
            if not await sleep_before_poll(poll_interval, deadline):
                break
            polls += 1
            state = await self.read_state(client)
            if state is target:
                return PowerResult(
                    reset_type,
                    issued,
                    initial,
                    state,
                    polls=polls,
                    elapsed_seconds=time.monotonic() - started,
                )

        raise PowerTimeoutError(issued.value, max_wait, state.value)
