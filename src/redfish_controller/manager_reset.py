"""Manager (iDRAC) restart.

Manager.Reset is posted once. The manager then drops off the network for
a while, so reachability checks only start after a settle time; the reset
is complete once the Manager resource can be read again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .errors import ManagerUnreachable, StateReadError, SubmissionError, ValidationRuleViolation
from .jobs import poll_budget, sleep_before_poll
from .power import ResetType
from .redfish_client import RedfishClient, RedfishError, get_manager, odata_id

logger = logging.getLogger(__name__)

MANAGER_RESET_ACTION = "#Manager.Reset"


@dataclass
class ManagerResetResult:
    """Outcome of a manager restart."""

    manager_id: str
    reset_type: ResetType
    polls: int = 0
    elapsed_seconds: float = 0.0


class ManagerResetOperator:
    """Issues Manager.Reset and waits until the manager answers again."""

    def __init__(self, manager_id: str | None = None) -> None:
        self._manager_id = manager_id

    async def operate(
        self,
        client: RedfishClient,
        reset_type: ResetType,
        max_wait: float,
        poll_interval: float,
        settle_seconds: float = 0,
        deadline: float | None = None,
    ) -> ManagerResetResult:
        """Restart the manager and wait for it to come back.

        Args:
            client: Client for the endpoint.
            reset_type: Requested reset; the device must allow it.
            max_wait: Seconds to wait for the manager after the settle time.
            poll_interval: Seconds between reachability checks.
            settle_seconds: Seconds to wait before the first check.
            deadline: Optional absolute event-loop time after which waiting stops.

        Raises:
            StateReadError: If the manager cannot be read before the reset.
            ValidationRuleViolation: If the device does not allow reset_type.
            SubmissionError: If the reset action is rejected.
            ManagerUnreachable: If the manager does not answer in time.
        """
        started = time.monotonic()
        try:
            manager = await get_manager(client, self._manager_id)
        except RedfishError as e:
            raise StateReadError(f"Failed to read manager: {e}") from e
        manager_uri = odata_id(manager)
        manager_id = str(manager.get("Id") or self._manager_id or "")

        action = (manager.get("Actions") or {}).get(MANAGER_RESET_ACTION) or {}
        allowed = action.get("ResetType@Redfish.AllowableValues")
        if isinstance(allowed, list) and allowed and reset_type.value not in allowed:
            raise ValidationRuleViolation(
                "reset_type",
                f"{reset_type.value} is not allowed; manager supports {', '.join(allowed)}",
            )

        target_uri = action.get("target") or f"{manager_uri}/Actions/Manager.Reset"
        try:
            await client.post(target_uri, {"ResetType": reset_type.value})
        except RedfishError as e:
            raise SubmissionError(target_uri, str(e), e.status_code) from e

        logger.info(
            "Manager reset issued",
            extra={"manager_id": manager_id, "reset_type": reset_type.value},
        )

        if settle_seconds and not await sleep_before_poll(settle_seconds, deadline):
            raise ManagerUnreachable(manager_uri, max_wait, "deadline reached before first check")

        last_error = ""
        polls = 0
        for _ in range(poll_budget(max_wait, poll_interval)):
            if not await sleep_before_poll(poll_interval, deadline):
                break
            polls += 1
            try:
                await client.get(manager_uri)
            except RedfishError as e:
                last_error = str(e)
                logger.debug(
                    "Manager not answering yet",
                    extra={"uri": manager_uri, "error": last_error},
                )
                continue
            return ManagerResetResult(
                manager_id,
                reset_type,
                polls=polls,
                elapsed_seconds=time.monotonic() - started,
            )

        raise ManagerUnreachable(manager_uri, max_wait, last_error)
