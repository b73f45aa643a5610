"""Reconciliation orchestrator.

One reconciliation call brings one resource on one BMC to its desired state:

1. Lock the endpoint
2. Read current state (and the attribute registry where one applies)
3. Diff desired against current; an empty diff skips straight to step 8
4. Validate apply time, registry constraints and resource business rules
5. Submit the change
6. Power-cycle the host when the change applies on reset
7. Wait for the job the submission created
8. Re-read the final state
9. Release the endpoint lock

Every failure is terminal for the call. The lock is released on every exit
path and the final re-read is skipped once an error has occurred.

Power and ManagerReset specs are one-shot actions: they take the same
endpoint lock but skip read, diff and job handling.

Transport errors (RedfishError) raised by a handler are translated into the
error for the phase they happened in (StateReadError, SubmissionError,
JobFailed, RereadError).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from functools import partial
from typing import Any

from .bios import BiosHandler
from .boot_order import BootOrderHandler
from .config import ConfigurationError, ControllerConfig
from .directory_service import DirectoryServiceHandler
from .endpoint_lock import EndpointLockHandle, EndpointLockManager, get_lock_manager
from .errors import (
    JobFailed,
    JobTimedOut,
    LockUnavailable,
    ManagerUnreachable,
    MissingJobHandle,
    ReconcileError,
    RereadError,
    StateReadError,
    SubmissionError,
)
from .handlers import CurrentState, ResourceHandler, Submission
from .jobs import JobHandle, JobOutcome, JobPoller, JobStatus
from .manager_attributes import ManagerAttributesHandler
from .manager_reset import ManagerResetOperator
from .models import (
    BiosSpec,
    BootOrderSpec,
    DirectoryServiceSpec,
    ManagerAttributesSpec,
    ManagerResetSpec,
    NICSpec,
    PowerSpec,
    ResourceSpec,
    StorageControllerSpec,
    StorageVolumeSpec,
)
from .nic import NICHandler
from .power import PowerOperator, PowerResult
from .provenance import ReconcileProvenance, get_provenance_logger
from .redfish_client import ManagedEndpoint, RedfishClient, RedfishError, RedfishResponse
from .registry import RegistryClient
from .storage_controller import StorageControllerHandler
from .storage_volume import StorageVolumeHandler

logger = logging.getLogger(__name__)

HANDLER_CLASSES: dict[type[ResourceSpec], type[ResourceHandler[Any]]] = {
    BiosSpec: BiosHandler,
    BootOrderSpec: BootOrderHandler,
    ManagerAttributesSpec: ManagerAttributesHandler,
    NICSpec: NICHandler,
    StorageControllerSpec: StorageControllerHandler,
    DirectoryServiceSpec: DirectoryServiceHandler,
    StorageVolumeSpec: StorageVolumeHandler,
}


class ReconcilePhase(str, Enum):
    """States of one reconciliation call, in the order they are entered."""

    LOCKED = "Locked"
    READ = "Read"
    DIFFED = "Diffed"
    VALIDATED = "Validated"
    SUBMITTED = "Submitted"
    POWER_CYCLING = "PowerCycling"
    MANAGER_RESETTING = "ManagerResetting"
    POLLING = "Polling"
    REREAD = "Reread"
    RELEASED = "Released"


@dataclass
class ReconcileResult:
    """Result of a single reconciliation call."""

    endpoint: str
    resource: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    phases: list[ReconcilePhase] = field(default_factory=list)
    initial_state: dict[str, Any] | None = None
    diff: dict[str, Any] = field(default_factory=dict)
    submissions: int = 0
    job_outcome: JobOutcome | None = None
    power_result: PowerResult | None = None
    final_state: dict[str, Any] | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None

    @property
    def changed(self) -> bool:
        return self.submissions > 0 or (
            self.power_result is not None and self.power_result.changed
        )


def handler_for(spec: ResourceSpec) -> ResourceHandler[Any]:
    """Build the resource handler for a spec.

    Raises:
        ValueError: If the spec has no handler (Power and ManagerReset specs
            are actions and go through Reconciler.reconcile_spec).
    """
    handler_class = HANDLER_CLASSES.get(type(spec))
    if handler_class is None:
        raise ValueError(f"No resource handler for kind '{spec.kind}'")
    return handler_class(spec)


class Reconciler:
    """Drives resource handlers through the reconciliation state machine.

    The endpoint lock manager is shared process-wide by default so every
    reconciler serialises against the same BMC.
    """

    def __init__(
        self,
        config: ControllerConfig,
        lock_manager: EndpointLockManager | None = None,
    ) -> None:
        self._config = config
        self._locks = lock_manager or get_lock_manager()
        self._poller = JobPoller()

    @property
    def lock_manager(self) -> EndpointLockManager:
        return self._locks

    def endpoint_for(self, spec: ResourceSpec) -> ManagedEndpoint:
        """Connection parameters from the spec, falling back to configuration.

        Raises:
            ConfigurationError: If neither names a BMC.
        """
        if spec.redfish_server is not None:
            return spec.redfish_server.to_endpoint()
        if not self._config.endpoint:
            raise ConfigurationError(
                f"{spec.kind} spec has no redfishServer and REDFISH_ENDPOINT is not set"
            )
        return ManagedEndpoint(
            address=self._config.endpoint,
            username=self._config.username,
            password=self._config.password,
            ssl_insecure=self._config.ssl_insecure,
        )

    async def apply(
        self, spec: ResourceSpec, deadline_seconds: float | None = None
    ) -> ReconcileResult:
        """Reconcile a spec and raise its error instead of returning it.

        Raises:
            ReconcileError: Any failure of the reconciliation call.
        """
        result = await self.reconcile_spec(spec, deadline_seconds)
        if result.error is not None:
            raise result.error
        return result

    async def reconcile_spec(
        self, spec: ResourceSpec, deadline_seconds: float | None = None
    ) -> ReconcileResult:
        """Reconcile any spec kind against the BMC it names."""
        endpoint = self.endpoint_for(spec)
        if isinstance(spec, PowerSpec):
            return await self.reconcile_power(endpoint, spec, deadline_seconds)
        if isinstance(spec, ManagerResetSpec):
            return await self.reconcile_manager_reset(endpoint, spec, deadline_seconds)
        return await self.reconcile(endpoint, handler_for(spec), deadline_seconds)

    def job_timeout(self, handler: ResourceHandler[Any]) -> int:
        """Spec jobTimeout, then JOB_TIMEOUT, then the resource default."""
        return (
            handler.spec.job_timeout
            or self._config.job_timeout_seconds
            or handler.default_job_timeout
        )

    def reset_timeout(self, spec: ResourceSpec) -> int:
        """Spec resetTimeout, then RESET_TIMEOUT."""
        return spec.reset_timeout or self._config.reset_timeout_seconds

    def _deadline(self, deadline_seconds: float | None) -> float | None:
        if deadline_seconds is None:
            return None
        return asyncio.get_running_loop().time() + deadline_seconds

    async def _acquire(
        self, endpoint: ManagedEndpoint, deadline: float | None
    ) -> EndpointLockHandle:
        timeout = None
        if deadline is not None:
            timeout = max(deadline - asyncio.get_running_loop().time(), 0.0)
        return await self._locks.acquire(endpoint.key, timeout=timeout)

    async def reconcile(
        self,
        endpoint: ManagedEndpoint,
        handler: ResourceHandler[Any],
        deadline_seconds: float | None = None,
    ) -> ReconcileResult:
        """Run one reconciliation call.

        Args:
            endpoint: BMC to reconcile against.
            handler: Resource handler carrying the desired spec.
            deadline_seconds: Optional overall deadline. It bounds lock
                acquisition and both poll loops.

        Returns:
            ReconcileResult; check success/error rather than catching.
        """
        result = ReconcileResult(endpoint=endpoint.key, resource=handler.resource_name)
        provenance = get_provenance_logger().create_provenance(
            endpoint=endpoint.key,
            resource=handler.resource_name,
            apply_time=handler.apply_time.value,
        )
        deadline = self._deadline(deadline_seconds)

        try:
            lock = await self._acquire(endpoint, deadline)
            result.phases.append(ReconcilePhase.LOCKED)
            client = RedfishClient(endpoint, timeout_seconds=self._config.http_timeout_seconds)
            try:
                await self._run(client, handler, result, deadline)
            finally:
                client.close()
                self._locks.release(lock)
                result.phases.append(ReconcilePhase.RELEASED)

            logger.info(
                "Reconciliation complete",
                extra={
                    "endpoint": endpoint.key,
                    "resource": handler.resource_name,
                    "changed_attributes": sorted(result.diff),
                    "phases": [phase.value for phase in result.phases],
                },
            )

        except LockUnavailable as e:
            logger.warning(
                "Endpoint busy, reconciliation skipped",
                extra={"endpoint": endpoint.key, "timeout": e.timeout},
            )
            result.error = e
        except JobTimedOut as e:
            logger.error(
                "Job did not finish in time",
                extra={"endpoint": endpoint.key, "job_uri": e.uri, "polls": e.polls},
            )
            result.error = e
        except ReconcileError as e:
            logger.error(
                "Reconciliation failed",
                extra={
                    "endpoint": endpoint.key,
                    "resource": handler.resource_name,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_provenance(provenance, result)
        return result

    async def _run(
        self,
        client: RedfishClient,
        handler: ResourceHandler[Any],
        result: ReconcileResult,
        deadline: float | None,
    ) -> None:
        registries = RegistryClient(client)

        try:
            current = await handler.read(client, registries)
        except RedfishError as e:
            raise StateReadError(f"Failed to read {handler.resource_name}: {e}") from e
        result.phases.append(ReconcilePhase.READ)
        result.initial_state = current.attributes

        diff = handler.diff(current)
        result.diff = diff
        result.phases.append(ReconcilePhase.DIFFED)

        if diff:
            handler.validate(diff, current)
            result.phases.append(ReconcilePhase.VALIDATED)

            location = await self._submit(client, handler, diff, current, result)
            result.phases.append(ReconcilePhase.SUBMITTED)

            if handler.requires_reset(diff):
                result.phases.append(ReconcilePhase.POWER_CYCLING)
                operator = PowerOperator(handler.spec.system_id)
                result.power_result = await operator.operate(
                    client,
                    handler.spec.reset_type,
                    self.reset_timeout(handler.spec),
                    self._config.power_poll_interval_seconds,
                    deadline=deadline,
                )

            if location and handler.apply_time.waits_for_job:
                result.phases.append(ReconcilePhase.POLLING)
                job_timeout = self.job_timeout(handler)
                outcome = await self._wait_for_job(
                    client, JobHandle.from_location(location), job_timeout, deadline
                )
                result.job_outcome = outcome
                if outcome.status is JobStatus.FAILED:
                    raise JobFailed(outcome.handle.uri, outcome.reason)
                if outcome.status is JobStatus.TIMED_OUT:
                    raise JobTimedOut(outcome.handle.uri, job_timeout, outcome.polls)
        else:
            logger.info(
                "Desired state already applied",
                extra={"endpoint": client.endpoint.key, "resource": handler.resource_name},
            )

        try:
            final = await handler.read(client, registries)
        except RedfishError as e:
            raise RereadError(f"Failed to re-read {handler.resource_name}: {e}") from e
        result.phases.append(ReconcilePhase.REREAD)
        result.final_state = final.attributes

    async def _submit(
        self,
        client: RedfishClient,
        handler: ResourceHandler[Any],
        diff: dict[str, Any],
        current: CurrentState,
        result: ReconcileResult,
    ) -> str | None:
        """Send every submission in order. Returns the last job Location.

        Raises:
            SubmissionError: naming, in applied, the submissions the device
                accepted before the one that failed.
        """
        location: str | None = None
        applied: list[str] = []
        for submission in handler.build(diff, current):
            try:
                response = await self._send(client, submission)
            except SubmissionError as e:
                if not applied:
                    raise
                logger.error(
                    "Change partially applied",
                    extra={"failed_uri": e.uri, "applied_uris": applied},
                )
                raise SubmissionError(e.uri, e.device_message, e.status_code, applied) from e
            if response is None:
                continue
            applied.append(submission.uri)
            result.submissions += 1
            if response.location:
                location = response.location
            elif submission.expects_job and handler.apply_time.waits_for_job:
                raise MissingJobHandle(
                    f"{submission.method} {submission.uri} returned no job Location"
                )
        return location

    async def _send(self, client: RedfishClient, submission: Submission) -> RedfishResponse | None:
        logger.info(
            "Submitting change",
            extra={
                "method": submission.method,
                "uri": submission.uri,
                "description": submission.description,
            },
        )
        try:
            if submission.method == "POST":
                response = await client.post(submission.uri, submission.body)
            else:
                response = await client.patch(submission.uri, submission.body)
        except RedfishError as e:
            if submission.tolerated_error and submission.tolerated_error in str(e):
                logger.info(
                    "Device reported nothing to do",
                    extra={"uri": submission.uri, "device_message": submission.tolerated_error},
                )
                return None
            raise SubmissionError(submission.uri, str(e), e.status_code) from e

        if submission.error_marker and submission.error_marker in response.body:
            raise SubmissionError(
                submission.uri,
                str(response.body[submission.error_marker]),
                response.status_code,
            )
        return response

    async def _wait_for_job(
        self,
        client: RedfishClient,
        handle: JobHandle,
        timeout: float,
        deadline: float | None,
    ) -> JobOutcome:
        try:
            outcome = await self._poller.wait(
                client,
                handle,
                self._config.job_poll_interval_seconds,
                timeout,
                deadline=deadline,
            )
        except RedfishError as e:
            raise JobFailed(handle.uri, f"polling failed: {e}") from e
        return outcome

    async def reconcile_power(
        self,
        endpoint: ManagedEndpoint,
        spec: PowerSpec,
        deadline_seconds: float | None = None,
    ) -> ReconcileResult:
        """Drive the host power state under the endpoint lock.

        The final state reports power_state, with Reset_On after a restart.
        """
        return await self._reconcile_action(
            endpoint, spec, partial(self._operate_power, spec), deadline_seconds
        )

    async def reconcile_manager_reset(
        self,
        endpoint: ManagedEndpoint,
        spec: ManagerResetSpec,
        deadline_seconds: float | None = None,
    ) -> ReconcileResult:
        """Restart the manager under the endpoint lock and wait until it answers.

        Every call issues the reset; the final state names the manager.
        """
        return await self._reconcile_action(
            endpoint, spec, partial(self._operate_manager_reset, spec), deadline_seconds
        )

    async def _operate_power(
        self,
        spec: PowerSpec,
        client: RedfishClient,
        result: ReconcileResult,
        deadline: float | None,
    ) -> None:
        result.phases.append(ReconcilePhase.POWER_CYCLING)
        power = await PowerOperator(spec.system_id).operate(
            client,
            spec.desired_power_action,
            spec.maximum_wait_time or self._config.reset_timeout_seconds,
            spec.check_interval or self._config.power_poll_interval_seconds,
            deadline=deadline,
        )
        result.power_result = power
        result.initial_state = {"power_state": power.initial_state.value}
        result.final_state = {"power_state": power.reported_state}

    async def _operate_manager_reset(
        self,
        spec: ManagerResetSpec,
        client: RedfishClient,
        result: ReconcileResult,
        deadline: float | None,
    ) -> None:
        result.phases.append(ReconcilePhase.MANAGER_RESETTING)
        try:
            reset = await ManagerResetOperator(spec.manager_id).operate(
                client,
                spec.reset_type,
                self.reset_timeout(spec),
                spec.check_interval or self._config.power_poll_interval_seconds,
                settle_seconds=spec.settle_time,
                deadline=deadline,
            )
        except ManagerUnreachable:
            # The reset itself was accepted
            result.submissions = 1
            raise
        result.submissions = 1
        result.final_state = {
            "manager_id": reset.manager_id,
            "reset_type": reset.reset_type.value,
            "reachable": True,
        }

    async def _reconcile_action(
        self,
        endpoint: ManagedEndpoint,
        spec: ResourceSpec,
        action: Callable[[RedfishClient, ReconcileResult, float | None], Awaitable[None]],
        deadline_seconds: float | None,
    ) -> ReconcileResult:
        """Run a one-shot device action between lock and release."""
        result = ReconcileResult(endpoint=endpoint.key, resource=spec.kind)
        provenance = get_provenance_logger().create_provenance(
            endpoint=endpoint.key, resource=spec.kind, apply_time=""
        )
        deadline = self._deadline(deadline_seconds)

        try:
            lock = await self._acquire(endpoint, deadline)
            result.phases.append(ReconcilePhase.LOCKED)
            client = RedfishClient(endpoint, timeout_seconds=self._config.http_timeout_seconds)
            try:
                await action(client, result, deadline)
            finally:
                client.close()
                self._locks.release(lock)
                result.phases.append(ReconcilePhase.RELEASED)

        except ReconcileError as e:
            logger.error(
                "Device action failed",
                extra={
                    "endpoint": endpoint.key,
                    "resource": spec.kind,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during device action")
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_provenance(provenance, result)
        return result

    def _log_provenance(self, provenance: ReconcileProvenance, result: ReconcileResult) -> None:
        if not self._config.enable_audit_logging:
            return
        provenance.phases = [phase.value for phase in result.phases]
        provenance.changed_attributes = sorted(result.diff)
        provenance.duration_seconds = result.duration_seconds
        if result.job_outcome is not None:
            provenance.job_uri = result.job_outcome.handle.uri
            provenance.job_status = result.job_outcome.status.value
        if result.power_result is not None and result.power_result.issued is not None:
            provenance.power_action = result.power_result.issued.value
        if result.error:
            provenance.error = str(result.error)
            provenance.error_type = type(result.error).__name__
        get_provenance_logger().log_provenance(provenance)
