"""Reconciliation error taxonomy.

Every error raised by the reconciliation core derives from ReconcileError.
Each one is terminal for the reconciliation call that raised it; the
orchestrator releases the endpoint lock and hands the error to the caller
with the attribute name, device message or timeout parameters attached.
"""

from __future__ import annotations

from typing import Any


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""

    pass


class LockUnavailable(ReconcileError):
    """Raised when the endpoint lock is not granted before the caller's deadline."""

    def __init__(self, endpoint_key: str, timeout: float) -> None:
        self.endpoint_key = endpoint_key
        self.timeout = timeout
        super().__init__(f"Endpoint lock for {endpoint_key} not acquired within {timeout}s")


# =============================================================================
# Registry and attribute validation
# =============================================================================


class RegistryError(ReconcileError):
    """Base class for attribute registry failures."""

    pass


class RegistryNotFound(RegistryError):
    """Raised when the named registry is absent from the registry collection."""

    def __init__(self, registry_name: str) -> None:
        self.registry_name = registry_name
        super().__init__(f"Attribute registry {registry_name} not found on device")


class RegistryFetchError(RegistryError):
    """Raised when the registry cannot be retrieved or parsed."""

    pass


class AttributeValidationError(ReconcileError):
    """Base class for per-attribute validation failures."""

    def __init__(self, attribute: str, message: str) -> None:
        self.attribute = attribute
        super().__init__(message)


class UnknownAttribute(AttributeValidationError):
    """Raised when an attribute is not declared by the registry."""

    def __init__(self, attribute: str, registry_name: str = "") -> None:
        where = f" in registry {registry_name}" if registry_name else ""
        super().__init__(attribute, f"Attribute {attribute} not found{where}")


class TypeCoercionError(AttributeValidationError):
    """Raised when a value cannot be converted to the attribute's declared type."""

    def __init__(self, attribute: str, value: Any, expected: str) -> None:
        self.value = value
        self.expected = expected
        super().__init__(
            attribute,
            f"Attribute {attribute}: cannot convert {value!r} to declared type {expected}",
        )


class ConstraintViolation(AttributeValidationError):
    """Raised when a coerced value violates a registry constraint."""

    pass


# =============================================================================
# Apply time and business rules
# =============================================================================


class UnsupportedApplyTime(ReconcileError):
    """Raised when an apply-time policy is not usable for an attribute group."""

    def __init__(self, group: str, apply_time: str, reason: str) -> None:
        self.group = group
        self.apply_time = apply_time
        super().__init__(f"Apply time {apply_time} is not supported by {group}: {reason}")


class ValidationRuleViolation(ReconcileError):
    """Raised when a resource business rule rejects the requested change."""

    def __init__(self, rule: str, detail: str) -> None:
        self.rule = rule
        self.detail = detail
        super().__init__(f"{rule}: {detail}")


# =============================================================================
# Device interaction
# =============================================================================


class SubmissionError(ReconcileError):
    """Raised when a PATCH/POST is rejected or fails in transport.

    applied lists the URIs of earlier submissions of the same call that the
    device already accepted; they are not rolled back.
    """

    def __init__(
        self,
        uri: str,
        message: str,
        status_code: int | None = None,
        applied: list[str] | None = None,
    ) -> None:
        self.uri = uri
        self.device_message = message
        self.status_code = status_code
        self.applied = list(applied or [])
        status = f" (HTTP {status_code})" if status_code else ""
        text = f"Submission to {uri} failed{status}: {message}"
        if self.applied:
            text += f"; already applied: {', '.join(self.applied)}"
        super().__init__(text)


class PowerTimeoutError(ReconcileError):
    """Raised when the host does not reach the expected power state in time."""

    def __init__(self, reset_type: str, max_wait: float, last_state: str) -> None:
        self.reset_type = reset_type
        self.max_wait = max_wait
        self.last_state = last_state
        super().__init__(
            f"Host did not reach the state expected by {reset_type} within {max_wait}s "
            f"(last reported power state: {last_state})"
        )


class ManagerUnreachable(ReconcileError):
    """Raised when a restarted manager does not answer again in time."""

    def __init__(self, uri: str, max_wait: float, last_error: str) -> None:
        self.uri = uri
        self.max_wait = max_wait
        self.last_error = last_error
        super().__init__(
            f"Manager {uri} did not answer within {max_wait}s of its reset"
            f" (last error: {last_error or 'none'})"
        )


class JobError(ReconcileError):
    """Base class for job/task failures."""

    pass


class MissingJobHandle(JobError):
    """Raised when the device returned no Location for an asynchronous operation."""

    pass


class UnknownJobShape(JobError):
    """Raised when a job URI is neither a Job nor a Task resource."""

    def __init__(self, uri: str) -> None:
        self.uri = uri
        super().__init__(f"Cannot classify job handle {uri} as a Job or Task resource")


class JobFailed(JobError):
    """Raised when a job or task reaches a failed terminal state."""

    def __init__(self, uri: str, reason: str) -> None:
        self.uri = uri
        self.reason = reason
        super().__init__(f"Job {uri} finished unsuccessfully: {reason}")


class JobTimedOut(JobError):
    """Raised when a job or task is still running after the timeout."""

    def __init__(self, uri: str, timeout: float, polls: int) -> None:
        self.uri = uri
        self.timeout = timeout
        self.polls = polls
        super().__init__(f"Job {uri} did not finish within {timeout}s ({polls} polls)")


class StateReadError(ReconcileError):
    """Raised when current device state cannot be read."""

    pass


class RereadError(StateReadError):
    """Raised when the final state cannot be re-read after submission."""

    pass
