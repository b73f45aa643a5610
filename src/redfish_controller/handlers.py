"""Resource handler contract.

A handler knows one resource family: where its current state lives, how
desired and current compare, which business rules apply and what requests
carry a change to the device. The orchestrator drives handlers through
read -> diff -> validate -> build and owns all locking, submission,
power and job handling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .config import DEFAULT_JOB_TIMEOUT_SECONDS
from .models import ResourceSpec
from .payload import ApplyTimePolicy, MaintenanceWindow, validate_apply_time
from .redfish_client import RedfishClient
from .registry import AttributeRegistry, RegistryClient, check_value

SpecT = TypeVar("SpecT", bound=ResourceSpec)


@dataclass
class CurrentState:
    """Device state read for one reconciliation.

    attributes is the reconciled view returned to the caller; context holds
    the URIs and raw documents needed to build submissions.
    """

    attributes: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)
    registry: AttributeRegistry | None = None
    supported_apply_times: list[str] | None = None


@dataclass
class Submission:
    """One request carrying a change to the device."""

    method: str
    uri: str
    body: dict[str, Any]
    description: str = ""
    # Device error text that means "nothing to do" rather than failure
    tolerated_error: str | None = None
    # Response body text that marks failure even on a 2xx status
    error_marker: str | None = None
    # The device answers with a job Location that must be awaited
    expects_job: bool = False


class ResourceHandler(ABC, Generic[SpecT]):
    """Base class for per-resource read/diff/validate/build logic."""

    # Attribute group name used in error messages and logs
    group: str = ""

    # Whether OnReset changes need the host rebooted to take effect
    resets_host: bool = True

    # Groups that only apply on reset reject Immediate
    rejects_immediate: bool = False

    # Policy the target applies when no apply-time object is sent
    default_policy: ApplyTimePolicy | None = None

    # Job timeout when neither the spec nor JOB_TIMEOUT sets one
    default_job_timeout: int = DEFAULT_JOB_TIMEOUT_SECONDS

    def __init__(self, spec: SpecT) -> None:
        self._spec = spec

    @property
    def spec(self) -> SpecT:
        return self._spec

    @property
    def apply_time(self) -> ApplyTimePolicy:
        return self._spec.apply_time

    @property
    def maintenance_window(self) -> MaintenanceWindow | None:
        return self._spec.maintenance_window

    @property
    def resource_name(self) -> str:
        return self._spec.kind

    @abstractmethod
    async def read(self, client: RedfishClient, registries: RegistryClient) -> CurrentState:
        """Read current state. RedfishError propagates to the orchestrator."""

    @abstractmethod
    def diff(self, current: CurrentState) -> dict[str, Any]:
        """Return the change set; empty when the device already matches."""

    def validate(self, diff: dict[str, Any], current: CurrentState) -> None:
        """Check apply time and registry constraints. Subclasses add business rules."""
        validate_apply_time(
            self.apply_time,
            self.maintenance_window,
            self.group,
            supported=current.supported_apply_times,
            rejects_immediate=self.rejects_immediate,
        )
        if current.registry is not None:
            for name, value in self.registry_values(diff).items():
                check_value(current.registry, name, value)

    def requires_reset(self, diff: dict[str, Any]) -> bool:
        """Whether the submitted change only takes effect after a host reset."""
        return self.resets_host and self.apply_time.requires_reset

    def registry_values(self, diff: dict[str, Any]) -> dict[str, Any]:
        """Registry-typed entries of the diff. Flat attribute diffs by default."""
        return diff

    @abstractmethod
    def build(self, diff: dict[str, Any], current: CurrentState) -> list[Submission]:
        """Return the requests that apply diff, in order."""
