"""Job and task polling.

A PATCH/POST that starts asynchronous work answers with a Location header
pointing either at a Job (JobService or a Dell manager Jobs collection,
JobState documents) or at a Task (TaskService, TaskState documents with
Messages). Both are polled the same way and reduced to one JobOutcome.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import MissingJobHandle, UnknownJobShape
from .redfish_client import RedfishClient, to_path

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    """Wire shape of an asynchronous operation resource."""

    JOB = "Job"
    TASK = "Task"


class JobStatus(str, Enum):
    """Terminal classification of a job or task."""

    COMPLETED = "Completed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


_JOB_FAILED_STATES = {"Failed", "Exception", "Cancelled", "CompletedWithErrors"}
_TASK_FAILED_STATES = {"Exception", "Killed", "Cancelled"}


@dataclass(frozen=True)
class JobHandle:
    """URI of an asynchronous operation plus its wire shape."""

    uri: str
    kind: JobKind

    @classmethod
    def from_location(cls, location: str | None) -> JobHandle:
        """Classify a Location header value.

        Task monitors are polled through the task resource they monitor.

        Raises:
            MissingJobHandle: If the device did not populate Location.
            UnknownJobShape: If the path is neither a job nor a task.
        """
        if not location or not location.strip():
            raise MissingJobHandle("Device returned no Location for the asynchronous operation")

        uri = to_path(location.strip()).replace("TaskMonitors", "Tasks")
        segments = [segment for segment in uri.split("/") if segment]

        if "Jobs" in segments or "JobService" in segments:
            return cls(uri, JobKind.JOB)
        if "Tasks" in segments or "TaskService" in segments:
            return cls(uri, JobKind.TASK)
        raise UnknownJobShape(uri)


@dataclass
class JobOutcome:
    """Terminal result of polling a job handle."""

    handle: JobHandle
    status: JobStatus
    reason: str = ""
    polls: int = 0
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.COMPLETED


def _messages(document: dict[str, Any]) -> str:
    texts = [
        str(message.get("Message", ""))
        for message in document.get("Messages") or []
        if isinstance(message, dict) and message.get("Message")
    ]
    if document.get("Message"):
        texts.append(str(document["Message"]))
    return "; ".join(texts)


def decode_job(document: dict[str, Any]) -> tuple[JobStatus | None, str]:
    """Classify a Job document. Returns (None, "") while it is still running."""
    dell = (document.get("Oem") or {}).get("Dell") or {}
    if dell.get("JobState") == "Failed":
        return JobStatus.FAILED, str(dell.get("Message") or _messages(document) or "Failed")

    state = str(document.get("JobState", ""))
    if state == "Completed":
        return JobStatus.COMPLETED, ""
    if state in _JOB_FAILED_STATES:
        reason = _messages(document) or str(dell.get("Message") or "")
        return JobStatus.FAILED, reason or f"the job has finished unsuccessfully with a {state} state"
    return None, ""


def decode_task(document: dict[str, Any]) -> tuple[JobStatus | None, str]:
    """Classify a Task document. Returns (None, "") while it is still running."""
    state = str(document.get("TaskState", ""))
    if state == "Completed":
        return JobStatus.COMPLETED, ""
    if state in _TASK_FAILED_STATES:
        reason = _messages(document)
        return JobStatus.FAILED, reason or f"the task has finished unsuccessfully with a {state} state"
    return None, ""


_DECODERS = {
    JobKind.JOB: decode_job,
    JobKind.TASK: decode_task,
}


def poll_budget(timeout: float, poll_interval: float) -> int:
    """Number of polls that fit in timeout (timeout 5, interval 1 -> 5)."""
    if timeout <= 0:
        return 0
    # Tolerance keeps 0.05 / 0.01 at 5 polls despite float rounding
    return max(1, math.ceil(timeout / poll_interval - 1e-9))


async def sleep_before_poll(poll_interval: float, deadline: float | None = None) -> bool:
    """Sleep until the next poll is due.

    The sleep is clamped to a caller deadline (absolute event-loop time).
    Returns False once the deadline is reached; the caller then stops
    without fetching again.
    """
    if deadline is None:
        await asyncio.sleep(poll_interval)
        return True

    loop = asyncio.get_running_loop()
    remaining = deadline - loop.time()
    if remaining <= 0:
        return False
    await asyncio.sleep(min(poll_interval, remaining))
    return loop.time() < deadline


class JobPoller:
    """Polls a job handle until it is terminal or the timeout elapses."""

    async def wait(
        self,
        client: RedfishClient,
        handle: JobHandle,
        poll_interval: float,
        timeout: float,
        deadline: float | None = None,
    ) -> JobOutcome:
        """Poll handle every poll_interval for at most timeout seconds.

        The poll budget is timeout / poll_interval fetches; a caller
        deadline (absolute event-loop time) cuts it short. Transport errors
        propagate to the caller.

        Returns:
            JobOutcome with status Completed, Failed or TimedOut.
        """
        decoder = _DECODERS[handle.kind]
        started = time.monotonic()
        polls = 0

        for _ in range(poll_budget(timeout, poll_interval)):
            if not await sleep_before_poll(poll_interval, deadline):
                break
            polls += 1

            document = await client.get(handle.uri)
            status, reason = decoder(document)
            logger.debug(
                "Polled job",
                extra={
                    "job_uri": handle.uri,
                    "kind": handle.kind.value,
                    "state": document.get("JobState") or document.get("TaskState"),
                    "percent_complete": document.get("PercentComplete"),
                    "poll": polls,
                },
            )
            if status is not None:
                outcome = JobOutcome(
                    handle,
                    status,
                    reason,
                    polls=polls,
                    elapsed_seconds=time.monotonic() - started,
                )
                logger.info(
                    "Job finished",
                    extra={"job_uri": handle.uri, "status": status.value, "polls": polls},
                )
                return outcome

        logger.warning(
            "Job timed out",
            extra={"job_uri": handle.uri, "timeout_seconds": timeout, "polls": polls},
        )
        return JobOutcome(
            handle,
            JobStatus.TIMED_OUT,
            f"still running after {timeout}s",
            polls=polls,
            elapsed_seconds=time.monotonic() - started,
        )
