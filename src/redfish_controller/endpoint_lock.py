"""Per-endpoint mutual exclusion.

One asyncio.Lock per BMC address, created on first use and kept for the
life of the process. A reconciliation holds its endpoint's lock from the
first read until the final reread so no two read-modify-write sequences
interleave against the same device. Locks on different endpoints are
independent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .errors import LockUnavailable

logger = logging.getLogger(__name__)


@dataclass
class EndpointLockHandle:
    """Token proving the holder owns an endpoint lock."""

    key: str
    lock: asyncio.Lock = field(repr=False)
    acquired_at: float = field(default_factory=time.monotonic)
    released: bool = False

    @property
    def held_seconds(self) -> float:
        return time.monotonic() - self.acquired_at


class EndpointLockManager:
    """Map of endpoint key to lock.

    Entries are never removed, so the map is bounded by the number of
    distinct endpoints contacted by this process.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        # Create lock if needed
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @property
    def known_endpoints(self) -> list[str]:
        return sorted(self._locks)

    async def acquire(self, key: str, timeout: float | None = None) -> EndpointLockHandle:
        """Block until the lock for key is held.

        Args:
            key: Normalised endpoint address.
            timeout: Optional caller deadline in seconds.

        Returns:
            Handle to pass to release().

        Raises:
            LockUnavailable: If timeout elapses before the lock is granted.
        """
        lock = self._get_lock(key)
        waited_from = time.monotonic()

        if timeout is None:
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=max(timeout, 0))
            except TimeoutError as e:
                raise LockUnavailable(key, timeout) from e

        logger.debug(
            "Acquired endpoint lock",
            extra={"endpoint": key, "waited_seconds": time.monotonic() - waited_from},
        )
        return EndpointLockHandle(key=key, lock=lock)

    def release(self, handle: EndpointLockHandle) -> None:
        """Release a held lock. Releasing twice is a no-op."""
        if handle.released:
            return
        handle.released = True
        handle.lock.release()
        logger.debug(
            "Released endpoint lock",
            extra={"endpoint": handle.key, "held_seconds": handle.held_seconds},
        )

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[EndpointLockHandle]:
        handle = await self.acquire(key, timeout=timeout)
        try:
            yield handle
        finally:
            # CONCURRENCY: Always release, including on error and cancellation
            self.release(handle)


# Global singleton shared by every reconciler in the process
_lock_manager: EndpointLockManager | None = None


def get_lock_manager() -> EndpointLockManager:
    """Get the process-wide endpoint lock manager."""
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = EndpointLockManager()
    return _lock_manager
