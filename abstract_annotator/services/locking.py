"""Per-document mutual exclusion for read-modify-write sequences.

The key-value store has no transactions, so operations such as "write an
annotation, then recompute and write progress" take a lock token for the
document first. Tokens live in an in-process registry: they serialize callers
sharing one registry (one context) and do nothing across contexts that share
the same database.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from ..errors import LockReleaseError, OperationTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_STALE_AFTER = 10.0


class Deadline:
    """Overall time budget for one operation, fixed when the operation starts."""

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self._seconds = seconds
        self._expires_at = clock() + seconds

    @classmethod
    def start(cls, seconds: float = DEFAULT_TIMEOUT) -> "Deadline":
        return cls(seconds)

    @property
    def seconds(self) -> float:
        return self._seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, what: str) -> None:
        """Raise OperationTimeoutError if the budget is spent."""
        if self.expired():
            raise OperationTimeoutError(f"{what} exceeded the {self._seconds * 1000:.0f} ms deadline")


class LockRegistry:
    """Registry of held lock tokens, keyed by document id.

    Maps each held key to the monotonic time it was acquired, so holders can
    be aged by ``stale_locks``.
    """

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        stale_after: float = DEFAULT_STALE_AFTER,
    ):
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._stale_after = stale_after
        self._held: Dict[str, float] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def new_deadline(self) -> Deadline:
        return Deadline.start(self._timeout)

    def is_held(self, key: str) -> bool:
        return key in self._held

    def try_acquire(self, key: str) -> bool:
        """Take the token for ``key`` if it is free."""
        if key in self._held:
            return False
        self._held[key] = time.monotonic()
        return True

    async def acquire(self, key: str, deadline: Optional[Deadline] = None) -> None:
        """
        Take the token for ``key``, polling until it is free.

        Args:
            key: Document id to lock.
            deadline: Budget of the enclosing operation; a fresh one is
                started when omitted.

        Raises:
            OperationTimeoutError: If the deadline passes before the token frees.
        """
        deadline = deadline or self.new_deadline()
        attempts = 0
        while not self.try_acquire(key):
            attempts += 1
            if deadline.expired():
                logger.warning(f"Gave up waiting for lock on {key} after {attempts} attempts")
                raise OperationTimeoutError(
                    f"Lock on {key} not acquired within {deadline.seconds * 1000:.0f} ms"
                )
            logger.debug(f"Lock on {key} busy, retrying in {self._poll_interval}s")
            await asyncio.sleep(min(self._poll_interval, max(deadline.remaining(), 0.001)))

    def release(self, key: str) -> None:
        """Clear the token for ``key``."""
        if self._held.pop(key, None) is None:
            raise LockReleaseError(f"Lock on {key} released without being held")

    @asynccontextmanager
    async def hold(self, key: str, deadline: Optional[Deadline] = None) -> AsyncIterator[Deadline]:
        """Hold the token for ``key`` for the duration of the block.

        Yields the deadline so work inside the block shares the same budget.
        """
        deadline = deadline or self.new_deadline()
        await self.acquire(key, deadline)
        try:
            yield deadline
        finally:
            self.release(key)

    def stale_locks(self, max_age: float) -> Dict[str, float]:
        """Return held keys older than ``max_age`` seconds with their ages."""
        now = time.monotonic()
        return {
            key: now - acquired_at
            for key, acquired_at in self._held.items()
            if now - acquired_at > max_age
        }

    def sweep_stale(self, max_age: Optional[float] = None) -> Dict[str, float]:
        """Report holders older than ``max_age``, by default the registry's ``stale_after``.

        Holders are never force-released: a slow operation may still own the
        token, and waiters are already bounded by their own deadline.
        """
        stale = self.stale_locks(self._stale_after if max_age is None else max_age)
        for key, age in stale.items():
            logger.warning(f"Lock on {key} held for {age:.1f}s")
        return stale
