"""
Admission gate: per-client rate limiting plus a global concurrency limit.

The concurrency limiter keeps an explicit FIFO of waiting futures. Releasing
a slot hands it straight to the oldest live waiter, so a burst of new
arrivals can never overtake a queued request.
"""

import asyncio
import logging
import math
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass

from uisnap.errors import CapacityExceededError

logger = logging.getLogger(__name__)

# Hint returned when the wait queue itself is full.
QUEUE_FULL_RETRY_S = 5.0


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(self, limit: int = 10, window_s: float = 60.0, clock=time.monotonic):
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def check(self, client_id: str) -> int:
        """Count one request for `client_id`. Returns the remaining allowance.

        Raises CapacityExceededError carrying seconds until the window resets.
        """
        now = self._clock()
        window = self._windows.get(client_id)
        if window is None or now > window.reset_at:
            window = _Window(count=0, reset_at=now + self.window_s)
            self._windows[client_id] = window

        window.count += 1
        if window.count > self.limit:
            reset_in = max(1, math.ceil(window.reset_at - now))
            logger.warning(
                "Rate limit exceeded client=%s count=%d limit=%d reset_in=%ds",
                client_id, window.count, self.limit, reset_in,
            )
            raise CapacityExceededError(
                f"Rate limit exceeded: {self.limit} requests per {self.window_s:g}s",
                retry_after_s=reset_in,
                code="RATE_LIMITED",
                details={"limit": self.limit, "windowSeconds": self.window_s},
            )
        return self.limit - window.count

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        expired = [cid for cid, w in self._windows.items() if now > w.reset_at]
        for cid in expired:
            del self._windows[cid]
        if expired:
            logger.debug("Rate limit map cleaned removed=%d remaining=%d", len(expired), len(self._windows))
        return len(expired)

    async def run_sweeper(self, interval_s: float):
        while True:
            await asyncio.sleep(interval_s)
            self.sweep()

    @property
    def tracked_clients(self) -> int:
        return len(self._windows)


# ---------------------------------------------------------------------------
# Concurrency limiter
# ---------------------------------------------------------------------------

class ConcurrencyLimiter:
    def __init__(self, max_active: int = 3, max_queue: int = 10):
        self.max_active = max_active
        self.max_queue = max_queue
        self._active = 0
        self._waiters: deque = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    def stats(self) -> dict:
        return {"active": self._active, "max": self.max_active, "queued": self.queued}

    async def acquire(self):
        if self._active < self.max_active and not self.queued:
            self._active += 1
            logger.debug("Slot acquired active=%d", self._active)
            return

        if self.queued >= self.max_queue:
            logger.warning(
                "Concurrency queue full, rejecting active=%d queued=%d", self._active, self.queued,
            )
            raise CapacityExceededError(
                "Server is at maximum capacity",
                retry_after_s=QUEUE_FULL_RETRY_S,
                details={
                    "maxConcurrent": self.max_active,
                    "activeRequests": self._active,
                    "queuedRequests": self.queued,
                },
            )

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.info("Request queued active=%d queued=%d", self._active, self.queued)
        try:
            await fut
        except BaseException:
            if fut.done() and not fut.cancelled():
                # The slot was handed over just before we were cancelled.
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise
        logger.debug("Queued request starting active=%d", self._active)

    def release(self):
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Hand the slot over; the active count is unchanged.
                fut.set_result(None)
                return
        self._active = max(0, self._active - 1)
        logger.debug("Slot released active=%d", self._active)

    @asynccontextmanager
    async def slot(self):
        await self.acquire()
        try:
            yield
        finally:
            self.release()


class AdmissionGate:
    """Rate check on entry, concurrency slot around the browser-bound region."""

    def __init__(self, rate_limiter: RateLimiter, limiter: ConcurrencyLimiter):
        self.rate_limiter = rate_limiter
        self.limiter = limiter

    def admit(self, client_id: str) -> int:
        return self.rate_limiter.check(client_id)

    def slot(self):
        return self.limiter.slot()

    def stats(self) -> dict:
        return {**self.limiter.stats(), "rateLimitedClients": self.rate_limiter.tracked_clients}
