"""Per-request time budget shared by every suspension point."""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from uisnap.errors import StageTimeoutError

T = TypeVar("T")


class Deadline:
    def __init__(self, budget_s: float, clock=time.monotonic):
        self.budget_s = budget_s
        self._clock = clock
        self._expires_at = clock() + budget_s

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def stage_budget(self, stage_timeout_s: Optional[float] = None) -> float:
        remaining = self.remaining()
        if stage_timeout_s is None:
            return remaining
        return min(stage_timeout_s, remaining)

    async def run(self, stage: str, aw: Awaitable[T], stage_timeout_s: Optional[float] = None) -> T:
        """Await `aw` within the stage budget; a timeout cancels only this stage."""
        budget = self.stage_budget(stage_timeout_s)
        if budget <= 0:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise StageTimeoutError(stage, 0.0)
        try:
            return await asyncio.wait_for(aw, timeout=budget)
        except asyncio.TimeoutError:
            raise StageTimeoutError(stage, round(budget, 3))
