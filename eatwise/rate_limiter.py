"""
Process-wide spacing of outbound LLM calls.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """
    Guarantees at least ``min_interval`` seconds between dispatches.

    Each caller reserves the next free slot and stores it as the last-call
    timestamp before sleeping, so concurrent callers are spaced out and dispatch
    in the order they arrived. Reservation happens without an ``await`` in
    between, which makes it atomic on the event loop.
    """

    def __init__(self, min_interval: float = 2.5):
        self.min_interval = min_interval
        self._last_call: Optional[float] = None

    def _reserve_slot(self, now: float) -> float:
        if self._last_call is None:
            slot = now
        else:
            slot = max(now, self._last_call + self.min_interval)
        self._last_call = slot
        return slot - now

    async def throttle(self, operation: Callable[[], Awaitable[T]]) -> T:
        now = asyncio.get_running_loop().time()
        wait = self._reserve_slot(now)
        if wait > 0:
            logger.debug(f"[RATE] waiting {wait:.2f}s before dispatch")
            await asyncio.sleep(wait)
        return await operation()
