"""Sliding-window rate limiter for outbound provider calls.

Each provider client owns one limiter. ``acquire()`` never fails; it only
delays the caller until one more call fits inside the trailing window.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_calls`` acquisitions per ``window_seconds``."""

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1 (got {max_calls})")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0 (got {window_seconds})")
        self.max_calls = max_calls
        self.window_seconds = float(window_seconds)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._calls: Deque[float] = deque()
        self._lock: Optional[asyncio.Lock] = None
        self.total_acquired = 0
        self.total_waits = 0
        self.total_wait_seconds = 0.0

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the limiter can be built outside a running loop.
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    async def acquire(self) -> float:
        """Wait until a call is allowed, record it, and return the seconds waited."""
        waited = 0.0
        async with self._get_lock():
            now = self._clock()
            self._evict(now)
            while len(self._calls) >= self.max_calls:
                wait = self.window_seconds - (now - self._calls[0])
                logger.warning(
                    "%s rate limit reached, waiting %.2fs", self.name, wait,
                    extra={"event": "rate_limiter.wait", "provider": self.name, "wait_seconds": round(wait, 3)},
                )
                self.total_waits += 1
                self.total_wait_seconds += wait
                waited += wait
                await self._sleep(wait)
                now = self._clock()
                # the lock is held, so the oldest call has aged out of the window while we slept
                self._calls.popleft()
                self._evict(now)
            self._calls.append(now)
            self.total_acquired += 1
        return waited

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        self._evict(now)
        return {
            "max_calls": self.max_calls,
            "window_seconds": self.window_seconds,
            "current_calls": len(self._calls),
            "total_acquired": self.total_acquired,
            "total_waits": self.total_waits,
            "total_wait_seconds": round(self.total_wait_seconds, 3),
        }


__all__ = ["RateLimiter"]
