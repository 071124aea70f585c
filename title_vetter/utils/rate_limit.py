from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import RateLimitError


class AsyncRateLimiter:
    """Paces outbound requests evenly across a minute."""

    def __init__(self, max_per_minute: int) -> None:
        self.max_per_minute = max(1, max_per_minute)
        self.interval = 60.0 / self.max_per_minute
        self._lock = asyncio.Lock()
        self._next_time = time.monotonic()

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if now < self._next_time:
                await asyncio.sleep(self._next_time - now)
            self._next_time = max(now, self._next_time) + self.interval


@dataclass
class RateLimitState:
    count: int
    window_start: float


class ClientRateLimiter:
    """Fixed-window request limit per client key, shared across requests."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.max_requests = max(1, max_requests)
        self.window_seconds = window_seconds
        self.clock = clock or time.time
        self._states: dict[str, RateLimitState] = {}
        self._lock = threading.Lock()
        self._last_sweep = self.clock()

    def check(self, client_key: str) -> RateLimitState:
        now = self.clock()
        with self._lock:
            # expired windows are swept at most once per window
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            state = self._states.get(client_key)
            if state is None or now - state.window_start >= self.window_seconds:
                state = RateLimitState(count=0, window_start=now)
                self._states[client_key] = state
            if state.count >= self.max_requests:
                reset_at = state.window_start + self.window_seconds
                raise RateLimitError(
                    f"Rate limit exceeded. Try again in {max(0, int(reset_at - now))} seconds.",
                    reset_at=reset_at,
                )
            state.count += 1
            return RateLimitState(count=state.count, window_start=state.window_start)

    def get(self, client_key: str) -> Optional[RateLimitState]:
        state = self._states.get(client_key)
        if state is None:
            return None
        return RateLimitState(count=state.count, window_start=state.window_start)

    def __len__(self) -> int:
        return len(self._states)

    def evict(self) -> int:
        with self._lock:
            return self._sweep(self.clock())

    def _sweep(self, now: float) -> int:
        stale = [key for key, state in self._states.items() if now - state.window_start >= self.window_seconds]
        for key in stale:
            del self._states[key]
        self._last_sweep = now
        return len(stale)
