"""
Fixed-window request throttle keyed by client address
"""

import math
import time
from dataclasses import dataclass
from typing import Callable

import structlog
from fastapi import Request

from mp3relay.errors import RateLimited
from mp3relay.memory_store import MemoryStore

logger = structlog.get_logger()


@dataclass
class RateWindow:
    client_key: str
    window_start: float
    count: int = 0


class RequestThrottle:
    """
    Caps requests per client within a window that opens on the client's
    first request (not aligned to the calendar).

    State lives in-process only; it does not survive restarts and is not
    shared between workers.

    Example:
        >>> throttle = RequestThrottle(limit=20, window_seconds=3600)
        >>> throttle.allow("203.0.113.7")
        True
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._windows: MemoryStore[RateWindow] = MemoryStore()

    def __len__(self) -> int:
        return len(self._windows)

    def _is_elapsed(self, window: RateWindow, now: float) -> bool:
        return now - window.window_start >= self.window_seconds

    def allow(self, client_key: str) -> bool:
        """
        Count a request and report whether it is within the ceiling.

        The read-modify-write below never awaits, so it is atomic on the
        event loop.
        """
        now = self._clock()
        window = self._windows.get(client_key)

        if window is None or self._is_elapsed(window, now):
            # Opening a window is a good moment to drop other stale ones
            self._windows.sweep(lambda w: self._is_elapsed(w, now))
            window = RateWindow(client_key=client_key, window_start=now)
            self._windows.set(client_key, window)

        window.count += 1
        return window.count <= self.limit

    def retry_after(self, client_key: str) -> int:
        """Seconds until the client's current window resets."""
        window = self._windows.get(client_key)
        if window is None:
            return 0
        remaining = window.window_start + self.window_seconds - self._clock()
        return max(int(math.ceil(remaining)), 0)

    def check(self, client_key: str) -> None:
        """
        Raises:
            RateLimited: If the client is over its ceiling
        """
        if self.allow(client_key):
            return
        retry_after = self.retry_after(client_key)
        logger.warning(
            "rate_limit_exceeded",
            throttle=self.name,
            client=client_key,
            limit=self.limit,
            retry_after=retry_after,
        )
        raise RateLimited(
            f"{self.name} throttle exceeded for {client_key}",
            retry_after=retry_after,
        )


def client_key_for(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def limit_convert_requests(request: Request) -> None:
    """Dependency applying the strict conversion ceiling."""
    request.app.state.convert_throttle.check(client_key_for(request))


async def limit_api_requests(request: Request) -> None:
    """Dependency applying the looser ceiling for the rest of the API."""
    request.app.state.api_throttle.check(client_key_for(request))
