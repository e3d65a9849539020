"""Async rate limiter combining a per-minute sliding window and a minimum spacing."""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limiter shared by the outbound HTTP and LLM clients.

    ``requests_per_minute`` caps the burst; ``min_interval`` enforces a
    minimum gap between consecutive requests (Google endpoints throttle
    tight loops long before the per-minute cap is reached).

    Usage::

        limiter = RateLimiter(requests_per_minute=30, min_interval=0.25)

        async with limiter:
            await make_request()
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        min_interval: float = 0.0,
        name: str = "default",
    ):
        self._rpm = max(1, requests_per_minute)
        self._min_interval = max(0.0, min_interval)
        self._name = name
        self._window: list[float] = []
        self._last: float | None = None
        self._lock = asyncio.Lock()

    def _wait_time(self, now: float) -> float:
        self._window = [t for t in self._window if now - t < 60.0]
        wait = 0.0
        if len(self._window) >= self._rpm:
            wait = 60.0 - (now - self._window[0])
        if self._last is not None and self._min_interval:
            wait = max(wait, self._min_interval - (now - self._last))
        return wait

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            while True:
                wait = self._wait_time(time.monotonic())
                if wait <= 0:
                    break
                logger.debug("RateLimiter(%s) sleeping %.2fs", self._name, wait)
                await asyncio.sleep(wait)
            now = time.monotonic()
            self._window.append(now)
            self._last = now

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *args):
        pass

    @property
    def requests_in_last_minute(self) -> int:
        """Number of requests made in the last 60 seconds."""
        now = time.monotonic()
        return len([t for t in self._window if now - t < 60.0])
