"""
Request pacing for provider connectors.

Each connector owns one RateLimiter so a single account never sends more
than `requests_per_second` calls to its backend.
"""
import asyncio
import time
from typing import Optional


class RateLimiter:
    """Spaces successive calls at least 1/requests_per_second apart."""

    def __init__(self, requests_per_second: Optional[float] = 10.0):
        if requests_per_second and requests_per_second > 0:
            self.interval = 1.0 / requests_per_second
        else:
            self.interval = 0.0
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def throttle(self):
        if not self.interval:
            return
        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.interval:
                await asyncio.sleep(self.interval - elapsed)
            self._last_request = time.monotonic()
