import time
import asyncio

import config


class RateLimiter:
    """Spaces upstream model calls at least min_interval seconds apart."""

    def __init__(self, min_interval: float = config.API_CALL_DELAY):
        self.min_interval = min_interval
        self.last_request = 0.0
        self.total_requests = 0

    def seconds_until_ready(self) -> float:
        elapsed = time.monotonic() - self.last_request
        return max(self.min_interval - elapsed, 0.0)

    async def acquire(self) -> None:
        """Block until the spacing allows another request"""
        wait_time = self.seconds_until_ready()
        if self.last_request and wait_time > 0:
            await asyncio.sleep(wait_time)

        self.record_request()

    def record_request(self) -> None:
        self.last_request = time.monotonic()
        self.total_requests += 1
