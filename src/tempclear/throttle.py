"""Token bucket that shapes deletion throughput in bytes per second."""

import asyncio
import time
from typing import Callable


class TokenBucket:
    """
    Byte-rate limiter shared by all deletion workers.

    The bucket holds at most one second's worth of tokens (``capacity`` equals
    the rate) and starts full, so the first ``capacity`` bytes pass without
    waiting. Refill happens lazily on each acquisition attempt. Waiters poll
    every ``poll_interval`` seconds instead of being scheduled precisely, which
    is plenty for deletion-sized workloads.
    """

    def __init__(
        self,
        bytes_per_second: float,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        if bytes_per_second <= 0:
            raise ValueError(f"bytes_per_second must be > 0, got {bytes_per_second}")
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")

        self.rate = float(bytes_per_second)
        self.capacity = float(bytes_per_second)
        self.poll_interval = poll_interval
        self._clock = clock
        self.tokens = self.capacity
        self.last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return
        self.tokens = min(self.tokens + elapsed * self.rate, self.capacity)
        self.last_refill = now

    async def _acquire_chunk(self, amount: float) -> None:
        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= amount:
                    self.tokens -= amount
                    return
            await asyncio.sleep(self.poll_interval)

    async def acquire(self, nbytes: int) -> None:
        """
        Wait until ``nbytes`` tokens are available and take them.

        Requests larger than the capacity are taken in capacity-sized chunks,
        since the bucket can never hold more than one second's worth.
        """
        if nbytes < 0:
            raise ValueError(f"nbytes must be >= 0, got {nbytes}")

        remaining = float(nbytes)
        while remaining > 0:
            chunk = min(remaining, self.capacity)
            await self._acquire_chunk(chunk)
            remaining -= chunk
