import asyncio
import time
from collections import deque
from typing import Deque, Optional

from asset_crawler.errors import Cancelled


class RateLimiter:
    """
    Token bucket shared by every worker of one job.

    The bucket holds ``capacity`` tokens and each spent token comes back
    exactly ``interval`` seconds after it was spent, so any window of
    ``interval`` seconds contains at most ``capacity`` grants. Waiters are
    served in arrival order (asyncio.Lock is FIFO).
    """

    def __init__(
        self,
        capacity: int,
        interval: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.capacity = capacity
        self.interval = interval
        self.cancel_event = cancel_event
        self._spent: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        while self._spent and now - self._spent[0] >= self.interval:
            self._spent.popleft()

    @property
    def available(self) -> int:
        self._refill(time.monotonic())
        return self.capacity - len(self._spent)

    async def acquire(self) -> None:
        """Block until a token is granted; raise ``Cancelled`` if the job is cancelled first."""
        async with self._lock:
            while True:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise Cancelled("cancelled while waiting for a request slot")

                now = time.monotonic()
                self._refill(now)
                if len(self._spent) < self.capacity:
                    self._spent.append(now)
                    return

                wait = self._spent[0] + self.interval - now
                await self._sleep(wait)

    async def _sleep(self, seconds: float) -> None:
        if self.cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
