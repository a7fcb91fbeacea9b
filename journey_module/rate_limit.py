import asyncio
import time


class RateLimiter:
    """
    Async token bucket shared by every outbound call to the live data source.

    Tokens refill at one per `interval` seconds up to `capacity`. Callers
    queue on acquire() in arrival order; nothing else blocks on them.
    """

    def __init__(self, interval: float, capacity: int = 1, clock=time.monotonic, sleep=asyncio.sleep):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.interval = interval
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = None

    def _refill(self):
        now = self._clock()
        if self.interval == 0:
            self._tokens = float(self.capacity)
        else:
            elapsed = now - self._updated
            self._tokens = min(float(self.capacity), self._tokens + elapsed / self.interval)
        self._updated = now

    async def acquire(self):
        # Created lazily so the limiter can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                await self._sleep((1.0 - self._tokens) * self.interval)
                self._refill()
            self._tokens -= 1.0

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False
