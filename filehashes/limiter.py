"""filehashes concurrency limiter and cancellation token."""
from __future__ import annotations
import asyncio
from dataclasses import dataclass

DEFAULT_CONCURRENCY = 4


@dataclass
class ConcurrencyLimiter:
    """
    Counting gate that bounds how many hashing tasks run at once.
    - capacity: maximum number of units held at the same time
    - in_use / peak: current and highest observed number of holders
    """

    capacity: int = DEFAULT_CONCURRENCY

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {self.capacity}")
        self._sem = asyncio.Semaphore(self.capacity)
        self._in_use = 0
        self.peak = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    def locked(self) -> bool:
        return self._in_use >= self.capacity

    async def acquire(self) -> None:
        """Wait for a free unit. Cancelling the wait takes nothing."""
        await self._sem.acquire()
        self._in_use += 1
        if self._in_use > self.peak:
            self.peak = self._in_use

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("ConcurrencyLimiter released more than acquired")
        self._in_use -= 1
        self._sem.release()

    async def __aenter__(self) -> ConcurrencyLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc) -> None:
        self.release()


class CancelToken:
    """Advisory, one-way cancellation signal shared between a caller and tasks."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
