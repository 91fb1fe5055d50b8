from __future__ import annotations
import asyncio, logging, time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from ..domain.errors import ScanCancelled, Timeout, UpstreamUnavailable

log = logging.getLogger(__name__)
T = TypeVar("T")


class ConcurrencyLimiter:
    """Fixed number of slots shared by every remote call of every scan.

    The semaphore is created per running event loop, so one limiter (and the
    engine holding it) can be driven by successive ``asyncio.run`` calls."""

    def __init__(self, slots: int) -> None:
        if slots < 1:
            raise ValueError(f"slots must be >= 1, got {slots}")
        self.slots = slots
        self._sem: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.in_flight = 0
        self.peak = 0
        self.issued = 0

    def _semaphore(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._sem is None or self._loop is not loop:
            self._sem = asyncio.Semaphore(self.slots)
            self._loop = loop
        return self._sem

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore():
            self.in_flight += 1
            self.issued += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                yield
            finally:
                self.in_flight -= 1


class CancelToken:
    """Per-scan cancellation: explicit cancel() or a wall-clock deadline."""

    def __init__(self, deadline_s: float | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = asyncio.Event()
        self._clock = clock
        self._deadline = None if deadline_s is None else clock() + deadline_s

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())


async def guarded_call(
    limiter: ConcurrencyLimiter,
    fn: Callable[[], Awaitable[T]],
    *,
    what: str,
    timeout_s: float,
    retries: int = 1,
    backoff_s: float = 0.0,
    token: CancelToken | None = None,
) -> T:
    """Run one remote call through the limiter with its own timeout and a
    bounded, item-local retry. Raises the last Timeout/UpstreamUnavailable,
    or ScanCancelled once the token fires."""
    last: Exception = UpstreamUnavailable(f"{what}: no attempt made")
    for attempt in range(1, retries + 2):
        if token is not None and token.cancelled:
            raise ScanCancelled(f"{what}: cancelled before attempt {attempt}")
        async with limiter.slot():
            if token is not None and token.cancelled:
                raise ScanCancelled(f"{what}: cancelled before attempt {attempt}")
            budget = timeout_s
            if token is not None and (rem := token.remaining()) is not None:
                budget = min(budget, max(rem, 0.001))
            try:
                return await asyncio.wait_for(fn(), timeout=budget)
            except asyncio.TimeoutError:
                last = Timeout(f"{what}: exceeded {budget:.2f}s")
            except (Timeout, UpstreamUnavailable) as e:
                last = e
        log.debug("%s failed on attempt %d: %s", what, attempt, last)
        if attempt <= retries and backoff_s > 0:
            await asyncio.sleep(backoff_s * attempt)
    raise last
