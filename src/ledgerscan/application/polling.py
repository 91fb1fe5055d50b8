from __future__ import annotations
import asyncio, logging
from typing import Awaitable, Callable, Generic, TypeVar

log = logging.getLogger(__name__)
T = TypeVar("T")


class RecurringTask(Generic[T]):
    """Caller-owned periodic refresh. The engine stays stateless between calls;
    whoever wants polling owns one of these and stops it when done."""

    def __init__(
        self,
        fn: Callable[[], Awaitable[T]],
        interval_s: float,
        *,
        on_result: Callable[[T], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self.fn = fn
        self.interval_s = interval_s
        self.on_result = on_result
        self.on_error = on_error
        self.runs = 0
        self.errors = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def run(self, iterations: int | None = None) -> None:
        """Run in the current task until stop() or ``iterations`` runs."""
        while not self._stop.is_set():
            try:
                res = await self.fn()
            except Exception as e:
                self.errors += 1
                if self.on_error is None:
                    raise
                log.warning("recurring task failed: %s", e)
                self.on_error(e)
            else:
                if self.on_result is not None:
                    self.on_result(res)
            self.runs += 1
            if iterations is not None and self.runs >= iterations:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
