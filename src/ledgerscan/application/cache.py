from __future__ import annotations
import asyncio, logging, time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

log = logging.getLogger(__name__)
T = TypeVar("T")


@dataclass(slots=True)
class _Entry(Generic[T]):
    value: T
    stored_at: float


def _is_cancelled(value: object) -> bool:
    return bool(getattr(value, "cancelled", False))


class ScanCache(Generic[T]):
    """Short-TTL memoization keyed only by query fingerprint.

    Concurrent callers asking for the same fingerprint share one in-flight
    computation. A computation that was cancelled or raised is never stored,
    and callers that were only waiting on it compute on their own instead.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, max_entries: int = 1024) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, _Entry[T]] = {}
        self._inflight: dict[str, asyncio.Future[T]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, fingerprint: str, ttl: float) -> T | None:
        e = self._entries.get(fingerprint)
        if e is None:
            return None
        if self._clock() - e.stored_at >= ttl:
            del self._entries[fingerprint]
            return None
        return e.value

    def invalidate(self, fingerprint: str | None = None) -> None:
        if fingerprint is None:
            self._entries.clear()
        else:
            self._entries.pop(fingerprint, None)

    def _store(self, fingerprint: str, value: T) -> None:
        if len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].stored_at)
            del self._entries[oldest]
        self._entries[fingerprint] = _Entry(value, self._clock())

    async def get_or_compute(self, fingerprint: str, ttl: float, compute: Callable[[], Awaitable[T]]) -> T:
        hit = self.peek(fingerprint, ttl)
        if hit is not None:
            self.hits += 1
            log.debug("cache hit %s", fingerprint)
            return hit

        pending = self._inflight.get(fingerprint)
        if pending is not None:
            try:
                shared = await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                shared = None
            except Exception:
                shared = None
            if shared is not None and not _is_cancelled(shared):
                self.hits += 1
                return shared

        self.misses += 1
        log.debug("cache miss %s", fingerprint)
        fut: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        owner = fingerprint not in self._inflight
        if owner:
            self._inflight[fingerprint] = fut
        try:
            value = await compute()
        except Exception as e:
            if owner and not fut.done():
                fut.set_exception(e)
                fut.exception()  # retrieved; waiters recompute themselves
            raise
        except BaseException:
            if owner and not fut.done():
                fut.cancel()
            raise
        finally:
            if owner and self._inflight.get(fingerprint) is fut:
                del self._inflight[fingerprint]
        if owner and not fut.done():
            fut.set_result(value)
        if not _is_cancelled(value):
            self._store(fingerprint, value)
        return value
