# tests/test_cache.py
import asyncio
from dataclasses import dataclass

import pytest

from conftest import run
from ledgerscan.application.cache import ScanCache


@dataclass(frozen=True)
class Res:
    value: int
    cancelled: bool = False


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestScanCache:
    def setup_method(self):
        self.clock = Clock()
        self.cache = ScanCache(clock=self.clock)
        self.computed = 0

    async def _compute(self, value=1, cancelled=False, delay=0.0):
        self.computed += 1
        if delay:
            await asyncio.sleep(delay)
        return Res(value, cancelled)

    def test_hit_within_ttl(self):
        a = run(self.cache.get_or_compute("k", 5, self._compute))
        self.clock.now = 4.9
        b = run(self.cache.get_or_compute("k", 5, self._compute))
        assert a is b
        assert self.computed == 1
        assert (self.cache.hits, self.cache.misses) == (1, 1)

    def test_expiry_recomputes(self):
        run(self.cache.get_or_compute("k", 5, self._compute))
        self.clock.now = 5.0
        run(self.cache.get_or_compute("k", 5, self._compute))
        assert self.computed == 2

    def test_keys_are_isolated(self):
        run(self.cache.get_or_compute("recent-transactions|limit=5", 5, lambda: self._compute(1)))
        other = run(self.cache.get_or_compute("contract-list|limit=5", 5, lambda: self._compute(2)))
        assert other.value == 2 and len(self.cache) == 2

    def test_cancelled_results_are_not_stored(self):
        run(self.cache.get_or_compute("k", 5, lambda: self._compute(cancelled=True)))
        assert len(self.cache) == 0
        run(self.cache.get_or_compute("k", 5, self._compute))
        assert self.computed == 2

    def test_errors_are_not_stored(self):
        async def boom():
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            run(self.cache.get_or_compute("k", 5, boom))
        assert len(self.cache) == 0

    def test_concurrent_callers_share_one_computation(self):
        async def main():
            return await asyncio.gather(*(
                self.cache.get_or_compute("k", 5, lambda: self._compute(delay=0.02)) for _ in range(4)
            ))

        results = run(main())
        assert self.computed == 1
        assert all(r is results[0] for r in results)

    def test_waiter_recomputes_when_owner_was_cancelled(self):
        async def main():
            owner = self.cache.get_or_compute("k", 5, lambda: self._compute(value=1, cancelled=True, delay=0.02))
            waiter = self.cache.get_or_compute("k", 5, lambda: self._compute(value=2))
            return await asyncio.gather(owner, waiter)

        owner_res, waiter_res = run(main())
        assert owner_res.cancelled
        assert waiter_res.value == 2 and not waiter_res.cancelled
        assert self.cache.peek("k", 5) is waiter_res

    def test_waiter_recomputes_when_owner_failed(self):
        async def boom():
            await asyncio.sleep(0.01)
            raise RuntimeError("owner failed")

        async def main():
            owner = self.cache.get_or_compute("k", 5, boom)
            waiter = self.cache.get_or_compute("k", 5, self._compute)
            return await asyncio.gather(owner, waiter, return_exceptions=True)

        owner_res, waiter_res = run(main())
        assert isinstance(owner_res, RuntimeError)
        assert waiter_res.value == 1

    def test_invalidate(self):
        run(self.cache.get_or_compute("k", 5, self._compute))
        self.cache.invalidate("k")
        assert self.cache.peek("k", 5) is None
