# tests/test_window.py
import pytest

from conftest import FakeLedger, run
from ledgerscan.application.limiter import ConcurrencyLimiter
from ledgerscan.application.window import BlockWindowFetcher, plan_window
from ledgerscan.domain.models import BlockSummary, FetchFailure


def _fetcher(ledger, settings, slots=None):
    return BlockWindowFetcher(ledger, ConcurrencyLimiter(slots or settings.concurrency), settings)


def _height(item):
    return item.height if isinstance(item, BlockSummary) else item.key


class TestPlanWindow:
    @pytest.mark.parametrize("h,w", [(0, 1), (5, 10), (100, 10), (100, 1), (9, 10), (10, 10)])
    def test_bounds(self, h, w):
        heights = plan_window(h, w)
        assert len(heights) <= w
        assert len(set(heights)) == len(heights)
        assert all(max(0, h - w + 1) <= x <= h for x in heights)
        assert heights == sorted(heights, reverse=True)

    def test_rejects_bad_input(self):
        with pytest.raises(ValueError):
            plan_window(-1, 5)
        with pytest.raises(ValueError):
            plan_window(5, 0)


class TestFetchWindow:
    def test_full_window(self, ledger, settings):
        items = run(_fetcher(ledger, settings).fetch_window(100, 10))
        assert [_height(i) for i in items] == list(range(100, 90, -1))
        assert all(isinstance(i, BlockSummary) for i in items)

    def test_clamped_at_zero(self, ledger, settings):
        items = run(_fetcher(ledger, settings).fetch_window(3, 10))
        assert [_height(i) for i in items] == [3, 2, 1, 0]

    def test_failures_do_not_abort_others(self, settings):
        ledger = FakeLedger(fail_heights={97, 93}, missing_heights={91})
        items = run(_fetcher(ledger, settings).fetch_window(100, 10))
        assert [_height(i) for i in items] == list(range(100, 90, -1))
        failed = {i.key: i for i in items if isinstance(i, FetchFailure)}
        assert set(failed) == {97, 93, 91}
        assert failed[97].attempts == settings.retries + 1
        assert "UpstreamUnavailable" in failed[97].error
        assert "NotFound" in failed[91].error

    def test_order_independent_of_completion(self, settings):
        # the newest heights answer last
        ledger = FakeLedger(slow_heights={100, 99}, slow_delay=0.05)
        items = run(_fetcher(ledger, settings).fetch_window(100, 5))
        assert [_height(i) for i in items] == [100, 99, 98, 97, 96]

    def test_flaky_height_recovers_with_one_retry(self, settings):
        ledger = FakeLedger(flaky_heights={95})
        items = run(_fetcher(ledger, settings).fetch_window(100, 10))
        assert all(isinstance(i, BlockSummary) for i in items)
        assert ledger.block_calls[95] == 2

    def test_no_retry_when_disabled(self, settings):
        from dataclasses import replace
        ledger = FakeLedger(flaky_heights={95})
        items = run(_fetcher(ledger, replace(settings, retries=0)).fetch_window(100, 10))
        assert isinstance(items[5], FetchFailure)
        assert ledger.block_calls[95] == 1

    def test_per_call_timeout(self, settings):
        from dataclasses import replace
        ledger = FakeLedger(slow_heights={98}, slow_delay=1.0)
        fast = replace(settings, request_timeout_s=0.05, retries=0)
        items = run(_fetcher(ledger, fast).fetch_window(100, 5))
        assert isinstance(items[2], FetchFailure) and "Timeout" in items[2].error
        assert sum(isinstance(i, BlockSummary) for i in items) == 4

    def test_concurrency_is_bounded(self, settings):
        ledger = FakeLedger(delay=0.01)
        limiter = ConcurrencyLimiter(3)
        fetcher = BlockWindowFetcher(ledger, limiter, settings)
        run(fetcher.fetch_window(100, 30))
        assert ledger.max_in_flight <= 3
        assert limiter.peak == 3
        assert limiter.in_flight == 0
        assert limiter.issued == 30


class TestAdaptiveWidening:
    def test_stops_when_enough(self, ledger, settings):
        scan = run(_fetcher(ledger, settings).scan_until(100, lambda blocks: len(blocks) >= 5))
        assert len(scan.items) == settings.initial_window
        assert (scan.lowest, scan.highest) == (91, 100)

    def test_widening_is_contiguous_and_capped(self, ledger, settings):
        scan = run(_fetcher(ledger, settings).scan_until(100, lambda blocks: False, max_window=35))
        assert scan.heights == list(range(100, 65, -1))
        assert ledger.calls["get_block"] == 35

    def test_widening_stops_at_genesis(self, settings):
        ledger = FakeLedger(head=15)
        scan = run(_fetcher(ledger, settings).scan_until(15, lambda blocks: False))
        assert scan.heights == list(range(15, -1, -1))
