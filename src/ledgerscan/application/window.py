from __future__ import annotations
import asyncio, logging
from dataclasses import dataclass, field
from typing import Callable, Sequence, Union

from ..config import Settings
from ..domain.errors import ScanCancelled, Timeout, UpstreamUnavailable
from ..domain.models import BlockSummary, FetchFailure
from ..ports.ledger import LedgerClient
from .limiter import CancelToken, ConcurrencyLimiter, guarded_call

log = logging.getLogger(__name__)

WindowItem = Union[BlockSummary, FetchFailure]


def plan_window(start_height: int, window_size: int) -> list[int]:
    """Heights start, start-1, ... clamped at 0; at most window_size of them."""
    if start_height < 0:
        raise ValueError(f"start_height must be >= 0, got {start_height}")
    if window_size < 1:
        raise ValueError(f"window_size must be >= 1, got {window_size}")
    floor = max(0, start_height - window_size + 1)
    return list(range(start_height, floor - 1, -1))


@dataclass(slots=True)
class WindowScan:
    """Accumulated outcome of one (possibly widened) descending scan."""
    items: list[WindowItem] = field(default_factory=list)
    cancelled: bool = False

    @property
    def blocks(self) -> list[BlockSummary]:
        return [i for i in self.items if isinstance(i, BlockSummary)]

    @property
    def failures(self) -> list[FetchFailure]:
        return [i for i in self.items if isinstance(i, FetchFailure)]

    @property
    def heights(self) -> list[int]:
        return [i.height if isinstance(i, BlockSummary) else int(i.key) for i in self.items]

    @property
    def lowest(self) -> int | None:
        return min(self.heights) if self.items else None

    @property
    def highest(self) -> int | None:
        return max(self.heights) if self.items else None


class BlockWindowFetcher:
    def __init__(self, ledger: LedgerClient, limiter: ConcurrencyLimiter, settings: Settings) -> None:
        self.ledger = ledger
        self.limiter = limiter
        self.settings = settings

    async def _fetch_one(self, height: int, include_transactions: bool, token: CancelToken | None) -> WindowItem:
        try:
            block = await guarded_call(
                self.limiter,
                lambda: self.ledger.get_block(height, include_transactions),
                what=f"block {height}",
                timeout_s=self.settings.request_timeout_s,
                retries=self.settings.retries,
                backoff_s=self.settings.retry_backoff_s,
                token=token,
            )
        except ScanCancelled as e:
            return FetchFailure("block", height, str(e), attempts=0, cancelled=True)
        except (Timeout, UpstreamUnavailable) as e:
            log.warning("block %d unavailable: %s", height, e)
            return FetchFailure("block", height, f"{type(e).__name__}: {e}", attempts=self.settings.retries + 1)
        if block is None:
            log.warning("block %d missing on node", height)
            return FetchFailure("block", height, "NotFound: node returned no block", attempts=1)
        return block

    async def fetch_heights(
        self, heights: Sequence[int], *, include_transactions: bool = True, token: CancelToken | None = None,
    ) -> list[WindowItem]:
        uniq = sorted(set(heights), reverse=True)
        # gather preserves input order regardless of completion order
        return list(await asyncio.gather(*(self._fetch_one(h, include_transactions, token) for h in uniq)))

    async def fetch_window(
        self, start_height: int, window_size: int, *, include_transactions: bool = True, token: CancelToken | None = None,
    ) -> list[WindowItem]:
        """Best effort: one item per height, descending; failures become FetchFailure markers."""
        return await self.fetch_heights(
            plan_window(start_height, window_size), include_transactions=include_transactions, token=token,
        )

    async def scan_until(
        self,
        start_height: int,
        enough: Callable[[list[BlockSummary]], bool],
        *,
        initial_window: int | None = None,
        max_window: int | None = None,
        include_transactions: bool = True,
        token: CancelToken | None = None,
    ) -> WindowScan:
        """Adaptive widening: fetch a window, then keep doubling the scanned span
        (fetching only the new, lower heights) until ``enough`` says so, the cap
        is hit, height 0 is reached, or the token fires."""
        step = initial_window or self.settings.initial_window
        cap = max_window or self.settings.max_window
        out = WindowScan()
        next_height = start_height
        scanned = 0
        while next_height >= 0 and scanned < cap:
            size = min(step, cap - scanned, next_height + 1)
            chunk = await self.fetch_window(next_height, size, include_transactions=include_transactions, token=token)
            out.items.extend(chunk)
            scanned += size
            next_height -= size
            if any(isinstance(i, FetchFailure) and i.cancelled for i in chunk) or (token is not None and token.cancelled):
                out.cancelled = True
                break
            if enough(out.blocks):
                break
            step = scanned  # double the total span
        log.debug("scanned %d heights from %d (cancelled=%s)", scanned, start_height, out.cancelled)
        return out
