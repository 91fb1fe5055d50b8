from __future__ import annotations
import asyncio, logging
from eth_utils import from_wei

from ..config import Settings
from ..domain.decoding import plain_decimal
from ..domain.models import NetworkStats
from ..ports.ledger import LedgerClient
from .limiter import ConcurrencyLimiter, guarded_call

log = logging.getLogger(__name__)


class NetworkStatsProbe:
    """Head height, gas price, peer count and latest-block difficulty, fetched
    concurrently. Unlike the windowed scanners, any failing sub-query fails the
    whole probe: every field is required."""

    def __init__(self, ledger: LedgerClient, limiter: ConcurrencyLimiter, settings: Settings) -> None:
        self.ledger = ledger
        self.limiter = limiter
        self.settings = settings

    def _call(self, what: str, fn):
        return guarded_call(
            self.limiter, fn, what=what,
            timeout_s=self.settings.request_timeout_s,
            retries=self.settings.retries,
            backoff_s=self.settings.retry_backoff_s,
        )

    async def get_stats(self) -> NetworkStats:
        head, latest, price, peers = await asyncio.gather(
            self._call("head height", self.ledger.get_head_height),
            self._call("latest block", lambda: self.ledger.get_block("latest", False)),
            self._call("gas price", self.ledger.get_price_of_inclusion),
            self._call("peer count", self.ledger.get_peer_count),
        )
        stats = NetworkStats(
            head_height=head,
            price_of_inclusion=plain_decimal(from_wei(int(price), "gwei")),
            peer_count=peers,
            difficulty=latest.difficulty if latest is not None else None,
            total_difficulty=latest.total_difficulty if latest is not None else None,
        )
        log.debug("network stats: %s", stats)
        return stats
