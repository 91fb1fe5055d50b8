from __future__ import annotations
import asyncio, logging
from dataclasses import replace
from typing import Awaitable, Callable, Union

from eth_utils import from_wei

from ..config import Settings
from ..domain.decoding import code_size, is_empty_code, plain_decimal
from ..domain.errors import NotFound, ScanCancelled, Timeout, UpstreamUnavailable
from ..domain.models import (
    AddressProfile, BlockSummary, ContractRecord, FetchFailure, NetworkStats, Receipt,
    ScanQuery, ScanResult, TransactionRecord,
)
from ..domain.validation import check_positive, normalize_address, normalize_tx_hash, parse_block_id
from ..domain.value_types import Address, ScanState
from ..ports.ledger import LedgerClient
from .aggregate import ResultAggregator, block_total, estimated_tx_total, page_count
from .cache import ScanCache
from .filtering import Predicate, always, filter_transactions, involves_address, is_contract_creation
from .limiter import CancelToken, ConcurrencyLimiter, guarded_call
from .receipts import ReceiptResolver, attach_receipts
from .stats import NetworkStatsProbe
from .window import BlockWindowFetcher

log = logging.getLogger(__name__)

_TRANSITIONS: dict[str, frozenset[str]] = {
    "idle":        frozenset({"fetching", "failed"}),
    "fetching":    frozenset({"resolving", "aggregating", "failed"}),
    "resolving":   frozenset({"aggregating", "failed"}),
    "aggregating": frozenset({"done", "partial_done"}),
}


class _ScanRun:
    """Idle → Fetching → Resolving → Aggregating → Done | PartialDone | Failed."""

    def __init__(self, query: ScanQuery) -> None:
        self.query = query
        self.state: ScanState = "idle"

    def advance(self, new: ScanState) -> None:
        if new not in _TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"illegal scan transition {self.state} -> {new}")
        log.debug("%s: %s -> %s", self.query.fingerprint, self.state, new)
        self.state = new

    def finish(self, *, incomplete: bool) -> ScanState:
        self.advance("partial_done" if incomplete else "done")
        return self.state


class ScanEngine:
    """Public query surface over a ledger that only answers point queries.

    The engine keeps no state between calls except the shared limiter and
    the short-TTL cache; both may be passed in so several engines (or several
    concurrent callers of one engine) share them.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settings: Settings | None = None,
        *,
        limiter: ConcurrencyLimiter | None = None,
        cache: ScanCache | None = None,
    ) -> None:
        self.ledger = ledger
        self.settings = settings or Settings()
        self.limiter = limiter or ConcurrencyLimiter(self.settings.concurrency)
        self.cache: ScanCache = cache if cache is not None else ScanCache()
        self.window = BlockWindowFetcher(ledger, self.limiter, self.settings)
        self.receipts = ReceiptResolver(ledger, self.limiter, self.settings)
        self.aggregator = ResultAggregator()
        self.stats_probe = NetworkStatsProbe(ledger, self.limiter, self.settings)

    # ---------- plumbing ------------------------------------------------------

    def _token(self, token: CancelToken | None) -> CancelToken:
        return token if token is not None else CancelToken(self.settings.scan_deadline_s)

    def _call(self, what: str, fn: Callable[[], Awaitable], token: CancelToken | None = None):
        s = self.settings
        return guarded_call(self.limiter, fn, what=what, timeout_s=s.request_timeout_s,
                            retries=s.retries, backoff_s=s.retry_backoff_s, token=token)

    async def _cached(self, query: ScanQuery, compute: Callable[[], Awaitable[ScanResult]]) -> ScanResult:
        return await self.cache.get_or_compute(query.fingerprint, self.settings.cache_ttl_s, compute)

    async def _head(self, run: _ScanRun, token: CancelToken) -> int:
        run.advance("fetching")
        try:
            return await self._call("head height", self.ledger.get_head_height, token)
        except (Timeout, UpstreamUnavailable, ScanCancelled) as e:
            run.advance("failed")
            log.error("%s failed: head height unavailable: %s", run.query.fingerprint, e)
            raise

    def _limit(self, name: str, value: int) -> int:
        return check_positive(name, value, self.settings.max_limit)

    # ---------- windowed transaction scans -----------------------------------

    async def _scan_transactions(
        self,
        query: ScanQuery,
        predicate: Predicate,
        limit: int,
        token: CancelToken,
        *,
        offset: int = 0,
    ) -> tuple[ScanResult, int]:
        run = _ScanRun(query)
        head = await self._head(run, token)
        start = head - offset
        if start < 0:
            run.advance("aggregating")
            return ScanResult(query, (), run.finish(incomplete=False), head), head

        win = await self.window.scan_until(
            start,
            lambda blocks: len(filter_transactions(blocks, predicate)) >= limit,
            include_transactions=True,
            token=token,
        )
        candidates = filter_transactions(win.blocks, predicate)
        selected = self.aggregator.aggregate(candidates, limit=limit, dedup_key=lambda t: t.hash)

        run.advance("resolving")
        resolved = await self.receipts.resolve_receipts([t.hash for t in selected], token=token)
        records, receipt_failures, assumed = attach_receipts(selected, resolved)

        run.advance("aggregating")
        records_t = self.aggregator.aggregate(records, limit=limit)
        failures = tuple(win.failures) + tuple(receipt_failures)
        cancelled = win.cancelled or any(f.cancelled for f in failures)
        state = run.finish(incomplete=bool(failures) or cancelled)
        res = ScanResult(
            query=query, records=records_t, state=state, head_height=head,
            scanned_from=win.lowest, scanned_to=win.highest,
            failures=failures, assumed_status=tuple(assumed), cancelled=cancelled,
        )
        log.info("%s: %d records from heights %s..%s (%s, %d failures)",
                 query.fingerprint, len(records_t), win.lowest, win.highest, state, len(failures))
        return res, head

    async def scan_address_activity(self, address: str, limit: int = 20, *, token: CancelToken | None = None) -> ScanResult:
        addr = normalize_address(address)
        limit = self._limit("limit", limit)
        query = ScanQuery("address-activity", address=addr, limit=limit)
        tok = self._token(token)

        async def compute() -> ScanResult:
            res, _ = await self._scan_transactions(query, involves_address(addr), limit, tok)
            return res
        return await self._cached(query, compute)

    async def scan_recent_transactions(self, limit: int = 10, *, token: CancelToken | None = None) -> ScanResult:
        limit = self._limit("limit", limit)
        query = ScanQuery("recent-transactions", limit=limit)
        tok = self._token(token)

        async def compute() -> ScanResult:
            res, _ = await self._scan_transactions(query, always(), limit, tok)
            return res
        return await self._cached(query, compute)

    async def scan_transaction_page(self, page: int = 1, page_size: int = 20, *, token: CancelToken | None = None) -> ScanResult:
        """Paged listing. The page start is a rough stride below head and the
        total is an estimate (head × avg_tx_per_block), never an exact count."""
        check_positive("page", page)
        page_size = self._limit("page_size", page_size)
        query = ScanQuery("transaction-page", page=page, page_size=page_size)
        tok = self._token(token)
        s = self.settings

        async def compute() -> ScanResult:
            res, head = await self._scan_transactions(
                query, always(), page_size, tok, offset=(page - 1) * s.tx_page_block_stride,
            )
            total = estimated_tx_total(head, s.avg_tx_per_block)
            return replace(
                res,
                estimated_total=total,
                total_is_exact=False,
                page_count=page_count(total, page_size, cap=s.max_tx_pages),
                notes=(f"estimated_total is advisory: head_height x {s.avg_tx_per_block} tx/block",),
            )
        return await self._cached(query, compute)

    # ---------- block pages ---------------------------------------------------

    async def scan_block_page(self, page: int = 1, page_size: int = 10, *, token: CancelToken | None = None) -> ScanResult:
        check_positive("page", page)
        page_size = self._limit("page_size", page_size)
        query = ScanQuery("block-page", page=page, page_size=page_size)
        tok = self._token(token)

        async def compute() -> ScanResult:
            run = _ScanRun(query)
            head = await self._head(run, tok)
            total = block_total(head)
            pages = page_count(total, page_size)
            start = head - (page - 1) * page_size
            if start < 0:
                run.advance("aggregating")
                return ScanResult(query, (), run.finish(incomplete=False), head,
                                  estimated_total=total, total_is_exact=True, page_count=pages)
            items = await self.window.fetch_window(start, page_size, include_transactions=False, token=tok)
            run.advance("aggregating")
            blocks = [i for i in items if isinstance(i, BlockSummary)]
            failures = tuple(i for i in items if isinstance(i, FetchFailure))
            cancelled = any(f.cancelled for f in failures)
            records = self.aggregator.aggregate(blocks, limit=page_size)
            state = run.finish(incomplete=bool(failures))
            log.info("%s: %d blocks (%s)", query.fingerprint, len(records), state)
            return ScanResult(
                query=query, records=records, state=state, head_height=head,
                scanned_from=max(0, start - page_size + 1), scanned_to=start,
                failures=failures, estimated_total=total, total_is_exact=True,
                page_count=pages, cancelled=cancelled,
            )
        return await self._cached(query, compute)

    async def scan_recent_blocks(self, count: int = 10, *, token: CancelToken | None = None) -> ScanResult:
        return await self.scan_block_page(1, count, token=token)

    # ---------- contract listing ---------------------------------------------

    async def _code_size(self, address: Address, token: CancelToken) -> Union[int, FetchFailure]:
        try:
            code = await self._call(f"code {address}", lambda: self.ledger.get_code(address), token)
        except ScanCancelled as e:
            return FetchFailure("code", address, str(e), attempts=0, cancelled=True)
        except (Timeout, UpstreamUnavailable) as e:
            log.warning("code for %s unavailable: %s", address, e)
            return FetchFailure("code", address, f"{type(e).__name__}: {e}", attempts=self.settings.retries + 1)
        return code_size(code)

    async def scan_contracts(self, limit: int = 20, *, token: CancelToken | None = None) -> ScanResult:
        limit = self._limit("limit", limit)
        query = ScanQuery("contract-list", limit=limit)
        tok = self._token(token)
        creation = is_contract_creation()

        async def compute() -> ScanResult:
            run = _ScanRun(query)
            head = await self._head(run, tok)
            win = await self.window.scan_until(
                head, lambda blocks: len(filter_transactions(blocks, creation)) >= limit,
                include_transactions=True, token=tok,
            )
            deployments = filter_transactions(win.blocks, creation)

            run.advance("resolving")
            resolved = await self.receipts.resolve_receipts([t.hash for t in deployments], token=tok)
            failures: list[FetchFailure] = list(win.failures)
            created: list[tuple[TransactionRecord, Address]] = []
            for tx in deployments:
                item = resolved.get(tx.hash)
                if isinstance(item, Receipt):
                    if item.success and item.contract_address is not None:
                        created.append((tx, item.contract_address))
                elif item is not None:
                    failures.append(item)

            # dedup before fetching code so overlapping windows cost one lookup
            chosen = self.aggregator.aggregate(
                [self._contract(tx, addr, None) for tx, addr in created],
                limit=limit, dedup_key=lambda c: c.address,
            )
            sizes = await asyncio.gather(*(self._code_size(c.address, tok) for c in chosen))
            records: list[ContractRecord] = []
            for c, size in zip(chosen, sizes):
                if isinstance(size, FetchFailure):
                    failures.append(size)
                    records.append(c)
                elif size > 0:
                    records.append(replace(c, code_size=size))
                # size 0: no code at the address any more (self-destructed), not listed

            run.advance("aggregating")
            records_t = self.aggregator.aggregate(records, limit=limit, dedup_key=lambda c: c.address)
            cancelled = win.cancelled or any(f.cancelled for f in failures)
            state = run.finish(incomplete=bool(failures) or cancelled)
            log.info("%s: %d contracts from heights %s..%s (%s)",
                     query.fingerprint, len(records_t), win.lowest, win.highest, state)
            return ScanResult(
                query=query, records=records_t, state=state, head_height=head,
                scanned_from=win.lowest, scanned_to=win.highest,
                failures=tuple(failures), cancelled=cancelled,
            )
        return await self._cached(query, compute)

    @staticmethod
    def _contract(tx: TransactionRecord, address: Address, size: int | None) -> ContractRecord:
        return ContractRecord(
            address=address, tx_hash=tx.hash, block_height=tx.block_height, position=tx.position,
            timestamp=tx.timestamp or 0, creator=tx.sender, code_size=size,
        )

    # ---------- network stats -------------------------------------------------

    async def get_network_stats(self) -> NetworkStats:
        query = ScanQuery("network-stats")
        return await self.cache.get_or_compute(query.fingerprint, self.settings.cache_ttl_s, self.stats_probe.get_stats)

    # ---------- point lookups -------------------------------------------------

    async def get_block_detail(self, height_or_hash: Union[int, str]) -> BlockSummary:
        ident = parse_block_id(height_or_hash)
        if isinstance(ident, int):
            block = await self._call(f"block {ident}", lambda: self.ledger.get_block(ident, True))
        else:
            block = await self._call(f"block {ident}", lambda: self.ledger.get_block_by_hash(ident, True))
        if block is None:
            raise NotFound(f"Block not found: {height_or_hash}")
        return block

    async def get_transaction_detail(self, tx_hash: str) -> TransactionRecord:
        h = normalize_tx_hash(tx_hash)
        tx, receipt = await asyncio.gather(
            self._call(f"transaction {h}", lambda: self.ledger.get_transaction(h)),
            self._call(f"receipt {h}", lambda: self.ledger.get_receipt(h)),
        )
        if tx is None:
            raise NotFound(f"Transaction not found: {h}")
        ts = tx.timestamp
        if ts is None and tx.block_hash is not None:
            block = await self._call(f"block {tx.block_height}", lambda: self.ledger.get_block(tx.block_height, False))
            ts = block.timestamp if block is not None else None
        return replace(tx, receipt=receipt, timestamp=ts, status_assumed=False)

    async def get_address_detail(self, address: str) -> AddressProfile:
        addr = normalize_address(address)
        balance_wei, code = await asyncio.gather(
            self._call(f"balance {addr}", lambda: self.ledger.get_balance(addr)),
            self._call(f"code {addr}", lambda: self.ledger.get_code(addr)),
        )
        contract = not is_empty_code(code)
        return AddressProfile(
            address=addr,
            balance_wei=balance_wei,
            balance=plain_decimal(from_wei(int(balance_wei), "ether")),
            is_contract=contract,
            code=code if contract else None,
            code_size=code_size(code) if contract else 0,
        )
