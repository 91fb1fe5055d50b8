from __future__ import annotations
import asyncio, logging
from dataclasses import replace
from typing import Iterable, Union

from ..config import Settings
from ..domain.errors import ScanCancelled, Timeout, UpstreamUnavailable
from ..domain.models import FetchFailure, Receipt, TransactionRecord
from ..domain.value_types import TxHash
from ..ports.ledger import LedgerClient
from .limiter import CancelToken, ConcurrencyLimiter, guarded_call

log = logging.getLogger(__name__)

ReceiptItem = Union[Receipt, FetchFailure]


class ReceiptResolver:
    def __init__(self, ledger: LedgerClient, limiter: ConcurrencyLimiter, settings: Settings) -> None:
        self.ledger = ledger
        self.limiter = limiter
        self.settings = settings

    async def _resolve_one(self, tx_hash: TxHash, token: CancelToken | None) -> ReceiptItem:
        try:
            receipt = await guarded_call(
                self.limiter,
                lambda: self.ledger.get_receipt(tx_hash),
                what=f"receipt {tx_hash}",
                timeout_s=self.settings.request_timeout_s,
                retries=self.settings.retries,
                backoff_s=self.settings.retry_backoff_s,
                token=token,
            )
        except ScanCancelled as e:
            return FetchFailure("receipt", tx_hash, str(e), attempts=0, cancelled=True)
        except (Timeout, UpstreamUnavailable) as e:
            log.warning("receipt %s unavailable: %s", tx_hash, e)
            return FetchFailure("receipt", tx_hash, f"{type(e).__name__}: {e}", attempts=self.settings.retries + 1)
        if receipt is None:
            return FetchFailure("receipt", tx_hash, "NotFound: node returned no receipt", attempts=1)
        return receipt

    async def resolve_receipts(self, tx_hashes: Iterable[TxHash], *, token: CancelToken | None = None) -> dict[TxHash, ReceiptItem]:
        uniq = list(dict.fromkeys(tx_hashes))
        res = await asyncio.gather(*(self._resolve_one(h, token) for h in uniq))
        return dict(zip(uniq, res))


def attach_receipts(
    txs: Iterable[TransactionRecord], resolved: dict[TxHash, ReceiptItem],
) -> tuple[list[TransactionRecord], list[FetchFailure], list[TxHash]]:
    """Merge receipts into records; a missing receipt leaves status assumed
    successful with zero gas used, and is reported back so callers can flag it."""
    out: list[TransactionRecord] = []
    failures: list[FetchFailure] = []
    assumed: list[TxHash] = []
    for tx in txs:
        item = resolved.get(tx.hash)
        if isinstance(item, Receipt):
            out.append(replace(tx, receipt=item, status_assumed=False))
        else:
            out.append(replace(tx, receipt=None, status_assumed=True))
            assumed.append(tx.hash)
            if item is not None:
                failures.append(item)
    return out, failures, assumed
