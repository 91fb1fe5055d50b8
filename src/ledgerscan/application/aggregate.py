from __future__ import annotations
import math
from typing import Callable, Hashable, Iterable, Sequence, TypeVar

from ..domain.models import BlockSummary, ContractRecord, TransactionRecord

R = TypeVar("R", BlockSummary, TransactionRecord, ContractRecord)
SortKey = Callable[[R], tuple[int, ...]]


def recency_key(rec: BlockSummary | TransactionRecord | ContractRecord) -> tuple[int, ...]:
    """(height, position); callers sort it descending for newest first."""
    if isinstance(rec, BlockSummary):
        return (rec.height,)
    return (rec.block_height, rec.position)


class ResultAggregator:
    """Dedup → sort (newest first) → truncate. Pure and synchronous."""

    def aggregate(
        self,
        candidates: Iterable[R],
        *,
        limit: int,
        sort_key: SortKey = recency_key,
        dedup_key: Callable[[R], Hashable] | None = None,
    ) -> tuple[R, ...]:
        items = list(candidates)
        if dedup_key is not None:
            items = self._dedup_keep_earliest(items, dedup_key, sort_key)
        # a sort-key collision would break strict ordering; first occurrence wins
        seen: set[tuple[int, ...]] = set()
        uniq: list[R] = []
        for rec in items:
            k = sort_key(rec)
            if k in seen:
                continue
            seen.add(k)
            uniq.append(rec)
        uniq.sort(key=sort_key, reverse=True)
        return tuple(uniq[:max(0, limit)])

    @staticmethod
    def _dedup_keep_earliest(items: Sequence[R], key: Callable[[R], Hashable], sort_key: SortKey) -> list[R]:
        best: dict[Hashable, R] = {}
        for rec in items:
            k = key(rec)
            cur = best.get(k)
            if cur is None or sort_key(rec) < sort_key(cur):
                best[k] = rec
        return list(best.values())


# ---------- total / page estimation ------------------------------------------

def block_total(head_height: int) -> int:
    """Exact: every height 0..head has exactly one block."""
    return head_height + 1


def estimated_tx_total(head_height: int, avg_tx_per_block: int) -> int:
    """Advisory only; diverges arbitrarily on uneven block fill."""
    return head_height * avg_tx_per_block


def page_count(total: int, page_size: int, cap: int | None = None) -> int:
    n = math.ceil(total / page_size) if total > 0 else 0
    return min(n, cap) if cap is not None else n
