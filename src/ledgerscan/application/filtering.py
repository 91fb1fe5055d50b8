from __future__ import annotations
from typing import Callable, Iterable

from ..domain.models import BlockSummary, TransactionRecord
from ..domain.value_types import Address

Predicate = Callable[[TransactionRecord], bool]


def involves_address(addr: Address | str) -> Predicate:
    needle = str(addr).lower()
    def _pred(tx: TransactionRecord) -> bool:
        return tx.sender.lower() == needle or (tx.recipient is not None and tx.recipient.lower() == needle)
    return _pred


def is_contract_creation() -> Predicate:
    return lambda tx: tx.recipient is None


def always() -> Predicate:
    return lambda tx: True


def filter_transactions(blocks: Iterable[BlockSummary], predicate: Predicate) -> list[TransactionRecord]:
    """Matching transactions, in block order then source order within each block."""
    out: list[TransactionRecord] = []
    for b in blocks:
        for tx in b.transactions:
            if predicate(tx):
                out.append(tx)
    return out
