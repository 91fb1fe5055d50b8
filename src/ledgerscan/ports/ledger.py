# ledgerscan/ports/ledger.py
from __future__ import annotations

from typing import Protocol, Union
from ..domain.models import BlockSummary, Receipt, TransactionRecord
from ..domain.value_types import Address, BlockHash, BlockTag, Quantity, TxHash


class LedgerClient(Protocol):
    """Port defining the point queries the scan engine needs from a ledger node.

    Every method may raise ``UpstreamUnavailable`` or ``Timeout``. Absent
    records are returned as ``None``, never raised.
    """

    async def get_head_height(self) -> int:
        """Return the latest block height."""

    async def get_block(self, height: Union[int, BlockTag], include_transactions: bool) -> BlockSummary | None:
        """Return the block at ``height`` (or the ``"latest"`` tag)."""

    async def get_block_by_hash(self, block_hash: BlockHash, include_transactions: bool) -> BlockSummary | None:
        """Return the block with the given hash."""

    async def get_transaction(self, tx_hash: TxHash) -> TransactionRecord | None:
        """Return the transaction, without receipt fields."""

    async def get_receipt(self, tx_hash: TxHash) -> Receipt | None:
        """Return the receipt, or None while the transaction is pending."""

    async def get_balance(self, address: Address) -> Quantity:
        """Return the balance in wei as a base-10 string."""

    async def get_code(self, address: Address) -> str:
        """Return deployed code as 0x-hex; ``"0x"`` when not a contract."""

    async def get_price_of_inclusion(self) -> Quantity:
        """Return the current gas price in wei."""

    async def get_peer_count(self) -> int:
        """Return the number of connected peers."""
