# tests/conftest.py
import asyncio
from collections import Counter
from dataclasses import replace
from typing import Callable, Optional

import pytest

from ledgerscan.config import Settings
from ledgerscan.domain.errors import UpstreamUnavailable
from ledgerscan.domain.models import BlockSummary, Receipt, TransactionRecord
from ledgerscan.domain.value_types import Address, BlockHash, Quantity, TxHash


def hx(tag: int, n: int) -> str:
    """Deterministic 32-byte hash: tag nibble + counter."""
    return "0x" + f"{tag:x}" + f"{n:063x}"

def addr(n: int) -> Address:
    return Address(f"0x{n:040x}")


ALICE = Address("0x" + "ab" * 20)
BOB = Address("0x" + "cd" * 20)
CAROL = Address("0x" + "ef" * 20)
NOBODY = Address("0x" + "12" * 20)
CONTRACT_CODE = "0x6080604052" + "00" * 95   # 100 bytes


class FakeLedger:
    """In-memory chain: every block has `txs_per_block` transfers alternating
    ALICE->BOB and BOB->CAROL; heights in `creation_heights` get an extra
    contract-creation transaction from CAROL."""

    def __init__(
        self,
        head: int = 100,
        txs_per_block: int = 3,
        *,
        creation_heights=(),
        fail_heights=(),
        flaky_heights=(),
        slow_heights=(),
        missing_heights=(),
        fail_receipts=(),
        missing_receipts=(),
        contract_address_override: Optional[dict] = None,
        delay: float = 0.0,
        slow_delay: float = 1.0,
    ) -> None:
        self.head = head
        self.fail_heights = set(fail_heights)
        self.flaky_heights = set(flaky_heights)
        self.slow_heights = set(slow_heights)
        self.missing_heights = set(missing_heights)
        self.fail_receipts = set(fail_receipts)
        self.missing_receipts = set(missing_receipts)
        self.fail_methods: set = set()
        self.delay = delay
        self.slow_delay = slow_delay
        self.calls: Counter = Counter()
        self.block_calls: Counter = Counter()
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_get_block: Optional[Callable[[int], None]] = None
        self.codes: dict = {ALICE: "0x", BOB: "0x"}

        self.blocks: dict = {}
        self.txs: dict = {}
        self.receipts: dict = {}
        override = contract_address_override or {}
        for h in range(head + 1):
            txs = []
            for i in range(txs_per_block):
                sender, recipient = (ALICE, BOB) if (h + i) % 2 == 0 else (BOB, CAROL)
                txs.append(self._tx(h, i, sender, recipient))
            if h in set(creation_heights):
                txs.append(self._tx(h, len(txs), CAROL, None))
            for tx in txs:
                caddr = None
                if tx.recipient is None:
                    caddr = Address(override.get(h, f"0x{0xc0de0000 + h:040x}"))
                    self.codes[caddr] = CONTRACT_CODE
                self.txs[tx.hash] = tx
                self.receipts[tx.hash] = Receipt(
                    tx_hash=tx.hash, gas_used=21_000 + tx.position, cumulative_gas_used=21_000 * (tx.position + 1),
                    success=True, contract_address=caddr,
                )
            self.blocks[h] = BlockSummary(
                height=h, hash=BlockHash(hx(0xb, h)), parent_hash=BlockHash(hx(0xb, h - 1) if h else hx(0, 0)),
                timestamp=1_700_000_000 + 5 * h, miner=addr(0xfee), gas_used=21_000 * len(txs),
                gas_limit=30_000_000, size=500 + 100 * len(txs),
                tx_hashes=tuple(t.hash for t in txs), transactions=tuple(txs), difficulty=2, total_difficulty=2 * (h + 1),
            )

    @staticmethod
    def _tx(h: int, i: int, sender, recipient) -> TransactionRecord:
        return TransactionRecord(
            hash=TxHash(hx(0xa, h * 1000 + i)), block_height=h, block_hash=BlockHash(hx(0xb, h)),
            position=i, sender=sender, recipient=recipient, value=Quantity(str(10**18 * (i + 1))),
            gas_limit=100_000, gas_price=Quantity("1000000000"), timestamp=1_700_000_000 + 5 * h,
        )

    async def _enter(self, method: str) -> None:
        self.calls[method] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if method in self.fail_methods:
            raise UpstreamUnavailable(f"{method} down")

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def get_head_height(self) -> int:
        await self._enter("get_head_height")
        return self.head

    async def get_block(self, height, include_transactions):
        await self._enter("get_block")
        if height == "latest":
            height = self.head
        self.block_calls[height] += 1
        if self.on_get_block is not None:
            self.on_get_block(height)
        if height in self.slow_heights:
            await asyncio.sleep(self.slow_delay)
        if height in self.fail_heights:
            raise UpstreamUnavailable(f"block {height} unavailable")
        if height in self.flaky_heights and self.block_calls[height] == 1:
            raise UpstreamUnavailable(f"block {height} flaked")
        if height in self.missing_heights:
            return None
        b = self.blocks.get(height)
        if b is None or include_transactions:
            return b
        return replace(b, transactions=())

    async def get_block_by_hash(self, block_hash, include_transactions):
        await self._enter("get_block_by_hash")
        for b in self.blocks.values():
            if b.hash == block_hash:
                return b
        return None

    async def get_transaction(self, tx_hash):
        await self._enter("get_transaction")
        tx = self.txs.get(tx_hash)
        if tx is None:
            return None
        # nodes do not return the block timestamp with the transaction
        return replace(tx, timestamp=None)

    async def get_receipt(self, tx_hash):
        await self._enter("get_receipt")
        if tx_hash in self.fail_receipts:
            raise UpstreamUnavailable(f"receipt {tx_hash} unavailable")
        if tx_hash in self.missing_receipts:
            return None
        return self.receipts.get(tx_hash)

    async def get_balance(self, address):
        await self._enter("get_balance")
        return Quantity("1500000000000000000") if address == ALICE else Quantity("0")

    async def get_code(self, address):
        await self._enter("get_code")
        return self.codes.get(address, "0x")

    async def get_price_of_inclusion(self):
        await self._enter("get_price_of_inclusion")
        return Quantity("2500000000")

    async def get_peer_count(self):
        await self._enter("get_peer_count")
        return 7


@pytest.fixture
def settings():
    return Settings(request_timeout_s=2.0, retries=1, retry_backoff_s=0.0, concurrency=4,
                    cache_ttl_s=5.0, initial_window=10, max_window=100)


@pytest.fixture
def ledger():
    return FakeLedger()


def run(coro):
    return asyncio.run(coro)
