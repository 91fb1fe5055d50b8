from __future__ import annotations
from dataclasses import dataclass, field
from typing import Union
from .value_types import Address, BlockHash, FailureKind, Quantity, QueryKind, ScanState, TxHash


@dataclass(slots=True, frozen=True)
class LogEntry:
    address: Address
    topics: tuple[str, ...]
    data_hex: str
    log_index: int


@dataclass(slots=True, frozen=True)
class Receipt:
    tx_hash: TxHash
    gas_used: int
    cumulative_gas_used: int
    success: bool
    contract_address: Address | None = None
    logs: tuple[LogEntry, ...] = ()


@dataclass(slots=True, frozen=True)
class TransactionRecord:
    hash: TxHash
    block_height: int
    block_hash: BlockHash | None
    position: int                      # index within block
    sender: Address
    recipient: Address | None          # None => contract creation
    value: Quantity                    # wei, big int as string
    gas_limit: int
    gas_price: Quantity
    nonce: int = 0
    input_hex: str = "0x"
    timestamp: int | None = None       # filled from the enclosing block
    receipt: Receipt | None = None
    status_assumed: bool = False       # True when receipt could not be fetched

    @property
    def is_contract_creation(self) -> bool:
        return self.recipient is None

    @property
    def gas_used(self) -> int:
        return self.receipt.gas_used if self.receipt is not None else 0

    @property
    def success(self) -> bool:
        # missing receipt => assumed successful
        return self.receipt.success if self.receipt is not None else True


@dataclass(slots=True, frozen=True)
class BlockSummary:
    height: int
    hash: BlockHash
    parent_hash: BlockHash
    timestamp: int
    miner: Address
    gas_used: int
    gas_limit: int
    size: int
    tx_hashes: tuple[TxHash, ...] = ()
    transactions: tuple[TransactionRecord, ...] = ()   # only when fetched with full txs
    difficulty: int | None = None
    total_difficulty: int | None = None
    nonce: str | None = None
    extra_data: str = "0x"
    state_root: str | None = None
    receipts_root: str | None = None
    transactions_root: str | None = None

    @property
    def tx_count(self) -> int:
        return len(self.tx_hashes)


@dataclass(slots=True, frozen=True)
class FetchFailure:
    kind: FailureKind
    key: Union[int, str]               # height for blocks, hash/address otherwise
    error: str
    attempts: int = 1
    cancelled: bool = False


@dataclass(slots=True, frozen=True)
class AddressProfile:
    address: Address
    balance_wei: Quantity
    balance: str                       # native unit, decimal string
    is_contract: bool
    code: str | None = None            # only for contracts
    code_size: int = 0


@dataclass(slots=True, frozen=True)
class ContractRecord:
    address: Address
    tx_hash: TxHash
    block_height: int
    position: int
    timestamp: int
    creator: Address
    code_size: int | None              # None when the code fetch failed


@dataclass(slots=True, frozen=True)
class NetworkStats:
    head_height: int
    price_of_inclusion: str            # gwei, decimal string
    peer_count: int
    difficulty: int | None = None
    total_difficulty: int | None = None


@dataclass(slots=True, frozen=True)
class ScanQuery:
    kind: QueryKind
    address: Address | None = None
    page: int | None = None
    page_size: int | None = None
    limit: int | None = None

    @property
    def fingerprint(self) -> str:
        parts = [self.kind]
        for name in ("address", "page", "page_size", "limit"):
            v = getattr(self, name)
            if v is not None:
                parts.append(f"{name}={v}")
        return "|".join(parts)


Record = Union[BlockSummary, TransactionRecord, ContractRecord]


@dataclass(slots=True, frozen=True)
class ScanResult:
    query: ScanQuery
    records: tuple[Record, ...]
    state: ScanState
    head_height: int
    scanned_from: int | None = None    # lowest height scanned (inclusive)
    scanned_to: int | None = None      # highest height scanned (inclusive)
    failures: tuple[FetchFailure, ...] = ()
    assumed_status: tuple[TxHash, ...] = ()
    estimated_total: int | None = None
    total_is_exact: bool = False
    page_count: int | None = None
    cancelled: bool = False
    notes: tuple[str, ...] = field(default=())

    @property
    def partial(self) -> bool:
        return self.state == "partial_done"

    def __len__(self) -> int:
        return len(self.records)
