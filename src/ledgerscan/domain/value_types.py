from __future__ import annotations
from typing import NewType, Literal

Address   = NewType("Address", str)    # 0x-prefixed, lowercase, 40 hex chars
TxHash    = NewType("TxHash", str)     # 66-char 0x-hash, lowercase
BlockHash = NewType("BlockHash", str)  # 66-char 0x-hash, lowercase
Quantity  = NewType("Quantity", str)   # arbitrary-precision integer as base-10 string

QueryKind = Literal[
    "address-activity", "recent-transactions", "transaction-page",
    "block-page", "contract-list", "network-stats",
]
ScanState = Literal["idle", "fetching", "resolving", "aggregating", "done", "partial_done", "failed"]
FailureKind = Literal["block", "receipt", "code"]
BlockTag = Literal["latest"]
