from __future__ import annotations
from decimal import Decimal
from typing import Any, Mapping

from .models import BlockSummary, LogEntry, Receipt, TransactionRecord
from .value_types import Address, BlockHash, Quantity, TxHash

# ---------- scalar helpers ---------------------------------------------------

def to_int(v: Any, default: int = 0) -> int:
    """Handles 0x..., decimal strings, and native ints; None -> default."""
    if v is None:
        return default
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, int):
        return v
    s = str(v).strip().lower()
    if not s:
        return default
    return int(s, 16) if s.startswith("0x") else int(s)


def to_opt_int(v: Any) -> int | None:
    return None if v is None else to_int(v)


def to_quantity(v: Any) -> Quantity:
    """Normalize once at the boundary: any int-like value -> base-10 string."""
    return Quantity(str(to_int(v)))


def plain_decimal(v: Decimal | int) -> str:
    """Positional notation for from_wei results (never 1E-18)."""
    return format(v, "f") if isinstance(v, Decimal) else str(v)


def to_hex_lower(v: Any) -> str | None:
    """Normalize to lowercase hex with '0x' or None."""
    if v is None:
        return None
    s = v if isinstance(v, str) else v.decode()
    s = s.lower()
    return s if s.startswith("0x") else "0x" + s


def to_address(v: Any) -> Address | None:
    if not v:
        return None
    return Address(to_hex_lower(v))


def code_size(code: str | None) -> int:
    if not code:
        return 0
    h = code[2:] if code[:2].lower() == "0x" else code
    return len(h) // 2


def is_empty_code(code: str | None) -> bool:
    return code_size(code) == 0

# ---------- JSON-RPC objects -------------------------------------------------

def log_from_rpc(rl: Mapping[str, Any]) -> LogEntry:
    return LogEntry(
        address=Address((rl.get("address") or "").lower()),
        topics=tuple(t.lower() for t in rl.get("topics") or ()),
        data_hex=str(rl.get("data") or "0x"),
        log_index=to_int(rl.get("logIndex")),
    )


def receipt_from_rpc(rr: Mapping[str, Any]) -> Receipt:
    # pre-byzantium receipts have no status field; treat as success
    status = rr.get("status")
    return Receipt(
        tx_hash=TxHash(str(rr["transactionHash"]).lower()),
        gas_used=to_int(rr.get("gasUsed")),
        cumulative_gas_used=to_int(rr.get("cumulativeGasUsed")),
        success=True if status is None else to_int(status) == 1,
        contract_address=to_address(rr.get("contractAddress")),
        logs=tuple(log_from_rpc(rl) for rl in rr.get("logs") or ()),
    )


def tx_from_rpc(rt: Mapping[str, Any], *, timestamp: int | None = None) -> TransactionRecord:
    return TransactionRecord(
        hash=TxHash(str(rt["hash"]).lower()),
        block_height=to_int(rt.get("blockNumber")),
        block_hash=BlockHash(h) if (h := to_hex_lower(rt.get("blockHash"))) else None,
        position=to_int(rt.get("transactionIndex")),
        sender=Address(str(rt.get("from") or "").lower()),
        recipient=to_address(rt.get("to")),
        value=to_quantity(rt.get("value")),
        gas_limit=to_int(rt.get("gas")),
        gas_price=to_quantity(rt.get("gasPrice")),
        nonce=to_int(rt.get("nonce")),
        input_hex=str(rt.get("input") or "0x"),
        timestamp=timestamp,
    )


def block_from_rpc(rb: Mapping[str, Any]) -> BlockSummary:
    ts = to_int(rb.get("timestamp"))
    hashes: list[TxHash] = []
    txs: list[TransactionRecord] = []
    for t in rb.get("transactions") or ():
        if isinstance(t, str):
            hashes.append(TxHash(t.lower()))
        else:
            rec = tx_from_rpc(t, timestamp=ts)
            hashes.append(rec.hash)
            txs.append(rec)
    return BlockSummary(
        height=to_int(rb.get("number")),
        hash=BlockHash(str(rb.get("hash") or "").lower()),
        parent_hash=BlockHash(str(rb.get("parentHash") or "").lower()),
        timestamp=ts,
        miner=Address(str(rb.get("miner") or "").lower()),
        gas_used=to_int(rb.get("gasUsed")),
        gas_limit=to_int(rb.get("gasLimit")),
        size=to_int(rb.get("size")),
        tx_hashes=tuple(hashes),
        transactions=tuple(txs),
        difficulty=to_opt_int(rb.get("difficulty")),
        total_difficulty=to_opt_int(rb.get("totalDifficulty")),
        nonce=to_hex_lower(rb.get("nonce")),
        extra_data=str(rb.get("extraData") or "0x"),
        state_root=to_hex_lower(rb.get("stateRoot")),
        receipts_root=to_hex_lower(rb.get("receiptsRoot")),
        transactions_root=to_hex_lower(rb.get("transactionsRoot")),
    )
