from __future__ import annotations
import os, pyarrow as pa, pyarrow.parquet as pq
from typing import Iterable, Sequence

from ..domain.models import BlockSummary, ContractRecord, ScanResult, TransactionRecord

BLOCK_SCHEMA = pa.schema([
    ("height", pa.int64()),
    ("hash", pa.string()),
    ("parent_hash", pa.string()),
    ("timestamp", pa.int64()),
    ("miner", pa.string()),
    ("gas_used", pa.int64()),
    ("gas_limit", pa.int64()),
    ("size", pa.int64()),
    ("tx_count", pa.int32()),
])

TX_SCHEMA = pa.schema([
    ("hash", pa.string()),
    ("block_height", pa.int64()),
    ("position", pa.int32()),
    ("timestamp", pa.int64()),
    ("sender", pa.string()),
    ("recipient", pa.string()),
    ("value", pa.string()),        # big ints as strings
    ("gas_price", pa.string()),
    ("gas_used", pa.int64()),
    ("success", pa.bool_()),
    ("status_assumed", pa.bool_()),
])

CONTRACT_SCHEMA = pa.schema([
    ("address", pa.string()),
    ("tx_hash", pa.string()),
    ("block_height", pa.int64()),
    ("position", pa.int32()),
    ("timestamp", pa.int64()),
    ("creator", pa.string()),
    ("code_size", pa.int64()),
])


def _blocks_table(bs: Sequence[BlockSummary]) -> pa.Table:
    return pa.Table.from_arrays([
        pa.array([b.height for b in bs], pa.int64()),
        pa.array([b.hash for b in bs], pa.string()),
        pa.array([b.parent_hash for b in bs], pa.string()),
        pa.array([b.timestamp for b in bs], pa.int64()),
        pa.array([b.miner for b in bs], pa.string()),
        pa.array([b.gas_used for b in bs], pa.int64()),
        pa.array([b.gas_limit for b in bs], pa.int64()),
        pa.array([b.size for b in bs], pa.int64()),
        pa.array([b.tx_count for b in bs], pa.int32()),
    ], schema=BLOCK_SCHEMA)


def _txs_table(ts: Sequence[TransactionRecord]) -> pa.Table:
    return pa.Table.from_arrays([
        pa.array([t.hash for t in ts], pa.string()),
        pa.array([t.block_height for t in ts], pa.int64()),
        pa.array([t.position for t in ts], pa.int32()),
        pa.array([t.timestamp for t in ts], pa.int64()),
        pa.array([t.sender for t in ts], pa.string()),
        pa.array([t.recipient for t in ts], pa.string()),
        pa.array([t.value for t in ts], pa.string()),
        pa.array([t.gas_price for t in ts], pa.string()),
        pa.array([t.gas_used for t in ts], pa.int64()),
        pa.array([t.success for t in ts], pa.bool_()),
        pa.array([t.status_assumed for t in ts], pa.bool_()),
    ], schema=TX_SCHEMA)


def _contracts_table(cs: Sequence[ContractRecord]) -> pa.Table:
    return pa.Table.from_arrays([
        pa.array([c.address for c in cs], pa.string()),
        pa.array([c.tx_hash for c in cs], pa.string()),
        pa.array([c.block_height for c in cs], pa.int64()),
        pa.array([c.position for c in cs], pa.int32()),
        pa.array([c.timestamp for c in cs], pa.int64()),
        pa.array([c.creator for c in cs], pa.string()),
        pa.array([c.code_size for c in cs], pa.int64()),
    ], schema=CONTRACT_SCHEMA)


def records_to_table(records: Iterable[object], empty_schema: pa.Schema = TX_SCHEMA) -> pa.Table:
    recs = list(records)
    if not recs:
        return empty_schema.empty_table()
    if all(isinstance(r, BlockSummary) for r in recs):
        return _blocks_table(recs)  # type: ignore[arg-type]
    if all(isinstance(r, TransactionRecord) for r in recs):
        return _txs_table(recs)  # type: ignore[arg-type]
    if all(isinstance(r, ContractRecord) for r in recs):
        return _contracts_table(recs)  # type: ignore[arg-type]
    raise TypeError("records must all be of one kind (blocks, transactions or contracts)")


def write_scan_result(result: ScanResult, path: str, *, codec: str = "snappy") -> str:
    """Write the result's records to a Parquet file (atomic replace)."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    empty = {"block-page": BLOCK_SCHEMA, "contract-list": CONTRACT_SCHEMA}.get(result.query.kind, TX_SCHEMA)
    table = records_to_table(result.records, empty)
    meta = {
        b"ledgerscan.query": result.query.fingerprint.encode(),
        b"ledgerscan.state": result.state.encode(),
        b"ledgerscan.head_height": str(result.head_height).encode(),
    }
    table = table.replace_schema_metadata(meta)
    tmp = path + ".tmp"
    pq.write_table(table, tmp, compression=codec, use_dictionary=True)
    os.replace(tmp, path)
    return path
