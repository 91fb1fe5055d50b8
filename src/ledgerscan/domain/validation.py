from __future__ import annotations
import re
from typing import Union

from eth_utils import is_hex_address

from .errors import InvalidInput
from .value_types import Address, BlockHash, TxHash

_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEIGHT_RE = re.compile(r"^\d+$")


def is_valid_tx_hash(x: object) -> bool:
    return isinstance(x, str) and bool(_HASH_RE.match(x))


def normalize_address(address: object) -> Address:
    """Case-insensitive address normalization; checksum casing is not enforced."""
    if not isinstance(address, str) or not is_hex_address(address.strip()):
        raise InvalidInput(f"Invalid address: {address!r}")
    s = address.strip().lower()
    return Address(s if s.startswith("0x") else "0x" + s)


def normalize_tx_hash(h: object) -> TxHash:
    if not is_valid_tx_hash(h):
        raise InvalidInput(f"Invalid transaction hash: {h!r}")
    return TxHash(str(h).lower())


def parse_block_id(block_id: Union[int, str]) -> Union[int, BlockHash]:
    """Height (int or decimal string) or 0x block hash."""
    if isinstance(block_id, bool):
        raise InvalidInput(f"Invalid block identifier: {block_id!r}")
    if isinstance(block_id, int):
        if block_id < 0:
            raise InvalidInput(f"Block height must be >= 0, got {block_id}")
        return block_id
    if isinstance(block_id, str):
        s = block_id.strip()
        if _HEIGHT_RE.match(s):
            return int(s)
        if _HASH_RE.match(s):
            return BlockHash(s.lower())
    raise InvalidInput(f"Invalid block identifier: {block_id!r}")


def check_positive(name: str, value: int, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidInput(f"{name} must be a positive integer, got {value!r}")
    if maximum is not None and value > maximum:
        raise InvalidInput(f"{name} must be <= {maximum}, got {value}")
    return value
