# ledgerscan/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

ENV_PREFIX = "LEDGERSCAN_"


@dataclass(slots=True, frozen=True)
class Settings:
    rpc_url: str = "http://127.0.0.1:8545"
    request_timeout_s: float = 10.0    # per remote call
    retries: int = 1                   # extra attempts per failed item
    retry_backoff_s: float = 0.25
    concurrency: int = 8               # limiter slots, shared by all scans
    cache_ttl_s: float = 5.0           # ~ one block interval
    initial_window: int = 10
    max_window: int = 100              # hard cap on heights scanned per query
    avg_tx_per_block: int = 10         # advisory multiplier for tx totals
    tx_page_block_stride: int = 10
    max_tx_pages: int = 100
    scan_deadline_s: float | None = None
    max_limit: int = 100
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}")
        if self.request_timeout_s <= 0:
            raise ValueError(f"request_timeout_s must be > 0, got {self.request_timeout_s}")
        if self.cache_ttl_s < 0:
            raise ValueError(f"cache_ttl_s must be >= 0, got {self.cache_ttl_s}")
        if self.initial_window < 1 or self.max_window < 1:
            raise ValueError("window sizes must be >= 1")
        if self.initial_window > self.max_window:
            raise ValueError(f"initial_window ({self.initial_window}) must be <= max_window ({self.max_window})")
        if self.avg_tx_per_block < 1 or self.tx_page_block_stride < 1 or self.max_tx_pages < 1 or self.max_limit < 1:
            raise ValueError("paging parameters must be >= 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "Settings":
        """Build settings from LEDGERSCAN_* variables; explicit overrides win."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, raw)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "Settings":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_FLOATS = {"request_timeout_s", "retry_backoff_s", "cache_ttl_s", "scan_deadline_s"}
_STRS = {"rpc_url", "log_level"}

def _coerce(name: str, raw: str) -> Any:
    try:
        if name in _STRS:
            return raw
        if name in _FLOATS:
            return float(raw)
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e
