# ledgerscan/domain/errors.py
from __future__ import annotations


class LedgerScanError(Exception):
    """Base class for every error surfaced by the scan engine."""


class InvalidInput(LedgerScanError, ValueError):
    """Malformed address/hash/height/limit; rejected before any remote call."""


class NotFound(LedgerScanError):
    """Well-formed identifier, but the ledger has no matching record."""


class UpstreamUnavailable(LedgerScanError):
    """Remote node unreachable, returned an HTTP error or a JSON-RPC error."""


class Timeout(LedgerScanError):
    """A remote call exceeded its time budget."""


class ScanCancelled(LedgerScanError):
    """Raised inside a guarded call when the scan's cancel token has fired."""
