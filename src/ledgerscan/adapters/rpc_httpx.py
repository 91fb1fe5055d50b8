from __future__ import annotations
import asyncio, httpx, logging
from typing import Any, Callable, TypeVar, Union
from ..domain.decoding import block_from_rpc, receipt_from_rpc, to_int, to_quantity, tx_from_rpc
from ..domain.errors import Timeout, UpstreamUnavailable
from ..domain.models import BlockSummary, Receipt, TransactionRecord
from ..domain.value_types import Address, BlockHash, BlockTag, Quantity, TxHash
from ..ports.ledger import LedgerClient

log = logging.getLogger(__name__)

T = TypeVar("T")

def _to_hex_block(n: Union[int, str]) -> str: return n if isinstance(n, str) else hex(int(n))

def _decode(method: str, decode: Callable[[Any], T], res: Any) -> T:
    # malformed payloads surface as upstream faults
    try:
        return decode(res)
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise UpstreamUnavailable(f"{method} returned malformed result: {type(e).__name__}: {e}") from e

class HttpxLedgerClient(LedgerClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 20,
        max_conn: int = 64,
        *,
        max_429_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_429_retries = max_429_retries
        self._ids = 0
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._ids += 1
        payload = {"jsonrpc":"2.0","id":self._ids,"method":method,"params":params}
        # retry on 429 with simple backoff
        for attempt in range(self.max_429_retries):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except httpx.TimeoutException as e:
                raise Timeout(f"{method} timed out: {e}") from e
            except httpx.HTTPError as e:
                raise UpstreamUnavailable(f"{method} transport error: {type(e).__name__}: {e}") from e
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                if attempt == self.max_429_retries - 1:
                    break
                log.warning("rate limited on %s; sleeping %.1fs", method, delay)
                await asyncio.sleep(delay); continue
            if r.is_error:
                raise UpstreamUnavailable(f"{method} HTTP {r.status_code}")
            try:
                data = r.json()
            except ValueError as e:
                raise UpstreamUnavailable(f"{method} returned invalid JSON") from e
            if "error" in data:
                err = data["error"]
                if isinstance(err, dict):
                    raise UpstreamUnavailable(f"{method} RPC error code={err.get('code')} message={err.get('message')}")
                raise UpstreamUnavailable(f"{method} RPC error: {err}")
            return data.get("result")
        raise UpstreamUnavailable(f"Retries exhausted for {method} (HTTP 429)")

    async def get_head_height(self) -> int:
        return _decode("eth_blockNumber", to_int, await self._call("eth_blockNumber", []))

    async def get_block(self, height: Union[int, BlockTag], include_transactions: bool) -> BlockSummary | None:
        res = await self._call("eth_getBlockByNumber", [_to_hex_block(height), bool(include_transactions)])
        return _decode("eth_getBlockByNumber", block_from_rpc, res) if res else None

    async def get_block_by_hash(self, block_hash: BlockHash, include_transactions: bool) -> BlockSummary | None:
        res = await self._call("eth_getBlockByHash", [str(block_hash), bool(include_transactions)])
        return _decode("eth_getBlockByHash", block_from_rpc, res) if res else None

    async def get_transaction(self, tx_hash: TxHash) -> TransactionRecord | None:
        res = await self._call("eth_getTransactionByHash", [str(tx_hash)])
        return _decode("eth_getTransactionByHash", tx_from_rpc, res) if res else None

    async def get_receipt(self, tx_hash: TxHash) -> Receipt | None:
        res = await self._call("eth_getTransactionReceipt", [str(tx_hash)])
        return _decode("eth_getTransactionReceipt", receipt_from_rpc, res) if res else None

    async def get_balance(self, address: Address) -> Quantity:
        return _decode("eth_getBalance", to_quantity, await self._call("eth_getBalance", [str(address), "latest"]))

    async def get_code(self, address: Address) -> str:
        res = await self._call("eth_getCode", [str(address), "latest"])
        return str(res or "0x").lower()

    async def get_price_of_inclusion(self) -> Quantity:
        return _decode("eth_gasPrice", to_quantity, await self._call("eth_gasPrice", []))

    async def get_peer_count(self) -> int:
        return _decode("net_peerCount", to_int, await self._call("net_peerCount", []))

    async def aclose(self) -> None:
        await self.client.aclose()
