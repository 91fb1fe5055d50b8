import asyncio, time
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

import click
from eth_utils import from_wei, to_checksum_address
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .adapters.parquet_export import write_scan_result
from .adapters.rpc_httpx import HttpxLedgerClient
from .application.polling import RecurringTask
from .application.use_cases import ScanEngine
from .config import Settings
from .domain.errors import LedgerScanError
from .domain.models import ScanResult
from .logging_setup import configure_logging

console = Console()
T = TypeVar("T")


def _short(h: str | None, start: int = 10, end: int = 8) -> str:
    if not h:
        return "—"
    return h if len(h) <= start + end else f"{h[:start]}…{h[-end:]}"

def _ts(ts: int | None) -> str:
    if not ts:
        return "—"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

def _eth(wei: str) -> str:
    return f"{from_wei(int(wei), 'ether'):.6f}"


def build_engine(settings: Settings) -> tuple[ScanEngine, HttpxLedgerClient]:
    rpc = HttpxLedgerClient(settings.rpc_url, timeout_s=settings.request_timeout_s,
                            max_conn=max(16, 2 * settings.concurrency))
    return ScanEngine(rpc, settings), rpc


def _run(ctx: click.Context, fn: Callable[[ScanEngine], Awaitable[T]]) -> T:
    settings: Settings = ctx.obj["settings"]

    async def main() -> T:
        engine, rpc = build_engine(settings)
        try:
            return await fn(engine)
        finally:
            await rpc.aclose()

    try:
        return asyncio.run(main())
    except LedgerScanError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")


def _footer(res: ScanResult, parquet_out: str) -> None:
    if res.partial:
        console.print(f"[yellow]partial result[/]: {len(res.failures)} sub-fetch failure(s)"
                      + (f", {len(res.assumed_status)} status assumed" if res.assumed_status else "")
                      + (" • cancelled" if res.cancelled else ""))
    if res.scanned_from is not None:
        console.print(f"[dim]scanned heights {res.scanned_from:,}–{res.scanned_to:,} of head {res.head_height:,}[/]")
    if res.estimated_total is not None:
        label = "total" if res.total_is_exact else "≈ total (estimate)"
        console.print(f"[dim]{label}: {res.estimated_total:,} • pages: {res.page_count:,}[/]")
    if parquet_out:
        console.print(f"[bold]wrote[/] {write_scan_result(res, parquet_out)}")


def _tx_table(res: ScanResult, title: str) -> Table:
    t = Table(title=title, expand=True)
    for col in ("hash", "block", "from", "to", "value (ETH)", "gas used", "status"):
        t.add_column(col)
    for tx in res.records:
        status = "[green]ok[/]" if tx.success else "[red]failed[/]"
        if tx.status_assumed:
            status = "[yellow]assumed ok[/]"
        t.add_row(_short(tx.hash), f"{tx.block_height:,}", _short(tx.sender),
                  _short(tx.recipient) if tx.recipient else "[cyan]contract creation[/]",
                  _eth(tx.value), f"{tx.gas_used:,}", status)
    return t


@click.group()
@click.option("--rpc", "rpc_url", envvar="LEDGERSCAN_RPC_URL", default=None, help="Ledger node JSON-RPC URL")
@click.option("--concurrency", type=int, default=None, help="Max parallel remote calls")
@click.option("--timeout", "request_timeout_s", type=float, default=None, help="Per-call timeout (s)")
@click.option("--deadline", "scan_deadline_s", type=float, default=None, help="Wall-clock bound per scan (s)")
@click.option("--log-level", default=None, help="Logging level")
@click.pass_context
def cli(ctx, rpc_url, concurrency, request_timeout_s, scan_deadline_s, log_level):
    """ledgerscan: on-demand explorer queries over a ledger node."""
    try:
        settings = Settings.from_env(
            rpc_url=rpc_url, concurrency=concurrency, request_timeout_s=request_timeout_s,
            scan_deadline_s=scan_deadline_s, log_level=log_level,
        )
    except ValueError as e:
        raise click.UsageError(str(e))
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command("stats")
@click.pass_context
def stats_cmd(ctx):
    """Head height, gas price, peers and difficulty."""
    s = _run(ctx, lambda e: e.get_network_stats())
    console.print(Panel(
        f"head height: [bold]{s.head_height:,}[/]\n"
        f"gas price:   {s.price_of_inclusion} gwei\n"
        f"peers:       {s.peer_count}\n"
        f"difficulty:  {s.difficulty if s.difficulty is not None else '—'}",
        title="network",
    ))


@cli.command("blocks")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=10, show_default=True)
@click.option("--parquet-out", type=str, default="", help="Optional Parquet path for the page")
@click.pass_context
def blocks_cmd(ctx, page, page_size, parquet_out):
    """List a page of blocks, newest first."""
    res = _run(ctx, lambda e: e.scan_block_page(page, page_size))
    t = Table(title=f"blocks • page {page}", expand=True)
    for col in ("height", "hash", "time (UTC)", "miner", "txs", "gas used"):
        t.add_column(col)
    for b in res.records:
        t.add_row(f"{b.height:,}", _short(b.hash), _ts(b.timestamp), _short(b.miner), str(b.tx_count), f"{b.gas_used:,}")
    console.print(t)
    _footer(res, parquet_out)


@cli.command("txs")
@click.option("--limit", type=int, default=10, show_default=True, help="Recent transactions to show")
@click.option("--page", type=int, default=None, help="Paged listing instead of most recent")
@click.option("--parquet-out", type=str, default="")
@click.pass_context
def txs_cmd(ctx, limit, page, parquet_out):
    """Recent transactions (or a page of them)."""
    if page is None:
        res = _run(ctx, lambda e: e.scan_recent_transactions(limit))
        title = "recent transactions"
    else:
        res = _run(ctx, lambda e: e.scan_transaction_page(page, limit))
        title = f"transactions • page {page}"
    console.print(_tx_table(res, title))
    _footer(res, parquet_out)


@cli.command("address")
@click.argument("address")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--parquet-out", type=str, default="")
@click.pass_context
def address_cmd(ctx, address, limit, parquet_out):
    """Balance, contract flag and recent activity of an address."""
    async def both(e: ScanEngine):
        return await asyncio.gather(e.get_address_detail(address), e.scan_address_activity(address, limit))
    profile, res = _run(ctx, both)
    kind = f"contract ({profile.code_size:,} bytes)" if profile.is_contract else "account"
    console.print(Panel(f"{to_checksum_address(profile.address)}\nbalance: {profile.balance} ETH\ntype: {kind}",
                        title="address"))
    if not res.records:
        console.print("[dim]no activity in the scanned window[/]")
    else:
        console.print(_tx_table(res, "activity"))
    _footer(res, parquet_out)


@cli.command("contracts")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--parquet-out", type=str, default="")
@click.pass_context
def contracts_cmd(ctx, limit, parquet_out):
    """Contracts deployed in recent blocks."""
    res = _run(ctx, lambda e: e.scan_contracts(limit))
    t = Table(title="recent contracts", expand=True)
    for col in ("address", "creator", "block", "time (UTC)", "code size"):
        t.add_column(col)
    for c in res.records:
        t.add_row(_short(c.address), _short(c.creator), f"{c.block_height:,}", _ts(c.timestamp),
                  f"{c.code_size:,} B" if c.code_size is not None else "?")
    console.print(t)
    _footer(res, parquet_out)


@cli.command("block")
@click.argument("block_id")
@click.pass_context
def block_cmd(ctx, block_id):
    """Block details by height or hash."""
    b = _run(ctx, lambda e: e.get_block_detail(block_id))
    console.print(Panel(
        f"height: {b.height:,}\nhash: {b.hash}\nparent: {b.parent_hash}\ntime: {_ts(b.timestamp)}\n"
        f"miner: {b.miner}\ntxs: {b.tx_count}\ngas: {b.gas_used:,} / {b.gas_limit:,}\nsize: {b.size:,} B\n"
        f"difficulty: {b.difficulty if b.difficulty is not None else '—'}",
        title=f"block {b.height:,}",
    ))


@cli.command("tx")
@click.argument("tx_hash")
@click.pass_context
def tx_cmd(ctx, tx_hash):
    """Transaction details by hash."""
    tx = _run(ctx, lambda e: e.get_transaction_detail(tx_hash))
    r = tx.receipt
    status = "pending" if r is None else ("success" if r.success else "failed")
    lines = [
        f"hash: {tx.hash}", f"block: {tx.block_height:,} (pos {tx.position})", f"time: {_ts(tx.timestamp)}",
        f"from: {tx.sender}", f"to: {tx.recipient or 'contract creation'}", f"value: {_eth(tx.value)} ETH",
        f"gas: {tx.gas_used:,} / {tx.gas_limit:,}", f"status: {status}",
    ]
    if r is not None and r.contract_address:
        lines.append(f"created: {r.contract_address}")
    if r is not None:
        lines.append(f"logs: {len(r.logs)}")
    console.print(Panel("\n".join(lines), title="transaction"))


@cli.command("watch")
@click.option("--interval", type=float, default=5.0, show_default=True, help="Seconds between refreshes")
@click.option("--count", type=int, default=None, help="Stop after N refreshes")
@click.pass_context
def watch_cmd(ctx, interval, count):
    """Poll network stats and the latest transactions."""
    settings: Settings = ctx.obj["settings"]

    async def main() -> None:
        engine, rpc = build_engine(settings)

        async def refresh():
            return await asyncio.gather(engine.get_network_stats(), engine.scan_recent_transactions(5))

        def show(res) -> None:
            stats, recent = res
            console.print(f"[bold]{time.strftime('%H:%M:%S')}[/] head={stats.head_height:,} "
                          f"gas={stats.price_of_inclusion} gwei peers={stats.peer_count} "
                          f"latest tx={_short(recent.records[0].hash) if recent.records else '—'}"
                          + (" [yellow](partial)[/]" if recent.partial else ""))

        task = RecurringTask(refresh, interval, on_result=show,
                             on_error=lambda e: console.print(f"[red]{type(e).__name__}[/]: {e}"))
        try:
            await task.run(iterations=count)
        finally:
            await rpc.aclose()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
