"""Sync subcommand: start, backfill, status, events."""

from __future__ import annotations

import asyncio
import signal

import typer

from mitate.cli.common import echo_json, open_service, run_async
from mitate.storage import events as event_store
from mitate.storage import state as state_store

app = typer.Typer(help="Ledger event ingestion")


@app.command("start")
def start(ctx: typer.Context) -> None:
    """Subscribe to the ledger and ingest MITATE events until Ctrl+C."""
    with open_service(ctx) as service:
        sync = service.ledger_sync()

        async def main() -> None:
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    pass
            await sync.start()
            waiter = asyncio.create_task(sync.wait())
            stopper = asyncio.create_task(stop.wait())
            try:
                await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
                stopper.cancel()
                await sync.stop()

        typer.echo("Ledger sync running. Press Ctrl+C to stop.")
        run_async(service, main())
        st = sync.status()
        typer.echo(f"Stopped at ledger {st.last_ledger_index}; {st.processed_count} events ingested.")


@app.command("backfill")
def backfill(
    ctx: typer.Context,
    start_index: int | None = typer.Option(None, "--start", help="First ledger (default: cursor + 1)"),
    end_index: int | None = typer.Option(None, "--end", help="Last ledger (default: latest validated)"),
) -> None:
    """Ingest a ledger range over JSON-RPC."""
    with open_service(ctx) as service:
        sync = service.ledger_sync()

        async def main() -> int:
            if start_index is None and end_index is None:
                return await sync.catch_up()
            end = end_index if end_index is not None else await service.rpc.current_ledger_index()
            begin = start_index if start_index is not None else (sync.status().last_ledger_index or end) + 1
            return await sync.backfill(begin, end)

        count = run_async(service, main())
        typer.echo(f"Ingested {count} events; cursor at {sync.status().last_ledger_index}")


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Show the sync cursor and event log statistics."""
    with open_service(ctx) as service:
        index, synced_at = state_store.get_cursor(service.db.conn)
        echo_json({"last_ledger_index": index, "last_sync_time": synced_at, **event_store.event_stats(service.db.conn)})


@app.command("events")
def events(
    ctx: typer.Context,
    market_id: str | None = typer.Option(None, "--market", "-m", help="Filter by market ID"),
    event_type: str | None = typer.Option(None, "--type", "-t", help="Filter by memo type"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max events"),
) -> None:
    """List recently ingested ledger events."""
    with open_service(ctx) as service:
        rows = event_store.list_events(service.db.conn, market_id=market_id, event_type=event_type, limit=limit)
        for e in rows:
            typer.echo(f"  {e.ledger_index:>10}  {e.event_type:<11} {e.market_id or '-'}  {e.tx_hash}")
        typer.echo(f"Shown: {len(rows)} events")
