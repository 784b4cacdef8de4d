"""Markets subcommand: create, confirm, list, show, close."""

from __future__ import annotations

import typer

from mitate.cli.common import echo_json, open_service, parse_time_ms, run_async

app = typer.Typer(help="Market lifecycle")


@app.command("create")
def create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Market question"),
    deadline: str = typer.Option(..., "--deadline", "-d", help="Betting deadline (ISO-8601 or ms epoch)"),
    outcome: list[str] = typer.Option(None, "--outcome", "-o", help="Outcome label (repeat 2-5 times; default YES/NO)"),
    description: str = typer.Option("", "--description", help="Market description"),
    category: str | None = typer.Option(None, "--category", help="Category"),
    resolution_time: str | None = typer.Option(None, "--resolution-time", help="Expected resolution (ISO-8601 or ms)"),
    created_by: str | None = typer.Option(None, "--created-by", help="Creator address"),
) -> None:
    """Create a Draft market and print the EscrowCreate to sign."""
    with open_service(ctx) as service:
        created = service.markets.create_market(
            title,
            description,
            parse_time_ms(deadline),
            outcomes=outcome or None,
            category=category,
            resolution_time=parse_time_ms(resolution_time) if resolution_time else None,
            created_by=created_by,
        )
        echo_json(created)


@app.command("confirm")
def confirm(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    tx_hash: str = typer.Argument(..., help="EscrowCreate transaction hash"),
    sequence: int | None = typer.Option(None, "--sequence", "-s", help="Escrow sequence (looked up if omitted)"),
) -> None:
    """Bind the escrow and open the market for betting."""
    with open_service(ctx) as service:
        market = run_async(service, service.confirm_market_creation(market_id, tx_hash, sequence))
        echo_json(market)


@app.command("list")
def list_markets(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", help="Filter by status (e.g. Open)"),
    category: str | None = typer.Option(None, "--category", help="Filter by category"),
) -> None:
    """List markets, newest first."""
    with open_service(ctx) as service:
        rows = service.markets.list_markets(status=status, category=category)
        for m in rows:
            typer.echo(f"  {m.id}  {m.status:<9} pool={m.pool_total}  {m.title[:60]}")
        typer.echo(f"Total: {len(rows)} markets")


@app.command("show")
def show(ctx: typer.Context, market_id: str = typer.Argument(..., help="Market ID")) -> None:
    """Market with outcomes and current probabilities."""
    with open_service(ctx) as service:
        echo_json(service.markets.get_market_with_outcomes(market_id))


@app.command("close")
def close(ctx: typer.Context, market_id: str = typer.Argument(..., help="Market ID")) -> None:
    """Stop betting on an Open market."""
    with open_service(ctx) as service:
        market = service.markets.close(market_id)
        typer.echo(f"Market {market.id} is {market.status}")


@app.command("close-expired")
def close_expired(ctx: typer.Context) -> None:
    """Close every Open market whose betting deadline has passed."""
    with open_service(ctx) as service:
        closed = service.markets.close_expired()
        for m in closed:
            typer.echo(f"  closed {m.id}")
        typer.echo(f"Closed {len(closed)} markets")
