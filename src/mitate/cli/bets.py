"""Bets subcommand: place, confirm, quote, list, mint."""

from __future__ import annotations

import typer

from mitate.cli.common import echo_json, open_service

app = typer.Typer(help="Bet placement and confirmation")


@app.command("place")
def place(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    outcome_id: str = typer.Argument(..., help="Outcome ID"),
    amount: int = typer.Argument(..., help="Stake in drops"),
    bettor: str = typer.Option(..., "--bettor", "-b", help="Bettor address"),
) -> None:
    """Record a Pending bet and print the TrustSet and Payment to sign."""
    with open_service(ctx) as service:
        echo_json(service.bets.place_bet(market_id, outcome_id, amount, bettor))


@app.command("confirm")
def confirm(
    ctx: typer.Context,
    bet_id: str = typer.Argument(..., help="Bet ID"),
    tx_hash: str = typer.Argument(..., help="Payment transaction hash"),
) -> None:
    """Bind the payment hash and credit the pool."""
    with open_service(ctx) as service:
        echo_json(service.bets.confirm_bet(bet_id, tx_hash))


@app.command("quote")
def quote(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    outcome_id: str = typer.Argument(..., help="Outcome ID"),
    amount: int = typer.Argument(..., help="Stake in drops"),
    bettor: str | None = typer.Option(None, "--bettor", "-b", help="Bettor address (for weight)"),
) -> None:
    """Weight, effective amount and potential payout for a stake."""
    with open_service(ctx) as service:
        echo_json(service.bets.quote(market_id, outcome_id, amount, bettor=bettor))


@app.command("list")
def list_bets(
    ctx: typer.Context,
    market_id: str | None = typer.Option(None, "--market", "-m", help="Market ID"),
    bettor: str | None = typer.Option(None, "--bettor", "-b", help="Bettor address"),
    status: str | None = typer.Option(None, "--status", help="Filter by status (market listing only)"),
) -> None:
    """List bets for a market or a bettor."""
    if not market_id and not bettor:
        raise typer.BadParameter("Pass --market or --bettor")
    with open_service(ctx) as service:
        rows = service.bets.list_bets(market_id, status=status) if market_id else service.bets.list_bets_for_bettor(bettor)
        for b in rows:
            payout = service.bets.actual_payout(b.id)
            typer.echo(f"  {b.id}  {b.status:<9} {b.amount:>14}  w={b.weight_score:.2f}  payout={payout}  {b.bettor}")
        typer.echo(f"Total: {len(rows)} bets")


@app.command("mint")
def mint(
    ctx: typer.Context,
    bet_id: str = typer.Argument(..., help="Bet ID"),
    tx_hash: str | None = typer.Option(None, "--tx-hash", help="Record a signed mint instead of building one"),
) -> None:
    """Print the outcome-token mint for a confirmed bet, or record its hash."""
    with open_service(ctx) as service:
        if tx_hash:
            echo_json(service.bets.mark_minted(bet_id, tx_hash))
        else:
            echo_json(service.bets.build_mint_tx(bet_id))
