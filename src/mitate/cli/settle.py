"""Settle subcommand: resolve, cancel, payouts."""

from __future__ import annotations

import typer

from mitate.cli.common import echo_json, open_service

app = typer.Typer(help="Resolution and payouts")


@app.command("resolve")
def resolve(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    outcome_id: str = typer.Argument(..., help="Winning outcome ID"),
    fee: int = typer.Option(0, "--fee", help="Operator fee in drops, deducted before distribution"),
) -> None:
    """Resolve a Closed market; prints the EscrowFinish to sign."""
    with open_service(ctx) as service:
        echo_json(service.settlement.resolve(market_id, outcome_id, fee=fee))


@app.command("cancel")
def cancel(ctx: typer.Context, market_id: str = typer.Argument(..., help="Market ID")) -> None:
    """Cancel a Closed market; prints the EscrowCancel to sign."""
    with open_service(ctx) as service:
        echo_json(service.settlement.cancel(market_id))


@app.command("confirm")
def confirm(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    tx_hash: str = typer.Argument(..., help="EscrowFinish or EscrowCancel hash"),
    action: str = typer.Option("finish", "--action", "-a", help="finish or cancel"),
) -> None:
    """Record the signed escrow finish/cancel."""
    with open_service(ctx) as service:
        echo_json(service.settlement.confirm_resolution(market_id, tx_hash, action))


@app.command("payouts")
def payouts(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    batch_size: int | None = typer.Option(None, "--batch-size", "-n", help="Max payments (default from config)"),
    show: bool = typer.Option(False, "--list", help="List payouts and stats instead of building payments"),
    retry: bool = typer.Option(False, "--retry-failed", help="Requeue failed payouts first"),
) -> None:
    """Print the next batch of payout Payments to sign."""
    with open_service(ctx) as service:
        if show:
            echo_json(
                {
                    "stats": service.settlement.payout_stats(market_id),
                    "payouts": service.settlement.list_payouts(market_id),
                }
            )
            return
        if retry:
            typer.echo(f"Requeued {service.settlement.retry_failed(market_id)} failed payouts", err=True)
        size = batch_size or service.settings.payout_batch_size
        echo_json(service.settlement.execute_payouts(market_id, batch_size=size))


@app.command("confirm-payout")
def confirm_payout(
    ctx: typer.Context,
    payout_id: str = typer.Argument(..., help="Payout ID"),
    tx_hash: str = typer.Argument(..., help="Payout payment hash"),
) -> None:
    """Mark a payout Sent (finalizes the market when none remain)."""
    with open_service(ctx) as service:
        echo_json(service.confirm_payout(payout_id, tx_hash))


@app.command("fail-payout")
def fail_payout(ctx: typer.Context, payout_id: str = typer.Argument(..., help="Payout ID")) -> None:
    """Mark a Pending payout Failed."""
    with open_service(ctx) as service:
        echo_json(service.settlement.mark_payout_failed(payout_id))


@app.command("finalize")
def finalize(ctx: typer.Context, market_id: str = typer.Argument(..., help="Market ID")) -> None:
    """Move a Resolved market to Paid if every payout was sent."""
    with open_service(ctx) as service:
        market = service.settlement.finalize_if_complete(market_id)
        typer.echo(f"Market {market.id} is {market.status}")
