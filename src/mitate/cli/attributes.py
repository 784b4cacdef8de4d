"""Attributes subcommand: add, list, remove verified bettor attributes."""

from __future__ import annotations

import typer

from mitate.cli.common import echo_json, open_service

app = typer.Typer(help="Bettor weight attributes")


@app.command("add")
def add(
    ctx: typer.Context,
    wallet: str = typer.Argument(..., help="Wallet address"),
    attribute_type: str = typer.Argument(..., help="region, expertise or experience"),
    label: str = typer.Argument(..., help="Attribute label"),
    weight: float = typer.Argument(..., help="Multiplier in [0.5, 3.0]"),
) -> None:
    """Add or re-weight a verified attribute."""
    with open_service(ctx) as service:
        echo_json(service.bets.add_attribute(wallet, attribute_type, label, weight))


@app.command("list")
def list_attributes(ctx: typer.Context, wallet: str = typer.Argument(..., help="Wallet address")) -> None:
    """List a wallet's attributes and resulting weight score."""
    with open_service(ctx) as service:
        attrs = service.bets.list_attributes(wallet)
        for a in attrs:
            typer.echo(f"  {a.attribute_type:<10} {a.attribute_label:<24} {a.weight:.2f}")
        typer.echo(f"Weight score: {service.bets.weight_score_for(wallet):.2f}")


@app.command("remove")
def remove(
    ctx: typer.Context,
    wallet: str = typer.Argument(..., help="Wallet address"),
    attribute_type: str = typer.Argument(..., help="region, expertise or experience"),
    label: str = typer.Argument(..., help="Attribute label"),
) -> None:
    """Remove an attribute."""
    with open_service(ctx) as service:
        service.bets.remove_attribute(wallet, attribute_type, label)
        typer.echo(f"Removed {attribute_type}/{label} from {wallet}")
