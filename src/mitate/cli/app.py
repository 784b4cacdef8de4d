"""Root CLI app - entry point and command registration."""

from pathlib import Path

import typer

from mitate.config import get_settings
from mitate.config.settings import configure_logging

app = typer.Typer(
    name="mitate",
    help="Mitate - settlement core for weighted parimutuel prediction markets.",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Path | None = typer.Option(
        None, "--config-dir", "-C", help="Config directory (default: ./config or package config)"
    ),
    profile: str | None = typer.Option(
        None, "--profile", "-p", help="Config profile (e.g. dev) to overlay on default.toml"
    ),
    db_path: str | None = typer.Option(None, "--db", help="DuckDB file (overrides config)"),
) -> None:
    """Configure logging and store settings in context."""
    settings = get_settings(profile, config_dir)
    if db_path:
        settings.storage["db_path"] = db_path
    configure_logging(settings)
    ctx.obj = {"settings": settings, "config_dir": config_dir, "profile": profile}


# Subcommands registered from other modules
from mitate.cli import attributes, bets, markets, settle, sync  # noqa: E402

app.add_typer(markets.app, name="markets")
app.add_typer(bets.app, name="bets")
app.add_typer(settle.app, name="settle")
app.add_typer(sync.app, name="sync")
app.add_typer(attributes.app, name="attributes")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
