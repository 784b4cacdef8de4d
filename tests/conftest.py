"""Shared fixtures: temporary DuckDB file, settings, wired service."""

import tempfile
from pathlib import Path

import pytest

from mitate.config import Settings
from mitate.service import SettlementService
from mitate.storage.db import Database, now_ms

OPERATOR = "rOperatorXXXXXXXXXXXXXXXXXXXXXXXXX"
ISSUER = "rIssuerXXXXXXXXXXXXXXXXXXXXXXXXXXX"
HOUR_MS = 3_600_000


@pytest.fixture
def temp_db_path():
    tmp = tempfile.mkdtemp()
    path = Path(tmp) / "test.duckdb"
    yield path
    for p in Path(tmp).iterdir():
        p.unlink()
    Path(tmp).rmdir()


@pytest.fixture
def temp_db(temp_db_path):
    db = Database(temp_db_path).open()
    yield db
    db.close()


@pytest.fixture
def settings(temp_db_path):
    return Settings(
        storage={"db_path": str(temp_db_path)},
        ledger={"operator_address": OPERATOR, "issuer_address": ISSUER},
        sync={"checkpoint_every": 2, "backfill_retries": 1},
    )


@pytest.fixture
def service(settings, temp_db):
    return SettlementService(settings, db=temp_db)


def open_market(service, outcomes=None, deadline=None, seq=7):
    """Create and confirm a market; returns (market, outcomes)."""
    created = service.markets.create_market(
        "Will it rain?",
        "Tokyo, tomorrow",
        deadline or now_ms() + HOUR_MS,
        outcomes=outcomes,
    )
    market = service.markets.confirm_creation(created.market.id, "ESCROW" + created.market.id[:8], seq)
    return market, created.outcomes


def confirmed_bet(service, market_id, outcome_id, amount, bettor, tx_hash):
    placed = service.bets.place_bet(market_id, outcome_id, amount, bettor)
    return service.bets.confirm_bet(placed.bet.id, tx_hash)
