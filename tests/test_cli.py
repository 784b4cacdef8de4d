"""CLI smoke tests via typer's CliRunner."""

import json

import pytest
import structlog
from typer.testing import CliRunner

from mitate.cli.app import app
from mitate.storage.db import now_ms

from conftest import HOUR_MS, ISSUER, OPERATOR

runner = CliRunner()


@pytest.fixture
def cli(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "default.toml").write_text(
        f"""
[storage]
db_path = "{(tmp_path / 'cli.duckdb').as_posix()}"

[ledger]
operator_address = "{OPERATOR}"
issuer_address = "{ISSUER}"

[logging]
level = "ERROR"
"""
    )
    for name in ("MITATE_DB_PATH", "MITATE_OPERATOR_ADDRESS", "MITATE_ISSUER_ADDRESS"):
        monkeypatch.delenv(name, raising=False)

    def invoke(*args):
        return runner.invoke(app, ["-C", str(config_dir), *args])

    return invoke


def test_full_market_flow(cli):
    deadline = str(now_ms() + HOUR_MS)
    result = cli("markets", "create", "Rain tomorrow?", "--deadline", deadline, "-o", "Rain", "-o", "Dry")
    assert result.exit_code == 0, result.output
    created = json.loads(result.stdout)
    market_id = created["market"]["id"]
    rain, dry = (o["id"] for o in created["outcomes"])
    assert created["escrow_tx"]["TransactionType"] == "EscrowCreate"

    assert cli("markets", "confirm", market_id, "ESCROWHASH", "--sequence", "9").exit_code == 0

    placed = json.loads(cli("bets", "place", market_id, rain, "700", "--bettor", "rAlice").stdout)
    assert cli("bets", "confirm", placed["bet"]["id"], "PAY1").exit_code == 0
    placed = json.loads(cli("bets", "place", market_id, dry, "300", "--bettor", "rBob").stdout)
    assert cli("bets", "confirm", placed["bet"]["id"], "PAY2").exit_code == 0

    shown = json.loads(cli("markets", "show", market_id).stdout)
    assert shown["pool_total"] == 1000
    assert [o["probability"] for o in shown["outcomes"]] == [70, 30]

    assert cli("markets", "close", market_id).exit_code == 0
    resolved = json.loads(cli("settle", "resolve", market_id, rain).stdout)
    assert resolved["payouts_created"] == 1
    batch = json.loads(cli("settle", "payouts", market_id).stdout)
    assert batch[0]["tx"]["Amount"] == "1000"

    result = cli("settle", "confirm-payout", batch[0]["payout"]["id"], "PAYOUT1")
    assert result.exit_code == 0
    bets = cli("bets", "list", "--market", market_id).stdout
    assert "payout=1000" in bets
    assert "payout=0" in bets
    listed = cli("markets", "list", "--status", "Paid")
    assert market_id in listed.stdout


def test_error_exits_nonzero(cli):
    result = cli("bets", "confirm", "no-such-bet", "HASH")
    assert result.exit_code == 1
    assert "not_found" in result.output


def test_attributes_commands(cli):
    assert cli("attributes", "add", "rAlice", "region", "Kanto", "1.5").exit_code == 0
    listed = cli("attributes", "list", "rAlice")
    assert "Kanto" in listed.stdout
    assert "1.50" in listed.stdout
    assert cli("attributes", "remove", "rAlice", "region", "Kanto").exit_code == 0
    assert cli("attributes", "remove", "rAlice", "region", "Kanto").exit_code == 1


def test_sync_status_empty(cli):
    result = cli("sync", "status")
    assert result.exit_code == 0
    status = json.loads(result.stdout)
    assert status["last_ledger_index"] is None
    assert status["total_events"] == 0


def test_logging_still_writes_after_runner_streams_close(cli):
    assert cli("sync", "status").exit_code == 0
    # the runner has swapped its captured streams back out by now
    structlog.get_logger("mitate.cli.test").error("after_cli_run")
