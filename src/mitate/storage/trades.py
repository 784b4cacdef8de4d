"""Trade persistence (append-only, idempotent on offer_tx)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mitate.models import Trade
from mitate.storage.db import new_id

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

TRADE_COLUMNS = ["id", "market_id", "offer_tx", "taker_gets", "taker_pays", "ledger_index", "executed_at", "memo_json"]

_SELECT = f"SELECT {', '.join(TRADE_COLUMNS)} FROM trades"


def _to_trade(row: tuple) -> Trade:
    return Trade.model_validate(dict(zip(TRADE_COLUMNS, row)))


def insert_trade(
    conn: DuckDBPyConnection,
    market_id: str,
    offer_tx: str,
    taker_gets: str,
    taker_pays: str,
    ledger_index: int,
    executed_at: int,
    memo_json: str | None = None,
) -> tuple[Trade, bool]:
    """Record a fill. A repeated offer_tx returns the stored trade with created=False."""
    trade_id = new_id()
    conn.execute(
        f"""
        INSERT INTO trades ({', '.join(TRADE_COLUMNS)})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        [trade_id, market_id, offer_tx, taker_gets, taker_pays, ledger_index, executed_at, memo_json],
    )
    row = conn.execute(f"{_SELECT} WHERE offer_tx = ?", [offer_tx]).fetchone()
    trade = _to_trade(row)
    return trade, trade.id == trade_id


def list_trades(conn: DuckDBPyConnection, market_id: str, before: int | None = None) -> list[Trade]:
    """Trades for a market in execution order; before (ms) keeps only earlier fills."""
    sql = f"{_SELECT} WHERE market_id = ?"
    params: list[Any] = [market_id]
    if before is not None:
        sql += " AND executed_at < ?"
        params.append(before)
    sql += " ORDER BY executed_at, ledger_index, id"
    return [_to_trade(r) for r in conn.execute(sql, params).fetchall()]


def trade_stats(conn: DuckDBPyConnection, market_id: str) -> dict[str, Any]:
    """Trade count, time range, and drop volume (the XRP side of each fill)."""
    rows = conn.execute(
        "SELECT taker_gets, taker_pays, executed_at FROM trades WHERE market_id = ?", [market_id]
    ).fetchall()
    volume = 0
    for gets, pays, _ in rows:
        for side in (gets, pays):
            if side.isdigit():
                volume += int(side)
                break
    times = [r[2] for r in rows]
    return {
        "market_id": market_id,
        "total_trades": len(rows),
        "volume_drops": volume,
        "first_executed_at": min(times) if times else None,
        "last_executed_at": max(times) if times else None,
    }
