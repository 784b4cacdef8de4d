"""Bet persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mitate.models import Bet, BetStatus
from mitate.storage.db import now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

BET_COLUMNS = [
    "id",
    "market_id",
    "outcome_id",
    "outcome",
    "bettor",
    "amount",
    "weight_score",
    "effective_amount",
    "status",
    "payment_tx",
    "escrow_tx",
    "mint_tx",
    "memo_json",
    "placed_at",
    "updated_at",
]

_MONEY = ("amount", "effective_amount")
_MUTABLE = frozenset({"status", "payment_tx", "escrow_tx", "mint_tx", "memo_json"})
_SELECT = f"SELECT {', '.join(BET_COLUMNS)} FROM bets"


def _to_bet(row: tuple) -> Bet:
    d = dict(zip(BET_COLUMNS, row))
    for k in _MONEY:
        d[k] = int(d[k])
    return Bet.model_validate(d)


def insert_bet(conn: DuckDBPyConnection, bet: Bet) -> None:
    data = bet.model_dump()
    ts = now_ms()
    data["placed_at"] = data["placed_at"] or ts
    data["updated_at"] = data["updated_at"] or data["placed_at"]
    for k in _MONEY:
        data[k] = str(data[k])
    data["status"] = str(bet.status)
    placeholders = ", ".join("?" for _ in BET_COLUMNS)
    conn.execute(
        f"INSERT INTO bets ({', '.join(BET_COLUMNS)}) VALUES ({placeholders})",
        [data[c] for c in BET_COLUMNS],
    )


def get_bet(conn: DuckDBPyConnection, bet_id: str) -> Bet | None:
    row = conn.execute(f"{_SELECT} WHERE id = ?", [bet_id]).fetchone()
    return _to_bet(row) if row else None


def list_bets(
    conn: DuckDBPyConnection,
    market_id: str,
    status: BetStatus | str | None = None,
) -> list[Bet]:
    sql = f"{_SELECT} WHERE market_id = ?"
    params: list[Any] = [market_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(str(status))
    sql += " ORDER BY placed_at, id"
    return [_to_bet(r) for r in conn.execute(sql, params).fetchall()]


def list_bets_for_bettor(conn: DuckDBPyConnection, bettor: str) -> list[Bet]:
    rows = conn.execute(f"{_SELECT} WHERE bettor = ? ORDER BY placed_at DESC, id", [bettor]).fetchall()
    return [_to_bet(r) for r in rows]


def update_bet(conn: DuckDBPyConnection, bet_id: str, **fields: Any) -> None:
    unknown = set(fields) - _MUTABLE
    if unknown:
        raise KeyError(f"Not a mutable bet column: {sorted(unknown)}")
    if not fields:
        return
    assignments = ", ".join(f"{k} = ?" for k in fields)
    params = [str(v) if isinstance(v, BetStatus) else v for v in fields.values()]
    conn.execute(
        f"UPDATE bets SET {assignments}, updated_at = ? WHERE id = ?",
        [*params, now_ms(), bet_id],
    )


def winning_stakes(conn: DuckDBPyConnection, market_id: str, outcome_id: str, legacy_label: str | None = None) -> dict[str, int]:
    """Sum of confirmed raw stakes per bettor on the winning outcome.

    Legacy bets carry only a YES/NO label; they count when legacy_label matches.
    """
    sql = "SELECT bettor, amount FROM bets WHERE market_id = ? AND status = ? AND (outcome_id = ?"
    params: list[Any] = [market_id, BetStatus.CONFIRMED.value, outcome_id]
    if legacy_label is not None:
        sql += " OR (outcome_id IS NULL AND upper(outcome) = upper(?))"
        params.append(legacy_label)
    sql += ") ORDER BY placed_at, id"
    stakes: dict[str, int] = {}
    for bettor, amount in conn.execute(sql, params).fetchall():
        stakes[bettor] = stakes.get(bettor, 0) + int(amount)
    return stakes
