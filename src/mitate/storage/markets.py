"""Market and outcome persistence. Money columns hold decimal strings."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mitate.models import Market, MarketStatus, Outcome
from mitate.storage.db import now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

MARKET_COLUMNS = [
    "id",
    "title",
    "description",
    "category",
    "status",
    "outcome",
    "resolved_outcome_id",
    "created_by",
    "betting_deadline",
    "resolution_time",
    "pool_total",
    "issuer_address",
    "operator_address",
    "escrow_sequence",
    "escrow_create_tx",
    "escrow_finish_tx",
    "escrow_cancel_tx",
    "created_at",
    "updated_at",
]

OUTCOME_COLUMNS = ["id", "market_id", "label", "currency_code", "total_amount", "display_order", "created_at"]

# Columns update_market may touch; id and created_at never change.
_MUTABLE_MARKET_COLUMNS = frozenset(MARKET_COLUMNS) - {"id", "created_at", "updated_at"}

_SELECT_MARKET = f"SELECT {', '.join(MARKET_COLUMNS)} FROM markets"
_SELECT_OUTCOME = f"SELECT {', '.join(OUTCOME_COLUMNS)} FROM outcomes"


def _to_market(row: tuple) -> Market:
    d = dict(zip(MARKET_COLUMNS, row))
    d["pool_total"] = int(d["pool_total"])
    return Market.model_validate(d)


def _to_outcome(row: tuple) -> Outcome:
    d = dict(zip(OUTCOME_COLUMNS, row))
    d["total_amount"] = int(d["total_amount"])
    return Outcome.model_validate(d)


def _db_value(key: str, value: Any) -> Any:
    if key == "pool_total" and value is not None:
        return str(value)
    if isinstance(value, MarketStatus):
        return value.value
    return value


def insert_market(conn: DuckDBPyConnection, market: Market) -> None:
    data = market.model_dump()
    ts = now_ms()
    data["created_at"] = data["created_at"] or ts
    data["updated_at"] = data["updated_at"] or data["created_at"]
    placeholders = ", ".join("?" for _ in MARKET_COLUMNS)
    conn.execute(
        f"INSERT INTO markets ({', '.join(MARKET_COLUMNS)}) VALUES ({placeholders})",
        [_db_value(c, data[c]) for c in MARKET_COLUMNS],
    )


def get_market(conn: DuckDBPyConnection, market_id: str) -> Market | None:
    row = conn.execute(f"{_SELECT_MARKET} WHERE id = ?", [market_id]).fetchone()
    return _to_market(row) if row else None


def list_markets(
    conn: DuckDBPyConnection,
    status: MarketStatus | str | None = None,
    category: str | None = None,
) -> list[Market]:
    """List markets, newest first, optionally filtered by status and category."""
    where: list[str] = []
    params: list[Any] = []
    if status is not None:
        where.append("status = ?")
        params.append(str(status))
    if category is not None:
        where.append("category = ?")
        params.append(category)
    sql = _SELECT_MARKET
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY created_at DESC, id"
    return [_to_market(r) for r in conn.execute(sql, params).fetchall()]


def list_expired_open(conn: DuckDBPyConnection, now: int) -> list[Market]:
    """Open markets whose betting deadline is at or before now (ms)."""
    rows = conn.execute(
        f"{_SELECT_MARKET} WHERE status = ? AND betting_deadline <= ? ORDER BY betting_deadline",
        [MarketStatus.OPEN.value, now],
    ).fetchall()
    return [_to_market(r) for r in rows]


def update_market(conn: DuckDBPyConnection, market_id: str, **fields: Any) -> None:
    """Set the given columns and bump updated_at."""
    unknown = set(fields) - _MUTABLE_MARKET_COLUMNS
    if unknown:
        raise KeyError(f"Not a mutable market column: {sorted(unknown)}")
    if not fields:
        return
    assignments = ", ".join(f"{k} = ?" for k in fields)
    params = [_db_value(k, v) for k, v in fields.items()]
    conn.execute(
        f"UPDATE markets SET {assignments}, updated_at = ? WHERE id = ?",
        [*params, now_ms(), market_id],
    )


def insert_outcomes(conn: DuckDBPyConnection, outcomes: list[Outcome]) -> None:
    if not outcomes:
        return
    ts = now_ms()
    conn.executemany(
        f"INSERT INTO outcomes ({', '.join(OUTCOME_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?, ?)",
        [
            [o.id, o.market_id, o.label, o.currency_code, str(o.total_amount), o.display_order, o.created_at or ts]
            for o in outcomes
        ],
    )


def list_outcomes(conn: DuckDBPyConnection, market_id: str) -> list[Outcome]:
    rows = conn.execute(
        f"{_SELECT_OUTCOME} WHERE market_id = ? ORDER BY display_order", [market_id]
    ).fetchall()
    return [_to_outcome(r) for r in rows]


def get_outcome(conn: DuckDBPyConnection, outcome_id: str) -> Outcome | None:
    row = conn.execute(f"{_SELECT_OUTCOME} WHERE id = ?", [outcome_id]).fetchone()
    return _to_outcome(row) if row else None


def find_outcome_by_label(conn: DuckDBPyConnection, market_id: str, label: str) -> Outcome | None:
    """Case-insensitive label lookup, used for legacy YES/NO bets."""
    row = conn.execute(
        f"{_SELECT_OUTCOME} WHERE market_id = ? AND upper(label) = upper(?) ORDER BY display_order LIMIT 1",
        [market_id, label],
    ).fetchone()
    return _to_outcome(row) if row else None


def set_outcome_total(conn: DuckDBPyConnection, outcome_id: str, total: int) -> None:
    conn.execute("UPDATE outcomes SET total_amount = ? WHERE id = ?", [str(total), outcome_id])
