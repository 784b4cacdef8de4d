"""Ledger event log - append-only, one row per transaction hash."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from mitate.models import LedgerEvent
from mitate.storage.db import new_id, now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

EVENT_COLUMNS = ["id", "tx_hash", "event_type", "market_id", "payload", "ledger_index", "ingested_at"]

_SELECT = f"SELECT {', '.join(EVENT_COLUMNS)} FROM ledger_events"


def _to_event(row: tuple) -> LedgerEvent:
    d = dict(zip(EVENT_COLUMNS, row))
    payload = d["payload"]
    d["payload"] = json.loads(payload) if isinstance(payload, str) else (payload or {})
    return LedgerEvent.model_validate(d)


def insert_event(
    conn: DuckDBPyConnection,
    tx_hash: str,
    event_type: str,
    market_id: str | None,
    payload: dict[str, Any],
    ledger_index: int,
) -> bool:
    """Append an event. Returns False (and writes nothing) when tx_hash is already known."""
    event_id = new_id()
    conn.execute(
        """
        INSERT INTO ledger_events (id, tx_hash, event_type, market_id, payload, ledger_index, ingested_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        [event_id, tx_hash, event_type, market_id, json.dumps(payload), ledger_index, now_ms()],
    )
    row = conn.execute("SELECT id FROM ledger_events WHERE tx_hash = ?", [tx_hash]).fetchone()
    return row is not None and row[0] == event_id


def get_event_by_hash(conn: DuckDBPyConnection, tx_hash: str) -> LedgerEvent | None:
    row = conn.execute(f"{_SELECT} WHERE tx_hash = ?", [tx_hash]).fetchone()
    return _to_event(row) if row else None


def list_events(
    conn: DuckDBPyConnection,
    market_id: str | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    """Most recent events first, optionally filtered."""
    where: list[str] = []
    params: list[Any] = []
    if market_id is not None:
        where.append("market_id = ?")
        params.append(market_id)
    if event_type is not None:
        where.append("event_type = ?")
        params.append(event_type)
    sql = _SELECT
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY ledger_index DESC, ingested_at DESC LIMIT ?"
    params.append(limit)
    return [_to_event(r) for r in conn.execute(sql, params).fetchall()]


def event_stats(conn: DuckDBPyConnection) -> dict[str, Any]:
    """Total count, ledger index range, and counts by event type."""
    total = conn.execute("SELECT COUNT(*) FROM ledger_events").fetchone()[0]
    range_row = conn.execute("SELECT MIN(ledger_index), MAX(ledger_index) FROM ledger_events").fetchone()
    by_type = conn.execute(
        "SELECT event_type, COUNT(*) AS cnt FROM ledger_events GROUP BY event_type ORDER BY cnt DESC"
    ).fetchall()
    return {
        "total_events": total,
        "min_ledger_index": range_row[0],
        "max_ledger_index": range_row[1],
        "by_type": [{"event_type": r[0], "count": r[1]} for r in by_type],
    }
