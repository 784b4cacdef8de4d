"""Payout persistence. One payout per (market, recipient)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mitate.models import Payout, PayoutStats, PayoutStatus
from mitate.storage.db import new_id, now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

PAYOUT_COLUMNS = ["id", "market_id", "recipient", "amount", "status", "payout_tx", "created_at", "updated_at"]

_SELECT = f"SELECT {', '.join(PAYOUT_COLUMNS)} FROM payouts"


def _to_payout(row: tuple) -> Payout:
    d = dict(zip(PAYOUT_COLUMNS, row))
    d["amount"] = int(d["amount"])
    return Payout.model_validate(d)


def insert_payout(conn: DuckDBPyConnection, market_id: str, recipient: str, amount: int) -> tuple[Payout, bool]:
    """Insert a Pending payout unless one exists for (market, recipient). Returns (payout, created)."""
    payout_id = new_id()
    ts = now_ms()
    conn.execute(
        """
        INSERT INTO payouts (id, market_id, recipient, amount, status, payout_tx, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, NULL, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        [payout_id, market_id, recipient, str(amount), PayoutStatus.PENDING.value, ts, ts],
    )
    row = conn.execute(f"{_SELECT} WHERE market_id = ? AND recipient = ?", [market_id, recipient]).fetchone()
    payout = _to_payout(row)
    return payout, payout.id == payout_id


def get_payout(conn: DuckDBPyConnection, payout_id: str) -> Payout | None:
    row = conn.execute(f"{_SELECT} WHERE id = ?", [payout_id]).fetchone()
    return _to_payout(row) if row else None


def list_payouts(
    conn: DuckDBPyConnection,
    market_id: str,
    status: PayoutStatus | str | None = None,
) -> list[Payout]:
    """Payouts for a market, largest amount first."""
    sql = f"{_SELECT} WHERE market_id = ?"
    params: list[Any] = [market_id]
    if status is not None:
        sql += " AND status = ?"
        params.append(str(status))
    payouts = [_to_payout(r) for r in conn.execute(sql, params).fetchall()]
    payouts.sort(key=lambda p: (-p.amount, p.created_at or 0, p.id))
    return payouts


def list_payouts_for_recipient(conn: DuckDBPyConnection, recipient: str) -> list[Payout]:
    rows = conn.execute(f"{_SELECT} WHERE recipient = ? ORDER BY created_at DESC, id", [recipient]).fetchall()
    return [_to_payout(r) for r in rows]


def update_payout(conn: DuckDBPyConnection, payout_id: str, status: PayoutStatus, payout_tx: str | None = None) -> None:
    if payout_tx is None:
        conn.execute(
            "UPDATE payouts SET status = ?, updated_at = ? WHERE id = ?",
            [status.value, now_ms(), payout_id],
        )
    else:
        conn.execute(
            "UPDATE payouts SET status = ?, payout_tx = ?, updated_at = ? WHERE id = ?",
            [status.value, payout_tx, now_ms(), payout_id],
        )


def payout_stats(conn: DuckDBPyConnection, market_id: str) -> PayoutStats:
    stats = PayoutStats()
    for status, amount in conn.execute(
        "SELECT status, amount FROM payouts WHERE market_id = ?", [market_id]
    ).fetchall():
        value = int(amount)
        stats.total += 1
        stats.total_amount += value
        if status == PayoutStatus.PENDING.value:
            stats.pending += 1
        elif status == PayoutStatus.SENT.value:
            stats.sent += 1
            stats.sent_amount += value
        elif status == PayoutStatus.FAILED.value:
            stats.failed += 1
    return stats
