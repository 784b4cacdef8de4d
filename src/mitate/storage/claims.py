"""Transaction-hash claims: a hash confirms at most one bet payment or payout."""

from __future__ import annotations

from typing import TYPE_CHECKING

from mitate.storage.db import now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

BET_PAYMENT = "bet_payment"
PAYOUT = "payout"


def get_claim(conn: DuckDBPyConnection, tx_hash: str) -> tuple[str, str] | None:
    """Return (kind, ref_id) the hash is bound to, or None."""
    row = conn.execute("SELECT kind, ref_id FROM tx_claims WHERE tx_hash = ?", [tx_hash]).fetchone()
    return (row[0], row[1]) if row else None


def claim_tx(conn: DuckDBPyConnection, tx_hash: str, kind: str, ref_id: str) -> bool:
    """Bind tx_hash to (kind, ref_id). False if it is already bound to something else."""
    conn.execute(
        "INSERT INTO tx_claims (tx_hash, kind, ref_id, claimed_at) VALUES (?, ?, ?, ?) ON CONFLICT DO NOTHING",
        [tx_hash, kind, ref_id, now_ms()],
    )
    return get_claim(conn, tx_hash) == (kind, ref_id)
