"""Durable key/value state and the ledger sync cursor."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from mitate.storage.db import now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

LAST_LEDGER_INDEX_KEY = "sync:last_ledger_index"
LAST_SYNC_TIME_KEY = "sync:last_sync_time"


def get_state(conn: DuckDBPyConnection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM system_state WHERE key = ?", [key]).fetchone()
    return row[0] if row else None


def set_state(conn: DuckDBPyConnection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO system_state (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        [key, value, now_ms()],
    )


def get_cursor(conn: DuckDBPyConnection) -> tuple[int | None, str | None]:
    """Return (last_ledger_index, last_sync_time ISO string)."""
    raw = get_state(conn, LAST_LEDGER_INDEX_KEY)
    return (int(raw) if raw is not None else None), get_state(conn, LAST_SYNC_TIME_KEY)


def set_cursor(conn: DuckDBPyConnection, ledger_index: int, synced_at: datetime | None = None) -> str:
    """Checkpoint the cursor. Returns the ISO-8601 sync time written."""
    ts = (synced_at or datetime.now(timezone.utc)).isoformat()
    set_state(conn, LAST_LEDGER_INDEX_KEY, str(ledger_index))
    set_state(conn, LAST_SYNC_TIME_KEY, ts)
    return ts
