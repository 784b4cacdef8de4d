"""Escrow persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mitate.models import Escrow, EscrowStatus
from mitate.storage.db import now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

ESCROW_COLUMNS = [
    "id",
    "market_id",
    "amount",
    "status",
    "sequence",
    "create_tx",
    "finish_tx",
    "cancel_tx",
    "cancel_after",
    "finish_after",
    "created_at",
    "updated_at",
]

_MUTABLE = frozenset({"amount", "status", "finish_tx", "cancel_tx"})
_SELECT = f"SELECT {', '.join(ESCROW_COLUMNS)} FROM escrows"


def _to_escrow(row: tuple) -> Escrow:
    d = dict(zip(ESCROW_COLUMNS, row))
    d["amount"] = int(d["amount"])
    return Escrow.model_validate(d)


def insert_escrow(conn: DuckDBPyConnection, escrow: Escrow) -> None:
    data = escrow.model_dump()
    ts = now_ms()
    data["created_at"] = data["created_at"] or ts
    data["updated_at"] = data["updated_at"] or data["created_at"]
    data["amount"] = str(escrow.amount)
    data["status"] = str(escrow.status)
    placeholders = ", ".join("?" for _ in ESCROW_COLUMNS)
    conn.execute(
        f"INSERT INTO escrows ({', '.join(ESCROW_COLUMNS)}) VALUES ({placeholders})",
        [data[c] for c in ESCROW_COLUMNS],
    )


def get_open_escrow(conn: DuckDBPyConnection, market_id: str) -> Escrow | None:
    row = conn.execute(
        f"{_SELECT} WHERE market_id = ? AND status = ? ORDER BY created_at DESC LIMIT 1",
        [market_id, EscrowStatus.OPEN.value],
    ).fetchone()
    return _to_escrow(row) if row else None


def list_escrows(conn: DuckDBPyConnection, market_id: str) -> list[Escrow]:
    rows = conn.execute(f"{_SELECT} WHERE market_id = ? ORDER BY created_at, id", [market_id]).fetchall()
    return [_to_escrow(r) for r in rows]


def update_escrow(conn: DuckDBPyConnection, escrow_id: str, **fields: Any) -> None:
    unknown = set(fields) - _MUTABLE
    if unknown:
        raise KeyError(f"Not a mutable escrow column: {sorted(unknown)}")
    if not fields:
        return
    params = []
    for k, v in fields.items():
        if k == "amount":
            v = str(v)
        elif isinstance(v, EscrowStatus):
            v = v.value
        params.append(v)
    assignments = ", ".join(f"{k} = ?" for k in fields)
    conn.execute(
        f"UPDATE escrows SET {assignments}, updated_at = ? WHERE id = ?",
        [*params, now_ms(), escrow_id],
    )
