"""Verified bettor attributes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from mitate.models import AttributeType, UserAttribute
from mitate.storage.db import new_id, now_ms

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

ATTRIBUTE_COLUMNS = ["id", "wallet_address", "attribute_type", "attribute_label", "weight", "verified_at", "created_at"]


def upsert_attribute(
    conn: DuckDBPyConnection,
    wallet_address: str,
    attribute_type: AttributeType,
    attribute_label: str,
    weight: float,
    verified_at: int | None = None,
) -> UserAttribute:
    """Insert or re-weight the (wallet, type, label) attribute."""
    ts = now_ms()
    conn.execute(
        """
        INSERT INTO user_attributes (id, wallet_address, attribute_type, attribute_label, weight, verified_at, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (wallet_address, attribute_type, attribute_label) DO UPDATE SET
            weight = excluded.weight,
            verified_at = excluded.verified_at
        """,
        [new_id(), wallet_address, attribute_type.value, attribute_label, weight, verified_at, ts],
    )
    row = conn.execute(
        f"""
        SELECT {', '.join(ATTRIBUTE_COLUMNS)} FROM user_attributes
        WHERE wallet_address = ? AND attribute_type = ? AND attribute_label = ?
        """,
        [wallet_address, attribute_type.value, attribute_label],
    ).fetchone()
    return UserAttribute.model_validate(dict(zip(ATTRIBUTE_COLUMNS, row)))


def list_attributes(conn: DuckDBPyConnection, wallet_address: str) -> list[UserAttribute]:
    rows = conn.execute(
        f"""
        SELECT {', '.join(ATTRIBUTE_COLUMNS)} FROM user_attributes
        WHERE wallet_address = ? ORDER BY attribute_type, attribute_label
        """,
        [wallet_address],
    ).fetchall()
    return [UserAttribute.model_validate(dict(zip(ATTRIBUTE_COLUMNS, r))) for r in rows]


def delete_attribute(
    conn: DuckDBPyConnection,
    wallet_address: str,
    attribute_type: AttributeType,
    attribute_label: str,
) -> bool:
    params = [wallet_address, attribute_type.value, attribute_label]
    where = "wallet_address = ? AND attribute_type = ? AND attribute_label = ?"
    exists = conn.execute(f"SELECT COUNT(*) FROM user_attributes WHERE {where}", params).fetchone()[0]
    if not exists:
        return False
    conn.execute(f"DELETE FROM user_attributes WHERE {where}", params)
    return True
