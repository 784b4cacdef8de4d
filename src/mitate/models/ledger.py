"""LedgerEvent and UserAttribute."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class LedgerEvent(BaseModel):
    """Decoded MITATE transaction observed on the ledger (append-only)."""

    id: str
    tx_hash: str
    event_type: str
    market_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    ledger_index: int
    ingested_at: int  # ms epoch


class AttributeType(StrEnum):
    REGION = "region"
    EXPERTISE = "expertise"
    EXPERIENCE = "experience"


class UserAttribute(BaseModel):
    """Verified bettor attribute. weight is a multiplier contribution in [0.5, 3.0]."""

    id: str
    wallet_address: str
    attribute_type: AttributeType
    attribute_label: str
    weight: float = Field(1.0, ge=0.5, le=3.0)
    verified_at: int | None = None
    created_at: int | None = None
