"""Escrow - on-ledger lock backing a market pool."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class EscrowStatus(StrEnum):
    OPEN = "Open"
    FINISHED = "Finished"
    CANCELED = "Canceled"


class Escrow(BaseModel):
    id: str
    market_id: str
    amount: int = Field(..., ge=0)
    status: EscrowStatus = EscrowStatus.OPEN
    sequence: int
    create_tx: str
    finish_tx: str | None = None
    cancel_tx: str | None = None
    cancel_after: int  # ledger epoch seconds
    finish_after: int | None = None  # ledger epoch seconds
    created_at: int | None = None
    updated_at: int | None = None
