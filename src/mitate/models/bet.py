"""Bet - a stake on one outcome."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class BetStatus(StrEnum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class Bet(BaseModel):
    id: str
    market_id: str
    outcome_id: str | None = None
    outcome: str | None = None  # legacy YES/NO
    bettor: str
    amount: int = Field(..., gt=0)
    weight_score: float = Field(1.0, ge=0.5, le=3.0)
    effective_amount: int = Field(..., ge=0)
    status: BetStatus = BetStatus.PENDING
    payment_tx: str | None = None
    escrow_tx: str | None = None
    mint_tx: str | None = None
    memo_json: str | None = None
    placed_at: int | None = None  # ms epoch
    updated_at: int | None = None
