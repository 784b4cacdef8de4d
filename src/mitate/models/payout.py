"""Payout - amount owed to a winning bettor."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class PayoutStatus(StrEnum):
    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"


class Payout(BaseModel):
    id: str
    market_id: str
    recipient: str
    amount: int = Field(..., ge=0)
    status: PayoutStatus = PayoutStatus.PENDING
    payout_tx: str | None = None
    created_at: int | None = None
    updated_at: int | None = None


class PayoutStats(BaseModel):
    total: int = 0
    pending: int = 0
    sent: int = 0
    failed: int = 0
    total_amount: int = 0
    sent_amount: int = 0
