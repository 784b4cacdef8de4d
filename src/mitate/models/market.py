"""Market and Outcome - lifecycle entities."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class MarketStatus(StrEnum):
    DRAFT = "Draft"
    OPEN = "Open"
    CLOSED = "Closed"
    RESOLVED = "Resolved"
    PAID = "Paid"
    CANCELED = "Canceled"
    STALLED = "Stalled"


class Outcome(BaseModel):
    """One bettable outcome with its own issued currency."""

    id: str
    market_id: str
    label: str
    currency_code: str = Field(..., min_length=40, max_length=40)
    total_amount: int = Field(0, ge=0, description="Confirmed stake in drops")
    display_order: int = 0
    created_at: int | None = None  # ms epoch


class OutcomeView(Outcome):
    """Outcome plus derived probability (integer percent)."""

    probability: int = Field(..., ge=0, le=100)


class Market(BaseModel):
    """Parimutuel market. pool_total always equals the sum of outcome totals."""

    id: str
    title: str
    description: str = ""
    category: str | None = None
    status: MarketStatus = MarketStatus.DRAFT
    outcome: str | None = None  # legacy YES/NO resolution
    resolved_outcome_id: str | None = None
    created_by: str | None = None
    betting_deadline: int  # ms epoch
    resolution_time: int | None = None  # ms epoch
    pool_total: int = Field(0, ge=0)
    issuer_address: str
    operator_address: str
    escrow_sequence: int | None = None
    escrow_create_tx: str | None = None
    escrow_finish_tx: str | None = None
    escrow_cancel_tx: str | None = None
    created_at: int | None = None
    updated_at: int | None = None


class MarketView(Market):
    outcomes: list[OutcomeView] = Field(default_factory=list)
