"""Canonical schema (Pydantic) - Market, Outcome, Bet, Escrow, Payout, Trade, LedgerEvent."""

from mitate.models.bet import Bet, BetStatus
from mitate.models.escrow import Escrow, EscrowStatus
from mitate.models.ledger import AttributeType, LedgerEvent, UserAttribute
from mitate.models.market import Market, MarketStatus, MarketView, Outcome, OutcomeView
from mitate.models.payout import Payout, PayoutStats, PayoutStatus
from mitate.models.trade import Trade

__all__ = [
    "AttributeType",
    "Bet",
    "BetStatus",
    "Escrow",
    "EscrowStatus",
    "LedgerEvent",
    "Market",
    "MarketStatus",
    "MarketView",
    "Outcome",
    "OutcomeView",
    "Payout",
    "PayoutStats",
    "PayoutStatus",
    "Trade",
    "UserAttribute",
]
