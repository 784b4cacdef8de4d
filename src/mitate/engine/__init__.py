"""Settlement engine - market lifecycle, bets, escrow tracking, payouts, offers."""

from mitate.engine.bet_book import BetBook, PlacedBet, Quote
from mitate.engine.escrow_tracker import EscrowTracker
from mitate.engine.market_ledger import CreatedMarket, MarketLedger, outcome_probabilities
from mitate.engine.offers import OfferDesk
from mitate.engine.settlement import PayoutInstruction, Resolution, SettlementEngine, compute_payouts

__all__ = [
    "BetBook",
    "CreatedMarket",
    "EscrowTracker",
    "MarketLedger",
    "OfferDesk",
    "PayoutInstruction",
    "PlacedBet",
    "Quote",
    "Resolution",
    "SettlementEngine",
    "compute_payouts",
    "outcome_probabilities",
]
