"""BetBook - bet placement, confirmation and bettor attributes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from mitate.engine import weights
from mitate.engine.escrow_tracker import EscrowTracker
from mitate.engine.market_ledger import MarketLedger
from mitate.errors import ConflictError, NotFoundError, ValidationError
from mitate.ledger.codec import from_hex
from mitate.ledger.tx_builder import build_bet_payment, build_mint_payment, build_trust_set
from mitate.models import AttributeType, Bet, BetStatus, Market, MarketStatus, Outcome, UserAttribute
from mitate.storage import attributes as attribute_store
from mitate.storage import bets as bet_store
from mitate.storage import claims
from mitate.storage import markets as market_store
from mitate.storage import payouts as payout_store
from mitate.storage.db import Database, new_id

log = structlog.get_logger(__name__)

# Bets paid before the deadline may confirm after the market closes.
_CONFIRMABLE_MARKET_STATUSES = (MarketStatus.OPEN, MarketStatus.CLOSED)


@dataclass
class PlacedBet:
    bet: Bet
    weight_score: float
    effective_amount: int
    trust_set_tx: dict[str, Any]
    payment_tx: dict[str, Any]


@dataclass
class Quote:
    weight_score: float
    effective_amount: int
    potential_payout: int


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"Amount must be a positive integer number of drops, got {amount!r}")


class BetBook:
    def __init__(self, db: Database, markets: MarketLedger, escrows: EscrowTracker) -> None:
        self.db = db
        self.markets = markets
        self.escrows = escrows

    def _resolve_outcome(self, market: Market, outcome_id: str) -> Outcome:
        conn = self.db.conn
        outcome = market_store.get_outcome(conn, outcome_id)
        if outcome is None and outcome_id.upper() in ("YES", "NO"):
            outcome = market_store.find_outcome_by_label(conn, market.id, outcome_id)
        if outcome is None or outcome.market_id != market.id:
            raise ValidationError(f"Outcome {outcome_id} does not belong to market {market.id}")
        return outcome

    def place_bet(
        self,
        market_id: str,
        outcome_id: str,
        amount: int,
        bettor: str,
        now_ms: int | None = None,
    ) -> PlacedBet:
        """Record a Pending bet and build the TrustSet + Payment the bettor signs."""
        _check_amount(amount)
        if not bettor:
            raise ValidationError("Bettor address is required")
        market = self.markets.get_market(market_id)
        if not self.markets.can_place_bet(market, now_ms=now_ms):
            raise ValidationError(f"Market {market_id} is not accepting bets")
        outcome = self._resolve_outcome(market, outcome_id)
        legacy = outcome_id.upper() if outcome_id.upper() in ("YES", "NO") and outcome.id != outcome_id else None

        weight = self.weight_score_for(bettor)
        effective = weights.effective_amount(amount, weight)
        trust_set_tx = build_trust_set(
            account=bettor,
            issuer=market.issuer_address,
            market_id=market.id,
            currency_code=outcome.currency_code,
            limit_value=amount,
            outcome_id=outcome.id,
        )
        payment_tx = build_bet_payment(
            account=bettor,
            destination=market.operator_address,
            amount=amount,
            market_id=market.id,
            outcome_id=outcome.id,
        )
        bet = Bet(
            id=new_id(),
            market_id=market.id,
            outcome_id=outcome.id,
            outcome=legacy,
            bettor=bettor,
            amount=amount,
            weight_score=weight,
            effective_amount=effective,
            memo_json=from_hex(payment_tx["Memos"][0]["Memo"]["MemoData"]),
            placed_at=now_ms,
        )
        bet_store.insert_bet(self.db.conn, bet)
        bet = bet_store.get_bet(self.db.conn, bet.id)
        log.info("bet_placed", bet_id=bet.id, market_id=market.id, outcome_id=outcome.id, amount=amount, weight=weight)
        return PlacedBet(
            bet=bet,
            weight_score=weight,
            effective_amount=effective,
            trust_set_tx=trust_set_tx,
            payment_tx=payment_tx,
        )

    def confirm_bet(self, bet_id: str, payment_tx_hash: str) -> Bet:
        """Bind the payment hash and credit the pool. Repeat calls with the same hash are no-ops."""
        if not payment_tx_hash:
            raise ValidationError("Payment transaction hash is required")

        def apply(conn) -> Bet:
            bet = bet_store.get_bet(conn, bet_id)
            if bet is None:
                raise NotFoundError(f"Bet not found: {bet_id}")
            if bet.status == BetStatus.CONFIRMED and bet.payment_tx == payment_tx_hash:
                return bet
            if bet.status != BetStatus.PENDING:
                raise ConflictError(f"Bet {bet_id} is {bet.status}, expected Pending")
            market = market_store.get_market(conn, bet.market_id)
            if market is None or market.status not in _CONFIRMABLE_MARKET_STATUSES:
                raise ConflictError(f"Market {bet.market_id} no longer accepts confirmations")
            if not claims.claim_tx(conn, payment_tx_hash, claims.BET_PAYMENT, bet_id):
                raise ConflictError(f"Transaction {payment_tx_hash} is already bound to another record")

            outcome = market_store.get_outcome(conn, bet.outcome_id)
            market_store.set_outcome_total(conn, outcome.id, outcome.total_amount + bet.amount)
            market_store.update_market(conn, market.id, pool_total=market.pool_total + bet.amount)
            escrow = self.escrows.add(market.id, bet.amount)
            bet_store.update_bet(
                conn,
                bet_id,
                status=BetStatus.CONFIRMED,
                payment_tx=payment_tx_hash,
                escrow_tx=escrow.create_tx,
            )
            return bet_store.get_bet(conn, bet_id)

        bet = self.db.run_transaction(apply)
        log.info("bet_confirmed", bet_id=bet_id, market_id=bet.market_id, payment_tx=payment_tx_hash)
        return bet

    def preview_payout(self, market_id: str, outcome_id: str, amount: int) -> int:
        """Payout if this stake won now: floor(newPool * amount / newOutcomeTotal)."""
        _check_amount(amount)
        market = self.markets.get_market(market_id)
        outcome = self._resolve_outcome(market, outcome_id)
        new_total = market.pool_total + amount
        new_outcome_total = outcome.total_amount + amount
        if new_outcome_total == 0:
            return new_total
        return new_total * amount // new_outcome_total

    def quote(self, market_id: str, outcome_id: str, amount: int, bettor: str | None = None) -> Quote:
        weight = self.weight_score_for(bettor) if bettor else weights.NEUTRAL_WEIGHT
        return Quote(
            weight_score=weight,
            effective_amount=weights.effective_amount(amount, weight),
            potential_payout=self.preview_payout(market_id, outcome_id, amount),
        )

    def actual_payout(self, bet_id: str) -> int:
        """What this bet receives after resolution. 0 for losing bets and unresolved markets.

        A bettor gets one payout per market; each winning bet takes its stake's
        share of it, so a resolution fee is reflected here too.
        """
        bet = self.get_bet(bet_id)
        market = self.markets.get_market(bet.market_id)
        if market.status not in (MarketStatus.RESOLVED, MarketStatus.PAID) or bet.status != BetStatus.CONFIRMED:
            return 0
        if bet.outcome_id != market.resolved_outcome_id:
            return 0
        conn = self.db.conn
        outcome = market_store.get_outcome(conn, market.resolved_outcome_id)
        stake = bet_store.winning_stakes(conn, market.id, outcome.id, legacy_label=outcome.label).get(bet.bettor, 0)
        payout = next((p for p in payout_store.list_payouts(conn, market.id) if p.recipient == bet.bettor), None)
        if payout is None or stake <= 0:
            return 0
        return payout.amount * bet.amount // stake

    # --- token mint ---

    def build_mint_tx(self, bet_id: str) -> dict[str, Any]:
        """Issuer -> bettor outcome tokens for a confirmed bet, valued at the raw stake."""
        bet = self.get_bet(bet_id)
        if bet.status != BetStatus.CONFIRMED:
            raise ConflictError(f"Bet {bet_id} is {bet.status}, expected Confirmed")
        if bet.mint_tx:
            raise ConflictError(f"Bet {bet_id} already minted in {bet.mint_tx}")
        market = self.markets.get_market(bet.market_id)
        outcome = market_store.get_outcome(self.db.conn, bet.outcome_id)
        return build_mint_payment(
            issuer=market.issuer_address,
            destination=bet.bettor,
            market_id=market.id,
            currency_code=outcome.currency_code,
            token_value=bet.amount,
            outcome_id=outcome.id,
        )

    def mark_minted(self, bet_id: str, mint_tx_hash: str) -> Bet:
        with self.db.transaction() as conn:
            bet = self._require(conn, bet_id)
            if bet.mint_tx == mint_tx_hash:
                return bet
            if bet.status != BetStatus.CONFIRMED or bet.mint_tx:
                raise ConflictError(f"Bet {bet_id} cannot be marked minted")
            bet_store.update_bet(conn, bet_id, mint_tx=mint_tx_hash)
            return bet_store.get_bet(conn, bet_id)

    # --- terminal states ---

    def mark_failed(self, bet_id: str) -> Bet:
        with self.db.transaction() as conn:
            bet = self._require(conn, bet_id)
            if bet.status != BetStatus.PENDING:
                raise ConflictError(f"Bet {bet_id} is {bet.status}, expected Pending")
            bet_store.update_bet(conn, bet_id, status=BetStatus.FAILED)
            return bet_store.get_bet(conn, bet_id)

    def mark_refunded(self, bet_id: str) -> Bet:
        with self.db.transaction() as conn:
            bet = self._require(conn, bet_id)
            if bet.status != BetStatus.CONFIRMED:
                raise ConflictError(f"Bet {bet_id} is {bet.status}, expected Confirmed")
            market = market_store.get_market(conn, bet.market_id)
            if market.status != MarketStatus.CANCELED:
                raise ConflictError(f"Refunds require a Canceled market; {market.id} is {market.status}")
            bet_store.update_bet(conn, bet_id, status=BetStatus.REFUNDED)
            return bet_store.get_bet(conn, bet_id)

    # --- queries ---

    def _require(self, conn, bet_id: str) -> Bet:
        bet = bet_store.get_bet(conn, bet_id)
        if bet is None:
            raise NotFoundError(f"Bet not found: {bet_id}")
        return bet

    def get_bet(self, bet_id: str) -> Bet:
        return self._require(self.db.conn, bet_id)

    def list_bets(self, market_id: str, status: BetStatus | str | None = None) -> list[Bet]:
        return bet_store.list_bets(self.db.conn, market_id, status=status)

    def list_bets_for_bettor(self, bettor: str) -> list[Bet]:
        return bet_store.list_bets_for_bettor(self.db.conn, bettor)

    # --- attributes ---

    def add_attribute(
        self,
        wallet_address: str,
        attribute_type: AttributeType | str,
        attribute_label: str,
        weight: float,
        verified_at: int | None = None,
    ) -> UserAttribute:
        kind = _attribute_type(attribute_type)
        if not weights.MIN_WEIGHT <= weight <= weights.MAX_WEIGHT:
            raise ValidationError(f"Weight must be in [{weights.MIN_WEIGHT}, {weights.MAX_WEIGHT}], got {weight}")
        if not attribute_label:
            raise ValidationError("Attribute label is required")
        attr = attribute_store.upsert_attribute(
            self.db.conn, wallet_address, kind, attribute_label, weight, verified_at
        )
        log.info("attribute_set", wallet=wallet_address, type=str(kind), label=attribute_label, weight=weight)
        return attr

    def list_attributes(self, wallet_address: str) -> list[UserAttribute]:
        return attribute_store.list_attributes(self.db.conn, wallet_address)

    def remove_attribute(self, wallet_address: str, attribute_type: AttributeType | str, attribute_label: str) -> None:
        kind = _attribute_type(attribute_type)
        if not attribute_store.delete_attribute(self.db.conn, wallet_address, kind, attribute_label):
            raise NotFoundError(f"Attribute not found: {wallet_address} {kind}/{attribute_label}")

    def weight_score_for(self, wallet_address: str) -> float:
        return weights.score(self.list_attributes(wallet_address))


def _attribute_type(value: AttributeType | str) -> AttributeType:
    try:
        return AttributeType(value)
    except ValueError:
        raise ValidationError(f"Unknown attribute type: {value}") from None
