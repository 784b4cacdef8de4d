"""SettlementEngine - resolution, parimutuel payouts and payout execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from mitate.engine.escrow_tracker import EscrowTracker
from mitate.engine.market_ledger import MarketLedger, ensure_transition
from mitate.errors import ConflictError, NotFoundError, ValidationError
from mitate.ledger.tx_builder import build_escrow_cancel, build_escrow_finish, build_payout_payment
from mitate.models import Market, MarketStatus, Payout, PayoutStats, PayoutStatus
from mitate.storage import bets as bet_store
from mitate.storage import claims
from mitate.storage import markets as market_store
from mitate.storage import payouts as payout_store
from mitate.storage.db import Database

log = structlog.get_logger(__name__)

FINISH = "finish"
CANCEL = "cancel"


def compute_payouts(total_pool: int, winning_total: int, stakes: dict[str, int]) -> dict[str, int]:
    """Per recipient floor(total_pool * stake / winning_total). Empty when nobody backed the winner."""
    if winning_total <= 0:
        return {}
    return {recipient: total_pool * stake // winning_total for recipient, stake in stakes.items() if stake > 0}


@dataclass
class Resolution:
    market: Market
    escrow_tx: dict[str, Any]
    payouts_created: int


@dataclass
class PayoutInstruction:
    payout: Payout
    tx: dict[str, Any]


class SettlementEngine:
    def __init__(self, db: Database, markets: MarketLedger, escrows: EscrowTracker) -> None:
        self.db = db
        self.markets = markets
        self.escrows = escrows

    def resolve(self, market_id: str, winning_outcome_id: str, fee: int = 0) -> Resolution:
        """Closed -> Resolved. Creates one Pending payout per winning bettor."""
        market = self.markets.get_market(market_id)
        if market.status != MarketStatus.CLOSED:
            raise ConflictError(f"Market {market_id} is {market.status}, expected Closed")
        if isinstance(fee, bool) or not isinstance(fee, int) or not 0 <= fee <= market.pool_total:
            raise ValidationError(f"Fee must be an integer between 0 and the pool total, got {fee!r}")
        outcome = market_store.get_outcome(self.db.conn, winning_outcome_id)
        if outcome is None or outcome.market_id != market_id:
            raise ValidationError(f"Outcome {winning_outcome_id} does not belong to market {market_id}")
        escrow = self.escrows.get_open(market_id)
        if escrow is None:
            raise NotFoundError(f"No open escrow for market {market_id}")

        def apply(conn) -> tuple[Market, int]:
            current = market_store.get_market(conn, market_id)
            ensure_transition(current.status, MarketStatus.RESOLVED)
            stakes = bet_store.winning_stakes(conn, market_id, outcome.id, legacy_label=outcome.label)
            winning_total = market_store.get_outcome(conn, outcome.id).total_amount
            amounts = compute_payouts(current.pool_total - fee, winning_total, stakes)
            created = 0
            for recipient, amount in amounts.items():
                if amount <= 0:
                    continue
                _, is_new = payout_store.insert_payout(conn, market_id, recipient, amount)
                created += int(is_new)
            legacy = outcome.label.upper() if outcome.label.upper() in ("YES", "NO") else None
            market_store.update_market(
                conn,
                market_id,
                status=MarketStatus.RESOLVED,
                resolved_outcome_id=outcome.id,
                outcome=legacy,
            )
            return market_store.get_market(conn, market_id), created

        resolved, created = self.db.run_transaction(apply)
        escrow_tx = build_escrow_finish(
            account=market.operator_address,
            offer_sequence=escrow.sequence,
            market_id=market_id,
            outcome_id=outcome.id,
        )
        log.info(
            "market_resolved",
            market_id=market_id,
            outcome_id=outcome.id,
            pool_total=market.pool_total,
            fee=fee,
            payouts=created,
        )
        return Resolution(market=resolved, escrow_tx=escrow_tx, payouts_created=created)

    def cancel(self, market_id: str) -> Resolution:
        """Closed -> Canceled. The escrow returns to the operator; no payouts."""
        market = self.markets.get_market(market_id)
        if market.status != MarketStatus.CLOSED:
            raise ConflictError(f"Market {market_id} is {market.status}, expected Closed")
        escrow = self.escrows.get_open(market_id)
        if escrow is None:
            raise NotFoundError(f"No open escrow for market {market_id}")
        canceled = self.markets.transition(market_id, MarketStatus.CANCELED)
        escrow_tx = build_escrow_cancel(
            account=market.operator_address,
            offer_sequence=escrow.sequence,
            market_id=market_id,
        )
        log.info("market_canceled", market_id=market_id)
        return Resolution(market=canceled, escrow_tx=escrow_tx, payouts_created=0)

    def confirm_resolution(self, market_id: str, escrow_tx_hash: str, action: str = FINISH) -> Market:
        """Record the signed EscrowFinish / EscrowCancel hash."""
        if action not in (FINISH, CANCEL):
            raise ValidationError(f"action must be '{FINISH}' or '{CANCEL}', got {action!r}")
        if not escrow_tx_hash:
            raise ValidationError("Escrow transaction hash is required")
        with self.db.transaction() as conn:
            market = market_store.get_market(conn, market_id)
            if market is None:
                raise NotFoundError(f"Market not found: {market_id}")
            if action == FINISH:
                if market.status not in (MarketStatus.RESOLVED, MarketStatus.PAID):
                    raise ConflictError(f"Market {market_id} is {market.status}; finish needs Resolved")
                if market.escrow_finish_tx == escrow_tx_hash:
                    return market
                if market.escrow_finish_tx:
                    raise ConflictError(f"Market {market_id} escrow already finished in {market.escrow_finish_tx}")
                self.escrows.mark_finished(market_id, escrow_tx_hash)
                market_store.update_market(conn, market_id, escrow_finish_tx=escrow_tx_hash)
            else:
                if market.status != MarketStatus.CANCELED:
                    raise ConflictError(f"Market {market_id} is {market.status}; cancel needs Canceled")
                if market.escrow_cancel_tx == escrow_tx_hash:
                    return market
                if market.escrow_cancel_tx:
                    raise ConflictError(f"Market {market_id} escrow already canceled in {market.escrow_cancel_tx}")
                self.escrows.mark_canceled(market_id, escrow_tx_hash)
                market_store.update_market(conn, market_id, escrow_cancel_tx=escrow_tx_hash)
            updated = market_store.get_market(conn, market_id)
        log.info("resolution_confirmed", market_id=market_id, action=action, tx_hash=escrow_tx_hash)
        return updated

    # --- payouts ---

    def execute_payouts(self, market_id: str, batch_size: int = 50) -> list[PayoutInstruction]:
        """Payment payloads for up to batch_size Pending payouts, largest first. Nothing is marked Sent."""
        market = self.markets.get_market(market_id)
        if market.status != MarketStatus.RESOLVED:
            raise ConflictError(f"Market {market_id} is {market.status}, expected Resolved")
        if batch_size <= 0:
            raise ValidationError("batch_size must be positive")
        pending = payout_store.list_payouts(self.db.conn, market_id, status=PayoutStatus.PENDING)[:batch_size]
        instructions = [
            PayoutInstruction(
                payout=p,
                tx=build_payout_payment(
                    account=market.operator_address,
                    destination=p.recipient,
                    amount=p.amount,
                    market_id=market_id,
                    outcome_id=market.resolved_outcome_id,
                ),
            )
            for p in pending
        ]
        log.info("payouts_prepared", market_id=market_id, count=len(instructions))
        return instructions

    def confirm_payout(self, payout_id: str, tx_hash: str) -> Payout:
        """Pending/Failed -> Sent, binding tx_hash. Repeating the same call is a no-op."""
        if not tx_hash:
            raise ValidationError("Payout transaction hash is required")

        def apply(conn) -> Payout:
            payout = payout_store.get_payout(conn, payout_id)
            if payout is None:
                raise NotFoundError(f"Payout not found: {payout_id}")
            if payout.status == PayoutStatus.SENT:
                if payout.payout_tx == tx_hash:
                    return payout
                raise ConflictError(f"Payout {payout_id} already sent in {payout.payout_tx}")
            if not claims.claim_tx(conn, tx_hash, claims.PAYOUT, payout_id):
                raise ConflictError(f"Transaction {tx_hash} is already bound to another record")
            payout_store.update_payout(conn, payout_id, PayoutStatus.SENT, payout_tx=tx_hash)
            return payout_store.get_payout(conn, payout_id)

        payout = self.db.run_transaction(apply)
        log.info("payout_confirmed", payout_id=payout_id, market_id=payout.market_id, tx_hash=tx_hash)
        return payout

    def mark_payout_failed(self, payout_id: str) -> Payout:
        with self.db.transaction() as conn:
            payout = payout_store.get_payout(conn, payout_id)
            if payout is None:
                raise NotFoundError(f"Payout not found: {payout_id}")
            if payout.status != PayoutStatus.PENDING:
                raise ConflictError(f"Payout {payout_id} is {payout.status}, expected Pending")
            payout_store.update_payout(conn, payout_id, PayoutStatus.FAILED)
            updated = payout_store.get_payout(conn, payout_id)
        log.warning("payout_failed", payout_id=payout_id, market_id=payout.market_id)
        return updated

    def retry_failed(self, market_id: str) -> int:
        """Failed -> Pending for every failed payout of the market."""
        with self.db.transaction() as conn:
            failed = payout_store.list_payouts(conn, market_id, status=PayoutStatus.FAILED)
            for p in failed:
                payout_store.update_payout(conn, p.id, PayoutStatus.PENDING)
        if failed:
            log.info("payouts_requeued", market_id=market_id, count=len(failed))
        return len(failed)

    def finalize_if_complete(self, market_id: str) -> Market:
        """Resolved -> Paid once no payout is Pending or Failed."""
        market = self.markets.get_market(market_id)
        if market.status != MarketStatus.RESOLVED:
            return market
        stats = self.payout_stats(market_id)
        if stats.pending or stats.failed:
            return market
        return self.markets.transition(market_id, MarketStatus.PAID)

    def payout_stats(self, market_id: str) -> PayoutStats:
        return payout_store.payout_stats(self.db.conn, market_id)

    def list_payouts(self, market_id: str, status: PayoutStatus | str | None = None) -> list[Payout]:
        return payout_store.list_payouts(self.db.conn, market_id, status=status)

    def list_payouts_for_recipient(self, recipient: str) -> list[Payout]:
        return payout_store.list_payouts_for_recipient(self.db.conn, recipient)
