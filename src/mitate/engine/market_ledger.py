"""MarketLedger - market lifecycle state machine and outcome pricing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from mitate.config import Settings
from mitate.engine.escrow_tracker import EscrowTracker
from mitate.errors import ConflictError, NotFoundError, ValidationError
from mitate.ledger.codec import encode_currency, outcome_key
from mitate.ledger.tx_builder import build_escrow_create, to_ledger_time
from mitate.models import Market, MarketStatus, MarketView, Outcome, OutcomeView
from mitate.storage import markets as market_store
from mitate.storage.db import Database, new_id, now_ms

log = structlog.get_logger(__name__)

DEFAULT_OUTCOMES = ("YES", "NO")
MIN_OUTCOMES = 2
MAX_OUTCOMES = 5
ESCROW_SEED_DROPS = 1

# Allowed forward moves; Canceled and Stalled are absorbing.
_TRANSITIONS: dict[MarketStatus, frozenset[MarketStatus]] = {
    MarketStatus.DRAFT: frozenset({MarketStatus.OPEN, MarketStatus.CANCELED, MarketStatus.STALLED}),
    MarketStatus.OPEN: frozenset({MarketStatus.CLOSED, MarketStatus.CANCELED, MarketStatus.STALLED}),
    MarketStatus.CLOSED: frozenset({MarketStatus.RESOLVED, MarketStatus.CANCELED, MarketStatus.STALLED}),
    MarketStatus.RESOLVED: frozenset({MarketStatus.PAID}),
    MarketStatus.PAID: frozenset(),
    MarketStatus.CANCELED: frozenset(),
    MarketStatus.STALLED: frozenset(),
}


def ensure_transition(current: MarketStatus, target: MarketStatus) -> None:
    if target not in _TRANSITIONS[current]:
        raise ConflictError(f"Illegal market transition {current} -> {target}")


def outcome_probabilities(totals: list[int]) -> list[int]:
    """Integer percentages summing to 100.

    Proportional by basis points, rounded to whole percent; the rounding
    difference goes to the first largest outcome. An empty pool splits evenly
    with the remainder on the first outcome.
    """
    n = len(totals)
    if n == 0:
        return []
    pool = sum(totals)
    if pool <= 0:
        even = [100 // n] * n
        even[0] += 100 - sum(even)
        return even
    probs = [(t * 10000 // pool + 50) // 100 for t in totals]
    diff = 100 - sum(probs)
    if diff:
        top = totals.index(max(totals))
        probs[top] += diff
    return probs


def destination_tag(market_id: str) -> int:
    return int(market_id[:8], 16) % 4294967295


@dataclass
class CreatedMarket:
    market: Market
    outcomes: list[Outcome]
    escrow_tx: dict[str, Any]


class MarketLedger:
    def __init__(self, db: Database, settings: Settings, escrows: EscrowTracker) -> None:
        self.db = db
        self.settings = settings
        self.escrows = escrows

    # --- creation ---

    def create_market(
        self,
        title: str,
        description: str,
        betting_deadline: int,
        outcomes: list[str] | None = None,
        category: str | None = None,
        resolution_time: int | None = None,
        created_by: str | None = None,
        now_ms: int | None = None,
    ) -> CreatedMarket:
        """Create a Draft market and the EscrowCreate payload that opens it."""
        now = now_ms if now_ms is not None else _now()
        if not title or not title.strip():
            raise ValidationError("Title is required")
        if betting_deadline <= now:
            raise ValidationError("Betting deadline must be in the future")
        if resolution_time is not None and resolution_time < betting_deadline:
            raise ValidationError("Resolution time must not precede the betting deadline")
        labels = [label.strip() for label in (outcomes or list(DEFAULT_OUTCOMES))]
        if not MIN_OUTCOMES <= len(labels) <= MAX_OUTCOMES:
            raise ValidationError(f"A market needs {MIN_OUTCOMES}-{MAX_OUTCOMES} outcomes, got {len(labels)}")
        if any(not label for label in labels):
            raise ValidationError("Outcome labels must be non-empty")
        if len({label.upper() for label in labels}) != len(labels):
            raise ValidationError("Outcome labels must be unique")
        operator = self.settings.require_operator_address()
        issuer = self.settings.require_issuer_address()

        market = Market(
            id=new_id(),
            title=title.strip(),
            description=description or "",
            category=category,
            status=MarketStatus.DRAFT,
            created_by=created_by,
            betting_deadline=betting_deadline,
            resolution_time=resolution_time,
            issuer_address=issuer,
            operator_address=operator,
            created_at=now,
            updated_at=now,
        )
        rows = [
            Outcome(
                id=new_id(),
                market_id=market.id,
                label=label,
                currency_code=encode_currency(market.id, outcome_key(i)),
                display_order=i,
                created_at=now,
            )
            for i, label in enumerate(labels)
        ]
        with self.db.transaction() as conn:
            market_store.insert_market(conn, market)
            market_store.insert_outcomes(conn, rows)

        escrow_tx = build_escrow_create(
            account=operator,
            amount=ESCROW_SEED_DROPS,
            cancel_after=to_ledger_time(betting_deadline),
            market_id=market.id,
            destination_tag=destination_tag(market.id),
            now_ms=now,
        )
        log.info("market_created", market_id=market.id, outcomes=len(rows), deadline=betting_deadline)
        return CreatedMarket(market=market, outcomes=rows, escrow_tx=escrow_tx)

    def confirm_creation(self, market_id: str, escrow_tx_hash: str, escrow_sequence: int) -> Market:
        """Bind the EscrowCreate hash and sequence: Draft -> Open."""
        if not escrow_tx_hash:
            raise ValidationError("Escrow transaction hash is required")

        def apply(conn) -> Market:
            market = self._require(conn, market_id)
            if market.status == MarketStatus.OPEN and market.escrow_create_tx == escrow_tx_hash:
                return market
            ensure_transition(market.status, MarketStatus.OPEN)
            market_store.update_market(
                conn,
                market_id,
                status=MarketStatus.OPEN,
                escrow_create_tx=escrow_tx_hash,
                escrow_sequence=escrow_sequence,
            )
            self.escrows.open_escrow(
                market_id,
                amount=ESCROW_SEED_DROPS,
                sequence=escrow_sequence,
                create_tx=escrow_tx_hash,
                cancel_after=to_ledger_time(market.betting_deadline),
                finish_after=to_ledger_time(market.created_at or _now()),
            )
            log.info("market_opened", market_id=market_id, escrow_tx=escrow_tx_hash, sequence=escrow_sequence)
            return market_store.get_market(conn, market_id)

        return self.db.run_transaction(apply)

    # --- lifecycle ---

    def transition(self, market_id: str, target: MarketStatus, **fields: Any) -> Market:
        """Guarded status move plus optional column updates, in one transaction."""
        with self.db.transaction() as conn:
            market = self._require(conn, market_id)
            ensure_transition(market.status, target)
            market_store.update_market(conn, market_id, status=target, **fields)
            updated = market_store.get_market(conn, market_id)
        log.info("market_transition", market_id=market_id, from_status=str(market.status), to_status=str(target))
        return updated

    def close(self, market_id: str) -> Market:
        market = self.get_market(market_id)
        if market.status != MarketStatus.OPEN:
            raise ConflictError(f"Market {market_id} is {market.status}, expected Open")
        return self.transition(market_id, MarketStatus.CLOSED)

    def close_expired(self, now_ms: int | None = None) -> list[Market]:
        """Close every Open market whose betting deadline has passed."""
        now = now_ms if now_ms is not None else _now()
        closed = []
        for market in market_store.list_expired_open(self.db.conn, now):
            closed.append(self.transition(market.id, MarketStatus.CLOSED))
        if closed:
            log.info("markets_closed_expired", count=len(closed))
        return closed

    def mark_stalled(self, market_id: str) -> Market:
        return self.transition(market_id, MarketStatus.STALLED)

    def discard(self, market_id: str) -> Market:
        """Abandon a Draft market whose escrow was never confirmed."""
        market = self.get_market(market_id)
        if market.status != MarketStatus.DRAFT:
            raise ConflictError(f"Only Draft markets can be discarded; {market_id} is {market.status}")
        return self.transition(market_id, MarketStatus.CANCELED)

    def can_place_bet(self, market: Market, now_ms: int | None = None) -> bool:
        now = now_ms if now_ms is not None else _now()
        return market.status == MarketStatus.OPEN and now < market.betting_deadline

    def update_metadata(
        self,
        market_id: str,
        title: str | None = None,
        description: str | None = None,
        category: str | None = None,
    ) -> Market:
        fields: dict[str, Any] = {}
        if title is not None:
            if not title.strip():
                raise ValidationError("Title must be non-empty")
            fields["title"] = title.strip()
        if description is not None:
            fields["description"] = description
        if category is not None:
            fields["category"] = category
        with self.db.transaction() as conn:
            market = self._require(conn, market_id)
            if market.status not in (MarketStatus.DRAFT, MarketStatus.OPEN):
                raise ConflictError(f"Market {market_id} is {market.status}; metadata is frozen")
            market_store.update_market(conn, market_id, **fields)
            return market_store.get_market(conn, market_id)

    # --- queries ---

    def _require(self, conn, market_id: str) -> Market:
        market = market_store.get_market(conn, market_id)
        if market is None:
            raise NotFoundError(f"Market not found: {market_id}")
        return market

    def get_market(self, market_id: str) -> Market:
        return self._require(self.db.conn, market_id)

    def get_outcomes(self, market_id: str) -> list[Outcome]:
        return market_store.list_outcomes(self.db.conn, market_id)

    def get_market_with_outcomes(self, market_id: str) -> MarketView:
        market = self.get_market(market_id)
        outcomes = self.get_outcomes(market_id)
        probs = outcome_probabilities([o.total_amount for o in outcomes])
        views = [OutcomeView(**o.model_dump(), probability=p) for o, p in zip(outcomes, probs)]
        return MarketView(**market.model_dump(), outcomes=views)

    def list_markets(self, status: MarketStatus | str | None = None, category: str | None = None) -> list[Market]:
        return market_store.list_markets(self.db.conn, status=status, category=category)

    def list_open_markets(self) -> list[Market]:
        return self.list_markets(status=MarketStatus.OPEN)


def _now() -> int:
    return now_ms()
