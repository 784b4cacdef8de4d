"""OfferDesk - DEX offers for outcome tokens and observed fills."""

from __future__ import annotations

import json
from typing import Any

import structlog

from mitate.engine.market_ledger import MarketLedger
from mitate.errors import ConflictError, ValidationError
from mitate.ledger.tx_builder import build_offer_create, to_ledger_time
from mitate.models import MarketStatus, Trade
from mitate.storage import markets as market_store
from mitate.storage import trades as trade_store
from mitate.storage.db import Database

log = structlog.get_logger(__name__)


def amount_text(amount: Any) -> str:
    """Drops stay as the integer string; issued amounts become compact JSON."""
    if isinstance(amount, dict):
        return json.dumps(amount, separators=(",", ":"), sort_keys=True)
    return str(amount)


class OfferDesk:
    def __init__(self, db: Database, markets: MarketLedger) -> None:
        self.db = db
        self.markets = markets

    def create_offer(
        self,
        market_id: str,
        account: str,
        outcome_id: str,
        side: str,
        token_amount: int | str,
        base_amount: int,
    ) -> dict[str, Any]:
        """OfferCreate payload expiring at the betting deadline. Open markets only."""
        market = self.markets.get_market(market_id)
        if market.status != MarketStatus.OPEN:
            raise ConflictError(f"Cannot trade on market in {market.status} status")
        if side not in ("buy", "sell"):
            raise ValidationError(f"side must be 'buy' or 'sell', got {side!r}")
        if isinstance(base_amount, bool) or not isinstance(base_amount, int) or base_amount <= 0:
            raise ValidationError(f"XRP amount must be a positive integer number of drops, got {base_amount!r}")
        try:
            if float(token_amount) <= 0:
                raise ValidationError(f"Token amount must be positive, got {token_amount!r}")
        except (TypeError, ValueError):
            raise ValidationError(f"Token amount must be numeric, got {token_amount!r}") from None
        outcome = market_store.get_outcome(self.db.conn, outcome_id)
        if outcome is None or outcome.market_id != market_id:
            raise ValidationError(f"Outcome {outcome_id} does not belong to market {market_id}")
        return build_offer_create(
            account=account,
            issuer=market.issuer_address,
            market_id=market_id,
            currency_code=outcome.currency_code,
            token_value=token_amount,
            base_amount=base_amount,
            side=side,
            expiration=to_ledger_time(market.betting_deadline),
            outcome_id=outcome.id,
        )

    def record_trade(
        self,
        market_id: str,
        offer_tx: str,
        taker_gets: Any,
        taker_pays: Any,
        ledger_index: int,
        executed_at: int,
        memo_json: str | None = None,
    ) -> tuple[Trade, bool]:
        """Record an observed fill; a known offer_tx returns the stored trade."""
        trade, created = trade_store.insert_trade(
            self.db.conn,
            market_id,
            offer_tx,
            amount_text(taker_gets),
            amount_text(taker_pays),
            ledger_index,
            executed_at,
            memo_json,
        )
        if created:
            log.info("trade_recorded", market_id=market_id, offer_tx=offer_tx, ledger_index=ledger_index)
        return trade, created

    def list_trades(self, market_id: str) -> list[Trade]:
        return trade_store.list_trades(self.db.conn, market_id)

    def trades_before_deadline(self, market_id: str) -> list[Trade]:
        market = self.markets.get_market(market_id)
        return trade_store.list_trades(self.db.conn, market_id, before=market.betting_deadline)

    def trade_stats(self, market_id: str) -> dict[str, Any]:
        return trade_store.trade_stats(self.db.conn, market_id)
