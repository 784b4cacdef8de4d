"""SettlementService - owns the store and ledger clients and wires the components."""

from __future__ import annotations

import json
from typing import Any

import structlog

from mitate.config import Settings
from mitate.engine import BetBook, EscrowTracker, MarketLedger, OfferDesk, SettlementEngine
from mitate.ledger.client import LedgerRpc, LedgerStream
from mitate.ledger.sync import LedgerSync, StreamFactory
from mitate.models import LedgerEvent, Market, Payout
from mitate.storage import markets as market_store
from mitate.storage.db import Database

log = structlog.get_logger(__name__)


class SettlementService:
    """One instance per process. Use as a context manager or call open()/close()."""

    def __init__(self, settings: Settings, db: Database | None = None, rpc: LedgerRpc | None = None) -> None:
        self.settings = settings
        self.db = db or Database(settings.db_path)
        self._rpc = rpc
        self.escrows = EscrowTracker(self.db)
        self.markets = MarketLedger(self.db, settings, self.escrows)
        self.bets = BetBook(self.db, self.markets, self.escrows)
        self.settlement = SettlementEngine(self.db, self.markets, self.escrows)
        self.offers = OfferDesk(self.db, self.markets)

    def open(self) -> SettlementService:
        self.db.open()
        return self

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> SettlementService:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def rpc(self) -> LedgerRpc:
        if self._rpc is None:
            self._rpc = LedgerRpc(self.settings.rpc_url, timeout=self.settings.rpc_timeout_sec)
        return self._rpc

    async def aclose(self) -> None:
        if self._rpc is not None:
            await self._rpc.aclose()
            self._rpc = None

    # --- operations that need the ledger ---

    async def confirm_market_creation(self, market_id: str, escrow_tx_hash: str, sequence: int | None = None) -> Market:
        """Draft -> Open. Looks the escrow sequence up on the ledger when it is missing."""
        if sequence is None:
            sequence = await self.rpc.tx_sequence(escrow_tx_hash)
            log.debug("escrow_sequence_resolved", market_id=market_id, sequence=sequence)
        return self.markets.confirm_creation(market_id, escrow_tx_hash, sequence)

    def confirm_payout(self, payout_id: str, tx_hash: str) -> Payout:
        """Mark a payout Sent and move the market to Paid once nothing is outstanding."""
        payout = self.settlement.confirm_payout(payout_id, tx_hash)
        self.settlement.finalize_if_complete(payout.market_id)
        return payout

    # --- sync ---

    def _stream_factory(self) -> LedgerStream:
        accounts = [self.settings.operator_address, self.settings.issuer_address]
        return LedgerStream(self.settings.ws_url, accounts)

    def ledger_sync(self, stream_factory: StreamFactory | None = None) -> LedgerSync:
        s = self.settings
        sync = LedgerSync(
            self.db,
            self.rpc,
            stream_factory or self._stream_factory,
            queue_size=s.queue_size,
            checkpoint_every=s.checkpoint_every,
            backfill_retries=s.backfill_retries,
            reconnect_base_delay_sec=s.reconnect_base_delay_sec,
            reconnect_max_delay_sec=s.reconnect_max_delay_sec,
            reconnect_max_retries=s.reconnect_max_retries,
            catch_up_on_start=s.catch_up_on_start,
        )
        sync.add_handler(self._record_offer_fill)
        return sync

    def _record_offer_fill(self, event: LedgerEvent, tx: dict[str, Any]) -> None:
        if event.event_type != "offer" or not event.market_id:
            return
        if market_store.get_market(self.db.conn, event.market_id) is None:
            log.debug("offer_for_unknown_market", market_id=event.market_id, tx_hash=event.tx_hash)
            return
        self.offers.record_trade(
            event.market_id,
            offer_tx=event.tx_hash,
            taker_gets=tx.get("TakerGets", ""),
            taker_pays=tx.get("TakerPays", ""),
            ledger_index=event.ledger_index,
            executed_at=event.ingested_at,
            memo_json=json.dumps(event.payload.get("memo", {}), separators=(",", ":"), ensure_ascii=False),
        )
