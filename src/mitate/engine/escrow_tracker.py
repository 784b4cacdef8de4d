"""EscrowTracker - the on-ledger escrow backing each market pool."""

from __future__ import annotations

import structlog

from mitate.errors import ConflictError, NotFoundError, ValidationError
from mitate.models import Escrow, EscrowStatus
from mitate.storage import escrows as escrow_store
from mitate.storage.db import Database, new_id

log = structlog.get_logger(__name__)


class EscrowTracker:
    def __init__(self, db: Database) -> None:
        self.db = db

    def open_escrow(
        self,
        market_id: str,
        amount: int,
        sequence: int,
        create_tx: str,
        cancel_after: int,
        finish_after: int | None = None,
    ) -> Escrow:
        """Record the confirmed EscrowCreate. A market holds at most one Open escrow."""
        with self.db.transaction() as conn:
            if escrow_store.get_open_escrow(conn, market_id) is not None:
                raise ConflictError(f"Market {market_id} already has an open escrow")
            escrow = Escrow(
                id=new_id(),
                market_id=market_id,
                amount=amount,
                sequence=sequence,
                create_tx=create_tx,
                cancel_after=cancel_after,
                finish_after=finish_after,
            )
            escrow_store.insert_escrow(conn, escrow)
        log.info("escrow_opened", market_id=market_id, sequence=sequence, create_tx=create_tx)
        return escrow

    def get_open(self, market_id: str) -> Escrow | None:
        return escrow_store.get_open_escrow(self.db.conn, market_id)

    def _require_open(self, conn, market_id: str) -> Escrow:
        escrow = escrow_store.get_open_escrow(conn, market_id)
        if escrow is None:
            raise NotFoundError(f"No open escrow for market {market_id}")
        return escrow

    def add(self, market_id: str, amount: int) -> Escrow:
        """Grow the tracked escrow amount. Amounts only increase."""
        if amount <= 0:
            raise ValidationError(f"Escrow increment must be positive, got {amount}")
        with self.db.transaction() as conn:
            escrow = self._require_open(conn, market_id)
            new_amount = escrow.amount + amount
            escrow_store.update_escrow(conn, escrow.id, amount=new_amount)
        return escrow.model_copy(update={"amount": new_amount})

    def mark_finished(self, market_id: str, tx_hash: str) -> Escrow:
        return self._close(market_id, tx_hash, EscrowStatus.FINISHED)

    def mark_canceled(self, market_id: str, tx_hash: str) -> Escrow:
        return self._close(market_id, tx_hash, EscrowStatus.CANCELED)

    def _close(self, market_id: str, tx_hash: str, status: EscrowStatus) -> Escrow:
        column = "finish_tx" if status == EscrowStatus.FINISHED else "cancel_tx"
        with self.db.transaction() as conn:
            open_escrow = escrow_store.get_open_escrow(conn, market_id)
            if open_escrow is None:
                # Same hash recorded earlier: idempotent.
                for escrow in escrow_store.list_escrows(conn, market_id):
                    if escrow.status == status and getattr(escrow, column) == tx_hash:
                        return escrow
                raise NotFoundError(f"No open escrow for market {market_id}")
            escrow_store.update_escrow(conn, open_escrow.id, status=status, **{column: tx_hash})
        log.info("escrow_closed", market_id=market_id, status=str(status), tx_hash=tx_hash)
        return open_escrow.model_copy(update={"status": status, column: tx_hash})

    def list_for_market(self, market_id: str) -> list[Escrow]:
        return escrow_store.list_escrows(self.db.conn, market_id)
