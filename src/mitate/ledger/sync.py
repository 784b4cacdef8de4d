"""LedgerSync - ingest confirmed MITATE transactions into the event log.

A reader task holds the websocket subscription (reconnecting with exponential
backoff) and feeds a bounded queue; one processor task consumes it in order.
Gaps between the stored cursor and the live ledger are backfilled over JSON-RPC.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

import structlog

from mitate.errors import LedgerError
from mitate.ledger.client import LedgerRpc
from mitate.ledger.codec import find_mitate_memo
from mitate.models import LedgerEvent
from mitate.storage import events as event_store
from mitate.storage import state as state_store
from mitate.storage.db import Database

log = structlog.get_logger(__name__)

SUCCESS = "tesSUCCESS"

# Transaction fields copied into the event payload next to the memo.
_TX_FIELDS = (
    "TransactionType",
    "Account",
    "Destination",
    "Amount",
    "LimitAmount",
    "TakerGets",
    "TakerPays",
    "Owner",
    "OfferSequence",
    "Sequence",
)

EventHandler = Callable[[LedgerEvent, dict[str, Any]], None]
StreamFactory = Callable[[], AbstractAsyncContextManager[Any]]


@dataclass
class SyncStatus:
    running: bool
    last_ledger_index: int | None
    last_sync_time: str | None
    last_error: str | None
    processed_count: int
    queue_depth: int


def split_transaction(item: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any], str | None]:
    """(tx, meta, hash) from a stream message or an expanded ledger entry, API v1 or v2."""
    if isinstance(item.get("tx_json"), dict):
        tx = item["tx_json"]
    elif isinstance(item.get("transaction"), dict):
        tx = item["transaction"]
    else:
        tx = item
    meta = item.get("meta") or item.get("metaData") or tx.get("metaData") or {}
    tx_hash = item.get("hash") or tx.get("hash")
    return tx, meta if isinstance(meta, dict) else {}, tx_hash


class LedgerSync:
    def __init__(
        self,
        db: Database,
        rpc: LedgerRpc,
        stream_factory: StreamFactory,
        *,
        queue_size: int = 1000,
        checkpoint_every: int = 100,
        backfill_retries: int = 3,
        retry_base_delay_sec: float = 0.5,
        reconnect_base_delay_sec: float = 1.0,
        reconnect_max_delay_sec: float = 60.0,
        reconnect_max_retries: int = 0,
        catch_up_on_start: bool = True,
    ) -> None:
        self.db = db
        self.rpc = rpc
        self.stream_factory = stream_factory
        self.queue_size = queue_size
        self.checkpoint_every = max(1, checkpoint_every)
        self.backfill_retries = backfill_retries
        self.retry_base_delay_sec = retry_base_delay_sec
        self.reconnect_base_delay_sec = reconnect_base_delay_sec
        self.reconnect_max_delay_sec = reconnect_max_delay_sec
        self.reconnect_max_retries = reconnect_max_retries
        self.catch_up_on_start = catch_up_on_start
        self._handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[tuple[str, Any]] | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._backfilling = 0
        self._processed = 0
        self._last_error: str | None = None
        self._last_ledger_index, self._last_sync_time = state_store.get_cursor(db.conn)

    def add_handler(self, handler: EventHandler) -> None:
        """Called with (event, tx) for every newly ingested event."""
        self._handlers.append(handler)

    # --- lifecycle ---

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._read_stream(), name="ledger-sync-reader"),
            asyncio.create_task(self._process_queue(), name="ledger-sync-processor"),
        ]
        log.info("ledger_sync_started", cursor=self._last_ledger_index)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        log.info("ledger_sync_stopped", cursor=self._last_ledger_index, processed=self._processed)

    async def wait(self) -> None:
        """Block until the reader gives up (max retries) and everything it queued is processed."""
        if not self._tasks:
            return
        await asyncio.gather(self._tasks[0], return_exceptions=True)
        await self._queue.join()

    def status(self) -> SyncStatus:
        return SyncStatus(
            running=self._running,
            last_ledger_index=self._last_ledger_index,
            last_sync_time=self._last_sync_time,
            last_error=self._last_error,
            processed_count=self._processed,
            queue_depth=self._queue.qsize() if self._queue is not None else 0,
        )

    # --- reader ---

    async def _read_stream(self) -> None:
        delay = self.reconnect_base_delay_sec
        retries = 0
        while self._running:
            try:
                async with self.stream_factory() as stream:
                    delay = self.reconnect_base_delay_sec
                    retries = 0
                    current = getattr(stream, "ledger_index", None)
                    if self.catch_up_on_start and current is not None and self._last_ledger_index is not None:
                        if current > self._last_ledger_index:
                            await self._queue.put(("resync", (self._last_ledger_index + 1, current)))
                    async for msg in stream:
                        await self._queue.put(("message", msg))
                raise LedgerError("ledger stream closed by server")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._last_error = str(e)
                log.warning("ledger_stream_error", error=str(e), delay=delay)
                if self.reconnect_max_retries and retries >= self.reconnect_max_retries:
                    log.error("ledger_stream_max_retries_reached")
                    break
                retries += 1
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.reconnect_max_delay_sec)

    # --- processor ---

    async def _process_queue(self) -> None:
        while True:
            kind, item = await self._queue.get()
            try:
                if kind == "resync":
                    start, end = item
                    await self.backfill(start, end)
                else:
                    self.handle_message(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._last_error = str(e)
                log.error("ledger_sync_process_error", kind=kind, error=str(e))
            finally:
                self._queue.task_done()

    def handle_message(self, msg: dict[str, Any]) -> None:
        msg_type = msg.get("type")
        if msg_type == "transaction":
            if msg.get("validated") is False:
                return
            tx, meta, tx_hash = split_transaction(msg)
            index = msg.get("ledger_index") or tx.get("ledger_index")
            self.process_transaction(tx, meta, tx_hash, int(index) if index is not None else 0)
        elif msg_type == "ledgerClosed":
            if self._backfilling:
                return
            # Transactions of the closing ledger may still be in flight.
            self.checkpoint(int(msg["ledger_index"]) - 1)

    def process_transaction(
        self,
        tx: dict[str, Any],
        meta: dict[str, Any],
        tx_hash: str | None,
        ledger_index: int,
    ) -> bool:
        """Decode and store one successful MITATE transaction. True if it was new."""
        if not tx_hash or meta.get("TransactionResult") != SUCCESS:
            return False
        envelope = find_mitate_memo(tx.get("Memos"))
        if envelope is None:
            return False
        payload = {
            "memo": envelope.model_dump(by_alias=True, exclude_none=True),
            "tx": {k: tx[k] for k in _TX_FIELDS if k in tx},
        }
        with self.db.transaction() as conn:
            created = event_store.insert_event(conn, tx_hash, envelope.type, envelope.market_id, payload, ledger_index)
            event = event_store.get_event_by_hash(conn, tx_hash) if created else None
        if not created:
            return False
        self._processed += 1
        log.info(
            "ledger_event_ingested",
            tx_hash=tx_hash,
            event_type=envelope.type,
            market_id=envelope.market_id,
            ledger_index=ledger_index,
        )
        for handler in self._handlers:
            try:
                handler(event, tx)
            except Exception as e:
                log.error("ledger_event_handler_error", tx_hash=tx_hash, error=str(e))
        return True

    def checkpoint(self, ledger_index: int) -> None:
        """Advance the cursor. It never moves backwards."""
        if self._last_ledger_index is not None and ledger_index <= self._last_ledger_index:
            return
        with self.db.transaction() as conn:
            synced_at = state_store.set_cursor(conn, ledger_index)
        self._last_ledger_index = ledger_index
        self._last_sync_time = synced_at

    # --- backfill ---

    async def _fetch_ledger(self, ledger_index: int) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                return await self.rpc.get_ledger(ledger_index)
            except LedgerError as e:
                if attempt >= self.backfill_retries:
                    raise
                delay = self.retry_base_delay_sec * (2**attempt)
                attempt += 1
                log.warning("backfill_retry", ledger_index=ledger_index, attempt=attempt, delay=delay, error=str(e))
                await asyncio.sleep(delay)

    async def backfill(self, start: int, end: int) -> int:
        """Walk ledgers start..end inclusive over RPC. Returns the number of new events."""
        if end < start:
            return 0
        log.info("backfill_started", start=start, end=end)
        self._backfilling += 1
        ingested = 0
        last_done = start - 1
        try:
            for index in range(start, end + 1):
                ledger = await self._fetch_ledger(index)
                for item in ledger.get("transactions") or []:
                    if not isinstance(item, dict):
                        continue
                    tx, meta, tx_hash = split_transaction(item)
                    if self.process_transaction(tx, meta, tx_hash, index):
                        ingested += 1
                last_done = index
                if (index - start + 1) % self.checkpoint_every == 0:
                    self.checkpoint(index)
                    log.info("backfill_progress", ledger_index=index, end=end, ingested=ingested)
            self.checkpoint(end)
        except LedgerError as e:
            self._last_error = str(e)
            if last_done >= start:
                self.checkpoint(last_done)
            log.error("backfill_failed", ledger_index=last_done + 1, error=str(e))
            raise LedgerError(f"Backfill stopped at ledger {last_done + 1}: {e.message}") from e
        finally:
            self._backfilling -= 1
        log.info("backfill_completed", start=start, end=end, ingested=ingested)
        return ingested

    async def catch_up(self) -> int:
        """Backfill from the stored cursor to the latest validated ledger."""
        current = await self.rpc.current_ledger_index()
        if self._last_ledger_index is None:
            self.checkpoint(current)
            return 0
        return await self.backfill(self._last_ledger_index + 1, current)
