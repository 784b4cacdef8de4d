"""LedgerSync ingestion, checkpoints and backfill with fake stream/RPC."""

import asyncio

import pytest

from mitate.errors import LedgerError
from mitate.ledger.codec import build_envelope, encode_memo
from mitate.ledger.sync import LedgerSync, split_transaction
from mitate.ledger.tx_builder import build_bet_payment, build_offer_create
from mitate.service import SettlementService
from mitate.storage import events as event_store
from mitate.storage import state as state_store

from conftest import open_market

OK = {"TransactionResult": "tesSUCCESS"}


class FakeRpc:
    def __init__(self, ledgers=None, fail_at=(), current=None):
        self.ledgers = ledgers or {}
        self.fail_at = set(fail_at)
        self.current = current
        self.calls = []

    async def get_ledger(self, index):
        self.calls.append(index)
        if index in self.fail_at:
            raise LedgerError(f"ledger {index} unavailable")
        return {"ledger_index": index, "transactions": self.ledgers.get(index, [])}

    async def current_ledger_index(self):
        return self.current

    async def aclose(self):
        pass


class FakeStream:
    def __init__(self, ledger_index, messages):
        self.ledger_index = ledger_index
        self.messages = messages
        self.exited = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.exited = True

    async def __aiter__(self):
        for msg in self.messages:
            yield msg


def _bet_tx(market_id="m1"):
    return build_bet_payment("rAlice", "rOp", 10, market_id, outcome_id="o1")


def _ledger_entry(tx, tx_hash, result="tesSUCCESS"):
    return {**tx, "hash": tx_hash, "metaData": {"TransactionResult": result}}


def _make_sync(temp_db, rpc=None, factory=None, **kwargs):
    opts = {"checkpoint_every": 2, "backfill_retries": 1, "retry_base_delay_sec": 0, "reconnect_base_delay_sec": 0}
    opts.update(kwargs)
    return LedgerSync(temp_db, rpc or FakeRpc(), factory or (lambda: FakeStream(None, [])), **opts)


def _event_count(temp_db):
    return event_store.event_stats(temp_db.conn)["total_events"]


def test_split_transaction_formats():
    tx = _bet_tx()
    v1_stream = {"type": "transaction", "transaction": {**tx, "hash": "H1"}, "meta": OK}
    v2_stream = {"type": "transaction", "tx_json": tx, "hash": "H2", "meta": OK}
    ledger_entry = _ledger_entry(tx, "H3")
    assert split_transaction(v1_stream)[1:] == (OK, "H1")
    assert split_transaction(v2_stream)[1:] == (OK, "H2")
    parsed, meta, tx_hash = split_transaction(ledger_entry)
    assert parsed["TransactionType"] == "Payment" and meta == OK and tx_hash == "H3"


def test_insert_event_idempotent(temp_db):
    sync = _make_sync(temp_db)
    tx = _bet_tx()
    assert sync.process_transaction(tx, OK, "HASH", 5) is True
    assert sync.process_transaction(tx, OK, "HASH", 5) is False
    assert _event_count(temp_db) == 1
    event = event_store.get_event_by_hash(temp_db.conn, "HASH")
    assert event.event_type == "bet"
    assert event.market_id == "m1"
    assert event.payload["memo"]["outcomeId"] == "o1"
    assert event.payload["tx"]["Amount"] == "10"
    assert sync.status().processed_count == 1


def test_ignores_failed_and_foreign_transactions(temp_db):
    sync = _make_sync(temp_db)
    tx = _bet_tx()
    assert not sync.process_transaction(tx, {"TransactionResult": "tecUNFUNDED_PAYMENT"}, "H1", 5)
    assert not sync.process_transaction({"TransactionType": "Payment"}, OK, "H2", 5)
    foreign = {"TransactionType": "Payment", "Memos": [{"Memo": {"MemoType": "6869", "MemoData": "6869"}}]}
    assert not sync.process_transaction(foreign, OK, "H3", 5)
    assert not sync.process_transaction(tx, OK, None, 5)
    assert _event_count(temp_db) == 0


def test_handle_message_transaction_and_ledger_closed(temp_db):
    sync = _make_sync(temp_db)
    sync.handle_message({"type": "transaction", "validated": True, "ledger_index": 8, "transaction": {**_bet_tx(), "hash": "H"}, "meta": OK})
    sync.handle_message({"type": "ledgerClosed", "ledger_index": 8})
    assert _event_count(temp_db) == 1
    index, synced_at = state_store.get_cursor(temp_db.conn)
    # the closing ledger itself stays open until the next close
    assert index == 7
    assert synced_at is not None
    # never moves backwards
    sync.handle_message({"type": "ledgerClosed", "ledger_index": 3})
    assert state_store.get_cursor(temp_db.conn)[0] == 7


def test_unvalidated_transaction_skipped(temp_db):
    sync = _make_sync(temp_db)
    sync.handle_message({"type": "transaction", "validated": False, "transaction": {**_bet_tx(), "hash": "H"}, "meta": OK})
    assert _event_count(temp_db) == 0


def test_backfill_checkpoints(temp_db):
    ledgers = {11: [_ledger_entry(_bet_tx(), "A")], 14: [_ledger_entry(_bet_tx(), "B"), _ledger_entry(_bet_tx(), "C", "tecFAILED")]}
    rpc = FakeRpc(ledgers)
    sync = _make_sync(temp_db, rpc)
    ingested = asyncio.run(sync.backfill(10, 14))
    assert ingested == 2
    assert rpc.calls == [10, 11, 12, 13, 14]
    assert state_store.get_cursor(temp_db.conn)[0] == 14
    # overlapping range is harmless
    assert asyncio.run(sync.backfill(11, 14)) == 0
    assert _event_count(temp_db) == 2


def test_backfill_failure_checkpoints_last_done(temp_db):
    rpc = FakeRpc({10: [_ledger_entry(_bet_tx(), "A")]}, fail_at={13})
    sync = _make_sync(temp_db, rpc)
    with pytest.raises(LedgerError):
        asyncio.run(sync.backfill(10, 15))
    assert state_store.get_cursor(temp_db.conn)[0] == 12
    assert rpc.calls.count(13) == 2  # first try + one retry
    assert sync.status().last_error is not None


def test_catch_up_from_cursor(temp_db):
    rpc = FakeRpc(current=6)
    sync = _make_sync(temp_db, rpc)
    assert asyncio.run(sync.catch_up()) == 0
    assert state_store.get_cursor(temp_db.conn)[0] == 6
    rpc.current = 9
    asyncio.run(sync.catch_up())
    assert rpc.calls == [7, 8, 9]


def test_start_resyncs_gap_then_streams(temp_db):
    state_store.set_cursor(temp_db.conn, 17)
    rpc = FakeRpc({19: [_ledger_entry(_bet_tx(), "GAP")]})
    live = [
        {"type": "transaction", "validated": True, "ledger_index": 21, "transaction": {**_bet_tx(), "hash": "LIVE"}, "meta": OK},
        {"type": "ledgerClosed", "ledger_index": 21},
    ]
    streams = [FakeStream(20, live)]

    def factory():
        if streams:
            return streams.pop(0)
        raise ConnectionRefusedError("down")

    sync = _make_sync(temp_db, rpc, factory, reconnect_max_retries=1)

    async def run():
        await sync.start()
        await sync.start()  # no-op
        await sync.wait()
        status = sync.status()
        await sync.stop()
        await sync.stop()
        return status

    status = asyncio.run(run())
    assert rpc.calls == [18, 19, 20]
    assert event_store.get_event_by_hash(temp_db.conn, "GAP") is not None
    assert event_store.get_event_by_hash(temp_db.conn, "LIVE") is not None
    assert status.last_ledger_index == 20
    assert status.running is True
    assert sync.status().running is False
    assert "down" in status.last_error


def test_ledger_closed_before_its_transactions_is_resynced(temp_db):
    state_store.set_cursor(temp_db.conn, 20)
    sync = _make_sync(temp_db)
    sync.handle_message({"type": "ledgerClosed", "ledger_index": 21})
    # stopped here, before the ledger 21 transaction message arrived
    assert state_store.get_cursor(temp_db.conn)[0] == 20

    rpc = FakeRpc({21: [_ledger_entry(_bet_tx(), "LEDGER21")]})
    restarted = _make_sync(temp_db, rpc, lambda: FakeStream(21, []), reconnect_max_retries=1)

    async def run():
        await restarted.start()
        await restarted.wait()
        await restarted.stop()

    asyncio.run(run())
    assert 21 in rpc.calls
    assert event_store.get_event_by_hash(temp_db.conn, "LEDGER21") is not None
    assert state_store.get_cursor(temp_db.conn)[0] == 21


def test_service_records_offer_fills(settings, temp_db):
    service = SettlementService(settings, db=temp_db, rpc=FakeRpc())
    market, outcomes = open_market(service)
    sync = service.ledger_sync(stream_factory=lambda: FakeStream(None, []))
    offer = build_offer_create("rB", "rI", market.id, outcomes[0].currency_code, "10", 900, outcome_id=outcomes[0].id)
    assert sync.process_transaction(offer, OK, "OFFER1", 33)
    assert sync.process_transaction(offer, OK, "OFFER1", 33) is False
    trades = service.offers.list_trades(market.id)
    assert len(trades) == 1
    assert trades[0].offer_tx == "OFFER1"
    assert trades[0].taker_pays == "900"
    assert trades[0].ledger_index == 33

    unknown = {"TransactionType": "OfferCreate", "Memos": [encode_memo(build_envelope("offer", "ghost"))]}
    assert sync.process_transaction(unknown, OK, "OFFER2", 34)
    assert service.offers.trade_stats(market.id)["total_trades"] == 1
