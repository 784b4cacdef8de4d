"""Market lifecycle and outcome probabilities."""

import asyncio

import pytest

from mitate.config import Settings
from mitate.engine.market_ledger import ensure_transition, outcome_probabilities
from mitate.errors import ConfigurationError, ConflictError, ValidationError
from mitate.ledger.codec import decode_currency, decode_memo
from mitate.ledger.tx_builder import to_ledger_time
from mitate.models import EscrowStatus, MarketStatus
from mitate.service import SettlementService
from mitate.storage.db import now_ms

from conftest import HOUR_MS, OPERATOR, open_market


@pytest.mark.parametrize(
    "totals, expected",
    [
        ([700, 300], [70, 30]),
        ([0, 0, 0], [34, 33, 33]),
        ([0, 0], [50, 50]),
        ([1, 1, 1], [34, 33, 33]),
        ([1, 2], [33, 67]),
        ([0, 5, 0, 0, 0], [0, 100, 0, 0, 0]),
    ],
)
def test_outcome_probabilities(totals, expected):
    assert outcome_probabilities(totals) == expected


@pytest.mark.parametrize(
    "totals",
    [[1, 1, 1, 1, 1], [3, 3, 3], [1, 0, 2, 0, 4], [999, 1], [10**20, 7, 13], [2, 2, 2, 1]],
)
def test_outcome_probabilities_sum_to_100(totals):
    probs = outcome_probabilities(totals)
    assert sum(probs) == 100
    assert all(p >= 0 for p in probs)


def test_create_market_draft_with_escrow_payload(service):
    deadline = now_ms() + HOUR_MS
    created = service.markets.create_market("Q?", "", deadline, outcomes=["Red", "Green", "Blue"])
    market = created.market
    assert market.status == MarketStatus.DRAFT
    assert [o.label for o in created.outcomes] == ["Red", "Green", "Blue"]
    keys = [decode_currency(o.currency_code).outcome_key for o in created.outcomes]
    assert keys == ["A", "B", "C"]
    assert all(decode_currency(o.currency_code).market_ref == market.id[:8] for o in created.outcomes)

    tx = created.escrow_tx
    assert tx["TransactionType"] == "EscrowCreate"
    assert tx["Account"] == OPERATOR
    assert tx["Amount"] == "1"
    assert tx["CancelAfter"] == to_ledger_time(deadline)
    assert isinstance(tx["DestinationTag"], int)
    assert decode_memo(tx["Memos"][0]).market_id == market.id


def test_create_market_defaults_to_yes_no(service):
    created = service.markets.create_market("Q?", "", now_ms() + HOUR_MS)
    assert [o.label for o in created.outcomes] == ["YES", "NO"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"betting_deadline": 0},
        {"outcomes": ["only"]},
        {"outcomes": ["a", "b", "c", "d", "e", "f"]},
        {"outcomes": ["a", "A"]},
        {"title": "  "},
    ],
)
def test_create_market_validation(service, kwargs):
    args = {"title": "Q?", "description": "", "betting_deadline": now_ms() + HOUR_MS, **kwargs}
    with pytest.raises(ValidationError):
        service.markets.create_market(**args)


def test_create_market_requires_addresses(temp_db):
    svc = SettlementService(Settings(storage={"db_path": str(temp_db.db_path)}), db=temp_db)
    with pytest.raises(ConfigurationError):
        svc.markets.create_market("Q?", "", now_ms() + HOUR_MS)
    assert svc.markets.list_markets() == []


def test_confirm_creation_opens_market_and_escrow(service):
    market, _ = open_market(service, seq=11)
    assert market.status == MarketStatus.OPEN
    assert market.escrow_sequence == 11
    escrow = service.escrows.get_open(market.id)
    assert escrow.status == EscrowStatus.OPEN
    assert escrow.sequence == 11
    assert escrow.amount == 1


def test_confirm_creation_idempotent_same_hash(service):
    market, _ = open_market(service)
    again = service.markets.confirm_creation(market.id, market.escrow_create_tx, 7)
    assert again.status == MarketStatus.OPEN
    assert len(service.escrows.list_for_market(market.id)) == 1
    with pytest.raises(ConflictError):
        service.markets.confirm_creation(market.id, "OTHERHASH", 7)


def test_close_and_expire(service):
    market, _ = open_market(service)
    closed = service.markets.close(market.id)
    assert closed.status == MarketStatus.CLOSED
    with pytest.raises(ConflictError):
        service.markets.close(market.id)

    other, _ = open_market(service)
    assert service.markets.close_expired(now_ms=other.betting_deadline - 1) == []
    expired = service.markets.close_expired(now_ms=other.betting_deadline)
    assert [m.id for m in expired] == [other.id]


def test_can_place_bet_around_deadline(service):
    market, _ = open_market(service)
    assert service.markets.can_place_bet(market, now_ms=market.betting_deadline - 1000)
    assert not service.markets.can_place_bet(market, now_ms=market.betting_deadline + 1000)
    assert not service.markets.can_place_bet(market, now_ms=market.betting_deadline)


def test_discard_only_draft(service):
    created = service.markets.create_market("Q?", "", now_ms() + HOUR_MS)
    assert service.markets.discard(created.market.id).status == MarketStatus.CANCELED
    market, _ = open_market(service)
    with pytest.raises(ConflictError):
        service.markets.discard(market.id)


def test_stalled_is_absorbing(service):
    market, _ = open_market(service)
    service.markets.mark_stalled(market.id)
    with pytest.raises(ConflictError):
        service.markets.close(market.id)
    with pytest.raises(ConflictError):
        ensure_transition(MarketStatus.STALLED, MarketStatus.OPEN)


def test_transition_table():
    ensure_transition(MarketStatus.RESOLVED, MarketStatus.PAID)
    for bad in [(MarketStatus.OPEN, MarketStatus.DRAFT), (MarketStatus.PAID, MarketStatus.CANCELED), (MarketStatus.DRAFT, MarketStatus.RESOLVED)]:
        with pytest.raises(ConflictError):
            ensure_transition(*bad)


def test_update_metadata_frozen_after_close(service):
    market, _ = open_market(service)
    updated = service.markets.update_metadata(market.id, title="New title", category="weather")
    assert updated.title == "New title"
    assert [m.id for m in service.markets.list_markets(category="weather")] == [market.id]
    service.markets.close(market.id)
    with pytest.raises(ConflictError):
        service.markets.update_metadata(market.id, description="late")


def test_market_view_has_probabilities(service):
    market, _ = open_market(service, outcomes=["A1", "B1", "C1"])
    view = service.markets.get_market_with_outcomes(market.id)
    assert [o.probability for o in view.outcomes] == [34, 33, 33]
    assert [m.id for m in service.markets.list_open_markets()] == [market.id]


class SequenceRpc:
    def __init__(self, sequence):
        self.sequence = sequence
        self.lookups = []

    async def tx_sequence(self, tx_hash):
        self.lookups.append(tx_hash)
        return self.sequence

    async def aclose(self):
        pass


def test_confirm_market_creation_looks_up_only_missing_sequence(settings, temp_db):
    rpc = SequenceRpc(42)
    svc = SettlementService(settings, db=temp_db, rpc=rpc)
    first = svc.markets.create_market("Q1?", "", now_ms() + HOUR_MS)
    market = asyncio.run(svc.confirm_market_creation(first.market.id, "ESC1", 1))
    assert market.escrow_sequence == 1
    assert rpc.lookups == []

    second = svc.markets.create_market("Q2?", "", now_ms() + HOUR_MS)
    market = asyncio.run(svc.confirm_market_creation(second.market.id, "ESC2"))
    assert market.escrow_sequence == 42
    assert rpc.lookups == ["ESC2"]
