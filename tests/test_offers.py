"""DEX offer construction and trade recording."""

import pytest

from mitate.errors import ConflictError, ValidationError
from mitate.ledger.codec import decode_memo
from mitate.ledger.tx_builder import to_ledger_time

from conftest import open_market


def test_create_sell_offer_expires_at_deadline(service):
    market, outcomes = open_market(service)
    tx = service.offers.create_offer(market.id, "rAlice", outcomes[1].id, "sell", "25", 2000)
    assert tx["TransactionType"] == "OfferCreate"
    assert tx["TakerGets"]["currency"] == outcomes[1].currency_code
    assert tx["TakerGets"]["value"] == "25"
    assert tx["TakerPays"] == "2000"
    assert tx["Expiration"] == to_ledger_time(market.betting_deadline)
    assert decode_memo(tx["Memos"][0]).type == "offer"


def test_create_buy_offer_swaps_sides(service):
    market, outcomes = open_market(service)
    tx = service.offers.create_offer(market.id, "rAlice", outcomes[0].id, "buy", 5, 400)
    assert tx["TakerGets"] == "400"
    assert tx["TakerPays"]["value"] == "5"


def test_create_offer_guards(service):
    market, outcomes = open_market(service)
    with pytest.raises(ValidationError):
        service.offers.create_offer(market.id, "rA", outcomes[0].id, "hold", "1", 1)
    with pytest.raises(ValidationError):
        service.offers.create_offer(market.id, "rA", outcomes[0].id, "sell", "abc", 1)
    with pytest.raises(ValidationError):
        service.offers.create_offer(market.id, "rA", outcomes[0].id, "sell", "1", 0)
    service.markets.close(market.id)
    with pytest.raises(ConflictError):
        service.offers.create_offer(market.id, "rA", outcomes[0].id, "sell", "1", 1)


def test_record_trade_idempotent(service):
    market, outcomes = open_market(service)
    token = {"currency": outcomes[0].currency_code, "issuer": "rI", "value": "3"}
    trade, created = service.offers.record_trade(market.id, "OFF1", token, "300", 50, market.betting_deadline - 10)
    assert created
    assert trade.taker_pays == "300"
    again, created = service.offers.record_trade(market.id, "OFF1", token, "300", 50, market.betting_deadline - 10)
    assert not created
    assert again.id == trade.id
    service.offers.record_trade(market.id, "OFF2", "120", token, 51, market.betting_deadline + 10)

    assert len(service.offers.list_trades(market.id)) == 2
    assert [t.offer_tx for t in service.offers.trades_before_deadline(market.id)] == ["OFF1"]
    stats = service.offers.trade_stats(market.id)
    assert stats["total_trades"] == 2
    assert stats["volume_drops"] == 420
