"""Bet placement, confirmation idempotency, attributes and mint."""

import threading

import pytest

from mitate.errors import ConflictError, NotFoundError, ValidationError
from mitate.ledger.codec import decode_memo
from mitate.models import BetStatus
from mitate.service import SettlementService
from mitate.storage.db import now_ms

from conftest import ISSUER, OPERATOR, confirmed_bet, open_market


def _totals(service, market_id):
    view = service.markets.get_market_with_outcomes(market_id)
    return view.pool_total, [o.total_amount for o in view.outcomes]


def test_place_bet_builds_trust_set_and_payment(service):
    market, outcomes = open_market(service)
    placed = service.bets.place_bet(market.id, outcomes[0].id, 500, "rAlice")
    assert placed.bet.status == BetStatus.PENDING
    assert placed.weight_score == 1.0
    assert placed.effective_amount == 500

    trust = placed.trust_set_tx
    assert trust["TransactionType"] == "TrustSet"
    assert trust["LimitAmount"] == {"currency": outcomes[0].currency_code, "issuer": ISSUER, "value": "500"}

    pay = placed.payment_tx
    assert pay["Account"] == "rAlice"
    assert pay["Destination"] == OPERATOR
    assert pay["Amount"] == "500"
    memo = decode_memo(pay["Memos"][0])
    assert memo.type == "bet" and memo.outcome_id == outcomes[0].id
    assert '"type":"bet"' in placed.bet.memo_json
    # nothing credited yet
    assert _totals(service, market.id) == (0, [0, 0])


def test_place_bet_applies_weight(service):
    market, outcomes = open_market(service)
    service.bets.add_attribute("rAlice", "expertise", "meteorology", 1.5)
    service.bets.add_attribute("rAlice", "region", "Kanto", 1.2)
    placed = service.bets.place_bet(market.id, outcomes[0].id, 1000, "rAlice")
    assert placed.weight_score == pytest.approx(1.7)
    assert placed.effective_amount == 1700
    assert placed.bet.effective_amount == 1700


@pytest.mark.parametrize("amount", [0, -5, True])
def test_place_bet_rejects_bad_amount(service, amount):
    market, outcomes = open_market(service)
    with pytest.raises(ValidationError):
        service.bets.place_bet(market.id, outcomes[0].id, amount, "rAlice")


def test_place_bet_rejects_foreign_outcome_and_closed_market(service):
    market, outcomes = open_market(service)
    other, other_outcomes = open_market(service)
    with pytest.raises(ValidationError):
        service.bets.place_bet(market.id, other_outcomes[0].id, 10, "rAlice")
    with pytest.raises(NotFoundError):
        service.bets.place_bet("nope", outcomes[0].id, 10, "rAlice")
    with pytest.raises(ValidationError):
        service.bets.place_bet(market.id, outcomes[0].id, 10, "rAlice", now_ms=market.betting_deadline + 1000)
    service.markets.close(other.id)
    with pytest.raises(ValidationError):
        service.bets.place_bet(other.id, other_outcomes[0].id, 10, "rAlice")


def test_place_bet_one_second_before_deadline(service):
    market, outcomes = open_market(service)
    placed = service.bets.place_bet(market.id, outcomes[1].id, 10, "rBob", now_ms=market.betting_deadline - 1000)
    assert placed.bet.status == BetStatus.PENDING


def test_confirm_bet_updates_totals_once(service):
    market, outcomes = open_market(service)
    placed = service.bets.place_bet(market.id, outcomes[0].id, 700, "rAlice")
    bet = service.bets.confirm_bet(placed.bet.id, "PAYHASH1")
    assert bet.status == BetStatus.CONFIRMED
    assert bet.payment_tx == "PAYHASH1"
    assert _totals(service, market.id) == (700, [700, 0])
    assert service.escrows.get_open(market.id).amount == 701

    again = service.bets.confirm_bet(placed.bet.id, "PAYHASH1")
    assert again.status == BetStatus.CONFIRMED
    assert _totals(service, market.id) == (700, [700, 0])
    assert service.escrows.get_open(market.id).amount == 701


def test_confirm_bet_rejects_reused_hash(service):
    market, outcomes = open_market(service)
    confirmed_bet(service, market.id, outcomes[0].id, 100, "rAlice", "HASH")
    other = service.bets.place_bet(market.id, outcomes[1].id, 50, "rBob")
    with pytest.raises(ConflictError):
        service.bets.confirm_bet(other.bet.id, "HASH")
    assert service.bets.get_bet(other.bet.id).status == BetStatus.PENDING
    assert _totals(service, market.id) == (100, [100, 0])


def test_confirm_bet_rejects_second_hash_and_unknown(service):
    market, outcomes = open_market(service)
    bet = confirmed_bet(service, market.id, outcomes[0].id, 100, "rAlice", "H1")
    with pytest.raises(ConflictError):
        service.bets.confirm_bet(bet.id, "H2")
    with pytest.raises(NotFoundError):
        service.bets.confirm_bet("missing", "H3")


def test_confirm_after_close_still_credits(service):
    market, outcomes = open_market(service)
    placed = service.bets.place_bet(market.id, outcomes[1].id, 40, "rBob")
    service.markets.close(market.id)
    service.bets.confirm_bet(placed.bet.id, "LATE")
    assert _totals(service, market.id) == (40, [0, 40])


def test_pool_equals_sum_of_outcomes(service):
    market, outcomes = open_market(service, outcomes=["x", "y", "z"])
    for i, (idx, amount) in enumerate([(0, 10), (1, 25), (2, 5), (0, 60)]):
        confirmed_bet(service, market.id, outcomes[idx].id, amount, f"rU{i}", f"P{i}")
    pool, totals = _totals(service, market.id)
    assert pool == sum(totals) == 100
    assert totals == [70, 25, 5]


def test_preview_and_quote(service):
    market, outcomes = open_market(service)
    confirmed_bet(service, market.id, outcomes[0].id, 600, "rA", "P1")
    confirmed_bet(service, market.id, outcomes[1].id, 300, "rB", "P2")
    # new pool 1000, new A total 700
    assert service.bets.preview_payout(market.id, outcomes[0].id, 100) == 142
    service.bets.add_attribute("rC", "experience", "5y", 2.0)
    q = service.bets.quote(market.id, outcomes[0].id, 100, bettor="rC")
    assert q.weight_score == 2.0
    assert q.effective_amount == 200
    assert q.potential_payout == 142


def test_mint_flow(service):
    market, outcomes = open_market(service)
    placed = service.bets.place_bet(market.id, outcomes[0].id, 80, "rAlice")
    with pytest.raises(ConflictError):
        service.bets.build_mint_tx(placed.bet.id)
    service.bets.confirm_bet(placed.bet.id, "P")
    tx = service.bets.build_mint_tx(placed.bet.id)
    assert tx["Account"] == ISSUER
    assert tx["Destination"] == "rAlice"
    assert tx["Amount"]["value"] == "80"
    assert tx["Amount"]["currency"] == outcomes[0].currency_code
    bet = service.bets.mark_minted(placed.bet.id, "MINT")
    assert bet.mint_tx == "MINT"
    with pytest.raises(ConflictError):
        service.bets.build_mint_tx(placed.bet.id)


def test_failed_and_refunded(service):
    market, outcomes = open_market(service)
    pending = service.bets.place_bet(market.id, outcomes[0].id, 5, "rA")
    assert service.bets.mark_failed(pending.bet.id).status == BetStatus.FAILED
    with pytest.raises(ConflictError):
        service.bets.mark_failed(pending.bet.id)

    bet = confirmed_bet(service, market.id, outcomes[0].id, 5, "rB", "P")
    with pytest.raises(ConflictError):
        service.bets.mark_refunded(bet.id)
    service.markets.close(market.id)
    service.settlement.cancel(market.id)
    assert service.bets.mark_refunded(bet.id).status == BetStatus.REFUNDED


def test_listing(service):
    market, outcomes = open_market(service)
    confirmed_bet(service, market.id, outcomes[0].id, 5, "rA", "P")
    service.bets.place_bet(market.id, outcomes[1].id, 6, "rA")
    assert len(service.bets.list_bets(market.id)) == 2
    assert len(service.bets.list_bets(market.id, status=BetStatus.CONFIRMED)) == 1
    assert len(service.bets.list_bets_for_bettor("rA")) == 2


def test_attributes(service):
    service.bets.add_attribute("rA", "region", "Kansai", 1.3)
    service.bets.add_attribute("rA", "region", "Kansai", 1.4)
    attrs = service.bets.list_attributes("rA")
    assert len(attrs) == 1 and attrs[0].weight == 1.4
    with pytest.raises(ValidationError):
        service.bets.add_attribute("rA", "region", "X", 3.5)
    with pytest.raises(ValidationError):
        service.bets.add_attribute("rA", "zodiac", "Leo", 1.0)
    service.bets.remove_attribute("rA", "region", "Kansai")
    assert service.bets.weight_score_for("rA") == 1.0
    with pytest.raises(NotFoundError):
        service.bets.remove_attribute("rA", "region", "Kansai")


def test_bet_at_deadline_now(service):
    market, outcomes = open_market(service, deadline=now_ms() + 60_000)
    assert service.bets.place_bet(market.id, outcomes[0].id, 1, "rA").bet.amount == 1


def test_place_bet_large_amount_with_max_weight(service):
    market, outcomes = open_market(service)
    service.bets.add_attribute("rBig", "expertise", "everything", 3.0)
    amount = 10**28 + 1
    placed = service.bets.place_bet(market.id, outcomes[0].id, amount, "rBig")
    assert placed.weight_score == 3.0
    assert placed.effective_amount == 3 * amount
    assert placed.bet.amount == amount


def test_concurrent_confirms_credit_pool_once(service, settings, temp_db):
    market, outcomes = open_market(service)
    placed = service.bets.place_bet(market.id, outcomes[0].id, 250, "rAlice")
    handles = [temp_db.cursor(), temp_db.cursor()]
    books = [SettlementService(settings, db=h).bets for h in handles]
    barrier = threading.Barrier(len(books))
    results, errors = [], []

    def confirm(book):
        barrier.wait()
        try:
            results.append(book.confirm_bet(placed.bet.id, "SAMEPAY"))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=confirm, args=(b,)) for b in books]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    for h in handles:
        h.close()

    assert errors == []
    assert [b.status for b in results] == [BetStatus.CONFIRMED, BetStatus.CONFIRMED]
    assert _totals(service, market.id) == (250, [250, 0])
    assert service.escrows.get_open(market.id).amount == 251
