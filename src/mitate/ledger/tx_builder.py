"""Unsigned ledger transaction builders.

Each builder returns a plain JSON-serializable dict ready for autofill, signing
and submission by an external wallet. Every transaction carries one MITATE memo.
XRP amounts are drop strings; issued-currency amounts are {currency, issuer, value}.
"""

from __future__ import annotations

import time
from typing import Any

from mitate.ledger.codec import build_envelope, encode_memo

LEDGER_EPOCH_OFFSET = 946684800  # 2000-01-01T00:00:00Z in Unix seconds


def to_ledger_time(ms: int) -> int:
    """Unix milliseconds -> ledger epoch seconds."""
    return ms // 1000 - LEDGER_EPOCH_OFFSET


def from_ledger_time(seconds: int) -> int:
    """Ledger epoch seconds -> Unix milliseconds."""
    return (seconds + LEDGER_EPOCH_OFFSET) * 1000


def drops(amount: int) -> str:
    if amount < 0:
        raise ValueError(f"Negative amount: {amount}")
    return str(int(amount))


def issued_amount(currency: str, issuer: str, value: int | str) -> dict[str, str]:
    return {"currency": currency, "issuer": issuer, "value": str(value)}


def _memos(kind: str, market_id: str, **extra: Any) -> list[dict[str, Any]]:
    return [encode_memo(build_envelope(kind, market_id, **extra))]


# --- Escrow ---


def build_escrow_create(
    account: str,
    amount: int,
    cancel_after: int,
    market_id: str,
    finish_after: int | None = None,
    destination_tag: int | None = None,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Self-escrow holding the market pool. cancel_after/finish_after are ledger epoch seconds."""
    if finish_after is None:
        finish_after = to_ledger_time(now_ms if now_ms is not None else int(time.time() * 1000))
    tx: dict[str, Any] = {
        "TransactionType": "EscrowCreate",
        "Account": account,
        "Destination": account,
        "Amount": drops(amount),
        "CancelAfter": cancel_after,
        "FinishAfter": finish_after,
        "Memos": _memos("escrow_pool", market_id),
    }
    if destination_tag is not None:
        tx["DestinationTag"] = destination_tag
    return tx


def build_escrow_finish(
    account: str,
    offer_sequence: int,
    market_id: str,
    outcome_id: str | None = None,
    outcome: str | None = None,
) -> dict[str, Any]:
    return {
        "TransactionType": "EscrowFinish",
        "Account": account,
        "Owner": account,
        "OfferSequence": offer_sequence,
        "Memos": _memos("resolve", market_id, outcome=outcome, outcomeId=outcome_id),
    }


def build_escrow_cancel(account: str, offer_sequence: int, market_id: str) -> dict[str, Any]:
    return {
        "TransactionType": "EscrowCancel",
        "Account": account,
        "Owner": account,
        "OfferSequence": offer_sequence,
        "Memos": _memos("cancel", market_id),
    }


# --- Payments ---


def build_bet_payment(
    account: str,
    destination: str,
    amount: int,
    market_id: str,
    outcome_id: str | None = None,
    outcome: str | None = None,
) -> dict[str, Any]:
    """Bettor -> operator stake. Either outcome_id or a legacy YES/NO outcome."""
    return {
        "TransactionType": "Payment",
        "Account": account,
        "Destination": destination,
        "Amount": drops(amount),
        "Memos": _memos("bet", market_id, outcome=outcome, outcomeId=outcome_id, amount=drops(amount)),
    }


def build_mint_payment(
    issuer: str,
    destination: str,
    market_id: str,
    currency_code: str,
    token_value: int | str,
    outcome_id: str | None = None,
    outcome: str | None = None,
) -> dict[str, Any]:
    """Issuer -> bettor outcome tokens."""
    return {
        "TransactionType": "Payment",
        "Account": issuer,
        "Destination": destination,
        "Amount": issued_amount(currency_code, issuer, token_value),
        "Memos": _memos("mint", market_id, outcome=outcome, outcomeId=outcome_id, amount=str(token_value)),
    }


def build_payout_payment(
    account: str,
    destination: str,
    amount: int,
    market_id: str,
    outcome_id: str | None = None,
    outcome: str | None = None,
) -> dict[str, Any]:
    """Operator -> winner payout."""
    return {
        "TransactionType": "Payment",
        "Account": account,
        "Destination": destination,
        "Amount": drops(amount),
        "Memos": _memos("payout", market_id, outcome=outcome, outcomeId=outcome_id, amount=drops(amount)),
    }


# --- Trust lines and offers ---


def build_trust_set(
    account: str,
    issuer: str,
    market_id: str,
    currency_code: str,
    limit_value: int | str,
    outcome_id: str | None = None,
    outcome: str | None = None,
) -> dict[str, Any]:
    return {
        "TransactionType": "TrustSet",
        "Account": account,
        "LimitAmount": issued_amount(currency_code, issuer, limit_value),
        "Memos": _memos("bet", market_id, outcome=outcome, outcomeId=outcome_id),
    }


def build_offer_create(
    account: str,
    issuer: str,
    market_id: str,
    currency_code: str,
    token_value: int | str,
    base_amount: int,
    side: str = "sell",
    expiration: int | None = None,
    outcome_id: str | None = None,
) -> dict[str, Any]:
    """DEX offer for outcome tokens. Sell gives tokens for drops; buy the reverse."""
    tokens = issued_amount(currency_code, issuer, token_value)
    if side == "sell":
        taker_gets, taker_pays = tokens, drops(base_amount)
    elif side == "buy":
        taker_gets, taker_pays = drops(base_amount), tokens
    else:
        raise ValueError(f"side must be 'sell' or 'buy', got {side!r}")
    tx: dict[str, Any] = {
        "TransactionType": "OfferCreate",
        "Account": account,
        "TakerGets": taker_gets,
        "TakerPays": taker_pays,
        "Memos": _memos("offer", market_id, outcomeId=outcome_id, side=side),
    }
    if expiration is not None:
        tx["Expiration"] = expiration
    return tx
