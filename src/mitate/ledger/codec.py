"""MITATE memo envelope and 160-bit outcome currency codes.

Every MITATE transaction carries one Memo whose fields are uppercase hex of
UTF-8 text: MemoType "MITATE", MemoFormat "application/json", MemoData the
compact JSON envelope {v, type, marketId, ..., timestamp}.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

log = structlog.get_logger(__name__)

MEMO_TYPE = "MITATE"
MEMO_FORMAT = "application/json"
MEMO_VERSION = 1

MemoKind = Literal["market", "bet", "mint", "offer", "resolve", "payout", "cancel", "escrow_pool", "burn"]
MEMO_KINDS: frozenset[str] = frozenset(MemoKind.__args__)

CURRENCY_PREFIX = 0x02
CURRENCY_BYTES = 20
OUTCOME_KEYS = ("A", "B", "C", "D", "E")
LEGACY_KEYS = ("YES", "NO")
_SHORT_REF_LEN = 8


class MemoEnvelope(BaseModel):
    """Decoded MemoData. Unknown extra keys are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    v: Literal[1]
    type: MemoKind
    market_id: str = Field(..., alias="marketId")
    outcome_id: str | None = Field(None, alias="outcomeId")
    outcome: str | None = None
    amount: str | None = None
    creator: str | None = None
    timestamp: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class CurrencyLabel(BaseModel):
    """Parsed currency code: market reference and outcome key."""

    market_ref: str
    outcome_key: str


def to_hex(text: str) -> str:
    return text.encode("utf-8").hex().upper()


def from_hex(value: str) -> str:
    """Decode hex to UTF-8 text. Raises ValueError on bad hex or bad UTF-8."""
    return bytes.fromhex(value).decode("utf-8")


def outcome_key(index: int) -> str:
    """Outcome key for display position index: 0 -> "A" ... 4 -> "E"."""
    if not 0 <= index < len(OUTCOME_KEYS):
        raise ValueError(f"Outcome index out of range: {index}")
    return OUTCOME_KEYS[index]


def encode_currency(market_id: str, key: str) -> str:
    """Encode the 40-hex-char currency code for one outcome of a market."""
    ref = market_id if key in LEGACY_KEYS else market_id[:_SHORT_REF_LEN]
    label = f"{ref}:{key}".encode("utf-8")
    if len(label) > CURRENCY_BYTES - 1:
        raise ValueError(f"Currency label too long ({len(label)} bytes): {ref}:{key}")
    buf = bytes([CURRENCY_PREFIX]) + label.ljust(CURRENCY_BYTES - 1, b"\x00")
    return buf.hex().upper()


def decode_currency(code: str) -> CurrencyLabel | None:
    """Parse a currency code produced by encode_currency; None if it is not one."""
    if not isinstance(code, str) or len(code) != CURRENCY_BYTES * 2:
        return None
    try:
        buf = bytes.fromhex(code)
    except ValueError:
        return None
    if buf[0] != CURRENCY_PREFIX:
        return None
    try:
        label = buf[1:].rstrip(b"\x00").decode("utf-8")
    except UnicodeDecodeError:
        return None
    ref, sep, key = label.rpartition(":")
    if not sep or not ref or not key:
        return None
    return CurrencyLabel(market_ref=ref, outcome_key=key)


def iso_timestamp(at: datetime | None = None) -> str:
    """UTC ISO-8601 with milliseconds and a Z suffix."""
    at = (at or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return at.strftime("%Y-%m-%dT%H:%M:%S.") + f"{at.microsecond // 1000:03d}Z"


def build_envelope(kind: str, market_id: str, timestamp: str | None = None, **extra: Any) -> dict[str, Any]:
    """Ordered envelope {v, type, marketId, ...extra, timestamp}; None extras dropped."""
    if kind not in MEMO_KINDS:
        raise ValueError(f"Unknown memo type: {kind}")
    envelope: dict[str, Any] = {"v": MEMO_VERSION, "type": kind, "marketId": market_id}
    for key, value in extra.items():
        if value is not None:
            envelope[key] = value
    envelope["timestamp"] = timestamp or iso_timestamp()
    return envelope


def memo_json(envelope: dict[str, Any]) -> str:
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)


def encode_memo(envelope: dict[str, Any]) -> dict[str, dict[str, str]]:
    """Wrap an envelope as a ledger Memo object."""
    return {
        "Memo": {
            "MemoType": to_hex(MEMO_TYPE),
            "MemoFormat": to_hex(MEMO_FORMAT),
            "MemoData": to_hex(memo_json(envelope)),
        }
    }


def _memo_fields(memo: Any) -> dict[str, Any] | None:
    if not isinstance(memo, dict):
        return None
    inner = memo.get("Memo", memo)
    return inner if isinstance(inner, dict) else None


def is_mitate_memo(memo: Any) -> bool:
    fields = _memo_fields(memo)
    if fields is None:
        return False
    memo_type = fields.get("MemoType")
    if not isinstance(memo_type, str):
        return False
    try:
        return from_hex(memo_type) == MEMO_TYPE
    except ValueError:
        return False


def decode_memo(memo: Any) -> MemoEnvelope | None:
    """Decode a ledger Memo. None for anything that is not a valid MITATE v1 envelope."""
    if not is_mitate_memo(memo):
        return None
    data = _memo_fields(memo).get("MemoData")
    if not isinstance(data, str):
        return None
    try:
        raw = json.loads(from_hex(data))
    except ValueError:
        return None
    if not isinstance(raw, dict):
        return None
    try:
        return MemoEnvelope.model_validate(raw)
    except PydanticValidationError as e:
        log.debug("memo_rejected", errors=e.error_count())
        return None


def find_mitate_memo(memos: Any) -> MemoEnvelope | None:
    """First decodable MITATE memo in a transaction's Memos array."""
    if not isinstance(memos, list):
        return None
    for memo in memos:
        envelope = decode_memo(memo)
        if envelope is not None:
            return envelope
    return None
