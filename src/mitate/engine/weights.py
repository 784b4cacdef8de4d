"""Attribute weight score and weight-adjusted (effective) bet amounts."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mitate.models import UserAttribute

MIN_WEIGHT = 0.5
MAX_WEIGHT = 3.0
NEUTRAL_WEIGHT = 1.0


def score(attributes: Iterable[UserAttribute | float]) -> float:
    """clamp(1.0 + sum(weight - 1.0)) to [0.5, 3.0]. No attributes -> 1.0."""
    total = NEUTRAL_WEIGHT
    for attr in attributes:
        weight = attr if isinstance(attr, (int, float)) else attr.weight
        total += weight - NEUTRAL_WEIGHT
    return max(MIN_WEIGHT, min(MAX_WEIGHT, total))


def effective_amount(amount: int, weight: float) -> int:
    """round-half-up(amount * weight) in exact decimal arithmetic."""
    factor = Decimal(str(weight))
    with localcontext() as ctx:
        # precision covers every digit of the product
        ctx.prec = len(str(abs(int(amount)))) + len(factor.as_tuple().digits) + 2
        product = Decimal(int(amount)) * factor
        return int(product.quantize(Decimal(1), rounding=ROUND_HALF_UP))
