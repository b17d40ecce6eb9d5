"""
Decimal helpers for amounts, quantities and unit costs.

Storage precision (mirrors the Numeric columns in models):
- money:     2 places   (totals, prices, discounts, refunds, cost_total)
- quantity:  3 places   (fractional units down to 0.001 are sellable)
- unit cost: 4 places   (layer unit_cost, avg_cost)

Rounding is half-up everywhere.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")
UNIT_COST_PLACES = Decimal("0.0001")

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/float/Decimal/None to Decimal (None -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"cannot convert {value!r} to Decimal")
    if isinstance(value, float):
        # repr() round-trips the shortest representation, avoiding binary noise
        return Decimal(repr(value))
    return Decimal(str(value).strip())


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def quantity(value: Any) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def unit_cost(value: Any) -> Decimal:
    return to_decimal(value).quantize(UNIT_COST_PLACES, rounding=ROUND_HALF_UP)


def as_str(value: Decimal | None) -> str | None:
    """JSON-friendly rendering; keeps exact precision."""
    if value is None:
        return None
    return str(value)
