"""
Boundary parsing for engine inputs.

The engine trusts its typed inputs (SaleInput, ReturnInput, RefundInput) and
only enforces business invariants. Callers holding raw JSON-ish payloads run
them through parse_*_payload first; malformed input raises ValidationError
before anything touches the datastore.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .models.sales import PAYMENT_METHODS
from . import money

# Smallest sellable fraction of a unit
MIN_QUANTITY = Decimal("0.001")
# Maximum amount: 9,999,999,999.99 (fits Numeric(14, 2))
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    discount_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class SaleInput:
    items: list[SaleItemInput]
    payment_method: str = "cash"
    customer_id: int | None = None
    discount_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    notes: str | None = None
    # Externally generated display id; generated when omitted
    sale_number: str | None = None


@dataclass(frozen=True)
class ReturnInput:
    sale_item_id: int
    quantity: Decimal
    reason: str | None = None


@dataclass(frozen=True)
class RefundInput:
    amount: Decimal
    reason: str | None = None


def _coerce_id(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{key} must be an integer")


def _coerce_decimal(key: str, value: Any, *, minimum: Decimal | None = None) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{key} must be a number")
    try:
        dec = money.to_decimal(value)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number")
    if not dec.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    if minimum is not None and dec < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    if dec > MAX_AMOUNT:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT}")
    return dec


def _optional_text(key: str, value: Any, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text


def parse_sale_payload(payload: dict) -> SaleInput:
    """
    Validates + normalizes a sale request:

        {
          "customer_id": 7,                      # optional
          "items": [{"product_id": 1, "quantity": 2, "unit_price": "9.99",
                     "discount_amount": 0}],
          "discount_amount": 0, "tax_amount": 0,
          "payment_method": "cash",              # cash|mobile_money|bank_transfer|card|credit
          "notes": "...", "sale_number": "..."   # optional
        }
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if "product_id" not in raw:
            raise ValidationError(f"items[{index}].product_id is required")
        items.append(SaleItemInput(
            product_id=_coerce_id(f"items[{index}].product_id", raw.get("product_id")),
            quantity=money.quantity(
                _coerce_decimal(f"items[{index}].quantity", raw.get("quantity"), minimum=MIN_QUANTITY)
            ),
            unit_price=money.money(
                _coerce_decimal(f"items[{index}].unit_price", raw.get("unit_price"), minimum=Decimal("0"))
            ),
            discount_amount=money.money(
                _coerce_decimal(
                    f"items[{index}].discount_amount", raw.get("discount_amount", 0), minimum=Decimal("0")
                )
            ),
        ))

    payment_method = str(payload.get("payment_method") or "cash").strip().lower()
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}"
        )

    customer_id = payload.get("customer_id")
    if customer_id is not None:
        customer_id = _coerce_id("customer_id", customer_id)

    return SaleInput(
        items=items,
        payment_method=payment_method,
        customer_id=customer_id,
        discount_amount=money.money(
            _coerce_decimal("discount_amount", payload.get("discount_amount", 0), minimum=Decimal("0"))
        ),
        tax_amount=money.money(
            _coerce_decimal("tax_amount", payload.get("tax_amount", 0), minimum=Decimal("0"))
        ),
        notes=_optional_text("notes", payload.get("notes"), max_length=2000),
        sale_number=_optional_text("sale_number", payload.get("sale_number"), max_length=64),
    )


def parse_return_payload(payload: dict) -> ReturnInput:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if "sale_item_id" not in payload:
        raise ValidationError("sale_item_id is required")
    return ReturnInput(
        sale_item_id=_coerce_id("sale_item_id", payload.get("sale_item_id")),
        quantity=money.quantity(
            _coerce_decimal("quantity", payload.get("quantity"), minimum=MIN_QUANTITY)
        ),
        reason=_optional_text("reason", payload.get("reason")),
    )


def parse_refund_payload(payload: dict) -> RefundInput:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    amount = money.money(_coerce_decimal("amount", payload.get("amount"), minimum=Decimal("0")))
    if amount <= 0:
        raise ValidationError("amount must be > 0")
    return RefundInput(amount=amount, reason=_optional_text("reason", payload.get("reason")))
