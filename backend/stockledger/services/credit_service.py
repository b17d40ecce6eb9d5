# Overview: Customer credit balances for credit-method sales.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import CreditLimitExceededError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, CustomerCreditTransaction
from ..models.customers import (
    CREDIT_CHARGE,
    CREDIT_PAYMENT,
    CREDIT_PAYMENT_METHODS,
    CREDIT_RELEASE,
)
from .. import money
from . import catalog_service
from .concurrency import lock_for_update, run_with_retry, serialized_unit_of_work


def get_customer(shop_id: int, customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None or customer.shop_id != shop_id:
        raise NotFoundError(
            "Customer not found",
            details={"customer_id": customer_id, "shop_id": shop_id},
        )
    return customer


def create_customer(
    shop_id: int,
    *,
    name: str,
    phone: str | None = None,
    email: str | None = None,
    credit_limit=0,
) -> Customer:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    limit = money.money(credit_limit)
    if limit < 0:
        raise ValidationError("credit_limit must be >= 0")

    with serialized_unit_of_work("create_customer"):
        catalog_service.get_shop(shop_id)
        customer = Customer(
            shop_id=shop_id,
            name=name,
            phone=(phone or "").strip() or None,
            email=(email or "").strip() or None,
            credit_limit=limit,
            credit_balance=money.money(0),
        )
        db.session.add(customer)
        db.session.flush()
    return customer


def _append(
    customer: Customer,
    transaction_type: str,
    amount: Decimal,
    actor_id,
    sale_id,
    notes,
    payment_method: str | None = None,
) -> CustomerCreditTransaction:
    txn = CustomerCreditTransaction(
        customer_id=customer.id,
        shop_id=customer.shop_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_after=money.money(customer.credit_balance),
        sale_id=sale_id,
        payment_method=payment_method,
        notes=notes,
        created_by_user_id=actor_id,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def charge_credit(
    customer: Customer,
    amount,
    *,
    actor_id: int | None,
    sale_id: int | None = None,
    notes: str | None = None,
) -> CustomerCreditTransaction | None:
    """
    Add a credit sale to the customer's balance. Caller owns the transaction.

    credit_limit is only checked when ENFORCE_CREDIT_LIMIT is on; a limit of
    0 means "no limit".
    """
    amount = money.money(amount)
    if amount <= 0:
        return None

    balance = money.money(customer.credit_balance)
    new_balance = balance + amount
    limit = money.money(customer.credit_limit)
    if current_app.config.get("ENFORCE_CREDIT_LIMIT") and limit > 0 and new_balance > limit:
        raise CreditLimitExceededError(
            "Credit limit exceeded",
            details={
                "customer_id": customer.id,
                "credit_balance": str(balance),
                "credit_limit": str(limit),
                "requested_amount": str(amount),
            },
        )

    customer.credit_balance = new_balance
    return _append(customer, CREDIT_CHARGE, amount, actor_id, sale_id, notes)


def release_credit(
    customer: Customer,
    amount,
    *,
    actor_id: int | None,
    sale_id: int | None = None,
    notes: str | None = None,
) -> CustomerCreditTransaction | None:
    """
    Take a cancelled credit sale back off the balance. Caller owns the transaction.

    The balance never drops below zero: if the customer already paid part of
    the sale, only what is still outstanding is released.
    """
    amount = money.money(amount)
    if amount <= 0:
        return None

    balance = money.money(customer.credit_balance)
    released = min(amount, balance)
    if released < amount:
        current_app.logger.warning(
            "Credit release clamped at zero: customer_id=%s balance=%s requested=%s",
            customer.id, balance, amount,
        )
    if released <= 0:
        return None

    customer.credit_balance = balance - released
    return _append(customer, CREDIT_RELEASE, -released, actor_id, sale_id, notes)


def record_credit_payment(
    shop_id: int,
    customer_id: int,
    actor_id: int | None,
    amount,
    payment_method: str = "cash",
    notes: str | None = None,
) -> Customer:
    """Customer pays down outstanding credit (clamped at a zero balance)."""
    amount = money.money(amount)
    if amount <= 0:
        raise ValidationError("Invalid payment amount")
    method = (payment_method or "cash").strip().lower()
    if method not in CREDIT_PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            details={"payment_method": payment_method, "allowed": list(CREDIT_PAYMENT_METHODS)},
        )

    def _op():
        with serialized_unit_of_work("record_credit_payment"):
            customer = get_customer(shop_id, customer_id, lock=True)
            balance = money.money(customer.credit_balance)
            if balance <= 0:
                raise ValidationError(
                    "Customer has no outstanding credit",
                    details={"customer_id": customer_id},
                )
            paid = min(amount, balance)
            customer.credit_balance = balance - paid
            _append(customer, CREDIT_PAYMENT, -paid, actor_id, None, notes, payment_method=method)
        return customer

    return run_with_retry(_op)


def credit_history(shop_id: int, customer_id: int, limit: int = 50) -> list[CustomerCreditTransaction]:
    get_customer(shop_id, customer_id)
    return db.session.query(CustomerCreditTransaction).filter_by(
        customer_id=customer_id,
    ).order_by(
        CustomerCreditTransaction.created_at.desc(),
        CustomerCreditTransaction.id.desc(),
    ).limit(limit).all()
