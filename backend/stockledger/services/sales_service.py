# Overview: Sale transactions: create, cancel, partial return and partial refund.

"""
Sale lifecycle

    completed --cancel--> cancelled (terminal)

Returns and partial refunds only move SaleItem.returned_quantity and
Sale.refunded_amount; they never change status.

Every mutating operation runs as one serialized unit of work: stock,
cost layers, sale rows and customer credit either all change or none do.
Stock movement rows are the exception: they are best-effort audit and a
failure to write one never fails the sale.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    RefundExceedsAvailableError,
    ReturnExceedsAvailableError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, Sale, SaleItem, SaleRefund, SaleReturn
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_RETURN, MOVEMENT_SALE
from ..models.sales import (
    PAYMENT_METHOD_CREDIT,
    PAYMENT_METHODS,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
)
from ..validation import RefundInput, ReturnInput, SaleInput
from stockledger.time_utils import utcnow
from .. import money
from . import catalog_service, cost_layer_service, credit_service, movement_service
from .concurrency import lock_for_update, run_with_retry, serialized_unit_of_work
from .numbering import generate_sale_number


def _get_sale_locked(sale_id: int, shop_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None or sale.shop_id != shop_id:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id, "shop_id": shop_id})
    return sale


def _require_completed(sale: Sale, message: str) -> None:
    if sale.status != SALE_STATUS_COMPLETED:
        raise InvalidStateError(message, details={"sale_id": sale.id, "status": sale.status})


def _check_sale_input(sale_input: SaleInput) -> None:
    if not sale_input.items:
        raise ValidationError("Sale must contain at least one item")
    if sale_input.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    if money.to_decimal(sale_input.discount_amount) < 0 or money.to_decimal(sale_input.tax_amount) < 0:
        raise ValidationError("discount_amount and tax_amount must be >= 0")
    for index, item in enumerate(sale_input.items):
        if money.quantity(item.quantity) <= 0:
            raise ValidationError(f"items[{index}].quantity must be > 0")
        if money.to_decimal(item.unit_price) < 0 or money.to_decimal(item.discount_amount) < 0:
            raise ValidationError(f"items[{index}] unit_price and discount_amount must be >= 0")


def _validate_on_hand(shop_id: int, sale_input: SaleInput) -> dict[int, Product]:
    """
    Lock every product on the sale and check stock against the aggregated
    requested quantity (the same product may appear on several lines).

    Nothing is mutated here.
    """
    products: dict[int, Product] = {}
    requested: dict[int, Decimal] = {}
    for item in sale_input.items:
        if item.product_id not in products:
            products[item.product_id] = catalog_service.get_product(shop_id, item.product_id, lock=True)
        requested[item.product_id] = requested.get(item.product_id, money.ZERO) + money.quantity(item.quantity)

    for product_id, qty in requested.items():
        product = products[product_id]
        available = money.quantity(product.stock_quantity)
        if available < qty:
            raise InsufficientStockError(
                f"Insufficient stock for product {product.name}. Available: {available}",
                details={
                    "product_id": product_id,
                    "requested_quantity": str(qty),
                    "available_quantity": str(available),
                },
            )
    return products


def _line_total(item) -> Decimal:
    return money.money(
        money.to_decimal(item.unit_price) * money.quantity(item.quantity)
        - money.to_decimal(item.discount_amount)
    )


def create_sale(shop_id: int, actor_id: int | None, sale_input: SaleInput) -> Sale:
    """
    Record a completed sale.

    Validation happens before any write: every product must belong to the
    shop and have enough stock for the summed quantity of its lines. Each
    line then takes stock off atomically, drains FIFO cost layers, and
    stores its cost of goods. Credit sales charge the customer's balance.
    """
    _check_sale_input(sale_input)

    def _op():
        with serialized_unit_of_work("create_sale") as deadline:
            catalog_service.get_shop(shop_id)
            products = _validate_on_hand(shop_id, sale_input)

            customer = None
            if sale_input.customer_id is not None:
                customer = credit_service.get_customer(shop_id, sale_input.customer_id, lock=True)

            total_amount = money.money(sum((_line_total(item) for item in sale_input.items), money.ZERO))
            discount_amount = money.money(sale_input.discount_amount)
            tax_amount = money.money(sale_input.tax_amount)
            final_amount = money.money(total_amount - discount_amount + tax_amount)
            if final_amount < 0:
                raise ValidationError(
                    "Sale discount exceeds the sale total",
                    details={"total_amount": str(total_amount), "discount_amount": str(discount_amount)},
                )

            sale_number = sale_input.sale_number or generate_sale_number()
            if db.session.query(Sale.id).filter_by(sale_number=sale_number).first() is not None:
                raise ValidationError("Sale number already exists", details={"sale_number": sale_number})

            sale = Sale(
                shop_id=shop_id,
                customer_id=customer.id if customer is not None else None,
                sale_number=sale_number,
                total_amount=total_amount,
                discount_amount=discount_amount,
                tax_amount=tax_amount,
                final_amount=final_amount,
                refunded_amount=money.money(0),
                payment_method=sale_input.payment_method,
                status=SALE_STATUS_COMPLETED,
                notes=sale_input.notes,
                created_by_user_id=actor_id,
            )
            db.session.add(sale)
            db.session.flush()

            for item in sale_input.items:
                deadline.check()
                product = products[item.product_id]
                qty = money.quantity(item.quantity)

                previous, new = catalog_service.decrement_stock(product, qty)
                cost = cost_layer_service.consume_fifo(shop_id, product.id, qty)

                db.session.add(SaleItem(
                    sale_id=sale.id,
                    product_id=product.id,
                    quantity=qty,
                    unit_price=money.money(item.unit_price),
                    discount_amount=money.money(item.discount_amount),
                    total_price=_line_total(item),
                    returned_quantity=money.quantity(0),
                    cost_total=cost.cost_total,
                    avg_cost=cost.avg_cost,
                    cost_basis_json=cost.basis_json(),
                    cost_fallback_quantity=cost.fallback_quantity,
                ))
                db.session.flush()

                movement_service.record_movement_best_effort(
                    shop_id=shop_id,
                    product_id=product.id,
                    actor_id=actor_id,
                    action=MOVEMENT_SALE,
                    previous_quantity=previous,
                    new_quantity=new,
                    notes=f"Sale {sale_number}",
                )

            if sale_input.payment_method == PAYMENT_METHOD_CREDIT and customer is not None:
                credit_service.charge_credit(
                    customer,
                    final_amount,
                    actor_id=actor_id,
                    sale_id=sale.id,
                    notes=f"Sale {sale_number}",
                )

        current_app.logger.info(
            "Sale %s created: shop_id=%s items=%s final_amount=%s",
            sale.sale_number, shop_id, len(sale_input.items), final_amount,
        )
        return sale

    return run_with_retry(_op)


def cancel_sale(sale_id: int, shop_id: int, actor_id: int | None) -> Sale:
    """
    Cancel a completed sale.

    Only the units still out with the customer come back (quantity minus
    what was already returned), each into a new cost layer at the line's
    avg_cost. Credit sales release what is still unrefunded, limited to
    the balance the customer actually owes.
    """
    def _op():
        with serialized_unit_of_work("cancel_sale"):
            sale = _get_sale_locked(sale_id, shop_id)
            _require_completed(sale, "Only completed sales can be cancelled")

            for item in sale.items:
                net_quantity = money.quantity(item.returnable_quantity)
                if net_quantity <= 0:
                    continue
                product = catalog_service.get_product(shop_id, item.product_id, lock=True)
                previous, new = catalog_service.increment_stock(product, net_quantity)
                movement_service.record_movement_best_effort(
                    shop_id=shop_id,
                    product_id=product.id,
                    actor_id=actor_id,
                    action=MOVEMENT_ADJUSTMENT,
                    previous_quantity=previous,
                    new_quantity=new,
                    notes=f"Sale cancellation: {sale.sale_number}",
                )
                cost_layer_service.restore_from_reversal(
                    shop_id=shop_id,
                    product_id=product.id,
                    actor_id=actor_id,
                    quantity=net_quantity,
                    unit_cost=item.avg_cost,
                    source_id=sale.id,
                )

            if sale.payment_method == PAYMENT_METHOD_CREDIT and sale.customer_id is not None:
                customer = credit_service.get_customer(shop_id, sale.customer_id, lock=True)
                credit_service.release_credit(
                    customer,
                    max(money.ZERO, money.money(sale.refundable_amount)),
                    actor_id=actor_id,
                    sale_id=sale.id,
                    notes=f"Sale cancellation: {sale.sale_number}",
                )

            sale.status = SALE_STATUS_CANCELLED
            sale.cancelled_at = utcnow()
            sale.cancelled_by_user_id = actor_id

        current_app.logger.info("Sale %s cancelled: shop_id=%s", sale.sale_number, shop_id)
        return sale

    return run_with_retry(_op)


def return_sale_item(sale_id: int, shop_id: int, actor_id: int | None, return_input: ReturnInput) -> Sale:
    """
    Take back part of one sold line.

    The refund is quantity x unit_price, capped at what is left unrefunded
    on the sale (sale-level discounts can make the line prices add up to
    more than final_amount).
    """
    qty = money.quantity(return_input.quantity)
    if qty <= 0:
        raise ValidationError("Valid return quantity is required")

    def _op():
        with serialized_unit_of_work("return_sale_item"):
            sale = _get_sale_locked(sale_id, shop_id)
            _require_completed(sale, "Only completed sales can be adjusted")

            item = db.session.query(SaleItem).filter_by(
                id=return_input.sale_item_id,
                sale_id=sale.id,
            ).first()
            if item is None:
                raise NotFoundError(
                    "Sale item not found",
                    details={"sale_id": sale.id, "sale_item_id": return_input.sale_item_id},
                )

            available = money.quantity(item.returnable_quantity)
            if qty > available:
                raise ReturnExceedsAvailableError(
                    f"Return quantity exceeds available quantity ({available})",
                    details={
                        "sale_item_id": item.id,
                        "requested_quantity": str(qty),
                        "available_quantity": str(available),
                    },
                )

            refund_amount = min(
                money.money(qty * money.to_decimal(item.unit_price)),
                money.money(sale.refundable_amount),
            )

            item.returned_quantity = money.quantity(money.to_decimal(item.returned_quantity) + qty)
            sale.refunded_amount = money.money(money.to_decimal(sale.refunded_amount) + refund_amount)
            db.session.add(SaleReturn(
                shop_id=shop_id,
                sale_id=sale.id,
                sale_item_id=item.id,
                product_id=item.product_id,
                quantity=qty,
                amount=refund_amount,
                unit_cost=money.unit_cost(item.avg_cost),
                reason=return_input.reason,
                created_by_user_id=actor_id,
            ))

            product = catalog_service.get_product(shop_id, item.product_id, lock=True)
            previous, new = catalog_service.increment_stock(product, qty)
            movement_service.record_movement_best_effort(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                action=MOVEMENT_RETURN,
                previous_quantity=previous,
                new_quantity=new,
                notes=f"Sale return: {sale.sale_number}",
            )
            cost_layer_service.restore_from_reversal(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                quantity=qty,
                unit_cost=item.avg_cost,
                source_id=sale.id,
            )
        return sale

    return run_with_retry(_op)


def create_partial_refund(sale_id: int, shop_id: int, actor_id: int | None, refund_input: RefundInput) -> Sale:
    """Money-only refund against a completed sale; stock is untouched."""
    amount = money.money(refund_input.amount)
    if amount <= 0:
        raise ValidationError("Valid refund amount is required")

    def _op():
        with serialized_unit_of_work("create_partial_refund"):
            sale = _get_sale_locked(sale_id, shop_id)
            _require_completed(sale, "Only completed sales can be adjusted")

            available = money.money(sale.refundable_amount)
            if amount > available:
                raise RefundExceedsAvailableError(
                    f"Refund amount exceeds available net sale amount ({available})",
                    details={
                        "sale_id": sale.id,
                        "requested_amount": str(amount),
                        "available_amount": str(available),
                    },
                )

            db.session.add(SaleRefund(
                shop_id=shop_id,
                sale_id=sale.id,
                amount=amount,
                affects_stock=False,
                reason=refund_input.reason,
                created_by_user_id=actor_id,
            ))
            sale.refunded_amount = money.money(money.to_decimal(sale.refunded_amount) + amount)
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int, shop_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None or sale.shop_id != shop_id:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id, "shop_id": shop_id})
    return sale


def list_sales(
    shop_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Sale]:
    q = db.session.query(Sale).filter(Sale.shop_id == shop_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method)
    if status:
        q = q.filter(Sale.status == status)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(max(0, offset)).limit(max(0, limit)).all()


def sale_to_dict(sale: Sale) -> dict:
    """Sale with its items (and their cost of goods), customer, returns and refunds."""
    data = sale.to_dict()
    data["items"] = [item.to_dict() for item in sale.items]
    data["customer"] = sale.customer.to_dict() if sale.customer is not None else None
    data["returns"] = [r.to_dict() for r in sale.returns]
    data["refunds"] = [r.to_dict() for r in sale.refunds]
    data["cost_total"] = money.as_str(
        money.money(sum((money.to_decimal(item.cost_total) for item in sale.items), money.ZERO))
    )
    return data
