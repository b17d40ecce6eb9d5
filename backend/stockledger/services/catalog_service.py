# Overview: Product catalog: current stock level, fallback cost, and guarded stock mutation.

"""
Catalog stock invariants

- Product.stock_quantity is the authoritative on-hand figure and is never
  negative (DB check constraint + guarded updates).
- Stock only changes through decrement_stock() / increment_stock(). They
  do the arithmetic in Decimal on the freshly read row and write the result
  with a compare-and-swap on version_id, so two concurrent sales of the
  last unit cannot both succeed. SQLite keeps Numeric as a float, so the
  datastore never computes or compares stock itself.
- Every stock-increasing entry point that brings in new goods also opens a
  cost layer; every change is followed by a best-effort movement row.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update

from ..errors import ConsistencyError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, Shop
from ..models.inventory import (
    LAYER_SOURCE_INITIAL_STOCK,
    LAYER_SOURCE_PURCHASE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_PURCHASE,
)
from .. import money
from . import cost_layer_service, movement_service
from .concurrency import lock_for_update, run_with_retry, serialized_unit_of_work


def get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        raise NotFoundError("Shop not found", details={"shop_id": shop_id})
    return shop


def get_product(
    shop_id: int,
    product_id: int,
    *,
    lock: bool = False,
    require_active: bool = False,
) -> Product:
    """
    Load a product scoped to a shop.

    A product owned by another shop is reported exactly like a missing one.
    """
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or product.shop_id != shop_id:
        raise NotFoundError(
            "Product not found in this shop",
            details={"product_id": product_id, "shop_id": shop_id},
        )
    if require_active and not product.is_active:
        raise ValidationError("Product is inactive", details={"product_id": product_id})
    return product


def _write_quantity(product: Product, current: Decimal, new_quantity: Decimal) -> None:
    """
    Compare-and-swap the stock figure on version_id.

    The new value is computed in Decimal by the caller and written as a
    literal, so the datastore's numeric type never does the arithmetic.
    Zero rows updated means another transaction changed the row since it
    was read.
    """
    version = product.version_id
    result = db.session.execute(
        update(Product)
        .where(Product.id == product.id, Product.version_id == version)
        .values(stock_quantity=new_quantity, version_id=version + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(product)
    if result.rowcount != 1:
        raise ConsistencyError(
            f"Stock for product {product.name} changed concurrently",
            details={
                "product_id": product.id,
                "expected_quantity": str(current),
                "expected_version": version,
            },
        )


def _read_quantity(product: Product) -> Decimal:
    db.session.flush()
    db.session.refresh(product)
    return money.quantity(product.stock_quantity)


def decrement_stock(product: Product, quantity) -> tuple[Decimal, Decimal]:
    """
    Take `quantity` off the product's stock.

    Reads the row, checks availability in Decimal, then writes the new
    figure guarded by version_id. Returns (previous_quantity, new_quantity).
    """
    qty = money.quantity(quantity)
    current = _read_quantity(product)
    if current < qty:
        raise InsufficientStockError(
            f"Insufficient stock for product {product.name}. Available: {current}",
            details={
                "product_id": product.id,
                "requested_quantity": str(qty),
                "available_quantity": str(current),
            },
        )
    new_quantity = current - qty
    _write_quantity(product, current, new_quantity)
    return current, new_quantity


def increment_stock(product: Product, quantity) -> tuple[Decimal, Decimal]:
    """Add `quantity` to the product's stock. Returns (previous, new)."""
    qty = money.quantity(quantity)
    current = _read_quantity(product)
    new_quantity = current + qty
    _write_quantity(product, current, new_quantity)
    return current, new_quantity


def create_product(
    shop_id: int,
    actor_id: int | None,
    *,
    name: str,
    cost_price=0,
    selling_price=0,
    stock_quantity=0,
    sku: str | None = None,
    barcode: str | None = None,
    min_stock_level=0,
) -> Product:
    """
    Create a product, optionally with opening stock.

    Opening stock gets an 'initial_stock' cost layer at cost_price and a
    'purchase' movement from 0, so FIFO costing covers it from day one.
    A barcode already carried by an active product in the shop is rejected.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    opening = money.quantity(stock_quantity)
    if opening < 0:
        raise ValidationError("stock_quantity must be >= 0")
    cost = money.unit_cost(cost_price)
    price = money.money(selling_price)
    if cost < 0 or price < 0:
        raise ValidationError("cost_price and selling_price must be >= 0")

    barcode = (barcode or "").strip() or None

    with serialized_unit_of_work("create_product"):
        get_shop(shop_id)
        if barcode:
            existing = db.session.query(Product).filter_by(
                shop_id=shop_id, barcode=barcode, is_active=True,
            ).first()
            if existing is not None:
                raise ValidationError(
                    f'Barcode already exists on product "{existing.name}". '
                    "Open that product and update stock instead.",
                    details={
                        "barcode": barcode,
                        "existing_product_id": existing.id,
                        "existing_product_name": existing.name,
                    },
                )
        product = Product(
            shop_id=shop_id,
            name=name,
            sku=(sku or "").strip() or None,
            barcode=barcode,
            cost_price=cost,
            selling_price=price,
            stock_quantity=opening,
            min_stock_level=money.quantity(min_stock_level),
        )
        db.session.add(product)
        db.session.flush()

        if opening > 0:
            cost_layer_service.add_cost_layer(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                quantity=opening,
                unit_cost=cost,
                source_type=LAYER_SOURCE_INITIAL_STOCK,
                source_id=str(product.id),
            )
            movement_service.record_movement_best_effort(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                action=MOVEMENT_PURCHASE,
                previous_quantity=money.ZERO,
                new_quantity=opening,
                notes="Initial stock",
            )
    return product


def receive_stock(
    shop_id: int,
    product_id: int,
    actor_id: int | None,
    quantity,
    unit_cost=None,
    note: str | None = None,
) -> Product:
    """
    Receive goods: stock up, new 'purchase' cost layer, 'purchase' movement.

    unit_cost defaults to the current cost_price; the applied cost becomes
    the product's new cost_price (latest receive cost is the fallback).
    """
    qty = money.quantity(quantity)
    if qty <= 0:
        raise ValidationError("quantity must be > 0")
    if unit_cost is not None and money.to_decimal(unit_cost) < 0:
        raise ValidationError("unit_cost must be >= 0")

    def _op():
        with serialized_unit_of_work("receive_stock"):
            product = get_product(shop_id, product_id, lock=True)
            applied_cost = money.unit_cost(product.cost_price if unit_cost is None else unit_cost)

            previous, new = increment_stock(product, qty)
            product.cost_price = applied_cost

            cost_layer_service.add_cost_layer(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                quantity=qty,
                unit_cost=applied_cost,
                source_type=LAYER_SOURCE_PURCHASE,
                source_id=str(product.id),
            )
            movement_service.record_movement_best_effort(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                action=MOVEMENT_PURCHASE,
                previous_quantity=previous,
                new_quantity=new,
                notes=note or "Receive stock",
            )
        return product

    return run_with_retry(_op)


def adjust_stock(
    shop_id: int,
    product_id: int,
    actor_id: int | None,
    new_quantity,
    note: str | None = None,
) -> Product:
    """
    Set stock to a counted quantity (manual correction).

    Cost layers are left alone: counted-in units without a layer are costed
    at cost_price when sold.
    """
    target = money.quantity(new_quantity)
    if target < 0:
        raise ValidationError("Stock cannot be negative")

    def _op():
        with serialized_unit_of_work("adjust_stock"):
            product = get_product(shop_id, product_id, lock=True)
            current = money.quantity(product.stock_quantity)
            diff = target - current
            if diff == 0:
                return product
            if diff > 0:
                previous, new = increment_stock(product, diff)
            else:
                previous, new = decrement_stock(product, -diff)
            movement_service.record_movement_best_effort(
                shop_id=shop_id,
                product_id=product.id,
                actor_id=actor_id,
                action=MOVEMENT_ADJUSTMENT,
                previous_quantity=previous,
                new_quantity=new,
                notes=note or f"Stock adjustment: {'+' if diff > 0 else ''}{diff}",
            )
        return product

    return run_with_retry(_op)


def list_low_stock(shop_id: int) -> list[Product]:
    """Active products at or below their minimum stock level."""
    return db.session.query(Product).filter(
        Product.shop_id == shop_id,
        Product.is_active.is_(True),
        Product.stock_quantity <= Product.min_stock_level,
    ).order_by(Product.name.asc()).all()
