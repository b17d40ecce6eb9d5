# Overview: FIFO cost layers: consumption by sales, replenishment by receives and reversals.

"""
FIFO cost layer invariants

- A layer is created for every stock-increasing event: initial stock,
  receive (purchase), and reversal (cancel / return).
- Layers are consumed oldest first: received_at, then created_at, then id.
- remaining_quantity only ever decreases; 0 <= remaining <= initial.
- Layers are never deleted and never re-expanded. A reversal creates a new
  layer at the sale item's stored avg_cost, so it is cost-neutral no matter
  how the ledger moved since the sale.

Fallback pricing:
- If the open layers cannot cover the requested quantity (untracked initial
  stock, manual count corrections), the shortfall is costed at the product's
  current cost_price. The sale still goes through; FifoCost.fallback_quantity
  reports how much was costed this way and a warning is logged.
- If the layers cannot be read at all, the whole quantity is costed at
  cost_price. The read runs in a savepoint so the enclosing unit of work
  survives the failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, StockCostLayer
from ..models.inventory import LAYER_SOURCE_RETURN, LAYER_SOURCE_TYPES
from .. import money
from .concurrency import lock_for_update


@dataclass(frozen=True)
class CostFragment:
    quantity: Decimal
    unit_cost: Decimal

    def to_json(self) -> dict:
        return {"quantity": str(self.quantity), "unit_cost": str(self.unit_cost)}


@dataclass(frozen=True)
class FifoCost:
    cost_total: Decimal
    avg_cost: Decimal
    basis: list[CostFragment] = field(default_factory=list)
    fallback_quantity: Decimal = money.ZERO

    @property
    def used_fallback(self) -> bool:
        return self.fallback_quantity > 0

    def basis_json(self) -> list[dict]:
        return [fragment.to_json() for fragment in self.basis]


def _fallback_unit_cost(product_id: int) -> Decimal:
    product = db.session.get(Product, product_id)
    return money.unit_cost(product.cost_price if product is not None else 0)


def _summarize(basis: list[CostFragment], quantity_needed: Decimal, fallback_quantity: Decimal) -> FifoCost:
    cost_total = money.money(sum((f.quantity * f.unit_cost for f in basis), money.ZERO))
    avg_cost = money.unit_cost(cost_total / quantity_needed) if quantity_needed > 0 else money.ZERO
    return FifoCost(
        cost_total=cost_total,
        avg_cost=avg_cost,
        basis=basis,
        fallback_quantity=money.quantity(fallback_quantity),
    )


def _open_layers(shop_id: int, product_id: int) -> list[StockCostLayer]:
    q = db.session.query(StockCostLayer).filter(
        StockCostLayer.shop_id == shop_id,
        StockCostLayer.product_id == product_id,
        StockCostLayer.remaining_quantity > 0,
    ).order_by(
        StockCostLayer.received_at.asc(),
        StockCostLayer.created_at.asc(),
        StockCostLayer.id.asc(),
    )
    return lock_for_update(q).all()


def consume_fifo(shop_id: int, product_id: int, quantity_needed) -> FifoCost:
    """
    Drain open layers oldest-first for quantity_needed units.

    Returns cost_total (2dp), avg_cost (4dp), the ordered basis, and the
    fallback quantity costed at the catalog cost_price.
    """
    quantity_needed = money.quantity(quantity_needed)
    if quantity_needed <= 0:
        return FifoCost(cost_total=money.money(0), avg_cost=money.unit_cost(0))

    try:
        with db.session.begin_nested():
            layers = _open_layers(shop_id, product_id)
    except SQLAlchemyError:
        fallback = _fallback_unit_cost(product_id)
        current_app.logger.warning(
            "Cost layers unreadable for product_id=%s; costing %s units at cost_price %s",
            product_id, quantity_needed, fallback,
            exc_info=True,
        )
        return _summarize([CostFragment(quantity_needed, fallback)], quantity_needed, quantity_needed)

    still_needed = quantity_needed
    basis: list[CostFragment] = []
    for layer in layers:
        if still_needed <= 0:
            break
        layer_remaining = money.quantity(layer.remaining_quantity)
        if layer_remaining <= 0:
            continue
        take = min(still_needed, layer_remaining)
        layer.remaining_quantity = money.quantity(layer_remaining - take)
        still_needed -= take
        basis.append(CostFragment(money.quantity(take), money.unit_cost(layer.unit_cost)))

    fallback_quantity = money.ZERO
    if still_needed > 0:
        fallback = _fallback_unit_cost(product_id)
        fallback_quantity = money.quantity(still_needed)
        basis.append(CostFragment(fallback_quantity, fallback))
        current_app.logger.warning(
            "Cost layers exhausted for product_id=%s; %s of %s units costed at cost_price %s",
            product_id, fallback_quantity, quantity_needed, fallback,
        )

    db.session.flush()
    return _summarize(basis, quantity_needed, fallback_quantity)


def add_cost_layer(
    *,
    shop_id: int,
    product_id: int,
    actor_id: int | None,
    quantity,
    unit_cost,
    source_type: str,
    source_id: str | None = None,
) -> StockCostLayer | None:
    """Open a new layer. No-op (None) when quantity <= 0."""
    if source_type not in LAYER_SOURCE_TYPES:
        raise ValueError(f"unknown cost layer source_type: {source_type}")
    quantity = money.quantity(quantity)
    if quantity <= 0:
        return None

    layer = StockCostLayer(
        shop_id=shop_id,
        product_id=product_id,
        source_type=source_type,
        source_id=str(source_id) if source_id is not None else None,
        unit_cost=money.unit_cost(unit_cost),
        initial_quantity=quantity,
        remaining_quantity=quantity,
        created_by_user_id=actor_id,
    )
    db.session.add(layer)
    db.session.flush()
    return layer


def restore_from_reversal(
    *,
    shop_id: int,
    product_id: int,
    actor_id: int | None,
    quantity,
    unit_cost,
    source_id,
) -> StockCostLayer | None:
    """
    Put reversed units back as a fresh 'return' layer.

    unit_cost is the sale item's stored avg_cost, never re-derived from
    the current ledger.
    """
    return add_cost_layer(
        shop_id=shop_id,
        product_id=product_id,
        actor_id=actor_id,
        quantity=quantity,
        unit_cost=unit_cost,
        source_type=LAYER_SOURCE_RETURN,
        source_id=str(source_id),
    )


def list_layers(shop_id: int, product_id: int, *, open_only: bool = False) -> list[StockCostLayer]:
    q = db.session.query(StockCostLayer).filter_by(shop_id=shop_id, product_id=product_id)
    if open_only:
        q = q.filter(StockCostLayer.remaining_quantity > 0)
    return q.order_by(
        StockCostLayer.received_at.asc(),
        StockCostLayer.created_at.asc(),
        StockCostLayer.id.asc(),
    ).all()


def remaining_quantity(shop_id: int, product_id: int) -> Decimal:
    """Units still covered by layers; compare with Product.stock_quantity to spot drift."""
    total = db.session.query(
        func.coalesce(func.sum(StockCostLayer.remaining_quantity), 0)
    ).filter(
        StockCostLayer.shop_id == shop_id,
        StockCostLayer.product_id == product_id,
    ).scalar()
    return money.quantity(total or 0)
