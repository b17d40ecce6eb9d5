# Overview: Append-only stock movement audit trail.

"""
Stock movement log invariants

- One StockMovement row per quantity-affecting step (purchase, sale,
  adjustment, return).
- Rows are never updated or deleted.
- Writing the audit row is BEST-EFFORT: it runs inside a savepoint, and a
  datastore failure there is logged and swallowed so the enclosing sale,
  cancel, return or receive still completes. Callers that need the row
  check the return value for None.
- Reads are lazy, newest first, bounded by a limit, and restartable.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterator

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import StockMovement
from ..models.inventory import MOVEMENT_ACTIONS
from .. import money


def record_movement_best_effort(
    *,
    shop_id: int,
    product_id: int,
    actor_id: int | None,
    action: str,
    previous_quantity: Decimal,
    new_quantity: Decimal,
    notes: str | None = None,
) -> StockMovement | None:
    """
    Append one movement; never raises for datastore failures.

    Returns the flushed row, or None when the write was dropped.
    """
    if action not in MOVEMENT_ACTIONS:
        raise ValueError(f"unknown stock movement action: {action}")

    previous_quantity = money.quantity(previous_quantity)
    new_quantity = money.quantity(new_quantity)
    try:
        with db.session.begin_nested():
            movement = StockMovement(
                shop_id=shop_id,
                product_id=product_id,
                action=action,
                quantity_delta=new_quantity - previous_quantity,
                previous_quantity=previous_quantity,
                new_quantity=new_quantity,
                notes=notes or None,
                created_by_user_id=actor_id,
            )
            db.session.add(movement)
        return movement
    except SQLAlchemyError:
        current_app.logger.warning(
            "Stock movement not recorded (best-effort): product_id=%s action=%s %s -> %s",
            product_id, action, previous_quantity, new_quantity,
            exc_info=True,
        )
        return None


class MovementHistory:
    """
    Newest-first view over a product's movements.

    Iterating issues keyset-paginated queries of batch_size rows and stops
    after `limit` rows. Each iteration starts again from the newest row, so
    the object can be iterated any number of times.
    """

    def __init__(self, shop_id: int, product_id: int, limit: int = 50, batch_size: int = 100):
        self.shop_id = shop_id
        self.product_id = product_id
        self.limit = max(0, int(limit))
        self.batch_size = max(1, int(batch_size))

    def _page(self, cursor, size: int) -> list[StockMovement]:
        q = db.session.query(StockMovement).filter(
            StockMovement.shop_id == self.shop_id,
            StockMovement.product_id == self.product_id,
        )
        if cursor is not None:
            created_at, row_id = cursor
            q = q.filter(
                or_(
                    StockMovement.created_at < created_at,
                    and_(StockMovement.created_at == created_at, StockMovement.id < row_id),
                )
            )
        return q.order_by(
            StockMovement.created_at.desc(),
            StockMovement.id.desc(),
        ).limit(size).all()

    def __iter__(self) -> Iterator[StockMovement]:
        remaining = self.limit
        cursor = None
        while remaining > 0:
            size = min(self.batch_size, remaining)
            rows = self._page(cursor, size)
            for row in rows:
                yield row
            remaining -= len(rows)
            if len(rows) < size:
                return
            cursor = (rows[-1].created_at, rows[-1].id)


def history(shop_id: int, product_id: int, limit: int = 50, batch_size: int = 100) -> MovementHistory:
    return MovementHistory(shop_id, product_id, limit=limit, batch_size=batch_size)


def get_stock_history(shop_id: int, product_id: int, limit: int = 50) -> list[StockMovement]:
    """Materialized form of history() for callers that want a list."""
    return list(history(shop_id, product_id, limit=limit))
