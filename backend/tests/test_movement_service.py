from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import ACTOR_ID
from stockledger.extensions import db
from stockledger.models import StockMovement
from stockledger.services import catalog_service, movement_service


def _record(shop, product, previous, new, action="adjustment"):
    return movement_service.record_movement_best_effort(
        shop_id=shop.id,
        product_id=product.id,
        actor_id=ACTOR_ID,
        action=action,
        previous_quantity=Decimal(previous),
        new_quantity=Decimal(new),
        notes="test",
    )


def test_record_movement_computes_signed_delta(shop, make_product):
    product = make_product(shop)

    movement = _record(shop, product, "10", "4")
    db.session.commit()

    assert movement is not None
    assert movement.quantity_delta == Decimal("-6.000")


def test_unknown_action_is_a_programming_error(shop, make_product):
    product = make_product(shop)
    with pytest.raises(ValueError):
        _record(shop, product, "1", "2", action="teleport")


def test_write_failure_is_swallowed(shop, make_product, monkeypatch):
    product = make_product(shop)

    def broken(**kwargs):
        raise SQLAlchemyError("stock_movements unavailable")

    monkeypatch.setattr(movement_service, "StockMovement", broken)

    assert _record(shop, product, "0", "1") is None


def test_write_failure_does_not_fail_receive(shop, make_product, monkeypatch):
    product = make_product(shop)

    def broken(**kwargs):
        raise SQLAlchemyError("stock_movements unavailable")

    monkeypatch.setattr(movement_service, "StockMovement", broken)

    product = catalog_service.receive_stock(shop.id, product.id, ACTOR_ID, "5", unit_cost="2.00")
    assert product.stock_quantity == Decimal("5.000")
    assert db.session.query(StockMovement).filter_by(product_id=product.id).count() == 0


def test_history_is_newest_first_and_bounded(shop, make_product):
    product = make_product(shop)
    for qty in range(1, 8):
        _record(shop, product, str(qty - 1), str(qty))
    db.session.commit()

    rows = movement_service.get_stock_history(shop.id, product.id, limit=5)

    assert [m.new_quantity for m in rows] == [Decimal(n) for n in ("7", "6", "5", "4", "3")]


def test_history_pages_across_batches_and_restarts(shop, make_product):
    product = make_product(shop)
    for qty in range(1, 8):
        _record(shop, product, str(qty - 1), str(qty))
    db.session.commit()

    view = movement_service.history(shop.id, product.id, limit=6, batch_size=2)
    first = [m.id for m in view]
    second = [m.id for m in view]

    assert len(first) == 6
    assert first == second
    assert first == sorted(first, reverse=True)


def test_history_is_scoped_to_shop(shop, other_shop, make_product):
    product = make_product(shop)
    _record(shop, product, "0", "1")
    db.session.commit()

    assert movement_service.get_stock_history(other_shop.id, product.id) == []


def test_long_notes_are_kept_whole(shop, make_product):
    product = make_product(shop)
    notes = "Stocktake recount: " + "aisle 4 shelf B " * 40

    movement = movement_service.record_movement_best_effort(
        shop_id=shop.id,
        product_id=product.id,
        actor_id=ACTOR_ID,
        action="adjustment",
        previous_quantity=Decimal("0"),
        new_quantity=Decimal("1"),
        notes=notes,
    )
    db.session.commit()

    assert len(notes) > 255
    assert db.session.get(StockMovement, movement.id).notes == notes
