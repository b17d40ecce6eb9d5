from decimal import Decimal

import pytest

from conftest import ACTOR_ID
from stockledger.errors import InsufficientStockError, NotFoundError, ValidationError
from stockledger.extensions import db
from stockledger.models import Product, StockMovement
from stockledger.services import catalog_service, cost_layer_service


def test_create_product_with_opening_stock(shop, make_product):
    product = make_product(shop, name="Rice 1kg", cost_price="0.80", selling_price="1.20", stock_quantity="50", sku="RICE-1")

    assert product.stock_quantity == Decimal("50.000")
    assert product.cost_price == Decimal("0.8000")
    assert product.sku == "RICE-1"

    movements = db.session.query(StockMovement).filter_by(product_id=product.id).all()
    assert len(movements) == 1
    assert movements[0].action == "purchase"
    assert movements[0].previous_quantity == Decimal("0.000")
    assert movements[0].new_quantity == Decimal("50.000")
    assert movements[0].notes == "Initial stock"


def test_create_product_requires_name(shop):
    with pytest.raises(ValidationError):
        catalog_service.create_product(shop.id, ACTOR_ID, name="   ")


def test_create_product_rejects_negative_stock(shop):
    with pytest.raises(ValidationError):
        catalog_service.create_product(shop.id, ACTOR_ID, name="Bad", stock_quantity="-1")


def test_create_product_in_unknown_shop(db_session):
    with pytest.raises(NotFoundError):
        catalog_service.create_product(9999, ACTOR_ID, name="Orphan")
    assert db_session.query(Product).count() == 0


def test_receive_stock_updates_cost_price_and_logs(shop, make_product):
    product = make_product(shop, cost_price="1.00", stock_quantity="2")

    product = catalog_service.receive_stock(shop.id, product.id, ACTOR_ID, "8", unit_cost="1.50", note="PO-17")

    assert product.stock_quantity == Decimal("10.000")
    assert product.cost_price == Decimal("1.5000")
    assert cost_layer_service.remaining_quantity(shop.id, product.id) == Decimal("10.000")

    latest = db.session.query(StockMovement).filter_by(product_id=product.id).order_by(StockMovement.id.desc()).first()
    assert latest.action == "purchase"
    assert latest.quantity_delta == Decimal("8.000")
    assert latest.notes == "PO-17"


def test_receive_stock_rejects_non_positive_quantity(shop, make_product):
    product = make_product(shop)
    with pytest.raises(ValidationError):
        catalog_service.receive_stock(shop.id, product.id, ACTOR_ID, "0")


def test_adjust_stock_moves_quantity_without_layers(shop, make_product):
    product = make_product(shop, cost_price="1.00", stock_quantity="10")

    product = catalog_service.adjust_stock(shop.id, product.id, ACTOR_ID, "7", note="Shelf count")

    assert product.stock_quantity == Decimal("7.000")
    # Layers are not touched by manual corrections
    assert cost_layer_service.remaining_quantity(shop.id, product.id) == Decimal("10.000")
    latest = db.session.query(StockMovement).filter_by(product_id=product.id).order_by(StockMovement.id.desc()).first()
    assert latest.action == "adjustment"
    assert latest.quantity_delta == Decimal("-3.000")


def test_adjust_stock_rejects_negative(shop, make_product):
    product = make_product(shop, stock_quantity="1")
    with pytest.raises(ValidationError):
        catalog_service.adjust_stock(shop.id, product.id, ACTOR_ID, "-1")


def test_decrement_never_goes_below_zero(shop, make_product):
    product = make_product(shop, stock_quantity="2")

    with pytest.raises(InsufficientStockError) as exc_info:
        catalog_service.decrement_stock(product, "3")
    db.session.rollback()

    assert exc_info.value.details["available_quantity"] == "2.000"
    assert db.session.get(Product, product.id).stock_quantity == Decimal("2.000")


def test_decrement_returns_previous_and_new(shop, make_product):
    product = make_product(shop, stock_quantity="5")

    previous, new = catalog_service.decrement_stock(product, "1.5")
    db.session.commit()

    assert (previous, new) == (Decimal("5.000"), Decimal("3.500"))


def test_get_product_hides_other_shops(shop, other_shop, make_product):
    product = make_product(other_shop)

    with pytest.raises(NotFoundError):
        catalog_service.get_product(shop.id, product.id)


def test_list_low_stock(shop, make_product):
    make_product(shop, name="Plenty", stock_quantity="20", min_stock_level="5")
    low = make_product(shop, name="Scarce", stock_quantity="2", min_stock_level="5")

    assert [p.id for p in catalog_service.list_low_stock(shop.id)] == [low.id]


def test_fractional_decrements_reach_exactly_zero(shop, make_product):
    product = make_product(shop, name="Rice", stock_quantity="0.7")

    catalog_service.decrement_stock(product, "0.4")
    db.session.commit()
    previous, new = catalog_service.decrement_stock(product, "0.3")
    db.session.commit()

    assert (previous, new) == (Decimal("0.300"), Decimal("0.000"))
    assert db.session.get(Product, product.id).stock_quantity == Decimal("0.000")


def test_increment_keeps_three_decimal_quantities(shop, make_product):
    product = make_product(shop, stock_quantity="0.1")

    catalog_service.increment_stock(product, "0.2")
    db.session.commit()

    previous, new = catalog_service.decrement_stock(product, "0.3")
    assert (previous, new) == (Decimal("0.300"), Decimal("0.000"))


def test_stock_writes_bump_version(shop, make_product):
    product = make_product(shop, stock_quantity="4")
    version = product.version_id

    catalog_service.decrement_stock(product, "1")

    assert product.version_id == version + 1


def test_duplicate_active_barcode_is_rejected(shop, make_product):
    first = make_product(shop, name="Milo 400g", barcode="6001234567890")

    with pytest.raises(ValidationError, match="Barcode already exists") as exc_info:
        make_product(shop, name="Milo tin", barcode=" 6001234567890 ")

    assert exc_info.value.details["existing_product_id"] == first.id
    assert exc_info.value.details["existing_product_name"] == "Milo 400g"
    assert db.session.query(Product).filter_by(shop_id=shop.id).count() == 1


def test_barcode_free_again_once_product_inactive(shop, make_product):
    first = make_product(shop, name="Old label", barcode="111")
    first.is_active = False
    db.session.commit()

    second = make_product(shop, name="New label", barcode="111")

    assert second.barcode == "111"


def test_same_barcode_allowed_in_another_shop(shop, other_shop, make_product):
    make_product(shop, barcode="222")

    product = make_product(other_shop, barcode="222")

    assert product.shop_id == other_shop.id
