from decimal import Decimal

from sqlalchemy.exc import OperationalError

from conftest import ACTOR_ID
from stockledger.extensions import db
from stockledger.models import StockCostLayer
from stockledger.models.inventory import LAYER_SOURCE_INITIAL_STOCK, LAYER_SOURCE_RETURN
from stockledger.services import catalog_service, cost_layer_service


def test_consume_drains_oldest_layer_first(shop, layered_product):
    cost = cost_layer_service.consume_fifo(shop.id, layered_product.id, "8")
    db.session.commit()

    assert cost.cost_total == Decimal("86.00")
    assert cost.avg_cost == Decimal("10.7500")
    assert [(f.quantity, f.unit_cost) for f in cost.basis] == [
        (Decimal("5.000"), Decimal("10.0000")),
        (Decimal("3.000"), Decimal("12.0000")),
    ]
    assert not cost.used_fallback

    layers = cost_layer_service.list_layers(shop.id, layered_product.id)
    assert [layer.remaining_quantity for layer in layers] == [Decimal("0.000"), Decimal("7.000")]
    assert [layer.initial_quantity for layer in layers] == [Decimal("5.000"), Decimal("10.000")]


def test_basis_json_is_decimal_strings(shop, layered_product):
    cost = cost_layer_service.consume_fifo(shop.id, layered_product.id, "6")

    assert cost.basis_json() == [
        {"quantity": "5.000", "unit_cost": "10.0000"},
        {"quantity": "1.000", "unit_cost": "12.0000"},
    ]


def test_zero_quantity_costs_nothing(shop, layered_product):
    cost = cost_layer_service.consume_fifo(shop.id, layered_product.id, 0)

    assert cost.cost_total == Decimal("0.00")
    assert cost.avg_cost == Decimal("0.0000")
    assert cost.basis == []
    assert cost_layer_service.remaining_quantity(shop.id, layered_product.id) == Decimal("15.000")


def test_shortfall_is_costed_at_cost_price(shop, layered_product):
    # cost_price follows the latest receive (12.00)
    cost = cost_layer_service.consume_fifo(shop.id, layered_product.id, "18")
    db.session.commit()

    assert cost.fallback_quantity == Decimal("3.000")
    assert cost.used_fallback
    assert cost.basis[-1].quantity == Decimal("3.000")
    assert cost.basis[-1].unit_cost == Decimal("12.0000")
    # 5*10 + 10*12 + 3*12
    assert cost.cost_total == Decimal("206.00")
    assert cost_layer_service.remaining_quantity(shop.id, layered_product.id) == Decimal("0.000")


def test_unreadable_layers_fall_back_to_cost_price(shop, layered_product, monkeypatch):
    def broken(shop_id, product_id):
        raise OperationalError("SELECT stock_cost_layers", {}, Exception("disk I/O error"))

    monkeypatch.setattr(cost_layer_service, "_open_layers", broken)

    cost = cost_layer_service.consume_fifo(shop.id, layered_product.id, "4")

    assert cost.fallback_quantity == Decimal("4.000")
    assert cost.cost_total == Decimal("48.00")
    assert cost.avg_cost == Decimal("12.0000")
    # Layers untouched
    monkeypatch.undo()
    assert cost_layer_service.remaining_quantity(shop.id, layered_product.id) == Decimal("15.000")


def test_opening_stock_gets_initial_layer(shop, make_product):
    product = make_product(shop, cost_price="2.5000", stock_quantity="12")

    layers = cost_layer_service.list_layers(shop.id, product.id)
    assert len(layers) == 1
    assert layers[0].source_type == LAYER_SOURCE_INITIAL_STOCK
    assert layers[0].unit_cost == Decimal("2.5000")
    assert layers[0].remaining_quantity == Decimal("12.000")


def test_add_cost_layer_ignores_non_positive_quantity(shop, layered_product):
    assert cost_layer_service.add_cost_layer(
        shop_id=shop.id,
        product_id=layered_product.id,
        actor_id=ACTOR_ID,
        quantity=0,
        unit_cost="3.00",
        source_type=LAYER_SOURCE_RETURN,
    ) is None
    assert len(cost_layer_service.list_layers(shop.id, layered_product.id)) == 2


def test_restore_creates_new_return_layer(shop, layered_product):
    layer = cost_layer_service.restore_from_reversal(
        shop_id=shop.id,
        product_id=layered_product.id,
        actor_id=ACTOR_ID,
        quantity="4",
        unit_cost="7.5",
        source_id=99,
    )
    db.session.commit()

    assert layer.source_type == LAYER_SOURCE_RETURN
    assert layer.source_id == "99"
    assert layer.initial_quantity == Decimal("4.000")
    assert layer.remaining_quantity == Decimal("4.000")
    assert layer.unit_cost == Decimal("7.5000")
    assert db.session.query(StockCostLayer).filter_by(product_id=layered_product.id).count() == 3


def test_open_only_hides_drained_layers(shop, layered_product):
    cost_layer_service.consume_fifo(shop.id, layered_product.id, "5")
    db.session.commit()

    open_layers = cost_layer_service.list_layers(shop.id, layered_product.id, open_only=True)
    assert [layer.unit_cost for layer in open_layers] == [Decimal("12.0000")]


def test_layers_are_scoped_to_shop(shop, other_shop, layered_product):
    assert cost_layer_service.list_layers(other_shop.id, layered_product.id) == []
    assert cost_layer_service.remaining_quantity(other_shop.id, layered_product.id) == Decimal("0.000")


def test_receive_at_default_cost_uses_cost_price(shop, make_product):
    product = make_product(shop, cost_price="4.2500")
    catalog_service.receive_stock(shop.id, product.id, ACTOR_ID, "3")

    layers = cost_layer_service.list_layers(shop.id, product.id)
    assert [(layer.unit_cost, layer.initial_quantity) for layer in layers] == [
        (Decimal("4.2500"), Decimal("3.000")),
    ]
