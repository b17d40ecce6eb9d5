from decimal import Decimal

import pytest

from conftest import ACTOR_ID
from stockledger.errors import CreditLimitExceededError, NotFoundError, ValidationError
from stockledger.extensions import db
from stockledger.models import Customer, CustomerCreditTransaction, Sale
from stockledger.services import credit_service, sales_service
from stockledger.validation import RefundInput, SaleInput, SaleItemInput


def _credit_sale(shop, product, customer, qty="5", price="10.00"):
    return sales_service.create_sale(
        shop.id,
        ACTOR_ID,
        SaleInput(
            items=[SaleItemInput(product_id=product.id, quantity=Decimal(qty), unit_price=Decimal(price))],
            payment_method="credit",
            customer_id=customer.id,
        ),
    )


def _balance(customer_id):
    return db.session.get(Customer, customer_id).credit_balance


@pytest.fixture
def stocked(shop, make_product):
    return make_product(shop, cost_price="4.00", stock_quantity="100")


def test_credit_sale_round_trip(shop, stocked, customer):
    sale = _credit_sale(shop, stocked, customer)
    assert sale.final_amount == Decimal("50.00")
    assert _balance(customer.id) == Decimal("50.00")

    sales_service.cancel_sale(sale.id, shop.id, ACTOR_ID)

    assert _balance(customer.id) == Decimal("0.00")
    txns = credit_service.credit_history(shop.id, customer.id)
    assert sorted((t.transaction_type, t.amount) for t in txns) == [
        ("charge", Decimal("50.00")),
        ("release", Decimal("-50.00")),
    ]
    assert all(t.sale_id == sale.id for t in txns)


def test_cash_sale_with_customer_does_not_charge(shop, stocked, customer):
    sales_service.create_sale(
        shop.id,
        ACTOR_ID,
        SaleInput(
            items=[SaleItemInput(product_id=stocked.id, quantity=Decimal("1"), unit_price=Decimal("10.00"))],
            payment_method="cash",
            customer_id=customer.id,
        ),
    )
    assert _balance(customer.id) == Decimal("0.00")
    assert db.session.query(CustomerCreditTransaction).count() == 0


def test_cancel_releases_only_unrefunded_amount(shop, stocked, customer):
    sale = _credit_sale(shop, stocked, customer)
    sales_service.create_partial_refund(sale.id, shop.id, ACTOR_ID, RefundInput(amount=Decimal("20.00")))

    sales_service.cancel_sale(sale.id, shop.id, ACTOR_ID)

    assert _balance(customer.id) == Decimal("20.00")


def test_release_is_clamped_at_zero(shop, stocked, customer):
    sale = _credit_sale(shop, stocked, customer)
    credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "45.00")
    assert _balance(customer.id) == Decimal("5.00")

    sales_service.cancel_sale(sale.id, shop.id, ACTOR_ID)

    assert _balance(customer.id) == Decimal("0.00")
    assert db.session.get(Sale, sale.id).status == "cancelled"


def test_payment_is_clamped_to_balance(shop, stocked, customer):
    _credit_sale(shop, stocked, customer, qty="2")

    customer = credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "100.00", notes="cash at counter")

    assert customer.credit_balance == Decimal("0.00")
    payment = credit_service.credit_history(shop.id, customer.id, limit=1)[0]
    assert payment.transaction_type == "payment"
    assert payment.amount == Decimal("-20.00")
    assert payment.balance_after == Decimal("0.00")


def test_payment_without_outstanding_credit_is_rejected(shop, customer):
    with pytest.raises(ValidationError, match="no outstanding credit"):
        credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "10.00")


def test_payment_amount_must_be_positive(shop, customer):
    with pytest.raises(ValidationError):
        credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "0")


def test_credit_limit_is_advisory_by_default(shop, stocked):
    customer = credit_service.create_customer(shop.id, name="Kofi", credit_limit="30.00")

    _credit_sale(shop, stocked, customer)

    assert _balance(customer.id) == Decimal("50.00")


def test_credit_limit_enforced_when_configured(app, shop, stocked, monkeypatch):
    monkeypatch.setitem(app.config, "ENFORCE_CREDIT_LIMIT", True)
    customer = credit_service.create_customer(shop.id, name="Kofi", credit_limit="30.00")

    with pytest.raises(CreditLimitExceededError):
        _credit_sale(shop, stocked, customer)

    assert _balance(customer.id) == Decimal("0.00")
    assert db.session.get(type(stocked), stocked.id).stock_quantity == Decimal("100.000")
    assert db.session.query(Sale).count() == 0


def test_zero_limit_means_unlimited(app, shop, stocked, customer, monkeypatch):
    monkeypatch.setitem(app.config, "ENFORCE_CREDIT_LIMIT", True)

    _credit_sale(shop, stocked, customer)

    assert _balance(customer.id) == Decimal("50.00")


def test_customer_scoped_to_shop(shop, other_shop, customer):
    with pytest.raises(NotFoundError):
        credit_service.get_customer(other_shop.id, customer.id)


def test_create_customer_requires_name(shop):
    with pytest.raises(ValidationError):
        credit_service.create_customer(shop.id, name="")


def test_payment_keeps_its_method(shop, stocked, customer):
    _credit_sale(shop, stocked, customer, qty="2")

    credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "5.00", payment_method="Mobile_Money")

    payment = credit_service.credit_history(shop.id, customer.id, limit=1)[0]
    assert payment.payment_method == "mobile_money"
    assert payment.to_dict()["payment_method"] == "mobile_money"


def test_payment_method_defaults_to_cash(shop, stocked, customer):
    _credit_sale(shop, stocked, customer, qty="1")

    credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "5.00")

    payment = credit_service.credit_history(shop.id, customer.id, limit=1)[0]
    assert payment.payment_method == "cash"


def test_credit_is_not_a_payment_method(shop, stocked, customer):
    _credit_sale(shop, stocked, customer, qty="1")

    with pytest.raises(ValidationError, match="Invalid payment method"):
        credit_service.record_credit_payment(shop.id, customer.id, ACTOR_ID, "5.00", payment_method="credit")

    assert _balance(customer.id) == Decimal("10.00")


def test_create_customer_in_unknown_shop(db_session):
    with pytest.raises(NotFoundError):
        credit_service.create_customer(9999, name="Orphan")
    assert db_session.query(Customer).count() == 0
