import pytest

from stockledger.errors import (
    ErrorKind,
    InsufficientStockError,
    NotFoundError,
    PersistenceFailure,
    ValidationError,
    capture,
)


def test_errors_carry_kind_and_details():
    err = InsufficientStockError("Insufficient stock", details={"product_id": 3})

    assert err.kind is ErrorKind.INSUFFICIENT_STOCK
    assert err.is_business_error
    assert err.to_dict() == {
        "error": "Insufficient stock",
        "kind": "insufficient_stock",
        "details": {"product_id": 3},
    }


def test_infrastructure_errors_are_not_business_errors():
    assert not PersistenceFailure("write failed").is_business_error


def test_validation_error_is_a_value_error():
    assert isinstance(ValidationError("bad"), ValueError)


def test_capture_success():
    result = capture(lambda a, b: a + b, 2, b=3)

    assert result.ok
    assert result.kind is None
    assert result.unwrap() == 5


def test_capture_failure():
    def missing():
        raise NotFoundError("Sale not found")

    result = capture(missing)

    assert not result.ok
    assert result.kind is ErrorKind.NOT_FOUND
    with pytest.raises(NotFoundError):
        result.unwrap()


def test_capture_does_not_hide_programming_errors():
    def broken():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        capture(broken)
