"""
Engine error kinds and an explicit Result wrapper.

Every business-rule violation is raised as a subclass of EngineError carrying
a stable `kind` plus a details dict for callers (the CLI, a future API layer).
Business errors are raised before any mutation and are never retried.

capture() turns a raising call into a Result so callers that prefer explicit
branching can do:

    result = capture(sales_service.create_sale, shop_id, actor_id, sale_input)
    if not result.ok:
        if result.kind is ErrorKind.INSUFFICIENT_STOCK:
            ...
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    RETURN_EXCEEDS_AVAILABLE = "return_exceeds_available"
    REFUND_EXCEEDS_AVAILABLE = "refund_exceeds_available"
    INVALID_STATE = "invalid_state"
    CREDIT_LIMIT_EXCEEDED = "credit_limit_exceeded"
    PERSISTENCE = "persistence"
    CONSISTENCY = "consistency"
    TIMEOUT = "timeout"


class EngineError(Exception):
    """Base for all engine errors."""
    kind: ErrorKind = ErrorKind.VALIDATION
    # Business-rule violation (4xx-equivalent) vs infrastructure failure
    is_business_error: bool = True

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value, "details": self.details}


class ValidationError(EngineError, ValueError):
    """400-level input problem."""
    kind = ErrorKind.VALIDATION


class NotFoundError(EngineError):
    """Entity absent, or owned by another shop."""
    kind = ErrorKind.NOT_FOUND


class InsufficientStockError(EngineError):
    kind = ErrorKind.INSUFFICIENT_STOCK


class ReturnExceedsAvailableError(EngineError):
    kind = ErrorKind.RETURN_EXCEEDS_AVAILABLE


class RefundExceedsAvailableError(EngineError):
    kind = ErrorKind.REFUND_EXCEEDS_AVAILABLE


class InvalidStateError(EngineError):
    """Operation attempted on a sale that is not completed."""
    kind = ErrorKind.INVALID_STATE


class CreditLimitExceededError(EngineError):
    kind = ErrorKind.CREDIT_LIMIT_EXCEEDED


class PersistenceFailure(EngineError):
    """Datastore read/write failed on a primary entity; unit of work rolled back."""
    kind = ErrorKind.PERSISTENCE
    is_business_error = False


class ConsistencyError(EngineError):
    """Concurrent modification detected, or rollback after partial mutation failed."""
    kind = ErrorKind.CONSISTENCY
    is_business_error = False


class OperationTimeoutError(EngineError):
    """Operation exceeded its deadline or a lock/statement wait timed out."""
    kind = ErrorKind.TIMEOUT
    is_business_error = False


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def capture(func: Callable[..., T], *args: Any, **kwargs: Any) -> Result[T]:
    """Run func and return a Result instead of raising EngineError."""
    try:
        return Result(value=func(*args, **kwargs))
    except EngineError as exc:
        return Result(error=exc)
