"""Typed exceptions raised by the shop engine.

Callers are expected to catch by type rather than by message:

* :class:`ValidationError` and :class:`NotFoundError` are raised before any
  store write, so they never leave partial effects behind.
* :class:`InsufficientStockError` is raised by the stock gate; any stock or
  ledger writes made earlier in the same operation have been compensated.
* :class:`PersistenceError` means a store call failed and the compensation
  path restored the previous state.
* :class:`InconsistencyWarning` means the compensation path itself failed and
  the store is in a degraded state that needs manual reconciliation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence


class ShopEngineError(Exception):
    """Base class for every error raised by the engine."""

    code: str = "SHOP_ENGINE_ERROR"

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        self.operation = operation
        self.detail = message
        super().__init__(f"{operation} failed: {message}" if operation else message)


class ValidationError(ShopEngineError, ValueError):
    """Input was malformed or violated a catalog rule."""

    code = "VALIDATION_ERROR"


class DuplicateItemNameError(ValidationError):
    """An inventory item with the same normalized name already exists."""

    code = "DUPLICATE_ITEM_NAME"

    def __init__(self, name: str, *, operation: Optional[str] = None) -> None:
        self.name = name
        super().__init__(f"an item named '{name.strip()}' already exists", operation=operation)


class SaleAlreadyReturnedError(ValidationError):
    """The line item was already returned."""

    code = "SALE_ALREADY_RETURNED"

    def __init__(self, sale_id: str, *, operation: Optional[str] = None) -> None:
        self.sale_id = sale_id
        super().__init__(f"sale '{sale_id}' has already been returned", operation=operation)


class BundleConfigurationError(ValidationError):
    """A bundle conversion was requested for an item without a valid bundle size."""

    code = "BUNDLE_CONFIGURATION"


class NotFoundError(ShopEngineError):
    """A referenced item, sale, or transaction does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str, *, operation: Optional[str] = None) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"unknown {kind} id: {identifier}", operation=operation)


class InsufficientStockError(ShopEngineError):
    """Applying a delta would drive stock below zero."""

    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: str,
        item_name: str,
        *,
        available: int,
        required: int,
        operation: Optional[str] = None,
    ) -> None:
        self.item_id = item_id
        self.item_name = item_name
        self.available = available
        self.required = required
        super().__init__(
            f"not enough stock for '{item_name}': available {available}, needed {required}",
            operation=operation,
        )


class PersistenceError(ShopEngineError):
    """A store call failed; already-applied steps were compensated."""

    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, *, operation: Optional[str] = None, step: Optional[str] = None) -> None:
        self.step = step
        if step:
            message = f"{message} (during '{step}')"
        super().__init__(message, operation=operation)


@dataclass(frozen=True)
class CompensationFailure:
    """One compensating action that could not be completed."""

    step: str
    error: BaseException


class InconsistencyWarning(ShopEngineError):
    """A compensating action failed, leaving the store in a degraded state."""

    code = "INCONSISTENT_STATE"

    def __init__(
        self,
        *,
        operation: str,
        cause: BaseException,
        failures: Sequence[CompensationFailure],
    ) -> None:
        self.cause = cause
        self.failures = tuple(failures)
        steps = ", ".join(failure.step for failure in self.failures)
        reason = getattr(cause, "detail", cause)
        super().__init__(
            f"{reason}; compensation failed for: {steps}. "
            "Manual verification of stock may be required",
            operation=operation,
        )


__all__ = [
    "ShopEngineError",
    "ValidationError",
    "DuplicateItemNameError",
    "SaleAlreadyReturnedError",
    "BundleConfigurationError",
    "NotFoundError",
    "InsufficientStockError",
    "PersistenceError",
    "CompensationFailure",
    "InconsistencyWarning",
]
