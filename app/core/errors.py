"""
Typed errors for the inventory engine.

Every error carries a machine-readable ``code``, the HTTP ``status_code`` the
API renders it with, a ``retryable`` flag and structured ``context``.

    InventoryError
    +-- ValidationError              VALIDATION_ERROR        400
    |   +-- ShopIdRequiredError      SHOP_ID_REQUIRED        400
    |   +-- InvalidQuantityError     INVALID_QUANTITY        400
    +-- NotFoundError                NOT_FOUND               404
    |   +-- ProductNotFoundError     PRODUCT_NOT_FOUND       404
    |   +-- SaleNotFoundError        SALE_NOT_FOUND          404
    +-- InsufficientStockError       INSUFFICIENT_STOCK      400
    +-- ReconciliationError          RECONCILIATION_MISMATCH 400
    +-- SaleStateError               INVALID_SALE_STATE      400
    +-- LockTimeoutError             LOCK_TIMEOUT            503 (retryable)
    +-- TransactionAbortedError      TRANSACTION_ABORTED     409 (retryable)
    +-- PersistenceError             PERSISTENCE_ERROR       500
    +-- ImmutableLedgerError         LEDGER_IMMUTABLE        500

Retryable errors guarantee nothing was committed, so the caller may repeat
the whole request.
"""
from typing import Any, Dict, Optional


class InventoryError(Exception):
    """Base class for all inventory engine errors."""

    code: str = "INVENTORY_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "status": "fail" if 400 <= self.status_code < 500 else "error",
            "code": self.code,
            "message": self.message,
        }
        if self.context:
            body["context"] = {k: _jsonable(v) for k, v in self.context.items()}
        return body


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return str(value)


# Input errors, raised before any lock is taken

class ValidationError(InventoryError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ShopIdRequiredError(ValidationError):
    """Counter does not exist yet and the caller gave no shop scope."""

    code = "SHOP_ID_REQUIRED"

    def __init__(self, product_id: Any):
        super().__init__("Shop ID is required", product_id=product_id)


class InvalidQuantityError(ValidationError):
    code = "INVALID_QUANTITY"


# Lookups

class NotFoundError(InventoryError):
    code = "NOT_FOUND"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any):
        super().__init__("Product not found", product_id=product_id)


class SaleNotFoundError(NotFoundError):
    code = "SALE_NOT_FOUND"

    def __init__(self, sale_id: Any):
        super().__init__("Sale not found", sale_id=sale_id)


# Business rule rejections

class InsufficientStockError(InventoryError):
    code = "INSUFFICIENT_STOCK"
    status_code = 400

    def __init__(self, product_id: Any, **levels: Any):
        super().__init__("Insufficient stock for adjustment", product_id=product_id, **levels)


class ReconciliationError(InventoryError):
    """available + reserved would exceed stock (strict mode only)."""

    code = "RECONCILIATION_MISMATCH"
    status_code = 400

    def __init__(self, product_id: Any, **levels: Any):
        super().__init__(
            "Available and reserved quantities exceed stock quantity",
            product_id=product_id, **levels
        )


class SaleStateError(InventoryError):
    code = "INVALID_SALE_STATE"
    status_code = 400


# Infrastructure

class LockTimeoutError(InventoryError):
    code = "LOCK_TIMEOUT"
    status_code = 503
    retryable = True

    def __init__(self, product_id: Any, timeout: float):
        super().__init__(
            f"Timed out after {timeout:g}s waiting for stock lock",
            product_id=product_id, timeout=timeout
        )


class TransactionAbortedError(InventoryError):
    code = "TRANSACTION_ABORTED"
    status_code = 409
    retryable = True


class PersistenceError(InventoryError):
    code = "PERSISTENCE_ERROR"
    status_code = 500


class ImmutableLedgerError(InventoryError):
    code = "LEDGER_IMMUTABLE"
    status_code = 500

    def __init__(self, entry_id: Optional[Any], action: str):
        super().__init__(
            f"Ledger entries are append-only; {action} is not allowed",
            entry_id=entry_id, action=action
        )
