# Overview: Error taxonomy for the ledger services.

"""
Ledger error taxonomy (authoritative)

Validation errors (caller-correctable, never retried):
    InsufficientStock, InvalidTransition, AccountNotActive, AccountNotFound,
    InvalidAmount, InvalidQuantity, ProductInactive, RecordNotFound,
    InvalidRequest, IdempotencyConflict
  Raised inside a unit of work so the session rolls back, then returned to
  the caller as Outcome.failure(error). Never logged as system errors.

Infrastructure errors (retried by the facade with bounded backoff):
    OperationalError / StaleDataError from SQLAlchemy
  When retries run out they surface as ContentionTimeout, which IS raised.

Invariant violations (fatal, indicate a bug):
    InvariantViolation, raised by reconciliation checks.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base for every error the ledger core produces."""

    kind = "ledger_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message, "details": self.details}


class LedgerValidationError(LedgerError):
    """
    Domain error: the request violates a business rule.

    This is not a technical error. Nothing was changed.
    """

    kind = "validation_error"


class InsufficientStock(LedgerValidationError):
    kind = "insufficient_stock"

    def __init__(self, *, product_id: int, on_hand: int, requested: int):
        deficit = requested - on_hand
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"on hand {on_hand}, requested {requested}, short by {deficit}",
            details={
                "product_id": product_id,
                "on_hand": on_hand,
                "requested": requested,
                "deficit": deficit,
            },
        )
        self.deficit = deficit


class InvalidTransition(LedgerValidationError):
    kind = "invalid_transition"

    def __init__(self, *, order_id: int, from_status: str, to_status: str):
        super().__init__(
            f"Cannot move order {order_id} from '{from_status}' to '{to_status}'",
            details={"order_id": order_id, "from_status": from_status, "to_status": to_status},
        )


class AccountNotActive(LedgerValidationError):
    kind = "account_not_active"

    def __init__(self, *, account_id: int, status: str, transaction_type: str):
        super().__init__(
            f"Credit account {account_id} is {status}; '{transaction_type}' transactions are blocked",
            details={"account_id": account_id, "status": status, "transaction_type": transaction_type},
        )


class InvalidAmount(LedgerValidationError):
    kind = "invalid_amount"


class InvalidQuantity(LedgerValidationError):
    kind = "invalid_quantity"


class ProductInactive(LedgerValidationError):
    kind = "product_inactive"


class RecordNotFound(LedgerValidationError):
    kind = "not_found"

    def __init__(self, resource_type: str, resource_id):
        super().__init__(
            f"{resource_type} {resource_id} not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class AccountNotFound(RecordNotFound):
    """No credit account links the order's wholesaler and retailer."""

    kind = "account_not_found"

    def __init__(self, *, wholesaler_id: int, retailer_id: int):
        LedgerValidationError.__init__(
            self,
            f"No credit account for retailer {retailer_id} with wholesaler {wholesaler_id}",
            details={"wholesaler_id": wholesaler_id, "retailer_id": retailer_id},
        )


class InvalidRequest(LedgerValidationError):
    kind = "invalid_request"


class IdempotencyConflict(LedgerValidationError):
    kind = "idempotency_conflict"


class ContentionTimeout(LedgerError):
    """
    Retryable infrastructure failure: the row stayed contended (locks,
    deadlocks, stale versions) for every attempt. Nothing was committed.
    """

    kind = "contention_timeout"


class InvariantViolation(LedgerError):
    """A stored counter disagrees with its movement/transaction history."""

    kind = "invariant_violation"
