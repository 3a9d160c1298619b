"""
Settlement error taxonomy.

Every error carries a stable `code` and the HTTP status the API layer
maps it to. Kinds:
- NotFoundError (404): a referenced record does not resolve.
- ValidationError (400): malformed or out-of-range input.
- BusinessRuleError (409): valid input that breaks a business rule.
- ConsistencyError (500): an internal invariant would be violated.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for settlement engine errors."""

    code = "SETTLEMENT_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None, code: str | None = None):
        super().__init__(message)
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(SettlementError):
    """404-level missing reference."""

    code = "NOT_FOUND"
    http_status = 404


class ValidationError(SettlementError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    http_status = 400


class BusinessRuleError(SettlementError):
    """409-level business rule conflict."""

    code = "BUSINESS_RULE_VIOLATION"
    http_status = 409


class InsufficientStockError(BusinessRuleError):
    code = "INSUFFICIENT_STOCK"


class OverpaymentError(BusinessRuleError):
    code = "PAYMENT_EXCEEDS_TOTAL"


class DuplicateBillNumberError(BusinessRuleError):
    code = "DUPLICATE_BILL_NUMBER"


class SaleSettledError(BusinessRuleError):
    code = "SALE_SETTLED"


class ConsistencyError(SettlementError):
    """Raised when a multi-step operation would leave partial state."""

    code = "CONSISTENCY_ERROR"
    http_status = 500


def not_found(entity: str, entity_id) -> NotFoundError:
    """Build a NotFoundError with an entity-specific code, e.g. SALE_NOT_FOUND."""
    return NotFoundError(
        f"{entity.replace('_', ' ').capitalize()} {entity_id} not found",
        details={f"{entity}_id": entity_id},
        code=f"{entity.upper()}_NOT_FOUND",
    )
