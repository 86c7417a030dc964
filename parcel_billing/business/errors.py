# ==== BILLING ERROR TYPES ==== #

"""
Error kinds raised by the billing engine.

Validation and conflict errors are surfaced to the immediate caller for
correction. Computation anomalies are never raised; they are clamped
locally in ``parcel_billing.services.money``.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for all billing engine errors."""

    code = "BILLING_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for an API response body."""
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(BillingError):
    """Input rejected before any mutation took place."""

    code = "VALIDATION_ERROR"
    status_code = 422


class InvalidPayment(ValidationError):
    """Payment amount is not positive or the invoice cannot accept payments."""

    code = "INVALID_PAYMENT"


class ConflictError(BillingError):
    """Invoice number could not be allocated after bounded retries."""

    code = "CONFLICT"
    status_code = 409
    retryable = True


class InvoiceNumberTaken(BillingError):
    """
    Raised by a store when an insert violates the invoice number
    uniqueness constraint. Consumed by the number generator's retry loop.
    """

    code = "INVOICE_NUMBER_TAKEN"
    status_code = 409
    retryable = True

    def __init__(self, number: str):
        super().__init__(f"Invoice number {number} already exists", {"number": number})
        self.number = number


class UnknownCurrency(BillingError):
    """Currency code absent from the rate snapshot or the format table."""

    code = "UNKNOWN_CURRENCY"
    status_code = 422

    def __init__(self, currency: str):
        super().__init__(f"Unknown currency: {currency}", {"currency": currency})
        self.currency = currency


class InvoiceNotFound(BillingError):
    code = "INVOICE_NOT_FOUND"
    status_code = 404

    def __init__(self, invoice_id: Any):
        super().__init__(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})
        self.invoice_id = invoice_id
