# ==== PAYMENT APPLIER ==== #

"""
Payment application and the payment-driven status transitions.

| current  | condition                              | new     |
|----------|----------------------------------------|---------|
| sent     | balance_due <= 0                       | paid    |
| sent     | balance_due > 0 and due date passed    | overdue |
| overdue  | balance_due <= 0                       | paid    |
| other    |                                        | same    |

Overpayment is accepted and leaves a negative balance.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from parcel_billing.business.errors import InvalidPayment
from parcel_billing.observability.logging import get_logger, log_business_event
from parcel_billing.observability.metrics import payments_applied_total, payments_rejected_total
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.ledger import InvoiceLedger, InvoiceStatus, PaymentRecord
from parcel_billing.services.money import scale_of, to_amount


tracer = get_tracer(__name__)
logger = get_logger(__name__)


@dataclass(frozen=True)
class Payment:
    """Incoming payment request, before validation."""

    amount: Any
    method: str = "cash"
    reference: Optional[str] = None
    date: Optional[datetime] = None


def next_status(ledger: InvoiceLedger, now: datetime) -> InvoiceStatus:
    """Status the ledger should hold after a payment, per the transition table."""
    if ledger.status == InvoiceStatus.SENT:
        if ledger.balance_due <= 0:
            return InvoiceStatus.PAID
        if ledger.is_past_due(now):
            return InvoiceStatus.OVERDUE
    elif ledger.status == InvoiceStatus.OVERDUE and ledger.balance_due <= 0:
        return InvoiceStatus.PAID
    return ledger.status


class PaymentApplier:
    """Applies payments to invoice ledgers."""

    def validate(self, ledger: InvoiceLedger, payment: Payment) -> Decimal:
        """
        Check a payment against a ledger without touching it.

        Returns:
            Decimal: The payment amount

        Raises:
            InvalidPayment: If the amount is not positive, is finer than the
                invoice currency allows, or the invoice is cancelled
        """
        amount = to_amount(payment.amount, field="payment.amount", allow_negative=True)
        if amount <= 0:
            payments_rejected_total.labels(reason="non_positive_amount").inc()
            raise InvalidPayment(
                "Payment amount must be greater than zero",
                {"amount": str(payment.amount)},
            )
        if scale_of(amount) > ledger.decimal_places:
            payments_rejected_total.labels(reason="precision").inc()
            raise InvalidPayment(
                f"Payment amount has more than {ledger.decimal_places} decimal places",
                {"amount": str(payment.amount), "currency": ledger.currency},
            )
        if ledger.status == InvoiceStatus.CANCELLED:
            payments_rejected_total.labels(reason="cancelled_invoice").inc()
            raise InvalidPayment(
                "Cannot apply a payment to a cancelled invoice",
                {"invoice_id": ledger.id},
            )
        return amount

    def apply(
        self,
        ledger: InvoiceLedger,
        payment: Payment,
        now: Optional[datetime] = None,
    ) -> PaymentRecord:
        """
        Record a payment against a ledger.

        Args:
            ledger (InvoiceLedger): Invoice receiving the payment
            payment (Payment): Amount, method and optional reference
            now (Optional[datetime]): Clock used for the overdue check

        Returns:
            PaymentRecord: The appended, immutable payment record

        Raises:
            InvalidPayment: See ``validate``
        """
        with tracer.start_as_current_span("apply_payment") as span:
            span.set_attribute("invoice_id", ledger.id)
            span.set_attribute("payment_method", payment.method)

            amount = self.validate(ledger, payment)

            now = now or datetime.now(timezone.utc)
            record = PaymentRecord(
                amount=amount,
                date=payment.date or now,
                method=payment.method,
                reference=payment.reference,
            )

            ledger.payment_history.append(record)
            ledger.amount_paid = ledger.amount_paid + amount
            ledger.recompute()
            ledger.transition(next_status(ledger, now))

            span.set_attribute("amount", float(amount))
            span.set_attribute("balance_due", float(ledger.balance_due))
            span.set_attribute("status", ledger.status.value)

            payments_applied_total.labels(method=payment.method, currency=ledger.currency).inc()

            if ledger.balance_due < Decimal("0"):
                logger.info(
                    f"Invoice {ledger.number or ledger.id} is overpaid",
                    invoice_id=ledger.id,
                    balance_due=str(ledger.balance_due),
                )

            log_business_event(
                "payment_applied",
                invoice_id=ledger.id,
                invoice_number=ledger.number,
                amount=str(amount),
                method=payment.method,
                status=ledger.status.value,
            )

            return record
