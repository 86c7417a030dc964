# ==== INVOICE LEDGER ==== #

"""
Invoice ledger: line items, discount, totals and lifecycle status.

The ledger is the authoritative, recomputed set of invoice totals. Every
mutating operation validates its input first, mutates, then recomputes,
so a caller never observes a ledger whose invariants do not hold:

    subtotal        = sum(line.amount)
    tax_total       = sum(line.tax_amount)
    discount_amount = discount applied to subtotal, clamped to [0, subtotal]
    total           = subtotal + tax_total - discount_amount
    balance_due     = total - amount_paid

``amount_paid`` and ``payment_history`` belong to the payment applier;
``recompute`` only ever reads ``amount_paid``.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from parcel_billing.business.errors import ValidationError
from parcel_billing.observability.logging import get_logger
from parcel_billing.observability.metrics import (
    invoice_recompute_seconds,
    invoice_status_transitions_total,
)
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.money import (
    HUNDRED,
    STORAGE_SCALE,
    ZERO,
    clamp,
    quantize,
    scale_of,
    to_amount,
)


tracer = get_tracer(__name__)
logger = get_logger(__name__)

DEFAULT_PAYMENT_TERMS_DAYS = 30
DEFAULT_DECIMAL_PLACES = 2


# ==== ENUMS ==== #


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ==== VALUE TYPES ==== #


@dataclass(frozen=True)
class Discount:
    """
    Invoice-level discount, either a percentage of the subtotal or a
    fixed amount in invoice currency.
    """

    kind: DiscountKind
    value: Decimal

    @classmethod
    def percentage(cls, value: Any) -> "Discount":
        return cls.create(DiscountKind.PERCENTAGE, value)

    @classmethod
    def fixed(cls, value: Any) -> "Discount":
        return cls.create(DiscountKind.FIXED, value)

    @classmethod
    def create(cls, kind: Any, value: Any) -> "Discount":
        """
        Validate and build a discount.

        Raises:
            ValidationError: If the kind is unknown or the value is negative
        """
        try:
            kind = DiscountKind(kind)
        except ValueError:
            raise ValidationError("Unknown discount kind", {"kind": str(kind)}) from None

        amount = to_amount(value, field="discount.value", allow_negative=True)
        if amount < 0:
            raise ValidationError("Discount value must be non-negative", {"value": str(value)})
        if scale_of(amount) > STORAGE_SCALE:
            raise ValidationError(
                f"Discount value must have at most {STORAGE_SCALE} decimal places", {"value": str(value)}
            )

        return cls(kind=kind, value=amount)

    def amount_for(self, subtotal: Decimal) -> Decimal:
        """Discount applied to ``subtotal``, clamped to ``[0, subtotal]``."""
        if self.kind == DiscountKind.PERCENTAGE:
            raw = subtotal * self.value / HUNDRED
        else:
            raw = self.value
        return clamp(to_amount(raw, field="discount_amount"), ZERO, subtotal, field="discount_amount")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "value": str(self.value)}


@dataclass(frozen=True)
class PaymentRecord:
    """One recorded payment. Immutable once appended to an invoice."""

    amount: Decimal
    date: datetime
    method: str
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "method": self.method,
            "reference": self.reference,
        }


@dataclass
class LineItem:
    """
    Invoice line item.

    ``amount``, ``tax_amount`` and ``total`` are derived; only
    ``derive()`` (called from ``InvoiceLedger.recompute``) writes them.
    """

    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate_percent: Decimal = ZERO
    amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO
    package_id: Optional[str] = None
    tracking_number: Optional[str] = None
    service_type: Optional[str] = None

    @classmethod
    def create(
        cls,
        description: str,
        quantity: Any = 1,
        unit_price: Any = 0,
        tax_rate_percent: Any = 0,
        id: Optional[str] = None,
        package_id: Optional[str] = None,
        tracking_number: Optional[str] = None,
        service_type: Optional[str] = None,
    ) -> "LineItem":
        """
        Validate inputs and build a line item with derived fields set.

        Args:
            description (str): Human readable description
            quantity (Any): Non-negative quantity
            unit_price (Any): Non-negative unit price in invoice currency
            tax_rate_percent (Any): Tax rate in [0, 100]
            id (Optional[str]): Stable identifier, generated when omitted

        Returns:
            LineItem: Line item with ``amount``, ``tax_amount`` and ``total``

        Raises:
            ValidationError: If quantity or price is negative or the tax
                rate is outside [0, 100], or a value has more decimal places
                than the stored columns hold
        """
        quantity_value = to_amount(quantity, field="line_item.quantity", allow_negative=True)
        price_value = to_amount(unit_price, field="line_item.unit_price", allow_negative=True)
        tax_value = to_amount(tax_rate_percent, field="line_item.tax_rate_percent", allow_negative=True)

        errors: Dict[str, str] = {}
        if not str(description or "").strip():
            errors["description"] = "is required"
        if quantity_value < 0:
            errors["quantity"] = "must be non-negative"
        if price_value < 0:
            errors["unit_price"] = "must be non-negative"
        if tax_value < 0 or tax_value > HUNDRED:
            errors["tax_rate_percent"] = "must be between 0 and 100"
        for name, value in (
            ("quantity", quantity_value),
            ("unit_price", price_value),
            ("tax_rate_percent", tax_value),
        ):
            if name not in errors and scale_of(value) > STORAGE_SCALE:
                errors[name] = f"must have at most {STORAGE_SCALE} decimal places"
        if errors:
            raise ValidationError("Invalid line item", errors)

        item = cls(
            id=id or uuid.uuid4().hex,
            description=str(description).strip(),
            quantity=quantity_value,
            unit_price=price_value,
            tax_rate_percent=tax_value,
            package_id=package_id,
            tracking_number=tracking_number,
            service_type=service_type,
        )
        item.derive()
        return item

    def derive(self, decimal_places: int = DEFAULT_DECIMAL_PLACES) -> None:
        """Recalculate ``amount``, ``tax_amount`` and ``total`` at currency precision."""
        self.amount = quantize(
            to_amount(self.quantity * self.unit_price, field="line_item.amount"), decimal_places
        )
        self.tax_amount = quantize(
            to_amount(self.amount * self.tax_rate_percent / HUNDRED, field="line_item.tax_amount"),
            decimal_places,
        )
        self.total = self.amount + self.tax_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "tax_rate_percent": str(self.tax_rate_percent),
            "amount": str(self.amount),
            "tax_amount": str(self.tax_amount),
            "total": str(self.total),
            "package_id": self.package_id,
            "tracking_number": self.tracking_number,
            "service_type": self.service_type,
        }


# ==== LEDGER ==== #


@dataclass
class InvoiceLedger:
    """
    An invoice and its recomputed totals.

    Build one with ``InvoiceLedger.open(...)``; the number is assigned by
    the invoice number generator when the ledger is first persisted.
    """

    id: str
    currency: str
    issue_date: datetime
    due_date: datetime
    number: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    line_items: List[LineItem] = field(default_factory=list)
    discount: Optional[Discount] = None
    subtotal: Decimal = ZERO
    tax_total: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    balance_due: Decimal = ZERO
    payment_history: List[PaymentRecord] = field(default_factory=list)
    payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS
    decimal_places: int = DEFAULT_DECIMAL_PLACES
    customer: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    rate_table: Optional[Dict[str, Any]] = None
    package_id: Optional[str] = None

    @classmethod
    def open(
        cls,
        currency: str,
        line_items: Optional[List[LineItem]] = None,
        discount: Optional[Discount] = None,
        issue_date: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
        payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS,
        **extra: Any,
    ) -> "InvoiceLedger":
        """
        Open a new draft ledger with totals already computed.

        The due date defaults to the issue date plus the payment terms.
        """
        if payment_terms_days < 0:
            raise ValidationError("Payment terms must be non-negative", {"payment_terms_days": payment_terms_days})

        issue_date = issue_date or datetime.now(timezone.utc)
        ledger = cls(
            id=extra.pop("id", None) or uuid.uuid4().hex,
            currency=currency.upper(),
            issue_date=issue_date,
            due_date=due_date or issue_date + timedelta(days=payment_terms_days),
            line_items=list(line_items or []),
            discount=discount,
            payment_terms_days=payment_terms_days,
            **extra,
        )
        ledger.recompute()
        return ledger

    # --► RECOMPUTATION

    def recompute(self) -> None:
        """
        Recalculate every derived field from the line items and discount.

        Idempotent, and a no-op once the invoice is cancelled.
        """
        if self.status == InvoiceStatus.CANCELLED:
            return

        start = time.perf_counter()
        with tracer.start_as_current_span("invoice_recompute") as span:
            span.set_attribute("invoice_id", self.id)
            span.set_attribute("line_item_count", len(self.line_items))

            for item in self.line_items:
                item.derive(self.decimal_places)

            self.subtotal = sum((item.amount for item in self.line_items), ZERO)
            self.tax_total = sum((item.tax_amount for item in self.line_items), ZERO)
            self.discount_amount = (
                quantize(self.discount.amount_for(self.subtotal), self.decimal_places)
                if self.discount else ZERO
            )
            self.total = to_amount(self.subtotal + self.tax_total - self.discount_amount, field="invoice.total")
            self.balance_due = quantize(
                self.total - to_amount(self.amount_paid, field="invoice.amount_paid", allow_negative=True),
                self.decimal_places,
            )

        invoice_recompute_seconds.observe(time.perf_counter() - start)

    # --► EDITING

    def _require_draft(self, action: str) -> None:
        if self.status != InvoiceStatus.DRAFT:
            raise ValidationError(
                f"Cannot {action} on a {self.status.value} invoice",
                {"status": self.status.value},
            )

    def add_line_item(self, item: LineItem) -> LineItem:
        self._require_draft("add line items")
        if any(existing.id == item.id for existing in self.line_items):
            raise ValidationError("Duplicate line item id", {"id": item.id})

        self.line_items.append(item)
        self.recompute()
        return item

    def remove_line_item(self, item_id: str) -> LineItem:
        self._require_draft("remove line items")
        for index, item in enumerate(self.line_items):
            if item.id == item_id:
                removed = self.line_items.pop(index)
                self.recompute()
                return removed
        raise ValidationError("Line item not found", {"id": item_id})

    def set_discount(self, discount: Optional[Discount]) -> None:
        """Replace the discount; ``None`` clears it."""
        self._require_draft("change the discount")
        self.discount = discount
        self.recompute()

    # --► LIFECYCLE

    def transition(self, new_status: InvoiceStatus) -> None:
        """Move to ``new_status``, counting and logging the change."""
        if new_status == self.status:
            return

        old_status = self.status
        self.status = new_status
        invoice_status_transitions_total.labels(
            from_status=old_status.value, to_status=new_status.value
        ).inc()
        logger.info(
            f"Invoice {self.number or self.id} moved from {old_status.value} to {new_status.value}",
            invoice_id=self.id,
            invoice_number=self.number,
            from_status=old_status.value,
            to_status=new_status.value,
        )

    def send(self) -> None:
        """
        Finalize a draft and mark it sent.

        Raises:
            ValidationError: If the invoice is not a draft or has no line items
        """
        self._require_draft("send")
        if not self.line_items:
            raise ValidationError("Cannot send an invoice without line items", {"id": self.id})
        self.transition(InvoiceStatus.SENT)

    def cancel(self) -> None:
        """Cancel the invoice; cancelling twice is a no-op."""
        if self.status == InvoiceStatus.CANCELLED:
            return
        if self.status == InvoiceStatus.PAID:
            raise ValidationError("Cannot cancel a paid invoice", {"status": self.status.value})
        self.transition(InvoiceStatus.CANCELLED)

    def is_past_due(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        due_date = self.due_date
        if due_date.tzinfo is None:
            due_date = due_date.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now > due_date

    def refresh_status(self, now: Optional[datetime] = None) -> InvoiceStatus:
        """Lazily flag a sent invoice as overdue once its due date has passed."""
        if (
            self.status == InvoiceStatus.SENT
            and self.balance_due > 0
            and self.is_past_due(now)
        ):
            self.transition(InvoiceStatus.OVERDUE)
        return self.status

    # --► SERIALIZATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "status": self.status.value,
            "currency": self.currency,
            "issue_date": self.issue_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "payment_terms_days": self.payment_terms_days,
            "decimal_places": self.decimal_places,
            "line_items": [item.to_dict() for item in self.line_items],
            "discount": self.discount.to_dict() if self.discount else None,
            "subtotal": str(self.subtotal),
            "tax_total": str(self.tax_total),
            "discount_amount": str(self.discount_amount),
            "total": str(self.total),
            "amount_paid": str(self.amount_paid),
            "balance_due": str(self.balance_due),
            "payment_history": [payment.to_dict() for payment in self.payment_history],
            "customer": dict(self.customer),
            "notes": self.notes,
            "rate_table": self.rate_table,
            "package_id": self.package_id,
        }
