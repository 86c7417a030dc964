# ==== INVOICE AND RATE TABLE STORES ==== #

"""
Persistence for invoice ledgers and rate table versions.

``InvoiceStore`` is the collaborator contract the billing service depends
on; ``SqlInvoiceStore`` implements it over an async SQLAlchemy session and
translates the invoice number uniqueness violation into
``InvoiceNumberTaken`` so the number generator can retry.
"""

from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_billing.business.errors import InvoiceNumberTaken
from parcel_billing.observability.logging import get_logger
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.invoice_numbers import parse_sequence
from parcel_billing.services.ledger import (
    Discount,
    InvoiceLedger,
    InvoiceStatus,
    LineItem,
    PaymentRecord,
)
from parcel_billing.services.rates import RateTable
from parcel_billing.storage.models import (
    Invoice,
    InvoiceLineItem,
    InvoicePayment,
    RateTableVersion,
)


tracer = get_tracer(__name__)
logger = get_logger(__name__)

NUMBER_CONSTRAINT = "uq_invoice_number"


class InvoiceStore(Protocol):
    """Storage contract used by the billing service."""

    async def max_sequence_for_year(self, year: int, prefix: str) -> int: ...

    async def add(self, ledger: InvoiceLedger) -> None: ...

    async def get(self, invoice_id: str) -> Optional[InvoiceLedger]: ...

    async def get_by_number(self, number: str) -> Optional[InvoiceLedger]: ...

    async def save(self, ledger: InvoiceLedger) -> None: ...

    async def list(
        self,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[InvoiceLedger]: ...


# ==== ROW MAPPING ==== #


def _line_item_row(item: LineItem, position: int) -> InvoiceLineItem:
    return InvoiceLineItem(
        id=item.id,
        position=position,
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
        tax_rate_percent=item.tax_rate_percent,
        amount=item.amount,
        tax_amount=item.tax_amount,
        total=item.total,
        package_id=item.package_id,
        tracking_number=item.tracking_number,
        service_type=item.service_type,
    )


def _payment_row(payment: PaymentRecord, position: int) -> InvoicePayment:
    return InvoicePayment(
        position=position,
        amount=payment.amount,
        paid_at=payment.date,
        method=payment.method,
        reference=payment.reference,
    )


def apply_ledger(row: Invoice, ledger: InvoiceLedger) -> Invoice:
    """Copy header fields and totals from ``ledger`` onto ``row``."""
    row.number = ledger.number
    row.status = ledger.status.value
    row.currency = ledger.currency
    row.issue_date = ledger.issue_date
    row.due_date = ledger.due_date
    row.payment_terms_days = ledger.payment_terms_days
    row.decimal_places = ledger.decimal_places
    row.discount_type = ledger.discount.kind.value if ledger.discount else None
    row.discount_value = ledger.discount.value if ledger.discount else None
    row.subtotal = ledger.subtotal
    row.tax_total = ledger.tax_total
    row.discount_amount = ledger.discount_amount
    row.total = ledger.total
    row.amount_paid = ledger.amount_paid
    row.balance_due = ledger.balance_due
    row.customer = dict(ledger.customer)
    row.notes = ledger.notes
    row.rate_table = ledger.rate_table
    row.package_id = ledger.package_id
    return row


def ledger_to_row(ledger: InvoiceLedger) -> Invoice:
    row = apply_ledger(Invoice(id=ledger.id), ledger)
    row.line_items = [_line_item_row(item, i) for i, item in enumerate(ledger.line_items)]
    row.payments = [_payment_row(payment, i) for i, payment in enumerate(ledger.payment_history)]
    return row


def row_to_ledger(row: Invoice) -> InvoiceLedger:
    """Rebuild a ledger exactly as stored, without recomputing."""
    discount = None
    if row.discount_type:
        discount = Discount.create(row.discount_type, row.discount_value)

    return InvoiceLedger(
        id=row.id,
        number=row.number,
        status=InvoiceStatus(row.status),
        currency=row.currency,
        issue_date=row.issue_date,
        due_date=row.due_date,
        payment_terms_days=row.payment_terms_days,
        decimal_places=row.decimal_places,
        line_items=[
            LineItem(
                id=item.id,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                tax_rate_percent=item.tax_rate_percent,
                amount=item.amount,
                tax_amount=item.tax_amount,
                total=item.total,
                package_id=item.package_id,
                tracking_number=item.tracking_number,
                service_type=item.service_type,
            )
            for item in row.line_items
        ],
        discount=discount,
        subtotal=row.subtotal,
        tax_total=row.tax_total,
        discount_amount=row.discount_amount,
        total=row.total,
        amount_paid=row.amount_paid,
        balance_due=row.balance_due,
        payment_history=[
            PaymentRecord(
                amount=payment.amount,
                date=payment.paid_at,
                method=payment.method,
                reference=payment.reference,
            )
            for payment in row.payments
        ],
        customer=dict(row.customer or {}),
        notes=row.notes,
        rate_table=row.rate_table,
        package_id=row.package_id,
    )


# ==== SQL INVOICE STORE ==== #


class SqlInvoiceStore:
    """``InvoiceStore`` over an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def max_sequence_for_year(self, year: int, prefix: str) -> int:
        """Highest stored sequence for ``year``, 0 when there is none."""
        with tracer.start_as_current_span("invoice_store_max_sequence") as span:
            span.set_attribute("year", year)

            query = select(Invoice.number).where(Invoice.number.like(f"{prefix}-{year:04d}-%"))
            result = await self.session.execute(query)

            # Numeric max; string order breaks once sequences pass 9999
            sequences = (parse_sequence(number, prefix, year) for number in result.scalars().all())
            return max((s for s in sequences if s is not None), default=0)

    async def add(self, ledger: InvoiceLedger) -> None:
        """
        Insert a new numbered invoice.

        Raises:
            InvoiceNumberTaken: If the number violates the uniqueness constraint
        """
        with tracer.start_as_current_span("invoice_store_add") as span:
            span.set_attribute("invoice_number", ledger.number or "")

            # Savepoint keeps the outer transaction usable for the retry
            try:
                async with self.session.begin_nested():
                    self.session.add(ledger_to_row(ledger))
                    await self.session.flush()
            except IntegrityError as e:
                if NUMBER_CONSTRAINT in str(e.orig):
                    raise InvoiceNumberTaken(ledger.number) from e
                raise

    async def _get_row(self, invoice_id: str) -> Optional[Invoice]:
        return await self.session.get(Invoice, invoice_id)

    async def get(self, invoice_id: str) -> Optional[InvoiceLedger]:
        row = await self._get_row(invoice_id)
        return row_to_ledger(row) if row is not None else None

    async def get_by_number(self, number: str) -> Optional[InvoiceLedger]:
        result = await self.session.execute(select(Invoice).where(Invoice.number == number))
        row = result.scalar_one_or_none()
        return row_to_ledger(row) if row is not None else None

    async def save(self, ledger: InvoiceLedger) -> None:
        """
        Persist ledger changes onto an existing row.

        Line items are replaced wholesale; payments are append-only, so
        only entries past the stored history are inserted.
        """
        with tracer.start_as_current_span("invoice_store_save") as span:
            span.set_attribute("invoice_id", ledger.id)

            row = await self._get_row(ledger.id)
            if row is None:
                await self.add(ledger)
                return

            apply_ledger(row, ledger)

            row.line_items = [_line_item_row(item, i) for i, item in enumerate(ledger.line_items)]
            stored_payments = len(row.payments)
            for position, payment in enumerate(ledger.payment_history[stored_payments:], start=stored_payments):
                row.payments.append(_payment_row(payment, position))

            await self.session.flush()

    async def list(
        self,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[InvoiceLedger]:
        query = select(Invoice).order_by(Invoice.issue_date.desc(), Invoice.number.desc())
        if status is not None:
            query = query.where(Invoice.status == InvoiceStatus(status).value)
        query = query.limit(limit).offset(offset)

        result = await self.session.execute(query)
        return [row_to_ledger(row) for row in result.scalars().all()]


# ==== RATE TABLE VERSIONS ==== #


class SqlRateTableStore:
    """Stored rate table versions; the newest row is active."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest(self) -> Optional[RateTable]:
        query = select(RateTableVersion).order_by(
            RateTableVersion.created_at.desc(), RateTableVersion.id.desc()
        ).limit(1)
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        return RateTable.from_mapping(row.rates) if row is not None else None

    async def save(self, rate_table: RateTable, updated_by: Optional[str] = None) -> None:
        self.session.add(RateTableVersion(rates=rate_table.to_dict(), updated_by=updated_by))
        await self.session.flush()
        logger.info(
            "Rate table version stored",
            base_currency=rate_table.base_currency,
            updated_by=updated_by,
        )
