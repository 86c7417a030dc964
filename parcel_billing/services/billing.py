# ==== BILLING SERVICE ==== #

"""
Billing service: the collaborator-facing API of the billing engine.

This module wires the fee calculator, invoice ledger, invoice number
generator, payment applier and currency converter to an invoice store.
Request handlers and the CLI go through ``BillingService`` rather than
re-deriving any formula themselves.
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from parcel_billing.business.errors import InvalidPayment, InvoiceNotFound
from parcel_billing.observability.logging import get_logger, log_business_event
from parcel_billing.observability.metrics import invoices_created_total
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.currency import CurrencyConverter
from parcel_billing.services.fee_calculator import (
    FeeBreakdown,
    PackageCharges,
    compute_fees,
    fee_line_items,
)
from parcel_billing.services.invoice_numbers import InvoiceNumberGenerator
from parcel_billing.services.ledger import (
    Discount,
    InvoiceLedger,
    InvoiceStatus,
    LineItem,
)
from parcel_billing.services.money import ZERO, to_amount
from parcel_billing.services.payments import Payment, PaymentApplier
from parcel_billing.services.rates import RateTable, default_rate_table
from parcel_billing.settings import settings


tracer = get_tracer(__name__)
logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==== RATE TABLE PROVIDERS ==== #


class RateTableProvider(Protocol):
    """Source of the active rate table."""

    async def get_rate_table(self) -> RateTable: ...

    async def save_rate_table(self, rate_table: RateTable, updated_by: Optional[str] = None) -> None: ...


class PolicyRateTableProvider:
    """Active rates from the YAML policy, optionally replaced in memory."""

    def __init__(self, rate_table: Optional[RateTable] = None):
        self._rate_table = rate_table

    async def get_rate_table(self) -> RateTable:
        return self._rate_table or default_rate_table()

    async def save_rate_table(self, rate_table: RateTable, updated_by: Optional[str] = None) -> None:
        self._rate_table = rate_table


class StoredRateTableProvider:
    """Newest stored rate table version, falling back to the policy."""

    def __init__(self, rate_store):
        self.rate_store = rate_store

    async def get_rate_table(self) -> RateTable:
        stored = await self.rate_store.latest()
        return stored or default_rate_table()

    async def save_rate_table(self, rate_table: RateTable, updated_by: Optional[str] = None) -> None:
        await self.rate_store.save(rate_table, updated_by=updated_by)


# ==== BILLING SERVICE CLASS ==== #


class BillingService:
    """
    Service for fee computation, invoicing and payments.

    Args:
        store: ``InvoiceStore`` implementation
        converter (CurrencyConverter): Converter over the currency catalogue
        rate_provider (RateTableProvider): Source of the active rate table
        clock (Callable[[], datetime]): Current time, UTC
    """

    def __init__(
        self,
        store,
        converter: CurrencyConverter,
        rate_provider: Optional[RateTableProvider] = None,
        clock: Callable[[], datetime] = utcnow,
        default_currency: Optional[str] = None,
        payment_terms_days: Optional[int] = None,
    ):
        self.store = store
        self.converter = converter
        self.rate_provider = rate_provider or PolicyRateTableProvider()
        self.clock = clock
        self.default_currency = (default_currency or settings.DEFAULT_CURRENCY).upper()
        self.payment_terms_days = (
            payment_terms_days if payment_terms_days is not None else settings.DEFAULT_PAYMENT_TERMS_DAYS
        )
        self.numbers = InvoiceNumberGenerator(
            store,
            prefix=settings.INVOICE_NUMBER_PREFIX,
            max_attempts=settings.INVOICE_NUMBER_MAX_ATTEMPTS,
        )
        self.payments = PaymentApplier()

    # ==== RATES ==== #

    async def active_rates(self) -> RateTable:
        return await self.rate_provider.get_rate_table()

    async def update_rates(self, rate_table: RateTable, updated_by: Optional[str] = None) -> RateTable:
        """Store a new active rate table. Existing invoices keep their snapshot."""
        await self.rate_provider.save_rate_table(rate_table, updated_by=updated_by)
        log_business_event(
            "rate_table_updated",
            updated_by=updated_by,
            **rate_table.to_dict(),
        )
        return rate_table

    async def adjust_rates(self, overrides: Dict[str, Any], updated_by: Optional[str] = None) -> RateTable:
        """Store the active rate table with ``overrides`` applied on top."""
        current = await self.active_rates()
        return await self.update_rates(current.with_overrides(**overrides), updated_by=updated_by)

    # ==== FEES ==== #

    def normalize_package(
        self,
        package: PackageCharges,
        rates: RateTable,
        declared_value_currency: Optional[str] = None,
    ) -> PackageCharges:
        """Express the declared value in the rate table's base currency."""
        if not declared_value_currency or declared_value_currency.upper() == rates.base_currency:
            return package

        converted = self.converter.convert(
            package.declared_value, declared_value_currency, rates.base_currency
        )
        return replace(package, declared_value=converted)

    def compute_fees(
        self,
        package: PackageCharges,
        rate_table: RateTable,
        now: Optional[datetime] = None,
    ) -> FeeBreakdown:
        return compute_fees(package, rate_table, now=now or self.clock())

    def convert_breakdown(self, breakdown: FeeBreakdown, currency: str) -> FeeBreakdown:
        """Breakdown in ``currency``, each component rounded to its decimal places."""
        currency = currency.upper()

        def _convert(amount: Decimal) -> Decimal:
            value = self.converter.convert(amount, breakdown.currency, currency)
            return self.converter.round(value, currency)

        return replace(
            breakdown,
            shipping_cost=_convert(breakdown.shipping_cost),
            storage_fee=_convert(breakdown.storage_fee),
            customs_duty=_convert(breakdown.customs_duty),
            currency=currency,
        )

    # ==== INVOICE CREATION ==== #

    async def create_invoice(
        self,
        line_items: List[LineItem],
        discount: Optional[Discount] = None,
        currency: Optional[str] = None,
        **details: Any,
    ) -> InvoiceLedger:
        """
        Open, number and persist a draft invoice.

        Args:
            line_items (List[LineItem]): Validated line items
            discount (Optional[Discount]): Invoice-level discount
            currency (Optional[str]): Invoice currency, defaults to settings
            **details: ``customer``, ``notes``, ``issue_date``, ``due_date``,
                ``payment_terms_days``, ``rate_table``, ``package_id``,
                ``decimal_places`` (defaults to the currency's)

        Returns:
            InvoiceLedger: Persisted draft with its number assigned

        Raises:
            UnknownCurrency: If the currency is not in the catalogue
            ConflictError: If no invoice number could be allocated
        """
        with tracer.start_as_current_span("create_invoice") as span:
            info = self.converter.currency(currency or self.default_currency)
            currency = info.code
            details.setdefault("decimal_places", info.decimal_places)

            if details.get("payment_terms_days") is None:
                details["payment_terms_days"] = self.payment_terms_days
            if details.get("issue_date") is None:
                details["issue_date"] = self.clock()

            ledger = InvoiceLedger.open(
                currency=currency,
                line_items=line_items,
                discount=discount,
                **details,
            )
            await self.numbers.assign(ledger, self.store.add)

            span.set_attribute("invoice_id", ledger.id)
            span.set_attribute("invoice_number", ledger.number)
            span.set_attribute("total", float(ledger.total))

            invoices_created_total.labels(currency=currency).inc()
            log_business_event(
                "invoice_created",
                invoice_id=ledger.id,
                invoice_number=ledger.number,
                currency=currency,
                total=str(ledger.total),
                line_items=len(ledger.line_items),
            )

            return ledger

    async def invoice_package(
        self,
        package: PackageCharges,
        currency: Optional[str] = None,
        declared_value_currency: Optional[str] = None,
        **details: Any,
    ) -> InvoiceLedger:
        """
        Price a package with the active rates and open an invoice for it.

        The rate table used is frozen onto the invoice. Charges are
        converted into the invoice currency and rounded to its decimal
        places before they become line items.
        """
        with tracer.start_as_current_span("invoice_package") as span:
            span.set_attribute("package_id", package.package_id or "")

            now = self.clock()
            rates = await self.active_rates()
            package = self.normalize_package(package, rates, declared_value_currency)
            breakdown = self.compute_fees(package, rates, now=now)

            currency = (currency or self.default_currency).upper()
            breakdown = self.convert_breakdown(breakdown, currency)

            items = fee_line_items(breakdown, package=package, rates=rates)

            details.setdefault("package_id", package.package_id)
            details.setdefault("issue_date", now)
            return await self.create_invoice(
                items,
                currency=currency,
                rate_table=rates.to_dict(),
                **details,
            )

    # ==== INVOICE ACCESS ==== #

    async def _load(self, invoice_id: str) -> InvoiceLedger:
        ledger = await self.store.get(invoice_id)
        if ledger is None:
            raise InvoiceNotFound(invoice_id)
        return ledger

    async def _refresh(self, ledger: InvoiceLedger) -> InvoiceLedger:
        before = ledger.status
        if ledger.refresh_status(self.clock()) != before:
            await self.store.save(ledger)
        return ledger

    async def get_invoice(self, invoice_id: str) -> InvoiceLedger:
        """Load an invoice, flagging it overdue if its due date has passed."""
        return await self._refresh(await self._load(invoice_id))

    async def get_invoice_by_number(self, number: str) -> InvoiceLedger:
        ledger = await self.store.get_by_number(number)
        if ledger is None:
            raise InvoiceNotFound(number)
        return await self._refresh(ledger)

    async def list_invoices(
        self,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[InvoiceLedger]:
        ledgers = await self.store.list(status=status, limit=limit, offset=offset)
        return [await self._refresh(ledger) for ledger in ledgers]

    # ==== DRAFT EDITING ==== #

    async def add_line_item(self, invoice_id: str, item: LineItem) -> InvoiceLedger:
        ledger = await self._load(invoice_id)
        ledger.add_line_item(item)
        await self.store.save(ledger)
        return ledger

    async def remove_line_item(self, invoice_id: str, item_id: str) -> InvoiceLedger:
        ledger = await self._load(invoice_id)
        ledger.remove_line_item(item_id)
        await self.store.save(ledger)
        return ledger

    async def set_discount(self, invoice_id: str, discount: Optional[Discount]) -> InvoiceLedger:
        ledger = await self._load(invoice_id)
        ledger.set_discount(discount)
        await self.store.save(ledger)
        return ledger

    # ==== LIFECYCLE ==== #

    async def send_invoice(self, invoice_id: str) -> InvoiceLedger:
        ledger = await self._load(invoice_id)
        ledger.send()
        await self.store.save(ledger)

        log_business_event(
            "invoice_sent",
            invoice_id=ledger.id,
            invoice_number=ledger.number,
            total=str(ledger.total),
            due_date=ledger.due_date.isoformat(),
        )
        return ledger

    async def cancel_invoice(self, invoice_id: str) -> InvoiceLedger:
        ledger = await self._load(invoice_id)
        ledger.cancel()
        await self.store.save(ledger)

        log_business_event(
            "invoice_cancelled",
            invoice_id=ledger.id,
            invoice_number=ledger.number,
        )
        return ledger

    async def apply_payment(
        self,
        invoice_id: str,
        amount: Any,
        method: str = "cash",
        reference: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> InvoiceLedger:
        """
        Apply a payment to a stored invoice.

        Raises:
            InvoiceNotFound: If the invoice does not exist
            InvalidPayment: If the payment is rejected by ``PaymentApplier.validate``
        """
        ledger = await self._load(invoice_id)
        self.payments.apply(
            ledger,
            Payment(amount=amount, method=method, reference=reference, date=date),
            now=self.clock(),
        )
        await self.store.save(ledger)
        return ledger

    async def apply_bulk_payment(
        self,
        items: Sequence[Tuple[str, Any]],
        method: str = "cash",
        reference: Optional[str] = None,
        total: Any = None,
    ) -> List[InvoiceLedger]:
        """
        Apply one payment split across several invoices.

        Every invoice is loaded and every share validated before any
        ledger is touched, so a bad item leaves all invoices unchanged.

        Args:
            items (Sequence[Tuple[str, Any]]): ``(invoice_id, amount)`` pairs
            method (str): Payment method recorded on every share
            reference (Optional[str]): Reference recorded on every share
            total (Any): Expected sum of the shares, checked when given

        Returns:
            List[InvoiceLedger]: Updated ledgers in request order

        Raises:
            InvoiceNotFound: If any invoice does not exist
            InvalidPayment: If there are no items, an invoice repeats, a
                share is invalid, or the shares do not add up to ``total``
        """
        with tracer.start_as_current_span("apply_bulk_payment") as span:
            span.set_attribute("items", len(items))

            if not items:
                raise InvalidPayment("Bulk payment has no items")

            invoice_ids = [invoice_id for invoice_id, _ in items]
            duplicates = sorted({i for i in invoice_ids if invoice_ids.count(i) > 1})
            if duplicates:
                raise InvalidPayment("Invoice appears more than once", {"invoice_ids": duplicates})

            now = self.clock()
            batch = []
            for invoice_id, amount in items:
                ledger = await self._load(invoice_id)
                payment = Payment(amount=amount, method=method, reference=reference, date=now)
                batch.append((ledger, payment, self.payments.validate(ledger, payment)))
            received = sum((share for _, _, share in batch), ZERO)

            if total is not None:
                currencies = sorted({ledger.currency for ledger, _, _ in batch})
                if len(currencies) > 1:
                    raise InvalidPayment(
                        "Bulk payment total needs invoices in one currency",
                        {"currencies": currencies},
                    )
                expected = to_amount(total, field="bulk_payment.total", allow_negative=True)
                if received != expected:
                    raise InvalidPayment(
                        "Payment shares do not add up to the total",
                        {"total": str(total), "sum": str(received)},
                    )

            for ledger, payment, _ in batch:
                self.payments.apply(ledger, payment, now=now)
                await self.store.save(ledger)

            log_business_event(
                "bulk_payment_applied",
                invoice_ids=invoice_ids,
                method=method,
                reference=reference,
                total=str(received),
            )
            return [ledger for ledger, _, _ in batch]

    # ==== CURRENCY ==== #

    def convert(self, amount: Any, from_currency: str, to_currency: str) -> Decimal:
        return self.converter.convert(amount, from_currency, to_currency)

    def format(self, amount: Any, currency_code: str) -> str:
        return self.converter.format(amount, currency_code)

    def summary(self, ledger: InvoiceLedger) -> Dict[str, str]:
        """Display strings for the ledger totals in its own currency."""
        return {
            name: self.format(getattr(ledger, name), ledger.currency)
            for name in ("subtotal", "tax_total", "discount_amount", "total", "amount_paid", "balance_due")
        }
