# ==== INVOICE ROUTES ==== #

"""
Invoice lifecycle routes.

Drafts are opened from explicit line items or from a package, edited
while in draft, sent, paid and cancelled. Reads apply the lazy overdue
check, so a sent invoice past its due date is reported as overdue.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from parcel_billing.observability.tracing import get_tracer
from parcel_billing.routes.deps import get_billing_service
from parcel_billing.schemas.billing import (
    BulkPaymentRequest,
    BulkPaymentResponse,
    DiscountRequest,
    InvoiceCreateRequest,
    InvoiceListResponse,
    InvoiceResponse,
    LineItemRequest,
    PackageInvoiceRequest,
    PaymentRequest,
)
from parcel_billing.services.billing import BillingService
from parcel_billing.services.ledger import InvoiceLedger, InvoiceStatus


router = APIRouter()
tracer = get_tracer(__name__)


def _response(service: BillingService, ledger: InvoiceLedger) -> InvoiceResponse:
    return InvoiceResponse.from_ledger(ledger, service.summary(ledger))


# ==== CREATION ==== #


@router.post("", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    request: InvoiceCreateRequest,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    """
    Open a draft invoice from explicit line items.

    Args:
        request (InvoiceCreateRequest): Line items, discount and invoice details
        service (BillingService): Billing service dependency

    Returns:
        InvoiceResponse: Numbered draft with recomputed totals
    """
    with tracer.start_as_current_span("create_invoice_endpoint") as span:
        line_items = [item.to_line_item() for item in request.line_items]
        discount = request.discount.to_discount() if request.discount else None

        ledger = await service.create_invoice(
            line_items,
            discount=discount,
            currency=request.currency,
            **request.details(),
        )

        span.set_attribute("invoice_number", ledger.number)
        return _response(service, ledger)


@router.post("/from-package", response_model=InvoiceResponse, status_code=201)
async def invoice_package(
    request: PackageInvoiceRequest,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    """Price a package with the active rates and open a draft for it."""
    ledger = await service.invoice_package(
        request.to_charges(),
        currency=request.currency,
        declared_value_currency=request.declared_value_currency,
        customer=request.customer.model_dump(exclude_none=True) if request.customer else {},
        notes=request.notes,
        payment_terms_days=request.payment_terms_days,
    )
    return _response(service, ledger)


@router.post("/payments/bulk", response_model=BulkPaymentResponse)
async def apply_bulk_payment(
    request: BulkPaymentRequest,
    service: BillingService = Depends(get_billing_service),
) -> BulkPaymentResponse:
    """
    Split one payment across several invoices.

    Nothing is applied unless every share is valid and, when a total is
    given, the shares add up to it.
    """
    with tracer.start_as_current_span("apply_bulk_payment_endpoint") as span:
        span.set_attribute("items", len(request.items))

        ledgers = await service.apply_bulk_payment(
            request.shares(),
            method=request.method,
            reference=request.reference,
            total=request.total,
        )

        return BulkPaymentResponse(
            invoices=[_response(service, ledger) for ledger in ledgers],
            count=len(ledgers),
            total=sum((item.amount for item in request.items), Decimal("0")),
        )


# ==== READS ==== #


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    status: Optional[InvoiceStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: BillingService = Depends(get_billing_service),
) -> InvoiceListResponse:
    ledgers = await service.list_invoices(status=status, limit=limit, offset=offset)
    return InvoiceListResponse(
        invoices=[_response(service, ledger) for ledger in ledgers],
        count=len(ledgers),
        limit=limit,
        offset=offset,
    )


@router.get("/by-number/{number}", response_model=InvoiceResponse)
async def get_invoice_by_number(
    number: str,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    return _response(service, await service.get_invoice_by_number(number))


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    return _response(service, await service.get_invoice(invoice_id))


# ==== DRAFT EDITING ==== #


@router.post("/{invoice_id}/line-items", response_model=InvoiceResponse)
async def add_line_item(
    invoice_id: str,
    request: LineItemRequest,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    ledger = await service.add_line_item(invoice_id, request.to_line_item())
    return _response(service, ledger)


@router.delete("/{invoice_id}/line-items/{item_id}", response_model=InvoiceResponse)
async def remove_line_item(
    invoice_id: str,
    item_id: str,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    ledger = await service.remove_line_item(invoice_id, item_id)
    return _response(service, ledger)


@router.put("/{invoice_id}/discount", response_model=InvoiceResponse)
async def set_discount(
    invoice_id: str,
    request: Optional[DiscountRequest] = None,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    """Replace the discount; an empty body clears it."""
    discount = request.to_discount() if request else None
    ledger = await service.set_discount(invoice_id, discount)
    return _response(service, ledger)


# ==== LIFECYCLE ==== #


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: str,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    return _response(service, await service.send_invoice(invoice_id))


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: str,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    return _response(service, await service.cancel_invoice(invoice_id))


@router.post("/{invoice_id}/payments", response_model=InvoiceResponse)
async def apply_payment(
    invoice_id: str,
    request: PaymentRequest,
    service: BillingService = Depends(get_billing_service),
) -> InvoiceResponse:
    """
    Apply a payment to an invoice.

    Overpayment is accepted and reported as a negative balance due.
    """
    with tracer.start_as_current_span("apply_payment_endpoint") as span:
        span.set_attribute("invoice_id", invoice_id)

        ledger = await service.apply_payment(
            invoice_id,
            request.amount,
            method=request.method,
            reference=request.reference,
            date=request.date,
        )

        span.set_attribute("status", ledger.status.value)
        return _response(service, ledger)
