# ==== FEE AND RATE TABLE ROUTES ==== #

"""
Fee quotes and rate table management.

``POST /billing/fees`` prices a package with the active rate table;
``GET``/``PUT``/``PATCH /billing/rates`` read, replace and adjust that
table. Changing the rates never touches invoices already priced.
"""

from fastapi import APIRouter, Depends

from parcel_billing.observability.tracing import get_tracer
from parcel_billing.routes.deps import get_billing_service
from parcel_billing.schemas.billing import (
    FeeBreakdownResponse,
    PackageRequest,
    RateTablePatch,
    RateTableSchema,
    RateTableUpdate,
)
from parcel_billing.services.billing import BillingService


router = APIRouter()
tracer = get_tracer(__name__)


@router.post("/fees", response_model=FeeBreakdownResponse)
async def quote_fees(
    request: PackageRequest,
    service: BillingService = Depends(get_billing_service),
) -> FeeBreakdownResponse:
    """
    Compute the fee breakdown for a package.

    Args:
        request (PackageRequest): Weight, declared value and storage facts
        service (BillingService): Billing service dependency

    Returns:
        FeeBreakdownResponse: Charges in the rate table's base currency
    """
    with tracer.start_as_current_span("quote_fees_endpoint") as span:
        rates = await service.active_rates()
        package = service.normalize_package(
            request.to_charges(), rates, request.declared_value_currency
        )
        breakdown = service.compute_fees(package, rates)

        span.set_attribute("fee_total", float(breakdown.total))

        formatted = {
            "shipping_cost": service.format(breakdown.shipping_cost, breakdown.currency),
            "storage_fee": service.format(breakdown.storage_fee, breakdown.currency),
            "customs_duty": service.format(breakdown.customs_duty, breakdown.currency),
            "total": service.format(breakdown.total, breakdown.currency),
        }
        return FeeBreakdownResponse.from_breakdown(breakdown, formatted, rates)


@router.get("/rates", response_model=RateTableSchema)
async def get_rates(
    service: BillingService = Depends(get_billing_service),
) -> RateTableSchema:
    """Get the active rate table."""
    return RateTableSchema.from_rate_table(await service.active_rates())


@router.put("/rates", response_model=RateTableSchema)
async def update_rates(
    request: RateTableUpdate,
    service: BillingService = Depends(get_billing_service),
) -> RateTableSchema:
    """Store a new active rate table version."""
    with tracer.start_as_current_span("update_rates_endpoint") as span:
        rate_table = request.to_rate_table()
        span.set_attribute("base_currency", rate_table.base_currency)

        await service.update_rates(rate_table, updated_by=request.updated_by)
        return RateTableSchema.from_rate_table(rate_table)


@router.patch("/rates", response_model=RateTableSchema)
async def adjust_rates(
    request: RateTablePatch,
    service: BillingService = Depends(get_billing_service),
) -> RateTableSchema:
    """Store a new version changing only the supplied rates."""
    with tracer.start_as_current_span("adjust_rates_endpoint") as span:
        overrides = request.overrides()
        span.set_attribute("fields", ",".join(sorted(overrides)))

        rate_table = await service.adjust_rates(overrides, updated_by=request.updated_by)
        return RateTableSchema.from_rate_table(rate_table)
