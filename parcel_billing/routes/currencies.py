"""Currency catalogue and conversion routes."""

from typing import List

from fastapi import APIRouter, Depends

from parcel_billing.observability.tracing import get_tracer
from parcel_billing.routes.deps import get_converter
from parcel_billing.schemas.billing import ConvertRequest, ConvertResponse, CurrencyResponse
from parcel_billing.services.currency import CurrencyConverter


router = APIRouter()
tracer = get_tracer(__name__)


@router.get("", response_model=List[CurrencyResponse])
async def list_currencies(
    converter: CurrencyConverter = Depends(get_converter),
) -> List[CurrencyResponse]:
    """List supported currencies with their reference rates."""
    return [CurrencyResponse(**info.to_dict()) for info in converter.currencies.values()]


@router.post("/convert", response_model=ConvertResponse)
async def convert_amount(
    request: ConvertRequest,
    converter: CurrencyConverter = Depends(get_converter),
) -> ConvertResponse:
    """
    Convert an amount between currencies at the reference rates.

    Unknown currency codes are rejected with 422.
    """
    with tracer.start_as_current_span("convert_endpoint"):
        converted = converter.convert(request.amount, request.from_currency, request.to_currency)
        rounded = converter.round(converted, request.to_currency)

        return ConvertResponse(
            amount=request.amount,
            from_currency=request.from_currency.upper(),
            to_currency=request.to_currency.upper(),
            converted=rounded,
            formatted=converter.format(rounded, request.to_currency),
        )
