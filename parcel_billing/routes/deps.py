"""FastAPI dependencies shared by the billing routes."""

import functools

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_billing.services.billing import BillingService, StoredRateTableProvider
from parcel_billing.services.currency import CurrencyConverter, get_currency_converter
from parcel_billing.storage.db import get_db_session
from parcel_billing.storage.repository import SqlInvoiceStore, SqlRateTableStore


@functools.lru_cache(maxsize=1)
def get_converter() -> CurrencyConverter:
    """Process-wide converter over the currency catalogue."""
    return get_currency_converter()


async def get_billing_service(
    session: AsyncSession = Depends(get_db_session),
    converter: CurrencyConverter = Depends(get_converter),
) -> BillingService:
    """Request-scoped billing service bound to the request's session."""
    return BillingService(
        store=SqlInvoiceStore(session),
        converter=converter,
        rate_provider=StoredRateTableProvider(SqlRateTableStore(session)),
    )
