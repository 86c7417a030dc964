# ==== FEE CALCULATOR ==== #

"""
Fee calculator for parcel shipping, storage, and customs charges.

This module is the single home of the package pricing formulas. Every
function is pure and total: negative or non-finite inputs are clamped to
zero (and reported as computation anomalies) instead of raising, and all
results are in the rate table's base currency.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, Optional

from parcel_billing.observability.metrics import fee_amount, fees_computed_total
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.ledger import LineItem
from parcel_billing.services.money import HUNDRED, ZERO, to_amount
from parcel_billing.services.rates import RateTable


tracer = get_tracer(__name__)

KG_TO_LB = Decimal("2.20462")


# ==== DATA TYPES ==== #


@dataclass(frozen=True)
class FeeBreakdown:
    """The three charge components of a package, all non-negative."""

    shipping_cost: Decimal
    storage_fee: Decimal
    customs_duty: Decimal
    currency: str
    # Billed facts, in pounds and whole days; None when not computed here
    weight_lbs: Optional[Decimal] = field(default=None, compare=False)
    days_in_storage: Optional[int] = field(default=None, compare=False)

    @property
    def total(self) -> Decimal:
        return self.shipping_cost + self.storage_fee + self.customs_duty

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shipping_cost": str(self.shipping_cost),
            "storage_fee": str(self.storage_fee),
            "customs_duty": str(self.customs_duty),
            "total": str(self.total),
            "currency": self.currency,
        }


@dataclass(frozen=True)
class PackageCharges:
    """
    Billable facts about a package, as supplied by the package record.

    ``declared_value`` must already be in the rate table's base currency.
    When ``days_in_storage`` is not given it is derived from
    ``received_at`` (or ``created_at``) at computation time.
    """

    weight: Any
    declared_value: Any = 0
    days_in_storage: Optional[int] = None
    weight_unit: str = "lb"
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    package_id: Optional[str] = None
    tracking_number: Optional[str] = None

    def weight_lbs(self) -> Decimal:
        weight = to_amount(self.weight, field="package.weight")
        if self.weight_unit.lower() in ("kg", "kgs", "kilogram", "kilograms"):
            return weight * KG_TO_LB
        return weight

    def storage_days(self, now: Optional[datetime] = None) -> int:
        if self.days_in_storage is not None:
            return int(to_amount(self.days_in_storage, field="package.days_in_storage"))
        return days_in_storage(self.received_at, self.created_at, now)


# ==== FEE FORMULAS ==== #


def shipping_cost(weight: Any, rates: RateTable) -> Decimal:
    """
    Shipping cost for a package weight in pounds.

    The first whole or partial pound costs ``base_rate``; each additional
    pound, rounding partial pounds up, costs ``additional_rate``.

    Args:
        weight (Any): Package weight in pounds
        rates (RateTable): Active rate table

    Returns:
        Decimal: Shipping cost in base currency
    """
    weight = to_amount(weight, field="shipping.weight")
    if weight <= 0:
        return ZERO

    whole_units = int(weight.to_integral_value(rounding=ROUND_CEILING))
    additional_units = max(0, whole_units - 1)
    return rates.base_rate + additional_units * rates.additional_rate


def storage_fee(days_in_storage: Any, rates: RateTable) -> Decimal:
    """Storage fee for days beyond the free period."""
    days = to_amount(days_in_storage, field="storage.days")
    if days <= rates.storage_free_days:
        return ZERO
    return (days - rates.storage_free_days) * rates.storage_daily_rate


def customs_duty(declared_value: Any, rates: RateTable) -> Decimal:
    """
    Customs duty on a declared value in base currency.

    Values at or under the threshold are duty free; above it the duty
    percentage applies to the full declared value.
    """
    value = to_amount(declared_value, field="customs.declared_value")
    if value <= rates.customs_threshold:
        return ZERO
    return value * rates.customs_duty_percent / HUNDRED


def days_in_storage(
    received_at: Optional[datetime],
    created_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Whole days a package has been in storage.

    Uses ``received_at``, falling back to ``created_at``. Missing dates
    and future dates give zero. Naive datetimes are taken as UTC.
    """
    base = received_at or created_at
    if base is None:
        return 0

    now = now or datetime.now(timezone.utc)
    if base.tzinfo is None:
        base = base.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    elapsed = (now - base).total_seconds()
    return max(0, math.floor(elapsed / 86400))


# ==== BREAKDOWN ==== #


def compute_fees(
    package: PackageCharges,
    rates: RateTable,
    now: Optional[datetime] = None,
) -> FeeBreakdown:
    """
    Compute the fee breakdown for a package.

    Args:
        package (PackageCharges): Weight, declared value and storage facts
        rates (RateTable): Rate table frozen for this computation
        now (Optional[datetime]): Clock used to derive storage days

    Returns:
        FeeBreakdown: Charges in the rate table's base currency
    """
    with tracer.start_as_current_span("compute_fees") as span:
        weight = package.weight_lbs()
        days = package.storage_days(now)

        breakdown = FeeBreakdown(
            shipping_cost=shipping_cost(weight, rates),
            storage_fee=storage_fee(days, rates),
            customs_duty=customs_duty(package.declared_value, rates),
            currency=rates.base_currency,
            weight_lbs=weight,
            days_in_storage=days,
        )

        span.set_attribute("weight_lbs", float(weight))
        span.set_attribute("days_in_storage", days)
        span.set_attribute("fee_total", float(breakdown.total))

        fees_computed_total.labels(currency=rates.base_currency).inc()
        fee_amount.labels(component="shipping").observe(float(breakdown.shipping_cost))
        fee_amount.labels(component="storage").observe(float(breakdown.storage_fee))
        fee_amount.labels(component="customs").observe(float(breakdown.customs_duty))

        return breakdown


def fee_line_items(
    breakdown: FeeBreakdown,
    package: Optional[PackageCharges] = None,
    rates: Optional[RateTable] = None,
) -> List[LineItem]:
    """
    Materialize a fee breakdown as zero-tax invoice line items.

    Zero charges produce no line. Amounts are taken as they are; convert
    the breakdown into the invoice currency before calling this when the
    two differ. Descriptions quote the weight and storage days recorded
    on the breakdown, so ``package`` only supplies its identifiers.
    """
    package_id = package.package_id if package else None
    tracking_number = package.tracking_number if package else None

    items: List[LineItem] = []

    if breakdown.shipping_cost > 0:
        description = "Shipping charges"
        if breakdown.weight_lbs is not None:
            description = f"Shipping charges ({breakdown.weight_lbs:.1f} lbs)"
        items.append(LineItem.create(
            description=description,
            quantity=1,
            unit_price=breakdown.shipping_cost,
            package_id=package_id,
            tracking_number=tracking_number,
            service_type="shipping",
        ))

    if breakdown.storage_fee > 0:
        description = "Storage fee"
        if breakdown.days_in_storage is not None and rates is not None:
            extra_days = breakdown.days_in_storage - rates.storage_free_days
            description = f"Storage fee ({extra_days} days beyond free period)"
        items.append(LineItem.create(
            description=description,
            quantity=1,
            unit_price=breakdown.storage_fee,
            package_id=package_id,
            tracking_number=tracking_number,
            service_type="storage",
        ))

    if breakdown.customs_duty > 0:
        description = "Customs duty"
        if rates is not None:
            description = f"Customs duty ({rates.customs_duty_percent.normalize():f}% of declared value)"
        items.append(LineItem.create(
            description=description,
            quantity=1,
            unit_price=breakdown.customs_duty,
            package_id=package_id,
            tracking_number=tracking_number,
            service_type="customs",
        ))

    return items
