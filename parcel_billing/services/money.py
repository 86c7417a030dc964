# ==== MONEY COERCION AND ANOMALY TRACKING ==== #

"""
Decimal money helpers shared by every billing computation.

All amounts in the engine are ``decimal.Decimal``. ``to_amount`` is the
single coercion point: values that are not finite numbers, or negative
where the field forbids it, become zero. Each coercion is an observable
computation anomaly (structured log line plus a Prometheus counter),
never an exception, so one malformed line item cannot abort a whole
invoice recompute.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from parcel_billing.observability.logging import get_logger
from parcel_billing.observability.metrics import computation_anomalies_total


logger = get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Scale of the persisted numeric columns
STORAGE_SCALE = 6


# ==== ANOMALY REPORTING ==== #


def record_anomaly(field: str, kind: str, value: Any, replacement: Decimal) -> None:
    """
    Log and count a computation anomaly.

    Args:
        field (str): Name of the field being computed
        kind (str): ``non_finite``, ``negative``, ``invalid`` or ``clamped``
        value (Any): Offending value
        replacement (Decimal): Value used instead
    """
    computation_anomalies_total.labels(field=field, kind=kind).inc()
    logger.warning(
        f"Computation anomaly on {field}: {value!r} replaced with {replacement}",
        field=field,
        anomaly_kind=kind,
        original_value=str(value),
        replacement=str(replacement),
    )


# ==== COERCION ==== #


def to_amount(value: Any, field: str = "amount", allow_negative: bool = False) -> Decimal:
    """
    Coerce a value into a finite Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion. ``None`` is treated as zero without an
    anomaly; anything unparsable, NaN, infinite or (unless allowed)
    negative is replaced with zero and reported.

    Args:
        value (Any): Number, numeric string, Decimal or None
        field (str): Field name used in anomaly reports
        allow_negative (bool): Keep negative values instead of clamping

    Returns:
        Decimal: Finite amount
    """
    if value is None:
        return ZERO

    if isinstance(value, bool):
        record_anomaly(field, "invalid", value, ZERO)
        return ZERO

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        record_anomaly(field, "invalid", value, ZERO)
        return ZERO

    if not amount.is_finite():
        record_anomaly(field, "non_finite", value, ZERO)
        return ZERO

    if amount < 0 and not allow_negative:
        record_anomaly(field, "negative", value, ZERO)
        return ZERO

    return amount


def clamp(value: Decimal, lower: Decimal, upper: Decimal, field: str) -> Decimal:
    """Clamp ``value`` into ``[lower, upper]``, reporting when it moves."""
    if value < lower:
        record_anomaly(field, "clamped", value, lower)
        return lower
    if value > upper:
        record_anomaly(field, "clamped", value, upper)
        return upper
    return value


def quantize(amount: Decimal, decimal_places: int) -> Decimal:
    """Round half-up to a currency's decimal places."""
    exponent = Decimal(1).scaleb(-decimal_places)
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def scale_of(amount: Decimal) -> int:
    """Significant decimal places of ``amount``; ``1.50`` has one."""
    exponent = amount.normalize().as_tuple().exponent
    return max(0, -exponent)
