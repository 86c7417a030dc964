"""Rate table value object used for a single fee computation."""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Dict, Mapping

from parcel_billing.business.errors import ValidationError
from parcel_billing.services.money import to_amount


@dataclass(frozen=True)
class RateTable:
    """
    Pricing rules frozen for one computation.

    Shipping rates are per pound of weight; every monetary field is in
    ``base_currency``. Invoices keep the ``to_dict()`` snapshot of the
    table they were priced with.
    """

    base_rate: Decimal
    additional_rate: Decimal
    customs_duty_percent: Decimal
    customs_threshold: Decimal
    storage_free_days: int
    storage_daily_rate: Decimal
    base_currency: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RateTable":
        """
        Build a rate table from a policy mapping.

        Accepts both snake_case keys and the camelCase keys used by the
        admin shipping-charges settings (``baseRate``, ``customsDutyRate``...).

        Raises:
            ValidationError: If a field is missing, negative, or the duty
                percentage is outside [0, 100]
        """
        aliases = {
            "baseRate": "base_rate",
            "additionalRate": "additional_rate",
            "customsDutyRate": "customs_duty_percent",
            "customsDutyPercent": "customs_duty_percent",
            "customsThreshold": "customs_threshold",
            "storageFreeDays": "storage_free_days",
            "storageDailyRate": "storage_daily_rate",
            "baseCurrency": "base_currency",
        }
        normalized = {aliases.get(key, key): value for key, value in data.items()}

        missing = [f.name for f in fields(cls) if f.name not in normalized]
        if missing:
            raise ValidationError("Rate table is incomplete", {"missing": missing})

        errors: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        for name in (
            "base_rate", "additional_rate", "customs_duty_percent",
            "customs_threshold", "storage_daily_rate",
        ):
            amount = to_amount(normalized[name], field=f"rate_table.{name}", allow_negative=True)
            if amount < 0:
                errors[name] = "must be non-negative"
            values[name] = amount

        if values["customs_duty_percent"] > 100:
            errors["customs_duty_percent"] = "must be between 0 and 100"

        try:
            free_days = int(normalized["storage_free_days"])
        except (TypeError, ValueError):
            free_days = -1
        if free_days < 0:
            errors["storage_free_days"] = "must be a non-negative integer"

        currency = str(normalized["base_currency"] or "").strip().upper()
        if len(currency) != 3:
            errors["base_currency"] = "must be a 3-letter currency code"

        if errors:
            raise ValidationError("Invalid rate table", errors)

        return cls(storage_free_days=free_days, base_currency=currency, **values)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe snapshot; Decimals are rendered as strings."""
        return {
            "base_rate": str(self.base_rate),
            "additional_rate": str(self.additional_rate),
            "customs_duty_percent": str(self.customs_duty_percent),
            "customs_threshold": str(self.customs_threshold),
            "storage_free_days": self.storage_free_days,
            "storage_daily_rate": str(self.storage_daily_rate),
            "base_currency": self.base_currency,
        }

    def with_overrides(self, **overrides: Any) -> "RateTable":
        merged = {**self.to_dict(), **{k: v for k, v in overrides.items() if v is not None}}
        return RateTable.from_mapping(merged)


def default_rate_table() -> RateTable:
    """Rate table from the active rates policy."""
    from parcel_billing.services.policy_loader import get_rate_policy

    return RateTable.from_mapping(get_rate_policy())
