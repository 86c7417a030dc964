# ==== CURRENCY CONVERSION SERVICE ==== #

"""
Currency conversion and display formatting.

Conversion always goes through the common base of a rate snapshot:
``amount / rates[from] * rates[to]``. Snapshots are immutable,
timestamped values handed in by the caller; this module keeps no
process-wide rate cache, so the freshness policy belongs to whoever
supplies the snapshot.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from parcel_billing.business.errors import UnknownCurrency
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.money import quantize, record_anomaly, to_amount, ZERO


tracer = get_tracer(__name__)

# Splits "$1,234.56" / "1,234.56 zł" into prefix, sample number, suffix
_TEMPLATE_RE = re.compile(r"^(?P<prefix>\D*?)(?P<number>\d(?:[\d.,\s']*\d)?)(?P<suffix>\D*)$")


# ==== VALUE TYPES ==== #


@dataclass(frozen=True)
class CurrencyInfo:
    """Display rules for one currency."""

    code: str
    symbol: str
    decimal_places: int = 2
    format: str = ""
    name: str = ""
    exchange_rate: Decimal = Decimal("1")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CurrencyInfo":
        return cls(
            code=str(data["code"]).upper(),
            symbol=str(data.get("symbol", "")),
            decimal_places=int(data.get("decimal_places", data.get("decimalPlaces", 2))),
            format=str(data.get("format", "")),
            name=str(data.get("name", "")),
            exchange_rate=to_amount(
                data.get("exchange_rate", data.get("exchangeRate", 1)),
                field=f"currency.{data['code']}.exchange_rate",
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "symbol": self.symbol,
            "decimal_places": self.decimal_places,
            "format": self.format,
            "exchange_rate": str(self.exchange_rate),
        }


@dataclass(frozen=True)
class RateSnapshot:
    """
    Point-in-time mapping of currency code to rate relative to a base.

    Entries that are not positive finite numbers are dropped at
    construction (and reported as anomalies), so every rate in a snapshot
    is safe to divide by.
    """

    rates: Mapping[str, Decimal]
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        cleaned: Dict[str, Decimal] = {}
        for code, raw in dict(self.rates).items():
            rate = to_amount(raw, field=f"rate_snapshot.{code}")
            if rate <= 0:
                record_anomaly(f"rate_snapshot.{code}", "invalid", raw, ZERO)
                continue
            cleaned[str(code).upper()] = rate
        object.__setattr__(self, "rates", MappingProxyType(cleaned))

    def rate(self, code: str) -> Decimal:
        try:
            return self.rates[code.upper()]
        except KeyError:
            raise UnknownCurrency(code) from None

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.upper() in self.rates


class RateSnapshotProvider(Protocol):
    """Collaborator supplying the current rate snapshot."""

    def get_snapshot(self) -> RateSnapshot: ...


# ==== PURE FUNCTIONS ==== #


def convert(
    amount: Any,
    from_currency: str,
    to_currency: str,
    snapshot: RateSnapshot | Mapping[str, Any],
) -> Decimal:
    """
    Convert ``amount`` between currencies via the snapshot's base.

    Args:
        amount (Any): Amount in ``from_currency``
        from_currency (str): Source currency code
        to_currency (str): Target currency code
        snapshot (RateSnapshot | Mapping): Rates relative to a common base

    Returns:
        Decimal: Unrounded amount in ``to_currency``

    Raises:
        UnknownCurrency: If either code is absent from the snapshot
    """
    if not isinstance(snapshot, RateSnapshot):
        snapshot = RateSnapshot(rates=snapshot)

    source_rate = snapshot.rate(from_currency)
    target_rate = snapshot.rate(to_currency)

    value = to_amount(amount, field="convert.amount", allow_negative=True)
    if from_currency.upper() == to_currency.upper():
        return value
    return value / source_rate * target_rate


def format_amount(amount: Any, currency: CurrencyInfo) -> str:
    """
    Render an amount with the currency's symbol and template.

    The template's sample number decides the symbol position and the
    thousands/decimal separators: ``"$1,234.56"`` puts the symbol in
    front, ``"1,234.56 zł"`` after. Rounding is half-up to the
    currency's decimal places.
    """
    value = quantize(to_amount(amount, field="format.amount", allow_negative=True), currency.decimal_places)

    prefix, suffix = currency.symbol, ""
    thousands, decimal_sep = ",", "."

    match = _TEMPLATE_RE.match(currency.format or "")
    if match:
        prefix, suffix = match.group("prefix"), match.group("suffix")
        sample = match.group("number")
        separators = [ch for ch in sample if not ch.isdigit()]
        if len(separators) >= 2:
            thousands, decimal_sep = separators[0], separators[-1]
        elif len(separators) == 1:
            # "1,234" has only a grouping separator; "1234.5" only a decimal one
            if len(sample.split(separators[0])[-1]) == 3:
                thousands = separators[0]
            else:
                decimal_sep = separators[0]

    sign = "-" if value < 0 else ""
    digits = format(abs(value), f",.{currency.decimal_places}f")
    digits = digits.translate(str.maketrans({",": thousands, ".": decimal_sep}))

    return f"{sign}{prefix}{digits}{suffix}"


# ==== CONVERTER ==== #


class CurrencyConverter:
    """
    Converter bound to a currency catalogue and a snapshot provider.

    ``format`` never raises: an unknown code renders as the code followed
    by the amount to two decimals (``"XYZ 12.50"``).
    """

    def __init__(
        self,
        currencies: Iterable[CurrencyInfo],
        snapshot_provider: Optional[RateSnapshotProvider] = None,
    ):
        self.currencies: Dict[str, CurrencyInfo] = {c.code: c for c in currencies}
        self.snapshot_provider = snapshot_provider or CatalogueSnapshotProvider(self.currencies.values())

    def currency(self, code: str) -> CurrencyInfo:
        try:
            return self.currencies[code.upper()]
        except KeyError:
            raise UnknownCurrency(code) from None

    def convert(
        self,
        amount: Any,
        from_currency: str,
        to_currency: str,
        snapshot: Optional[RateSnapshot] = None,
    ) -> Decimal:
        with tracer.start_as_current_span("currency_convert") as span:
            span.set_attribute("from_currency", from_currency)
            span.set_attribute("to_currency", to_currency)
            return convert(amount, from_currency, to_currency, snapshot or self.snapshot_provider.get_snapshot())

    def format(self, amount: Any, currency_code: str) -> str:
        info = self.currencies.get(str(currency_code).upper())
        if info is None:
            value = to_amount(amount, field="format.amount", allow_negative=True)
            return f"{currency_code} {quantize(value, 2)}"
        return format_amount(amount, info)

    def round(self, amount: Decimal, currency_code: str) -> Decimal:
        """Round to the currency's decimal places (2 when unknown)."""
        info = self.currencies.get(currency_code.upper())
        return quantize(amount, info.decimal_places if info else 2)


class CatalogueSnapshotProvider:
    """Snapshot provider backed by the catalogue's reference rates."""

    def __init__(self, currencies: Iterable[CurrencyInfo]):
        self._rates = {c.code: c.exchange_rate for c in currencies}

    def get_snapshot(self) -> RateSnapshot:
        return RateSnapshot(rates=dict(self._rates))


class StaticSnapshotProvider:
    def __init__(self, snapshot: RateSnapshot):
        self.snapshot = snapshot

    def get_snapshot(self) -> RateSnapshot:
        return self.snapshot


def load_currency_catalogue(entries: Optional[List[Mapping[str, Any]]] = None) -> List[CurrencyInfo]:
    """Build ``CurrencyInfo`` values from the currency policy."""
    from parcel_billing.services.policy_loader import get_currency_policy

    return [CurrencyInfo.from_mapping(entry) for entry in (entries or get_currency_policy())]


def get_currency_converter() -> CurrencyConverter:
    """Converter over the configured catalogue and its reference rates."""
    return CurrencyConverter(load_currency_catalogue())
