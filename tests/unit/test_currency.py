"""Unit tests for currency conversion and display formatting."""

from decimal import Decimal

import pytest

from parcel_billing.business.errors import UnknownCurrency
from parcel_billing.services.currency import (
    CurrencyInfo,
    RateSnapshot,
    convert,
    format_amount,
    load_currency_catalogue,
)


@pytest.mark.unit
class TestConvert:

    @pytest.fixture
    def snapshot(self):
        return RateSnapshot(rates={"USD": "1", "JMD": "155", "EUR": "0.92"})

    def test_via_common_base(self, snapshot):
        assert convert(Decimal("100"), "USD", "JMD", snapshot) == Decimal("15500")
        assert convert(Decimal("15500"), "JMD", "USD", snapshot) == Decimal("100")

    def test_cross_rate(self, snapshot):
        assert convert(Decimal("155"), "JMD", "EUR", snapshot) == Decimal("0.92")

    def test_same_currency_is_identity(self, snapshot):
        assert convert("12.34", "USD", "usd", snapshot) == Decimal("12.34")

    def test_plain_mapping_snapshot(self):
        assert convert(2, "USD", "JMD", {"USD": 1, "JMD": 155}) == Decimal("310")

    @pytest.mark.parametrize("source, target", [("USD", "XYZ"), ("XYZ", "USD")])
    def test_unknown_currency(self, snapshot, source, target):
        with pytest.raises(UnknownCurrency) as exc_info:
            convert(1, source, target, snapshot)
        assert exc_info.value.currency == "XYZ"
        assert exc_info.value.status_code == 422

    def test_snapshot_drops_unusable_rates(self):
        snapshot = RateSnapshot(rates={"USD": 1, "BAD": 0, "NEG": -3, "NAN": float("nan")})
        assert "USD" in snapshot
        assert "BAD" not in snapshot
        assert "NEG" not in snapshot
        assert "NAN" not in snapshot

    def test_snapshot_is_read_only(self):
        snapshot = RateSnapshot(rates={"USD": 1})
        with pytest.raises(TypeError):
            snapshot.rates["JMD"] = Decimal("155")


@pytest.mark.unit
class TestFormatAmount:

    @pytest.mark.parametrize("info, amount, expected", [
        (CurrencyInfo("USD", "$", 2, "$1,234.56"), "1234.5", "$1,234.50"),
        (CurrencyInfo("JMD", "J$", 2, "J$1,234.56"), "1400", "J$1,400.00"),
        (CurrencyInfo("JPY", "¥", 0, "¥1,234"), "1234.5", "¥1,235"),
        (CurrencyInfo("KWD", "KD", 3, "KD1,234.567"), "1.2345", "KD1.235"),
        (CurrencyInfo("PLN", "zł", 2, "1,234.56 zł"), "1234.56", "1,234.56 zł"),
        (CurrencyInfo("EUR", "€", 2, "€1.234,56"), "1234.56", "€1.234,56"),
        (CurrencyInfo("USD", "$", 2, "$1,234.56"), "-5", "-$5.00"),
    ])
    def test_templates(self, info, amount, expected):
        assert format_amount(Decimal(amount), info) == expected

    def test_missing_template_uses_symbol_prefix(self):
        assert format_amount(Decimal("10"), CurrencyInfo("ABC", "A", 2)) == "A10.00"


@pytest.mark.unit
class TestCurrencyConverter:

    def test_format_by_code(self, converter):
        assert converter.format(Decimal("1400"), "JMD") == "J$1,400.00"
        assert converter.format(Decimal("1400"), "jpy") == "¥1,400"

    def test_format_unknown_code_never_raises(self, converter):
        assert converter.format(Decimal("12.5"), "XYZ") == "XYZ 12.50"

    def test_convert_uses_provider_snapshot(self, converter):
        assert converter.convert(Decimal("100"), "USD", "JMD") == Decimal("15500")

    def test_round_to_currency_places(self, converter):
        assert converter.round(Decimal("1.2345"), "KWD") == Decimal("1.235")
        assert converter.round(Decimal("99.5"), "JPY") == Decimal("100")
        assert converter.round(Decimal("1.005"), "XYZ") == Decimal("1.01")

    def test_unknown_currency_lookup(self, converter):
        with pytest.raises(UnknownCurrency):
            converter.currency("XYZ")


@pytest.mark.unit
class TestCurrencyCatalogue:

    def test_policy_catalogue(self):
        catalogue = {info.code: info for info in load_currency_catalogue()}
        assert catalogue["JMD"].exchange_rate == Decimal("155")
        assert catalogue["JPY"].decimal_places == 0
        assert catalogue["KWD"].decimal_places == 3
        assert catalogue["USD"].decimal_places == 2

    def test_entries_accept_camel_case(self):
        [info] = load_currency_catalogue([
            {"code": "gbp", "symbol": "£", "decimalPlaces": 2, "exchangeRate": 0.79, "format": "£1,234.56"}
        ])
        assert info.code == "GBP"
        assert info.exchange_rate == Decimal("0.79")
