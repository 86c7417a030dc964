"""Unit tests for the billing CLI."""

import pytest
from click.testing import CliRunner

from parcel_billing.cli.billing import billing


@pytest.fixture
def runner():
    return CliRunner()


@pytest.mark.unit
class TestQuoteCommand:

    def test_quote_breakdown(self, runner):
        result = runner.invoke(billing, ["quote", "--weight", "3", "--declared-value", "20000", "--days", "10"])

        assert result.exit_code == 0, result.output
        assert "J$1,400.00" in result.output
        assert "J$150.00" in result.output
        assert "J$3,000.00" in result.output
        assert "J$4,550.00" in result.output

    def test_quote_in_kilograms(self, runner):
        # 2 kg is 4.41 lb, billed as 5 pounds
        result = runner.invoke(billing, ["quote", "--weight", "2", "--unit", "kg"])

        assert result.exit_code == 0, result.output
        assert "J$2,100.00" in result.output

    def test_quote_with_display_currency(self, runner):
        result = runner.invoke(billing, ["quote", "--weight", "1", "--currency", "usd"])

        assert result.exit_code == 0, result.output
        assert "Total (USD)" in result.output
        assert "$4.52" in result.output

    def test_quote_unknown_currency(self, runner):
        result = runner.invoke(billing, ["quote", "--weight", "1", "--currency", "XYZ"])
        assert result.exit_code == 1
        assert "XYZ" in result.output


@pytest.mark.unit
class TestRatesAndConvertCommands:

    def test_rates_table(self, runner):
        result = runner.invoke(billing, ["rates"])

        assert result.exit_code == 0, result.output
        assert "base_rate" in result.output
        assert "storage_free_days" in result.output

    def test_convert(self, runner):
        result = runner.invoke(billing, ["convert", "100", "USD", "JMD"])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "$100.00 = J$15,500.00"

    def test_convert_unknown_currency(self, runner):
        result = runner.invoke(billing, ["convert", "100", "USD", "XYZ"])
        assert result.exit_code == 1
        assert "Error" in result.output
