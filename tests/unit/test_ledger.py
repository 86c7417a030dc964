"""Unit tests for invoice ledger recomputation, editing and lifecycle."""

from datetime import timedelta
from decimal import Decimal

import pytest

from parcel_billing.business.errors import ValidationError
from parcel_billing.services.ledger import (
    Discount,
    DiscountKind,
    InvoiceLedger,
    InvoiceStatus,
    LineItem,
)
from parcel_billing.services.money import quantize
from tests.factories.data_factories import FIXED_NOW


def assert_invariants(ledger: InvoiceLedger) -> None:
    places = ledger.decimal_places
    for item in ledger.line_items:
        assert item.amount == quantize(item.quantity * item.unit_price, places)
        assert item.tax_amount == quantize(item.amount * item.tax_rate_percent / 100, places)
        assert item.total == item.amount + item.tax_amount
    assert ledger.subtotal == sum(item.amount for item in ledger.line_items)
    assert ledger.tax_total == sum(item.tax_amount for item in ledger.line_items)
    assert 0 <= ledger.discount_amount <= ledger.subtotal
    assert ledger.total == ledger.subtotal + ledger.tax_total - ledger.discount_amount
    assert ledger.total >= 0
    assert ledger.balance_due == ledger.total - ledger.amount_paid


@pytest.mark.unit
class TestLineItem:

    def test_derived_fields(self):
        item = LineItem.create("Handling", quantity="2", unit_price="125.50", tax_rate_percent="15")
        assert item.amount == Decimal("251.00")
        assert item.tax_amount == Decimal("37.65")
        assert item.total == Decimal("288.65")

    @pytest.mark.parametrize("field, value", [
        ("quantity", "-1"),
        ("unit_price", "-0.01"),
        ("tax_rate_percent", "101"),
        ("tax_rate_percent", "-5"),
        ("quantity", "0.1234567"),
        ("unit_price", "1.0000001"),
    ])
    def test_invalid_values_are_rejected(self, field, value):
        kwargs = {"quantity": "1", "unit_price": "10", "tax_rate_percent": "0", field: value}
        with pytest.raises(ValidationError) as exc_info:
            LineItem.create("Handling", **kwargs)
        assert field in exc_info.value.details

    def test_description_required(self):
        with pytest.raises(ValidationError):
            LineItem.create("   ", unit_price="10")

    def test_non_finite_price_becomes_zero(self):
        item = LineItem.create("Handling", unit_price=float("inf"))
        assert item.unit_price == 0
        assert item.total == 0

    def test_trailing_zeros_do_not_count_as_precision(self):
        item = LineItem.create("Handling", unit_price="12.500000000")
        assert item.unit_price == Decimal("12.5")

    def test_amounts_rounded_half_up(self):
        item = LineItem.create("Handling", quantity="0.123456", unit_price="3", tax_rate_percent="7.5")
        assert item.amount == Decimal("0.37")
        assert item.tax_amount == Decimal("0.03")
        assert item.total == Decimal("0.40")

    def test_discount_precision_limited(self):
        with pytest.raises(ValidationError):
            Discount.fixed("0.0000001")


@pytest.mark.unit
class TestRecompute:

    def test_totals_and_invariants(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000", "400"])
        ledger.add_line_item(LineItem.create("Insurance", unit_price="200", tax_rate_percent="10"))

        assert ledger.subtotal == Decimal("1600")
        assert ledger.tax_total == Decimal("20")
        assert ledger.total == Decimal("1620")
        assert ledger.balance_due == Decimal("1620")
        assert_invariants(ledger)

    def test_percentage_discount(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000"], discount=Discount.percentage(10))
        assert ledger.discount_amount == Decimal("100")
        assert ledger.total == Decimal("900")
        assert_invariants(ledger)

    def test_fixed_discount(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000"], discount=Discount.fixed("250"))
        assert ledger.discount_amount == Decimal("250")
        assert ledger.total == Decimal("750")

    def test_discount_is_clamped_to_subtotal(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["100"], discount=Discount.fixed("500"))
        assert ledger.discount_amount == Decimal("100")
        assert ledger.total == 0
        assert_invariants(ledger)

    def test_idempotent(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["333.33", "0.01"], discount=Discount.percentage("12.5"))
        first = ledger.to_dict()
        ledger.recompute()
        assert ledger.to_dict() == first

    def test_never_touches_amount_paid(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000"])
        ledger.amount_paid = Decimal("300")
        ledger.recompute()
        assert ledger.amount_paid == Decimal("300")
        assert ledger.balance_due == Decimal("700")

    def test_cancelled_ledger_is_frozen(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000"])
        ledger.cancel()
        ledger.line_items[0].unit_price = Decimal("5")
        ledger.recompute()
        assert ledger.total == Decimal("1000")

    def test_totals_use_currency_precision(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["10.005", "0.004"], discount=Discount.percentage("33"))
        assert ledger.subtotal == Decimal("10.01")
        assert ledger.discount_amount == Decimal("3.30")
        assert ledger.total == Decimal("6.71")
        assert_invariants(ledger)

    def test_zero_decimal_currency(self):
        ledger = InvoiceLedger.open(
            currency="JPY",
            decimal_places=0,
            line_items=[LineItem.create("Shipping", quantity="1.5", unit_price="333")],
        )
        assert ledger.total == Decimal("500")
        assert_invariants(ledger)

    def test_empty_ledger(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=[])
        assert ledger.total == 0
        assert ledger.balance_due == 0


@pytest.mark.unit
class TestEditing:

    def test_remove_line_item(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000", "400"])
        removed = ledger.remove_line_item(ledger.line_items[0].id)
        assert removed.unit_price == Decimal("1000")
        assert ledger.total == Decimal("400")

    def test_remove_unknown_item(self, ledger_factory):
        ledger = ledger_factory.ledger()
        with pytest.raises(ValidationError):
            ledger.remove_line_item("missing")

    def test_duplicate_item_id_rejected(self, ledger_factory):
        ledger = ledger_factory.ledger()
        with pytest.raises(ValidationError):
            ledger.add_line_item(ledger.line_items[0])

    def test_set_and_clear_discount(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000"])
        ledger.set_discount(Discount.percentage(20))
        assert ledger.total == Decimal("800")
        ledger.set_discount(None)
        assert ledger.total == Decimal("1000")

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationError):
            Discount.fixed("-1")

    def test_unknown_discount_kind_rejected(self):
        with pytest.raises(ValidationError):
            Discount.create("bogo", 1)

    @pytest.mark.parametrize("status", [InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE])
    def test_only_drafts_are_editable(self, ledger_factory, status):
        ledger = ledger_factory.ledger(status=status)
        before = ledger.to_dict()

        with pytest.raises(ValidationError):
            ledger.add_line_item(LineItem.create("Extra", unit_price="1"))
        with pytest.raises(ValidationError):
            ledger.set_discount(Discount.fixed("1"))

        assert ledger.to_dict() == before


@pytest.mark.unit
class TestLifecycle:

    def test_open_defaults_due_date_from_terms(self):
        ledger = InvoiceLedger.open(currency="jmd", issue_date=FIXED_NOW, payment_terms_days=14)
        assert ledger.currency == "JMD"
        assert ledger.status == InvoiceStatus.DRAFT
        assert ledger.due_date == FIXED_NOW + timedelta(days=14)

    def test_send_requires_line_items(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=[])
        with pytest.raises(ValidationError):
            ledger.send()
        assert ledger.status == InvoiceStatus.DRAFT

    def test_send(self, ledger_factory):
        ledger = ledger_factory.ledger()
        ledger.send()
        assert ledger.status == InvoiceStatus.SENT

    def test_send_twice_rejected(self, ledger_factory):
        ledger = ledger_factory.ledger()
        ledger.send()
        with pytest.raises(ValidationError):
            ledger.send()

    def test_cancel_paid_invoice_rejected(self, ledger_factory):
        ledger = ledger_factory.ledger(status=InvoiceStatus.PAID)
        with pytest.raises(ValidationError):
            ledger.cancel()

    def test_cancel_is_idempotent(self, ledger_factory):
        ledger = ledger_factory.ledger()
        ledger.cancel()
        ledger.cancel()
        assert ledger.status == InvoiceStatus.CANCELLED

    def test_refresh_status_marks_overdue(self, ledger_factory):
        ledger = ledger_factory.ledger(status=InvoiceStatus.SENT)
        assert ledger.refresh_status(FIXED_NOW + timedelta(days=29)) == InvoiceStatus.SENT
        assert ledger.refresh_status(FIXED_NOW + timedelta(days=31)) == InvoiceStatus.OVERDUE

    def test_refresh_status_ignores_drafts_and_settled(self, ledger_factory):
        later = FIXED_NOW + timedelta(days=60)
        assert ledger_factory.ledger().refresh_status(later) == InvoiceStatus.DRAFT

        settled = ledger_factory.ledger(status=InvoiceStatus.SENT)
        settled.amount_paid = settled.total
        settled.recompute()
        assert settled.refresh_status(later) == InvoiceStatus.SENT

    def test_to_dict_snapshot(self, ledger_factory):
        ledger = ledger_factory.ledger(prices=["1000"], discount=Discount.percentage(10), number="INV-2026-0001")
        data = ledger.to_dict()
        assert data["number"] == "INV-2026-0001"
        assert data["status"] == "draft"
        assert data["discount"] == {"type": DiscountKind.PERCENTAGE.value, "value": "10"}
        assert data["total"] == "900.00"
        assert data["line_items"][0]["amount"] == "1000.00"
        assert data["decimal_places"] == 2
