"""API contract tests focusing on status codes and response formats."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from tests.factories.data_factories import FIXED_NOW


def amount(value) -> Decimal:
    return Decimal(str(value))


async def open_invoice(client, *prices, **extra):
    payload = {
        "line_items": [{"description": f"Line {i}", "unit_price": price} for i, price in enumerate(prices, 1)],
        **extra,
    }
    response = await client.post("/invoices", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.contract
class TestServiceEndpoints:
    """Health probes and the metrics scrape endpoint."""

    @pytest.mark.asyncio
    async def test_health_endpoint_contract(self, client):
        """Liveness returns status and timestamp."""
        response = await client.get("/healthz")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "parcel-billing"
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_readiness_with_database(self, client):
        """Readiness reports a connected database."""
        with patch("parcel_billing.main.check_database", new=AsyncMock()):
            response = await client.get("/readyz")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_readiness_without_database(self, client):
        """Readiness is 503 when the database is unreachable."""
        with patch("parcel_billing.main.check_database", new=AsyncMock(side_effect=OSError("refused"))):
            response = await client.get("/readyz")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"

    @pytest.mark.asyncio
    async def test_metrics_endpoint_contract(self, client):
        """Metrics endpoint serves Prometheus text."""
        await client.post("/billing/fees", json={"weight": "1"})
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers.get("content-type", "")
        assert "parcel_fees_computed_total" in response.text

    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, client):
        """Caller supplied correlation ids come back on the response."""
        response = await client.get("/healthz", headers={"X-Correlation-Id": "corr-123"})
        assert response.headers["X-Correlation-Id"] == "corr-123"


@pytest.mark.contract
class TestFeeAndRateContracts:
    """Fee quotes and rate table management."""

    @pytest.mark.asyncio
    async def test_fee_quote(self, client):
        """Quote returns components, total, display strings and rates."""
        response = await client.post("/billing/fees", json={
            "weight": "3",
            "declared_value": "20000",
            "days_in_storage": 10,
        })
        assert response.status_code == 200

        data = response.json()
        assert amount(data["shipping_cost"]) == Decimal("1400")
        assert amount(data["storage_fee"]) == Decimal("150")
        assert amount(data["customs_duty"]) == Decimal("3000")
        assert amount(data["total"]) == Decimal("4550")
        assert data["currency"] == "JMD"
        assert data["formatted"]["total"] == "J$4,550.00"
        assert data["rate_table"]["storage_free_days"] == 7

    @pytest.mark.asyncio
    async def test_fee_quote_requires_weight(self, client):
        """Schema validation rejects a package without weight."""
        response = await client.post("/billing/fees", json={"declared_value": "10"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_rates_round_trip(self, client, rates):
        """A stored rate table becomes the active one."""
        response = await client.get("/billing/rates")
        assert response.status_code == 200
        assert amount(response.json()["base_rate"]) == Decimal("700")

        update = {**rates.to_dict(), "base_rate": "900", "updated_by": "ops@example.com"}
        response = await client.put("/billing/rates", json=update)
        assert response.status_code == 200

        response = await client.get("/billing/rates")
        assert amount(response.json()["base_rate"]) == Decimal("900")

    @pytest.mark.asyncio
    async def test_partial_rate_update(self, client):
        """PATCH changes only the supplied rates."""
        response = await client.patch("/billing/rates", json={"storage_daily_rate": "75", "updated_by": "ops@example.com"})
        assert response.status_code == 200

        data = response.json()
        assert amount(data["storage_daily_rate"]) == Decimal("75")
        assert amount(data["base_rate"]) == Decimal("700")

        response = await client.get("/billing/rates")
        assert amount(response.json()["storage_daily_rate"]) == Decimal("75")

    @pytest.mark.asyncio
    async def test_invalid_partial_rate_update(self, client):
        """A patch producing an invalid table is 422 and leaves rates alone."""
        response = await client.patch("/billing/rates", json={"storage_free_days": -1})
        assert response.status_code == 422

        response = await client.get("/billing/rates")
        assert response.json()["storage_free_days"] == 7

    @pytest.mark.asyncio
    async def test_invalid_rate_table_rejected(self, client, rates):
        """Business validation of rate values maps to 422."""
        update = {**rates.to_dict(), "customs_duty_percent": "150"}
        response = await client.put("/billing/rates", json=update)

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.contract
class TestInvoiceContracts:
    """Invoice creation, reads and lifecycle."""

    @pytest.mark.asyncio
    async def test_create_invoice(self, client):
        """New invoices are numbered drafts with recomputed totals."""
        data = await open_invoice(
            client, "1000",
            discount={"type": "percentage", "value": "10"},
            customer={"name": "Ada"},
        )

        assert data["number"] == "INV-2026-0001"
        assert data["status"] == "draft"
        assert data["decimal_places"] == 2
        assert amount(data["discount_amount"]) == Decimal("100")
        assert amount(data["total"]) == Decimal("900")
        assert data["formatted"]["total"] == "J$900.00"
        assert data["customer"] == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_negative_price_rejected(self, client, store):
        """Invalid line items are rejected before anything is stored."""
        response = await client.post("/invoices", json={
            "line_items": [{"description": "Refund", "unit_price": "-5"}],
        })

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert store.invoices == {}

    @pytest.mark.asyncio
    async def test_unknown_currency_rejected(self, client):
        """Invoices in unsupported currencies are rejected."""
        response = await client.post("/invoices", json={
            "line_items": [{"description": "Shipping", "unit_price": "5"}],
            "currency": "XYZ",
        })

        assert response.status_code == 422
        assert response.json()["error"] == "UNKNOWN_CURRENCY"

    @pytest.mark.asyncio
    async def test_invoice_from_package(self, client):
        """Package invoices carry fee line items and the rate snapshot."""
        response = await client.post("/invoices/from-package", json={
            "weight": "3",
            "declared_value": "20000",
            "days_in_storage": 10,
            "package_id": "pkg-1",
            "tracking_number": "1Z999",
        })
        assert response.status_code == 201

        data = response.json()
        assert amount(data["total"]) == Decimal("4550")
        assert data["package_id"] == "pkg-1"
        assert data["rate_table"]["base_rate"] == "700"
        assert [item["service_type"] for item in data["line_items"]] == ["shipping", "storage", "customs"]
        assert all(item["tracking_number"] == "1Z999" for item in data["line_items"])

    @pytest.mark.asyncio
    async def test_read_by_id_and_number(self, client):
        """Invoices can be read by id or by number."""
        created = await open_invoice(client, "10")

        by_id = await client.get(f"/invoices/{created['id']}")
        by_number = await client.get(f"/invoices/by-number/{created['number']}")

        assert by_id.status_code == 200
        assert by_number.status_code == 200
        assert by_number.json()["id"] == created["id"]

    @pytest.mark.asyncio
    async def test_missing_invoice(self, client):
        """Unknown invoices are 404 with the correlation id in the body."""
        response = await client.get("/invoices/missing", headers={"X-Correlation-Id": "corr-404"})

        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "INVOICE_NOT_FOUND"
        assert data["retryable"] is False
        assert data["correlation_id"] == "corr-404"

    @pytest.mark.asyncio
    async def test_edit_draft(self, client):
        """Drafts accept line item and discount changes."""
        created = await open_invoice(client, "100")

        response = await client.post(f"/invoices/{created['id']}/line-items", json={
            "description": "Insurance", "unit_price": "50", "tax_rate_percent": "10",
        })
        assert response.status_code == 200
        assert amount(response.json()["total"]) == Decimal("155")

        response = await client.put(f"/invoices/{created['id']}/discount", json={"type": "fixed", "value": "55"})
        assert amount(response.json()["total"]) == Decimal("100")

        first_item = created["line_items"][0]["id"]
        response = await client.delete(f"/invoices/{created['id']}/line-items/{first_item}")
        assert response.status_code == 200
        assert len(response.json()["line_items"]) == 1

    @pytest.mark.asyncio
    async def test_send_pay_lifecycle(self, client):
        """A sent invoice paid in full becomes paid."""
        created = await open_invoice(client, "1400")

        response = await client.post(f"/invoices/{created['id']}/send")
        assert response.json()["status"] == "sent"

        response = await client.post(f"/invoices/{created['id']}/payments", json={
            "amount": "400", "method": "card", "reference": "r-1",
        })
        assert response.json()["status"] == "sent"
        assert amount(response.json()["balance_due"]) == Decimal("1000")

        response = await client.post(f"/invoices/{created['id']}/payments", json={"amount": "1000"})
        data = response.json()
        assert data["status"] == "paid"
        assert amount(data["balance_due"]) == Decimal("0")
        assert [payment["method"] for payment in data["payment_history"]] == ["card", "cash"]

    @pytest.mark.asyncio
    async def test_sent_invoice_cannot_be_edited(self, client):
        """Line items are frozen once the invoice is sent."""
        created = await open_invoice(client, "10")
        await client.post(f"/invoices/{created['id']}/send")

        response = await client.post(f"/invoices/{created['id']}/line-items", json={
            "description": "Late fee", "unit_price": "5",
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_non_positive_payment_rejected(self, client):
        """Zero payments are rejected."""
        created = await open_invoice(client, "10")
        response = await client.post(f"/invoices/{created['id']}/payments", json={"amount": "0"})

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_PAYMENT"

    @pytest.mark.asyncio
    async def test_payment_precision_rejected(self, client):
        """Payments finer than the invoice currency are rejected."""
        created = await open_invoice(client, "10")
        response = await client.post(f"/invoices/{created['id']}/payments", json={"amount": "1.005"})

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_PAYMENT"

    @pytest.mark.asyncio
    async def test_line_item_precision_rejected(self, client):
        """Prices beyond the stored scale are rejected."""
        response = await client.post("/invoices", json={
            "line_items": [{"description": "Shipping", "unit_price": "1.0000001"}],
        })

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_cancel(self, client):
        """Cancelled invoices refuse payments."""
        created = await open_invoice(client, "10")

        response = await client.post(f"/invoices/{created['id']}/cancel")
        assert response.json()["status"] == "cancelled"

        response = await client.post(f"/invoices/{created['id']}/payments", json={"amount": "10"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_overdue_listing(self, client, clock):
        """Sent invoices past due are listed as overdue."""
        created = await open_invoice(client, "10")
        await client.post(f"/invoices/{created['id']}/send")
        await open_invoice(client, "20")

        clock.now = FIXED_NOW + timedelta(days=31)
        response = await client.get("/invoices", params={"status": "sent"})

        data = response.json()
        assert data["count"] == 1
        assert data["invoices"][0]["status"] == "overdue"

        response = await client.get("/invoices", params={"status": "draft"})
        assert response.json()["count"] == 1


@pytest.mark.contract
class TestBulkPaymentContracts:
    """One payment split across several invoices."""

    @pytest.mark.asyncio
    async def test_bulk_payment(self, client):
        """Every share is applied and the updated invoices are returned."""
        first = await open_invoice(client, "1400")
        second = await open_invoice(client, "600")
        for invoice in (first, second):
            await client.post(f"/invoices/{invoice['id']}/send")

        response = await client.post("/invoices/payments/bulk", json={
            "items": [
                {"invoice_id": first["id"], "amount": "1400"},
                {"invoice_id": second["id"], "amount": "100"},
            ],
            "total": "1500",
            "method": "card",
            "reference": "bulk-7",
        })
        assert response.status_code == 200, response.text

        data = response.json()
        assert data["count"] == 2
        assert amount(data["total"]) == Decimal("1500")
        assert [invoice["status"] for invoice in data["invoices"]] == ["paid", "sent"]
        assert amount(data["invoices"][1]["balance_due"]) == Decimal("500")

    @pytest.mark.asyncio
    async def test_bulk_total_mismatch(self, client):
        """A total that does not match the shares is 422 and nothing is paid."""
        first = await open_invoice(client, "1400")
        second = await open_invoice(client, "600")

        response = await client.post("/invoices/payments/bulk", json={
            "items": [
                {"invoice_id": first["id"], "amount": "1400"},
                {"invoice_id": second["id"], "amount": "600"},
            ],
            "total": "1999",
        })
        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_PAYMENT"

        for invoice in (first, second):
            response = await client.get(f"/invoices/{invoice['id']}")
            assert response.json()["payment_history"] == []

    @pytest.mark.asyncio
    async def test_bulk_unknown_invoice(self, client):
        """Unknown invoices in a batch are 404."""
        response = await client.post("/invoices/payments/bulk", json={
            "items": [{"invoice_id": "missing", "amount": "10"}],
        })
        assert response.status_code == 404
        assert response.json()["error"] == "INVOICE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_bulk_requires_items(self, client):
        """An empty batch fails schema validation."""
        response = await client.post("/invoices/payments/bulk", json={"items": []})
        assert response.status_code == 422

@pytest.mark.contract
class TestCurrencyContracts:
    """Currency catalogue and conversion."""

    @pytest.mark.asyncio
    async def test_list_currencies(self, client):
        """Catalogue entries expose formatting rules and rates."""
        response = await client.get("/currencies")
        assert response.status_code == 200

        currencies = {entry["code"]: entry for entry in response.json()}
        assert currencies["JPY"]["decimal_places"] == 0
        assert currencies["JMD"]["symbol"] == "J$"

    @pytest.mark.asyncio
    async def test_convert(self, client):
        """Conversions are rounded and formatted for the target currency."""
        response = await client.post("/currencies/convert", json={
            "amount": "100", "from_currency": "usd", "to_currency": "JMD",
        })
        assert response.status_code == 200

        data = response.json()
        assert data["from_currency"] == "USD"
        assert amount(data["converted"]) == Decimal("15500")
        assert data["formatted"] == "J$15,500.00"

    @pytest.mark.asyncio
    async def test_convert_unknown_currency(self, client):
        """Unknown codes are 422 with the offending code in details."""
        response = await client.post("/currencies/convert", json={
            "amount": "1", "from_currency": "USD", "to_currency": "XYZ",
        })

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "UNKNOWN_CURRENCY"
        assert data["details"] == {"currency": "XYZ"}
