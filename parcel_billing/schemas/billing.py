"""Pydantic schemas for the billing API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from parcel_billing.services.fee_calculator import FeeBreakdown, PackageCharges
from parcel_billing.services.ledger import (
    Discount,
    DiscountKind,
    InvoiceLedger,
    InvoiceStatus,
    LineItem,
)
from parcel_billing.services.rates import RateTable


# ==== RATES ==== #


class RateTableSchema(BaseModel):
    """Shipping, storage and customs pricing rules."""

    base_rate: Decimal = Field(..., description="Cost of the first pound")
    additional_rate: Decimal = Field(..., description="Cost of each further pound")
    customs_duty_percent: Decimal
    customs_threshold: Decimal = Field(..., description="Declared value above which duty applies")
    storage_free_days: int
    storage_daily_rate: Decimal
    base_currency: str = Field(..., min_length=3, max_length=3)

    @classmethod
    def from_rate_table(cls, rate_table: RateTable) -> "RateTableSchema":
        return cls(**rate_table.to_dict())

    def to_rate_table(self) -> RateTable:
        return RateTable.from_mapping(self.model_dump())

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "base_rate": "700",
                "additional_rate": "350",
                "customs_duty_percent": "15",
                "customs_threshold": "15500",
                "storage_free_days": 7,
                "storage_daily_rate": "50",
                "base_currency": "JMD",
            }
        }


class RateTableUpdate(RateTableSchema):
    updated_by: Optional[str] = None


class RateTablePatch(BaseModel):
    """Partial rate change; omitted fields keep their active value."""

    base_rate: Optional[Decimal] = None
    additional_rate: Optional[Decimal] = None
    customs_duty_percent: Optional[Decimal] = None
    customs_threshold: Optional[Decimal] = None
    storage_free_days: Optional[int] = None
    storage_daily_rate: Optional[Decimal] = None
    base_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    updated_by: Optional[str] = None

    def overrides(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"updated_by"}, exclude_none=True)


# ==== FEES ==== #


class PackageRequest(BaseModel):
    """Billable package facts."""

    weight: Decimal
    weight_unit: Literal["lb", "kg"] = "lb"
    declared_value: Decimal = Decimal("0")
    declared_value_currency: Optional[str] = Field(
        None, description="Currency of the declared value, defaults to the rate table base"
    )
    days_in_storage: Optional[int] = None
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    package_id: Optional[str] = None
    tracking_number: Optional[str] = None

    def to_charges(self) -> PackageCharges:
        return PackageCharges(
            weight=self.weight,
            weight_unit=self.weight_unit,
            declared_value=self.declared_value,
            days_in_storage=self.days_in_storage,
            received_at=self.received_at,
            created_at=self.created_at,
            package_id=self.package_id,
            tracking_number=self.tracking_number,
        )


class FeeBreakdownResponse(BaseModel):
    shipping_cost: Decimal
    storage_fee: Decimal
    customs_duty: Decimal
    total: Decimal
    currency: str
    formatted: Dict[str, str] = Field(default_factory=dict)
    rate_table: Optional[RateTableSchema] = None

    @classmethod
    def from_breakdown(
        cls,
        breakdown: FeeBreakdown,
        formatted: Dict[str, str],
        rate_table: Optional[RateTable] = None,
    ) -> "FeeBreakdownResponse":
        return cls(
            shipping_cost=breakdown.shipping_cost,
            storage_fee=breakdown.storage_fee,
            customs_duty=breakdown.customs_duty,
            total=breakdown.total,
            currency=breakdown.currency,
            formatted=formatted,
            rate_table=RateTableSchema.from_rate_table(rate_table) if rate_table else None,
        )


# ==== INVOICE REQUESTS ==== #


class LineItemRequest(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal
    tax_rate_percent: Decimal = Decimal("0")
    package_id: Optional[str] = None
    tracking_number: Optional[str] = None
    service_type: Optional[str] = None

    def to_line_item(self) -> LineItem:
        return LineItem.create(**self.model_dump())


class DiscountRequest(BaseModel):
    type: DiscountKind
    value: Decimal

    def to_discount(self) -> Discount:
        return Discount.create(self.type, self.value)


class CustomerInfo(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class InvoiceCreateRequest(BaseModel):
    """Request to open a draft invoice from explicit line items."""

    line_items: List[LineItemRequest] = Field(default_factory=list)
    discount: Optional[DiscountRequest] = None
    currency: Optional[str] = None
    customer: Optional[CustomerInfo] = None
    notes: Optional[str] = None
    payment_terms_days: Optional[int] = Field(None, ge=0)
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None

    def details(self) -> Dict[str, Any]:
        return {
            "customer": self.customer.model_dump(exclude_none=True) if self.customer else {},
            "notes": self.notes,
            "payment_terms_days": self.payment_terms_days,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
        }


class PackageInvoiceRequest(PackageRequest):
    """Request to price a package and invoice it in one step."""

    currency: Optional[str] = None
    customer: Optional[CustomerInfo] = None
    notes: Optional[str] = None
    payment_terms_days: Optional[int] = Field(None, ge=0)


class PaymentRequest(BaseModel):
    amount: Decimal
    method: str = "cash"
    reference: Optional[str] = None
    date: Optional[datetime] = None


class BulkPaymentItem(BaseModel):
    invoice_id: str
    amount: Decimal


class BulkPaymentRequest(BaseModel):
    """One payment split across several invoices."""

    items: List[BulkPaymentItem] = Field(..., min_length=1)
    total: Optional[Decimal] = Field(None, description="Expected sum of the item amounts")
    method: str = "cash"
    reference: Optional[str] = None

    def shares(self) -> List[tuple]:
        return [(item.invoice_id, item.amount) for item in self.items]


# ==== INVOICE RESPONSES ==== #


class LineItemResponse(BaseModel):
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate_percent: Decimal
    amount: Decimal
    tax_amount: Decimal
    total: Decimal
    package_id: Optional[str] = None
    tracking_number: Optional[str] = None
    service_type: Optional[str] = None


class PaymentResponse(BaseModel):
    amount: Decimal
    date: datetime
    method: str
    reference: Optional[str] = None


class InvoiceResponse(BaseModel):
    """Invoice with recomputed totals and display strings."""

    id: str
    number: Optional[str]
    status: InvoiceStatus
    currency: str
    issue_date: datetime
    due_date: datetime
    payment_terms_days: int
    decimal_places: int = 2
    line_items: List[LineItemResponse]
    discount: Optional[DiscountRequest] = None
    subtotal: Decimal
    tax_total: Decimal
    discount_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    payment_history: List[PaymentResponse]
    customer: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    rate_table: Optional[Dict[str, Any]] = None
    package_id: Optional[str] = None
    formatted: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_ledger(cls, ledger: InvoiceLedger, formatted: Dict[str, str]) -> "InvoiceResponse":
        return cls(
            id=ledger.id,
            number=ledger.number,
            status=ledger.status,
            currency=ledger.currency,
            issue_date=ledger.issue_date,
            due_date=ledger.due_date,
            payment_terms_days=ledger.payment_terms_days,
            decimal_places=ledger.decimal_places,
            line_items=[
                LineItemResponse(**item.to_dict()) for item in ledger.line_items
            ],
            discount=(
                DiscountRequest(type=ledger.discount.kind, value=ledger.discount.value)
                if ledger.discount else None
            ),
            subtotal=ledger.subtotal,
            tax_total=ledger.tax_total,
            discount_amount=ledger.discount_amount,
            total=ledger.total,
            amount_paid=ledger.amount_paid,
            balance_due=ledger.balance_due,
            payment_history=[
                PaymentResponse(
                    amount=payment.amount,
                    date=payment.date,
                    method=payment.method,
                    reference=payment.reference,
                )
                for payment in ledger.payment_history
            ],
            customer=ledger.customer,
            notes=ledger.notes,
            rate_table=ledger.rate_table,
            package_id=ledger.package_id,
            formatted=formatted,
        )


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceResponse]
    count: int
    limit: int
    offset: int


class BulkPaymentResponse(BaseModel):
    invoices: List[InvoiceResponse]
    count: int
    total: Decimal


# ==== CURRENCIES ==== #


class CurrencyResponse(BaseModel):
    code: str
    name: str
    symbol: str
    decimal_places: int
    format: str
    exchange_rate: Decimal


class ConvertRequest(BaseModel):
    amount: Decimal
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)


class ConvertResponse(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    converted: Decimal
    formatted: str


# ==== ERRORS ==== #


class ErrorResponse(BaseModel):
    """Error body returned for every billing error."""

    error: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
