"""SQLAlchemy models for the parcel billing engine."""

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    String, Integer, JSON, ForeignKey, UniqueConstraint,
    Text, DateTime, Numeric, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parcel_billing.services.money import STORAGE_SCALE
from parcel_billing.storage.db import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# Money and quantities; inputs are limited to this scale
Money = Numeric(18, STORAGE_SCALE, asdecimal=True)


class Invoice(Base):
    """Invoice header with its recomputed totals."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    issue_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_terms_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    decimal_places: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    discount_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    discount_value: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    tax_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    amount_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    balance_due: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)

    customer: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rate_table: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=True)
    package_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint("number", name="uq_invoice_number"),
        Index("ix_invoices_status_due", "status", "due_date"),
    )

    # Relationships
    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
        lazy="selectin",
    )
    payments: Mapped[List["InvoicePayment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePayment.position",
        lazy="selectin",
    )


class InvoiceLineItem(Base):
    """One line item on an invoice."""

    __tablename__ = "invoice_line_items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    invoice_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_rate_percent: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    package_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    service_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="line_items")


class InvoicePayment(Base):
    """Append-only payment history entry."""

    __tablename__ = "invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")

    __table_args__ = (
        UniqueConstraint("invoice_id", "position", name="uq_invoice_payment_position"),
    )


class RateTableVersion(Base):
    """Stored shipping rate table; the newest row is the active one."""

    __tablename__ = "rate_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rates: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
        index=True
    )
