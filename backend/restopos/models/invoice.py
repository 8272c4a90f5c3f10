"""Invoices: frozen billing snapshots of orders."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, str_enum
from restopos.models.validators import non_negative


class InvoicePaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class DiscountType(str, Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"


class DiscountApplication(str, Enum):
    PRE_TAX = "pre_tax"
    POST_TAX = "post_tax"


class Invoice(Base, TimestampMixin):
    """Bill for an order; at most one non-cancelled invoice exists per order."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index(
            "uq_invoices_live_order",
            "order_id",
            unique=True,
            sqlite_where=text("NOT is_cancelled"),
            postgresql_where=text("NOT is_cancelled"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    sgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    igst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    cess_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    service_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    round_off: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    grand_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_status: Mapped[InvoicePaymentStatus] = mapped_column(
        str_enum(InvoicePaymentStatus), default=InvoicePaymentStatus.PENDING, nullable=False
    )
    customer_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_gstin: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_interstate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    generated_by: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duplicate_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.id"
    )
    discounts: Mapped[List["InvoiceDiscount"]] = relationship(
        "InvoiceDiscount", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceDiscount.id"
    )
    order: Mapped["Order"] = relationship("Order")

    @validates("subtotal", "taxable_amount", "grand_total", "total_tax", "service_charge")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class InvoiceItem(Base):
    """Frozen copy of a billed order line."""

    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True
    )
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    variant_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")


class InvoiceDiscount(Base):
    __tablename__ = "invoice_discounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(str_enum(DiscountType), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    applied_on: Mapped[DiscountApplication] = mapped_column(str_enum(DiscountApplication), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="discounts")


class DuplicateBillLog(Base):
    __tablename__ = "duplicate_bill_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    duplicate_number: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    printed_by: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# Forward references
from restopos.models.order import Order  # noqa: E402
