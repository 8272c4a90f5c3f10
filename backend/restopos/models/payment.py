"""Payments recorded against invoices."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, str_enum
from restopos.models.validators import non_negative, positive


class PaymentMode(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    SPLIT = "split"


class PaymentState(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base, TimestampMixin):
    """One settlement transaction. ``amount`` counts towards the bill, ``tip_amount`` does not."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    payment_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_mode: Mapped[PaymentMode] = mapped_column(str_enum(PaymentMode), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tip_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PaymentState] = mapped_column(
        str_enum(PaymentState), default=PaymentState.COMPLETED, nullable=False
    )
    card_last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    upi_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    received_by: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)

    splits: Mapped[List["SplitPayment"]] = relationship(
        "SplitPayment",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="SplitPayment.position",
    )

    @validates("amount")
    def _validate_amount(self, key, value):
        return positive(key, value)

    @validates("tip_amount", "total_amount")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)


class SplitPayment(Base):
    """One sub-mode portion of a ``split`` payment."""

    __tablename__ = "split_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_mode: Mapped[PaymentMode] = mapped_column(str_enum(PaymentMode), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    card_last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    upi_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="splits")

    @validates("amount")
    def _validate_amount(self, key, value):
        return positive(key, value)
