"""Durable print job queue drained by the printer agent."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from restopos.db.base import Base, TimestampMixin, str_enum


class PrintJobType(str, Enum):
    KOT = "kot"
    BOT = "bot"
    BILL = "bill"
    CANCEL_SLIP = "cancel_slip"


class PrintJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PRINTED = "printed"
    FAILED = "failed"


# Higher prints first
JOB_PRIORITIES = {
    PrintJobType.KOT: 10,
    PrintJobType.BOT: 10,
    PrintJobType.CANCEL_SLIP: 8,
    PrintJobType.BILL: 5,
}


class PrintJob(Base, TimestampMixin):
    __tablename__ = "print_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_type: Mapped[PrintJobType] = mapped_column(str_enum(PrintJobType), nullable=False)
    station: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    outlet_id: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    kot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("kot_tickets.id", ondelete="SET NULL"), nullable=True
    )
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL"), nullable=True
    )
    invoice_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )
    reference_number: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    status: Mapped[PrintJobStatus] = mapped_column(
        str_enum(PrintJobStatus), default=PrintJobStatus.PENDING, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    claimed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    printed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
