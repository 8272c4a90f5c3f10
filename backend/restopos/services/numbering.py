"""Human-readable document numbers.

Formats:
    ORD2604150001      order, per outlet per business day
    KOT0415001         kitchen ticket, per prefix per business day
    BOT0415001         bar ticket
    INV/2627/000001    invoice, per outlet per financial year (April-March)
    PAY2604150001      payment, per outlet per business day

Counters live in ``document_sequences`` and are incremented under a row lock
inside the caller's transaction, so a rolled back operation never burns a
number for good and two writers never receive the same value.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from restopos.core.config import settings
from restopos.models.sequence import DocumentSequence


def business_now() -> datetime:
    return datetime.now(timezone.utc).astimezone(ZoneInfo(settings.timezone))


def financial_year_code(day: date) -> str:
    """``2627`` for any date from 2026-04-01 to 2027-03-31."""
    start = day.year if day.month >= 4 else day.year - 1
    return f"{start % 100:02d}{(start + 1) % 100:02d}"


def next_value(db: Session, scope: str) -> int:
    seq = (
        db.query(DocumentSequence)
        .filter(DocumentSequence.scope == scope)
        .with_for_update()
        .one_or_none()
    )
    if seq is None:
        seq = DocumentSequence(scope=scope, last_value=0)
        db.add(seq)
    seq.last_value += 1
    db.flush()
    return seq.last_value


def next_order_number(db: Session, outlet_id: int, now: Optional[datetime] = None) -> str:
    now = now or business_now()
    stamp = now.strftime("%y%m%d")
    value = next_value(db, f"order:{outlet_id}:{stamp}")
    return f"ORD{stamp}{value:04d}"


def next_kot_number(db: Session, prefix: str, now: Optional[datetime] = None) -> str:
    now = now or business_now()
    stamp = now.strftime("%m%d")
    value = next_value(db, f"{prefix.lower()}:{now.strftime('%y%m%d')}")
    return f"{prefix}{stamp}{value:03d}"


def next_invoice_number(db: Session, outlet_id: int, now: Optional[datetime] = None) -> str:
    now = now or business_now()
    fy = financial_year_code(now.date())
    value = next_value(db, f"invoice:{outlet_id}:{fy}")
    return f"INV/{fy}/{value:06d}"


def next_payment_number(db: Session, outlet_id: int, now: Optional[datetime] = None) -> str:
    now = now or business_now()
    stamp = now.strftime("%y%m%d")
    value = next_value(db, f"payment:{outlet_id}:{stamp}")
    return f"PAY{stamp}{value:04d}"
