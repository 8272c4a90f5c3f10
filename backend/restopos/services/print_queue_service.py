"""
Print job queue.

The order engine enqueues rendered, printer-agnostic text; the printer agent
claims jobs, sends them to a device and acknowledges the outcome. Enqueue
failures are logged and never undo the operation that produced the job.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from restopos.core.config import settings
from restopos.core.errors import Conflict, NotFound
from restopos.models import (
    JOB_PRIORITIES,
    Invoice,
    KotTicket,
    Order,
    PrintJob,
    PrintJobStatus,
    PrintJobType,
)

logger = logging.getLogger(__name__)

LINE_WIDTH = 42


def _rule(char: str = "-") -> str:
    return char * LINE_WIDTH


def render_kot(ticket: KotTicket, order: Order, table_number: Optional[str], reprint: bool = False) -> str:
    lines = []
    if reprint:
        lines.append("*** REPRINT ***".center(LINE_WIDTH))
    lines.append(f"{ticket.kot_number}  [{ticket.station.upper()}]")
    lines.append(f"Order: {order.order_number}  Type: {order.order_type.value}")
    if table_number:
        lines.append(f"Table: {table_number}")
    if ticket.priority.value == "rush":
        lines.append("!! RUSH !!")
    lines.append(_rule())
    for item in ticket.active_items:
        name = item.item_name if not item.variant_name else f"{item.item_name} ({item.variant_name})"
        lines.append(f"{item.quantity:>3} x {name}")
        if item.addons_text:
            lines.append(f"      + {item.addons_text}")
        if item.special_instructions:
            lines.append(f"      * {item.special_instructions}")
    lines.append(_rule())
    return "\n".join(lines)


def render_cancel_slip(
    ticket: KotTicket, order: Order, item_name: str, quantity: int, reason: str
) -> str:
    return "\n".join([
        "*** CANCELLED ***".center(LINE_WIDTH),
        f"{ticket.kot_number}  [{ticket.station.upper()}]",
        f"Order: {order.order_number}",
        _rule(),
        f"{quantity:>3} x {item_name}",
        f"Reason: {reason}",
        _rule(),
    ])


def render_bill(invoice: Invoice, order: Order, duplicate_number: Optional[int] = None) -> str:
    lines = []
    if duplicate_number:
        lines.append(f"*** DUPLICATE #{duplicate_number} ***".center(LINE_WIDTH))
    lines.append(f"Invoice: {invoice.invoice_number}")
    lines.append(f"Order: {order.order_number}")
    if invoice.customer_name:
        lines.append(f"Customer: {invoice.customer_name}")
    lines.append(_rule())
    for item in invoice.items:
        lines.append(f"{item.quantity:>3} x {item.item_name:<24}{item.total_price:>10}")
    lines.append(_rule())
    totals = [
        ("Subtotal", invoice.subtotal),
        ("Discount", invoice.discount_amount),
        ("CGST", invoice.cgst_amount),
        ("SGST", invoice.sgst_amount),
        ("IGST", invoice.igst_amount),
        ("VAT", invoice.vat_amount),
        ("CESS", invoice.cess_amount),
        ("Service charge", invoice.service_charge),
        ("Round off", invoice.round_off),
    ]
    for label, amount in totals:
        if amount:
            lines.append(f"{label:<30}{amount:>12}")
    lines.append(f"{'GRAND TOTAL':<30}{invoice.grand_total:>12}")
    return "\n".join(lines)


class PrintQueueService:
    """Durable queue of print jobs."""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(
        self,
        job_type: PrintJobType,
        station: str,
        content: str,
        reference_number: str,
        outlet_id: int = 1,
        kot_id: Optional[int] = None,
        order_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
    ) -> PrintJob:
        job = PrintJob(
            job_type=job_type,
            station=station,
            outlet_id=outlet_id,
            kot_id=kot_id,
            order_id=order_id,
            invoice_id=invoice_id,
            content=content,
            reference_number=reference_number,
            priority=JOB_PRIORITIES[job_type],
            status=PrintJobStatus.PENDING,
            attempts=0,
            max_attempts=settings.print_job_max_attempts,
        )
        self.db.add(job)
        self.db.commit()
        logger.info(f"Queued {job_type.value} print job {job.id} for {station} ({reference_number})")
        return job

    def enqueue_safely(self, **kwargs) -> Optional[PrintJob]:
        """Enqueue after the triggering operation has committed; log instead of raising."""
        try:
            return self.enqueue(**kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to queue print job {kwargs.get('reference_number')}: {e}")
            return None

    def claim_next(self, agent_id: str, stations: Optional[List[str]] = None) -> Optional[PrintJob]:
        """Hand the highest-priority pending job to an agent."""
        query = self.db.query(PrintJob).filter(PrintJob.status == PrintJobStatus.PENDING)
        if stations:
            query = query.filter(PrintJob.station.in_(stations))
        job = (
            query.order_by(PrintJob.priority.desc(), PrintJob.id.asc())
            .with_for_update(skip_locked=True)
            .first()
        )
        if job is None:
            return None

        job.status = PrintJobStatus.PROCESSING
        job.attempts += 1
        job.claimed_by = agent_id
        job.claimed_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.debug(f"Print job {job.id} claimed by {agent_id} (attempt {job.attempts})")
        return job

    def _get_processing(self, job_id: int) -> PrintJob:
        job = self.db.get(PrintJob, job_id)
        if job is None:
            raise NotFound("Print job", job_id)
        if job.status != PrintJobStatus.PROCESSING:
            raise Conflict(f"Print job {job_id} is {job.status.value}, not processing")
        return job

    def mark_printed(self, job_id: int) -> PrintJob:
        job = self._get_processing(job_id)
        job.status = PrintJobStatus.PRINTED
        job.printed_at = datetime.now(timezone.utc)
        job.last_error = None
        self.db.commit()
        return job

    def mark_failed(self, job_id: int, error: str) -> PrintJob:
        """Record a failed attempt; the job goes back to pending until attempts run out."""
        job = self._get_processing(job_id)
        job.last_error = error[:500]
        if job.attempts < job.max_attempts:
            job.status = PrintJobStatus.PENDING
            job.claimed_by = None
            logger.warning(f"Print job {job.id} failed (attempt {job.attempts}), will retry: {error}")
        else:
            job.status = PrintJobStatus.FAILED
            logger.error(f"Print job {job.id} failed permanently after {job.attempts} attempts: {error}")
        self.db.commit()
        return job
