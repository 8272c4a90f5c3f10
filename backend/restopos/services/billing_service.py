"""
Billing Engine.

Turns an order into a frozen invoice: per-component tax, discounts, service
charge and round-off. Generation is idempotent per order: while a
non-cancelled invoice exists, asking again returns it unchanged.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restopos.core.config import settings
from restopos.core.errors import Conflict, NotFound, ValidationError
from restopos.core.money import ZERO, apply_rounding, percent_of, to_money
from restopos.core.rbac import TokenData
from restopos.models import (
    DiscountApplication,
    DiscountType,
    DuplicateBillLog,
    Invoice,
    InvoiceDiscount,
    InvoiceItem,
    InvoicePaymentStatus,
    Order,
    OrderStatus,
    Payment,
    PrintJobType,
    SessionStatus,
    TableStatus,
    TaxCode,
)
from restopos.services.notification_service import NotificationFanout, fanout
from restopos.services.numbering import next_invoice_number
from restopos.services.print_queue_service import PrintQueueService, render_bill
from restopos.services.table_session_service import TableSessionService
from restopos.services.tax_service import (
    TaxBreakdown,
    calculate_line_tax,
    merge_breakdowns,
    resolve_components,
    scale_breakdown,
    split_interstate,
)
from restopos.services.websocket_service import Channel, EventType

logger = logging.getLogger(__name__)

BILL_STATION = "billing"
UNBILLABLE_STATUSES = (OrderStatus.CANCELLED, OrderStatus.PAID, OrderStatus.COMPLETED)


@dataclass
class CustomerInfo:
    name: Optional[str] = None
    phone: Optional[str] = None
    gstin: Optional[str] = None
    is_interstate: bool = False


@dataclass
class DiscountLine:
    name: str
    discount_type: DiscountType
    value: Decimal
    apply_on: DiscountApplication = DiscountApplication.PRE_TAX


@dataclass
class BillTotals:
    """Computed figures for one bill, before anything is written."""

    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax: TaxBreakdown
    service_charge: Decimal
    round_off: Decimal
    grand_total: Decimal
    discounts: List[tuple] = field(default_factory=list)


def _discount_amount(discount: DiscountLine, base: Decimal) -> Decimal:
    if discount.value < 0:
        raise ValidationError(f"Discount '{discount.name}' cannot be negative")
    if discount.discount_type == DiscountType.PERCENTAGE:
        if discount.value > 100:
            raise ValidationError(f"Discount '{discount.name}' exceeds 100%")
        amount = percent_of(base, discount.value)
    else:
        amount = to_money(discount.value)
    return min(amount, base)


def compute_bill(
    lines: List[tuple],
    discounts: List[DiscountLine],
    is_interstate: bool = False,
    apply_service_charge: bool = False,
) -> BillTotals:
    """Bill arithmetic over ``(line_total, tax_components)`` pairs.

    Pre-tax discounts shrink the taxable amount and scale every tax component
    by the same ratio; post-tax discounts come off the payable total.
    """
    subtotal = to_money(sum((amount for amount, _ in lines), ZERO))
    tax = merge_breakdowns(calculate_line_tax(amount, components) for amount, components in lines)
    if is_interstate:
        tax = split_interstate(tax)

    applied = []
    pre_tax = ZERO
    for discount in discounts:
        if discount.apply_on != DiscountApplication.PRE_TAX:
            continue
        amount = _discount_amount(discount, subtotal)
        applied.append((discount, amount))
        pre_tax += amount

    if pre_tax > subtotal:
        raise ValidationError(f"Discounts ({pre_tax}) exceed the bill subtotal ({subtotal})")
    taxable = to_money(subtotal - pre_tax)
    if pre_tax and subtotal:
        tax = scale_breakdown(tax, taxable / subtotal)

    post_tax = ZERO
    post_base = to_money(taxable + tax.total)
    for discount in discounts:
        if discount.apply_on != DiscountApplication.POST_TAX:
            continue
        amount = _discount_amount(discount, post_base)
        applied.append((discount, amount))
        post_tax += amount

    discount_total = to_money(pre_tax + post_tax)
    if discount_total > subtotal:
        raise ValidationError(f"Discounts ({discount_total}) exceed the bill subtotal ({subtotal})")

    service_charge = percent_of(taxable, settings.service_charge_percent) if apply_service_charge else ZERO
    before_round = to_money(taxable + tax.total + service_charge - post_tax)
    if before_round < 0:
        raise ValidationError("Discounts exceed the bill total")
    grand_total = apply_rounding(before_round, settings.bill_rounding, settings.bill_rounding_unit)

    return BillTotals(
        subtotal=subtotal,
        discount_amount=discount_total,
        taxable_amount=taxable,
        tax=tax,
        service_charge=service_charge,
        round_off=to_money(grand_total - before_round),
        grand_total=grand_total,
        discounts=applied,
    )


class BillingService:
    """Invoice generation, cancellation and reprints."""

    def __init__(self, db: Session, notifier: Optional[NotificationFanout] = None):
        self.db = db
        self.notifier = notifier or fanout
        self.tables = TableSessionService(db, self.notifier)
        self.print_queue = PrintQueueService(db)

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound("Invoice", invoice_id)
        return invoice

    def live_invoice_for(self, order_id: int) -> Optional[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.order_id == order_id, Invoice.is_cancelled.is_(False))
            .first()
        )

    def generate_bill(
        self,
        order_id: int,
        actor: TokenData,
        customer: Optional[CustomerInfo] = None,
        apply_service_charge: bool = False,
        discounts: Optional[List[DiscountLine]] = None,
    ) -> Invoice:
        existing = self.live_invoice_for(order_id)
        if existing is not None:
            logger.info(f"Bill for order {order_id} already exists: {existing.invoice_number}")
            return existing

        order = self.db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound("Order", order_id)
        if order.status in UNBILLABLE_STATUSES:
            raise Conflict(f"Order {order.order_number} is {order.status.value} and cannot be billed")
        items = order.active_items
        if not items:
            raise Conflict(f"Order {order.order_number} has no items to bill")
        self.tables.ensure_order_access(order, actor)

        customer = customer or CustomerInfo()
        totals = compute_bill(
            [(to_money(i.total_price), resolve_components(i.menu_item.tax_group)) for i in items],
            discounts or [],
            is_interstate=customer.is_interstate,
            apply_service_charge=apply_service_charge,
        )

        try:
            invoice = Invoice(
                invoice_number=next_invoice_number(self.db, order.outlet_id),
                order_id=order.id,
                invoice_date=datetime.now(timezone.utc),
                subtotal=totals.subtotal,
                discount_amount=totals.discount_amount,
                taxable_amount=totals.taxable_amount,
                cgst_amount=totals.tax.amount_for(TaxCode.CGST),
                sgst_amount=totals.tax.amount_for(TaxCode.SGST),
                igst_amount=totals.tax.amount_for(TaxCode.IGST),
                vat_amount=totals.tax.amount_for(TaxCode.VAT),
                cess_amount=totals.tax.amount_for(TaxCode.CESS),
                total_tax=totals.tax.total,
                service_charge=totals.service_charge,
                round_off=totals.round_off,
                grand_total=totals.grand_total,
                payment_status=InvoicePaymentStatus.PENDING,
                customer_name=customer.name or order.customer_name,
                customer_phone=customer.phone or order.customer_phone,
                customer_gstin=customer.gstin,
                is_interstate=customer.is_interstate,
                generated_by=actor.id,
            )
            invoice.items = [
                InvoiceItem(
                    order_item_id=i.id,
                    item_name=i.item_name,
                    variant_name=i.variant_name,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    total_price=i.total_price,
                    tax_amount=i.tax_amount,
                )
                for i in items
            ]
            invoice.discounts = [
                InvoiceDiscount(
                    name=d.name,
                    discount_type=d.discount_type,
                    value=d.value,
                    applied_on=d.apply_on,
                    amount=amount,
                )
                for d, amount in totals.discounts
            ]
            self.db.add(invoice)
            order.status = OrderStatus.BILLED
            self.tables.set_table_status(order, TableStatus.BILLING, SessionStatus.BILLING)
            self.db.commit()
        except IntegrityError:
            # A concurrent request billed the same order first
            self.db.rollback()
            winner = self.live_invoice_for(order_id)
            if winner is None:
                raise
            logger.info(f"Bill for order {order_id} was generated concurrently: {winner.invoice_number}")
            return winner
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to generate bill for order {order_id}: {e}")
            raise

        logger.info(
            f"Invoice {invoice.invoice_number} generated for order {order.order_number}: "
            f"grand total {invoice.grand_total}"
        )
        self.notifier.publish(
            EventType.ORDER_BILLED,
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "grand_total": str(invoice.grand_total),
                "table_id": order.table_id,
            },
            channels=(Channel.ORDERS,),
        )
        self.tables.publish_table(order.table_id)
        return invoice

    def cancel_invoice(self, invoice_id: int, actor: TokenData, reason: str) -> Invoice:
        """Void an unpaid invoice so the order can take more items or be billed again."""
        if not reason:
            raise ValidationError("A cancellation reason is required")
        invoice = self.get_invoice(invoice_id)
        if invoice.is_cancelled:
            raise Conflict(f"Invoice {invoice.invoice_number} is already cancelled")
        if invoice.payment_status != InvoicePaymentStatus.PENDING or (
            self.db.query(Payment).filter(Payment.invoice_id == invoice.id).count()
        ):
            raise Conflict(f"Invoice {invoice.invoice_number} has payments and cannot be cancelled")

        order = self.db.query(Order).filter(Order.id == invoice.order_id).with_for_update().first()
        try:
            invoice.is_cancelled = True
            invoice.cancel_reason = reason
            invoice.cancelled_by = actor.id
            invoice.cancelled_at = datetime.now(timezone.utc)
            if order.status == OrderStatus.BILLED:
                order.status = OrderStatus.SERVED
                self.tables.set_table_status(order, TableStatus.RUNNING, SessionStatus.ACTIVE)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel invoice {invoice_id}: {e}")
            raise

        logger.info(f"Invoice {invoice.invoice_number} cancelled by staff {actor.id}: {reason}")
        self.tables.publish_table(order.table_id)
        return invoice

    def duplicate_invoice(self, invoice_id: int, actor: TokenData, reason: Optional[str] = None) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice.is_cancelled:
            raise Conflict(f"Invoice {invoice.invoice_number} is cancelled")

        invoice.duplicate_count += 1
        self.db.add(DuplicateBillLog(
            invoice_id=invoice.id,
            duplicate_number=invoice.duplicate_count,
            reason=reason,
            printed_by=actor.id,
        ))
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record duplicate of invoice {invoice_id}: {e}")
            raise

        logger.info(f"Duplicate #{invoice.duplicate_count} of {invoice.invoice_number} by staff {actor.id}")
        self._print(invoice, duplicate_number=invoice.duplicate_count)
        return invoice

    def print_invoice(self, invoice_id: int, actor: TokenData) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice.is_cancelled:
            raise Conflict(f"Invoice {invoice.invoice_number} is cancelled")
        logger.info(f"Bill {invoice.invoice_number} sent to print by staff {actor.id}")
        self._print(invoice)
        return invoice

    def _print(self, invoice: Invoice, duplicate_number: Optional[int] = None) -> None:
        order = invoice.order
        self.print_queue.enqueue_safely(
            job_type=PrintJobType.BILL,
            station=BILL_STATION,
            content=render_bill(invoice, order, duplicate_number),
            reference_number=invoice.invoice_number,
            outlet_id=order.outlet_id,
            order_id=order.id,
            invoice_id=invoice.id,
        )
