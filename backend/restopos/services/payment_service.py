"""
Payment Processor.

Records full, partial and split payments against an invoice. Once the paid
amount covers the grand total the order is settled, open tickets are closed
and a dine-in table is released.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from restopos.core.errors import Conflict, NotFound, ValidationError
from restopos.core.money import ZERO, to_money
from restopos.core.rbac import TokenData
from restopos.models import (
    Invoice,
    InvoicePaymentStatus,
    Order,
    OrderType,
    Payment,
    PaymentMode,
    PaymentState,
    PaymentStatus,
    OrderStatus,
    SplitPayment,
)
from restopos.services.kot_service import KotService
from restopos.services.notification_service import NotificationFanout, fanout
from restopos.services.numbering import next_payment_number
from restopos.services.table_session_service import TableSessionService
from restopos.services.websocket_service import Channel, EventType

logger = logging.getLogger(__name__)


@dataclass
class PaymentDetails:
    """Mode-specific metadata captured with a payment."""

    card_last_four: Optional[str] = None
    upi_transaction_id: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class SplitLine:
    mode: PaymentMode
    amount: Decimal
    details: Optional[PaymentDetails] = None


@dataclass
class PaymentOutcome:
    payment: Payment
    invoice: Invoice
    order: Order
    paid_total: Decimal
    balance: Decimal
    settled: bool


class PaymentService:
    """Settlement of invoices."""

    def __init__(self, db: Session, notifier: Optional[NotificationFanout] = None):
        self.db = db
        self.notifier = notifier or fanout
        self.tables = TableSessionService(db, self.notifier)
        self.kots = KotService(db, self.notifier)

    def paid_total(self, invoice_id: int) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.invoice_id == invoice_id, Payment.status == PaymentState.COMPLETED)
            .scalar()
        )
        return to_money(total)

    def _load(self, order_id: int, invoice_id: int, amount: Decimal):
        if amount is None or to_money(amount) <= ZERO:
            raise ValidationError("Payment amount must be positive")
        order = self.db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound("Order", order_id)
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None or invoice.order_id != order.id:
            raise NotFound("Invoice for order", invoice_id)
        if invoice.is_cancelled:
            raise Conflict(f"Invoice {invoice.invoice_number} is cancelled")
        if invoice.payment_status == InvoicePaymentStatus.PAID:
            raise Conflict(f"Invoice {invoice.invoice_number} is already paid")
        return order, invoice

    def pay(
        self,
        order_id: int,
        invoice_id: int,
        mode: PaymentMode,
        amount: Decimal,
        actor: TokenData,
        tip: Decimal = ZERO,
        details: Optional[PaymentDetails] = None,
    ) -> PaymentOutcome:
        if mode == PaymentMode.SPLIT:
            raise ValidationError("Use a split payment request for mode 'split'")
        order, invoice = self._load(order_id, invoice_id, amount)
        details = details or PaymentDetails()
        payment = self._new_payment(order, invoice, mode, amount, tip, actor, details)
        return self._record(order, invoice, payment, actor)

    def pay_split(
        self,
        order_id: int,
        invoice_id: int,
        amount: Decimal,
        splits: List[SplitLine],
        actor: TokenData,
        tip: Decimal = ZERO,
    ) -> PaymentOutcome:
        """One settlement spread over several modes; the parts must add up to ``amount``."""
        if len(splits) < 2:
            raise ValidationError("A split payment needs at least two parts")
        for line in splits:
            if line.mode == PaymentMode.SPLIT:
                raise ValidationError("A split part cannot itself be a split payment")
            if line.amount is None or to_money(line.amount) <= ZERO:
                raise ValidationError("Each split amount must be positive")
        parts_total = to_money(sum((to_money(line.amount) for line in splits), ZERO))
        if parts_total != to_money(amount):
            raise ValidationError(f"Split amounts ({parts_total}) do not add up to {to_money(amount)}")

        order, invoice = self._load(order_id, invoice_id, amount)
        payment = self._new_payment(order, invoice, PaymentMode.SPLIT, amount, tip, actor, PaymentDetails())
        payment.splits = [
            SplitPayment(
                position=position,
                payment_mode=line.mode,
                amount=to_money(line.amount),
                card_last_four=(line.details or PaymentDetails()).card_last_four,
                upi_transaction_id=(line.details or PaymentDetails()).upi_transaction_id,
                reference=(line.details or PaymentDetails()).reference,
            )
            for position, line in enumerate(splits, start=1)
        ]
        return self._record(order, invoice, payment, actor)

    def _new_payment(self, order: Order, invoice: Invoice, mode: PaymentMode, amount: Decimal,
                     tip: Decimal, actor: TokenData, details: PaymentDetails) -> Payment:
        tip = to_money(tip or ZERO)
        if tip < ZERO:
            raise ValidationError("Tip cannot be negative")
        amount = to_money(amount)
        return Payment(
            payment_number=next_payment_number(self.db, order.outlet_id),
            invoice_id=invoice.id,
            order_id=order.id,
            payment_mode=mode,
            amount=amount,
            tip_amount=tip,
            total_amount=to_money(amount + tip),
            status=PaymentState.COMPLETED,
            card_last_four=details.card_last_four,
            upi_transaction_id=details.upi_transaction_id,
            reference=details.reference,
            received_by=actor.id,
        )

    def _record(self, order: Order, invoice: Invoice, payment: Payment, actor: TokenData) -> PaymentOutcome:
        released = False
        try:
            self.db.add(payment)
            self.db.flush()
            paid = self.paid_total(invoice.id)
            settled = paid >= to_money(invoice.grand_total)
            if settled:
                invoice.payment_status = InvoicePaymentStatus.PAID
                order.status = OrderStatus.PAID
                order.payment_status = PaymentStatus.COMPLETED
                self.kots.close_open_tickets(order, actor)
                if order.order_type == OrderType.DINE_IN:
                    released = self.tables.release_for_order(order, actor)
            else:
                invoice.payment_status = InvoicePaymentStatus.PARTIAL
                order.payment_status = PaymentStatus.PARTIAL
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record payment on invoice {invoice.id}: {e}")
            raise

        balance = max(to_money(invoice.grand_total) - paid, ZERO)
        logger.info(
            f"Payment {payment.payment_number} ({payment.payment_mode.value}) of {payment.amount} "
            f"on {invoice.invoice_number}; paid {paid}, balance {balance}"
        )
        self.notifier.publish(
            EventType.ORDER_PAYMENT_RECEIVED,
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "invoice_id": invoice.id,
                "payment_id": payment.id,
                "payment_number": payment.payment_number,
                "mode": payment.payment_mode.value,
                "amount": str(payment.amount),
                "tip": str(payment.tip_amount),
                "paid_total": str(paid),
                "balance": str(balance),
                "settled": settled,
            },
            channels=(Channel.ORDERS,),
        )
        if released:
            self.tables.publish_table(order.table_id)
        return PaymentOutcome(
            payment=payment, invoice=invoice, order=order, paid_total=paid, balance=balance, settled=settled
        )
