"""
Order Manager.

Order creation, item addition and cancellation. Every mutation recomputes
the order's subtotal, tax and total from its non-cancelled items inside the
same transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from restopos.core.errors import (
    ApprovalRequired,
    Conflict,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from restopos.core.money import to_money
from restopos.core.rbac import TokenData
from restopos.models import (
    CLOSED_ORDER_STATUSES,
    Addon,
    CancelReason,
    Invoice,
    InvoicePaymentStatus,
    KotItem,
    KotItemStatus,
    KotStatus,
    KotTicket,
    MenuItem,
    MenuItemVariant,
    Order,
    OrderCancelLog,
    OrderItem,
    OrderItemAddon,
    OrderItemStatus,
    OrderStatus,
    OrderType,
    Payment,
    PrintJobType,
    TableStatus,
)
from restopos.services.notification_service import NotificationFanout, fanout
from restopos.services.numbering import next_order_number
from restopos.services.order_rules import (
    APPROVAL_ITEM_STATUSES,
    recalculate_totals,
    resolve_approver,
    sync_order_progress,
    ticket_payload,
)
from restopos.services.print_queue_service import PrintQueueService, render_cancel_slip
from restopos.services.station_routing import resolve_station
from restopos.services.table_session_service import TableSessionService
from restopos.services.tax_service import calculate_line_tax, resolve_components
from restopos.services.websocket_service import Channel, EventType

logger = logging.getLogger(__name__)


@dataclass
class AddonLine:
    addon_id: int
    quantity: int = 1


@dataclass
class ItemLine:
    menu_item_id: int
    quantity: int
    variant_id: Optional[int] = None
    addons: List[AddonLine] = field(default_factory=list)
    special_instructions: Optional[str] = None


@dataclass
class _PricedLine:
    line: ItemLine
    menu_item: MenuItem
    variant: Optional[MenuItemVariant]
    addons: List[tuple]
    unit_price: Decimal


class OrderService:
    """Order capture and cancellation."""

    def __init__(self, db: Session, notifier: Optional[NotificationFanout] = None):
        self.db = db
        self.notifier = notifier or fanout
        self.tables = TableSessionService(db, self.notifier)
        self.print_queue = PrintQueueService(db)

    def get_order(self, order_id: int, lock: bool = False) -> Order:
        query = self.db.query(Order).filter(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        order = query.first()
        if order is None:
            raise NotFound("Order", order_id)
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order(
        self,
        order_type: OrderType,
        actor: TokenData,
        table_id: Optional[int] = None,
        guest_count: Optional[int] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        notes: Optional[str] = None,
        outlet_id: int = 1,
    ) -> Order:
        session = None
        table = None
        if order_type == OrderType.DINE_IN:
            if table_id is None:
                raise ValidationError("A dine-in order needs a table")
            table = self.tables.get_table(table_id, lock=True)
            if table.status == TableStatus.MERGED:
                raise Conflict(
                    f"Table {table.table_number} is merged into table {table.merged_into_id}; "
                    "order against the primary table"
                )
            session = self.tables.get_open_session(table.id)
            if session is None:
                raise Conflict(f"Table {table.table_number} has no active session")
            self.tables.ensure_owner(session, actor)
            if session.order_id is not None:
                existing = self.db.get(Order, session.order_id)
                if existing is not None and existing.status not in (OrderStatus.CANCELLED,):
                    raise Conflict(
                        f"Session on table {table.table_number} already has order {existing.order_number}",
                        order_id=existing.id,
                    )
            outlet_id = table.outlet_id
            guest_count = guest_count or session.guest_count
            customer_name = customer_name or session.guest_name
            customer_phone = customer_phone or session.guest_phone
        elif table_id is not None:
            raise ValidationError(f"A {order_type.value} order cannot be placed against a table")

        try:
            order = Order(
                order_number=next_order_number(self.db, outlet_id),
                outlet_id=outlet_id,
                order_type=order_type,
                table_id=table.id if table else None,
                session_id=session.id if session else None,
                guest_count=guest_count or 1,
                customer_name=customer_name,
                customer_phone=customer_phone,
                status=OrderStatus.PENDING,
                subtotal=Decimal("0"),
                tax_amount=Decimal("0"),
                total_amount=Decimal("0"),
                created_by=actor.id,
                notes=notes,
            )
            self.db.add(order)
            self.db.flush()
            if session is not None:
                session.order_id = order.id
                table.current_order_id = order.id
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create {order_type.value} order: {e}")
            raise

        logger.info(f"Order {order.order_number} ({order_type.value}) created by staff {actor.id}")
        if table is not None:
            self.tables.publish_table(table.id)
        return order

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _price_line(self, line: ItemLine) -> _PricedLine:
        if line.quantity < 1:
            raise ValidationError("quantity must be at least 1", menu_item_id=line.menu_item_id)
        menu_item = self.db.get(MenuItem, line.menu_item_id)
        if menu_item is None:
            raise ValidationError(f"Menu item {line.menu_item_id} does not exist")
        if not menu_item.is_available:
            raise ValidationError(f"{menu_item.name} is not available")

        variant = None
        base = Decimal(str(menu_item.base_price))
        if line.variant_id is not None:
            variant = self.db.get(MenuItemVariant, line.variant_id)
            if variant is None or variant.menu_item_id != menu_item.id:
                raise ValidationError(f"Variant {line.variant_id} does not belong to {menu_item.name}")
            if not variant.is_available:
                raise ValidationError(f"{menu_item.name} ({variant.name}) is not available")
            base = Decimal(str(variant.price))

        addons = []
        for addon_line in line.addons:
            if addon_line.quantity < 1:
                raise ValidationError("addon quantity must be at least 1")
            addon = self.db.get(Addon, addon_line.addon_id)
            if addon is None or not addon.is_available:
                raise ValidationError(f"Addon {addon_line.addon_id} is not available")
            addons.append((addon, addon_line.quantity))

        unit_price = to_money(base + sum(
            (Decimal(str(addon.price)) * qty for addon, qty in addons), Decimal("0")
        ))
        return _PricedLine(line=line, menu_item=menu_item, variant=variant, addons=addons, unit_price=unit_price)

    @staticmethod
    def _line_tax(menu_item: MenuItem, total_price: Decimal) -> Decimal:
        return calculate_line_tax(total_price, resolve_components(menu_item.tax_group)).total

    def add_items(self, order_id: int, lines: List[ItemLine], actor: TokenData) -> List[OrderItem]:
        """Append priced items in ``pending`` status and recompute totals."""
        if not lines:
            raise ValidationError("At least one item is required")

        # The row lock serializes concurrent adds on the same order
        order = self.get_order(order_id, lock=True)
        if order.status in CLOSED_ORDER_STATUSES:
            raise Conflict(f"Cannot add items to a {order.status.value} order")
        self.tables.ensure_order_access(order, actor)

        priced = [self._price_line(line) for line in lines]
        added = []
        try:
            for p in priced:
                total_price = to_money(p.unit_price * p.line.quantity)
                item = OrderItem(
                    menu_item_id=p.menu_item.id,
                    variant_id=p.variant.id if p.variant else None,
                    item_name=p.menu_item.name,
                    variant_name=p.variant.name if p.variant else None,
                    item_type=p.menu_item.item_type,
                    station=resolve_station(p.menu_item).value,
                    quantity=p.line.quantity,
                    unit_price=p.unit_price,
                    total_price=total_price,
                    tax_amount=self._line_tax(p.menu_item, total_price),
                    special_instructions=p.line.special_instructions,
                    status=OrderItemStatus.PENDING,
                    added_by=actor.id,
                )
                item.addons = [
                    OrderItemAddon(addon_id=addon.id, name=addon.name, price=addon.price, quantity=qty)
                    for addon, qty in p.addons
                ]
                order.items.append(item)
                added.append(item)
            recalculate_totals(order)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to add items to order {order_id}: {e}")
            raise

        logger.info(f"Order {order.order_number}: added {len(added)} item(s), total {order.total_amount}")
        return added

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_item(
        self,
        item_id: int,
        actor: TokenData,
        reason: Optional[str] = None,
        reason_id: Optional[int] = None,
        quantity: Optional[int] = None,
        approved_by: Optional[int] = None,
    ) -> OrderItem:
        """Cancel an item, or part of its quantity.

        Items already being prepared, and reasons configured to need it, require
        sign-off from a staff member holding ``order:approve_cancel``.
        """
        item = self.db.get(OrderItem, item_id)
        if item is None:
            raise NotFound("Order item", item_id)
        order = self.get_order(item.order_id, lock=True)
        if order.status in CLOSED_ORDER_STATUSES:
            raise Conflict(f"Cannot cancel items on a {order.status.value} order")
        self.tables.ensure_order_access(order, actor)
        if item.status in (OrderItemStatus.SERVED, OrderItemStatus.CANCELLED):
            raise Conflict(f"Item {item.item_name} is already {item.status.value}")

        needs_approval = item.status in APPROVAL_ITEM_STATUSES
        if reason_id is not None:
            configured = self.db.get(CancelReason, reason_id)
            if configured is None:
                raise ValidationError(f"Cancel reason {reason_id} does not exist")
            reason = reason or configured.reason
            needs_approval = needs_approval or configured.requires_approval
        if not reason:
            raise ValidationError("A cancellation reason is required")

        cancel_qty = item.quantity if quantity is None else quantity
        if cancel_qty < 1 or cancel_qty > item.quantity:
            raise ValidationError(f"quantity must be between 1 and {item.quantity}")

        approver_id = None
        if needs_approval:
            approver_id = resolve_approver(self.db, actor, approved_by)
            if approver_id is None:
                raise ApprovalRequired(
                    f"Cancelling {item.item_name} needs manager approval",
                    item_id=item.id,
                    item_status=item.status.value,
                )

        now = datetime.now(timezone.utc)
        partial = cancel_qty < item.quantity
        cancelled_amount = to_money(item.unit_price * cancel_qty)
        ticket = None
        ticket_cancelled = False
        try:
            if partial:
                item.quantity -= cancel_qty
                item.total_price = to_money(item.unit_price * item.quantity)
                item.tax_amount = self._line_tax(item.menu_item, item.total_price)
            else:
                item.status = OrderItemStatus.CANCELLED
                item.cancel_reason = reason
                item.cancelled_by = actor.id
                item.cancel_approved_by = approver_id
                item.cancelled_at = now

            if item.kot_id is not None:
                ticket, ticket_cancelled = self._cancel_on_ticket(item, cancel_qty, partial, actor, reason, now)

            self.db.add(OrderCancelLog(
                order_id=order.id,
                order_item_id=item.id,
                cancel_type="item",
                quantity=cancel_qty,
                amount=cancelled_amount,
                reason=reason,
                cancelled_by=actor.id,
                approved_by=approver_id,
            ))
            recalculate_totals(order)
            sync_order_progress(order)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel item {item_id}: {e}")
            raise

        logger.info(
            f"Order {order.order_number}: cancelled {cancel_qty} x {item.item_name} "
            f"by staff {actor.id} (approved by {approver_id})"
        )
        if ticket is not None:
            self.print_queue.enqueue_safely(
                job_type=PrintJobType.CANCEL_SLIP,
                station=ticket.station,
                content=render_cancel_slip(ticket, order, item.item_name, cancel_qty, reason),
                reference_number=ticket.kot_number,
                outlet_id=order.outlet_id,
                kot_id=ticket.id,
                order_id=order.id,
            )
            payload = ticket_payload(ticket, order)
            payload.update({
                "cancelled_item": {
                    "order_item_id": item.id,
                    "name": item.item_name,
                    "quantity": cancel_qty,
                    "reason": reason,
                },
            })
            event = EventType.KOT_CANCELLED if ticket_cancelled else EventType.KOT_ITEM_CANCELLED
            self.notifier.publish(event, payload, channels=(Channel.KITCHEN, Channel.ORDERS))
        return item

    def _cancel_on_ticket(self, item: OrderItem, qty: int, partial: bool, actor: TokenData,
                          reason: str, now: datetime):
        """Reflect an item cancellation on its ticket. Returns (ticket, ticket_was_cancelled)."""
        ticket = self.db.get(KotTicket, item.kot_id)
        kot_item = (
            self.db.query(KotItem)
            .filter(KotItem.kot_id == item.kot_id, KotItem.order_item_id == item.id)
            .first()
        )
        if ticket is None or kot_item is None:
            return None, False

        kot_item.cancelled_quantity += qty
        if partial:
            kot_item.quantity -= qty
        else:
            kot_item.status = KotItemStatus.CANCELLED
        ticket.cancelled_item_count += 1

        if ticket.is_terminal:
            return ticket, False
        live = ticket.active_items
        if not live:
            ticket.status = KotStatus.CANCELLED
            ticket.cancelled_at = now
            ticket.cancelled_by = actor.id
            ticket.cancel_reason = f"All items cancelled: {reason}"
            return ticket, True
        if ticket.status in (KotStatus.ACCEPTED, KotStatus.PREPARING) and all(
            i.status == KotItemStatus.READY for i in live
        ):
            ticket.status = KotStatus.READY
            ticket.ready_at = now
            ticket.ready_by = actor.id
        return ticket, False

    def cancel_order(self, order_id: int, actor: TokenData, reason: str) -> Order:
        """Cancel an unpaid order, its open tickets and any pending invoice, and release the table."""
        if not reason:
            raise ValidationError("A cancellation reason is required")
        order = self.get_order(order_id, lock=True)
        if order.status in (OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            raise Conflict(f"Order {order.order_number} is {order.status.value} and cannot be cancelled")
        if self.db.query(Payment).filter(Payment.order_id == order.id).count():
            raise Conflict(f"Order {order.order_number} has payments recorded and cannot be cancelled")
        self.tables.ensure_order_access(order, actor)

        now = datetime.now(timezone.utc)
        value_before = order.total_amount
        cancelled_tickets = []
        try:
            for item in order.items:
                if item.status in (OrderItemStatus.SERVED, OrderItemStatus.CANCELLED):
                    continue
                item.status = OrderItemStatus.CANCELLED
                item.cancel_reason = reason
                item.cancelled_by = actor.id
                item.cancelled_at = now

            tickets = self.db.query(KotTicket).filter(KotTicket.order_id == order.id).all()
            for ticket in tickets:
                if ticket.is_terminal:
                    continue
                for kot_item in ticket.items:
                    if kot_item.status in (KotItemStatus.SERVED, KotItemStatus.CANCELLED):
                        continue
                    kot_item.status = KotItemStatus.CANCELLED
                    kot_item.cancelled_quantity += kot_item.quantity
                    ticket.cancelled_item_count += 1
                ticket.status = KotStatus.CANCELLED
                ticket.cancelled_at = now
                ticket.cancelled_by = actor.id
                ticket.cancel_reason = f"Order cancelled: {reason}"
                cancelled_tickets.append(ticket)

            invoices = (
                self.db.query(Invoice)
                .filter(Invoice.order_id == order.id, Invoice.is_cancelled.is_(False))
                .all()
            )
            for invoice in invoices:
                if invoice.payment_status == InvoicePaymentStatus.PENDING:
                    invoice.is_cancelled = True
                    invoice.cancel_reason = f"Order cancelled: {reason}"
                    invoice.cancelled_by = actor.id
                    invoice.cancelled_at = now

            order.status = OrderStatus.CANCELLED
            order.cancel_reason = reason
            order.cancelled_by = actor.id
            order.cancelled_at = now
            recalculate_totals(order)
            self.db.add(OrderCancelLog(
                order_id=order.id,
                cancel_type="order",
                amount=value_before,
                reason=reason,
                cancelled_by=actor.id,
            ))

            self.tables.release_for_order(order, actor)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel order {order_id}: {e}")
            raise

        logger.info(f"Order {order.order_number} cancelled by staff {actor.id}: {reason}")
        for ticket in cancelled_tickets:
            self.print_queue.enqueue_safely(
                job_type=PrintJobType.CANCEL_SLIP,
                station=ticket.station,
                content=render_cancel_slip(ticket, order, "ENTIRE TICKET", len(ticket.items), reason),
                reference_number=ticket.kot_number,
                outlet_id=order.outlet_id,
                kot_id=ticket.id,
                order_id=order.id,
            )
            self.notifier.publish(
                EventType.KOT_CANCELLED,
                ticket_payload(ticket, order),
                channels=(Channel.KITCHEN, Channel.ORDERS),
            )
        self.tables.publish_table(order.table_id)
        return order

    def complete_order(self, order_id: int, actor: TokenData) -> Order:
        """Hand over a settled order."""
        order = self.get_order(order_id, lock=True)
        if order.status != OrderStatus.PAID:
            raise InvalidTransition("order", order.status.value, OrderStatus.COMPLETED.value)
        order.status = OrderStatus.COMPLETED
        self.db.commit()
        logger.info(f"Order {order.order_number} completed by staff {actor.id}")
        return order
