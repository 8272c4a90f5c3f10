"""
Ticket Router (KOT/BOT engine).

Splits an order's pending items into one ticket per preparation station and
drives each ticket through

    pending -> accepted -> preparing -> ready -> served

with ``cancelled`` reachable from any non-terminal state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from restopos.core.errors import ApprovalRequired, Conflict, InvalidTransition, NotFound
from restopos.core.rbac import TokenData
from restopos.models import (
    CLOSED_ORDER_STATUSES,
    KotItem,
    KotItemStatus,
    KotPriority,
    KotStatus,
    KotTicket,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    OrderType,
    PrintJobType,
    TableStatus,
)
from restopos.services.notification_service import NotificationFanout, fanout
from restopos.services.numbering import next_kot_number
from restopos.services.order_rules import (
    APPROVAL_ITEM_STATUSES,
    recalculate_totals,
    resolve_approver,
    sync_order_progress,
    ticket_payload,
)
from restopos.services.print_queue_service import PrintQueueService, render_cancel_slip, render_kot
from restopos.services.station_routing import group_items_by_station, normalize_station, ticket_prefix
from restopos.services.table_session_service import TableSessionService
from restopos.services.websocket_service import Channel, EventType

logger = logging.getLogger(__name__)

# action -> (allowed source states, target state, event)
TRANSITIONS: Dict[str, Tuple[Tuple[KotStatus, ...], KotStatus, EventType]] = {
    "accept": ((KotStatus.PENDING,), KotStatus.ACCEPTED, EventType.KOT_ACCEPTED),
    "start_preparing": ((KotStatus.ACCEPTED,), KotStatus.PREPARING, EventType.KOT_PREPARING),
    "mark_ready": ((KotStatus.PREPARING,), KotStatus.READY, EventType.KOT_READY),
    "mark_served": ((KotStatus.READY,), KotStatus.SERVED, EventType.KOT_SERVED),
    "cancel": (
        (KotStatus.PENDING, KotStatus.ACCEPTED, KotStatus.PREPARING, KotStatus.READY),
        KotStatus.CANCELLED,
        EventType.KOT_CANCELLED,
    ),
}

# Item status mirrored onto KOT items and order items for each ticket state
_ITEM_MIRROR = {
    KotStatus.PREPARING: (KotItemStatus.PREPARING, OrderItemStatus.PREPARING),
    KotStatus.READY: (KotItemStatus.READY, OrderItemStatus.READY),
    KotStatus.SERVED: (KotItemStatus.SERVED, OrderItemStatus.SERVED),
}

_KOT_ITEM_ORDER = [
    KotItemStatus.PENDING,
    KotItemStatus.PREPARING,
    KotItemStatus.READY,
    KotItemStatus.SERVED,
]

STATION_CHANNELS = (Channel.KITCHEN, Channel.ORDERS)


@dataclass
class SendResult:
    tickets: List[KotTicket] = field(default_factory=list)
    message: str = "nothing to send"

    @property
    def sent(self) -> bool:
        return bool(self.tickets)


class KotService:
    """Kitchen/bar ticket generation and status management."""

    def __init__(self, db: Session, notifier: Optional[NotificationFanout] = None):
        self.db = db
        self.notifier = notifier or fanout
        self.tables = TableSessionService(db, self.notifier)
        self.print_queue = PrintQueueService(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_ticket(self, kot_id: int, lock: bool = False) -> KotTicket:
        query = self.db.query(KotTicket).filter(KotTicket.id == kot_id)
        if lock:
            query = query.with_for_update()
        ticket = query.first()
        if ticket is None:
            raise NotFound("KOT", kot_id)
        return ticket

    def list_active(self, station: Optional[str] = None) -> List[KotTicket]:
        query = self.db.query(KotTicket).filter(
            KotTicket.status.notin_((KotStatus.SERVED, KotStatus.CANCELLED))
        )
        if station:
            query = query.filter(KotTicket.station == normalize_station(station).value)
        return query.order_by(KotTicket.priority.desc(), KotTicket.id.asc()).all()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send_ticket(
        self,
        order_id: int,
        actor: TokenData,
        priority: KotPriority = KotPriority.NORMAL,
    ) -> SendResult:
        """Create one ticket per station for the order's pending items.

        Repeated calls are safe: with nothing pending the result is empty.
        """
        order = self.db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound("Order", order_id)
        if order.status in CLOSED_ORDER_STATUSES:
            raise Conflict(f"Order {order.order_number} is {order.status.value}")
        self.tables.ensure_order_access(order, actor)

        pending = [i for i in order.items if i.status == OrderItemStatus.PENDING]
        if not pending:
            logger.debug(f"Order {order.order_number}: nothing to send")
            return SendResult()

        groups = group_items_by_station(pending, lambda i: normalize_station(i.station))
        tickets = []
        try:
            for station, items in groups.items():
                ticket = KotTicket(
                    kot_number=next_kot_number(self.db, ticket_prefix(station.value)),
                    order_id=order.id,
                    station=station.value,
                    status=KotStatus.PENDING,
                    priority=priority,
                    printed_count=1,
                    cancelled_item_count=0,
                    created_by=actor.id,
                )
                ticket.items = [self._snapshot(item) for item in items]
                self.db.add(ticket)
                self.db.flush()
                for item in items:
                    item.status = OrderItemStatus.SENT_TO_KITCHEN
                    item.kot_id = ticket.id
                tickets.append(ticket)

            # Served orders reopen when more items go out
            if order.status in (OrderStatus.PENDING, OrderStatus.SERVED):
                order.status = OrderStatus.CONFIRMED
            if order.order_type == OrderType.DINE_IN:
                self.tables.set_table_status(order, TableStatus.RUNNING)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to send tickets for order {order_id}: {e}")
            raise

        logger.info(
            f"Order {order.order_number}: sent {', '.join(t.kot_number for t in tickets)}"
        )
        for ticket in tickets:
            job_type = PrintJobType.BOT if ticket.kot_number.startswith("BOT") else PrintJobType.KOT
            table_number = order.table.table_number if order.table else None
            self.print_queue.enqueue_safely(
                job_type=job_type,
                station=ticket.station,
                content=render_kot(ticket, order, table_number),
                reference_number=ticket.kot_number,
                outlet_id=order.outlet_id,
                kot_id=ticket.id,
                order_id=order.id,
            )
            self._publish(EventType.KOT_CREATED, ticket, order)
        return SendResult(tickets=tickets, message=f"{len(tickets)} ticket(s) sent")

    @staticmethod
    def _snapshot(item: OrderItem) -> KotItem:
        return KotItem(
            order_item_id=item.id,
            item_name=item.item_name,
            variant_name=item.variant_name,
            item_type=item.item_type,
            quantity=item.quantity,
            cancelled_quantity=0,
            addons_text=item.addons_text or None,
            special_instructions=item.special_instructions,
            status=KotItemStatus.PENDING,
        )

    # ------------------------------------------------------------------
    # Ticket state machine
    # ------------------------------------------------------------------

    def accept(self, kot_id: int, actor: TokenData) -> KotTicket:
        return self._transition(kot_id, "accept", actor)

    def start_preparing(self, kot_id: int, actor: TokenData) -> KotTicket:
        return self._transition(kot_id, "start_preparing", actor)

    def mark_ready(self, kot_id: int, actor: TokenData) -> KotTicket:
        return self._transition(kot_id, "mark_ready", actor)

    def mark_served(self, kot_id: int, actor: TokenData) -> KotTicket:
        return self._transition(kot_id, "mark_served", actor)

    def cancel(self, kot_id: int, actor: TokenData, reason: Optional[str] = None,
               approved_by: Optional[int] = None) -> KotTicket:
        """Cancel the whole ticket.

        Follows the item cancellation rules: the caller must be allowed to act
        on the order, and a ticket with items already being prepared or ready
        needs sign-off from a staff member holding ``order:approve_cancel``.
        """
        return self._transition(
            kot_id, "cancel", actor, reason=reason or "Ticket cancelled", approved_by=approved_by
        )

    def _transition(self, kot_id: int, action: str, actor: TokenData, reason: Optional[str] = None,
                    approved_by: Optional[int] = None) -> KotTicket:
        sources, target, event = TRANSITIONS[action]
        ticket = self.get_ticket(kot_id, lock=True)
        if ticket.status not in sources:
            raise InvalidTransition("KOT", ticket.status.value, target.value)
        order = ticket.order
        approver_id = None
        if target == KotStatus.CANCELLED:
            if order.status in CLOSED_ORDER_STATUSES:
                raise Conflict(f"Order {order.order_number} is {order.status.value}; its tickets can no longer be cancelled")
            self.tables.ensure_order_access(order, actor)
            approver_id = self._cancel_approver(ticket, actor, approved_by)

        was_printed = ticket.printed_count > 0
        try:
            self._apply(ticket, target, actor, reason, approver_id)
            if target == KotStatus.CANCELLED:
                recalculate_totals(order)
            sync_order_progress(order)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"KOT {kot_id} {action} failed: {e}")
            raise

        logger.info(f"{ticket.kot_number}: {action} by staff {actor.id}")
        if target == KotStatus.CANCELLED and was_printed:
            self.print_queue.enqueue_safely(
                job_type=PrintJobType.CANCEL_SLIP,
                station=ticket.station,
                content=render_cancel_slip(ticket, order, "ENTIRE TICKET", len(ticket.items), reason or ""),
                reference_number=ticket.kot_number,
                outlet_id=order.outlet_id,
                kot_id=ticket.id,
                order_id=order.id,
            )
        self._publish(event, ticket, order)
        return ticket

    def _cancel_approver(self, ticket: KotTicket, actor: TokenData, approved_by: Optional[int]) -> Optional[int]:
        in_progress = [
            kot_item for kot_item in ticket.active_items
            if kot_item.order_item.status in APPROVAL_ITEM_STATUSES
        ]
        if not in_progress:
            return None
        approver_id = resolve_approver(self.db, actor, approved_by)
        if approver_id is None:
            raise ApprovalRequired(
                f"Cancelling {ticket.kot_number} needs manager approval: "
                f"{len(in_progress)} item(s) already in the kitchen",
                kot_id=ticket.id,
                ticket_status=ticket.status.value,
            )
        return approver_id

    def _apply(self, ticket: KotTicket, target: KotStatus, actor: TokenData, reason: Optional[str],
               approver_id: Optional[int] = None) -> None:
        """Set ticket status, audit fields and mirror the state onto its items."""
        now = datetime.now(timezone.utc)
        ticket.status = target
        if target == KotStatus.ACCEPTED:
            ticket.accepted_at, ticket.accepted_by = now, actor.id
        elif target == KotStatus.PREPARING:
            ticket.preparing_at, ticket.preparing_by = now, actor.id
        elif target == KotStatus.READY:
            ticket.ready_at, ticket.ready_by = now, actor.id
        elif target == KotStatus.SERVED:
            ticket.served_at, ticket.served_by = now, actor.id
        elif target == KotStatus.CANCELLED:
            ticket.cancelled_at, ticket.cancelled_by = now, actor.id
            ticket.cancel_reason = reason

        if target == KotStatus.CANCELLED:
            for kot_item in ticket.items:
                if kot_item.status in (KotItemStatus.SERVED, KotItemStatus.CANCELLED):
                    continue
                kot_item.status = KotItemStatus.CANCELLED
                kot_item.cancelled_quantity += kot_item.quantity
                ticket.cancelled_item_count += 1
                order_item = kot_item.order_item
                order_item.status = OrderItemStatus.CANCELLED
                order_item.cancel_reason = reason
                order_item.cancelled_by = actor.id
                order_item.cancel_approved_by = approver_id
                order_item.cancelled_at = now
            return

        mirror = _ITEM_MIRROR.get(target)
        if mirror is None:
            return
        kot_status, order_status = mirror
        for kot_item in ticket.active_items:
            if _KOT_ITEM_ORDER.index(kot_item.status) >= _KOT_ITEM_ORDER.index(kot_status):
                continue
            kot_item.status = kot_status
            if kot_status == KotItemStatus.READY:
                kot_item.ready_at = now
            kot_item.order_item.status = order_status

    def mark_item_ready(self, kot_item_id: int, actor: TokenData) -> KotTicket:
        """Mark one item ready; the ticket turns ready when all live items are."""
        kot_item = self.db.get(KotItem, kot_item_id)
        if kot_item is None:
            raise NotFound("KOT item", kot_item_id)
        ticket = self.get_ticket(kot_item.kot_id, lock=True)
        if ticket.status not in (KotStatus.ACCEPTED, KotStatus.PREPARING):
            raise InvalidTransition("KOT", ticket.status.value, KotStatus.READY.value)
        if kot_item.status not in (KotItemStatus.PENDING, KotItemStatus.PREPARING):
            raise InvalidTransition("KOT item", kot_item.status.value, KotItemStatus.READY.value)

        now = datetime.now(timezone.utc)
        ticket_ready = False
        try:
            if ticket.status == KotStatus.ACCEPTED:
                self._apply(ticket, KotStatus.PREPARING, actor, None)
            kot_item.status = KotItemStatus.READY
            kot_item.ready_at = now
            kot_item.order_item.status = OrderItemStatus.READY
            if all(i.status == KotItemStatus.READY for i in ticket.active_items):
                self._apply(ticket, KotStatus.READY, actor, None)
                ticket_ready = True
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Marking KOT item {kot_item_id} ready failed: {e}")
            raise

        order = ticket.order
        self._publish(EventType.KOT_ITEM_READY, ticket, order, extra={"kot_item_id": kot_item.id})
        if ticket_ready:
            self._publish(EventType.KOT_READY, ticket, order)
        return ticket

    def reprint(self, kot_id: int, actor: TokenData) -> KotTicket:
        """Queue another copy of the ticket marked REPRINT; status is unchanged."""
        ticket = self.get_ticket(kot_id, lock=True)
        if ticket.status == KotStatus.CANCELLED:
            raise Conflict(f"{ticket.kot_number} is cancelled")
        ticket.printed_count += 1
        self.db.commit()

        order = ticket.order
        table_number = order.table.table_number if order.table else None
        self.print_queue.enqueue_safely(
            job_type=PrintJobType.BOT if ticket.kot_number.startswith("BOT") else PrintJobType.KOT,
            station=ticket.station,
            content=render_kot(ticket, order, table_number, reprint=True),
            reference_number=ticket.kot_number,
            outlet_id=order.outlet_id,
            kot_id=ticket.id,
            order_id=order.id,
        )
        logger.info(f"{ticket.kot_number} reprinted by staff {actor.id} (copy {ticket.printed_count})")
        self._publish(EventType.KOT_REPRINTED, ticket, order)
        return ticket

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def close_open_tickets(self, order: Order, actor: TokenData) -> List[KotTicket]:
        """Mark every open ticket and item of a settled order served. Joins the caller's transaction."""
        closed = []
        now = datetime.now(timezone.utc)
        for ticket in self.db.query(KotTicket).filter(KotTicket.order_id == order.id).all():
            if ticket.is_terminal:
                continue
            ticket.status = KotStatus.SERVED
            ticket.served_at, ticket.served_by = now, actor.id
            for kot_item in ticket.active_items:
                kot_item.status = KotItemStatus.SERVED
            closed.append(ticket)
        for item in order.active_items:
            item.status = OrderItemStatus.SERVED
        return closed

    def _publish(self, event: EventType, ticket: KotTicket, order: Order, extra: Optional[dict] = None) -> None:
        payload = ticket_payload(ticket, order)
        if extra:
            payload.update(extra)
        self.notifier.publish(event, payload, channels=STATION_CHANNELS)
