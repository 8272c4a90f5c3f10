"""Aggregate rules shared by the order, ticket and payment services."""

from typing import Optional

from sqlalchemy.orm import Session

from restopos.core.money import money_sum, to_money
from restopos.core.rbac import TokenData
from restopos.core.rbac_policy import Capability, RBACPolicy
from restopos.models import (
    KotTicket,
    Order,
    OrderItemStatus,
    OrderStatus,
    Staff,
)

ORDER_ITEM_TERMINAL = (OrderItemStatus.SERVED, OrderItemStatus.CANCELLED)

# Item states in which a cancellation needs sign-off
APPROVAL_ITEM_STATUSES = (OrderItemStatus.PREPARING, OrderItemStatus.READY)


def recalculate_totals(order: Order) -> Order:
    """Recompute subtotal, tax and total from the non-cancelled items."""
    active = order.active_items
    order.subtotal = money_sum(i.total_price for i in active)
    order.tax_amount = money_sum(i.tax_amount for i in active)
    order.total_amount = to_money(order.subtotal + order.tax_amount)
    return order


def sync_order_progress(order: Order) -> bool:
    """Mark a confirmed order served once every live item has been served."""
    active = order.active_items
    if order.status != OrderStatus.CONFIRMED or not active:
        return False
    if all(i.status == OrderItemStatus.SERVED for i in active):
        order.status = OrderStatus.SERVED
        return True
    return False


def ticket_payload(ticket: KotTicket, order: Order, table_number: Optional[str] = None) -> dict:
    """Everything a kitchen display needs about a ticket, without a follow-up fetch."""
    if table_number is None and order.table is not None:
        table_number = order.table.table_number
    return {
        "kot_id": ticket.id,
        "kot_number": ticket.kot_number,
        "station": ticket.station,
        "status": ticket.status.value,
        "priority": ticket.priority.value,
        "order_id": order.id,
        "order_number": order.order_number,
        "order_type": order.order_type.value,
        "table_number": table_number,
        "item_count": ticket.item_count,
        "items": [
            {
                "id": item.id,
                "order_item_id": item.order_item_id,
                "name": item.item_name,
                "variant": item.variant_name,
                "type": item.item_type.value,
                "quantity": item.quantity,
                "addons": item.addons_text,
                "instructions": item.special_instructions,
                "status": item.status.value,
            }
            for item in ticket.items
        ],
    }


def resolve_approver(db: Session, actor: TokenData, approved_by: Optional[int]) -> Optional[int]:
    """Staff id that signs off a cancellation, or None when nobody eligible did.

    An actor holding ``order:approve_cancel`` approves their own request.
    """
    if RBACPolicy.allows(actor.role, Capability.ORDER_APPROVE_CANCEL):
        return actor.id
    if approved_by is None:
        return None
    approver = db.get(Staff, approved_by)
    if approver is None or not approver.is_active:
        return None
    if not RBACPolicy.allows(approver.role, Capability.ORDER_APPROVE_CANCEL):
        return None
    return approver.id
