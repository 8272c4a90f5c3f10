"""SQLAlchemy models."""

from restopos.models.staff import Staff
from restopos.models.menu import (
    Addon,
    CancelReason,
    ItemType,
    MenuItem,
    MenuItemVariant,
    TaxCode,
    TaxComponent,
    TaxGroup,
)
from restopos.models.table import (
    OPEN_SESSION_STATUSES,
    SessionStatus,
    Table,
    TableMerge,
    TableSession,
    TableStatus,
)
from restopos.models.order import (
    CLOSED_ORDER_STATUSES,
    SETTLED_ORDER_STATUSES,
    Order,
    OrderCancelLog,
    OrderItem,
    OrderItemAddon,
    OrderItemStatus,
    OrderStatus,
    OrderType,
    PaymentStatus,
)
from restopos.models.kot import KotItem, KotItemStatus, KotPriority, KotStatus, KotTicket
from restopos.models.invoice import (
    DiscountApplication,
    DiscountType,
    DuplicateBillLog,
    Invoice,
    InvoiceDiscount,
    InvoiceItem,
    InvoicePaymentStatus,
)
from restopos.models.payment import Payment, PaymentMode, PaymentState, SplitPayment
from restopos.models.print_job import JOB_PRIORITIES, PrintJob, PrintJobStatus, PrintJobType
from restopos.models.sequence import DocumentSequence

__all__ = [
    "Staff",
    "Addon",
    "CancelReason",
    "ItemType",
    "MenuItem",
    "MenuItemVariant",
    "TaxCode",
    "TaxComponent",
    "TaxGroup",
    "OPEN_SESSION_STATUSES",
    "SessionStatus",
    "Table",
    "TableMerge",
    "TableSession",
    "TableStatus",
    "CLOSED_ORDER_STATUSES",
    "SETTLED_ORDER_STATUSES",
    "Order",
    "OrderCancelLog",
    "OrderItem",
    "OrderItemAddon",
    "OrderItemStatus",
    "OrderStatus",
    "OrderType",
    "PaymentStatus",
    "KotItem",
    "KotItemStatus",
    "KotPriority",
    "KotStatus",
    "KotTicket",
    "DiscountApplication",
    "DiscountType",
    "DuplicateBillLog",
    "Invoice",
    "InvoiceDiscount",
    "InvoiceItem",
    "InvoicePaymentStatus",
    "Payment",
    "PaymentMode",
    "PaymentState",
    "SplitPayment",
    "JOB_PRIORITIES",
    "PrintJob",
    "PrintJobStatus",
    "PrintJobType",
    "DocumentSequence",
]
