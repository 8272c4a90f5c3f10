"""Order models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, str_enum
from restopos.models.menu import ItemType
from restopos.models.validators import non_negative, positive


class OrderType(str, Enum):
    DINE_IN = "dine_in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SERVED = "served"
    BILLED = "billed"
    PAID = "paid"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    """Settlement state of an order."""

    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


class OrderItemStatus(str, Enum):
    PENDING = "pending"
    SENT_TO_KITCHEN = "sent_to_kitchen"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


# No further changes are accepted on orders in these states
CLOSED_ORDER_STATUSES = (
    OrderStatus.BILLED,
    OrderStatus.PAID,
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
)

# A table may be released once its order is in one of these states
SETTLED_ORDER_STATUSES = (
    OrderStatus.PAID,
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
)


class Order(Base, TimestampMixin):
    """A billable set of items for one table session or one takeaway/delivery ticket."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    outlet_id: Mapped[int] = mapped_column(Integer, default=1, nullable=False, index=True)
    order_type: Mapped[OrderType] = mapped_column(str_enum(OrderType), nullable=False)
    table_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tables.id", ondelete="SET NULL"), nullable=True, index=True
    )
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("table_sessions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    guest_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        str_enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        str_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    created_by: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    table: Mapped[Optional["Table"]] = relationship("Table", foreign_keys=[table_id])

    @property
    def active_items(self) -> List["OrderItem"]:
        return [i for i in self.items if i.status != OrderItemStatus.CANCELLED]

    @validates("subtotal", "tax_amount", "total_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class OrderItem(Base, TimestampMixin):
    """One menu item line on an order, priced at the time it was added."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    variant_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_item_variants.id"), nullable=True
    )
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    variant_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    item_type: Mapped[ItemType] = mapped_column(str_enum(ItemType), default=ItemType.VEG, nullable=False)
    station: Mapped[str] = mapped_column(String(50), default="kitchen", nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[OrderItemStatus] = mapped_column(
        str_enum(OrderItemStatus), default=OrderItemStatus.PENDING, nullable=False
    )
    kot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("kot_tickets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    added_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancel_approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    addons: Mapped[List["OrderItemAddon"]] = relationship(
        "OrderItemAddon",
        back_populates="order_item",
        cascade="all, delete-orphan",
        order_by="OrderItemAddon.id",
    )
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")

    @property
    def addons_text(self) -> str:
        """Compact addon summary printed on tickets, e.g. ``Extra Cheese x2, Mayo``."""
        parts = []
        for addon in self.addons:
            parts.append(addon.name if addon.quantity == 1 else f"{addon.name} x{addon.quantity}")
        return ", ".join(parts)

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "total_price", "tax_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class OrderItemAddon(Base):
    __tablename__ = "order_item_addons"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_item_id: Mapped[int] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    addon_id: Mapped[Optional[int]] = mapped_column(ForeignKey("addons.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="addons")


class OrderCancelLog(Base):
    """Audit trail of item and order cancellations."""

    __tablename__ = "order_cancel_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True
    )
    cancel_type: Mapped[str] = mapped_column(String(10), nullable=False)  # item | order
    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    cancelled_by: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# Forward references
from restopos.models.menu import MenuItem  # noqa: E402
from restopos.models.table import Table  # noqa: E402
