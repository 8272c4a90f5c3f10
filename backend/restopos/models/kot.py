"""Kitchen and bar order tickets."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from restopos.db.base import Base, TimestampMixin, str_enum
from restopos.models.menu import ItemType


class KotStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


class KotItemStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


class KotPriority(str, Enum):
    NORMAL = "normal"
    RUSH = "rush"


TERMINAL_KOT_STATUSES = (KotStatus.SERVED, KotStatus.CANCELLED)


class KotTicket(Base, TimestampMixin):
    """One dispatch of an order's items to a single preparation station.

    The item set is fixed at creation; items added to the order later go on
    a new ticket.
    """

    __tablename__ = "kot_tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    kot_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    station: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[KotStatus] = mapped_column(
        str_enum(KotStatus), default=KotStatus.PENDING, nullable=False, index=True
    )
    priority: Mapped[KotPriority] = mapped_column(
        str_enum(KotPriority), default=KotPriority.NORMAL, nullable=False
    )
    printed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_item_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    preparing_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    preparing_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ready_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    served_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    served_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    items: Mapped[List["KotItem"]] = relationship(
        "KotItem",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="KotItem.id",
    )
    order: Mapped["Order"] = relationship("Order")

    @property
    def active_items(self) -> List["KotItem"]:
        return [i for i in self.items if i.status != KotItemStatus.CANCELLED]

    @property
    def item_count(self) -> int:
        return len(self.active_items)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_KOT_STATUSES


class KotItem(Base):
    """Snapshot of an order item as it was sent to the station."""

    __tablename__ = "kot_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    kot_id: Mapped[int] = mapped_column(
        ForeignKey("kot_tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_item_id: Mapped[int] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    variant_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    item_type: Mapped[ItemType] = mapped_column(str_enum(ItemType), default=ItemType.VEG, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cancelled_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    addons_text: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    special_instructions: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[KotItemStatus] = mapped_column(
        str_enum(KotItemStatus), default=KotItemStatus.PENDING, nullable=False
    )
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ticket: Mapped["KotTicket"] = relationship("KotTicket", back_populates="items")
    order_item: Mapped["OrderItem"] = relationship("OrderItem")


# Forward references
from restopos.models.order import Order, OrderItem  # noqa: E402
