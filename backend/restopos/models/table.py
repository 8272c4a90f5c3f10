"""Tables, occupancy sessions and merge groups."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, str_enum
from restopos.models.validators import positive


class TableStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"
    RUNNING = "running"
    BILLING = "billing"
    MERGED = "merged"
    BLOCKED = "blocked"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    BILLING = "billing"
    COMPLETED = "completed"


OPEN_SESSION_STATUSES = (SessionStatus.ACTIVE, SessionStatus.BILLING)


class Table(Base, TimestampMixin):
    """A physical seating unit.

    ``capacity`` is the live seat count and grows while the table is the
    primary of a merge group; ``original_capacity`` never changes with merges.
    """

    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    outlet_id: Mapped[int] = mapped_column(Integer, default=1, nullable=False, index=True)
    table_number: Mapped[str] = mapped_column(String(20), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    original_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    shape: Mapped[str] = mapped_column(String(20), default="square", nullable=False)
    status: Mapped[TableStatus] = mapped_column(
        str_enum(TableStatus), default=TableStatus.AVAILABLE, nullable=False, index=True
    )
    merged_into_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tables.id", ondelete="SET NULL"), nullable=True
    )
    current_order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL", use_alter=True, name="fk_tables_current_order_id"), nullable=True
    )

    sessions: Mapped[List["TableSession"]] = relationship(
        "TableSession", back_populates="table", order_by="TableSession.id"
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("original_capacity", kwargs.get("capacity"))
        super().__init__(**kwargs)

    @validates("capacity", "original_capacity")
    def _validate_capacity(self, key, value):
        return positive(key, value)


class TableSession(Base, TimestampMixin):
    """One occupancy episode of a table, owned by the staff member who seated it."""

    __tablename__ = "table_sessions"
    __table_args__ = (
        # At most one open session per table
        Index(
            "uq_table_sessions_open_table",
            "table_id",
            unique=True,
            sqlite_where=text("status != 'completed'"),
            postgresql_where=text("status != 'completed'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(
        ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL", use_alter=True, name="fk_table_sessions_order_id"), nullable=True
    )
    guest_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    guest_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    guest_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("staff.id"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        str_enum(SessionStatus), default=SessionStatus.ACTIVE, nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    table: Mapped["Table"] = relationship("Table", back_populates="sessions")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_SESSION_STATUSES


class TableMerge(Base):
    """One member table joined to a primary; open while ``unmerged_at`` is null."""

    __tablename__ = "table_merges"

    id: Mapped[int] = mapped_column(primary_key=True)
    primary_table_id: Mapped[int] = mapped_column(
        ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    member_table_id: Mapped[int] = mapped_column(
        ForeignKey("tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    member_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    merged_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)
    merged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    unmerged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    unmerged_by: Mapped[Optional[int]] = mapped_column(ForeignKey("staff.id"), nullable=True)

    member_table: Mapped["Table"] = relationship("Table", foreign_keys=[member_table_id])
