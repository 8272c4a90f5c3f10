"""Staff accounts (administered outside this service)."""

from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from restopos.core.rbac import StaffRole
from restopos.db.base import Base, TimestampMixin, str_enum


class Staff(Base, TimestampMixin):
    """A staff member who can sign in with a PIN."""

    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    role: Mapped[StaffRole] = mapped_column(str_enum(StaffRole), nullable=False)
    pin_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
