"""Menu and tax lookup models.

Catalog authoring happens elsewhere; the order engine only reads these rows
to price lines, pick a preparation station and resolve tax components.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, str_enum
from restopos.models.validators import non_negative, percentage


class ItemType(str, Enum):
    VEG = "veg"
    NON_VEG = "non_veg"
    EGG = "egg"
    BEVERAGE = "beverage"


class TaxCode(str, Enum):
    """Tax component codes used on invoices."""

    CGST = "CGST"
    SGST = "SGST"
    IGST = "IGST"
    VAT = "VAT"
    CESS = "CESS"


class TaxGroup(Base, TimestampMixin):
    """A named bundle of tax components, e.g. "GST 5%" = CGST 2.5 + SGST 2.5."""

    __tablename__ = "tax_groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    components: Mapped[List["TaxComponent"]] = relationship(
        "TaxComponent",
        back_populates="tax_group",
        cascade="all, delete-orphan",
        order_by="TaxComponent.id",
    )


class TaxComponent(Base):
    __tablename__ = "tax_components"

    id: Mapped[int] = mapped_column(primary_key=True)
    tax_group_id: Mapped[int] = mapped_column(
        ForeignKey("tax_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[TaxCode] = mapped_column(str_enum(TaxCode, length=10), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    tax_group: Mapped["TaxGroup"] = relationship("TaxGroup", back_populates="components")

    @validates("rate")
    def _validate_rate(self, key, value):
        return percentage(key, value)


class MenuItem(Base, TimestampMixin):
    """A sellable menu item.

    ``station`` names the preparation area; ``counter_type`` is set when the
    item is dispensed from a counter (bar, beverage counter) instead.
    """

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    item_type: Mapped[ItemType] = mapped_column(
        str_enum(ItemType), default=ItemType.VEG, nullable=False
    )
    station: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    counter_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tax_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tax_groups.id", ondelete="SET NULL"), nullable=True
    )
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tax_group: Mapped[Optional["TaxGroup"]] = relationship("TaxGroup")
    variants: Mapped[List["MenuItemVariant"]] = relationship(
        "MenuItemVariant", back_populates="menu_item", cascade="all, delete-orphan"
    )

    @validates("base_price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class MenuItemVariant(Base):
    """A priced size or portion of a menu item (Half, Full, 330ml...)."""

    __tablename__ = "menu_item_variants"

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    menu_item: Mapped["MenuItem"] = relationship("MenuItem", back_populates="variants")

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class Addon(Base):
    __tablename__ = "addons"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class CancelReason(Base):
    """Configured cancellation reason; some need manager sign-off."""

    __tablename__ = "cancel_reasons"

    id: Mapped[int] = mapped_column(primary_key=True)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
