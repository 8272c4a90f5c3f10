"""Order, order item and kitchen ticket schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, model_validator

from restopos.models import (
    ItemType,
    KotItemStatus,
    KotPriority,
    KotStatus,
    OrderItemStatus,
    OrderStatus,
    OrderType,
    PaymentStatus,
)
from restopos.schemas.base import CamelModel, Money


class OrderCreate(CamelModel):
    order_type: OrderType = OrderType.DINE_IN
    table_id: Optional[int] = None
    guest_count: Optional[int] = Field(default=None, ge=1)
    customer_name: Optional[str] = Field(default=None, max_length=100)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = None
    outlet_id: int = 1

    @model_validator(mode="after")
    def check_table(self):
        if self.order_type == OrderType.DINE_IN and self.table_id is None:
            raise ValueError("tableId is required for dine-in orders")
        return self


class AddonSelection(CamelModel):
    addon_id: int
    quantity: int = Field(default=1, ge=1)


class OrderItemCreate(CamelModel):
    menu_item_id: int
    quantity: int = Field(default=1, ge=1)
    variant_id: Optional[int] = None
    addons: List[AddonSelection] = []
    special_instructions: Optional[str] = Field(default=None, max_length=500)


class AddItemsRequest(CamelModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)


class CancelItemRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    reason_id: Optional[int] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    approved_by: Optional[int] = None

    @model_validator(mode="after")
    def check_reason(self):
        if not self.reason and self.reason_id is None:
            raise ValueError("reason or reasonId is required")
        return self


class CancelRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)


class OrderItemAddonResponse(CamelModel):
    id: int
    addon_id: Optional[int] = None
    name: str
    price: Money
    quantity: int


class OrderItemResponse(CamelModel):
    id: int
    menu_item_id: int
    variant_id: Optional[int] = None
    item_name: str
    variant_name: Optional[str] = None
    item_type: ItemType
    station: str
    quantity: int
    unit_price: Money
    total_price: Money
    tax_amount: Money
    special_instructions: Optional[str] = None
    status: OrderItemStatus
    kot_id: Optional[int] = None
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[int] = None
    cancel_approved_by: Optional[int] = None
    addons: List[OrderItemAddonResponse] = []


class OrderResponse(CamelModel):
    id: int
    order_number: str
    outlet_id: int
    order_type: OrderType
    table_id: Optional[int] = None
    session_id: Optional[int] = None
    guest_count: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Money
    tax_amount: Money
    total_amount: Money
    created_by: int
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []


class SendKotRequest(CamelModel):
    priority: KotPriority = KotPriority.NORMAL


class KotCancelRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    approved_by: Optional[int] = None


class KotItemResponse(CamelModel):
    id: int
    order_item_id: int
    item_name: str
    variant_name: Optional[str] = None
    item_type: ItemType
    quantity: int
    cancelled_quantity: int
    addons_text: Optional[str] = None
    special_instructions: Optional[str] = None
    status: KotItemStatus


class KotResponse(CamelModel):
    id: int
    kot_number: str
    order_id: int
    station: str
    status: KotStatus
    priority: KotPriority
    printed_count: int
    cancelled_item_count: int
    item_count: int
    cancel_reason: Optional[str] = None
    accepted_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    items: List[KotItemResponse] = []


class SendKotResponse(CamelModel):
    tickets: List[KotResponse]
    message: str
