"""Invoice and payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from restopos.models import (
    DiscountApplication,
    DiscountType,
    InvoicePaymentStatus,
    PaymentMode,
    PaymentState,
)
from restopos.schemas.base import CamelModel, Money


class DiscountInput(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: DiscountType
    value: Decimal = Field(..., ge=0)
    apply_on: DiscountApplication = DiscountApplication.PRE_TAX


class BillRequest(CamelModel):
    customer_name: Optional[str] = Field(default=None, max_length=100)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    customer_gstin: Optional[str] = Field(default=None, max_length=20)
    is_interstate: bool = False
    apply_service_charge: bool = False
    discounts: List[DiscountInput] = []


class DuplicateRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class InvoiceItemResponse(CamelModel):
    id: int
    order_item_id: Optional[int] = None
    item_name: str
    variant_name: Optional[str] = None
    quantity: int
    unit_price: Money
    total_price: Money
    tax_amount: Money


class InvoiceDiscountResponse(CamelModel):
    name: str
    discount_type: DiscountType
    value: Money
    applied_on: DiscountApplication
    amount: Money


class InvoiceResponse(CamelModel):
    id: int
    invoice_number: str
    order_id: int
    invoice_date: datetime
    subtotal: Money
    discount_amount: Money
    taxable_amount: Money
    cgst_amount: Money
    sgst_amount: Money
    igst_amount: Money
    vat_amount: Money
    cess_amount: Money
    total_tax: Money
    service_charge: Money
    round_off: Money
    grand_total: Money
    payment_status: InvoicePaymentStatus
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_gstin: Optional[str] = None
    is_interstate: bool
    generated_by: int
    is_cancelled: bool
    cancel_reason: Optional[str] = None
    duplicate_count: int
    items: List[InvoiceItemResponse] = []
    discounts: List[InvoiceDiscountResponse] = []


class PaymentRequest(CamelModel):
    order_id: int
    invoice_id: int
    payment_mode: PaymentMode
    amount: Decimal = Field(..., gt=0)
    tip_amount: Decimal = Field(default=Decimal("0"), ge=0)
    card_last_four: Optional[str] = Field(default=None, min_length=4, max_length=4)
    upi_transaction_id: Optional[str] = Field(default=None, max_length=100)
    reference: Optional[str] = Field(default=None, max_length=100)


class SplitPart(CamelModel):
    payment_mode: PaymentMode
    amount: Decimal = Field(..., gt=0)
    card_last_four: Optional[str] = Field(default=None, min_length=4, max_length=4)
    upi_transaction_id: Optional[str] = Field(default=None, max_length=100)
    reference: Optional[str] = Field(default=None, max_length=100)


class SplitPaymentRequest(CamelModel):
    order_id: int
    invoice_id: int
    amount: Decimal = Field(..., gt=0)
    tip_amount: Decimal = Field(default=Decimal("0"), ge=0)
    splits: List[SplitPart] = Field(..., min_length=2)


class SplitPaymentResponse(CamelModel):
    position: int
    payment_mode: PaymentMode
    amount: Money
    card_last_four: Optional[str] = None
    upi_transaction_id: Optional[str] = None
    reference: Optional[str] = None


class PaymentResponse(CamelModel):
    id: int
    payment_number: str
    invoice_id: int
    order_id: int
    payment_mode: PaymentMode
    amount: Money
    tip_amount: Money
    total_amount: Money
    status: PaymentState
    card_last_four: Optional[str] = None
    upi_transaction_id: Optional[str] = None
    reference: Optional[str] = None
    received_by: int
    splits: List[SplitPaymentResponse] = []


class PaymentResult(CamelModel):
    payment: PaymentResponse
    invoice_payment_status: InvoicePaymentStatus
    paid_total: Money
    balance: Money
    settled: bool
