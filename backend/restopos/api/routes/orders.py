"""Order lifecycle routes: capture, kitchen tickets, billing and payment."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from restopos.core.rbac import TokenData
from restopos.core.rbac_policy import Capability, require_capability
from restopos.db.session import DbSession
from restopos.schemas.billing import (
    BillRequest,
    DuplicateRequest,
    InvoiceResponse,
    PaymentRequest,
    PaymentResponse,
    PaymentResult,
    SplitPaymentRequest,
)
from restopos.schemas.order import (
    AddItemsRequest,
    CancelItemRequest,
    CancelRequest,
    KotCancelRequest,
    KotResponse,
    OrderCreate,
    OrderItemResponse,
    OrderResponse,
    SendKotRequest,
    SendKotResponse,
)
from restopos.services.billing_service import BillingService, CustomerInfo, DiscountLine
from restopos.services.kot_service import KotService
from restopos.services.order_service import AddonLine, ItemLine, OrderService
from restopos.services.payment_service import (
    PaymentDetails,
    PaymentOutcome,
    PaymentService,
    SplitLine,
)

router = APIRouter()


def _payment_result(outcome: PaymentOutcome) -> PaymentResult:
    return PaymentResult(
        payment=PaymentResponse.model_validate(outcome.payment),
        invoice_payment_status=outcome.invoice.payment_status,
        paid_total=outcome.paid_total,
        balance=outcome.balance,
        settled=outcome.settled,
    )


# ----------------------------------------------------------------------
# Kitchen tickets
# ----------------------------------------------------------------------

@router.get("/kot/active", response_model=List[KotResponse])
def list_active_tickets(
    db: DbSession,
    station: Optional[str] = Query(default=None),
    current_user: TokenData = Depends(require_capability(Capability.KOT_VIEW)),
):
    return KotService(db).list_active(station)


@router.post("/kot/items/{kot_item_id}/ready", response_model=KotResponse)
def mark_ticket_item_ready(
    kot_item_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.KOT_UPDATE)),
):
    return KotService(db).mark_item_ready(kot_item_id, current_user)


@router.post("/kot/{kot_id}/accept", response_model=KotResponse)
def accept_ticket(
    kot_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.KOT_UPDATE)),
):
    return KotService(db).accept(kot_id, current_user)


@router.post("/kot/{kot_id}/preparing", response_model=KotResponse)
def start_preparing_ticket(
    kot_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.KOT_UPDATE)),
):
    return KotService(db).start_preparing(kot_id, current_user)


@router.post("/kot/{kot_id}/ready", response_model=KotResponse)
def mark_ticket_ready(
    kot_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.KOT_UPDATE)),
):
    return KotService(db).mark_ready(kot_id, current_user)


@router.post("/kot/{kot_id}/served", response_model=KotResponse)
def mark_ticket_served(
    kot_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.KOT_UPDATE)),
):
    return KotService(db).mark_served(kot_id, current_user)


@router.post("/kot/{kot_id}/cancel", response_model=KotResponse)
def cancel_ticket(
    kot_id: int,
    body: KotCancelRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_CANCEL)),
):
    return KotService(db).cancel(kot_id, current_user, body.reason, approved_by=body.approved_by)


@router.post("/kot/{kot_id}/reprint", response_model=KotResponse)
def reprint_ticket(
    kot_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.KOT_REPRINT)),
):
    return KotService(db).reprint(kot_id, current_user)


# ----------------------------------------------------------------------
# Invoices and payments
# ----------------------------------------------------------------------

@router.get("/invoice/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_VIEW)),
):
    return BillingService(db).get_invoice(invoice_id)


@router.post("/invoice/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_id: int,
    body: CancelRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.BILL_CANCEL)),
):
    return BillingService(db).cancel_invoice(invoice_id, current_user, body.reason)


@router.post("/invoice/{invoice_id}/duplicate", response_model=InvoiceResponse)
def duplicate_invoice(
    invoice_id: int,
    body: DuplicateRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.BILL_REPRINT)),
):
    return BillingService(db).duplicate_invoice(invoice_id, current_user, body.reason)


@router.post("/invoice/{invoice_id}/print", response_model=InvoiceResponse)
def print_invoice(
    invoice_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.BILL_REPRINT)),
):
    return BillingService(db).print_invoice(invoice_id, current_user)


@router.post("/payment", response_model=PaymentResult)
def process_payment(
    body: PaymentRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.PAYMENT_PROCESS)),
):
    outcome = PaymentService(db).pay(
        body.order_id,
        body.invoice_id,
        body.payment_mode,
        body.amount,
        current_user,
        tip=body.tip_amount,
        details=PaymentDetails(
            card_last_four=body.card_last_four,
            upi_transaction_id=body.upi_transaction_id,
            reference=body.reference,
        ),
    )
    return _payment_result(outcome)


@router.post("/payment/split", response_model=PaymentResult)
def process_split_payment(
    body: SplitPaymentRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.PAYMENT_PROCESS)),
):
    splits = [
        SplitLine(
            mode=part.payment_mode,
            amount=part.amount,
            details=PaymentDetails(
                card_last_four=part.card_last_four,
                upi_transaction_id=part.upi_transaction_id,
                reference=part.reference,
            ),
        )
        for part in body.splits
    ]
    outcome = PaymentService(db).pay_split(
        body.order_id, body.invoice_id, body.amount, splits, current_user, tip=body.tip_amount
    )
    return _payment_result(outcome)


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------

@router.post("", response_model=OrderResponse, status_code=201)
def create_order(
    body: OrderCreate,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_CREATE)),
):
    return OrderService(db).create_order(
        body.order_type,
        current_user,
        table_id=body.table_id,
        guest_count=body.guest_count,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        notes=body.notes,
        outlet_id=body.outlet_id,
    )


@router.post("/items/{item_id}/cancel", response_model=OrderItemResponse)
def cancel_order_item(
    item_id: int,
    body: CancelItemRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_CANCEL)),
):
    return OrderService(db).cancel_item(
        item_id,
        current_user,
        reason=body.reason,
        reason_id=body.reason_id,
        quantity=body.quantity,
        approved_by=body.approved_by,
    )


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_VIEW)),
):
    return OrderService(db).get_order(order_id)


@router.post("/{order_id}/items", response_model=OrderResponse)
def add_items(
    order_id: int,
    body: AddItemsRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_MODIFY)),
):
    lines = [
        ItemLine(
            menu_item_id=item.menu_item_id,
            quantity=item.quantity,
            variant_id=item.variant_id,
            addons=[AddonLine(addon_id=a.addon_id, quantity=a.quantity) for a in item.addons],
            special_instructions=item.special_instructions,
        )
        for item in body.items
    ]
    service = OrderService(db)
    service.add_items(order_id, lines, current_user)
    return service.get_order(order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    body: CancelRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_CANCEL)),
):
    return OrderService(db).cancel_order(order_id, current_user, body.reason)


@router.post("/{order_id}/complete", response_model=OrderResponse)
def complete_order(
    order_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.ORDER_MODIFY)),
):
    return OrderService(db).complete_order(order_id, current_user)


@router.post("/{order_id}/kot", response_model=SendKotResponse)
def send_kot(
    order_id: int,
    db: DbSession,
    body: Optional[SendKotRequest] = None,
    current_user: TokenData = Depends(require_capability(Capability.KOT_SEND)),
):
    priority = body.priority if body else SendKotRequest().priority
    result = KotService(db).send_ticket(order_id, current_user, priority)
    return SendKotResponse(
        tickets=[KotResponse.model_validate(t) for t in result.tickets],
        message=result.message,
    )


@router.post("/{order_id}/bill", response_model=InvoiceResponse)
def generate_bill(
    order_id: int,
    db: DbSession,
    body: Optional[BillRequest] = None,
    current_user: TokenData = Depends(require_capability(Capability.BILL_GENERATE)),
):
    body = body or BillRequest()
    customer = CustomerInfo(
        name=body.customer_name,
        phone=body.customer_phone,
        gstin=body.customer_gstin,
        is_interstate=body.is_interstate,
    )
    discounts = [
        DiscountLine(name=d.name, discount_type=d.type, value=d.value, apply_on=d.apply_on)
        for d in body.discounts
    ]
    return BillingService(db).generate_bill(
        order_id,
        current_user,
        customer=customer,
        apply_service_charge=body.apply_service_charge,
        discounts=discounts,
    )
