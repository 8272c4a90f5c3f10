"""Order lifecycle: creation, item pricing, cancellation and totals."""

from decimal import Decimal

import pytest

from restopos.core.errors import (
    ApprovalRequired,
    Conflict,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from restopos.models import (
    KotStatus,
    OrderCancelLog,
    OrderItemStatus,
    OrderStatus,
    OrderType,
    PaymentMode,
    PrintJob,
    PrintJobType,
    TableStatus,
)
from restopos.services.order_service import AddonLine, ItemLine
from restopos.services.websocket_service import EventType


# ============== Creation ==============

class TestCreateOrder:

    def test_dine_in_links_session_and_table(self, services, tables, seat_and_order):
        order = seat_and_order("t1", guests=3)

        assert order.order_number.startswith("ORD")
        assert len(order.order_number) == 13
        assert order.order_type == OrderType.DINE_IN
        assert order.status == OrderStatus.PENDING
        assert order.guest_count == 3
        session = services.tables.get_open_session(tables["t1"].id)
        assert session.order_id == order.id
        assert tables["t1"].current_order_id == order.id

    def test_dine_in_needs_open_session(self, services, tables, actors):
        with pytest.raises(Conflict):
            services.orders.create_order(OrderType.DINE_IN, actors["captain"], table_id=tables["t1"].id)

    def test_dine_in_needs_table(self, services, actors):
        with pytest.raises(ValidationError):
            services.orders.create_order(OrderType.DINE_IN, actors["captain"])

    def test_second_open_order_on_session_conflicts(self, services, tables, actors, seat_and_order):
        seat_and_order("t1")
        with pytest.raises(Conflict):
            services.orders.create_order(OrderType.DINE_IN, actors["captain"], table_id=tables["t1"].id)

    def test_takeaway_needs_no_table(self, services, actors):
        order = services.orders.create_order(
            OrderType.TAKEAWAY, actors["cashier"], customer_name="Ravi", customer_phone="9800000000"
        )
        assert order.table_id is None
        assert order.session_id is None
        assert order.customer_name == "Ravi"

    def test_takeaway_against_table_is_rejected(self, services, tables, actors):
        with pytest.raises(ValidationError):
            services.orders.create_order(OrderType.DELIVERY, actors["cashier"], table_id=tables["t1"].id)

    def test_order_numbers_are_sequential(self, services, actors):
        first = services.orders.create_order(OrderType.TAKEAWAY, actors["cashier"])
        second = services.orders.create_order(OrderType.TAKEAWAY, actors["cashier"])
        assert int(second.order_number[-4:]) == int(first.order_number[-4:]) + 1


# ============== Items and totals ==============

class TestAddItems:

    def test_totals_for_gst_order(self, services, actors, menu, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 2), ("paneer", 4)])

        assert order.subtotal == Decimal("1700.00")
        assert order.tax_amount == Decimal("85.00")
        assert order.total_amount == Decimal("1785.00")
        assert all(i.status == OrderItemStatus.PENDING for i in order.items)

    def test_variant_and_addons_priced_per_unit(self, services, actors, menu, seat_and_order):
        order = seat_and_order("t1")
        line = ItemLine(
            menu_item_id=menu["paneer"].id,
            quantity=2,
            variant_id=menu["half"].id,
            addons=[AddonLine(menu["cheese"].id, 2), AddonLine(menu["mint"].id)],
            special_instructions="less spicy",
        )
        [item] = services.orders.add_items(order.id, [line], actors["captain"])

        assert item.variant_name == "Half"
        assert item.unit_price == Decimal("230.00")  # 150 + 2 x 40
        assert item.total_price == Decimal("460.00")
        assert item.tax_amount == Decimal("23.00")
        assert item.addons_text == "Extra Cheese x2, Mint Chutney"
        assert item.station == "kitchen"

    def test_station_snapshot(self, services, actors, menu, seat_and_order):
        order = seat_and_order("t1", items=[("beer", 1), ("dessert", 1), ("mojito", 1)])
        stations = {i.item_name: i.station for i in order.items}
        assert stations == {"Kingfisher": "bar", "Gulab Jamun": "dessert", "Virgin Mojito": "mocktail"}

    @pytest.mark.parametrize("line_kwargs", [
        {"menu_item_id": 9999, "quantity": 1},
        {"menu_item_id": "sold_out", "quantity": 1},
        {"menu_item_id": "paneer", "quantity": 0},
        {"menu_item_id": "paneer", "quantity": 1, "variant_id": "closed_variant"},
        {"menu_item_id": "curry", "quantity": 1, "variant_id": "half"},
        {"menu_item_id": "paneer", "quantity": 1, "addons": "truffle"},
    ])
    def test_invalid_lines(self, services, actors, menu, seat_and_order, line_kwargs):
        order = seat_and_order("t1")
        kwargs = dict(line_kwargs)
        if isinstance(kwargs["menu_item_id"], str):
            kwargs["menu_item_id"] = menu[kwargs["menu_item_id"]].id
        if "variant_id" in kwargs:
            kwargs["variant_id"] = menu[kwargs["variant_id"]].id
        if "addons" in kwargs:
            kwargs["addons"] = [AddonLine(menu[kwargs["addons"]].id)]

        with pytest.raises(ValidationError):
            services.orders.add_items(order.id, [ItemLine(**kwargs)], actors["captain"])
        assert services.orders.get_order(order.id).items == []

    def test_cannot_add_to_billed_order(self, services, actors, seat_and_order, menu):
        order = seat_and_order("t1", items=[("paneer", 1)])
        services.billing.generate_bill(order.id, actors["captain"])
        with pytest.raises(Conflict):
            services.orders.add_items(order.id, [ItemLine(menu["paneer"].id, 1)], actors["captain"])

    def test_unknown_order(self, services, actors, menu):
        with pytest.raises(NotFound):
            services.orders.add_items(9999, [ItemLine(menu["paneer"].id, 1)], actors["captain"])


# ============== Cancellation ==============

class TestCancelItem:

    def test_cancel_pending_item(self, services, actors, seat_and_order, db_session):
        order = seat_and_order("t1", items=[("curry", 2), ("paneer", 4)])
        curry = order.items[0]

        services.orders.cancel_item(curry.id, actors["captain"], reason="Customer changed mind")

        assert curry.status == OrderItemStatus.CANCELLED
        assert curry.cancelled_by == actors["captain"].id
        assert order.subtotal == Decimal("1000.00")
        assert order.tax_amount == Decimal("50.00")
        assert order.total_amount == Decimal("1050.00")
        log = db_session.query(OrderCancelLog).one()
        assert log.cancel_type == "item"
        assert log.quantity == 2
        assert log.amount == Decimal("700.00")

    def test_partial_quantity_reduces_the_item(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 4)])
        item = order.items[0]

        services.orders.cancel_item(item.id, actors["captain"], reason="Too much", quantity=1)

        assert item.status == OrderItemStatus.PENDING
        assert item.quantity == 3
        assert item.total_price == Decimal("750.00")
        assert order.total_amount == Decimal("787.50")

    def test_reason_is_required(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 1)])
        with pytest.raises(ValidationError):
            services.orders.cancel_item(order.items[0].id, actors["captain"])

    def test_quantity_out_of_range(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 2)])
        with pytest.raises(ValidationError):
            services.orders.cancel_item(order.items[0].id, actors["captain"], reason="x", quantity=3)

    def test_configured_reason_needs_approval(self, services, actors, menu, staff, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 1)])
        item = order.items[0]

        with pytest.raises(ApprovalRequired):
            services.orders.cancel_item(item.id, actors["captain"], reason_id=menu["comp"].id)
        # A kitchen user cannot sign off cancellations
        with pytest.raises(ApprovalRequired):
            services.orders.cancel_item(
                item.id, actors["captain"], reason_id=menu["comp"].id, approved_by=staff["kitchen"].id
            )

        services.orders.cancel_item(
            item.id, actors["captain"], reason_id=menu["comp"].id, approved_by=staff["manager"].id
        )
        assert item.status == OrderItemStatus.CANCELLED
        assert item.cancel_reason == "Complimentary removal"
        assert item.cancel_approved_by == staff["manager"].id

    def test_preparing_item_needs_approval(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.kots.accept(ticket.id, actors["kitchen"])
        services.kots.start_preparing(ticket.id, actors["kitchen"])
        item = order.items[0]

        with pytest.raises(ApprovalRequired) as exc:
            services.orders.cancel_item(item.id, actors["captain"], reason="Taking too long")
        assert exc.value.context["item_status"] == "preparing"

        # Managers approve their own cancellations
        services.orders.cancel_item(item.id, actors["manager"], reason="Taking too long")
        assert item.cancel_approved_by == actors["manager"].id
        assert ticket.status == KotStatus.CANCELLED

    def test_sent_item_updates_ticket_and_prints_slip(self, services, actors, seat_and_order, notifier, db_session):
        order = seat_and_order("t1", items=[("curry", 1), ("paneer", 2)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        curry, paneer = order.items

        services.orders.cancel_item(curry.id, actors["captain"], reason="Customer changed mind")

        assert ticket.status == KotStatus.PENDING
        assert ticket.cancelled_item_count == 1
        assert ticket.item_count == 1
        slip = db_session.query(PrintJob).filter(PrintJob.job_type == PrintJobType.CANCEL_SLIP).one()
        assert "CANCELLED" in slip.content
        assert "Butter Chicken" in slip.content
        event = notifier.events(EventType.KOT_ITEM_CANCELLED)[-1]
        assert event.data["cancelled_item"]["name"] == "Butter Chicken"
        assert event.data["table_number"] == "T1"

        # Cancelling the last live item cancels the ticket
        services.orders.cancel_item(paneer.id, actors["captain"], reason="Customer changed mind")
        assert ticket.status == KotStatus.CANCELLED
        assert notifier.events(EventType.KOT_CANCELLED)

    def test_cancel_promotes_ticket_to_ready(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1), ("paneer", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.kots.accept(ticket.id, actors["kitchen"])
        curry_kot, paneer_kot = ticket.items
        services.kots.mark_item_ready(curry_kot.id, actors["kitchen"])
        assert ticket.status == KotStatus.PREPARING

        services.orders.cancel_item(paneer_kot.order_item_id, actors["manager"], reason="Out of paneer")

        assert ticket.status == KotStatus.READY

    def test_served_item_cannot_be_cancelled(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        for step in ("accept", "start_preparing", "mark_ready", "mark_served"):
            getattr(services.kots, step)(ticket.id, actors["kitchen"])

        with pytest.raises(Conflict):
            services.orders.cancel_item(order.items[0].id, actors["manager"], reason="late")


class TestCancelOrder:

    def test_cancel_releases_table_and_tickets(self, services, actors, tables, seat_and_order, db_session):
        order = seat_and_order("t1", items=[("curry", 1), ("beer", 1)])
        tickets = services.kots.send_ticket(order.id, actors["captain"]).tickets

        services.orders.cancel_order(order.id, actors["captain"], "Guests left")

        assert order.status == OrderStatus.CANCELLED
        assert order.total_amount == Decimal("0.00")
        assert all(i.status == OrderItemStatus.CANCELLED for i in order.items)
        assert all(t.status == KotStatus.CANCELLED for t in tickets)
        assert tables["t1"].status == TableStatus.AVAILABLE
        assert services.tables.get_open_session(tables["t1"].id) is None
        log = db_session.query(OrderCancelLog).filter(OrderCancelLog.cancel_type == "order").one()
        assert log.amount == Decimal("697.50")

    def test_cancel_voids_pending_invoice(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 1)])
        invoice = services.billing.generate_bill(order.id, actors["captain"])

        services.orders.cancel_order(order.id, actors["captain"], "Walked out")

        assert invoice.is_cancelled
        assert services.billing.live_invoice_for(order.id) is None

    def test_paid_order_cannot_be_cancelled(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("thali", 1)])
        invoice = services.billing.generate_bill(order.id, actors["cashier"])
        services.payments.pay(order.id, invoice.id, PaymentMode.CASH, Decimal("100"), actors["cashier"])

        with pytest.raises(Conflict):
            services.orders.cancel_order(order.id, actors["manager"], "mistake")

    def test_cancelled_order_is_final(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 1)])
        services.orders.cancel_order(order.id, actors["captain"], "Guests left")
        with pytest.raises(Conflict):
            services.orders.cancel_order(order.id, actors["captain"], "again")


class TestCompleteOrder:

    def test_only_paid_orders_complete(self, services, actors):
        order = services.orders.create_order(OrderType.TAKEAWAY, actors["cashier"])
        with pytest.raises(InvalidTransition):
            services.orders.complete_order(order.id, actors["cashier"])
