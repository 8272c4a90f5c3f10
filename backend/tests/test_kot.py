"""Ticket router: station split, ticket state machine and reprints."""

import pytest

from restopos.core.errors import ApprovalRequired, Conflict, InvalidTransition, NotFound, PermissionDenied
from restopos.models import (
    KotItemStatus,
    KotPriority,
    KotStatus,
    OrderItemStatus,
    OrderStatus,
    PrintJob,
    PrintJobType,
    TableStatus,
)
from restopos.services.order_service import AddonLine, ItemLine
from restopos.services.websocket_service import EventType


# ============== Dispatch ==============

class TestSendTicket:

    def test_split_by_station(self, services, actors, tables, seat_and_order, notifier, db_session):
        order = seat_and_order("t1", items=[("curry", 2), ("beer", 1), ("paneer", 1), ("dessert", 1)])

        result = services.kots.send_ticket(order.id, actors["captain"])

        assert result.sent
        stations = [t.station for t in result.tickets]
        assert stations == ["kitchen", "bar", "dessert"]
        kitchen, bar, dessert = result.tickets
        assert kitchen.kot_number.startswith("KOT")
        assert bar.kot_number.startswith("BOT")
        assert dessert.kot_number.startswith("KOT")
        assert [i.item_name for i in kitchen.items] == ["Butter Chicken", "Paneer Tikka"]
        assert kitchen.printed_count == 1
        assert all(i.status == OrderItemStatus.SENT_TO_KITCHEN for i in order.items)
        assert all(i.kot_id is not None for i in order.items)

        assert order.status == OrderStatus.CONFIRMED
        assert tables["t1"].status == TableStatus.RUNNING

        jobs = db_session.query(PrintJob).order_by(PrintJob.id).all()
        assert [j.job_type for j in jobs] == [PrintJobType.KOT, PrintJobType.BOT, PrintJobType.KOT]
        assert [j.station for j in jobs] == stations
        assert "Table: T1" in jobs[0].content
        assert len(notifier.events(EventType.KOT_CREATED)) == 3

    def test_nothing_to_send(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("paneer", 1)])
        services.kots.send_ticket(order.id, actors["captain"])

        again = services.kots.send_ticket(order.id, actors["captain"])

        assert not again.sent
        assert again.message == "nothing to send"

    def test_later_items_go_on_a_new_ticket(self, services, actors, menu, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        [first] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.orders.add_items(order.id, [ItemLine(menu["paneer"].id, 2)], actors["captain"])

        [second] = services.kots.send_ticket(order.id, actors["captain"]).tickets

        assert second.id != first.id
        assert [i.item_name for i in first.items] == ["Butter Chicken"]
        assert [i.item_name for i in second.items] == ["Paneer Tikka"]
        assert int(second.kot_number[-3:]) == int(first.kot_number[-3:]) + 1

    def test_sending_more_items_reopens_a_served_order(self, services, actors, tables, menu, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        [first] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        for step in ("accept", "start_preparing", "mark_ready", "mark_served"):
            getattr(services.kots, step)(first.id, actors["kitchen"])
        assert order.status == OrderStatus.SERVED

        services.orders.add_items(order.id, [ItemLine(menu["dessert"].id, 1)], actors["captain"])
        [dessert] = services.kots.send_ticket(order.id, actors["captain"]).tickets

        assert dessert.station == "dessert"
        assert order.status == OrderStatus.CONFIRMED
        assert tables["t1"].status == TableStatus.RUNNING

        for step in ("accept", "start_preparing", "mark_ready", "mark_served"):
            getattr(services.kots, step)(dessert.id, actors["kitchen"])
        assert order.status == OrderStatus.SERVED

    def test_addons_and_instructions_are_snapshotted(self, services, actors, menu, seat_and_order):
        order = seat_and_order("t1")
        services.orders.add_items(order.id, [ItemLine(
            menu["paneer"].id, 1, variant_id=menu["half"].id,
            addons=[AddonLine(menu["cheese"].id)], special_instructions="no onion",
        )], actors["captain"])

        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        [kot_item] = ticket.items

        assert kot_item.variant_name == "Half"
        assert kot_item.addons_text == "Extra Cheese"
        assert kot_item.special_instructions == "no onion"

    def test_rush_priority(self, services, actors, seat_and_order, db_session):
        order = seat_and_order("t1", items=[("curry", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"], priority=KotPriority.RUSH).tickets
        assert ticket.priority == KotPriority.RUSH
        assert "RUSH" in db_session.query(PrintJob).one().content

    def test_billed_order_rejects_send(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        services.billing.generate_bill(order.id, actors["captain"])
        with pytest.raises(Conflict):
            services.kots.send_ticket(order.id, actors["captain"])

    def test_other_captain_cannot_send(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        with pytest.raises(PermissionDenied):
            services.kots.send_ticket(order.id, actors["captain2"])


# ============== State machine ==============

class TestTransitions:

    @pytest.fixture
    def ticket(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1), ("paneer", 1)])
        return services.kots.send_ticket(order.id, actors["captain"]).tickets[0]

    def test_full_lifecycle(self, services, actors, ticket, notifier):
        kitchen = actors["kitchen"]
        services.kots.accept(ticket.id, kitchen)
        assert ticket.status == KotStatus.ACCEPTED
        assert ticket.accepted_by == kitchen.id

        services.kots.start_preparing(ticket.id, kitchen)
        assert all(i.status == KotItemStatus.PREPARING for i in ticket.items)
        assert all(i.order_item.status == OrderItemStatus.PREPARING for i in ticket.items)

        services.kots.mark_ready(ticket.id, kitchen)
        assert ticket.ready_at is not None
        assert all(i.status == KotItemStatus.READY for i in ticket.items)

        services.kots.mark_served(ticket.id, actors["captain"])
        assert ticket.status == KotStatus.SERVED
        assert ticket.order.status == OrderStatus.SERVED

        events = [m.event for m in notifier.history]
        for expected in ("kot:accepted", "kot:preparing", "kot:ready", "kot:served"):
            assert expected in events

    @pytest.mark.parametrize("steps, action", [
        ([], "start_preparing"),
        ([], "mark_ready"),
        ([], "mark_served"),
        (["accept"], "accept"),
        (["accept"], "mark_ready"),
        (["accept", "start_preparing", "mark_ready", "mark_served"], "cancel"),
    ])
    def test_out_of_order_transitions(self, services, actors, ticket, steps, action):
        for step in steps:
            getattr(services.kots, step)(ticket.id, actors["kitchen"])
        before = ticket.status

        with pytest.raises(InvalidTransition):
            getattr(services.kots, action)(ticket.id, actors["kitchen"])
        assert ticket.status == before

    def test_cancel_ticket_cancels_items_and_prints_slip(self, services, actors, ticket, db_session):
        order = ticket.order
        services.kots.accept(ticket.id, actors["kitchen"])

        services.kots.cancel(ticket.id, actors["manager"], reason="Kitchen fire")

        assert ticket.status == KotStatus.CANCELLED
        assert ticket.cancel_reason == "Kitchen fire"
        assert ticket.cancelled_item_count == 2
        assert all(i.status == OrderItemStatus.CANCELLED for i in order.items)
        assert order.total_amount == 0
        slip = db_session.query(PrintJob).filter(PrintJob.job_type == PrintJobType.CANCEL_SLIP).one()
        assert "ENTIRE TICKET" in slip.content

    def test_cancel_on_billed_order_conflicts(self, services, actors, ticket):
        services.billing.generate_bill(ticket.order_id, actors["captain"])
        with pytest.raises(Conflict):
            services.kots.cancel(ticket.id, actors["manager"])

    def test_cancelling_food_in_preparation_needs_approval(self, services, actors, staff, ticket):
        services.kots.accept(ticket.id, actors["kitchen"])
        services.kots.start_preparing(ticket.id, actors["kitchen"])

        with pytest.raises(ApprovalRequired) as exc:
            services.kots.cancel(ticket.id, actors["captain"], reason="Guest changed mind")
        assert exc.value.context["kot_id"] == ticket.id
        assert ticket.status == KotStatus.PREPARING

        services.kots.cancel(
            ticket.id, actors["captain"], reason="Guest changed mind", approved_by=staff["manager"].id
        )

        assert ticket.status == KotStatus.CANCELLED
        assert all(i.order_item.cancel_approved_by == staff["manager"].id for i in ticket.items)

    def test_untouched_ticket_cancels_without_approval(self, services, actors, ticket):
        services.kots.cancel(ticket.id, actors["captain"], reason="Wrong table")

        assert ticket.status == KotStatus.CANCELLED
        assert all(i.order_item.cancel_approved_by is None for i in ticket.items)

    def test_other_captain_cannot_cancel(self, services, actors, ticket):
        with pytest.raises(PermissionDenied):
            services.kots.cancel(ticket.id, actors["captain2"], reason="Not mine")
        assert ticket.status == KotStatus.PENDING

    def test_unknown_ticket(self, services, actors):
        with pytest.raises(NotFound):
            services.kots.accept(9999, actors["kitchen"])


class TestItemReady:

    def test_ticket_turns_ready_with_last_item(self, services, actors, seat_and_order, notifier):
        order = seat_and_order("t1", items=[("curry", 1), ("paneer", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.kots.accept(ticket.id, actors["kitchen"])
        first, second = ticket.items

        services.kots.mark_item_ready(first.id, actors["kitchen"])
        assert ticket.status == KotStatus.PREPARING
        assert first.status == KotItemStatus.READY
        assert first.order_item.status == OrderItemStatus.READY

        services.kots.mark_item_ready(second.id, actors["kitchen"])
        assert ticket.status == KotStatus.READY
        assert len(notifier.events(EventType.KOT_ITEM_READY)) == 2
        assert notifier.events(EventType.KOT_ITEM_READY)[0].data["kot_item_id"] == first.id
        assert len(notifier.events(EventType.KOT_READY)) == 1

    def test_pending_ticket_rejects_item_ready(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        with pytest.raises(InvalidTransition):
            services.kots.mark_item_ready(ticket.items[0].id, actors["kitchen"])

    def test_item_ready_twice(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1), ("paneer", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.kots.accept(ticket.id, actors["kitchen"])
        services.kots.mark_item_ready(ticket.items[0].id, actors["kitchen"])
        with pytest.raises(InvalidTransition):
            services.kots.mark_item_ready(ticket.items[0].id, actors["kitchen"])


# ============== Reprints and queries ==============

class TestReprint:

    def test_reprint_counts_copies(self, services, actors, seat_and_order, db_session, notifier):
        order = seat_and_order("t1", items=[("curry", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.kots.accept(ticket.id, actors["kitchen"])

        services.kots.reprint(ticket.id, actors["captain"])

        assert ticket.printed_count == 2
        assert ticket.status == KotStatus.ACCEPTED
        original, copy = db_session.query(PrintJob).order_by(PrintJob.id).all()
        assert "REPRINT" not in original.content
        assert copy.content.lstrip().startswith("*** REPRINT ***")
        assert notifier.events(EventType.KOT_REPRINTED)

    def test_cancelled_ticket_cannot_be_reprinted(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        services.kots.cancel(ticket.id, actors["manager"])
        with pytest.raises(Conflict):
            services.kots.reprint(ticket.id, actors["captain"])


class TestListActive:

    def test_station_filter_and_ordering(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("curry", 1), ("beer", 1)])
        services.kots.send_ticket(order.id, actors["captain"])
        services.orders.add_items(order.id, [ItemLine(order.items[0].menu_item_id, 1)], actors["captain"])
        rush = services.kots.send_ticket(order.id, actors["captain"], priority=KotPriority.RUSH).tickets[0]

        kitchen = services.kots.list_active("Main Kitchen")
        assert [t.station for t in kitchen] == ["kitchen", "kitchen"]
        assert kitchen[0].id == rush.id
        assert [t.station for t in services.kots.list_active("bar")] == ["bar"]
        assert len(services.kots.list_active()) == 3

    def test_served_tickets_drop_off(self, services, actors, seat_and_order):
        order = seat_and_order("t1", items=[("beer", 1)])
        [ticket] = services.kots.send_ticket(order.id, actors["captain"]).tickets
        for step in ("accept", "start_preparing", "mark_ready", "mark_served"):
            getattr(services.kots, step)(ticket.id, actors["bar"])
        assert services.kots.list_active("bar") == []
