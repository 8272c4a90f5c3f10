"""Station routing and ticket grouping, exercised on plain objects."""

from types import SimpleNamespace

import pytest

from restopos.services.station_routing import (
    StationType,
    group_items_by_station,
    normalize_station,
    resolve_station,
    ticket_prefix,
)


def _item(name, station=None, counter_type=None):
    return SimpleNamespace(name=name, station=station, counter_type=counter_type)


class TestNormalizeStation:

    @pytest.mark.parametrize("label, expected", [
        ("Bar", StationType.BAR),
        ("main bar", StationType.BAR),
        ("Liquor Counter", StationType.BAR),
        ("Mocktails", StationType.MOCKTAIL),
        ("Beverage Counter", StationType.MOCKTAIL),
        ("Dessert Station", StationType.DESSERT),
        ("Tandoor", StationType.KITCHEN),
        ("", StationType.KITCHEN),
        (None, StationType.KITCHEN),
    ])
    def test_labels(self, label, expected):
        assert normalize_station(label) == expected


class TestResolveStation:

    def test_counter_wins_over_station(self):
        item = _item("Old Monk", station="Main Kitchen", counter_type="Liquor")
        assert resolve_station(item) == StationType.BAR

    def test_unnamed_counter_means_bar(self):
        assert resolve_station(_item("Draught", counter_type="")) == StationType.BAR

    def test_configured_station_without_counter(self):
        assert resolve_station(_item("Brownie", station="Desserts")) == StationType.DESSERT

    def test_default_is_kitchen(self):
        assert resolve_station(_item("Dal Makhani")) == StationType.KITCHEN


class TestGrouping:

    def test_groups_keep_first_seen_station_and_item_order(self):
        items = [
            _item("Beer", counter_type="Bar"),
            _item("Naan", station="kitchen"),
            _item("Whisky", counter_type="Bar"),
            _item("Kulfi", station="dessert"),
            _item("Biryani"),
        ]
        groups = group_items_by_station(items, resolve_station)

        assert list(groups) == [StationType.BAR, StationType.KITCHEN, StationType.DESSERT]
        assert [i.name for i in groups[StationType.BAR]] == ["Beer", "Whisky"]
        assert [i.name for i in groups[StationType.KITCHEN]] == ["Naan", "Biryani"]
        assert [i.name for i in groups[StationType.DESSERT]] == ["Kulfi"]

    def test_empty_input(self):
        assert group_items_by_station([], resolve_station) == {}

    def test_custom_resolver(self):
        groups = group_items_by_station(["a", "b"], lambda _: StationType.MOCKTAIL)
        assert groups == {StationType.MOCKTAIL: ["a", "b"]}


class TestTicketPrefix:

    def test_bar_tickets_are_bot(self):
        assert ticket_prefix("bar") == "BOT"

    @pytest.mark.parametrize("station", ["kitchen", "dessert", "mocktail"])
    def test_other_stations_are_kot(self, station):
        assert ticket_prefix(station) == "KOT"
