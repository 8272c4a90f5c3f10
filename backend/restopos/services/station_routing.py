"""Preparation station routing for ticket dispatch.

Pure functions: they never touch the database so grouping can be tested on
plain objects.
"""

from collections import OrderedDict
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Protocol, TypeVar


class StationType(str, Enum):
    KITCHEN = "kitchen"
    BAR = "bar"
    DESSERT = "dessert"
    MOCKTAIL = "mocktail"


# Tickets for these stations are numbered BOT, all others KOT
BAR_STATIONS = frozenset({StationType.BAR})


class Routable(Protocol):
    station: Optional[str]
    counter_type: Optional[str]


def normalize_station(raw: Optional[str]) -> StationType:
    """Map a configured station or counter label onto a known station."""
    label = (raw or "").strip().lower()
    if "bar" in label or "liquor" in label:
        return StationType.BAR
    if "mocktail" in label or "beverage" in label:
        return StationType.MOCKTAIL
    if "dessert" in label:
        return StationType.DESSERT
    return StationType.KITCHEN


def resolve_station(item: Routable) -> StationType:
    """Station for a menu item.

    A counter association wins (an unnamed counter means the bar); otherwise
    the configured station; otherwise the kitchen.
    """
    if item.counter_type is not None:
        return normalize_station(item.counter_type or StationType.BAR.value)
    return normalize_station(item.station)


def ticket_prefix(station: str) -> str:
    return "BOT" if normalize_station(station) in BAR_STATIONS else "KOT"


T = TypeVar("T")


def group_items_by_station(
    items: Iterable[T],
    resolve: Callable[[T], StationType],
) -> Dict[StationType, List[T]]:
    """Group items by station, keeping first-seen station order and item order."""
    groups: "OrderedDict[StationType, List[T]]" = OrderedDict()
    for item in items:
        groups.setdefault(resolve(item), []).append(item)
    return groups
