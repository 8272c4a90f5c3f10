"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; point them at throwaway resources first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from typing import Generator  # noqa: E402

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from restopos.core.rate_limit import limiter  # noqa: E402
from restopos.core.rbac import StaffRole, TokenData  # noqa: E402
from restopos.core.security import create_staff_token  # noqa: E402
from restopos.db.base import Base  # noqa: E402
from restopos.db.session import get_db  # noqa: E402
from restopos.main import app  # noqa: E402
# Import all models to ensure they're registered with Base.metadata
from restopos.models import *  # noqa: E402,F401,F403
from restopos.models import (  # noqa: E402
    Addon,
    CancelReason,
    ItemType,
    MenuItem,
    MenuItemVariant,
    OrderType,
    Staff,
    Table,
    TableStatus,
    TaxCode,
    TaxComponent,
    TaxGroup,
)
from restopos.services.billing_service import BillingService  # noqa: E402
from restopos.services.kot_service import KotService  # noqa: E402
from restopos.services.notification_service import NotificationFanout, fanout  # noqa: E402
from restopos.services.order_service import ItemLine, OrderService  # noqa: E402
from restopos.services.payment_service import PaymentService  # noqa: E402
from restopos.services.print_queue_service import PrintQueueService  # noqa: E402
from restopos.services.table_session_service import GuestInfo, TableSessionService  # noqa: E402
from restopos.services.websocket_service import ConnectionManager  # noqa: E402

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

STAFF_ROLES = {
    "admin": StaffRole.ADMIN,
    "manager": StaffRole.MANAGER,
    "cashier": StaffRole.CASHIER,
    "captain": StaffRole.CAPTAIN,
    "captain2": StaffRole.CAPTAIN,
    "kitchen": StaffRole.KITCHEN,
    "bar": StaffRole.BAR,
    "agent": StaffRole.PRINT_AGENT,
}


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    fanout.history.clear()
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def notifier() -> NotificationFanout:
    """A private fanout so service tests can inspect published events."""
    return NotificationFanout(ConnectionManager())


# ============== Staff ==============

@pytest.fixture
def staff(db_session: Session) -> dict:
    """One active staff member per role, plus a second captain."""
    members = {}
    for key, role in STAFF_ROLES.items():
        member = Staff(name=key.title(), email=f"{key}@restopos.test", role=role, is_active=True)
        db_session.add(member)
        members[key] = member
    db_session.commit()
    return members


@pytest.fixture
def actors(staff: dict) -> dict:
    return {key: TokenData(user_id=s.id, role=s.role, name=s.name) for key, s in staff.items()}


@pytest.fixture
def headers(staff: dict) -> dict:
    """Bearer headers keyed like ``staff``."""
    result = {}
    for key, member in staff.items():
        token = create_staff_token(member.id, member.role.value, member.name)
        result[key] = {"Authorization": f"Bearer {token}"}
    return result


# ============== Menu and floor ==============

@pytest.fixture
def menu(db_session: Session) -> dict:
    """Menu items across stations, priced under a 5% GST group (CGST 2.5 + SGST 2.5)."""
    gst5 = TaxGroup(name="GST 5%", is_active=True)
    gst5.components = [
        TaxComponent(code=TaxCode.CGST, rate=Decimal("2.5")),
        TaxComponent(code=TaxCode.SGST, rate=Decimal("2.5")),
    ]
    vat = TaxGroup(name="VAT 10%", is_active=True)
    vat.components = [TaxComponent(code=TaxCode.VAT, rate=Decimal("10"))]
    db_session.add_all([gst5, vat])
    db_session.flush()

    items = {
        "curry": MenuItem(name="Butter Chicken", base_price=Decimal("350"), item_type=ItemType.NON_VEG,
                          station="Main Kitchen", tax_group_id=gst5.id),
        "paneer": MenuItem(name="Paneer Tikka", base_price=Decimal("250"), item_type=ItemType.VEG,
                           station=None, tax_group_id=gst5.id),
        "beer": MenuItem(name="Kingfisher", base_price=Decimal("300"), item_type=ItemType.BEVERAGE,
                         counter_type="Bar Counter", tax_group_id=vat.id),
        "dessert": MenuItem(name="Gulab Jamun", base_price=Decimal("120"), item_type=ItemType.VEG,
                            station="Desserts", tax_group_id=gst5.id),
        "mojito": MenuItem(name="Virgin Mojito", base_price=Decimal("180"), item_type=ItemType.BEVERAGE,
                           station="Mocktails"),
        "thali": MenuItem(name="Chef Special Thali", base_price=Decimal("500"), item_type=ItemType.VEG,
                          station="kitchen"),
        "sold_out": MenuItem(name="Seasonal Special", base_price=Decimal("400"), station="kitchen",
                             is_available=False),
    }
    db_session.add_all(items.values())
    db_session.flush()

    half = MenuItemVariant(menu_item_id=items["paneer"].id, name="Half", price=Decimal("150"))
    closed_variant = MenuItemVariant(menu_item_id=items["paneer"].id, name="Party Platter",
                                     price=Decimal("900"), is_available=False)
    cheese = Addon(name="Extra Cheese", price=Decimal("40"))
    mint = Addon(name="Mint Chutney", price=Decimal("0"))
    truffle = Addon(name="Truffle Oil", price=Decimal("150"), is_available=False)
    changed_mind = CancelReason(reason="Customer changed mind", requires_approval=False)
    comp = CancelReason(reason="Complimentary removal", requires_approval=True)
    db_session.add_all([half, closed_variant, cheese, mint, truffle, changed_mind, comp])
    db_session.commit()

    return {
        **items,
        "gst5": gst5,
        "vat": vat,
        "half": half,
        "closed_variant": closed_variant,
        "cheese": cheese,
        "mint": mint,
        "truffle": truffle,
        "changed_mind": changed_mind,
        "comp": comp,
    }


@pytest.fixture
def tables(db_session: Session) -> dict:
    floor = {
        "t1": Table(table_number="T1", capacity=4),
        "t2": Table(table_number="T2", capacity=6),
        "t3": Table(table_number="T3", capacity=2),
        "blocked": Table(table_number="T9", capacity=4, status=TableStatus.BLOCKED),
    }
    db_session.add_all(floor.values())
    db_session.commit()
    return floor


# ============== Services ==============

@pytest.fixture
def services(db_session: Session, notifier: NotificationFanout) -> SimpleNamespace:
    """Every service bound to the test session and a private fanout."""
    return SimpleNamespace(
        tables=TableSessionService(db_session, notifier),
        orders=OrderService(db_session, notifier),
        kots=KotService(db_session, notifier),
        billing=BillingService(db_session, notifier),
        payments=PaymentService(db_session, notifier),
        print_queue=PrintQueueService(db_session),
    )


@pytest.fixture
def seat_and_order(services, tables, actors, staff, menu):
    """Factory: seat a table, open a dine-in order on it and optionally add items.

    ``items`` is a list of ``(menu key, quantity)`` pairs.
    """
    def _open(table_key: str = "t1", actor_key: str = "captain", guests: int = 2, items=None):
        table = tables[table_key]
        actor = actors[actor_key]
        services.tables.start_session(table.id, actor, GuestInfo(guest_count=guests))
        order = services.orders.create_order(OrderType.DINE_IN, actor, table_id=table.id)
        if items:
            services.orders.add_items(
                order.id,
                [ItemLine(menu_item_id=menu[key].id, quantity=qty) for key, qty in items],
                actor,
            )
        return order

    return _open
