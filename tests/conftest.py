"""
Test configuration and fixtures
Each test gets its own SQLite file database, a controllable clock and a fully
wired service container
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

# Set test environment before the settings module is imported
os.environ["APP_ENV"] = "testing"
os.environ["SECRET_KEY"] = "test-secret-key-for-boxoffice-suite-0123456789"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./boxoffice-test.db"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["HOLD_SWEEP_ENABLED"] = "false"
os.environ["PROMETHEUS_ENABLED"] = "false"

from boxoffice.config import Settings
from boxoffice.core.container import build_container
from boxoffice.core.database import create_engine, create_session_factory, init_db
from boxoffice.models.event import Event, EventStatus, TicketType
from boxoffice.models.inventory import InventoryUnit, UnitStatus
from boxoffice.models.order import PaymentMethod
from boxoffice.services.order_service import Customer, PaymentDetails
from boxoffice.services.payments import CashGateway, MockPaymentGateway, PaymentAdapter
from boxoffice.services.validation_gate import CartItem


class FrozenClock:
    """Clock that only moves when told to"""

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2026, 6, 1, 18, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@dataclass
class Seed:
    event_id: uuid.UUID
    general_id: uuid.UUID
    vip_id: uuid.UUID
    seats: List[uuid.UUID]
    vip_seat: uuid.UUID


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'boxoffice.db'}",
        APP_ENV="testing",
        RATE_LIMIT_BACKEND="memory",
        HOLD_SWEEP_ENABLED=False,
        PROMETHEUS_ENABLED=False,
        PAYMENT_TIMEOUT_SECONDS=5.0,
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def mock_gateway():
    return MockPaymentGateway()


@pytest.fixture
def payment_adapter(mock_gateway):
    return PaymentAdapter(
        {
            PaymentMethod.MOCK: mock_gateway,
            PaymentMethod.CARD: mock_gateway,
            PaymentMethod.CASH: CashGateway(),
        },
        timeout_seconds=5.0
    )


@pytest_asyncio.fixture
async def container(settings, engine, session_factory, payment_adapter, clock):
    container = build_container(
        settings,
        session_factory=session_factory,
        engine=engine,
        payment_adapter=payment_adapter,
        clock=clock,
    )
    yield container
    await container.sweeper.stop()


@pytest_asyncio.fixture
async def seed(session_factory) -> Seed:
    """One event: ten $50 general seats and a single $100 VIP seat"""
    async with session_factory() as session:
        event = Event(
            id=uuid.uuid4(),
            name="Test Concert",
            description="Test concert description",
            venue_name="Test Arena",
            start_time=datetime(2026, 7, 1, 20, 0, tzinfo=timezone.utc),
            status=EventStatus.UPCOMING,
        )
        general = TicketType(id=uuid.uuid4(), event_id=event.id, name="General", price=Decimal("50.00"), capacity=10)
        vip = TicketType(id=uuid.uuid4(), event_id=event.id, name="VIP", price=Decimal("100.00"), capacity=1)
        session.add_all([event, general, vip])
        await session.flush()

        seats = []
        for number in range(1, 11):
            unit = InventoryUnit(
                id=uuid.uuid4(),
                event_id=event.id,
                ticket_type_id=general.id,
                section="Floor",
                row="A",
                seat_number=str(number),
                price=Decimal("50.00"),
                status=UnitStatus.AVAILABLE,
            )
            seats.append(unit)
        vip_unit = InventoryUnit(
            id=uuid.uuid4(),
            event_id=event.id,
            ticket_type_id=vip.id,
            section="Box",
            row="V",
            seat_number="1",
            price=Decimal("100.00"),
            status=UnitStatus.AVAILABLE,
        )
        session.add_all(seats + [vip_unit])
        await session.commit()

    return Seed(
        event_id=event.id,
        general_id=general.id,
        vip_id=vip.id,
        seats=[unit.id for unit in seats],
        vip_seat=vip_unit.id,
    )


@pytest.fixture
def customer():
    return Customer(name="Ada Lovelace", email="ada@example.com")


@pytest_asyncio.fixture
async def paid_order(container, seed, customer):
    """A completed two-ticket card order placed through a hold"""
    hold = await container.holds.place_hold(seed.seats[:2], "session-paid")
    result = await container.orders.create_order(
        customer=customer,
        payment=PaymentDetails(method=PaymentMethod.CARD, token="tok_visa"),
        items=[CartItem(ticket_type_id=seed.general_id, quantity=2)],
        idempotency_key=f"order-{uuid.uuid4().hex}",
        hold_id=hold.hold_id,
    )
    assert result.success, result
    return result


@pytest_asyncio.fixture
async def client(container):
    from boxoffice.main import create_app

    app = create_app(container)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def staff_headers(container):
    token = container.security.create_access_token("scanner-1")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def unit_status(session_factory):
    """Look up current unit statuses by id"""

    async def _statuses(unit_ids) -> dict:
        async with session_factory() as session:
            result = await session.execute(
                select(InventoryUnit.id, InventoryUnit.status).where(InventoryUnit.id.in_(list(unit_ids)))
            )
            return {unit_id: status for unit_id, status in result.all()}

    return _statuses
