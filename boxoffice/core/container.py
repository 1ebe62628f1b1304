"""
Service wiring

One container per application instance; built in the lifespan and stored on
``app.state.container``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from boxoffice.config import Settings
from boxoffice.core.clock import SystemClock
from boxoffice.core.database import DatabaseManager, create_engine, create_session_factory
from boxoffice.core.rate_limit import MemoryRateLimiter, RateLimiter, RedisRateLimiter
from boxoffice.core.redis import RedisManager
from boxoffice.core.security import SecurityManager
from boxoffice.services.audit_log import TicketAuditLogger
from boxoffice.services.checkin import CheckInService
from boxoffice.services.hold_manager import HoldManager, HoldSweeper
from boxoffice.services.inventory_store import InventoryStore
from boxoffice.services.notifications import ConnectionManager, HoldNotifier
from boxoffice.services.order_service import OrderService
from boxoffice.services.payments import PaymentAdapter, build_payment_adapter
from boxoffice.services.ticket_issuance import TicketIssuer
from boxoffice.services.validation_gate import ValidationGate

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: Optional[AsyncEngine]
    session_factory: async_sessionmaker
    db: DatabaseManager
    redis: Optional[RedisManager]
    security: SecurityManager
    connections: ConnectionManager
    holds: HoldManager
    validation_gate: ValidationGate
    payments: PaymentAdapter
    tickets: TicketIssuer
    orders: OrderService
    audit: TicketAuditLogger
    checkin: CheckInService
    sweeper: HoldSweeper
    http_client: Optional[httpx.AsyncClient] = None

    async def close(self):
        await self.sweeper.stop()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.redis is not None:
            await self.redis.close()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Service container closed")


def build_rate_limiter(settings: Settings, redis_manager: Optional[RedisManager], clock) -> RateLimiter:
    if settings.RATE_LIMIT_BACKEND == "redis" and redis_manager is not None:
        return RedisRateLimiter(
            redis_manager,
            max_attempts=settings.QR_RATE_LIMIT_ATTEMPTS,
            window_seconds=settings.QR_RATE_LIMIT_WINDOW_SECONDS,
            block_seconds=settings.QR_RATE_LIMIT_BLOCK_SECONDS,
        )
    return MemoryRateLimiter(
        max_attempts=settings.QR_RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.QR_RATE_LIMIT_WINDOW_SECONDS,
        block_seconds=settings.QR_RATE_LIMIT_BLOCK_SECONDS,
        clock=clock,
    )


def build_container(
    settings: Settings,
    session_factory: Optional[async_sessionmaker] = None,
    engine: Optional[AsyncEngine] = None,
    payment_adapter: Optional[PaymentAdapter] = None,
    rate_limiter: Optional[RateLimiter] = None,
    clock=None,
) -> ServiceContainer:
    """
    Construct every service with explicit collaborators

    Anything passed in replaces the default built from settings.
    """
    clock = clock or SystemClock()
    if session_factory is None:
        engine = engine or create_engine(settings)
        session_factory = create_session_factory(engine)

    redis_manager = None
    if settings.RATE_LIMIT_BACKEND == "redis":
        redis_manager = RedisManager(settings.REDIS_URL, settings.REDIS_MAX_CONNECTIONS)

    http_client = None
    if payment_adapter is None:
        http_client = httpx.AsyncClient(timeout=settings.PAYMENT_TIMEOUT_SECONDS)
        payment_adapter = build_payment_adapter(settings, http_client=http_client)

    store = InventoryStore(clock)
    connections = ConnectionManager()
    holds = HoldManager(session_factory, settings, notifier=HoldNotifier(connections), clock=clock, store=store)
    gate = ValidationGate(session_factory, clock=clock, store=store)
    tickets = TicketIssuer(settings, session_factory)
    orders = OrderService(
        session_factory,
        settings,
        payment_adapter,
        tickets,
        validation_gate=gate,
        clock=clock,
        store=store,
    )
    audit = TicketAuditLogger(session_factory)
    checkin = CheckInService(
        session_factory,
        settings,
        rate_limiter or build_rate_limiter(settings, redis_manager, clock),
        audit,
        clock=clock,
    )

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        db=DatabaseManager(session_factory),
        redis=redis_manager,
        security=SecurityManager(settings),
        connections=connections,
        holds=holds,
        validation_gate=gate,
        payments=payment_adapter,
        tickets=tickets,
        orders=orders,
        audit=audit,
        checkin=checkin,
        sweeper=HoldSweeper(holds, settings.HOLD_SWEEP_INTERVAL_SECONDS, order_service=orders),
        http_client=http_client,
    )
