"""
Validation Gate
Real-time availability check for a cart just before it is submitted
"""

import logging
import uuid
from decimal import Decimal
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.clock import SystemClock
from boxoffice.core.database import DatabaseManager
from boxoffice.core.exceptions import NotFoundError
from boxoffice.models.event import Event, TicketType
from boxoffice.models.hold import Hold, HoldStatus
from boxoffice.models.inventory import InventoryUnit, UnitStatus
from boxoffice.services.inventory_store import InventoryStore

logger = logging.getLogger(__name__)


@dataclass
class CartItem:
    ticket_type_id: uuid.UUID
    quantity: int


@dataclass
class AvailabilityError:
    ticket_type_id: str
    requested: int
    available: int
    message: str = ""


@dataclass
class CartValidation:
    valid: bool
    errors: List[AvailabilityError] = field(default_factory=list)

    def errors_as_dicts(self) -> List[dict]:
        return [asdict(error) for error in self.errors]


@dataclass
class TicketTypeAvailability:
    ticket_type_id: uuid.UUID
    name: str
    price: Decimal
    capacity: int
    available: int


def merge_items(items: Iterable) -> Dict[uuid.UUID, int]:
    """Sum quantities per ticket type, keeping first-seen order"""
    merged: Dict[uuid.UUID, int] = {}
    for item in items:
        type_id = uuid.UUID(str(item.ticket_type_id))
        merged[type_id] = merged.get(type_id, 0) + item.quantity
    return merged


class ValidationGate:
    """
    Pure read: counts available units per ticket type, plus those held by the
    caller's own active hold
    """

    def __init__(self, session_factory: async_sessionmaker, clock=None, store: Optional[InventoryStore] = None):
        self.db = DatabaseManager(session_factory)
        self.clock = clock or SystemClock()
        self.store = store or InventoryStore(self.clock)

    async def validate_cart(self, items: Iterable, hold_id=None) -> CartValidation:
        async with self.db.read_session() as session:
            return await self.validate_in_session(session, items, hold_id)

    async def validate_in_session(self, session: AsyncSession, items: Iterable, hold_id=None) -> CartValidation:
        requested = merge_items(items)
        if not requested:
            return CartValidation(valid=False, errors=[
                AvailabilityError(ticket_type_id="", requested=0, available=0, message="Cart is empty")
            ])

        known = set(
            (await session.execute(
                select(TicketType.id).where(TicketType.id.in_(list(requested)))
            )).scalars().all()
        )
        available = await self.store.count_available(session, known)
        held = await self._held_counts(session, hold_id)

        errors: List[AvailabilityError] = []
        for type_id, quantity in requested.items():
            if type_id not in known:
                errors.append(AvailabilityError(
                    ticket_type_id=str(type_id), requested=quantity, available=0,
                    message="Ticket type not found"
                ))
                continue

            count = available.get(type_id, 0) + held.get(type_id, 0)
            if quantity <= 0:
                errors.append(AvailabilityError(
                    ticket_type_id=str(type_id), requested=quantity, available=count,
                    message="Quantity must be positive"
                ))
            elif quantity > count:
                errors.append(AvailabilityError(
                    ticket_type_id=str(type_id), requested=quantity, available=count,
                    message=f"Only {count} tickets available"
                ))

        if errors:
            logger.info(f"Cart validation failed for {len(errors)} ticket types")
        return CartValidation(valid=not errors, errors=errors)

    async def availability_summary(self, event_id) -> List[TicketTypeAvailability]:
        """
        Available unit count for each ticket type of an event
        """
        try:
            event_uuid = uuid.UUID(str(event_id))
        except ValueError:
            raise NotFoundError("Event", event_id)

        async with self.db.read_session() as session:
            if await session.get(Event, event_uuid) is None:
                raise NotFoundError("Event", event_id)
            result = await session.execute(
                select(TicketType).where(TicketType.event_id == event_uuid).order_by(TicketType.price, TicketType.name)
            )
            ticket_types = list(result.scalars().all())
            available = await self.store.count_available(session, [tt.id for tt in ticket_types])

        return [
            TicketTypeAvailability(
                ticket_type_id=tt.id,
                name=tt.name,
                price=tt.price,
                capacity=tt.capacity,
                available=available.get(tt.id, 0),
            )
            for tt in ticket_types
        ]

    async def _held_counts(self, session: AsyncSession, hold_id) -> Dict[uuid.UUID, int]:
        if hold_id is None:
            return {}
        try:
            hold_uuid = uuid.UUID(str(hold_id))
        except ValueError:
            return {}

        now = self.clock.now()
        result = await session.execute(
            select(InventoryUnit.ticket_type_id, func.count(InventoryUnit.id))
            .join(Hold, Hold.id == InventoryUnit.hold_id)
            .where(
                Hold.id == hold_uuid,
                Hold.status == HoldStatus.ACTIVE,
                Hold.expires_at > now,
                InventoryUnit.status == UnitStatus.HELD
            )
            .group_by(InventoryUnit.ticket_type_id)
        )
        return {type_id: count for type_id, count in result.all()}
