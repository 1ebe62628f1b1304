"""
Inventory store: conditional status transitions on inventory units

Every write is ``UPDATE ... WHERE status = :expected``; the affected row count
tells the caller whether it won. Callers compare that count with the number of
units they asked for and raise to roll the whole transaction back.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence
import uuid

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.clock import SystemClock
from boxoffice.core.database import dialect_name
from boxoffice.models.inventory import InventoryUnit, UnitStatus

logger = logging.getLogger(__name__)


def sorted_ids(unit_ids: Iterable) -> List[uuid.UUID]:
    """Normalize to UUIDs in lock order"""
    return sorted({uuid.UUID(str(unit_id)) for unit_id in unit_ids})


class InventoryStore:

    def __init__(self, clock=None):
        self.clock = clock or SystemClock()

    @staticmethod
    def lock_for_update(session: AsyncSession, stmt, skip_locked: bool = False):
        # SQLite serializes writers with BEGIN IMMEDIATE instead of row locks
        if dialect_name(session) == "postgresql":
            return stmt.with_for_update(skip_locked=skip_locked)
        return stmt

    async def lock_units(self, session: AsyncSession, unit_ids: Sequence) -> List[InventoryUnit]:
        """Load and lock units in id order"""
        ids = sorted_ids(unit_ids)
        stmt = self.lock_for_update(
            session,
            select(InventoryUnit).where(InventoryUnit.id.in_(ids)).order_by(InventoryUnit.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def set_status_if(
        self,
        session: AsyncSession,
        unit_ids: Sequence,
        expected: UnitStatus,
        new: UnitStatus,
        **values
    ) -> int:
        """
        Move units from ``expected`` to ``new``; returns the number of rows changed
        """
        ids = sorted_ids(unit_ids)
        if not ids:
            return 0

        stmt = (
            update(InventoryUnit)
            .where(InventoryUnit.id.in_(ids), InventoryUnit.status == expected)
            .values(status=new, status_changed_at=self.clock.now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        logger.debug(
            f"Inventory transition {expected.value}->{new.value}: {result.rowcount}/{len(ids)} units"
        )
        return result.rowcount

    async def release_held_units(self, session: AsyncSession, hold_id: uuid.UUID) -> List[uuid.UUID]:
        """Return every unit still held by ``hold_id`` to available"""
        result = await session.execute(
            select(InventoryUnit.id).where(
                InventoryUnit.hold_id == hold_id,
                InventoryUnit.status == UnitStatus.HELD
            )
        )
        unit_ids = list(result.scalars().all())
        if unit_ids:
            await session.execute(
                update(InventoryUnit)
                .where(
                    InventoryUnit.id.in_(unit_ids),
                    InventoryUnit.hold_id == hold_id,
                    InventoryUnit.status == UnitStatus.HELD
                )
                .values(status=UnitStatus.AVAILABLE, hold_id=None, status_changed_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
        return unit_ids

    async def find_available(
        self,
        session: AsyncSession,
        ticket_type_id: uuid.UUID,
        quantity: int,
        exclude: Optional[Iterable[uuid.UUID]] = None
    ) -> List[InventoryUnit]:
        """Pick up to ``quantity`` available units of a ticket type, best seats first"""
        stmt = (
            select(InventoryUnit)
            .where(
                InventoryUnit.ticket_type_id == ticket_type_id,
                InventoryUnit.status == UnitStatus.AVAILABLE
            )
            .order_by(InventoryUnit.section, InventoryUnit.row, InventoryUnit.seat_number, InventoryUnit.id)
            .limit(quantity)
        )
        if exclude:
            stmt = stmt.where(InventoryUnit.id.notin_(list(exclude)))
        result = await session.execute(self.lock_for_update(session, stmt, skip_locked=True))
        return list(result.scalars().all())

    async def count_available(
        self,
        session: AsyncSession,
        ticket_type_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, int]:
        ids = list(ticket_type_ids)
        if not ids:
            return {}
        result = await session.execute(
            select(InventoryUnit.ticket_type_id, func.count(InventoryUnit.id))
            .where(
                InventoryUnit.ticket_type_id.in_(ids),
                InventoryUnit.status == UnitStatus.AVAILABLE
            )
            .group_by(InventoryUnit.ticket_type_id)
        )
        counts = {type_id: 0 for type_id in ids}
        counts.update({type_id: count for type_id, count in result.all()})
        return counts

    async def held_by(self, session: AsyncSession, hold_id: uuid.UUID) -> List[InventoryUnit]:
        result = await session.execute(
            select(InventoryUnit)
            .where(InventoryUnit.hold_id == hold_id, InventoryUnit.status == UnitStatus.HELD)
            .order_by(InventoryUnit.id)
        )
        return list(result.scalars().all())

    async def units_for_order(self, session: AsyncSession, order_id: uuid.UUID) -> List[InventoryUnit]:
        result = await session.execute(
            select(InventoryUnit).where(InventoryUnit.order_id == order_id).order_by(InventoryUnit.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def count_by_type(units: Iterable[InventoryUnit]) -> Dict[uuid.UUID, int]:
        return dict(Counter(unit.ticket_type_id for unit in units))
