"""
Hold Manager
Time-bounded reservations of inventory units for a checkout session
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import select, update, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.config import Settings
from boxoffice.core.clock import SystemClock
from boxoffice.core.database import DatabaseManager
from boxoffice.core.exceptions import (
    HoldExpiredError,
    HoldExtensionLimitError,
    HoldNotFoundError,
    UnitsUnavailableError,
    ValidationError,
)
from boxoffice.core.metrics import HOLDS_EXPIRED, HOLDS_TOTAL
from boxoffice.models.hold import Hold, HoldStatus, hold_units
from boxoffice.models.inventory import UnitStatus
from boxoffice.services.inventory_store import InventoryStore, sorted_ids

logger = logging.getLogger(__name__)


@dataclass
class HoldInfo:
    hold_id: uuid.UUID
    session_id: str
    status: HoldStatus
    unit_ids: List[uuid.UUID]
    created_at: datetime
    expires_at: datetime
    extension_count: int
    seconds_remaining: int
    event_id: Optional[uuid.UUID] = None

    @classmethod
    def build(cls, hold: Hold, unit_ids: Sequence[uuid.UUID], now: datetime) -> "HoldInfo":
        status = hold.status
        if status == HoldStatus.ACTIVE and hold.expires_at <= now:
            # The server clock is authoritative even before the sweep runs
            status = HoldStatus.EXPIRED
        remaining = 0
        if status == HoldStatus.ACTIVE:
            remaining = max(0, int((hold.expires_at - now).total_seconds()))
        return cls(
            hold_id=hold.id,
            session_id=hold.session_id,
            status=status,
            unit_ids=list(unit_ids),
            created_at=hold.created_at,
            expires_at=hold.expires_at,
            extension_count=hold.extension_count,
            seconds_remaining=remaining,
            event_id=hold.event_id,
        )


@dataclass
class _Cancelled:
    session_id: str
    hold_id: str
    reason: str
    unit_ids: List[str] = field(default_factory=list)


class HoldManager:
    """
    Places, extends, releases and expires holds

    Unit status changes go through the inventory store's conditional updates,
    so a hold either takes every requested unit or none of them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        notifier=None,
        clock=None,
        store: Optional[InventoryStore] = None,
    ):
        self.db = DatabaseManager(session_factory)
        self.settings = settings
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.store = store or InventoryStore(self.clock)

    async def place_hold(
        self,
        unit_ids: Sequence,
        session_id: str,
        duration_minutes: Optional[int] = None,
    ) -> HoldInfo:
        """
        Hold every unit in ``unit_ids`` for ``session_id`` or raise UnitsUnavailableError
        """
        duration = self.settings.HOLD_DEFAULT_MINUTES if duration_minutes is None else duration_minutes
        ids = self._validate_request(unit_ids, session_id, duration)

        try:
            info = await self._place(ids, session_id, duration)
        except UnitsUnavailableError:
            # Lazy expiry: stale holds may still own the units
            released = await self.release_expired()
            if not released:
                HOLDS_TOTAL.labels(outcome="conflict").inc()
                raise
            try:
                info = await self._place(ids, session_id, duration)
            except UnitsUnavailableError:
                HOLDS_TOTAL.labels(outcome="conflict").inc()
                raise

        HOLDS_TOTAL.labels(outcome="placed").inc()
        logger.info(
            f"Hold {info.hold_id} placed on {len(ids)} units",
            extra={"hold_id": str(info.hold_id), "session_id": session_id}
        )
        return info

    def _validate_request(self, unit_ids: Sequence, session_id: str, duration: int) -> List[uuid.UUID]:
        if not session_id:
            raise ValidationError("Session id is required", field="session_id")
        if not unit_ids:
            raise ValidationError("At least one unit must be selected", field="unit_ids")
        try:
            ids = sorted_ids(unit_ids)
        except ValueError:
            raise ValidationError("Unit ids must be UUIDs", field="unit_ids")
        if len(ids) != len(unit_ids):
            raise ValidationError("Duplicate units in request", field="unit_ids")
        if len(ids) > self.settings.MAX_UNITS_PER_HOLD:
            raise ValidationError(
                f"A hold may contain at most {self.settings.MAX_UNITS_PER_HOLD} units",
                field="unit_ids"
            )
        if duration < 1 or duration > self.settings.HOLD_MAX_MINUTES:
            raise ValidationError(
                f"Hold duration must be between 1 and {self.settings.HOLD_MAX_MINUTES} minutes",
                field="duration_minutes"
            )
        return ids

    async def _place(self, ids: List[uuid.UUID], session_id: str, duration: int) -> HoldInfo:
        async with self.db.atomic_transaction() as session:
            units = await self.store.lock_units(session, ids)
            found = {unit.id for unit in units}
            missing = [str(unit_id) for unit_id in ids if unit_id not in found]
            if missing:
                raise UnitsUnavailableError(missing)

            conflicting = [str(unit.id) for unit in units if unit.status != UnitStatus.AVAILABLE]
            if conflicting:
                raise UnitsUnavailableError(conflicting)

            event_ids = {unit.event_id for unit in units}
            if len(event_ids) > 1:
                raise ValidationError("All units in a hold must belong to one event", field="unit_ids")

            now = self.clock.now()
            hold = Hold(
                id=uuid.uuid4(),
                session_id=session_id,
                event_id=event_ids.pop(),
                status=HoldStatus.ACTIVE,
                expires_at=now + timedelta(minutes=duration),
                extension_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(hold)
            await session.flush()

            await session.execute(
                insert(hold_units),
                [{"hold_id": hold.id, "unit_id": unit_id} for unit_id in ids]
            )

            changed = await self.store.set_status_if(
                session, ids, UnitStatus.AVAILABLE, UnitStatus.HELD, hold_id=hold.id
            )
            if changed != len(ids):
                raise UnitsUnavailableError()

            return HoldInfo.build(hold, ids, now)

    async def extend_hold(
        self,
        hold_id,
        additional_minutes: int,
        session_id: Optional[str] = None,
    ) -> HoldInfo:
        """
        Push expiry to ``now + additional_minutes``; zero releases the hold
        """
        if additional_minutes == 0:
            return await self.release_hold(hold_id, session_id)
        if additional_minutes < 0 or additional_minutes > self.settings.HOLD_MAX_MINUTES:
            raise ValidationError(
                f"Extension must be between 0 and {self.settings.HOLD_MAX_MINUTES} minutes",
                field="additional_minutes"
            )

        hold_uuid = self._parse_hold_id(hold_id)
        async with self.db.atomic_transaction() as session:
            hold = await self._load_owned(session, hold_uuid, session_id)
            now = self.clock.now()

            if hold.status != HoldStatus.ACTIVE or hold.expires_at <= now:
                status = hold.status if hold.status != HoldStatus.ACTIVE else HoldStatus.EXPIRED
                raise HoldExpiredError(str(hold_uuid), status.value)
            if hold.extension_count >= self.settings.HOLD_MAX_EXTENSIONS:
                raise HoldExtensionLimitError(str(hold_uuid), self.settings.HOLD_MAX_EXTENSIONS)

            new_expiry = now + timedelta(minutes=additional_minutes)
            result = await session.execute(
                update(Hold)
                .where(
                    Hold.id == hold_uuid,
                    Hold.status == HoldStatus.ACTIVE,
                    Hold.expires_at > now,
                    Hold.extension_count == hold.extension_count
                )
                .values(expires_at=new_expiry, extension_count=Hold.extension_count + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise HoldExpiredError(str(hold_uuid))

            hold.expires_at = new_expiry
            hold.extension_count += 1
            unit_ids = await self._unit_ids(session, hold_uuid)

        HOLDS_TOTAL.labels(outcome="extended").inc()
        logger.info(f"Hold {hold_uuid} extended to {new_expiry.isoformat()}")
        if self.notifier is not None:
            await self.notifier.hold_extended(hold.session_id, str(hold_uuid), new_expiry)
        return HoldInfo.build(hold, unit_ids, now)

    async def release_hold(self, hold_id, session_id: Optional[str] = None) -> HoldInfo:
        """
        Release a hold and return its units to available
        """
        hold_uuid = self._parse_hold_id(hold_id)
        async with self.db.atomic_transaction() as session:
            hold = await self._load_owned(session, hold_uuid, session_id)
            now = self.clock.now()
            unit_ids = await self._unit_ids(session, hold_uuid)

            if hold.status == HoldStatus.RELEASED:
                return HoldInfo.build(hold, unit_ids, now)
            if hold.status != HoldStatus.ACTIVE:
                raise HoldExpiredError(str(hold_uuid), hold.status.value)

            result = await session.execute(
                update(Hold)
                .where(Hold.id == hold_uuid, Hold.status == HoldStatus.ACTIVE)
                .values(status=HoldStatus.RELEASED, closed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise HoldExpiredError(str(hold_uuid))

            released = await self.store.release_held_units(session, hold_uuid)
            hold.status = HoldStatus.RELEASED
            hold.closed_at = now

        HOLDS_TOTAL.labels(outcome="released").inc()
        logger.info(f"Hold {hold_uuid} released ({len(released)} units)")
        await self._notify([_Cancelled(hold.session_id, str(hold_uuid), "released", [str(u) for u in released])])
        return HoldInfo.build(hold, unit_ids, now)

    async def get_hold(self, hold_id, session_id: Optional[str] = None) -> HoldInfo:
        hold_uuid = self._parse_hold_id(hold_id)
        async with self.db.read_session() as session:
            hold = await self._load_owned(session, hold_uuid, session_id, lock=False)
            unit_ids = await self._unit_ids(session, hold_uuid)
        return HoldInfo.build(hold, unit_ids, self.clock.now())

    async def list_session_holds(self, session_id: str) -> List[HoldInfo]:
        """
        Active, unexpired holds owned by ``session_id``, oldest first
        """
        if not session_id:
            raise ValidationError("Session id is required", field="session_id")
        now = self.clock.now()
        async with self.db.read_session() as session:
            result = await session.execute(
                select(Hold)
                .where(
                    Hold.session_id == session_id,
                    Hold.status == HoldStatus.ACTIVE,
                    Hold.expires_at > now
                )
                .order_by(Hold.created_at)
            )
            holds = list(result.scalars().all())
            infos = [HoldInfo.build(hold, await self._unit_ids(session, hold.id), now) for hold in holds]
        return infos

    async def release_session_holds(self, session_id: str) -> int:
        """
        Release every active hold owned by ``session_id``; returns how many were released
        """
        if not session_id:
            raise ValidationError("Session id is required", field="session_id")
        async with self.db.read_session() as session:
            result = await session.execute(
                select(Hold.id)
                .where(Hold.session_id == session_id, Hold.status == HoldStatus.ACTIVE)
                .order_by(Hold.created_at)
            )
            candidates = list(result.scalars().all())

        released = 0
        for hold_uuid in candidates:
            try:
                await self.release_hold(hold_uuid, session_id)
            except HoldExpiredError:
                # Consumed or expired since the scan
                continue
            released += 1

        if released:
            logger.info(f"Released {released} holds for session", extra={"session_id": session_id})
        return released

    async def release_expired(self, batch_size: int = 500) -> int:
        """
        Expire active holds whose expiry has passed; returns how many were expired
        """
        now = self.clock.now()
        async with self.db.read_session() as session:
            result = await session.execute(
                select(Hold.id)
                .where(Hold.status == HoldStatus.ACTIVE, Hold.expires_at <= now)
                .order_by(Hold.expires_at)
                .limit(batch_size)
            )
            candidates = list(result.scalars().all())

        cancelled: List[_Cancelled] = []
        for hold_uuid in candidates:
            async with self.db.atomic_transaction() as session:
                flipped = await session.execute(
                    update(Hold)
                    .where(
                        Hold.id == hold_uuid,
                        Hold.status == HoldStatus.ACTIVE,
                        Hold.expires_at <= now
                    )
                    .values(status=HoldStatus.EXPIRED, closed_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if flipped.rowcount != 1:
                    # Consumed, extended or released since the scan
                    continue
                released = await self.store.release_held_units(session, hold_uuid)
                owner = await session.scalar(select(Hold.session_id).where(Hold.id == hold_uuid))
            cancelled.append(_Cancelled(owner, str(hold_uuid), "expired", [str(u) for u in released]))

        if cancelled:
            HOLDS_EXPIRED.inc(len(cancelled))
            logger.info(f"Expired {len(cancelled)} holds")
            await self._notify(cancelled)
        return len(cancelled)

    async def _load_owned(
        self,
        session: AsyncSession,
        hold_uuid: uuid.UUID,
        session_id: Optional[str],
        lock: bool = True,
    ) -> Hold:
        stmt = select(Hold).where(Hold.id == hold_uuid)
        if lock:
            stmt = InventoryStore.lock_for_update(session, stmt)
        hold = await session.scalar(stmt)
        if hold is None or (session_id is not None and hold.session_id != session_id):
            raise HoldNotFoundError(str(hold_uuid))
        return hold

    @staticmethod
    async def _unit_ids(session: AsyncSession, hold_uuid: uuid.UUID) -> List[uuid.UUID]:
        result = await session.execute(
            select(hold_units.c.unit_id).where(hold_units.c.hold_id == hold_uuid).order_by(hold_units.c.unit_id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _parse_hold_id(hold_id) -> uuid.UUID:
        try:
            return uuid.UUID(str(hold_id))
        except ValueError:
            raise HoldNotFoundError(str(hold_id))

    async def _notify(self, cancelled: List[_Cancelled]):
        if self.notifier is None:
            return
        for item in cancelled:
            try:
                await self.notifier.hold_cancelled(item.session_id, item.hold_id, item.reason, item.unit_ids)
            except Exception as e:
                logger.warning(f"Hold notification failed for {item.hold_id}: {e}")


class HoldSweeper:
    """
    Background task that expires stale holds and unconfirmed cash orders
    """

    def __init__(self, hold_manager: HoldManager, interval_seconds: int, order_service=None):
        self.hold_manager = hold_manager
        self.order_service = order_service
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def run_once(self) -> dict:
        expired_holds = await self.hold_manager.release_expired()
        expired_orders = 0
        if self.order_service is not None:
            expired_orders = await self.order_service.expire_pending_cash_orders()
        return {"expired_holds": expired_holds, "expired_orders": expired_orders}

    async def _run(self):
        logger.info(f"Hold sweeper started (every {self.interval_seconds}s)")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Hold sweep failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Hold sweeper stopped")

    def start(self):
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
