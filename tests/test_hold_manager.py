"""
Hold placement, extension, release and expiry
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock
import uuid

import pytest

from boxoffice.core.exceptions import (
    HoldExpiredError,
    HoldExtensionLimitError,
    HoldNotFoundError,
    UnitsUnavailableError,
    ValidationError,
)
from boxoffice.models.hold import HoldStatus
from boxoffice.models.inventory import UnitStatus
from boxoffice.models.order import PaymentMethod
from boxoffice.services.hold_manager import HoldManager, HoldSweeper
from boxoffice.services.order_service import PaymentDetails
from boxoffice.services.validation_gate import CartItem


class TestPlaceHold:

    @pytest.mark.asyncio
    async def test_place_hold_marks_units_held(self, container, seed, clock, unit_status):
        hold = await container.holds.place_hold(seed.seats[:3], "session-1")

        assert hold.status == HoldStatus.ACTIVE
        assert sorted(hold.unit_ids) == sorted(seed.seats[:3])
        assert hold.expires_at == clock.now() + timedelta(minutes=15)
        assert hold.seconds_remaining == 15 * 60
        assert hold.event_id == seed.event_id

        statuses = await unit_status(seed.seats[:3])
        assert set(statuses.values()) == {UnitStatus.HELD}

    @pytest.mark.asyncio
    async def test_hold_is_all_or_nothing(self, container, seed, unit_status):
        a, b, c = seed.seats[:3]
        await container.holds.place_hold([b], "session-1")

        with pytest.raises(UnitsUnavailableError) as exc_info:
            await container.holds.place_hold([a, b, c], "session-2")

        assert exc_info.value.details["unavailable_units"] == [str(b)]
        statuses = await unit_status([a, b, c])
        assert statuses[a] == UnitStatus.AVAILABLE
        assert statuses[b] == UnitStatus.HELD
        assert statuses[c] == UnitStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_unknown_unit_is_unavailable(self, container, seed):
        with pytest.raises(UnitsUnavailableError):
            await container.holds.place_hold([seed.seats[0], uuid.uuid4()], "session-1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("unit_ids,session_id,duration", [
        ([], "session-1", None),
        (["not-a-uuid"], "session-1", None),
        (None, "", None),
        (None, "session-1", 0),
        (None, "session-1", 61),
    ])
    async def test_invalid_requests_are_rejected(self, container, seed, unit_ids, session_id, duration):
        ids = seed.seats[:1] if unit_ids is None else unit_ids
        with pytest.raises(ValidationError):
            await container.holds.place_hold(ids, session_id, duration_minutes=duration)

    @pytest.mark.asyncio
    async def test_duplicate_units_are_rejected(self, container, seed):
        with pytest.raises(ValidationError):
            await container.holds.place_hold([seed.seats[0], seed.seats[0]], "session-1")

    @pytest.mark.asyncio
    async def test_too_many_units_are_rejected(self, container, seed, settings):
        settings.MAX_UNITS_PER_HOLD = 2
        with pytest.raises(ValidationError):
            await container.holds.place_hold(seed.seats[:3], "session-1")

    @pytest.mark.asyncio
    @pytest.mark.concurrency
    async def test_concurrent_holds_on_one_seat(self, container, seed, unit_status):
        seat = seed.seats[0]
        results = await asyncio.gather(
            *[container.holds.place_hold([seat], f"session-{i}") for i in range(8)],
            return_exceptions=True
        )

        placed = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, UnitsUnavailableError)]
        assert len(placed) == 1
        assert len(rejected) == 7
        assert (await unit_status([seat]))[seat] == UnitStatus.HELD


class TestHoldExpiry:

    @pytest.mark.asyncio
    async def test_expired_hold_frees_seats_for_next_customer(self, container, seed, clock, unit_status):
        first = await container.holds.place_hold(seed.seats[:2], "session-1")
        clock.advance(minutes=15)

        second = await container.holds.place_hold(seed.seats[:2], "session-2")

        assert second.session_id == "session-2"
        assert (await container.holds.get_hold(first.hold_id)).status == HoldStatus.EXPIRED
        statuses = await unit_status(seed.seats[:2])
        assert set(statuses.values()) == {UnitStatus.HELD}

    @pytest.mark.asyncio
    async def test_get_hold_reports_expiry_before_sweep(self, container, seed, clock):
        hold = await container.holds.place_hold(seed.seats[:1], "session-1")
        clock.advance(minutes=16)

        info = await container.holds.get_hold(hold.hold_id)

        assert info.status == HoldStatus.EXPIRED
        assert info.seconds_remaining == 0

    @pytest.mark.asyncio
    async def test_release_expired_returns_units(self, session_factory, settings, seed, clock, unit_status):
        notifier = AsyncMock()
        manager = HoldManager(session_factory, settings, notifier=notifier, clock=clock)
        hold = await manager.place_hold(seed.seats[:2], "session-1", duration_minutes=5)
        await manager.place_hold(seed.seats[2:3], "session-2", duration_minutes=30)

        clock.advance(minutes=6)
        expired = await manager.release_expired()

        assert expired == 1
        statuses = await unit_status(seed.seats[:3])
        assert statuses[seed.seats[0]] == UnitStatus.AVAILABLE
        assert statuses[seed.seats[1]] == UnitStatus.AVAILABLE
        assert statuses[seed.seats[2]] == UnitStatus.HELD

        notifier.hold_cancelled.assert_awaited_once()
        args = notifier.hold_cancelled.await_args.args
        assert args[0] == "session-1"
        assert args[1] == str(hold.hold_id)
        assert args[2] == "expired"

    @pytest.mark.asyncio
    async def test_sweeper_run_once(self, container, seed, clock):
        await container.holds.place_hold(seed.seats[:1], "session-1", duration_minutes=1)
        clock.advance(minutes=2)

        sweep = await container.sweeper.run_once()

        assert sweep == {"expired_holds": 1, "expired_orders": 0}

    @pytest.mark.asyncio
    async def test_sweeper_start_and_stop(self, container):
        sweeper = HoldSweeper(container.holds, interval_seconds=3600)
        sweeper.start()
        await asyncio.sleep(0)
        await sweeper.stop()
        assert sweeper._task is None

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_block_release(self, session_factory, settings, seed, unit_status):
        notifier = AsyncMock()
        notifier.hold_cancelled.side_effect = RuntimeError("socket closed")
        manager = HoldManager(session_factory, settings, notifier=notifier)
        hold = await manager.place_hold(seed.seats[:1], "session-1")

        released = await manager.release_hold(hold.hold_id)

        assert released.status == HoldStatus.RELEASED
        assert (await unit_status(seed.seats[:1]))[seed.seats[0]] == UnitStatus.AVAILABLE


class TestExtendAndRelease:

    @pytest.mark.asyncio
    async def test_extend_moves_expiry_from_now(self, container, seed, clock):
        hold = await container.holds.place_hold(seed.seats[:1], "session-1")
        clock.advance(minutes=10)

        extended = await container.holds.extend_hold(hold.hold_id, 10, session_id="session-1")

        assert extended.expires_at == clock.now() + timedelta(minutes=10)
        assert extended.extension_count == 1

    @pytest.mark.asyncio
    async def test_extension_limit(self, container, seed, settings):
        hold = await container.holds.place_hold(seed.seats[:1], "session-1")
        for _ in range(settings.HOLD_MAX_EXTENSIONS):
            await container.holds.extend_hold(hold.hold_id, 5)

        with pytest.raises(HoldExtensionLimitError):
            await container.holds.extend_hold(hold.hold_id, 5)

    @pytest.mark.asyncio
    async def test_extend_by_zero_releases(self, container, seed, unit_status):
        hold = await container.holds.place_hold(seed.seats[:2], "session-1")

        info = await container.holds.extend_hold(hold.hold_id, 0)

        assert info.status == HoldStatus.RELEASED
        assert set((await unit_status(seed.seats[:2])).values()) == {UnitStatus.AVAILABLE}

    @pytest.mark.asyncio
    async def test_extend_expired_hold_fails(self, container, seed, clock):
        hold = await container.holds.place_hold(seed.seats[:1], "session-1")
        clock.advance(minutes=20)

        with pytest.raises(HoldExpiredError):
            await container.holds.extend_hold(hold.hold_id, 5)

    @pytest.mark.asyncio
    async def test_release_is_repeatable(self, container, seed, unit_status):
        hold = await container.holds.place_hold(seed.seats[:2], "session-1")

        first = await container.holds.release_hold(hold.hold_id, "session-1")
        second = await container.holds.release_hold(hold.hold_id, "session-1")

        assert first.status == HoldStatus.RELEASED
        assert second.status == HoldStatus.RELEASED
        assert set((await unit_status(seed.seats[:2])).values()) == {UnitStatus.AVAILABLE}

    @pytest.mark.asyncio
    async def test_other_session_cannot_touch_hold(self, container, seed):
        hold = await container.holds.place_hold(seed.seats[:1], "session-1")

        with pytest.raises(HoldNotFoundError):
            await container.holds.release_hold(hold.hold_id, "session-2")
        with pytest.raises(HoldNotFoundError):
            await container.holds.get_hold(uuid.uuid4())


class TestSessionHolds:

    @pytest.mark.asyncio
    async def test_list_returns_only_live_holds_for_session(self, container, seed, clock):
        short = await container.holds.place_hold(seed.seats[:1], "session-1", duration_minutes=5)
        clock.advance(minutes=1)
        kept = await container.holds.place_hold(seed.seats[1:3], "session-1")
        released = await container.holds.place_hold(seed.seats[3:4], "session-1")
        await container.holds.release_hold(released.hold_id)
        await container.holds.place_hold(seed.seats[4:5], "session-2")
        clock.advance(minutes=5)

        holds = await container.holds.list_session_holds("session-1")

        assert [hold.hold_id for hold in holds] == [kept.hold_id]
        assert holds[0].status == HoldStatus.ACTIVE
        assert sorted(holds[0].unit_ids) == sorted(seed.seats[1:3])
        assert short.hold_id not in {hold.hold_id for hold in holds}

    @pytest.mark.asyncio
    async def test_list_for_unknown_session_is_empty(self, container, seed):
        assert await container.holds.list_session_holds("nobody") == []

    @pytest.mark.asyncio
    async def test_release_session_holds(self, session_factory, settings, seed, unit_status):
        notifier = AsyncMock()
        manager = HoldManager(session_factory, settings, notifier=notifier)
        first = await manager.place_hold(seed.seats[:2], "session-1")
        second = await manager.place_hold(seed.seats[2:3], "session-1")
        other = await manager.place_hold(seed.seats[3:4], "session-2")

        released = await manager.release_session_holds("session-1")

        assert released == 2
        assert set((await unit_status(seed.seats[:3])).values()) == {UnitStatus.AVAILABLE}
        assert (await unit_status([seed.seats[3]]))[seed.seats[3]] == UnitStatus.HELD
        assert (await manager.get_hold(first.hold_id)).status == HoldStatus.RELEASED
        assert (await manager.get_hold(second.hold_id)).status == HoldStatus.RELEASED
        assert (await manager.get_hold(other.hold_id)).status == HoldStatus.ACTIVE

        notified = {call.args[1] for call in notifier.hold_cancelled.await_args_list}
        assert notified == {str(first.hold_id), str(second.hold_id)}
        assert all(call.args[2] == "released" for call in notifier.hold_cancelled.await_args_list)

        assert await manager.release_session_holds("session-1") == 0

    @pytest.mark.asyncio
    async def test_consumed_hold_is_left_alone(self, container, seed, customer):
        hold = await container.holds.place_hold(seed.seats[:2], "session-1")
        result = await container.orders.create_order(
            customer=customer,
            payment=PaymentDetails(method=PaymentMethod.CARD, token="tok_visa"),
            items=[CartItem(ticket_type_id=seed.general_id, quantity=2)],
            idempotency_key=f"order-{uuid.uuid4().hex}",
            hold_id=hold.hold_id,
        )
        assert result.success

        assert await container.holds.release_session_holds("session-1") == 0
        assert (await container.holds.get_hold(hold.hold_id)).status == HoldStatus.CONSUMED

    @pytest.mark.asyncio
    async def test_session_id_required(self, container):
        with pytest.raises(ValidationError):
            await container.holds.list_session_holds("")
        with pytest.raises(ValidationError):
            await container.holds.release_session_holds("")
