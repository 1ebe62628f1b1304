"""
Conditional unit transitions
"""

import asyncio
import uuid

import pytest

from boxoffice.models.inventory import UnitStatus
from boxoffice.services.inventory_store import InventoryStore, sorted_ids


@pytest.mark.unit
def test_sorted_ids_dedupes_and_orders():
    a, b = uuid.uuid4(), uuid.uuid4()
    ids = [str(b), a, b]
    assert sorted_ids(ids) == sorted({a, b})


class TestSetStatusIf:

    @pytest.mark.asyncio
    async def test_moves_only_matching_units(self, session_factory, seed, clock, unit_status):
        store = InventoryStore(clock)

        async with session_factory() as session, session.begin():
            first = await store.set_status_if(session, seed.seats[:2], UnitStatus.AVAILABLE, UnitStatus.RESERVED)
        async with session_factory() as session, session.begin():
            second = await store.set_status_if(session, seed.seats[1:3], UnitStatus.AVAILABLE, UnitStatus.RESERVED)

        assert first == 2
        assert second == 1
        statuses = await unit_status(seed.seats[:3])
        assert set(statuses.values()) == {UnitStatus.RESERVED}

    @pytest.mark.asyncio
    async def test_wrong_expected_status_changes_nothing(self, session_factory, seed, clock, unit_status):
        store = InventoryStore(clock)

        async with session_factory() as session, session.begin():
            changed = await store.set_status_if(session, [seed.vip_seat], UnitStatus.HELD, UnitStatus.SOLD)

        assert changed == 0
        assert (await unit_status([seed.vip_seat]))[seed.vip_seat] == UnitStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_empty_request(self, session_factory, clock):
        async with session_factory() as session:
            assert await InventoryStore(clock).set_status_if(session, [], UnitStatus.AVAILABLE, UnitStatus.HELD) == 0

    @pytest.mark.asyncio
    @pytest.mark.concurrency
    async def test_single_winner(self, session_factory, seed, clock):
        store = InventoryStore(clock)

        async def attempt():
            async with session_factory() as session, session.begin():
                return await store.set_status_if(session, [seed.vip_seat], UnitStatus.AVAILABLE, UnitStatus.RESERVED)

        results = await asyncio.gather(*[attempt() for _ in range(6)])

        assert sorted(results) == [0, 0, 0, 0, 0, 1]


class TestAvailabilityQueries:

    @pytest.mark.asyncio
    async def test_count_and_find_available(self, session_factory, seed, clock):
        store = InventoryStore(clock)

        async with session_factory() as session, session.begin():
            await store.set_status_if(session, seed.seats[:3], UnitStatus.AVAILABLE, UnitStatus.SOLD)

        async with session_factory() as session:
            counts = await store.count_available(session, [seed.general_id, seed.vip_id])
            picked = await store.find_available(session, seed.general_id, 2, exclude=[seed.seats[3]])

        assert counts == {seed.general_id: 7, seed.vip_id: 1}
        assert len(picked) == 2
        assert all(unit.status == UnitStatus.AVAILABLE for unit in picked)
        assert seed.seats[3] not in {unit.id for unit in picked}
