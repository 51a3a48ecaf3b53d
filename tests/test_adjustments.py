"""Tests for the read-modify-write inventory adjuster."""

import asyncio

import pytest

from app.adjustments import AdjustmentIntent, InventoryAdjuster
from tests.fakes import FakeInventoryStore


def _setup(serialize: bool = True) -> tuple[InventoryAdjuster, FakeInventoryStore]:
    store = FakeInventoryStore()
    return InventoryAdjuster(store, serialize=serialize), store


class TestAdjust:

    @pytest.mark.asyncio
    async def test_remove_then_add_restores_available(self):
        adjuster, store = _setup()
        store.add_variant("v1", available=20)

        await adjuster.remove_stock("v1", 7, "from order #1001")
        assert store.available("v1") == 13
        await adjuster.add_stock("v1", 7, "cancelled from order #1001")
        assert store.available("v1") == 20

    @pytest.mark.asyncio
    async def test_remove_floors_at_zero_and_excess_is_lost(self):
        adjuster, store = _setup()
        store.add_variant("v1", available=5)

        assert await adjuster.remove_stock("v1", 10) == 0
        assert await adjuster.add_stock("v1", 10) == 10
        # Not the original 5: the floored difference is not remembered
        assert store.available("v1") == 10

    @pytest.mark.asyncio
    async def test_writes_full_value_at_first_location(self):
        adjuster, store = _setup()
        item_id = store.add_variant("v1", available=8, location_id=77)

        await adjuster.adjust(AdjustmentIntent(variant_id="v1", delta=-3, reason="test"))

        assert store.writes == [(item_id, 77, 5)]

    @pytest.mark.asyncio
    async def test_no_location_performs_no_write(self):
        adjuster, store = _setup()
        store.add_variant("v1", available=None)

        assert await adjuster.remove_stock("v1", 1) is None
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_unknown_variant_is_skipped(self, caplog):
        adjuster, store = _setup()

        assert await adjuster.remove_stock("missing", 1) is None
        assert store.writes == []
        assert "Error adjusting inventory for variant missing" in caplog.text

    @pytest.mark.asyncio
    async def test_network_error_is_skipped(self):
        adjuster, store = _setup()
        store.add_variant("v1", available=3)
        store.unreachable.add("v1")

        assert await adjuster.add_stock("v1", 1) is None
        assert store.available("v1") == 3

    @pytest.mark.asyncio
    async def test_failed_write_does_not_raise(self):
        adjuster, store = _setup()
        item_id = store.add_variant("v1", available=3)
        store.failing_writes.add(item_id)

        assert await adjuster.remove_stock("v1", 1) is None
        assert store.available("v1") == 3

    @pytest.mark.asyncio
    async def test_zero_quantity_is_a_noop(self):
        adjuster, store = _setup()
        store.add_variant("v1", available=3)

        assert await adjuster.remove_stock("v1", 0) is None
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_negative_quantity_is_rejected(self):
        adjuster, _ = _setup()
        with pytest.raises(ValueError):
            await adjuster.add_stock("v1", -1)

    @pytest.mark.asyncio
    async def test_unexpected_store_error_does_not_raise(self, caplog):
        class GarbledStore(FakeInventoryStore):
            async def read_level(self, inventory_item_id):
                raise KeyError("location_id")

        store = GarbledStore()
        store.add_variant("v1", available=3)
        adjuster = InventoryAdjuster(store)

        assert await adjuster.remove_stock("v1", 1) is None
        assert store.writes == []
        assert "Unexpected error adjusting variant v1" in caplog.text


class TestConcurrentAdjustments:

    @pytest.mark.asyncio
    async def test_serialized_adjustments_keep_both_updates(self):
        adjuster, store = _setup(serialize=True)
        store.add_variant("v1", available=10)
        store.yield_after_read = True

        await asyncio.gather(
            adjuster.remove_stock("v1", 3),
            adjuster.remove_stock("v1", 4),
        )

        assert store.available("v1") == 3

    @pytest.mark.asyncio
    async def test_unserialized_adjustments_lose_an_update(self):
        adjuster, store = _setup(serialize=False)
        store.add_variant("v1", available=10)
        store.yield_after_read = True

        await asyncio.gather(
            adjuster.remove_stock("v1", 3),
            adjuster.remove_stock("v1", 4),
        )

        # Both read 10 before either wrote; the later write wins
        assert store.available("v1") == 6
        assert store.writes_for("v1") == [7, 6]

    @pytest.mark.asyncio
    async def test_different_variants_do_not_block_each_other(self):
        adjuster, store = _setup(serialize=True)
        store.add_variant("v1", available=10)
        store.add_variant("v2", available=10)
        store.yield_after_read = True

        await asyncio.gather(
            adjuster.remove_stock("v1", 1),
            adjuster.remove_stock("v2", 2),
        )

        assert store.available("v1") == 9
        assert store.available("v2") == 8

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self):
        adjuster, store = _setup(serialize=True)
        store.add_variant("v1", available=10)
        store.add_variant("v2", available=10)
        store.yield_after_read = True

        await asyncio.gather(
            adjuster.remove_stock("v1", 1),
            adjuster.remove_stock("v1", 2),
            adjuster.remove_stock("v2", 3),
        )

        assert store.available("v1") == 7
        assert adjuster._locks == {}
        assert not adjuster._lock_users
