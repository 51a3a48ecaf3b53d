"""In-memory fakes for testing.

FakeInventoryStore implements the same coroutine interface as ShopifyClient
but keeps inventory levels in dicts. FakeRedis covers only SET NX EX.
"""

from __future__ import annotations

import asyncio

from app.errors import NetworkError, NotFoundError, UpstreamError
from app.events import Order
from app.shopify import InventoryLevel


class FakeInventoryStore:

    def __init__(self) -> None:
        self.items: dict[str, int] = {}
        self.levels: dict[int, list[InventoryLevel]] = {}
        self.orders: dict[int, Order] = {}
        self.writes: list[tuple[int, int, int]] = []
        self.failing_writes: set[int] = set()
        self.unreachable: set[str] = set()
        self.order_fetches = 0
        # Yield to the event loop between read and write to expose races
        self.yield_after_read = False

    def add_variant(
        self,
        variant_id,
        available: int | None,
        *,
        inventory_item_id: int | None = None,
        location_id: int = 1,
    ) -> int:
        item_id = inventory_item_id or 1000 + len(self.items)
        self.items[str(variant_id)] = item_id
        if available is None:
            self.levels[item_id] = []
        else:
            self.levels[item_id] = [
                InventoryLevel(
                    inventory_item_id=item_id,
                    location_id=location_id,
                    available=available,
                )
            ]
        return item_id

    def available(self, variant_id) -> int:
        return self.levels[self.items[str(variant_id)]][0].available

    def writes_for(self, variant_id) -> list[int]:
        item_id = self.items[str(variant_id)]
        return [available for item, _, available in self.writes if item == item_id]

    async def resolve_inventory_item(self, variant_id) -> int:
        if str(variant_id) in self.unreachable:
            raise NetworkError("connection refused")
        if str(variant_id) not in self.items:
            raise NotFoundError(404, '{"errors":"Not Found"}')
        return self.items[str(variant_id)]

    async def list_inventory_levels(self, inventory_item_id: int) -> list[InventoryLevel]:
        return list(self.levels.get(inventory_item_id, []))

    async def read_level(self, inventory_item_id: int) -> InventoryLevel | None:
        levels = self.levels.get(inventory_item_id) or []
        if not levels:
            return None
        level = levels[0].model_copy()
        if self.yield_after_read:
            await asyncio.sleep(0)
        return level

    async def write_level(self, inventory_item_id: int, location_id: int, available: int) -> None:
        if inventory_item_id in self.failing_writes:
            raise UpstreamError(500, "Internal Server Error")
        self.writes.append((inventory_item_id, location_id, available))
        levels = self.levels[inventory_item_id]
        for i, level in enumerate(levels):
            if level.location_id == location_id:
                levels[i] = level.model_copy(update={"available": available})

    async def get_order(self, order_id: int) -> Order:
        self.order_fetches += 1
        if order_id not in self.orders:
            raise NotFoundError(404, '{"errors":"Not Found"}')
        return self.orders[order_id]

    async def total_available(self, variant_id) -> int:
        item_id = await self.resolve_inventory_item(variant_id)
        return sum(level.available for level in self.levels[item_id])


class FakeRedis:

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiries: dict[str, int] = {}

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True
