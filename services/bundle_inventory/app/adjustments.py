"""
Bundle Inventory Service — 在庫調整エンジン

1 部品ぶんの在庫調整を行う。Shopify には加減算 API がないため
「現在値を読む → max(0, 現在値 + delta) を計算 → set で上書き」の
Read-Modify-Write になる。

  ┌─────────┐  resolve  ┌──────────┐  read   ┌───────┐  set   ┌─────────┐
  │ variant │ ────────▶ │ inv item │ ──────▶ │ level │ ─────▶ │ Shopify │
  └─────────┘           └──────────┘         └───────┘        └─────────┘

注意:
  - 0 で下限を切るので、多すぎる戻しや二重の戻しは差分が消える
    （同じイベントを繰り返したときの保存則は成り立たない）。
  - 読みから書きの間に別の調整が入ると後勝ちで上書きされる（lost update）。
    同一プロセス内ではバリアント単位の asyncio.Lock で直列化する。
    複数プロセス間の競合は防げない。

調整はベストエフォート。Shopify 側の失敗はログに残して None を返し、
他の部品の調整を止めない。
"""

import asyncio
import logging
from collections import defaultdict

from pydantic import BaseModel

from .errors import ShopifyError
from .events import VariantId
from .shopify import ShopifyClient

logger = logging.getLogger(__name__)


class AdjustmentIntent(BaseModel):
    variant_id: VariantId
    delta: int
    reason: str = ""


class InventoryAdjuster:
    def __init__(self, store: ShopifyClient, serialize: bool = True) -> None:
        self.store = store
        self.serialize = serialize
        # 使用中（保持中・待機中）のバリアントだけロックを持つ
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    async def adjust(self, intent: AdjustmentIntent) -> int | None:
        """調整を適用し、書き込んだ available を返す。スキップ・失敗時は None。"""
        if intent.delta == 0:
            logger.debug("Nothing to adjust for variant %s", intent.variant_id)
            return None
        if not self.serialize:
            return await self._apply(intent)
        key = str(intent.variant_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                return await self._apply(intent)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def remove_stock(
        self, variant_id: VariantId, quantity: int, reason: str = ""
    ) -> int | None:
        if quantity < 0:
            raise ValueError(f"quantity must be non-negative, got {quantity}")
        return await self.adjust(
            AdjustmentIntent(variant_id=variant_id, delta=-quantity, reason=reason)
        )

    async def add_stock(
        self, variant_id: VariantId, quantity: int, reason: str = ""
    ) -> int | None:
        if quantity < 0:
            raise ValueError(f"quantity must be non-negative, got {quantity}")
        return await self.adjust(
            AdjustmentIntent(variant_id=variant_id, delta=quantity, reason=reason)
        )

    async def _apply(self, intent: AdjustmentIntent) -> int | None:
        logger.info(
            "Adjusting inventory for variant %s: %+d (%s)",
            intent.variant_id,
            intent.delta,
            intent.reason,
        )
        try:
            inventory_item_id = await self.store.resolve_inventory_item(intent.variant_id)
            level = await self.store.read_level(inventory_item_id)
            if level is None:
                return None

            new_available = max(0, level.available + intent.delta)
            await self.store.write_level(
                inventory_item_id, level.location_id, new_available
            )
        except ShopifyError as e:
            logger.error(
                "Error adjusting inventory for variant %s: %s", intent.variant_id, e
            )
            return None
        except Exception:
            logger.exception("Unexpected error adjusting variant %s", intent.variant_id)
            return None

        logger.info(
            "Adjusted inventory for variant %s: %d -> %d",
            intent.variant_id,
            level.available,
            new_available,
        )
        return new_available
