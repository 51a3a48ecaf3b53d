"""
Bundle Inventory Service — Shopify Admin API クライアント

在庫ストアとして使う 3 つの操作（バリアント→在庫アイテム解決、
在庫レベル読み取り、在庫レベル設定）と、返金時の注文取得をまとめる。

Shopify にはアトミックな加減算も CAS もないので、
「読んで → 計算して → 上書き」するしかない。その計算は adjustments 側。

リトライはしない。失敗は ShopifyError 系の例外として呼び出し側へ返す。
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from .config import Settings
from .errors import NetworkError, NotFoundError, UpstreamError
from .events import Order, VariantId

logger = logging.getLogger(__name__)


class InventoryLevel(BaseModel):
    inventory_item_id: int
    location_id: int
    available: int = 0


class ShopifyClient:
    """Shopify REST Admin API の薄いラッパー"""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = settings.admin_api_url
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout)
        self.headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": settings.shopify_access_token,
        }

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        body: dict | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        try:
            resp = await self.client.request(
                method, url, params=params, json=body, headers=self.headers
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {endpoint} failed: {e}") from e

        if resp.status_code == 404:
            raise NotFoundError(resp.status_code, resp.text)
        if not resp.is_success:
            raise UpstreamError(resp.status_code, resp.text)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError(resp.status_code, resp.text)
        if not isinstance(data, dict):
            raise UpstreamError(resp.status_code, resp.text)
        return data

    # ── 在庫ストア操作 ───────────────────────────

    async def resolve_inventory_item(self, variant_id: VariantId) -> int:
        data = await self._request("GET", f"variants/{variant_id}.json")
        variant = data.get("variant")
        inventory_item_id = variant.get("inventory_item_id") if isinstance(variant, dict) else None
        if inventory_item_id is None:
            raise NotFoundError(404, f"variant {variant_id} has no inventory item")
        return inventory_item_id

    async def list_inventory_levels(self, inventory_item_id: int) -> list[InventoryLevel]:
        data = await self._request(
            "GET",
            "inventory_levels.json",
            params={"inventory_item_ids": inventory_item_id},
        )
        levels = []
        for level in data.get("inventory_levels") or []:
            try:
                levels.append(
                    InventoryLevel.model_validate(
                        {
                            "inventory_item_id": level.get("inventory_item_id", inventory_item_id),
                            "location_id": level["location_id"],
                            # 在庫追跡していないアイテムは available が null
                            "available": level.get("available") or 0,
                        }
                    )
                )
            except (KeyError, TypeError, AttributeError, ValidationError) as e:
                raise UpstreamError(200, f"unexpected inventory level {level!r}: {e}") from e
        return levels

    async def read_level(self, inventory_item_id: int) -> InventoryLevel | None:
        """
        最初に返ってきたロケーションの在庫レベルを返す。

        複数ロケーションへの配分は扱わない。
        ロケーションが 1 件もなければ警告を出して None を返す。
        """
        levels = await self.list_inventory_levels(inventory_item_id)
        if not levels:
            logger.warning(
                "No inventory location found for inventory item %s", inventory_item_id
            )
            return None
        return levels[0]

    async def write_level(
        self,
        inventory_item_id: int,
        location_id: int,
        available: int,
    ) -> None:
        if available < 0:
            raise ValueError(f"available must be non-negative, got {available}")
        await self._request(
            "POST",
            "inventory_levels/set.json",
            body={
                "location_id": location_id,
                "inventory_item_id": inventory_item_id,
                "available": available,
            },
        )

    # ── 補助 ─────────────────────────────────────

    async def get_order(self, order_id: int) -> Order:
        data = await self._request("GET", f"orders/{order_id}.json")
        if not data.get("order"):
            raise NotFoundError(404, f"order {order_id} not found")
        try:
            return Order.model_validate(data["order"])
        except ValidationError as e:
            raise UpstreamError(200, f"unexpected order payload: {e}") from e

    async def total_available(self, variant_id: VariantId) -> int:
        """全ロケーションの available 合計（ストアフロントの在庫表示用）"""
        inventory_item_id = await self.resolve_inventory_item(variant_id)
        levels = await self.list_inventory_levels(inventory_item_id)
        return sum(level.available for level in levels)
