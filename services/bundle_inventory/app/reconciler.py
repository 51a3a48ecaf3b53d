"""
Bundle Inventory Service — 注文ライフサイクルのリコンサイラ

注文イベントごとに、バンドル明細の各部品へどちら向きに何個調整するかを決める。

  ┌──────────────────┬────────────────────────────────────────────┐
  │ orders/create    │ 部品ごとに remove_stock(qty × 明細数量)    │
  │ orders/fulfilled │ 何もしない（作成時に引き当て済み）         │
  │ orders/cancelled │ 部品ごとに add_stock(qty × 明細数量)       │
  │ refunds/create   │ 親注文を取得し、restock_type が            │
  │                  │ no_restock 以外の返金明細だけ               │
  │                  │ add_stock(qty × 返金数量)                  │
  │ orders/edited    │ 何もしない（明細削除は返金イベントで届く） │
  └──────────────────┴────────────────────────────────────────────┘

イベント間で状態は持たない。重複配信・順序入れ替わりは考慮しない
（同じ orders/create が 2 回届けば 2 回減算される）。
"""

import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from . import events
from .adjustments import InventoryAdjuster
from .bundles import BundleDescriptor, parse_bundle
from .errors import ShopifyError
from .events import LineItem, Order, OrderEdit, Refund
from .shopify import ShopifyClient

logger = logging.getLogger(__name__)


class OrderReconciler:
    def __init__(
        self,
        adjuster: InventoryAdjuster,
        store: ShopifyClient,
        order_fallback: bool = False,
    ) -> None:
        self.adjuster = adjuster
        self.store = store
        self.order_fallback = order_fallback

    async def handle(self, topic: str, payload: dict) -> None:
        """Webhook トピックに応じたハンドラを呼び出す。"""
        route: tuple[type, Callable[..., Awaitable[None]]] | None = {
            events.ORDER_CREATED: (Order, self.order_created),
            events.ORDER_FULFILLED: (Order, self.order_fulfilled),
            events.ORDER_CANCELLED: (Order, self.order_cancelled),
            events.REFUND_CREATED: (Refund, self.refund_created),
            events.ORDER_EDITED: (OrderEdit, self.order_edited),
        }.get(topic)
        if route is None:
            logger.warning("Ignoring unsupported webhook topic: %s", topic)
            return

        model, handler = route
        try:
            event = model.model_validate(payload)
        except ValidationError as e:
            logger.error("Invalid %s payload: %s", topic, e)
            return
        await handler(event)

    # ── イベントごとの処理 ───────────────────────

    async def order_created(self, order: Order) -> None:
        logger.info("Processing order: %s (ID: %s)", order.name, order.id)
        for line_item, bundle in self._bundle_line_items(order):
            await self._adjust_line_item(
                line_item,
                bundle,
                quantity=line_item.quantity,
                restock=False,
                reason=f"from order {order.name}",
            )

    async def order_fulfilled(self, order: Order) -> None:
        logger.info(
            "Order %s (ID: %s) fulfilled, stock already committed at creation",
            order.name,
            order.id,
        )

    async def order_cancelled(self, order: Order) -> None:
        logger.info("Processing cancelled order: %s (ID: %s)", order.name, order.id)
        for line_item, bundle in self._bundle_line_items(order):
            await self._adjust_line_item(
                line_item,
                bundle,
                quantity=line_item.quantity,
                restock=True,
                reason=f"cancelled from order {order.name}",
            )

    async def refund_created(self, refund: Refund) -> None:
        logger.info("Processing refund %s for order %s", refund.id, refund.order_id)

        restocking = []
        for refund_item in refund.refund_line_items:
            if refund_item.restocks:
                restocking.append(refund_item)
            else:
                logger.info(
                    "Skipping refund line item %s (restock_type=%s, quantity=%s)",
                    refund_item.line_item_id,
                    refund_item.restock_type,
                    refund_item.quantity,
                )
        if not restocking:
            return

        try:
            order = await self.store.get_order(refund.order_id)
        except ShopifyError as e:
            logger.error("Could not fetch order %s for refund: %s", refund.order_id, e)
            return

        line_items = {line_item.id: line_item for line_item in order.line_items}
        for refund_item in restocking:
            line_item = line_items.get(refund_item.line_item_id)
            if line_item is None:
                logger.warning(
                    "Refund line item %s not found in order %s",
                    refund_item.line_item_id,
                    order.name,
                )
                continue
            bundle = parse_bundle(line_item, order, order_fallback=self.order_fallback)
            if bundle is None:
                continue
            await self._adjust_line_item(
                line_item,
                bundle,
                quantity=refund_item.quantity,
                restock=True,
                reason=f"refunded from order {order.name}",
            )

    async def order_edited(self, edit: OrderEdit) -> None:
        logger.info(
            "Order %s edited, removed items are restocked by the refund webhook",
            edit.order_id,
        )

    # ── 内部処理 ─────────────────────────────────

    def _bundle_line_items(self, order: Order):
        for line_item in order.line_items:
            bundle = parse_bundle(line_item, order, order_fallback=self.order_fallback)
            if bundle is None:
                continue
            logger.info("Found bundle item: %s", line_item.title)
            yield line_item, bundle

    async def _adjust_line_item(
        self,
        line_item: LineItem,
        bundle: BundleDescriptor,
        quantity: int,
        restock: bool,
        reason: str,
    ) -> None:
        """1 明細ぶんの全部品を調整する。予期しない例外でも他の部品は続行する。"""
        adjust = self.adjuster.add_stock if restock else self.adjuster.remove_stock
        for component in bundle.components():
            try:
                await adjust(component.variant_id, component.qty * quantity, reason)
            except Exception:
                logger.exception(
                    "Error adjusting component %s of bundle line item %s",
                    component.variant_id,
                    line_item.id,
                )
