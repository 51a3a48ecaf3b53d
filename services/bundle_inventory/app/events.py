"""
Bundle Inventory Service — Webhook イベント定義

Shopify から届く注文ライフサイクルのペイロード。
必要なフィールドだけ定義し、それ以外は無視する。
"""

from typing import Any

from pydantic import BaseModel, Field

VariantId = int | str

ORDER_CREATED = "orders/create"
ORDER_FULFILLED = "orders/fulfilled"
ORDER_CANCELLED = "orders/cancelled"
REFUND_CREATED = "refunds/create"
ORDER_EDITED = "orders/edited"

NO_RESTOCK = "no_restock"


class Property(BaseModel):
    """line_items[].properties / note_attributes の1要素"""
    name: str
    value: Any = None


class LineItem(BaseModel):
    id: int
    title: str = ""
    quantity: int = 0
    properties: list[Property] | None = None


class Order(BaseModel):
    """orders/create・orders/fulfilled・orders/cancelled のペイロード"""
    id: int
    name: str = ""
    financial_status: str | None = None
    fulfillment_status: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    note_attributes: list[Property] | None = None


class RefundLineItem(BaseModel):
    line_item_id: int
    quantity: int = 0
    restock_type: str | None = None

    @property
    def restocks(self) -> bool:
        return self.restock_type != NO_RESTOCK and self.quantity > 0


class Refund(BaseModel):
    """refunds/create のペイロード（明細の詳細は親注文から取り直す）"""
    id: int | None = None
    order_id: int
    refund_line_items: list[RefundLineItem] = Field(default_factory=list)


class OrderEdit(BaseModel):
    """orders/edited のペイロード。在庫処理には使わない"""
    order_edit: dict[str, Any] = Field(default_factory=dict)

    @property
    def order_id(self) -> Any:
        return self.order_edit.get("order_id")
