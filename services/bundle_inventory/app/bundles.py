"""
Bundle Inventory Service — バンドル構成の解析

バンドル商品の明細には `_clv_components` プロパティが付き、値は JSON:

    {"cable_variant_id": 111,
     "cotton": [{"variant_id": 222, "qty": 3, "title": "Blush"}]}

qty はバンドル 1 個あたりの数。実際の調整数は qty × 明細の数量。

プロパティがなければバンドルではない（何もしない）。
値が壊れていればログだけ出してバンドルではない扱いにし、注文全体は止めない。
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .errors import MalformedDescriptorError
from .events import LineItem, Order, Property, VariantId

logger = logging.getLogger(__name__)

COMPONENTS_PROPERTY = "_clv_components"


class BundleComponent(BaseModel):
    variant_id: VariantId
    qty: int = Field(gt=0)
    title: str = ""


class BundleDescriptor(BaseModel):
    cable_variant_id: VariantId | None = None
    cotton: list[BundleComponent] = Field(default_factory=list)

    def components(self) -> list[BundleComponent]:
        """ケーブル（1 個）→ コットンボールの順で構成部品を返す。"""
        parts = []
        if self.cable_variant_id:
            parts.append(
                BundleComponent(variant_id=self.cable_variant_id, qty=1, title="Cable")
            )
        parts.extend(self.cotton)
        return parts


def _find_property(properties: list[Property] | None) -> Property | None:
    for prop in properties or []:
        if prop.name == COMPONENTS_PROPERTY:
            return prop
    return None


def decode_descriptor(value: Any) -> BundleDescriptor:
    """プロパティ値を BundleDescriptor に変換する。不正なら MalformedDescriptorError。"""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise MalformedDescriptorError(f"invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise MalformedDescriptorError(
            f"expected a JSON object, got {type(value).__name__}"
        )
    if value.get("cotton") is None:
        value = {**value, "cotton": []}
    try:
        return BundleDescriptor.model_validate(value)
    except ValidationError as e:
        raise MalformedDescriptorError(str(e)) from e


def parse_bundle(
    line_item: LineItem,
    order: Order | None = None,
    *,
    order_fallback: bool = False,
) -> BundleDescriptor | None:
    """
    明細のバンドル構成を返す。バンドルでなければ None。

    order_fallback が有効なら、明細に無いとき注文の note_attributes も見る
    （古いテーマは注文単位で構成を書き込んでいた）。
    """
    prop = _find_property(line_item.properties)
    if prop is None and order_fallback and order is not None:
        prop = _find_property(order.note_attributes)
    if prop is None:
        return None

    try:
        return decode_descriptor(prop.value)
    except MalformedDescriptorError as e:
        logger.error(
            "Malformed %s on line item %s (%s): %s",
            COMPONENTS_PROPERTY,
            line_item.id,
            line_item.title,
            e,
        )
        return None
