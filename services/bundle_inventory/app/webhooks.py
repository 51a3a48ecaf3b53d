"""
Bundle Inventory Service — Webhook 受信

Shopify は数秒で応答しないとタイムアウト・再送するため、
署名を検証したら先に 200 を返し、在庫処理はバックグラウンドで行う。
バックグラウンド処理の失敗はログでしか観測できない。

  Shopify ──▶ 署名検証 ──▶ 重複チェック ──▶ 200 OK
                                  │
                                  └──▶ (background) OrderReconciler.handle

重複チェックは X-Shopify-Webhook-Id を Redis に TTL 付きで記録する。
Redis 未設定なら行わない。
"""

import base64
import hashlib
import hmac
import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request
from redis.exceptions import RedisError

from . import events
from .reconciler import OrderReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


def verify_webhook(secret: str, raw_body: bytes, hmac_header: str | None) -> bool:
    """X-Shopify-Hmac-Sha256 を検証する（base64 の HMAC-SHA256）。"""
    if not hmac_header:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, hmac_header)


class WebhookDeduplicator:
    """処理済み Webhook ID を Redis に TTL 付きで保持する。"""

    def __init__(self, redis: aioredis.Redis | None, ttl: int) -> None:
        self.redis = redis
        self.ttl = ttl

    async def is_duplicate(self, webhook_id: str | None) -> bool:
        if self.redis is None or not webhook_id:
            return False
        try:
            created = await self.redis.set(
                f"webhooks:{webhook_id}", "1", nx=True, ex=self.ttl
            )
        except RedisError as e:
            # 判定できないときは処理する側に倒す
            logger.warning("Webhook dedup unavailable for %s: %s", webhook_id, e)
            return False
        return not created


async def process_webhook(reconciler: OrderReconciler, topic: str, payload: dict) -> None:
    """応答後に実行される。例外は呼び出し元へ返さずログに残す。"""
    try:
        await reconciler.handle(topic, payload)
    except Exception:
        logger.exception("Error processing %s webhook", topic)


async def _accept(
    request: Request,
    background_tasks: BackgroundTasks,
    topic: str,
    hmac_header: str | None,
    webhook_id: str | None,
) -> dict:
    state = request.app.state
    raw_body = await request.body()

    if not verify_webhook(state.settings.shopify_webhook_secret, raw_body, hmac_header):
        logger.warning("Webhook verification failed for %s", topic)
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")

    if await state.deduplicator.is_duplicate(webhook_id):
        logger.warning("Duplicate %s webhook %s ignored", topic, webhook_id)
        return {"status": "duplicate"}

    logger.info("Received %s webhook", topic)
    background_tasks.add_task(process_webhook, state.reconciler, topic, payload)
    return {"status": "accepted"}


# ── Webhook エンドポイント ───────────────────────


@router.post("/orders/create")
async def order_created(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str | None = Header(None),
    x_shopify_webhook_id: str | None = Header(None),
):
    """注文作成: 部品在庫を減らす"""
    return await _accept(
        request, background_tasks, events.ORDER_CREATED,
        x_shopify_hmac_sha256, x_shopify_webhook_id,
    )


@router.post("/orders/fulfilled")
async def order_fulfilled(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str | None = Header(None),
    x_shopify_webhook_id: str | None = Header(None),
):
    return await _accept(
        request, background_tasks, events.ORDER_FULFILLED,
        x_shopify_hmac_sha256, x_shopify_webhook_id,
    )


@router.post("/orders/cancelled")
async def order_cancelled(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str | None = Header(None),
    x_shopify_webhook_id: str | None = Header(None),
):
    """注文キャンセル: 部品在庫を戻す"""
    return await _accept(
        request, background_tasks, events.ORDER_CANCELLED,
        x_shopify_hmac_sha256, x_shopify_webhook_id,
    )


@router.post("/refunds/create")
async def refund_created(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str | None = Header(None),
    x_shopify_webhook_id: str | None = Header(None),
):
    """返金: 再入庫対象の明細だけ部品在庫を戻す"""
    return await _accept(
        request, background_tasks, events.REFUND_CREATED,
        x_shopify_hmac_sha256, x_shopify_webhook_id,
    )


@router.post("/orders/edited")
async def order_edited(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str | None = Header(None),
    x_shopify_webhook_id: str | None = Header(None),
):
    return await _accept(
        request, background_tasks, events.ORDER_EDITED,
        x_shopify_hmac_sha256, x_shopify_webhook_id,
    )
