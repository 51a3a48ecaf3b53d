"""
Bundle Inventory Service — FastAPI エントリーポイント

バンドル商品（ケーブル + コットンボール）の部品在庫を
Shopify の注文 Webhook に合わせて増減させるサービス。

┌─────────┐  webhook   ┌──────────────────────────┐  REST   ┌─────────┐
│ Shopify │ ─────────▶ │ Bundle Inventory Service │ ──────▶ │ Shopify │
│ (注文)  │ ◀── 200 ── │  reconciler → adjuster   │         │ (在庫)  │
└─────────┘            └──────────────────────────┘         └─────────┘
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .adjustments import InventoryAdjuster
from .config import Settings
from .errors import NotFoundError, ShopifyError
from .reconciler import OrderReconciler
from .shopify import ShopifyClient
from .webhooks import WebhookDeduplicator, router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    store: ShopifyClient | None = None,
    redis: aioredis.Redis | None = None,
) -> FastAPI:
    """
    アプリケーションを組み立てる。

    settings を省略すると起動時に環境変数から読み込む。
    store / redis を渡した場合はそれを使い、終了時にも閉じない。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        logging.basicConfig(
            level=cfg.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        shopify = store or ShopifyClient(cfg)
        redis_conn = redis
        if redis_conn is None and cfg.redis_url:
            redis_conn = aioredis.from_url(cfg.redis_url, decode_responses=True)

        adjuster = InventoryAdjuster(shopify, serialize=cfg.serialize_adjustments)
        app.state.settings = cfg
        app.state.store = shopify
        app.state.reconciler = OrderReconciler(
            adjuster, shopify, order_fallback=cfg.order_fallback
        )
        app.state.deduplicator = WebhookDeduplicator(redis_conn, cfg.webhook_dedup_ttl)

        logger.info("Store: %s", cfg.shopify_store)
        logger.info("Token: %s", "set" if cfg.shopify_access_token else "NOT SET")
        logger.info("Secret: %s", "set" if cfg.shopify_webhook_secret else "NOT SET")
        logger.info("Webhook dedup: %s", "redis" if redis_conn is not None else "disabled")
        yield

        if store is None:
            await shopify.aclose()
        if redis is None and redis_conn is not None:
            await redis_conn.aclose()

    app = FastAPI(title="Bundle Inventory Service", lifespan=lifespan)

    # ストアフロントから在庫確認 API を呼ぶため
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["Content-Type"],
    )
    app.include_router(router)

    @app.get("/")
    async def index():
        return {
            "status": "running",
            "message": "Cable Lights Bundle Inventory Manager",
            "endpoints": {
                "webhooks": [route.path for route in router.routes],
                "inventory": "/api/inventory/{variant_id}",
                "health": "/health",
            },
        }

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "bundle-inventory-service"}

    @app.get("/api/inventory/{variant_id}")
    async def check_inventory(variant_id: int):
        """全ロケーション合計の在庫数"""
        try:
            total = await app.state.store.total_available(variant_id)
        except NotFoundError:
            raise HTTPException(404, "Variant not found")
        except ShopifyError as e:
            logger.error("Error checking inventory for variant %s: %s", variant_id, e)
            raise HTTPException(502, "Failed to check inventory")
        return {"variant_id": variant_id, "inventory_quantity": total}

    return app


app = create_app()


def run() -> None:
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
