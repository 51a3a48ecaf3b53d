"""
Bundle Inventory Service — 設定

環境変数は起動時に一度だけ読み込み、Settings として各コンポーネントに渡す。
モジュールのグローバル変数から直接参照しない。
"""

import os

from pydantic import BaseModel, ConfigDict


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    shopify_store: str
    shopify_access_token: str
    shopify_webhook_secret: str
    shopify_api_version: str = "2024-01"
    http_timeout: float = 30.0

    # 未設定なら Webhook の重複排除は無効
    redis_url: str | None = None
    webhook_dedup_ttl: int = 86400

    serialize_adjustments: bool = True
    order_fallback: bool = False

    port: int = 3000
    log_level: str = "INFO"

    @property
    def admin_api_url(self) -> str:
        return f"https://{self.shopify_store}/admin/api/{self.shopify_api_version}"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            shopify_store=env["SHOPIFY_STORE"],
            shopify_access_token=env["SHOPIFY_ACCESS_TOKEN"],
            shopify_webhook_secret=env["SHOPIFY_WEBHOOK_SECRET"],
            shopify_api_version=env.get("SHOPIFY_API_VERSION", "2024-01"),
            http_timeout=env.get("HTTP_TIMEOUT", "30.0"),
            redis_url=env.get("REDIS_URL") or None,
            webhook_dedup_ttl=env.get("WEBHOOK_DEDUP_TTL", "86400"),
            serialize_adjustments=env.get("SERIALIZE_ADJUSTMENTS", "true"),
            order_fallback=env.get("BUNDLE_ORDER_FALLBACK", "false"),
            port=env.get("PORT", "3000"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
