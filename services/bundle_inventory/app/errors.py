"""
Bundle Inventory Service — 例外定義

Shopify 呼び出しの失敗は ShopifyError 系で表す。
呼び出し側（調整エンジン・リコンサイラ）で捕捉してログに落とし、
その部品だけスキップする。
"""


class ShopifyError(Exception):
    """Shopify Admin API 呼び出しの失敗"""


class NetworkError(ShopifyError):
    """通信レベルの失敗（接続不可・タイムアウトなど）"""


class UpstreamError(ShopifyError):
    """Shopify が 2xx 以外を返した"""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Shopify API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


class NotFoundError(UpstreamError):
    """バリアント・注文が Shopify 上に存在しない"""


class MalformedDescriptorError(ValueError):
    """_clv_components の値が JSON として不正、または形が合わない"""
