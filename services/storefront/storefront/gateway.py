"""
Storefront: 決済ゲートウェイクライアント (Cashfree PG)

外部決済サービスの REST API を呼ぶ薄いアダプタ。
加盟店の認証情報は Settings から受け取る。

  POST {base}/orders            → payment_session_id, order_id
  GET  {base}/orders/{order_id} → order_status (ACTIVE / PAID / EXPIRED ...)

失敗はすべて GatewayError として呼び出し元に返す。リトライはしない。
"""

import logging
from dataclasses import dataclass

import httpx

from .config import Settings
from .errors import GatewayError

logger = logging.getLogger(__name__)

STATUS_PAID = "PAID"


@dataclass(frozen=True)
class GatewaySession:
    session_token: str
    external_order_id: str


class PaymentGatewayClient:
    """Cashfree PG API クライアント"""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = settings.cashfree_base_url
        self.timeout = settings.gateway_timeout
        self.headers = {
            "x-client-id": settings.cashfree_app_id,
            "x-client-secret": settings.cashfree_secret_key,
            "x-api-version": settings.cashfree_api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        # テストでは httpx.MockTransport を差し込む
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        logger.debug("Cashfree %s %s", method, path)
        async with self._client() as client:
            try:
                resp = await client.request(method, path, **kwargs)
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise GatewayError(
                    "Payment gateway request failed",
                    upstream_status=e.response.status_code,
                    upstream_body=_body(e.response),
                ) from e
            except httpx.HTTPError as e:
                raise GatewayError(
                    f"Payment gateway unreachable: {e}",
                    upstream_body=str(e),
                ) from e

        body = _body(resp)
        if not isinstance(body, dict):
            raise GatewayError(
                "Payment gateway returned an unexpected response",
                upstream_status=resp.status_code,
                upstream_body=body,
            )
        return body

    async def create_order(self, payload: dict) -> GatewaySession:
        """
        ゲートウェイ側に注文を作成し、決済セッションを受け取る。

        payment_session_id が含まれないレスポンスは失敗として扱う。
        """
        body = await self._request("POST", "/orders", json=payload)
        session_token = body.get("payment_session_id")
        if not session_token:
            raise GatewayError(
                "Payment gateway did not return a session token",
                upstream_status=200,
                upstream_body=body,
            )
        return GatewaySession(
            session_token=session_token,
            external_order_id=str(body.get("order_id") or payload["order_id"]),
        )

    async def get_order_status(self, external_order_id: str) -> str:
        """ゲートウェイが把握している注文ステータスを返す。"""
        body = await self._request("GET", f"/orders/{external_order_id}")
        status = body.get("order_status")
        if not status:
            raise GatewayError(
                "Payment gateway did not return an order status",
                upstream_status=200,
                upstream_body=body,
            )
        return str(status)


def _body(resp: httpx.Response):
    try:
        return resp.json()
    except ValueError:
        return resp.text
