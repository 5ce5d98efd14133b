import httpx
import pytest

from storefront.errors import GatewayError
from storefront.gateway import PaymentGatewayClient


def _client(settings, handler):
    return PaymentGatewayClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_order(settings):
    def handler(request):
        return httpx.Response(200, json={"order_id": "o-1", "payment_session_id": "sess"})

    session = await _client(settings, handler).create_order({"order_id": "o-1"})

    assert session.session_token == "sess"
    assert session.external_order_id == "o-1"


@pytest.mark.asyncio
async def test_get_order_status(settings):
    def handler(request):
        assert request.url.path == "/pg/orders/o-1"
        return httpx.Response(200, json={"order_id": "o-1", "order_status": "PAID"})

    assert await _client(settings, handler).get_order_status("o-1") == "PAID"


@pytest.mark.asyncio
async def test_upstream_error_keeps_status_and_body(settings):
    def handler(request):
        return httpx.Response(401, json={"message": "authentication Failed", "type": "authentication_error"})

    with pytest.raises(GatewayError) as excinfo:
        await _client(settings, handler).create_order({"order_id": "o-1"})

    assert excinfo.value.upstream_status == 401
    assert excinfo.value.upstream_body["type"] == "authentication_error"


@pytest.mark.asyncio
async def test_transport_failure(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError) as excinfo:
        await _client(settings, handler).get_order_status("o-1")

    assert excinfo.value.upstream_status is None
    assert "connection refused" in excinfo.value.upstream_body


@pytest.mark.asyncio
async def test_non_json_success_body(settings):
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(GatewayError) as excinfo:
        await _client(settings, handler).get_order_status("o-1")

    assert excinfo.value.upstream_body == "<html>maintenance</html>"


@pytest.mark.asyncio
async def test_missing_order_status(settings):
    def handler(request):
        return httpx.Response(200, json={"order_id": "o-1"})

    with pytest.raises(GatewayError):
        await _client(settings, handler).get_order_status("o-1")
