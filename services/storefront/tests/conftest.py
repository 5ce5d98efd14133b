"""
Shared fixtures for the storefront test suite.

Provides:
- settings: Settings pointing at a throwaway SQLite file
- publisher: records published order events instead of talking to Redis
- cashfree: fake Cashfree PG served through httpx.MockTransport
- session_factory: async session factory with the schema created
- lifecycle: OrderLifecycleManager wired to all of the above
- alice / bob / admin: callers
"""

import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from storefront.auth import Caller, Role
from storefront.config import Settings
from storefront.db import create_schema, make_engine, make_session_factory
from storefront.gateway import PaymentGatewayClient
from storefront.lifecycle import OrderLifecycleManager
from storefront.models import LineItem, PaymentMethod, ShippingAddress


class RecordingPublisher:
    """EventPublisher stand-in that keeps published events in memory."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def publish(self, event_type: str, data: dict) -> None:
        self.events.append((event_type, data))

    @property
    def event_types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


class FakeCashfree:
    """
    Minimal Cashfree PG double.

    POST /orders echoes the order id back with a session token.
    GET /orders/{id} reports `order_status` (ACTIVE until a test sets PAID).
    `create_response` / `status_response` override the reply with (status, body).
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.order_status = "ACTIVE"
        self.create_response: tuple[int, object] | None = None
        self.status_response: tuple[int, object] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path.endswith("/orders"):
            if self.create_response:
                status, body = self.create_response
                return _reply(status, body)
            payload = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "cf_order_id": 4242,
                    "order_id": payload["order_id"],
                    "payment_session_id": f"session_{payload['order_id']}",
                    "order_status": "ACTIVE",
                },
            )
        if request.method == "GET" and "/orders/" in request.url.path:
            if self.status_response:
                status, body = self.status_response
                return _reply(status, body)
            order_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"order_id": order_id, "order_status": self.order_status})
        return httpx.Response(404, json={"message": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_for(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]


def _reply(status: int, body) -> httpx.Response:
    if isinstance(body, (dict, list)):
        return httpx.Response(status, json=body)
    return httpx.Response(status, text=str(body))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        jwt_secret="test-secret",
        cashfree_app_id="TEST_APP_ID",
        cashfree_secret_key="TEST_SECRET",
        cashfree_base_url="https://gateway.test/pg",
        payment_return_url="https://shop.test/payment-status?order_id={order_id}",
    )


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def cashfree():
    return FakeCashfree()


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = make_engine(settings.database_url)
    await create_schema(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def lifecycle(settings, session_factory, cashfree, publisher):
    gateway = PaymentGatewayClient(settings, transport=cashfree.transport)
    return OrderLifecycleManager(settings, session_factory, gateway, publisher)


@pytest.fixture
def alice():
    return Caller(identity="alice@example.com", role=Role.USER, username="alice")


@pytest.fixture
def bob():
    return Caller(identity="bob@example.com", role=Role.USER, username="bob")


@pytest.fixture
def admin():
    return Caller(identity="admin@example.com", role=Role.ADMIN, username="admin")


def make_items() -> list[LineItem]:
    return [
        LineItem(product_id=1, name="Shirt", quantity=2, unit_price=Decimal("100"), image="shirt.png"),
        LineItem(product_id=2, name="Socks", quantity=1, unit_price=Decimal("50"), image="socks.png"),
    ]


def make_address(phone: str = "9876543210") -> ShippingAddress:
    return ShippingAddress(
        name="Alice",
        street="12 MG Road",
        city="Bengaluru",
        region="KA",
        postal_code="560001",
        phone=phone,
    )


@pytest.fixture
def place(lifecycle):
    """Place an order with the default two items (total 250)."""

    async def _place(caller, method=PaymentMethod.ONLINE, phone="9876543210", items=None):
        return await lifecycle.place_order(caller, items or make_items(), make_address(phone), method)

    return _place
