"""
Storefront: FastAPI エントリーポイント

認証・商品カタログ・カート・注文・決済の REST API を公開する。
設定は起動時に一度だけ組み立て、各コンポーネントに渡す。

    uvicorn --factory storefront.main:create_app
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal

import httpx
import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .accounts import AccountService
from .auth import AuthGate, Caller, current_caller
from .cart import CartService
from .catalog import CatalogService
from .config import Settings
from .db import create_schema, make_engine, make_session_factory
from .errors import GatewayError, StorefrontError
from .gateway import PaymentGatewayClient
from .lifecycle import OrderLifecycleManager
from .models import LineItem, PaymentMethod, ShippingAddress
from .publisher import EventPublisher

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request Models ───────────────────────────────


class SignupRequest(BaseModel):
    username: str = ""
    email: str = ""
    password: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class MakeAdminRequest(BaseModel):
    email: str = ""


class AddProductRequest(BaseModel):
    name: str
    images: list[str] = []
    category: str
    new_price: Decimal = Field(ge=0)
    old_price: Decimal = Field(ge=0)


class RemoveProductRequest(BaseModel):
    id: int


class CartItemRequest(BaseModel):
    product_id: int
    quantity: int = 1


class PlaceOrderRequest(BaseModel):
    items: list[LineItem] = []
    address: ShippingAddress | None = None
    payment_method: PaymentMethod | None = None


class OrderIdRequest(BaseModel):
    order_id: str


class UpdateStatusRequest(BaseModel):
    status: str = ""


# ── 認証 ─────────────────────────────────────────


@router.post("/signup")
async def signup(req: SignupRequest, request: Request):
    return await request.app.state.accounts.signup(req.username, req.email, req.password)


@router.post("/login")
async def login(req: LoginRequest, request: Request):
    return await request.app.state.accounts.login(req.email, req.password)


@router.post("/makeadmin")
async def make_admin(req: MakeAdminRequest, request: Request, caller: Caller = Depends(current_caller)):
    return await request.app.state.accounts.make_admin(caller, req.email)


@router.get("/verifyAdmin")
async def verify_admin(request: Request, caller: Caller = Depends(current_caller)):
    return await request.app.state.accounts.verify_admin(caller)


# ── 商品カタログ ─────────────────────────────────


@router.post("/addproduct")
async def add_product(req: AddProductRequest, request: Request, caller: Caller = Depends(current_caller)):
    product = await request.app.state.catalog.add_product(
        caller, req.name, req.images, req.category, req.new_price, req.old_price
    )
    return {"success": True, "product": product.model_dump(mode="json")}


@router.post("/removeproduct")
async def remove_product(req: RemoveProductRequest, request: Request, caller: Caller = Depends(current_caller)):
    await request.app.state.catalog.remove_product(caller, req.id)
    return {"success": True}


@router.get("/allproducts")
async def all_products(request: Request):
    products = await request.app.state.catalog.list_products()
    return [p.model_dump(mode="json") for p in products]


# ── カート ───────────────────────────────────────


@router.get("/getcart")
async def get_cart(request: Request, caller: Caller = Depends(current_caller)):
    return await request.app.state.cart.get_cart(caller)


@router.post("/addtocart")
async def add_to_cart(req: CartItemRequest, request: Request, caller: Caller = Depends(current_caller)):
    items = await request.app.state.cart.add_to_cart(caller, req.product_id, req.quantity)
    return {"success": True, "cart": items}


@router.post("/removefromcart")
async def remove_from_cart(req: CartItemRequest, request: Request, caller: Caller = Depends(current_caller)):
    items = await request.app.state.cart.remove_from_cart(caller, req.product_id)
    return {"success": True, "cart": items}


# ── 注文・決済 ───────────────────────────────────


@router.post("/placeorder")
async def place_order(req: PlaceOrderRequest, request: Request, caller: Caller = Depends(current_caller)):
    order = await request.app.state.lifecycle.place_order(
        caller, req.items, req.address, req.payment_method
    )
    return {"success": True, "order": order.model_dump(mode="json")}


@router.post("/create-cashfree-order")
async def create_cashfree_order(req: OrderIdRequest, request: Request, caller: Caller = Depends(current_caller)):
    session = await request.app.state.lifecycle.create_payment_session(caller, req.order_id)
    return {
        "success": True,
        "payment_session_id": session["session_token"],
        "order_id": session["external_order_id"],
    }


@router.post("/verify-payment")
async def verify_payment(req: OrderIdRequest, request: Request, caller: Caller = Depends(current_caller)):
    result = await request.app.state.lifecycle.verify_payment(caller, req.order_id)
    return {"success": True, "confirmed": result["confirmed"]}


@router.get("/orders")
async def list_my_orders(request: Request, caller: Caller = Depends(current_caller)):
    orders = await request.app.state.lifecycle.list_orders_for_user(caller)
    return [o.model_dump(mode="json") for o in orders]


# ── 管理者 ───────────────────────────────────────


@router.get("/admin/orders")
async def list_all_orders(request: Request, caller: Caller = Depends(current_caller)):
    orders = await request.app.state.lifecycle.list_all_orders(caller)
    return [o.model_dump(mode="json") for o in orders]


@router.put("/admin/orders/{order_id}")
async def update_order_status(
    order_id: str,
    req: UpdateStatusRequest,
    request: Request,
    caller: Caller = Depends(current_caller),
):
    order = await request.app.state.lifecycle.update_fulfillment_status(caller, order_id, req.status)
    return {"success": True, "order": order.model_dump(mode="json")}


@router.get("/admin/orders/{order_id}/events")
async def order_events(order_id: str, request: Request, caller: Caller = Depends(current_caller)):
    """注文のイベント履歴を返す"""
    return await request.app.state.lifecycle.order_history(caller, order_id)


@router.get("/health")
async def health():
    return {"status": "ok", "service": "storefront"}


# ── 例外ハンドラ ─────────────────────────────────


async def storefront_error_handler(request: Request, exc: StorefrontError):
    content = {"success": False, "message": exc.message}
    if isinstance(exc, GatewayError):
        logger.error(
            "Gateway error on %s %s: status=%s body=%s",
            request.method, request.url.path, exc.upstream_status, exc.upstream_body,
        )
        content = {
            "success": False,
            "message": "Payment gateway error",
            "upstream_status": exc.upstream_status,
        }
    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Invalid request", "errors": errors},
    )


# ── アプリケーションファクトリ ───────────────────


def create_app(
    settings: Settings | None = None,
    *,
    publisher: EventPublisher | None = None,
    gateway_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    アプリケーションを組み立てる。

    publisher / gateway_transport はテスト用の差し替え口。
    省略時は Redis と実際の Cashfree API を使う。
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(settings.database_url)
        if settings.create_schema:
            await create_schema(engine)
        session_factory = make_session_factory(engine)

        redis_pool: aioredis.Redis | None = None
        event_publisher = publisher
        if event_publisher is None:
            redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)
            event_publisher = EventPublisher(redis_pool)

        gate = AuthGate(settings)
        gateway = PaymentGatewayClient(settings, transport=gateway_transport)

        app.state.auth = gate
        app.state.accounts = AccountService(session_factory, gate)
        app.state.catalog = CatalogService(session_factory)
        app.state.cart = CartService(session_factory)
        app.state.lifecycle = OrderLifecycleManager(settings, session_factory, gateway, event_publisher)
        logger.info("Storefront started")

        try:
            yield
        finally:
            if redis_pool is not None:
                await redis_pool.aclose()
            await engine.dispose()

    app = FastAPI(title="Storefront Service", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    return app
