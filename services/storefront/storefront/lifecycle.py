"""
Storefront: 注文ライフサイクル管理

注文作成・決済セッション作成・支払い確認(照合)を調整する。

  ┌──────────┐    ┌──────────────┐    ┌─────────────────────┐
  │ 認可ゲート │──▶│ Lifecycle     │──▶│ Order Store (DB)     │
  │ (Caller)  │    │ Manager       │──▶│ Payment Gateway      │
  └──────────┘    └──────────────┘──▶│ Event Publisher      │
                                      └─────────────────────┘

支払いステータスは PENDING → PAID の一方向のみ。
PAID になるのは verify_payment がゲートウェイの PAID 報告を確認したときだけ。
ゲートウェイの失敗はリトライせず GatewayError として呼び出し元へ返す。
"""

import logging
import re
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands, event_store, queries
from .aggregate import OrderAggregate
from .auth import Caller, Role
from .config import Settings
from .db import open_session
from .errors import GatewayError, InvalidStateError, NotFoundError, PersistenceError, ValidationError
from .events import OrderPlaced
from .gateway import STATUS_PAID, PaymentGatewayClient
from .models import LineItem, Order, PaymentMethod, ShippingAddress, order_total
from .publisher import EventPublisher

logger = logging.getLogger(__name__)

# 通常の進行順。これより前に戻る変更は警告ログを出す(拒否はしない)
FULFILLMENT_PROGRESSION = ("Processing", "Confirmed", "Shipped", "Delivered")
FULFILLMENT_TERMINAL = ("Delivered", "Cancelled")

# 支払い確定の書き込みがバージョン競合したときの最大試行回数
CONFIRM_ATTEMPTS = 3


class OrderLifecycleManager:
    """注文と決済のライフサイクルを管理する。"""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGatewayClient,
        publisher: EventPublisher,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.gateway = gateway
        self.publisher = publisher

    # ── 注文作成 ──────────────────────────────────

    async def place_order(
        self,
        caller: Caller,
        line_items: list[LineItem] | None,
        shipping_address: ShippingAddress | None,
        payment_method: PaymentMethod | None,
    ) -> Order:
        """
        注文を作成する。

        合計金額は明細からサーバ側で計算する(クライアントの合計は使わない)。
        支払い方法に関わらず PENDING で作成し、COD も自動確定しない。
        """
        if not line_items:
            raise ValidationError("Order must contain at least one item")
        if shipping_address is None:
            raise ValidationError("Shipping address is required")
        if payment_method is None:
            raise ValidationError("Payment method is required")

        event = OrderPlaced(
            order_id=str(uuid4()),
            owner_email=caller.identity,
            line_items=line_items,
            total_amount=order_total(line_items),
            shipping_address=shipping_address,
            payment_method=payment_method,
            timestamp=datetime.now(timezone.utc),
        )

        async with open_session(self.session_factory) as session:
            order = await commands.place_order(session, self.publisher, event)

        logger.info(
            "Order %s placed by %s: total=%s method=%s",
            order.id, caller.identity, order.total_amount, order.payment_method.value,
        )
        return order

    # ── 決済セッション ────────────────────────────

    async def create_payment_session(self, caller: Caller, order_id: str) -> dict:
        """
        ゲートウェイに注文を作成し、決済セッションを発行する。

        支払いステータスは変更しない(変更は verify_payment のみ)。
        ゲートウェイ呼び出し中は DB セッションを開いたままにしない。
        """
        async with open_session(self.session_factory) as session:
            order = await self._load_order(session, caller, order_id)

        if order.payment_method is not PaymentMethod.ONLINE:
            raise InvalidStateError("Payment session is only available for online payment")
        if not order.shipping_address.has_gateway_phone():
            raise InvalidStateError("Phone number must be exactly 10 digits")

        payload = self._gateway_payload(order)
        try:
            gw_session = await self.gateway.create_order(payload)
        except GatewayError as e:
            logger.error(
                "Payment session creation failed for order %s: status=%s body=%s",
                order.id, e.upstream_status, e.upstream_body,
            )
            raise

        async with open_session(self.session_factory) as session:
            agg = await commands.load_aggregate(session, order.id)
            try:
                await commands.record_payment_session(
                    session, self.publisher, agg, gw_session.external_order_id
                )
            except IntegrityError:
                # 履歴の記録が競合しても発行済みセッションは有効
                await session.rollback()
                logger.warning("Payment session event for order %s lost a version race", order.id)

        logger.info("Payment session created for order %s", order.id)
        return {
            "session_token": gw_session.session_token,
            "external_order_id": gw_session.external_order_id,
        }

    def _gateway_payload(self, order: Order) -> dict:
        address = order.shipping_address
        return {
            "order_id": order.id,
            "order_amount": f"{order.total_amount:.2f}",
            "order_currency": self.settings.currency,
            "customer_details": {
                "customer_id": _customer_id(order.owner_email),
                "customer_name": address.name,
                "customer_email": order.owner_email,
                "customer_phone": address.phone,
            },
            "order_meta": {
                "return_url": self.settings.payment_return_url.format(order_id=order.id),
            },
        }

    # ── 支払い確認 ────────────────────────────────

    async def verify_payment(self, caller: Caller, order_id: str) -> dict:
        """
        ゲートウェイに支払い状況を問い合わせ、PAID なら注文を確定する。

        冪等: すでに PAID の注文はゲートウェイに問い合わせず confirmed=True を返す。
        ゲートウェイが PAID 以外を返した場合は何も変更しない。
        """
        async with open_session(self.session_factory) as session:
            order = await self._load_order(session, caller, order_id)
            if order.payment_method is not PaymentMethod.ONLINE:
                raise InvalidStateError("Cash on delivery orders are not verified online")
            agg = await commands.load_aggregate(session, order.id)

        if agg.is_paid:
            return {"confirmed": True}

        external_id = agg.external_order_id or order.id
        try:
            status = await self.gateway.get_order_status(external_id)
        except GatewayError as e:
            logger.error(
                "Payment verification failed for order %s: status=%s body=%s",
                order.id, e.upstream_status, e.upstream_body,
            )
            raise

        if status != STATUS_PAID:
            logger.info("Order %s not paid yet (gateway status=%s)", order.id, status)
            return {"confirmed": False}

        await self._confirm_paid(order.id)
        logger.info("Payment confirmed for order %s", order_id)
        return {"confirmed": True}

    async def _confirm_paid(self, order_id: str) -> None:
        """
        最新の集約に対して支払い確定を書き込む。

        他の書き込み(管理者の配送ステータス更新など)とバージョンが衝突したら
        集約を読み直して再試行する。すでに PAID なら何もしない。
        """
        for attempt in range(1, CONFIRM_ATTEMPTS + 1):
            async with open_session(self.session_factory) as session:
                agg = await commands.load_aggregate(session, order_id)
                if agg.is_paid:
                    return
                try:
                    await commands.confirm_payment(session, self.publisher, agg)
                    return
                except IntegrityError:
                    await session.rollback()
                    logger.warning(
                        "Payment confirmation for order %s lost a version race (attempt %d/%d)",
                        order_id, attempt, CONFIRM_ATTEMPTS,
                    )
        raise PersistenceError(f"Concurrent update on order {order_id}")

    # ── 一覧 ──────────────────────────────────────

    async def list_orders_for_user(self, caller: Caller) -> list[Order]:
        async with open_session(self.session_factory) as session:
            return await queries.list_orders_by_owner(session, caller.identity)

    async def list_all_orders(self, caller: Caller) -> list[Order]:
        caller.require(Role.ADMIN)
        async with open_session(self.session_factory) as session:
            return await queries.list_orders(session)

    async def order_history(self, caller: Caller, order_id: str) -> list[dict]:
        """注文のイベント履歴をバージョン順に返す（管理者のみ）。"""
        caller.require(Role.ADMIN)
        async with open_session(self.session_factory) as session:
            events = await event_store.load_events(session, order_id)
        if not events:
            raise NotFoundError("Order not found")
        return events

    # ── 管理者による配送ステータス更新 ──────────────

    async def update_fulfillment_status(self, caller: Caller, order_id: str, new_status: str) -> Order:
        """
        配送ステータスを上書きする。

        遷移の妥当性は検証しないが、想定外の遷移は警告ログに残す。
        """
        caller.require(Role.ADMIN)
        new_status = (new_status or "").strip()
        if not new_status:
            raise ValidationError("Status is required")

        async with open_session(self.session_factory) as session:
            agg = await commands.load_aggregate(session, order_id)
            if not agg.exists:
                raise NotFoundError("Order not found")

            _log_unexpected_transition(agg, new_status)
            await commands.change_fulfillment_status(
                session, self.publisher, agg, new_status, caller.identity
            )
            order = await queries.get_order(session, order_id)

        logger.info("Order %s fulfillment status set to %s by %s", order_id, new_status, caller.identity)
        return order

    # ── 内部ヘルパー ──────────────────────────────

    async def _load_order(self, session: AsyncSession, caller: Caller, order_id: str) -> Order:
        """注文を取得する。他人の注文は存在しないものとして扱う(管理者を除く)。"""
        order = await queries.get_order(session, order_id)
        if order is None or not caller.can_access(order.owner_email):
            raise NotFoundError("Order not found")
        return order


def _customer_id(email: str) -> str:
    # ゲートウェイの customer_id は英数字・_・- のみ
    return re.sub(r"[^A-Za-z0-9_-]", "_", email)


def _log_unexpected_transition(agg: OrderAggregate, new_status: str) -> None:
    current = agg.fulfillment_status
    if current in FULFILLMENT_TERMINAL and new_status != current:
        logger.warning("Order %s leaves terminal status %s for %s", agg.id, current, new_status)
    elif new_status not in FULFILLMENT_PROGRESSION and new_status not in FULFILLMENT_TERMINAL:
        logger.warning("Order %s set to unrecognised status %r", agg.id, new_status)
    elif (
        current in FULFILLMENT_PROGRESSION
        and new_status in FULFILLMENT_PROGRESSION
        and FULFILLMENT_PROGRESSION.index(new_status) < FULFILLMENT_PROGRESSION.index(current)
    ):
        logger.warning("Order %s moves backwards from %s to %s", agg.id, current, new_status)
