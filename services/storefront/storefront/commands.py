"""
Storefront: 注文コマンドハンドラ (Write 側)

コマンドは注文の状態を変更する操作で、イベントを生成してストアに保存する。
同じトランザクションでリードモデル(orders テーブル)も更新し、
コミット後に Redis Pub/Sub でイベントを発行する。
"""

from datetime import datetime, timezone

from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store
from .aggregate import OrderAggregate
from .events import FulfillmentStatusChanged, OrderPlaced, PaymentConfirmed, PaymentSessionCreated
from .db import orders
from .models import FULFILLMENT_CONFIRMED, FULFILLMENT_PROCESSING, Order, PaymentStatus
from .publisher import EventPublisher


async def load_aggregate(session: AsyncSession, order_id: str) -> OrderAggregate:
    events = await event_store.load_events(session, order_id)
    return OrderAggregate.from_events(events)


async def place_order(
    session: AsyncSession,
    publisher: EventPublisher,
    event: OrderPlaced,
) -> Order:
    """
    注文作成コマンド

    1. OrderPlaced イベントをイベントストアに追記
    2. リードモデルに注文を INSERT
    3. コミット後 Redis Pub/Sub でイベントを発行
    """
    event_data = event.model_dump(mode="json")

    await event_store.append_event(session, event.order_id, "OrderPlaced", event_data, 0)

    await session.execute(
        insert(orders).values(
            id=event.order_id,
            owner_email=event.owner_email,
            line_items=event_data["line_items"],
            total_amount=event.total_amount,
            shipping_address=event_data["shipping_address"],
            payment_method=event.payment_method.value,
            payment_status=PaymentStatus.PENDING.value,
            fulfillment_status=FULFILLMENT_PROCESSING,
            created_at=event.timestamp,
            updated_at=event.timestamp,
        )
    )
    await session.commit()

    await publisher.publish("OrderPlaced", event_data)

    return Order(
        id=event.order_id,
        owner_email=event.owner_email,
        line_items=event.line_items,
        total_amount=event.total_amount,
        shipping_address=event.shipping_address,
        payment_method=event.payment_method,
        payment_status=PaymentStatus.PENDING,
        fulfillment_status=FULFILLMENT_PROCESSING,
        created_at=event.timestamp,
        updated_at=event.timestamp,
    )


async def record_payment_session(
    session: AsyncSession,
    publisher: EventPublisher,
    agg: OrderAggregate,
    external_order_id: str,
) -> OrderAggregate:
    """決済セッション発行を履歴に残す。支払いステータスは変えない。"""
    event = PaymentSessionCreated(
        order_id=agg.id,
        external_order_id=external_order_id,
        timestamp=datetime.now(timezone.utc),
    )
    event_data = event.model_dump(mode="json")

    version = await event_store.append_event(
        session, agg.id, "PaymentSessionCreated", event_data, agg.version
    )
    await session.commit()

    await publisher.publish("PaymentSessionCreated", event_data)

    agg.apply_payment_session_created(event_data)
    agg.version = version
    return agg


async def confirm_payment(
    session: AsyncSession,
    publisher: EventPublisher,
    agg: OrderAggregate,
) -> OrderAggregate:
    """
    支払い確定コマンド（ゲートウェイが PAID を報告した場合のみ呼ばれる）

    payment_status と fulfillment_status を同じトランザクションで更新する。
    同時に別リクエストが確定した場合は append_event が IntegrityError になる。
    """
    now = datetime.now(timezone.utc)
    event = PaymentConfirmed(
        order_id=agg.id,
        fulfillment_status=FULFILLMENT_CONFIRMED,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")

    version = await event_store.append_event(
        session, agg.id, "PaymentConfirmed", event_data, agg.version
    )

    await session.execute(
        update(orders)
        .where(orders.c.id == agg.id)
        .values(
            payment_status=PaymentStatus.PAID.value,
            fulfillment_status=FULFILLMENT_CONFIRMED,
            updated_at=now,
        )
    )
    await session.commit()

    await publisher.publish("PaymentConfirmed", event_data)

    agg.apply_payment_confirmed(event_data)
    agg.version = version
    return agg


async def change_fulfillment_status(
    session: AsyncSession,
    publisher: EventPublisher,
    agg: OrderAggregate,
    new_status: str,
    changed_by: str,
) -> OrderAggregate:
    """配送ステータス変更コマンド（管理者のみ）。遷移の妥当性は検証しない。"""
    now = datetime.now(timezone.utc)
    event = FulfillmentStatusChanged(
        order_id=agg.id,
        previous_status=agg.fulfillment_status,
        fulfillment_status=new_status,
        changed_by=changed_by,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")

    version = await event_store.append_event(
        session, agg.id, "FulfillmentStatusChanged", event_data, agg.version
    )

    await session.execute(
        update(orders)
        .where(orders.c.id == agg.id)
        .values(fulfillment_status=new_status, updated_at=now)
    )
    await session.commit()

    await publisher.publish("FulfillmentStatusChanged", event_data)

    agg.apply_fulfillment_status_changed(event_data)
    agg.version = version
    return agg
