"""
Storefront: 注文イベントストア

注文の状態変更をイベントとして追記し、集約の再構築に使う。
バージョン番号による楽観的ロックで同時書き込みを防ぐ。
"""

from datetime import datetime, timezone

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import order_events


async def append_event(
    session: AsyncSession,
    order_id: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
) -> int:
    """
    イベントをストアに追記する。

    expected_version で楽観的ロックを実現:
    同じ order_id + version の組み合わせが既に存在すると
    UNIQUE 制約違反 (IntegrityError) で失敗する → 競合を検知できる。
    コミットは呼び出し側が行う。
    """
    new_version = expected_version + 1
    await session.execute(
        insert(order_events).values(
            order_id=order_id,
            event_type=event_type,
            event_data=event_data,
            version=new_version,
            created_at=datetime.now(timezone.utc),
        )
    )
    return new_version


async def load_events(session: AsyncSession, order_id: str) -> list[dict]:
    """
    指定した注文の全イベントをバージョン順に読み出す。
    集約を再構築（リプレイ）するために使う。
    """
    result = await session.execute(
        select(order_events)
        .where(order_events.c.order_id == order_id)
        .order_by(order_events.c.version.asc())
    )
    return [
        {
            "event_type": row.event_type,
            "event_data": row.event_data,
            "version": row.version,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in result.fetchall()
    ]
