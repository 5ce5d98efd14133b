"""
Storefront: 注文クエリハンドラ (Read 側)

読み取りはリードモデル(orders テーブル)から行う。
一覧は常に作成日時の新しい順。
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import orders
from .models import Order


async def get_order(session: AsyncSession, order_id: str) -> Order | None:
    """リードモデルから注文を取得する。"""
    result = await session.execute(select(orders).where(orders.c.id == order_id))
    row = result.fetchone()
    if not row:
        return None
    return Order.from_row(row)


async def list_orders_by_owner(session: AsyncSession, owner_email: str) -> list[Order]:
    result = await session.execute(
        select(orders)
        .where(orders.c.owner_email == owner_email)
        .order_by(orders.c.created_at.desc())
    )
    return [Order.from_row(row) for row in result.fetchall()]


async def list_orders(session: AsyncSession) -> list[Order]:
    """全注文一覧をリードモデルから取得する。"""
    result = await session.execute(select(orders).order_by(orders.c.created_at.desc()))
    return [Order.from_row(row) for row in result.fetchall()]
