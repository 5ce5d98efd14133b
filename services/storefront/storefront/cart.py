"""
Storefront: カート

ユーザーごとに 1 行、{product_id: 数量} を JSON で保持する。
"""

from datetime import datetime, timezone

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth import Caller
from .catalog import get_product
from .db import carts, open_session
from .errors import NotFoundError, ValidationError


async def _load_items(session: AsyncSession, owner_email: str) -> dict[str, int] | None:
    result = await session.execute(select(carts.c["items"]).where(carts.c.owner_email == owner_email))
    items = result.scalar_one_or_none()
    return dict(items) if items is not None else None


async def _save_items(session: AsyncSession, owner_email: str, items: dict[str, int], exists: bool) -> None:
    now = datetime.now(timezone.utc)
    if exists:
        stmt = update(carts).where(carts.c.owner_email == owner_email).values(items=items, updated_at=now)
    else:
        stmt = insert(carts).values(owner_email=owner_email, items=items, updated_at=now)
    await session.execute(stmt)
    await session.commit()


class CartService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_cart(self, caller: Caller) -> dict[str, int]:
        async with open_session(self.session_factory) as session:
            return await _load_items(session, caller.identity) or {}

    async def add_to_cart(self, caller: Caller, product_id: int, quantity: int = 1) -> dict[str, int]:
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        async with open_session(self.session_factory) as session:
            if await get_product(session, product_id) is None:
                raise NotFoundError("Product not found")

            items = await _load_items(session, caller.identity)
            exists = items is not None
            items = items or {}
            key = str(product_id)
            items[key] = items.get(key, 0) + quantity
            await _save_items(session, caller.identity, items, exists)
        return items

    async def remove_from_cart(self, caller: Caller, product_id: int) -> dict[str, int]:
        """数量を 1 減らし、0 になったら項目ごと削除する。"""
        async with open_session(self.session_factory) as session:
            items = await _load_items(session, caller.identity)
            key = str(product_id)
            if not items or key not in items:
                raise NotFoundError("Product not in cart")

            items[key] -= 1
            if items[key] <= 0:
                del items[key]
            await _save_items(session, caller.identity, items, exists=True)
        return items
