"""
Storefront: 商品カタログ

商品 ID は整数で、既存の最大 ID + 1 を割り当てる(空なら 1)。
画像は URL 文字列として受け取るだけで、アップロードは扱わない。
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth import Caller, Role
from .db import open_session, products
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class Product(BaseModel):
    id: int
    name: str
    images: list[str]
    category: str
    new_price: Decimal = Field(ge=0)
    old_price: Decimal = Field(ge=0)
    date: datetime
    available: bool = True


def _product_from_row(row) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        images=row.images,
        category=row.category,
        new_price=row.new_price,
        old_price=row.old_price,
        date=row.date,
        available=row.available,
    )


async def get_product(session: AsyncSession, product_id: int) -> Product | None:
    result = await session.execute(select(products).where(products.c.id == product_id))
    row = result.fetchone()
    return _product_from_row(row) if row else None


class CatalogService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add_product(
        self,
        caller: Caller,
        name: str,
        images: list[str],
        category: str,
        new_price: Decimal,
        old_price: Decimal,
    ) -> Product:
        caller.require(Role.ADMIN)
        if not name or not category:
            raise ValidationError("Name and category are required")

        async with open_session(self.session_factory) as session:
            result = await session.execute(select(func.max(products.c.id)))
            last_id = result.scalar()
            product = Product(
                id=(last_id or 0) + 1,
                name=name,
                images=images,
                category=category,
                new_price=new_price,
                old_price=old_price,
                date=datetime.now(timezone.utc),
            )
            await session.execute(insert(products).values(**product.model_dump()))
            await session.commit()

        logger.info("Product %s added: %s", product.id, product.name)
        return product

    async def remove_product(self, caller: Caller, product_id: int) -> None:
        caller.require(Role.ADMIN)
        async with open_session(self.session_factory) as session:
            result = await session.execute(delete(products).where(products.c.id == product_id))
            if result.rowcount == 0:
                raise NotFoundError("Product not found")
            await session.commit()
        logger.info("Product %s removed", product_id)

    async def list_products(self) -> list[Product]:
        async with open_session(self.session_factory) as session:
            result = await session.execute(select(products).order_by(products.c.id.asc()))
            return [_product_from_row(row) for row in result.fetchall()]
