from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import InsufficientStockError, NotFoundError
from storefront.models.catalog import Product, ProductVariant

logger = logging.getLogger(__name__)


class InventoryAdjuster(Protocol):
    async def decrease_stock(self, product_id: UUID, quantity: int, variant_sku: str | None = None) -> None: ...

    async def increase_stock(self, product_id: UUID, quantity: int, variant_sku: str | None = None) -> None: ...

    async def increment_sold(self, product_id: UUID, quantity: int) -> None: ...


class SqlInventory:
    """Stock adjustments against the catalog tables.

    Every change is a single guarded ``UPDATE``; statements run inside the
    caller's transaction and are committed by the caller.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _stock_update(self, product_id: UUID, variant_sku: str | None, delta: int, *, guard: bool):
        if variant_sku:
            stmt = update(ProductVariant).where(
                ProductVariant.product_id == product_id,
                ProductVariant.sku == variant_sku,
            )
            column = ProductVariant.stock_quantity
        else:
            stmt = update(Product).where(Product.id == product_id)
            column = Product.stock_quantity
        if guard:
            stmt = stmt.where(column >= -delta)
        return stmt.values(stock_quantity=column + delta).execution_options(synchronize_session=False)

    async def _current_stock(self, product_id: UUID, variant_sku: str | None) -> int | None:
        if variant_sku:
            stmt = select(ProductVariant.stock_quantity).where(
                ProductVariant.product_id == product_id, ProductVariant.sku == variant_sku
            )
        else:
            stmt = select(Product.stock_quantity).where(Product.id == product_id)
        value = (await self.session.execute(stmt)).scalar_one_or_none()
        return None if value is None else int(value)

    async def decrease_stock(self, product_id: UUID, quantity: int, variant_sku: str | None = None) -> None:
        quantity = int(quantity)
        for attempt in (1, 2):
            result = await self.session.execute(self._stock_update(product_id, variant_sku, -quantity, guard=True))
            if result.rowcount:
                return
            available = await self._current_stock(product_id, variant_sku)
            if available is None:
                raise NotFoundError("Product not found")
            if available < quantity:
                break
            logger.info(
                "stock_decrement_conflict",
                extra={"product_id": product_id, "variant_sku": variant_sku, "attempt": attempt},
            )
        raise InsufficientStockError("Insufficient stock")

    async def increase_stock(self, product_id: UUID, quantity: int, variant_sku: str | None = None) -> None:
        result = await self.session.execute(self._stock_update(product_id, variant_sku, int(quantity), guard=False))
        if not result.rowcount:
            raise NotFoundError("Product not found")

    async def increment_sold(self, product_id: UUID, quantity: int) -> None:
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(total_sold=Product.total_sold + int(quantity))
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise NotFoundError("Product not found")
