import asyncio
import logging
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import Update

from storefront.core.errors import InsufficientStockError, NotFoundError
from storefront.models.catalog import Product, ProductVariant
from storefront.services.inventory import SqlInventory


def test_decrease_and_increase_stock(session_factory, make_product) -> None:
    async def run():
        async with session_factory() as session:
            product = await make_product(session, stock=5)
            inventory = SqlInventory(session)
            await inventory.decrease_stock(product.id, 3)
            await inventory.increase_stock(product.id, 1)
            await inventory.increment_sold(product.id, 3)
            await session.commit()
            return await session.get(Product, product.id, populate_existing=True)

    product = asyncio.run(run())
    assert product.stock_quantity == 3
    assert product.total_sold == 3


def test_decrease_stock_refuses_to_go_negative(session_factory, make_product) -> None:
    async def run():
        async with session_factory() as session:
            product = await make_product(session, stock=2)
            product_id = product.id
            with pytest.raises(InsufficientStockError):
                await SqlInventory(session).decrease_stock(product_id, 3)
            await session.rollback()
            return await session.get(Product, product_id, populate_existing=True)

    assert asyncio.run(run()).stock_quantity == 2


def test_variant_stock_is_tracked_separately(session_factory, make_product) -> None:
    async def run():
        async with session_factory() as session:
            product = await make_product(session, stock=50, variants=[("RED-M", 2, None)])
            inventory = SqlInventory(session)
            await inventory.decrease_stock(product.id, 2, "RED-M")
            with pytest.raises(InsufficientStockError):
                await inventory.decrease_stock(product.id, 1, "RED-M")
            await session.commit()
            variant = (
                await session.execute(
                    ProductVariant.__table__.select().where(ProductVariant.product_id == product.id)
                )
            ).one()
            base = await session.get(Product, product.id, populate_existing=True)
            return variant.stock_quantity, base.stock_quantity

    variant_stock, base_stock = asyncio.run(run())
    assert variant_stock == 0
    assert base_stock == 50


def test_unknown_product(session_factory) -> None:
    async def run():
        async with session_factory() as session:
            inventory = SqlInventory(session)
            with pytest.raises(NotFoundError):
                await inventory.decrease_stock(uuid.uuid4(), 1)
            with pytest.raises(NotFoundError):
                await inventory.increase_stock(uuid.uuid4(), 1)
            with pytest.raises(NotFoundError):
                await inventory.increment_sold(uuid.uuid4(), 1)

    asyncio.run(run())


class _ContendedSession:
    """Reports the next ``conflicts`` stock UPDATEs as having matched no rows."""

    def __init__(self, session, *, conflicts: int) -> None:
        self._session = session
        self.conflicts = conflicts
        self.updates = 0

    async def execute(self, statement, *args, **kwargs):
        if isinstance(statement, Update):
            self.updates += 1
            if self.conflicts:
                self.conflicts -= 1
                return SimpleNamespace(rowcount=0)
        return await self._session.execute(statement, *args, **kwargs)


def test_decrease_stock_retries_once_after_conflict(session_factory, make_product, caplog) -> None:
    caplog.set_level(logging.INFO, logger="storefront.services.inventory")

    async def run():
        async with session_factory() as session:
            product = await make_product(session, stock=5)
            contended = _ContendedSession(session, conflicts=1)
            await SqlInventory(contended).decrease_stock(product.id, 3)
            await session.commit()
            product = await session.get(Product, product.id, populate_existing=True)
            return product.stock_quantity, contended.updates

    stock, updates = asyncio.run(run())
    assert stock == 2
    assert updates == 2
    conflicts = [r for r in caplog.records if r.getMessage() == "stock_decrement_conflict"]
    assert [r.attempt for r in conflicts] == [1]


def test_decrease_stock_gives_up_after_second_conflict(session_factory, make_product) -> None:
    async def run():
        async with session_factory() as session:
            product = await make_product(session, stock=5)
            product_id = product.id
            contended = _ContendedSession(session, conflicts=2)
            with pytest.raises(InsufficientStockError):
                await SqlInventory(contended).decrease_stock(product_id, 3)
            await session.rollback()
            product = await session.get(Product, product_id, populate_existing=True)
            return product.stock_quantity, contended.updates

    stock, updates = asyncio.run(run())
    assert stock == 5
    assert updates == 2
