from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import ensure_utc, utcnow
from storefront.core.config import settings
from storefront.core.errors import ConcurrencyError
from storefront.db.dialect import conflict_insert
from storefront.models.order import OrderSequence


def local_day(now: datetime, tz_name: str | None = None) -> date:
    return ensure_utc(now).astimezone(ZoneInfo(tz_name or settings.order_timezone)).date()


def format_order_number(day: date, sequence: int, *, prefix: str | None = None, width: int | None = None) -> str:
    prefix = settings.order_id_prefix if prefix is None else prefix
    width = settings.order_sequence_width if width is None else width
    return f"{prefix}{day:%Y%m%d}{sequence:0{width}d}"


async def next_sequence(session: AsyncSession, day: date) -> int:
    insert = conflict_insert(session)
    await session.execute(insert(OrderSequence).values(day=day, value=0).on_conflict_do_nothing(index_elements=["day"]))
    result = await session.execute(
        update(OrderSequence)
        .where(OrderSequence.day == day)
        .values(value=OrderSequence.value + 1)
        .returning(OrderSequence.value)
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is None:
        raise ConcurrencyError("Could not allocate an order number")
    return int(value)


async def next_order_number(session: AsyncSession, *, now: datetime | None = None) -> str:
    """Allocate the next order number for the local calendar day of ``now``."""
    day = local_day(now or utcnow())
    return format_order_number(day, await next_sequence(session, day))
