from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import ensure_utc, utcnow
from storefront.core.errors import EligibilityError, EligibilityReason
from storefront.db.dialect import conflict_insert
from storefront.models.coupon import Coupon, CouponUsageRecord, CouponUserUsage
from storefront.services.pricing import quantize_money

logger = logging.getLogger(__name__)

TOP_USERS_LIMIT = 5


class CouponStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    expired = "expired"
    upcoming = "upcoming"


@dataclass(frozen=True)
class UsageHistoryEntry:
    order_id: UUID
    discount_amount: Decimal
    used_at: datetime
    reversed_at: datetime | None = None


@dataclass(frozen=True)
class UsageSummary:
    used_count: int
    remaining: int | None
    last_used_at: datetime | None
    history: list[UsageHistoryEntry]

    @property
    def unlimited(self) -> bool:
        return self.remaining is None


@dataclass(frozen=True)
class TopUser:
    user_id: UUID
    used_count: int
    last_used_at: datetime | None


@dataclass(frozen=True)
class CouponAnalytics:
    total_usage: int
    unique_users: int
    orders_with_coupon: int
    total_discount_given: Decimal
    average_discount: Decimal
    usage_percentage: Decimal | None
    top_users: list[TopUser]


def coupon_status(coupon: Coupon, now: datetime | None = None) -> CouponStatus:
    now = ensure_utc(now) if now is not None else utcnow()
    if not coupon.is_active:
        return CouponStatus.inactive
    if now >= ensure_utc(coupon.valid_until):
        return CouponStatus.expired
    if coupon.max_usage_limit is not None and int(coupon.usage_count or 0) >= coupon.max_usage_limit:
        return CouponStatus.expired
    if now < ensure_utc(coupon.valid_from):
        return CouponStatus.upcoming
    return CouponStatus.active


def usage_percentage(coupon: Coupon) -> Decimal | None:
    """Share of the global cap already consumed; ``None`` means unlimited."""
    if not coupon.max_usage_limit:
        return None
    used = Decimal(int(coupon.usage_count or 0))
    return quantize_money(used * Decimal("100") / Decimal(coupon.max_usage_limit))


async def get_user_usage(session: AsyncSession, *, coupon_id: UUID, user_id: UUID) -> CouponUserUsage | None:
    result = await session.execute(
        select(CouponUserUsage)
        .where(CouponUserUsage.coupon_id == coupon_id, CouponUserUsage.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def user_used_count(session: AsyncSession, *, coupon_id: UUID, user_id: UUID) -> int:
    usage = await get_user_usage(session, coupon_id=coupon_id, user_id=user_id)
    return int(usage.used_count or 0) if usage else 0


async def _increment_global(session: AsyncSession, coupon: Coupon) -> None:
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.max_usage_limit.is_(None), Coupon.usage_count < Coupon.max_usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        raise EligibilityError(EligibilityReason.global_limit_reached, "Coupon usage limit reached")


async def _increment_user(session: AsyncSession, coupon: Coupon, *, user_id: UUID, now: datetime) -> None:
    insert = conflict_insert(session)
    await session.execute(
        insert(CouponUserUsage)
        .values(coupon_id=coupon.id, user_id=user_id, used_count=0)
        .on_conflict_do_nothing(index_elements=["coupon_id", "user_id"])
    )

    cap = coupon.max_usage_per_user
    conditions = [CouponUserUsage.coupon_id == coupon.id, CouponUserUsage.user_id == user_id]
    if cap is not None:
        conditions.append(CouponUserUsage.used_count < cap)
    result = await session.execute(
        update(CouponUserUsage)
        .where(*conditions)
        .values(used_count=CouponUserUsage.used_count + 1, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise EligibilityError(
            EligibilityReason.user_limit_reached,
            f"You have already used this coupon {cap} time(s)",
        )


async def commit_usage(
    session: AsyncSession,
    *,
    coupon: Coupon,
    user_id: UUID,
    order_id: UUID,
    discount_amount: Decimal,
    now: datetime | None = None,
) -> CouponUsageRecord:
    """Consume one use of ``coupon`` for ``user_id`` against ``order_id``.

    Both counters are bumped by guarded ``UPDATE`` statements so concurrent
    commits can never push them past their caps. The caller owns the
    transaction: this only flushes, and a raised ``EligibilityError`` means the
    caller must roll back. Calling twice for the same order consumes twice.
    """
    now = now or utcnow()
    await _increment_global(session, coupon)
    await _increment_user(session, coupon, user_id=user_id, now=now)

    record = CouponUsageRecord(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        discount_amount=quantize_money(Decimal(discount_amount)),
        used_at=now,
    )
    session.add(record)
    await session.flush()
    await session.refresh(coupon, attribute_names=["usage_count"])
    logger.info(
        "coupon_usage_committed",
        extra={
            "coupon_code": coupon.code,
            "user_id": user_id,
            "order_id": order_id,
            "discount_amount": record.discount_amount,
            "usage_count": coupon.usage_count,
        },
    )
    return record


async def release_usage(
    session: AsyncSession,
    *,
    coupon: Coupon,
    user_id: UUID,
    order_id: UUID,
    now: datetime | None = None,
) -> bool:
    """Reverse the usage recorded for ``order_id``; returns False when nothing was committed."""
    now = now or utcnow()
    record = (
        await session.execute(
            select(CouponUsageRecord).where(
                CouponUsageRecord.coupon_id == coupon.id,
                CouponUsageRecord.order_id == order_id,
                CouponUsageRecord.reversed_at.is_(None),
            )
        )
    ).scalars().first()
    if record is None:
        return False

    record.reversed_at = now
    await session.execute(
        update(Coupon)
        .where(Coupon.id == coupon.id, Coupon.usage_count > 0)
        .values(usage_count=Coupon.usage_count - 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(CouponUserUsage)
        .where(
            CouponUserUsage.coupon_id == coupon.id,
            CouponUserUsage.user_id == user_id,
            CouponUserUsage.used_count > 0,
        )
        .values(used_count=CouponUserUsage.used_count - 1)
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    await session.refresh(coupon, attribute_names=["usage_count"])
    logger.info("coupon_usage_released", extra={"coupon_code": coupon.code, "user_id": user_id, "order_id": order_id})
    return True


async def query_usage(session: AsyncSession, *, coupon: Coupon, user_id: UUID) -> UsageSummary:
    usage = await get_user_usage(session, coupon_id=coupon.id, user_id=user_id)
    records = (
        await session.execute(
            select(CouponUsageRecord)
            .where(CouponUsageRecord.coupon_id == coupon.id, CouponUsageRecord.user_id == user_id)
            .order_by(CouponUsageRecord.used_at)
        )
    ).scalars().all()

    used = int(usage.used_count or 0) if usage else 0
    cap = coupon.max_usage_per_user
    remaining = None if cap is None else max(0, cap - used)
    return UsageSummary(
        used_count=used,
        remaining=remaining,
        last_used_at=ensure_utc(usage.last_used_at) if usage else None,
        history=[
            UsageHistoryEntry(
                order_id=r.order_id,
                discount_amount=Decimal(r.discount_amount),
                used_at=ensure_utc(r.used_at),
                reversed_at=ensure_utc(r.reversed_at),
            )
            for r in records
        ],
    )


async def coupon_analytics(session: AsyncSession, *, coupon: Coupon) -> CouponAnalytics:
    live = (CouponUsageRecord.coupon_id == coupon.id, CouponUsageRecord.reversed_at.is_(None))
    orders_with_coupon, total_discount = (
        await session.execute(
            select(
                func.count(func.distinct(CouponUsageRecord.order_id)),
                func.coalesce(func.sum(CouponUsageRecord.discount_amount), 0),
            ).where(*live)
        )
    ).one()
    live_uses = int(
        (await session.execute(select(func.count()).select_from(CouponUsageRecord).where(*live))).scalar_one()
    )
    unique_users = int(
        (
            await session.execute(
                select(func.count())
                .select_from(CouponUserUsage)
                .where(CouponUserUsage.coupon_id == coupon.id, CouponUserUsage.used_count > 0)
            )
        ).scalar_one()
    )
    top_rows = (
        await session.execute(
            select(CouponUserUsage)
            .where(CouponUserUsage.coupon_id == coupon.id, CouponUserUsage.used_count > 0)
            .order_by(CouponUserUsage.used_count.desc(), CouponUserUsage.last_used_at.desc())
            .limit(TOP_USERS_LIMIT)
        )
    ).scalars().all()

    total_discount = quantize_money(Decimal(total_discount or 0))
    average = quantize_money(total_discount / live_uses) if live_uses else Decimal("0.00")
    return CouponAnalytics(
        total_usage=int(coupon.usage_count or 0),
        unique_users=unique_users,
        orders_with_coupon=int(orders_with_coupon or 0),
        total_discount_given=total_discount,
        average_discount=average,
        usage_percentage=usage_percentage(coupon),
        top_users=[
            TopUser(user_id=row.user_id, used_count=int(row.used_count), last_used_at=ensure_utc(row.last_used_at))
            for row in top_rows
        ],
    )
