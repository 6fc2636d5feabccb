import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.core.errors import EligibilityError, EligibilityReason
from storefront.models.coupon import Coupon
from storefront.services import coupon_ledger
from storefront.services.coupon_ledger import CouponStatus


def test_commit_usage_bumps_both_counters(session_factory, make_coupon, now) -> None:
    user_id = uuid.uuid4()
    order_id = uuid.uuid4()

    async def run():
        async with session_factory() as session:
            coupon = await make_coupon(session, max_usage_per_user=3)
            await coupon_ledger.commit_usage(
                session, coupon=coupon, user_id=user_id, order_id=order_id, discount_amount=Decimal("120"), now=now
            )
            await session.commit()
            summary = await coupon_ledger.query_usage(session, coupon=coupon, user_id=user_id)
            return coupon, summary

    coupon, summary = asyncio.run(run())
    assert coupon.usage_count == 1
    assert summary.used_count == 1
    assert summary.remaining == 2
    assert summary.last_used_at == now
    assert [entry.order_id for entry in summary.history] == [order_id]
    assert summary.history[0].discount_amount == Decimal("120.00")


def test_per_user_cap_is_enforced_at_commit(session_factory, make_coupon, now) -> None:
    user_id = uuid.uuid4()

    async def run():
        async with session_factory() as session:
            coupon = await make_coupon(session, max_usage_per_user=1)
            coupon_id = coupon.id
            await coupon_ledger.commit_usage(
                session, coupon=coupon, user_id=user_id, order_id=uuid.uuid4(), discount_amount=Decimal("10"), now=now
            )
            await session.commit()
            with pytest.raises(EligibilityError) as exc:
                await coupon_ledger.commit_usage(
                    session,
                    coupon=coupon,
                    user_id=user_id,
                    order_id=uuid.uuid4(),
                    discount_amount=Decimal("10"),
                    now=now,
                )
            await session.rollback()
            assert exc.value.reason == EligibilityReason.user_limit_reached
            return await coupon_ledger.user_used_count(session, coupon_id=coupon_id, user_id=user_id)

    assert asyncio.run(run()) == 1


def test_global_cap_is_never_exceeded(session_factory, make_coupon, now) -> None:
    async def run():
        async with session_factory() as session:
            coupon_id = (await make_coupon(session, max_usage_limit=2, max_usage_per_user=None)).id
        failures = 0
        for _ in range(4):
            async with session_factory() as session:
                coupon = await session.get(Coupon, coupon_id)
                try:
                    await coupon_ledger.commit_usage(
                        session,
                        coupon=coupon,
                        user_id=uuid.uuid4(),
                        order_id=uuid.uuid4(),
                        discount_amount=Decimal("5"),
                        now=now,
                    )
                    await session.commit()
                except EligibilityError as exc:
                    await session.rollback()
                    assert exc.reason == EligibilityReason.global_limit_reached
                    failures += 1
        async with session_factory() as session:
            coupon = await session.get(Coupon, coupon_id)
            return coupon.usage_count, failures

    usage_count, failures = asyncio.run(run())
    assert usage_count == 2
    assert failures == 2


def test_release_usage_restores_counters(session_factory, make_coupon, now) -> None:
    user_id = uuid.uuid4()
    order_id = uuid.uuid4()

    async def run():
        async with session_factory() as session:
            coupon = await make_coupon(session)
            await coupon_ledger.commit_usage(
                session, coupon=coupon, user_id=user_id, order_id=order_id, discount_amount=Decimal("50"), now=now
            )
            await session.commit()
            released = await coupon_ledger.release_usage(
                session, coupon=coupon, user_id=user_id, order_id=order_id, now=now
            )
            await session.commit()
            again = await coupon_ledger.release_usage(session, coupon=coupon, user_id=user_id, order_id=order_id)
            summary = await coupon_ledger.query_usage(session, coupon=coupon, user_id=user_id)
            return coupon, released, again, summary

    coupon, released, again, summary = asyncio.run(run())
    assert released is True
    assert again is False
    assert coupon.usage_count == 0
    assert summary.used_count == 0
    assert summary.history[0].reversed_at == now


def test_query_usage_for_unlimited_coupon(session_factory, make_coupon) -> None:
    async def run():
        async with session_factory() as session:
            coupon = await make_coupon(session, max_usage_per_user=None)
            return await coupon_ledger.query_usage(session, coupon=coupon, user_id=uuid.uuid4())

    summary = asyncio.run(run())
    assert summary.used_count == 0
    assert summary.unlimited
    assert summary.history == []


def test_coupon_status(session_factory, make_coupon, now) -> None:
    async def run():
        async with session_factory() as session:
            active = await make_coupon(session, code="ACTIVE1")
            upcoming = await make_coupon(session, code="LATER1", valid_from=now + timedelta(days=2))
            expired = await make_coupon(
                session, code="OLD1", valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1)
            )
            inactive = await make_coupon(session, code="OFF1", is_active=False)
            return [coupon_ledger.coupon_status(c, now) for c in (active, upcoming, expired, inactive)]

    assert asyncio.run(run()) == [
        CouponStatus.active,
        CouponStatus.upcoming,
        CouponStatus.expired,
        CouponStatus.inactive,
    ]


def test_coupon_analytics(session_factory, make_coupon, now) -> None:
    loyal = uuid.uuid4()
    casual = uuid.uuid4()

    async def run():
        async with session_factory() as session:
            coupon = await make_coupon(session, max_usage_limit=10, max_usage_per_user=None)
            for user_id, amount in ((loyal, "100"), (loyal, "60"), (casual, "20")):
                await coupon_ledger.commit_usage(
                    session,
                    coupon=coupon,
                    user_id=user_id,
                    order_id=uuid.uuid4(),
                    discount_amount=Decimal(amount),
                    now=now,
                )
            await session.commit()
            return await coupon_ledger.coupon_analytics(session, coupon=coupon)

    analytics = asyncio.run(run())
    assert analytics.total_usage == 3
    assert analytics.unique_users == 2
    assert analytics.orders_with_coupon == 3
    assert analytics.total_discount_given == Decimal("180.00")
    assert analytics.average_discount == Decimal("60.00")
    assert analytics.usage_percentage == Decimal("30.00")
    assert analytics.top_users[0].user_id == loyal
    assert analytics.top_users[0].used_count == 2
