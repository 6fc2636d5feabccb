import asyncio
from datetime import date, datetime, timedelta, timezone

from storefront.services import order_sequence


def test_format_order_number() -> None:
    assert order_sequence.format_order_number(date(2026, 3, 10), 7, prefix="ORD", width=4) == "ORD202603100007"


def test_local_day_uses_configured_timezone() -> None:
    late_utc = datetime(2026, 3, 10, 20, 0, tzinfo=timezone.utc)
    assert order_sequence.local_day(late_utc, "Asia/Kolkata") == date(2026, 3, 11)
    assert order_sequence.local_day(late_utc, "UTC") == date(2026, 3, 10)


def test_sequence_increments_per_day(session_factory) -> None:
    day = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)

    async def run():
        numbers = []
        async with session_factory() as session:
            for offset in (0, 0, 0, 1):
                numbers.append(await order_sequence.next_order_number(session, now=day + timedelta(days=offset)))
            await session.commit()
        async with session_factory() as session:
            numbers.append(await order_sequence.next_order_number(session, now=day))
            await session.commit()
        return numbers

    assert asyncio.run(run()) == [
        "ORD202603100001",
        "ORD202603100002",
        "ORD202603100003",
        "ORD202603110001",
        "ORD202603100004",
    ]
