import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from storefront.core.errors import NotFoundError
from storefront.models.ops import ShipmentEvent
from storefront.models.order import OrderStatus, ReturnStatus
from storefront.services import order as order_service
from storefront.services import shipments
from storefront.services.shipments import TrackingEvent


async def _dispatched(session, place_order, inventory, now, waybill="WB1001"):
    order = await place_order(session)
    return await order_service.update_fulfillment_status(
        session, order, status=OrderStatus.processing, tracking_number=waybill, inventory=inventory, now=now
    )


def test_courier_events_drive_the_order(session_factory, place_order, fake_inventory, now) -> None:
    inventory = fake_inventory()

    async def run():
        async with session_factory() as session:
            order = await _dispatched(session, place_order, inventory, now)
            steps = []
            for offset, event in enumerate(
                [TrackingEvent.picked, TrackingEvent.in_transit, TrackingEvent.out_for_delivery, TrackingEvent.delivered]
            ):
                record = await shipments.handle_tracking_event(
                    session,
                    waybill="WB1001",
                    event=event,
                    location="Pune hub",
                    courier="Delhivery",
                    inventory=inventory,
                    now=now + timedelta(hours=offset),
                )
                steps.append((record.event, record.applied))
            return await order_service.get_order(session, order.id), steps

    order, steps = asyncio.run(run())
    assert steps == [("picked", True), ("in_transit", False), ("out_for_delivery", False), ("delivered", True)]
    assert order.status == OrderStatus.delivered
    assert order.last_tracking_event == "delivered"
    assert order.courier == "Delhivery"
    assert order.status_history[-1].note == "Shipment delivered at Pune hub"
    assert len(inventory.sold) == 1


def test_out_of_order_events_are_recorded_not_applied(session_factory, place_order, fake_inventory, now) -> None:
    inventory = fake_inventory()

    async def run():
        async with session_factory() as session:
            order = await _dispatched(session, place_order, inventory, now)
            delivered = await shipments.handle_tracking_event(
                session, waybill="WB1001", event=TrackingEvent.delivered, inventory=inventory, now=now
            )
            late_pickup = await shipments.handle_tracking_event(
                session, waybill="WB1001", event=TrackingEvent.picked, inventory=inventory, now=now
            )
            late_cancel = await shipments.handle_tracking_event(
                session, waybill="WB1001", event=TrackingEvent.cancelled, inventory=inventory, now=now
            )
            events = (
                await session.execute(select(ShipmentEvent).order_by(ShipmentEvent.received_at))
            ).scalars().all()
            return await order_service.get_order(session, order.id), delivered, late_pickup, late_cancel, events

    order, delivered, late_pickup, late_cancel, events = asyncio.run(run())
    assert delivered.applied is True
    assert late_pickup.applied is False
    assert late_pickup.note == "Ignored picked: order is already delivered"
    assert late_cancel.applied is False
    assert order.status == OrderStatus.delivered
    assert order.last_tracking_event == "cancelled"
    assert len(events) == 3


def test_courier_cancellation_restocks(session_factory, place_order, fake_inventory, now) -> None:
    inventory = fake_inventory()

    async def run():
        async with session_factory() as session:
            order = await _dispatched(session, place_order, inventory, now)
            await shipments.handle_tracking_event(
                session, waybill="WB1001", event=TrackingEvent.cancelled, inventory=inventory, now=now
            )
            return await order_service.get_order(session, order.id)

    order = asyncio.run(run())
    assert order.status == OrderStatus.cancelled
    assert order.cancellation_reason == "Shipment cancelled by courier"
    assert len(inventory.increased) == 1


def test_failed_courier_cancellation_is_not_marked_applied(session_factory, place_order, fake_inventory, now) -> None:
    class _CatalogDown(fake_inventory):
        async def increase_stock(self, product_id, quantity, variant_sku=None) -> None:
            raise RuntimeError("catalog unavailable")

    inventory = _CatalogDown()

    async def run():
        async with session_factory() as session:
            order = await _dispatched(session, place_order, inventory, now)
            order_id = order.id
            with pytest.raises(RuntimeError):
                await shipments.handle_tracking_event(
                    session, waybill="WB1001", event=TrackingEvent.cancelled, inventory=inventory, now=now
                )
            record = (await session.execute(select(ShipmentEvent))).scalar_one()
            return record, await order_service.get_order(session, order_id)

    record, order = asyncio.run(run())
    assert record.applied is False
    assert record.note == "Rejected cancelled: catalog unavailable"
    assert order.status == OrderStatus.processing
    assert order.last_tracking_event == "cancelled"

def test_courier_return_completes_the_return(session_factory, place_order, fake_inventory, now) -> None:
    inventory = fake_inventory()

    async def run():
        async with session_factory() as session:
            order = await _dispatched(session, place_order, inventory, now)
            await shipments.handle_tracking_event(
                session, waybill="WB1001", event=TrackingEvent.delivered, inventory=inventory, now=now
            )
            record = await shipments.handle_tracking_event(
                session,
                waybill="WB1001",
                event=TrackingEvent.returned,
                inventory=inventory,
                now=now + timedelta(days=20),
            )
            return await order_service.get_order(session, order.id), record

    order, record = asyncio.run(run())
    assert record.applied is True
    assert order.return_status == ReturnStatus.completed
    assert order.is_returned is True


def test_return_event_before_delivery_is_ignored(session_factory, place_order, fake_inventory, now) -> None:
    inventory = fake_inventory()

    async def run():
        async with session_factory() as session:
            await _dispatched(session, place_order, inventory, now)
            return await shipments.handle_tracking_event(
                session, waybill="WB1001", event=TrackingEvent.returned, inventory=inventory, now=now
            )

    record = asyncio.run(run())
    assert record.applied is False
    assert record.note == "Ignored returned: order is processing, not delivered"


def test_unknown_waybill(session_factory, now) -> None:
    async def run():
        async with session_factory() as session:
            await shipments.handle_tracking_event(session, waybill="NOPE", event=TrackingEvent.picked, now=now)

    with pytest.raises(NotFoundError):
        asyncio.run(run())
