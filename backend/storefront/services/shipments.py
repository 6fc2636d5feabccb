from __future__ import annotations

import enum
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import utcnow
from storefront.core.errors import CommerceError, NotFoundError
from storefront.models.ops import ShipmentEvent
from storefront.models.order import Order, OrderStatus, ReturnStatus
from storefront.services import order as order_service
from storefront.services.inventory import InventoryAdjuster
from storefront.services.notifications import Notifier

logger = logging.getLogger(__name__)


class TrackingEvent(str, enum.Enum):
    picked = "picked"
    in_transit = "in_transit"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"
    cancelled = "cancelled"
    returned = "returned"
    delivery_failed = "delivery_failed"


# Events that only annotate tracking without moving the order.
INFORMATIONAL_EVENTS = {TrackingEvent.in_transit, TrackingEvent.out_for_delivery, TrackingEvent.delivery_failed}

_STATUS_RANK = {
    OrderStatus.pending: 0,
    OrderStatus.confirmed: 1,
    OrderStatus.processing: 2,
    OrderStatus.shipped: 3,
    OrderStatus.delivered: 4,
}

_EVENT_NOTES = {
    TrackingEvent.picked: "Shipment picked up by courier",
    TrackingEvent.in_transit: "Shipment in transit",
    TrackingEvent.out_for_delivery: "Out for delivery",
    TrackingEvent.delivered: "Shipment delivered",
    TrackingEvent.cancelled: "Shipment cancelled by courier",
    TrackingEvent.returned: "Shipment returned to seller",
    TrackingEvent.delivery_failed: "Delivery attempt failed",
}


async def get_order_by_waybill(session: AsyncSession, waybill: str) -> Order:
    result = await session.execute(select(Order).where(Order.tracking_number == (waybill or "").strip()))
    order = result.scalars().first()
    if not order:
        raise NotFoundError("No order found for waybill")
    return order


def _stale_reason(order: Order, event: TrackingEvent) -> str | None:
    current = OrderStatus(order.status)
    if event == TrackingEvent.picked:
        if current == OrderStatus.cancelled or _STATUS_RANK.get(current, 0) >= _STATUS_RANK[OrderStatus.shipped]:
            return f"order is already {current.value}"
    elif event == TrackingEvent.delivered:
        if current in {OrderStatus.delivered, OrderStatus.cancelled}:
            return f"order is already {current.value}"
    elif event == TrackingEvent.cancelled:
        if current in {OrderStatus.delivered, OrderStatus.cancelled}:
            return f"order is already {current.value}"
    elif event == TrackingEvent.returned:
        if current != OrderStatus.delivered:
            return f"order is {current.value}, not delivered"
        if order.return_status in {ReturnStatus.completed, ReturnStatus.rejected}:
            return f"return already {ReturnStatus(order.return_status).value}"
    return None


async def _apply(
    session: AsyncSession,
    order: Order,
    event: TrackingEvent,
    *,
    note: str,
    inventory: InventoryAdjuster | None,
    notifier: Notifier | None,
    now: datetime,
) -> Order:
    if event == TrackingEvent.picked:
        return await order_service.update_fulfillment_status(
            session, order, status=OrderStatus.shipped, note=note, inventory=inventory, notifier=notifier, now=now
        )
    if event == TrackingEvent.delivered:
        return await order_service.update_fulfillment_status(
            session, order, status=OrderStatus.delivered, note=note, inventory=inventory, notifier=notifier, now=now
        )
    if event == TrackingEvent.cancelled:
        return await order_service.cancel_order(
            session, order, reason=note, inventory=inventory, notifier=notifier, now=now
        )
    # returned: a courier-reported return skips the customer request and approval steps
    if order.return_status is None:
        order.is_returned = True
        order.return_requested_at = now
        order.return_reason = note
        order.return_status = ReturnStatus.approved
    elif order.return_status == ReturnStatus.requested:
        order = await order_service.update_return_status(session, order, status=ReturnStatus.approved, now=now)
    return await order_service.update_return_status(session, order, status=ReturnStatus.completed, note=note, now=now)


async def handle_tracking_event(
    session: AsyncSession,
    *,
    waybill: str,
    event: TrackingEvent,
    location: str | None = None,
    courier: str | None = None,
    payload: dict | None = None,
    inventory: InventoryAdjuster | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> ShipmentEvent:
    """Record a courier tracking event and feed it to the order lifecycle.

    Events that would move the order backwards are recorded but not applied;
    the order keeps its last-seen tracking event either way.
    """
    now = now or utcnow()
    event = TrackingEvent(event)
    order = await get_order_by_waybill(session, waybill)
    note = _EVENT_NOTES[event] + (f" at {location}" if location else "")

    record = ShipmentEvent(
        waybill=waybill,
        event=event.value,
        order_id=order.id,
        location=location,
        payload=payload,
        received_at=now,
        applied=False,
    )
    order.last_tracking_event = event.value
    if courier:
        order.courier = courier

    stale = None if event in INFORMATIONAL_EVENTS else _stale_reason(order, event)
    if event in INFORMATIONAL_EVENTS:
        record.note = note
    elif stale:
        record.note = f"Ignored {event.value}: {stale}"
        logger.warning(
            "shipment_event_stale",
            extra={"waybill": waybill, "event": event.value, "order_number": order.order_number, "reason": stale},
        )
    else:
        record.note = note

    session.add(record)
    session.add(order)
    await session.commit()
    record_id, order_number = record.id, order.order_number

    # The record only counts as applied once the lifecycle change has committed.
    if event not in INFORMATIONAL_EVENTS and not stale:
        try:
            await _apply(session, order, event, note=note, inventory=inventory, notifier=notifier, now=now)
        except Exception as exc:
            await session.rollback()
            error = exc.message if isinstance(exc, CommerceError) else str(exc)
            record = await session.get(ShipmentEvent, record_id, populate_existing=True)
            record.note = f"Rejected {event.value}: {error}"
            await session.commit()
            logger.warning(
                "shipment_event_rejected",
                extra={"waybill": waybill, "event": event.value, "order_number": order_number, "error": error},
            )
            raise
        record = await session.get(ShipmentEvent, record_id, populate_existing=True)
        record.applied = True
        await session.commit()

    await session.refresh(record)
    logger.info(
        "shipment_event_received",
        extra={"waybill": waybill, "event": event.value, "order_number": order_number, "applied": record.applied},
    )
    return record
