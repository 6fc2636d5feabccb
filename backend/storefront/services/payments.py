from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import metrics
from storefront.core.clock import utcnow
from storefront.core.config import settings
from storefront.core.errors import InvalidTransitionError, ValidationError
from storefront.core.signatures import verify_gateway_payment_signature
from storefront.models.order import Order, OrderItemStatus, OrderStatus, PaymentStatus
from storefront.services import notifications
from storefront.services.notifications import Notifier
from storefront.services.order import append_history, save_order, sync_item_statuses
from storefront.services.pricing import quantize_money

logger = logging.getLogger(__name__)


async def confirm_payment(
    session: AsyncSession,
    order: Order,
    *,
    gateway_payment_id: str,
    gateway_order_id: str | None = None,
    gateway_signature: str | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Order:
    """Mark the payment completed and confirm a pending order.

    Replayed confirmations for an already-completed payment are ignored. When a
    gateway key secret is configured the checkout signature must match
    ``gateway_order_id|gateway_payment_id``.
    """
    now = now or utcnow()
    key_secret = settings.payment_gateway_key_secret
    if key_secret and not verify_gateway_payment_signature(
        key_secret,
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
        signature=gateway_signature,
    ):
        logger.warning(
            "payment_signature_invalid",
            extra={"order_number": order.order_number, "gateway_payment_id": gateway_payment_id},
        )
        raise ValidationError("Invalid payment signature", code="invalid_payment_signature")
    payment_status = PaymentStatus(order.payment_status)
    if payment_status == PaymentStatus.completed:
        logger.info(
            "payment_confirmation_replayed",
            extra={"order_number": order.order_number, "gateway_payment_id": gateway_payment_id},
        )
        return order
    current = OrderStatus(order.status)
    if current == OrderStatus.cancelled or payment_status == PaymentStatus.refunded:
        raise InvalidTransitionError(
            f"Cannot confirm payment: order is {current.value} and payment is {payment_status.value}",
            current_status=current.value,
        )

    order.payment_status = PaymentStatus.completed
    order.gateway_payment_id = gateway_payment_id
    if gateway_order_id:
        order.gateway_order_id = gateway_order_id
    if gateway_signature:
        order.gateway_signature = gateway_signature
    order.payment_completed_at = now
    confirmed = current == OrderStatus.pending
    if confirmed:
        order.status = OrderStatus.confirmed
        sync_item_statuses(order, OrderItemStatus.confirmed)
        append_history(order, OrderStatus.confirmed.value, "Payment confirmed", now)
    await save_order(session, order)
    logger.info(
        "payment_confirmed",
        extra={"order_number": order.order_number, "gateway_payment_id": gateway_payment_id, "amount": order.total_amount},
    )

    if confirmed:
        notifier = notifier or notifications.get_notifier()
        await notifications.deliver("order_confirmed", notifier.order_confirmed(order))
    return order


async def record_payment_failure(
    session: AsyncSession, order: Order, *, reason: str, now: datetime | None = None
) -> Order:
    now = now or utcnow()
    payment_status = PaymentStatus(order.payment_status)
    if payment_status in {PaymentStatus.completed, PaymentStatus.refunded}:
        raise InvalidTransitionError(
            f"Cannot record a failure: payment is already {payment_status.value}",
            current_status=OrderStatus(order.status).value,
        )
    order.payment_status = PaymentStatus.failed
    entry = f"[{now.isoformat()}] Payment failed: {reason}"
    order.admin_notes = f"{order.admin_notes}\n{entry}" if order.admin_notes else entry
    await save_order(session, order)
    metrics.record_payment_failure()
    logger.warning("payment_failed", extra={"order_number": order.order_number, "reason": reason})
    return order


async def refund_payment(
    session: AsyncSession, order: Order, *, amount: Decimal | None = None, now: datetime | None = None
) -> Order:
    now = now or utcnow()
    payment_status = PaymentStatus(order.payment_status)
    if payment_status != PaymentStatus.completed:
        raise InvalidTransitionError(
            f"Cannot refund: payment is {payment_status.value}, only completed payments can be refunded",
            current_status=OrderStatus(order.status).value,
        )
    total = Decimal(order.total_amount)
    refund = quantize_money(Decimal(amount)) if amount is not None else total
    if refund <= 0 or refund > total:
        raise ValidationError("Refund amount must be positive and cannot exceed the order total")

    order.payment_status = PaymentStatus.refunded
    order.refund_amount = refund
    order.refunded_at = now
    await save_order(session, order)
    logger.info("payment_refunded", extra={"order_number": order.order_number, "refund_amount": refund})
    return order
