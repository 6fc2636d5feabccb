from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import metrics
from storefront.core.clock import ensure_utc, utcnow
from storefront.core.config import settings
from storefront.core.errors import (
    EligibilityError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ReturnWindowExpiredError,
    ValidationError,
)
from storefront.core.identity import Actor
from storefront.models.catalog import Product
from storefront.models.coupon import DiscountType
from storefront.models.ops import SideEffectKind
from storefront.models.order import (
    CouponSnapshot,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    OrderStatusHistory,
    PaymentStatus,
    ReturnStatus,
)
from storefront.schemas.order import OrderCreate
from storefront.services import coupon_ledger, coupon_rules, notifications, side_effects
from storefront.services.coupon_rules import CartLine, CouponRules
from storefront.services.coupons import get_coupon_by_code
from storefront.services.inventory import InventoryAdjuster, SqlInventory
from storefront.services.notifications import Notifier
from storefront.services.order_sequence import next_order_number
from storefront.services.pricing import OrderTotals, PricedLine, compute_order_totals, line_shipping, quantize_money

logger = logging.getLogger(__name__)


# Fulfillment only moves forward; cancellation has its own entry point.
FULFILLMENT_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.pending: {OrderStatus.confirmed, OrderStatus.processing, OrderStatus.shipped, OrderStatus.delivered},
    OrderStatus.confirmed: {OrderStatus.processing, OrderStatus.shipped, OrderStatus.delivered},
    OrderStatus.processing: {OrderStatus.shipped, OrderStatus.delivered},
    OrderStatus.shipped: {OrderStatus.delivered},
    OrderStatus.delivered: set(),
    OrderStatus.cancelled: set(),
}

CANCELLABLE_STATUSES = {OrderStatus.pending, OrderStatus.confirmed, OrderStatus.processing, OrderStatus.shipped}

RETURN_TRANSITIONS: dict[ReturnStatus, set[ReturnStatus]] = {
    ReturnStatus.requested: {ReturnStatus.approved, ReturnStatus.rejected},
    ReturnStatus.approved: {ReturnStatus.completed},
    ReturnStatus.rejected: set(),
    ReturnStatus.completed: set(),
}

ITEM_STATUS_FOR_ORDER: dict[OrderStatus, OrderItemStatus] = {
    OrderStatus.confirmed: OrderItemStatus.confirmed,
    OrderStatus.processing: OrderItemStatus.packed,
    OrderStatus.shipped: OrderItemStatus.shipped,
    OrderStatus.delivered: OrderItemStatus.delivered,
    OrderStatus.cancelled: OrderItemStatus.cancelled,
}

ITEM_FLOW = [
    OrderItemStatus.pending,
    OrderItemStatus.confirmed,
    OrderItemStatus.packed,
    OrderItemStatus.shipped,
    OrderItemStatus.delivered,
]

_CLOSED_ITEM_STATUSES = {OrderItemStatus.cancelled, OrderItemStatus.returned}


def _transition_error(current: OrderStatus, target: OrderStatus) -> InvalidTransitionError:
    if current in {OrderStatus.delivered, OrderStatus.cancelled}:
        why = f"{current.value} orders cannot change status"
    elif target == current:
        why = f"order is already {current.value}"
    else:
        why = "order status can only move forward"
    return InvalidTransitionError(
        f"Cannot move order from {current.value} to {target.value}: {why}",
        current_status=current.value,
    )


def append_history(order: Order, status: str, note: str | None, now: datetime) -> None:
    order.status_history.append(
        OrderStatusHistory(position=len(order.status_history), status=status, note=note, created_at=now)
    )


def sync_item_statuses(order: Order, status: OrderItemStatus) -> None:
    for item in order.items:
        if item.status not in _CLOSED_ITEM_STATUSES:
            item.status = status


def _billable_items(order: Order) -> list[OrderItem]:
    return [item for item in order.items if item.status != OrderItemStatus.cancelled]


def _priced_lines(order: Order) -> list[PricedLine]:
    return [
        PricedLine(
            unit_price=Decimal(item.unit_price),
            quantity=int(item.quantity),
            shipping_charge=Decimal(item.shipping_charge or 0),
            free_shipping=bool(item.free_shipping),
        )
        for item in _billable_items(order)
    ]


def apply_totals(order: Order) -> OrderTotals:
    """Recompute and store every money field of ``order`` from its lines and coupon snapshot."""
    snapshot = order.applied_coupon
    totals = compute_order_totals(
        _priced_lines(order),
        discount=snapshot.discount_amount if snapshot else Decimal("0.00"),
        free_shipping=snapshot.free_shipping if snapshot else False,
        rounding=settings.money_rounding,
    )
    order.subtotal = totals.subtotal
    order.discount_amount = totals.discount
    order.shipping_charge = totals.shipping
    order.tax_amount = totals.tax
    order.total_amount = totals.total
    return totals


async def save_order(session: AsyncSession, order: Order) -> Order:
    session.add(order)
    await session.commit()
    await session.refresh(order)
    return order


async def get_order(session: AsyncSession, order_id: UUID) -> Order:
    result = await session.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found")
    return order


async def find_order_by_reference(session: AsyncSession, reference: str) -> Order:
    """Look an order up by its order number or the payment gateway's order id."""
    cleaned = (reference or "").strip()
    result = await session.execute(
        select(Order).where(or_(Order.order_number == cleaned, Order.gateway_order_id == cleaned))
    )
    order = result.scalars().first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def can_view(order: Order, actor: Actor) -> bool:
    if actor.is_admin or order.user_id == actor.user_id:
        return True
    return actor.is_vendor and any(item.seller_id == actor.user_id for item in order.items)


async def get_order_for_actor(session: AsyncSession, order_id: UUID, actor: Actor) -> Order:
    order = await get_order(session, order_id)
    if not can_view(order, actor):
        raise NotFoundError("Order not found")
    return order


async def _paginate(session: AsyncSession, filters: list, *, page: int, limit: int) -> tuple[list[Order], int]:
    page = max(1, int(page or 1))
    limit = max(1, min(100, int(limit or 10)))
    total = int((await session.execute(select(func.count()).select_from(Order).where(*filters))).scalar_one())
    result = await session.execute(
        select(Order).where(*filters).order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), total


async def list_user_orders(
    session: AsyncSession, *, user_id: UUID, status: OrderStatus | None = None, page: int = 1, limit: int = 10
) -> tuple[list[Order], int]:
    filters = [Order.user_id == user_id]
    if status is not None:
        filters.append(Order.status == status)
    return await _paginate(session, filters, page=page, limit=limit)


async def list_vendor_orders(
    session: AsyncSession, *, seller_id: UUID, status: OrderStatus | None = None, page: int = 1, limit: int = 10
) -> tuple[list[Order], int]:
    filters = [Order.id.in_(select(OrderItem.order_id).where(OrderItem.seller_id == seller_id))]
    if status is not None:
        filters.append(Order.status == status)
    return await _paginate(session, filters, page=page, limit=limit)


async def create_order(
    session: AsyncSession,
    *,
    user_id: UUID,
    payload: OrderCreate,
    inventory: InventoryAdjuster | None = None,
    now: datetime | None = None,
) -> Order:
    """Price the requested lines, take the stock and persist a pending order.

    Stock decrements and the order row share one transaction.
    """
    now = now or utcnow()
    inventory = inventory or SqlInventory(session)
    product_ids = {line.product_id for line in payload.items}
    products = {
        p.id: p for p in (await session.execute(select(Product).where(Product.id.in_(product_ids)))).scalars().all()
    }

    order = Order(
        user_id=user_id,
        status=OrderStatus.pending,
        payment_method=payload.payment_method,
        payment_status=PaymentStatus.pending,
        currency=settings.currency,
        shipping_address=payload.shipping_address.model_dump(),
        billing_address=(payload.billing_address or payload.shipping_address).model_dump(),
        customer_notes=payload.customer_notes,
        is_cancelled=False,
        is_returned=False,
        items=[],
        status_history=[],
    )
    try:
        for position, line in enumerate(payload.items):
            product = products.get(line.product_id)
            if product is None:
                raise NotFoundError("Product not found")
            if not product.is_active:
                raise ValidationError(f"{product.name} is not available")

            unit_price = Decimal(product.price)
            sku = product.sku
            if line.variant_sku:
                variant = next((v for v in product.variants if v.sku == line.variant_sku), None)
                if variant is None or not variant.is_available:
                    raise ValidationError(f"Variant {line.variant_sku} of {product.name} is not available")
                if variant.price is not None:
                    unit_price = Decimal(variant.price)
                sku = variant.sku

            try:
                await inventory.decrease_stock(product.id, line.quantity, line.variant_sku)
            except InsufficientStockError as exc:
                raise InsufficientStockError(f"Insufficient stock for {product.name}") from exc

            priced = PricedLine(
                unit_price=quantize_money(unit_price),
                quantity=line.quantity,
                shipping_charge=Decimal(product.shipping_charge or 0),
                free_shipping=bool(product.free_shipping),
            )
            order.items.append(
                OrderItem(
                    position=position,
                    product_id=product.id,
                    category_id=product.category_id,
                    variant_sku=line.variant_sku,
                    seller_id=product.seller_id,
                    product_name=product.name,
                    product_image=product.image_url,
                    product_sku=sku,
                    unit_price=priced.unit_price,
                    quantity=line.quantity,
                    line_total=quantize_money(priced.line_total),
                    shipping_charge=line_shipping(priced),
                    free_shipping=priced.free_shipping,
                    status=OrderItemStatus.pending,
                )
            )

        apply_totals(order)
        order.order_number = await next_order_number(session, now=now)
        append_history(order, OrderStatus.pending.value, "Order placed", now)
        session.add(order)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(order)
    metrics.record_order_created()
    logger.info(
        "order_created",
        extra={"order_number": order.order_number, "user_id": user_id, "total_amount": order.total_amount},
    )
    return order


async def _record_sales(session: AsyncSession, order: Order, inventory: InventoryAdjuster, now: datetime) -> Order:
    """Bump total-sold per line after delivery; failures are queued, never undo the delivery."""
    order_id = order.id
    sold = [(item.product_id, int(item.quantity)) for item in _billable_items(order)]
    failed = False
    for product_id, quantity in sold:
        try:
            await inventory.increment_sold(product_id, quantity)
            await session.commit()
        except Exception as exc:
            failed = True
            await session.rollback()
            logger.warning(
                "inventory_side_effect_failed",
                extra={"order_id": order_id, "product_id": product_id, "quantity": quantity, "error": str(exc)},
            )
            side_effects.enqueue(
                session,
                kind=SideEffectKind.increment_sold,
                order_id=order_id,
                payload={"product_id": str(product_id), "quantity": quantity},
                error=str(exc),
                now=now,
            )
            await session.commit()
    if failed:
        return await get_order(session, order_id)
    return order


async def update_fulfillment_status(
    session: AsyncSession,
    order: Order,
    *,
    status: OrderStatus,
    note: str | None = None,
    tracking_number: str | None = None,
    courier: str | None = None,
    inventory: InventoryAdjuster | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Order:
    now = now or utcnow()
    current = OrderStatus(order.status)
    target = OrderStatus(status)
    if target == OrderStatus.cancelled:
        raise InvalidTransitionError(
            f"Cannot move order from {current.value} to cancelled: use cancellation instead",
            current_status=current.value,
        )
    if target not in FULFILLMENT_TRANSITIONS.get(current, set()):
        raise _transition_error(current, target)

    order.status = target
    if tracking_number:
        order.tracking_number = tracking_number
    if courier:
        order.courier = courier
    if target == OrderStatus.delivered:
        order.delivered_at = now
    sync_item_statuses(order, ITEM_STATUS_FOR_ORDER[target])
    append_history(order, target.value, note, now)
    await save_order(session, order)
    logger.info(
        "order_status_changed",
        extra={"order_number": order.order_number, "from_status": current.value, "to_status": target.value},
    )

    if target == OrderStatus.delivered:
        order = await _record_sales(session, order, inventory or SqlInventory(session), now)

    notifier = notifier or notifications.get_notifier()
    await notifications.deliver("order_status_changed", notifier.order_status_changed(order, target.value, note))
    return order


async def update_item_status(
    session: AsyncSession,
    order: Order,
    *,
    item_id: UUID,
    status: OrderItemStatus,
    actor: Actor,
    inventory: InventoryAdjuster | None = None,
) -> Order:
    """Move one line forward for its seller.

    Cancelling a line puts its stock back in the same transaction and, while the
    order is unpaid, drops it from the order totals.
    """
    item = next((i for i in order.items if i.id == item_id), None)
    if item is None or not (actor.is_admin or item.seller_id == actor.user_id):
        raise NotFoundError("Order item not found")
    if OrderStatus(order.status) == OrderStatus.cancelled:
        raise InvalidTransitionError("Cannot update items of a cancelled order", current_status=OrderStatus.cancelled.value)

    current = OrderItemStatus(item.status)
    target = OrderItemStatus(status)
    if target == OrderItemStatus.cancelled:
        allowed = current not in {OrderItemStatus.delivered, *_CLOSED_ITEM_STATUSES}
    elif target == OrderItemStatus.returned:
        allowed = current == OrderItemStatus.delivered
    else:
        allowed = current in ITEM_FLOW and ITEM_FLOW.index(target) > ITEM_FLOW.index(current)
    if not allowed:
        raise InvalidTransitionError(
            f"Cannot move item from {current.value} to {target.value}",
            current_status=current.value,
        )

    if target != OrderItemStatus.cancelled:
        item.status = target
        await save_order(session, order)
    else:
        inventory = inventory or SqlInventory(session)
        try:
            await _restock_item(inventory, order, item)
            item.status = target
            if PaymentStatus(order.payment_status) not in {PaymentStatus.completed, PaymentStatus.refunded}:
                apply_totals(order)
            session.add(order)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        await session.refresh(order)
    logger.info(
        "order_item_status_changed",
        extra={"order_number": order.order_number, "item_id": item_id, "from_status": current.value, "to_status": target.value},
    )
    return order


async def _restock_item(inventory: InventoryAdjuster, order: Order, item: OrderItem) -> None:
    try:
        await inventory.increase_stock(item.product_id, int(item.quantity), item.variant_sku)
    except NotFoundError:
        logger.warning(
            "restock_skipped_missing_product",
            extra={"order_number": order.order_number, "product_id": item.product_id},
        )


async def cancel_order(
    session: AsyncSession,
    order: Order,
    *,
    reason: str | None = None,
    inventory: InventoryAdjuster | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Order:
    """Cancel a not-yet-delivered order and put every line's stock back."""
    now = now or utcnow()
    current = OrderStatus(order.status)
    if current == OrderStatus.delivered:
        raise InvalidTransitionError(
            "Cannot cancel order: it has already been delivered; request a return instead",
            current_status=current.value,
        )
    if current not in CANCELLABLE_STATUSES:
        raise InvalidTransitionError("Cannot cancel order: it is already cancelled", current_status=current.value)

    inventory = inventory or SqlInventory(session)
    try:
        # Lines cancelled on their own were restocked at that point.
        for item in _billable_items(order):
            await _restock_item(inventory, order, item)
        order.status = OrderStatus.cancelled
        order.is_cancelled = True
        order.cancelled_at = now
        order.cancellation_reason = reason
        sync_item_statuses(order, OrderItemStatus.cancelled)
        append_history(order, OrderStatus.cancelled.value, reason or "Order cancelled", now)
        session.add(order)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(order)
    metrics.record_order_cancelled()
    logger.info("order_cancelled", extra={"order_number": order.order_number, "from_status": current.value, "reason": reason})
    notifier = notifier or notifications.get_notifier()
    await notifications.deliver("order_status_changed", notifier.order_status_changed(order, OrderStatus.cancelled.value, reason))
    return order


async def request_return(
    session: AsyncSession, order: Order, *, reason: str, now: datetime | None = None
) -> Order:
    now = now or utcnow()
    current = OrderStatus(order.status)
    if current != OrderStatus.delivered:
        raise InvalidTransitionError(
            f"Cannot request a return: only delivered orders can be returned, order is {current.value}",
            current_status=current.value,
        )
    if order.return_status is not None:
        raise InvalidTransitionError(
            "Cannot request a return: a return has already been requested",
            current_status=current.value,
            code="return_already_requested",
        )
    delivered_at = ensure_utc(order.delivered_at)
    if delivered_at is None:
        raise InvalidTransitionError("Cannot request a return: delivery date is unknown", current_status=current.value)
    days_since_delivery = (ensure_utc(now) - delivered_at).days
    if days_since_delivery > settings.return_window_days:
        raise ReturnWindowExpiredError(
            f"Return window of {settings.return_window_days} days has expired",
            current_status=current.value,
        )

    order.is_returned = True
    order.return_requested_at = now
    order.return_reason = reason
    order.return_status = ReturnStatus.requested
    await save_order(session, order)
    logger.info("order_return_requested", extra={"order_number": order.order_number, "days_since_delivery": days_since_delivery})
    return order


async def update_return_status(
    session: AsyncSession,
    order: Order,
    *,
    status: ReturnStatus,
    note: str | None = None,
    now: datetime | None = None,
) -> Order:
    now = now or utcnow()
    if order.return_status is None:
        raise InvalidTransitionError(
            "No return has been requested for this order", current_status=OrderStatus(order.status).value
        )
    current = ReturnStatus(order.return_status)
    target = ReturnStatus(status)
    if target not in RETURN_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move return from {current.value} to {target.value}",
            current_status=current.value,
        )

    order.return_status = target
    if target == ReturnStatus.rejected:
        order.is_returned = False
    if target in {ReturnStatus.rejected, ReturnStatus.completed}:
        order.return_resolved_at = now
    if target == ReturnStatus.completed:
        for item in order.items:
            if item.status == OrderItemStatus.delivered:
                item.status = OrderItemStatus.returned
    if note:
        order.admin_notes = f"{order.admin_notes}\n{note}" if order.admin_notes else note
    await save_order(session, order)
    logger.info(
        "order_return_status_changed",
        extra={"order_number": order.order_number, "from_status": current.value, "to_status": target.value},
    )
    return order


def _ensure_coupon_editable(order: Order) -> None:
    current = OrderStatus(order.status)
    if current != OrderStatus.pending or PaymentStatus(order.payment_status) in {PaymentStatus.completed, PaymentStatus.refunded}:
        raise InvalidTransitionError(
            f"Coupons can only be changed on unpaid pending orders; order is {current.value}",
            current_status=current.value,
        )


def cart_lines(order: Order) -> list[CartLine]:
    return [
        CartLine(
            product_id=item.product_id,
            category_id=item.category_id,
            quantity=int(item.quantity),
            unit_price=Decimal(item.unit_price),
        )
        for item in _billable_items(order)
    ]


async def apply_coupon(
    session: AsyncSession, order: Order, *, code: str, now: datetime | None = None
) -> Order:
    """Evaluate ``code`` for the order's owner, commit its usage and attach the snapshot.

    The ledger commit and the new totals land in the same transaction; any
    failure rolls both back.
    """
    now = now or utcnow()
    _ensure_coupon_editable(order)
    coupon = await get_coupon_by_code(session, code=code)
    if not coupon:
        raise NotFoundError("Invalid coupon code", code="coupon_not_found")

    existing = order.applied_coupon
    if existing is not None:
        if existing.coupon_id == coupon.id:
            raise ValidationError("Coupon already applied to this order", code="coupon_already_applied")
        raise ValidationError("Remove the applied coupon before applying another", code="coupon_already_present")

    used = await coupon_ledger.user_used_count(session, coupon_id=coupon.id, user_id=order.user_id)
    evaluation = coupon_rules.evaluate(
        CouponRules.from_model(coupon),
        user_id=order.user_id,
        cart_total=Decimal(order.subtotal),
        lines=cart_lines(order),
        now=now,
        user_used_count=used,
        currency_symbol=settings.currency_symbol,
        rounding=settings.money_rounding,
    )
    if not evaluation.eligible:
        metrics.record_coupon_rejected()
        logger.info(
            "coupon_rejected",
            extra={"order_number": order.order_number, "coupon_code": coupon.code, "reason": evaluation.reason.value},
        )
        evaluation.raise_if_ineligible()

    try:
        await coupon_ledger.commit_usage(
            session,
            coupon=coupon,
            user_id=order.user_id,
            order_id=order.id,
            discount_amount=evaluation.discount_amount,
            now=now,
        )
        order.attach_coupon(
            CouponSnapshot(
                coupon_id=coupon.id,
                code=coupon.code,
                discount_type=DiscountType(coupon.discount_type),
                discount_amount=evaluation.discount_amount,
                free_shipping=evaluation.free_shipping,
                applied_at=now,
            )
        )
        apply_totals(order)
        session.add(order)
        await session.commit()
    except EligibilityError:
        await session.rollback()
        metrics.record_coupon_rejected()
        raise
    except Exception:
        await session.rollback()
        raise

    await session.refresh(order)
    metrics.record_coupon_applied()
    logger.info(
        "coupon_applied",
        extra={
            "order_number": order.order_number,
            "coupon_code": coupon.code,
            "discount_amount": order.discount_amount,
            "total_amount": order.total_amount,
        },
    )
    return order


async def remove_coupon(session: AsyncSession, order: Order, *, now: datetime | None = None) -> Order:
    """Detach the coupon and recompute totals.

    The consumed use stays on the ledger unless ``coupon_release_on_remove`` is set.
    """
    now = now or utcnow()
    _ensure_coupon_editable(order)
    snapshot = order.applied_coupon
    if snapshot is None:
        raise ValidationError("No coupon applied to this order", code="no_coupon_applied")

    try:
        if settings.coupon_release_on_remove:
            coupon = await get_coupon_by_code(session, code=snapshot.code)
            if coupon is not None:
                await coupon_ledger.release_usage(
                    session, coupon=coupon, user_id=order.user_id, order_id=order.id, now=now
                )
        order.detach_coupon()
        apply_totals(order)
        session.add(order)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(order)
    logger.info(
        "coupon_removed",
        extra={
            "order_number": order.order_number,
            "coupon_code": snapshot.code,
            "usage_released": settings.coupon_release_on_remove,
        },
    )
    return order
