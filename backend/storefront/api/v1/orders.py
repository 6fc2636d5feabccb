from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import get_current_actor, require_admin, require_vendor
from storefront.core.errors import NotFoundError
from storefront.core.identity import Actor
from storefront.db.session import get_session
from storefront.models.order import OrderStatus
from storefront.schemas.common import pagination_meta
from storefront.schemas.order import (
    CancelRequest,
    FulfillmentUpdate,
    ItemStatusUpdate,
    OrderCreate,
    OrderListResponse,
    OrderRead,
    ReturnRequestCreate,
    ReturnStatusUpdate,
)
from storefront.services import order as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    order = await order_service.create_order(session, user_id=actor.user_id, payload=payload)
    return OrderRead.model_validate(order)


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> OrderListResponse:
    orders, total = await order_service.list_user_orders(
        session, user_id=actor.user_id, status=order_status, page=page, limit=limit
    )
    return OrderListResponse(
        items=[OrderRead.model_validate(o) for o in orders],
        meta=pagination_meta(total_items=total, page=page, limit=limit),
    )


@router.get("/vendor", response_model=OrderListResponse)
async def list_vendor_orders(
    session: AsyncSession = Depends(get_session),
    vendor: Actor = Depends(require_vendor),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> OrderListResponse:
    orders, total = await order_service.list_vendor_orders(
        session, seller_id=vendor.user_id, status=order_status, page=page, limit=limit
    )
    return OrderListResponse(
        items=[OrderRead.model_validate(o) for o in orders],
        meta=pagination_meta(total_items=total, page=page, limit=limit),
    )


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    return OrderRead.model_validate(await order_service.get_order_for_actor(session, order_id, actor))


@router.post("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: UUID,
    payload: CancelRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    order = await order_service.get_order(session, order_id)
    if order.user_id != actor.user_id and not actor.is_admin:
        raise NotFoundError("Order not found")
    order = await order_service.cancel_order(session, order, reason=payload.reason)
    return OrderRead.model_validate(order)


@router.patch("/{order_id}/status", response_model=OrderRead)
async def update_order_status(
    order_id: UUID,
    payload: FulfillmentUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_vendor),
) -> OrderRead:
    order = await order_service.get_order_for_actor(session, order_id, actor)
    if not actor.is_admin and any(item.seller_id != actor.user_id for item in order.items):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Order contains items from other sellers")
    order = await order_service.update_fulfillment_status(
        session,
        order,
        status=payload.status,
        note=payload.note,
        tracking_number=payload.tracking_number,
        courier=payload.courier,
    )
    return OrderRead.model_validate(order)


@router.patch("/{order_id}/items/{item_id}/status", response_model=OrderRead)
async def update_item_status(
    order_id: UUID,
    item_id: UUID,
    payload: ItemStatusUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_vendor),
) -> OrderRead:
    order = await order_service.get_order_for_actor(session, order_id, actor)
    order = await order_service.update_item_status(session, order, item_id=item_id, status=payload.status, actor=actor)
    return OrderRead.model_validate(order)


@router.post("/{order_id}/return", response_model=OrderRead)
async def request_return(
    order_id: UUID,
    payload: ReturnRequestCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    order = await order_service.get_order(session, order_id)
    if order.user_id != actor.user_id:
        raise NotFoundError("Order not found")
    order = await order_service.request_return(session, order, reason=payload.reason)
    return OrderRead.model_validate(order)


@router.patch("/{order_id}/return", response_model=OrderRead)
async def update_return(
    order_id: UUID,
    payload: ReturnStatusUpdate,
    session: AsyncSession = Depends(get_session),
    _: Actor = Depends(require_admin),
) -> OrderRead:
    order = await order_service.get_order(session, order_id)
    order = await order_service.update_return_status(session, order, status=payload.status, note=payload.note)
    return OrderRead.model_validate(order)
