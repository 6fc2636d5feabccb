from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import get_current_actor, require_admin
from storefront.core.errors import NotFoundError
from storefront.core.identity import Actor
from storefront.db.session import get_session
from storefront.models.coupon import Coupon
from storefront.schemas.common import pagination_meta
from storefront.schemas.coupon import (
    AvailableCouponRead,
    CouponAnalyticsRead,
    CouponApplyRequest,
    CouponCreate,
    CouponListResponse,
    CouponRead,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidateResponse,
)
from storefront.schemas.order import OrderRead
from storefront.services import coupon_ledger
from storefront.services import coupons as coupons_service
from storefront.services import order as order_service
from storefront.services.coupon_ledger import CouponStatus

router = APIRouter(prefix="/coupons", tags=["coupons"])


def _serialize_coupon(coupon: Coupon) -> CouponRead:
    columns = Coupon.__table__.columns.keys()
    data = {name: getattr(coupon, name) for name in CouponRead.model_fields if name in columns}
    data.update(coupons_service.scope_lists(coupon))
    data["status"] = coupon_ledger.coupon_status(coupon)
    data["usage_percentage"] = coupon_ledger.usage_percentage(coupon)
    return CouponRead(**data)


async def _owned_order(session: AsyncSession, order_id: UUID, actor: Actor):
    order = await order_service.get_order(session, order_id)
    if order.user_id != actor.user_id and not actor.is_admin:
        raise NotFoundError("Order not found")
    return order


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    session: AsyncSession = Depends(get_session),
    admin: Actor = Depends(require_admin),
) -> CouponRead:
    coupon = await coupons_service.create_coupon(session, payload, created_by=admin.user_id)
    return _serialize_coupon(coupon)


@router.get("", response_model=CouponListResponse)
async def list_coupons(
    session: AsyncSession = Depends(get_session),
    _: Actor = Depends(require_admin),
    coupon_status: CouponStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> CouponListResponse:
    coupons, total = await coupons_service.list_coupons(
        session, status=coupon_status, search=search, page=page, limit=limit
    )
    return CouponListResponse(
        items=[_serialize_coupon(c) for c in coupons],
        meta=pagination_meta(total_items=total, page=page, limit=limit),
    )


@router.get("/available", response_model=list[AvailableCouponRead])
async def list_available_coupons(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    cart_total: Decimal | None = Query(default=None, ge=0),
) -> list[AvailableCouponRead]:
    available = await coupons_service.list_available_for_user(session, user_id=actor.user_id, cart_total=cart_total)
    return [
        AvailableCouponRead(
            id=entry.coupon.id,
            code=entry.coupon.code,
            description=entry.coupon.description,
            discount_type=entry.coupon.discount_type,
            discount_value=entry.coupon.discount_value,
            max_discount_amount=entry.coupon.max_discount_amount,
            min_order_value=entry.coupon.min_order_value,
            free_shipping=entry.coupon.free_shipping,
            valid_until=entry.coupon.valid_until,
            used_count=entry.used_count,
            remaining_uses=entry.remaining_uses,
            can_use=entry.can_use,
            reason=entry.reason,
        )
        for entry in available
    ]


@router.post("/validate", response_model=CouponValidateResponse)
async def validate_coupon(
    payload: CouponValidateRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> CouponValidateResponse:
    result = await coupons_service.validate_for_cart(session, user_id=actor.user_id, payload=payload)
    return CouponValidateResponse(
        code=result.coupon.code,
        discount_type=result.coupon.discount_type,
        discount_amount=result.evaluation.discount_amount,
        free_shipping=result.evaluation.free_shipping,
        original_total=result.original_total,
        final_total=result.final_total,
    )


@router.post("/apply", response_model=OrderRead)
async def apply_coupon(
    payload: CouponApplyRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    order = await _owned_order(session, payload.order_id, actor)
    order = await order_service.apply_coupon(session, order, code=payload.code)
    return OrderRead.model_validate(order)


@router.post("/remove/{order_id}", response_model=OrderRead)
async def remove_coupon(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    order = await _owned_order(session, order_id, actor)
    order = await order_service.remove_coupon(session, order)
    return OrderRead.model_validate(order)


@router.get("/{coupon_id}", response_model=CouponRead)
async def get_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    _: Actor = Depends(require_admin),
) -> CouponRead:
    return _serialize_coupon(await coupons_service.get_coupon(session, coupon_id))


@router.patch("/{coupon_id}", response_model=CouponRead)
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    session: AsyncSession = Depends(get_session),
    admin: Actor = Depends(require_admin),
) -> CouponRead:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    coupon = await coupons_service.update_coupon(session, coupon, payload, updated_by=admin.user_id)
    return _serialize_coupon(coupon)


@router.delete("/{coupon_id}", response_model=CouponRead)
async def deactivate_coupon(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    admin: Actor = Depends(require_admin),
) -> CouponRead:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    coupon = await coupons_service.deactivate_coupon(session, coupon, updated_by=admin.user_id)
    return _serialize_coupon(coupon)


@router.get("/{coupon_id}/analytics", response_model=CouponAnalyticsRead)
async def coupon_analytics(
    coupon_id: UUID,
    session: AsyncSession = Depends(get_session),
    _: Actor = Depends(require_admin),
) -> CouponAnalyticsRead:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    analytics = await coupon_ledger.coupon_analytics(session, coupon=coupon)
    return CouponAnalyticsRead(
        coupon_id=coupon.id,
        code=coupon.code,
        status=coupon_ledger.coupon_status(coupon),
        total_usage=analytics.total_usage,
        unique_users=analytics.unique_users,
        orders_with_coupon=analytics.orders_with_coupon,
        total_discount_given=analytics.total_discount_given,
        average_discount=analytics.average_discount,
        usage_percentage=analytics.usage_percentage,
        top_users=[
            {"user_id": u.user_id, "used_count": u.used_count, "last_used_at": u.last_used_at}
            for u in analytics.top_users
        ],
    )
