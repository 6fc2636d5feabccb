from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import ensure_utc, utcnow
from storefront.core.config import settings
from storefront.core.errors import EligibilityReason, NotFoundError, ValidationError
from storefront.models.coupon import (
    Coupon,
    CouponScope,
    CouponScopeEntityType,
    CouponScopeMode,
    CouponUserUsage,
    DiscountType,
)
from storefront.schemas.coupon import CouponCreate, CouponUpdate, CouponValidateRequest
from storefront.services import coupon_ledger, coupon_rules, notifications
from storefront.services.coupon_ledger import CouponStatus
from storefront.services.coupon_rules import CartLine, CouponEvaluation, CouponRules, normalize_code
from storefront.services.pricing import quantize_money

logger = logging.getLogger(__name__)

# Fields an administrator may patch; code and valid_from are fixed once created.
UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "description",
        "discount_type",
        "discount_value",
        "max_discount_amount",
        "min_order_value",
        "max_usage_limit",
        "max_usage_per_user",
        "valid_until",
        "is_active",
        "free_shipping",
        "combinable_with_other_coupons",
        "note",
    }
)

_CART_ONLY_REASONS = frozenset({EligibilityReason.no_applicable_items, EligibilityReason.excluded_item_present})

_SCOPE_FIELDS: dict[str, tuple[CouponScopeEntityType, CouponScopeMode]] = {
    "applicable_product_ids": (CouponScopeEntityType.product, CouponScopeMode.include),
    "applicable_category_ids": (CouponScopeEntityType.category, CouponScopeMode.include),
    "applicable_user_ids": (CouponScopeEntityType.user, CouponScopeMode.include),
    "excluded_product_ids": (CouponScopeEntityType.product, CouponScopeMode.exclude),
}


def scope_lists(coupon: Coupon) -> dict[str, list[UUID]]:
    return {name: sorted(coupon.scope_ids(entity_type, mode), key=str) for name, (entity_type, mode) in _SCOPE_FIELDS.items()}


def _replace_scopes(coupon: Coupon, field_name: str, ids: list[UUID]) -> None:
    entity_type, mode = _SCOPE_FIELDS[field_name]
    keep = [s for s in coupon.scopes if not (s.entity_type == entity_type and s.mode == mode)]
    taken = {(s.entity_type, s.entity_id) for s in keep}
    for entity_id in dict.fromkeys(ids):
        if (entity_type, entity_id) in taken:
            raise ValidationError("A product cannot be both applicable and excluded")
        keep.append(CouponScope(entity_type=entity_type, entity_id=entity_id, mode=mode))
    coupon.scopes = keep


def _validate(coupon: Coupon, *, now: datetime | None) -> None:
    coupon_rules.validate_definition(
        code=coupon.code,
        discount_type=DiscountType(coupon.discount_type),
        discount_value=Decimal(coupon.discount_value),
        max_discount_amount=coupon.max_discount_amount,
        min_order_value=Decimal(coupon.min_order_value or 0),
        max_usage_limit=coupon.max_usage_limit,
        max_usage_per_user=coupon.max_usage_per_user,
        valid_from=coupon.valid_from,
        valid_until=coupon.valid_until,
        now=now,
    )


async def _ensure_caps_cover_usage(session: AsyncSession, coupon: Coupon) -> None:
    """Refuse caps below what the ledger has already handed out."""
    used = (await session.execute(select(Coupon.usage_count).where(Coupon.id == coupon.id))).scalar_one()
    if coupon.max_usage_limit is not None and coupon.max_usage_limit < int(used or 0):
        raise ValidationError(
            f"Usage limit cannot be lower than the {used} use(s) already recorded", code="usage_limit_below_usage"
        )
    if coupon.max_usage_per_user is None:
        return
    top = (
        await session.execute(
            select(func.max(CouponUserUsage.used_count)).where(CouponUserUsage.coupon_id == coupon.id)
        )
    ).scalar_one()
    if top and coupon.max_usage_per_user < int(top):
        raise ValidationError(
            f"Per-user limit cannot be lower than the {top} use(s) a customer already has",
            code="usage_limit_below_usage",
        )


async def get_coupon_by_code(session: AsyncSession, *, code: str) -> Coupon | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    result = await session.execute(select(Coupon).where(Coupon.code == cleaned))
    return result.scalar_one_or_none()


async def get_coupon(session: AsyncSession, coupon_id: UUID) -> Coupon:
    coupon = await session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


async def create_coupon(
    session: AsyncSession, payload: CouponCreate, *, created_by: UUID | None = None, now: datetime | None = None
) -> Coupon:
    now = now or utcnow()
    code = normalize_code(payload.code)
    if await get_coupon_by_code(session, code=code):
        raise ValidationError("Coupon code already exists", code="coupon_code_exists")

    coupon = Coupon(
        code=code,
        description=payload.description,
        discount_type=payload.discount_type,
        discount_value=payload.discount_value,
        max_discount_amount=payload.max_discount_amount,
        min_order_value=payload.min_order_value,
        max_usage_limit=payload.max_usage_limit,
        max_usage_per_user=(
            payload.max_usage_per_user if payload.max_usage_per_user is not None else settings.default_max_usage_per_user
        ),
        usage_count=0,
        valid_from=ensure_utc(payload.valid_from) if payload.valid_from else now,
        valid_until=ensure_utc(payload.valid_until),
        is_active=payload.is_active,
        free_shipping=payload.free_shipping,
        combinable_with_other_coupons=payload.combinable_with_other_coupons,
        note=payload.note,
        created_by=created_by,
        updated_by=created_by,
        scopes=[],
    )
    for field_name in _SCOPE_FIELDS:
        _replace_scopes(coupon, field_name, getattr(payload, field_name))
    _validate(coupon, now=now)

    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_created", extra={"coupon_code": coupon.code, "created_by": created_by})
    return coupon


async def update_coupon(
    session: AsyncSession, coupon: Coupon, payload: CouponUpdate, *, updated_by: UUID | None = None
) -> Coupon:
    data = payload.model_dump(exclude_unset=True)
    for field_name, value in data.items():
        if field_name in _SCOPE_FIELDS:
            if value is not None:
                _replace_scopes(coupon, field_name, value)
            continue
        if field_name not in UPDATABLE_FIELDS:
            raise ValidationError(f"Field '{field_name}' cannot be updated")
        if value is None and field_name not in {"max_discount_amount", "max_usage_limit", "max_usage_per_user", "description", "note"}:
            continue
        if field_name == "valid_until":
            value = ensure_utc(value)
        setattr(coupon, field_name, value)
    _validate(coupon, now=None)
    if {"max_usage_limit", "max_usage_per_user"} & data.keys():
        await _ensure_caps_cover_usage(session, coupon)
    coupon.updated_by = updated_by

    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_updated", extra={"coupon_code": coupon.code, "fields": sorted(data)})
    return coupon


async def deactivate_coupon(session: AsyncSession, coupon: Coupon, *, updated_by: UUID | None = None) -> Coupon:
    coupon.is_active = False
    coupon.updated_by = updated_by
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_deactivated", extra={"coupon_code": coupon.code})
    return coupon


def _status_filter(status: CouponStatus, now: datetime):
    under_cap = or_(Coupon.max_usage_limit.is_(None), Coupon.usage_count < Coupon.max_usage_limit)
    if status == CouponStatus.inactive:
        return [Coupon.is_active.is_(False)]
    if status == CouponStatus.expired:
        return [Coupon.is_active.is_(True), or_(Coupon.valid_until <= now, ~under_cap)]
    if status == CouponStatus.upcoming:
        return [Coupon.is_active.is_(True), Coupon.valid_from > now, Coupon.valid_until > now, under_cap]
    return [Coupon.is_active.is_(True), Coupon.valid_from <= now, Coupon.valid_until > now, under_cap]


async def list_coupons(
    session: AsyncSession,
    *,
    status: CouponStatus | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
    now: datetime | None = None,
) -> tuple[list[Coupon], int]:
    now = now or utcnow()
    page = max(1, int(page or 1))
    limit = max(1, min(100, int(limit or 20)))

    filters = []
    if status is not None:
        filters.extend(_status_filter(status, now))
    needle = (search or "").strip()
    if needle:
        like = f"%{needle.lower()}%"
        filters.append(or_(func.lower(Coupon.code).like(like), func.lower(Coupon.description).like(like)))

    total = int((await session.execute(select(func.count()).select_from(Coupon).where(*filters))).scalar_one())
    result = await session.execute(
        select(Coupon).where(*filters).order_by(Coupon.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), total


async def find_valid_coupon(session: AsyncSession, *, code: str, now: datetime | None = None) -> Coupon | None:
    """Active coupon with ``code`` whose validity window contains ``now``."""
    now = now or utcnow()
    result = await session.execute(
        select(Coupon).where(
            Coupon.code == normalize_code(code),
            Coupon.is_active.is_(True),
            Coupon.valid_from <= now,
            Coupon.valid_until > now,
        )
    )
    return result.scalar_one_or_none()


async def list_active_coupons(session: AsyncSession, *, now: datetime | None = None) -> list[Coupon]:
    now = now or utcnow()
    result = await session.execute(
        select(Coupon).where(*_status_filter(CouponStatus.active, now)).order_by(Coupon.valid_until)
    )
    return list(result.scalars().all())


async def list_expiring_coupons(session: AsyncSession, *, days: int, now: datetime | None = None) -> list[Coupon]:
    now = now or utcnow()
    horizon = now + timedelta(days=max(0, int(days)))
    result = await session.execute(
        select(Coupon)
        .where(*_status_filter(CouponStatus.active, now), Coupon.valid_until <= horizon)
        .order_by(Coupon.valid_until)
    )
    return list(result.scalars().all())


async def list_popular_coupons(session: AsyncSession, *, limit: int = 10) -> list[Coupon]:
    result = await session.execute(
        select(Coupon)
        .where(Coupon.is_active.is_(True), Coupon.usage_count > 0)
        .order_by(Coupon.usage_count.desc(), Coupon.code)
        .limit(max(1, int(limit)))
    )
    return list(result.scalars().all())


@dataclass(frozen=True)
class AvailableCoupon:
    coupon: Coupon
    used_count: int
    remaining_uses: int | None
    can_use: bool
    reason: str | None


async def list_available_for_user(
    session: AsyncSession, *, user_id: UUID, cart_total: Decimal | None = None, now: datetime | None = None
) -> list[AvailableCoupon]:
    """Active coupons the shopper may see, with their personal allowance.

    User-restricted coupons are only listed for the users they target.
    """
    now = now or utcnow()
    available: list[AvailableCoupon] = []
    for coupon in await list_active_coupons(session, now=now):
        rules = CouponRules.from_model(coupon)
        if rules.user_ids and user_id not in rules.user_ids:
            continue
        summary = await coupon_ledger.query_usage(session, coupon=coupon, user_id=user_id)
        verdict = coupon_rules.evaluate(
            rules,
            user_id=user_id,
            cart_total=cart_total if cart_total is not None else rules.min_order_value,
            lines=[],
            now=now,
            user_used_count=summary.used_count,
            currency_symbol=settings.currency_symbol,
        )
        # Without a cart, scope checks cannot be judged yet.
        blocking = verdict.reason is not None and not (
            cart_total is None and verdict.reason in _CART_ONLY_REASONS
        )
        available.append(
            AvailableCoupon(
                coupon=coupon,
                used_count=summary.used_count,
                remaining_uses=summary.remaining,
                can_use=not blocking,
                reason=verdict.message if blocking else None,
            )
        )
    return available


@dataclass(frozen=True)
class CartValidation:
    coupon: Coupon
    evaluation: CouponEvaluation
    original_total: Decimal
    final_total: Decimal


async def validate_for_cart(
    session: AsyncSession, *, user_id: UUID, payload: CouponValidateRequest, now: datetime | None = None
) -> CartValidation:
    """Dry-run a coupon against a cart before any order exists; raises on ineligibility."""
    now = now or utcnow()
    coupon = await get_coupon_by_code(session, code=payload.code)
    if not coupon:
        raise NotFoundError("Invalid coupon code", code="coupon_not_found")
    used = await coupon_ledger.user_used_count(session, coupon_id=coupon.id, user_id=user_id)
    lines = [
        CartLine(product_id=i.product_id, category_id=i.category_id, quantity=i.quantity, unit_price=i.unit_price)
        for i in payload.items
    ]
    evaluation = coupon_rules.evaluate(
        CouponRules.from_model(coupon),
        user_id=user_id,
        cart_total=payload.cart_total,
        lines=lines,
        now=now,
        user_used_count=used,
        currency_symbol=settings.currency_symbol,
        rounding=settings.money_rounding,
    ).raise_if_ineligible()
    original = quantize_money(payload.cart_total)
    return CartValidation(
        coupon=coupon,
        evaluation=evaluation,
        original_total=original,
        final_total=max(Decimal("0.00"), original - evaluation.discount_amount),
    )


async def warn_expiring_coupons(
    session: AsyncSession,
    *,
    days: int | None = None,
    notifier: notifications.Notifier | None = None,
    now: datetime | None = None,
) -> list[Coupon]:
    """Send an expiry warning for every active coupon ending within ``days``."""
    now = now or utcnow()
    days = settings.coupon_expiry_warning_days if days is None else days
    notifier = notifier or notifications.get_notifier()
    expiring = await list_expiring_coupons(session, days=days, now=now)
    for coupon in expiring:
        days_left = max(0, (ensure_utc(coupon.valid_until) - now).days)
        await notifications.deliver("coupon_expiring", notifier.coupon_expiring(coupon, days_left))
    logger.info("coupon_expiry_warnings_sent", extra={"count": len(expiring), "days": days})
    return expiring
