"""Coupon eligibility and discount rules.

Everything here is pure: callers load the coupon and the shopper's usage, then
ask :func:`evaluate` for a verdict. Nothing is persisted; committing usage is
the ledger's job once the coupon is attached to an order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from storefront.core.clock import ensure_utc
from storefront.core.errors import EligibilityError, EligibilityReason, ValidationError
from storefront.models.coupon import Coupon, CouponScopeEntityType, CouponScopeMode, DiscountType
from storefront.services.pricing import MoneyRounding, format_money, quantize_money

CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")
MAX_FIXED_DISCOUNT = Decimal("100000")


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class CartLine:
    product_id: UUID
    category_id: UUID | None
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class CouponRules:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_until: datetime
    max_discount_amount: Decimal | None = None
    min_order_value: Decimal = Decimal("0.00")
    max_usage_limit: int | None = None
    max_usage_per_user: int | None = 1
    usage_count: int = 0
    is_active: bool = True
    free_shipping: bool = False
    product_ids: frozenset[UUID] = field(default_factory=frozenset)
    category_ids: frozenset[UUID] = field(default_factory=frozenset)
    user_ids: frozenset[UUID] = field(default_factory=frozenset)
    excluded_product_ids: frozenset[UUID] = field(default_factory=frozenset)

    @classmethod
    def from_model(cls, coupon: Coupon) -> "CouponRules":
        return cls(
            code=coupon.code,
            discount_type=DiscountType(coupon.discount_type),
            discount_value=Decimal(coupon.discount_value),
            valid_from=ensure_utc(coupon.valid_from),
            valid_until=ensure_utc(coupon.valid_until),
            max_discount_amount=Decimal(coupon.max_discount_amount) if coupon.max_discount_amount is not None else None,
            min_order_value=Decimal(coupon.min_order_value or 0),
            max_usage_limit=coupon.max_usage_limit,
            max_usage_per_user=coupon.max_usage_per_user,
            usage_count=int(coupon.usage_count or 0),
            is_active=bool(coupon.is_active),
            free_shipping=bool(coupon.free_shipping),
            product_ids=frozenset(coupon.scope_ids(CouponScopeEntityType.product, CouponScopeMode.include)),
            category_ids=frozenset(coupon.scope_ids(CouponScopeEntityType.category, CouponScopeMode.include)),
            user_ids=frozenset(coupon.scope_ids(CouponScopeEntityType.user, CouponScopeMode.include)),
            excluded_product_ids=frozenset(coupon.scope_ids(CouponScopeEntityType.product, CouponScopeMode.exclude)),
        )


@dataclass(frozen=True)
class CouponEvaluation:
    eligible: bool
    discount_amount: Decimal
    free_shipping: bool
    reason: EligibilityReason | None = None
    message: str | None = None

    def raise_if_ineligible(self) -> "CouponEvaluation":
        if not self.eligible and self.reason is not None:
            raise EligibilityError(self.reason, self.message or self.reason.value)
        return self


def _rejected(reason: EligibilityReason, message: str) -> CouponEvaluation:
    return CouponEvaluation(
        eligible=False,
        discount_amount=Decimal("0.00"),
        free_shipping=False,
        reason=reason,
        message=message,
    )


def compute_discount(
    discount_type: DiscountType,
    discount_value: Decimal,
    cart_total: Decimal,
    *,
    max_discount_amount: Decimal | None = None,
    rounding: MoneyRounding = "half_up",
) -> Decimal:
    cart_total = Decimal(cart_total)
    if cart_total <= 0:
        return Decimal("0.00")
    if discount_type == DiscountType.percentage:
        discount = cart_total * Decimal(discount_value) / Decimal("100")
        if max_discount_amount is not None:
            discount = min(discount, Decimal(max_discount_amount))
    else:
        discount = min(Decimal(discount_value), cart_total)
    discount = min(discount, cart_total)
    if discount < 0:
        discount = Decimal("0.00")
    return quantize_money(discount, rounding=rounding)


def _validity_failure(rules: CouponRules, now: datetime) -> CouponEvaluation | None:
    if not rules.is_active:
        return _rejected(EligibilityReason.not_active, "Coupon is not active")
    if now >= rules.valid_until:
        return _rejected(EligibilityReason.expired, "Coupon has expired")
    if now < rules.valid_from:
        return _rejected(EligibilityReason.not_yet_valid, "Coupon not yet valid")
    if rules.max_usage_limit is not None and rules.usage_count >= rules.max_usage_limit:
        return _rejected(EligibilityReason.global_limit_reached, "Coupon usage limit reached")
    return None


def _user_failure(rules: CouponRules, user_id: UUID, user_used_count: int) -> CouponEvaluation | None:
    if rules.user_ids and user_id not in rules.user_ids:
        return _rejected(EligibilityReason.user_not_eligible, "This coupon is not applicable for you")
    cap = rules.max_usage_per_user
    if cap is not None and user_used_count >= cap:
        return _rejected(
            EligibilityReason.user_limit_reached,
            f"You have already used this coupon {user_used_count} time(s)",
        )
    return None


def _order_failure(
    rules: CouponRules, cart_total: Decimal, lines: list[CartLine], currency_symbol: str
) -> CouponEvaluation | None:
    if cart_total < rules.min_order_value:
        return _rejected(
            EligibilityReason.below_minimum_order_value,
            f"Minimum order value of {format_money(rules.min_order_value, currency_symbol)} required",
        )
    if rules.product_ids or rules.category_ids:
        matched = any(
            line.product_id in rules.product_ids or (line.category_id is not None and line.category_id in rules.category_ids)
            for line in lines
        )
        if not matched:
            return _rejected(EligibilityReason.no_applicable_items, "No applicable products in cart")
    if rules.excluded_product_ids and any(line.product_id in rules.excluded_product_ids for line in lines):
        return _rejected(EligibilityReason.excluded_item_present, "Some items in cart cannot use this coupon")
    return None


def evaluate(
    rules: CouponRules,
    *,
    user_id: UUID,
    cart_total: Decimal,
    lines: Iterable[CartLine],
    now: datetime,
    user_used_count: int = 0,
    currency_symbol: str = "₹",
    rounding: MoneyRounding = "half_up",
) -> CouponEvaluation:
    """Check validity, user eligibility and order eligibility in that order.

    The first failing check wins; on success the discount is computed and
    never exceeds ``cart_total``.
    """
    now = ensure_utc(now)
    cart_total = Decimal(cart_total)
    lines = list(lines)

    failure = (
        _validity_failure(rules, now)
        or _user_failure(rules, user_id, int(user_used_count or 0))
        or _order_failure(rules, cart_total, lines, currency_symbol)
    )
    if failure is not None:
        return failure

    discount = compute_discount(
        rules.discount_type,
        rules.discount_value,
        cart_total,
        max_discount_amount=rules.max_discount_amount,
        rounding=rounding,
    )
    return CouponEvaluation(eligible=True, discount_amount=discount, free_shipping=rules.free_shipping)


def validate_definition(
    *,
    code: str,
    discount_type: DiscountType,
    discount_value: Decimal,
    max_discount_amount: Decimal | None,
    min_order_value: Decimal,
    max_usage_limit: int | None,
    max_usage_per_user: int | None,
    valid_from: datetime,
    valid_until: datetime,
    now: datetime | None = None,
) -> None:
    """Reject coupon definitions that break the rule invariants.

    ``now`` is only passed on creation, where ``valid_until`` must lie in the future.
    """
    if not CODE_PATTERN.match(code or ""):
        raise ValidationError("Coupon code must be 3-20 characters of uppercase letters and numbers")
    value = Decimal(discount_value)
    if discount_type == DiscountType.percentage:
        if value < 1 or value > 100:
            raise ValidationError("Percentage discount must be between 1 and 100")
        if max_discount_amount is None:
            raise ValidationError("Maximum discount amount is required for percentage coupons")
    else:
        if value < 1:
            raise ValidationError("Fixed discount must be at least 1")
        if value > MAX_FIXED_DISCOUNT:
            raise ValidationError("Fixed discount cannot exceed 100000")
    if max_discount_amount is not None and Decimal(max_discount_amount) < 1:
        raise ValidationError("Maximum discount amount must be at least 1")
    if Decimal(min_order_value) < 0:
        raise ValidationError("Minimum order value cannot be negative")
    if max_usage_limit is not None and max_usage_limit < 1:
        raise ValidationError("Usage limit must be at least 1")
    if max_usage_per_user is not None and max_usage_per_user < 1:
        raise ValidationError("Per-user usage limit must be at least 1")

    start = ensure_utc(valid_from)
    end = ensure_utc(valid_until)
    if end <= start:
        raise ValidationError("Valid until date must be after valid from date")
    if now is not None and end <= ensure_utc(now):
        raise ValidationError("Valid until date must be in the future")
