import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.core.errors import EligibilityError, EligibilityReason, ValidationError
from storefront.models.coupon import CouponScopeEntityType, CouponScopeMode, DiscountType
from storefront.services import coupon_rules
from storefront.services.coupon_rules import CartLine, CouponRules

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
USER = uuid.uuid4()


def _rules(**overrides) -> CouponRules:
    values = {
        "code": "SAVE20",
        "discount_type": DiscountType.percentage,
        "discount_value": Decimal("20"),
        "max_discount_amount": Decimal("200"),
        "min_order_value": Decimal("500"),
        "valid_from": NOW - timedelta(days=1),
        "valid_until": NOW + timedelta(days=30),
    }
    values.update(overrides)
    return CouponRules(**values)


def _line(product_id=None, category_id=None, price="100.00", quantity=1) -> CartLine:
    return CartLine(
        product_id=product_id or uuid.uuid4(),
        category_id=category_id,
        quantity=quantity,
        unit_price=Decimal(price),
    )


def _evaluate(rules, cart_total, lines=None, **kwargs):
    return coupon_rules.evaluate(
        rules,
        user_id=kwargs.pop("user_id", USER),
        cart_total=Decimal(cart_total),
        lines=lines or [_line(price=cart_total)],
        now=kwargs.pop("now", NOW),
        **kwargs,
    )


def test_percentage_discount_is_capped_by_max_discount() -> None:
    result = _evaluate(_rules(), "1000.00")
    assert result.eligible
    assert result.discount_amount == Decimal("200.00")


def test_below_minimum_order_value_is_rejected() -> None:
    result = _evaluate(_rules(), "400.00")
    assert not result.eligible
    assert result.reason == EligibilityReason.below_minimum_order_value
    assert result.message == "Minimum order value of ₹500 required"
    with pytest.raises(EligibilityError) as exc:
        result.raise_if_ineligible()
    assert exc.value.code == "below_minimum_order_value"


def test_fixed_discount_never_exceeds_cart_total() -> None:
    rules = _rules(
        code="FLAT50",
        discount_type=DiscountType.fixed,
        discount_value=Decimal("50"),
        max_discount_amount=None,
        min_order_value=Decimal("0"),
    )
    result = _evaluate(rules, "30.00")
    assert result.eligible
    assert result.discount_amount == Decimal("30.00")


@pytest.mark.parametrize(
    ("overrides", "reason", "message"),
    [
        ({"is_active": False}, EligibilityReason.not_active, "Coupon is not active"),
        ({"valid_until": NOW}, EligibilityReason.expired, "Coupon has expired"),
        ({"valid_from": NOW + timedelta(hours=1)}, EligibilityReason.not_yet_valid, "Coupon not yet valid"),
        (
            {"max_usage_limit": 10, "usage_count": 10},
            EligibilityReason.global_limit_reached,
            "Coupon usage limit reached",
        ),
        (
            {"user_ids": frozenset({uuid.uuid4()})},
            EligibilityReason.user_not_eligible,
            "This coupon is not applicable for you",
        ),
    ],
)
def test_validity_and_user_failures(overrides, reason, message) -> None:
    result = _evaluate(_rules(**overrides), "1000.00")
    assert not result.eligible
    assert result.reason == reason
    assert result.message == message
    assert result.discount_amount == Decimal("0.00")


def test_valid_from_is_inclusive() -> None:
    assert _evaluate(_rules(valid_from=NOW), "1000.00").eligible


def test_per_user_cap() -> None:
    rules = _rules(max_usage_per_user=2)
    assert _evaluate(rules, "1000.00", user_used_count=1).eligible
    result = _evaluate(rules, "1000.00", user_used_count=2)
    assert result.reason == EligibilityReason.user_limit_reached
    assert result.message == "You have already used this coupon 2 time(s)"


def test_unlimited_per_user_cap() -> None:
    assert _evaluate(_rules(max_usage_per_user=None), "1000.00", user_used_count=50).eligible


def test_validity_checks_run_before_order_checks() -> None:
    result = _evaluate(_rules(is_active=False), "10.00")
    assert result.reason == EligibilityReason.not_active


def test_allow_list_matches_product_or_category() -> None:
    product_id = uuid.uuid4()
    category_id = uuid.uuid4()
    by_product = _rules(min_order_value=Decimal("0"), product_ids=frozenset({product_id}))
    by_category = _rules(min_order_value=Decimal("0"), category_ids=frozenset({category_id}))

    assert _evaluate(by_product, "100.00", [_line(product_id=product_id)]).eligible
    assert _evaluate(by_category, "100.00", [_line(category_id=category_id)]).eligible

    miss = _evaluate(by_product, "100.00", [_line(category_id=category_id)])
    assert miss.reason == EligibilityReason.no_applicable_items
    assert miss.message == "No applicable products in cart"


def test_excluded_product_rejects_whole_cart() -> None:
    excluded = uuid.uuid4()
    rules = _rules(min_order_value=Decimal("0"), excluded_product_ids=frozenset({excluded}))
    result = _evaluate(rules, "200.00", [_line(), _line(product_id=excluded)])
    assert result.reason == EligibilityReason.excluded_item_present
    assert result.message == "Some items in cart cannot use this coupon"


def test_free_shipping_flag_is_reported() -> None:
    result = _evaluate(_rules(free_shipping=True), "1000.00")
    assert result.eligible
    assert result.free_shipping is True


@pytest.mark.parametrize(
    ("discount_type", "value", "cap", "cart_total"),
    [
        (DiscountType.percentage, "100", None, "250.00"),
        (DiscountType.percentage, "15", "10", "999.99"),
        (DiscountType.percentage, "33", None, "0.03"),
        (DiscountType.fixed, "100000", None, "1.00"),
        (DiscountType.fixed, "25", None, "25.00"),
        (DiscountType.fixed, "25", None, "0.00"),
    ],
)
def test_discount_stays_between_zero_and_cart_total(discount_type, value, cap, cart_total) -> None:
    discount = coupon_rules.compute_discount(
        discount_type,
        Decimal(value),
        Decimal(cart_total),
        max_discount_amount=Decimal(cap) if cap else None,
    )
    assert Decimal("0.00") <= discount <= Decimal(cart_total)


def test_percentage_rounding_is_half_up() -> None:
    assert coupon_rules.compute_discount(DiscountType.percentage, Decimal("10"), Decimal("0.25")) == Decimal("0.03")


def test_from_model_reads_scopes(make_coupon, session_factory) -> None:
    product_id = uuid.uuid4()
    excluded_id = uuid.uuid4()

    async def run() -> CouponRules:
        async with session_factory() as session:
            coupon = await make_coupon(
                session,
                scopes=[
                    (CouponScopeEntityType.product, product_id, CouponScopeMode.include),
                    (CouponScopeEntityType.product, excluded_id, CouponScopeMode.exclude),
                ],
            )
            return CouponRules.from_model(coupon)

    rules = asyncio.run(run())
    assert rules.product_ids == frozenset({product_id})
    assert rules.excluded_product_ids == frozenset({excluded_id})
    assert rules.valid_until.tzinfo is not None


def _definition(**overrides):
    values = {
        "code": "SAVE20",
        "discount_type": DiscountType.percentage,
        "discount_value": Decimal("20"),
        "max_discount_amount": Decimal("200"),
        "min_order_value": Decimal("0"),
        "max_usage_limit": None,
        "max_usage_per_user": 1,
        "valid_from": NOW,
        "valid_until": NOW + timedelta(days=7),
    }
    values.update(overrides)
    return values


def test_valid_definition_passes() -> None:
    coupon_rules.validate_definition(**_definition(), now=NOW)


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"code": "ab"}, "Coupon code must be 3-20 characters of uppercase letters and numbers"),
        ({"code": "SAVE-20"}, "Coupon code must be 3-20 characters of uppercase letters and numbers"),
        ({"discount_value": Decimal("101")}, "Percentage discount must be between 1 and 100"),
        ({"max_discount_amount": None}, "Maximum discount amount is required for percentage coupons"),
        (
            {"discount_type": DiscountType.fixed, "discount_value": Decimal("100001"), "max_discount_amount": None},
            "Fixed discount cannot exceed 100000",
        ),
        ({"min_order_value": Decimal("-1")}, "Minimum order value cannot be negative"),
        ({"max_usage_per_user": 0}, "Per-user usage limit must be at least 1"),
        ({"valid_until": NOW}, "Valid until date must be after valid from date"),
    ],
)
def test_invalid_definitions_are_rejected(overrides, message) -> None:
    with pytest.raises(ValidationError) as exc:
        coupon_rules.validate_definition(**_definition(**overrides), now=NOW)
    assert exc.value.message == message


def test_valid_until_must_be_in_the_future_on_create() -> None:
    past = NOW - timedelta(days=10)
    definition = _definition(valid_from=past, valid_until=past + timedelta(days=1))
    coupon_rules.validate_definition(**definition)
    with pytest.raises(ValidationError):
        coupon_rules.validate_definition(**definition, now=NOW)
