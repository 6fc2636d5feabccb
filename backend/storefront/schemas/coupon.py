from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.models.coupon import DiscountType
from storefront.schemas.common import PaginationMeta
from storefront.services.coupon_ledger import CouponStatus


class CouponScopeFields(BaseModel):
    applicable_product_ids: list[UUID] = Field(default_factory=list)
    applicable_category_ids: list[UUID] = Field(default_factory=list)
    applicable_user_ids: list[UUID] = Field(default_factory=list)
    excluded_product_ids: list[UUID] = Field(default_factory=list)


class CouponCreate(CouponScopeFields):
    code: str = Field(min_length=3, max_length=20)
    description: str | None = Field(default=None, max_length=500)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    max_discount_amount: Decimal | None = Field(default=None, gt=0)
    min_order_value: Decimal = Field(default=Decimal("0.00"), ge=0)
    max_usage_limit: int | None = Field(default=None, ge=1)
    max_usage_per_user: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime
    is_active: bool = True
    free_shipping: bool = False
    combinable_with_other_coupons: bool = False
    note: str | None = Field(default=None, max_length=2000)


class CouponUpdate(BaseModel):
    description: str | None = Field(default=None, max_length=500)
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(default=None, gt=0)
    max_discount_amount: Decimal | None = Field(default=None, gt=0)
    min_order_value: Decimal | None = Field(default=None, ge=0)
    max_usage_limit: int | None = Field(default=None, ge=1)
    max_usage_per_user: int | None = Field(default=None, ge=1)
    valid_until: datetime | None = None
    is_active: bool | None = None
    free_shipping: bool | None = None
    combinable_with_other_coupons: bool | None = None
    note: str | None = Field(default=None, max_length=2000)
    applicable_product_ids: list[UUID] | None = None
    applicable_category_ids: list[UUID] | None = None
    applicable_user_ids: list[UUID] | None = None
    excluded_product_ids: list[UUID] | None = None


class CouponRead(CouponScopeFields):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    description: str | None = None
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Decimal | None = None
    min_order_value: Decimal
    max_usage_limit: int | None = None
    max_usage_per_user: int | None = None
    usage_count: int
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    free_shipping: bool
    combinable_with_other_coupons: bool
    note: str | None = None
    status: CouponStatus
    usage_percentage: Decimal | None = None
    created_by: UUID | None = None
    updated_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class CouponListResponse(BaseModel):
    items: list[CouponRead]
    meta: PaginationMeta


class AvailableCouponRead(BaseModel):
    id: UUID
    code: str
    description: str | None = None
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Decimal | None = None
    min_order_value: Decimal
    free_shipping: bool
    valid_until: datetime
    used_count: int
    remaining_uses: int | None = None
    can_use: bool
    reason: str | None = None


class UsageHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: UUID
    discount_amount: Decimal
    used_at: datetime
    reversed_at: datetime | None = None


class TopUserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    used_count: int
    last_used_at: datetime | None = None


class CouponAnalyticsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    coupon_id: UUID
    code: str
    status: CouponStatus
    total_usage: int
    unique_users: int
    orders_with_coupon: int
    total_discount_given: Decimal
    average_discount: Decimal
    usage_percentage: Decimal | None = None
    top_users: list[TopUserRead] = Field(default_factory=list)


class CartLineInput(BaseModel):
    product_id: UUID
    category_id: UUID | None = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(ge=0)


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    cart_total: Decimal = Field(ge=0)
    items: list[CartLineInput] = Field(default_factory=list)


class CouponValidateResponse(BaseModel):
    code: str
    discount_type: DiscountType
    discount_amount: Decimal
    free_shipping: bool
    original_total: Decimal
    final_total: Decimal


class CouponApplyRequest(BaseModel):
    order_id: UUID
    code: str = Field(min_length=1, max_length=40)
