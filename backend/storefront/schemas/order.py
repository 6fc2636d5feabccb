from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.models.coupon import DiscountType
from storefront.models.order import (
    OrderItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ReturnStatus,
)
from storefront.schemas.common import PaginationMeta


class AddressIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    phone: str = Field(min_length=5, max_length=20)
    line1: str = Field(min_length=1, max_length=200)
    line2: str | None = Field(default=None, max_length=200)
    city: str = Field(min_length=1, max_length=80)
    state: str = Field(min_length=1, max_length=80)
    postal_code: str = Field(min_length=3, max_length=12)
    country: str = Field(default="IN", min_length=2, max_length=2)


class OrderItemCreate(BaseModel):
    product_id: UUID
    variant_sku: str | None = Field(default=None, max_length=64)
    quantity: int = Field(default=1, ge=1, le=100)


class OrderCreate(BaseModel):
    items: list[OrderItemCreate] = Field(min_length=1)
    payment_method: PaymentMethod = PaymentMethod.gateway
    shipping_address: AddressIn
    billing_address: AddressIn | None = None
    customer_notes: str | None = Field(default=None, max_length=1000)


class FulfillmentUpdate(BaseModel):
    status: OrderStatus
    note: str | None = Field(default=None, max_length=1000)
    tracking_number: str | None = Field(default=None, max_length=64)
    courier: str | None = Field(default=None, max_length=120)


class ItemStatusUpdate(BaseModel):
    status: OrderItemStatus


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class ReturnRequestCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class ReturnStatusUpdate(BaseModel):
    status: ReturnStatus
    note: str | None = Field(default=None, max_length=1000)


class AppliedCouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    coupon_id: UUID
    code: str
    discount_type: DiscountType
    discount_amount: Decimal
    free_shipping: bool
    applied_at: datetime | None = None


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    variant_sku: str | None = None
    seller_id: UUID | None = None
    product_name: str
    product_image: str | None = None
    product_sku: str | None = None
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    shipping_charge: Decimal
    status: OrderItemStatus


class StatusHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    note: str | None = None
    created_at: datetime


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    subtotal: Decimal
    shipping_charge: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    applied_coupon: AppliedCouponRead | None = None
    shipping_address: dict | None = None
    billing_address: dict | None = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    payment_completed_at: datetime | None = None
    refund_amount: Decimal | None = None
    refunded_at: datetime | None = None
    tracking_number: str | None = None
    courier: str | None = None
    last_tracking_event: str | None = None
    delivered_at: datetime | None = None
    is_cancelled: bool
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    is_returned: bool
    return_requested_at: datetime | None = None
    return_reason: str | None = None
    return_status: ReturnStatus | None = None
    customer_notes: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead] = Field(default_factory=list)
    status_history: list[StatusHistoryRead] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    items: list[OrderRead]
    meta: PaginationMeta
