from storefront.models.catalog import Category, Product, ProductVariant
from storefront.models.coupon import (
    Coupon,
    CouponScope,
    CouponScopeEntityType,
    CouponScopeMode,
    CouponUsageRecord,
    CouponUserUsage,
    DiscountType,
)
from storefront.models.ops import PendingSideEffect, ShipmentEvent, SideEffectKind
from storefront.models.order import (
    CouponSnapshot,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderSequence,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
    PaymentStatus,
    ReturnStatus,
)

__all__ = [
    "Category",
    "Coupon",
    "CouponScope",
    "CouponScopeEntityType",
    "CouponScopeMode",
    "CouponSnapshot",
    "CouponUsageRecord",
    "CouponUserUsage",
    "DiscountType",
    "Order",
    "OrderItem",
    "OrderItemStatus",
    "OrderSequence",
    "OrderStatus",
    "OrderStatusHistory",
    "PaymentMethod",
    "PaymentStatus",
    "PendingSideEffect",
    "Product",
    "ProductVariant",
    "ReturnStatus",
    "ShipmentEvent",
    "SideEffectKind",
]
