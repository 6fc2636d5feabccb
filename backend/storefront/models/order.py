import enum
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models.coupon import DiscountType


class OrderStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class OrderItemStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    packed = "packed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    returned = "returned"


class PaymentMethod(str, enum.Enum):
    gateway = "gateway"
    cod = "cod"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class ReturnStatus(str, enum.Enum):
    requested = "requested"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"


@dataclass(frozen=True)
class CouponSnapshot:
    """Coupon terms as they were when applied; later coupon edits never reach the order."""

    coupon_id: uuid.UUID
    code: str
    discount_type: DiscountType
    discount_amount: Decimal
    free_shipping: bool
    applied_at: datetime


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, native_enum=False), nullable=False, default=OrderStatus.pending, index=True
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    shipping_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    coupon_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    coupon_discount_type: Mapped[DiscountType | None] = mapped_column(
        Enum(DiscountType, native_enum=False), nullable=True
    )
    coupon_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    coupon_free_shipping: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    coupon_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, native_enum=False), nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False), nullable=False, default=PaymentStatus.pending, index=True
    )
    gateway_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tracking_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    courier: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_tracking_event: Mapped[str | None] = mapped_column(String(40), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    return_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_status: Mapped[ReturnStatus | None] = mapped_column(Enum(ReturnStatus, native_enum=False), nullable=True)
    return_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    customer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin", order_by="OrderItem.position"
    )
    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderStatusHistory.position",
    )

    @property
    def applied_coupon(self) -> CouponSnapshot | None:
        if self.coupon_id is None or not self.coupon_code:
            return None
        return CouponSnapshot(
            coupon_id=self.coupon_id,
            code=self.coupon_code,
            discount_type=DiscountType(self.coupon_discount_type),
            discount_amount=Decimal(self.coupon_discount_amount or 0),
            free_shipping=bool(self.coupon_free_shipping),
            applied_at=self.coupon_applied_at,
        )

    def attach_coupon(self, snapshot: CouponSnapshot) -> None:
        self.coupon_id = snapshot.coupon_id
        self.coupon_code = snapshot.code
        self.coupon_discount_type = snapshot.discount_type
        self.coupon_discount_amount = snapshot.discount_amount
        self.coupon_free_shipping = snapshot.free_shipping
        self.coupon_applied_at = snapshot.applied_at

    def detach_coupon(self) -> None:
        self.coupon_id = None
        self.coupon_code = None
        self.coupon_discount_type = None
        self.coupon_discount_amount = None
        self.coupon_free_shipping = None
        self.coupon_applied_at = None


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False)
    category_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    variant_sku: Mapped[str | None] = mapped_column(String(64), nullable=True)
    seller_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    product_name: Mapped[str] = mapped_column(String(160), nullable=False)
    product_image: Mapped[str | None] = mapped_column(String(500), nullable=True)
    product_sku: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False, default=1)
    line_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipping_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    free_shipping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[OrderItemStatus] = mapped_column(
        Enum(OrderItemStatus, native_enum=False), nullable=False, default=OrderItemStatus.pending
    )

    order: Mapped[Order] = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    order: Mapped[Order] = relationship("Order", back_populates="status_history")


class OrderSequence(Base):
    """Per-day counter backing order numbers; incremented atomically, never recounted."""

    __tablename__ = "order_sequences"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
