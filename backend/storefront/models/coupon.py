import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class CouponScopeEntityType(str, enum.Enum):
    product = "product"
    category = "category"
    user = "user"


class CouponScopeMode(str, enum.Enum):
    include = "include"
    exclude = "exclude"


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    discount_type: Mapped[DiscountType] = mapped_column(Enum(DiscountType, native_enum=False), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    min_order_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    max_usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_usage_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True, default=1)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    free_shipping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    combinable_with_other_coupons: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    scopes: Mapped[list["CouponScope"]] = relationship(
        "CouponScope", back_populates="coupon", cascade="all, delete-orphan", lazy="selectin"
    )
    user_usages: Mapped[list["CouponUserUsage"]] = relationship(
        "CouponUserUsage", back_populates="coupon", cascade="all, delete-orphan", lazy="selectin"
    )

    def scope_ids(self, entity_type: CouponScopeEntityType, mode: CouponScopeMode) -> set[uuid.UUID]:
        return {s.entity_id for s in self.scopes or [] if s.entity_type == entity_type and s.mode == mode}


class CouponScope(Base):
    __tablename__ = "coupon_scopes"
    __table_args__ = (UniqueConstraint("coupon_id", "entity_type", "entity_id", name="uq_coupon_scopes_coupon_type_entity"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entity_type: Mapped[CouponScopeEntityType] = mapped_column(
        Enum(CouponScopeEntityType, native_enum=False), nullable=False
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    mode: Mapped[CouponScopeMode] = mapped_column(
        Enum(CouponScopeMode, native_enum=False), nullable=False, default=CouponScopeMode.include
    )

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="scopes")


class CouponUserUsage(Base):
    __tablename__ = "coupon_user_usages"
    __table_args__ = (UniqueConstraint("coupon_id", "user_id", name="uq_coupon_user_usages_coupon_user"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="user_usages")


class CouponUsageRecord(Base):
    __tablename__ = "coupon_usage_records"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
