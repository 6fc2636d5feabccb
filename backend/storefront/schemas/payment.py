from decimal import Decimal

from pydantic import BaseModel, Field


class PaymentConfirmRequest(BaseModel):
    order_reference: str = Field(min_length=1, max_length=255)
    gateway_payment_id: str = Field(min_length=1, max_length=255)
    gateway_order_id: str | None = Field(default=None, max_length=255)
    gateway_signature: str | None = Field(default=None, max_length=255)


class PaymentFailureRequest(BaseModel):
    order_reference: str = Field(min_length=1, max_length=255)
    reason: str = Field(default="Payment failed", max_length=1000)


class RefundRequest(BaseModel):
    order_reference: str = Field(min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, gt=0)
