from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.services.shipments import TrackingEvent


class TrackingEventIn(BaseModel):
    waybill: str = Field(min_length=1, max_length=64)
    event: TrackingEvent
    location: str | None = Field(default=None, max_length=255)
    courier: str | None = Field(default=None, max_length=120)
    occurred_at: datetime | None = None


class ShipmentEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    waybill: str
    event: str
    order_id: UUID | None = None
    applied: bool
    note: str | None = None
    received_at: datetime
