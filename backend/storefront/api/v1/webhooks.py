from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import verify_shipment_callback
from storefront.db.session import get_session
from storefront.schemas.shipment import ShipmentEventRead, TrackingEventIn
from storefront.services import shipments as shipments_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/shipments", response_model=ShipmentEventRead, dependencies=[Depends(verify_shipment_callback)])
async def shipment_webhook(payload: TrackingEventIn, session: AsyncSession = Depends(get_session)) -> ShipmentEventRead:
    record = await shipments_service.handle_tracking_event(
        session,
        waybill=payload.waybill,
        event=payload.event,
        location=payload.location,
        courier=payload.courier,
        payload=payload.model_dump(mode="json"),
    )
    return ShipmentEventRead.model_validate(record)
