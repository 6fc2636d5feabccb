import logging
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from storefront.core.config import settings
from storefront.core.identity import Actor, Role
from storefront.core.signatures import verify_signature

logger = logging.getLogger(__name__)


async def get_current_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user id")
    try:
        role = Role((x_user_role or Role.customer.value).strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")
    return Actor(user_id=user_id, role=role)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


async def require_vendor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not (actor.is_vendor or actor.is_admin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vendor access required")
    return actor


async def _require_signed_body(request: Request, *, source: str, secret: str | None, signature: str | None) -> None:
    if not secret:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not set")
    payload = await request.body()
    if not verify_signature(secret, payload, signature):
        logger.warning("callback_signature_rejected", extra={"source": source, "path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


async def verify_payment_callback(request: Request, x_payment_signature: str | None = Header(default=None)) -> None:
    await _require_signed_body(
        request, source="payment", secret=settings.payment_webhook_secret, signature=x_payment_signature
    )


async def verify_shipment_callback(request: Request, x_shipment_signature: str | None = Header(default=None)) -> None:
    await _require_signed_body(
        request, source="shipment", secret=settings.shipment_webhook_secret, signature=x_shipment_signature
    )
