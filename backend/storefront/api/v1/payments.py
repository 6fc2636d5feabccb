from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.dependencies import require_admin, verify_payment_callback
from storefront.core.identity import Actor
from storefront.db.session import get_session
from storefront.schemas.order import OrderRead
from storefront.schemas.payment import PaymentConfirmRequest, PaymentFailureRequest, RefundRequest
from storefront.services import order as order_service
from storefront.services import payments as payments_service

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/confirm", response_model=OrderRead, dependencies=[Depends(verify_payment_callback)])
async def confirm_payment(payload: PaymentConfirmRequest, session: AsyncSession = Depends(get_session)) -> OrderRead:
    order = await order_service.find_order_by_reference(session, payload.order_reference)
    order = await payments_service.confirm_payment(
        session,
        order,
        gateway_payment_id=payload.gateway_payment_id,
        gateway_order_id=payload.gateway_order_id,
        gateway_signature=payload.gateway_signature,
    )
    return OrderRead.model_validate(order)


@router.post("/failure", response_model=OrderRead, dependencies=[Depends(verify_payment_callback)])
async def payment_failure(payload: PaymentFailureRequest, session: AsyncSession = Depends(get_session)) -> OrderRead:
    order = await order_service.find_order_by_reference(session, payload.order_reference)
    order = await payments_service.record_payment_failure(session, order, reason=payload.reason)
    return OrderRead.model_validate(order)


@router.post("/refund", response_model=OrderRead)
async def refund_payment(
    payload: RefundRequest,
    session: AsyncSession = Depends(get_session),
    _: Actor = Depends(require_admin),
) -> OrderRead:
    order = await order_service.find_order_by_reference(session, payload.order_reference)
    order = await payments_service.refund_payment(session, order, amount=payload.amount)
    return OrderRead.model_validate(order)
