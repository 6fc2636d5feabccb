from fastapi import APIRouter

from storefront.api.v1 import coupons, orders, payments, webhooks
from storefront.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(coupons.router)
api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(webhooks.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
