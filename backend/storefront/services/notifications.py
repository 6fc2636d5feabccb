from __future__ import annotations

import logging
from typing import Awaitable, Protocol

from storefront.core.errors import ExternalCollaboratorError
from storefront.models.coupon import Coupon
from storefront.models.order import Order

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def order_confirmed(self, order: Order) -> None: ...

    async def order_status_changed(self, order: Order, status: str, note: str | None = None) -> None: ...

    async def coupon_expiring(self, coupon: Coupon, days_left: int) -> None: ...


class LoggingNotifier:
    """Default notifier: writes the message to the log instead of sending it."""

    async def order_confirmed(self, order: Order) -> None:
        logger.info("notify_order_confirmed", extra={"order_number": order.order_number, "user_id": order.user_id})

    async def order_status_changed(self, order: Order, status: str, note: str | None = None) -> None:
        logger.info(
            "notify_order_status_changed",
            extra={"order_number": order.order_number, "user_id": order.user_id, "status": status, "note": note},
        )

    async def coupon_expiring(self, coupon: Coupon, days_left: int) -> None:
        logger.info("notify_coupon_expiring", extra={"coupon_code": coupon.code, "days_left": days_left})


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> Notifier:
    global _notifier
    previous = _notifier
    _notifier = notifier
    return previous


async def deliver(event: str, call: Awaitable[None]) -> bool:
    """Await a notifier call; failures are logged and never propagate."""
    try:
        await call
    except ExternalCollaboratorError as exc:
        logger.warning("notification_failed", extra={"event": event, "error": exc.message})
        return False
    except Exception as exc:
        logger.warning("notification_failed", extra={"event": event, "error": str(exc)})
        return False
    return True
