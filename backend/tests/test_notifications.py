import asyncio
import json
import logging
import uuid
from decimal import Decimal

from storefront.core.errors import ExternalCollaboratorError
from storefront.core.logging_config import JsonFormatter, build_log_payload
from storefront.services import notifications


async def _fails_with(exc: Exception) -> None:
    raise exc


async def _succeeds() -> None:
    return None


def test_deliver_swallows_collaborator_failures(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="storefront.services.notifications")

    assert asyncio.run(notifications.deliver("order_confirmed", _succeeds())) is True
    assert asyncio.run(notifications.deliver("order_confirmed", _fails_with(ExternalCollaboratorError("smtp down")))) is False
    assert asyncio.run(notifications.deliver("coupon_expiring", _fails_with(RuntimeError("timeout")))) is False

    failures = [r for r in caplog.records if r.getMessage() == "notification_failed"]
    assert [r.error for r in failures] == ["smtp down", "timeout"]


def test_set_notifier_swaps_the_default() -> None:
    class _Silent(notifications.LoggingNotifier):
        pass

    replacement = _Silent()
    previous = notifications.set_notifier(replacement)
    try:
        assert notifications.get_notifier() is replacement
    finally:
        notifications.set_notifier(previous)
    assert isinstance(notifications.get_notifier(), notifications.LoggingNotifier)


def test_json_log_payload_keeps_money_exact() -> None:
    record = logging.LogRecord("storefront.test", logging.INFO, __file__, 1, "coupon_applied", None, None)
    record.discount_amount = Decimal("200.00")
    record.order_id = uuid.UUID("00000000-0000-0000-0000-000000000001")
    payload = build_log_payload(record)
    assert payload["message"] == "coupon_applied"
    assert payload["discount_amount"] == "200.00"
    assert payload["order_id"] == "00000000-0000-0000-0000-000000000001"
    assert json.loads(JsonFormatter().format(record))["discount_amount"] == "200.00"
