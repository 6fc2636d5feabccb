from collections import Counter
from threading import Lock
from typing import Counter as CounterType, Dict

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_order_created() -> None:
    _inc("orders_created")


def record_order_cancelled() -> None:
    _inc("orders_cancelled")


def record_coupon_applied() -> None:
    _inc("coupons_applied")


def record_coupon_rejected() -> None:
    _inc("coupons_rejected")


def record_payment_failure() -> None:
    _inc("payment_failures")


def record_side_effect_failure() -> None:
    _inc("side_effect_failures")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
