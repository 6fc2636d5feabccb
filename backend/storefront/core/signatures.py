import hashlib
import hmac


def compute_signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    expected = compute_signature(secret, payload)
    return hmac.compare_digest(expected, str(signature).strip().lower())


def gateway_payment_signature(secret: str, *, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Checkout signature issued by the payment gateway for ``order_id|payment_id``."""
    return compute_signature(secret, f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8"))


def verify_gateway_payment_signature(
    secret: str, *, gateway_order_id: str | None, gateway_payment_id: str, signature: str | None
) -> bool:
    if not gateway_order_id:
        return False
    return verify_signature(secret, f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8"), signature)
