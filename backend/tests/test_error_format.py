import uuid

from storefront.core.errors import (
    CommerceError,
    EligibilityError,
    EligibilityReason,
    InsufficientStockError,
    InvalidTransitionError,
    ReturnWindowExpiredError,
)


def test_http_error_shape(client) -> None:
    res = client.get("/api/v1/does-not-exist")
    assert res.status_code == 404
    body = res.json()
    assert set(body.keys()) == {"detail", "code"}
    assert body["detail"] == "Not Found"


def test_validation_error_shape(client, headers) -> None:
    res = client.post("/api/v1/orders", json={"items": []}, headers=headers(uuid.uuid4()))
    assert res.status_code == 422
    body = res.json()
    assert body["code"] == "validation_error"
    assert isinstance(body["detail"], list)


def test_error_codes_and_statuses() -> None:
    assert InvalidTransitionError("nope").status_code == 409
    assert InvalidTransitionError("nope").code == "invalid_transition"
    assert ReturnWindowExpiredError("late").code == "return_window_expired"
    assert isinstance(ReturnWindowExpiredError("late"), InvalidTransitionError)
    assert InsufficientStockError("empty").status_code == 409
    assert CommerceError("custom", code="custom_code").code == "custom_code"

    error = EligibilityError(EligibilityReason.expired, "Coupon has expired")
    assert error.code == "expired"
    assert error.status_code == 400
    assert error.message == "Coupon has expired"
