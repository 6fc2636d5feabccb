"""Domain error taxonomy.

Services raise these; the HTTP layer renders them through a single exception
handler so callers always get ``{"detail": <message>, "code": <code>}``.
"""

from __future__ import annotations

import enum


class CommerceError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(CommerceError):
    status_code = 400
    code = "validation_error"


class NotFoundError(CommerceError):
    status_code = 404
    code = "not_found"


class EligibilityReason(str, enum.Enum):
    not_active = "not_active"
    expired = "expired"
    not_yet_valid = "not_yet_valid"
    global_limit_reached = "global_limit_reached"
    user_not_eligible = "user_not_eligible"
    user_limit_reached = "user_limit_reached"
    below_minimum_order_value = "below_minimum_order_value"
    no_applicable_items = "no_applicable_items"
    excluded_item_present = "excluded_item_present"


class EligibilityError(CommerceError):
    status_code = 400

    def __init__(self, reason: EligibilityReason, message: str) -> None:
        super().__init__(message, code=reason.value)
        self.reason = reason


class InvalidTransitionError(CommerceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, message: str, *, current_status: str | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.current_status = current_status


class ReturnWindowExpiredError(InvalidTransitionError):
    code = "return_window_expired"


class ConcurrencyError(CommerceError):
    status_code = 409
    code = "concurrency_conflict"


class InsufficientStockError(ConcurrencyError):
    code = "insufficient_stock"


class ExternalCollaboratorError(CommerceError):
    status_code = 502
    code = "external_collaborator_error"
