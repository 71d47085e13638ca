"""Typed outcomes of the scheduling engine.

Each error carries a stable machine-readable code and the HTTP status the
API layer renders it with.
"""

from typing import Any, Optional


class SchedulingError(Exception):
    code = "scheduling_error"
    http_status = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(SchedulingError):
    """Malformed or missing input, rejected before any lookup"""

    code = "validation_error"
    http_status = 422

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class InvalidRequestError(ValidationError):
    code = "invalid_request"


class NotFoundError(SchedulingError):
    code = "not_found"
    http_status = 404


class ForbiddenError(SchedulingError):
    code = "forbidden"
    http_status = 403


class ConflictError(SchedulingError):
    """Double booking detected; carries what to retry with"""

    code = "conflict"
    http_status = 409

    def __init__(
        self,
        message: str,
        conflicts: Optional[list] = None,
        suggestions: Optional[list] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.conflicts = conflicts or []
        self.suggestions = suggestions or []


class NoAvailabilityError(SchedulingError):
    code = "no_availability"
    http_status = 404

    def __init__(self, message: str, alternative_dates: Optional[list] = None):
        self.alternative_dates = alternative_dates or []
        super().__init__(
            message, {"alternative_dates": [d.isoformat() for d in self.alternative_dates]}
        )


class ConcurrencyError(SchedulingError):
    """Stale version on write; caller must re-fetch and retry"""

    code = "concurrency_error"
    http_status = 409

    def __init__(self, message: str, expected_version: Any = None, current_version: Any = None):
        super().__init__(
            message,
            {"expected_version": expected_version, "current_version": current_version},
        )


class InvalidTransitionError(SchedulingError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, current_status, requested_status):
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(
            f"Cannot change status from '{current}' to '{requested}'",
            {"current_status": current, "requested_status": requested},
        )


class SchedulingTimeoutError(SchedulingError):
    code = "timeout"
    http_status = 504


class InternalError(SchedulingError):
    """Opaque wrapper for unexpected failures"""

    code = "internal_error"
    http_status = 500

    def __init__(self, error_id: str):
        super().__init__(
            "Internal server error. Reference this error_id with support.",
            {"error_id": error_id},
        )
        self.error_id = error_id
