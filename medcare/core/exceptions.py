from typing import Any, Dict, Optional
from fastapi import HTTPException, status


class BookingError(HTTPException):
    """Base class for appointment engine errors.

    Each subclass carries a stable machine-readable ``code`` and optional
    ``extra`` fields that the API error handler merges into the response body.
    """

    code = "booking_error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=self.status_code_default, detail=detail)
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.detail}
        body.update(self.extra)
        return body


class NotFound(BookingError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND


class ValidationFailed(BookingError):
    code = "validation_failed"
    status_code_default = status.HTTP_400_BAD_REQUEST


class Forbidden(BookingError):
    code = "forbidden"
    status_code_default = status.HTTP_403_FORBIDDEN


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, current: str, attempted: str, reason: Optional[str] = None):
        detail = f"Cannot move appointment from '{current}' to '{attempted}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail, {"current_status": current, "attempted_status": attempted})
        self.current = current
        self.attempted = attempted


class SlotTaken(BookingError):
    code = "slot_taken"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, blocking_request_id: int, blocking_patient_id: int):
        super().__init__(
            f"This time slot is already booked by appointment {blocking_request_id} "
            f"(patient {blocking_patient_id})",
            {
                "blocking_request_id": blocking_request_id,
                "blocking_patient_id": blocking_patient_id,
            },
        )
        self.blocking_request_id = blocking_request_id
        self.blocking_patient_id = blocking_patient_id


class Conflict(BookingError):
    code = "conflict"
    status_code_default = status.HTTP_409_CONFLICT


class Unavailable(BookingError):
    code = "unavailable"
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, detail: str = "Storage temporarily unavailable, please retry"):
        super().__init__(detail, {"retryable": True})
