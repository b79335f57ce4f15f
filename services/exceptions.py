from typing import Optional


class BookingError(Exception):
    """Base exception for booking errors.

    Every error carries a stable ``code`` so that clients can decide what to
    do next: pick another time, retry, or log in again.
    """

    status_code = 400

    def __init__(self, code: str, message: str, suggestion: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.suggestion = suggestion
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
        }


class ConfigurationError(BookingError):
    status_code = 422

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__("INVALID_CONFIGURATION", message, suggestion)


class NotFoundError(BookingError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__("NOT_FOUND", message)


class SlotUnavailableError(BookingError):
    status_code = 409

    def __init__(self, message: str = "The selected time is no longer available",
                 code: str = "SLOT_NO_LONGER_AVAILABLE"):
        super().__init__(code, message, "Pick another time from a fresh slot list")


class StatusTransitionError(BookingError):
    status_code = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            "INVALID_STATUS_TRANSITION",
            f"Cannot change appointment status from {current} to {requested}",
        )


class ForbiddenError(BookingError):
    status_code = 403

    def __init__(self, message: str = "Not allowed to act on this record"):
        super().__init__("FORBIDDEN", message)


class AuthRequiredError(BookingError):
    status_code = 401

    def __init__(self):
        super().__init__("AUTH_REQUIRED", "Authentication required", "Log in and try again")


class ConsistencyError(BookingError):
    status_code = 500

    def __init__(self, message: str):
        super().__init__("PARTIAL_WRITE", message, "Retry the booking from a fresh slot list")


class TransientStoreError(BookingError):
    status_code = 503

    def __init__(self, message: str = "The booking store is temporarily unavailable"):
        super().__init__("STORE_UNAVAILABLE", message, "Retry the whole booking flow")


class UsageLimitError(BookingError):
    status_code = 429

    def __init__(self, message: str):
        super().__init__("WEEKLY_LIMIT", message, "The analysis for this week is already available")
