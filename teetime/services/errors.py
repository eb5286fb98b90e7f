"""Typed errors raised by the booking transaction and status engines."""


class BookingError(Exception):
    """Base class for booking failures; ``code`` is stable and safe to branch on."""

    code = "booking_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class BookingInPastError(BookingError):
    code = "booking_in_past"


class BookingTooSoonError(BookingError):
    code = "booking_too_soon"


class BayUnavailableError(BookingError):
    code = "bay_unavailable"


class ReferenceGenerationError(BookingError):
    code = "booking_reference_exhausted"


class CancellationWindowExceededError(BookingError):
    code = "cancellation_window_exceeded"


class BookingNotFoundError(BookingError):
    code = "booking_not_found"


class BookingMissingIdsError(BookingError):
    code = "booking_intake_missing_ids"


class InvalidStatusTransitionError(BookingError):
    code = "invalid_status_transition"
