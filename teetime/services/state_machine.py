from enum import Enum

from teetime.services.errors import InvalidStatusTransitionError


class BookingStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    NOT_AVAILABLE = "Not Available"
    CANCELLED = "Cancelled"
    FOLLOW_UP_REQUIRED = "Follow-up required"


VALID_TRANSITIONS = {
    BookingStatus.PENDING: [
        BookingStatus.CONFIRMED,
        BookingStatus.NOT_AVAILABLE,
        BookingStatus.CANCELLED,
        BookingStatus.FOLLOW_UP_REQUIRED,
    ],
    BookingStatus.FOLLOW_UP_REQUIRED: [
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.NOT_AVAILABLE,
        BookingStatus.CANCELLED,
    ],
    BookingStatus.CONFIRMED: [BookingStatus.CANCELLED, BookingStatus.FOLLOW_UP_REQUIRED],
    BookingStatus.NOT_AVAILABLE: [BookingStatus.PENDING, BookingStatus.CANCELLED],
    BookingStatus.CANCELLED: [],
}


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: BookingStatus, to_status: BookingStatus) -> BookingStatus:
    """Perform status transition. Raises InvalidStatusTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidStatusTransitionError(f"Invalid transition: {from_status.value} -> {to_status.value}")
    return to_status


def is_terminal(status: BookingStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)
