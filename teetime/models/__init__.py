from teetime.models.audit_log import AuditLog
from teetime.models.booking import Booking, BookingStatusHistory
from teetime.models.booking_state import BookingState
from teetime.models.club import Club, ClubLocation, ClubLocationBay
from teetime.models.member import MemberProfile
from teetime.models.message_log import MessageDedup, MessageLog
from teetime.models.notification import Notification, ScheduledJob
from teetime.models.support_request import SupportRequest

__all__ = [
    "MemberProfile",
    "Club",
    "ClubLocation",
    "ClubLocationBay",
    "Booking",
    "BookingStatusHistory",
    "BookingState",
    "MessageLog",
    "MessageDedup",
    "Notification",
    "ScheduledJob",
    "SupportRequest",
    "AuditLog",
]
