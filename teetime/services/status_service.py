from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.models import AuditLog, Booking, BookingStatusHistory, MemberProfile
from teetime.services.booking_service import release_bay
from teetime.services.errors import BookingNotFoundError, CancellationWindowExceededError
from teetime.services.notification_service import (
    build_status_followup_message,
    queue_booking_notification,
    template_for_status,
)
from teetime.services.state_machine import BookingStatus, transition
from teetime.services.validation import booking_start_utc, format_time_label

logger = get_logger("status_service")


@dataclass
class AuditEntry:
    action: str
    actor_id: Optional[str] = None
    metadata: Optional[dict] = None


@dataclass
class StatusChange:
    booking: Booking
    history: BookingStatusHistory
    previous_status: str


def check_cancellation_window(booking: Booking, tz_name: Optional[str], now: datetime) -> None:
    window = settings.cancellation_window_minutes
    if window <= 0:
        return
    start = booking_start_utc(booking.preferred_date, booking.preferred_time_start, tz_name)
    if start is None:
        return
    if now >= start - timedelta(minutes=window):
        raise CancellationWindowExceededError()


def _booking_member(db: Session, booking: Booking) -> Optional[MemberProfile]:
    return db.query(MemberProfile).filter(MemberProfile.id == booking.member_id).first()


def _queue_member_notice(
    db: Session,
    booking: Booking,
    status: BookingStatus,
    *,
    staff_driven: bool,
    reason: Optional[str],
    alternate_times: Optional[list[str]],
    now: datetime,
) -> None:
    template = template_for_status(status.value)
    if not template:
        return
    recipient = body = None
    member = _booking_member(db, booking) if staff_driven else None
    if member and member.phone_number:
        body = build_status_followup_message(
            status.value,
            member_name=member.name,
            preferred_date=str(booking.preferred_date)[:10] if booking.preferred_date else None,
            preferred_time=format_time_label(booking.preferred_time_start),
            alternate_times=alternate_times,
        )
        recipient = member.phone_number if body else None
    queue_booking_notification(db, booking, template, reason=reason, recipient=recipient, body=body, now=now)


def set_booking_status_with_history(
    db: Session,
    booking_id,
    next_status: BookingStatus,
    *,
    changed_by_staff_id=None,
    reason: Optional[str] = None,
    audit: Optional[AuditEntry] = None,
    notify_member: bool = True,
    alternate_times: Optional[list[str]] = None,
    now: Optional[datetime] = None,
) -> StatusChange:
    """Move a booking to ``next_status`` and append its history row.

    Cancellation is refused inside the cancellation window; nothing is
    written in that case. Staff-driven changes to Confirmed, Not Available
    or Follow-up required send the member a conversational follow-up
    instead of the plain template notice.
    """
    now = now or datetime.now(timezone.utc)
    logger.info(
        "Booking status change",
        extra={"context": {"booking_id": str(booking_id), "next_status": next_status.value}},
    )

    booking = db.query(Booking).filter(Booking.id == booking_id).with_for_update().first()
    if not booking:
        raise BookingNotFoundError()

    previous_status = booking.status
    transition(BookingStatus(previous_status), next_status)

    if next_status == BookingStatus.CANCELLED:
        member = _booking_member(db, booking)
        check_cancellation_window(booking, member.timezone if member else None, now)
        booking.cancelled_at = now
        if booking.bay_id:
            release_bay(db, booking.bay_id, now)

    booking.status = next_status.value
    booking.updated_at = now
    if changed_by_staff_id:
        booking.staff_member_id = changed_by_staff_id

    history = BookingStatusHistory(
        booking_id=booking.id,
        previous_status=previous_status,
        next_status=next_status.value,
        changed_by_staff_id=changed_by_staff_id,
        reason=reason,
        created_at=now,
    )
    db.add(history)

    if audit:
        db.add(
            AuditLog(
                actor_id=audit.actor_id,
                action=audit.action,
                resource_type="booking",
                resource_id=booking.id,
                audit_metadata=audit.metadata or {},
                created_at=now,
            )
        )

    if notify_member:
        _queue_member_notice(
            db,
            booking,
            next_status,
            staff_driven=changed_by_staff_id is not None,
            reason=reason,
            alternate_times=alternate_times,
            now=now,
        )

    db.flush()
    logger.info(
        "Booking status changed",
        extra={
            "context": {
                "booking_id": str(booking.id),
                "previous_status": previous_status,
                "next_status": next_status.value,
            }
        },
    )
    return StatusChange(booking=booking, history=history, previous_status=previous_status)


def cancel_booking_with_history(
    db: Session,
    booking_id,
    member_id,
    *,
    reason: Optional[str] = None,
    staff_member_id=None,
    now: Optional[datetime] = None,
) -> StatusChange:
    return set_booking_status_with_history(
        db,
        booking_id,
        BookingStatus.CANCELLED,
        changed_by_staff_id=staff_member_id,
        reason=reason,
        audit=AuditEntry(
            action="booking.cancel",
            actor_id=staff_member_id,
            metadata={"member_id": str(member_id)},
        ),
        now=now,
    )
