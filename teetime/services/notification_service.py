"""Member and staff notifications.

Nothing is sent inline: every notice is a ``notifications`` row plus a
``scheduled_jobs`` row, and the worker (or an external one through the jobs
API) delivers it once the surrounding transaction has committed.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.models import Booking, Club, MemberProfile, Notification, ScheduledJob
from teetime.services.messaging_service import WhatsAppService
from teetime.services.state_machine import BookingStatus
from teetime.services.validation import booking_start_utc, format_time_label

logger = get_logger("notification_service")

STAFF_NOTICE_TEMPLATE = "staff_notice"


class NotificationTemplate(str, Enum):
    BOOKING_RECEIVED = "booking_received"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_NOT_AVAILABLE = "booking_not_available"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REMINDER = "booking_reminder"
    BOOKING_FOLLOW_UP = "booking_follow_up"
    BOOKING_INFO_REQUESTED = "booking_info_requested"


STATUS_TEMPLATES = {
    BookingStatus.CONFIRMED.value: NotificationTemplate.BOOKING_CONFIRMED,
    BookingStatus.NOT_AVAILABLE.value: NotificationTemplate.BOOKING_NOT_AVAILABLE,
    BookingStatus.CANCELLED.value: NotificationTemplate.BOOKING_CANCELLED,
    BookingStatus.FOLLOW_UP_REQUIRED.value: NotificationTemplate.BOOKING_INFO_REQUESTED,
}


def template_for_status(status: str) -> Optional[NotificationTemplate]:
    return STATUS_TEMPLATES.get(status)


def render_notification(
    template: str,
    *,
    member_name: Optional[str] = None,
    club: Optional[str] = None,
    date: Optional[str] = None,
    time: Optional[str] = None,
    reason: Optional[str] = None,
) -> str:
    name = member_name if member_name and member_name != "Unknown" else "there"
    club = club or ""
    date = date or ""
    time = time or ""

    if template == NotificationTemplate.BOOKING_RECEIVED.value:
        return (
            f"Hi {name}! We've received your booking request for {club} on {date} at {time}. "
            "Our team will confirm it shortly."
        )
    if template == NotificationTemplate.BOOKING_CONFIRMED.value:
        return f"Great news, {name}! Your tee time at {club} on {date} at {time} is confirmed. See you on the course!"
    if template == NotificationTemplate.BOOKING_NOT_AVAILABLE.value:
        return (
            f"Hi {name}, unfortunately {club} on {date} at {time} isn't available. "
            f"{reason or 'Would you like to try a different time?'}"
        )
    if template == NotificationTemplate.BOOKING_CANCELLED.value:
        return (
            f"Hi {name}, your booking at {club} on {date} at {time} has been cancelled. "
            f"{reason or 'Let us know if you would like to rebook.'}"
        )
    if template == NotificationTemplate.BOOKING_REMINDER.value:
        return f'Reminder: You have a tee time at {club} tomorrow at {time}. Cancel by replying "cancel" if needed.'
    if template == NotificationTemplate.BOOKING_FOLLOW_UP.value:
        return f"Hi {name}! How was your game at {club} on {date}? We'd love to hear about your experience!"
    if template == NotificationTemplate.BOOKING_INFO_REQUESTED.value:
        return (
            f"Hi {name}, we need a bit more info about your booking request for {club} on {date}. "
            f"{reason or 'Please reply with the details or call us.'}"
        )
    return f"Update on your booking at {club}: {reason or 'Please check with us for details.'}"


def build_status_followup_message(
    status: str,
    *,
    member_name: Optional[str] = None,
    preferred_date: Optional[str] = None,
    preferred_time: Optional[str] = None,
    alternate_times: Optional[list[str]] = None,
) -> Optional[str]:
    """Conversational reply sent when staff move a booking to a member-facing status."""
    name = f" {member_name}" if member_name and member_name != "Unknown" else ""
    if preferred_date and preferred_time:
        when = f"{preferred_date} at {preferred_time}"
    else:
        when = preferred_date or preferred_time or "your requested time"

    if status == BookingStatus.CONFIRMED.value:
        return f"Great news{name}! Your booking for {when} is confirmed."
    if status == BookingStatus.NOT_AVAILABLE.value:
        if alternate_times:
            return f"Sorry{name}, we couldn't secure {when}. Would any of these times work instead: {', '.join(alternate_times)}?"
        return f"Sorry{name}, we couldn't secure {when}. Can you share another time window that works?"
    if status == BookingStatus.FOLLOW_UP_REQUIRED.value:
        return (
            f"Thanks{name}! We need a little more info to confirm {when}. "
            "Reply with any changes or extra details you want us to include."
        )
    return None


def queue_notification(
    db: Session,
    *,
    template: str,
    booking_id=None,
    channel: str = "whatsapp",
    job_type: str = "notification",
    run_at: Optional[datetime] = None,
    reason: Optional[str] = None,
    recipient: Optional[str] = None,
    body: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Notification:
    now = now or datetime.now(timezone.utc)
    notification = Notification(
        id=uuid.uuid4(),
        booking_id=booking_id,
        channel=channel,
        template_name=template,
        status="pending",
        reason=reason,
        recipient=recipient,
        body=body,
        created_at=now,
    )
    db.add(notification)
    db.add(
        ScheduledJob(
            id=uuid.uuid4(),
            job_type=job_type,
            booking_id=booking_id,
            notification_id=notification.id,
            run_at=run_at or now,
            status="pending",
            attempts=0,
            created_at=now,
            updated_at=now,
        )
    )
    db.flush()

    logger.info(
        "Notification queued",
        extra={
            "context": {
                "notification_id": str(notification.id),
                "booking_id": str(booking_id) if booking_id else None,
                "template": template,
                "job_type": job_type,
                "run_at": run_at or now,
            }
        },
    )
    return notification


def queue_booking_notification(
    db: Session,
    booking: Booking,
    template: NotificationTemplate,
    *,
    reason: Optional[str] = None,
    run_at: Optional[datetime] = None,
    job_type: str = "notification",
    recipient: Optional[str] = None,
    body: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Notification:
    return queue_notification(
        db,
        template=template.value,
        booking_id=booking.id,
        job_type=job_type,
        run_at=run_at,
        reason=reason,
        recipient=recipient,
        body=body,
        now=now,
    )


def schedule_booking_reminder(
    db: Session, booking: Booking, tz_name: Optional[str], now: Optional[datetime] = None
) -> Optional[Notification]:
    """Queue a reminder ``NOTIFICATION_REMINDER_HOURS`` before tee-off, only if that is still ahead."""
    now = now or datetime.now(timezone.utc)
    start = booking_start_utc(booking.preferred_date, booking.preferred_time_start, tz_name)
    if start is None:
        return None
    reminder_at = start - timedelta(hours=settings.notification_reminder_hours)
    if reminder_at <= now:
        logger.info(
            "Reminder skipped, already inside reminder window",
            extra={"context": {"booking_id": str(booking.id), "reminder_at": reminder_at}},
        )
        return None
    return queue_booking_notification(
        db, booking, NotificationTemplate.BOOKING_REMINDER, run_at=reminder_at, job_type="reminder", now=now
    )


def schedule_booking_follow_up(
    db: Session, booking: Booking, tz_name: Optional[str], now: Optional[datetime] = None
) -> Optional[Notification]:
    start = booking_start_utc(booking.preferred_date, booking.preferred_time_start, tz_name)
    if start is None:
        return None
    follow_up_at = start + timedelta(hours=settings.notification_follow_up_hours)
    return queue_booking_notification(
        db, booking, NotificationTemplate.BOOKING_FOLLOW_UP, run_at=follow_up_at, job_type="follow_up", now=now
    )


def notify_staff(db: Session, body: str, *, booking_id=None, now: Optional[datetime] = None) -> Optional[Notification]:
    if not settings.staff_notify_number:
        logger.info("Staff notice skipped, no staff number configured")
        return None
    return queue_notification(
        db,
        template=STAFF_NOTICE_TEMPLATE,
        booking_id=booking_id,
        recipient=settings.staff_notify_number,
        body=body,
        now=now,
    )


def claim_due_jobs(db: Session, *, limit: int = 20) -> list[dict[str, Any]]:
    rows = (
        db.execute(
            text(
                """
                WITH cte AS (
                    SELECT id
                    FROM scheduled_jobs
                    WHERE status = 'pending'
                      AND run_at <= NOW()
                    ORDER BY run_at
                    LIMIT :limit
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE scheduled_jobs
                SET status = 'processing',
                    attempts = attempts + 1,
                    updated_at = NOW()
                FROM cte
                WHERE scheduled_jobs.id = cte.id
                RETURNING scheduled_jobs.id,
                          scheduled_jobs.job_type,
                          scheduled_jobs.booking_id,
                          scheduled_jobs.notification_id,
                          scheduled_jobs.attempts
                """
            ),
            {"limit": limit},
        )
        .mappings()
        .all()
    )
    db.commit()
    return rows


def list_due_jobs(db: Session, *, limit: int = 20, now: Optional[datetime] = None) -> list[ScheduledJob]:
    now = now or datetime.now(timezone.utc)
    return (
        db.query(ScheduledJob)
        .filter(ScheduledJob.status == "pending", ScheduledJob.run_at <= now)
        .order_by(ScheduledJob.run_at)
        .limit(limit)
        .all()
    )


def mark_job_result(
    db: Session,
    job_id,
    status: str,
    *,
    error: Optional[str] = None,
    provider_message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[ScheduledJob]:
    """Record the outcome of a delivery attempt on the job and its notification."""
    now = now or datetime.now(timezone.utc)
    job = db.query(ScheduledJob).filter(ScheduledJob.id == job_id).first()
    if not job:
        return None

    job.status = status
    job.last_error = error
    job.updated_at = now

    if job.notification_id and status in {"sent", "failed"}:
        notification = db.query(Notification).filter(Notification.id == job.notification_id).first()
        if notification:
            notification.status = status
            notification.error = error
            if provider_message_id:
                notification.provider_message_id = provider_message_id
            if status == "sent":
                notification.sent_at = now

    db.flush()
    logger.info(
        "Job result recorded",
        extra={"context": {"job_id": str(job_id), "status": status, "error": error}},
    )
    return job


def build_notification_body(db: Session, notification: Notification) -> tuple[Optional[str], Optional[str]]:
    """Return ``(recipient, body)`` for a queued notification."""
    if notification.body:
        return notification.recipient, notification.body

    booking = db.query(Booking).filter(Booking.id == notification.booking_id).first() if notification.booking_id else None
    if not booking:
        return None, None
    member = db.query(MemberProfile).filter(MemberProfile.id == booking.member_id).first()
    if not member:
        return None, None
    club = db.query(Club).filter(Club.id == booking.club_id).first()

    body = render_notification(
        notification.template_name,
        member_name=member.name,
        club=club.name if club else "the club",
        date=str(booking.preferred_date)[:10],
        time=format_time_label(booking.preferred_time_start),
        reason=notification.reason,
    )
    return notification.recipient or member.phone_number, body


def process_job(db: Session, job: dict, sender: WhatsAppService, *, max_attempts: int = 3) -> str:
    """Deliver one claimed job. Returns the status written back."""
    job_id = job["id"]
    attempts = job.get("attempts") or 0

    notification = None
    if job.get("notification_id"):
        notification = db.query(Notification).filter(Notification.id == job["notification_id"]).first()
    if not notification:
        mark_job_result(db, job_id, "failed", error="notification_missing")
        db.commit()
        return "failed"

    recipient, body = build_notification_body(db, notification)
    if not recipient or not body:
        mark_job_result(db, job_id, "failed", error="recipient_missing")
        db.commit()
        return "failed"

    try:
        result = sender.send_message(recipient, body)
    except Exception as exc:
        logger.exception(
            "Notification send raised",
            extra={"context": {"job_id": str(job_id), "attempts": attempts}},
        )
        error = f"{type(exc).__name__}: {exc}"
    else:
        if result.ok:
            mark_job_result(db, job_id, "sent", provider_message_id=result.message_sid)
            db.commit()
            return "sent"
        error = result.error

    status = "failed" if attempts >= max_attempts else "pending"
    mark_job_result(db, job_id, status, error=error)
    db.commit()
    logger.warning(
        "Notification delivery failed",
        extra={"context": {"job_id": str(job_id), "attempts": attempts, "status": status, "error": error}},
    )
    return status


def mark_provider_failure(db: Session, provider_message_id: str, error: Optional[str]) -> bool:
    """Flag a sent notification as failed when the provider later reports it undelivered."""
    notification = (
        db.query(Notification).filter(Notification.provider_message_id == provider_message_id).first()
    )
    if not notification:
        return False
    notification.status = "failed"
    notification.error = error
    db.flush()
    return True
