"""Booking creation, bay reservation and member booking lookup."""

import secrets
import string
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.models import Booking, BookingStatusHistory, Club, ClubLocationBay
from teetime.services.errors import (
    BayUnavailableError,
    BookingInPastError,
    BookingTooSoonError,
    ReferenceGenerationError,
)
from teetime.services.notification_service import (
    NotificationTemplate,
    notify_staff,
    queue_booking_notification,
    schedule_booking_follow_up,
    schedule_booking_reminder,
)
from teetime.services.state_machine import BookingStatus
from teetime.services.validation import booking_start_utc, format_time_range_label

logger = get_logger("booking_service")

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_CONSTRAINT = "bookings_booking_reference_key"


@dataclass
class BookingRequest:
    member_id: uuid.UUID
    club_id: uuid.UUID
    preferred_date: date
    preferred_time_start: str
    number_of_players: int
    club_location_id: Optional[uuid.UUID] = None
    bay_id: Optional[uuid.UUID] = None
    preferred_time_end: Optional[str] = None
    guest_names: str = ""
    notes: str = ""
    timezone: str = "Etc/UTC"


@dataclass
class BayAvailability:
    location_full: bool
    available_bays: list[dict] = field(default_factory=list)
    suggested_times: list[str] = field(default_factory=list)


def generate_booking_reference(prefix: Optional[str] = None, length: Optional[int] = None) -> str:
    prefix = prefix if prefix is not None else settings.booking_reference_prefix
    length = length or settings.booking_reference_length
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}" if prefix else suffix


def get_bay_availability(db: Session, club_location_id) -> BayAvailability:
    bays = (
        db.query(ClubLocationBay)
        .filter(ClubLocationBay.club_location_id == club_location_id, ClubLocationBay.status == "available")
        .order_by(ClubLocationBay.name)
        .all()
    )
    logger.info(
        "Bay availability",
        extra={"context": {"club_location_id": str(club_location_id), "available_count": len(bays)}},
    )
    return BayAvailability(
        location_full=len(bays) == 0,
        available_bays=[{"id": str(bay.id), "name": bay.name} for bay in bays],
    )


def reserve_bay(db: Session, bay_id, now: Optional[datetime] = None):
    """Atomically flip one bay available -> booked. Returns the row or None if someone else holds it."""
    now = now or datetime.now(timezone.utc)
    stmt = (
        update(ClubLocationBay)
        .where(ClubLocationBay.id == bay_id, ClubLocationBay.status == "available")
        .values(status="booked", updated_at=now)
        .returning(ClubLocationBay.id, ClubLocationBay.name)
    )
    return db.execute(stmt).first()


def reserve_first_available_bay(db: Session, club_location_id, now: Optional[datetime] = None):
    candidates = (
        db.query(ClubLocationBay.id)
        .filter(ClubLocationBay.club_location_id == club_location_id, ClubLocationBay.status == "available")
        .order_by(ClubLocationBay.name)
        .all()
    )
    for (bay_id,) in candidates:
        reserved = reserve_bay(db, bay_id, now)
        if reserved is not None:
            return reserved
    return None


def release_bay(db: Session, bay_id, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    stmt = (
        update(ClubLocationBay)
        .where(ClubLocationBay.id == bay_id, ClubLocationBay.status == "booked")
        .values(status="available", updated_at=now)
        .returning(ClubLocationBay.id)
    )
    released = db.execute(stmt).first() is not None
    if released:
        logger.info("Bay released", extra={"context": {"bay_id": str(bay_id)}})
    return released


def check_lead_time(request: BookingRequest, now: datetime) -> None:
    start = booking_start_utc(request.preferred_date, request.preferred_time_start, request.timezone)
    if start is None:
        return
    if start < now:
        raise BookingInPastError()
    lead_minutes = max(settings.booking_min_lead_minutes, 0)
    if start < now + timedelta(minutes=lead_minutes):
        raise BookingTooSoonError()


def _is_reference_collision(exc: IntegrityError) -> bool:
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == REFERENCE_CONSTRAINT
    return REFERENCE_CONSTRAINT in str(exc.orig)


def _insert_with_unique_reference(db: Session, values: dict) -> Booking:
    attempts = max(settings.booking_reference_max_attempts, 1)
    for attempt in range(1, attempts + 1):
        reference = generate_booking_reference()
        booking = Booking(id=uuid.uuid4(), booking_reference=reference, **values)
        try:
            with db.begin_nested():
                db.add(booking)
                db.flush()
        except IntegrityError as exc:
            if not _is_reference_collision(exc):
                raise
            logger.warning(
                "Booking reference collision",
                extra={"context": {"reference": reference, "attempt": attempt}},
            )
            continue
        return booking
    raise ReferenceGenerationError()


def create_booking_with_history(
    db: Session,
    request: BookingRequest,
    *,
    notify: bool = True,
    now: Optional[datetime] = None,
) -> Booking:
    """Reserve a bay, insert the booking and its initial history row in the caller's transaction.

    Staff and member notices are queued rows, so they only go out once the
    caller commits.
    """
    now = now or datetime.now(timezone.utc)
    check_lead_time(request, now)

    bay_id = request.bay_id
    if bay_id:
        if reserve_bay(db, bay_id, now) is None:
            raise BayUnavailableError()
    elif request.club_location_id:
        reserved = reserve_first_available_bay(db, request.club_location_id, now)
        if reserved is None:
            raise BayUnavailableError()
        bay_id = reserved.id

    initial_status = BookingStatus.PENDING.value
    booking = _insert_with_unique_reference(
        db,
        {
            "member_id": request.member_id,
            "club_id": request.club_id,
            "club_location_id": request.club_location_id,
            "bay_id": bay_id,
            "preferred_date": request.preferred_date,
            "preferred_time_start": request.preferred_time_start,
            "preferred_time_end": request.preferred_time_end,
            "number_of_players": request.number_of_players,
            "guest_names": request.guest_names or "",
            "notes": request.notes or "",
            "status": initial_status,
            "created_at": now,
            "updated_at": now,
        },
    )

    db.add(
        BookingStatusHistory(
            booking_id=booking.id,
            previous_status=initial_status,
            next_status=initial_status,
            created_at=now,
        )
    )
    db.flush()

    logger.info(
        "Booking created",
        extra={
            "context": {
                "booking_id": str(booking.id),
                "member_id": str(request.member_id),
                "reference": booking.booking_reference,
                "bay_id": str(bay_id) if bay_id else None,
            }
        },
    )

    if notify:
        notify_staff(db, build_staff_booking_notice(booking, request), booking_id=booking.id, now=now)
        queue_booking_notification(db, booking, NotificationTemplate.BOOKING_RECEIVED, now=now)
        schedule_booking_reminder(db, booking, request.timezone, now=now)
        schedule_booking_follow_up(db, booking, request.timezone, now=now)

    return booking


def build_staff_booking_notice(booking: Booking, request: BookingRequest) -> str:
    link = f"{settings.admin_dashboard_url.rstrip('/')}/bookings/{booking.id}"
    return (
        f"New booking request ({booking.status}).\n"
        f"Reference: {booking.booking_reference}\n"
        f"Member: {request.member_id}\n"
        f"Date: {request.preferred_date.isoformat()}\n"
        f"Time: {format_time_range_label(request.preferred_time_start, request.preferred_time_end)}\n"
        f"Players: {request.number_of_players}\n"
        f"Notes: {request.notes or 'None'}\n"
        f"Review: {link}"
    )


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def lookup_member_booking(
    db: Session,
    member_id,
    *,
    booking_id: Optional[str] = None,
    reference: Optional[str] = None,
    preferred_date: Optional[str] = None,
    preferred_time: Optional[str] = None,
    club: Optional[str] = None,
    timeframe: str = "upcoming",
    today: Optional[date] = None,
    exclude_cancelled: bool = False,
) -> Optional[Booking]:
    """Find one of the member's bookings by id, reference, or date/time/club criteria.

    ``timeframe`` is ``upcoming`` (nearest first), ``past`` (most recent first)
    or ``any``.
    """
    query = db.query(Booking).filter(Booking.member_id == member_id)

    parsed_id = _parse_uuid(booking_id)
    if parsed_id:
        return query.filter(Booking.id == parsed_id).first()

    if reference:
        return query.filter(Booking.booking_reference == reference.strip().upper()).first()

    if exclude_cancelled:
        query = query.filter(Booking.status != BookingStatus.CANCELLED.value)
    if preferred_date:
        query = query.filter(Booking.preferred_date == preferred_date)
    if preferred_time:
        query = query.filter(Booking.preferred_time_start.like(f"{preferred_time[:5]}%"))
    if club:
        query = query.join(Club, Club.id == Booking.club_id).filter(Club.name.ilike(f"%{club.strip()}%"))

    today = today or datetime.now(timezone.utc).date()
    if timeframe == "past":
        query = query.filter(Booking.preferred_date < today).order_by(
            Booking.preferred_date.desc(), Booking.preferred_time_start.desc()
        )
    elif timeframe == "upcoming":
        query = query.filter(Booking.preferred_date >= today).order_by(
            Booking.preferred_date.asc(), Booking.preferred_time_start.asc()
        )
    else:
        query = query.order_by(Booking.preferred_date.desc())
    return query.first()


def format_booking_status(booking: Booking, today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    booking_date = booking.preferred_date
    if isinstance(booking_date, datetime):
        booking_date = booking_date.date()
    verb = "was" if isinstance(booking_date, date) and booking_date < today else "is"
    window = format_time_range_label(booking.preferred_time_start, booking.preferred_time_end)
    date_label = booking_date.isoformat() if isinstance(booking_date, date) else str(booking_date)
    return f"Your booking for {date_label} at {window} {verb} {booking.status}."
