import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from teetime.models import Booking, MemberProfile
from teetime.services.directory import VenueDirectory
from teetime.services.validation import (
    format_time_range_label,
    local_today,
    parse_preferred_date,
    parse_preferred_time_window,
)

REFERENCE_PATTERN = re.compile(r"\b(?:ref|reference|booking)\s*#?\s*([a-z0-9-]{6,})\b", re.I)
BARE_REFERENCE_PATTERN = re.compile(r"\b([a-z]{2,4}-[a-z0-9]{4,})\b", re.I)


@dataclass
class FlowContext:
    """Everything a flow turn may read. Flows never commit; the caller owns the transaction."""

    db: Session
    member: MemberProfile
    message: str
    oracle: object
    now: datetime
    directory: VenueDirectory
    history: list[dict] = field(default_factory=list)
    shared: dict = field(default_factory=dict)
    profile_name: Optional[str] = None

    @property
    def today(self) -> date:
        return local_today(self.now, self.member.timezone)

    def oracle_context(self) -> dict:
        return {"history": self.history, "today": self.today.isoformat()}


def extract_reference(message: str) -> Optional[str]:
    match = REFERENCE_PATTERN.search(message or "") or BARE_REFERENCE_PATTERN.search(message or "")
    if not match:
        return None
    candidate = match.group(1)
    # "booking tomorrow" is not a reference.
    if not any(char.isdigit() for char in candidate):
        return None
    return candidate.upper()


def normalize_lookup_date(value: Optional[str], today: date) -> Optional[str]:
    if not value:
        return None
    return parse_preferred_date(value, today) or None


def normalize_lookup_time(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    window = parse_preferred_time_window(value)
    return window.start if window else None


def booking_snapshot(booking: Booking) -> dict:
    """Fields of a resolved booking kept in flow state."""
    return {
        "booking_id": str(booking.id),
        "reference": booking.booking_reference,
        "date": str(booking.preferred_date)[:10],
        "time": format_time_range_label(booking.preferred_time_start, booking.preferred_time_end),
    }


def describe_state_booking(state: dict) -> list[str]:
    parts = []
    if state.get("reference"):
        parts.append(f"Reference: {state['reference']}")
    if state.get("club"):
        parts.append(f"Club: {state['club']}")
    if state.get("date"):
        parts.append(f"Date: {state['date']}")
    if state.get("time"):
        parts.append(f"Time: {state['time']}")
    return parts
