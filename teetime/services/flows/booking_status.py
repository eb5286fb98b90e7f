import re
from typing import Optional

from teetime.logging_config import get_logger
from teetime.schemas.oracle import LookupFields
from teetime.services.booking_service import format_booking_status, lookup_member_booking
from teetime.services.decisions import Clarify, Decision, NotFound, OfferBooking, Respond
from teetime.services.flows.common import (
    FlowContext,
    extract_reference,
    normalize_lookup_date,
    normalize_lookup_time,
)

logger = get_logger("flows.booking_status")

FLOW = "booking-status"

CLARIFY_PROMPT = "Are you asking about a booking status? If so, share date, time, or a reference."
NO_BOOKINGS_PROMPT = "You don't have any upcoming bookings. Would you like to book a tee time?"
NOT_FOUND_PROMPT = "I couldn't find that booking. Can you share the date, time, or confirmation reference?"

PAST_HINT = re.compile(r"\b(past|last|previous|earlier|yesterday)\b", re.I)


def _timeframe(message: str) -> str:
    return "past" if PAST_HINT.search(message) else "upcoming"


def run(ctx: FlowContext, state: Optional[dict] = None) -> Decision:
    """Answer with the status of one booking; stateless between turns."""
    message = (ctx.message or "").strip()
    if not message:
        return Clarify(CLARIFY_PROMPT)

    reference = extract_reference(message)
    fields = ctx.oracle.extract_fields(message, LookupFields, ctx.oracle_context())
    extracted = fields.value if fields.ok else LookupFields()
    if not fields.ok:
        logger.info(
            "Status extraction unavailable",
            extra={"context": {"member_id": str(ctx.member.id), "error_code": fields.error_code}},
        )

    reference = reference or (extracted.reference.upper() if extracted.reference else None)
    preferred_date = normalize_lookup_date(extracted.date, ctx.today)
    preferred_time = normalize_lookup_time(extracted.time)
    timeframe = "any" if reference or preferred_date else _timeframe(message)

    booking = lookup_member_booking(
        ctx.db,
        ctx.member.id,
        reference=reference,
        preferred_date=preferred_date,
        preferred_time=preferred_time,
        club=extracted.club,
        timeframe=timeframe,
        today=ctx.today,
    )
    if booking is None:
        if not (reference or preferred_date or preferred_time or extracted.club) and timeframe == "upcoming":
            return OfferBooking(NO_BOOKINGS_PROMPT)
        return NotFound(NOT_FOUND_PROMPT)
    return Respond(format_booking_status(booking, ctx.today))
