from typing import Optional

from teetime.logging_config import get_logger
from teetime.models import Booking
from teetime.schemas.oracle import LookupFields
from teetime.services.confirmation import is_action_confirmation, is_negative_reply
from teetime.services.decisions import (
    Cancelled,
    Clarify,
    ConfirmCancel,
    Decision,
    Lookup,
    NotAllowed,
    NotFound,
    OfferBooking,
    Respond,
)
from teetime.services.errors import BookingNotFoundError, CancellationWindowExceededError, InvalidStatusTransitionError
from teetime.services.flows.common import (
    FlowContext,
    booking_snapshot,
    describe_state_booking,
    extract_reference,
    normalize_lookup_date,
    normalize_lookup_time,
)
from teetime.services.notification_service import notify_staff
from teetime.services.status_service import cancel_booking_with_history

logger = get_logger("flows.cancel_booking")

FLOW = "cancel-booking"
CONFIRM_VERBS = ("cancel",)

EMPTY_MESSAGE_PROMPT = "I can help cancel a booking. Please share the date, time, or confirmation reference."
NO_BOOKINGS_PROMPT = "You don't have any upcoming bookings. Would you like to book a tee time?"
NOT_FOUND_PROMPT = "I couldn't find that booking. Can you share the date, time, or confirmation reference?"
CANCELLED_MESSAGE = "Your booking has been cancelled. I'll let the team know."
NOT_ALLOWED_MESSAGE = (
    "That booking is too close to the tee time to cancel automatically. I can connect you with staff if needed."
)
ALREADY_CANCELLED_MESSAGE = "That booking can't be cancelled because it is no longer active."
KEPT_MESSAGE = "Okay, I'll keep that booking as it is."


def _confirm_prompt(state: dict) -> str:
    parts = describe_state_booking(state)
    return f"Cancel the booking with {', '.join(parts)}?" if parts else "Cancel this booking?"


def _criteria(state: dict) -> dict:
    return {
        "reference": state.get("reference"),
        "preferred_date": state.get("date"),
        "preferred_time": state.get("time_start"),
        "club": state.get("club"),
        "timeframe": "upcoming",
        "exclude_cancelled": True,
    }


def _has_criteria(state: dict) -> bool:
    return any(state.get(key) for key in ("reference", "date", "time_start", "club"))


def _cancel(ctx: FlowContext, state: dict) -> Decision:
    try:
        with ctx.db.begin_nested():
            change = cancel_booking_with_history(
                ctx.db,
                state["booking_id"],
                ctx.member.id,
                reason=state.get("reason") or "Cancelled by member",
                now=ctx.now,
            )
    except CancellationWindowExceededError:
        return NotAllowed(NOT_ALLOWED_MESSAGE)
    except BookingNotFoundError:
        return NotFound(NOT_FOUND_PROMPT)
    except InvalidStatusTransitionError:
        return NotAllowed(ALREADY_CANCELLED_MESSAGE)

    booking = change.booking
    notify_staff(
        ctx.db,
        f"Booking {booking.booking_reference} was cancelled by {ctx.member.name} ({ctx.member.phone_number}).",
        booking_id=booking.id,
        now=ctx.now,
    )
    return Cancelled(CANCELLED_MESSAGE, booking_id=str(booking.id))


def run(ctx: FlowContext, state: Optional[dict] = None) -> Decision:
    message = (ctx.message or "").strip()
    if not message:
        return Clarify(EMPTY_MESSAGE_PROMPT)

    current = dict(state or {})
    if current.get("booking_id"):
        if is_action_confirmation(message, CONFIRM_VERBS):
            return _cancel(ctx, current)
        if is_negative_reply(message):
            return Respond(KEPT_MESSAGE)
        # Anything else describes a different booking.
        current = {}

    fields = ctx.oracle.extract_fields(message, LookupFields, ctx.oracle_context())
    extracted = fields.value if fields.ok else LookupFields()
    reference = extract_reference(message) or (extracted.reference.upper() if extracted.reference else None)
    time_start = normalize_lookup_time(extracted.time)
    current.update(
        {
            key: value
            for key, value in {
                "reference": reference,
                "date": normalize_lookup_date(extracted.date, ctx.today),
                "time_start": time_start,
                "time": extracted.time if time_start else None,
                "club": extracted.club,
            }.items()
            if value
        }
    )
    return Lookup(criteria=_criteria(current), state=current)


def resume_after_lookup(ctx: FlowContext, state: dict, booking: Optional[Booking]) -> Decision:
    if booking is None:
        if not _has_criteria(state):
            return OfferBooking(NO_BOOKINGS_PROMPT)
        return NotFound(NOT_FOUND_PROMPT)

    current = {key: value for key, value in state.items() if key not in ("time_start",)}
    current.update(booking_snapshot(booking))
    logger.info(
        "Cancellation target resolved",
        extra={"context": {"member_id": str(ctx.member.id), "booking_id": current["booking_id"]}},
    )
    return ConfirmCancel(_confirm_prompt(current), current)
