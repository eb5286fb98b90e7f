"""Booking modification requests.

Changes are not applied directly: once the member confirms, the request is
filed as a support request for staff to action against the booking.
"""

from typing import Optional

from teetime.logging_config import get_logger
from teetime.models import Booking
from teetime.schemas.oracle import ModifyFields
from teetime.services.confirmation import is_action_confirmation, is_negative_reply
from teetime.services.decisions import (
    Ask,
    Clarify,
    ConfirmUpdate,
    Decision,
    Lookup,
    OfferBooking,
    Respond,
    UpdateRequested,
)
from teetime.services.flows.common import (
    FlowContext,
    booking_snapshot,
    describe_state_booking,
    extract_reference,
    normalize_lookup_date,
    normalize_lookup_time,
)
from teetime.services.support_service import create_support_request

logger = get_logger("flows.modify_booking")

FLOW = "modify-booking"
CONFIRM_VERBS = ("update", "change", "modify", "send")

EMPTY_MESSAGE_PROMPT = (
    "I can help modify a booking. Share the date/time or confirmation reference and what should change."
)
NOT_FOUND_PROMPT = "I couldn't find an upcoming booking matching that. Would you like to book a new tee time instead?"
CHANGES_PROMPT = "What would you like to change?"
REQUESTED_MESSAGE = "Got it. I'll send that update request to staff."
DROPPED_MESSAGE = "Okay, I won't send any changes. Your booking stays as it is."


def _summary_lines(state: dict) -> list[str]:
    lines = describe_state_booking(state)
    if state.get("requested_changes"):
        lines.append(f"Changes: {state['requested_changes']}")
    return lines


def _confirm_prompt(state: dict) -> str:
    lines = _summary_lines(state)
    if not lines:
        return "Update this booking with the changes you provided?"
    return "Update the booking with:\n" + "\n".join(lines)


def _request_update(ctx: FlowContext, state: dict) -> Decision:
    body = "Modify booking request:\n" + "\n".join(_summary_lines(state))
    request = create_support_request(ctx.db, ctx.member, body, now=ctx.now)
    logger.info(
        "Modification request filed",
        extra={"context": {"member_id": str(ctx.member.id), "booking_id": state.get("booking_id")}},
    )
    return UpdateRequested(REQUESTED_MESSAGE, support_request_id=str(request.id))


def run(ctx: FlowContext, state: Optional[dict] = None) -> Decision:
    message = (ctx.message or "").strip()
    if not message:
        return Clarify(EMPTY_MESSAGE_PROMPT)

    current = dict(state or {})
    if current.get("booking_id"):
        awaiting = current.get("awaiting")
        if awaiting == "confirm":
            if is_action_confirmation(message, CONFIRM_VERBS):
                return _request_update(ctx, current)
            if is_negative_reply(message):
                return Respond(DROPPED_MESSAGE)
        current["requested_changes"] = message
        current["awaiting"] = "confirm"
        return ConfirmUpdate(_confirm_prompt(current), current)

    fields = ctx.oracle.extract_fields(message, ModifyFields, ctx.oracle_context())
    extracted = fields.value if fields.ok else ModifyFields()
    reference = extract_reference(message) or (extracted.reference.upper() if extracted.reference else None)
    time_start = normalize_lookup_time(extracted.time)
    updates = {
        "reference": reference,
        "date": normalize_lookup_date(extracted.date, ctx.today),
        "time_start": time_start,
        "club": extracted.club,
        "requested_changes": extracted.requested_changes,
    }
    current.update({key: value for key, value in updates.items() if value})

    criteria = {
        "reference": current.get("reference"),
        "preferred_date": current.get("date"),
        "preferred_time": current.get("time_start"),
        "club": current.get("club"),
        "timeframe": "upcoming",
        "exclude_cancelled": True,
    }
    return Lookup(criteria=criteria, state=current)


def resume_after_lookup(ctx: FlowContext, state: dict, booking: Optional[Booking]) -> Decision:
    if booking is None:
        return OfferBooking(NOT_FOUND_PROMPT)

    current = {key: value for key, value in state.items() if key != "time_start"}
    current.update(booking_snapshot(booking))
    if current.get("requested_changes"):
        current["awaiting"] = "confirm"
        return ConfirmUpdate(_confirm_prompt(current), current)
    current["awaiting"] = "changes"
    return Ask(CHANGES_PROMPT, current, "requested_changes")
