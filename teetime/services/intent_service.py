"""Pick the flow that handles an inbound message.

Routing never writes anything; it only looks at the message, the member's
onboarding status and the stored envelope. The caller runs the chosen flow.
"""

import re
from dataclasses import dataclass
from typing import Optional

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.schemas.oracle import FlowName, RouterFlow
from teetime.services.confirmation import is_confirmation_message, is_negative_reply, looks_like_followup
from teetime.services.flow_state import FlowEnvelope

logger = get_logger("intent_service")

EMPTY_MESSAGE_PROMPT = (
    "I can help book a tee time, update or cancel a booking, check booking status, or answer club FAQs. "
    "What can I help with?"
)
FALLBACK_PROMPT = "I can book a new tee time, check or update a booking, cancel one, or answer FAQs. What can I help with?"
LOW_CONFIDENCE_PROMPT = (
    "Got it. I can book a tee time, check or change a booking, cancel one, or answer club questions. "
    "What would you like to do?"
)
OFFER_DECLINED_PROMPT = "No problem. If you want to book a tee time later, just let me know."

OFFER_BOOKING_KEY = "offer_booking"

BOOKING_EDIT_PATTERN = re.compile(r"(change|edit|update|actually|instead|make it|move it)", re.I)
STATUS_QUERY_PATTERN = re.compile(
    r"\b(my|any|upcoming|past|current)\b.*\bbooking(s)?\b"
    r"|\bbooking(s)?\b.*\b(status|confirm|confirmation|upcoming|past)\b"
    r"|\bdo i have\b.*\bbooking(s)?\b",
    re.I,
)

ROUTER_TO_FLOW = {
    RouterFlow.BOOKING_NEW: FlowName.BOOKING_NEW,
    RouterFlow.BOOKING_STATUS: FlowName.BOOKING_STATUS,
    RouterFlow.CANCEL_BOOKING: FlowName.CANCEL_BOOKING,
    RouterFlow.MODIFY_BOOKING: FlowName.MODIFY_BOOKING,
    RouterFlow.SUPPORT: FlowName.SUPPORT,
    # No FAQ knowledge base; questions go to staff.
    RouterFlow.FAQ: FlowName.SUPPORT,
}


@dataclass
class RouteDecision:
    """Where a message goes.

    ``flow`` is None for a clarify reply carrying ``prompt``. ``resume`` means
    the flow continues from the stored envelope data. ``clear_state`` asks the
    caller to drop the stored envelope.
    """

    flow: Optional[FlowName] = None
    prompt: Optional[str] = None
    resume: bool = False
    clear_state: bool = False
    reason: str = ""

    @property
    def is_clarify(self) -> bool:
        return self.flow is None


def is_offer_booking(envelope: Optional[FlowEnvelope]) -> bool:
    return bool(envelope and envelope.data.get(OFFER_BOOKING_KEY))


def _active(envelope: Optional[FlowEnvelope]) -> Optional[FlowName]:
    if not envelope or not envelope.data or is_offer_booking(envelope):
        return None
    try:
        return FlowName(envelope.flow)
    except ValueError:
        return None


def route_message(
    message: str,
    *,
    onboarded: bool,
    envelope: Optional[FlowEnvelope],
    oracle,
    history: Optional[list[dict]] = None,
) -> RouteDecision:
    text = (message or "").strip()
    if not text:
        return RouteDecision(prompt=EMPTY_MESSAGE_PROMPT, reason="empty")

    if not onboarded:
        return RouteDecision(
            flow=FlowName.ONBOARDING,
            resume=bool(envelope and envelope.flow == FlowName.ONBOARDING.value),
            reason="not_onboarded",
        )

    if is_offer_booking(envelope):
        if is_confirmation_message(text):
            return RouteDecision(flow=FlowName.BOOKING_NEW, clear_state=True, reason="offer_accepted")
        if is_negative_reply(text):
            return RouteDecision(prompt=OFFER_DECLINED_PROMPT, clear_state=True, reason="offer_declined")

    active = _active(envelope)
    if active == FlowName.BOOKING_NEW and is_confirmation_message(text):
        return RouteDecision(flow=active, resume=True, reason="confirmation_fast_path")

    if active and (
        looks_like_followup(text) or (active == FlowName.BOOKING_NEW and BOOKING_EDIT_PATTERN.search(text))
    ):
        return RouteDecision(flow=active, resume=True, reason="followup")

    if STATUS_QUERY_PATTERN.search(text):
        return RouteDecision(flow=FlowName.BOOKING_STATUS, reason="status_pattern")

    result = oracle.classify(text, {"history": history or []})
    if not result.ok:
        logger.warning("Router classification failed", extra={"context": {"error_code": result.error_code}})
        return RouteDecision(prompt=FALLBACK_PROMPT, reason=f"oracle_{result.error_code}")

    classification = result.value
    if classification.confidence < settings.router_confidence_threshold:
        logger.info(
            "Router low confidence",
            extra={"context": {"flow": classification.flow.value, "confidence": classification.confidence}},
        )
        return RouteDecision(prompt=LOW_CONFIDENCE_PROMPT, reason="low_confidence")

    flow = ROUTER_TO_FLOW.get(classification.flow)
    if flow is None:
        return RouteDecision(prompt=FALLBACK_PROMPT, reason="clarify")
    return RouteDecision(flow=flow, resume=flow == active, reason="oracle")
