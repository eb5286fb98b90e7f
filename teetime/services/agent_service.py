"""One conversational turn: envelope in, reply text out.

The agent holds the member's advisory lock for the rest of the caller's
transaction, reads the stored envelope, checks for a course correction,
routes, runs the flow, resolves booking lookups and then saves or clears
the envelope according to the decision. It never commits.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.models import MemberProfile
from teetime.schemas.oracle import FlowName
from teetime.services.booking_service import lookup_member_booking
from teetime.services.course_correction import CourseCorrectionDetector, restart_prompt
from teetime.services.decisions import Clarify, Decision, Lookup, OfferBooking, persists_state, render_decision
from teetime.services.directory import VenueDirectory
from teetime.services.flow_state import (
    FlowEnvelope,
    clear_flow_state,
    get_flow_state,
    lock_member_state,
    save_flow_state,
    shared_from_fields,
    upgrade_legacy_flow_state,
)
from teetime.services.flows import FLOW_MODULES, FlowContext
from teetime.services.intent_service import OFFER_BOOKING_KEY, is_offer_booking, route_message
from teetime.services.member_service import is_onboarded
from teetime.services.oracle import get_oracle
from teetime.services.ttl_cache import TTLCache

logger = get_logger("agent_service")

CLARIFY_FLOW = "clarify"
DIRECTORY_CACHE_TTL_SECONDS = 60


@dataclass
class AgentReply:
    text: str
    flow: str
    kind: str
    decision: Optional[Decision] = None


class ConversationAgent:
    def __init__(
        self,
        oracle,
        *,
        correction_cache: Optional[TTLCache] = None,
        directory_cache: Optional[TTLCache] = None,
    ):
        self.oracle = oracle
        self.detector = CourseCorrectionDetector(oracle, correction_cache)
        if directory_cache is None:
            directory_cache = TTLCache(ttl_seconds=DIRECTORY_CACHE_TTL_SECONDS, max_entries=256)
        self.directory_cache = directory_cache

    def handle_message(
        self,
        db: Session,
        member: MemberProfile,
        message: str,
        *,
        history: Optional[list[dict]] = None,
        profile_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AgentReply:
        now = now or datetime.now(timezone.utc)
        lock_member_state(db, member.id)
        if settings.flow_state_legacy_upgrade:
            upgrade_legacy_flow_state(db, member.id)
        envelope = get_flow_state(db, member.id, now)
        shared = dict(envelope.shared) if envelope else {}

        if envelope and not is_offer_booking(envelope) and self.detector.is_correction(message):
            clear_flow_state(db, member.id)
            logger.info(
                "Course correction",
                extra={"context": {"member_id": str(member.id), "flow": envelope.flow}},
            )
            flow = FlowName.BOOKING_NEW.value if envelope.flow == FlowName.BOOKING_NEW.value else CLARIFY_FLOW
            return AgentReply(restart_prompt(envelope.flow), flow=flow, kind="course-correction")

        route = route_message(
            message,
            onboarded=is_onboarded(member),
            envelope=envelope,
            oracle=self.oracle,
            history=history,
        )
        logger.info(
            "Message routed",
            extra={
                "context": {
                    "member_id": str(member.id),
                    "flow": route.flow.value if route.flow else CLARIFY_FLOW,
                    "reason": route.reason,
                    "resume": route.resume,
                }
            },
        )

        if route.clear_state and envelope:
            clear_flow_state(db, member.id)
            envelope = None
        if route.is_clarify:
            return AgentReply(route.prompt, flow=CLARIFY_FLOW, kind=Clarify.kind)

        ctx = FlowContext(
            db=db,
            member=member,
            message=message,
            oracle=self.oracle,
            now=now,
            directory=VenueDirectory(db, self.directory_cache),
            history=history or [],
            shared=shared,
            profile_name=profile_name,
        )
        state = envelope.data if route.resume and envelope and envelope.flow == route.flow.value else None

        module = FLOW_MODULES[route.flow]
        decision = module.run(ctx, state)
        if isinstance(decision, Lookup):
            booking = lookup_member_booking(db, member.id, today=ctx.today, **decision.criteria)
            decision = module.resume_after_lookup(ctx, decision.state, booking)

        self._store(db, member, route.flow, decision, envelope, shared, now)
        return AgentReply(render_decision(decision), flow=route.flow.value, kind=decision.kind, decision=decision)

    @staticmethod
    def _store(
        db: Session,
        member: MemberProfile,
        flow: FlowName,
        decision: Decision,
        envelope: Optional[FlowEnvelope],
        shared: dict,
        now: datetime,
    ) -> None:
        if persists_state(decision):
            updates = shared_from_fields(decision.state) if flow == FlowName.BOOKING_NEW else None
            save_flow_state(db, member.id, flow.value, decision.state, updates, existing_shared=shared, now=now)
        elif isinstance(decision, OfferBooking):
            save_flow_state(db, member.id, flow.value, {OFFER_BOOKING_KEY: True}, existing_shared=shared, now=now)
        elif isinstance(decision, Clarify):
            if decision.clear_state:
                clear_flow_state(db, member.id)
        elif envelope and envelope.flow == flow.value:
            clear_flow_state(db, member.id)


_agent: Optional[ConversationAgent] = None


def get_agent() -> ConversationAgent:
    """FastAPI dependency returning the process-wide agent."""
    global _agent
    if _agent is None:
        _agent = ConversationAgent(get_oracle())
    return _agent
