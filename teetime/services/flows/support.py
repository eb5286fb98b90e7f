from typing import Optional

from teetime.logging_config import get_logger
from teetime.schemas.oracle import SupportFields
from teetime.services.confirmation import is_confirmation_message, is_negative_reply
from teetime.services.decisions import Clarify, ConfirmHandoff, Decision, Handoff, Respond
from teetime.services.flows.common import FlowContext
from teetime.services.support_service import create_support_request

logger = get_logger("flows.support")

FLOW = "support"

EMPTY_MESSAGE_PROMPT = "Tell me what you need help with, and I can connect you to staff."
HANDOFF_MESSAGE = "I've notified our staff about your request. Someone will reach out to you shortly."
DECLINED_MESSAGE = "No problem. Let me know if there's anything else I can help with."
MAX_SUMMARY_LENGTH = 200


def _confirm_prompt(summary: Optional[str]) -> str:
    return f"I can connect you to staff for help with {summary or 'your request'}. Should I proceed?"


def run(ctx: FlowContext, state: Optional[dict] = None) -> Decision:
    message = (ctx.message or "").strip()
    if not message:
        return Clarify(EMPTY_MESSAGE_PROMPT)

    current = dict(state or {})
    if current.get("awaiting") == "confirm":
        if is_confirmation_message(message):
            body = current.get("request") or current.get("summary") or message
            request = create_support_request(ctx.db, ctx.member, body, now=ctx.now)
            return Handoff(HANDOFF_MESSAGE, support_request_id=str(request.id))
        if is_negative_reply(message):
            return Respond(DECLINED_MESSAGE)

    fields = ctx.oracle.extract_fields(message, SupportFields, ctx.oracle_context())
    summary = fields.value.summary if fields.ok else None
    if not fields.ok:
        logger.info(
            "Support summary unavailable",
            extra={"context": {"member_id": str(ctx.member.id), "error_code": fields.error_code}},
        )

    current.update(
        {
            "summary": (summary or current.get("summary") or "")[:MAX_SUMMARY_LENGTH] or None,
            "request": message,
            "awaiting": "confirm",
        }
    )
    return ConfirmHandoff(_confirm_prompt(current["summary"]), {k: v for k, v in current.items() if v})
