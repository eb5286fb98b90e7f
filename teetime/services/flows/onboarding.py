from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from teetime.logging_config import get_logger
from teetime.schemas.oracle import OnboardingFields
from teetime.services.confirmation import is_confirmation_message, is_negative_reply
from teetime.services.decisions import Ask, Complete, ConfirmDefault, Decision
from teetime.services.flows.common import FlowContext
from teetime.services.member_service import DEFAULT_MEMBER_NAME, complete_onboarding

logger = get_logger("flows.onboarding")

FLOW = "onboarding"

REQUIRED_FIELDS = ("name", "timezone")
MAX_NAME_LENGTH = 60

PROMPTS = {
    "name": "What name should we use for your member profile?",
    "timezone": "What timezone are you in? (e.g., Europe/London)",
}
WELCOME_PROMPT = "Welcome! To get started, what name should we use for you?"
INVALID_TIMEZONE_PROMPT = "I couldn't recognise that timezone. What timezone are you in? (e.g., Europe/London)"


def _default_prompt(field_name: str, value: str) -> str:
    if field_name == "timezone":
        return f'I can set your timezone to "{value}". Does that look right?'
    if field_name == "name":
        return f'Welcome! Should we call you "{value}"?'
    return f'I can use "{value}". Does that work?'


def normalize_timezone(value: Optional[str]) -> Optional[str]:
    candidate = (value or "").strip().replace(" ", "_")
    if not candidate:
        return None
    if candidate.upper() in {"UTC", "GMT", "Z"}:
        return "Etc/UTC"
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return candidate


def _apply(state: dict, field_name: str, value: Optional[str]) -> Optional[str]:
    """Store one field; returns a re-ask prompt when the value is unusable."""
    if not value:
        return None
    if field_name == "timezone":
        timezone_name = normalize_timezone(value)
        if not timezone_name:
            state.pop("timezone", None)
            return INVALID_TIMEZONE_PROMPT
        state["timezone"] = timezone_name
    elif field_name == "name":
        name = value.strip()[:MAX_NAME_LENGTH]
        if name:
            state["name"] = name
    else:
        state[field_name] = value.strip()
    return None


def _defaults(ctx: FlowContext) -> dict:
    defaults = {}
    if ctx.profile_name:
        defaults["name"] = ctx.profile_name.strip()
    elif ctx.member.name and ctx.member.name != DEFAULT_MEMBER_NAME:
        defaults["name"] = ctx.member.name
    return defaults


def run(ctx: FlowContext, state: Optional[dict] = None) -> Decision:
    message = (ctx.message or "").strip()
    current = dict(state or {})
    declined = list(current.get("declined_defaults", []))
    problem = None

    pending = current.pop("pending_default", None)
    if pending and is_confirmation_message(message):
        problem = _apply(current, pending["field"], pending["value"])
    elif pending and is_negative_reply(message):
        declined.append(pending["field"])
    elif message:
        fields = ctx.oracle.extract_fields(message, OnboardingFields, ctx.oracle_context())
        values = fields.value.model_dump(exclude_none=True) if fields.ok else {}
        awaiting = current.get("awaiting")
        if awaiting and not values:
            values[awaiting] = message
        for field_name in ("name", "timezone", "favorite_club", "favorite_location"):
            problem = _apply(current, field_name, values.get(field_name)) or problem
    current["declined_defaults"] = declined

    if problem:
        current["awaiting"] = "timezone"
        return Ask(problem, _compact(current), "timezone")

    missing = next((field_name for field_name in REQUIRED_FIELDS if not current.get(field_name)), None)
    if missing:
        default = _defaults(ctx).get(missing)
        current["awaiting"] = missing
        if default and missing not in declined:
            current["pending_default"] = {"field": missing, "value": default}
            return ConfirmDefault(_default_prompt(missing, default), _compact(current), missing)
        prompt = PROMPTS[missing]
        if missing == "name" and not state:
            prompt = WELCOME_PROMPT
        return Ask(prompt, _compact(current), missing)

    complete_onboarding(
        ctx.db,
        ctx.member,
        name=current["name"],
        timezone_name=current["timezone"],
        favorite_club=current.get("favorite_club"),
        favorite_location=current.get("favorite_location"),
        now=ctx.now,
    )
    return Complete(
        f"Welcome, {current['name']}! You're all set up. How can I help you book a tee time?",
        name=current["name"],
    )


def _compact(state: dict) -> dict:
    return {key: value for key, value in state.items() if value not in (None, [], "")}
