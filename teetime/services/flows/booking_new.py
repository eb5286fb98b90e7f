"""New-booking intake.

Fields are collected in a fixed order: club, location (only when the club
has more than one active location), date, time, players, guest names (only
for more than one player) and notes. Known values from the member profile or
the shared context are offered as defaults before asking outright.
"""

import re
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.schemas.oracle import BookingFields
from teetime.services.booking_service import BookingRequest, create_booking_with_history, get_bay_availability
from teetime.services.confirmation import is_confirmation_message, is_negative_reply, is_none_reply
from teetime.services.decisions import (
    Ask,
    AskAlternatives,
    Clarify,
    ConfirmDefault,
    Decision,
    Review,
    Submitted,
)
from teetime.services.errors import (
    BayUnavailableError,
    BookingInPastError,
    BookingMissingIdsError,
    BookingTooSoonError,
    ReferenceGenerationError,
)
from teetime.services.flows.common import FlowContext
from teetime.services.matching import format_options, match_option
from teetime.services.validation import (
    format_date_label,
    format_time_range_label,
    get_max_players,
    normalize_players,
    parse_preferred_date,
    parse_preferred_time_window,
)

logger = get_logger("flows.booking_new")

FLOW = "booking-new"

EMPTY_MESSAGE_PROMPT = "I can help book a tee time. Tell me the club, date, and time you want."
NO_CLUBS_PROMPT = "I couldn't find any clubs taking bookings right now. Please try again later or ask for staff help."
SUBMIT_FAILED_PROMPT = "I couldn't finish that booking just now. Reply yes to try again, or tell me what to change."

FIELD_ORDER = ("club", "location", "date", "time", "players", "guest_names", "notes")
FREE_TEXT_FIELDS = ("guest_names", "notes")
NONE_VALUE = "None"

PLAYER_COUNT = re.compile(r"\b(\d{1,2})\b")


class BookingNewState(BaseModel):
    club: Optional[str] = None
    club_id: Optional[str] = None
    location: Optional[str] = None
    location_id: Optional[str] = None
    location_required: Optional[bool] = None
    bay: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    players: Optional[int] = None
    guest_names: Optional[str] = None
    notes: Optional[str] = None
    pending_default: Optional[dict] = None
    declined_defaults: List[str] = Field(default_factory=list)
    awaiting: Optional[str] = None
    validated: bool = False

    def dump(self) -> dict:
        return self.model_dump(exclude_none=True)


def _ask_prompt(field_name: str, state: BookingNewState, options: Optional[list[str]] = None) -> str:
    if field_name == "club":
        base = "Which club would you like to book?"
    elif field_name == "location":
        base = f"Which {state.club} location would you like?" if state.club else "Which location would you like?"
    elif field_name == "date":
        base = "What date would you like?"
    elif field_name == "time":
        base = "What time (or time window) should we request?"
    elif field_name == "players":
        base = f"How many players (1-{get_max_players()})?"
    elif field_name == "guest_names":
        base = 'What are your guests\' names? Reply "none" to skip.'
    else:
        base = 'Any notes for the club? Reply "none" if not.'
    if options:
        return f"{base} Options: {format_options(options)}."
    return base


def _default_prompt(field_name: str, value) -> str:
    if field_name == "club":
        return f'I can default the club to "{value}". Would you like to use that?'
    if field_name == "location":
        return f'I can default the location to "{value}". Want to use that?'
    if field_name == "date":
        return f'I can use "{value}" as the date. Does that work?'
    if field_name == "time":
        return f'I can use "{value}" as the preferred time. Does that work?'
    if field_name == "players":
        return f"I can use {value} players. Does that work?"
    return f'I can use "{value}". Does that work?'


def _alternatives_prompt(suggested_times: Optional[list[str]] = None) -> str:
    if suggested_times:
        return (
            "That location is fully booked. Do any of these times work instead: "
            f"{', '.join(suggested_times)}? You can also share another time window."
        )
    return "That location is fully booked. What alternate time window works for you?"


def format_summary(state: BookingNewState) -> str:
    lines = [
        f"Club: {state.club or '-'}",
        f"Location: {state.location or '-'}",
        f"Bay: {state.bay or '-'}",
        f"Date: {format_date_label(state.date) or '-'}",
        f"Time: {state.time or '-'}",
        f"Players: {state.players if state.players is not None else '-'}",
        f"Guests: {state.guest_names or '-'}",
        f"Notes: {state.notes or '-'}",
    ]
    return "Please confirm these booking details:\n" + "\n".join(lines) + "\nReply yes to book it, or tell me what to change."


def _defaults(ctx: FlowContext) -> dict:
    defaults = {
        "club": ctx.member.favorite_club_label,
        "location": ctx.member.favorite_location_label,
    }
    for key in ("club", "location", "date", "time", "players"):
        if ctx.shared.get(key) is not None:
            defaults[key] = ctx.shared[key]
    return {key: value for key, value in defaults.items() if value not in (None, "")}


class _FieldIssue(Exception):
    def __init__(self, field_name: str, prompt: str):
        super().__init__(prompt)
        self.field_name = field_name
        self.prompt = prompt


def _apply_value(state: BookingNewState, field_name: str, value, today: date) -> None:
    """Set one field from user or oracle text; raises ``_FieldIssue`` for unusable values."""
    if value is None or value == "":
        return

    if field_name == "club":
        if value != state.club:
            state.club, state.club_id = str(value), None
            state.location = state.location_id = state.location_required = None
            state.bay = None
    elif field_name == "location":
        if value != state.location:
            state.location, state.location_id, state.bay = str(value), None, None
    elif field_name == "date":
        parsed = parse_preferred_date(str(value), today)
        if not parsed:
            state.date = None
            raise _FieldIssue("date", "I couldn't understand that date. What date would you like?")
        if date.fromisoformat(parsed) < today:
            state.date = None
            raise _FieldIssue("date", "That date has already passed. What date would you like?")
        state.date = parsed
    elif field_name == "time":
        window = parse_preferred_time_window(str(value))
        if not window:
            state.time = state.time_start = state.time_end = None
            raise _FieldIssue(
                "time", "I couldn't understand that time. What time (or time window) should we request?"
            )
        state.time_start, state.time_end = window.start, window.end
        state.time = format_time_range_label(window.start, window.end)
    elif field_name == "players":
        players = normalize_players(value)
        if players is None:
            state.players = None
            max_players = get_max_players()
            raise _FieldIssue("players", f"We can book 1-{max_players} players. How many players (1-{max_players})?")
        state.players = players
    elif field_name in FREE_TEXT_FIELDS:
        text = str(value).strip()
        setattr(state, field_name, NONE_VALUE if is_none_reply(text) else text)
    state.validated = False


def _apply_raw_reply(state: BookingNewState, field_name: str, message: str, today: date) -> None:
    if field_name == "players":
        match = PLAYER_COUNT.search(message)
        _apply_value(state, "players", match.group(1) if match else message, today)
        return
    _apply_value(state, field_name, message, today)


def _extract(ctx: FlowContext, state: BookingNewState) -> list[_FieldIssue]:
    """Merge fields from the message into ``state``; returns per-field problems."""
    issues = []
    message = ctx.message.strip()

    if state.awaiting in FREE_TEXT_FIELDS and is_none_reply(message):
        _apply_value(state, state.awaiting, message, ctx.today)
        return issues

    extracted = ctx.oracle.extract_fields(message, BookingFields, ctx.oracle_context())
    values = extracted.value.model_dump(exclude_none=True) if extracted.ok else {}
    if not extracted.ok:
        logger.warning(
            "Booking extraction failed",
            extra={"context": {"member_id": str(ctx.member.id), "error_code": extracted.error_code}},
        )

    if not values and state.awaiting in FIELD_ORDER:
        values = {state.awaiting: message}
        apply = _apply_raw_reply
    else:
        apply = _apply_value

    for field_name in FIELD_ORDER:
        if field_name not in values:
            continue
        try:
            apply(state, field_name, values[field_name], ctx.today)
        except _FieldIssue as issue:
            issues.append(issue)
    return issues


def _resolve_venue(ctx: FlowContext, state: BookingNewState) -> Optional[Decision]:
    if state.club and not state.club_id:
        clubs = ctx.directory.active_clubs()
        if not clubs:
            return Clarify(NO_CLUBS_PROMPT)
        names = [club.name for club in clubs]
        match = match_option(state.club, names, oracle=ctx.oracle)
        if not match.matched:
            state.club = None
            state.awaiting = "club"
            return Ask(
                f"I couldn't find that club. {_ask_prompt('club', state, names)}",
                state.dump(),
                "club",
            )
        state.club, state.club_id = clubs[match.index].name, clubs[match.index].id

    if not state.club_id or state.location_id:
        return None

    locations = ctx.directory.active_locations(state.club_id)
    if not locations:
        state.location_required = False
        return None
    if len(locations) == 1:
        state.location, state.location_id = locations[0].name, locations[0].id
        state.location_required = True
        return None

    state.location_required = True
    if not state.location:
        return None
    names = [location.name for location in locations]
    match = match_option(state.location, names, oracle=ctx.oracle)
    if not match.matched:
        state.location = None
        state.awaiting = "location"
        return Ask(
            f"I couldn't find that location. {_ask_prompt('location', state, names)}",
            state.dump(),
            "location",
        )
    state.location, state.location_id = locations[match.index].name, locations[match.index].id
    return None


def _missing_field(state: BookingNewState) -> Optional[str]:
    for field_name in FIELD_ORDER:
        if field_name == "location" and not state.location_required:
            continue
        if field_name == "guest_names" and (state.players or 0) <= 1:
            continue
        if getattr(state, field_name) in (None, ""):
            return field_name
    return None


def _location_options(ctx: FlowContext, state: BookingNewState) -> Optional[list[str]]:
    if not state.club_id:
        return None
    return [location.name for location in ctx.directory.active_locations(state.club_id)]


def _ask_or_default(ctx: FlowContext, state: BookingNewState, field_name: str) -> Decision:
    default = _defaults(ctx).get(field_name)
    if default is not None and field_name not in state.declined_defaults:
        state.pending_default = {"field": field_name, "value": default}
        state.awaiting = field_name
        return ConfirmDefault(_default_prompt(field_name, default), state.dump(), field_name)

    options = None
    if field_name == "club":
        options = [club.name for club in ctx.directory.active_clubs()]
    elif field_name == "location":
        options = _location_options(ctx, state)
    state.awaiting = field_name
    return Ask(_ask_prompt(field_name, state, options), state.dump(), field_name)


def _oracle_validation(ctx: FlowContext, state: BookingNewState) -> Optional[Decision]:
    if not settings.oracle_validation_enabled or state.validated:
        return None
    state.validated = True
    fields = {
        "club": state.club,
        "location": state.location,
        "date": state.date,
        "time": state.time,
        "players": state.players,
    }
    issues = ctx.oracle.validate(fields, ctx.oracle_context()).unwrap_or([])
    for issue in issues:
        if issue.field not in FIELD_ORDER:
            continue
        _clear_field(state, issue.field)
        state.awaiting = issue.field
        return Ask(f"{issue.message} {_ask_prompt(issue.field, state)}", state.dump(), issue.field)
    return None


def _clear_field(state: BookingNewState, field_name: str) -> None:
    if field_name == "time":
        state.time = state.time_start = state.time_end = None
    elif field_name == "club":
        state.club = state.club_id = state.location = state.location_id = state.location_required = None
    elif field_name == "location":
        state.location = state.location_id = None
    else:
        setattr(state, field_name, None)


def _blank_to_empty(value: Optional[str]) -> str:
    if not value or value == NONE_VALUE:
        return ""
    return value


def _submit(ctx: FlowContext, state: BookingNewState) -> Decision:
    try:
        if not state.club_id:
            raise BookingMissingIdsError()
        request = BookingRequest(
            member_id=ctx.member.id,
            club_id=state.club_id,
            club_location_id=state.location_id,
            preferred_date=date.fromisoformat(state.date),
            preferred_time_start=state.time_start,
            preferred_time_end=state.time_end,
            number_of_players=state.players,
            guest_names=_blank_to_empty(state.guest_names),
            notes=_blank_to_empty(state.notes),
            timezone=ctx.member.timezone,
        )
        with ctx.db.begin_nested():
            booking = create_booking_with_history(ctx.db, request, now=ctx.now)
    except BookingInPastError:
        state.awaiting = None
        if state.date == ctx.today.isoformat():
            _clear_field(state, "time")
            state.awaiting = "time"
            return Ask("That time has already passed today. What time would you like?", state.dump(), "time")
        _clear_field(state, "date")
        state.awaiting = "date"
        return Ask("That date has already passed. What date would you like?", state.dump(), "date")
    except BookingTooSoonError:
        _clear_field(state, "time")
        state.awaiting = "time"
        return Ask(
            f"Bookings need at least {settings.booking_min_lead_minutes} minutes notice. What later time works for you?",
            state.dump(),
            "time",
        )
    except BayUnavailableError:
        _clear_field(state, "time")
        state.awaiting = "time"
        return AskAlternatives(_alternatives_prompt(), state.dump())
    except BookingMissingIdsError:
        logger.warning("Booking submitted without resolved club", extra={"context": {"member_id": str(ctx.member.id)}})
        _clear_field(state, "club")
        state.awaiting = "club"
        return Ask(_ask_prompt("club", state), state.dump(), "club")
    except ReferenceGenerationError:
        logger.error("Booking reference generation exhausted", extra={"context": {"member_id": str(ctx.member.id)}})
        return Clarify(SUBMIT_FAILED_PROMPT)

    return Submitted(
        message=f"Your booking request is {booking.status}. Your reference is {booking.booking_reference}.",
        booking_id=str(booking.id),
        reference=booking.booking_reference,
        status=booking.status,
    )


def run(ctx: FlowContext, state: Optional[dict] = None) -> Decision:
    message = (ctx.message or "").strip()
    if not message:
        return Clarify(EMPTY_MESSAGE_PROMPT)

    current = BookingNewState(**(state or {}))
    issues: list[_FieldIssue] = []

    pending = current.pending_default
    current.pending_default = None
    if pending and is_confirmation_message(message):
        try:
            _apply_value(current, pending["field"], pending["value"], ctx.today)
        except _FieldIssue as issue:
            issues.append(issue)
    elif pending and is_negative_reply(message):
        current.declined_defaults.append(pending["field"])
    elif current.awaiting == "review" and is_confirmation_message(message) and _missing_field(current) is None:
        return _submit(ctx, current)
    elif not (is_confirmation_message(message) and _missing_field(current) is None):
        issues = _extract(ctx, current)

    if issues:
        issue = issues[0]
        current.awaiting = issue.field_name
        return Ask(issue.prompt, current.dump(), issue.field_name)

    venue_decision = _resolve_venue(ctx, current)
    if venue_decision is not None:
        return venue_decision

    missing = _missing_field(current)
    if missing:
        return _ask_or_default(ctx, current, missing)

    validation_decision = _oracle_validation(ctx, current)
    if validation_decision is not None:
        return validation_decision

    if current.location_id:
        availability = get_bay_availability(ctx.db, current.location_id)
        if availability.location_full:
            _clear_field(current, "time")
            current.awaiting = "time"
            return AskAlternatives(_alternatives_prompt(availability.suggested_times), current.dump())

    current.awaiting = "review"
    return Review(format_summary(current), current.dump())
