"""Decision variants returned by the flow engines.

Every flow turn ends in exactly one of these. ``render_decision`` turns a
decision into the outbound text and ``persists_state`` says whether the
caller should store ``state`` for the next turn or clear it.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union


@dataclass
class Ask:
    kind: ClassVar[str] = "ask"
    prompt: str
    state: dict = field(default_factory=dict)
    field_name: Optional[str] = None


@dataclass
class ConfirmDefault:
    kind: ClassVar[str] = "confirm-default"
    prompt: str
    state: dict = field(default_factory=dict)
    field_name: Optional[str] = None


@dataclass
class Review:
    kind: ClassVar[str] = "review"
    summary: str
    state: dict = field(default_factory=dict)


@dataclass
class AskAlternatives:
    kind: ClassVar[str] = "ask-alternatives"
    prompt: str
    state: dict = field(default_factory=dict)


@dataclass
class Submitted:
    kind: ClassVar[str] = "submitted"
    message: str
    booking_id: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None


@dataclass
class Clarify:
    kind: ClassVar[str] = "clarify"
    prompt: str
    clear_state: bool = False


@dataclass
class Lookup:
    """The flow needs a concrete booking; the caller resolves ``criteria`` and re-enters."""

    kind: ClassVar[str] = "lookup"
    criteria: dict
    state: dict = field(default_factory=dict)


@dataclass
class ConfirmCancel:
    kind: ClassVar[str] = "confirm-cancel"
    prompt: str
    state: dict = field(default_factory=dict)


@dataclass
class ConfirmUpdate:
    kind: ClassVar[str] = "confirm-update"
    prompt: str
    state: dict = field(default_factory=dict)


@dataclass
class ConfirmHandoff:
    kind: ClassVar[str] = "confirm-handoff"
    prompt: str
    state: dict = field(default_factory=dict)


@dataclass
class Cancelled:
    kind: ClassVar[str] = "cancelled"
    message: str
    booking_id: Optional[str] = None


@dataclass
class UpdateRequested:
    kind: ClassVar[str] = "update-requested"
    message: str
    support_request_id: Optional[str] = None


@dataclass
class Handoff:
    kind: ClassVar[str] = "handoff"
    message: str
    support_request_id: Optional[str] = None


@dataclass
class Complete:
    kind: ClassVar[str] = "complete"
    message: str
    name: Optional[str] = None


@dataclass
class NotFound:
    kind: ClassVar[str] = "not-found"
    message: str


@dataclass
class NotAllowed:
    kind: ClassVar[str] = "not-allowed"
    message: str


@dataclass
class OfferBooking:
    kind: ClassVar[str] = "offer-booking"
    prompt: str


@dataclass
class Respond:
    kind: ClassVar[str] = "respond"
    message: str


Decision = Union[
    Ask,
    ConfirmDefault,
    Review,
    AskAlternatives,
    Submitted,
    Clarify,
    Lookup,
    ConfirmCancel,
    ConfirmUpdate,
    ConfirmHandoff,
    Cancelled,
    UpdateRequested,
    Handoff,
    Complete,
    NotFound,
    NotAllowed,
    OfferBooking,
    Respond,
]

PENDING_DECISIONS = (Ask, ConfirmDefault, Review, AskAlternatives, ConfirmCancel, ConfirmUpdate, ConfirmHandoff)


def persists_state(decision: Decision) -> bool:
    """True when the flow is waiting on the member and its state must be kept."""
    return isinstance(decision, PENDING_DECISIONS)


def render_decision(decision: Decision) -> str:
    if isinstance(decision, (Ask, ConfirmDefault, AskAlternatives, ConfirmCancel, ConfirmUpdate, ConfirmHandoff)):
        return decision.prompt
    if isinstance(decision, Review):
        return decision.summary
    if isinstance(decision, (Clarify, OfferBooking)):
        return decision.prompt
    if isinstance(
        decision,
        (Submitted, Cancelled, UpdateRequested, Handoff, Complete, NotFound, NotAllowed, Respond),
    ):
        return decision.message
    if isinstance(decision, Lookup):
        raise ValueError("Lookup decisions must be resolved before rendering")
    raise TypeError(f"Unhandled decision type: {type(decision).__name__}")
