import re

from teetime.services.text_utils import normalize_for_matching

CONFIRMATION_MAX_CHARS = 80
SHORT_REPLY_MAX_CHARS = 32

CONFIRM_EXACT = {
    "yes",
    "yep",
    "yeah",
    "y",
    "ok",
    "okay",
    "confirm",
    "confirmed",
    "please",
    "sure",
    "yup",
    "affirmative",
    "correct",
    "right",
    "exactly",
    "absolutely",
    "definitely",
    "for sure",
}

NEGATIVE_EXACT = {
    "no",
    "nope",
    "nah",
    "not now",
    "not today",
    "later",
    "maybe later",
    "don't",
    "dont",
    "do not",
    "no thanks",
    "no thank you",
}

NONE_EXACT = {"none", "no", "nope", "nothing", "n/a", "na", "no notes", "no guests", "just me", "skip"}

EDIT_INTENT = re.compile(r"(change|edit|update|instead|actually|\bbut\b|wait|hold|cancel|different)")
ACTION_FILLER = re.compile(r"\b(it|that|this|the|my|booking|tee time|one)\b")

CONFIRM_PATTERNS = (
    re.compile(r"\b(sounds? good|looks? good|that works?|go ahead|do it|book it|perfect|great|awesome)\b"),
    re.compile(r"\b(yes|yeah|yep)\b.*\b(please|thanks|thank you|correct|right)\b"),
)

INTENT_KEYWORDS = (
    "book",
    "tee time",
    "cancel",
    "reschedule",
    "modify",
    "change",
    "status",
    "support",
    "help",
    "human",
    "faq",
    "question",
)


def is_confirmation_message(message: str) -> bool:
    """Return True for short affirmative replies ("yes", "sounds good", "book it")."""
    normalized = normalize_for_matching(message)
    if not normalized or len(normalized) > CONFIRMATION_MAX_CHARS:
        return False
    # Digits usually carry new details (dates, times, player counts).
    if re.search(r"\d", normalized):
        return False
    if EDIT_INTENT.search(normalized):
        return False
    if normalized in CONFIRM_EXACT:
        return True
    if normalized in NEGATIVE_EXACT:
        return False
    return any(pattern.search(normalized) for pattern in CONFIRM_PATTERNS)


def is_action_confirmation(message: str, verbs: tuple[str, ...]) -> bool:
    """Like ``is_confirmation_message`` but accepts the pending action's own verb.

    "Yes, cancel it" confirms a pending cancellation; "cancel it instead"
    or "yes, cancel Friday's" still do not.
    """
    normalized = normalize_for_matching(message)
    if not normalized or len(normalized) > CONFIRMATION_MAX_CHARS:
        return False
    verb_pattern = re.compile(r"\b(" + "|".join(re.escape(verb) for verb in verbs) + r")\b")
    if not verb_pattern.search(normalized):
        return is_confirmation_message(message)
    remainder = ACTION_FILLER.sub(" ", verb_pattern.sub(" ", normalized))
    remainder = re.sub(r"\s+", " ", remainder).strip()
    if not remainder:
        return True
    return is_confirmation_message(remainder)


def is_negative_reply(message: str) -> bool:
    normalized = normalize_for_matching(message)
    if not normalized or len(normalized) > SHORT_REPLY_MAX_CHARS:
        return False
    return normalized in NEGATIVE_EXACT


def is_none_reply(message: str) -> bool:
    """Short replies that mean "nothing to add" for optional free-text fields."""
    normalized = normalize_for_matching(message)
    if not normalized or len(normalized) > SHORT_REPLY_MAX_CHARS:
        return False
    return normalized in NONE_EXACT


def looks_like_followup(message: str) -> bool:
    """Short messages without intent keywords are treated as answers to the last question."""
    normalized = normalize_for_matching(message)
    if not normalized or len(normalized) > SHORT_REPLY_MAX_CHARS:
        return False
    return not any(keyword in normalized for keyword in INTENT_KEYWORDS)
