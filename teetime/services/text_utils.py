import hashlib
import re
from dataclasses import dataclass, field

MAX_PROMPT_INPUT_LENGTH = 500

PROMPT_INJECTION_PATTERNS = (
    re.compile(r"(ignore|disregard|forget)\s+(previous|all|above|prior)\s+(instructions?|prompts?|commands?)", re.I),
    re.compile(r"you\s+are\s+now", re.I),
    re.compile(r"act\s+as\s+(if|a|an)\b", re.I),
    re.compile(r"pretend\s+(you|to)\s+are", re.I),
    re.compile(r"roleplay\s+as", re.I),
    re.compile(r"(system|assistant)\s*:", re.I),
    re.compile(r"\[(system|assistant)\]", re.I),
    re.compile(r"\{(system|assistant)\}", re.I),
    re.compile(r"<\|.*?\|>"),
    re.compile(r"(new|updated|override)\s+instructions?", re.I),
)

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.I)
PHONE_PATTERN = re.compile(r"(\+?\d[\d\s().-]{7,}\d)")
COORDINATE_PATTERN = re.compile(r"-?\b\d{1,3}\.\d{3,}\s*,\s*-?\d{1,3}\.\d{3,}\b")
ADDRESS_PATTERN = re.compile(
    r"\b\d{1,5}\s+[A-Za-z0-9.'-]+(?:\s+[A-Za-z0-9.'-]+){0,3}\s+"
    r"(street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|court|ct|way|parkway|pkwy)\b",
    re.I,
)


def normalize_for_matching(text: str) -> str:
    """Normalize text for matching short phrases (casefold + trim punctuation)."""
    if not text:
        return ""

    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    # "yes!" -> "yes", "...ok" -> "ok"
    normalized = re.sub(r"^[^\w]+|[^\w]+$", "", normalized)
    return normalized


def normalize_match_value(value: str) -> str:
    """Lowercase and drop everything except ASCII letters and digits."""
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]", "", value.strip().lower())


def hash_message_body(body: str) -> str:
    return hashlib.sha256((body or "").strip().encode("utf-8")).hexdigest()


def sanitize_user_input(text: str) -> str:
    """Neutralize prompt-injection phrases before user text reaches the oracle."""
    if not text or not isinstance(text, str):
        return ""
    sanitized = text
    for pattern in PROMPT_INJECTION_PATTERNS:
        sanitized = pattern.sub("[REDACTED]", sanitized)
    sanitized = CONTROL_CHARS.sub("", sanitized)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    return sanitized[:MAX_PROMPT_INPUT_LENGTH]


@dataclass
class Redaction:
    token: str
    value: str
    type: str


@dataclass
class RedactionResult:
    redacted: str
    redactions: list[Redaction] = field(default_factory=list)
    next_index: int = 1


def redact_sensitive_text(text: str | None, *, start_index: int = 1) -> RedactionResult:
    """Replace emails, phone numbers, coordinates and street addresses with numbered tokens.

    Token numbering continues from ``start_index`` so several fields of one
    message (body, profile name, sender) never share a token.
    """
    if not text:
        return RedactionResult(redacted="", redactions=[], next_index=start_index)

    redactions: list[Redaction] = []
    index = start_index

    def _replacer(kind: str):
        def _replace(match: re.Match) -> str:
            nonlocal index
            token = f"[redacted-{kind}-{index}]"
            redactions.append(Redaction(token=token, value=match.group(0), type=kind))
            index += 1
            return token

        return _replace

    redacted = EMAIL_PATTERN.sub(_replacer("email"), text)
    redacted = PHONE_PATTERN.sub(_replacer("phone"), redacted)
    redacted = COORDINATE_PATTERN.sub(_replacer("coordinates"), redacted)
    redacted = ADDRESS_PATTERN.sub(_replacer("address"), redacted)
    return RedactionResult(redacted=redacted, redactions=redactions, next_index=index)
