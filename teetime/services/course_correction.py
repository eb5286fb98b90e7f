"""Detect members abandoning the flow they are in.

A keyword pass runs first so ordinary answers never reach the oracle. Long
messages that also carry a concrete action ("actually book Topgolf for
Friday at 3pm") are new requests, not corrections.
"""

import re
from typing import Optional

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.services.text_utils import normalize_for_matching
from teetime.services.ttl_cache import TTLCache

logger = get_logger("course_correction")

CORRECTION_KEYWORDS = (
    "wait",
    "actually",
    "never mind",
    "nevermind",
    "scratch that",
    "forget it",
    "forget that",
    "start over",
    "start again",
    "changed my mind",
    "change of plans",
    "hold on",
    "stop",
    "cancel that",
)
ACTION_VERBS = re.compile(r"\b(book|reserve|schedule|cancel|change|move|reschedule|modify|check)\b")
ACTION_REQUEST_MIN_LENGTH = 40

RESTART_PROMPTS = {
    "booking-new": "I understand you want to change your booking. Let's start fresh. What would you like to book for?",
    "modify-booking": "I'll cancel this modification. What would you like to do instead?",
    "cancel-booking": "I'll cancel this. How can I help you?",
}
DEFAULT_RESTART_PROMPT = "No problem, let's start over. How can I help you today?"


def has_correction_keyword(normalized: str) -> bool:
    return any(re.search(rf"\b{re.escape(keyword)}\b", normalized) for keyword in CORRECTION_KEYWORDS)


def is_specific_action_request(normalized: str) -> bool:
    return len(normalized) > ACTION_REQUEST_MIN_LENGTH and bool(ACTION_VERBS.search(normalized))


def restart_prompt(flow: Optional[str]) -> str:
    return RESTART_PROMPTS.get(flow or "", DEFAULT_RESTART_PROMPT)


class CourseCorrectionDetector:
    def __init__(self, oracle, cache: Optional[TTLCache] = None):
        self.oracle = oracle
        self.cache = cache if cache is not None else TTLCache(
            ttl_seconds=settings.course_correction_cache_ttl_seconds,
            max_entries=settings.course_correction_cache_max_entries,
        )

    def is_correction(self, message: str) -> bool:
        normalized = normalize_for_matching(message)
        if not normalized or not has_correction_keyword(normalized):
            return False
        if is_specific_action_request(normalized):
            return False

        cached = self.cache.get(normalized)
        if cached is not None:
            return cached

        result = self.oracle.is_course_correction(message)
        if not result.ok:
            logger.warning("Course correction check failed", extra={"context": {"error_code": result.error_code}})
            return False
        self.cache.set(normalized, result.value)
        return result.value
