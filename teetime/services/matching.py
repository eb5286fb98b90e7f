"""Resolve free-text club and location names against the active directory.

Order: exact match, containment, fuzzy score above the threshold, then the
oracle for anything still ambiguous. Fuzzy matching works on normalized
values so "Top Golf" and "topgolf" compare equal.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from rapidfuzz import fuzz, process

from teetime.logging_config import get_logger
from teetime.services.text_utils import normalize_match_value

logger = get_logger("matching")

FUZZY_THRESHOLD = 85
MIN_CONTAINS_LENGTH = 3


@dataclass
class MatchResult:
    index: Optional[int] = None
    method: Optional[str] = None
    score: float = 0.0

    @property
    def matched(self) -> bool:
        return self.index is not None


def _contains_match(query: str, candidates: list[str]) -> Optional[int]:
    if len(query) < MIN_CONTAINS_LENGTH:
        return None
    hits = [index for index, candidate in enumerate(candidates) if candidate and (candidate in query or query in candidate)]
    if len(hits) == 1:
        return hits[0]
    # Prefer the longest option mentioned verbatim in the message ("topgolf austin" over "topgolf").
    inside = [index for index in hits if candidates[index] in query]
    if inside:
        longest = max(inside, key=lambda index: len(candidates[index]))
        if sum(1 for index in inside if len(candidates[index]) == len(candidates[longest])) == 1:
            return longest
    return None


def match_option(
    text: Optional[str],
    options: Sequence[str],
    *,
    threshold: int = FUZZY_THRESHOLD,
    oracle=None,
) -> MatchResult:
    """Return the index of the option ``text`` refers to, if any."""
    query = normalize_match_value(text or "")
    if not query or not options:
        return MatchResult()

    candidates = [normalize_match_value(option) for option in options]

    for index, candidate in enumerate(candidates):
        if candidate == query:
            return MatchResult(index=index, method="exact", score=100.0)

    contains_index = _contains_match(query, candidates)
    if contains_index is not None:
        return MatchResult(index=contains_index, method="contains", score=100.0)

    best = process.extractOne(query, candidates, scorer=fuzz.WRatio, score_cutoff=threshold)
    if best is not None:
        _, score, index = best
        return MatchResult(index=index, method="fuzzy", score=float(score))

    if oracle is not None:
        choice = oracle.choose_option(text, list(options))
        if not choice.ok:
            logger.warning(
                "Option disambiguation failed",
                extra={"context": {"error_code": choice.error_code, "options": len(options)}},
            )
        index = choice.unwrap_or(None)
        if index is not None:
            return MatchResult(index=index, method="oracle")

    return MatchResult()


def format_options(options: Sequence[str]) -> str:
    """Join options as "A, B or C" for prompts."""
    items = [option for option in options if option]
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return f"{', '.join(items[:-1])} or {items[-1]}"
