"""Schema-checked access to the language model.

Every call declares the pydantic model it expects back. Timeouts, transport
errors and malformed output are all retried the same bounded number of
times and then surface as a failed ``Result`` so callers can fall back to
deterministic behaviour.
"""

import hashlib
import json
import os
import time
from typing import Callable, Optional, Sequence, TypeVar

import httpx
import redis
from pydantic import BaseModel, ValidationError

from teetime.config import settings
from teetime.logging_config import get_logger
from teetime.schemas.oracle import (
    CourseCorrectionVerdict,
    OptionChoice,
    RouterClassification,
    ValidationIssue,
    ValidationReport,
)
from teetime.services.llm import LLMProvider, LLMProviderError, OpenAIProvider
from teetime.services.result import SCHEMA, TIMEOUT, TRANSPORT, UNAVAILABLE, Result
from teetime.services.text_utils import sanitize_user_input

logger = get_logger("oracle")

M = TypeVar("M", bound=BaseModel)

ORACLE_CACHE_PREFIX = "teetime:oracle_cache"
ORACLE_CACHE_SOCKET_TIMEOUT_SECONDS = 0.3

CLASSIFY_PROMPT = """You route messages for a golf tee-time booking assistant.
Pick exactly one flow:
- booking-new: the member wants to book a new tee time or bay
- booking-status: the member asks about an existing booking
- cancel-booking: the member wants to cancel a booking
- modify-booking: the member wants to change an existing booking
- faq: a general question about clubs, prices, hours or policies
- support: the member wants a human or has a problem
- clarify: none of the above or too vague to tell
Reply with JSON: {"flow": "<flow>", "confidence": <0..1>}"""

EXTRACT_PROMPT = """Extract booking details from the member's latest message.
Today is {today}. Copy dates and times as the member wrote them (for example "tomorrow", "2pm").
Only fill a field when the message states it. Use null for anything missing.
Reply with a JSON object with exactly these keys: {keys}"""

VALIDATE_PROMPT = """Check these tee-time booking fields for problems a member would want fixed
(impossible dates, times outside typical club hours, contradictory guests and player counts).
Reply with JSON: {"issues": [{"field": "<field>", "message": "<short reason>"}]}. Use an empty list if all fields look fine."""

CHOOSE_PROMPT = """The member is choosing one of the listed options.
Reply with JSON: {"index": <zero-based index>} or {"index": null} when none clearly matches."""

COURSE_CORRECTION_PROMPT = """A member is part-way through a booking conversation.
Decide whether the latest message abandons or restarts what they were doing
(for example "wait, never mind" or "actually scratch that"), rather than answering the last question.
Reply with JSON: {"is_correction": true|false}"""

_oracle: Optional["Oracle"] = None
_cache_client = None
_cache_url = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _get_cache_client():
    global _cache_client, _cache_url
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return None
    if not settings.oracle_cache_enabled or not _is_env_enabled(os.environ.get("ORACLE_CACHE_ENABLED")):
        return None
    if _cache_client is None or _cache_url != settings.redis_url:
        _cache_url = settings.redis_url
        _cache_client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=ORACLE_CACHE_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=ORACLE_CACHE_SOCKET_TIMEOUT_SECONDS,
        )
    return _cache_client


def _build_cache_key(model: str, schema: type[BaseModel], messages: list[dict]) -> str:
    raw_key = json.dumps({"model": model, "schema": schema.__name__, "messages": messages}, sort_keys=True)
    digest = hashlib.sha256(raw_key.encode("utf-8")).hexdigest()
    return f"{ORACLE_CACHE_PREFIX}:{schema.__name__}:{digest}"


class Oracle:
    """Typed facade over an ``LLMProvider``."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.model = model or settings.oracle_model
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.oracle_timeout_seconds
        self.max_retries = max(0, max_retries if max_retries is not None else settings.oracle_max_retries)
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.oracle_retry_backoff_seconds
        self._sleep = sleep

    def _read_cache(self, key: str, schema: type[M]) -> Optional[M]:
        cache = _get_cache_client()
        if not cache:
            return None
        try:
            payload = cache.get(key)
        except redis.RedisError as exc:
            logger.warning(f"Oracle cache read failed: {exc}")
            return None
        if not payload:
            return None
        try:
            return schema.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning(f"Oracle cache decode failed: {exc}")
            return None

    def _write_cache(self, key: str, value: BaseModel) -> None:
        cache = _get_cache_client()
        if not cache:
            return
        try:
            cache.setex(key, settings.oracle_cache_ttl_seconds, value.model_dump_json())
        except redis.RedisError as exc:
            logger.warning(f"Oracle cache write failed: {exc}")

    def _call(self, stage: str, system_prompt: str, user_content: str, schema: type[M]) -> Result[M]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        cache_key = _build_cache_key(self.model, schema, messages)
        cached = self._read_cache(cache_key, schema)
        if cached is not None:
            logger.info("Oracle cache hit", extra={"context": {"stage": stage}})
            return Result.success(cached)

        error = "oracle call failed"
        code = UNAVAILABLE
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            timed_out = False
            try:
                response = self.provider.generate_json(
                    system_prompt,
                    user_content,
                    model=self.model,
                    timeout_seconds=self.timeout_seconds,
                )
                if response.truncated:
                    raise ValueError("completion hit the token limit")
                parsed = schema.model_validate_json(response.content or "")
            except httpx.TimeoutException as exc:
                timed_out = True
                error, code = f"timeout after {self.timeout_seconds}s: {exc}", TIMEOUT
            except (httpx.HTTPError, LLMProviderError) as exc:
                error, code = str(exc), TRANSPORT
            except ValidationError as exc:
                error, code = f"malformed output: {exc.error_count()} error(s)", SCHEMA
            except ValueError as exc:
                error, code = str(exc), SCHEMA
            else:
                self._log_timing(stage, started, attempt=attempt, timed_out=False)
                self._write_cache(cache_key, parsed)
                return Result.success(parsed)

            self._log_timing(stage, started, attempt=attempt, timed_out=timed_out)
            logger.warning(
                "Oracle attempt failed",
                extra={"context": {"stage": stage, "attempt": attempt, "error_code": code, "error": error}},
            )
            if attempt < attempts and self.backoff_seconds > 0:
                self._sleep(self.backoff_seconds * attempt)

        return Result.failure(error, code)

    def _log_timing(self, stage: str, started: float, *, attempt: int, timed_out: bool) -> None:
        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": stage,
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                    "model_name": self.model,
                    "attempt": attempt,
                    "timeout": timed_out,
                }
            },
        )

    @staticmethod
    def _format_context(text: str, context: Optional[dict]) -> str:
        lines = []
        for turn in (context or {}).get("history") or []:
            role = turn.get("role", "user")
            content = sanitize_user_input(turn.get("content", ""))
            if content:
                lines.append(f"{role}: {content}")
        payload = ""
        if lines:
            payload += "Recent conversation:\n" + "\n".join(lines) + "\n\n"
        return payload + f"Message: {sanitize_user_input(text)}"

    def classify(self, text: str, context: Optional[dict] = None) -> Result[RouterClassification]:
        return self._call("router_classify_ms", CLASSIFY_PROMPT, self._format_context(text, context), RouterClassification)

    def extract_fields(self, text: str, schema: type[M], context: Optional[dict] = None) -> Result[M]:
        today = (context or {}).get("today", "")
        keys = ", ".join(schema.model_fields.keys())
        system_prompt = EXTRACT_PROMPT.format(today=today, keys=keys)
        return self._call(f"extract_{schema.__name__}_ms", system_prompt, self._format_context(text, context), schema)

    def validate(self, fields: dict, context: Optional[dict] = None) -> Result[list[ValidationIssue]]:
        payload = {key: value for key, value in fields.items() if value is not None}
        if context and context.get("today"):
            payload["today"] = context["today"]
        result = self._call("validate_ms", VALIDATE_PROMPT, json.dumps(payload, default=str), ValidationReport)
        return result.map(lambda report: report.issues)

    def choose_option(self, text: str, options: Sequence[str]) -> Result[Optional[int]]:
        if not options:
            return Result.success(None)
        listing = "\n".join(f"{index}: {option}" for index, option in enumerate(options))
        content = f"Options:\n{listing}\n\nMessage: {sanitize_user_input(text)}"
        result = self._call("choose_option_ms", CHOOSE_PROMPT, content, OptionChoice)

        def _index(choice: OptionChoice) -> Optional[int]:
            if choice.index is None or not 0 <= choice.index < len(options):
                return None
            return choice.index

        return result.map(_index)

    def is_course_correction(self, text: str) -> Result[bool]:
        result = self._call(
            "course_correction_ms",
            COURSE_CORRECTION_PROMPT,
            f"Message: {sanitize_user_input(text)}",
            CourseCorrectionVerdict,
        )
        return result.map(lambda verdict: verdict.is_correction)


def get_oracle() -> Oracle:
    """Get or create the process-wide oracle."""
    global _oracle
    if _oracle is None:
        provider = OpenAIProvider(
            api_key=settings.openai_api_key or "",
            default_model=settings.oracle_model,
            base_url=settings.openai_base_url,
        )
        _oracle = Oracle(provider)
    return _oracle
