from typing import List, Optional

import httpx

from teetime.logging_config import get_logger
from teetime.services.llm.base import LLMProvider, LLMProviderError, LLMResponse

logger = get_logger("llm.openai")

DEFAULT_TIMEOUT_SECONDS = 30.0


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions over one pooled ``httpx.Client``."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-5-mini",
        *,
        base_url: str = "https://api.openai.com/v1",
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.endpoint = base_url.rstrip("/") + "/chat/completions"
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT_SECONDS)

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 400,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        if not self.api_key:
            raise LLMProviderError("OpenAI API key not configured")

        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = self._client.post(
            self.endpoint,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=payload,
            timeout=timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS,
        )
        if response.status_code != 200:
            logger.error(
                "OpenAI error",
                extra={"context": {"status_code": response.status_code, "response_text": response.text[:500]}},
            )
            raise LLMProviderError(f"OpenAI API error: {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMProviderError("OpenAI returned a non-JSON body", status_code=response.status_code) from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMProviderError("OpenAI returned no choices", status_code=response.status_code)
        choice = choices[0]
        logger.debug(
            "OpenAI completion",
            extra={"context": {"model": data.get("model", model), "finish_reason": choice.get("finish_reason")}},
        )
        return LLMResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model=data.get("model", model),
            usage=data.get("usage"),
            finish_reason=choice.get("finish_reason"),
        )
