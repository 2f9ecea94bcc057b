"""OpenAI chat-completions client used by the planner and the task executor.

Both callers send one system and one user message. The planner asks for JSON
matching a pydantic model; the executor asks for bounded free text.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Protocol, TypeVar
from urllib import error, request

from pydantic import BaseModel

from agent_dashboard.config.settings import Settings

TModel = TypeVar("TModel", bound=BaseModel)
logger = logging.getLogger(__name__)

# Rate limits and upstream outages; other HTTP errors will not improve on retry.
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


class LLMRequestError(RuntimeError):
    """The provider answered with an error status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"LLM request failed status={status_code}: {detail}")
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class LLMAdapter(Protocol):
    """Interface for structured and free-text LLM completions."""

    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type[TModel],
        timeout_s: float,
    ) -> TModel: ...

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_output_tokens: int,
        timeout_s: float,
    ) -> str: ...


class OpenAIChatCompletionsAdapter:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        max_retries: int = 1,
        backoff_s: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type[TModel],
        timeout_s: float,
    ) -> TModel:
        content = self._chat(
            system_prompt,
            user_prompt,
            timeout_s=timeout_s,
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": response_model.__name__.lower(),
                    "strict": False,
                    "schema": response_model.model_json_schema(),
                },
            },
        )
        parsed = json.loads(content)
        # Some models wrap the plan object in a one-element list.
        if isinstance(parsed, list):
            parsed = parsed[0] if parsed else {}
        return response_model.model_validate(parsed)

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_output_tokens: int,
        timeout_s: float,
    ) -> str:
        content = self._chat(
            system_prompt,
            user_prompt,
            timeout_s=timeout_s,
            max_tokens=max_output_tokens,
        )
        return content.strip()

    def _chat(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        timeout_s: float,
        **options: Any,
    ) -> str:
        """Send one system+user exchange and return the first choice's text."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **options,
        }
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return _first_choice_text(self._post(payload, timeout_s=timeout_s))
            except LLMRequestError as exc:
                if not exc.retryable or attempt == attempts:
                    raise
                reason: Exception = exc
            except (TimeoutError, ValueError, error.URLError) as exc:
                if attempt == attempts:
                    raise
                reason = exc
            logger.warning(
                "llm_request event=retry attempt=%d/%d model=%s reason=%s",
                attempt,
                attempts,
                self.model,
                reason,
            )
            if self.backoff_s > 0:
                time.sleep(self.backoff_s)
        raise RuntimeError("unreachable: retry loop exited without a result")

    def _post(self, payload: dict[str, Any], *, timeout_s: float) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        if _trace_enabled():
            logger.warning("llm_trace event=request model=%s url=%s", self.model, url)
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMRequestError(exc.code, detail) from exc
        if _trace_enabled():
            logger.warning("llm_trace event=response model=%s bytes=%d", self.model, len(body))
        return json.loads(body)


def _first_choice_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices") or []
    if not choices:
        raise ValueError("LLM response did not contain choices")
    content = (choices[0].get("message") or {}).get("content")
    if content is None:
        return ""
    if not isinstance(content, str):
        raise ValueError("LLM response content is not text")
    return content


def build_llm_adapter(settings: Settings) -> LLMAdapter | None:
    if settings.llm_provider.lower() != "openai":
        return None

    api_key = settings.resolved_openai_api_key()
    if not api_key:
        return None

    return OpenAIChatCompletionsAdapter(
        api_key=api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
    )


def _trace_enabled() -> bool:
    return os.getenv("AGENT_DASHBOARD_LLM_TRACE", "0").strip() == "1"
