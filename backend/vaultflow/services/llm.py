from __future__ import annotations

import json
import re
from contextlib import contextmanager
from functools import lru_cache
from threading import BoundedSemaphore
from typing import Protocol, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ..core.config import get_settings
from .errors import LLMError

T = TypeVar("T", bound=BaseModel)

_llm_semaphore: BoundedSemaphore | None = None
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _get_semaphore() -> BoundedSemaphore:
    """
    Lazy-initialised global semaphore for limiting concurrent LLM calls.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        settings = get_settings()
        _llm_semaphore = BoundedSemaphore(settings.LLM_MAX_CONCURRENCY)
    return _llm_semaphore


@contextmanager
def limit_llm_concurrency():
    """
    Bound concurrent calls to the LLM provider across all runs in this process.

        with limit_llm_concurrency():
            client.chat.completions.create(...)
    """
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Shared OpenAI-compatible client.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Vaultflow",
            },
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(api_key=settings.OPENAI_API_KEY.strip(), timeout=settings.LLM_TIMEOUT_SECONDS)

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


class StructuredLLM(Protocol):
    """Interface the pipelines depend on; tests substitute in-memory fakes."""

    def invoke(self, system_prompt: str, user_prompt: str, schema: type[T]) -> T: ...

    def complete(self, system_prompt: str, user_prompt: str) -> str: ...


def parse_structured(response_text: str, schema: type[T]) -> T:
    """
    Pull the outermost JSON object out of a model reply and validate it.

    Raises:
        LLMError: no JSON object found, invalid JSON, or schema mismatch.
    """
    match = _JSON_OBJECT_RE.search(response_text or "")
    if not match:
        raise LLMError(f"No JSON object in model response for {schema.__name__}")
    try:
        data = json.loads(match.group())
    except json.JSONDecodeError as e:
        raise LLMError(f"Malformed JSON for {schema.__name__}: {e}") from e
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise LLMError(f"Model output does not match {schema.__name__}: {e.error_count()} errors") from e


class OpenAIStructuredLLM:
    def __init__(
        self,
        client: OpenAI | None = None,
        *,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> None:
        self._client = client
        self.model = model or get_settings().LLM_MODEL
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def _chat(self, system_prompt: str, user_prompt: str, *, json_mode: bool) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            with limit_llm_concurrency():
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    **kwargs,
                )
        except Exception as e:
            raise LLMError(f"LLM call failed: {e}") from e
        return response.choices[0].message.content or ""

    def invoke(self, system_prompt: str, user_prompt: str, schema: type[T]) -> T:
        schema_hint = json.dumps(schema.model_json_schema())
        text = self._chat(
            f"{system_prompt}\n\nRespond with a single JSON object matching this JSON schema:\n{schema_hint}",
            user_prompt,
            json_mode=True,
        )
        return parse_structured(text, schema)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        return self._chat(system_prompt, user_prompt, json_mode=False).strip()
