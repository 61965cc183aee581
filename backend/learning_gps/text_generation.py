"""Best-effort structured text generation.

Callers receive a tagged ``TextGenerationResult`` and branch on ``status``;
transport failures, timeouts and non-JSON replies all collapse into
``unavailable`` so every caller can fall back to template text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Protocol, Type, TypeVar

import httpx
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from .config import Settings
from .telemetry import emit_event

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

GenerationStatus = Literal["success", "unavailable"]


@dataclass(frozen=True)
class TextGenerationResult:
    status: GenerationStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None

    @classmethod
    def success(cls, payload: Dict[str, Any]) -> "TextGenerationResult":
        return cls(status="success", payload=payload)

    @classmethod
    def unavailable(cls, reason: str) -> "TextGenerationResult":
        return cls(status="unavailable", reason=reason)

    @property
    def ok(self) -> bool:
        return self.status == "success"


class TextGenerator(Protocol):
    def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:  # pragma: no cover
        ...


def parse_json_object(text: Optional[str]) -> TextGenerationResult:
    """Interpret raw model text as a JSON object, tolerating a fenced code block."""
    if not text or not text.strip():
        return TextGenerationResult.unavailable("empty response")
    candidate = text.strip()
    if candidate.startswith("```"):
        candidate = candidate.strip("`")
        if candidate.lower().startswith("json"):
            candidate = candidate[4:]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return TextGenerationResult.unavailable(f"malformed JSON: {exc}")
    if not isinstance(data, dict):
        return TextGenerationResult.unavailable(f"expected a JSON object, got {type(data).__name__}")
    return TextGenerationResult.success(data)


class DisabledTextGenerator:
    def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:
        return TextGenerationResult.unavailable("text generation disabled")


class OpenAITextGenerator:
    """Chat-completions backed generator constrained to JSON object output."""

    def __init__(self, settings: Settings, *, client: Optional[OpenAI] = None) -> None:
        self._model = settings.text_generation_model
        self._timeout = _timeout_seconds(settings)
        self._client = client or OpenAI(api_key=settings.openai_api_key, max_retries=0)

    def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:
        try:
            completion = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": "Respond only with a single JSON object."},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                timeout=self._timeout,
            )
        except OpenAIError as exc:
            return TextGenerationResult.unavailable(f"OpenAI call failed: {exc}")
        if not completion.choices:
            return TextGenerationResult.unavailable("no choices returned")
        return parse_json_object(completion.choices[0].message.content)


class HttpTextGenerator:
    """Generator for a self-hosted endpoint accepting ``{"prompt", "max_tokens"}``.

    The endpoint answers with ``{"text": "..."}`` holding the model output.
    """

    def __init__(self, settings: Settings, *, client: Optional[httpx.Client] = None) -> None:
        self._endpoint = settings.text_generation_url
        self._timeout = _timeout_seconds(settings)
        self._client = client

    def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:
        local_client = self._client or httpx.Client(timeout=self._timeout)
        close_client = self._client is None
        try:
            response = local_client.post(
                self._endpoint,
                json={"prompt": prompt, "max_tokens": max_tokens},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            return TextGenerationResult.unavailable(f"text generation call failed: {exc}")
        except ValueError as exc:
            return TextGenerationResult.unavailable(f"text generation returned invalid JSON: {exc}")
        finally:
            if close_client:
                local_client.close()

        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            return TextGenerationResult.unavailable("response missing 'text'")
        return parse_json_object(text)


def request_structured(
    generator: TextGenerator,
    prompt: str,
    *,
    max_tokens: int,
    schema: Type[T],
    purpose: str,
) -> Optional[T]:
    """Run ``prompt`` and validate the reply against ``schema``; ``None`` means use a fallback."""
    try:
        result = generator.generate(prompt, max_tokens=max_tokens)
    except Exception as exc:  # noqa: BLE001
        result = TextGenerationResult.unavailable(f"generator raised {type(exc).__name__}: {exc}")

    if result.ok:
        try:
            return schema.model_validate(result.payload)
        except ValidationError as exc:
            result = TextGenerationResult.unavailable(f"payload failed validation: {exc.error_count()} error(s)")

    logger.warning("Text generation unavailable for %s: %s", purpose, result.reason)
    emit_event("text_generation_unavailable", purpose=purpose, reason=result.reason)
    return None


def get_text_generator(settings: Settings) -> TextGenerator:
    backend = settings.text_generation_backend
    if backend == "openai":
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY missing; text generation disabled.")
            return DisabledTextGenerator()
        return OpenAITextGenerator(settings)
    if backend == "http":
        return HttpTextGenerator(settings)
    return DisabledTextGenerator()


def _timeout_seconds(settings: Settings) -> float:
    return max(settings.text_generation_timeout_ms, 500) / 1000


__all__ = [
    "DisabledTextGenerator",
    "HttpTextGenerator",
    "OpenAITextGenerator",
    "TextGenerationResult",
    "TextGenerator",
    "get_text_generator",
    "parse_json_object",
    "request_structured",
]
