from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
from openai import OpenAIError
from pydantic import BaseModel

from learning_gps import telemetry
from learning_gps.config import Settings
from learning_gps.text_generation import (
    DisabledTextGenerator,
    HttpTextGenerator,
    OpenAITextGenerator,
    TextGenerationResult,
    get_text_generator,
    parse_json_object,
    request_structured,
)


class Greeting(BaseModel):
    message: str


def _settings(**overrides) -> Settings:
    values = {"LEARNING_GPS_TEXT_GENERATION_TIMEOUT_MS": 2000}
    values.update(overrides)
    return Settings(**values)


def test_parse_json_object_accepts_fenced_json() -> None:
    result = parse_json_object('```json\n{"message": "hi"}\n```')
    assert result.ok
    assert result.payload == {"message": "hi"}


def test_parse_json_object_rejects_arrays_and_garbage() -> None:
    assert parse_json_object("[1, 2]").status == "unavailable"
    assert parse_json_object("not json").status == "unavailable"
    assert parse_json_object("   ").reason == "empty response"


def test_http_generator_posts_prompt_and_parses_text() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"text": '{"message": "Keep going!"}'})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    generator = HttpTextGenerator(_settings(), client=client)

    result = generator.generate("Say hi", max_tokens=64)

    assert result.ok
    assert result.payload["message"] == "Keep going!"
    assert seen == {"prompt": "Say hi", "max_tokens": 64}


def test_http_generator_degrades_on_server_error() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(502)))
    result = HttpTextGenerator(_settings(), client=client).generate("Say hi", max_tokens=64)

    assert result.status == "unavailable"
    assert "failed" in (result.reason or "")


def test_openai_generator_requests_json_output() -> None:
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        message = SimpleNamespace(content='{"message": "Great pace"}')
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    generator = OpenAITextGenerator(_settings(), client=client)  # type: ignore[arg-type]

    result = generator.generate("Cheer", max_tokens=128)

    assert result.payload == {"message": "Great pace"}
    assert calls[0]["response_format"] == {"type": "json_object"}
    assert calls[0]["max_tokens"] == 128
    assert calls[0]["timeout"] == 2.0


def test_openai_generator_maps_sdk_errors_to_unavailable() -> None:
    def create(**kwargs):
        raise OpenAIError("quota exceeded")

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    result = OpenAITextGenerator(_settings(), client=client).generate("Cheer", max_tokens=128)  # type: ignore[arg-type]

    assert result.status == "unavailable"
    assert "quota exceeded" in (result.reason or "")


def test_request_structured_validates_payload_and_emits_on_failure() -> None:
    events = []
    telemetry.register_listener(lambda event: events.append(event))
    try:
        class Canned:
            def __init__(self, result: TextGenerationResult) -> None:
                self.result = result

            def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:
                return self.result

        good = request_structured(
            Canned(TextGenerationResult.success({"message": "hello"})),
            "p",
            max_tokens=8,
            schema=Greeting,
            purpose="test",
        )
        wrong_shape = request_structured(
            Canned(TextGenerationResult.success({"text": "hello"})),
            "p",
            max_tokens=8,
            schema=Greeting,
            purpose="test",
        )
        disabled = request_structured(DisabledTextGenerator(), "p", max_tokens=8, schema=Greeting, purpose="test")
    finally:
        telemetry.clear_listeners()

    assert good == Greeting(message="hello")
    assert wrong_shape is None
    assert disabled is None
    assert [event.name for event in events] == ["text_generation_unavailable"] * 2


def test_request_structured_survives_generator_exceptions() -> None:
    class Exploding:
        def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:
            raise TimeoutError("slow")

    assert request_structured(Exploding(), "p", max_tokens=8, schema=Greeting, purpose="test") is None


def test_get_text_generator_selects_backend() -> None:
    assert isinstance(get_text_generator(_settings()), DisabledTextGenerator)
    assert isinstance(
        get_text_generator(_settings(LEARNING_GPS_TEXT_GENERATION_BACKEND="http")), HttpTextGenerator
    )
    assert isinstance(
        get_text_generator(_settings(LEARNING_GPS_TEXT_GENERATION_BACKEND="openai", OPENAI_API_KEY=None)),
        DisabledTextGenerator,
    )
