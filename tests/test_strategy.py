import json

import httpx
import pytest
from prometheus_client import REGISTRY
from pydantic import BaseModel

from openrouter_structured import OrchestratorConfig, StructuredCaller
from openrouter_structured.contracts import CallMode
from openrouter_structured.errors import (
    ConfigurationError,
    EmptyCompletionError,
    ErrorKind,
    InvalidSchemaError,
    MalformedJsonError,
    RemoteApiError,
    SchemaViolationError,
    TransportError,
    UnknownModelError,
)
from openrouter_structured.models import ProviderSort, RoutingPreferences
from openrouter_structured.strategy import JSON_MODE_SYSTEM_PROMPT
from openrouter_structured.transport import OpenRouterTransport


class Verdict(BaseModel):
    label: str
    confidence: float


class Bag(BaseModel):
    items: dict[str, int]


class FakeTransport:
    """Replays scripted outcomes (content strings or exceptions) and records request bodies."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.bodies: list[dict] = []

    async def send(self, body):
        self.bodies.append(body)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        return None


def _caller(transport) -> StructuredCaller:
    return StructuredCaller(OrchestratorConfig(openrouter_api_key="sk-or-test"), transport=transport)


@pytest.mark.asyncio
async def test_structured_success_returns_validated_model():
    t = FakeTransport('{"label": "spam", "confidence": 0.9}')
    res = await _caller(t).call("Classify this", "gpt-4o-mini", schema=Verdict, schema_name="verdict")

    assert res.mode is CallMode.STRUCTURED
    assert res.validated is True
    assert res.value == Verdict(label="spam", confidence=0.9)
    assert res.model_id == "openai/gpt-4o-mini"
    assert len(t.bodies) == 1

    body = t.bodies[0]
    assert body["model"] == "openai/gpt-4o-mini"
    fmt = body["response_format"]
    assert fmt["type"] == "json_schema"
    assert fmt["json_schema"]["name"] == "verdict"
    assert fmt["json_schema"]["strict"] is True
    assert fmt["json_schema"]["schema"]["additionalProperties"] is False
    assert body["provider"]["require_parameters"] is True
    assert "models" not in body


@pytest.mark.asyncio
async def test_structured_uses_default_schema_name_and_caller_system_prompt():
    t = FakeTransport('{"label": "ok", "confidence": 1}')
    await _caller(t).call("x", "gpt-4o-mini", schema=Verdict, system_prompt="Be terse.")

    body = t.bodies[0]
    assert body["response_format"]["json_schema"]["name"] == "structured_output"
    assert body["messages"] == [
        {"role": "system", "content": "Be terse."},
        {"role": "user", "content": "x"},
    ]


@pytest.mark.asyncio
async def test_model_without_structured_support_never_attempts_structured():
    t = FakeTransport('{"label": "ham", "confidence": 0.2}')
    res = await _caller(t).call("Classify", "claude-3.7-sonnet", schema=Verdict)

    assert res.mode is CallMode.JSON
    assert res.validated is False
    assert res.value == {"label": "ham", "confidence": 0.2}
    assert [b["response_format"]["type"] for b in t.bodies] == ["json_object"]
    assert [a.mode for a in res.attempts] == [CallMode.JSON]


@pytest.mark.asyncio
async def test_force_json_mode_skips_structured_even_when_eligible():
    t = FakeTransport('{"label": "ham", "confidence": 0.2}')
    res = await _caller(t).call("Classify", "gpt-4o-mini", schema=Verdict, force_json_mode=True)

    assert res.mode is CallMode.JSON
    assert len(t.bodies) == 1
    assert t.bodies[0]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_no_schema_issues_single_json_call_with_default_system_prompt():
    t = FakeTransport('```json\n{"a": 1}\n```')
    res = await _caller(t).call("Give me JSON", "deepseek-v3")

    assert res.value == {"a": 1}
    assert len(res.attempts) == 1
    assert res.attempts[0].mode is CallMode.JSON
    body = t.bodies[0]
    assert body["messages"] == [
        {"role": "system", "content": JSON_MODE_SYSTEM_PROMPT},
        {"role": "user", "content": "Give me JSON"},
    ]


@pytest.mark.asyncio
async def test_json_mode_appends_schema_hint_to_user_prompt():
    t = FakeTransport('{"label": "x", "confidence": 0}')
    await _caller(t).call("Classify", "claude-3.7-sonnet", schema=Verdict, system_prompt="Custom.")

    messages = t.bodies[0]["messages"]
    assert messages[0] == {"role": "system", "content": "Custom."}
    assert messages[1]["content"].startswith("Classify\n\n")
    assert '"confidence"' in messages[1]["content"]


@pytest.mark.asyncio
async def test_json_mode_returns_unvalidated_value():
    t = FakeTransport('{"unexpected": true}')
    res = await _caller(t).call("Classify", "claude-3.7-sonnet", schema=Verdict)
    assert res.value == {"unexpected": True}
    assert res.validated is False


@pytest.mark.asyncio
async def test_structured_failure_demotes_to_first_backup():
    t = FakeTransport(
        RemoteApiError(code=400, message="schema not supported"),
        '{"label": "spam", "confidence": 0.5}',
    )
    res = await _caller(t).call(
        "Classify",
        "gpt-4o-mini",
        backup_models=["gemini-2.0-flash", "claude-3.7-sonnet"],
        schema=Verdict,
    )

    first, second = t.bodies
    assert first["model"] == "openai/gpt-4o-mini"
    assert first["models"] == ["google/gemini-2.0-flash-001", "anthropic/claude-3.7-sonnet"]
    assert second["model"] == "google/gemini-2.0-flash-001"
    assert second["models"] == ["anthropic/claude-3.7-sonnet"]
    assert second["response_format"] == {"type": "json_object"}
    # demoted model's own default routing applies
    assert second["provider"]["sort"] == "price"

    assert res.mode is CallMode.JSON
    assert res.model_id == "google/gemini-2.0-flash-001"
    assert [(a.mode, a.error_kind) for a in res.attempts] == [
        (CallMode.STRUCTURED, ErrorKind.REMOTE_API),
        (CallMode.JSON, None),
    ]


@pytest.mark.asyncio
async def test_single_backup_is_removed_from_fallbacks_after_demotion():
    t = FakeTransport(EmptyCompletionError("no choices"), '{"label": "a", "confidence": 1}')
    await _caller(t).call("Classify", "gpt-4o-mini", backup_models=["gpt-4.1"], schema=Verdict)

    assert t.bodies[1]["model"] == "openai/gpt-4.1"
    assert "models" not in t.bodies[1]


@pytest.mark.asyncio
async def test_schema_violation_without_backups_retries_same_model_in_json_mode():
    t = FakeTransport('{"label": "spam"}', '{"label": "spam", "confidence": "high"}')
    res = await _caller(t).call("Classify", "gpt-4o-mini", schema=Verdict)

    assert [b["model"] for b in t.bodies] == ["openai/gpt-4o-mini", "openai/gpt-4o-mini"]
    assert res.attempts[0].error_kind is ErrorKind.SCHEMA_VIOLATION
    assert res.value == {"label": "spam", "confidence": "high"}


@pytest.mark.asyncio
async def test_structured_malformed_json_demotes():
    t = FakeTransport("not json at all", '{"label": "x", "confidence": 0.1}')
    res = await _caller(t).call("Classify", "gpt-4o-mini", schema=Verdict)
    assert res.attempts[0].error_kind is ErrorKind.MALFORMED_JSON
    assert res.mode is CallMode.JSON


@pytest.mark.asyncio
async def test_json_mode_malformed_output_is_terminal_failure():
    t = FakeTransport(TransportError("reset"), "I cannot comply.")
    with pytest.raises(MalformedJsonError) as exc:
        await _caller(t).call("Classify", "gpt-4o-mini", schema=Verdict)

    assert len(t.bodies) == 2
    assert [(a.mode, a.error_kind) for a in exc.value.attempts] == [
        (CallMode.STRUCTURED, ErrorKind.TRANSPORT),
        (CallMode.JSON, ErrorKind.MALFORMED_JSON),
    ]


@pytest.mark.asyncio
async def test_json_mode_transport_failure_propagates_categorized_error():
    t = FakeTransport(RemoteApiError(code=429, message="rate limited"))
    with pytest.raises(RemoteApiError) as exc:
        await _caller(t).call("x", "deepseek-v3")
    assert exc.value.code == 429
    assert exc.value.message == "rate limited"
    assert len(exc.value.attempts) == 1


@pytest.mark.asyncio
async def test_at_most_two_requests_per_call():
    t = FakeTransport(
        SchemaViolationError("bad", diagnostics=[]),
        EmptyCompletionError("empty"),
    )
    with pytest.raises(EmptyCompletionError):
        await _caller(t).call("x", "gpt-4o-mini", backup_models=["gpt-4.1", "gemini-2.5-pro"], schema=Verdict)
    assert len(t.bodies) == 2


@pytest.mark.asyncio
async def test_routing_override_applies_to_both_tiers():
    t = FakeTransport(MalformedJsonError("bad"), '{"label": "x", "confidence": 0}')
    override = RoutingPreferences.build(sort=ProviderSort.LATENCY, ignore=["Azure"])
    await _caller(t).call("x", "gpt-4o-mini", schema=Verdict, routing_options=override)

    for body in t.bodies:
        assert body["provider"]["sort"] == "latency"
        assert body["provider"]["ignore"] == ["Azure"]
        assert body["provider"]["order"] == ["OpenAI", "Azure"]


@pytest.mark.asyncio
async def test_unknown_models_fail_before_any_request():
    t = FakeTransport()
    with pytest.raises(UnknownModelError):
        await _caller(t).call("x", "nope")
    with pytest.raises(UnknownModelError):
        await _caller(t).call("x", "gpt-4o-mini", backup_models=["nope"])
    assert t.bodies == []


@pytest.mark.asyncio
async def test_invalid_schema_fails_before_any_request():
    t = FakeTransport()
    with pytest.raises(InvalidSchemaError):
        await _caller(t).call("x", "gpt-4o-mini", schema=Bag)
    assert t.bodies == []


@pytest.mark.asyncio
async def test_missing_credential_is_fatal_and_not_demoted():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    transport = OpenRouterTransport(api_key=None, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    caller = StructuredCaller(OrchestratorConfig(openrouter_api_key=None), transport=transport)
    try:
        with pytest.raises(ConfigurationError):
            await caller.call("x", "gpt-4o-mini", backup_models=["gpt-4.1"], schema=Verdict)
        assert calls["n"] == 0
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_end_to_end_over_http_structured_then_json():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        seen.append(body)
        if body["response_format"]["type"] == "json_schema":
            return httpx.Response(429, json={"error": {"code": 429, "message": "rate limited"}})
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": '```json\n{"label": "a", "confidence": 1}\n```'}}]},
        )

    transport = OpenRouterTransport(
        api_key="sk-or-test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    caller = StructuredCaller(OrchestratorConfig(openrouter_api_key="sk-or-test"), transport=transport)
    try:
        res = await caller.call("x", "gpt-4o-mini", backup_models=["gemini-2.5-flash"], schema=Verdict)
    finally:
        await transport.close()

    assert res.value == {"label": "a", "confidence": 1}
    assert res.attempts[0].error_kind is ErrorKind.REMOTE_API
    assert [b["model"] for b in seen] == ["openai/gpt-4o-mini", "google/gemini-2.5-flash-preview-04-17"]


def _calls_counted(mode: str, status: str) -> float:
    return REGISTRY.get_sample_value("structured_calls_total", {"mode": mode, "status": status}) or 0.0


@pytest.mark.asyncio
async def test_calls_failing_before_any_request_are_counted_with_empty_trail():
    before = _calls_counted("none", "error")
    t = FakeTransport()
    with pytest.raises(UnknownModelError) as unknown:
        await _caller(t).call("x", "nope")
    with pytest.raises(InvalidSchemaError) as invalid:
        await _caller(t).call("x", "gpt-4o-mini", schema=Bag)
    with pytest.raises(ConfigurationError) as missing:
        await _caller(FakeTransport(ConfigurationError("no key"))).call("x", "gpt-4o-mini", schema=Verdict)

    assert unknown.value.attempts == ()
    assert invalid.value.attempts == ()
    assert missing.value.attempts == ()
    assert _calls_counted("none", "error") == before + 3


@pytest.mark.asyncio
async def test_terminal_json_failure_is_counted_under_json_mode():
    before = _calls_counted("json", "error")
    with pytest.raises(MalformedJsonError) as exc:
        await _caller(FakeTransport("not json")).call("x", "deepseek-v3")
    assert [a.mode for a in exc.value.attempts] == [CallMode.JSON]
    assert _calls_counted("json", "error") == before + 1
