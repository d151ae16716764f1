"""
Structured LLM call orchestration.

A call is a small finite-state machine::

    CHOOSE_MODE -> STRUCTURED_ATTEMPT -> STRUCTURED_SUCCESS
                                      -> STRUCTURED_FAILURE -> JSON_MODE_ATTEMPT -> JSON_SUCCESS
                -> JSON_MODE_ATTEMPT                                             -> JSON_FAILURE

Structured mode asks OpenRouter to enforce a strict JSON Schema and validates
the result against the caller's pydantic model. If it fails, the first
backup model (if any) is promoted to primary and the call falls back to JSON
mode, where the schema is only a prompt hint and the parsed value is returned
unvalidated. At most two requests are sent per call.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from pydantic import BaseModel

from .config import OrchestratorConfig
from .contracts import (
    TERMINAL_STATES,
    AttemptRecord,
    CallIntent,
    CallMode,
    CallResult,
    CallState,
    CompletionRequest,
)
from .errors import ConfigurationError, OrchestratorError
from .metrics import call_attempts_total, calls_total
from .models import MODEL_REGISTRY, ModelDescriptor, RoutingPreferences, lookup
from .parsing import parse_json_content, strip_code_fences
from .routing import build_routing
from .schema import DEFAULT_SCHEMA_NAME, ensure_schema_model, schema_hint, to_strict_json_schema, validate_output
from .transport import OpenRouterTransport

log = structlog.get_logger()

JSON_MODE_SYSTEM_PROMPT = (
    "You are a strict JSON generator. Reply with raw JSON only. "
    "Do not include prose, explanations, or Markdown code fences."
)


class CompletionTransport(Protocol):
    async def send(self, body: dict[str, Any]) -> str: ...

    async def close(self) -> None: ...


@dataclass
class _CallContext:
    intent: CallIntent
    primary: ModelDescriptor
    backups: list[ModelDescriptor]
    schema: type[BaseModel] | None
    attempts: list[AttemptRecord] = field(default_factory=list)
    mode: CallMode = CallMode.JSON
    value: Any = None
    error: OrchestratorError | None = None


def build_messages(system_prompt: str | None, user_prompt: str) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})
    return messages


class StructuredCaller:
    name = "OpenRouter"

    def __init__(
        self,
        cfg: OrchestratorConfig,
        *,
        transport: CompletionTransport | None = None,
        registry: Mapping[str, ModelDescriptor] = MODEL_REGISTRY,
    ):
        self.cfg = cfg
        self.registry = registry
        self.transport = transport or OpenRouterTransport(
            api_key=cfg.openrouter_api_key,
            base_url=cfg.openrouter_base_url,
            timeout_seconds=cfg.upstream_timeout_seconds,
            referer=cfg.site_url,
            title=cfg.site_name,
        )
        self._handlers: dict[CallState, Callable[[_CallContext], Awaitable[CallState]]] = {
            CallState.CHOOSE_MODE: self._choose_mode,
            CallState.STRUCTURED_ATTEMPT: self._structured_attempt,
            CallState.STRUCTURED_FAILURE: self._demote,
            CallState.JSON_MODE_ATTEMPT: self._json_mode_attempt,
        }

    async def call(
        self,
        user_prompt: str,
        primary_model: str,
        *,
        system_prompt: str | None = None,
        backup_models: Iterable[str] = (),
        schema: type[BaseModel] | None = None,
        schema_name: str | None = None,
        force_json_mode: bool = False,
        routing_options: RoutingPreferences | None = None,
    ) -> CallResult:
        """
        Run one structured call.

        Returns a `CallResult` whose `value` is a validated `schema` instance
        when structured mode succeeded (`validated=True`), or the parsed JSON
        from JSON mode, best-effort and unvalidated (`validated=False`).
        Raises the categorized `OrchestratorError` of the last tier on failure.
        """
        intent = CallIntent(
            user_prompt=user_prompt,
            primary_model=primary_model,
            system_prompt=system_prompt,
            backup_models=tuple(backup_models),
            schema=schema,
            schema_name=schema_name,
            force_json_mode=force_json_mode,
            routing_options=routing_options,
        )
        return await self.run(intent)

    async def run(self, intent: CallIntent) -> CallResult:
        start = time.time()
        ctx: _CallContext | None = None
        try:
            ctx = self._resolve(intent)
            state = CallState.CHOOSE_MODE
            while state not in TERMINAL_STATES:
                next_state = await self._handlers[state](ctx)
                log.debug("call_transition", from_state=state.value, to_state=next_state.value)
                state = next_state
            if state is CallState.JSON_FAILURE and ctx.error is not None:
                raise ctx.error
        except OrchestratorError as e:
            attempts = tuple(ctx.attempts) if ctx is not None else ()
            e.attempts = attempts
            # "none" marks calls that failed before any request was sent
            mode = attempts[-1].mode.value if attempts else "none"
            calls_total.labels(mode=mode, status="error").inc()
            raise

        calls_total.labels(mode=ctx.mode.value, status="success").inc()
        return CallResult(
            value=ctx.value,
            mode=ctx.mode,
            model_id=ctx.primary.id,
            validated=ctx.mode is CallMode.STRUCTURED,
            attempts=tuple(ctx.attempts),
            latency_seconds=time.time() - start,
        )

    def _resolve(self, intent: CallIntent) -> _CallContext:
        return _CallContext(
            intent=intent,
            primary=lookup(intent.primary_model, registry=self.registry),
            backups=[lookup(name, registry=self.registry) for name in intent.backup_models],
            schema=ensure_schema_model(intent.schema) if intent.schema is not None else None,
        )

    async def _choose_mode(self, ctx: _CallContext) -> CallState:
        if ctx.primary.supports_structured_output and ctx.schema is not None and not ctx.intent.force_json_mode:
            return CallState.STRUCTURED_ATTEMPT
        return CallState.JSON_MODE_ATTEMPT

    async def _structured_attempt(self, ctx: _CallContext) -> CallState:
        schema = ctx.schema
        if schema is None:
            return CallState.JSON_MODE_ATTEMPT
        primary = ctx.primary
        intent = ctx.intent
        # InvalidSchemaError is a caller bug; it propagates before any request is sent.
        strict_schema = to_strict_json_schema(schema)
        plan = build_routing(primary, ctx.backups, intent.routing_options)
        request = CompletionRequest(
            model_id=primary.id,
            messages=build_messages(intent.system_prompt, intent.user_prompt),
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": intent.schema_name or DEFAULT_SCHEMA_NAME,
                    "strict": True,
                    "schema": strict_schema,
                },
            },
            provider_preferences=plan.provider_preferences,
            fallback_model_ids=plan.fallback_model_ids,
        )

        try:
            content = await self.transport.send(request.to_payload())
            value = validate_output(schema, parse_json_content(content))
        except ConfigurationError:
            raise
        except OrchestratorError as e:
            self._record(ctx, CallMode.STRUCTURED, request, e)
            log.warning(
                "structured_attempt_failed",
                model=primary.id,
                error_kind=e.kind.value,
                error=e.message,
            )
            ctx.error = e
            return CallState.STRUCTURED_FAILURE

        self._record(ctx, CallMode.STRUCTURED, request)
        ctx.mode = CallMode.STRUCTURED
        ctx.value = value
        return CallState.STRUCTURED_SUCCESS

    async def _demote(self, ctx: _CallContext) -> CallState:
        failed = ctx.primary
        if ctx.backups:
            ctx.primary = ctx.backups.pop(0)
            log.info("call_demoted", from_model=failed.id, to_model=ctx.primary.id)
        else:
            log.info("call_demoted_same_model", model=failed.id)
        return CallState.JSON_MODE_ATTEMPT

    async def _json_mode_attempt(self, ctx: _CallContext) -> CallState:
        primary = ctx.primary
        intent = ctx.intent
        user_prompt = intent.user_prompt
        if ctx.schema is not None:
            user_prompt += schema_hint(ctx.schema)

        plan = build_routing(primary, ctx.backups, intent.routing_options)
        request = CompletionRequest(
            model_id=primary.id,
            messages=build_messages(intent.system_prompt or JSON_MODE_SYSTEM_PROMPT, user_prompt),
            response_format={"type": "json_object"},
            provider_preferences=plan.provider_preferences,
            fallback_model_ids=plan.fallback_model_ids,
        )

        try:
            content = await self.transport.send(request.to_payload())
            value = parse_json_content(strip_code_fences(content))
        except ConfigurationError:
            raise
        except OrchestratorError as e:
            self._record(ctx, CallMode.JSON, request, e)
            log.warning("json_mode_attempt_failed", model=primary.id, error_kind=e.kind.value, error=e.message)
            ctx.error = e
            return CallState.JSON_FAILURE

        self._record(ctx, CallMode.JSON, request)
        ctx.mode = CallMode.JSON
        ctx.value = value
        return CallState.JSON_SUCCESS

    def _record(
        self,
        ctx: _CallContext,
        mode: CallMode,
        request: CompletionRequest,
        error: OrchestratorError | None = None,
    ) -> None:
        ctx.attempts.append(
            AttemptRecord(
                mode=mode,
                model_id=request.model_id,
                fallback_model_ids=request.fallback_model_ids,
                error_kind=error.kind if error else None,
                error_message=error.message if error else None,
            )
        )
        outcome = error.kind.value if error else "ok"
        call_attempts_total.labels(mode=mode.value, outcome=outcome).inc()
