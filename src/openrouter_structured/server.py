from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Mapping
from contextlib import asynccontextmanager
from typing import TypeVar

import structlog
from pydantic import BaseModel

from .config import OrchestratorConfig
from .contracts import CallIntent, CompletionRequest
from .errors import (
    ErrorKind,
    InvalidRequestError,
    OrchestratorError,
    RemoteApiError,
    RequestTimeoutError,
)
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .models import lookup
from .openai_compat import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    StructuredCallRequest,
    StructuredCallResponse,
    extract_generation_params,
    make_chat_completion_response,
    make_openai_error_response,
    make_structured_call_response,
    messages_to_provider_messages,
)
from .routing import build_routing
from .strategy import StructuredCaller

log = structlog.get_logger()

T = TypeVar("T")

# (HTTP status, OpenAI-style error type) per error kind
_ERROR_STATUS: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.CONFIGURATION: (500, "api_error"),
    ErrorKind.UNKNOWN_MODEL: (400, "invalid_request_error"),
    ErrorKind.INVALID_SCHEMA: (400, "invalid_request_error"),
    ErrorKind.INVALID_REQUEST: (400, "invalid_request_error"),
    ErrorKind.TRANSPORT: (502, "upstream_error"),
    ErrorKind.REMOTE_API: (502, "upstream_error"),
    ErrorKind.EMPTY_COMPLETION: (503, "upstream_error"),
    ErrorKind.MALFORMED_JSON: (502, "upstream_error"),
    ErrorKind.SCHEMA_VIOLATION: (502, "upstream_error"),
    ErrorKind.REQUEST_TIMEOUT: (504, "upstream_error"),
}


def create_app(
    cfg: OrchestratorConfig | None = None,
    caller: StructuredCaller | None = None,
    output_schemas: Mapping[str, type[BaseModel]] | None = None,
):
    """
    Build the FastAPI app.

    `output_schemas` registers the pydantic models `/rpc/structured` callers
    may reference by name in their `schema` field.
    """
    try:
        from fastapi import FastAPI
        from fastapi.responses import JSONResponse, PlainTextResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or OrchestratorConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    caller = caller or StructuredCaller(cfg)
    schemas: dict[str, type[BaseModel]] = dict(output_schemas or {})

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    async def _with_deadline(aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=max(0.0, float(cfg.request_timeout_seconds or 0)) or None)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError("Request timed out.") from e

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await caller.transport.close()

    app = FastAPI(
        title="openrouter-structured",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(OrchestratorError)
    async def _orchestrator_error_handler(request, exc: OrchestratorError):
        status_code, error_type = _ERROR_STATUS.get(exc.kind, (500, "api_error"))
        message = str(exc)
        if isinstance(exc, RemoteApiError) and exc.code == 429:
            status_code, error_type = 429, "rate_limit_error"
        if exc.kind is ErrorKind.CONFIGURATION:
            log.error("provider_not_configured", error=exc.message)
            message = "AI provider not configured."
        server_errors_total.labels(type=exc.kind.value).inc()
        return JSONResponse(
            status_code=status_code,
            content=make_openai_error_response(
                message=message,
                type=error_type,
                code=_request_id(request),
            ).model_dump(),
        )

    @app.get("/")
    async def root() -> PlainTextResponse:
        return PlainTextResponse("OK")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/ai", response_model=ChatCompletionResponse)
    async def chat(req: ChatCompletionRequest):
        started_at = time.monotonic()
        if len(req.messages) > cfg.max_messages:
            raise InvalidRequestError("Too many messages.")
        total_chars = sum(len(m.content) for m in req.messages)
        if total_chars > cfg.max_total_message_chars:
            raise InvalidRequestError("Message content too large.")

        descriptor = lookup(req.model or cfg.chat_default_model)
        plan = build_routing(descriptor)
        request = CompletionRequest(
            model_id=descriptor.id,
            messages=messages_to_provider_messages(req.messages),
            provider_preferences=plan.provider_preferences,
            extra=extract_generation_params(req),
        )
        log.info("ai_request", model=descriptor.id, messages=len(req.messages), chars_in=total_chars)
        content = await _with_deadline(caller.transport.send(request.to_payload()))

        _observe("/ai", 200, started_at)
        return make_chat_completion_response(model=descriptor.id, content=content)

    @app.post("/rpc/structured", response_model=StructuredCallResponse)
    async def structured(req: StructuredCallRequest):
        started_at = time.monotonic()
        schema: type[BaseModel] | None = None
        if req.schema_ref is not None:
            if req.schema_ref not in schemas:
                raise InvalidRequestError(f"Unknown output schema: {req.schema_ref!r}")
            schema = schemas[req.schema_ref]

        intent = CallIntent(
            user_prompt=req.user_prompt,
            primary_model=req.primary_model,
            system_prompt=req.system_prompt,
            backup_models=tuple(req.backup_models),
            schema=schema,
            schema_name=req.schema_name,
            force_json_mode=req.force_json_mode,
            routing_options=req.routing.to_preferences() if req.routing else None,
        )
        res = await _with_deadline(caller.run(intent))

        _observe("/rpc/structured", 200, started_at)
        return make_structured_call_response(res)

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
        from dotenv import load_dotenv
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    load_dotenv()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("openrouter_structured.server:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
