from __future__ import annotations

import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .contracts import AttemptRecord, CallResult
from .models import ProviderSort, RoutingPreferences


class ChatCompletionMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Registry name; the server default applies when omitted.
    model: str | None = None
    messages: list[ChatCompletionMessage]
    temperature: float | None = None
    max_tokens: int | None = None

    @field_validator("messages")
    @classmethod
    def _validate_messages(cls, v: list[ChatCompletionMessage]) -> list[ChatCompletionMessage]:
        if not v:
            raise ValueError("messages must be non-empty.")
        return v

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("max_tokens must be > 0.")
        return v


class ChatCompletionAssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class ChatCompletionChoice(BaseModel):
    index: int = 0
    message: ChatCompletionAssistantMessage
    finish_reason: Literal["stop"] = "stop"


class ChatCompletionResponse(BaseModel):
    id: str = Field(default_factory=lambda: f"chatcmpl-{uuid.uuid4().hex}")
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str
    choices: list[ChatCompletionChoice]


def make_chat_completion_response(*, model: str, content: str) -> ChatCompletionResponse:
    return ChatCompletionResponse(
        model=model,
        choices=[ChatCompletionChoice(message=ChatCompletionAssistantMessage(content=content))],
    )


def messages_to_provider_messages(messages: list[ChatCompletionMessage]) -> list[dict[str, str]]:
    return [{"role": m.role, "content": m.content} for m in messages]


def extract_generation_params(req: ChatCompletionRequest) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if req.temperature is not None:
        out["temperature"] = req.temperature
    if req.max_tokens is not None:
        out["max_tokens"] = req.max_tokens
    return out


class RoutingOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sort: ProviderSort | None = None
    order: list[str] | None = None
    ignore: list[str] | None = None

    def to_preferences(self) -> RoutingPreferences:
        return RoutingPreferences.build(sort=self.sort, order=self.order, ignore=self.ignore)


class StructuredCallRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_prompt: str = Field(min_length=1)
    primary_model: str
    system_prompt: str | None = None
    backup_models: list[str] = Field(default_factory=list)
    # Name of a server-registered output model.
    schema_ref: str | None = Field(default=None, alias="schema")
    schema_name: str | None = None
    force_json_mode: bool = False
    routing: RoutingOptions | None = None


class AttemptSummary(BaseModel):
    mode: str
    model: str
    fallback_models: list[str]
    error_kind: str | None = None
    error: str | None = None

    @classmethod
    def from_record(cls, record: AttemptRecord) -> "AttemptSummary":
        return cls(
            mode=record.mode.value,
            model=record.model_id,
            fallback_models=list(record.fallback_model_ids),
            error_kind=record.error_kind.value if record.error_kind else None,
            error=record.error_message,
        )


class StructuredCallResponse(BaseModel):
    result: Any
    mode: str
    model: str
    validated: bool
    attempts: list[AttemptSummary]


def make_structured_call_response(res: CallResult) -> StructuredCallResponse:
    value = res.value.model_dump(mode="json") if isinstance(res.value, BaseModel) else res.value
    return StructuredCallResponse(
        result=value,
        mode=res.mode.value,
        model=res.model_id,
        validated=res.validated,
        attempts=[AttemptSummary.from_record(a) for a in res.attempts],
    )


class OpenAIError(BaseModel):
    message: str
    type: str = "api_error"
    param: str | None = None
    code: str | None = None


class OpenAIErrorResponse(BaseModel):
    error: OpenAIError


def make_openai_error_response(
    *,
    message: str,
    type: str = "api_error",
    param: str | None = None,
    code: str | None = None,
) -> OpenAIErrorResponse:
    return OpenAIErrorResponse(error=OpenAIError(message=message, type=type, param=param, code=code))
