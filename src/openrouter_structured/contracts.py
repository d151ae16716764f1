from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .errors import ErrorKind
from .models import RoutingPreferences


class CallMode(str, Enum):
    STRUCTURED = "structured"
    JSON = "json"


class CallState(str, Enum):
    CHOOSE_MODE = "choose_mode"
    STRUCTURED_ATTEMPT = "structured_attempt"
    STRUCTURED_SUCCESS = "structured_success"
    STRUCTURED_FAILURE = "structured_failure"
    JSON_MODE_ATTEMPT = "json_mode_attempt"
    JSON_SUCCESS = "json_success"
    JSON_FAILURE = "json_failure"


TERMINAL_STATES = frozenset({CallState.STRUCTURED_SUCCESS, CallState.JSON_SUCCESS, CallState.JSON_FAILURE})


@dataclass(frozen=True)
class CallIntent:
    user_prompt: str
    primary_model: str
    system_prompt: str | None = None
    backup_models: tuple[str, ...] = ()
    schema: type[BaseModel] | None = None
    schema_name: str | None = None
    force_json_mode: bool = False
    routing_options: RoutingPreferences | None = None


@dataclass(frozen=True)
class CompletionRequest:
    model_id: str
    messages: list[dict[str, str]]
    response_format: dict[str, Any] | None = None
    provider_preferences: dict[str, Any] | None = None
    fallback_model_ids: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model_id, "messages": self.messages}
        if self.response_format is not None:
            payload["response_format"] = self.response_format
        if self.provider_preferences is not None:
            payload["provider"] = self.provider_preferences
        if self.fallback_model_ids:
            payload["models"] = list(self.fallback_model_ids)
        payload.update(self.extra)
        return payload


@dataclass(frozen=True)
class AttemptRecord:
    mode: CallMode
    model_id: str
    fallback_model_ids: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


@dataclass(frozen=True)
class CallResult:
    value: Any
    mode: CallMode
    model_id: str
    validated: bool
    attempts: tuple[AttemptRecord, ...]
    latency_seconds: float
