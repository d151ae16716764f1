from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .contracts import AttemptRecord


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    UNKNOWN_MODEL = "unknown_model"
    INVALID_SCHEMA = "invalid_schema"
    INVALID_REQUEST = "invalid_request"
    TRANSPORT = "transport"
    REMOTE_API = "remote_api"
    EMPTY_COMPLETION = "empty_completion"
    MALFORMED_JSON = "malformed_json"
    SCHEMA_VIOLATION = "schema_violation"
    REQUEST_TIMEOUT = "request_timeout"


class OrchestratorError(Exception):
    """Base error for every categorized failure of a call."""

    kind: ErrorKind = ErrorKind.CONFIGURATION
    retryable: bool = False

    def __init__(self, message: str, *, raw_body: Any = None):
        super().__init__(message)
        self.message = message
        self.raw_body = raw_body
        self.attempts: tuple[AttemptRecord, ...] = ()


class ConfigurationError(OrchestratorError):
    """Missing credential or other fatal setup problem."""

    kind = ErrorKind.CONFIGURATION


class UnknownModelError(OrchestratorError):
    kind = ErrorKind.UNKNOWN_MODEL

    def __init__(self, name: str):
        super().__init__(f"Unknown model: {name!r}")
        self.name = name


class InvalidSchemaError(OrchestratorError):
    """Output schema cannot be expressed in strict structured-output mode."""

    kind = ErrorKind.INVALID_SCHEMA


class TransportError(OrchestratorError):
    kind = ErrorKind.TRANSPORT


class RemoteApiError(OrchestratorError):
    kind = ErrorKind.REMOTE_API

    def __init__(
        self,
        code: int | str,
        message: str,
        *,
        metadata: dict[str, Any] | None = None,
        raw_body: Any = None,
    ):
        super().__init__(message, raw_body=raw_body)
        self.code = code
        self.metadata = metadata

    def __str__(self) -> str:
        return f"OpenRouter error {self.code}: {self.message}"


class EmptyCompletionError(OrchestratorError):
    """2xx response without usable content; usually transient warm-up or scaling."""

    kind = ErrorKind.EMPTY_COMPLETION
    retryable = True


class MalformedJsonError(OrchestratorError):
    kind = ErrorKind.MALFORMED_JSON


class SchemaViolationError(OrchestratorError):
    kind = ErrorKind.SCHEMA_VIOLATION

    def __init__(self, message: str, *, diagnostics: list[dict[str, Any]], raw_body: Any = None):
        super().__init__(message, raw_body=raw_body)
        self.diagnostics = diagnostics


class RequestTimeoutError(OrchestratorError):
    """Server-side request deadline exceeded."""

    kind = ErrorKind.REQUEST_TIMEOUT


class InvalidRequestError(OrchestratorError):
    """Inbound request rejected before any upstream call."""

    kind = ErrorKind.INVALID_REQUEST
