from .config import OrchestratorConfig
from .contracts import CallMode, CallResult
from .errors import (
    ConfigurationError,
    EmptyCompletionError,
    ErrorKind,
    InvalidSchemaError,
    MalformedJsonError,
    OrchestratorError,
    RemoteApiError,
    SchemaViolationError,
    TransportError,
    UnknownModelError,
)
from .models import MODEL_REGISTRY, ModelDescriptor, ProviderSort, RoutingPreferences, lookup
from .strategy import StructuredCaller
from .transport import OpenRouterTransport

__all__ = [
    "MODEL_REGISTRY",
    "CallMode",
    "CallResult",
    "ConfigurationError",
    "EmptyCompletionError",
    "ErrorKind",
    "InvalidSchemaError",
    "MalformedJsonError",
    "ModelDescriptor",
    "OpenRouterTransport",
    "OrchestratorConfig",
    "OrchestratorError",
    "ProviderSort",
    "RemoteApiError",
    "RoutingPreferences",
    "SchemaViolationError",
    "StructuredCaller",
    "TransportError",
    "UnknownModelError",
    "lookup",
]
