from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

REDACTED = "[REDACTED]"

# Header and config names whose values are never logged.
_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "openrouter_api_key",
        "server_auth_token",
    }
)
_SENSITIVE_FRAGMENTS = ("api_key", "apikey", "token", "secret", "password")

_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{6,}"), f"Bearer {REDACTED}"),
    # sk-or-v1-<hex>
    (re.compile(r"\bsk-or-[A-Za-z0-9-]{8,}"), REDACTED),
)

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def _is_sensitive_key(key: Any) -> bool:
    name = str(key).lower()
    return name in _SENSITIVE_KEYS or any(fragment in name for fragment in _SENSITIVE_FRAGMENTS)


class Redactor:
    """
    structlog processor that scrubs credentials from log events.

    Configured secrets and OpenRouter-style keys are masked wherever they
    appear in string values. Values under sensitive keys are replaced
    wholesale. Strings longer than `max_chars` (upstream bodies, prompts)
    are cut so a single event stays readable.
    """

    def __init__(self, secrets: Iterable[str | None] = (), *, max_chars: int | None = 2000):
        self.secrets = tuple(s for s in secrets if isinstance(s, str) and s)
        self.max_chars = max_chars

    def __call__(self, _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], self.scrub(dict(event_dict)))

    def scrub(self, obj: Any) -> Any:
        if isinstance(obj, str):
            return self._scrub_str(obj)
        if isinstance(obj, dict):
            return {k: REDACTED if _is_sensitive_key(k) else self.scrub(v) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return type(obj)(self.scrub(v) for v in obj)
        return obj

    def _scrub_str(self, value: str) -> str:
        for secret in self.secrets:
            value = value.replace(secret, REDACTED)
        for pattern, replacement in _SECRET_PATTERNS:
            value = pattern.sub(replacement, value)
        if self.max_chars is not None and len(value) > self.max_chars:
            value = f"{value[: self.max_chars]}...[{len(value) - self.max_chars} more chars]"
        return value


def redact(obj: Any, *, secrets: Iterable[str | None] = ()) -> Any:
    """Scrub `obj` without truncation."""
    return Redactor(secrets, max_chars=None).scrub(obj)


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: Iterable[str | None] = ()) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level)

    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        Redactor(secrets),
        cast(Processor, renderer),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
