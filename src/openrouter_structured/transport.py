from __future__ import annotations

import json
import time
from typing import Any

import httpx
import structlog

from .errors import ConfigurationError, EmptyCompletionError, RemoteApiError, TransportError
from .metrics import upstream_request_latency_seconds, upstream_requests_total

log = structlog.get_logger()

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"

UNREADABLE_BODY = "<unreadable body>"


class OpenRouterTransport:
    """
    Single-shot HTTP binding to the OpenRouter chat-completion endpoint.

    `send()` returns the first choice's message content or raises a
    categorized `OrchestratorError`. It never retries; retry and fallback
    policy belongs to the caller.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = OPENROUTER_API_BASE,
        timeout_seconds: float = 60,
        referer: str | None = None,
        title: str | None = None,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._referer = referer
        self._title = title

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    async def send(self, body: dict[str, Any]) -> str:
        if not self.api_key:
            raise ConfigurationError("Missing OPENROUTER_API_KEY for OpenRouter API call.")

        url = f"{self._base_url}/chat/completions"
        model = body.get("model")
        request = self._client.build_request("POST", url, json=body, headers=self._headers())
        started = time.monotonic()
        try:
            resp = await self._client.send(request, stream=True)
            text = await _read_text(resp)
        except httpx.HTTPError as e:
            upstream_requests_total.labels(status="transport_error").inc()
            log.warning("openrouter_transport_error", model=model, error=str(e), error_type=type(e).__name__)
            raise TransportError(str(e) or type(e).__name__) from e
        finally:
            upstream_request_latency_seconds.observe(max(0.0, time.monotonic() - started))

        upstream_requests_total.labels(status=str(resp.status_code)).inc()
        if not resp.is_success:
            err = _error_from_response(resp, text)
            log.warning(
                "openrouter_remote_error",
                model=model,
                status_code=resp.status_code,
                code=err.code,
                error=err.message,
            )
            raise err

        content = _content_from_response(resp, text)
        log.debug("openrouter_send_ok", model=model, chars_out=len(content))
        return content


async def _read_text(resp: httpx.Response) -> str | None:
    """
    Read the streamed body and close the response.

    Returns None when an error body cannot be read; a success body that
    fails mid-read raises the underlying `httpx.HTTPError`.
    """
    try:
        await resp.aread()
    except httpx.HTTPError as e:
        if resp.is_success:
            raise
        log.warning("openrouter_error_body_unreadable", status_code=resp.status_code, error=str(e))
        return None
    finally:
        await resp.aclose()
    return resp.text


def _content_from_response(resp: httpx.Response, text: str | None) -> str:
    try:
        data = json.loads(text or "")
    except json.JSONDecodeError:
        raise EmptyCompletionError("Upstream returned a non-JSON success body.", raw_body=text) from None

    if not isinstance(data, dict):
        raise EmptyCompletionError("Upstream returned no completion.", raw_body=data)

    choices = data.get("choices")
    if not choices and isinstance(data.get("error"), dict):
        # OpenRouter reports some upstream failures (overload, moderation) inside a 200.
        raise _remote_error_from_payload(data["error"], resp.status_code, raw_body=data)

    if not isinstance(choices, list) or not choices:
        raise EmptyCompletionError("Upstream returned no choices.", raw_body=data)

    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content:
        raise EmptyCompletionError("Upstream returned an empty message.", raw_body=data)
    return content


def _remote_error_from_payload(error: dict[str, Any], status_code: int, *, raw_body: Any = None) -> RemoteApiError:
    metadata = error.get("metadata")
    return RemoteApiError(
        code=error.get("code", status_code),
        message=str(error.get("message") or f"HTTP {status_code}"),
        metadata=metadata if isinstance(metadata, dict) else None,
        raw_body=raw_body,
    )


def _error_from_response(resp: httpx.Response, text: str | None) -> RemoteApiError:
    status = resp.status_code
    reason = resp.reason_phrase or f"HTTP {status}"
    if text is None:
        return RemoteApiError(code=status, message=reason, raw_body=UNREADABLE_BODY)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return RemoteApiError(code=status, message=reason, raw_body=text)

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return _remote_error_from_payload(error, status, raw_body=data)
    return RemoteApiError(code=status, message=reason, raw_body=data)
