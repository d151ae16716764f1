"""
Model registry.

Static, hand-curated mapping from a symbolic model name to the OpenRouter
model id, whether the model honors strict JSON-Schema structured output, and
its default provider routing. To add a model, append an entry to
`_ENTRIES`; nothing else needs to change.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from .errors import UnknownModelError


class ProviderSort(str, Enum):
    PRICE = "price"
    THROUGHPUT = "throughput"
    LATENCY = "latency"


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for v in values:
        seen.setdefault(v, None)
    return tuple(seen)


@dataclass(frozen=True)
class RoutingPreferences:
    sort: ProviderSort | None = None
    order: tuple[str, ...] | None = None
    ignore: tuple[str, ...] | None = None

    @classmethod
    def build(
        cls,
        *,
        sort: ProviderSort | str | None = None,
        order: Iterable[str] | None = None,
        ignore: Iterable[str] | None = None,
    ) -> "RoutingPreferences":
        return cls(
            sort=ProviderSort(sort) if sort is not None else None,
            order=tuple(order) if order is not None else None,
            ignore=_dedupe(ignore) if ignore is not None else None,
        )


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    supports_structured_output: bool
    default_routing: RoutingPreferences | None = None
    vendor: str = ""


_ENTRIES: dict[str, ModelDescriptor] = {
    "gemini-2.5-flash": ModelDescriptor(
        id="google/gemini-2.5-flash-preview-04-17",
        supports_structured_output=True,
        default_routing=RoutingPreferences.build(sort=ProviderSort.THROUGHPUT),
        vendor="google",
    ),
    "gemini-2.5-pro": ModelDescriptor(
        id="google/gemini-2.5-pro-preview",
        supports_structured_output=True,
        vendor="google",
    ),
    "gemini-2.0-flash": ModelDescriptor(
        id="google/gemini-2.0-flash-001",
        supports_structured_output=True,
        default_routing=RoutingPreferences.build(sort=ProviderSort.PRICE),
        vendor="google",
    ),
    "gpt-4o-mini": ModelDescriptor(
        id="openai/gpt-4o-mini",
        supports_structured_output=True,
        default_routing=RoutingPreferences.build(order=["OpenAI", "Azure"]),
        vendor="openai",
    ),
    "gpt-4.1": ModelDescriptor(
        id="openai/gpt-4.1",
        supports_structured_output=True,
        default_routing=RoutingPreferences.build(order=["OpenAI"]),
        vendor="openai",
    ),
    "claude-3.7-sonnet": ModelDescriptor(
        id="anthropic/claude-3.7-sonnet",
        supports_structured_output=False,
        default_routing=RoutingPreferences.build(sort=ProviderSort.LATENCY),
        vendor="anthropic",
    ),
    "deepseek-v3": ModelDescriptor(
        id="deepseek/deepseek-chat-v3-0324",
        supports_structured_output=False,
        default_routing=RoutingPreferences.build(
            sort=ProviderSort.PRICE,
            ignore=["Chutes", "Targon"],
        ),
        vendor="deepseek",
    ),
    "llama-4-maverick": ModelDescriptor(
        id="meta-llama/llama-4-maverick",
        supports_structured_output=True,
        default_routing=RoutingPreferences.build(
            sort=ProviderSort.THROUGHPUT,
            ignore=["Novita"],
        ),
        vendor="meta-llama",
    ),
    "mistral-small-3.1": ModelDescriptor(
        id="mistralai/mistral-small-3.1-24b-instruct",
        supports_structured_output=True,
        default_routing=RoutingPreferences.build(order=["Mistral"]),
        vendor="mistralai",
    ),
}


def _check_entries(entries: Mapping[str, ModelDescriptor]) -> None:
    seen: set[str] = set()
    for name, descriptor in entries.items():
        if not descriptor.id:
            raise ValueError(f"Model {name!r} has an empty id.")
        if descriptor.id in seen:
            raise ValueError(f"Duplicate model id {descriptor.id!r} (entry {name!r}).")
        seen.add(descriptor.id)


_check_entries(_ENTRIES)

MODEL_REGISTRY: Mapping[str, ModelDescriptor] = MappingProxyType(_ENTRIES)


def lookup(name: str, *, registry: Mapping[str, ModelDescriptor] = MODEL_REGISTRY) -> ModelDescriptor:
    try:
        return registry[name]
    except KeyError:
        raise UnknownModelError(name) from None
