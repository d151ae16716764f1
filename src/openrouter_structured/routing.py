from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from .models import ModelDescriptor, RoutingPreferences


@dataclass(frozen=True)
class RoutingPlan:
    provider_preferences: dict[str, Any]
    fallback_model_ids: tuple[str, ...]


def build_routing(
    primary: ModelDescriptor,
    backups: Sequence[ModelDescriptor] = (),
    override: RoutingPreferences | None = None,
) -> RoutingPlan:
    """
    Merge caller overrides with the primary model's default routing.

    Each of sort/order/ignore is taken from the override when set, else from
    the model default, else left out of the payload. `require_parameters` is
    always on so OpenRouter only routes to providers that accept the
    requested response_format.
    """
    default = primary.default_routing or RoutingPreferences()
    override = override or RoutingPreferences()

    prefs: dict[str, Any] = {"require_parameters": True}

    sort = override.sort if override.sort is not None else default.sort
    if sort is not None:
        prefs["sort"] = sort.value

    order = override.order if override.order is not None else default.order
    if order is not None:
        prefs["order"] = list(order)

    ignore = override.ignore if override.ignore is not None else default.ignore
    if ignore is not None:
        prefs["ignore"] = list(ignore)

    return RoutingPlan(
        provider_preferences=prefs,
        fallback_model_ids=tuple(b.id for b in backups),
    )
