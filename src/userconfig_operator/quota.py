"""ResourceQuota and LimitRange synthesis.

Both synthesizers follow one pattern: a fixed built-in default applies
when the UserConfig says nothing, and a partial override replaces only the
fields it names. Unspecified fields keep the built-in default; they never
become zero or disappear.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any

from .models import ComputeResources, LimitRangeConfig, LimitType, ResourceQuotaConfig
from .quantity import resource_lists_equal, validate_resource_list

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_HARD: MappingProxyType[str, str] = MappingProxyType(
    {
        "pods": "10",
        "cpu": "2",
        "memory": "4Gi",
    }
)

# Four-tier envelope for the default Container entry
DEFAULT_LIMIT_TIERS: MappingProxyType[str, MappingProxyType[str, str]] = MappingProxyType(
    {
        "default": MappingProxyType({"cpu": "500m", "memory": "1Gi"}),
        "defaultRequest": MappingProxyType({"cpu": "250m", "memory": "512Mi"}),
        "min": MappingProxyType({"cpu": "50m", "memory": "64Mi"}),
        "max": MappingProxyType({"cpu": "2", "memory": "4Gi"}),
    }
)

# default/defaultRequest are rejected by the API server at Pod scope
POD_SCOPE_TIERS = ("max", "min")
CONTAINER_SCOPE_TIERS = ("max", "min", "default", "defaultRequest")


def build_quota_hard(override: ResourceQuotaConfig | None) -> dict[str, str]:
    """Compute ``spec.hard`` for the namespace ResourceQuota.

    Raises:
        QuantityError: If any override value is not a valid quantity.
    """
    hard = dict(DEFAULT_QUOTA_HARD)
    if override is not None:
        hard.update(override.overrides())
    validate_resource_list(hard, context="resourceQuota")
    return hard


def _merge_tier(tier: str, supplied: ComputeResources | None) -> dict[str, str]:
    values = dict(DEFAULT_LIMIT_TIERS[tier])
    if supplied is not None:
        if supplied.cpu:
            values["cpu"] = supplied.cpu
        if supplied.memory:
            values["memory"] = supplied.memory
    return values


def default_limit_item() -> dict[str, Any]:
    """The built-in Container entry."""
    item: dict[str, Any] = {"type": LimitType.CONTAINER.value}
    for tier in CONTAINER_SCOPE_TIERS:
        item[tier] = dict(DEFAULT_LIMIT_TIERS[tier])
    return item


def build_limit_range_items(config: LimitRangeConfig | None) -> list[dict[str, Any]]:
    """Compute ``spec.limits`` for the namespace LimitRange.

    Raises:
        QuantityError: If any supplied value is not a valid quantity.
    """
    if config is None or not config.limits:
        return [default_limit_item()]

    items: list[dict[str, Any]] = []
    for index, limit in enumerate(config.limits):
        supplied = {
            "max": limit.max,
            "min": limit.min,
            "default": limit.default,
            "defaultRequest": limit.default_request,
        }
        if limit.type == LimitType.POD:
            tiers = POD_SCOPE_TIERS
            if limit.default is not None or limit.default_request is not None:
                logger.info(
                    "Ignoring default/defaultRequest on Pod limit entry",
                    extra={"index": index},
                )
        else:
            tiers = CONTAINER_SCOPE_TIERS

        item: dict[str, Any] = {"type": limit.type.value}
        for tier in tiers:
            item[tier] = _merge_tier(tier, supplied[tier])
            validate_resource_list(item[tier], context=f"limitRange.limits[{index}].{tier}")
        items.append(item)

    return items


def limit_items_equal(a: list[dict[str, Any]] | None, b: list[dict[str, Any]] | None) -> bool:
    """Quantity-aware equality of two ``spec.limits`` lists."""
    a = a or []
    b = b or []
    if len(a) != len(b):
        return False
    for left, right in zip(a, b, strict=True):
        if left.get("type") != right.get("type"):
            return False
        tiers = (set(left) | set(right)) - {"type"}
        for tier in tiers:
            if not resource_lists_equal(left.get(tier), right.get(tier)):
                return False
    return True
