"""Translation of the compact CRUD permission grammar into RBAC rules.

A grant is a (resource alias, operation string) pair such as
``("deployment", "RU")``. Translation is pure and total:

- The alias is normalized through a closed alias table to one canonical
  resource name (including ``pods/log`` and ``*/scale`` sub-resources).
- The canonical resource is mapped to its API group. Unknown aliases pass
  through unchanged and land in a narrow fallback group, never ``*``.
- Operation characters map to verb sets which are unioned, deduplicated
  and sorted. A string with no recognized character yields read-only
  access so a grant never silently turns into "no access".
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import NamedTuple

from .config import DEFAULT_FALLBACK_API_GROUP

logger = logging.getLogger(__name__)

# =============================================================================
# Lookup tables
# =============================================================================

RESOURCE_ALIASES: MappingProxyType[str, str] = MappingProxyType(
    {
        "deployment": "deployments",
        "deployments": "deployments",
        "replicaset": "replicasets",
        "replicasets": "replicasets",
        "statefulset": "statefulsets",
        "statefulsets": "statefulsets",
        "daemonset": "daemonsets",
        "daemonsets": "daemonsets",
        "pod": "pods",
        "pods": "pods",
        "service": "services",
        "services": "services",
        "resourcequota": "resourcequotas",
        "resourcequotas": "resourcequotas",
        "limitrange": "limitranges",
        "limitranges": "limitranges",
        "secret": "secrets",
        "secrets": "secrets",
        "namespace": "namespaces",
        "namespaces": "namespaces",
        "serviceaccount": "serviceaccounts",
        "serviceaccounts": "serviceaccounts",
        "configmap": "configmaps",
        "configmaps": "configmaps",
        "persistentvolumeclaim": "persistentvolumeclaims",
        "persistentvolumeclaims": "persistentvolumeclaims",
        "persistentvolume": "persistentvolumes",
        "persistentvolumes": "persistentvolumes",
        "role": "roles",
        "roles": "roles",
        "rolebinding": "rolebindings",
        "rolebindings": "rolebindings",
        "networkpolicy": "networkpolicies",
        "networkpolicies": "networkpolicies",
        "sealedsecret": "sealedsecrets",
        "sealedsecrets": "sealedsecrets",
        "ingress": "ingresses",
        "ingresses": "ingresses",
        # Sub-resources
        "logs": "pods/log",
        "scaledeployment": "deployments/scale",
        "scalereplicaset": "replicasets/scale",
    }
)

CORE_API_GROUP = ""

API_GROUPS: MappingProxyType[str, str] = MappingProxyType(
    {
        "deployments": "apps",
        "replicasets": "apps",
        "statefulsets": "apps",
        "daemonsets": "apps",
        "deployments/scale": "apps",
        "replicasets/scale": "apps",
        "pods": CORE_API_GROUP,
        "pods/log": CORE_API_GROUP,
        "services": CORE_API_GROUP,
        "resourcequotas": CORE_API_GROUP,
        "limitranges": CORE_API_GROUP,
        "secrets": CORE_API_GROUP,
        "namespaces": CORE_API_GROUP,
        "serviceaccounts": CORE_API_GROUP,
        "configmaps": CORE_API_GROUP,
        "persistentvolumeclaims": CORE_API_GROUP,
        "persistentvolumes": CORE_API_GROUP,
        "roles": "rbac.authorization.k8s.io",
        "rolebindings": "rbac.authorization.k8s.io",
        "networkpolicies": "networking.k8s.io",
        "ingresses": "networking.k8s.io",
        "sealedsecrets": "bitnami.com",
    }
)

WILDCARD_OPERATION = "*"

OPERATION_VERBS: MappingProxyType[str, frozenset[str]] = MappingProxyType(
    {
        "C": frozenset({"create"}),
        "R": frozenset({"get", "list", "watch"}),
        "U": frozenset({"update", "patch"}),
        "D": frozenset({"delete"}),
    }
)

ALL_VERBS: frozenset[str] = frozenset().union(*OPERATION_VERBS.values())
READ_ONLY_VERBS: tuple[str, ...] = tuple(sorted(OPERATION_VERBS["R"]))


class TranslatedPermission(NamedTuple):
    """Normalized (API group, resource, verbs) triple for one grant."""

    api_group: str
    resource: str
    verbs: tuple[str, ...]
    recognized: bool = True

    def to_policy_rule(self) -> dict[str, list[str]]:
        """Render as an RBAC PolicyRule."""
        return {
            "apiGroups": [self.api_group],
            "resources": [self.resource],
            "verbs": list(self.verbs),
        }


def canonical_resource(alias: str) -> str:
    """Normalize a resource alias; unknown aliases pass through unchanged."""
    return RESOURCE_ALIASES.get(alias, alias)


def is_known_resource(alias: str) -> bool:
    """Check whether an alias is in the closed alias table."""
    return alias in RESOURCE_ALIASES


def is_mappable(alias: str) -> bool:
    """Check whether an alias can become a rule without widening access.

    Empty names and names containing a wildcard would grant more than the
    user asked for, so they are never turned into rules.
    """
    return bool(alias.strip()) and "*" not in alias


def api_group_for(resource: str, fallback_api_group: str = DEFAULT_FALLBACK_API_GROUP) -> str:
    """Resolve the API group of a canonical resource name."""
    group = API_GROUPS.get(resource)
    if group is None:
        logger.info(
            "Unknown resource type, using fallback API group",
            extra={"resource": resource, "api_group": fallback_api_group},
        )
        return fallback_api_group
    return group


def operation_to_verbs(operation: str) -> tuple[str, ...]:
    """Map a CRUD operation string to a sorted, deduplicated verb tuple."""
    verbs: set[str] = set()
    for char in set(operation):
        if char == WILDCARD_OPERATION:
            verbs |= ALL_VERBS
        else:
            verbs |= OPERATION_VERBS.get(char, frozenset())

    if not verbs:
        return READ_ONLY_VERBS
    return tuple(sorted(verbs))


def translate(
    alias: str,
    operation: str,
    fallback_api_group: str = DEFAULT_FALLBACK_API_GROUP,
) -> TranslatedPermission:
    """Translate one grant into an RBAC triple.

    Args:
        alias: Resource alias as written by the user (e.g. "deployment", "logs").
        operation: Operation string drawn from C, R, U, D and "*".
        fallback_api_group: API group used for aliases missing from the table.

    Returns:
        TranslatedPermission with a non-empty, sorted verb tuple.
    """
    resource = canonical_resource(alias)
    return TranslatedPermission(
        api_group=api_group_for(resource, fallback_api_group),
        resource=resource,
        verbs=operation_to_verbs(operation),
        recognized=resource in API_GROUPS,
    )
