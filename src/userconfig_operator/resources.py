"""Desired-state synthesizers for every derived kind.

Each ``render_*`` function turns a UserConfig into the full desired object
for one derived kind, as a dictionary in API server JSON shape. Names are
a deterministic function of the entity name and the kind, so repeated
reconciles always address the same objects.

``MERGES`` pairs each kind with the merge strategy the converger uses to
apply the engine-owned fields onto a live object.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

from .config import USERCONFIG_KIND, OperatorConfig
from .converge import MergeFn, metadata_only, replace_fields, replace_spec_unless
from .models import SecretType, UserConfig
from .network import build_policy_spec, normalize_policy_spec
from .permissions import is_known_resource, is_mappable, translate
from .quantity import resource_lists_equal
from .quota import build_limit_range_items, build_quota_hard, limit_items_equal

logger = logging.getLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"
KUBECONFIG_SECRET_SUFFIX = "-kubeconfig"
KUBECONFIG_SECRET_KEY = "kubeconfig"


# =============================================================================
# Naming and ownership
# =============================================================================


def namespace_name(uc: UserConfig) -> str:
    """One namespace per entity, named after the entity."""
    return uc.name


def kubeconfig_secret_name(uc: UserConfig) -> str:
    """Name of the Secret holding the derived kubeconfig."""
    return f"{uc.name}{KUBECONFIG_SECRET_SUFFIX}"


def owner_reference(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    """Controller owner reference binding a derived object to the entity."""
    return {
        "apiVersion": config.api_version,
        "kind": USERCONFIG_KIND,
        "name": uc.name,
        "uid": uc.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def object_meta(
    uc: UserConfig, config: OperatorConfig, name: str, *, namespaced: bool = True
) -> dict[str, Any]:
    """Metadata shared by every derived object."""
    meta: dict[str, Any] = {
        "name": name,
        "labels": config.managed_labels(uc.name),
    }
    if namespaced:
        meta["namespace"] = namespace_name(uc)
    if uc.metadata.uid:
        meta["ownerReferences"] = [owner_reference(uc, config)]
    return meta


# =============================================================================
# Namespace, quota, limit range
# =============================================================================


def render_namespace(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": object_meta(uc, config, namespace_name(uc), namespaced=False),
    }


def render_resource_quota(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    """ResourceQuota with built-in defaults under any partial override."""
    return {
        "apiVersion": "v1",
        "kind": "ResourceQuota",
        "metadata": object_meta(uc, config, uc.name),
        "spec": {"hard": build_quota_hard(uc.spec.resource_quota)},
    }


def render_limit_range(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "LimitRange",
        "metadata": object_meta(uc, config, uc.name),
        "spec": {"limits": build_limit_range_items(uc.spec.limit_range)},
    }


# =============================================================================
# RBAC
# =============================================================================


def _image_pull_secrets(names: list[str]) -> list[dict[str, str]]:
    seen: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
    return [{"name": name} for name in seen]


def render_service_accounts(uc: UserConfig, config: OperatorConfig) -> list[dict[str, Any]]:
    """Primary ServiceAccount first, then any extra declared accounts.

    A declared account named like the entity contributes its image pull
    secrets to the primary account instead of producing a second object.
    """
    primary_pulls: list[str] = []
    extras: dict[str, list[str]] = {}
    for declared in uc.spec.service_accounts:
        if declared.name == uc.name:
            primary_pulls.extend(declared.image_pull_secrets)
        else:
            extras.setdefault(declared.name, []).extend(declared.image_pull_secrets)

    accounts: list[dict[str, Any]] = []
    for name, pulls in [(uc.name, primary_pulls), *extras.items()]:
        account: dict[str, Any] = {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": object_meta(uc, config, name),
        }
        secrets = _image_pull_secrets(pulls)
        if secrets:
            account["imagePullSecrets"] = secrets
        accounts.append(account)
    return accounts


def policy_rules(uc: UserConfig, config: OperatorConfig) -> list[dict[str, Any]]:
    """One rule per grant that can be mapped without widening access."""
    rules: list[dict[str, Any]] = []
    for grant in uc.spec.permissions.resources:
        if not is_mappable(grant.resource):
            logger.warning(
                "Omitting permission that cannot be safely mapped",
                extra={"userconfig": uc.name, "resource": grant.resource},
            )
            continue
        translated = translate(grant.resource, grant.operation, config.fallback_api_group)
        rules.append(translated.to_policy_rule())
    return rules


def unrecognized_resources(uc: UserConfig) -> list[str]:
    """Resource aliases that were routed to the fallback API group."""
    return sorted(
        {
            grant.resource
            for grant in uc.spec.permissions.resources
            if is_mappable(grant.resource) and not is_known_resource(grant.resource)
        }
    )


def render_role(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    role: dict[str, Any] = {
        "apiVersion": f"{RBAC_API_GROUP}/v1",
        "kind": "Role",
        "metadata": object_meta(uc, config, uc.name),
    }
    rules = policy_rules(uc, config)
    # The API server drops an empty rule list; omit it so the stored
    # object compares equal
    if rules:
        role["rules"] = rules
    return role


def render_role_binding(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    """Bind the human identity and the generated ServiceAccount to the Role."""
    return {
        "apiVersion": f"{RBAC_API_GROUP}/v1",
        "kind": "RoleBinding",
        "metadata": object_meta(uc, config, uc.name),
        "subjects": [
            {"kind": "User", "apiGroup": RBAC_API_GROUP, "name": uc.spec.identity.username},
            {"kind": "ServiceAccount", "name": uc.name, "namespace": namespace_name(uc)},
        ],
        "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "Role", "name": uc.name},
    }


# =============================================================================
# Network policy
# =============================================================================


def render_network_policy(uc: UserConfig, config: OperatorConfig) -> dict[str, Any]:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": object_meta(uc, config, uc.name),
        "spec": build_policy_spec(uc.spec.network_policy),
    }


# =============================================================================
# Secrets
# =============================================================================


def render_sealed_secrets(uc: UserConfig, config: OperatorConfig) -> list[dict[str, Any]]:
    """SealedSecret envelopes for every sealed declaration.

    The sealed-secrets controller decrypts each envelope into a Secret of
    the same name; this engine only writes the envelope.
    """
    envelopes: list[dict[str, Any]] = []
    for secret in uc.spec.secrets:
        if secret.type == SecretType.EXTERNAL:
            logger.warning(
                "External secrets are not propagated yet, skipping",
                extra={"userconfig": uc.name, "secret": secret.name},
            )
            continue
        if secret.sealed_secret is None:
            logger.warning(
                "Sealed secret declared without sealedSecret data, skipping",
                extra={"userconfig": uc.name, "secret": secret.name},
            )
            continue
        envelopes.append(
            {
                "apiVersion": "bitnami.com/v1alpha1",
                "kind": "SealedSecret",
                "metadata": object_meta(uc, config, secret.name),
                "spec": {
                    "encryptedData": dict(secret.sealed_secret.encrypted_data),
                    "template": {
                        "metadata": {"name": secret.name, "namespace": namespace_name(uc)},
                        "type": "Opaque",
                    },
                },
            }
        )
    return envelopes


def render_kubeconfig_secret(
    uc: UserConfig, config: OperatorConfig, kubeconfig: str
) -> dict[str, Any]:
    """Opaque Secret carrying a serialized kubeconfig."""
    encoded = base64.b64encode(kubeconfig.encode("utf-8")).decode("ascii")
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": object_meta(uc, config, kubeconfig_secret_name(uc)),
        "type": "Opaque",
        "data": {KUBECONFIG_SECRET_KEY: encoded},
    }


def render_all(uc: UserConfig, config: OperatorConfig) -> list[dict[str, Any]]:
    """Every derived object except the credential, in apply order."""
    return [
        render_namespace(uc, config),
        render_resource_quota(uc, config),
        *render_sealed_secrets(uc, config),
        render_role(uc, config),
        *render_service_accounts(uc, config),
        render_role_binding(uc, config),
        render_limit_range(uc, config),
        render_network_policy(uc, config),
    ]


# =============================================================================
# Merge strategies
# =============================================================================


def _quota_equal(live: Any, desired: Any) -> bool:
    return resource_lists_equal((live or {}).get("hard"), (desired or {}).get("hard"))


def _limits_equal(live: Any, desired: Any) -> bool:
    return limit_items_equal((live or {}).get("limits"), (desired or {}).get("limits"))


def _policy_equal(live: Any, desired: Any) -> bool:
    return normalize_policy_spec(live) == normalize_policy_spec(desired)


def _spec_equal(live: Any, desired: Any) -> bool:
    return live == desired


MERGES: dict[str, MergeFn] = {
    "Namespace": metadata_only,
    "ResourceQuota": replace_spec_unless(_quota_equal),
    "LimitRange": replace_spec_unless(_limits_equal),
    "ServiceAccount": replace_fields("imagePullSecrets"),
    "Role": replace_fields("rules"),
    "RoleBinding": replace_fields("subjects", "roleRef"),
    "NetworkPolicy": replace_spec_unless(_policy_equal),
    "SealedSecret": replace_spec_unless(_spec_equal),
    "Secret": replace_fields("type", "data"),
}
