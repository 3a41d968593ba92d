"""Cluster resource API adapter on top of the Kubernetes Python client.

The engine talks to the cluster through plain dictionaries in the JSON
shape the API server uses. This module maps each derived kind onto the
matching typed API, converts typed responses back into dictionaries, and
translates ``ApiException`` into a small error taxonomy the engine can
branch on (not found, already exists, conflict).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)


class ClusterAPIError(Exception):
    """Raised when a cluster API call fails."""

    def __init__(self, message: str, status: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class NotFoundError(ClusterAPIError):
    """The requested object does not exist."""


class AlreadyExistsError(ClusterAPIError):
    """A create collided with an existing object of the same name."""


class ConflictError(ClusterAPIError):
    """A write was rejected because the object changed since it was read."""


@dataclass(frozen=True)
class KindInfo:
    """How to reach one kind through the Kubernetes client.

    Attributes:
        api: Which typed API serves the kind ("core", "rbac", "networking", "custom").
        resource: Method suffix for typed APIs (e.g. "resource_quota").
        namespaced: Whether objects live inside a namespace.
        group: API group for custom objects.
        version: API version for custom objects.
        plural: Resource plural for custom objects.
    """

    api: str
    resource: str
    namespaced: bool = True
    group: str = ""
    version: str = ""
    plural: str = ""


SEALED_SECRET_GROUP = "bitnami.com"
SEALED_SECRET_VERSION = "v1alpha1"

KINDS: dict[str, KindInfo] = {
    "Namespace": KindInfo(api="core", resource="namespace", namespaced=False),
    "ResourceQuota": KindInfo(api="core", resource="resource_quota"),
    "LimitRange": KindInfo(api="core", resource="limit_range"),
    "ServiceAccount": KindInfo(api="core", resource="service_account"),
    "Secret": KindInfo(api="core", resource="secret"),
    "Role": KindInfo(api="rbac", resource="role"),
    "RoleBinding": KindInfo(api="rbac", resource="role_binding"),
    "NetworkPolicy": KindInfo(api="networking", resource="network_policy"),
    "SealedSecret": KindInfo(
        api="custom",
        resource="sealed_secret",
        group=SEALED_SECRET_GROUP,
        version=SEALED_SECRET_VERSION,
        plural="sealedsecrets",
    ),
}


def _error_reason(e: ApiException) -> str | None:
    if not e.body:
        return e.reason
    try:
        body = json.loads(e.body)
    except (TypeError, ValueError):
        return e.reason
    if isinstance(body, dict):
        return body.get("reason") or e.reason
    return e.reason


def translate_api_exception(e: ApiException, action: str) -> ClusterAPIError:
    """Map an ApiException onto the engine's error taxonomy."""
    reason = _error_reason(e)
    message = f"{action} failed: {e.status} {reason}"
    if e.status == 404:
        return NotFoundError(message, status=e.status, reason=reason)
    if e.status == 409 and reason == "AlreadyExists":
        return AlreadyExistsError(message, status=e.status, reason=reason)
    if e.status == 409:
        return ConflictError(message, status=e.status, reason=reason)
    return ClusterAPIError(message, status=e.status, reason=reason)


def load_kube_config() -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class ClusterClient:
    """Generic get/create/replace/delete over the derived kinds.

    All methods take and return dictionaries. Typed responses are
    converted with ``ApiClient.sanitize_for_serialization`` so callers see
    the same camelCase keys they send.
    """

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        *,
        crd_group: str,
        crd_version: str,
        crd_plural: str,
    ) -> None:
        self._api_client = api_client or client.ApiClient()
        self._core = client.CoreV1Api(self._api_client)
        self._rbac = client.RbacAuthorizationV1Api(self._api_client)
        self._networking = client.NetworkingV1Api(self._api_client)
        self._custom = client.CustomObjectsApi(self._api_client)
        self._crd_group = crd_group
        self._crd_version = crd_version
        self._crd_plural = crd_plural

    # -------------------------------------------------------------------------
    # Derived resources
    # -------------------------------------------------------------------------

    def _typed_api(self, info: KindInfo) -> Any:
        return {"core": self._core, "rbac": self._rbac, "networking": self._networking}[info.api]

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self._api_client.sanitize_for_serialization(obj)

    def _call(self, action: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, action) from e
        except (HTTPError, OSError) as e:
            # Transport failures: API server unreachable or connection dropped
            raise ClusterAPIError(f"{action} failed: {e}") from e

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        """Read one object.

        Raises:
            NotFoundError: If the object does not exist.
            ClusterAPIError: On any other API failure.
        """
        info = KINDS[kind]
        action = f"get {kind} {namespace or ''}/{name}"
        if info.api == "custom":
            return self._call(
                action,
                self._custom.get_namespaced_custom_object,
                info.group,
                info.version,
                namespace,
                info.plural,
                name,
            )
        api = self._typed_api(info)
        if info.namespaced:
            fn = getattr(api, f"read_namespaced_{info.resource}")
            return self._to_dict(self._call(action, fn, name, namespace))
        fn = getattr(api, f"read_{info.resource}")
        return self._to_dict(self._call(action, fn, name))

    def create(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create one object.

        Raises:
            AlreadyExistsError: If an object with the same name exists.
            ClusterAPIError: On any other API failure.
        """
        info = KINDS[kind]
        meta = body["metadata"]
        namespace = meta.get("namespace")
        action = f"create {kind} {namespace or ''}/{meta['name']}"
        if info.api == "custom":
            return self._call(
                action,
                self._custom.create_namespaced_custom_object,
                info.group,
                info.version,
                namespace,
                info.plural,
                body,
            )
        api = self._typed_api(info)
        if info.namespaced:
            fn = getattr(api, f"create_namespaced_{info.resource}")
            return self._to_dict(self._call(action, fn, namespace, body))
        fn = getattr(api, f"create_{info.resource}")
        return self._to_dict(self._call(action, fn, body))

    def replace(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        """Replace one object; ``metadata.resourceVersion`` guards the write.

        Raises:
            ConflictError: If the object changed since it was read.
            ClusterAPIError: On any other API failure.
        """
        info = KINDS[kind]
        meta = body["metadata"]
        name = meta["name"]
        namespace = meta.get("namespace")
        action = f"replace {kind} {namespace or ''}/{name}"
        if info.api == "custom":
            return self._call(
                action,
                self._custom.replace_namespaced_custom_object,
                info.group,
                info.version,
                namespace,
                info.plural,
                name,
                body,
            )
        api = self._typed_api(info)
        if info.namespaced:
            fn = getattr(api, f"replace_namespaced_{info.resource}")
            return self._to_dict(self._call(action, fn, name, namespace, body))
        fn = getattr(api, f"replace_{info.resource}")
        return self._to_dict(self._call(action, fn, name, body))

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        """Delete one object (background propagation).

        Raises:
            NotFoundError: If the object does not exist.
            ClusterAPIError: On any other API failure.
        """
        info = KINDS[kind]
        action = f"delete {kind} {namespace or ''}/{name}"
        options = client.V1DeleteOptions(propagation_policy="Background")
        if info.api == "custom":
            self._call(
                action,
                self._custom.delete_namespaced_custom_object,
                info.group,
                info.version,
                namespace,
                info.plural,
                name,
            )
            return
        api = self._typed_api(info)
        if info.namespaced:
            fn = getattr(api, f"delete_namespaced_{info.resource}")
            self._call(action, fn, name, namespace, body=options)
        else:
            fn = getattr(api, f"delete_{info.resource}")
            self._call(action, fn, name, body=options)

    def create_service_account_token(
        self, namespace: str, name: str, expiration_seconds: int
    ) -> str:
        """Issue a bound token for a ServiceAccount via the TokenRequest API.

        Raises:
            NotFoundError: If the ServiceAccount does not exist.
            ClusterAPIError: On any other API failure or an empty token.
        """
        request = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(audiences=[], expiration_seconds=expiration_seconds)
        )
        response = self._call(
            f"create token for ServiceAccount {namespace}/{name}",
            self._core.create_namespaced_service_account_token,
            name,
            namespace,
            request,
        )
        token = response.status.token if response.status else None
        if not token:
            raise ClusterAPIError(f"Received empty token for ServiceAccount {namespace}/{name}")
        return token

    # -------------------------------------------------------------------------
    # UserConfig entity
    # -------------------------------------------------------------------------

    def get_user_config(self, name: str) -> dict[str, Any]:
        """Read one UserConfig (cluster-scoped)."""
        return self._call(
            f"get UserConfig {name}",
            self._custom.get_cluster_custom_object,
            self._crd_group,
            self._crd_version,
            self._crd_plural,
            name,
        )

    def list_user_configs(self) -> list[dict[str, Any]]:
        """List every UserConfig in the cluster."""
        result = self._call(
            "list UserConfigs",
            self._custom.list_cluster_custom_object,
            self._crd_group,
            self._crd_version,
            self._crd_plural,
        )
        return list(result.get("items", []))

    def replace_user_config(self, body: dict[str, Any]) -> dict[str, Any]:
        """Replace a UserConfig's main resource (metadata and spec)."""
        name = body["metadata"]["name"]
        return self._call(
            f"replace UserConfig {name}",
            self._custom.replace_cluster_custom_object,
            self._crd_group,
            self._crd_version,
            self._crd_plural,
            name,
            body,
        )

    def patch_user_config_status(self, name: str, status: dict[str, Any]) -> dict[str, Any]:
        """Merge-patch the status subresource of a UserConfig."""
        return self._call(
            f"patch UserConfig {name} status",
            self._custom.patch_cluster_custom_object_status,
            self._crd_group,
            self._crd_version,
            self._crd_plural,
            name,
            {"status": status},
        )
