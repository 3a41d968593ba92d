"""Pydantic models for the UserConfig custom resource.

These models provide:
1. Type-safe parsing of the objects returned by the API server
2. Validation at the boundary (fail fast, surface as status)
3. Clean serialization of the status subresource
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Identity and Permissions
# =============================================================================


class Identity(BaseModel):
    """User identity and group membership."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    username: Annotated[str, Field(min_length=1, max_length=63)]
    contact: str = ""
    groups: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)


class ResourcePermission(BaseModel):
    """A single grant: resource alias plus CRUD operation string."""

    model_config = {"extra": "ignore"}

    resource: str
    operation: str = ""


class Permissions(BaseModel):
    """Permission list granted to the user inside their namespace."""

    model_config = {"extra": "ignore"}

    resources: list[ResourcePermission] = Field(default_factory=list)


# =============================================================================
# Secrets and Service Accounts
# =============================================================================


class SecretType(str, Enum):
    """Supported secret declaration types."""

    SEALED = "sealed"
    EXTERNAL = "external"


class SealedSecretConfig(BaseModel):
    """Ciphertext produced by kubeseal for one secret."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    encrypted_data: dict[str, str] = Field(default_factory=dict, alias="encryptedData")


class ExternalSecretCredentials(BaseModel):
    """Credentials for an external secret provider."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    access_key: str = Field("", alias="accessKey")
    secret_key: str = Field("", alias="secretKey")


class ExternalSecretConfig(BaseModel):
    """External secret provider reference (accepted, not yet propagated)."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    provider: str
    endpoint: str = ""
    credentials: ExternalSecretCredentials = Field(default_factory=ExternalSecretCredentials)
    secret_path: str = Field("", alias="secretPath")


class SecretConfig(BaseModel):
    """Secret declaration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=253)]
    type: SecretType
    sealed_secret: SealedSecretConfig | None = Field(None, alias="sealedSecret")
    external_secret: ExternalSecretConfig | None = Field(None, alias="externalSecret")


class ServiceAccountConfig(BaseModel):
    """Extra service account metadata."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=253)]
    image_pull_secrets: list[str] = Field(default_factory=list, alias="imagePullSecrets")


# =============================================================================
# Quota and Limit Range
# =============================================================================


class ResourceQuotaConfig(BaseModel):
    """Partial ResourceQuota override.

    Field aliases are the Kubernetes quota resource names, so
    ``model_dump(by_alias=True, exclude_none=True)`` yields the override
    map directly.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    cpu: str | None = None
    memory: str | None = None
    ephemeral_storage: str | None = Field(None, alias="ephemeral-storage")
    requests_cpu: str | None = Field(None, alias="requests.cpu")
    requests_memory: str | None = Field(None, alias="requests.memory")
    requests_storage: str | None = Field(None, alias="requests.storage")
    requests_ephemeral_storage: str | None = Field(None, alias="requests.ephemeral-storage")
    limits_cpu: str | None = Field(None, alias="limits.cpu")
    limits_memory: str | None = Field(None, alias="limits.memory")
    limits_ephemeral_storage: str | None = Field(None, alias="limits.ephemeral-storage")
    pods: str | None = None
    services: str | None = None
    replication_controllers: str | None = Field(None, alias="replicationcontrollers")
    secrets: str | None = None
    # The CRD field is named requests.configmaps; the quota key is configmaps
    config_maps: str | None = Field(None, alias="requests.configmaps")
    persistent_volume_claims: str | None = Field(None, alias="persistentvolumeclaims")
    services_node_ports: str | None = Field(None, alias="services.nodeports")
    services_load_balancers: str | None = Field(None, alias="services.loadbalancers")

    @field_validator("*", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> Any:
        # YAML turns "10" into 10; quantities are strings on the wire
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v

    def overrides(self) -> dict[str, str]:
        """Return the specified fields keyed by Kubernetes quota name."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if "requests.configmaps" in data:
            data["configmaps"] = data.pop("requests.configmaps")
        return {k: v for k, v in data.items() if v != ""}


class ComputeResources(BaseModel):
    """CPU / memory pair used by limit-range tiers."""

    model_config = {"extra": "ignore"}

    cpu: str | None = None
    memory: str | None = None

    @field_validator("cpu", "memory", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> Any:
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v


class LimitType(str, Enum):
    """LimitRange item scopes."""

    CONTAINER = "Container"
    POD = "Pod"


class LimitRangeLimit(BaseModel):
    """One limit-range entry."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: LimitType
    max: ComputeResources | None = None
    min: ComputeResources | None = None
    default: ComputeResources | None = None
    default_request: ComputeResources | None = Field(None, alias="defaultRequest")


class LimitRangeConfig(BaseModel):
    """Limit-range overrides."""

    model_config = {"extra": "ignore"}

    limits: list[LimitRangeLimit] = Field(default_factory=list)


# =============================================================================
# Network Policy
# =============================================================================


class Protocol(str, Enum):
    """Network protocols accepted by NetworkPolicy ports."""

    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"


class NetworkPolicyPort(BaseModel):
    """Port and protocol pair; protocol defaults to TCP when composed."""

    model_config = {"extra": "ignore"}

    port: Annotated[int, Field(ge=1, le=65535)]
    protocol: Protocol | None = None


class NetworkPolicyPeer(BaseModel):
    """Allowed traffic peers: pod selectors, namespace selectors, ports."""

    model_config = {"extra": "ignore"}

    pods: list[dict[str, str]] = Field(default_factory=list)
    namespaces: list[dict[str, str]] = Field(default_factory=list)
    ports: list[NetworkPolicyPort] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the descriptor names no selector and no port."""
        return not (self.pods or self.namespaces or self.ports)


class NetworkRule(BaseModel):
    """One traffic-allow declaration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    allow_traffic_from: NetworkPolicyPeer | None = Field(None, alias="allowTrafficFrom")
    allow_traffic_to: NetworkPolicyPeer | None = Field(None, alias="allowTrafficTo")


# =============================================================================
# UserConfig
# =============================================================================


class UserConfigSpec(BaseModel):
    """Desired state of a UserConfig."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    identity: Identity
    permissions: Permissions = Field(default_factory=Permissions)
    secrets: list[SecretConfig] = Field(default_factory=list)
    service_accounts: list[ServiceAccountConfig] = Field(
        default_factory=list, alias="serviceAccounts"
    )
    resource_quota: ResourceQuotaConfig | None = Field(None, alias="resourceQuota")
    limit_range: LimitRangeConfig | None = Field(None, alias="limitRange")
    network_policy: list[NetworkRule] = Field(default_factory=list, alias="networkPolicy")


class State(str, Enum):
    """Observed lifecycle state of a UserConfig."""

    PENDING = "Pending"
    ACTIVE = "Active"
    ERROR = "Error"


# Condition types and reasons written to status
READY_CONDITION = "Ready"
REASON_RECONCILED = "Reconciled"
REASON_ERROR = "Error"
REASON_PRECONDITION = "PreconditionNotMet"


def utc_now() -> str:
    """RFC 3339 timestamp used for status fields."""
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class Condition(BaseModel):
    """Timestamped status condition record."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: str = Field(default_factory=utc_now, alias="lastTransitionTime")

    def same_as(self, other: Condition) -> bool:
        """Compare everything except the timestamp."""
        return (self.type, self.status, self.reason, self.message) == (
            other.type,
            other.status,
            other.reason,
            other.message,
        )


class UserConfigStatus(BaseModel):
    """Observed state of a UserConfig."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    state: State | None = None
    last_updated: str | None = Field(None, alias="lastUpdated")
    conditions: list[Condition] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the status subresource."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ObjectMeta(BaseModel):
    """The subset of object metadata the engine reads."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    uid: str = ""
    resource_version: str | None = Field(None, alias="resourceVersion")
    generation: int | None = None
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = Field(None, alias="deletionTimestamp")
    labels: dict[str, str] = Field(default_factory=dict)


class UserConfig(BaseModel):
    """A UserConfig object as returned by the API server."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field("", alias="apiVersion")
    kind: str = "UserConfig"
    metadata: ObjectMeta
    spec: UserConfigSpec
    status: UserConfigStatus = Field(default_factory=UserConfigStatus)

    @property
    def name(self) -> str:
        """Entity name; also the name of its namespace."""
        return self.metadata.name

    @property
    def is_being_deleted(self) -> bool:
        """True once the API server has accepted a delete request."""
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        """Check whether the cleanup flag is persisted on the entity."""
        return finalizer in self.metadata.finalizers
