"""Configuration management with validation.

Operator settings are read from environment variables once at startup and
validated immediately, so a misconfigured operator fails before it touches
the cluster.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Custom resource coordinates
DEFAULT_CRD_GROUP = "myoperator.01cloud.io"
DEFAULT_CRD_VERSION = "v1alpha1"
DEFAULT_CRD_PLURAL = "userconfigs"
USERCONFIG_KIND = "UserConfig"

# Ownership markers written on every derived object
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "userconfig-operator"

# API group used for resource aliases the translator does not recognize.
# Unknown names never get the "*" group.
DEFAULT_FALLBACK_API_GROUP = "apps"

# Derived credential lifetime with documented bounds
DEFAULT_TOKEN_EXPIRATION_SECONDS = 86400 * 365
MIN_TOKEN_EXPIRATION_SECONDS = 600
MAX_TOKEN_EXPIRATION_SECONDS = 2 * 86400 * 365

# Delivery loop timing
DEFAULT_RECONCILE_INTERVAL_SECONDS = 30
MIN_RECONCILE_INTERVAL_SECONDS = 5
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES_LIMIT = 64

# Status history kept on the entity (etcd object size constraint)
MAX_STATUS_CONDITIONS = 10

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max UserConfig manifest

DEFAULT_KUBECONFIG_PATH = Path("/config")
DEFAULT_CLUSTER_NAME = "kubernetes"

# Input validation patterns
VALID_GROUP_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)+$"
VALID_API_GROUP_PATTERN = r"^([a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*)?$"


@dataclass(frozen=True)
class OperatorConfig:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    # Custom resource coordinates
    crd_group: str = DEFAULT_CRD_GROUP
    crd_version: str = DEFAULT_CRD_VERSION
    crd_plural: str = DEFAULT_CRD_PLURAL

    # Permission translation
    fallback_api_group: str = DEFAULT_FALLBACK_API_GROUP

    # Derived credential
    token_expiration_seconds: int = DEFAULT_TOKEN_EXPIRATION_SECONDS
    kubeconfig_path: Path = DEFAULT_KUBECONFIG_PATH
    cluster_server: str | None = None
    cluster_ca_data: str | None = None
    cluster_name: str = DEFAULT_CLUSTER_NAME

    # Delivery loop
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Structured JSON logging to stdout
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not re.match(VALID_GROUP_PATTERN, self.crd_group):
            errors.append(f"CRD_GROUP must be a DNS subdomain: {self.crd_group}")
        if not self.crd_version:
            errors.append("CRD_VERSION is required")
        if not self.crd_plural:
            errors.append("CRD_PLURAL is required")

        if self.fallback_api_group == "*":
            errors.append("FALLBACK_API_GROUP must not be the wildcard group")
        elif not re.match(VALID_API_GROUP_PATTERN, self.fallback_api_group):
            errors.append(f"FALLBACK_API_GROUP is not a valid API group: {self.fallback_api_group}")

        if not (
            MIN_TOKEN_EXPIRATION_SECONDS
            <= self.token_expiration_seconds
            <= MAX_TOKEN_EXPIRATION_SECONDS
        ):
            errors.append(
                f"TOKEN_EXPIRATION_SECONDS must be between {MIN_TOKEN_EXPIRATION_SECONDS} "
                f"and {MAX_TOKEN_EXPIRATION_SECONDS}"
            )

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not 1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES_LIMIT:
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES_LIMIT}"
            )

        if self.cluster_ca_data and not self.cluster_server:
            errors.append("CLUSTER_CA_DATA requires CLUSTER_SERVER")

        if not self.cluster_name:
            errors.append("CLUSTER_NAME must not be empty")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def api_version(self) -> str:
        """apiVersion string of the UserConfig resource."""
        return f"{self.crd_group}/{self.crd_version}"

    @property
    def finalizer(self) -> str:
        """Finalizer guarding UserConfig removal until teardown completes."""
        return f"{self.crd_group}/finalizer"

    @property
    def name_label(self) -> str:
        """Label key carrying the owning UserConfig name."""
        return f"userconfig.{self.crd_group}/name"

    def managed_labels(self, name: str) -> dict[str, str]:
        """Labels the operator owns on every derived object."""
        return {MANAGED_BY_LABEL: MANAGED_BY_VALUE, self.name_label: name}

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            CRD_GROUP: API group of the UserConfig resource (default: myoperator.01cloud.io)
            CRD_VERSION: API version (default: v1alpha1)
            CRD_PLURAL: Resource plural (default: userconfigs)
            FALLBACK_API_GROUP: API group for unrecognized resource aliases (default: apps)
            TOKEN_EXPIRATION_SECONDS: Derived token lifetime (default: one year)
            KUBECONFIG_PATH: Kubeconfig read for the cluster endpoint (default: /config)
            CLUSTER_SERVER: Explicit API server URL written into issued kubeconfigs
            CLUSTER_CA_DATA: Base64 CA bundle matching CLUSTER_SERVER
            CLUSTER_NAME: Cluster entry name in issued kubeconfigs (default: kubernetes)
            RECONCILE_INTERVAL: Seconds between delivery passes (default: 30)
            MAX_CONCURRENT_RECONCILES: Parallel entities per pass (default: 4)
            ENABLE_AUDIT_LOGGING: Enable JSON logs (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            crd_group=os.environ.get("CRD_GROUP", DEFAULT_CRD_GROUP),
            crd_version=os.environ.get("CRD_VERSION", DEFAULT_CRD_VERSION),
            crd_plural=os.environ.get("CRD_PLURAL", DEFAULT_CRD_PLURAL),
            fallback_api_group=os.environ.get("FALLBACK_API_GROUP", DEFAULT_FALLBACK_API_GROUP),
            token_expiration_seconds=get_int(
                "TOKEN_EXPIRATION_SECONDS", DEFAULT_TOKEN_EXPIRATION_SECONDS
            ),
            kubeconfig_path=Path(
                os.environ.get("KUBECONFIG_PATH", str(DEFAULT_KUBECONFIG_PATH))
            ),
            cluster_server=os.environ.get("CLUSTER_SERVER") or None,
            cluster_ca_data=os.environ.get("CLUSTER_CA_DATA") or None,
            cluster_name=os.environ.get("CLUSTER_NAME", DEFAULT_CLUSTER_NAME),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
