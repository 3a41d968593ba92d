"""Derived-credential issuance.

Every UserConfig gets a kubeconfig bound to its ServiceAccount. The token
comes from the TokenRequest API and is re-issued on every pass, so the
stored kubeconfig is always fresh; it is the one derived object that is
rewritten even when nothing else changed.

The cluster endpoint written into the kubeconfig is resolved in order:

1. Explicit configuration (``CLUSTER_SERVER`` / ``CLUSTER_CA_DATA``).
2. The kubeconfig file at ``KUBECONFIG_PATH``, falling back to ``$KUBECONFIG``.
3. The in-cluster service environment and the mounted CA bundle.
"""

from __future__ import annotations

import base64
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .cluster import ClusterAPIError, NotFoundError
from .config import OperatorConfig
from .converge import ClusterAPI, Outcome, ensure
from .models import UserConfig
from .resources import MERGES, namespace_name, render_kubeconfig_secret

logger = logging.getLogger(__name__)

IN_CLUSTER_SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class CredentialError(Exception):
    """Base class for credential issuance failures."""


class ClusterInfoError(CredentialError):
    """The cluster endpoint for issued kubeconfigs cannot be determined."""


class PreconditionNotMetError(CredentialError):
    """A dependency of the credential does not exist yet; retry later."""


@dataclass(frozen=True)
class ClusterInfo:
    """Cluster entry written into issued kubeconfigs.

    Attributes:
        server: API server URL.
        ca_data: Base64-encoded CA bundle, if any.
        name: Cluster entry name.
        insecure_skip_tls_verify: Mirrors the source kubeconfig setting.
    """

    server: str
    ca_data: str | None = None
    name: str = "kubernetes"
    insecure_skip_tls_verify: bool = False


# =============================================================================
# Cluster endpoint resolution
# =============================================================================


def _read_b64(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


def _kubeconfig_candidates(config: OperatorConfig, environ: Mapping[str, str]) -> list[Path]:
    candidates = [config.kubeconfig_path]
    env_value = environ.get("KUBECONFIG", "")
    candidates.extend(Path(p) for p in env_value.split(os.pathsep) if p)
    return candidates


def _from_kubeconfig(path: Path, name: str) -> ClusterInfo:
    """Resolve the current context's cluster from a kubeconfig file.

    Raises:
        ClusterInfoError: If the file is unreadable or has no usable cluster.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ClusterInfoError(f"Cannot read kubeconfig {path}: {e}") from e

    if not isinstance(data, dict):
        raise ClusterInfoError(f"Kubeconfig {path} is not a mapping")

    contexts = {c.get("name"): c.get("context") or {} for c in data.get("contexts") or []}
    clusters = {c.get("name"): c.get("cluster") or {} for c in data.get("clusters") or []}

    current = data.get("current-context")
    if current and current in contexts:
        cluster_name = contexts[current].get("cluster")
    elif len(clusters) == 1:
        cluster_name = next(iter(clusters))
    else:
        raise ClusterInfoError(f"Kubeconfig {path} has no usable current context")

    entry = clusters.get(cluster_name)
    if not entry or not entry.get("server"):
        raise ClusterInfoError(f"Kubeconfig {path} has no server for cluster {cluster_name}")

    ca_data = entry.get("certificate-authority-data")
    ca_file = entry.get("certificate-authority")
    if not ca_data and ca_file:
        ca_path = Path(ca_file)
        if not ca_path.is_absolute():
            ca_path = path.parent / ca_path
        try:
            ca_data = _read_b64(ca_path)
        except OSError as e:
            raise ClusterInfoError(f"Cannot read CA file {ca_path}: {e}") from e

    return ClusterInfo(
        server=entry["server"],
        ca_data=ca_data or None,
        name=name,
        insecure_skip_tls_verify=bool(entry.get("insecure-skip-tls-verify", False)),
    )


def _from_in_cluster(environ: Mapping[str, str], sa_dir: Path, name: str) -> ClusterInfo | None:
    host = environ.get("KUBERNETES_SERVICE_HOST")
    port = environ.get("KUBERNETES_SERVICE_PORT")
    if not host or not port:
        return None
    if ":" in host:
        host = f"[{host}]"

    ca_path = sa_dir / "ca.crt"
    ca_data = None
    if ca_path.is_file():
        try:
            ca_data = _read_b64(ca_path)
        except OSError as e:
            raise ClusterInfoError(f"Cannot read CA file {ca_path}: {e}") from e
    return ClusterInfo(server=f"https://{host}:{port}", ca_data=ca_data, name=name)


def load_cluster_info(
    config: OperatorConfig,
    environ: Mapping[str, str] | None = None,
    service_account_dir: Path = IN_CLUSTER_SERVICE_ACCOUNT_DIR,
) -> ClusterInfo:
    """Resolve the cluster entry for issued kubeconfigs.

    Args:
        config: Operator configuration.
        environ: Environment to read (defaults to ``os.environ``).
        service_account_dir: Mounted service account directory.

    Returns:
        ClusterInfo for the first source that yields an endpoint.

    Raises:
        ClusterInfoError: If no source yields an endpoint.
    """
    environ = os.environ if environ is None else environ

    if config.cluster_server:
        return ClusterInfo(
            server=config.cluster_server,
            ca_data=config.cluster_ca_data,
            name=config.cluster_name,
        )

    for path in _kubeconfig_candidates(config, environ):
        if path.is_file():
            logger.debug("Reading cluster endpoint from kubeconfig", extra={"path": str(path)})
            return _from_kubeconfig(path, config.cluster_name)

    info = _from_in_cluster(environ, service_account_dir, config.cluster_name)
    if info is not None:
        return info

    raise ClusterInfoError(
        "Cannot determine cluster endpoint: set CLUSTER_SERVER, mount a kubeconfig "
        f"at {config.kubeconfig_path}, or run in-cluster"
    )


# =============================================================================
# Kubeconfig
# =============================================================================


def context_name(name: str) -> str:
    return f"{name}-context"


def build_kubeconfig(info: ClusterInfo, name: str, namespace: str, token: str) -> str:
    """Serialize a single-context kubeconfig for one ServiceAccount token."""
    cluster: dict[str, Any] = {"server": info.server}
    if info.ca_data:
        cluster["certificate-authority-data"] = info.ca_data
    if info.insecure_skip_tls_verify:
        cluster["insecure-skip-tls-verify"] = True

    document = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": info.name, "cluster": cluster}],
        "contexts": [
            {
                "name": context_name(name),
                "context": {"cluster": info.name, "namespace": namespace, "user": name},
            }
        ],
        "current-context": context_name(name),
        "users": [{"name": name, "user": {"token": token}}],
        "preferences": {},
    }
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def issue_kubeconfig(
    cluster: ClusterAPI,
    uc: UserConfig,
    config: OperatorConfig,
    info: ClusterInfo,
) -> Outcome:
    """Request a fresh token and store the kubeconfig Secret.

    Args:
        cluster: Cluster adapter (needs ``create_service_account_token``).
        uc: The UserConfig being reconciled.
        config: Operator configuration.
        info: Cluster entry for the kubeconfig.

    Returns:
        Outcome of converging the kubeconfig Secret.

    Raises:
        PreconditionNotMetError: If the ServiceAccount does not exist yet.
        CredentialError: If the token or the Secret cannot be written.
    """
    namespace = namespace_name(uc)
    account = uc.name

    try:
        cluster.get("ServiceAccount", account, namespace)
        token = cluster.create_service_account_token(  # type: ignore[attr-defined]
            namespace, account, config.token_expiration_seconds
        )
    except NotFoundError as e:
        raise PreconditionNotMetError(
            f"ServiceAccount {namespace}/{account} does not exist yet"
        ) from e
    except ClusterAPIError as e:
        raise CredentialError(f"Token request for {namespace}/{account} failed: {e}") from e

    kubeconfig = build_kubeconfig(info, account, namespace, token)
    secret = render_kubeconfig_secret(uc, config, kubeconfig)
    try:
        outcome = ensure(cluster, "Secret", secret, MERGES["Secret"])
    except ClusterAPIError as e:
        raise CredentialError(f"Cannot store kubeconfig Secret: {e}") from e
    logger.info(
        "Issued kubeconfig",
        extra={
            "userconfig": uc.name,
            "secret": secret["metadata"]["name"],
            "expiration_seconds": config.token_expiration_seconds,
        },
    )
    return outcome
