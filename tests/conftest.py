"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for k8s_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from k8s_mock import FakeCluster  # noqa: E402

from userconfig_operator.config import OperatorConfig  # noqa: E402
from userconfig_operator.credentials import ClusterInfo  # noqa: E402
from userconfig_operator.reconciler import Reconciler  # noqa: E402

CLUSTER_INFO = ClusterInfo(
    server="https://api.example.test:6443",
    ca_data="Y2EtZGF0YQ==",
    name="kubernetes",
)


@pytest.fixture
def config() -> OperatorConfig:
    """Operator configuration with defaults."""
    return OperatorConfig()


@pytest.fixture
def cluster() -> FakeCluster:
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def cluster_info() -> ClusterInfo:
    """Cluster entry written into issued kubeconfigs."""
    return CLUSTER_INFO


@pytest.fixture
def reconciler(
    config: OperatorConfig, cluster: FakeCluster, cluster_info: ClusterInfo
) -> Reconciler:
    """Reconciler wired to the fake cluster."""
    return Reconciler(config, cluster, lambda: cluster_info)
