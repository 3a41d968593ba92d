"""In-memory Kubernetes API mock for reconciler tests.

Provides a fake cluster that speaks the same dictionary-in / dictionary-out
interface as ``ClusterClient``, so the reconciler can be exercised end to
end without an API server.

Key Features:
- Per-kind object store with uid and resourceVersion bookkeeping
- Optimistic concurrency (stale resourceVersion -> ConflictError)
- Namespace deletion cascades to namespaced objects
- Finalizer-aware UserConfig deletion
- Write log for asserting idempotence
- Error injection for failure scenarios

Usage:
    from k8s_mock import FakeCluster, user_config_manifest

    cluster = FakeCluster()
    cluster.add_user_config(user_config_manifest("alice"))
    result = Reconciler(config, cluster, lambda: cluster_info).reconcile("alice")

    assert cluster.get("Namespace", "alice")
"""

from .cluster import FakeCluster, Write
from .factories import user_config_manifest

__all__ = [
    "FakeCluster",
    "Write",
    "user_config_manifest",
]
