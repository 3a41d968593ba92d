"""Create-or-update convergence of derived resources.

``ensure`` makes one object's live state match its desired state:

1. Read the object. If it is absent, create it. A create that collides
   with an object created in the meantime falls back to the read path.
2. Apply the engine-owned fields of the desired object onto a copy of the
   live object (``merge``). Everything else on the live object, such as
   labels or annotations added by other tooling, is left alone.
3. Write only when the merged object differs from the live one. A write
   rejected with a conflict is retried once against a fresh read.

An already-converged object therefore costs exactly one read.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from .cluster import AlreadyExistsError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

MergeFn = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]


class ClusterAPI(Protocol):
    """The slice of the cluster adapter used for convergence."""

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]: ...

    def create(self, kind: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def replace(self, kind: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None: ...


class Outcome(str, Enum):
    """What convergence did to one object."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# =============================================================================
# Merge helpers
# =============================================================================


def merge_metadata(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``existing`` with managed labels and owner references applied."""
    merged = copy.deepcopy(existing)
    meta = merged.setdefault("metadata", {})
    desired_meta = desired.get("metadata", {})

    desired_labels = desired_meta.get("labels") or {}
    if desired_labels:
        labels = dict(meta.get("labels") or {})
        labels.update(desired_labels)
        meta["labels"] = labels

    desired_owners = desired_meta.get("ownerReferences") or []
    if desired_owners:
        owners = list(meta.get("ownerReferences") or [])
        known = {owner.get("uid") for owner in owners}
        for owner in desired_owners:
            if owner.get("uid") not in known:
                owners.append(copy.deepcopy(owner))
        meta["ownerReferences"] = owners

    return merged


def replace_fields(*fields: str) -> MergeFn:
    """Merge that overwrites the named top-level fields wholesale."""

    def merge(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
        merged = merge_metadata(existing, desired)
        for name in fields:
            if name in desired:
                merged[name] = copy.deepcopy(desired[name])
            else:
                merged.pop(name, None)
        return merged

    return merge


def replace_spec_unless(equal: Callable[[Any, Any], bool]) -> MergeFn:
    """Merge that replaces ``spec`` only when ``equal`` reports a difference."""

    def merge(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
        merged = merge_metadata(existing, desired)
        if not equal(existing.get("spec"), desired.get("spec")):
            merged["spec"] = copy.deepcopy(desired["spec"])
        return merged

    return merge


metadata_only: MergeFn = replace_fields()


# =============================================================================
# Convergence
# =============================================================================


def _key(desired: dict[str, Any]) -> tuple[str, str | None]:
    meta = desired["metadata"]
    return meta["name"], meta.get("namespace")


def ensure(cluster: ClusterAPI, kind: str, desired: dict[str, Any], merge: MergeFn) -> Outcome:
    """Converge one object to its desired state.

    Args:
        cluster: Cluster adapter.
        kind: Derived kind (e.g. "Role").
        desired: Full desired object.
        merge: Applies the engine-owned fields of ``desired`` onto a live copy.

    Returns:
        Outcome describing the write issued, if any.

    Raises:
        ClusterAPIError: If the object cannot be read, created or updated.
    """
    name, namespace = _key(desired)

    try:
        existing = cluster.get(kind, name, namespace)
    except NotFoundError:
        try:
            cluster.create(kind, desired)
            logger.info(
                "Created", extra={"kind": kind, "object_name": name, "namespace": namespace}
            )
            return Outcome.CREATED
        except AlreadyExistsError:
            logger.debug(
                "Create raced with an existing object, updating instead",
                extra={"kind": kind, "object_name": name, "namespace": namespace},
            )
            existing = cluster.get(kind, name, namespace)

    try:
        return _update_if_changed(cluster, kind, existing, desired, merge)
    except ConflictError:
        logger.debug(
            "Update conflict, retrying against a fresh read",
            extra={"kind": kind, "object_name": name, "namespace": namespace},
        )
    existing = cluster.get(kind, name, namespace)
    return _update_if_changed(cluster, kind, existing, desired, merge)


def _update_if_changed(
    cluster: ClusterAPI,
    kind: str,
    existing: dict[str, Any],
    desired: dict[str, Any],
    merge: MergeFn,
) -> Outcome:
    merged = merge(existing, desired)
    if merged == existing:
        return Outcome.UNCHANGED
    cluster.replace(kind, merged)
    name, namespace = _key(desired)
    logger.info("Updated", extra={"kind": kind, "object_name": name, "namespace": namespace})
    return Outcome.UPDATED
