"""Tests for create-or-update convergence."""

from k8s_mock import FakeCluster

from userconfig_operator.cluster import AlreadyExistsError, ConflictError, NotFoundError
from userconfig_operator.converge import (
    Outcome,
    ensure,
    merge_metadata,
    metadata_only,
    replace_fields,
    replace_spec_unless,
)


def namespace(name: str = "alice", labels: dict | None = None) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": name, "labels": labels or {"owner": "alice"}},
    }


def role(rules: list) -> dict:
    body = {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "Role",
        "metadata": {"name": "alice", "namespace": "alice"},
    }
    if rules:
        body["rules"] = rules
    return body


POD_RULE = {"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}


class TestMergeMetadata:
    """Tests for label and owner reference merging."""

    def test_foreign_labels_are_kept(self) -> None:
        existing = namespace(labels={"team": "web"})

        merged = merge_metadata(existing, namespace(labels={"owner": "alice"}))

        assert merged["metadata"]["labels"] == {"team": "web", "owner": "alice"}
        assert existing["metadata"]["labels"] == {"team": "web"}

    def test_owner_references_deduplicated_by_uid(self) -> None:
        owner = {"uid": "u-1", "name": "alice"}
        existing = namespace()
        existing["metadata"]["ownerReferences"] = [owner]
        desired = namespace()
        desired["metadata"]["ownerReferences"] = [owner]

        merged = merge_metadata(existing, desired)

        assert merged["metadata"]["ownerReferences"] == [owner]


class TestMergeStrategies:
    """Tests for field ownership."""

    def test_replace_fields_removes_field_absent_from_desired(self) -> None:
        existing = role([POD_RULE])

        merged = replace_fields("rules")(existing, role([]))

        assert "rules" not in merged

    def test_replace_spec_unless_equal(self) -> None:
        merge = replace_spec_unless(lambda a, b: (a or {}).get("x") == (b or {}).get("x"))
        existing = {"metadata": {"name": "n"}, "spec": {"x": 1, "server_default": True}}

        unchanged = merge(existing, {"metadata": {"name": "n"}, "spec": {"x": 1}})
        changed = merge(existing, {"metadata": {"name": "n"}, "spec": {"x": 2}})

        assert unchanged == existing
        assert changed["spec"] == {"x": 2}


class TestEnsure:
    """Tests for read-first convergence against the fake cluster."""

    def test_creates_missing_object(self) -> None:
        cluster = FakeCluster()

        outcome = ensure(cluster, "Namespace", namespace(), metadata_only)

        assert outcome == Outcome.CREATED
        assert cluster.get("Namespace", "alice")["metadata"]["labels"] == {"owner": "alice"}

    def test_converged_object_costs_one_read(self) -> None:
        """Test that a second pass issues no write."""
        cluster = FakeCluster()
        ensure(cluster, "Namespace", namespace(), metadata_only)
        cluster.reset_writes()

        outcome = ensure(cluster, "Namespace", namespace(), metadata_only)

        assert outcome == Outcome.UNCHANGED
        assert cluster.writes == []
        assert cluster.reads == 1

    def test_updates_drifted_object(self) -> None:
        cluster = FakeCluster()
        cluster.put("Namespace", namespace())
        ensure(cluster, "Role", role([POD_RULE]), replace_fields("rules"))

        new_rule = dict(POD_RULE, verbs=["get", "list"])
        outcome = ensure(cluster, "Role", role([new_rule]), replace_fields("rules"))

        assert outcome == Outcome.UPDATED
        assert cluster.get("Role", "alice", "alice")["rules"] == [new_rule]

    def test_create_race_falls_back_to_update(self) -> None:
        cluster = FakeCluster()
        cluster.put("Namespace", namespace(labels={"team": "web"}))
        # The object appears between our read and our create
        cluster.fail_next("get", "Namespace", NotFoundError("not found", status=404))
        cluster.fail_next(
            "create",
            "Namespace",
            AlreadyExistsError("exists", status=409, reason="AlreadyExists"),
        )

        outcome = ensure(cluster, "Namespace", namespace(), metadata_only)

        assert outcome == Outcome.UPDATED
        assert cluster.get("Namespace", "alice")["metadata"]["labels"] == {
            "team": "web",
            "owner": "alice",
        }

    def test_conflict_is_retried_once(self) -> None:
        cluster = FakeCluster()
        cluster.put("Namespace", namespace(labels={"team": "web"}))
        cluster.fail_next("replace", "Namespace", ConflictError("modified", status=409))

        outcome = ensure(cluster, "Namespace", namespace(), metadata_only)

        assert outcome == Outcome.UPDATED
        assert len(cluster.writes_of("Namespace")) == 1
