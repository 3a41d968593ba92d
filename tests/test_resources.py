"""Tests for derived-object synthesis."""

import base64

from k8s_mock import user_config_manifest

from userconfig_operator.config import OperatorConfig
from userconfig_operator.models import UserConfig
from userconfig_operator.resources import (
    MERGES,
    kubeconfig_secret_name,
    owner_reference,
    render_all,
    render_kubeconfig_secret,
    render_role,
    render_role_binding,
    render_sealed_secrets,
    render_service_accounts,
    unrecognized_resources,
)


def make_uc(**spec) -> UserConfig:
    manifest = user_config_manifest("alice", **spec)
    manifest["metadata"]["uid"] = "uid-alice"
    return UserConfig.model_validate(manifest)


class TestOwnership:
    """Tests for labels and owner references."""

    def test_owner_reference(self, config: OperatorConfig) -> None:
        assert owner_reference(make_uc(), config) == {
            "apiVersion": "myoperator.01cloud.io/v1alpha1",
            "kind": "UserConfig",
            "name": "alice",
            "uid": "uid-alice",
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def test_every_object_is_owned_and_labelled(self, config: OperatorConfig) -> None:
        for obj in render_all(make_uc(), config):
            meta = obj["metadata"]
            assert meta["labels"]["app.kubernetes.io/managed-by"] == "userconfig-operator"
            assert meta["labels"]["userconfig.myoperator.01cloud.io/name"] == "alice"
            assert meta["ownerReferences"][0]["uid"] == "uid-alice"
            if obj["kind"] != "Namespace":
                assert meta["namespace"] == "alice"

    def test_render_all_order(self, config: OperatorConfig) -> None:
        kinds = [obj["kind"] for obj in render_all(make_uc(), config)]

        assert kinds == [
            "Namespace",
            "ResourceQuota",
            "Role",
            "ServiceAccount",
            "RoleBinding",
            "LimitRange",
            "NetworkPolicy",
        ]

    def test_every_kind_has_a_merge_strategy(self, config: OperatorConfig) -> None:
        for obj in render_all(make_uc(), config):
            assert obj["kind"] in MERGES
        assert "Secret" in MERGES
        assert "SealedSecret" in MERGES


class TestRbac:
    """Tests for Role, ServiceAccount and RoleBinding synthesis."""

    def test_role_rules_follow_grants(self, config: OperatorConfig) -> None:
        uc = make_uc(
            permissions={
                "resources": [
                    {"resource": "deployment", "operation": "RU"},
                    {"resource": "logs", "operation": "R"},
                ]
            }
        )

        role = render_role(uc, config)

        assert role["rules"] == [
            {
                "apiGroups": ["apps"],
                "resources": ["deployments"],
                "verbs": ["get", "list", "patch", "update", "watch"],
            },
            {"apiGroups": [""], "resources": ["pods/log"], "verbs": ["get", "list", "watch"]},
        ]

    def test_role_without_grants_has_no_rules_key(self, config: OperatorConfig) -> None:
        assert "rules" not in render_role(make_uc(), config)

    def test_wildcard_resource_is_omitted(self, config: OperatorConfig) -> None:
        uc = make_uc(permissions={"resources": [{"resource": "*", "operation": "*"}]})

        assert "rules" not in render_role(uc, config)

    def test_unknown_resource_uses_fallback_group(self) -> None:
        config = OperatorConfig(fallback_api_group="example.com")
        uc = make_uc(permissions={"resources": [{"resource": "widgets", "operation": "R"}]})

        role = render_role(uc, config)

        assert role["rules"][0]["apiGroups"] == ["example.com"]
        assert unrecognized_resources(uc) == ["widgets"]

    def test_role_binding_subjects(self, config: OperatorConfig) -> None:
        uc = make_uc()
        uc.spec.identity.username = "alice@example.com"

        binding = render_role_binding(uc, config)

        assert binding["subjects"] == [
            {"kind": "User", "apiGroup": "rbac.authorization.k8s.io", "name": "alice@example.com"},
            {"kind": "ServiceAccount", "name": "alice", "namespace": "alice"},
        ]
        assert binding["roleRef"] == {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "Role",
            "name": "alice",
        }

    def test_service_accounts(self, config: OperatorConfig) -> None:
        uc = make_uc(
            serviceAccounts=[
                {"name": "alice", "imagePullSecrets": ["regcred", "regcred"]},
                {"name": "ci", "imagePullSecrets": ["ci-pull"]},
            ]
        )

        primary, extra = render_service_accounts(uc, config)

        assert primary["metadata"]["name"] == "alice"
        assert primary["imagePullSecrets"] == [{"name": "regcred"}]
        assert extra["metadata"]["name"] == "ci"
        assert extra["imagePullSecrets"] == [{"name": "ci-pull"}]

    def test_primary_service_account_always_exists(self, config: OperatorConfig) -> None:
        (primary,) = render_service_accounts(make_uc(), config)

        assert primary["metadata"]["name"] == "alice"
        assert "imagePullSecrets" not in primary


class TestSecrets:
    """Tests for SealedSecret envelopes and the kubeconfig Secret."""

    def test_sealed_secret_envelope(self, config: OperatorConfig) -> None:
        uc = make_uc(
            secrets=[
                {"name": "db", "type": "sealed", "sealedSecret": {"encryptedData": {"pw": "AgB"}}},
                {"name": "vault", "type": "external", "externalSecret": {"provider": "vault"}},
                {"name": "empty", "type": "sealed"},
            ]
        )

        (envelope,) = render_sealed_secrets(uc, config)

        assert envelope["apiVersion"] == "bitnami.com/v1alpha1"
        assert envelope["kind"] == "SealedSecret"
        assert envelope["metadata"]["name"] == "db"
        assert envelope["spec"] == {
            "encryptedData": {"pw": "AgB"},
            "template": {"metadata": {"name": "db", "namespace": "alice"}, "type": "Opaque"},
        }

    def test_kubeconfig_secret(self, config: OperatorConfig) -> None:
        uc = make_uc()

        secret = render_kubeconfig_secret(uc, config, "apiVersion: v1\n")

        assert secret["metadata"]["name"] == kubeconfig_secret_name(uc) == "alice-kubeconfig"
        assert secret["type"] == "Opaque"
        assert base64.b64decode(secret["data"]["kubeconfig"]) == b"apiVersion: v1\n"
