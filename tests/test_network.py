"""Tests for network isolation rule composition."""

import itertools

from userconfig_operator.models import NetworkRule
from userconfig_operator.network import (
    access_signature,
    build_policy_spec,
    compose,
    normalize_policy_spec,
)


def rules(*raw: dict) -> list[NetworkRule]:
    return [NetworkRule.model_validate(r) for r in raw]


class TestCompose:
    """Tests for merging traffic-allow declarations."""

    def test_no_rules_is_default_deny(self) -> None:
        """Test that no declarations produce empty lists in both directions."""
        spec = build_policy_spec([])

        assert spec == {
            "podSelector": {},
            "policyTypes": ["Ingress", "Egress"],
            "ingress": [],
            "egress": [],
        }

    def test_ingress_from_pods_and_namespaces(self) -> None:
        """Test that pod and namespace selectors become separate peers."""
        ingress, egress = compose(
            rules(
                {
                    "allowTrafficFrom": {
                        "pods": [{"app": "frontend"}],
                        "namespaces": [{"team": "web"}],
                        "ports": [{"port": 8080}],
                    }
                }
            )
        )

        assert ingress == [
            {
                "from": [
                    {"podSelector": {"matchLabels": {"app": "frontend"}}},
                    {"namespaceSelector": {"matchLabels": {"team": "web"}}},
                ],
                "ports": [{"port": 8080, "protocol": "TCP"}],
            }
        ]
        assert egress == []

    def test_egress_keeps_explicit_protocol(self) -> None:
        _, egress = compose(
            rules(
                {
                    "allowTrafficTo": {
                        "namespaces": [{"name": "dns"}],
                        "ports": [{"port": 53, "protocol": "UDP"}],
                    }
                }
            )
        )

        assert egress == [
            {
                "to": [{"namespaceSelector": {"matchLabels": {"name": "dns"}}}],
                "ports": [{"port": 53, "protocol": "UDP"}],
            }
        ]

    def test_one_rule_contributes_both_directions(self) -> None:
        ingress, egress = compose(
            rules(
                {
                    "allowTrafficFrom": {"pods": [{"app": "a"}]},
                    "allowTrafficTo": {"pods": [{"app": "b"}]},
                }
            )
        )

        assert len(ingress) == 1
        assert len(egress) == 1

    def test_ports_only_clause_has_no_peers(self) -> None:
        ingress, _ = compose(rules({"allowTrafficFrom": {"ports": [{"port": 443}]}}))

        assert ingress == [{"ports": [{"port": 443, "protocol": "TCP"}]}]

    def test_empty_descriptor_is_skipped(self) -> None:
        """Test that an empty descriptor never becomes an allow-all clause."""
        ingress, egress = compose(rules({"allowTrafficFrom": {}, "allowTrafficTo": {}}))

        assert ingress == []
        assert egress == []

    def test_declaration_order_does_not_change_access(self) -> None:
        """Test that every permutation grants the same set of peers."""
        declared = rules(
            {"allowTrafficFrom": {"pods": [{"app": "a"}]}},
            {"allowTrafficFrom": {"namespaces": [{"team": "b"}], "ports": [{"port": 80}]}},
            {"allowTrafficTo": {"pods": [{"app": "c"}]}},
        )
        expected_in, expected_out = compose(declared)

        for permutation in itertools.permutations(declared):
            ingress, egress = compose(list(permutation))
            assert access_signature(ingress) == access_signature(expected_in)
            assert access_signature(egress) == access_signature(expected_out)


class TestNormalizePolicySpec:
    """Tests for comparing stored and desired policies."""

    def test_missing_lists_equal_empty_lists(self) -> None:
        stored = {"podSelector": {}, "policyTypes": ["Ingress", "Egress"]}

        assert normalize_policy_spec(stored) == normalize_policy_spec(build_policy_spec([]))

    def test_none_spec(self) -> None:
        assert normalize_policy_spec(None) == {"podSelector": {}, "ingress": [], "egress": []}
