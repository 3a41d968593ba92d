"""Network isolation rule composition.

The composer merges every traffic-allow declaration of a UserConfig into a
single namespace-wide NetworkPolicy:

- No declarations: both rule lists are empty, which together with both
  policy types enforced means default-deny in both directions.
- Each declaration contributes at most one ingress clause (allowTrafficFrom)
  and at most one egress clause (allowTrafficTo).
- Pod selectors and namespace selectors become separate peers, so traffic
  matching either is allowed (additive peer semantics).
- Ports default to TCP.
- Both lists are always present in the output. An omitted list means
  allow-all on some platforms; an explicit empty list means deny-all.

The output preserves declaration order, but the resulting access decision
is the union of all declarations and does not depend on that order.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .models import NetworkPolicyPeer, NetworkRule, Protocol

logger = logging.getLogger(__name__)

POLICY_TYPES = ("Ingress", "Egress")
DEFAULT_PROTOCOL = Protocol.TCP.value


def _peers(descriptor: NetworkPolicyPeer) -> list[dict[str, Any]]:
    peers: list[dict[str, Any]] = [
        {"podSelector": {"matchLabels": dict(labels)}} for labels in descriptor.pods
    ]
    peers.extend(
        {"namespaceSelector": {"matchLabels": dict(labels)}} for labels in descriptor.namespaces
    )
    return peers


def _ports(descriptor: NetworkPolicyPeer) -> list[dict[str, Any]]:
    return [
        {
            "port": port.port,
            "protocol": port.protocol.value if port.protocol else DEFAULT_PROTOCOL,
        }
        for port in descriptor.ports
    ]


def _clause(descriptor: NetworkPolicyPeer, peer_key: str, index: int) -> dict[str, Any] | None:
    if descriptor.is_empty:
        # An empty clause would allow everything in that direction
        logger.warning(
            "Skipping network rule peer with no selectors and no ports",
            extra={"index": index, "direction": peer_key},
        )
        return None

    clause: dict[str, Any] = {}
    peers = _peers(descriptor)
    if peers:
        clause[peer_key] = peers
    ports = _ports(descriptor)
    if ports:
        clause["ports"] = ports
    return clause


def compose(rules: list[NetworkRule]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Merge traffic-allow declarations into ingress and egress rule lists.

    Args:
        rules: Declarations from the UserConfig spec.

    Returns:
        Tuple of (ingress, egress) NetworkPolicy rules. Both are always lists.
    """
    ingress: list[dict[str, Any]] = []
    egress: list[dict[str, Any]] = []

    for index, rule in enumerate(rules):
        if rule.allow_traffic_from is not None:
            clause = _clause(rule.allow_traffic_from, "from", index)
            if clause is not None:
                ingress.append(clause)
        if rule.allow_traffic_to is not None:
            clause = _clause(rule.allow_traffic_to, "to", index)
            if clause is not None:
                egress.append(clause)

    return ingress, egress


def build_policy_spec(rules: list[NetworkRule]) -> dict[str, Any]:
    """Build the full NetworkPolicy spec selecting every pod in the namespace."""
    ingress, egress = compose(rules)
    return {
        "podSelector": {},
        "policyTypes": list(POLICY_TYPES),
        "ingress": ingress,
        "egress": egress,
    }


def normalize_policy_spec(spec: dict[str, Any] | None) -> dict[str, Any]:
    """Fill the fields the API server drops when empty.

    A stored policy with deny-all ingress comes back without the
    ``ingress`` key; treat that the same as an empty list.
    """
    normalized = dict(spec or {})
    normalized.setdefault("podSelector", {})
    normalized["ingress"] = normalized.get("ingress") or []
    normalized["egress"] = normalized.get("egress") or []
    return normalized


def access_signature(rules: list[dict[str, Any]]) -> frozenset[str]:
    """Order-independent fingerprint of a rule list."""
    return frozenset(json.dumps(rule, sort_keys=True) for rule in rules)
