"""Renderable graph of a user journey's orchestration steps."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from .constants import ROOT_ELEMENT
from .entities import OrchestrationStep, PolicyEntities, export
from .errors import GraphBuildError
from .extractor import attr, claim_references, orchestration_steps
from .framework import child_elements

LOGGER = logging.getLogger(__name__)

EDGE_PLAIN = "plain"
EDGE_CONDITION = "condition-edge"


class NodeType(str, enum.Enum):
    GROUP = "Group"
    CONDITIONED = "Conditioned"
    START = "Start"
    END = "End"
    COMMENT = "Comment"
    COMBINED_SIGN_IN_AND_SIGN_UP = "CombinedSignInAndSignUp"
    CLAIMS_EXCHANGE = "ClaimsExchangeNode"
    GET_CLAIMS = "GetClaimsNode"
    DEFAULT = "default"


@dataclass
class PolicyNode:
    id: str
    type: NodeType
    data: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "type": self.type.value, "data": export(self.data)}
        if self.parent_id is not None:
            payload["parentId"] = self.parent_id
        return payload


@dataclass
class PolicyEdge:
    id: str
    source: str
    target: str
    type: str = EDGE_PLAIN
    source_handle: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type,
        }
        if self.source_handle is not None:
            payload["sourceHandle"] = self.source_handle
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass
class PolicyGraph:
    nodes: list[PolicyNode] = field(default_factory=list)
    edges: list[PolicyEdge] = field(default_factory=list)

    def node(self, node_id: str) -> PolicyNode | None:
        return next((node for node in self.nodes if node.id == node_id), None)

    def edges_from(self, node_id: str) -> list[PolicyEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def edges_to(self, node_id: str) -> list[PolicyEdge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def add_node(self, node: PolicyNode) -> PolicyNode:
        if any(existing.id == node.id for existing in self.nodes):
            node.id = f"{node.id}-{len(self.nodes)}"
        self.nodes.append(node)
        return node

    def add_edge(self, edge: PolicyEdge) -> PolicyEdge:
        for existing in self.edges:
            if existing.id == edge.id:
                return existing
        self.edges.append(edge)
        return edge

    def connect(self, source: str, target: str, handle: str | None = None) -> PolicyEdge:
        if handle is None:
            return self.add_edge(PolicyEdge(f"{source}->{target}", source, target))
        return self.add_edge(
            PolicyEdge(
                f"{source}:{handle}->{target}",
                source,
                target,
                type=EDGE_CONDITION,
                source_handle=handle,
                data={"label": handle},
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


# An open exit: a node id and, for a precondition skip branch, its handle.
Exit = tuple[str, "str | None"]


class PolicyGraphBuilder:
    """Builds one graph per user journey from a merged policy tree.

    Technical profiles referenced by steps are resolved through ``entities``
    (the consolidated version when present).
    """

    def __init__(self, policy: dict[str, Any], entities: PolicyEntities | None = None) -> None:
        self.root = policy.get(ROOT_ELEMENT, {}) if isinstance(policy, dict) else {}
        self.entities = entities or PolicyEntities()
        self.warnings: list[str] = []
        self._sub_journeys = {
            attr(node, "Id"): node
            for node in child_elements(self.root, "SubJourneys", "SubJourney")
            if attr(node, "Id")
        }
        relying_party = child_elements(self.root, "RelyingParty", "TechnicalProfile")
        self._relying_party_input_claims = (
            claim_references(relying_party[0], "InputClaims", "InputClaim") if relying_party else []
        )

    def journey_ids(self) -> list[str]:
        return [
            journey_id
            for journey_id in (attr(node, "Id") for node in child_elements(self.root, "UserJourneys", "UserJourney"))
            if journey_id
        ]

    def default_journey_id(self) -> str | None:
        for node in child_elements(self.root, "RelyingParty", "DefaultUserJourney"):
            reference = attr(node, "ReferenceId")
            if reference:
                return reference
        return None

    def build_all(self, main_journey: str | None = None) -> tuple[PolicyGraph, dict[str, PolicyGraph]]:
        """Return the main graph and a graph per user journey id."""
        journeys = [
            node for node in child_elements(self.root, "UserJourneys", "UserJourney") if attr(node, "Id")
        ]
        if not journeys:
            raise GraphBuildError("No UserJourneys found in the policy")

        subgraphs = {attr(node, "Id"): self.build_journey(node) for node in journeys}
        for candidate in (main_journey, self.default_journey_id()):
            if candidate and candidate in subgraphs:
                return subgraphs[candidate], subgraphs
            if candidate:
                self.warnings.append(f"UserJourney '{candidate}' not found; using the last journey")
        return subgraphs[attr(journeys[-1], "Id")], subgraphs

    def build_journey(self, journey: dict[str, Any]) -> PolicyGraph:
        graph = PolicyGraph()
        self._build_steps(graph, orchestration_steps(journey), parent_id=None)
        LOGGER.debug(
            "built graph for %s: %d nodes, %d edges", attr(journey, "Id"), len(graph.nodes), len(graph.edges)
        )
        return graph

    def _build_steps(self, graph: PolicyGraph, steps: list[OrchestrationStep], parent_id: str | None) -> None:
        prefix = parent_id or "root"
        start = graph.add_node(PolicyNode(f"{prefix}-start", NodeType.START, {"label": "Start"}, parent_id))
        exits: list[Exit] = [(start.id, None)]

        for step in steps:
            entry, exit_id = self._step_nodes(graph, step, parent_id)
            if entry is None:
                continue
            skip: Exit | None = None
            if step.preconditions:
                condition = self._precondition_node(graph, step, entry, parent_id)
                self._connect_exits(graph, exits, condition.id)
                gate = "true" if step.preconditions[0].execute_actions_if else "false"
                graph.connect(condition.id, entry, gate)
                skip = (condition.id, "false" if gate == "true" else "true")
            else:
                self._connect_exits(graph, exits, entry)
            exits = [(exit_id, None)]
            if skip is not None:
                exits.append(skip)

        end = graph.add_node(PolicyNode(f"{prefix}-end", NodeType.END, {"label": "End"}, parent_id))
        self._connect_exits(graph, exits, end.id)

    def _connect_exits(self, graph: PolicyGraph, exits: list[Exit], target: str) -> None:
        for source, handle in exits:
            graph.connect(source, target, handle)

    def _precondition_node(
        self, graph: PolicyGraph, step: OrchestrationStep, step_node_id: str, parent_id: str | None
    ) -> PolicyNode:
        first = step.preconditions[0]
        return graph.add_node(
            PolicyNode(
                f"{step_node_id}-Precondition",
                NodeType.CONDITIONED,
                {
                    "label": " and ".join(_precondition_label(item.type, item.values) for item in step.preconditions),
                    "stepOrder": step.order,
                    "executeActionsIf": first.execute_actions_if,
                    "action": first.action,
                    "preconditions": [item.to_dict() for item in step.preconditions],
                },
                parent_id,
            )
        )

    def _step_nodes(
        self, graph: PolicyGraph, step: OrchestrationStep, parent_id: str | None
    ) -> tuple[str | None, str]:
        """Add the node(s) for ``step``; return its entry and exit node ids."""
        if step.type == "InvokeSubJourney":
            group = self._sub_journey_group(graph, step, parent_id)
            return group.id, group.id

        step_id = f"{parent_id}-Step{step.order}" if parent_id else f"Step{step.order}"
        node_type, data = self._step_data(step)
        node = graph.add_node(PolicyNode(step_id, node_type, data, parent_id))
        return node.id, node.id

    def _sub_journey_group(self, graph: PolicyGraph, step: OrchestrationStep, parent_id: str | None) -> PolicyNode:
        sub_journey_id = step.sub_journey_references[0] if step.sub_journey_references else None
        if not sub_journey_id:
            self.warnings.append(f"InvokeSubJourney step {step.order} has no SubJourneyReferenceId")
            sub_journey_id = f"SubJourney{step.order}"
        node = self._sub_journeys.get(sub_journey_id)
        group = graph.add_node(
            PolicyNode(
                sub_journey_id,
                NodeType.GROUP,
                {
                    "label": sub_journey_id,
                    "stepOrder": step.order,
                    "journeyType": attr(node, "Type"),
                    "orchestrationStep": step.to_dict(),
                },
                parent_id,
            )
        )
        if node is None:
            self.warnings.append(f"SubJourney with ID '{sub_journey_id}' not found.")
            group.data["missing"] = True
            return group
        self._build_steps(graph, orchestration_steps(node), parent_id=group.id)
        return group

    def _step_data(self, step: OrchestrationStep) -> tuple[NodeType, dict[str, Any]]:
        references = [
            exchange.technical_profile_reference_id
            for exchange in step.claims_exchanges
            if exchange.technical_profile_reference_id
        ]
        if step.cpim_issuer_technical_profile_reference_id:
            references.append(step.cpim_issuer_technical_profile_reference_id)
        profiles = []
        for reference in references:
            profile = self.entities.effective("technicalProfiles", reference)
            if profile is None:
                LOGGER.debug("TechnicalProfile not found: %s", reference)
            else:
                profiles.append(profile)

        data: dict[str, Any] = {
            "label": step.type or "Step",
            "stepOrder": step.order,
            "stepType": step.type,
            "orchestrationStep": step.to_dict(),
            "technicalProfiles": [profile.to_dict() for profile in profiles],
        }
        exchange_ids = [exchange.id for exchange in step.claims_exchanges if exchange.id]
        if exchange_ids:
            data["claimsExchanges"] = exchange_ids

        if step.type == "CombinedSignInAndSignUp":
            data["label"] = "Sign in / Sign up"
            return NodeType.COMBINED_SIGN_IN_AND_SIGN_UP, data

        if step.type == "GetClaims":
            data["label"] = profiles[0].display_name if profiles and profiles[0].display_name else "GetClaims"
            if self._relying_party_input_claims:
                data["relyingPartyInputClaims"] = [claim.to_dict() for claim in self._relying_party_input_claims]
            return NodeType.GET_CLAIMS, data

        if step.type == "ClaimsExchange":
            if len(exchange_ids) == 1:
                data["label"] = exchange_ids[0]
            elif exchange_ids:
                data["label"] = "Claims Exchange"
            protocol_less = (
                bool(references)
                and len(profiles) == len(references)
                and all(profile.is_protocol_less for profile in profiles)
            )
            if protocol_less:
                return NodeType.GET_CLAIMS, data
            return NodeType.CLAIMS_EXCHANGE, data

        return NodeType.DEFAULT, data


def _precondition_label(kind: str, values: list[str]) -> str:
    if kind == "ClaimsExist" and values:
        return f"`{values[0]}` has value"
    if kind == "ClaimEquals" and len(values) >= 2:
        return f"`{values[0]}` is `{values[1]}`"
    return kind
