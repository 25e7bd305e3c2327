"""Journey graphs built from the policy fixtures."""

from __future__ import annotations

import pytest

from b2c_policy_trace.errors import GraphBuildError
from b2c_policy_trace.graph import EDGE_CONDITION, EDGE_PLAIN, NodeType, PolicyGraph, PolicyGraphBuilder, PolicyNode
from b2c_policy_trace.processor import PolicyFile, PolicyProcessor
from b2c_policy_trace.xml_parser import XmlParserService
from tests.conftest import load_fixture, policy_file, policy_xml


def _builder(name: str) -> PolicyGraphBuilder:
    return PolicyGraphBuilder(XmlParserService().parse(load_fixture(name)))


def _graph(name: str) -> PolicyGraph:
    graph, _ = _builder(name).build_all()
    return graph


def _edge_ids(graph: PolicyGraph) -> set[str]:
    return {edge.id for edge in graph.edges}


class TestSimpleJourney:
    def test_node_and_edge_counts(self):
        graph = _graph("simple_user_journey.xml")
        assert len(graph.nodes) == 5
        assert len(graph.edges) == 4

    def test_linear_edges(self):
        graph = _graph("simple_user_journey.xml")
        assert _edge_ids(graph) == {
            "root-start->Step1",
            "Step1->Step2",
            "Step2->Step3",
            "Step3->root-end",
        }
        assert all(edge.type == EDGE_PLAIN for edge in graph.edges)

    def test_node_types_and_labels(self):
        graph = _graph("simple_user_journey.xml")
        assert graph.node("root-start").type == NodeType.START
        assert graph.node("root-end").type == NodeType.END
        step1 = graph.node("Step1")
        assert step1.type == NodeType.COMBINED_SIGN_IN_AND_SIGN_UP
        assert step1.data["label"] == "Sign in / Sign up"
        step2 = graph.node("Step2")
        assert step2.type == NodeType.CLAIMS_EXCHANGE
        assert step2.data["label"] == "AADUserReadWithObjectId"
        assert graph.node("Step3").type == NodeType.DEFAULT

    def test_technical_profiles_resolved_from_entities(self):
        response = PolicyProcessor().process_files([policy_file("simple_user_journey.xml")])
        step2 = response.graph.node("Step2")
        assert [profile["id"] for profile in step2.data["technicalProfiles"]] == ["AAD-UserReadUsingObjectId"]
        assert step2.data["technicalProfiles"][0]["providerName"] == "AzureActiveDirectoryProvider"


class TestSubJourney:
    def test_group_and_children(self):
        graph = _graph("subjourney.xml")
        assert [node.id for node in graph.nodes] == [
            "root-start",
            "Step1",
            "MFA",
            "MFA-start",
            "MFA-Step1",
            "MFA-end",
            "Step3",
            "root-end",
        ]
        group = graph.node("MFA")
        assert group.type == NodeType.GROUP
        assert group.parent_id is None
        children = [node.id for node in graph.nodes if node.parent_id == "MFA"]
        assert children == ["MFA-start", "MFA-Step1", "MFA-end"]
        assert len(graph.edges) == 6

    def test_group_is_a_single_step_in_the_parent_flow(self):
        graph = _graph("subjourney.xml")
        assert {"Step1->MFA", "MFA->Step3", "MFA-start->MFA-Step1", "MFA-Step1->MFA-end"} <= _edge_ids(graph)

    def test_missing_sub_journey_is_flagged(self):
        body = (
            "<UserJourneys><UserJourney Id=\"J\"><OrchestrationSteps>"
            '<OrchestrationStep Order="1" Type="InvokeSubJourney">'
            '<JourneyList><Candidate SubJourneyReferenceId="Nowhere" /></JourneyList>'
            "</OrchestrationStep>"
            "</OrchestrationSteps></UserJourney></UserJourneys>"
        )
        builder = PolicyGraphBuilder(XmlParserService().parse(policy_xml("B2C_1A_Missing", body)))
        graph, _ = builder.build_all()
        assert graph.node("Nowhere").data["missing"] is True
        assert "SubJourney with ID 'Nowhere' not found." in builder.warnings
        assert [node.id for node in graph.nodes] == ["root-start", "Nowhere", "root-end"]


class TestPreconditions:
    def test_counts(self):
        graph = _graph("preconditions.xml")
        assert len(graph.nodes) == 9
        assert len(graph.edges) == 10

    def test_one_precondition_node_with_two_branches(self):
        graph = _graph("preconditions.xml")
        condition = graph.node("Step4-Precondition")
        assert condition.type == NodeType.CONDITIONED
        assert len(condition.data["preconditions"]) == 3
        outgoing = graph.edges_from("Step4-Precondition")
        assert {(edge.source_handle, edge.target) for edge in outgoing} == {("true", "Step4"), ("false", "Step5")}
        assert all(edge.type == EDGE_CONDITION for edge in outgoing)
        assert [edge.source for edge in graph.edges_to("Step4-Precondition")] == ["Step3"]

    def test_precondition_label(self):
        graph = _graph("preconditions.xml")
        assert graph.node("Step2-Precondition").data["label"] == "`objectId` has value"
        assert graph.node("Step4-Precondition").data["label"].endswith("`userJourney` is `pwd`")

    def test_consecutive_skips_chain_through_conditions(self):
        graph = _graph("multiple_skips.xml")
        assert len(graph.nodes) == 8
        assert len(graph.edges) == 9
        assert _edge_ids(graph) >= {
            "root-start->Step1-Precondition",
            "Step1-Precondition:false->Step2-Precondition",
            "Step1->Step2-Precondition",
            "Step2-Precondition:false->Step3",
        }

    def test_condition_edge_carries_label(self):
        graph = _graph("multiple_skips.xml")
        edge = next(e for e in graph.edges if e.id == "Step1-Precondition:true->Step1")
        assert edge.to_dict() == {
            "id": "Step1-Precondition:true->Step1",
            "source": "Step1-Precondition",
            "target": "Step1",
            "type": EDGE_CONDITION,
            "sourceHandle": "true",
            "data": {"label": "true"},
        }


class TestGetClaims:
    def test_get_claims_step_uses_profile_display_name(self):
        response = PolicyProcessor().process_files([policy_file("get_claims.xml")])
        node = response.graph.node("Step2")
        assert node.type == NodeType.GET_CLAIMS
        assert node.data["label"] == "Collect Query Parameters"
        assert "relyingPartyInputClaims" not in node.data

    def test_relying_party_input_claims(self):
        response = PolicyProcessor().process_files([policy_file("get_claims_relying_party.xml")])
        node = response.graph.node("Step1")
        assert node.type == NodeType.GET_CLAIMS
        assert [
            (claim["claimTypeReferenceId"], claim["partnerClaimType"]) for claim in node.data["relyingPartyInputClaims"]
        ] == [("email", "userId"), ("displayName", "name")]

    def test_protocol_less_claims_exchange_is_get_claims_node(self):
        profiles = (
            "<ClaimsProviders><ClaimsProvider><DisplayName>Local</DisplayName><TechnicalProfiles>"
            '<TechnicalProfile Id="Local-Read"><Protocol Name="None" /></TechnicalProfile>'
            "</TechnicalProfiles></ClaimsProvider></ClaimsProviders>"
        )
        journey = (
            '<UserJourneys><UserJourney Id="J"><OrchestrationSteps>'
            '<OrchestrationStep Order="1" Type="ClaimsExchange"><ClaimsExchanges>'
            '<ClaimsExchange Id="ReadExchange" TechnicalProfileReferenceId="Local-Read" />'
            "</ClaimsExchanges></OrchestrationStep>"
            "</OrchestrationSteps></UserJourney></UserJourneys>"
        )
        response = PolicyProcessor().process_files(
            [PolicyFile("local.xml", policy_xml("B2C_1A_Local", profiles + journey))]
        )
        assert response.graph.node("Step1").type == NodeType.GET_CLAIMS


class TestGraphBasics:
    def test_no_journeys(self):
        builder = PolicyGraphBuilder(XmlParserService().parse(load_fixture("TrustFrameworkBase.xml")))
        with pytest.raises(GraphBuildError, match="No UserJourneys found"):
            builder.build_all()

    def test_unknown_main_journey_warns_and_falls_back(self):
        builder = _builder("simple_user_journey.xml")
        graph, subgraphs = builder.build_all("DoesNotExist")
        assert graph is subgraphs["SignIn"]
        assert builder.warnings == ["UserJourney 'DoesNotExist' not found; using the last journey"]

    def test_duplicate_node_ids_are_suffixed(self):
        graph = PolicyGraph()
        graph.add_node(PolicyNode("Step1", NodeType.DEFAULT))
        duplicate = graph.add_node(PolicyNode("Step1", NodeType.DEFAULT))
        assert duplicate.id == "Step1-1"

    def test_edges_are_not_duplicated(self):
        graph = PolicyGraph()
        graph.connect("a", "b")
        graph.connect("a", "b")
        assert len(graph.edges) == 1

    def test_to_dict_includes_parent_id_only_when_nested(self):
        payload = _graph("subjourney.xml").to_dict()
        nodes = {node["id"]: node for node in payload["nodes"]}
        assert "parentId" not in nodes["MFA"]
        assert nodes["MFA-Step1"]["parentId"] == "MFA"
        assert nodes["MFA"]["type"] == "Group"
