from __future__ import annotations

import pytest

from b2c_policy_trace.constants import B2C_NAMESPACE, XML_DECLARATION
from b2c_policy_trace.errors import EmptyContentError, XmlParseError
from b2c_policy_trace.xml_parser import XmlParserService, to_xml_fragment
from tests.conftest import load_fixture


class TestParse:
    def test_empty_content_raises(self):
        with pytest.raises(EmptyContentError, match="XML content is empty"):
            XmlParserService().parse("   \n")

    def test_malformed_xml_raises(self):
        with pytest.raises(XmlParseError, match="Invalid XML"):
            XmlParserService().parse("<TrustFrameworkPolicy><UserJourneys>")

    def test_attributes_and_namespace_declarations(self):
        parsed = XmlParserService().parse(load_fixture("TrustFrameworkBase.xml"))
        root = parsed["TrustFrameworkPolicy"]
        assert root["@_xmlns"] == B2C_NAMESPACE
        assert root["@_PolicyId"] == "B2C_1A_TrustFrameworkBase"
        assert root["@_TenantId"] == "yourtenant.onmicrosoft.com"

    def test_text_only_elements_are_strings(self):
        parsed = XmlParserService().parse(load_fixture("TrustFrameworkBase.xml"))
        claim_types = parsed["TrustFrameworkPolicy"]["BuildingBlocks"]["ClaimsSchema"]["ClaimType"]
        assert [claim["@_Id"] for claim in claim_types] == ["objectId", "email", "displayName"]
        assert claim_types[1]["UserInputType"] == "TextBox"

    def test_text_with_attributes_uses_text_key(self):
        parsed = XmlParserService().parse('<Root><Item Key="Operation">Read</Item></Root>')
        assert parsed["Root"]["Item"] == {"@_Key": "Operation", "#text": "Read"}

    def test_prefixed_attributes_keep_prefix(self):
        parsed = XmlParserService().parse(
            '<Root xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xsi:type="Test" />'
        )
        assert parsed["Root"]["@_xsi:type"] == "Test"
        assert parsed["Root"]["@_xmlns:xsi"] == "http://www.w3.org/2001/XMLSchema-instance"


class TestNormalize:
    def test_single_repeatable_elements_become_lists(self):
        parsed = XmlParserService().parse(load_fixture("simple_user_journey.xml"))
        journeys = parsed["TrustFrameworkPolicy"]["UserJourneys"]["UserJourney"]
        assert isinstance(journeys, list) and len(journeys) == 1
        step = journeys[0]["OrchestrationSteps"]["OrchestrationStep"][1]
        assert isinstance(step["ClaimsExchanges"]["ClaimsExchange"], list)

    def test_normalize_is_idempotent(self):
        service = XmlParserService()
        parsed = service.parse(load_fixture("subjourney.xml"))
        assert service.normalize(parsed) == parsed


class TestSerialize:
    def test_serialize_round_trips_structure(self):
        service = XmlParserService()
        parsed = service.parse(load_fixture("preconditions.xml"))
        xml = service.serialize(parsed)
        assert xml.startswith(XML_DECLARATION)
        assert service.parse(xml) == parsed

    def test_serialize_requires_single_root(self):
        with pytest.raises(XmlParseError, match="exactly one root"):
            XmlParserService().serialize({"A": {}, "B": {}})

    def test_fragment_has_no_declaration(self):
        fragment = to_xml_fragment("ClaimType", {"@_Id": "email", "DataType": "string"})
        assert fragment.startswith('<ClaimType Id="email">')
        assert "<DataType>string</DataType>" in fragment
