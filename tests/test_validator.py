from __future__ import annotations

from b2c_policy_trace.validator import ERROR, WARNING, PolicyValidator
from b2c_policy_trace.xml_parser import XmlParserService
from tests.conftest import load_fixture


def _validate(xml: str, file_name: str = "policy.xml"):
    return PolicyValidator().validate(XmlParserService().parse(xml), file_name)


def test_valid_policy_has_no_errors():
    result = _validate(load_fixture("TrustFrameworkExtensions.xml"))
    assert result.is_valid
    assert result.errors == []


def test_missing_root_is_fatal():
    result = _validate("<SomethingElse />")
    assert not result.is_valid
    assert result.fatal
    assert result.errors[0].message == "Missing root element <TrustFrameworkPolicy>"


def test_missing_policy_id_is_an_error_and_tenant_a_warning():
    result = _validate('<TrustFrameworkPolicy PolicyId=""></TrustFrameworkPolicy>', "empty-id.xml")
    by_message = {error.message: error for error in result.errors}
    assert by_message["Missing PolicyId attribute"].severity == ERROR
    assert by_message["Missing TenantId attribute"].severity == WARNING
    assert not result.is_valid
    assert not result.fatal


def test_missing_tenant_only_warns():
    result = _validate(load_fixture("simple_user_journey.xml"))
    assert result.is_valid
    assert [error.severity for error in result.errors] == [WARNING]


def test_base_policy_without_policy_id():
    result = _validate(
        '<TrustFrameworkPolicy PolicyId="B2C_1A_X" TenantId="t">'
        "<BasePolicy><TenantId>t</TenantId></BasePolicy>"
        "</TrustFrameworkPolicy>"
    )
    assert [error.message for error in result.errors] == ["BasePolicy is missing PolicyId"]


def test_elements_without_id_are_reported_with_position():
    result = _validate(
        '<TrustFrameworkPolicy PolicyId="B2C_1A_X" TenantId="t"><UserJourneys>'
        '<UserJourney Id="A" /><UserJourney><OrchestrationSteps /></UserJourney>'
        "</UserJourneys></TrustFrameworkPolicy>",
        "journeys.xml",
    )
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.message == "UserJourney at position 2 is missing Id"
    assert error.path == "/TrustFrameworkPolicy/UserJourneys/UserJourney"
    assert error.to_dict()["fileName"] == "journeys.xml"
