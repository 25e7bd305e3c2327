"""BasePolicy ordering and IncludeTechnicalProfile resolution."""

from __future__ import annotations

import pytest

from b2c_policy_trace.entities import ClaimReference
from b2c_policy_trace.errors import CycleDetectedError, UnresolvedReferenceError
from b2c_policy_trace.inheritance import DIRECT, INCLUDE, merge_claim_lists
from b2c_policy_trace.processor import PolicyFile, PolicyProcessor
from tests.conftest import claims_provider, policy_xml

BASE_PROFILES = claims_provider(
    "Azure Active Directory",
    '<TechnicalProfile Id="AAD-Common">'
    '<Protocol Name="Proprietary" Handler="Web.TPEngine.Providers.AzureActiveDirectoryProvider" />'
    '<Metadata><Item Key="Operation">Read</Item></Metadata>'
    '<OutputClaims><OutputClaim ClaimTypeReferenceId="email" /></OutputClaims>'
    "</TechnicalProfile>",
    '<TechnicalProfile Id="AAD-UserRead">'
    '<OutputClaims><OutputClaim ClaimTypeReferenceId="objectId" /></OutputClaims>'
    '<IncludeTechnicalProfile ReferenceId="AAD-Common" />'
    "</TechnicalProfile>",
)

EXTENSION_PROFILES = claims_provider(
    "Azure Active Directory",
    '<TechnicalProfile Id="AAD-UserRead">'
    '<Metadata><Item Key="RaiseErrorIfClaimsPrincipalDoesNotExist">true</Item></Metadata>'
    '<OutputClaims><OutputClaim ClaimTypeReferenceId="email" PartnerClaimType="mail" /></OutputClaims>'
    "</TechnicalProfile>",
)


def _process(*files: tuple[str, str]):
    return PolicyProcessor().process_files([PolicyFile(name, content) for name, content in files])


def _chain_response():
    return _process(
        ("ext.xml", policy_xml("B2C_1A_Ext", EXTENSION_PROFILES, base="B2C_1A_Base")),
        ("base.xml", policy_xml("B2C_1A_Base", BASE_PROFILES)),
    )


class TestInheritanceChains:
    def test_override_chain_lists_direct_then_include(self):
        entities = _chain_response().entities
        override = entities.versions("technicalProfiles", "AAD-UserRead", include_consolidated=False)[-1]
        assert override.source_file == "ext.xml"
        assert override.is_override
        assert [(info.policy_id, info.inheritance_type) for info in override.inheritance_chain] == [
            ("B2C_1A_Ext", DIRECT),
            ("B2C_1A_Base", DIRECT),
            ("B2C_1A_Base", INCLUDE),
        ]
        assert override.inheritance_chain[-1].profile_id == "AAD-Common"

    def test_base_version_chain(self):
        entities = _chain_response().entities
        base = entities.versions("technicalProfiles", "AAD-UserRead")[0]
        assert not base.is_override
        assert [info.inheritance_type for info in base.inheritance_chain] == [DIRECT, INCLUDE]

    def test_consolidated_profile_merges_included_profile(self):
        consolidated = _chain_response().entities.effective("technicalProfiles", "AAD-UserRead")
        assert consolidated.is_consolidated
        assert consolidated.protocol_name == "Proprietary"
        assert consolidated.provider_name == "AzureActiveDirectoryProvider"
        assert consolidated.metadata == {"Operation": "Read", "RaiseErrorIfClaimsPrincipalDoesNotExist": "true"}
        assert [(c.claim_type_reference_id, c.partner_claim_type) for c in consolidated.output_claims] == [
            ("email", "mail"),
            ("objectId", None),
        ]
        assert consolidated.inheritance_chain[0].file_name == "ext.xml"

    def test_included_profile_is_unchanged(self):
        common = _chain_response().entities.effective("technicalProfiles", "AAD-Common")
        assert [c.claim_type_reference_id for c in common.output_claims] == ["email"]
        assert not common.is_override


class TestIncludeErrors:
    def test_include_cycle(self):
        profiles = claims_provider(
            "Loop",
            '<TechnicalProfile Id="TP-A"><IncludeTechnicalProfile ReferenceId="TP-B" /></TechnicalProfile>',
            '<TechnicalProfile Id="TP-B"><IncludeTechnicalProfile ReferenceId="TP-A" /></TechnicalProfile>',
        )
        with pytest.raises(CycleDetectedError) as excinfo:
            _process(("loop.xml", policy_xml("B2C_1A_Loop", profiles)))
        assert excinfo.value.policy_ids == ["TP-A", "TP-B", "TP-A"]

    def test_include_of_profile_defined_only_in_derived_file(self):
        base = claims_provider(
            "Base",
            '<TechnicalProfile Id="TP-Base"><IncludeTechnicalProfile ReferenceId="TP-Later" /></TechnicalProfile>',
        )
        derived = claims_provider("Derived", '<TechnicalProfile Id="TP-Later" />')
        with pytest.raises(UnresolvedReferenceError, match="TP-Later"):
            _process(
                ("base.xml", policy_xml("B2C_1A_Base", base)),
                ("derived.xml", policy_xml("B2C_1A_Derived", derived, base="B2C_1A_Base")),
            )

    def test_base_policy_cycle(self):
        with pytest.raises(CycleDetectedError, match="Inheritance cycle detected"):
            _process(
                ("a.xml", policy_xml("B2C_1A_A", base="B2C_1A_B")),
                ("b.xml", policy_xml("B2C_1A_B", base="B2C_1A_A")),
            )


def test_merge_claim_lists_replaces_by_claim_type():
    parent = [ClaimReference("email"), ClaimReference("objectId")]
    child = [ClaimReference("objectId", partner_claim_type="oid"), ClaimReference("displayName")]
    merged = merge_claim_lists(parent, child)
    assert [(c.claim_type_reference_id, c.partner_claim_type) for c in merged] == [
        ("email", None),
        ("objectId", "oid"),
        ("displayName", None),
    ]
