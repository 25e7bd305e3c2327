"""Trust framework entity model.

Every entity version remembers the file it came from and its depth in the
inheritance chain (0 is the most base file). ``PolicyEntities`` keeps all
versions of an id in processing order, so the chain from base to
most-derived stays queryable after consolidation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

from .constants import CONSOLIDATED_POLICY_ID, ENTITY_KINDS


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def export(value: Any) -> Any:
    """Render dataclasses, lists and dicts as JSON-ready camelCase data."""
    if is_dataclass(value) and not isinstance(value, type):
        return {_camel(f.name): export(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, list):
        return [export(item) for item in value]
    if isinstance(value, dict):
        return {key: export(item) for key, item in value.items()}
    return value


class Exportable:
    def to_dict(self) -> dict[str, Any]:
        return export(self)


@dataclass
class ClaimReference(Exportable):
    claim_type_reference_id: str
    partner_claim_type: str | None = None
    default_value: str | None = None
    always_use_default_value: bool = False
    required: bool = False
    display_control_reference_id: str | None = None
    transformation_claim_type: str | None = None


@dataclass
class EnumerationItem(Exportable):
    value: str
    text: str
    select_by_default: bool = False


@dataclass
class ClaimRestriction(Exportable):
    pattern: str | None = None
    pattern_help_text: str | None = None
    enumeration: list[EnumerationItem] = field(default_factory=list)


@dataclass
class InputParameter(Exportable):
    id: str
    data_type: str | None = None
    value: str | None = None


@dataclass
class InheritanceInfo(Exportable):
    profile_id: str
    policy_id: str
    file_name: str
    # "Direct" for same-id overrides across files, "Include" for IncludeTechnicalProfile.
    inheritance_type: str


@dataclass
class ClaimsExchangeRef(Exportable):
    id: str
    technical_profile_reference_id: str | None = None


@dataclass
class ClaimsProviderSelectionRef(Exportable):
    target_claims_exchange_id: str | None = None
    validation_claims_exchange_id: str | None = None


@dataclass
class PreconditionRef(Exportable):
    type: str
    execute_actions_if: bool
    values: list[str] = field(default_factory=list)
    action: str | None = None


@dataclass
class OrchestrationStep(Exportable):
    order: int
    type: str
    content_definition_reference_id: str | None = None
    cpim_issuer_technical_profile_reference_id: str | None = None
    claims_exchanges: list[ClaimsExchangeRef] = field(default_factory=list)
    claims_provider_selections: list[ClaimsProviderSelectionRef] = field(default_factory=list)
    preconditions: list[PreconditionRef] = field(default_factory=list)
    sub_journey_references: list[str] = field(default_factory=list)


@dataclass
class DisplayControlActionRef(Exportable):
    id: str
    validation_technical_profiles: list[str] = field(default_factory=list)


@dataclass
class TrustFrameworkEntity(Exportable):
    id: str
    entity_type: str
    source_file: str
    source_policy_id: str
    xpath: str
    hierarchy_depth: int
    is_override: bool = False
    raw_xml: str = ""

    @property
    def is_consolidated(self) -> bool:
        return self.source_policy_id == CONSOLIDATED_POLICY_ID


@dataclass
class ClaimTypeEntity(TrustFrameworkEntity):
    display_name: str | None = None
    data_type: str | None = None
    user_input_type: str | None = None
    mask: str | None = None
    admin_help_text: str | None = None
    user_help_text: str | None = None
    restriction: ClaimRestriction | None = None
    predicate_validation_reference: str | None = None


@dataclass
class ClaimsTransformationEntity(TrustFrameworkEntity):
    transformation_method: str | None = None
    input_claims: list[ClaimReference] = field(default_factory=list)
    input_parameters: list[InputParameter] = field(default_factory=list)
    output_claims: list[ClaimReference] = field(default_factory=list)


@dataclass
class DisplayControlEntity(TrustFrameworkEntity):
    user_interface_control_type: str | None = None
    display_claims: list[ClaimReference] = field(default_factory=list)
    actions: list[DisplayControlActionRef] = field(default_factory=list)


@dataclass
class ClaimsProviderEntity(TrustFrameworkEntity):
    display_name: str | None = None
    technical_profile_ids: list[str] = field(default_factory=list)


@dataclass
class TechnicalProfileEntity(TrustFrameworkEntity):
    display_name: str | None = None
    description: str | None = None
    protocol_name: str | None = None
    protocol_handler: str | None = None
    provider_name: str | None = None
    claims_provider_display_name: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    input_claims_transformations: list[str] = field(default_factory=list)
    input_claims: list[ClaimReference] = field(default_factory=list)
    display_claims: list[ClaimReference] = field(default_factory=list)
    persisted_claims: list[ClaimReference] = field(default_factory=list)
    output_claims: list[ClaimReference] = field(default_factory=list)
    output_claims_transformations: list[str] = field(default_factory=list)
    display_controls: list[str] = field(default_factory=list)
    validation_technical_profiles: list[str] = field(default_factory=list)
    include_technical_profile: str | None = None
    use_technical_profile_for_sso: str | None = None
    inheritance_chain: list[InheritanceInfo] = field(default_factory=list)

    @property
    def is_protocol_less(self) -> bool:
        return self.protocol_name in (None, "", "None")


@dataclass
class UserJourneyEntity(TrustFrameworkEntity):
    default_cpim_issuer_technical_profile_reference_id: str | None = None
    orchestration_steps: list[OrchestrationStep] = field(default_factory=list)


@dataclass
class SubJourneyEntity(TrustFrameworkEntity):
    journey_type: str | None = None
    orchestration_steps: list[OrchestrationStep] = field(default_factory=list)


_KIND_ATTRS: dict[str, str] = {
    "claimTypes": "claim_types",
    "technicalProfiles": "technical_profiles",
    "claimsTransformations": "claims_transformations",
    "displayControls": "display_controls",
    "userJourneys": "user_journeys",
    "subJourneys": "sub_journeys",
    "claimsProviders": "claims_providers",
}


@dataclass
class PolicyEntities:
    claim_types: dict[str, list[ClaimTypeEntity]] = field(default_factory=dict)
    technical_profiles: dict[str, list[TechnicalProfileEntity]] = field(default_factory=dict)
    claims_transformations: dict[str, list[ClaimsTransformationEntity]] = field(default_factory=dict)
    display_controls: dict[str, list[DisplayControlEntity]] = field(default_factory=dict)
    user_journeys: dict[str, list[UserJourneyEntity]] = field(default_factory=dict)
    sub_journeys: dict[str, list[SubJourneyEntity]] = field(default_factory=dict)
    claims_providers: dict[str, list[ClaimsProviderEntity]] = field(default_factory=dict)

    def collection(self, kind: str) -> dict[str, list[Any]]:
        if kind not in _KIND_ATTRS:
            raise KeyError(f"Unknown entity kind: {kind}")
        return getattr(self, _KIND_ATTRS[kind])

    def add(self, kind: str, entity: TrustFrameworkEntity) -> None:
        """Append a version; earlier versions of the same id are never replaced."""
        self.collection(kind).setdefault(entity.id, []).append(entity)

    def has(self, kind: str, entity_id: str) -> bool:
        return bool(self.collection(kind).get(entity_id))

    def versions(self, kind: str, entity_id: str, include_consolidated: bool = True) -> list[Any]:
        versions = self.collection(kind).get(entity_id, [])
        if include_consolidated:
            return list(versions)
        return [version for version in versions if not version.is_consolidated]

    def effective(self, kind: str, entity_id: str) -> Any | None:
        versions = self.collection(kind).get(entity_id, [])
        if not versions:
            return None
        for version in versions:
            if version.is_consolidated:
                return version
        return max(versions, key=lambda version: version.hierarchy_depth)

    def all_ids(self, kind: str) -> list[str]:
        return list(self.collection(kind))

    def to_dict(self) -> dict[str, Any]:
        return {
            kind: {entity_id: export(versions) for entity_id, versions in self.collection(kind).items()}
            for kind in ENTITY_KINDS
        }
