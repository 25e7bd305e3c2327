"""Per-file extraction of trust framework entities from a parsed policy tree."""

from __future__ import annotations

import logging
from typing import Any

from .constants import ENTITY_KINDS, ENTITY_TYPE_NAMES, ROOT_ELEMENT, TEXT_KEY
from .entities import (
    ClaimReference,
    ClaimRestriction,
    ClaimsExchangeRef,
    ClaimsProviderEntity,
    ClaimsProviderSelectionRef,
    ClaimsTransformationEntity,
    ClaimTypeEntity,
    DisplayControlActionRef,
    DisplayControlEntity,
    EnumerationItem,
    InputParameter,
    OrchestrationStep,
    PolicyEntities,
    PreconditionRef,
    SubJourneyEntity,
    TechnicalProfileEntity,
    UserJourneyEntity,
)
from .framework import as_list, child_elements
from .xml_parser import to_xml_fragment

LOGGER = logging.getLogger(__name__)

ROOT_PATH = f"/{ROOT_ELEMENT}"


def attr(node: Any, name: str) -> str | None:
    if not isinstance(node, dict):
        return None
    value = node.get("@_" + name)
    return None if value is None else str(value)


def text(node: Any, name: str | None = None) -> str | None:
    """Text of ``node[name]`` (or of ``node`` itself when ``name`` is None)."""
    if name is not None:
        if not isinstance(node, dict):
            return None
        node = node.get(name)
    if isinstance(node, list):
        node = node[0] if node else None
    if isinstance(node, dict):
        node = node.get(TEXT_KEY)
    if node is None or node == "":
        return None
    return str(node)


def _as_bool(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def claim_references(node: Any, container: str, element: str) -> list[ClaimReference]:
    refs = []
    for item in child_elements(node, container, element):
        claim_id = attr(item, "ClaimTypeReferenceId")
        if not claim_id:
            continue
        refs.append(
            ClaimReference(
                claim_type_reference_id=claim_id,
                partner_claim_type=attr(item, "PartnerClaimType"),
                default_value=attr(item, "DefaultValue"),
                always_use_default_value=_as_bool(attr(item, "AlwaysUseDefaultValue")),
                required=_as_bool(attr(item, "Required")),
                display_control_reference_id=attr(item, "DisplayControlReferenceId"),
                transformation_claim_type=attr(item, "TransformationClaimType"),
            )
        )
    return refs


def reference_ids(node: Any, container: str, element: str, attribute: str = "ReferenceId") -> list[str]:
    ids = []
    for item in child_elements(node, container, element):
        value = attr(item, attribute)
        if value and value not in ids:
            ids.append(value)
    return ids


def parse_orchestration_step(node: dict[str, Any]) -> OrchestrationStep:
    order_text = attr(node, "Order") or "0"
    try:
        order = int(order_text)
    except ValueError:
        order = 0
    preconditions = [
        PreconditionRef(
            type=attr(item, "Type") or "",
            execute_actions_if=_as_bool(attr(item, "ExecuteActionsIf")),
            values=[text(value) or "" for value in as_list(item.get("Value"))],
            action=text(item, "Action"),
        )
        for item in child_elements(node, "Preconditions", "Precondition")
        if isinstance(item, dict)
    ]
    return OrchestrationStep(
        order=order,
        type=attr(node, "Type") or "",
        content_definition_reference_id=attr(node, "ContentDefinitionReferenceId"),
        cpim_issuer_technical_profile_reference_id=attr(node, "CpimIssuerTechnicalProfileReferenceId"),
        claims_exchanges=[
            ClaimsExchangeRef(
                id=attr(item, "Id") or "",
                technical_profile_reference_id=attr(item, "TechnicalProfileReferenceId"),
            )
            for item in child_elements(node, "ClaimsExchanges", "ClaimsExchange")
        ],
        claims_provider_selections=[
            ClaimsProviderSelectionRef(
                target_claims_exchange_id=attr(item, "TargetClaimsExchangeId"),
                validation_claims_exchange_id=attr(item, "ValidationClaimsExchangeId"),
            )
            for item in child_elements(node, "ClaimsProviderSelections", "ClaimsProviderSelection")
        ],
        preconditions=preconditions,
        sub_journey_references=reference_ids(node, "JourneyList", "Candidate", "SubJourneyReferenceId"),
    )


def orchestration_steps(journey: dict[str, Any]) -> list[OrchestrationStep]:
    steps = [
        parse_orchestration_step(item)
        for item in child_elements(journey, "OrchestrationSteps", "OrchestrationStep")
        if isinstance(item, dict)
    ]
    return sorted(steps, key=lambda step: step.order)


class EntityExtractor:
    """Appends one entity version per definition found in a policy file."""

    def extract(
        self,
        parsed: dict[str, Any],
        *,
        file_name: str,
        policy_id: str,
        depth: int,
        entities: PolicyEntities,
    ) -> int:
        root = parsed.get(ROOT_ELEMENT, {})
        self._file_name = file_name
        self._policy_id = policy_id
        self._depth = depth
        self._entities = entities
        before = self._count()

        for node in child_elements(root, "BuildingBlocks", "ClaimsSchema", "ClaimType"):
            self._claim_type(node)
        for node in child_elements(root, "BuildingBlocks", "ClaimsTransformations", "ClaimsTransformation"):
            self._claims_transformation(node)
        for node in child_elements(root, "BuildingBlocks", "DisplayControls", "DisplayControl"):
            self._display_control(node)
        for node in child_elements(root, "ClaimsProviders", "ClaimsProvider"):
            self._claims_provider(node)
        for node in child_elements(root, "RelyingParty", "TechnicalProfile"):
            self._technical_profile(
                node,
                provider_display_name="RelyingParty",
                xpath_base=f"{ROOT_PATH}/RelyingParty",
            )
        for node in child_elements(root, "UserJourneys", "UserJourney"):
            self._user_journey(node)
        for node in child_elements(root, "SubJourneys", "SubJourney"):
            self._sub_journey(node)

        extracted = self._count() - before
        LOGGER.debug("extracted %d entities from %s (depth %d)", extracted, file_name, depth)
        return extracted

    def _count(self) -> int:
        return sum(
            len(versions)
            for kind in ENTITY_KINDS
            for versions in self._entities.collection(kind).values()
        )

    def _base(self, kind: str, entity_id: str, xpath: str, node: Any) -> dict[str, Any]:
        entity_type = ENTITY_TYPE_NAMES[kind]
        earlier = [
            version
            for version in self._entities.versions(kind, entity_id, include_consolidated=False)
            if version.source_file != self._file_name
        ]
        return {
            "id": entity_id,
            "entity_type": entity_type,
            "source_file": self._file_name,
            "source_policy_id": self._policy_id,
            "xpath": xpath,
            "hierarchy_depth": self._depth,
            "is_override": bool(earlier),
            "raw_xml": to_xml_fragment(entity_type, node),
        }

    def _claim_type(self, node: Any) -> None:
        entity_id = attr(node, "Id")
        if not entity_id:
            return
        restriction = None
        restriction_node = node.get("Restriction")
        if isinstance(restriction_node, dict):
            pattern = restriction_node.get("Pattern")
            restriction = ClaimRestriction(
                pattern=attr(pattern, "RegularExpression"),
                pattern_help_text=attr(pattern, "HelpText"),
                enumeration=[
                    EnumerationItem(
                        value=attr(item, "Value") or "",
                        text=attr(item, "Text") or "",
                        select_by_default=_as_bool(attr(item, "SelectByDefault")),
                    )
                    for item in as_list(restriction_node.get("Enumeration"))
                ],
            )
        entity = ClaimTypeEntity(
            **self._base(
                "claimTypes",
                entity_id,
                f'{ROOT_PATH}/BuildingBlocks/ClaimsSchema/ClaimType[@Id="{entity_id}"]',
                node,
            ),
            display_name=text(node, "DisplayName"),
            data_type=text(node, "DataType"),
            user_input_type=text(node, "UserInputType"),
            mask=text(node, "Mask"),
            admin_help_text=text(node, "AdminHelpText"),
            user_help_text=text(node, "UserHelpText"),
            restriction=restriction,
            predicate_validation_reference=attr(node.get("PredicateValidationReference"), "Id"),
        )
        self._entities.add("claimTypes", entity)

    def _claims_transformation(self, node: Any) -> None:
        entity_id = attr(node, "Id")
        if not entity_id:
            return
        entity = ClaimsTransformationEntity(
            **self._base(
                "claimsTransformations",
                entity_id,
                f'{ROOT_PATH}/BuildingBlocks/ClaimsTransformations/ClaimsTransformation[@Id="{entity_id}"]',
                node,
            ),
            transformation_method=attr(node, "TransformationMethod"),
            input_claims=claim_references(node, "InputClaims", "InputClaim"),
            input_parameters=[
                InputParameter(
                    id=attr(item, "Id") or "",
                    data_type=attr(item, "DataType"),
                    value=attr(item, "Value"),
                )
                for item in child_elements(node, "InputParameters", "InputParameter")
            ],
            output_claims=claim_references(node, "OutputClaims", "OutputClaim"),
        )
        self._entities.add("claimsTransformations", entity)

    def _display_control(self, node: Any) -> None:
        entity_id = attr(node, "Id")
        if not entity_id:
            return
        actions = []
        for action in child_elements(node, "Actions", "Action"):
            profiles = [
                attr(item, "TechnicalProfileReferenceId")
                for item in child_elements(
                    action, "ValidationClaimsExchange", "ValidationClaimsExchangeTechnicalProfile"
                )
            ]
            actions.append(
                DisplayControlActionRef(
                    id=attr(action, "Id") or "",
                    validation_technical_profiles=[p for p in dict.fromkeys(profiles) if p],
                )
            )
        entity = DisplayControlEntity(
            **self._base(
                "displayControls",
                entity_id,
                f'{ROOT_PATH}/BuildingBlocks/DisplayControls/DisplayControl[@Id="{entity_id}"]',
                node,
            ),
            user_interface_control_type=attr(node, "UserInterfaceControlType"),
            display_claims=claim_references(node, "DisplayClaims", "DisplayClaim"),
            actions=actions,
        )
        self._entities.add("displayControls", entity)

    def _claims_provider(self, node: Any) -> None:
        display_name = text(node, "DisplayName") or "Unknown"
        xpath = f'{ROOT_PATH}/ClaimsProviders/ClaimsProvider[DisplayName="{display_name}"]'
        profile_ids = []
        for profile in child_elements(node, "TechnicalProfiles", "TechnicalProfile"):
            profile_id = self._technical_profile(
                profile, provider_display_name=display_name, xpath_base=f"{xpath}/TechnicalProfiles"
            )
            if profile_id:
                profile_ids.append(profile_id)
        entity = ClaimsProviderEntity(
            **self._base("claimsProviders", display_name, xpath, node),
            display_name=display_name,
            technical_profile_ids=profile_ids,
        )
        self._entities.add("claimsProviders", entity)

    def _technical_profile(self, node: Any, *, provider_display_name: str, xpath_base: str) -> str | None:
        entity_id = attr(node, "Id")
        if not entity_id:
            return None
        protocol = node.get("Protocol")
        handler = attr(protocol, "Handler")
        protocol_name = attr(protocol, "Name")
        metadata = {}
        for item in child_elements(node, "Metadata", "Item"):
            key = attr(item, "Key")
            if key:
                metadata[key] = text(item) or ""
        entity = TechnicalProfileEntity(
            **self._base(
                "technicalProfiles",
                entity_id,
                f'{xpath_base}/TechnicalProfile[@Id="{entity_id}"]',
                node,
            ),
            display_name=text(node, "DisplayName"),
            description=text(node, "Description"),
            protocol_name=protocol_name,
            protocol_handler=handler,
            provider_name=handler.rsplit(".", 1)[-1] if handler else protocol_name,
            claims_provider_display_name=provider_display_name,
            metadata=metadata,
            input_claims_transformations=reference_ids(
                node, "InputClaimsTransformations", "InputClaimsTransformation"
            ),
            input_claims=claim_references(node, "InputClaims", "InputClaim"),
            display_claims=claim_references(node, "DisplayClaims", "DisplayClaim"),
            persisted_claims=claim_references(node, "PersistedClaims", "PersistedClaim"),
            output_claims=claim_references(node, "OutputClaims", "OutputClaim"),
            output_claims_transformations=reference_ids(
                node, "OutputClaimsTransformations", "OutputClaimsTransformation"
            ),
            display_controls=reference_ids(
                node, "DisplayClaims", "DisplayClaim", "DisplayControlReferenceId"
            ),
            validation_technical_profiles=reference_ids(
                node, "ValidationTechnicalProfiles", "ValidationTechnicalProfile"
            ),
            include_technical_profile=attr(node.get("IncludeTechnicalProfile"), "ReferenceId"),
            use_technical_profile_for_sso=attr(
                node.get("UseTechnicalProfileForSessionManagement"), "ReferenceId"
            ),
        )
        self._entities.add("technicalProfiles", entity)
        return entity_id

    def _user_journey(self, node: Any) -> None:
        entity_id = attr(node, "Id")
        if not entity_id:
            return
        steps = orchestration_steps(node)
        issuer = next(
            (
                step.cpim_issuer_technical_profile_reference_id
                for step in steps
                if step.cpim_issuer_technical_profile_reference_id
            ),
            None,
        )
        entity = UserJourneyEntity(
            **self._base(
                "userJourneys",
                entity_id,
                f'{ROOT_PATH}/UserJourneys/UserJourney[@Id="{entity_id}"]',
                node,
            ),
            default_cpim_issuer_technical_profile_reference_id=issuer,
            orchestration_steps=steps,
        )
        self._entities.add("userJourneys", entity)

    def _sub_journey(self, node: Any) -> None:
        entity_id = attr(node, "Id")
        if not entity_id:
            return
        entity = SubJourneyEntity(
            **self._base(
                "subJourneys",
                entity_id,
                f'{ROOT_PATH}/SubJourneys/SubJourney[@Id="{entity_id}"]',
                node,
            ),
            journey_type=attr(node, "Type"),
            orchestration_steps=orchestration_steps(node),
        )
        self._entities.add("subJourneys", entity)
