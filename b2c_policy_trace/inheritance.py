"""Inheritance resolution across policy files.

Covers ordering files by ``BasePolicy``, validating and walking
``IncludeTechnicalProfile`` references, and synthesizing the consolidated
version of every entity id.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, fields, replace
from typing import Any

from .constants import CONSOLIDATED_FILE_NAME, CONSOLIDATED_POLICY_ID, ENTITY_KINDS
from .entities import (
    ClaimReference,
    InheritanceInfo,
    OrchestrationStep,
    PolicyEntities,
    TechnicalProfileEntity,
    TrustFrameworkEntity,
)
from .errors import CycleDetectedError, MissingBaseError, PolicyProcessingError, UnresolvedReferenceError

LOGGER = logging.getLogger(__name__)

DIRECT = "Direct"
INCLUDE = "Include"

_IDENTITY_FIELDS = frozenset(
    {
        "id",
        "entity_type",
        "source_file",
        "source_policy_id",
        "xpath",
        "hierarchy_depth",
        "is_override",
        "raw_xml",
        "inheritance_chain",
    }
)
_CLAIM_LIST_FIELDS = frozenset({"input_claims", "display_claims", "persisted_claims", "output_claims"})


@dataclass
class PolicyDocument:
    file_name: str
    content: str
    parsed: dict[str, Any]
    policy_id: str
    tenant_id: str | None
    base_policy_id: str | None
    uploaded_at: str


def order_by_inheritance(documents: list[PolicyDocument]) -> list[PolicyDocument]:
    """Order documents so every policy follows its base; ties keep input order."""
    by_id: dict[str, PolicyDocument] = {}
    for document in documents:
        if document.policy_id in by_id:
            raise PolicyProcessingError(
                f"Duplicate PolicyId '{document.policy_id}' in "
                f"{by_id[document.policy_id].file_name} and {document.file_name}"
            )
        by_id[document.policy_id] = document
    for document in documents:
        if document.base_policy_id and document.base_policy_id not in by_id:
            raise MissingBaseError(document.policy_id, document.base_policy_id, document.file_name)

    ordered: list[PolicyDocument] = []
    state: dict[str, str] = {}

    def visit(document: PolicyDocument, trail: list[str]) -> None:
        status = state.get(document.policy_id)
        if status == "done":
            return
        if status == "visiting":
            start = trail.index(document.policy_id)
            raise CycleDetectedError(trail[start:] + [document.policy_id])
        state[document.policy_id] = "visiting"
        if document.base_policy_id:
            visit(by_id[document.base_policy_id], trail + [document.policy_id])
        state[document.policy_id] = "done"
        ordered.append(document)

    for document in documents:
        visit(document, [])
    return ordered


def merge_claim_lists(parent: list[ClaimReference], child: list[ClaimReference]) -> list[ClaimReference]:
    """Child entries replace parent entries with the same claim type; the rest pass through."""
    child_by_id = {claim.claim_type_reference_id: claim for claim in child}
    merged = [copy.deepcopy(child_by_id.get(claim.claim_type_reference_id, claim)) for claim in parent]
    seen = {claim.claim_type_reference_id for claim in parent}
    merged.extend(copy.deepcopy(claim) for claim in child if claim.claim_type_reference_id not in seen)
    return merged


def _merge_steps(parent: list[OrchestrationStep], child: list[OrchestrationStep]) -> list[OrchestrationStep]:
    by_order = {step.order: copy.deepcopy(step) for step in parent}
    by_order.update({step.order: copy.deepcopy(step) for step in child})
    return [by_order[order] for order in sorted(by_order)]


def _merge_value(name: str, base: Any, override: Any) -> Any:
    if name in _CLAIM_LIST_FIELDS:
        return merge_claim_lists(base or [], override or [])
    if name == "orchestration_steps":
        return _merge_steps(base or [], override or [])
    if isinstance(override, dict):
        merged = dict(base or {})
        merged.update(override)
        return merged
    if isinstance(override, list):
        if all(isinstance(item, str) for item in [*(base or []), *override]):
            return list(dict.fromkeys([*(base or []), *override]))
        return copy.deepcopy(override) if override else copy.deepcopy(base)
    return copy.deepcopy(override) if override is not None else copy.deepcopy(base)


def merge_entity(base: TrustFrameworkEntity, override: TrustFrameworkEntity) -> TrustFrameworkEntity:
    """Return ``override`` layered on ``base``; identity fields come from ``override``."""
    changes = {
        f.name: _merge_value(f.name, getattr(base, f.name), getattr(override, f.name))
        for f in fields(override)
        if f.name not in _IDENTITY_FIELDS and hasattr(base, f.name)
    }
    return replace(copy.deepcopy(override), **changes)


def _visible_version(
    entities: PolicyEntities, profile_id: str, depth: int
) -> TechnicalProfileEntity | None:
    visible = [
        version
        for version in entities.versions("technicalProfiles", profile_id, include_consolidated=False)
        if version.hierarchy_depth <= depth
    ]
    return max(visible, key=lambda version: version.hierarchy_depth) if visible else None


def _include_at(entities: PolicyEntities, profile_id: str, depth: int) -> str | None:
    """Include in force for ``profile_id`` at ``depth``; overrides need not repeat it."""
    visible = sorted(
        (
            version
            for version in entities.versions("technicalProfiles", profile_id, include_consolidated=False)
            if version.hierarchy_depth <= depth
        ),
        key=lambda version: version.hierarchy_depth,
        reverse=True,
    )
    return next((version.include_technical_profile for version in visible if version.include_technical_profile), None)


class InheritanceResolver:
    def __init__(self, consolidated_file_name: str = CONSOLIDATED_FILE_NAME) -> None:
        self.consolidated_file_name = consolidated_file_name

    def resolve(self, entities: PolicyEntities, file_count: int) -> None:
        self.check_includes(entities)
        self.build_inheritance_chains(entities)
        self.add_consolidated_versions(entities, file_count)

    def check_includes(self, entities: PolicyEntities) -> None:
        """Every include must point at a profile defined at the same or a lower depth."""
        for versions in entities.technical_profiles.values():
            for version in versions:
                include = version.include_technical_profile
                if version.is_consolidated or not include:
                    continue
                if _visible_version(entities, include, version.hierarchy_depth) is None:
                    raise UnresolvedReferenceError(version.id, include, version.source_file)

        for profile_id in entities.all_ids("technicalProfiles"):
            trail = [profile_id]
            current = entities.effective("technicalProfiles", profile_id)
            while current is not None:
                include = _include_at(entities, current.id, current.hierarchy_depth)
                if not include:
                    break
                if include in trail:
                    raise CycleDetectedError(trail[trail.index(include):] + [include])
                trail.append(include)
                current = _visible_version(entities, include, current.hierarchy_depth)

    def build_inheritance_chains(self, entities: PolicyEntities) -> None:
        for versions in entities.technical_profiles.values():
            for version in versions:
                if not version.is_consolidated:
                    version.inheritance_chain = self._chain(entities, version)

    def _chain(self, entities: PolicyEntities, profile: TechnicalProfileEntity) -> list[InheritanceInfo]:
        chain = [InheritanceInfo(profile.id, profile.source_policy_id, profile.source_file, DIRECT)]
        if profile.is_override:
            earlier = sorted(
                (
                    version
                    for version in entities.versions("technicalProfiles", profile.id, include_consolidated=False)
                    if version.hierarchy_depth < profile.hierarchy_depth
                ),
                key=lambda version: version.hierarchy_depth,
            )
            chain.extend(
                InheritanceInfo(version.id, version.source_policy_id, version.source_file, DIRECT)
                for version in earlier
            )

        visited = {profile.id}
        depth = profile.hierarchy_depth
        include = _include_at(entities, profile.id, depth)
        while include and include not in visited:
            visited.add(include)
            parent = _visible_version(entities, include, depth)
            if parent is None:
                break
            chain.append(InheritanceInfo(parent.id, parent.source_policy_id, parent.source_file, INCLUDE))
            depth = parent.hierarchy_depth
            include = _include_at(entities, parent.id, depth)
        return chain

    def add_consolidated_versions(self, entities: PolicyEntities, file_count: int) -> None:
        resolved: dict[str, TechnicalProfileEntity] = {}
        for kind in ENTITY_KINDS:
            collection = entities.collection(kind)
            for entity_id in list(collection):
                if kind == "technicalProfiles":
                    merged = self._consolidated_profile(entities, entity_id, resolved)
                else:
                    merged = self._fold(entities.versions(kind, entity_id, include_consolidated=False))
                if merged is None:
                    continue
                collection[entity_id].append(self._as_consolidated(merged, collection[entity_id], file_count))
        LOGGER.debug("added consolidated versions for %d technical profiles", len(resolved))

    def _fold(self, versions: list[Any]) -> Any | None:
        ordered = sorted(versions, key=lambda version: version.hierarchy_depth)
        if not ordered:
            return None
        merged = copy.deepcopy(ordered[0])
        for version in ordered[1:]:
            merged = merge_entity(merged, version)
        return merged

    def _consolidated_profile(
        self,
        entities: PolicyEntities,
        profile_id: str,
        resolved: dict[str, TechnicalProfileEntity],
    ) -> TechnicalProfileEntity | None:
        if profile_id in resolved:
            return resolved[profile_id]
        versions = entities.versions("technicalProfiles", profile_id, include_consolidated=False)
        own = self._fold(versions)
        if own is None:
            return None
        # Cycles were rejected by check_includes, so this recursion terminates.
        if own.include_technical_profile and own.include_technical_profile != profile_id:
            parent = self._consolidated_profile(entities, own.include_technical_profile, resolved)
            if parent is not None:
                own = merge_entity(parent, own)
        latest = max(versions, key=lambda version: version.hierarchy_depth)
        own.inheritance_chain = copy.deepcopy(latest.inheritance_chain)
        resolved[profile_id] = own
        return own

    def _as_consolidated(self, merged: Any, versions: list[Any], file_count: int) -> Any:
        latest = max(
            (version for version in versions if not version.is_consolidated),
            key=lambda version: version.hierarchy_depth,
        )
        return replace(
            merged,
            source_file=self.consolidated_file_name,
            source_policy_id=CONSOLIDATED_POLICY_ID,
            xpath=latest.xpath,
            hierarchy_depth=file_count,
            is_override=len(versions) > 1,
            raw_xml=latest.raw_xml,
        )
