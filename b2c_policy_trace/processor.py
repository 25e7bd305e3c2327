"""Consolidation of a set of policy files into entities, a graph and one XML."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import Settings
from .consolidator import PolicyConsolidator
from .constants import ROOT_ELEMENT
from .entities import PolicyEntities
from .errors import EmptyContentError, GraphBuildError, PolicyProcessingError, XmlParseError
from .extractor import EntityExtractor
from .framework import text_checksum, utc_now
from .graph import PolicyGraph, PolicyGraphBuilder
from .inheritance import InheritanceResolver, PolicyDocument, order_by_inheritance
from .validator import ERROR, PolicyValidator
from .xml_parser import XmlParserService

LOGGER = logging.getLogger(__name__)


@dataclass
class PolicyFile:
    name: str
    content: str
    uploaded_at: str | None = None


def read_policy_files(paths: list[Path]) -> list[PolicyFile]:
    return [PolicyFile(path.name, path.read_text(encoding="utf-8")) for path in paths]


@dataclass
class PolicyFileInfo:
    file_name: str
    policy_id: str
    base_policy: str | None
    hierarchy_depth: int
    file_size: int
    checksum: str
    uploaded_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileName": self.file_name,
            "policyId": self.policy_id,
            "basePolicy": self.base_policy,
            "hierarchyDepth": self.hierarchy_depth,
            "fileSize": self.file_size,
            "checksum": self.checksum,
            "uploadedAt": self.uploaded_at,
        }


@dataclass
class InheritanceGraph:
    root_policy_id: str | None = None
    parent_relationships: dict[str, str] = field(default_factory=dict)
    child_relationships: dict[str, list[str]] = field(default_factory=dict)
    hierarchy_depth: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_documents(cls, ordered: list[PolicyDocument]) -> InheritanceGraph:
        graph = cls()
        for document in ordered:
            base = document.base_policy_id
            if base:
                graph.parent_relationships[document.policy_id] = base
                graph.child_relationships.setdefault(base, []).append(document.policy_id)
                graph.hierarchy_depth[document.policy_id] = graph.hierarchy_depth[base] + 1
            else:
                graph.hierarchy_depth[document.policy_id] = 0
                if graph.root_policy_id is None:
                    graph.root_policy_id = document.policy_id
        return graph

    def to_dict(self) -> dict[str, Any]:
        return {
            "rootPolicyId": self.root_policy_id,
            "parentRelationships": dict(self.parent_relationships),
            "childRelationships": {key: list(value) for key, value in self.child_relationships.items()},
            "hierarchyDepth": dict(self.hierarchy_depth),
        }


@dataclass
class PolicyUploadResponse:
    consolidated_xml: str
    entities: PolicyEntities
    graph: PolicyGraph
    subgraphs: dict[str, PolicyGraph]
    files: list[PolicyFileInfo]
    inheritance_graph: InheritanceGraph
    warnings: list[str] = field(default_factory=list)
    processed_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "consolidatedXml": self.consolidated_xml,
            "entities": self.entities.to_dict(),
            "graph": self.graph.to_dict(),
            "subgraphs": {key: value.to_dict() for key, value in self.subgraphs.items()},
            "files": [info.to_dict() for info in self.files],
            "inheritanceGraph": self.inheritance_graph.to_dict(),
            "warnings": list(self.warnings),
            "processedAt": self.processed_at,
        }


class PolicyProcessor:
    """Runs the consolidation pipeline over a set of policy files.

    Collaborators are injected; each defaults to a fresh instance so two
    processors never share state.
    """

    def __init__(
        self,
        parser: XmlParserService | None = None,
        validator: PolicyValidator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.parser = parser or XmlParserService()
        self.validator = validator or PolicyValidator()
        self.settings = settings or Settings()

    def process_files(self, files: list[PolicyFile]) -> PolicyUploadResponse:
        if not files:
            raise PolicyProcessingError("No policy files provided")

        warnings: list[str] = []
        failures: list[str] = []
        documents = []
        for policy_file in files:
            document = self._load(policy_file, warnings, failures)
            if document is not None:
                documents.append(document)
        if not documents:
            raise PolicyProcessingError("All policy files failed validation: " + "; ".join(failures))

        ordered = order_by_inheritance(documents)
        LOGGER.info("processing %d policies: %s", len(ordered), " -> ".join(d.policy_id for d in ordered))

        entities = PolicyEntities()
        extractor = EntityExtractor()
        for depth, document in enumerate(ordered):
            extractor.extract(
                document.parsed,
                file_name=document.file_name,
                policy_id=document.policy_id,
                depth=depth,
                entities=entities,
            )
        consolidation = self.settings.consolidation
        InheritanceResolver(consolidation.consolidated_file_name).resolve(entities, len(ordered))

        merged = PolicyConsolidator().consolidate([(d.file_name, d.parsed) for d in ordered])
        consolidated_xml = self.parser.serialize(merged)

        builder = PolicyGraphBuilder(merged, entities)
        try:
            graph, subgraphs = builder.build_all(consolidation.graph_journey)
        except GraphBuildError as exc:
            LOGGER.info("%s", exc)
            warnings.append(str(exc))
            graph, subgraphs = PolicyGraph(), {}
        warnings.extend(builder.warnings)

        files_info = [
            PolicyFileInfo(
                file_name=document.file_name,
                policy_id=document.policy_id,
                base_policy=document.base_policy_id,
                hierarchy_depth=depth,
                file_size=len(document.content.encode("utf-8")),
                checksum=text_checksum(document.content),
                uploaded_at=document.uploaded_at,
            )
            for depth, document in enumerate(ordered)
        ]
        return PolicyUploadResponse(
            consolidated_xml=consolidated_xml,
            entities=entities,
            graph=graph,
            subgraphs=subgraphs,
            files=files_info,
            inheritance_graph=InheritanceGraph.from_documents(ordered),
            warnings=warnings,
        )

    def _load(self, policy_file: PolicyFile, warnings: list[str], failures: list[str]) -> PolicyDocument | None:
        try:
            parsed = self.parser.parse(policy_file.content)
        except (EmptyContentError, XmlParseError) as exc:
            message = f"{policy_file.name}: {exc}"
            LOGGER.warning("skipping %s", message)
            warnings.append(message)
            failures.append(message)
            return None

        result = self.validator.validate(parsed, policy_file.name)
        messages = [(error.severity, f"{policy_file.name}: {error.message}") for error in result.errors]
        warnings.extend(message for _, message in messages)
        if not result.is_valid:
            failures.extend(message for severity, message in messages if severity == ERROR)
            LOGGER.warning("skipping %s: failed validation", policy_file.name)
            return None

        root = parsed[ROOT_ELEMENT]
        base = root.get("BasePolicy")
        base_policy_id = base.get("PolicyId") if isinstance(base, dict) else None
        return PolicyDocument(
            file_name=policy_file.name,
            content=policy_file.content,
            parsed=parsed,
            policy_id=root["@_PolicyId"],
            tenant_id=root.get("@_TenantId"),
            base_policy_id=str(base_policy_id) if base_policy_id else None,
            uploaded_at=policy_file.uploaded_at or utc_now(),
        )
