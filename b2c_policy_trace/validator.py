"""Structural validation of parsed policy documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .constants import ROOT_ELEMENT
from .framework import child_elements

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class ValidationError:
    message: str
    severity: str
    file_name: str
    path: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "message": self.message,
            "severity": self.severity,
            "fileName": self.file_name,
            "path": self.path,
        }


@dataclass
class ValidationResult:
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(error.severity == ERROR for error in self.errors)

    @property
    def fatal(self) -> bool:
        """True when the document has no policy root at all."""
        return any(error.path == "/" and error.severity == ERROR for error in self.errors)


class PolicyValidator:
    """Accumulates structural problems; never raises.

    Every repeatable element may be a single object or a list, so documents
    can be validated before or after normalization.
    """

    def validate(self, policy: dict[str, Any], file_name: str) -> ValidationResult:
        result = ValidationResult()

        def add(message: str, path: str, severity: str = ERROR) -> None:
            result.errors.append(ValidationError(message, severity, file_name, path))

        root = policy.get(ROOT_ELEMENT) if isinstance(policy, dict) else None
        if not isinstance(root, dict):
            add(f"Missing root element <{ROOT_ELEMENT}>", "/")
            return result

        base_path = f"/{ROOT_ELEMENT}"
        if not root.get("@_PolicyId"):
            add("Missing PolicyId attribute", base_path)
        if not root.get("@_TenantId"):
            add("Missing TenantId attribute", base_path, WARNING)

        if "BasePolicy" in root:
            base = root.get("BasePolicy")
            if not isinstance(base, dict) or not base.get("PolicyId"):
                add("BasePolicy is missing PolicyId", f"{base_path}/BasePolicy")

        checks = (
            (("BuildingBlocks", "ClaimsSchema", "ClaimType"), "ClaimType"),
            (("BuildingBlocks", "ClaimsTransformations", "ClaimsTransformation"), "ClaimsTransformation"),
            (("ClaimsProviders", "ClaimsProvider", "TechnicalProfiles", "TechnicalProfile"), "TechnicalProfile"),
            (("RelyingParty", "TechnicalProfile"), "TechnicalProfile"),
            (("UserJourneys", "UserJourney"), "UserJourney"),
            (("SubJourneys", "SubJourney"), "SubJourney"),
        )
        for path, label in checks:
            element_path = base_path + "/" + "/".join(path)
            for index, element in enumerate(child_elements(root, *path)):
                if not isinstance(element, dict) or not element.get("@_Id"):
                    add(f"{label} at position {index + 1} is missing Id", element_path)
        return result
