"""Exception taxonomy.

Only structurally unrecoverable situations raise. Validation problems and
malformed telemetry are reported through result objects instead.
"""

from __future__ import annotations


class B2CPolicyError(RuntimeError):
    """Base class for errors raised by this package."""


class EmptyContentError(B2CPolicyError):
    """Raised when XML content is empty."""


class XmlParseError(B2CPolicyError):
    """Raised when XML content is not well formed."""


class PolicyProcessingError(B2CPolicyError):
    """Raised when a policy set cannot be consolidated."""


class CycleDetectedError(PolicyProcessingError):
    def __init__(self, policy_ids: list[str]) -> None:
        self.policy_ids = policy_ids
        super().__init__(f"Inheritance cycle detected: {' -> '.join(policy_ids)}")


class MissingBaseError(PolicyProcessingError):
    def __init__(self, policy_id: str, base_policy_id: str, file_name: str) -> None:
        self.policy_id = policy_id
        self.base_policy_id = base_policy_id
        self.file_name = file_name
        super().__init__(
            f"{file_name}: base policy '{base_policy_id}' of '{policy_id}' "
            "is not among the provided files"
        )


class UnresolvedReferenceError(PolicyProcessingError):
    def __init__(self, profile_id: str, include_id: str, file_name: str) -> None:
        self.profile_id = profile_id
        self.include_id = include_id
        self.file_name = file_name
        super().__init__(
            f"{file_name}: TechnicalProfile '{profile_id}' includes '{include_id}' "
            "which is not defined in this file or any of its base policies"
        )


class GraphBuildError(B2CPolicyError):
    """Raised when no journey graph can be built from a policy."""


class TraceInputError(B2CPolicyError):
    """Raised when telemetry input does not match the expected table or record shape."""


class ConfigError(B2CPolicyError):
    """Raised when a settings file is unreadable or fails schema validation."""
