"""Settings loading from YAML with schema validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .constants import (
    CONSOLIDATED_FILE_NAME,
    ORCHESTRATION_RESET_MS,
    STEP_DEDUP_WINDOW_MS,
    SUPPORTED_EVENT_INSTANCES,
)
from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "B2C_POLICY_TRACE_CONFIG"

SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "trace": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "step_dedup_window_ms": {"type": "integer", "minimum": 0},
                "orchestration_reset_ms": {"type": "integer", "minimum": 0},
                "supported_event_instances": {
                    "type": "array",
                    "items": {"type": "string", "pattern": "^Event:"},
                    "minItems": 1,
                },
            },
        },
        "consolidation": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "consolidated_file_name": {"type": "string", "minLength": 1},
                "graph_journey": {"type": ["string", "null"]},
            },
        },
        "logging": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "level": {
                    "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                },
            },
        },
    },
}


@dataclass(frozen=True)
class TraceSettings:
    step_dedup_window_ms: int = STEP_DEDUP_WINDOW_MS
    orchestration_reset_ms: int = ORCHESTRATION_RESET_MS
    supported_event_instances: tuple[str, ...] = SUPPORTED_EVENT_INSTANCES


@dataclass(frozen=True)
class ConsolidationSettings:
    consolidated_file_name: str = CONSOLIDATED_FILE_NAME
    # Journey rendered as the main graph; None follows RelyingParty/DefaultUserJourney.
    graph_journey: str | None = None


@dataclass(frozen=True)
class Settings:
    trace: TraceSettings = field(default_factory=TraceSettings)
    consolidation: ConsolidationSettings = field(default_factory=ConsolidationSettings)
    log_level: str = "WARNING"


def validate_settings_payload(payload: dict[str, Any]) -> list[str]:
    validator = Draft202012Validator(SETTINGS_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path]):
        location = "/".join(str(part) for part in error.path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors


def settings_from_mapping(payload: dict[str, Any]) -> Settings:
    errors = validate_settings_payload(payload)
    if errors:
        raise ConfigError("Invalid settings:\n- " + "\n- ".join(errors))

    trace = payload.get("trace", {})
    consolidation = payload.get("consolidation", {})
    defaults = Settings()
    return Settings(
        trace=TraceSettings(
            step_dedup_window_ms=trace.get(
                "step_dedup_window_ms", defaults.trace.step_dedup_window_ms
            ),
            orchestration_reset_ms=trace.get(
                "orchestration_reset_ms", defaults.trace.orchestration_reset_ms
            ),
            supported_event_instances=tuple(
                trace.get("supported_event_instances", defaults.trace.supported_event_instances)
            ),
        ),
        consolidation=ConsolidationSettings(
            consolidated_file_name=consolidation.get(
                "consolidated_file_name", defaults.consolidation.consolidated_file_name
            ),
            graph_journey=consolidation.get("graph_journey"),
        ),
        log_level=payload.get("logging", {}).get("level", defaults.log_level),
    )


def load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping/object: {path}")
    return data


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from ``path``, the config env var, or defaults."""
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR, "")
        if not env_path:
            return Settings()
        path = Path(env_path)
    LOGGER.debug("loading settings from %s", path)
    return settings_from_mapping(load_yaml(path))
