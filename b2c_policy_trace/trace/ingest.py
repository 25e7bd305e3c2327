"""Application Insights rows to ``LogRecord`` and ``TraceLogInput``.

The journey recorder splits long payloads over several trace rows. A payload
starts with ``[`` and ends with ``]``; rows in between are continuations and
are stitched back together before the clip array is parsed.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator

from ..errors import TraceInputError
from ..framework import isoformat, parse_timestamp
from .clips import Clip, clip_to_dict, parse_clips

LOGGER = logging.getLogger(__name__)

UNKNOWN_POLICY = "Unknown"

APP_INSIGHTS_TABLE_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["columns", "rows"],
    "properties": {
        "name": {"type": "string"},
        "columns": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {"name": {"type": "string"}, "type": {"type": "string"}},
            },
        },
        "rows": {"type": "array", "items": {"type": "array"}},
    },
}

LOG_RECORD_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["id", "timestamp", "correlationId", "clips"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "timestamp": {"type": "string", "minLength": 1},
        "policyId": {"type": "string"},
        "correlationId": {"type": "string"},
        "clips": {
            "type": "array",
            "items": {"type": "object", "required": ["Kind", "Content"]},
        },
    },
}

_CUSTOM_DIMENSION_KEYS: dict[str, tuple[str, ...]] = {
    "correlation_id": ("CorrelationId", "correlationId", "operation_Id"),
    "event_name": ("EventName", "eventName"),
    "tenant": ("TenantId", "Tenant", "tenant"),
    "user_journey": ("PolicyId", "UserJourney", "userJourney", "policyId"),
    "version": ("Version", "version"),
}


@dataclass(frozen=True)
class CustomDimensions:
    correlation_id: str = ""
    event_name: str = ""
    tenant: str = ""
    user_journey: str = ""
    version: str = ""

    @classmethod
    def parse(cls, value: Any) -> CustomDimensions:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return cls()
        if not isinstance(value, dict):
            return cls()
        found = {}
        for name, keys in _CUSTOM_DIMENSION_KEYS.items():
            for key in keys:
                candidate = value.get(key)
                if isinstance(candidate, str) and candidate.strip():
                    found[name] = candidate.strip()
                    break
        return cls(**found)


@dataclass(frozen=True)
class TraceLogInput:
    id: str
    timestamp: dt.datetime
    policy_id: str
    correlation_id: str
    clips: list[Clip] = field(default_factory=list)


@dataclass(frozen=True)
class LogRecord:
    id: str
    timestamp: dt.datetime
    policy_id: str
    correlation_id: str
    clips: list[Clip] = field(default_factory=list)
    cloud_role_instance: str = ""
    raw_ids: list[str] = field(default_factory=list)
    payload_text: str = ""
    custom_dimensions: CustomDimensions = field(default_factory=CustomDimensions)

    def to_trace_input(self) -> TraceLogInput:
        return TraceLogInput(self.id, self.timestamp, self.policy_id, self.correlation_id, list(self.clips))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "policyId": self.policy_id,
            "correlationId": self.correlation_id,
            "clips": [clip_to_dict(clip) for clip in self.clips],
        }


@dataclass
class _RawRow:
    id: str
    timestamp: str
    message: str
    trace_message: str
    cloud_role_instance: str
    custom_dimensions: CustomDimensions


@dataclass
class _StitchedEntry:
    id_parts: list[str]
    timestamp: str
    cloud_role_instance: str
    message: str
    custom_dimensions: CustomDimensions

    @property
    def composite_id(self) -> str:
        return ":".join(self.id_parts)


def _schema_errors(schema: dict[str, Any], payload: Any) -> list[str]:
    validator = Draft202012Validator(schema)
    return [
        f"{'/'.join(str(part) for part in error.path) or '<root>'}: {error.message}"
        for error in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.path])
    ]


def _string(value: Any) -> str:
    return "" if value is None else str(value)


def _timestamp(value: str) -> dt.datetime:
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise TraceInputError(f"Unparseable timestamp {value!r}") from exc


def _sort_key(row: _RawRow) -> dt.datetime:
    return _timestamp(row.timestamp) if row.timestamp else dt.datetime.min.replace(tzinfo=dt.timezone.utc)


class AppInsightsProcessor:
    """Converts an Application Insights query table into log records."""

    def process(self, table: dict[str, Any] | None) -> list[LogRecord]:
        if not table or not table.get("rows"):
            return []
        errors = _schema_errors(APP_INSIGHTS_TABLE_SCHEMA, table)
        if errors:
            raise TraceInputError("Invalid Application Insights table:\n- " + "\n- ".join(errors))
        rows = self._map_rows(table)
        entries = self.stitch(rows)
        LOGGER.debug("stitched %d rows into %d log records", len(rows), len(entries))
        return [self._to_log_record(entry) for entry in entries]

    def _map_rows(self, table: dict[str, Any]) -> list[_RawRow]:
        index = {column["name"]: position for position, column in enumerate(table["columns"])}

        def pick(row: list[Any], name: str) -> Any:
            position = index.get(name)
            if position is None or position >= len(row):
                return None
            return row[position]

        return [
            _RawRow(
                id=_string(pick(row, "id")) or f"row-{position}",
                timestamp=_string(pick(row, "timestamp")),
                message=_string(pick(row, "message")),
                trace_message=_string(pick(row, "traceMessage")),
                cloud_role_instance=_string(pick(row, "cloudRoleInstance")),
                custom_dimensions=CustomDimensions.parse(pick(row, "customDimensions")),
            )
            for position, row in enumerate(table["rows"])
        ]

    def stitch(self, rows: list[_RawRow]) -> list[_StitchedEntry]:
        entries: list[_StitchedEntry] = []
        pending: _StitchedEntry | None = None
        for row in sorted(rows, key=_sort_key):
            part = row.trace_message or row.message
            trimmed = part.strip()
            if not trimmed.startswith("[") and pending is None:
                entries.append(
                    _StitchedEntry([row.id], row.timestamp, row.cloud_role_instance, part, row.custom_dimensions)
                )
                continue
            if trimmed.startswith("["):
                if pending is not None:
                    LOGGER.debug("log %s was never closed; keeping it as is", pending.composite_id)
                    entries.append(pending)
                pending = _StitchedEntry([row.id], row.timestamp, row.cloud_role_instance, part, row.custom_dimensions)
            else:
                pending.message += part
                pending.id_parts.append(row.id)
            if trimmed.endswith("]"):
                entries.append(pending)
                pending = None
        if pending is not None and pending.message:
            entries.append(pending)
        return entries

    def _to_log_record(self, entry: _StitchedEntry) -> LogRecord:
        payload = entry.message.strip()
        clips: list[Clip] = []
        if payload:
            try:
                clips = parse_clips(json.loads(payload))
            except json.JSONDecodeError:
                LOGGER.debug("log %s payload is not JSON", entry.composite_id)
        dimensions = entry.custom_dimensions
        return LogRecord(
            id=entry.composite_id,
            timestamp=_timestamp(entry.timestamp),
            policy_id=dimensions.user_journey or UNKNOWN_POLICY,
            correlation_id=dimensions.correlation_id or entry.id_parts[0],
            clips=clips,
            cloud_role_instance=entry.cloud_role_instance,
            raw_ids=list(entry.id_parts),
            payload_text=entry.message,
            custom_dimensions=dimensions,
        )


def log_record_from_dict(payload: dict[str, Any]) -> LogRecord:
    errors = _schema_errors(LOG_RECORD_SCHEMA, payload)
    if errors:
        raise TraceInputError("Invalid log record:\n- " + "\n- ".join(errors))
    return LogRecord(
        id=payload["id"],
        timestamp=_timestamp(payload["timestamp"]),
        policy_id=payload.get("policyId") or UNKNOWN_POLICY,
        correlation_id=payload["correlationId"],
        clips=parse_clips(payload["clips"]),
        raw_ids=[payload["id"]],
    )


def load_log_records(payload: Any) -> list[LogRecord]:
    """Accept a query response (``{"tables": [...]}``), a single table or a record list."""
    if isinstance(payload, list):
        return [log_record_from_dict(item) for item in payload]
    if isinstance(payload, dict) and isinstance(payload.get("tables"), list):
        tables = payload["tables"]
        if not tables:
            return []
        primary = next((table for table in tables if table.get("name") == "PrimaryResult"), tables[0])
        return AppInsightsProcessor().process(primary)
    if isinstance(payload, dict) and "rows" in payload:
        return AppInsightsProcessor().process(payload)
    raise TraceInputError("Expected a list of log records or an Application Insights query response")


def to_trace_inputs(records: list[LogRecord]) -> list[TraceLogInput]:
    return [record.to_trace_input() for record in records]
