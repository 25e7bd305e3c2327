"""Journey recorder clips as tagged variants.

A recorder payload is a JSON array of ``{"Kind": ..., "Content": ...}``
objects. Known kinds become typed clips; anything else, and known kinds whose
content has the wrong shape, become ``UnrecognizedClip`` so parsing can
continue over telemetry from newer engine versions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from ..constants import ClipKind, StatebagKey

UNKNOWN_ERROR = "Unknown error"


def _string(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True)
class HeadersClip:
    kind = ClipKind.HEADERS

    recorder_endpoint: str = ""
    correlation_id: str = ""
    event_instance: str = ""
    tenant_id: str = ""
    policy_id: str = ""


@dataclass(frozen=True)
class TransitionClip:
    kind = ClipKind.TRANSITION

    event_name: str = ""
    state_name: str = ""


@dataclass(frozen=True)
class PredicateClip:
    kind = ClipKind.PREDICATE

    handler: str = ""


@dataclass(frozen=True)
class ActionClip:
    kind = ClipKind.ACTION

    handler: str = ""


@dataclass(frozen=True)
class ExceptionInfo:
    message: str = UNKNOWN_ERROR
    hresult: str | None = None
    data: dict[str, Any] | None = None
    inner: ExceptionInfo | None = None

    @classmethod
    def from_content(cls, content: Any) -> ExceptionInfo:
        if not isinstance(content, dict):
            return cls()
        inner = content.get("Exception")
        hresult = content.get("HResult")
        return cls(
            message=_string(content.get("Message")) or UNKNOWN_ERROR,
            hresult=_string(hresult) if hresult is not None else None,
            data=content.get("Data") if isinstance(content.get("Data"), dict) else None,
            inner=cls.from_content(inner) if isinstance(inner, dict) else None,
        )


@dataclass(frozen=True)
class HandlerResultClip:
    kind = ClipKind.HANDLER_RESULT

    result: bool = False
    predicate_result: str | None = None
    statebag: dict[str, Any] = field(default_factory=dict)
    recorder_values: list[dict[str, Any]] = field(default_factory=list)
    exception: ExceptionInfo | None = None

    def statebag_value(self, key: str) -> str | None:
        return statebag_entry_value(self.statebag.get(key))

    def record(self, key: str) -> Any:
        """Value of the first top-level recorder entry named ``key``."""
        for entry in self.recorder_values:
            if entry.get("Key") == key and entry.get("Value"):
                return entry["Value"]
        return None

    def records(self, key: str) -> list[Any]:
        return [entry["Value"] for entry in self.recorder_values if entry.get("Key") == key and entry.get("Value")]


@dataclass(frozen=True)
class FatalExceptionClip:
    kind = ClipKind.FATAL_EXCEPTION

    exception: ExceptionInfo = field(default_factory=ExceptionInfo)
    time: str | None = None


@dataclass(frozen=True)
class UnrecognizedClip:
    kind: str
    content: Any = None
    # Set when a known kind carried content of the wrong shape.
    problem: str | None = None


Clip = Union[
    HeadersClip,
    TransitionClip,
    PredicateClip,
    ActionClip,
    HandlerResultClip,
    FatalExceptionClip,
    UnrecognizedClip,
]


def statebag_entry_value(entry: Any) -> str | None:
    """Value of a statebag entry, either ``{"v": ...}`` or a flattened string."""
    if not entry:
        return None
    if isinstance(entry, dict):
        value = entry.get("v")
        return None if value is None else _string(value)
    if isinstance(entry, str):
        return entry
    return None


def _recorder_values(record: Any) -> list[dict[str, Any]]:
    if not isinstance(record, dict) or not isinstance(record.get("Values"), list):
        return []
    values = []
    for entry in record["Values"]:
        if isinstance(entry, dict):
            values.append({"Key": _string(entry.get("Key")), "Value": entry.get("Value")})
        else:
            values.append({"Key": "", "Value": None})
    return values


def _statebag(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    return {key: value for key, value in raw.items() if value is not None}


def parse_clip(raw: Any) -> Clip | None:
    """Parse one raw clip; ``None`` when ``raw`` is not a Kind/Content object."""
    if not isinstance(raw, dict) or "Kind" not in raw or "Content" not in raw:
        return None
    kind = _string(raw["Kind"])
    content = raw["Content"]

    if kind == ClipKind.HEADERS:
        if not isinstance(content, dict):
            return UnrecognizedClip(kind, content, "Headers content is not an object")
        return HeadersClip(
            recorder_endpoint=_string(content.get("UserJourneyRecorderEndpoint")),
            correlation_id=_string(content.get("CorrelationId")),
            event_instance=_string(content.get("EventInstance")),
            tenant_id=_string(content.get("TenantId")),
            policy_id=_string(content.get("PolicyId")),
        )
    if kind == ClipKind.TRANSITION:
        if not isinstance(content, dict):
            return UnrecognizedClip(kind, content, "Transition content is not an object")
        return TransitionClip(_string(content.get("EventName")), _string(content.get("StateName")))
    if kind == ClipKind.PREDICATE:
        return PredicateClip(_string(content))
    if kind == ClipKind.ACTION:
        return ActionClip(_string(content))
    if kind == ClipKind.HANDLER_RESULT:
        if not isinstance(content, dict):
            return UnrecognizedClip(kind, content, "HandlerResult content is not an object")
        predicate_result = content.get("PredicateResult")
        exception = content.get("Exception")
        return HandlerResultClip(
            result=content.get("Result") is True,
            predicate_result=predicate_result if isinstance(predicate_result, str) else None,
            statebag=_statebag(content.get("Statebag")),
            recorder_values=_recorder_values(content.get("RecorderRecord")),
            exception=ExceptionInfo.from_content(exception) if isinstance(exception, dict) else None,
        )
    if kind in (ClipKind.FATAL_EXCEPTION, ClipKind.EXCEPTION):
        if not isinstance(content, dict):
            return FatalExceptionClip()
        time = content.get("Time")
        return FatalExceptionClip(
            exception=ExceptionInfo.from_content(content.get("Exception")),
            time=time if isinstance(time, str) else None,
        )
    return UnrecognizedClip(kind, content)


def parse_clips(raw: Any) -> list[Clip]:
    if not isinstance(raw, list):
        return []
    return [clip for clip in (parse_clip(item) for item in raw) if clip is not None]


def clip_to_dict(clip: Clip) -> dict[str, Any]:
    """Inverse of ``parse_clip`` for the fields the typed clips keep."""
    if isinstance(clip, HeadersClip):
        content: Any = {
            "UserJourneyRecorderEndpoint": clip.recorder_endpoint,
            "CorrelationId": clip.correlation_id,
            "EventInstance": clip.event_instance,
            "TenantId": clip.tenant_id,
            "PolicyId": clip.policy_id,
        }
    elif isinstance(clip, TransitionClip):
        content = {"EventName": clip.event_name, "StateName": clip.state_name}
    elif isinstance(clip, (PredicateClip, ActionClip)):
        content = clip.handler
    elif isinstance(clip, HandlerResultClip):
        content = {"Result": clip.result}
        if clip.predicate_result is not None:
            content["PredicateResult"] = clip.predicate_result
        if clip.statebag:
            content["Statebag"] = clip.statebag
        if clip.recorder_values:
            content["RecorderRecord"] = {"Values": clip.recorder_values}
        if clip.exception is not None:
            content["Exception"] = _exception_to_dict(clip.exception)
    elif isinstance(clip, FatalExceptionClip):
        content = {"Exception": _exception_to_dict(clip.exception)}
        if clip.time:
            content["Time"] = clip.time
    else:
        content = clip.content
    return {"Kind": clip.kind, "Content": content}


def _exception_to_dict(info: ExceptionInfo) -> dict[str, Any]:
    payload: dict[str, Any] = {"Message": info.message}
    if info.hresult is not None:
        payload["HResult"] = info.hresult
    if info.data is not None:
        payload["Data"] = info.data
    if info.inner is not None:
        payload["Exception"] = _exception_to_dict(info.inner)
    return payload


def complex_claims(result: HandlerResultClip | None) -> dict[str, str]:
    if result is None:
        return {}
    claims = result.statebag.get(StatebagKey.COMPLEX_CLAIMS)
    if not isinstance(claims, dict):
        return {}
    return {key: _string(value) for key, value in claims.items()}
