"""Raw journey recorder clips for trace tests."""

from __future__ import annotations

import datetime as dt
from typing import Any

from b2c_policy_trace import constants as c
from b2c_policy_trace.trace.clips import parse_clips
from b2c_policy_trace.trace.ingest import TraceLogInput

BASE_TIME = dt.datetime(2024, 1, 15, 10, 30, tzinfo=dt.timezone.utc)
POLICY_ID = "B2C_1A_SignUpOrSignIn"
CORRELATION_ID = "corr-123"


def headers(
    policy_id: str = POLICY_ID,
    event: str = "Event:AUTH",
    correlation_id: str = CORRELATION_ID,
) -> dict[str, Any]:
    return {
        "Kind": "Headers",
        "Content": {
            "UserJourneyRecorderEndpoint": c.JOURNEY_RECORDER_ENDPOINT,
            "CorrelationId": correlation_id,
            "EventInstance": event,
            "TenantId": "contoso.onmicrosoft.com",
            "PolicyId": policy_id,
        },
    }


def action(handler: str) -> dict[str, Any]:
    return {"Kind": "Action", "Content": handler}


def predicate(handler: str) -> dict[str, Any]:
    return {"Kind": "Predicate", "Content": handler}


def transition(event_name: str, state_name: str = "Initial") -> dict[str, Any]:
    return {"Kind": "Transition", "Content": {"EventName": event_name, "StateName": state_name}}


def fatal(message: str, hresult: str | None = None) -> dict[str, Any]:
    exception: dict[str, Any] = {"Message": message}
    if hresult:
        exception["HResult"] = hresult
    return {"Kind": "FatalException", "Content": {"Time": "10:30:00", "Exception": exception}}


def entry(key: str, value: str) -> dict[str, Any]:
    return {"c": "2024-01-15T10:30:00.000Z", "k": key, "v": value, "p": True}


def values(*pairs: tuple[str, Any]) -> dict[str, Any]:
    return {"Values": [{"Key": key, "Value": value} for key, value in pairs]}


def enabled(*profiles: str, record: str = "EnabledForUserJourneysTrue") -> tuple[str, Any]:
    return (
        record,
        values(*(("TechnicalProfileEnabled", {"EnabledResult": True, "TechnicalProfile": p}) for p in profiles)),
    )


def result(
    *,
    ok: bool = True,
    predicate_result: str | None = None,
    statebag: dict[str, Any] | None = None,
    records: list[tuple[str, Any]] | None = None,
    exception: dict[str, Any] | None = None,
) -> dict[str, Any]:
    content: dict[str, Any] = {"Result": ok}
    if predicate_result is not None:
        content["PredicateResult"] = predicate_result
    if statebag is not None:
        content["Statebag"] = statebag
    if records:
        content["RecorderRecord"] = values(*records)
    if exception is not None:
        content["Exception"] = exception
    return {"Kind": "HandlerResult", "Content": content}


def orch(step: int, profile: str | None = None, **extra: Any) -> list[dict[str, Any]]:
    """OrchestrationManager action and its result moving ORCH_CS to ``step``."""
    statebag: dict[str, Any] = {"ORCH_CS": entry("ORCH_CS", str(step))}
    if profile:
        statebag["CTP"] = entry("CTP", f"{profile}:{step}")
    statebag.update(extra)
    return [action(c.ORCHESTRATION_MANAGER), result(statebag=statebag)]


def log(
    log_id: str,
    clips: list[dict[str, Any]],
    seconds: float = 0,
    policy_id: str = POLICY_ID,
    correlation_id: str = CORRELATION_ID,
) -> TraceLogInput:
    return TraceLogInput(
        id=log_id,
        timestamp=BASE_TIME + dt.timedelta(seconds=seconds),
        policy_id=policy_id,
        correlation_id=correlation_id,
        clips=parse_clips(clips),
    )
