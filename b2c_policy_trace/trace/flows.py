"""Grouping logs into user flows, one per correlation id."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import Settings
from ..constants import NO_SUPPORTED_EVENTS_MESSAGE, StatebagKey, StepResult
from ..framework import isoformat
from .clips import FatalExceptionClip, HandlerResultClip, TransitionClip
from .interpreters import api_result_outcome
from .journey import CANCELLED
from .parser import TraceLog, TraceParser

LOGGER = logging.getLogger(__name__)

_CANCEL_EVENTS = ("Cancel", "Cancelled")


@dataclass(frozen=True)
class UserFlow:
    id: str
    correlation_id: str
    policy_id: str
    start_time: dt.datetime
    end_time: dt.datetime
    step_count: int = 0
    completed: bool = False
    cancelled: bool = False
    has_errors: bool = False
    log_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "correlationId": self.correlation_id,
            "policyId": self.policy_id,
            "startTime": isoformat(self.start_time),
            "endTime": isoformat(self.end_time),
            "stepCount": self.step_count,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "hasErrors": self.has_errors,
            "logIds": list(self.log_ids),
        }


def _sorted(logs: list[TraceLog]) -> list[TraceLog]:
    return sorted(logs, key=lambda log: (log.timestamp, log.id))


def _clip_flags(logs: list[TraceLog]) -> tuple[bool, bool, bool]:
    completed = cancelled = errored = False
    for log in logs:
        for clip in log.clips:
            if isinstance(clip, TransitionClip):
                completed = completed or clip.event_name == "SendClaims"
                cancelled = cancelled or clip.event_name in _CANCEL_EVENTS
            elif isinstance(clip, FatalExceptionClip):
                errored = True
            elif isinstance(clip, HandlerResultClip):
                errored = errored or clip.exception is not None
                if StatebagKey.COMPLEX_API_RESULT in clip.statebag:
                    outcome = api_result_outcome(clip)
                    cancelled = cancelled or (outcome is not None and outcome.outcome == CANCELLED)
    return completed, cancelled, errored


def build_flow(index: int, correlation_id: str, logs: list[TraceLog], parser: TraceParser) -> UserFlow:
    result = parser.parse_trace(logs)
    completed, cancelled, errored = _clip_flags(logs)
    steps = result.trace_steps
    parse_errors = [error for error in result.errors if error != NO_SUPPORTED_EVENTS_MESSAGE]
    return UserFlow(
        id=f"{correlation_id}-{index}",
        correlation_id=correlation_id,
        policy_id=logs[0].policy_id,
        start_time=logs[0].timestamp,
        end_time=logs[-1].timestamp,
        step_count=len(steps),
        completed=completed or any(step.is_final_step for step in steps),
        cancelled=cancelled
        or any(step.interaction_result is not None and step.interaction_result.outcome == CANCELLED for step in steps),
        has_errors=errored or bool(parse_errors) or any(step.result == StepResult.ERROR for step in steps),
        log_ids=[log.id for log in logs],
    )


def group_logs_into_flows(logs: list[TraceLog], settings: Settings | None = None) -> list[UserFlow]:
    """One flow per correlation id, ordered by when each flow started.

    The input order does not matter: logs are sorted by timestamp, then id,
    before grouping.
    """
    by_correlation: dict[str, list[TraceLog]] = {}
    for log in _sorted(logs):
        by_correlation.setdefault(log.correlation_id, []).append(log)
    parser = TraceParser(settings=settings)
    flows = [
        build_flow(index, correlation_id, group, parser)
        for index, (correlation_id, group) in enumerate(by_correlation.items())
    ]
    LOGGER.info("grouped %d logs into %d flows", len(logs), len(flows))
    return flows


def get_logs_for_flow(logs: list[TraceLog], flow_id: str, flows: list[UserFlow] | None = None) -> list[TraceLog]:
    if flows is None:
        flows = group_logs_into_flows(logs)
    flow = next((candidate for candidate in flows if candidate.id == flow_id), None)
    if flow is None:
        return []
    wanted = set(flow.log_ids)
    return [log for log in logs if log.id in wanted]
