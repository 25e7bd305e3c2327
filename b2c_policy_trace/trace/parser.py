"""Rebuilding a user journey execution from journey recorder logs."""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from .. import constants as c
from ..config import Settings
from ..constants import StepResult
from ..entities import export
from .aggregator import ClipAggregation, ClipAggregator, HandlerGroup, Transition
from .clips import Clip, HeadersClip
from .interpreters import InterpretContext, InterpreterRegistry, InterpretResult, create_registry
from .journey import (
    CANCELLED,
    CONTINUE,
    ERROR,
    ExecutionMapBuilder,
    InteractionResult,
    JourneyStack,
    NodeExecution,
    StatebagAccumulator,
    TraceStep,
    TraceStepBuilder,
    merge_status,
)
from .post_processors import PostProcessor, default_post_processors

LOGGER = logging.getLogger(__name__)

_REGION_SUFFIX_RE = re.compile(r"_[A-Z]{2}$", re.IGNORECASE)

_TRANSITION_OUTCOMES: dict[str, tuple[str, bool]] = {
    "Fail": (ERROR, False),
    "Continue": (CONTINUE, True),
    "SendClaims": (CONTINUE, True),
    "Cancel": (CANCELLED, False),
    "Cancelled": (CANCELLED, False),
}


class TraceLog(Protocol):
    id: str
    timestamp: dt.datetime
    policy_id: str
    correlation_id: str
    clips: list[Clip]


@dataclass
class TraceParseResult:
    trace_steps: list[TraceStep] = field(default_factory=list)
    execution_map: dict[str, NodeExecution] = field(default_factory=dict)
    main_journey_id: str = ""
    success: bool = True
    errors: list[str] = field(default_factory=list)
    final_statebag: dict[str, str] = field(default_factory=dict)
    final_claims: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "traceSteps": [step.to_dict() for step in self.trace_steps],
            "executionMap": {node_id: export(node) for node_id, node in self.execution_map.items()},
            "mainJourneyId": self.main_journey_id,
            "success": self.success,
            "errors": list(self.errors),
            "finalStatebag": dict(self.final_statebag),
            "finalClaims": dict(self.final_claims),
        }


def journey_name_from_policy(policy_id: str) -> str:
    """``B2C_1A_SignUpOrSignIn_EU`` -> ``SignUpOrSignIn``."""
    name = policy_id
    for prefix in c.JOURNEY_NAME_PREFIXES:
        if name.lower().startswith(prefix.lower()):
            name = name[len(prefix) :]
    name = _REGION_SUFFIX_RE.sub("", name)
    return name or policy_id


def headers_of(clips: list[Clip]) -> HeadersClip | None:
    return next((clip for clip in clips if isinstance(clip, HeadersClip)), None)


def event_type_of(headers: HeadersClip | None) -> str:
    if headers is None:
        return "API"
    return {
        "Event:AUTH": "AUTH",
        "Event:SELFASSERTED": "SELFASSERTED",
        "Event:ClaimsExchange": "ClaimsExchange",
    }.get(headers.event_instance, "API")


@dataclass
class _TraceState:
    journey_stack: JourneyStack
    statebag: StatebagAccumulator = field(default_factory=StatebagAccumulator)
    steps: list[TraceStep] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    builder: TraceStepBuilder | None = None
    sequence: int = 0
    # "{journeyContextId}-{stepOrder}" -> (index into steps, timestamp of that step)
    seen: dict[str, tuple[int, dt.datetime]] = field(default_factory=dict)


class TraceParser:
    """Turns the logs of one correlation id into ordered trace steps.

    Each log is folded into handler groups; each group goes to the first
    interpreter that claims its handler, and the interpreter's result is
    applied to the step being built. A new step begins whenever an
    interpreter asks for one.
    """

    def __init__(
        self,
        registry: InterpreterRegistry | None = None,
        post_processors: list[PostProcessor] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = registry or create_registry(self.settings.trace.orchestration_reset_ms)
        self.post_processors = post_processors if post_processors is not None else default_post_processors()
        self.aggregator = ClipAggregator()

    def parse_trace(self, logs: list[TraceLog]) -> TraceParseResult:
        self.registry.reset_interpreters()
        supported = set(self.settings.trace.supported_event_instances)
        relevant = [log for log in logs if (headers_of(log.clips) or HeadersClip()).event_instance in supported]
        if not relevant:
            return TraceParseResult(success=False, errors=[c.NO_SUPPORTED_EVENTS_MESSAGE])
        relevant.sort(key=lambda log: (log.timestamp, log.id))

        main_journey_id = self._main_journey_id(relevant)
        state = _TraceState(JourneyStack(main_journey_id, journey_name_from_policy(main_journey_id)))
        for log in relevant:
            self._process_log(state, log)
        self._finalize_step(state)

        for processor in self.post_processors:
            outcome = processor.process(state.steps)
            state.errors.extend(outcome.errors)

        execution_map = ExecutionMapBuilder()
        execution_map.add_steps(state.steps)
        statebag, claims = state.statebag.snapshot()
        LOGGER.info("rebuilt %d steps from %d logs", len(state.steps), len(relevant))
        return TraceParseResult(
            trace_steps=state.steps,
            execution_map=execution_map.build(),
            main_journey_id=main_journey_id,
            success=not state.errors,
            errors=state.errors,
            final_statebag=statebag,
            final_claims=claims,
        )

    def _main_journey_id(self, logs: list[TraceLog]) -> str:
        for log in logs:
            headers = headers_of(log.clips)
            if headers is not None and headers.policy_id:
                return headers.policy_id
        return logs[0].policy_id

    def _process_log(self, state: _TraceState, log: TraceLog) -> None:
        event_type = event_type_of(headers_of(log.clips))
        aggregation = self.aggregator.aggregate(log.clips)
        for clip in aggregation.malformed:
            state.errors.append(f"Malformed {clip.kind} clip in log {log.id}: {clip.problem}")

        for item in self._ordered(aggregation):
            if isinstance(item, Transition):
                self._apply_transition(state, item)
            else:
                self._process_group(state, item, log, event_type)

        if aggregation.fatal_exception is not None:
            self._fatal(state, aggregation.fatal_exception.exception.message, log)

    def _ordered(self, aggregation: ClipAggregation) -> list[HandlerGroup | Transition]:
        items: list[HandlerGroup | Transition] = [*aggregation.groups, *aggregation.transitions]
        return sorted(items, key=lambda item: item.clip_index if isinstance(item, HandlerGroup) else item.index)

    def _process_group(self, state: _TraceState, group: HandlerGroup, log: TraceLog, event_type: str) -> None:
        interpreter = self.registry.get_interpreter(group.handler_name)
        if interpreter is None:
            return
        context = InterpretContext(
            handler_name=group.handler_name,
            handler_result=group.result,
            journey_stack=state.journey_stack,
            timestamp=log.timestamp,
            log_id=log.id,
            predicate=group.predicate,
            clips=group.clips,
            sequence_number=state.sequence,
            statebag=dict(state.statebag.statebag),
            claims=dict(state.statebag.claims),
        )
        try:
            result = interpreter.interpret(context)
        except Exception as exc:
            LOGGER.warning("interpreter for %s failed on log %s: %s", group.handler_name, log.id, exc)
            state.errors.append(f"Interpreter error in {group.handler_name}: {exc}")
            return
        self._apply(state, result, log, event_type)

    def _apply(self, state: _TraceState, result: InterpretResult, log: TraceLog, event_type: str) -> None:
        if not result.success:
            if result.error:
                state.errors.append(result.error)
            return

        if result.create_step:
            self._finalize_step(state)
            # The statebag is step scoped; claims persist.
            state.statebag.clear_statebag_keep_claims()
            state.statebag.apply_updates(result.statebag_updates)
            state.statebag.apply_claims(result.claims_updates)
            current = state.journey_stack.current()
            state.builder = (
                TraceStepBuilder()
                .with_sequence(state.sequence)
                .with_timestamp(log.timestamp)
                .with_log_id(log.id)
                .with_event_type(result.event_type or event_type)
                .with_journey_context(current.journey_id, current.journey_name)
                .with_step_order(current.last_orch_step)
                .calculate_graph_node_id()
            )
            state.sequence += 1
            if result.action_handler:
                state.builder.with_action_handler(result.action_handler)
            if result.step_result == StepResult.ERROR and result.error:
                state.builder.with_error(result.error, result.error_hresult)
            elif result.step_result:
                state.builder.with_result(result.step_result)
        else:
            state.statebag.apply_updates(result.statebag_updates)
            state.statebag.apply_claims(result.claims_updates)
            if state.builder is not None and result.step_result:
                if result.step_result == StepResult.ERROR and result.error:
                    state.builder.with_error(result.error, result.error_hresult)
                elif not result.finalize_step:
                    state.builder.with_result(result.step_result)

        if result.push_sub_journey is not None:
            journey_id, journey_name = result.push_sub_journey
            state.journey_stack.push(journey_id, journey_name)
        if result.pop_sub_journey:
            state.journey_stack.pop()

        if state.builder is not None:
            self._apply_facts(state, state.builder, result)
            if result.finalize_step:
                if result.step_result:
                    state.builder.with_result(result.step_result)
                if result.error:
                    state.builder.with_error(result.error, result.error_hresult)
                self._finalize_step(state)

    def _apply_facts(self, state: _TraceState, builder: TraceStepBuilder, result: InterpretResult) -> None:
        if result.clear_selectable_options:
            builder.clear_selectable_options()
        if result.action_handler and not result.create_step:
            builder.with_action_handler(result.action_handler)

        claims = dict(state.statebag.claims)
        builder.add_technical_profiles(result.technical_profiles)
        for detail in result.technical_profile_details:
            detail.claims_snapshot = claims
            builder.add_technical_profile_detail(detail)

        builder.add_selectable_options(result.selectable_options)
        if result.is_interactive or len(result.selectable_options) > 1:
            builder.as_interactive()
        if result.selected_option:
            builder.with_selected_option(result.selected_option)
        if result.sub_journey_id:
            builder.with_sub_journey_id(result.sub_journey_id)
        for call in result.backend_api_calls:
            builder.add_backend_api_call(call)
        builder.add_claims_transformations(result.claims_transformations)
        for transformation in result.claims_transformation_details:
            builder.add_claims_transformation_detail(transformation)
        builder.add_validation_technical_profiles(result.validation_technical_profiles)
        builder.add_claim_mappings(result.claim_mappings)
        if result.display_control_action is not None:
            builder.add_display_control_action(result.display_control_action)
        if result.ui_settings is not None:
            builder.with_ui_settings(result.ui_settings)
        if result.sso_session_participant is not None:
            builder.step.sso_session_participant = result.sso_session_participant
        if result.sso_session_activated is not None:
            builder.step.sso_session_activated = result.sso_session_activated
        if result.is_verification_step:
            builder.as_verification_step()
        if result.has_verification_context:
            builder.step.has_verification_context = True
        if result.submitted_claims:
            builder.with_submitted_claims(result.submitted_claims)
        if result.interaction_result is not None:
            builder.with_interaction_result(result.interaction_result)
        if result.is_final_step:
            builder.as_final_step()

    def _apply_transition(self, state: _TraceState, transition: Transition) -> None:
        builder = state.builder
        if builder is None:
            return
        builder.with_transition_event(transition.event_name)
        outcome = _TRANSITION_OUTCOMES.get(transition.event_name)
        if outcome is None:
            return
        existing = builder.step.interaction_result
        if existing is None or outcome[0] == ERROR:
            name, success = outcome
            message = builder.step.error_message if name == ERROR else None
            builder.with_interaction_result(InteractionResult(name, success, message, builder.step.error_hresult))

    def _finalize_step(self, state: _TraceState) -> None:
        builder = state.builder
        state.builder = None
        if builder is None:
            return
        statebag, claims = state.statebag.snapshot()
        step = builder.with_statebag(statebag).with_claims(claims).build()

        is_error_step = step.result == StepResult.ERROR and bool(step.error_message)
        if step.step_order <= 0 and not is_error_step:
            LOGGER.debug("dropping step %d without an orchestration step", step.sequence_number)
            return

        key = f"{step.journey_context_id}-{step.step_order}"
        window = dt.timedelta(milliseconds=self.settings.trace.step_dedup_window_ms)
        seen = state.seen.get(key)
        if seen is not None and step.timestamp - seen[1] <= window:
            _merge_into(state.steps[seen[0]], step)
            return
        state.seen[key] = (len(state.steps), step.timestamp)
        state.steps.append(step)

    def _fatal(self, state: _TraceState, message: str, log: TraceLog) -> None:
        state.errors.append(message)
        if state.builder is not None:
            state.builder.with_error(message)
            self._finalize_step(state)
        current = state.journey_stack.current()
        statebag, claims = state.statebag.snapshot()
        error_step = (
            TraceStepBuilder()
            .with_sequence(state.sequence)
            .with_timestamp(log.timestamp)
            .with_log_id(log.id)
            .with_journey_context(current.journey_id, current.journey_name)
            .with_step_order(current.last_orch_step)
            .with_error(message)
            .with_statebag(statebag)
            .with_claims(claims)
        )
        error_step.step.graph_node_id = f"{current.journey_id}-Error"
        state.sequence += 1
        state.steps.append(error_step.build())


def _merge_into(existing: TraceStep, step: TraceStep) -> None:
    """Fold a repeat of ``existing`` seen within the dedup window into it."""
    for profile in step.technical_profiles:
        if profile not in existing.technical_profiles:
            existing.technical_profiles.append(profile)
    known = {detail.id for detail in existing.technical_profile_details}
    existing.technical_profile_details.extend(d for d in step.technical_profile_details if d.id not in known)
    for option in step.selectable_options:
        if option not in existing.selectable_options:
            existing.selectable_options.append(option)
    existing.backend_api_calls.extend(step.backend_api_calls)
    existing.display_control_actions.extend(step.display_control_actions)
    existing.result = merge_status(existing.result, step.result)
    if step.error_message and not existing.error_message:
        existing.error_message = step.error_message
        existing.error_hresult = step.error_hresult
    existing.is_final_step = existing.is_final_step or step.is_final_step
    existing.statebag_snapshot = step.statebag_snapshot
    existing.claims_snapshot = step.claims_snapshot
