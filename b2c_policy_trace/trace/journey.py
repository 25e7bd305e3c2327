"""Trace step model, the step builder and per-trace bookkeeping."""

from __future__ import annotations

import copy
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any

from ..constants import STEP_RESULT_PRIORITY, StatebagKey, StepResult
from ..entities import Exportable, export
from ..framework import isoformat

LOGGER = logging.getLogger(__name__)

CONTINUE = "Continue"
CANCELLED = "Cancelled"
ERROR = "Error"


@dataclass
class ClaimValue(Exportable):
    claim_type: str
    value: str = ""


@dataclass
class ParameterValue(Exportable):
    id: str
    value: str = ""


@dataclass
class ClaimsTransformationDetail(Exportable):
    id: str
    input_claims: list[ClaimValue] = field(default_factory=list)
    input_parameters: list[ParameterValue] = field(default_factory=list)
    output_claims: list[ClaimValue] = field(default_factory=list)


@dataclass
class TechnicalProfileDetail(Exportable):
    id: str
    provider_type: str = ""
    protocol_type: str | None = None
    claims_transformations: list[ClaimsTransformationDetail] = field(default_factory=list)
    claims_snapshot: dict[str, str] | None = None


@dataclass
class ClaimMapping(Exportable):
    partner_claim_type: str
    policy_claim_type: str


@dataclass
class BackendApiCall(Exportable):
    request_uri: str | None = None
    request_type: str | None = None
    status_code: int | None = None
    raw_response: str | None = None
    response: Any = None


@dataclass
class UiSettings(Exportable):
    content_definition: str | None = None
    page_type: str | None = None
    remote_resource: str | None = None
    page_id: str | None = None
    language: str | None = None
    config: dict[str, Any] | None = None
    tenant_branding: dict[str, Any] | None = None


@dataclass
class DisplayControlTechnicalProfile(Exportable):
    technical_profile_id: str
    claims_transformations: list[ClaimsTransformationDetail] = field(default_factory=list)
    claim_mappings: list[ClaimMapping] = field(default_factory=list)


@dataclass
class DisplayControlAction(Exportable):
    display_control_id: str
    action: str = ""
    result_code: str | None = None
    technical_profiles: list[DisplayControlTechnicalProfile] = field(default_factory=list)


@dataclass
class InteractionResult(Exportable):
    outcome: str
    success: bool
    error_message: str | None = None
    error_hresult: str | None = None


@dataclass
class TraceStep:
    sequence_number: int = 0
    timestamp: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))
    log_id: str = ""
    event_type: str = "AUTH"
    graph_node_id: str = ""
    journey_context_id: str = ""
    journey_name: str = ""
    step_order: int = 0
    result: str = StepResult.SUCCESS
    error_message: str | None = None
    error_hresult: str | None = None
    action_handler: str | None = None
    technical_profiles: list[str] = field(default_factory=list)
    technical_profile_details: list[TechnicalProfileDetail] = field(default_factory=list)
    selectable_options: list[str] = field(default_factory=list)
    selected_option: str | None = None
    is_interactive: bool = False
    is_final_step: bool = False
    sub_journey_id: str | None = None
    validation_technical_profiles: list[str] = field(default_factory=list)
    claim_mappings: list[ClaimMapping] = field(default_factory=list)
    claims_transformations: list[str] = field(default_factory=list)
    claims_transformation_details: list[ClaimsTransformationDetail] = field(default_factory=list)
    backend_api_calls: list[BackendApiCall] = field(default_factory=list)
    display_controls: list[str] = field(default_factory=list)
    display_control_actions: list[DisplayControlAction] = field(default_factory=list)
    ui_settings: UiSettings | None = None
    sso_session_participant: bool | None = None
    sso_session_activated: bool | None = None
    is_verification_step: bool = False
    has_verification_context: bool = False
    submitted_claims: dict[str, str] | None = None
    interaction_result: InteractionResult | None = None
    transition_event: str | None = None
    statebag_snapshot: dict[str, str] = field(default_factory=dict)
    claims_snapshot: dict[str, str] = field(default_factory=dict)
    duration: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = export(self)
        payload["timestamp"] = isoformat(self.timestamp)
        return payload


class TraceStepBuilder:
    """Accumulates facts for one step until it is finalized.

    ``build`` returns an independent copy, so a finalized step is never
    touched by later clips.
    """

    def __init__(self, step: TraceStep | None = None) -> None:
        self.step = copy.deepcopy(step) if step is not None else TraceStep()

    def with_sequence(self, sequence_number: int) -> TraceStepBuilder:
        self.step.sequence_number = sequence_number
        return self

    def with_timestamp(self, timestamp: dt.datetime) -> TraceStepBuilder:
        self.step.timestamp = timestamp
        return self

    def with_log_id(self, log_id: str) -> TraceStepBuilder:
        self.step.log_id = log_id
        return self

    def with_event_type(self, event_type: str) -> TraceStepBuilder:
        self.step.event_type = event_type
        return self

    def with_journey_context(self, journey_id: str, journey_name: str) -> TraceStepBuilder:
        self.step.journey_context_id = journey_id
        self.step.journey_name = journey_name
        return self

    def with_step_order(self, step_order: int) -> TraceStepBuilder:
        self.step.step_order = step_order
        return self

    def with_result(self, result: str) -> TraceStepBuilder:
        self.step.result = result
        return self

    def with_error(self, message: str, hresult: str | None = None) -> TraceStepBuilder:
        self.step.error_message = message
        if hresult:
            self.step.error_hresult = hresult
        self.step.result = StepResult.ERROR
        return self

    def with_action_handler(self, handler: str) -> TraceStepBuilder:
        self.step.action_handler = handler
        return self

    def with_statebag(self, statebag: dict[str, str]) -> TraceStepBuilder:
        self.step.statebag_snapshot = dict(statebag)
        return self

    def with_claims(self, claims: dict[str, str]) -> TraceStepBuilder:
        self.step.claims_snapshot = dict(claims)
        return self

    def with_transition_event(self, event_name: str) -> TraceStepBuilder:
        self.step.transition_event = event_name
        return self

    def with_interaction_result(self, result: InteractionResult) -> TraceStepBuilder:
        self.step.interaction_result = result
        return self

    def with_sub_journey_id(self, sub_journey_id: str) -> TraceStepBuilder:
        self.step.sub_journey_id = sub_journey_id
        return self

    def with_selected_option(self, option: str) -> TraceStepBuilder:
        self.step.selected_option = option
        return self

    def with_ui_settings(self, settings: UiSettings) -> TraceStepBuilder:
        self.step.ui_settings = settings
        return self

    def with_submitted_claims(self, claims: dict[str, str]) -> TraceStepBuilder:
        self.step.submitted_claims = dict(claims)
        return self

    def as_interactive(self) -> TraceStepBuilder:
        self.step.is_interactive = True
        return self

    def as_final_step(self) -> TraceStepBuilder:
        self.step.is_final_step = True
        return self

    def as_verification_step(self) -> TraceStepBuilder:
        self.step.is_verification_step = True
        return self

    def add_technical_profiles(self, profile_ids: list[str]) -> TraceStepBuilder:
        for profile_id in profile_ids:
            if profile_id not in self.step.technical_profiles:
                self.step.technical_profiles.append(profile_id)
        return self

    def add_technical_profile_detail(self, detail: TechnicalProfileDetail) -> TraceStepBuilder:
        existing = next((d for d in self.step.technical_profile_details if d.id == detail.id), None)
        if existing is None:
            self.step.technical_profile_details.append(copy.deepcopy(detail))
            return self
        known = {ct.id for ct in existing.claims_transformations}
        existing.claims_transformations.extend(
            copy.deepcopy(ct) for ct in detail.claims_transformations if ct.id not in known
        )
        if not existing.provider_type and detail.provider_type:
            existing.provider_type = detail.provider_type
        if not existing.protocol_type and detail.protocol_type:
            existing.protocol_type = detail.protocol_type
        if detail.claims_snapshot is not None:
            existing.claims_snapshot = dict(detail.claims_snapshot)
        return self

    def add_selectable_options(self, options: list[str]) -> TraceStepBuilder:
        for option in options:
            if option not in self.step.selectable_options:
                self.step.selectable_options.append(option)
        return self

    def clear_selectable_options(self) -> TraceStepBuilder:
        self.step.selectable_options = []
        self.step.is_interactive = False
        return self

    def add_validation_technical_profiles(self, profile_ids: list[str]) -> TraceStepBuilder:
        for profile_id in profile_ids:
            if profile_id not in self.step.validation_technical_profiles:
                self.step.validation_technical_profiles.append(profile_id)
        return self

    def add_claim_mappings(self, mappings: list[ClaimMapping]) -> TraceStepBuilder:
        self.step.claim_mappings.extend(copy.deepcopy(mappings))
        return self

    def add_claims_transformations(self, transformation_ids: list[str]) -> TraceStepBuilder:
        for transformation_id in transformation_ids:
            if transformation_id not in self.step.claims_transformations:
                self.step.claims_transformations.append(transformation_id)
        return self

    def add_claims_transformation_detail(self, detail: ClaimsTransformationDetail) -> TraceStepBuilder:
        self.step.claims_transformation_details.append(copy.deepcopy(detail))
        return self.add_claims_transformations([detail.id])

    def add_backend_api_call(self, call: BackendApiCall) -> TraceStepBuilder:
        self.step.backend_api_calls.append(copy.deepcopy(call))
        return self

    def add_display_control_action(self, action: DisplayControlAction) -> TraceStepBuilder:
        if action.display_control_id not in self.step.display_controls:
            self.step.display_controls.append(action.display_control_id)
        self.step.display_control_actions.append(copy.deepcopy(action))
        return self

    def calculate_graph_node_id(self) -> TraceStepBuilder:
        if self.step.journey_context_id and self.step.step_order > 0:
            self.step.graph_node_id = f"{self.step.journey_context_id}-Step{self.step.step_order}"
        return self

    def build(self) -> TraceStep:
        if not self.step.journey_context_id:
            LOGGER.debug("step %d has no journey context", self.step.sequence_number)
        if not self.step.graph_node_id:
            self.calculate_graph_node_id()
        return copy.deepcopy(self.step)


@dataclass
class JourneyEntry:
    journey_id: str
    journey_name: str
    last_orch_step: int = 0
    depth: int = 0


class JourneyStack:
    """Main journey at the bottom, the sub-journey being executed on top."""

    def __init__(self, root_journey_id: str, root_journey_name: str) -> None:
        self._stack = [JourneyEntry(root_journey_id, root_journey_name)]

    def push(self, journey_id: str, journey_name: str) -> JourneyEntry:
        entry = JourneyEntry(journey_id, journey_name, depth=len(self._stack))
        self._stack.append(entry)
        return entry

    def pop(self) -> JourneyEntry | None:
        # The main journey is never popped.
        if len(self._stack) <= 1:
            return None
        return self._stack.pop()

    def current(self) -> JourneyEntry:
        return self._stack[-1]

    def root(self) -> JourneyEntry:
        return self._stack[0]

    def depth(self) -> int:
        return len(self._stack) - 1

    def is_in_sub_journey(self) -> bool:
        return len(self._stack) > 1

    def update_orch_step(self, step: int) -> None:
        self._stack[-1].last_orch_step = step

    def journey_path(self) -> list[str]:
        return [entry.journey_id for entry in self._stack]


class StatebagAccumulator:
    """Running statebag and claims for one trace."""

    def __init__(self) -> None:
        self.statebag: dict[str, str] = {}
        self.claims: dict[str, str] = {}

    @property
    def orch_step(self) -> int:
        try:
            return int(self.statebag.get(StatebagKey.ORCH_CS, "0"))
        except ValueError:
            return 0

    def apply_updates(self, updates: dict[str, str]) -> None:
        self.statebag.update(updates)

    def apply_claims(self, updates: dict[str, str]) -> None:
        self.claims.update(updates)

    def clear_statebag_keep_claims(self) -> None:
        self.statebag.clear()

    def snapshot(self) -> tuple[dict[str, str], dict[str, str]]:
        return dict(self.statebag), dict(self.claims)


@dataclass
class NodeExecution(Exportable):
    status: str
    visit_count: int = 1
    # Stable step ids, not list positions.
    sequence_numbers: list[int] = field(default_factory=list)


class ExecutionMapBuilder:
    def __init__(self) -> None:
        self._map: dict[str, NodeExecution] = {}

    def add_step(self, step: TraceStep) -> None:
        if not step.graph_node_id:
            return
        existing = self._map.get(step.graph_node_id)
        if existing is None:
            self._map[step.graph_node_id] = NodeExecution(step.result, 1, [step.sequence_number])
            return
        existing.visit_count += 1
        existing.sequence_numbers.append(step.sequence_number)
        existing.status = merge_status(existing.status, step.result)

    def add_steps(self, steps: list[TraceStep]) -> None:
        for step in steps:
            self.add_step(step)

    def build(self) -> dict[str, NodeExecution]:
        return copy.deepcopy(self._map)


def merge_status(existing: str, incoming: str) -> str:
    if STEP_RESULT_PRIORITY.get(incoming, 0) > STEP_RESULT_PRIORITY.get(existing, 0):
        return incoming
    return existing
