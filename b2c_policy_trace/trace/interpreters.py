"""Handler-group interpreters.

Each interpreter claims a fixed set of engine handler names and turns one
handler group (action or predicate plus its result) into an
``InterpretResult``. Interpreters never touch the step under construction;
the parser applies their results.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .. import constants as c
from ..constants import RecordKey, StatebagKey, StepResult
from .clips import Clip, HandlerResultClip, complex_claims
from .journey import (
    CANCELLED,
    CONTINUE,
    ERROR,
    BackendApiCall,
    ClaimMapping,
    ClaimsTransformationDetail,
    ClaimValue,
    DisplayControlAction,
    DisplayControlTechnicalProfile,
    InteractionResult,
    JourneyStack,
    ParameterValue,
    TechnicalProfileDetail,
    UiSettings,
)

LOGGER = logging.getLogger(__name__)

SELF_ASSERTED_PROVIDER = "SelfAssertedAttributeProvider"
DISPLAY_CONTROL_PROVIDER = "DisplayControlProvider"
UNKNOWN_PROVIDER = "Unknown"

_REQUEST_RE = re.compile(r"Request to (\S+)", re.IGNORECASE)
_STATUS_RE = re.compile(r"Status:\s*(\d{3})")
_RESPONSE_RE = re.compile(r"Response:\s*\n?(\{[\s\S]*?\})\s*$", re.MULTILINE)


@dataclass
class InterpretContext:
    handler_name: str
    handler_result: HandlerResultClip | None
    journey_stack: JourneyStack
    timestamp: dt.datetime
    log_id: str = ""
    predicate: str | None = None
    clips: list[Clip] = field(default_factory=list)
    sequence_number: int = 0
    statebag: dict[str, str] = field(default_factory=dict)
    claims: dict[str, str] = field(default_factory=dict)


@dataclass
class InterpretResult:
    success: bool = True
    create_step: bool = False
    finalize_step: bool = False
    step_result: str | None = None
    error: str | None = None
    error_hresult: str | None = None
    action_handler: str | None = None
    event_type: str | None = None
    statebag_updates: dict[str, str] = field(default_factory=dict)
    claims_updates: dict[str, str] = field(default_factory=dict)
    technical_profiles: list[str] = field(default_factory=list)
    technical_profile_details: list[TechnicalProfileDetail] = field(default_factory=list)
    clear_selectable_options: bool = False
    selectable_options: list[str] = field(default_factory=list)
    selected_option: str | None = None
    is_interactive: bool = False
    push_sub_journey: tuple[str, str] | None = None
    pop_sub_journey: bool = False
    sub_journey_id: str | None = None
    backend_api_calls: list[BackendApiCall] = field(default_factory=list)
    claims_transformations: list[str] = field(default_factory=list)
    claims_transformation_details: list[ClaimsTransformationDetail] = field(default_factory=list)
    validation_technical_profiles: list[str] = field(default_factory=list)
    claim_mappings: list[ClaimMapping] = field(default_factory=list)
    display_control_action: DisplayControlAction | None = None
    interaction_result: InteractionResult | None = None
    is_final_step: bool = False
    ui_settings: UiSettings | None = None
    sso_session_participant: bool | None = None
    sso_session_activated: bool | None = None
    is_verification_step: bool = False
    has_verification_context: bool = False
    submitted_claims: dict[str, str] | None = None


def failure(error: str) -> InterpretResult:
    return InterpretResult(success=False, error=error)


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------


def short_name(handler_name: str) -> str:
    return handler_name.rsplit(".", 1)[-1]


def technical_profile_from_ctp(value: str) -> str:
    """``"TP-Id:6"`` -> ``"TP-Id"``."""
    head, sep, _ = value.rpartition(":")
    return head if sep else value


def step_from_ctp(value: str) -> int | None:
    _, sep, tail = value.rpartition(":")
    if not sep:
        return None
    try:
        return int(tail)
    except ValueError:
        return None


def statebag_updates(result: HandlerResultClip | None) -> dict[str, str]:
    if result is None:
        return {}
    updates = {}
    for key, entry in result.statebag.items():
        if key in (StatebagKey.COMPLEX_CLAIMS, StatebagKey.COMPLEX_ITEMS):
            continue
        if isinstance(entry, dict) and "v" in entry:
            updates[key] = "" if entry["v"] is None else str(entry["v"])
    return updates


def nested_values(value: Any) -> list[dict[str, Any]]:
    """``{"Values": [{"Key": ..., "Value": ...}]}`` -> the entry list."""
    if isinstance(value, dict) and isinstance(value.get("Values"), list):
        return [entry for entry in value["Values"] if isinstance(entry, dict)]
    return []


def ctp_profile(result: HandlerResultClip | None) -> str | None:
    if result is None:
        return None
    value = result.statebag_value(StatebagKey.CTP)
    return technical_profile_from_ctp(value) if value else None


def initiating_exchange(result: HandlerResultClip | None, default_provider: str = UNKNOWN_PROVIDER) -> TechnicalProfileDetail | None:
    if result is None:
        return None
    for value in result.records(RecordKey.INITIATING_CLAIMS_EXCHANGE):
        if isinstance(value, dict) and value.get("TechnicalProfileId"):
            return TechnicalProfileDetail(
                id=value["TechnicalProfileId"],
                provider_type=value.get("ProtocolProviderType") or default_provider,
                protocol_type=value.get("ProtocolType"),
            )
    return None


def backend_exchanges(result: HandlerResultClip | None) -> list[TechnicalProfileDetail]:
    """``GettingClaims`` / ``InitiatingBackendClaimsExchange`` entries."""
    if result is None:
        return []
    details = []
    for value in result.records(RecordKey.GETTING_CLAIMS):
        candidates = [
            entry.get("Value")
            for entry in nested_values(value)
            if entry.get("Key") == RecordKey.INITIATING_BACKEND_CLAIMS_EXCHANGE
        ]
        if isinstance(value, dict) and isinstance(value.get(RecordKey.INITIATING_BACKEND_CLAIMS_EXCHANGE), dict):
            candidates.append(value[RecordKey.INITIATING_BACKEND_CLAIMS_EXCHANGE])
        for exchange in candidates:
            if isinstance(exchange, dict) and exchange.get("TechnicalProfileId"):
                details.append(
                    TechnicalProfileDetail(
                        id=exchange["TechnicalProfileId"],
                        provider_type=exchange.get("ProtocolProviderType") or UNKNOWN_PROVIDER,
                        protocol_type=exchange.get("ProtocolType"),
                    )
                )
    return details


def enabled_profiles(result: HandlerResultClip | None, record_key: str) -> list[str]:
    """Technical profiles listed as enabled under ``record_key``, deduplicated in order."""
    if result is None:
        return []
    profiles: list[str] = []
    for value in result.records(record_key):
        for entry in nested_values(value):
            if entry.get("Key") != RecordKey.TECHNICAL_PROFILE_ENABLED:
                continue
            enabled = entry.get("Value")
            if not isinstance(enabled, dict) or enabled.get("EnabledResult") is False:
                continue
            profile = enabled.get("TechnicalProfile")
            if profile and profile not in profiles:
                profiles.append(profile)
    return profiles


def exception_message(result: HandlerResultClip | None) -> tuple[str | None, str | None]:
    """Message and HResult from the result's exception or a recorded ``Exception``."""
    if result is None:
        return None, None
    if result.exception is not None and result.exception.message:
        return result.exception.message, result.exception.hresult
    for entry in result.recorder_values:
        candidates = []
        if entry.get("Key") == RecordKey.VALIDATION:
            candidates = [
                inner.get("Value") for inner in nested_values(entry.get("Value")) if inner.get("Key") == RecordKey.EXCEPTION
            ]
        elif entry.get("Key") == RecordKey.EXCEPTION:
            candidates = [entry.get("Value")]
        for exception in candidates:
            if isinstance(exception, dict) and exception.get("Message"):
                hresult = exception.get("HResult")
                return str(exception["Message"]), None if hresult is None else str(hresult)
    return None, None


def parse_prot_entry(value: str | None) -> BackendApiCall | None:
    """Parse a ``PROT`` statebag value describing an outbound call."""
    if not value:
        return None
    call = BackendApiCall()
    request = _REQUEST_RE.search(value)
    if request:
        call.request_uri = request.group(1)
    if value.startswith("AAD Request"):
        call.request_type = "AAD"
    elif "REST API" in value:
        call.request_type = "REST"
    status = _STATUS_RE.search(value)
    if status:
        call.status_code = int(status.group(1))
    response = _RESPONSE_RE.search(value)
    if response:
        call.raw_response = response.group(1).strip()
        try:
            call.response = json.loads(call.raw_response)
        except json.JSONDecodeError:
            LOGGER.debug("PROT response is not JSON: %.80s", call.raw_response)
    if call == BackendApiCall():
        return None
    return call


def backend_api_calls(result: HandlerResultClip | None, updates: dict[str, str]) -> list[BackendApiCall]:
    calls = []
    for raw in (result.statebag_value(StatebagKey.PROT) if result else None, updates.get(StatebagKey.PROT)):
        call = parse_prot_entry(raw)
        if call is not None and not any(existing.request_uri == call.request_uri for existing in calls):
            calls.append(call)
    return calls


def _claim_values(entry_value: Any) -> ClaimValue | None:
    if isinstance(entry_value, dict) and entry_value.get("PolicyClaimType"):
        return ClaimValue(entry_value["PolicyClaimType"], str(entry_value.get("Value") or ""))
    return None


def parse_claims_transformation(values: list[dict[str, Any]]) -> ClaimsTransformationDetail | None:
    detail = ClaimsTransformationDetail(id="")
    for item in values:
        key, value = item.get("Key"), item.get("Value")
        if key == RecordKey.ID and isinstance(value, str):
            detail.id = value
        elif key == RecordKey.INPUT_CLAIM:
            claim = _claim_values(value)
            if claim is not None:
                detail.input_claims.append(claim)
        elif key == RecordKey.INPUT_PARAMETER and isinstance(value, dict):
            parameter_id = value.get("ParameterType") or value.get("Id")
            if parameter_id:
                detail.input_parameters.append(ParameterValue(parameter_id, str(value.get("Value") or "")))
        elif key == RecordKey.RESULT:
            claim = _claim_values(value)
            if claim is not None:
                detail.output_claims.append(claim)
    return detail if detail.id else None


# ---------------------------------------------------------------------------
# Interpreters
# ---------------------------------------------------------------------------


class BaseInterpreter:
    handler_names: tuple[str, ...] = ()

    def can_handle(self, handler_name: str) -> bool:
        if handler_name in self.handler_names:
            return True
        return short_name(handler_name) in {short_name(name) for name in self.handler_names}

    def interpret(self, context: InterpretContext) -> InterpretResult:
        raise NotImplementedError

    def reset(self) -> None:
        """Forget per-trace state."""

    def updates(self, context: InterpretContext, **fields: Any) -> InterpretResult:
        """A successful result carrying the group's statebag and claims updates."""
        return InterpretResult(
            statebag_updates=statebag_updates(context.handler_result),
            claims_updates=complex_claims(context.handler_result),
            **fields,
        )


class DefaultInterpreter(BaseInterpreter):
    def can_handle(self, handler_name: str) -> bool:
        return False

    def interpret(self, context: InterpretContext) -> InterpretResult:
        return self.updates(context)


class OrchestrationInterpreter(BaseInterpreter):
    """Opens a step whenever ``ORCH_CS`` moves to a new step number.

    Two records more than ``reset_ms`` apart belong to different
    interactions, so the same step number seen again after a pause opens
    a new step.
    """

    handler_names = (c.ORCHESTRATION_MANAGER,)

    def __init__(self, reset_ms: int = c.ORCHESTRATION_RESET_MS) -> None:
        self.reset_ms = reset_ms
        self._last_orch_step = 0
        self._last_timestamp: dt.datetime | None = None

    def reset(self) -> None:
        self._last_orch_step = 0
        self._last_timestamp = None

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        updates = statebag_updates(result)
        raw = {**context.statebag, **updates}.get(StatebagKey.ORCH_CS, "0")
        try:
            orch_step = int(raw)
        except ValueError:
            return failure(f"ORCH_CS is not a step number: {raw!r}")

        profile = ctp_profile(result)
        error, hresult = (result.exception.message, result.exception.hresult) if result.exception else (None, None)
        if self._last_timestamp is not None:
            gap = (context.timestamp - self._last_timestamp).total_seconds() * 1000
            if gap > self.reset_ms:
                self._last_orch_step = 0
        self._last_timestamp = context.timestamp

        fields: dict[str, Any] = {
            "statebag_updates": updates,
            "claims_updates": complex_claims(result),
            "technical_profiles": [profile] if profile else [],
            "error": error,
            "error_hresult": hresult,
        }
        if orch_step > 0 and orch_step != self._last_orch_step:
            self._last_orch_step = orch_step
            context.journey_stack.update_orch_step(orch_step)
            return InterpretResult(
                create_step=True,
                action_handler=c.ORCHESTRATION_MANAGER,
                step_result=StepResult.ERROR if error else StepResult.SUCCESS,
                **fields,
            )
        return InterpretResult(step_result=StepResult.ERROR if error else None, **fields)


class StepInvokeInterpreter(BaseInterpreter):
    """``ShouldOrchestrationStepBeInvoked``: which profiles the step may run, or a skip."""

    handler_names = (c.SHOULD_STEP_BE_INVOKED,)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        options = enabled_profiles(result, RecordKey.ENABLED_FOR_USER_JOURNEYS_TRUE)
        exchange = initiating_exchange(result, default_provider="")
        if exchange is not None:
            profiles = [exchange.id]
        elif len(options) == 1:
            profiles = options
        else:
            profiles = []
        interactive = len(options) > 1
        return self.updates(
            context,
            technical_profiles=profiles,
            technical_profile_details=[exchange] if exchange else [],
            selectable_options=options if interactive else [],
            is_interactive=interactive,
            step_result=StepResult.SKIPPED if result.predicate_result == "False" else None,
        )


class ClaimsExchangeInterpreter(BaseInterpreter):
    handler_names = c.CLAIMS_EXCHANGE_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        detail = initiating_exchange(result)
        if detail is None:
            backend = backend_exchanges(result)
            detail = backend[0] if backend else None
        if detail is None:
            profile = ctp_profile(result)
            detail = TechnicalProfileDetail(profile, UNKNOWN_PROVIDER) if profile else None
        found = {
            "technical_profiles": [detail.id] if detail else [],
            "technical_profile_details": [detail] if detail else [],
        }

        name = short_name(context.handler_name)
        if name == short_name(c.CLAIMS_EXCHANGE_SUBMIT):
            return self.updates(
                context,
                action_handler=c.CLAIMS_EXCHANGE_SUBMIT,
                finalize_step=True,
                step_result=StepResult.SUCCESS,
                **found,
            )
        if name == short_name(c.CLAIMS_EXCHANGE_SELECT):
            options = enabled_profiles(result, RecordKey.ENABLED_FOR_USER_JOURNEYS_TRUE)
            return self.updates(
                context,
                action_handler=c.CLAIMS_EXCHANGE_SELECT,
                selectable_options=options,
                is_interactive=len(options) > 1,
            )
        handler = c.CLAIMS_EXCHANGE_REDIRECT if name == short_name(c.CLAIMS_EXCHANGE_REDIRECT) else c.CLAIMS_EXCHANGE_ACTION
        return self.updates(context, action_handler=handler, **found)


class ClaimsTransformationInterpreter(BaseInterpreter):
    handler_names = c.CLAIMS_TRANSFORMATION_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        details = self._transformations(result)
        updates = statebag_updates(result)
        profile_details = []
        backend = backend_exchanges(result)
        if backend and details:
            owner = backend[0]
            owner.claims_transformations = details
            profile_details.append(owner)
        return InterpretResult(
            statebag_updates=updates,
            claims_updates=complex_claims(result),
            claims_transformations=[detail.id for detail in details],
            claims_transformation_details=details,
            technical_profile_details=profile_details,
            backend_api_calls=backend_api_calls(result, updates),
        )

    def _transformations(self, result: HandlerResultClip) -> list[ClaimsTransformationDetail]:
        details = []
        for value in result.records(RecordKey.OUTPUT_CLAIMS_TRANSFORMATION):
            for entry in nested_values(value):
                if entry.get("Key") != RecordKey.CLAIMS_TRANSFORMATION:
                    continue
                detail = parse_claims_transformation(nested_values(entry.get("Value")))
                if detail is not None:
                    details.append(detail)
        for value in result.records(RecordKey.GETTING_CLAIMS):
            if not isinstance(value, dict):
                continue
            for key in (RecordKey.INITIATING_OUTPUT_CLAIMS_TRANSFORMATION, RecordKey.INITIATING_INPUT_CLAIMS_TRANSFORMATION):
                initiating = value.get(key)
                if isinstance(initiating, dict) and initiating.get("TransformationId"):
                    details.append(ClaimsTransformationDetail(id=initiating["TransformationId"]))
        return details


class HomeRealmDiscoveryInterpreter(BaseInterpreter):
    handler_names = c.HRD_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        if context.handler_result is None:
            return InterpretResult()
        return self.updates(
            context,
            action_handler=c.HOME_REALM_DISCOVERY_ACTION,
            selectable_options=enabled_profiles(context.handler_result, RecordKey.HOME_REALM_DISCOVERY),
            is_interactive=True,
        )


class SubJourneyInterpreter(BaseInterpreter):
    handler_names = c.SUBJOURNEY_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        name = short_name(context.handler_name)
        if name == short_name(c.SUBJOURNEY_EXIT):
            return self.updates(context, action_handler=c.SUBJOURNEY_EXIT, pop_sub_journey=True)
        sub_journey_id = self._sub_journey_id(result)
        if not sub_journey_id:
            return self.updates(context)
        handler = c.SUBJOURNEY_TRANSFER if name == short_name(c.SUBJOURNEY_TRANSFER) else c.SUBJOURNEY_DISPATCH
        return self.updates(
            context,
            action_handler=handler,
            push_sub_journey=(sub_journey_id, sub_journey_id),
            sub_journey_id=sub_journey_id,
        )

    def _sub_journey_id(self, result: HandlerResultClip) -> str | None:
        keys = (RecordKey.SUB_JOURNEY, RecordKey.SUB_JOURNEY_ID, RecordKey.SUB_JOURNEY_INVOKED)
        for entry in result.recorder_values:
            if entry.get("Key") not in keys:
                continue
            value = entry.get("Value")
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict):
                return value.get("SubJourneyId") or value.get("Id")
        return None


class SelfAssertedRedirectInterpreter(BaseInterpreter):
    handler_names = (c.SELF_ASSERTED_REDIRECT,)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        if context.handler_result is None:
            return InterpretResult()
        return self.updates(context, action_handler=c.SELF_ASSERTED_REDIRECT)


class SelfAssertedValidationInterpreter(BaseInterpreter):
    """Validation of a submitted self-asserted page.

    A submission may run zero, one or many validation technical profiles;
    each is kept apart from the self-asserted profile itself.
    """

    handler_names = (c.SELF_ASSERTED_VALIDATION,)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        profile = ctp_profile(result)
        validation_profiles, mappings = self._validation_profiles(result)
        claims = complex_claims(result)
        fields: dict[str, Any] = {
            "action_handler": c.SELF_ASSERTED_VALIDATION,
            "technical_profiles": [profile] if profile else [],
            "technical_profile_details": (
                [TechnicalProfileDetail(profile, SELF_ASSERTED_PROVIDER)] if profile else []
            ),
            "validation_technical_profiles": validation_profiles,
            "claim_mappings": mappings,
            "submitted_claims": claims or None,
        }
        message, hresult = exception_message(result)
        if message:
            return self.updates(
                context,
                step_result=StepResult.ERROR,
                error=message,
                error_hresult=hresult,
                interaction_result=InteractionResult(ERROR, False, message, hresult),
                **fields,
            )
        return self.updates(context, **fields)

    def _validation_profiles(self, result: HandlerResultClip) -> tuple[list[str], list[ClaimMapping]]:
        profiles: list[str] = []
        mappings: list[ClaimMapping] = []
        for value in result.records(RecordKey.VALIDATION):
            for entry in nested_values(value):
                if entry.get("Key") != RecordKey.VALIDATION_TECHNICAL_PROFILE:
                    continue
                for item in nested_values(entry.get("Value")):
                    key, item_value = item.get("Key"), item.get("Value")
                    if key == RecordKey.TECHNICAL_PROFILE_ID and isinstance(item_value, str):
                        if item_value not in profiles:
                            profiles.append(item_value)
                    elif key == RecordKey.MAPPING_FROM_PARTNER_CLAIM_TYPE and isinstance(item_value, dict):
                        partner = item_value.get("PartnerClaimType")
                        policy = item_value.get("PolicyClaimType")
                        if partner and policy:
                            mappings.append(ClaimMapping(partner, policy))
        return profiles, mappings


class SelfAssertedActionInterpreter(BaseInterpreter):
    handler_names = (c.SELF_ASSERTED_ACTION,)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        if context.handler_result is None:
            return InterpretResult()
        return self.updates(
            context,
            action_handler=c.SELF_ASSERTED_ACTION,
            finalize_step=True,
            step_result=StepResult.SUCCESS,
        )


class JourneyCompletionInterpreter(BaseInterpreter):
    """``SendClaims`` and relying party response handlers end the journey."""

    handler_names = c.STEP_COMPLETION_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        detail = initiating_exchange(result)
        if detail is None:
            backend = backend_exchanges(result)
            detail = backend[0] if backend else None
        if detail is not None and detail.provider_type == UNKNOWN_PROVIDER and detail.protocol_type:
            detail.provider_type = detail.protocol_type
        handler = next(
            (name for name in c.STEP_COMPLETION_HANDLERS if short_name(name) == short_name(context.handler_name)),
            context.handler_name,
        )
        return self.updates(
            context,
            action_handler=handler,
            technical_profiles=[detail.id] if detail else [],
            technical_profile_details=[detail] if detail else [],
            is_final_step=True,
        )


class ValidateApiResponseInterpreter(BaseInterpreter):
    """Picks up ``TAGE``, the claims exchange the user selected."""

    handler_names = (c.VALIDATE_API_RESPONSE,)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        return self.updates(
            context,
            selected_option=result.statebag_value(StatebagKey.TAGE),
            interaction_result=api_result_outcome(result),
        )


def api_result_outcome(result: HandlerResultClip) -> InteractionResult | None:
    api_result = result.statebag.get(StatebagKey.COMPLEX_API_RESULT)
    if not isinstance(api_result, dict):
        return None
    if str(api_result.get("IsCancelled", "")).lower() == "true":
        return InteractionResult(CANCELLED, False)
    if str(api_result.get("IsErrored", "")).lower() == "true":
        return InteractionResult(ERROR, False)
    if str(api_result.get("IsContinue", "")).lower() == "true":
        return InteractionResult(CONTINUE, True)
    return None


class BackendApiInterpreter(BaseInterpreter):
    """Protocol probes: the technical profile being called and its outbound requests."""

    handler_names = c.CLAIMS_EXCHANGE_PROTOCOL_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        details = []
        exchange = initiating_exchange(result)
        if exchange is not None:
            details.append(exchange)
        details.extend(backend_exchanges(result))
        updates = statebag_updates(result)
        return InterpretResult(
            statebag_updates=updates,
            claims_updates=complex_claims(result),
            technical_profiles=[detail.id for detail in details],
            technical_profile_details=details,
            # A resolved profile replaces any options offered before it.
            clear_selectable_options=bool(details),
            backend_api_calls=backend_api_calls(result, updates),
        )


class SsoSessionInterpreter(BaseInterpreter):
    handler_names = c.SSO_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        name = short_name(context.handler_name)
        if name == short_name(c.SSO_PARTICIPANT):
            return self.updates(context, sso_session_participant=result.predicate_result == "True")
        if name == short_name(c.SSO_ACTIVATE):
            return self.updates(context, sso_session_activated=result.result)
        if name == short_name(c.SSO_RESET):
            return self.updates(context, sso_session_participant=False)
        return self.updates(context)


class UiSettingsInterpreter(BaseInterpreter):
    handler_names = (c.API_UI_MANAGER,)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        updates = statebag_updates(result)
        settings = UiSettings()
        content_definition = {**context.statebag, **updates}.get(StatebagKey.EID)
        if content_definition:
            settings.content_definition = content_definition
        for entry in nested_values(result.record(RecordKey.API_UI_MANAGER_INFO)):
            if entry.get("Key") == "Settings" and isinstance(entry.get("Value"), str):
                self._page_settings(entry["Value"], settings)
        return InterpretResult(
            statebag_updates=updates,
            claims_updates=complex_claims(result),
            ui_settings=None if settings == UiSettings() else settings,
        )

    def _page_settings(self, raw: str, settings: UiSettings) -> None:
        try:
            page = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("page settings are not JSON: %.80s", raw)
            return
        if not isinstance(page, dict):
            return
        settings.page_type = page.get("api") or settings.page_type
        settings.remote_resource = page.get("remoteResource") or settings.remote_resource
        settings.page_id = page.get("pageViewId") or settings.page_id
        locale = page.get("locale")
        if isinstance(locale, dict) and locale.get("lang"):
            settings.language = locale["lang"]
        if isinstance(page.get("config"), dict):
            settings.config = dict(page["config"])
        branding = page.get("tenantBranding")
        if isinstance(branding, dict):
            settings.tenant_branding = {
                "bannerLogoUrl": branding.get("bannerLogoUrl"),
                "backgroundColor": branding.get("backgroundColor"),
            }


class ErrorHandlerInterpreter(BaseInterpreter):
    """Request validation failures and error responses become error steps."""

    handler_names = c.ERROR_HANDLERS

    def can_handle(self, handler_name: str) -> bool:
        return any(name in handler_name or short_name(name) == short_name(handler_name) for name in self.handler_names)

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        is_send_error = short_name(context.handler_name) == short_name(c.SEND_ERROR)
        if not result.result or is_send_error:
            message, hresult = exception_message(result)
            if message:
                return self.updates(
                    context,
                    create_step=True,
                    step_result=StepResult.ERROR,
                    error=message,
                    error_hresult=hresult,
                    action_handler=short_name(context.handler_name),
                )
        return self.updates(context)


class DisplayControlInterpreter(BaseInterpreter):
    """Display control actions and claim verification (email or phone OTP)."""

    handler_names = c.DISPLAY_CONTROL_HANDLERS

    def interpret(self, context: InterpretContext) -> InterpretResult:
        result = context.handler_result
        if result is None:
            return InterpretResult()
        name = short_name(context.handler_name)
        complex_items = result.statebag_value(StatebagKey.COMPLEX_ITEMS) or ""
        fields: dict[str, Any] = {
            "has_verification_context": "C2CVER" in complex_items,
            "is_verification_step": (
                name == short_name(c.CLAIM_VERIFICATION_REQUEST) and result.predicate_result != "False"
            ) or result.record(RecordKey.VERIFICATION) is not None,
        }
        if name == short_name(c.DISPLAY_CONTROL_ACTION_RESPONSE):
            action = self._action(result)
            if action is not None:
                fields["display_control_action"] = action
                fields["technical_profiles"] = [tp.technical_profile_id for tp in action.technical_profiles]
                fields["technical_profile_details"] = [
                    TechnicalProfileDetail(
                        tp.technical_profile_id,
                        DISPLAY_CONTROL_PROVIDER,
                        claims_transformations=list(tp.claims_transformations),
                    )
                    for tp in action.technical_profiles
                ]
        return self.updates(context, **fields)

    def _action(self, result: HandlerResultClip) -> DisplayControlAction | None:
        action: DisplayControlAction | None = None
        result_code = None
        profiles = []
        for entry in result.recorder_values:
            key, value = entry.get("Key"), entry.get("Value")
            if key == RecordKey.ID and isinstance(value, str):
                control_id, _, verb = value.partition("/")
                action = DisplayControlAction(control_id, verb)
            elif key == RecordKey.RESULT and isinstance(value, str):
                result_code = value
            elif key == RecordKey.DISPLAY_CONTROL_ACTION and isinstance(value, list):
                for item in value:
                    profile = self._profile(nested_values(item))
                    if profile is not None:
                        profiles.append(profile)
        if action is None or not action.display_control_id:
            return None
        action.result_code = result_code
        action.technical_profiles = profiles
        return action

    def _profile(self, values: list[dict[str, Any]]) -> DisplayControlTechnicalProfile | None:
        profile_id = None
        transformations = []
        mappings = []
        for entry in values:
            key, value = entry.get("Key"), entry.get("Value")
            if key == RecordKey.TECHNICAL_PROFILE_ID and isinstance(value, str):
                profile_id = value
            elif key == RecordKey.CLAIMS_TRANSFORMATION:
                detail = parse_claims_transformation(nested_values(value))
                if detail is not None:
                    transformations.append(detail)
            elif key == RecordKey.MAPPING_PARTNER_TYPE_FOR_CLAIM and isinstance(value, dict):
                if value.get("PartnerClaimType") and value.get("PolicyClaimType"):
                    mappings.append(ClaimMapping(value["PartnerClaimType"], value["PolicyClaimType"]))
        if not profile_id:
            return None
        return DisplayControlTechnicalProfile(profile_id, transformations, mappings)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class InterpreterRegistry:
    """Ordered interpreters; the first one that claims a handler wins."""

    def __init__(self, use_default_fallback: bool = True, default: BaseInterpreter | None = None) -> None:
        self.use_default_fallback = use_default_fallback
        self.default = default or DefaultInterpreter()
        self._interpreters: list[BaseInterpreter] = []
        self._cache: dict[str, BaseInterpreter] = {}

    @property
    def interpreters(self) -> list[BaseInterpreter]:
        return list(self._interpreters)

    def register(self, interpreter: BaseInterpreter) -> InterpreterRegistry:
        self._interpreters.append(interpreter)
        self._cache.clear()
        return self

    def register_all(self, interpreters: list[BaseInterpreter]) -> InterpreterRegistry:
        for interpreter in interpreters:
            self.register(interpreter)
        return self

    def unregister(self, handler_name: str) -> bool:
        for position, interpreter in enumerate(self._interpreters):
            if handler_name in interpreter.handler_names:
                del self._interpreters[position]
                self._cache.clear()
                return True
        return False

    def find(self, handler_name: str) -> BaseInterpreter | None:
        """The registered interpreter for ``handler_name``, ignoring the fallback."""
        cached = self._cache.get(handler_name)
        if cached is not None:
            return cached
        for interpreter in self._interpreters:
            if interpreter.can_handle(handler_name):
                self._cache[handler_name] = interpreter
                return interpreter
        return None

    def get_interpreter(self, handler_name: str) -> BaseInterpreter | None:
        found = self.find(handler_name)
        if found is None and self.use_default_fallback:
            return self.default
        return found

    def has_interpreter(self, handler_name: str) -> bool:
        return self.find(handler_name) is not None

    def handler_names(self) -> list[str]:
        names: list[str] = []
        for interpreter in self._interpreters:
            names.extend(name for name in interpreter.handler_names if name not in names)
        return names

    def reset_interpreters(self) -> None:
        for interpreter in self._interpreters:
            interpreter.reset()


def default_interpreters(orchestration_reset_ms: int = c.ORCHESTRATION_RESET_MS) -> list[BaseInterpreter]:
    return [
        OrchestrationInterpreter(orchestration_reset_ms),
        StepInvokeInterpreter(),
        ClaimsExchangeInterpreter(),
        ClaimsTransformationInterpreter(),
        HomeRealmDiscoveryInterpreter(),
        SubJourneyInterpreter(),
        SelfAssertedRedirectInterpreter(),
        SelfAssertedValidationInterpreter(),
        SelfAssertedActionInterpreter(),
        JourneyCompletionInterpreter(),
        ValidateApiResponseInterpreter(),
        BackendApiInterpreter(),
        SsoSessionInterpreter(),
        UiSettingsInterpreter(),
        ErrorHandlerInterpreter(),
        DisplayControlInterpreter(),
    ]


def create_registry(orchestration_reset_ms: int = c.ORCHESTRATION_RESET_MS) -> InterpreterRegistry:
    return InterpreterRegistry().register_all(default_interpreters(orchestration_reset_ms))
