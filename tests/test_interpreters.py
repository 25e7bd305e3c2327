from __future__ import annotations

import datetime as dt

from b2c_policy_trace import constants as c
from b2c_policy_trace.constants import StepResult
from b2c_policy_trace.trace.clips import parse_clip
from b2c_policy_trace.trace.interpreters import (
    DefaultInterpreter,
    ErrorHandlerInterpreter,
    InterpretContext,
    InterpreterRegistry,
    OrchestrationInterpreter,
    SelfAssertedValidationInterpreter,
    StepInvokeInterpreter,
    SubJourneyInterpreter,
    create_registry,
    enabled_profiles,
    parse_prot_entry,
    step_from_ctp,
    technical_profile_from_ctp,
)
from b2c_policy_trace.trace.journey import ERROR, JourneyStack
from tests.clip_builders import BASE_TIME, entry, enabled, result, values


def _context(handler: str, raw_result=None, stack: JourneyStack | None = None, timestamp=BASE_TIME) -> InterpretContext:
    return InterpretContext(
        handler_name=handler,
        handler_result=parse_clip(raw_result) if raw_result is not None else None,
        journey_stack=stack or JourneyStack("B2C_1A_SignIn", "SignIn"),
        timestamp=timestamp,
    )


class TestRegistry:
    def test_first_registered_interpreter_wins(self):
        registry = create_registry()
        assert isinstance(registry.find(c.ORCHESTRATION_MANAGER), OrchestrationInterpreter)
        assert isinstance(registry.find(c.SHOULD_STEP_BE_INVOKED), StepInvokeInterpreter)

    def test_short_name_match(self):
        registry = create_registry()
        assert isinstance(registry.find("Other.Namespace.SubJourneyExitActionHandler"), SubJourneyInterpreter)

    def test_error_handler_matches_by_substring(self):
        registry = create_registry()
        found = registry.find(c.SEND_ERROR + "Extended")
        assert isinstance(found, ErrorHandlerInterpreter)

    def test_fallback_and_has_interpreter(self):
        registry = create_registry()
        assert not registry.has_interpreter("Web.TPEngine.Unknown")
        assert isinstance(registry.get_interpreter("Web.TPEngine.Unknown"), DefaultInterpreter)
        strict = InterpreterRegistry(use_default_fallback=False)
        assert strict.get_interpreter("Web.TPEngine.Unknown") is None

    def test_unregister(self):
        registry = create_registry()
        assert registry.unregister(c.ORCHESTRATION_MANAGER)
        assert registry.find(c.ORCHESTRATION_MANAGER) is None
        assert not registry.unregister(c.ORCHESTRATION_MANAGER)

    def test_handler_names_are_unique(self):
        names = create_registry().handler_names()
        assert len(names) == len(set(names))
        assert c.VALIDATE_API_RESPONSE in names


def test_ctp_helpers():
    assert technical_profile_from_ctp("AAD-UserRead:6") == "AAD-UserRead"
    assert technical_profile_from_ctp("NoStep") == "NoStep"
    assert step_from_ctp("AAD-UserRead:6") == 6
    assert step_from_ctp("AAD-UserRead:x") is None


def test_parse_prot_entry():
    call = parse_prot_entry(
        'REST API Request to https://api.contoso.com/profile\nStatus: 200\nResponse:\n{"name": "Ada"}'
    )
    assert call.request_uri == "https://api.contoso.com/profile"
    assert call.request_type == "REST"
    assert call.status_code == 200
    assert call.response == {"name": "Ada"}
    assert parse_prot_entry("nothing useful") is None
    assert parse_prot_entry(None) is None


def test_enabled_profiles_skips_disabled_and_duplicates():
    raw = result(
        records=[
            (
                "EnabledForUserJourneysTrue",
                values(
                    ("TechnicalProfileEnabled", {"EnabledResult": True, "TechnicalProfile": "A"}),
                    ("TechnicalProfileEnabled", {"EnabledResult": False, "TechnicalProfile": "B"}),
                    ("TechnicalProfileEnabled", {"EnabledResult": True, "TechnicalProfile": "A"}),
                    ("Other", {"TechnicalProfile": "C"}),
                ),
            )
        ]
    )
    assert enabled_profiles(parse_clip(raw), "EnabledForUserJourneysTrue") == ["A"]


class TestOrchestration:
    def test_new_step_number_creates_step(self):
        interpreter = OrchestrationInterpreter()
        stack = JourneyStack("B2C_1A_SignIn", "SignIn")
        raw = result(statebag={"ORCH_CS": entry("ORCH_CS", "2"), "CTP": entry("CTP", "AAD-Read:2")})
        outcome = interpreter.interpret(_context(c.ORCHESTRATION_MANAGER, raw, stack))
        assert outcome.create_step
        assert outcome.step_result == StepResult.SUCCESS
        assert outcome.technical_profiles == ["AAD-Read"]
        assert stack.current().last_orch_step == 2

    def test_same_step_within_window_does_not_create(self):
        interpreter = OrchestrationInterpreter()
        raw = result(statebag={"ORCH_CS": entry("ORCH_CS", "1")})
        assert interpreter.interpret(_context(c.ORCHESTRATION_MANAGER, raw)).create_step
        again = interpreter.interpret(_context(c.ORCHESTRATION_MANAGER, raw))
        assert not again.create_step

    def test_same_step_after_pause_creates_again(self):
        interpreter = OrchestrationInterpreter(reset_ms=1000)
        raw = result(statebag={"ORCH_CS": entry("ORCH_CS", "1")})
        interpreter.interpret(_context(c.ORCHESTRATION_MANAGER, raw))
        later = _context(c.ORCHESTRATION_MANAGER, raw, timestamp=BASE_TIME + dt.timedelta(seconds=5))
        assert interpreter.interpret(later).create_step

    def test_non_numeric_step(self):
        raw = result(statebag={"ORCH_CS": entry("ORCH_CS", "abc")})
        outcome = OrchestrationInterpreter().interpret(_context(c.ORCHESTRATION_MANAGER, raw))
        assert not outcome.success
        assert "ORCH_CS" in outcome.error


class TestStepInvoke:
    def test_single_enabled_profile(self):
        raw = result(predicate_result="True", records=[enabled("LocalAccountSignIn")])
        outcome = StepInvokeInterpreter().interpret(_context(c.SHOULD_STEP_BE_INVOKED, raw))
        assert outcome.technical_profiles == ["LocalAccountSignIn"]
        assert not outcome.is_interactive
        assert outcome.step_result is None

    def test_several_profiles_are_options(self):
        raw = result(predicate_result="True", records=[enabled("Facebook-OAUTH", "Google-OAUTH")])
        outcome = StepInvokeInterpreter().interpret(_context(c.SHOULD_STEP_BE_INVOKED, raw))
        assert outcome.technical_profiles == []
        assert outcome.selectable_options == ["Facebook-OAUTH", "Google-OAUTH"]
        assert outcome.is_interactive

    def test_false_predicate_skips(self):
        raw = result(predicate_result="False")
        outcome = StepInvokeInterpreter().interpret(_context(c.SHOULD_STEP_BE_INVOKED, raw))
        assert outcome.step_result == StepResult.SKIPPED


class TestSelfAssertedValidation:
    def test_validation_profiles_and_mappings(self):
        validation = values(
            (
                "ValidationTechnicalProfile",
                values(
                    ("TechnicalProfileId", "login-NonInteractive"),
                    ("MappingFromPartnerClaimType", {"PartnerClaimType": "oid", "PolicyClaimType": "objectId"}),
                ),
            )
        )
        raw = result(
            statebag={"CTP": entry("CTP", "SelfAsserted-LocalAccountSignin-Email:1")},
            records=[("Validation", validation)],
        )
        outcome = SelfAssertedValidationInterpreter().interpret(_context(c.SELF_ASSERTED_VALIDATION, raw))
        assert outcome.technical_profiles == ["SelfAsserted-LocalAccountSignin-Email"]
        assert outcome.validation_technical_profiles == ["login-NonInteractive"]
        assert [(m.partner_claim_type, m.policy_claim_type) for m in outcome.claim_mappings] == [("oid", "objectId")]
        assert outcome.error is None

    def test_no_validation_profiles(self):
        raw = result(statebag={"CTP": entry("CTP", "SelfAsserted-ProfileUpdate:3")})
        outcome = SelfAssertedValidationInterpreter().interpret(_context(c.SELF_ASSERTED_VALIDATION, raw))
        assert outcome.validation_technical_profiles == []
        assert outcome.step_result is None

    def test_validation_error(self):
        raw = result(
            ok=False,
            statebag={"CTP": entry("CTP", "SelfAsserted-LocalAccountSignin-Email:1")},
            exception={"Message": "The password is incorrect.", "HResult": "0x80131500"},
        )
        outcome = SelfAssertedValidationInterpreter().interpret(_context(c.SELF_ASSERTED_VALIDATION, raw))
        assert outcome.step_result == StepResult.ERROR
        assert outcome.error == "The password is incorrect."
        assert outcome.interaction_result.outcome == ERROR
        assert outcome.interaction_result.error_hresult == "0x80131500"


class TestSubJourney:
    def test_dispatch_pushes(self):
        raw = result(records=[("SubJourney", "MFA")])
        outcome = SubJourneyInterpreter().interpret(_context(c.SUBJOURNEY_DISPATCH, raw))
        assert outcome.push_sub_journey == ("MFA", "MFA")
        assert outcome.sub_journey_id == "MFA"
        assert outcome.action_handler == c.SUBJOURNEY_DISPATCH

    def test_exit_pops(self):
        outcome = SubJourneyInterpreter().interpret(_context(c.SUBJOURNEY_EXIT, result()))
        assert outcome.pop_sub_journey
        assert outcome.push_sub_journey is None


def test_error_handler_creates_error_step():
    raw = result(ok=False, exception={"Message": "The request is invalid."})
    outcome = ErrorHandlerInterpreter().interpret(_context(c.INITIATING_MESSAGE_VALIDATION, raw))
    assert outcome.create_step
    assert outcome.step_result == StepResult.ERROR
    assert outcome.error == "The request is invalid."
    assert outcome.action_handler == "InitiatingMessageValidationHandler"


def test_missing_result_is_a_no_op():
    outcome = StepInvokeInterpreter().interpret(_context(c.SHOULD_STEP_BE_INVOKED))
    assert outcome.success
    assert outcome.technical_profiles == []
