from __future__ import annotations

from b2c_policy_trace import constants as c
from b2c_policy_trace.trace.aggregator import ClipAggregator, find_next_handler_result
from b2c_policy_trace.trace.clips import HandlerResultClip, parse_clips
from tests.clip_builders import action, entry, fatal, headers, predicate, result, transition


def _aggregate(raw):
    return ClipAggregator().aggregate(parse_clips(raw))


def test_action_takes_the_following_result():
    aggregation = _aggregate(
        [headers(), action(c.ORCHESTRATION_MANAGER), result(statebag={"ORCH_CS": entry("ORCH_CS", "1")})]
    )
    assert len(aggregation.groups) == 1
    group = aggregation.groups[0]
    assert group.handler_name == c.ORCHESTRATION_MANAGER
    assert group.predicate is None
    assert group.result.statebag_value("ORCH_CS") == "1"
    assert group.clip_index == 1


def test_predicate_without_action_is_its_own_handler():
    aggregation = _aggregate([predicate(c.SHOULD_STEP_BE_INVOKED), result(predicate_result="False")])
    group = aggregation.groups[0]
    assert group.handler_name == c.SHOULD_STEP_BE_INVOKED
    assert group.predicate == c.SHOULD_STEP_BE_INVOKED
    assert group.result.predicate_result == "False"
    assert group.clip_index == 0


def test_predicate_guards_the_next_action():
    aggregation = _aggregate(
        [predicate(c.SSO_PARTICIPANT), action(c.CLAIMS_EXCHANGE_ACTION), result(), action(c.SEND_CLAIMS)]
    )
    first, second = aggregation.groups
    assert first.handler_name == c.CLAIMS_EXCHANGE_ACTION
    assert first.predicate == c.SSO_PARTICIPANT
    assert len(first.clips) == 3
    assert second.predicate is None
    assert second.result is None


def test_headers_transitions_fatal_and_malformed():
    aggregation = _aggregate(
        [
            headers(policy_id="B2C_1A_First"),
            headers(policy_id="B2C_1A_Second"),
            transition("Continue"),
            {"Kind": "Transition", "Content": []},
            {"Kind": "FutureKind", "Content": {}},
            fatal("boom"),
        ]
    )
    assert aggregation.headers.policy_id == "B2C_1A_First"
    assert [(t.event_name, t.index) for t in aggregation.transitions] == [("Continue", 2)]
    assert [clip.kind for clip in aggregation.malformed] == ["Transition"]
    assert aggregation.fatal_exception.exception.message == "boom"
    assert aggregation.groups == []


def test_find_next_handler_result_stops_at_boundary():
    clips = parse_clips([action(c.SEND_CLAIMS), predicate(c.SSO_SESSION), result()])
    assert find_next_handler_result(clips, 1) is None
    found = find_next_handler_result(clips, 2)
    assert isinstance(found, HandlerResultClip)
