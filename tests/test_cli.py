from __future__ import annotations

import json

from b2c_policy_trace import constants as c
from b2c_policy_trace.cli import ExitCode, main
from tests.clip_builders import CORRELATION_ID, POLICY_ID, action, fatal, headers, orch, result, transition
from tests.conftest import CHAIN_FILES, fixture_path, policy_xml


def _record(log_id: str, clips, second: int = 0, correlation_id: str = CORRELATION_ID):
    return {
        "id": log_id,
        "timestamp": f"2024-01-15T10:30:{second:02d}Z",
        "policyId": POLICY_ID,
        "correlationId": correlation_id,
        "clips": clips,
    }


def _write_records(path, records):
    path.write_text(json.dumps(records), encoding="utf-8")
    return str(path)


def _journey_records():
    return [
        _record("l1", [headers(), *orch(1, "SignUpOrSignIn")]),
        _record("l2", [headers(), *orch(2, "JwtIssuer"), action(c.SEND_CLAIMS), result(), transition("SendClaims")], 3),
        _record("o1", [headers(correlation_id="other"), *orch(1)], 9, correlation_id="other"),
    ]


class TestConsolidate:
    def test_writes_outputs(self, tmp_path, capsys):
        out = tmp_path / "out" / "consolidated.xml"
        graph_out = tmp_path / "graph.json"
        report_out = tmp_path / "report.json"
        code = main(
            [
                "consolidate",
                *(str(fixture_path(name)) for name in CHAIN_FILES),
                "--out",
                str(out),
                "--graph-out",
                str(graph_out),
                "--report-out",
                str(report_out),
            ]
        )
        assert code == ExitCode.SUCCESS
        assert 'PolicyId="B2C_1A_signup_signin"' in out.read_text(encoding="utf-8")
        graph = json.loads(graph_out.read_text(encoding="utf-8"))
        assert set(graph["subgraphs"]) == {"SignIn"}
        report = json.loads(report_out.read_text(encoding="utf-8"))
        assert len(report["files"]) == 3
        printed = capsys.readouterr().out
        assert f"consolidated={out}" in printed
        assert f"report={report_out}" in printed

    def test_missing_base_policy(self, tmp_path):
        code = main(
            ["consolidate", str(fixture_path("TrustFrameworkExtensions.xml")), "--out", str(tmp_path / "x.xml")]
        )
        assert code == ExitCode.PROCESSING

    def test_base_policy_cycle(self, tmp_path):
        first = tmp_path / "a.xml"
        second = tmp_path / "b.xml"
        first.write_text(policy_xml("B2C_1A_A", base="B2C_1A_B"), encoding="utf-8")
        second.write_text(policy_xml("B2C_1A_B", base="B2C_1A_A"), encoding="utf-8")
        code = main(["consolidate", str(first), str(second), "--out", str(tmp_path / "x.xml")])
        assert code == ExitCode.CYCLE

    def test_unreadable_file(self, tmp_path):
        code = main(["consolidate", str(tmp_path / "missing.xml"), "--out", str(tmp_path / "x.xml")])
        assert code == ExitCode.INPUT

    def test_invalid_settings(self, tmp_path):
        config = tmp_path / "settings.yaml"
        config.write_text("unknown: 1\n", encoding="utf-8")
        code = main(
            ["--config", str(config), "consolidate", str(fixture_path("TrustFrameworkBase.xml")), "--out", str(tmp_path / "x.xml")]
        )
        assert code == ExitCode.CONFIG


class TestTrace:
    def test_trace_one_correlation_id(self, tmp_path, capsys):
        logs = _write_records(tmp_path / "logs.json", _journey_records())
        out = tmp_path / "trace.json"
        code = main(["trace", logs, "--correlation-id", CORRELATION_ID, "--out", str(out)])
        assert code == ExitCode.SUCCESS
        payload = json.loads(out.read_text(encoding="utf-8"))
        assert [step["graphNodeId"] for step in payload["traceSteps"]] == [
            f"{POLICY_ID}-Step1",
            f"{POLICY_ID}-Step2",
        ]
        assert "steps=2" in capsys.readouterr().out

    def test_trace_with_errors(self, tmp_path, capsys):
        logs = _write_records(tmp_path / "logs.json", [_record("l1", [headers(), fatal("Policy not found")])])
        code = main(["trace", logs, "--out", str(tmp_path / "trace.json")])
        assert code == ExitCode.TRACE_ERRORS
        assert "error=Policy not found" in capsys.readouterr().out

    def test_unreadable_logs(self, tmp_path):
        path = tmp_path / "logs.json"
        path.write_text("not json", encoding="utf-8")
        assert main(["trace", str(path), "--out", str(tmp_path / "trace.json")]) == ExitCode.INPUT


def test_flows(tmp_path, capsys):
    logs = _write_records(tmp_path / "logs.json", _journey_records())
    out = tmp_path / "flows.json"
    assert main(["flows", logs, "--out", str(out)]) == ExitCode.SUCCESS
    flows = json.loads(out.read_text(encoding="utf-8"))
    assert [flow["id"] for flow in flows] == [f"{CORRELATION_ID}-0", "other-1"]
    assert flows[0]["completed"]
    assert "count=2" in capsys.readouterr().out
