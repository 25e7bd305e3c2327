"""Command line entry point for policy consolidation and trace reconstruction."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .config import Settings, load_settings
from .errors import ConfigError, CycleDetectedError, PolicyProcessingError, TraceInputError
from .framework import read_json, write_json
from .processor import PolicyProcessor, read_policy_files
from .trace.flows import group_logs_into_flows
from .trace.ingest import LogRecord, load_log_records, to_trace_inputs
from .trace.parser import TraceParser

LOGGER = logging.getLogger(__name__)


class ExitCode:
    SUCCESS = 0
    USAGE = 2
    INPUT = 3
    PROCESSING = 4
    CYCLE = 5
    CONFIG = 6
    TRACE_ERRORS = 7


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="b2c-policy-trace",
        description="Consolidate Azure AD B2C custom policies and rebuild journey traces",
    )
    parser.add_argument("--config", default="", help="Settings YAML file")
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        default="",
        help="Overrides logging.level from settings",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    consolidate = sub.add_parser("consolidate", help="Consolidate a policy inheritance chain")
    consolidate.add_argument("files", nargs="+", help="Policy XML files, any order")
    consolidate.add_argument("--out", required=True, help="Consolidated policy XML path")
    consolidate.add_argument("--graph-out", default="", help="Journey graph JSON path")
    consolidate.add_argument("--report-out", default="", help="Full processing report JSON path")

    trace = sub.add_parser("trace", help="Rebuild the step trace of one journey execution")
    trace.add_argument("logs", help="Log records or an Application Insights query response (JSON)")
    trace.add_argument("--correlation-id", default="", help="Only trace logs with this correlation id")
    trace.add_argument("--out", required=True, help="Trace JSON path")

    flows = sub.add_parser("flows", help="List the user flows found in a log export")
    flows.add_argument("logs", help="Log records or an Application Insights query response (JSON)")
    flows.add_argument("--out", required=True, help="Flows JSON path")
    return parser


def _settings(args: argparse.Namespace) -> Settings:
    return load_settings(Path(args.config) if args.config else None)


def _load_logs(path: Path) -> list[LogRecord]:
    try:
        payload = read_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        raise TraceInputError(f"Cannot read logs from {path}: {exc}") from exc
    return load_log_records(payload)


def _consolidate(args: argparse.Namespace, settings: Settings) -> int:
    try:
        files = read_policy_files([Path(name) for name in args.files])
    except OSError as exc:
        print(f"error={exc}")
        return ExitCode.INPUT
    response = PolicyProcessor(settings=settings).process_files(files)

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(response.consolidated_xml, encoding="utf-8")
    print(f"consolidated={out}")
    if args.graph_out:
        write_json(
            Path(args.graph_out),
            {
                "graph": response.graph.to_dict(),
                "subgraphs": {key: graph.to_dict() for key, graph in response.subgraphs.items()},
            },
        )
        print(f"graph={args.graph_out}")
    if args.report_out:
        write_json(Path(args.report_out), response.to_dict())
        print(f"report={args.report_out}")
    for warning in response.warnings:
        print(f"warning={warning}")
    return ExitCode.SUCCESS


def _trace(args: argparse.Namespace, settings: Settings) -> int:
    records = _load_logs(Path(args.logs))
    if args.correlation_id:
        records = [record for record in records if record.correlation_id == args.correlation_id]
    result = TraceParser(settings=settings).parse_trace(to_trace_inputs(records))
    write_json(Path(args.out), result.to_dict())
    print(f"trace={args.out}")
    print(f"steps={len(result.trace_steps)}")
    for error in result.errors:
        print(f"error={error}")
    return ExitCode.SUCCESS if result.success else ExitCode.TRACE_ERRORS


def _flows(args: argparse.Namespace, settings: Settings) -> int:
    records = _load_logs(Path(args.logs))
    flows = group_logs_into_flows(to_trace_inputs(records), settings)
    write_json(Path(args.out), [flow.to_dict() for flow in flows])
    print(f"flows={args.out}")
    print(f"count={len(flows)}")
    return ExitCode.SUCCESS


HANDLERS = {
    "consolidate": _consolidate,
    "trace": _trace,
    "flows": _flows,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _settings(args)
    except ConfigError as exc:
        print(str(exc))
        return ExitCode.CONFIG
    logging.basicConfig(
        level=args.log_level or settings.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )

    handler = HANDLERS.get(args.command)
    if handler is None:
        parser.error(f"unsupported command: {args.command}")
        return ExitCode.USAGE
    try:
        return handler(args, settings)
    except CycleDetectedError as exc:
        print(str(exc))
        return ExitCode.CYCLE
    except PolicyProcessingError as exc:
        print(str(exc))
        return ExitCode.PROCESSING
    except TraceInputError as exc:
        print(str(exc))
        return ExitCode.INPUT


if __name__ == "__main__":
    raise SystemExit(main())
