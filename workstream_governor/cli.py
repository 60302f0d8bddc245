from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Mapping

import jsonschema

from .audit import AuditRunner
from .autonomy import AutonomyGuard
from .capability import CapabilityRegistry
from .clock import SystemClock
from .compiler import DecisionCompiler
from .config import GovernanceConfig, load_config
from .document_header import TIMESTAMP_INTEGRITY_VIOLATION, DocumentHeaderValidator
from .history import DecisionFilter, DecisionHistoryStore
from .hook import GovernanceHook
from .models import Decision, Workstream
from .policy import PolicyEngine
from .schema import WORKSTREAM_SCHEMA
from .state import check_session
from .timestamp_integrity import TimestampCorrectionMonitor
from .util import (
    MetricsEmitter,
    elapsed_ms,
    generate_request_id,
    get_request_id,
    log_event,
    read_json,
    set_request_id,
    setup_json_logger,
)

_LOG = setup_json_logger("workstream_governor.cli")

SKIPPED_DIR_NAMES = ("node_modules", ".git")


def _normalize_global_flags(argv: list[str]) -> list[str]:
    """Allow global flags after the subcommand.

    `argparse` only accepts global args before the subcommand, so
    `wg history --repo-root X` is rewritten to `wg --repo-root X history`.
    """
    if not argv:
        return argv

    out = list(argv)
    for flag in ("--repo-root", "--metrics-out", "--request-id"):
        if flag in out:
            i = out.index(flag)
            if i + 1 < len(out):
                val = out[i + 1]
                del out[i : i + 2]
                out = [flag, val, *out]
    return out


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


def _healing_allowed(env: Mapping[str, str] | None = None) -> bool:
    environ = os.environ if env is None else env
    return environ.get("CI") != "true" and environ.get("GITHUB_ACTIONS") != "true"


def find_markdown_files(roots: list[Path]) -> list[Path]:
    found: list[Path] = []
    for root in roots:
        if not root.is_dir():
            continue
        for path in sorted(root.rglob("*.md"), key=lambda p: p.as_posix()):
            rel_parts = path.relative_to(root).parts[:-1]
            if any(part in SKIPPED_DIR_NAMES or part.startswith(".") for part in rel_parts):
                continue
            found.append(path)
    return found


def _policy_engine(cfg: GovernanceConfig) -> PolicyEngine:
    return PolicyEngine.from_config(cfg, SystemClock()).load()


def cmd_validate_workstream(cfg: GovernanceConfig, path: Path, strict_schema: bool) -> int:
    raw = read_json(path)
    if strict_schema:
        jsonschema.validate(instance=raw, schema=WORKSTREAM_SCHEMA)
    hook = GovernanceHook(enabled=cfg.enforce, policy_engine=_policy_engine(cfg))
    result = hook.validate_workstream(Workstream.from_mapping(raw))
    _print(result.as_dict())
    return 0 if result.ok else 2


def cmd_validate_docs(cfg: GovernanceConfig, paths: list[Path], heal: bool, strict: bool) -> int:
    clock = SystemClock()
    monitor = TimestampCorrectionMonitor(clock)
    validator = DocumentHeaderValidator(clock, max_skew_minutes=cfg.max_skew_minutes, monitor=monitor)
    heal_enabled = heal and _healing_allowed()
    if heal and not heal_enabled:
        log_event(_LOG, "cli.validate_docs.heal_disabled", reason="ci")

    files = find_markdown_files(paths or cfg.docs_roots)
    report: list[dict[str, Any]] = []
    failures = 0
    for file in files:
        content = file.read_text(encoding="utf-8")
        result = validator.validate_content(content)
        integrity_violation = TIMESTAMP_INTEGRITY_VIOLATION in result.reasons
        healed = False
        if heal_enabled and integrity_violation:
            outcome = validator.self_heal_timestamp_integrity(content, entity=str(file))
            if outcome.healed:
                file.write_text(outcome.content, encoding="utf-8")
                healed = True

        if (integrity_violation and not healed) or (strict and not result.ok and not healed):
            failures += 1
        report.append(
            {"file": str(file), "status": result.status, "reasons": list(result.reasons), "healed": healed}
        )

    metrics = monitor.metrics()
    _print(
        {
            "files": report,
            "summary": {
                "total": len(files),
                "healed": metrics.total_corrections,
                "failed": failures,
                "healing_enabled": heal_enabled,
            },
        }
    )
    return 0 if failures == 0 else 2


def cmd_history(cfg: GovernanceConfig, decision_filter: DecisionFilter) -> int:
    store = DecisionHistoryStore(cfg.history_path)
    _print([d.as_dict() for d in store.list(decision_filter)])
    return 0


def cmd_record_decision(cfg: GovernanceConfig, path: Path) -> int:
    clock = SystemClock()
    engine = _policy_engine(cfg)
    store = DecisionHistoryStore(cfg.history_path)
    decision = Decision.from_mapping(read_json(path))
    compiler = DecisionCompiler(engine, AutonomyGuard(engine.get_autonomy_policy()), store, clock)
    result = compiler.compile(decision)
    if result.ok:
        store.append(decision)
    _print(result.as_dict())
    return 0 if result.ok else 2


def cmd_session(cfg: GovernanceConfig, threshold_minutes: int | None) -> int:
    check = check_session(
        SystemClock(),
        threshold_minutes=cfg.gap_threshold_minutes if threshold_minutes is None else threshold_minutes,
        path=cfg.state_path,
    )
    _print(check.as_dict())
    return 0


def cmd_capabilities(cfg: GovernanceConfig, directory: Path | None) -> int:
    registry = CapabilityRegistry()
    clients = registry.load_dir(directory or cfg.capabilities_dir)
    _print(
        {
            client: sorted(registry.get_capabilities(client).operations)
            for client in clients
        }
    )
    return 0


def cmd_audit(cfg: GovernanceConfig, workstreams_path: Path | None, failure_injection: bool) -> int:
    clock = SystemClock()
    store = DecisionHistoryStore(cfg.history_path)
    runner = AuditRunner(PolicyEngine.from_config(cfg, clock), store, clock)

    workstreams: list[Workstream] = []
    if workstreams_path is not None:
        workstreams = [Workstream.from_mapping(w) for w in read_json(workstreams_path)]

    result = runner.run_audit(workstreams, store.list())
    payload = result.as_dict()
    rc = 0
    if failure_injection:
        outcomes = runner.run_failure_injection_tests()
        payload["failureInjection"] = [
            {"test": o.test, "passed": o.passed, "reason": o.reason} for o in outcomes
        ]
        rc = 0 if all(o.passed for o in outcomes) else 2
    _print(payload)
    return rc


def _run_command_with_observability(
    *,
    command_name: str,
    fn,
    metrics: MetricsEmitter,
) -> int:
    started = time.perf_counter()
    log_event(_LOG, "cli.command.start", command=command_name)
    try:
        rc = fn()
    except Exception as exc:
        latency_ms = elapsed_ms(started)
        log_event(
            _LOG,
            "cli.command.error",
            command=command_name,
            error=str(exc),
            gate_outcome="error",
            latency_ms=round(latency_ms, 3),
        )
        metrics.emit(
            metric="wg.command",
            status="error",
            latency_ms=latency_ms,
            gate_outcome="error",
            error=type(exc).__name__,
        )
        raise

    latency_ms = elapsed_ms(started)
    gate_outcome = "pass" if rc == 0 else "blocked"
    status = "success" if rc == 0 else "error"
    log_event(
        _LOG,
        "cli.command.finish",
        command=command_name,
        gate_outcome=gate_outcome,
        latency_ms=round(latency_ms, 3),
        status=status,
    )
    metrics.emit(
        metric="wg.command",
        status=status,
        latency_ms=latency_ms,
        gate_outcome=gate_outcome,
        error=(None if rc == 0 else f"exit_code={rc}"),
    )
    return rc


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wg", description="Workstream governance gates.")
    p.add_argument(
        "--repo-root",
        default=None,
        help="Repository root (default: REPO_ROOT or the nearest parent holding the anchor files).",
    )
    p.add_argument(
        "--metrics-out",
        default="artifacts/observability/metrics.jsonl",
        help="Path to JSONL metrics file emitter output.",
    )
    p.add_argument(
        "--request-id",
        default=None,
        help="Correlation/request identifier for all structured logs and metrics.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    vw = sub.add_parser("validate-workstream", help="Run the workstream gates on a JSON file.")
    vw.add_argument("path", help="Workstream JSON file.")
    vw.add_argument(
        "--strict-schema",
        action="store_true",
        help="Reject input that does not match the workstream JSON Schema.",
    )

    vd = sub.add_parser("validate-docs", help="Check governance document headers.")
    vd.add_argument("paths", nargs="*", help="Directories to scan (default: configured docs roots).")
    vd.add_argument(
        "--heal",
        action="store_true",
        help="Rewrite out-of-order Aktualisiert values (ignored when CI=true or GITHUB_ACTIONS=true).",
    )
    vd.add_argument(
        "--strict", action="store_true", help="Fail on any blocked header, not only timestamp integrity."
    )

    hist = sub.add_parser("history", help="List recorded decisions.")
    hist.add_argument("--layer", default=None)
    hist.add_argument("--owner", default=None)
    hist.add_argument("--since", default=None, help="ISO-8601 lower bound on timestamp.")
    hist.add_argument("--scope-prefix", default=None)

    rec = sub.add_parser("record-decision", help="Compile a decision and append it to the trail.")
    rec.add_argument("path", help="Decision JSON file.")

    ses = sub.add_parser("session", help="Detect a time gap since the last run and stamp now.")
    ses.add_argument("--threshold", type=int, default=None, help="Gap in minutes that starts a fresh session.")

    caps = sub.add_parser("capabilities", help="Load and check every capability map.")
    caps.add_argument("--dir", default=None, help="Directory of *.json maps (default: configured).")

    aud = sub.add_parser("audit", help="Score recorded decisions and optional workstreams.")
    aud.add_argument("--workstreams", default=None, help="JSON file holding a list of workstreams.")
    aud.add_argument(
        "--failure-injection", action="store_true", help="Also run the failure-injection self tests."
    )
    return p


def main(argv: list[str] | None = None) -> None:
    argv = _normalize_global_flags(argv or sys.argv[1:])
    args = build_parser().parse_args(argv)

    req_id = args.request_id or generate_request_id()
    set_request_id(req_id)
    metrics = MetricsEmitter(Path(args.metrics_out))
    log_event(_LOG, "cli.request.context", request_id=get_request_id(), command=args.cmd)

    def _cfg() -> GovernanceConfig:
        return load_config(Path(args.repo_root) if args.repo_root else None)

    if args.cmd == "validate-workstream":
        fn = lambda: cmd_validate_workstream(_cfg(), Path(args.path), args.strict_schema)  # noqa: E731
    elif args.cmd == "validate-docs":
        fn = lambda: cmd_validate_docs(  # noqa: E731
            _cfg(), [Path(p).resolve() for p in args.paths], args.heal, args.strict
        )
    elif args.cmd == "history":
        fn = lambda: cmd_history(  # noqa: E731
            _cfg(),
            DecisionFilter(
                layer=args.layer, owner=args.owner, since=args.since, scope_prefix=args.scope_prefix
            ),
        )
    elif args.cmd == "record-decision":
        fn = lambda: cmd_record_decision(_cfg(), Path(args.path))  # noqa: E731
    elif args.cmd == "session":
        fn = lambda: cmd_session(_cfg(), args.threshold)  # noqa: E731
    elif args.cmd == "capabilities":
        fn = lambda: cmd_capabilities(_cfg(), Path(args.dir) if args.dir else None)  # noqa: E731
    elif args.cmd == "audit":
        fn = lambda: cmd_audit(  # noqa: E731
            _cfg(), Path(args.workstreams) if args.workstreams else None, args.failure_injection
        )
    else:
        raise RuntimeError("unreachable")

    rc = _run_command_with_observability(command_name=args.cmd, fn=fn, metrics=metrics)
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
