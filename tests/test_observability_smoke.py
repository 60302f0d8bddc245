from __future__ import annotations

import io
import json
from pathlib import Path

from workstream_governor.util import (
    MetricsEmitter,
    log_event,
    set_request_id,
    setup_json_logger,
)


def test_structured_log_contains_required_fields() -> None:
    stream = io.StringIO()
    logger = setup_json_logger("tests.observability", stream=stream)
    set_request_id("req-smoke-001")

    log_event(logger, "hook.workstream.pass", workstream_id="ws-1", gate_outcome="pass")

    payload = json.loads(stream.getvalue().strip())
    for key in ("event", "level", "logger", "message", "request_id", "ts"):
        assert key in payload
    assert payload["event"] == "hook.workstream.pass"
    assert payload["request_id"] == "req-smoke-001"
    assert payload["workstream_id"] == "ws-1"


def test_metrics_emitter_buckets_latency(tmp_path: Path) -> None:
    set_request_id("req-smoke-002")
    out = tmp_path / "nested" / "metrics.jsonl"
    emitter = MetricsEmitter(out)

    emitter.emit(metric="wg.command", status="success", latency_ms=12.2, gate_outcome="pass")
    emitter.emit(metric="wg.command", status="error", latency_ms=1500.0, gate_outcome="blocked", error="exit_code=2")

    first, second = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    assert first["request_id"] == "req-smoke-002"
    assert (first["success"], first["latency_bucket"], first["error"]) == (True, "le_50ms", None)
    assert (second["success"], second["latency_bucket"]) == (False, "gt_1000ms")
