from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from workstream_governor import history
from workstream_governor.config import DEFAULT_HISTORY_PATH
from workstream_governor.history import DecisionFilter, DecisionHistoryStore
from workstream_governor.models import Decision
from workstream_governor.util import setup_json_logger


def _decision(id: str, timestamp: str, **kwargs) -> Decision:
    base = {"layer": "architecture", "rationale": "r", "owner": "alice"}
    base.update(kwargs)
    return Decision(id=id, timestamp=timestamp, **base)


def test_append_creates_parents_and_writes_one_line(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "decisions.jsonl"
    store = DecisionHistoryStore(path)
    store.append(_decision("d-1", "2026-02-01T00:00:00.000Z"))

    lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
    assert len(lines) == 1
    assert lines[0].endswith("\n")
    assert json.loads(lines[0])["id"] == "d-1"


def test_list_sorts_by_timestamp_then_date(tmp_path: Path) -> None:
    store = DecisionHistoryStore(tmp_path / "d.jsonl")
    store.append(_decision("late", "2026-02-10T00:00:00.000Z"))
    store.append(Decision(id="dated", layer="strategy", owner="bob", date="2026-02-05"))
    store.append(_decision("early", "2026-02-01T00:00:00.000Z"))
    store.append(Decision(id="undated", owner="bob"))

    assert [d.id for d in store.list()] == ["undated", "early", "dated", "late"]


def test_missing_file_lists_nothing(tmp_path: Path) -> None:
    assert DecisionHistoryStore(tmp_path / "none.jsonl").list() == []


def test_corrupt_lines_are_skipped_with_warning(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    stream = io.StringIO()
    monkeypatch.setattr(history, "_LOG", setup_json_logger("tests.history.corrupt", stream=stream))
    path = tmp_path / "d.jsonl"
    path.write_text(
        '{"id": "ok", "timestamp": "2026-02-01T00:00:00.000Z"}\n'
        "{not json\n"
        "[1, 2]\n"
        "\n"
        '{"id": "bad", "alternatives": 3}\n'
        '{"id": "numeric-date", "date": 20260201}\n',
        encoding="utf-8",
    )

    decisions = DecisionHistoryStore(path).list()

    assert [d.id for d in decisions] == ["ok", "numeric-date"]
    assert decisions[1].date == "20260201"
    events = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert [(e["event"], e["level"], e["line"]) for e in events] == [
        ("history.line.skipped", "WARNING", 2),
        ("history.line.skipped", "WARNING", 3),
        ("history.line.skipped", "WARNING", 5),
    ]
    assert events[2]["error"].startswith("TypeError")


def test_filters(tmp_path: Path) -> None:
    store = DecisionHistoryStore(tmp_path / "d.jsonl")
    store.append(_decision("a", "2026-01-01T00:00:00.000Z", scope=["Services/Billing/api.py"]))
    store.append(_decision("b", "2026-02-01T00:00:00.000Z", layer="strategy", owner="bob"))
    store.append(_decision("c", "2026-03-01T00:00:00.000Z", scope=["web/app.ts"]))

    assert [d.id for d in store.list(DecisionFilter(layer="architecture"))] == ["a", "c"]
    assert [d.id for d in store.by_owner("bob")] == ["b"]
    assert [d.id for d in store.list(DecisionFilter(since="2026-02-01T00:00:00.000Z"))] == ["b", "c"]
    assert [d.id for d in store.by_scope_prefix("services/billing")] == ["a"]
    assert store.latest_by_layer("architecture").id == "c"
    assert store.latest_by_layer("governance") is None


def test_default_path_is_under_repo_root(repo_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPO_ROOT", str(repo_root))
    assert DecisionHistoryStore().path == repo_root.resolve() / DEFAULT_HISTORY_PATH
