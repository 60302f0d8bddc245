from __future__ import annotations

import json
from pathlib import Path

import pytest

from workstream_governor import state
from workstream_governor.clock import FakeClock
from workstream_governor.errors import InvalidTimestampError
from workstream_governor.models import RuntimeState
from workstream_governor.state import (
    SESSION_CONTINUOUS,
    SESSION_FRESH,
    check_session,
    load_state,
    save_state,
    state_path,
)


def test_missing_state_is_empty(repo_root: Path) -> None:
    assert load_state(repo_root) == RuntimeState()


def test_save_then_load(repo_root: Path) -> None:
    written = save_state(RuntimeState(last_seen_at="2026-02-13T10:00:00.000Z"), repo_root)

    assert written == state_path(repo_root)
    assert json.loads(written.read_text(encoding="utf-8")) == {"last_seen_at": "2026-02-13T10:00:00.000Z"}
    assert load_state(repo_root).last_seen_at == "2026-02-13T10:00:00.000Z"
    assert list(written.parent.glob("*.tmp")) == []


def test_save_rejects_unparseable_timestamp(repo_root: Path) -> None:
    with pytest.raises(InvalidTimestampError):
        save_state(RuntimeState(last_seen_at="yesterday"), repo_root)
    assert not state_path(repo_root).exists()


def test_load_rejects_corrupt_state(tmp_path: Path) -> None:
    path = tmp_path / "state.json"

    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ValueError):
        load_state(path=path)

    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError, match="E_STATE_INVALID"):
        load_state(path=path)

    path.write_text('{"last_seen_at": 12}', encoding="utf-8")
    with pytest.raises(ValueError, match="last_seen_at must be a string"):
        load_state(path=path)


def test_failed_replace_removes_temp_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(state.os, "replace", _boom)
    path = tmp_path / "state.json"

    with pytest.raises(OSError, match="disk full"):
        save_state(RuntimeState(last_seen_at="2026-02-13T10:00:00.000Z"), path=path)

    assert list(tmp_path.iterdir()) == []


def test_check_session_detects_gaps(tmp_path: Path, fake_clock: FakeClock) -> None:
    path = tmp_path / "state.json"

    first = check_session(fake_clock, path=path)
    assert first.mode == SESSION_CONTINUOUS
    assert first.gap_minutes is None

    fake_clock.advance(minutes=49)
    second = check_session(fake_clock, path=path)
    assert (second.mode, second.gap_minutes) == (SESSION_CONTINUOUS, 49)

    fake_clock.advance(minutes=50)
    third = check_session(fake_clock, path=path)
    assert (third.mode, third.gap_minutes) == (SESSION_FRESH, 50)
    assert third.last_seen_at == "2026-02-13T10:49:00.000Z"
    assert load_state(path=path).last_seen_at == "2026-02-13T11:39:00.000Z"
    assert third.as_dict()["lastSeenAt"] == "2026-02-13T10:49:00.000Z"
