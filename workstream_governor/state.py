from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .clock import Clock, format_iso, parse_iso
from .config import DEFAULT_GAP_THRESHOLD_MINUTES, DEFAULT_STATE_PATH
from .models import RuntimeState
from .repo_root import resolve_repo_root
from .time_utils import calculate_gap_minutes
from .util import ensure_dir, log_event, read_json, setup_json_logger

_LOG = setup_json_logger("workstream_governor.state")


def state_path(repo_root: Path | None = None) -> Path:
    return (repo_root or resolve_repo_root()) / DEFAULT_STATE_PATH


def _check_last_seen(value: object) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValueError("last_seen_at must be a string (ISO-8601)")
    parse_iso(value)


def load_state(repo_root: Path | None = None, *, path: Path | None = None) -> RuntimeState:
    """Read runtime state; a missing file is an empty state.

    A corrupt file or a non-string ``last_seen_at`` raises.
    """
    file_path = path or state_path(repo_root)
    if not file_path.exists():
        return RuntimeState()
    raw = read_json(file_path)
    if not isinstance(raw, dict):
        raise ValueError(f"E_STATE_INVALID: runtime state must be a JSON object: {file_path}")
    last_seen = raw.get("last_seen_at")
    if last_seen is not None and not isinstance(last_seen, str):
        raise ValueError("last_seen_at must be a string (ISO-8601)")
    return RuntimeState(last_seen_at=last_seen)


def save_state(
    state: RuntimeState, repo_root: Path | None = None, *, path: Path | None = None
) -> Path:
    """Persist state atomically: write a sibling temp file, then ``os.replace`` it.

    Concurrent writers are last-writer-wins.
    """
    _check_last_seen(state.last_seen_at)
    file_path = path or state_path(repo_root)
    ensure_dir(file_path.parent)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=file_path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(state.as_dict(), indent=2) + "\n")
        os.replace(tmp_name, file_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    log_event(_LOG, "state.saved", path=str(file_path), last_seen_at=state.last_seen_at)
    return file_path


SESSION_FRESH = "fresh"
SESSION_CONTINUOUS = "continuous"


@dataclass(frozen=True)
class SessionCheck:
    mode: str
    now: str
    last_seen_at: str | None = None
    gap_minutes: int | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = {
            "mode": self.mode,
            "now": self.now,
            "lastSeenAt": self.last_seen_at,
            "gapMinutes": self.gap_minutes,
        }
        return {k: v for k, v in payload.items() if v is not None}


def check_session(
    clock: Clock,
    *,
    threshold_minutes: int = DEFAULT_GAP_THRESHOLD_MINUTES,
    repo_root: Path | None = None,
    path: Path | None = None,
) -> SessionCheck:
    """Compare ``last_seen_at`` with now, then stamp now as the new ``last_seen_at``.

    A gap of at least ``threshold_minutes`` starts a fresh session.
    """
    now = format_iso(clock.now())
    previous = load_state(repo_root, path=path).last_seen_at

    mode = SESSION_CONTINUOUS
    gap = None
    if previous is not None:
        gap = calculate_gap_minutes(previous, now)
        if gap >= threshold_minutes:
            mode = SESSION_FRESH
            log_event(
                _LOG,
                "state.time_gap.detected",
                level=logging.WARNING,
                gap_minutes=gap,
                last_seen_at=previous,
                threshold=threshold_minutes,
            )

    save_state(RuntimeState(last_seen_at=now), repo_root, path=path)
    return SessionCheck(mode=mode, now=now, last_seen_at=previous, gap_minutes=gap)
