"""Append-only decision trail in JSONL (one decision per line)."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .config import DEFAULT_HISTORY_PATH
from .models import Decision
from .repo_root import resolve_repo_root
from .util import ensure_dir, log_event, setup_json_logger

_LOG = setup_json_logger("workstream_governor.history")


@dataclass(frozen=True)
class DecisionFilter:
    layer: str | None = None
    owner: str | None = None
    since: str | None = None
    scope_prefix: str | None = None

    def accepts(self, decision: Decision, serialized: str) -> bool:
        if self.layer and decision.layer != self.layer:
            return False
        if self.owner and decision.owner != self.owner:
            return False
        if self.since and decision.timestamp < self.since:
            return False
        if self.scope_prefix and self.scope_prefix.lower() not in serialized.lower():
            return False
        return True


class DecisionHistoryStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path if path is not None else resolve_repo_root() / DEFAULT_HISTORY_PATH

    def append(self, decision: Decision) -> None:
        ensure_dir(self.path.parent)
        line = json.dumps(decision.as_dict(), ensure_ascii=False) + "\n"
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)
        log_event(_LOG, "history.decision.appended", decision_id=decision.id, layer=decision.layer)

    def list(self, decision_filter: DecisionFilter | None = None) -> list[Decision]:
        """Decisions matching the filter, oldest first.

        Lines that are not JSON objects, or whose fields have the wrong shape, are
        skipped with a warning.
        """
        if not self.path.exists():
            return []

        decisions: list[Decision] = []
        text = self.path.read_text(encoding="utf-8")
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as exc:
                self._skip(lineno, line, str(exc))
                continue
            if not isinstance(raw, Mapping):
                self._skip(lineno, line, "not a JSON object")
                continue
            try:
                decision = Decision.from_mapping(raw)
            except (TypeError, ValueError) as exc:
                self._skip(lineno, line, f"{type(exc).__name__}: {exc}")
                continue
            if decision_filter is not None and not decision_filter.accepts(decision, line):
                continue
            decisions.append(decision)

        return sorted(decisions, key=lambda d: d.sort_key)

    def _skip(self, lineno: int, line: str, error: str) -> None:
        log_event(
            _LOG,
            "history.line.skipped",
            level=logging.WARNING,
            path=str(self.path),
            line=lineno,
            preview=line[:50],
            error=error,
        )

    def latest_by_layer(self, layer: str) -> Decision | None:
        decisions = self.list(DecisionFilter(layer=layer))
        return decisions[-1] if decisions else None

    def by_owner(self, owner: str) -> list[Decision]:
        return self.list(DecisionFilter(owner=owner))

    def by_scope_prefix(self, prefix: str) -> list[Decision]:
        return self.list(DecisionFilter(scope_prefix=prefix))
