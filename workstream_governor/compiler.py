from __future__ import annotations

from datetime import datetime, timedelta

from .autonomy import AutonomyGuard
from .clock import Clock, SystemClock
from .errors import InvalidTimestampError
from .history import DecisionFilter, DecisionHistoryStore
from .models import Decision, ValidationResult
from .policy import PolicyEngine
from .util import log_event, setup_json_logger, sha256_text
from .validator import is_valid_layer

_LOG = setup_json_logger("workstream_governor.compiler")

CONFLICT_WINDOW = timedelta(days=30)
REASON_MISSING_FIELDS = "Decision missing required fields: id, layer, rationale, owner"
REASON_INVALID_TIMESTAMP = "Decision timestamp is not a valid ISO-8601 value"


def derive_decision_key(decision: Decision) -> str:
    if decision.decision:
        return sha256_text(decision.decision)[:16]
    return sha256_text(f"{decision.rationale}{decision.implications}")[:16]


def paths_overlap(a: str, b: str) -> bool:
    left = a.replace("\\", "/").lower()
    right = b.replace("\\", "/").lower()
    if left.startswith(right) or right.startswith(left):
        return True
    right_segments = set(right.split("/"))
    return any(seg and seg in right_segments for seg in left.split("/"))


def scopes_overlap(first: Decision, second: Decision) -> bool:
    """Explicit scopes are compared pairwise; without both scopes overlap is assumed."""
    if first.scope is None or second.scope is None:
        return True
    return any(paths_overlap(x, y) for x in first.scope for y in second.scope)


class DecisionCompiler:
    """Decision pipeline: required fields, layer, policy, escalation, history conflicts."""

    def __init__(
        self,
        policy_engine: PolicyEngine,
        autonomy_guard: AutonomyGuard,
        history_store: DecisionHistoryStore,
        clock: Clock | None = None,
    ) -> None:
        self.policy_engine = policy_engine
        self.autonomy_guard = autonomy_guard
        self.history_store = history_store
        self.clock = clock or SystemClock()

    def compile(self, decision: Decision) -> ValidationResult:
        if not (decision.id and decision.layer and decision.rationale and decision.owner):
            return ValidationResult.blocked([REASON_MISSING_FIELDS])

        reasons: list[str] = []
        if not is_valid_layer(decision.layer):
            reasons.append(
                f"Invalid layer: {decision.layer}. "
                "Must be strategy, architecture, implementation, or governance"
            )

        policy = self.policy_engine.check_decision(decision)
        if not policy.allowed:
            reasons.append(f"Policy violation: {policy.reason}")

        escalation = self.autonomy_guard.check_escalation(decision)
        if escalation.requires_escalation:
            reasons.append(f"Autonomy escalation required: {escalation.reason}")
            return ValidationResult.blocked(reasons)

        try:
            conflicts = self.detect_conflicts(decision)
        except InvalidTimestampError:
            log_event(_LOG, "compiler.decision.bad_timestamp", decision_id=decision.id, timestamp=decision.timestamp)
            reasons.append(f"{REASON_INVALID_TIMESTAMP}: {decision.timestamp}")
            return ValidationResult.blocked(reasons)
        if conflicts:
            log_event(_LOG, "compiler.decision.conflict", decision_id=decision.id, conflicts=len(conflicts))
            return ValidationResult.conflict(conflicts)

        return ValidationResult.from_reasons(reasons)

    def _decision_time(self, decision: Decision) -> datetime:
        if decision.timestamp:
            return self.clock.parse_iso(decision.timestamp)
        return self.clock.now()

    def detect_conflicts(self, decision: Decision) -> list[str]:
        key = decision.key or derive_decision_key(decision)
        when = self._decision_time(decision)

        conflicts: list[str] = []
        for existing in self.history_store.list(DecisionFilter(layer=decision.layer)):
            try:
                existing_time = self.clock.parse_iso(existing.sort_key)
            except InvalidTimestampError:
                continue
            delta = when - existing_time
            if delta < timedelta(0) or delta > CONFLICT_WINDOW:
                continue
            if not scopes_overlap(decision, existing):
                continue
            existing_key = existing.key or derive_decision_key(existing)
            if existing_key == key:
                continue
            conflicts.append(
                f"Conflicts with decision {existing.id} ({existing.timestamp}): "
                f"Same layer ({decision.layer}), overlapping scope, but different decision key. "
                f"Existing: {existing_key}, New: {key}"
            )
        return conflicts
