from __future__ import annotations

from dataclasses import dataclass

from .autonomy import AutonomyGuard
from .clock import Clock, SystemClock, format_iso
from .compiler import DecisionCompiler
from .conflict import ConflictDetector
from .history import DecisionHistoryStore
from .models import (
    STATUS_BLOCKED,
    STATUS_CONFLICT,
    AuditResult,
    AutonomyPolicy,
    Decision,
    GovernanceScorecard,
    PolicyRule,
    Violation,
    Workstream,
)
from .policy import PolicyEngine
from .scorecard import ScorecardEngine
from .util import log_event, setup_json_logger
from .validator import WorkstreamValidator

_LOG = setup_json_logger("workstream_governor.audit")

SEVERITY_PENALTY = {"high": 1.0, "medium": 0.5, "low": 0.2}


@dataclass(frozen=True)
class InjectionOutcome:
    test: str
    passed: bool
    reason: str | None = None


def entropy_score(scorecard: GovernanceScorecard, violations: list[Violation]) -> float:
    """Scorecard total minus severity penalties, clamped to 1..10."""
    score = scorecard.total_score
    for violation in violations:
        score -= SEVERITY_PENALTY.get(violation.severity, 0.0)
    return max(1.0, min(10.0, score))


class AuditRunner:
    def __init__(
        self,
        policy_engine: PolicyEngine,
        history_store: DecisionHistoryStore,
        clock: Clock | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.policy_engine = policy_engine
        self.history_store = history_store
        self.validator = WorkstreamValidator()
        self.scorecard_engine = ScorecardEngine(self.validator)
        self.conflict_detector = ConflictDetector()

    def _compiler(self) -> DecisionCompiler:
        guard = AutonomyGuard(self.policy_engine.get_autonomy_policy())
        return DecisionCompiler(self.policy_engine, guard, self.history_store, self.clock)

    def run_audit(self, workstreams: list[Workstream], decisions: list[Decision]) -> AuditResult:
        self.policy_engine.load_policy_rules()
        self.policy_engine.load_autonomy_policy()

        scorecard = self.scorecard_engine.calculate(workstreams, decisions)
        violations = self.collect_violations(workstreams, decisions)
        result = AuditResult(
            timestamp=format_iso(self.clock.now()),
            scorecard=scorecard,
            violations=violations,
            entropy_score=entropy_score(scorecard, violations),
        )
        log_event(
            _LOG,
            "audit.completed",
            workstreams=len(workstreams),
            decisions=len(decisions),
            violations=len(violations),
            entropy_score=result.entropy_score,
        )
        return result

    def collect_violations(
        self, workstreams: list[Workstream], decisions: list[Decision]
    ) -> list[Violation]:
        violations: list[Violation] = []
        autonomy_policy = self.policy_engine.get_autonomy_policy()
        rules = self.policy_engine.get_policy_rules()

        for ws in workstreams:
            validation = self.validator.validate(ws)
            if not validation.ok:
                violations.append(
                    Violation(
                        type="workstream_validation",
                        severity="high",
                        description=f"Workstream {ws.id} failed validation: {', '.join(validation.reasons)}",
                        fix="Fix workstream structure according to validation errors",
                    )
                )
            if autonomy_policy is not None and rules:
                conflict = self.conflict_detector.detect_autonomy_conflicts(ws, autonomy_policy, rules)
                if conflict.status == STATUS_CONFLICT:
                    violations.append(
                        Violation(
                            type="autonomy_conflict",
                            severity="medium",
                            description=f"Workstream {ws.id} has autonomy conflicts: {', '.join(conflict.reasons)}",
                            fix="Adjust autonomy tier or scope to resolve conflicts",
                        )
                    )

        compiler = self._compiler()
        for decision in decisions:
            compiled = compiler.compile(decision)
            if not compiled.ok:
                violations.append(
                    Violation(
                        type="decision_compilation",
                        severity="high" if compiled.status == STATUS_CONFLICT else "medium",
                        description=f"Decision {decision.id} failed compilation: {', '.join(compiled.reasons)}",
                        fix="Fix decision structure according to compilation errors",
                    )
                )
        return violations

    def run_failure_injection_tests(self) -> list[InjectionOutcome]:
        """Feed known-bad inputs through the gates and report which were caught."""
        outcomes: list[InjectionOutcome] = []

        missing_spec = Workstream(id="test_missing_spec", owner="test_owner")
        status = self.validator.validate(missing_spec).status
        outcomes.append(
            InjectionOutcome(
                "Missing specification detection",
                status == STATUS_BLOCKED,
                None if status == STATUS_BLOCKED else "Should block missing spec",
            )
        )

        ambiguous = Workstream(
            id="test_ambiguous",
            owner="test_owner",
            scope=["**/*"],
            structural_model="",
            risks=[],
            definition_of_done="",
            autonomy_tier=2,
            layer="strategy",
        )
        status = self.validator.validate(ambiguous).status
        outcomes.append(
            InjectionOutcome(
                "Ambiguous requirement detection",
                status == STATUS_BLOCKED,
                None if status == STATUS_BLOCKED else "Should block ambiguous requirements",
            )
        )

        autonomous = Workstream(
            id="test_conflicting_rule",
            owner="test_owner",
            scope=["infra/deploy.yaml"],
            structural_model="single change",
            risks=[],
            definition_of_done="deployed",
            autonomy_tier=4,
            layer="implementation",
        )
        rule = PolicyRule.from_mapping(
            {"id": "injected_infra_gate", "match": {"touches_paths_any": ["infra/**"]}}
        )
        status = self.conflict_detector.detect_autonomy_conflicts(
            autonomous, AutonomyPolicy(), [rule]
        ).status
        outcomes.append(
            InjectionOutcome(
                "Conflicting governance rule detection",
                status == STATUS_CONFLICT,
                None if status == STATUS_CONFLICT else "Should flag tier 4 against approval rule",
            )
        )
        return outcomes
