from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

VALID_LAYERS = ("strategy", "architecture", "implementation", "governance")
VALID_AUTONOMY_TIERS = (1, 2, 3, 4)
VALID_IMPACTS = ("low", "medium", "high")
WORKSTREAM_STATUSES = ("todo", "in_progress", "blocked", "in_review", "done")

STATUS_PASS = "pass"
STATUS_BLOCKED = "blocked"
STATUS_CONFLICT = "conflict"
STATUS_CLARIFICATION_REQUIRED = "clarification_required"


def _pick(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _opt_text(value: Any) -> str | None:
    return None if value is None else str(value)


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


@dataclass(frozen=True)
class Risk:
    id: str = ""
    description: str = ""
    impact: str = ""
    mitigation: str = ""
    owner: str | None = None

    def is_complete(self) -> bool:
        return bool(self.id and self.description and self.impact and self.mitigation)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Risk":
        return cls(
            id=_text(raw.get("id")),
            description=_text(raw.get("description")),
            impact=_text(raw.get("impact")),
            mitigation=_text(raw.get("mitigation")),
            owner=raw.get("owner"),
        )

    def as_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "description": self.description,
                "impact": self.impact,
                "mitigation": self.mitigation,
                "owner": self.owner,
            }
        )


@dataclass(frozen=True)
class Workstream:
    """A proposed unit of agent work.

    Every field defaults to empty so that partially specified workstreams (the
    usual input to validation) can be represented. ``risks=None`` means the risk
    list was never provided, which is different from an empty list.
    """

    id: str = ""
    owner: str = ""
    scope: list[str] = field(default_factory=list)
    autonomy_tier: int | None = None
    layer: str | None = None
    structural_model: str = ""
    risks: list[Risk] | None = None
    definition_of_done: str = ""
    status: str | None = None
    blockers: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Workstream":
        risks_raw = _pick(raw, "risks")
        risks = None
        if risks_raw is not None:
            risks = [
                Risk.from_mapping(r) if isinstance(r, Mapping) else Risk() for r in risks_raw
            ]
        tier = _pick(raw, "autonomyTier", "autonomy_tier")
        return cls(
            id=_text(raw.get("id")),
            owner=_text(raw.get("owner")),
            scope=_str_list(raw.get("scope")),
            autonomy_tier=_coerce_tier(tier),
            layer=raw.get("layer"),
            structural_model=_text(_pick(raw, "structuralModel", "structural_model")),
            risks=risks,
            definition_of_done=_text(_pick(raw, "definitionOfDone", "definition_of_done")),
            status=raw.get("status"),
            blockers=_str_list(raw.get("blockers")),
        )

    def as_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "owner": self.owner,
                "scope": list(self.scope),
                "autonomyTier": self.autonomy_tier,
                "layer": self.layer,
                "structuralModel": self.structural_model,
                "risks": None if self.risks is None else [r.as_dict() for r in self.risks],
                "definitionOfDone": self.definition_of_done,
                "status": self.status,
                "blockers": list(self.blockers) or None,
            }
        )


def _coerce_tier(value: Any) -> int | None:
    if value is None or isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        # out of range, so validation reports the bad tier
        return -1


@dataclass(frozen=True)
class Decision:
    """An immutable record of a choice. ``timestamp`` is authoritative."""

    id: str = ""
    layer: str | None = None
    rationale: str = ""
    alternatives: list[str] = field(default_factory=list)
    implications: str = ""
    owner: str = ""
    timestamp: str = ""
    date: str | None = None
    decision: str | None = None
    key: str | None = None
    scope: list[str] | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Decision":
        scope = raw.get("scope")
        return cls(
            id=_text(raw.get("id")),
            layer=raw.get("layer"),
            rationale=_text(raw.get("rationale")),
            alternatives=_str_list(raw.get("alternatives")),
            implications=_text(raw.get("implications")),
            owner=_text(raw.get("owner")),
            timestamp=_text(raw.get("timestamp")),
            date=_opt_text(raw.get("date")),
            decision=_opt_text(raw.get("decision")),
            key=_opt_text(raw.get("key")),
            scope=None if scope is None else _str_list(scope),
        )

    def as_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "layer": self.layer,
                "rationale": self.rationale,
                "alternatives": list(self.alternatives),
                "implications": self.implications,
                "owner": self.owner,
                "timestamp": self.timestamp,
                "date": self.date,
                "decision": self.decision,
                "key": self.key,
                "scope": None if self.scope is None else list(self.scope),
            }
        )

    @property
    def sort_key(self) -> str:
        return self.timestamp or self.date or ""


@dataclass(frozen=True)
class ValidationResult:
    status: str
    reasons: list[str] = field(default_factory=list)
    requires_review: bool | None = None
    clarification_questions: list[str] | None = None

    @classmethod
    def passed(cls) -> "ValidationResult":
        return cls(status=STATUS_PASS)

    @classmethod
    def blocked(cls, reasons: list[str]) -> "ValidationResult":
        return cls(status=STATUS_BLOCKED, reasons=list(reasons), requires_review=True)

    @classmethod
    def conflict(cls, reasons: list[str]) -> "ValidationResult":
        return cls(status=STATUS_CONFLICT, reasons=list(reasons), requires_review=True)

    @classmethod
    def from_reasons(cls, reasons: list[str], *, failure_status: str = STATUS_BLOCKED) -> "ValidationResult":
        if not reasons:
            return cls.passed()
        return cls(status=failure_status, reasons=list(reasons), requires_review=True)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_PASS

    def as_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "status": self.status,
                "reasons": list(self.reasons) or None,
                "requiresReview": self.requires_review,
                "clarificationQuestions": self.clarification_questions,
            }
        )


@dataclass(frozen=True)
class ClarificationRequest:
    id: str
    questions: list[str]
    context: dict[str, Any]
    timestamp: str
    workstream_id: str | None = None
    decision_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "workstreamId": self.workstream_id,
                "decisionId": self.decision_id,
                "questions": list(self.questions),
                "context": dict(self.context),
                "timestamp": self.timestamp,
            }
        )


@dataclass(frozen=True)
class ApprovalRequirement:
    approvals: int = 0
    approver_roles: list[str] = field(default_factory=list)
    confirmation: bool | None = None


@dataclass(frozen=True)
class PolicyRule:
    id: str
    match: dict[str, Any] = field(default_factory=dict)
    require: ApprovalRequirement = field(default_factory=ApprovalRequirement)
    deny_if_matches: list[str] | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PolicyRule":
        rule_id = raw.get("id")
        if not isinstance(rule_id, str) or not rule_id:
            raise ValueError("policy rule invalid id: expected non-empty string")
        match = raw.get("match") or {}
        if not isinstance(match, Mapping):
            raise ValueError(f"policy rule {rule_id} invalid match: expected mapping")
        require_raw = raw.get("require") or {}
        if not isinstance(require_raw, Mapping):
            raise ValueError(f"policy rule {rule_id} invalid require: expected mapping")
        deny = raw.get("deny_if_matches")
        if deny is not None and (
            not isinstance(deny, list) or any(not isinstance(p, str) for p in deny)
        ):
            raise ValueError(f"policy rule {rule_id} invalid deny_if_matches: expected list[str]")
        confirmation = require_raw.get("confirmation")
        return cls(
            id=rule_id,
            match=dict(match),
            require=ApprovalRequirement(
                approvals=int(require_raw.get("approvals", 0)),
                approver_roles=_str_list(require_raw.get("approver_roles")),
                confirmation=None if confirmation is None else bool(confirmation),
            ),
            deny_if_matches=None if deny is None else list(deny),
        )


@dataclass(frozen=True)
class HardRule:
    id: str
    description: str


@dataclass(frozen=True)
class AutonomyDefaults:
    repo_default_tier: int = 2
    implementer_default_tier: int = 3


DEFAULT_LADDER: dict[int, str] = {
    1: "read-only",
    2: "draft-only",
    3: "execute-with-approval",
    4: "autonomous-with-limits",
}

DEFAULT_HARD_RULES: tuple[HardRule, ...] = (
    HardRule("no_secrets", "Never read/write secrets or .env contents"),
    HardRule("confirm_destructive", "Ask for explicit confirmation before destructive actions"),
    HardRule("policy_gate_required", "If approval rules match, merge requires reviewer approval"),
)


@dataclass(frozen=True)
class AutonomyPolicy:
    ladder: dict[int, str] = field(default_factory=lambda: dict(DEFAULT_LADDER))
    defaults: AutonomyDefaults = field(default_factory=AutonomyDefaults)
    hard_rules: list[HardRule] = field(default_factory=lambda: list(DEFAULT_HARD_RULES))

    def label_for(self, tier: int) -> str | None:
        return self.ladder.get(tier)


@dataclass(frozen=True)
class EscalationCheck:
    requires_escalation: bool
    reason: str | None = None


@dataclass(frozen=True)
class PolicyCheck:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True)
class RuntimeState:
    last_seen_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return _drop_none({"last_seen_at": self.last_seen_at})


@dataclass(frozen=True)
class GovernanceScorecard:
    layer_purity: float
    workstream_completeness: float
    escalation_discipline: float
    decision_traceability: float
    dod_enforcement: float
    clarification_compliance: float
    total_score: float

    def as_dict(self) -> dict[str, float]:
        return {
            "layerPurity": self.layer_purity,
            "workstreamCompleteness": self.workstream_completeness,
            "escalationDiscipline": self.escalation_discipline,
            "decisionTraceability": self.decision_traceability,
            "dodEnforcement": self.dod_enforcement,
            "clarificationCompliance": self.clarification_compliance,
            "totalScore": self.total_score,
        }


@dataclass(frozen=True)
class Violation:
    type: str
    severity: str  # "low" | "medium" | "high"
    description: str
    fix: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"type": self.type, "severity": self.severity, "description": self.description, "fix": self.fix}
        )


@dataclass(frozen=True)
class AuditResult:
    timestamp: str
    scorecard: GovernanceScorecard
    violations: list[Violation]
    entropy_score: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "scorecard": self.scorecard.as_dict(),
            "violations": [v.as_dict() for v in self.violations],
            "entropyScore": self.entropy_score,
        }
