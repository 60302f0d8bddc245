from __future__ import annotations

import json

from .models import Decision, GovernanceScorecard, Workstream
from .validator import WorkstreamValidator

MAX_DIMENSION_SCORE = 2.0
DIMENSIONS = 6

IMPLEMENTATION_KEYWORDS = ("function", "class", "interface", "import", "export", "api", "endpoint")
ARCHITECTURE_KEYWORDS = ("architecture", "design pattern", "system design", "component diagram")


def _mentions_any(item: Workstream | Decision, keywords: tuple[str, ...]) -> bool:
    text = json.dumps(item.as_dict(), ensure_ascii=False).lower()
    return any(keyword in text for keyword in keywords)


def _ratio_score(hits: int, total: int) -> float:
    if total == 0:
        return MAX_DIMENSION_SCORE
    return hits / total * MAX_DIMENSION_SCORE


class ScorecardEngine:
    """Six governance dimensions scored 0-2 each; the total is normalized to 0-10."""

    def __init__(self, validator: WorkstreamValidator | None = None) -> None:
        self.validator = validator or WorkstreamValidator()

    def calculate(self, workstreams: list[Workstream], decisions: list[Decision]) -> GovernanceScorecard:
        layer_purity = self.layer_purity(workstreams, decisions)
        completeness = self.workstream_completeness(workstreams)
        escalation = self.escalation_discipline()
        traceability = self.decision_traceability(decisions)
        dod = self.dod_enforcement(workstreams)
        clarification = self.clarification_compliance()

        total = layer_purity + completeness + escalation + traceability + dod + clarification
        return GovernanceScorecard(
            layer_purity=layer_purity,
            workstream_completeness=completeness,
            escalation_discipline=escalation,
            decision_traceability=traceability,
            dod_enforcement=dod,
            clarification_compliance=clarification,
            total_score=total / (DIMENSIONS * MAX_DIMENSION_SCORE) * 10,
        )

    def layer_purity(self, workstreams: list[Workstream], decisions: list[Decision]) -> float:
        total = len(workstreams) + len(decisions)
        if total == 0:
            return MAX_DIMENSION_SCORE

        violations = 0
        for ws in workstreams:
            if ws.layer == "strategy" and _mentions_any(ws, IMPLEMENTATION_KEYWORDS):
                violations += 1
            if ws.layer == "implementation" and _mentions_any(ws, ARCHITECTURE_KEYWORDS):
                violations += 1
        for decision in decisions:
            if decision.layer == "strategy" and _mentions_any(decision, IMPLEMENTATION_KEYWORDS):
                violations += 1

        return max(0.0, (1 - violations / total) * MAX_DIMENSION_SCORE)

    def workstream_completeness(self, workstreams: list[Workstream]) -> float:
        complete = sum(1 for ws in workstreams if self.validator.validate(ws).ok)
        return _ratio_score(complete, len(workstreams))

    def escalation_discipline(self) -> float:
        # TODO: score from the escalation log once escalations are persisted
        return MAX_DIMENSION_SCORE

    def decision_traceability(self, decisions: list[Decision]) -> float:
        traceable = sum(
            1 for d in decisions if d.id and d.owner and d.timestamp and d.rationale
        )
        return _ratio_score(traceable, len(decisions))

    def dod_enforcement(self, workstreams: list[Workstream]) -> float:
        with_dod = sum(1 for ws in workstreams if ws.definition_of_done.strip())
        return _ratio_score(with_dod, len(workstreams))

    def clarification_compliance(self) -> float:
        return MAX_DIMENSION_SCORE
