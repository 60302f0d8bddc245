from __future__ import annotations

from .clock import Clock, SystemClock, epoch_millis, format_iso
from .models import ClarificationRequest, Decision, Workstream
from .patterns import has_wildcard

Q_SCOPE = "What is the exact scope of this workstream? Which files/paths will be modified?"
Q_STRUCTURAL_MODEL = (
    "What is the structural model for this workstream? How will the changes be organized?"
)
Q_DOD = "What is the Definition of Done for this workstream? What criteria must be met?"
Q_WILDCARD_SCOPE = (
    "Scope contains wildcards. Can you specify exact paths to avoid unintended changes?"
)
Q_RISKS = "No risks identified. Are there any potential risks or blockers for this workstream?"

Q_RATIONALE = "What is the rationale for this decision? Why was this approach chosen?"
Q_ALTERNATIVES = "What alternatives were considered? Why were they rejected?"
Q_IMPLICATIONS = "What are the implications of this decision? What will change as a result?"
Q_LAYER = (
    "Which layer does this decision belong to? "
    "(strategy, architecture, implementation, governance)"
)


class AmbiguityDetector:
    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()

    def _request(self, questions: list[str], **ids: str | None) -> ClarificationRequest:
        now = self.clock.now()
        context_key = "workstream" if "workstream_id" in ids else "decision"
        subject_id = ids.get("workstream_id") or ids.get("decision_id")
        return ClarificationRequest(
            id=f"clar_{epoch_millis(now)}",
            questions=questions,
            context={context_key: subject_id, "owner": ids.get("owner")},
            timestamp=format_iso(now),
            workstream_id=ids.get("workstream_id"),
            decision_id=ids.get("decision_id"),
        )

    def detect_workstream_ambiguities(self, workstream: Workstream) -> ClarificationRequest | None:
        questions: list[str] = []

        if not workstream.scope:
            questions.append(Q_SCOPE)
        if not workstream.structural_model.strip():
            questions.append(Q_STRUCTURAL_MODEL)
        if not workstream.definition_of_done.strip():
            questions.append(Q_DOD)
        if any(has_wildcard(entry) for entry in workstream.scope):
            questions.append(Q_WILDCARD_SCOPE)
        if not workstream.risks:
            questions.append(Q_RISKS)

        if not questions:
            return None
        return self._request(
            questions, workstream_id=workstream.id or None, owner=workstream.owner or None
        )

    def detect_decision_ambiguities(self, decision: Decision) -> ClarificationRequest | None:
        questions: list[str] = []

        if not decision.rationale.strip():
            questions.append(Q_RATIONALE)
        if not decision.alternatives:
            questions.append(Q_ALTERNATIVES)
        if not decision.implications.strip():
            questions.append(Q_IMPLICATIONS)
        if not decision.layer:
            questions.append(Q_LAYER)

        if not questions:
            return None
        return self._request(
            questions, decision_id=decision.id or None, owner=decision.owner or None
        )
