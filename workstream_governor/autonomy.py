from __future__ import annotations

from .models import AutonomyPolicy, Decision, EscalationCheck, Workstream

SECRET_MARKERS = (".env", "secret")
DESTRUCTIVE_KEYWORDS = ("delete", "remove", "drop", "destroy", "reset", "rebase")


def _mentions(decision: Decision, needles: tuple[str, ...]) -> bool:
    haystacks = (decision.rationale.lower(), decision.implications.lower())
    return any(needle in text for needle in needles for text in haystacks)


def violates_hard_rule(decision: Decision, rule_id: str) -> bool:
    if rule_id == "no_secrets":
        return _mentions(decision, SECRET_MARKERS)
    if rule_id == "confirm_destructive":
        return _mentions(decision, DESTRUCTIVE_KEYWORDS)
    # policy_gate_required is enforced by ConflictDetector against approval rules
    return False


class AutonomyGuard:
    def __init__(self, autonomy_policy: AutonomyPolicy | None = None) -> None:
        self.autonomy_policy = autonomy_policy or AutonomyPolicy()

    def check_escalation(self, decision: Decision) -> EscalationCheck:
        for rule in self.autonomy_policy.hard_rules:
            if violates_hard_rule(decision, rule.id):
                return EscalationCheck(
                    requires_escalation=True, reason=f"Violates hard rule: {rule.description}"
                )
        return EscalationCheck(requires_escalation=False)

    def check_workstream_escalation(self, workstream: Workstream) -> EscalationCheck:
        # Tier 1 is read-only. Tiers 3 and 4 escalate through ConflictDetector only,
        # so the same conflict is never reported twice.
        return EscalationCheck(requires_escalation=False)
