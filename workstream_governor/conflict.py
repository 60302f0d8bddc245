from __future__ import annotations

from .models import AutonomyPolicy, PolicyRule, ValidationResult, Workstream, STATUS_CONFLICT
from .patterns import matches_any, matches_pattern

AUTONOMOUS_TIER = 4


def rule_matches_scope(scope: list[str], rule: PolicyRule) -> bool:
    """True when a rule's match predicate is satisfied by a scope.

    ``touches_paths_any`` takes precedence; ``files_changed_gt`` is consulted only
    when no path predicate is declared.
    """
    patterns = rule.match.get("touches_paths_any")
    if patterns:
        return any(matches_any(entry, patterns) for entry in scope)

    threshold = rule.match.get("files_changed_gt")
    if threshold is not None and not isinstance(threshold, bool):
        return len(scope) > int(threshold)

    return False


class ConflictDetector:
    def detect_autonomy_conflicts(
        self,
        workstream: Workstream,
        autonomy_policy: AutonomyPolicy | None,
        policy_rules: list[PolicyRule],
    ) -> ValidationResult:
        reasons: list[str] = []

        if workstream.autonomy_tier == AUTONOMOUS_TIER:
            matching = [r.id for r in policy_rules if rule_matches_scope(workstream.scope, r)]
            if matching:
                label = ""
                if autonomy_policy is not None:
                    label = autonomy_policy.label_for(AUTONOMOUS_TIER) or ""
                tier_name = f"Autonomy tier 4 ({label or 'autonomous'})"
                reasons.append(
                    f"{tier_name} conflicts with policy rules requiring approval: "
                    + ", ".join(matching)
                )

        for rule in policy_rules:
            for pattern in rule.deny_if_matches or []:
                if any(matches_pattern(entry, pattern) for entry in workstream.scope):
                    reasons.append(
                        f"Workstream scope matches denied pattern: {pattern} (policy rule: {rule.id})"
                    )

        return ValidationResult.from_reasons(reasons, failure_status=STATUS_CONFLICT)
