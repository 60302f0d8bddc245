from __future__ import annotations

from .models import VALID_AUTONOMY_TIERS, VALID_LAYERS, ValidationResult, Workstream

REASON_OWNER = "Owner must be set"
REASON_SCOPE = "Scope must not be empty"
REASON_STRUCTURAL_MODEL = "Structural Model must be present"
REASON_RISKS_MISSING = "Risks must be structured (can be empty array if no risks)"
REASON_RISK_INCOMPLETE = "Risk structure incomplete: id, description, impact, mitigation required"
REASON_LAYER = "Layer must be one of: strategy, architecture, implementation, governance"
REASON_AUTONOMY_TIER = "Autonomy Tier must be 1, 2, 3, or 4"
REASON_DOD = "Definition of Done must be present"


def is_valid_layer(layer: str | None) -> bool:
    return layer in VALID_LAYERS


def is_valid_autonomy_tier(tier: int | None) -> bool:
    return tier in VALID_AUTONOMY_TIERS and not isinstance(tier, bool)


class WorkstreamValidator:
    """Structural completeness gate run before a workstream may start.

    Every check runs; reasons accumulate instead of short-circuiting so the caller
    sees the full list of gaps in one pass.
    """

    def validate(self, workstream: Workstream) -> ValidationResult:
        reasons: list[str] = []

        if not workstream.owner.strip():
            reasons.append(REASON_OWNER)

        if not workstream.scope:
            reasons.append(REASON_SCOPE)

        if not workstream.structural_model.strip():
            reasons.append(REASON_STRUCTURAL_MODEL)

        if workstream.risks is None:
            reasons.append(REASON_RISKS_MISSING)
        elif not all(risk.is_complete() for risk in workstream.risks):
            reasons.append(REASON_RISK_INCOMPLETE)

        if not is_valid_layer(workstream.layer):
            reasons.append(REASON_LAYER)

        if workstream.autonomy_tier is not None and not is_valid_autonomy_tier(
            workstream.autonomy_tier
        ):
            reasons.append(REASON_AUTONOMY_TIER)

        if not workstream.definition_of_done.strip():
            reasons.append(REASON_DOD)

        return ValidationResult.from_reasons(reasons)
