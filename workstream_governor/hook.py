"""Single entry point for the orchestrator.

Order for workstreams: structural validation, then autonomy/approval conflicts
(only when a policy engine with a loaded autonomy policy is attached), then
ambiguity. The first failing stage decides the outcome.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .ambiguity import AmbiguityDetector
from .clock import Clock, SystemClock
from .config import enforcement_enabled
from .conflict import ConflictDetector
from .document_header import DocumentHeaderValidator
from .models import (
    STATUS_BLOCKED,
    STATUS_CLARIFICATION_REQUIRED,
    STATUS_CONFLICT,
    STATUS_PASS,
    ClarificationRequest,
    ValidationResult,
    Workstream,
)
from .policy import PolicyEngine
from .timestamp_integrity import TimestampCorrectionMonitor
from .util import log_event, setup_json_logger
from .validator import WorkstreamValidator

_LOG = setup_json_logger("workstream_governor.hook")


@dataclass(frozen=True)
class GovernanceHookResult:
    status: str
    reason: str | None = None
    reasons: list[str] | None = None
    requires_review: bool | None = None
    clarification_request: ClarificationRequest | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_PASS

    def as_dict(self) -> dict[str, Any]:
        payload = {
            "status": self.status,
            "reason": self.reason,
            "reasons": self.reasons,
            "requiresReview": self.requires_review,
            "clarificationRequest": None
            if self.clarification_request is None
            else self.clarification_request.as_dict(),
        }
        return {k: v for k, v in payload.items() if v is not None}


PASS = GovernanceHookResult(status=STATUS_PASS)


class GovernanceHook:
    def __init__(
        self,
        enabled: bool = True,
        clock: Clock | None = None,
        *,
        policy_engine: PolicyEngine | None = None,
        max_skew_minutes: int | None = None,
        monitor: TimestampCorrectionMonitor | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.enabled = enabled and enforcement_enabled(env)
        self.policy_engine = policy_engine
        self.validator = WorkstreamValidator()
        self.conflict_detector = ConflictDetector()
        self.ambiguity_detector = AmbiguityDetector(self.clock)
        self.document_validator = DocumentHeaderValidator(
            self.clock, max_skew_minutes=max_skew_minutes, monitor=monitor
        )

    def is_enabled(self) -> bool:
        return self.enabled

    def _failure(self, result: ValidationResult, reason: str) -> GovernanceHookResult:
        return GovernanceHookResult(
            status=result.status,
            reason=reason,
            reasons=list(result.reasons),
            requires_review=True,
        )

    def validate_workstream(self, workstream: Workstream) -> GovernanceHookResult:
        if not self.enabled:
            return PASS

        validation = self.validator.validate(workstream)
        if validation.status == STATUS_BLOCKED:
            log_event(_LOG, "hook.workstream.blocked", workstream_id=workstream.id, reasons=validation.reasons)
            return self._failure(validation, "Workstream validation failed")

        autonomy_policy = self.policy_engine.get_autonomy_policy() if self.policy_engine else None
        if autonomy_policy is not None:
            conflict = self.conflict_detector.detect_autonomy_conflicts(
                workstream, autonomy_policy, self.policy_engine.get_policy_rules()
            )
            if conflict.status == STATUS_CONFLICT:
                log_event(_LOG, "hook.workstream.conflict", workstream_id=workstream.id, reasons=conflict.reasons)
                return self._failure(conflict, "Workstream has conflicts")

        clarification = self.ambiguity_detector.detect_workstream_ambiguities(workstream)
        if clarification is not None:
            log_event(
                _LOG,
                "hook.workstream.clarification_required",
                workstream_id=workstream.id,
                clarification_id=clarification.id,
            )
            return GovernanceHookResult(
                status=STATUS_CLARIFICATION_REQUIRED,
                reason="Workstream requires clarification",
                requires_review=True,
                clarification_request=clarification,
            )

        log_event(_LOG, "hook.workstream.pass", workstream_id=workstream.id)
        return PASS

    def _document_outcome(self, validation: ValidationResult, subject: str) -> GovernanceHookResult:
        if validation.status == STATUS_BLOCKED:
            log_event(_LOG, "hook.document.blocked", document=subject, reasons=validation.reasons)
            return self._failure(validation, "Document header validation failed")
        return PASS

    def validate_document(self, path: Path) -> GovernanceHookResult:
        if not self.enabled:
            return PASS
        return self._document_outcome(self.document_validator.validate_document(path), str(path))

    def validate_document_content(self, content: str) -> GovernanceHookResult:
        if not self.enabled:
            return PASS
        return self._document_outcome(self.document_validator.validate_content(content), "<content>")
