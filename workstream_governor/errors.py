from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


class GovernanceError(Exception):
    """Base class for environment and programming faults raised by this package.

    Policy outcomes (blocked, conflict, clarification) are returned as data and never
    raised; only faults the caller cannot branch on travel as exceptions.
    """


class RepoRootError(GovernanceError):
    pass


class InvalidTimestampError(GovernanceError, ValueError):
    pass


class CapabilityMapError(GovernanceError, ValueError):
    pass


class ConstraintViolation(GovernanceError, ValueError):
    pass


class PolicyErrorCode:
    PERMISSION_DENIED = "PERMISSION_DENIED"
    ROLE_REQUIRED = "ROLE_REQUIRED"
    CLIENT_ID_MISMATCH = "CLIENT_ID_MISMATCH"
    OPERATION_NOT_ALLOWED = "OPERATION_NOT_ALLOWED"
    OPERATION_NOT_MAPPED = "OPERATION_NOT_MAPPED"
    CROSS_TENANT_DENIED = "CROSS_TENANT_DENIED"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    SANITIZATION_FAILED = "SANITIZATION_FAILED"
    REDACTION_FAILED = "REDACTION_FAILED"
    PII_DETECTION = "PII_DETECTION"
    CAPABILITY_MISSING = "CAPABILITY_MISSING"
    CONSENT_MISSING = "CONSENT_MISSING"
    TIME_GAP_DETECTED = "TIME_GAP_DETECTED"
    UNAUTHORIZED_ENTITY = "UNAUTHORIZED_ENTITY"


@dataclass(frozen=True)
class PolicyViolationAdvice:
    code: str
    advisor_title: str
    human_explanation: str
    remedy_step: str
    safety_level: str  # "info" | "warning" | "critical"

    def as_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "advisorTitle": self.advisor_title,
            "humanExplanation": self.human_explanation,
            "remedyStep": self.remedy_step,
            "safetyLevel": self.safety_level,
        }


class PolicyError(GovernanceError):
    def __init__(
        self,
        message: str,
        code: str,
        *,
        context: Mapping[str, Any] | None = None,
        operation: str = "",
        advice: PolicyViolationAdvice | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context = dict(context or {})
        self.operation = operation
        self.advice = advice

    def __str__(self) -> str:
        return f"{self.code}: {self.args[0]}"
