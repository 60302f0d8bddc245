"""Data-access authorization, parameter sanitization and result redaction.

``AccessPolicyEngine`` is the single implementation of ``DataAccessPolicy``.
Authorization is default-deny: an operation missing from ``PERMISSION_MATRIX``
is refused before any other rule runs.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from .capability import CapabilityMap
from .clock import Clock, SystemClock, format_iso
from .constraints import SanitizedParams, apply_constraints, contains_raw_sql, validate_allowed_fields
from .errors import ConstraintViolation, PolicyError, PolicyErrorCode, PolicyViolationAdvice
from .util import log_event, setup_json_logger, sha256_text

_LOG = setup_json_logger("workstream_governor.access")

REVIEW_ROLES = ("reviewer", "admin", "partner")
CUSTOMER_DATA_PERMISSION = "customer_data.read"
DATA_PROCESSING_CONSENT = "data_processing"

# operation -> required permissions; [] allows the operation and leaves it to role checks
PERMISSION_MATRIX: dict[str, list[str]] = {
    "customer_data.executeReadModel": ["customer_data.read"],
    "customer_data.getEntity": ["customer_data.read"],
    "customer_data.search": ["customer_data.read"],
    "tool.customer_data.executeReadModel": ["customer_data.read"],
    "tool.customer_data.getEntity": ["customer_data.read"],
    "tool.customer_data.search": ["customer_data.read"],
    "project.phase.update": ["project.update"],
    "project.manage": ["project.manage"],
    "decision.create": ["decision.create"],
    "decision.finalize": ["decision.create"],
    "review.approve": [],
    "review.reject": [],
    "review.request": ["review.request"],
    "knowledge.search": ["knowledge.search"],
    "knowledge.read": ["knowledge.read"],
    "analytics.read": ["analytics.read"],
}


def _advice(code: str, title: str, explanation: str, remedy: str, level: str) -> PolicyViolationAdvice:
    return PolicyViolationAdvice(code, title, explanation, remedy, level)


ADVICE: dict[str, PolicyViolationAdvice] = {
    a.code: a
    for a in (
        _advice("PII_DETECTION", "Datenschutz-Schutzschild", "E-Mail/Daten wurden geschwärzt", "Keine Aktion nötig.", "info"),
        _advice("CAPABILITY_MISSING", "Fehlende Berechtigung", "Agent darf nicht auf diese Quelle zugreifen", "Admin kontaktieren.", "warning"),
        _advice("TIME_GAP_DETECTED", "Sicherheits-Check", "Lange Pause erkannt", "Letzte Schritte prüfen.", "warning"),
        _advice("UNAUTHORIZED_ENTITY", "Eingeschränkter Bereich", "Entity nicht auf der Allowlist", "Projekt-Scope prüfen.", "warning"),
        _advice("PERMISSION_DENIED", "Fehlende Berechtigung", "Sie haben keine Berechtigung für diese Aktion", "Admin kontaktieren.", "warning"),
        _advice("ROLE_REQUIRED", "Rolle erforderlich", "Diese Aktion erfordert eine spezielle Rolle", "Admin kontaktieren.", "warning"),
        _advice("CONSTRAINT_VIOLATION", "Eingeschränkter Bereich", "Angeforderte Felder sind nicht erlaubt", "Projekt-Scope prüfen.", "warning"),
        _advice("OPERATION_NOT_ALLOWED", "Eingeschränkter Bereich", "Diese Operation ist nicht erlaubt", "Projekt-Scope prüfen.", "warning"),
        _advice(
            "OPERATION_NOT_MAPPED",
            "Operation nicht in Berechtigungsmatrix",
            "Diese Operation ist nicht in der Berechtigungsmatrix definiert. Zugriff verweigert (Default-Deny).",
            "Admin kontaktieren, um Operation zur Berechtigungsmatrix hinzuzufügen.",
            "critical",
        ),
        _advice("CLIENT_ID_MISMATCH", "Konfigurationsfehler", "Client-ID fehlt oder stimmt nicht überein", "Admin kontaktieren.", "warning"),
        _advice("CROSS_TENANT_DENIED", "Sicherheits-Verletzung", "Zugriff auf Daten eines anderen Mandanten verweigert", "Bitte Administrator kontaktieren.", "critical"),
        _advice("SANITIZATION_FAILED", "Sicherheits-Verletzung", "Ungültige Eingabeparameter erkannt", "Bitte Administrator kontaktieren.", "critical"),
        _advice("REDACTION_FAILED", "Datenschutz-Schutzschild", "Fehler bei der Datenbereinigung", "Bitte Administrator kontaktieren.", "warning"),
        _advice("SCOPE_VIOLATION", "Eingeschränkter Bereich", "Zugriff außerhalb des erlaubten Bereichs", "Projekt-Scope prüfen.", "warning"),
        _advice(
            "CONSENT_MISSING",
            "Einwilligung erforderlich",
            "Für die Datenverarbeitung ist Ihre Einwilligung erforderlich",
            "Bitte erteilen Sie Ihre Einwilligung über /users/:userId/consent",
            "warning",
        ),
    )
}


def advisor_advice(code: str) -> PolicyViolationAdvice:
    return ADVICE.get(code) or _advice(
        code,
        "Sicherheits-Verletzung",
        "Eine Sicherheitsrichtlinie wurde verletzt",
        "Bitte Administrator kontaktieren.",
        "critical",
    )


def required_permissions(operation: str) -> list[str] | None:
    """Permissions an operation needs, or None when it is not in the matrix."""
    if operation in PERMISSION_MATRIX:
        return list(PERMISSION_MATRIX[operation])
    for op, perms in PERMISSION_MATRIX.items():
        if operation.startswith(op + ".") or operation.startswith("tool." + op + "."):
            return list(perms)
    return None


@dataclass(frozen=True)
class PolicyContext:
    user_id: str
    client_id: str | None = None
    project_id: str | None = None
    roles: list[str] | None = None
    agent_id: str | None = None
    permissions: list[str] | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = {
            "userId": self.user_id,
            "clientId": self.client_id,
            "projectId": self.project_id,
            "roles": self.roles,
            "agentId": self.agent_id,
            "permissions": self.permissions,
        }
        return {k: v for k, v in payload.items() if v is not None}


SYSTEM_CONTEXT = PolicyContext(user_id="system")


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    operation: str
    context: PolicyContext
    timestamp: str
    decision_hash: str
    constraints: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None


@dataclass(frozen=True)
class RedactedResult:
    data: list[Any]
    row_count: int
    fields_returned: list[str]
    redacted_fields: list[str] | None = None

    def as_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"rowCount": self.row_count, "fieldsReturned": list(self.fields_returned)}
        if self.redacted_fields:
            metadata["redactedFields"] = list(self.redacted_fields)
        return {"data": list(self.data), "metadata": metadata}


class ConsentStore(Protocol):
    def has_consent(self, user_id: str, consent_type: str) -> bool: ...


class PermissionResolver(Protocol):
    def get_permissions(self, user_id: str) -> list[str]: ...

    def has_all_permissions(self, user_id: str, required: list[str]) -> bool: ...

    def get_roles(self, user_id: str) -> list[str]: ...


class DataAccessPolicy(Protocol):
    def authorize(
        self, ctx: PolicyContext, operation: str, params: Mapping[str, Any]
    ) -> PolicyDecision: ...

    def sanitize(
        self, params: Mapping[str, Any], capability: CapabilityMap, operation_id: str
    ) -> SanitizedParams: ...

    def redact(self, result: Any, capability: CapabilityMap, operation_id: str) -> RedactedResult: ...


def decision_hash(operation: str, ctx: PolicyContext) -> str:
    """SHA-256 over operation and caller identity. The timestamp is left out."""
    identity = {"userId": ctx.user_id, "clientId": ctx.client_id, "projectId": ctx.project_id}
    payload = {
        "operation": operation,
        "context": {k: v for k, v in identity.items() if v is not None},
    }
    return sha256_text(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))


class AccessPolicyEngine:
    def __init__(
        self,
        clock: Clock | None = None,
        *,
        consent_store: ConsentStore | None = None,
        permission_resolver: PermissionResolver | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.consent_store = consent_store
        self.permission_resolver = permission_resolver

    def _deny(
        self,
        message: str,
        code: str,
        ctx: PolicyContext,
        operation: str,
        advice: PolicyViolationAdvice | None = None,
    ) -> PolicyError:
        log_event(
            _LOG,
            "access.policy.denied",
            level=logging.WARNING,
            code=code,
            operation=operation,
            user_id=ctx.user_id,
            client_id=ctx.client_id,
        )
        return PolicyError(
            message,
            code,
            context=ctx.as_dict(),
            operation=operation,
            advice=advice or advisor_advice(code),
        )

    def _permissions(self, ctx: PolicyContext) -> list[str]:
        perms = list(ctx.permissions or [])
        if not perms and self.permission_resolver is not None:
            perms = list(self.permission_resolver.get_permissions(ctx.user_id))
        return perms

    def _roles(self, ctx: PolicyContext) -> list[str]:
        roles = list(ctx.roles or [])
        if not roles and self.permission_resolver is not None:
            roles = list(self.permission_resolver.get_roles(ctx.user_id))
        return roles

    def _check_required_permissions(self, ctx: PolicyContext, operation: str, required: list[str]) -> None:
        if not required:
            return
        if self.permission_resolver is None and ctx.permissions is None:
            raise self._deny(
                f"Operation requires permissions: {', '.join(required)}. No permission resolver available.",
                PolicyErrorCode.PERMISSION_DENIED,
                ctx,
                operation,
            )
        held = self._permissions(ctx)
        if self.permission_resolver is not None:
            has_all = self.permission_resolver.has_all_permissions(ctx.user_id, required)
        else:
            has_all = all(p in held for p in required)
        if not has_all:
            missing = [p for p in required if p not in held]
            raise self._deny(
                f"Operation requires permissions: {', '.join(required)}. Missing: {', '.join(missing)}",
                PolicyErrorCode.PERMISSION_DENIED,
                ctx,
                operation,
            )

    def authorize(
        self, ctx: PolicyContext, operation: str, params: Mapping[str, Any]
    ) -> PolicyDecision:
        timestamp = format_iso(self.clock.now())

        required = required_permissions(operation)
        if required is None:
            raise self._deny(
                f"Operation '{operation}' is not in permission matrix. Access denied by default.",
                PolicyErrorCode.OPERATION_NOT_MAPPED,
                ctx,
                operation,
            )
        self._check_required_permissions(ctx, operation, required)

        if operation in ("review.approve", "review.reject"):
            if not any(role in REVIEW_ROLES for role in self._roles(ctx)):
                raise self._deny(
                    "Review approval requires reviewer role",
                    PolicyErrorCode.ROLE_REQUIRED,
                    ctx,
                    operation,
                )

        if operation.startswith("customer_data."):
            if CUSTOMER_DATA_PERMISSION not in self._permissions(ctx):
                raise self._deny(
                    "Customer data access requires customer_data.read permission",
                    PolicyErrorCode.CAPABILITY_MISSING,
                    ctx,
                    operation,
                )
            if self.consent_store is not None and not self.consent_store.has_consent(
                ctx.user_id, DATA_PROCESSING_CONSENT
            ):
                raise self._deny(
                    "Consent required for data processing (DSGVO Art. 6)",
                    PolicyErrorCode.CONSENT_MISSING,
                    ctx,
                    operation,
                )
            if not ctx.client_id:
                raise self._deny(
                    "clientId is required for customer_data operations",
                    PolicyErrorCode.CLIENT_ID_MISMATCH,
                    ctx,
                    operation,
                )
            requested_client = params.get("clientId")
            if requested_client and requested_client != ctx.client_id:
                raise self._deny(
                    "Cross-tenant access denied",
                    PolicyErrorCode.CROSS_TENANT_DENIED,
                    ctx,
                    operation,
                )

        if operation == "project.phase.update" and "project.update" not in (ctx.permissions or []):
            raise self._deny(
                "Project phase update requires project.update permission",
                PolicyErrorCode.PERMISSION_DENIED,
                ctx,
                operation,
            )

        decision = PolicyDecision(
            allowed=True,
            operation=operation,
            context=ctx,
            timestamp=timestamp,
            decision_hash=decision_hash(operation, ctx),
        )
        log_event(
            _LOG,
            "access.authorize.allowed",
            operation=operation,
            user_id=ctx.user_id,
            decision_hash=decision.decision_hash,
        )
        return decision

    def sanitize(
        self, params: Mapping[str, Any], capability: CapabilityMap, operation_id: str
    ) -> SanitizedParams:
        if contains_raw_sql(params):
            raise self._deny(
                "Raw SQL not allowed in tool calls",
                PolicyErrorCode.SANITIZATION_FAILED,
                SYSTEM_CONTEXT,
                f"customer_data.{operation_id}",
            )

        sanitized = apply_constraints(params, capability, operation_id)

        fields = params.get("fields")
        if sanitized.constraints.allowed_fields is not None and fields:
            requested = list(fields) if isinstance(fields, (list, tuple)) else [str(fields)]
            try:
                validate_allowed_fields(requested, sanitized.constraints.allowed_fields)
            except ConstraintViolation as exc:
                raise self._deny(
                    str(exc), PolicyErrorCode.CONSTRAINT_VIOLATION, SYSTEM_CONTEXT, operation_id
                ) from exc
        return sanitized

    def redact(self, result: Any, capability: CapabilityMap, operation_id: str) -> RedactedResult:
        rows = list(result) if isinstance(result, list) else [result]
        operation = capability.operation(operation_id)
        if operation is None:
            raise self._deny(
                f"Operation {operation_id} not found in capability map",
                PolicyErrorCode.REDACTION_FAILED,
                SYSTEM_CONTEXT,
                f"customer_data.{operation_id}",
            )

        deny = list(operation.deny_fields or [])
        allowed = operation.allowed_fields

        redacted: list[Any] = []
        for row in rows:
            if not isinstance(row, Mapping):
                redacted.append(row)
                continue
            cleaned = {k: v for k, v in row.items() if k not in deny}
            if allowed:
                cleaned = {f: cleaned[f] for f in allowed if f in cleaned}
            redacted.append(cleaned)

        first = redacted[0] if redacted else None
        return RedactedResult(
            data=redacted,
            row_count=len(redacted),
            fields_returned=list(first) if isinstance(first, Mapping) else [],
            redacted_fields=deny or None,
        )
