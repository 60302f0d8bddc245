from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .capability import GLOBAL_MAX_ROWS, CapabilityMap
from .errors import ConstraintViolation, PolicyError, PolicyErrorCode

FORBIDDEN_SQL_KEYWORDS = ("sql", "query", "statement", "raw")
CONTROL_KEYS = ("maxRows", "fields")


@dataclass(frozen=True)
class QueryConstraints:
    max_rows: int
    allowed_fields: list[str] | None = None
    deny_fields: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"maxRows": self.max_rows, "denyFields": list(self.deny_fields)}
        if self.allowed_fields is not None:
            out["allowedFields"] = list(self.allowed_fields)
        return out


@dataclass(frozen=True)
class SanitizedParams:
    operation_id: str
    params: dict[str, Any]
    constraints: QueryConstraints

    def as_dict(self) -> dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "params": dict(self.params),
            "constraints": self.constraints.as_dict(),
        }


def _has_forbidden_keyword(text: str) -> bool:
    lowered = text.lower()
    return any(kw in lowered for kw in FORBIDDEN_SQL_KEYWORDS)


def contains_raw_sql(params: Any) -> bool:
    """Heuristic: flag any key or string value mentioning a free-form query token.

    Keys and string values are scanned recursively through mappings and lists,
    case-insensitively. False positives are accepted.
    """
    if isinstance(params, Mapping):
        if any(_has_forbidden_keyword(str(key)) for key in params):
            return True
        values = list(params.values())
    elif isinstance(params, (list, tuple)):
        values = list(params)
    else:
        return False

    for value in values:
        if isinstance(value, str):
            if _has_forbidden_keyword(value):
                return True
        elif contains_raw_sql(value):
            return True
    return False


def _requested_max_rows(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def effective_max_rows(
    requested: Any, operation_max_rows: int | None, map_default_max_rows: int | None
) -> int:
    """min(requested or default, operation limit, map default, 200)."""
    default = GLOBAL_MAX_ROWS if map_default_max_rows is None else map_default_max_rows
    limits = [_requested_max_rows(requested, default), default, GLOBAL_MAX_ROWS]
    if operation_max_rows is not None:
        limits.append(operation_max_rows)
    return min(limits)


def apply_constraints(
    params: Mapping[str, Any], capability: CapabilityMap, operation_id: str
) -> SanitizedParams:
    operation = capability.operation(operation_id)
    if operation is None:
        raise PolicyError(
            f"Operation {operation_id} not found in capability map",
            PolicyErrorCode.OPERATION_NOT_ALLOWED,
            context={"clientId": capability.client_id},
            operation=operation_id,
        )

    max_rows = effective_max_rows(
        params.get("maxRows"), operation.max_rows, capability.default_max_rows
    )

    cleaned = dict(params)
    schema_props = operation.schema_properties
    if schema_props is not None:
        cleaned = {k: v for k, v in cleaned.items() if k in schema_props or k in CONTROL_KEYS}

    return SanitizedParams(
        operation_id=operation_id,
        params=cleaned,
        constraints=QueryConstraints(
            max_rows=max_rows,
            allowed_fields=operation.allowed_fields,
            deny_fields=list(operation.deny_fields or []),
        ),
    )


def validate_allowed_fields(
    requested_fields: list[str] | None, allowed_fields: list[str] | None
) -> None:
    if requested_fields is None or allowed_fields is None:
        return
    invalid = [f for f in requested_fields if f not in allowed_fields]
    if invalid:
        raise ConstraintViolation(f"Fields not allowed: {', '.join(invalid)}")
