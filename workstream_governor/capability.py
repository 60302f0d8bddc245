"""Per-client capability maps: which data-access operations a client may run.

A capability map is an allowlist. Operations absent from ``operations`` are denied,
and row/field constraints declared here can only tighten the global defaults.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import jsonschema

from .errors import CapabilityMapError, PolicyError, PolicyErrorCode
from .schema import CAPABILITY_MAP_SCHEMA
from .util import read_json, setup_json_logger, log_event

GLOBAL_MAX_ROWS = 200

_LOG = setup_json_logger("workstream_governor.capability")


@dataclass(frozen=True)
class OperationCapability:
    operation_id: str
    source: str
    description: str | None = None
    allowed_fields: list[str] | None = None
    deny_fields: list[str] | None = None
    max_rows: int | None = None
    params_schema: dict[str, Any] | None = None

    @property
    def schema_properties(self) -> dict[str, Any] | None:
        if self.params_schema is None:
            return None
        return dict(self.params_schema.get("properties") or {})

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "OperationCapability":
        return cls(
            operation_id=str(raw["operationId"]),
            source=str(raw["source"]),
            description=raw.get("description"),
            allowed_fields=None if raw.get("allowedFields") is None else list(raw["allowedFields"]),
            deny_fields=None if raw.get("denyFields") is None else list(raw["denyFields"]),
            max_rows=raw.get("maxRows"),
            params_schema=None if raw.get("paramsSchema") is None else dict(raw["paramsSchema"]),
        )


@dataclass(frozen=True)
class SourceConfig:
    type: str
    config: dict[str, Any] = field(default_factory=dict)
    health_check: dict[str, Any] | None = None


@dataclass(frozen=True)
class CapabilityMap:
    client_id: str
    operations: dict[str, OperationCapability]
    default_max_rows: int | None = None
    sources: dict[str, SourceConfig] | None = None

    @property
    def effective_default_max_rows(self) -> int:
        if self.default_max_rows is None:
            return GLOBAL_MAX_ROWS
        return min(self.default_max_rows, GLOBAL_MAX_ROWS)

    def operation(self, operation_id: str) -> OperationCapability | None:
        return self.operations.get(operation_id)

    @classmethod
    def from_mapping(cls, raw: Any) -> "CapabilityMap":
        problem = capability_map_problem(raw)
        if problem is not None:
            raise CapabilityMapError(f"E_CAPABILITY_MAP_INVALID: {problem}")
        sources = raw.get("sources")
        return cls(
            client_id=raw["clientId"],
            operations={
                key: OperationCapability.from_mapping(op) for key, op in raw["operations"].items()
            },
            default_max_rows=raw.get("defaultMaxRows"),
            sources=None
            if sources is None
            else {
                name: SourceConfig(
                    type=src["type"], config=dict(src["config"]), health_check=src.get("healthCheck")
                )
                for name, src in sources.items()
            },
        )


def capability_map_problem(raw: Any) -> str | None:
    """Describe the first structural problem in a raw capability map, or None."""
    validator = jsonschema.Draft7Validator(CAPABILITY_MAP_SCHEMA)
    errors = sorted(validator.iter_errors(raw), key=lambda e: list(e.absolute_path))
    if errors:
        err = errors[0]
        where = "$" + "".join(f".{p}" for p in err.absolute_path)
        return f"{where}: {err.message}"
    for key, op in raw["operations"].items():
        if op["operationId"] != key:
            return f"$.operations.{key}: operationId {op['operationId']!r} does not match its key"
    default_max_rows = raw.get("defaultMaxRows")
    if default_max_rows is not None and default_max_rows > GLOBAL_MAX_ROWS:
        return f"$.defaultMaxRows: {default_max_rows} exceeds the global limit of {GLOBAL_MAX_ROWS}"
    effective_default = GLOBAL_MAX_ROWS if default_max_rows is None else default_max_rows
    for key, op in raw["operations"].items():
        max_rows = op.get("maxRows")
        if max_rows is not None and max_rows > effective_default:
            return f"$.operations.{key}.maxRows: {max_rows} exceeds the map default of {effective_default}"
    return None


def validate_capability_map(raw: Any) -> bool:
    return capability_map_problem(raw) is None


def load_capability_map(path: Path) -> CapabilityMap:
    cap = CapabilityMap.from_mapping(read_json(path))
    log_event(
        _LOG,
        "capability.map.loaded",
        client_id=cap.client_id,
        operations=sorted(cap.operations),
        path=str(path),
    )
    return cap


class CapabilityRegistry:
    """In-memory registry of capability maps keyed by client id."""

    def __init__(self) -> None:
        self._capabilities: dict[str, CapabilityMap] = {}

    def register(self, client_id: str, capabilities: CapabilityMap) -> None:
        if capabilities.client_id != client_id:
            raise CapabilityMapError(
                f"Capability clientId mismatch: expected {client_id}, got {capabilities.client_id}"
            )
        self._capabilities[client_id] = capabilities

    def load_dir(self, directory: Path) -> list[str]:
        loaded: list[str] = []
        for path in sorted(directory.glob("*.json"), key=lambda p: p.as_posix()):
            cap = load_capability_map(path)
            self.register(cap.client_id, cap)
            loaded.append(cap.client_id)
        return loaded

    def get_capabilities(self, client_id: str) -> CapabilityMap | None:
        return self._capabilities.get(client_id)

    def is_operation_allowed(self, client_id: str, operation_id: str) -> bool:
        cap = self._capabilities.get(client_id)
        return cap is not None and operation_id in cap.operations

    def get_operation_schema(self, client_id: str, operation_id: str) -> dict[str, Any] | None:
        cap = self._capabilities.get(client_id)
        if cap is None:
            return None
        op = cap.operation(operation_id)
        return None if op is None else op.params_schema

    def get_source_for_operation(self, client_id: str, operation_id: str) -> str:
        cap = self._capabilities.get(client_id)
        if cap is None:
            raise PolicyError(
                f"No capabilities found for clientId: {client_id}",
                PolicyErrorCode.CLIENT_ID_MISMATCH,
                context={"clientId": client_id},
                operation=operation_id,
            )
        op = cap.operation(operation_id)
        if op is None:
            raise PolicyError(
                f"Operation {operation_id} not allowed for clientId: {client_id}",
                PolicyErrorCode.OPERATION_NOT_ALLOWED,
                context={"clientId": client_id},
                operation=operation_id,
            )
        return op.source
