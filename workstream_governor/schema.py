"""JSON Schemas for the documents this package reads (validated with jsonschema)."""
from __future__ import annotations

from .models import VALID_IMPACTS, VALID_LAYERS, WORKSTREAM_STATUSES

WORKSTREAM_SCHEMA: dict = {
    "type": "object",
    "required": [
        "id",
        "owner",
        "scope",
        "autonomyTier",
        "layer",
        "structuralModel",
        "risks",
        "definitionOfDone",
    ],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "owner": {"type": "string", "minLength": 1},
        "scope": {"type": "array", "minItems": 1, "items": {"type": "string"}},
        "autonomyTier": {"type": "integer", "enum": [1, 2, 3, 4]},
        "layer": {"type": "string", "enum": list(VALID_LAYERS)},
        "structuralModel": {"type": "string", "minLength": 1},
        "risks": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "description", "impact", "mitigation"],
                "properties": {
                    "id": {"type": "string"},
                    "description": {"type": "string"},
                    "impact": {"type": "string", "enum": list(VALID_IMPACTS)},
                    "mitigation": {"type": "string"},
                    "owner": {"type": "string"},
                },
            },
        },
        "definitionOfDone": {"type": "string", "minLength": 1},
        "status": {"type": "string", "enum": list(WORKSTREAM_STATUSES)},
        "blockers": {"type": "array", "items": {"type": "string"}},
    },
}

_OPERATION_SCHEMA: dict = {
    "type": "object",
    "required": ["operationId", "source"],
    "properties": {
        "operationId": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "source": {"type": "string", "minLength": 1},
        "allowedFields": {"type": "array", "items": {"type": "string"}},
        "denyFields": {"type": "array", "items": {"type": "string"}},
        "maxRows": {"type": "integer", "minimum": 1},
        "paramsSchema": {
            "type": "object",
            "required": ["type", "properties"],
            "properties": {
                "type": {"const": "object"},
                "properties": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "object",
                        "required": ["type"],
                        "properties": {"type": {"type": "string"}},
                    },
                },
            },
        },
    },
}

CAPABILITY_MAP_SCHEMA: dict = {
    "type": "object",
    "required": ["clientId", "operations"],
    "properties": {
        "clientId": {"type": "string", "minLength": 1},
        "operations": {"type": "object", "additionalProperties": _OPERATION_SCHEMA},
        "defaultMaxRows": {"type": "integer", "minimum": 1},
        "sources": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["type", "config"],
                "properties": {
                    "type": {"enum": ["postgres", "rest_api", "graphql", "custom"]},
                    "config": {"type": "object"},
                    "healthCheck": {"type": "object"},
                },
            },
        },
    },
}

CONFIG_SCHEMA: dict = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "enforce": {"type": "boolean"},
        "last_updated_max_skew_minutes": {"type": "integer", "minimum": 0},
        "gap_threshold_minutes": {"type": "integer", "minimum": 1},
        "history_path": {"type": "string", "minLength": 1},
        "state_path": {"type": "string", "minLength": 1},
        "policy_rules_path": {"type": "string", "minLength": 1},
        "autonomy_policy_path": {"type": "string", "minLength": 1},
        "capabilities_dir": {"type": "string", "minLength": 1},
        "docs_roots": {"type": "array", "items": {"type": "string"}},
    },
}
