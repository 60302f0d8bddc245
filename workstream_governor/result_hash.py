"""Deterministic hashing of returned data, used for replay verification.

Sensitive keys listed in ``exclude_fields`` are stripped at every depth before
hashing, so changing only an excluded value never changes the hash.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from .util import sha256_text


def strip_fields(data: Any, fields: Iterable[str] | None) -> Any:
    excluded = set(fields or ())
    if not excluded:
        return data
    return _strip(data, excluded)


def _strip(data: Any, excluded: set[str]) -> Any:
    if isinstance(data, Mapping):
        return {k: _strip(v, excluded) for k, v in data.items() if k not in excluded}
    if isinstance(data, (list, tuple)):
        return [_strip(item, excluded) for item in data]
    return data


def normalize_for_hash(data: Any) -> str:
    if data is None:
        return "null"
    if isinstance(data, bool):
        return "true" if data else "false"
    if isinstance(data, float) and data.is_integer():
        return str(int(data))
    if isinstance(data, (str, int, float)):
        return str(data)
    if isinstance(data, (list, tuple)):
        return "[" + ",".join(normalize_for_hash(item) for item in data) + "]"
    if isinstance(data, Mapping):
        pairs = (f"{key}:{normalize_for_hash(data[key])}" for key in sorted(data, key=str))
        return "{" + ",".join(pairs) + "}"
    return str(data)


def generate_result_hash(data: Any, exclude_fields: Iterable[str] | None = None) -> str:
    return sha256_text(normalize_for_hash(strip_fields(data, exclude_fields)))
