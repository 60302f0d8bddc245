from __future__ import annotations

import pytest

from workstream_governor.capability import CapabilityMap, OperationCapability
from workstream_governor.constraints import (
    apply_constraints,
    contains_raw_sql,
    effective_max_rows,
    validate_allowed_fields,
)
from workstream_governor.errors import ConstraintViolation, PolicyError, PolicyErrorCode


def _capability(op_max_rows: int | None = 30, default_max_rows: int | None = 100) -> CapabilityMap:
    op = {"operationId": "search", "source": "crm", "allowedFields": ["id", "name"]}
    if op_max_rows is not None:
        op["maxRows"] = op_max_rows
    raw = {"clientId": "acme", "operations": {"search": op}}
    if default_max_rows is not None:
        raw["defaultMaxRows"] = default_max_rows
    return CapabilityMap.from_mapping(raw)


def test_effective_max_rows_takes_the_tightest_limit() -> None:
    assert effective_max_rows(50, 30, 100) == 30
    assert effective_max_rows(10, 30, 100) == 10
    assert effective_max_rows(None, None, 100) == 100
    assert effective_max_rows(None, None, None) == 200
    assert effective_max_rows(1000, 500, 400) == 200


def test_non_numeric_requests_fall_back_to_default() -> None:
    assert effective_max_rows("50", None, 80) == 80
    assert effective_max_rows(True, None, 80) == 80


def test_apply_constraints_limits_rows_and_keeps_params_without_schema() -> None:
    sanitized = apply_constraints({"maxRows": 50, "name": "x"}, _capability(), "search")
    assert sanitized.constraints.max_rows == 30
    assert sanitized.constraints.allowed_fields == ["id", "name"]
    assert sanitized.params == {"maxRows": 50, "name": "x"}


def test_apply_constraints_unknown_operation() -> None:
    with pytest.raises(PolicyError, match="Operation nope not found in capability map") as exc:
        apply_constraints({}, _capability(), "nope")
    assert exc.value.code == PolicyErrorCode.OPERATION_NOT_ALLOWED


def _unvalidated_capability(op_max_rows: int | None, default_max_rows: int | None) -> CapabilityMap:
    op = OperationCapability(operation_id="search", source="crm", max_rows=op_max_rows)
    return CapabilityMap(client_id="acme", operations={"search": op}, default_max_rows=default_max_rows)


def test_apply_constraints_uses_request_below_both_limits() -> None:
    sanitized = apply_constraints({"maxRows": 30}, _unvalidated_capability(100, 50), "search")
    assert sanitized.constraints.max_rows == 30


@pytest.mark.parametrize(
    ("requested", "op_max_rows", "default_max_rows", "expected"),
    [
        (30, 100, 50, 30),
        (30, 50, 100, 30),
        (100, 30, 50, 30),
        (100, 50, 30, 30),
        (50, 30, 100, 30),
        (50, 100, 30, 30),
        (None, 100, 50, 50),
        (None, 50, None, 50),
        (None, None, None, 200),
        (5000, None, 1000, 200),
        (5000, 1000, None, 200),
    ],
)
def test_apply_constraints_takes_tightest_limit_in_any_order(
    requested: int | None, op_max_rows: int | None, default_max_rows: int | None, expected: int
) -> None:
    params = {} if requested is None else {"maxRows": requested}
    sanitized = apply_constraints(params, _unvalidated_capability(op_max_rows, default_max_rows), "search")
    assert sanitized.constraints.max_rows == expected


@pytest.mark.parametrize(
    ("params", "expected"),
    [
        ({"name": "Ada"}, False),
        ({"rawFilter": "x"}, True),
        ({"q": "DELETE via Statement"}, True),
        ({"filters": [{"nested": ["ok", "run query"]}]}, True),
        ({"filters": [1, 2, None]}, False),
    ],
)
def test_contains_raw_sql(params: dict, expected: bool) -> None:
    assert contains_raw_sql(params) is expected


def test_validate_allowed_fields() -> None:
    validate_allowed_fields(["id"], ["id", "name"])
    validate_allowed_fields(None, ["id"])
    validate_allowed_fields(["secret"], None)
    with pytest.raises(ConstraintViolation, match="Fields not allowed: email, iban"):
        validate_allowed_fields(["id", "email", "iban"], ["id", "name"])
