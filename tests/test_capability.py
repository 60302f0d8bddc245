from __future__ import annotations

import json
from pathlib import Path

import pytest

from workstream_governor.capability import (
    GLOBAL_MAX_ROWS,
    CapabilityMap,
    CapabilityRegistry,
    load_capability_map,
    validate_capability_map,
)
from workstream_governor.errors import CapabilityMapError, PolicyError, PolicyErrorCode


def _raw(client_id: str = "acme", **extra) -> dict:
    raw = {
        "clientId": client_id,
        "operations": {
            "listCustomers": {
                "operationId": "listCustomers",
                "source": "crm",
                "maxRows": 30,
                "paramsSchema": {"type": "object", "properties": {"city": {"type": "string"}}},
            }
        },
        "sources": {"crm": {"type": "postgres", "config": {"schema": "crm_read"}}},
    }
    raw.update(extra)
    return raw


def test_from_mapping_builds_typed_map() -> None:
    cap = CapabilityMap.from_mapping(_raw(defaultMaxRows=100))
    op = cap.operation("listCustomers")

    assert op is not None
    assert op.source == "crm"
    assert op.max_rows == 30
    assert op.schema_properties == {"city": {"type": "string"}}
    assert cap.sources is not None and cap.sources["crm"].type == "postgres"
    assert cap.effective_default_max_rows == 100
    assert cap.operation("missing") is None


def test_default_max_rows_never_exceeds_global_cap() -> None:
    assert CapabilityMap.from_mapping(_raw()).effective_default_max_rows == GLOBAL_MAX_ROWS
    assert validate_capability_map(_raw(defaultMaxRows=GLOBAL_MAX_ROWS))

    with pytest.raises(CapabilityMapError, match=r"\$\.defaultMaxRows: 5000 exceeds the global limit"):
        CapabilityMap.from_mapping(_raw(defaultMaxRows=5000))

    unvalidated = CapabilityMap(client_id="acme", operations={}, default_max_rows=500)
    assert unvalidated.effective_default_max_rows == GLOBAL_MAX_ROWS


def test_operation_max_rows_cannot_loosen_map_default() -> None:
    loose = _raw(defaultMaxRows=50)
    loose["operations"]["listCustomers"]["maxRows"] = 500
    with pytest.raises(CapabilityMapError, match=r"listCustomers\.maxRows: 500 exceeds the map default of 50"):
        CapabilityMap.from_mapping(loose)

    no_default = _raw()
    no_default["operations"]["listCustomers"]["maxRows"] = GLOBAL_MAX_ROWS + 1
    assert not validate_capability_map(no_default)

    equal = _raw(defaultMaxRows=30)
    assert validate_capability_map(equal)


def test_structural_problems_are_rejected() -> None:
    with pytest.raises(CapabilityMapError, match="E_CAPABILITY_MAP_INVALID"):
        CapabilityMap.from_mapping({"operations": {}})

    mismatched = _raw()
    mismatched["operations"]["listCustomers"]["operationId"] = "listClients"
    with pytest.raises(CapabilityMapError, match="does not match its key"):
        CapabilityMap.from_mapping(mismatched)

    assert not validate_capability_map({"clientId": "acme"})
    assert not validate_capability_map(_raw(defaultMaxRows=0))
    assert not validate_capability_map(_raw(sources={"crm": {"type": "ftp", "config": {}}}))
    assert validate_capability_map(_raw())


def test_registry_lookup_and_errors() -> None:
    registry = CapabilityRegistry()
    registry.register("acme", CapabilityMap.from_mapping(_raw()))

    assert registry.is_operation_allowed("acme", "listCustomers")
    assert not registry.is_operation_allowed("acme", "deleteCustomer")
    assert not registry.is_operation_allowed("globex", "listCustomers")
    assert registry.get_operation_schema("acme", "listCustomers")["type"] == "object"
    assert registry.get_operation_schema("globex", "listCustomers") is None
    assert registry.get_source_for_operation("acme", "listCustomers") == "crm"

    with pytest.raises(PolicyError) as exc:
        registry.get_source_for_operation("globex", "listCustomers")
    assert exc.value.code == PolicyErrorCode.CLIENT_ID_MISMATCH

    with pytest.raises(PolicyError, match="Operation deleteCustomer not allowed") as exc:
        registry.get_source_for_operation("acme", "deleteCustomer")
    assert exc.value.code == PolicyErrorCode.OPERATION_NOT_ALLOWED


def test_register_requires_matching_client_id() -> None:
    with pytest.raises(CapabilityMapError, match="clientId mismatch"):
        CapabilityRegistry().register("globex", CapabilityMap.from_mapping(_raw()))


def test_load_dir_reads_every_map(tmp_path: Path) -> None:
    (tmp_path / "b.json").write_text(json.dumps(_raw("globex")), encoding="utf-8")
    (tmp_path / "a.json").write_text(json.dumps(_raw("acme")), encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    registry = CapabilityRegistry()
    assert registry.load_dir(tmp_path) == ["acme", "globex"]
    assert registry.get_capabilities("globex") is not None


def test_load_capability_map_rejects_invalid_file(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"clientId": ""}), encoding="utf-8")
    with pytest.raises(CapabilityMapError):
        load_capability_map(path)
