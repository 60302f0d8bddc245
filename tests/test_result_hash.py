from __future__ import annotations

import hashlib

from workstream_governor.result_hash import generate_result_hash, normalize_for_hash, strip_fields


def test_hash_is_independent_of_key_order() -> None:
    assert generate_result_hash({"a": 1, "b": [1, 2]}) == generate_result_hash({"b": [1, 2], "a": 1})


def test_array_order_matters() -> None:
    assert generate_result_hash([1, 2]) != generate_result_hash([2, 1])


def test_excluded_fields_are_stripped_at_every_depth() -> None:
    first = {"id": 1, "token": "a", "rows": [{"id": 2, "token": "b"}]}
    second = {"id": 1, "token": "z", "rows": [{"id": 2, "token": "y"}]}
    assert generate_result_hash(first, ["token"]) == generate_result_hash(second, ["token"])
    assert generate_result_hash(first) != generate_result_hash(second)
    assert strip_fields(first, ["token"]) == {"id": 1, "rows": [{"id": 2}]}


def test_normalization_rules() -> None:
    assert normalize_for_hash({"b": None, "a": [True, 1.0, 1.5]}) == "{a:[true,1,1.5],b:null}"
    assert generate_result_hash({"a": 1}) == hashlib.sha256(b"{a:1}").hexdigest()
