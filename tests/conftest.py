from __future__ import annotations

import hashlib
import json
import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from workstream_governor.clock import FakeClock

PRODUCT_MODULE_PREFIXES = ("workstream_governor",)


def _canonical_env_hash(env: dict[str, str]) -> str:
    payload = json.dumps(sorted(env.items()), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@pytest.fixture(autouse=True)
def isolate_runtime_state() -> Iterator[None]:
    modules_before = set(sys.modules.keys())
    environ_before = dict(os.environ)
    environ_before_hash = _canonical_env_hash(environ_before)

    yield

    post_modules = set(sys.modules.keys())
    new_modules = post_modules - modules_before
    for module_name in new_modules:
        if module_name.startswith(PRODUCT_MODULE_PREFIXES):
            sys.modules.pop(module_name, None)

    post_env = dict(os.environ)
    for key in list(post_env.keys()):
        if key not in environ_before:
            os.environ.pop(key, None)
    for key, value in environ_before.items():
        os.environ[key] = value

    assert _canonical_env_hash(dict(os.environ)) == environ_before_hash


@pytest.fixture(autouse=True)
def governance_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("REPO_ROOT", "GOVERNANCE_V2_ENFORCE", "LAST_UPDATED_MAX_SKEW_MIN", "CI", "GITHUB_ACTIONS"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock("2026-02-13T10:00:00.000Z")


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "ops" / "agent-team").mkdir(parents=True)
    (root / "pyproject.toml").write_text("[project]\nname = 'fixture'\n", encoding="utf-8")
    (root / "governance.config.json").write_text("{}\n", encoding="utf-8")
    return root
