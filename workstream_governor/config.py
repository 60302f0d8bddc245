from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import jsonschema

from .repo_root import resolve_repo_root
from .schema import CONFIG_SCHEMA
from .util import read_json

CONFIG_FILE_NAME = "governance.config.json"
ENFORCE_ENV = "GOVERNANCE_V2_ENFORCE"
MAX_SKEW_ENV = "LAST_UPDATED_MAX_SKEW_MIN"

DEFAULT_MAX_SKEW_MINUTES = 5
DEFAULT_GAP_THRESHOLD_MINUTES = 50
DEFAULT_HISTORY_PATH = "ops/agent-team/team_decisions.jsonl"
DEFAULT_STATE_PATH = "ops/agent-team/runtime_state.json"
DEFAULT_POLICY_RULES_PATH = "ops/agent-team/policy_approval_rules.yaml"
DEFAULT_AUTONOMY_POLICY_PATH = "ops/agent-team/autonomy_policy.md"
DEFAULT_CAPABILITIES_DIR = "ops/capabilities"
DEFAULT_DOCS_ROOTS = ("docs", "ops")


@dataclass(frozen=True)
class GovernanceConfig:
    repo_root: Path
    enforce: bool
    max_skew_minutes: int
    gap_threshold_minutes: int
    history_path: Path
    state_path: Path
    policy_rules_path: Path
    autonomy_policy_path: Path
    capabilities_dir: Path
    docs_roots: list[Path]


def enforcement_enabled(env: Mapping[str, str] | None = None) -> bool:
    environ = os.environ if env is None else env
    return environ.get(ENFORCE_ENV, "1").strip() != "0"


def max_skew_from_env(env: Mapping[str, str] | None = None) -> int:
    environ = os.environ if env is None else env
    raw = environ.get(MAX_SKEW_ENV)
    if raw is None or not raw.strip():
        return DEFAULT_MAX_SKEW_MINUTES
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{MAX_SKEW_ENV} must be an integer, got {raw!r}") from exc


def load_config(
    repo_root: Path | None = None, *, env: Mapping[str, str] | None = None
) -> GovernanceConfig:
    """Build the effective configuration.

    ``governance.config.json`` at the repo root is optional; when present it is
    validated against ``CONFIG_SCHEMA``. Environment variables override the file.
    """
    environ = os.environ if env is None else env
    root = (repo_root or resolve_repo_root(env=environ)).resolve()

    cfg_path = root / CONFIG_FILE_NAME
    raw: dict = {}
    if cfg_path.is_file():
        raw = read_json(cfg_path)
        jsonschema.validate(instance=raw, schema=CONFIG_SCHEMA)

    def _rel_to_repo(p: str) -> Path:
        q = Path(str(p))
        return (root / q).resolve() if not q.is_absolute() else q.resolve()

    enforce = bool(raw.get("enforce", True)) and enforcement_enabled(environ)
    max_skew = (
        max_skew_from_env(environ)
        if MAX_SKEW_ENV in environ
        else int(raw.get("last_updated_max_skew_minutes", DEFAULT_MAX_SKEW_MINUTES))
    )

    return GovernanceConfig(
        repo_root=root,
        enforce=enforce,
        max_skew_minutes=max_skew,
        gap_threshold_minutes=int(raw.get("gap_threshold_minutes", DEFAULT_GAP_THRESHOLD_MINUTES)),
        history_path=_rel_to_repo(raw.get("history_path", DEFAULT_HISTORY_PATH)),
        state_path=_rel_to_repo(raw.get("state_path", DEFAULT_STATE_PATH)),
        policy_rules_path=_rel_to_repo(raw.get("policy_rules_path", DEFAULT_POLICY_RULES_PATH)),
        autonomy_policy_path=_rel_to_repo(
            raw.get("autonomy_policy_path", DEFAULT_AUTONOMY_POLICY_PATH)
        ),
        capabilities_dir=_rel_to_repo(raw.get("capabilities_dir", DEFAULT_CAPABILITIES_DIR)),
        docs_roots=[_rel_to_repo(p) for p in raw.get("docs_roots", DEFAULT_DOCS_ROOTS)],
    )
