"""Approval rules and the autonomy ladder.

Rules come from ``policy_approval_rules.yaml`` (a top-level ``rules:`` list) and the
ladder from ``autonomy_policy.md``. A missing or malformed file is logged at WARNING
and leaves the engine with no rules / no autonomy policy; loading never raises for
file problems.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Mapping

import yaml

from .access import AccessPolicyEngine, DataAccessPolicy, PolicyContext, PolicyDecision, RedactedResult
from .capability import CapabilityMap
from .clock import Clock, SystemClock
from .config import DEFAULT_AUTONOMY_POLICY_PATH, DEFAULT_POLICY_RULES_PATH, GovernanceConfig
from .constraints import SanitizedParams
from .models import (
    DEFAULT_HARD_RULES,
    DEFAULT_LADDER,
    AutonomyDefaults,
    AutonomyPolicy,
    Decision,
    HardRule,
    PolicyCheck,
    PolicyRule,
)
from .patterns import matches_pattern
from .repo_root import resolve_repo_root
from .util import log_event, setup_json_logger

_LOG = setup_json_logger("workstream_governor.policy")

_HEADING = re.compile(r"^#{1,6}\s+(?P<title>.+?)\s*$")
_LADDER_LINE = re.compile(
    r"^\s*[-*]?\s*(?:\*\*)?(?:tier\s*)?(?P<tier>[1-4])(?:\*\*)?\s*[:.)\-]\s*(?:\*\*)?\s*(?P<label>[a-z][a-z-]*)",
    re.IGNORECASE,
)
_DEFAULT_LINE = re.compile(
    r"^\s*[-*]?\s*`?(?P<key>repo_default_tier|implementer_default_tier)`?\s*[:=]\s*(?P<tier>[1-4])\b"
)
_HARD_RULE_LINE = re.compile(r"^\s*[-*]\s*`?(?P<id>[a-z][a-z0-9_]*)`?\s*:\s*(?P<desc>\S.*?)\s*$")


def parse_policy_rules(text: str) -> list[PolicyRule]:
    doc = yaml.safe_load(text)
    if doc is None:
        return []
    if not isinstance(doc, Mapping):
        raise ValueError("policy rules document must be a mapping with a 'rules' list")
    raw_rules = doc.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ValueError("policy rules 'rules' must be a list")
    return [PolicyRule.from_mapping(r if isinstance(r, Mapping) else {}) for r in raw_rules]


def parse_autonomy_policy(text: str) -> AutonomyPolicy:
    """Extract the ladder, defaults and hard rules from the autonomy policy Markdown.

    Only three sections are read: a heading mentioning "ladder" (``- Tier N: label``),
    one mentioning "default" (``repo_default_tier: N``) and one mentioning "hard rule"
    (``- rule_id: description``). Anything absent falls back to the built-in values.
    """
    ladder: dict[int, str] = {}
    defaults: dict[str, int] = {}
    hard_rules: list[HardRule] = []

    section = ""
    for line in text.splitlines():
        heading = _HEADING.match(line)
        if heading:
            section = heading.group("title").lower()
            continue
        if "ladder" in section:
            m = _LADDER_LINE.match(line)
            if m:
                ladder[int(m.group("tier"))] = m.group("label").lower()
        elif "hard rule" in section:
            m = _HARD_RULE_LINE.match(line)
            if m:
                hard_rules.append(HardRule(m.group("id"), m.group("desc")))
        elif "default" in section:
            m = _DEFAULT_LINE.match(line)
            if m:
                defaults[m.group("key")] = int(m.group("tier"))

    base = AutonomyDefaults()
    return AutonomyPolicy(
        ladder=ladder or dict(DEFAULT_LADDER),
        defaults=AutonomyDefaults(
            repo_default_tier=defaults.get("repo_default_tier", base.repo_default_tier),
            implementer_default_tier=defaults.get(
                "implementer_default_tier", base.implementer_default_tier
            ),
        ),
        hard_rules=hard_rules or list(DEFAULT_HARD_RULES),
    )


class PolicyEngine:
    def __init__(
        self,
        clock: Clock | None = None,
        *,
        repo_root: Path | None = None,
        rules_path: Path | None = None,
        autonomy_path: Path | None = None,
        access_engine: DataAccessPolicy | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.repo_root = repo_root
        self.rules_path = rules_path
        self.autonomy_path = autonomy_path
        self.access_engine: DataAccessPolicy = access_engine or AccessPolicyEngine(self.clock)
        self._rules: list[PolicyRule] = []
        self._autonomy_policy: AutonomyPolicy | None = None

    @classmethod
    def from_config(cls, config: GovernanceConfig, clock: Clock | None = None) -> "PolicyEngine":
        return cls(
            clock,
            repo_root=config.repo_root,
            rules_path=config.policy_rules_path,
            autonomy_path=config.autonomy_policy_path,
        )

    def _resolve(self, explicit: Path | None, configured: Path | None, default_rel: str) -> Path:
        if explicit is not None:
            return Path(explicit)
        if configured is not None:
            return configured
        root = self.repo_root or resolve_repo_root()
        return root / default_rel

    def load_policy_rules(self, path: Path | None = None) -> list[PolicyRule]:
        file_path = self._resolve(path, self.rules_path, DEFAULT_POLICY_RULES_PATH)
        try:
            self._rules = parse_policy_rules(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ValueError, TypeError) as exc:
            log_event(
                _LOG,
                "policy.rules.load.failure",
                level=logging.WARNING,
                path=str(file_path),
                error=f"{type(exc).__name__}: {exc}",
            )
            self._rules = []
        else:
            log_event(_LOG, "policy.rules.loaded", path=str(file_path), count=len(self._rules))
        return list(self._rules)

    def load_autonomy_policy(self, path: Path | None = None) -> AutonomyPolicy | None:
        file_path = self._resolve(path, self.autonomy_path, DEFAULT_AUTONOMY_POLICY_PATH)
        try:
            self._autonomy_policy = parse_autonomy_policy(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            log_event(
                _LOG,
                "policy.autonomy.load.failure",
                level=logging.WARNING,
                path=str(file_path),
                error=f"{type(exc).__name__}: {exc}",
            )
            self._autonomy_policy = None
        else:
            log_event(
                _LOG,
                "policy.autonomy.loaded",
                path=str(file_path),
                hard_rules=[r.id for r in self._autonomy_policy.hard_rules],
            )
        return self._autonomy_policy

    def load(self) -> "PolicyEngine":
        self.load_policy_rules()
        self.load_autonomy_policy()
        return self

    def get_policy_rules(self) -> list[PolicyRule]:
        return list(self._rules)

    def get_autonomy_policy(self) -> AutonomyPolicy | None:
        return self._autonomy_policy

    def check_decision(self, decision: Decision) -> PolicyCheck:
        for rule in self._rules:
            for pattern in rule.deny_if_matches or []:
                for entry in decision.scope or []:
                    if matches_pattern(entry, pattern):
                        return PolicyCheck(
                            allowed=False,
                            reason=f"Decision scope matches denied pattern: {pattern} (policy rule: {rule.id})",
                        )
        return PolicyCheck(allowed=True)

    def authorize(
        self, ctx: PolicyContext, operation: str, params: Mapping[str, Any]
    ) -> PolicyDecision:
        return self.access_engine.authorize(ctx, operation, params)

    def sanitize(
        self, params: Mapping[str, Any], capability: CapabilityMap, operation_id: str
    ) -> SanitizedParams:
        return self.access_engine.sanitize(params, capability, operation_id)

    def redact(self, result: Any, capability: CapabilityMap, operation_id: str) -> RedactedResult:
        return self.access_engine.redact(result, capability, operation_id)
