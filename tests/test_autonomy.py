from __future__ import annotations

from workstream_governor.autonomy import AutonomyGuard
from workstream_governor.models import AutonomyPolicy, Decision, HardRule, Workstream


def test_destructive_decision_escalates() -> None:
    check = AutonomyGuard().check_escalation(Decision(rationale="Remove the legacy table"))
    assert check.requires_escalation
    assert check.reason == "Violates hard rule: Ask for explicit confirmation before destructive actions"


def test_secret_mentions_escalate_before_destructive_ones() -> None:
    decision = Decision(rationale="Reset values", implications="Rotates the .env file")
    check = AutonomyGuard().check_escalation(decision)
    assert check.reason == "Violates hard rule: Never read/write secrets or .env contents"


def test_only_configured_hard_rules_apply() -> None:
    policy = AutonomyPolicy(hard_rules=[HardRule("confirm_destructive", "Confirm first")])
    guard = AutonomyGuard(policy)
    assert not guard.check_escalation(Decision(rationale="Store the SECRET in vault")).requires_escalation
    assert guard.check_escalation(Decision(implications="DROP column")).reason == "Violates hard rule: Confirm first"


def test_plain_decision_and_workstreams_never_escalate() -> None:
    guard = AutonomyGuard()
    assert not guard.check_escalation(Decision(rationale="Adopt Postgres", implications="New ORM")).requires_escalation
    assert not guard.check_workstream_escalation(Workstream(autonomy_tier=4)).requires_escalation
