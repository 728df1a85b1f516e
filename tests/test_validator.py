from decimal import Decimal

from x402guard.policy import (
    AllowlistPolicy,
    DenylistPolicy,
    PolicySet,
    RateLimitPolicy,
    SpendingCapPolicy,
    parse,
)
from x402guard.types import Severity, SubjectField
from x402guard.validator import validate

AGENT = SubjectField.AGENT_ID


def test_clean_policy_set_reports_info_only() -> None:
    report = validate(
        [
            AllowlistPolicy(field=AGENT, values=("agent-*",)),
            RateLimitPolicy(max_requests=10, window_seconds=60),
        ]
    )
    assert report.is_valid
    assert report.counts() == (0, 0, 1)
    assert report.infos[0].message == "All policies valid"


def test_empty_policy_set() -> None:
    report = validate(PolicySet())
    assert report.is_valid
    assert [issue.message for issue in report.issues] == ["No policies defined"]


def test_allowlist_denylist_literal_conflict() -> None:
    report = validate(
        [
            AllowlistPolicy(field=AGENT, values=("agent-1", "agent-2")),
            RateLimitPolicy(max_requests=10, window_seconds=60),
            DenylistPolicy(field=AGENT, values=("agent-2",)),
        ]
    )
    assert not report.is_valid
    assert report.error_count == 1
    issue = report.errors[0]
    assert issue.policy_indices == (0, 2)
    assert "agent-2" in (issue.suggestion or "")
    assert issue.suggestion.startswith("reorder or remove overlapping denylist/allowlist entries")


def test_wildcard_overlaps_literal() -> None:
    report = validate(
        [
            AllowlistPolicy(field=AGENT, values=("a*",)),
            DenylistPolicy(field=AGENT, values=("abc",)),
        ]
    )
    assert report.error_count == 1
    assert report.errors[0].policy_indices == (0, 1)


def test_denylist_before_allowlist_still_conflicts() -> None:
    report = validate(
        [
            DenylistPolicy(field=AGENT, values=("x",)),
            AllowlistPolicy(field=AGENT, values=("x",)),
        ]
    )
    assert report.error_count == 1
    assert report.errors[0].policy_indices == (0, 1)


def test_different_fields_do_not_conflict() -> None:
    report = validate(
        [
            AllowlistPolicy(field=AGENT, values=("same",)),
            DenylistPolicy(field=SubjectField.WALLET_ADDRESS, values=("same",)),
        ]
    )
    assert report.is_valid


def test_duplicate_rate_limits_warn() -> None:
    report = validate(
        [
            RateLimitPolicy(max_requests=10, window_seconds=60, scope=AGENT),
            RateLimitPolicy(max_requests=5, window_seconds=60, scope=AGENT),
            RateLimitPolicy(max_requests=5, window_seconds=60, scope=SubjectField.IP_ADDRESS),
        ]
    )
    assert report.is_valid
    assert report.warning_count == 1
    assert report.warnings[0].policy_indices == (0, 1)


def test_duplicate_spending_caps_warn() -> None:
    report = validate(
        [
            SpendingCapPolicy(max_amount=Decimal("10"), currency="USDC", window_seconds=60),
            SpendingCapPolicy(max_amount=Decimal("20"), currency="USDC", window_seconds=60),
        ]
    )
    assert report.warning_count == 1
    assert "Duplicate spending_cap" in report.warnings[0].message


def test_unscoped_before_scoped_warns() -> None:
    report = validate(
        [
            RateLimitPolicy(max_requests=100, window_seconds=60),
            RateLimitPolicy(max_requests=5, window_seconds=60, scope=AGENT),
        ]
    )
    assert report.warning_count == 1
    assert "precedes scoped" in report.warnings[0].message
    assert report.warnings[0].policy_indices == (0, 1)


def test_scoped_before_unscoped_is_fine() -> None:
    report = validate(
        [
            RateLimitPolicy(max_requests=5, window_seconds=60, scope=AGENT),
            RateLimitPolicy(max_requests=100, window_seconds=60),
        ]
    )
    assert report.warning_count == 0


def test_malformed_wildcard_is_error() -> None:
    report = validate([DenylistPolicy(field=AGENT, values=("ag*ent",))])
    assert report.error_count == 1
    assert report.errors[0].suggestion == "wildcards are only supported as a trailing suffix."
    assert report.errors[0].policy_indices == (0,)


def test_structural_errors() -> None:
    policy_set = parse(
        """
policies:
  - type: rate_limit
    max_requests: 0
    window_seconds: 0
  - type: spending_cap
    max_amount: -1
    currency: ""
    window_seconds: 60
  - type: allowlist
    field: agent_id
    values: []
"""
    )
    report = validate(policy_set)
    assert report.error_count == 5
    assert all(issue.severity is Severity.ERROR for issue in report.errors)
    assert {issue.policy_indices for issue in report.errors} == {(0,), (1,), (2,)}


def test_duplicate_values_are_info() -> None:
    report = validate([AllowlistPolicy(field=AGENT, values=("a", "a"))])
    assert report.is_valid
    assert any("duplicate" in issue.message for issue in report.infos)


def test_cap_finer_than_micro_units_is_error() -> None:
    report = validate([SpendingCapPolicy(max_amount=Decimal("1.0000005"), currency="USDC", window_seconds=60)])
    assert report.error_count == 1
    assert "decimal places" in report.errors[0].message
    assert validate([SpendingCapPolicy(max_amount=Decimal("1.000001"), currency="USDC", window_seconds=60)]).is_valid


def test_blank_audit_destination_is_error() -> None:
    policies = [RateLimitPolicy(max_requests=1, window_seconds=1)]
    assert not validate(PolicySet(policies=policies, audit={"destination": " "})).is_valid
    assert validate(PolicySet(policies=policies, audit={"destination": "audit.log"})).is_valid
