"""Static analysis of a policy set: structural checks and cross-rule conflicts."""

from __future__ import annotations

from itertools import combinations
from typing import Sequence, Union

from .amounts import AMOUNT_DECIMALS, has_unit_precision
from .acl import is_malformed_wildcard, patterns_overlap
from .policy import (
    AllowlistPolicy,
    DenylistPolicy,
    PolicySet,
    RateLimitPolicy,
    SpendingCapPolicy,
)
from .types import Severity, ValidationIssue, ValidationReport

FIX_CONFIGURATION = "ensure all required fields are set with valid values"

ListPolicy = Union[AllowlistPolicy, DenylistPolicy]


def _error(message: str, indices: Sequence[int], suggestion: str | None = None, details: str | None = None) -> ValidationIssue:
    return ValidationIssue(Severity.ERROR, message, suggestion, tuple(indices), details)


def _warning(message: str, indices: Sequence[int], suggestion: str | None = None, details: str | None = None) -> ValidationIssue:
    return ValidationIssue(Severity.WARNING, message, suggestion, tuple(indices), details)


def _info(message: str, indices: Sequence[int] = (), details: str | None = None) -> ValidationIssue:
    return ValidationIssue(Severity.INFO, message, None, tuple(indices), details)


def _check_list(index: int, policy: ListPolicy, report: ValidationReport) -> None:
    if not policy.values:
        report.add(_error(f"Policy #{index}: {policy.kind} values cannot be empty", [index], FIX_CONFIGURATION))
    seen: set[str] = set()
    for value in policy.values:
        if not value:
            report.add(_error(f"Policy #{index}: {policy.kind} contains an empty value", [index], FIX_CONFIGURATION))
        if is_malformed_wildcard(value):
            report.add(
                _error(
                    f"Policy #{index}: malformed wildcard '{value}'",
                    [index],
                    "wildcards are only supported as a trailing suffix.",
                )
            )
        if value in seen:
            report.add(_info(f"Policy #{index}: duplicate {policy.kind} value '{value}'", [index]))
        seen.add(value)


def _check_rate_limit(index: int, policy: RateLimitPolicy, report: ValidationReport) -> None:
    if policy.max_requests <= 0:
        report.add(_error(f"Policy #{index}: max_requests must be greater than 0", [index], FIX_CONFIGURATION))
    if policy.window_seconds <= 0:
        report.add(_error(f"Policy #{index}: window_seconds must be greater than 0", [index], FIX_CONFIGURATION))


def _check_spending_cap(index: int, policy: SpendingCapPolicy, report: ValidationReport) -> None:
    if not policy.max_amount.is_finite() or policy.max_amount <= 0:
        report.add(_error(f"Policy #{index}: max_amount must be positive", [index], FIX_CONFIGURATION))
    elif not has_unit_precision(policy.max_amount):
        report.add(
            _error(
                f"Policy #{index}: max_amount {policy.max_amount} has more than {AMOUNT_DECIMALS} decimal places",
                [index],
                f"round max_amount to at most {AMOUNT_DECIMALS} decimal places.",
            )
        )
    if not policy.currency.strip():
        report.add(_error(f"Policy #{index}: currency cannot be empty", [index], FIX_CONFIGURATION))
    if policy.window_seconds <= 0:
        report.add(_error(f"Policy #{index}: window_seconds must be greater than 0", [index], FIX_CONFIGURATION))


def _overlapping_values(allow: ListPolicy, deny: ListPolicy) -> list[str]:
    overlaps: list[str] = []
    for allowed in allow.values:
        for denied in deny.values:
            if patterns_overlap(allowed, denied):
                label = allowed if allowed == denied else f"{allowed} ~ {denied}"
                if label not in overlaps:
                    overlaps.append(label)
    return overlaps


def _check_list_conflict(i: int, first: object, j: int, second: object, report: ValidationReport) -> None:
    if isinstance(first, AllowlistPolicy) and isinstance(second, DenylistPolicy):
        allow_index, allow, deny_index, deny = i, first, j, second
    elif isinstance(first, DenylistPolicy) and isinstance(second, AllowlistPolicy):
        allow_index, allow, deny_index, deny = j, second, i, first
    else:
        return
    if allow.field != deny.field:
        return
    overlaps = _overlapping_values(allow, deny)
    if not overlaps:
        return
    joined = ", ".join(overlaps)
    report.add(
        _error(
            f"CONFLICT: {allow.field.value} in both allowlist #{allow_index} and denylist #{deny_index}",
            sorted((allow_index, deny_index)),
            f"reorder or remove overlapping denylist/allowlist entries for value {joined}.",
            details=f"Conflicting values: {joined}",
        )
    )


def _check_stateful_pair(i: int, first: object, j: int, second: object, report: ValidationReport) -> None:
    if type(first) is not type(second) or not isinstance(first, (RateLimitPolicy, SpendingCapPolicy)):
        return
    kind = first.kind
    if first.scope == second.scope:
        scope = first.scope.value if first.scope else "global"
        report.add(
            _warning(
                f"Duplicate {kind} policies #{i} and #{j} share scope '{scope}'",
                [i, j],
                f"remove policy #{j} or merge it into policy #{i}; only the first one to deny takes effect.",
                details=f"#{i}: {first.describe()}\n#{j}: {second.describe()}",
            )
        )
    elif first.scope is None and second.scope is not None:
        report.add(
            _warning(
                f"Unscoped {kind} policy #{i} precedes scoped {kind} policy #{j}",
                [i, j],
                f"move policy #{j} before policy #{i}.",
                details=f"#{i}: {first.describe()}\n#{j}: {second.describe()}",
            )
        )


def validate(policies: Union[PolicySet, Sequence[object]]) -> ValidationReport:
    """Analyse ``policies`` and return a report; never raises."""

    rules = list(policies.policies if isinstance(policies, PolicySet) else policies)
    report = ValidationReport()
    if not rules:
        report.add(_info("No policies defined", details="Policy set contains no policy rules"))
        return report

    for index, policy in enumerate(rules):
        if isinstance(policy, (AllowlistPolicy, DenylistPolicy)):
            _check_list(index, policy, report)
        elif isinstance(policy, RateLimitPolicy):
            _check_rate_limit(index, policy, report)
        elif isinstance(policy, SpendingCapPolicy):
            _check_spending_cap(index, policy, report)
        else:
            report.add(_warning(f"Policy #{index}: unrecognised policy object {type(policy).__name__}", [index]))

    if isinstance(policies, PolicySet) and policies.audit.enabled and not policies.audit.destination.strip():
        report.add(_error("audit destination cannot be empty", [], "use stdout, stderr or a file path."))

    for (i, first), (j, second) in combinations(enumerate(rules), 2):
        _check_list_conflict(i, first, j, second, report)
        _check_stateful_pair(i, first, j, second, report)

    if not report.errors and not report.warnings:
        report.add(_info("All policies valid", details=f"Validated {len(rules)} policy rules with no conflicts"))
    return report
