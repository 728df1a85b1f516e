"""Ordered, fail-fast evaluation of a policy set against one request."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Iterable, Optional, Sequence, Union

from .acl import SubjectACL
from .policy import (
    AllowlistPolicy,
    DenylistPolicy,
    PolicySet,
    RateLimitPolicy,
    SpendingCapPolicy,
)
from .state import GLOBAL_SUBJECT, RateLimitWindow, SpendingAccumulator, StateStore, state_key
from .types import Decision, Request, SubjectField

RATE_LIMIT_EXCEEDED = "rate limit exceeded"
SPENDING_CAP_EXCEEDED = "spending cap exceeded"

Policies = Union[PolicySet, Sequence[object]]


@lru_cache(maxsize=256)
def _acl(values: tuple[str, ...]) -> SubjectACL:
    return SubjectACL(values)


def _rules(policies: Policies) -> Iterable[object]:
    if isinstance(policies, PolicySet):
        return policies.policies
    return policies


def subject_for(scope: Optional[SubjectField], request: Request) -> Optional[str]:
    if scope is None:
        return GLOBAL_SUBJECT
    return request.subject(scope)


def _amount(request: Request) -> Optional[Decimal]:
    value = request.amount
    if value is None:
        return None
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            return None
    if not value.is_finite() or value < 0:
        return None
    return value


def _check_allowlist(index: int, policy: AllowlistPolicy, request: Request) -> Optional[Decision]:
    value = request.subject(policy.field)
    if value is None or _acl(policy.values).matches(value):
        return None
    return Decision.deny(index, f"{policy.field.value} '{value}' is not in allowlist")


def _check_denylist(index: int, policy: DenylistPolicy, request: Request) -> Optional[Decision]:
    value = request.subject(policy.field)
    if value is None or not _acl(policy.values).matches(value):
        return None
    return Decision.deny(index, f"{policy.field.value} '{value}' is denylisted")


def _check_rate_limit(
    index: int, policy: RateLimitPolicy, request: Request, state: StateStore
) -> Optional[Decision]:
    subject = subject_for(policy.scope, request)
    if subject is None:
        return None
    admitted = state.mutate(
        state_key(index, subject),
        lambda: RateLimitWindow(subject_key=subject),
        lambda window: window.try_acquire(request.timestamp, policy.max_requests, policy.window_seconds),
    )
    if admitted:
        return None
    return Decision.deny(index, RATE_LIMIT_EXCEEDED)


def _check_spending_cap(
    index: int, policy: SpendingCapPolicy, request: Request, state: StateStore
) -> Optional[Decision]:
    subject = subject_for(policy.scope, request)
    amount = _amount(request)
    if subject is None or amount is None:
        return None
    now = request.timestamp
    admitted = state.mutate(
        state_key(index, subject),
        lambda: SpendingAccumulator(subject_key=subject, window_start=now),
        lambda acc: acc.try_spend(now, amount, policy.max_amount, policy.window_seconds),
    )
    if admitted:
        return None
    return Decision.deny(index, SPENDING_CAP_EXCEEDED)


def evaluate(policies: Policies, request: Request, state: StateStore) -> Decision:
    """Walk ``policies`` in order and return the first denial, else allow.

    Allowlists and denylists only ever deny. Rate limits and spending caps
    record the attempt as they are visited, so a request admitted by a limit
    still counts against it when a later policy denies. A policy whose subject
    field is missing from the request does not fire.
    """

    for index, policy in enumerate(_rules(policies)):
        if isinstance(policy, AllowlistPolicy):
            decision = _check_allowlist(index, policy, request)
        elif isinstance(policy, DenylistPolicy):
            decision = _check_denylist(index, policy, request)
        elif isinstance(policy, RateLimitPolicy):
            decision = _check_rate_limit(index, policy, request, state)
        elif isinstance(policy, SpendingCapPolicy):
            decision = _check_spending_cap(index, policy, request, state)
        else:
            decision = None
        if decision is not None:
            return decision
    return Decision.allow()
