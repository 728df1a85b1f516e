from decimal import Decimal

from x402guard.engine import RATE_LIMIT_EXCEEDED, SPENDING_CAP_EXCEEDED, evaluate
from x402guard.policy import AllowlistPolicy, DenylistPolicy, RateLimitPolicy, SpendingCapPolicy
from x402guard.state import LocalStateStore, state_key
from x402guard.types import Outcome, Request, SubjectField

AGENT = SubjectField.AGENT_ID
WALLET = SubjectField.WALLET_ADDRESS


def make_request(at: float = 0.0, **kwargs) -> Request:
    return Request(resource_path="/api/data", timestamp=at, **kwargs)


def test_allowlist_denies_absent_subject() -> None:
    policies = [AllowlistPolicy(field=AGENT, values=("agent-1",))]
    decision = evaluate(policies, make_request(agent_id="agent-2"), LocalStateStore())
    assert decision.outcome is Outcome.DENY
    assert decision.matched_rule_index == 0
    assert "not in allowlist" in (decision.reason or "")


def test_allowlist_presence_does_not_short_circuit() -> None:
    policies = [
        AllowlistPolicy(field=AGENT, values=("agent-*",)),
        DenylistPolicy(field=AGENT, values=("agent-evil",)),
    ]
    state = LocalStateStore()
    assert evaluate(policies, make_request(agent_id="agent-good"), state).allowed
    decision = evaluate(policies, make_request(agent_id="agent-evil"), state)
    assert not decision.allowed
    assert decision.matched_rule_index == 1


def test_denylist_wildcard() -> None:
    policies = [DenylistPolicy(field=WALLET, values=("0xBAD*",))]
    state = LocalStateStore()
    assert not evaluate(policies, make_request(wallet_address="0xBAD999"), state).allowed
    assert evaluate(policies, make_request(wallet_address="0xGOOD"), state).allowed


def test_default_allow() -> None:
    decision = evaluate([DenylistPolicy(field=AGENT, values=("x",))], make_request(agent_id="y"), LocalStateStore())
    assert decision.outcome is Outcome.ALLOW
    assert decision.matched_rule_index is None
    assert decision.reason is None


def test_missing_subject_does_not_fire() -> None:
    policies = [
        AllowlistPolicy(field=AGENT, values=("agent-1",)),
        RateLimitPolicy(max_requests=1, window_seconds=60, scope=WALLET),
    ]
    state = LocalStateStore()
    for _ in range(3):
        assert evaluate(policies, make_request(), state).allowed
    assert len(state) == 0


def test_rate_limit_sequence() -> None:
    policies = [RateLimitPolicy(max_requests=2, window_seconds=60, scope=AGENT)]
    state = LocalStateStore()
    outcomes = [evaluate(policies, make_request(at=t, agent_id="a"), state).outcome for t in (0, 5, 10)]
    assert outcomes == [Outcome.ALLOW, Outcome.ALLOW, Outcome.DENY]
    denied = evaluate(policies, make_request(at=11, agent_id="a"), state)
    assert denied.reason == RATE_LIMIT_EXCEEDED


def test_rate_limit_recovers_after_window() -> None:
    policies = [RateLimitPolicy(max_requests=3, window_seconds=10, scope=AGENT)]
    state = LocalStateStore()
    for t in (0.0, 1.0, 2.0):
        assert evaluate(policies, make_request(at=t, agent_id="a"), state).allowed
    assert not evaluate(policies, make_request(at=9.9, agent_id="a"), state).allowed
    # the request at t=0 is exactly one window old at t=10 and no longer counts
    assert evaluate(policies, make_request(at=10.0, agent_id="a"), state).allowed


def test_rate_limit_subjects_are_independent() -> None:
    policies = [RateLimitPolicy(max_requests=1, window_seconds=60, scope=AGENT)]
    state = LocalStateStore()
    assert evaluate(policies, make_request(agent_id="a"), state).allowed
    assert evaluate(policies, make_request(agent_id="b"), state).allowed
    assert not evaluate(policies, make_request(agent_id="a"), state).allowed


def test_unscoped_rate_limit_is_global() -> None:
    policies = [RateLimitPolicy(max_requests=2, window_seconds=60)]
    state = LocalStateStore()
    assert evaluate(policies, make_request(agent_id="a"), state).allowed
    assert evaluate(policies, make_request(agent_id="b"), state).allowed
    assert not evaluate(policies, make_request(agent_id="c"), state).allowed


def test_spending_cap_sequence() -> None:
    policies = [SpendingCapPolicy(max_amount=Decimal("10.0"), currency="USDC", window_seconds=3600)]
    state = LocalStateStore()
    amounts = [Decimal("4.0"), Decimal("4.0"), Decimal("3.0")]
    outcomes = [
        evaluate(policies, make_request(at=i, wallet_address="0xabc", amount=amount), state).outcome
        for i, amount in enumerate(amounts)
    ]
    assert outcomes == [Outcome.ALLOW, Outcome.ALLOW, Outcome.DENY]
    accumulator = state.get_or_create(state_key(0, "*"), lambda: None)
    assert accumulator.total == Decimal("8.0")


def test_spending_cap_exact_boundary() -> None:
    policies = [SpendingCapPolicy(max_amount=Decimal("0.3"), currency="USDC", window_seconds=60, scope=WALLET)]
    state = LocalStateStore()
    for amount in ("0.1", "0.1", "0.1"):
        assert evaluate(policies, make_request(wallet_address="w", amount=Decimal(amount)), state).allowed
    decision = evaluate(policies, make_request(wallet_address="w", amount=Decimal("0.01")), state)
    assert decision.reason == SPENDING_CAP_EXCEEDED


def test_spending_cap_resets_lazily() -> None:
    policies = [SpendingCapPolicy(max_amount=Decimal("5"), currency="USDC", window_seconds=100, scope=WALLET)]
    state = LocalStateStore()
    assert evaluate(policies, make_request(at=0, wallet_address="w", amount=Decimal("5")), state).allowed
    assert not evaluate(policies, make_request(at=50, wallet_address="w", amount=Decimal("1")), state).allowed
    assert evaluate(policies, make_request(at=100, wallet_address="w", amount=Decimal("5")), state).allowed


def test_spending_cap_without_amount_does_not_fire() -> None:
    policies = [SpendingCapPolicy(max_amount=Decimal("1"), currency="USDC", window_seconds=60)]
    state = LocalStateStore()
    assert evaluate(policies, make_request(), state).allowed
    assert evaluate(policies, make_request(amount=Decimal("NaN")), state).allowed
    assert evaluate(policies, make_request(amount=Decimal("-4")), state).allowed
    assert len(state) == 0


def test_float_amount_is_accepted() -> None:
    policies = [SpendingCapPolicy(max_amount=Decimal("1"), currency="USDC", window_seconds=60)]
    state = LocalStateStore()
    assert evaluate(policies, make_request(amount=0.6), state).allowed
    assert not evaluate(policies, make_request(amount=0.6), state).allowed


def test_attempts_count_even_when_later_rule_denies() -> None:
    policies = [
        RateLimitPolicy(max_requests=2, window_seconds=60, scope=AGENT),
        SpendingCapPolicy(max_amount=Decimal("1"), currency="USDC", window_seconds=60, scope=AGENT),
        DenylistPolicy(field=AGENT, values=("blocked",)),
    ]
    state = LocalStateStore()
    first = evaluate(policies, make_request(agent_id="blocked", amount=Decimal("0.5")), state)
    assert first.matched_rule_index == 2
    window = state.get_or_create(state_key(0, "blocked"), lambda: None)
    accumulator = state.get_or_create(state_key(1, "blocked"), lambda: None)
    assert len(window.timestamps) == 1
    assert accumulator.total == Decimal("0.5")


def test_policies_never_share_state() -> None:
    policies = [
        RateLimitPolicy(max_requests=1, window_seconds=60, scope=AGENT),
        RateLimitPolicy(max_requests=5, window_seconds=60, scope=AGENT),
    ]
    state = LocalStateStore()
    evaluate(policies, make_request(agent_id="a"), state)
    assert len(state) == 2


def test_unknown_policy_objects_are_skipped() -> None:
    decision = evaluate([object()], make_request(agent_id="a"), LocalStateStore())
    assert decision.allowed
