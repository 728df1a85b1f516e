"""Host-process guard binding a policy set to state, a clock and audit logging."""

from __future__ import annotations

import inspect
import math
import threading
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Mapping, Optional

from .attestation import policy_fingerprint
from .audit import AuditLogger
from .engine import evaluate, subject_for
from .exceptions import PolicyDenied
from .identity import SubjectExtractor
from .policy import PolicySet, RateLimitPolicy, SpendingCapPolicy
from .state import RateLimitWindow, ShardedStateStore, StateStore, state_key
from .types import Decision, Metrics, Request

GuardedHandler = Callable[..., Awaitable[Any]]

REQUEST_KWARG = "_x402_request"


class Guard:
    """Main enforcement object used by HTTP integrations."""

    def __init__(
        self,
        policy_set: PolicySet,
        *,
        state: StateStore | None = None,
        time_func: Callable[[], float] | None = None,
    ) -> None:
        self.policy_set = policy_set
        self.state = state if state is not None else ShardedStateStore()
        self._time = time_func or time.time
        self.fingerprint = policy_fingerprint(policy_set)
        self.extractor = SubjectExtractor(policy_set.headers)
        self.audit = AuditLogger(policy_set.logging, self.fingerprint)
        self.metrics = Metrics()
        self._metrics_lock = threading.Lock()

    def now(self) -> float:
        return self._time()

    def request_from_headers(
        self,
        headers: Mapping[str, str] | None,
        *,
        path: str,
        client_host: Optional[str] = None,
    ) -> Request:
        return self.extractor.build(headers, path=path, timestamp=self.now(), client_host=client_host)

    def check(self, request: Request) -> Decision:
        started = time.perf_counter()
        decision = evaluate(self.policy_set, request, self.state)
        latency_ms = (time.perf_counter() - started) * 1000
        with self._metrics_lock:
            if decision.allowed:
                self.metrics.allowed += 1
            else:
                self.metrics.denied += 1
        self.audit.log(request, decision, latency_ms=round(latency_ms, 3))
        return decision

    def record_error(self) -> None:
        with self._metrics_lock:
            self.metrics.errors += 1

    def status_for(self, decision: Decision) -> int:
        """HTTP status a collaborator should use for ``decision``."""

        if decision.allowed:
            return 200
        policy = self.policy_set.policies[decision.matched_rule_index or 0]
        if isinstance(policy, RateLimitPolicy):
            return 429
        if isinstance(policy, SpendingCapPolicy):
            return 402
        return 403

    def retry_after(self, request: Request, decision: Decision) -> Optional[int]:
        """Seconds until a rate-limited subject has room again."""

        if decision.allowed or decision.matched_rule_index is None:
            return None
        index = decision.matched_rule_index
        policy = self.policy_set.policies[index]
        if not isinstance(policy, RateLimitPolicy):
            return None
        subject = subject_for(policy.scope, request)
        if subject is None:
            return None
        seconds = self.state.mutate(
            state_key(index, subject),
            lambda: RateLimitWindow(subject_key=subject),
            lambda window: window.retry_after(request.timestamp, policy.window_seconds),
        )
        return max(1, math.ceil(seconds))

    def enforce(self, request: Request) -> Decision:
        decision = self.check(request)
        if not decision.allowed:
            raise PolicyDenied(
                message=decision.reason or "Request denied",
                http_status=self.status_for(decision),
                details={"rule_index": decision.matched_rule_index, "path": request.resource_path},
            )
        return decision

    def protect(self, func: GuardedHandler | None = None):
        """Wrap an async handler so it only runs for allowed requests.

        The caller passes the engine request as the ``_x402_request`` keyword
        argument; it is removed before the handler is invoked.
        """

        def decorator(inner: GuardedHandler) -> GuardedHandler:
            if not inspect.iscoroutinefunction(inner):
                raise TypeError("Protected handler must be async")

            @wraps(inner)
            async def wrapper(*args: Any, **kwargs: Any) -> Any:
                request = kwargs.pop(REQUEST_KWARG, None)
                if request is None:
                    request = Request(resource_path=inner.__name__, timestamp=self.now())
                self.enforce(request)
                return await inner(*args, **kwargs)

            return wrapper

        if func is not None:
            return decorator(func)
        return decorator
