"""x402guard: request-level policy enforcement for payment-gated HTTP APIs."""

from .codegen import Framework, generate
from .engine import evaluate
from .exceptions import (
    CodegenError,
    EmptyPolicySet,
    MissingField,
    ParseError,
    PolicyDenied,
    PolicySyntaxError,
    UnknownPolicyType,
    UnsupportedFramework,
    UnsupportedRule,
)
from .guard import Guard
from .policy import PolicySet, dump_policy, load_policy, parse
from .state import LocalStateStore, RuntimeState, ShardedStateStore, StateStore
from .types import Decision, Outcome, Request, Severity, SubjectField, ValidationIssue, ValidationReport
from .validator import validate

__all__ = [
    "CodegenError",
    "Decision",
    "EmptyPolicySet",
    "Framework",
    "Guard",
    "LocalStateStore",
    "MissingField",
    "Outcome",
    "ParseError",
    "PolicyDenied",
    "PolicySet",
    "PolicySyntaxError",
    "Request",
    "RuntimeState",
    "Severity",
    "ShardedStateStore",
    "StateStore",
    "SubjectField",
    "UnknownPolicyType",
    "UnsupportedFramework",
    "UnsupportedRule",
    "ValidationIssue",
    "ValidationReport",
    "dump_policy",
    "evaluate",
    "generate",
    "load_policy",
    "parse",
    "validate",
]
