"""Shared data structures for x402guard."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class SubjectField(str, Enum):
    """Request attribute a policy keys on."""

    AGENT_ID = "agent_id"
    WALLET_ADDRESS = "wallet_address"
    IP_ADDRESS = "ip_address"


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(slots=True)
class Request:
    """A single inbound call as seen by the engine."""

    resource_path: str
    timestamp: float
    agent_id: Optional[str] = None
    wallet_address: Optional[str] = None
    ip_address: Optional[str] = None
    amount: Optional[Decimal] = None

    def subject(self, subject_field: SubjectField) -> Optional[str]:
        return getattr(self, SubjectField(subject_field).value)


@dataclass(frozen=True, slots=True)
class Decision:
    """Result of evaluating a request against a policy set."""

    outcome: Outcome
    matched_rule_index: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(outcome=Outcome.ALLOW)

    @classmethod
    def deny(cls, index: int, reason: str) -> "Decision":
        return cls(outcome=Outcome.DENY, matched_rule_index=index, reason=reason)

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW


@dataclass(slots=True)
class ValidationIssue:
    """A single finding produced by the validator."""

    severity: Severity
    message: str
    suggestion: Optional[str] = None
    policy_indices: tuple[int, ...] = ()
    details: Optional[str] = None


@dataclass(slots=True)
class ValidationReport:
    """Aggregated validator output."""

    issues: list[ValidationIssue] = field(default_factory=list)

    def add(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)

    def _of(self, severity: Severity) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity is severity]

    @property
    def errors(self) -> list[ValidationIssue]:
        return self._of(Severity.ERROR)

    @property
    def warnings(self) -> list[ValidationIssue]:
        return self._of(Severity.WARNING)

    @property
    def infos(self) -> list[ValidationIssue]:
        return self._of(Severity.INFO)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def info_count(self) -> int:
        return len(self.infos)

    @property
    def is_valid(self) -> bool:
        return self.error_count == 0

    def counts(self) -> tuple[int, int, int]:
        return self.error_count, self.warning_count, self.info_count


@dataclass(slots=True)
class Metrics:
    """Simple decision counters for the enforcement gateway."""

    allowed: int = 0
    denied: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "denied": self.denied, "errors": self.errors}
