"""Policy document models, parsing and serialization for x402guard."""

from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import EmptyPolicySet, MissingField, PolicySyntaxError, UnknownPolicyType
from .types import SubjectField

logger = logging.getLogger(__name__)


def _to_decimal(value: Any) -> Any:
    # floats go through str() so 10.1 stays 10.1 instead of its binary expansion
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class _Rule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def kind(self) -> str:
        return self.type  # type: ignore[attr-defined]


class AllowlistPolicy(_Rule):
    type: Literal["allowlist"] = "allowlist"
    field: SubjectField
    values: tuple[str, ...]

    def describe(self) -> str:
        return f"allowlist on {self.field.value}"


class DenylistPolicy(_Rule):
    type: Literal["denylist"] = "denylist"
    field: SubjectField
    values: tuple[str, ...]

    def describe(self) -> str:
        return f"denylist on {self.field.value}"


class RateLimitPolicy(_Rule):
    type: Literal["rate_limit"] = "rate_limit"
    max_requests: int
    window_seconds: int
    scope: Optional[SubjectField] = None

    def describe(self) -> str:
        scope = self.scope.value if self.scope else "global"
        return f"rate_limit {self.max_requests}/{self.window_seconds}s ({scope})"


class SpendingCapPolicy(_Rule):
    type: Literal["spending_cap"] = "spending_cap"
    max_amount: Decimal
    currency: str
    window_seconds: int
    scope: Optional[SubjectField] = None

    @field_validator("max_amount", mode="before")
    @classmethod
    def coerce_amount(cls, value: Any) -> Any:
        return _to_decimal(value)

    def describe(self) -> str:
        scope = self.scope.value if self.scope else "global"
        return f"spending_cap {self.max_amount} {self.currency}/{self.window_seconds}s ({scope})"


Policy = Annotated[
    Union[AllowlistPolicy, DenylistPolicy, RateLimitPolicy, SpendingCapPolicy],
    Field(discriminator="type"),
]

POLICY_TYPES: dict[str, type[_Rule]] = {
    "allowlist": AllowlistPolicy,
    "denylist": DenylistPolicy,
    "rate_limit": RateLimitPolicy,
    "spending_cap": SpendingCapPolicy,
}


class PricingSettings(BaseModel):
    amount: Decimal = Decimal("0.01")
    currency: str = "USDC"
    memo_prefix: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, value: Any) -> Any:
        return _to_decimal(value)


class AuditSettings(BaseModel):
    enabled: bool = True
    format: Literal["json", "csv"] = "json"
    # stdout, stderr or a file path
    destination: str = "stdout"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    output: Literal["stderr", "file"] = "stderr"
    file_path: str = "x402guard.log"
    rotate_bytes: int = 10_485_760


class HeaderSettings(BaseModel):
    agent_id: str = "x-agent-id"
    wallet_address: str = "x-wallet-address"
    amount: str = "x-payment-amount"
    trust_forwarded_for: bool = False


class PolicySet(BaseModel):
    """Ordered policies plus the settings that travel with them."""

    policies: list[Policy] = Field(default_factory=list)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    headers: HeaderSettings = Field(default_factory=HeaderSettings)


_SETTINGS_KEYS = ("pricing", "audit", "logging", "headers")


def _check_list_values(index: int, kind: str, entry: dict[str, Any]) -> None:
    values = entry.get("values")
    if kind not in ("allowlist", "denylist") or not isinstance(values, list):
        return
    for value in values:
        if isinstance(value, (bool, int, float)):
            raise PolicySyntaxError(
                message=(
                    f"Invalid {kind} policy #{index}: value {value!r} was read as {type(value).__name__}; "
                    "values must be strings, so quote entries like wallet addresses (e.g. \"0xBAD123\")"
                ),
                details={"index": index, "value": value},
            )


def _parse_rule(index: int, entry: Any) -> _Rule:
    if not isinstance(entry, dict):
        raise PolicySyntaxError(message=f"Policy #{index} must be a mapping, got {type(entry).__name__}")
    if "type" not in entry:
        raise MissingField(message=f"Missing required field 'type' in policy #{index}", field="type")
    kind = entry["type"]
    model = POLICY_TYPES.get(kind) if isinstance(kind, str) else None
    if model is None:
        raise UnknownPolicyType(
            message=(
                f"Unknown policy type: {kind!r} in policy #{index}. "
                f"Valid types are: {', '.join(POLICY_TYPES)}"
            ),
            details={"index": index, "type": kind},
        )
    _check_list_values(index, kind, entry)
    try:
        return model.model_validate(entry)
    except ValidationError as exc:
        for error in exc.errors():
            if error["type"] == "missing":
                name = str(error["loc"][0])
                raise MissingField(
                    message=f"Missing required field '{name}' in {kind} policy #{index}",
                    field=name,
                    details={"index": index},
                ) from exc
        raise PolicySyntaxError(message=f"Invalid {kind} policy #{index}: {exc}", details={"index": index}) from exc


def parse(document: str) -> PolicySet:
    """Parse a YAML policy document into a :class:`PolicySet`."""

    try:
        data = yaml.safe_load(document)
    except yaml.YAMLError as exc:
        raise PolicySyntaxError(message=f"Failed to parse policy YAML: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PolicySyntaxError(message="Policy document must be a mapping with a 'policies' list")

    entries = data.get("policies")
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise PolicySyntaxError(message="'policies' must be a list")
    if not entries:
        raise EmptyPolicySet(message="Policy file must contain at least one policy")

    policies = [_parse_rule(index, entry) for index, entry in enumerate(entries)]
    settings = {key: data[key] for key in _SETTINGS_KEYS if data.get(key) is not None}
    try:
        policy_set = PolicySet(policies=policies, **settings)
    except ValidationError as exc:
        raise PolicySyntaxError(message=f"Invalid policy settings: {exc}") from exc
    logger.debug("Parsed %d policies", len(policy_set.policies))
    return policy_set


def load_policy(path: str | Path) -> PolicySet:
    """Load a policy set from a YAML file."""

    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise PolicySyntaxError(message=f"Failed to read policy: {exc}") from exc
    return parse(raw)


def dump_policy(policy_set: PolicySet) -> str:
    """Serialize a policy set back to YAML; :func:`parse` reads it back unchanged."""

    return yaml.safe_dump(policy_set.model_dump(mode="json"), sort_keys=False)
