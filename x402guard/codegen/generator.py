"""Render policy sets as Express middleware or Fastify plugins."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence, Union

from jinja2 import Environment, PackageLoader, StrictUndefined

from ..amounts import AMOUNT_DECIMALS, AMOUNT_PATTERN, UNITS_PER_TOKEN, to_units
from ..attestation import policy_fingerprint
from ..exceptions import UnsupportedFramework, UnsupportedRule
from ..policy import (
    AllowlistPolicy,
    DenylistPolicy,
    PolicySet,
    RateLimitPolicy,
    SpendingCapPolicy,
)

logger = logging.getLogger(__name__)


class Framework(str, Enum):
    EXPRESS = "express"
    FASTIFY = "fastify"


_TEMPLATES = {
    Framework.EXPRESS: "express.js.j2",
    Framework.FASTIFY: "fastify.js.j2",
}

AUDIT_STREAMS = ("stdout", "stderr")


def _comment_safe(text: Any) -> str:
    return str(text).replace("*/", "*\\/")


def _environment() -> Environment:
    env = Environment(
        loader=PackageLoader("x402guard.codegen", "templates"),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["comment"] = _comment_safe
    env.filters["js"] = lambda value: json.dumps(value, indent=2, ensure_ascii=False)
    return env


_ENV = _environment()


def _list_rule(index: int, policy: Union[AllowlistPolicy, DenylistPolicy]) -> dict[str, Any]:
    return {
        "index": index,
        "kind": policy.kind,
        "field": policy.field.value,
        "exact": [value for value in policy.values if not value.endswith("*")],
        "prefixes": [value[:-1] for value in policy.values if value.endswith("*")],
    }


def _compile_rule(index: int, policy: object) -> dict[str, Any]:
    if isinstance(policy, (AllowlistPolicy, DenylistPolicy)):
        return _list_rule(index, policy)
    if isinstance(policy, RateLimitPolicy):
        return {
            "index": index,
            "kind": policy.kind,
            "maxRequests": policy.max_requests,
            "windowMs": policy.window_seconds * 1000,
            "scope": policy.scope.value if policy.scope else None,
        }
    if isinstance(policy, SpendingCapPolicy):
        try:
            max_units = to_units(policy.max_amount)
        except ValueError:
            raise UnsupportedRule(
                message=f"Policy #{index}: max_amount {policy.max_amount} is not a whole number of micro-units",
                details={"index": index},
            ) from None
        return {
            "index": index,
            "kind": policy.kind,
            # string so the generated code can read it as a BigInt
            "maxUnits": str(max_units),
            "currency": policy.currency,
            "windowMs": policy.window_seconds * 1000,
            "scope": policy.scope.value if policy.scope else None,
        }
    raise UnsupportedRule(
        message=f"Policy #{index} ({type(policy).__name__}) has no code generation mapping",
        details={"index": index},
    )


def _summary(policy: object) -> str:
    text = policy.describe()  # type: ignore[attr-defined]
    if isinstance(policy, (AllowlistPolicy, DenylistPolicy)):
        text = f"{text}: {', '.join(policy.values)}"
    return text


def resolve_framework(framework: Union[Framework, str]) -> Framework:
    try:
        resolved = Framework(str(getattr(framework, "value", framework)).lower())
    except ValueError:
        raise UnsupportedFramework(
            message=f"Unsupported framework: {framework!r}. Supported: {', '.join(f.value for f in Framework)}",
        ) from None
    if resolved not in _TEMPLATES:
        raise UnsupportedFramework(message=f"No generator for framework {resolved.value}")
    return resolved


def generate(
    policies: Union[PolicySet, Sequence[object]],
    framework: Union[Framework, str],
    *,
    source_name: str = "policy.yaml",
    generated_at: Optional[datetime] = None,
) -> str:
    """Render enforcement code equivalent to :func:`x402guard.engine.evaluate`.

    Output is byte-identical for identical inputs unless ``generated_at`` is
    given, in which case only the header comment carries the timestamp.
    """

    target = resolve_framework(framework)
    if not isinstance(policies, PolicySet):
        policies = PolicySet.model_construct(policies=list(policies))
    rules = [_compile_rule(index, policy) for index, policy in enumerate(policies.policies)]
    pricing = policies.pricing
    context = {
        "framework": target.value,
        "source_name": source_name,
        "fingerprint": policy_fingerprint(policies),
        "generated_at": generated_at.isoformat() if generated_at else None,
        "summaries": [_summary(policy) for policy in policies.policies],
        "rules": rules,
        "pricing": {
            "amount": str(pricing.amount),
            "currency": pricing.currency,
            "memoPrefix": pricing.memo_prefix,
        },
        "audit": policies.audit,
        "headers": {
            "agentId": policies.headers.agent_id.lower(),
            "walletAddress": policies.headers.wallet_address.lower(),
            "amount": policies.headers.amount.lower(),
        },
        "trust_forwarded_for": policies.headers.trust_forwarded_for,
        "units_per_token": UNITS_PER_TOKEN,
        "amount_decimals": AMOUNT_DECIMALS,
        "amount_pattern": f"^(?:{AMOUNT_PATTERN.pattern})$",
        "audit_stream": policies.audit.destination if policies.audit.destination in AUDIT_STREAMS else None,
    }
    logger.debug("Generating %s code for %d policies", target.value, len(rules))
    return _ENV.get_template(_TEMPLATES[target]).render(**context)
