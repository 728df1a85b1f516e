"""Policy fingerprinting."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from .policy import PolicySet


def hash_payload(payload: Any, alg: str = "sha256") -> str:
    """Hash a JSON-serializable payload using the provided algorithm."""

    serialized = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    try:
        hasher = hashlib.new(alg)
    except ValueError as exc:
        raise ValueError(f"Unsupported hash algorithm: {alg}") from exc
    hasher.update(serialized)
    return hasher.hexdigest()


def policy_fingerprint(policy_set: PolicySet, length: int = 12) -> str:
    """Short stable digest of the enforced rules and the settings that shape them."""

    payload = policy_set.model_dump(mode="json", exclude={"logging"})
    return hash_payload(payload)[:length]
