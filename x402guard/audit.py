"""Structured audit logging of enforcement decisions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from .policy import LoggingSettings
from .types import Decision, Request


class AuditLogger:
    """Writes one JSON line per decision."""

    def __init__(self, settings: LoggingSettings, policy_fingerprint: str) -> None:
        self.logger = logging.getLogger("x402guard.audit")
        if not self.logger.handlers:
            handler: logging.Handler
            if settings.output == "file":
                handler = RotatingFileHandler(
                    settings.file_path,
                    maxBytes=settings.rotate_bytes,
                    backupCount=3,
                )
            else:
                handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)
        self.logger.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
        self.policy_fingerprint = policy_fingerprint

    def log(self, request: Request, decision: Decision, *, latency_ms: Optional[float] = None) -> None:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "agent_id": request.agent_id,
            "wallet_address": request.wallet_address,
            "ip_address": request.ip_address,
            "resource": request.resource_path,
            "amount": None if request.amount is None else str(request.amount),
            "decision": decision.outcome.value,
            "rule_index": decision.matched_rule_index,
            "reason": decision.reason,
            "latency_ms": latency_ms,
            "policy_fingerprint": self.policy_fingerprint,
        }
        self.logger.info(json.dumps(payload))
