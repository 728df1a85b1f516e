"""Builds engine requests from inbound HTTP metadata."""

from __future__ import annotations

from typing import Mapping, Optional

from .amounts import HEADER_WHITESPACE, parse_amount
from .policy import HeaderSettings
from .types import Request


class SubjectExtractor:
    """Maps configured headers and the peer address onto a :class:`Request`."""

    def __init__(self, settings: HeaderSettings) -> None:
        self.settings = settings

    def _client_ip(self, headers: Mapping[str, str], client_host: Optional[str]) -> Optional[str]:
        if self.settings.trust_forwarded_for:
            forwarded = headers.get("x-forwarded-for", "")
            first = forwarded.split(",")[0].strip(HEADER_WHITESPACE)
            if first:
                return first
        return client_host

    def build(
        self,
        headers: Mapping[str, str] | None,
        *,
        path: str,
        timestamp: float,
        client_host: Optional[str] = None,
    ) -> Request:
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        return Request(
            resource_path=path,
            timestamp=timestamp,
            agent_id=headers.get(self.settings.agent_id.lower()) or None,
            wallet_address=headers.get(self.settings.wallet_address.lower()) or None,
            ip_address=self._client_ip(headers, client_host),
            amount=parse_amount(headers.get(self.settings.amount.lower())),
        )
