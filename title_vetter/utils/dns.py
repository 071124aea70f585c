from __future__ import annotations

import logging
from typing import List

import dns.asyncresolver

logger = logging.getLogger(__name__)


class DnsClient:
    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds

    async def resolve_records(self, domain: str, record_type: str) -> List[str]:
        try:
            answers = await dns.asyncresolver.resolve(domain, record_type, lifetime=self.timeout_seconds)
            return [r.to_text() for r in answers]
        except Exception as exc:  # pragma: no cover - network
            logger.debug("dns lookup failed", extra={"domain": domain, "type": record_type, "error": str(exc)})
            return []

    async def has_address(self, domain: str) -> bool:
        return bool(await self.resolve_records(domain, "A"))
