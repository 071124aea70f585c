from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from ..models.config import RiskConfiguration, Settings
from ..modules.registration import WhoisTransport
from ..utils.browser import SessionFactory
from ..utils.cache import CacheBase
from ..utils.dns import DnsClient
from ..utils.http import HttpClient
from ..utils.rate_limit import ClientRateLimiter


@dataclass
class RunContext:
    settings: Settings
    risk_config: RiskConfiguration
    http_client: HttpClient
    dns_client: DnsClient
    whois_transport: WhoisTransport
    rate_limiter: ClientRateLimiter
    session_factory: Optional[SessionFactory]
    cache: CacheBase | None
    semaphore: asyncio.Semaphore = field(default_factory=lambda: asyncio.Semaphore(5))
