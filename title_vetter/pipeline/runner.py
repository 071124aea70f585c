from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, Tuple
from uuid import uuid4

from .. import __version__
from ..errors import InternalError, VettingError
from ..models.config import RiskConfiguration, Settings, StageResult
from ..models.results import SocialCrawlResult, SocialProfile, VettingReport, WebsiteSignals
from ..modules import registration, risk, social, website
from ..pipeline.context import RunContext
from ..utils.browser import SessionFactory, playwright_session
from ..utils.cache import build_cache
from ..utils.dns import DnsClient
from ..utils.http import HttpClient
from ..utils.normalize import registrable_domain, validate_target
from ..utils.rate_limit import AsyncRateLimiter, ClientRateLimiter

logger = logging.getLogger(__name__)

_UNSET: Any = object()


async def _wrap_stage(name: str, coro: Awaitable, fallback) -> Tuple[Any, StageResult]:
    started = datetime.now(timezone.utc)
    warnings: list[str] = []
    errors: list[str] = []
    try:
        data = await coro
        status = "ok"
        warnings = list(getattr(data, "warnings", []) or [])
    except Exception as exc:
        logger.warning("stage failed", extra={"stage": name, "error": str(exc)})
        status = "error"
        errors = [str(exc)]
        data = fallback()
    finished = datetime.now(timezone.utc)
    return data, StageResult(
        stage=name,
        status=status,
        warnings=warnings,
        errors=errors,
        started_at=started,
        finished_at=finished,
    )


def _empty_social() -> SocialCrawlResult:
    return social.summarize([SocialProfile(platform=rule.name) for rule in social.PLATFORMS])


def build_context(
    settings: Settings,
    risk_config: Optional[RiskConfiguration] = None,
    session_factory: Optional[SessionFactory] = _UNSET,
) -> RunContext:
    """Construct the process-wide collaborators; an invalid risk config fails here."""
    config = risk_config or risk.load_risk_config(settings.risk_config_path)
    limiter = AsyncRateLimiter(settings.outbound_requests_per_minute)
    http = HttpClient(
        timeout_seconds=settings.http_timeout_seconds,
        retries=settings.retries,
        rate_limiter=limiter,
    )
    return RunContext(
        settings=settings,
        risk_config=config,
        http_client=http,
        dns_client=DnsClient(timeout_seconds=settings.http_timeout_seconds),
        whois_transport=registration.WhoisTransport(),
        rate_limiter=ClientRateLimiter(settings.api_rate_limit, settings.rate_limit_window_seconds),
        session_factory=playwright_session if session_factory is _UNSET else session_factory,
        cache=build_cache(
            settings.cache_mode.value,
            settings.cache_path,
            settings.cache_ttl_seconds,
            settings.cache_max_entries,
        ),
        semaphore=asyncio.Semaphore(settings.max_concurrent_requests),
    )


class VettingPipeline:
    def __init__(self, context: RunContext) -> None:
        self.context = context

    async def close(self) -> None:
        await self.context.http_client.close()

    async def _social_stage(self, domain: str, organization: Optional[str]) -> SocialCrawlResult:
        ctx = self.context
        if not ctx.settings.check_social_media or ctx.session_factory is None:
            return _empty_social()
        crawler = social.SocialCrawler(
            ctx.http_client,
            ctx.session_factory,
            timeout_ms=ctx.settings.browser_timeout_ms,
            screenshot_dir=ctx.settings.screenshot_dir,
        )
        return await crawler.run(domain, organization)

    async def vet(
        self,
        url: str,
        client_ip: Optional[str] = None,
        organization: Optional[str] = None,
    ) -> Tuple[VettingReport, bool]:
        """Vet one domain. Returns the report and whether it came from the cache."""
        ctx = self.context
        host = validate_target(url)
        domain = registrable_domain(host)
        ctx.rate_limiter.check(client_ip or "anonymous")

        if ctx.cache is not None:
            cached = ctx.cache.get(domain)
            if cached is not None:
                logger.info("cache hit", extra={"domain": domain})
                return VettingReport.model_validate(cached), True

        started = datetime.now(timezone.utc)
        async with ctx.semaphore:
            whois_task = asyncio.create_task(
                registration.run(domain, ctx.whois_transport, ctx.settings.whois_timeout_seconds)
            )
            collectors = (
                asyncio.create_task(
                    _wrap_stage(
                        "website",
                        website.run(
                            host,
                            ctx.http_client,
                            ctx.dns_client,
                            follow_contact_pages=ctx.settings.follow_contact_pages,
                            tls_timeout=ctx.settings.http_timeout_seconds,
                        ),
                        WebsiteSignals,
                    )
                ),
                asyncio.create_task(
                    _wrap_stage("social_media", self._social_stage(domain, organization), _empty_social)
                ),
            )
            try:
                whois_outcome = await whois_task
            except BaseException:
                # a failed lookup fails the request; stop the crawls and browsers now
                for task in collectors:
                    task.cancel()
                await asyncio.gather(*collectors, return_exceptions=True)
                raise
            (website_signals, website_stage), (social_result, social_stage) = await asyncio.gather(*collectors)

        whois_stage = StageResult(
            stage="whois",
            status="ok",
            warnings=whois_outcome.metadata.warnings,
            errors=whois_outcome.metadata.errors,
            started_at=started,
            finished_at=datetime.now(timezone.utc),
        )

        context = risk.build_context(whois_outcome, website_signals, social_result)
        assessment = risk.assess_risk(context, ctx.risk_config)
        report = VettingReport(
            domain=domain,
            whois=whois_outcome,
            website=website_signals,
            social_media=social_result,
            risk_assessment=assessment,
            stages=[whois_stage, website_stage, social_stage],
        )
        if ctx.cache is not None:
            ctx.cache.set(domain, report.model_dump(mode="json"))
        logger.info(
            "vetting complete",
            extra={"domain": domain, "risk_level": assessment.risk_level, "score": assessment.overall_score},
        )
        return report, False

    async def handle(
        self,
        url: str,
        client_ip: Optional[str] = None,
        organization: Optional[str] = None,
    ) -> dict:
        """Run a vetting request and map the outcome onto the response envelope."""
        request_id = str(uuid4())
        try:
            report, cached = await self.vet(url, client_ip, organization)
        except VettingError as exc:
            logger.warning("vetting failed", extra={"url": url, "error": exc.message, "type": exc.error_type})
            return exc.to_dict(request_id)
        except Exception as exc:
            logger.exception("unexpected vetting failure", extra={"url": url})
            detail = str(exc) if self.context.settings.is_development else "An unexpected error occurred"
            return InternalError(detail).to_dict(request_id)
        return {
            "success": True,
            "data": {
                "whois": report.whois.model_dump(mode="json"),
                "website": report.website.model_dump(mode="json"),
                "socialMedia": report.social_media.model_dump(mode="json"),
            },
            "riskAssessment": report.risk_assessment.model_dump(mode="json"),
            "stages": [s.model_dump(mode="json") for s in report.stages],
            "cached": cached,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "requestId": request_id,
        }


async def run_vetting(
    url: str,
    settings: Settings,
    client_ip: Optional[str] = None,
    organization: Optional[str] = None,
) -> dict:
    pipeline = VettingPipeline(build_context(settings))
    try:
        return await pipeline.handle(url, client_ip, organization)
    finally:
        await pipeline.close()


def run_vetting_sync(
    url: str,
    settings: Settings,
    client_ip: Optional[str] = None,
    organization: Optional[str] = None,
) -> dict:
    return asyncio.run(run_vetting(url, settings, client_ip, organization))
