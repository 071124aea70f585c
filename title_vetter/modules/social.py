from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar
from urllib.parse import parse_qs, quote_plus, urlparse

from ..models.results import SocialCrawlResult, SocialProfile
from ..utils.browser import BrowserSession, SessionFactory, random_fingerprint, save_screenshot
from ..utils.http import HttpClient
from ..utils.normalize import domain_label

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESULT_SELECTORS = ("div[data-sokoban-container]", "#search", ".g", "[data-ved]")
MAX_CANDIDATES = 5
MAX_PROBES = 3

BOT_ERROR_KEYWORDS = (
    "timeout",
    "connection",
    "network",
    "captcha",
    "blocked",
    "access denied",
    "forbidden",
    "too many requests",
    "rate limit",
    "suspicious",
    "automation detected",
)

INSTAGRAM_RESERVED = {
    "reel", "p", "tv", "stories", "direct", "reels", "explore", "accounts",
    "about", "support", "press", "api", "privacy", "terms", "help",
}
INSTAGRAM_USERNAME_RE = re.compile(r"^[a-zA-Z0-9._]+$")


class BotChallengeError(RuntimeError):
    pass


@dataclass(frozen=True)
class PlatformRule:
    name: str
    query_label: str
    link_selector: str
    hosts: frozenset
    canonical_host: str
    rejected_segments: frozenset = field(default_factory=frozenset)
    required_prefixes: tuple = ()


PLATFORMS = (
    PlatformRule(
        name="linkedin",
        query_label="linkedin",
        link_selector='a[href*="linkedin.com/company"], a[href*="linkedin.com/in"]',
        hosts=frozenset({"linkedin.com", "www.linkedin.com"}),
        canonical_host="www.linkedin.com",
        required_prefixes=("company", "in"),
    ),
    PlatformRule(
        name="facebook",
        query_label="facebook",
        link_selector='a[href*="facebook.com"]',
        hosts=frozenset({"facebook.com", "www.facebook.com", "m.facebook.com"}),
        canonical_host="www.facebook.com",
        rejected_segments=frozenset({"login", "login.php", "sharer", "share", "dialog", "watch", "groups", "events"}),
    ),
    PlatformRule(
        name="x",
        query_label="twitter",
        link_selector='a[href*="twitter.com"], a[href*="x.com"]',
        hosts=frozenset({"twitter.com", "www.twitter.com", "x.com", "www.x.com"}),
        canonical_host="x.com",
        rejected_segments=frozenset({"login", "signup", "search", "i", "intent", "hashtag", "share", "home"}),
    ),
    PlatformRule(
        name="instagram",
        query_label="instagram",
        link_selector='a[href*="instagram.com"]',
        hosts=frozenset({"instagram.com", "www.instagram.com"}),
        canonical_host="www.instagram.com",
        rejected_segments=frozenset(INSTAGRAM_RESERVED),
    ),
)


def search_terms(domain: str, organization: Optional[str] = None) -> list[str]:
    """Domain token alone and paired with "title"; organization name first when given."""
    base = domain_label(domain.lower())
    terms: list[str] = []
    org = (organization or "").strip()
    if org and org.lower() != base:
        terms.append(f"{org} title")
    terms.append(f"{base} title")
    terms.append(base)
    if org and org.lower() != base:
        terms.append(org)
    unique: list[str] = []
    for term in terms:
        if term.lower() not in (t.lower() for t in unique):
            unique.append(term)
    return unique


def search_url(rule: PlatformRule, term: str) -> str:
    return f"https://www.google.com/search?q={rule.query_label}+{quote_plus(term)}&gl=us&hl=en"


def _unwrap_redirect(href: str) -> str:
    parsed = urlparse(href)
    if (parsed.hostname or "").endswith("google.com") and parsed.path == "/url":
        target = parse_qs(parsed.query).get("q") or parse_qs(parsed.query).get("url")
        if target:
            return target[0]
    return href


def normalize_profile_url(href: str, rule: PlatformRule) -> Optional[str]:
    parsed = urlparse(_unwrap_redirect(href))
    host = (parsed.hostname or "").lower()
    if host not in rule.hosts:
        return None
    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        return None
    if any(s.lower() in rule.rejected_segments for s in segments[:1]):
        return None
    if rule.required_prefixes:
        if segments[0].lower() not in rule.required_prefixes or len(segments) < 2:
            return None
        segments = segments[:2]
    if rule.name == "instagram":
        if not INSTAGRAM_USERNAME_RE.match(segments[0]):
            return None
        return f"https://{rule.canonical_host}/{segments[0]}/"
    return f"https://{rule.canonical_host}/{'/'.join(segments)}"


def filter_profile_links(hrefs: list[str], rule: PlatformRule) -> list[str]:
    out: list[str] = []
    for href in hrefs:
        url = normalize_profile_url(href, rule)
        if url and url not in out:
            out.append(url)
        if len(out) >= MAX_CANDIDATES:
            break
    return out


def credibility_score(profiles: list[SocialProfile]) -> int:
    existing = [p for p in profiles if p.exists]
    score = 15 * len(existing) + 10 * sum(1 for p in existing if p.verified)
    if len(existing) >= 2:
        score += 20
    if len(existing) >= 3:
        score += 15
    if len(existing) >= 4:
        score += 10
    return min(score, 100)


def presence_score(profiles: list[SocialProfile]) -> int:
    return round(sum(1 for p in profiles if p.exists) / len(PLATFORMS) * 100)


def vetting_assessment(profiles: list[SocialProfile]) -> list[str]:
    existing = [p for p in profiles if p.exists]
    verified = [p for p in existing if p.verified]
    notes: list[str] = []
    if not existing:
        notes.append("No social media presence found - company has no digital footprint")
        notes.append("HIGH RISK: Legitimate title companies typically maintain a social media presence")
    elif len(existing) == 1 and not verified:
        notes.append("Limited social media presence - only one unverified profile found")
        notes.append("MEDIUM RISK: Consider additional verification steps")
    elif len(existing) >= 2:
        notes.append("Established social media presence across multiple platforms")
        notes.append("LOW RISK: Consistent digital presence indicates legitimacy")
    if existing and not verified:
        notes.append("No verified social media accounts found")
    if not any(p.platform == "linkedin" and p.exists for p in profiles):
        notes.append("No LinkedIn company page found - unusual for a professional services firm")
    return notes


def is_bot_detection_error(exc: BaseException) -> bool:
    if isinstance(exc, (BotChallengeError, asyncio.TimeoutError)):
        return True
    message = str(exc).lower()
    return any(keyword in message for keyword in BOT_ERROR_KEYWORDS)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 5.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    rng = rng or random.Random()
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_attempts:
                raise
            if is_bot_detection_error(exc):
                delay = rng.uniform(10.0, 20.0)
            else:
                delay = base_delay * 2 ** (attempt - 1) + rng.uniform(0, 2.0)
            logger.debug("retrying after failure", extra={"attempt": attempt, "delay": delay, "error": str(exc)})
            await sleep(delay)
    raise RuntimeError("retry loop exited without result")


class SocialCrawler:
    def __init__(
        self,
        http: HttpClient,
        session_factory: SessionFactory,
        timeout_ms: int = 15000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        screenshot_dir: Optional[str] = None,
        navigation_attempts: int = 2,
    ) -> None:
        self.http = http
        self.session_factory = session_factory
        self.timeout_ms = timeout_ms
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.screenshot_dir = screenshot_dir
        self.navigation_attempts = navigation_attempts

    async def _probe(self, url: str) -> bool:
        try:
            resp = await self.http.head(url, timeout=self.timeout_ms / 1000)
        except Exception as exc:
            logger.debug("profile probe failed", extra={"url": url, "error": str(exc)})
            return False
        return resp.status_code < 400

    async def _search(self, session: BrowserSession, rule: PlatformRule, term: str) -> list[str]:
        url = search_url(rule, term)
        await retry_with_backoff(
            lambda: session.navigate(url, self.timeout_ms),
            max_attempts=self.navigation_attempts,
            sleep=self.sleep,
            rng=self.rng,
        )
        await session.accept_consent()
        await session.simulate_human(self.rng)
        if await session.is_challenged():
            shot = await session.screenshot()
            path = save_screenshot(self.screenshot_dir, f"{rule.name}-challenge", shot)
            logger.warning("bot challenge detected", extra={"platform": rule.name, "term": term, "screenshot": path})
            raise BotChallengeError(f"bot challenge on {rule.name} search")
        if not await session.wait_for_any(RESULT_SELECTORS, self.timeout_ms):
            return []
        return filter_profile_links(await session.extract_links(rule.link_selector), rule)

    async def check_platform(self, rule: PlatformRule, terms: list[str]) -> SocialProfile:
        profile = SocialProfile(platform=rule.name)
        async with self.session_factory(random_fingerprint(self.rng)) as session:
            for index, term in enumerate(terms):
                if index:
                    await self.sleep(self.rng.uniform(2.0, 5.0))
                try:
                    candidates = await self._search(session, rule, term)
                except Exception as exc:
                    if isinstance(exc, BotChallengeError):
                        profile.bot_challenged = True
                    profile.error = str(exc)
                    logger.warning("platform search failed", extra={"platform": rule.name, "term": term, "error": str(exc)})
                    if is_bot_detection_error(exc):
                        await self.sleep(self.rng.uniform(10.0, 20.0))
                    continue
                for candidate in candidates[:MAX_PROBES]:
                    if await self._probe(candidate):
                        profile.exists = True
                        profile.urls.append(candidate)
                if profile.exists:
                    profile.search_term = term
                    profile.error = None
                    return profile
        return profile

    async def run(self, domain: str, organization: Optional[str] = None) -> SocialCrawlResult:
        terms = search_terms(domain, organization)
        outcomes = await asyncio.gather(
            *(self.check_platform(rule, terms) for rule in PLATFORMS),
            return_exceptions=True,
        )
        profiles: list[SocialProfile] = []
        for rule, outcome in zip(PLATFORMS, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.warning("platform check failed", extra={"platform": rule.name, "error": str(outcome)})
                profiles.append(SocialProfile(platform=rule.name, error=str(outcome)))
            else:
                profiles.append(outcome)
        return summarize(profiles, terms)


def summarize(profiles: list[SocialProfile], terms: Optional[list[str]] = None) -> SocialCrawlResult:
    existing = [p for p in profiles if p.exists]
    return SocialCrawlResult(
        profiles=profiles,
        total_profiles=len(existing),
        verified_profiles=sum(1 for p in existing if p.verified),
        has_consistent_presence=len(existing) >= 2,
        credibility_score=credibility_score(profiles),
        presence_score=presence_score(profiles),
        search_terms=terms or [],
        challenged_platforms=[p.platform for p in profiles if p.bot_challenged],
        vetting_assessment=vetting_assessment(profiles),
    )
