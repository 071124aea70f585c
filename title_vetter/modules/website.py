from __future__ import annotations

import asyncio
import logging
import re
import socket
import ssl
import time
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..models.results import ContactBundle, SslInfo, WebsiteSignals
from ..utils.dns import DnsClient
from ..utils.http import HttpClient
from ..utils.normalize import assess_domain_patterns
from . import contacts

logger = logging.getLogger(__name__)

MAX_NESTED_SITEMAPS = 10
MAX_CONTACT_PAGES = 5
CONTACT_PAGE_BATCH = 3

SITEMAP_DIRECTIVE_RE = re.compile(r"^\s*Sitemap:\s*(\S+)", re.IGNORECASE | re.MULTILINE)
LOC_RE = re.compile(r"<loc[^>]*>\s*(?:<!\[CDATA\[)?\s*(.*?)\s*(?:\]\]>)?\s*</loc>", re.IGNORECASE | re.DOTALL)
SITEMAP_INDEX_RE = re.compile(r"<sitemapindex|<sitemap>", re.IGNORECASE)

# OpenSSL X509_V_ERR codes
_CERT_EXPIRED = 10
_SELF_SIGNED = {18, 19}


def _format_name(parts) -> Optional[str]:
    if not parts:
        return None
    return ", ".join("=".join(x) for rdn in parts for x in rdn)


def inspect_tls(hostname: str, timeout: float = 10.0, port: int = 443) -> SslInfo:
    ctx = ssl.create_default_context()
    try:
        with socket.create_connection((hostname, port), timeout=timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
                cert = ssock.getpeercert()
    except ssl.SSLCertVerificationError as exc:
        code = getattr(exc, "verify_code", None)
        message = getattr(exc, "verify_message", None) or str(exc)
        return SslInfo(
            has_ssl=True,
            is_valid=False,
            is_self_signed=code in _SELF_SIGNED or "self-signed" in message or "self signed" in message,
            is_expired=code == _CERT_EXPIRED or "expired" in message,
            error=message,
        )
    except ssl.SSLError as exc:
        return SslInfo(has_ssl=True, is_valid=False, error=str(exc))
    except OSError as exc:
        return SslInfo(has_ssl=False, error=str(exc))

    not_after = cert.get("notAfter") if cert else None
    days_to_expiry = None
    if not_after:
        try:
            expires = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
            days_to_expiry = int((expires - datetime.now(timezone.utc)).total_seconds() // 86400)
        except ValueError:
            days_to_expiry = None
    issuer = _format_name(cert.get("issuer")) if cert else None
    subject = _format_name(cert.get("subject")) if cert else None
    return SslInfo(
        has_ssl=True,
        is_valid=True,
        is_self_signed=bool(issuer and issuer == subject),
        is_expired=days_to_expiry is not None and days_to_expiry < 0,
        issuer=issuer,
        not_after=not_after,
        days_to_expiry=days_to_expiry,
    )


def _page_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


def parse_sitemap_locations(xml_text: str) -> list[str]:
    return [loc.strip() for loc in LOC_RE.findall(xml_text) if loc.strip()]


async def _fetch_text(http: HttpClient, url: str) -> Optional[str]:
    try:
        resp = await http.get(url)
    except Exception as exc:
        logger.debug("fetch failed", extra={"url": url, "error": str(exc)})
        return None
    if resp.status_code >= 400:
        return None
    return resp.text


async def parse_sitemap(
    url: str,
    http: HttpClient,
    visited: Optional[set[str]] = None,
    budget: Optional[list[int]] = None,
) -> list[str]:
    """Return page URLs from a sitemap, following nested indexes up to MAX_NESTED_SITEMAPS."""
    visited = visited if visited is not None else set()
    budget = budget if budget is not None else [MAX_NESTED_SITEMAPS]
    visited.add(url)
    text = await _fetch_text(http, url)
    if not text:
        return []
    locations = parse_sitemap_locations(text)
    if not SITEMAP_INDEX_RE.search(text):
        return locations

    pages: list[str] = []
    for nested in locations:
        if nested == url or nested in visited:
            continue
        if budget[0] <= 0:
            logger.debug("nested sitemap cap reached", extra={"url": url})
            break
        budget[0] -= 1
        pages.extend(await parse_sitemap(nested, http, visited, budget))
    return pages


async def discover_sitemaps(base_url: str, http: HttpClient) -> list[str]:
    robots = await _fetch_text(http, urljoin(base_url, "/robots.txt"))
    if robots:
        declared = SITEMAP_DIRECTIVE_RE.findall(robots)
        if declared:
            return declared
    return [urljoin(base_url, "/sitemap.xml")]


def prioritize_contact_pages(urls: list[str]) -> list[str]:
    seen = set()
    candidates = []
    for url in urls:
        if url in seen or not contacts.is_contact_page(url):
            continue
        seen.add(url)
        candidates.append(url)
    return sorted(candidates, key=lambda u: "contact" not in u.lower())


async def discover_contact_pages(base_url: str, http: HttpClient) -> list[str]:
    pages: list[str] = []
    visited: set[str] = set()
    for sitemap in await discover_sitemaps(base_url, http):
        if sitemap in visited:
            continue
        pages.extend(await parse_sitemap(sitemap, http, visited))
    return prioritize_contact_pages(pages)


async def _page_contacts(url: str, http: HttpClient, warnings: list[str]) -> ContactBundle:
    try:
        resp = await http.get(url)
        if resp.status_code >= 400:
            warnings.append(f"contact page {url} returned {resp.status_code}")
            return ContactBundle()
        return contacts.extract_from_html(resp.text)
    except Exception as exc:
        warnings.append(f"contact page {url} failed: {exc}")
        logger.warning("contact page fetch failed", extra={"url": url, "error": str(exc)})
        return ContactBundle()


async def extract_from_pages(
    urls: list[str],
    http: HttpClient,
    warnings: list[str],
    batch_size: int = CONTACT_PAGE_BATCH,
) -> list[ContactBundle]:
    bundles: list[ContactBundle] = []
    for start in range(0, len(urls), batch_size):
        batch = urls[start : start + batch_size]
        bundles.extend(await asyncio.gather(*(_page_contacts(url, http, warnings) for url in batch)))
    return bundles


async def _fetch_homepage(domain: str, http: HttpClient, signals: WebsiteSignals) -> Optional[str]:
    last_error: Optional[str] = None
    for scheme in ("https", "http"):
        url = f"{scheme}://{domain}"
        started = time.monotonic()
        try:
            resp = await http.get(url)
        except Exception as exc:
            last_error = str(exc)
            logger.debug("homepage fetch failed", extra={"url": url, "error": last_error})
            continue
        signals.url = url
        signals.has_website = True
        signals.status_code = resp.status_code
        signals.content_type = resp.headers.get("content-type")
        signals.response_time_ms = int((time.monotonic() - started) * 1000)
        final_url = str(resp.url)
        if final_url.rstrip("/") != url:
            signals.redirect_url = final_url
        if not 200 <= resp.status_code < 300:
            signals.is_accessible = False
            signals.error = f"HTTP {resp.status_code}"
            return None
        signals.is_accessible = True
        return resp.text
    signals.error = last_error
    return None


async def run(
    domain: str,
    http: HttpClient,
    dns_client: DnsClient,
    follow_contact_pages: bool = True,
    tls_timeout: float = 10.0,
    tls_inspector: Optional[Callable[[str, float], SslInfo]] = None,
) -> WebsiteSignals:
    signals = WebsiteSignals(patterns=assess_domain_patterns(domain))
    html, has_dns, ssl_info = await asyncio.gather(
        _fetch_homepage(domain, http, signals),
        dns_client.has_address(domain),
        asyncio.to_thread(tls_inspector or inspect_tls, domain, tls_timeout),
    )
    signals.has_dns = has_dns
    signals.ssl = ssl_info

    if html:
        signals.title = _page_title(html)
        bundle = contacts.extract_from_html(html)
        if follow_contact_pages and (len(bundle.emails) < 2 or len(bundle.phones) < 1):
            base_url = signals.redirect_url or signals.url or f"https://{domain}"
            base = f"{urlparse(base_url).scheme}://{urlparse(base_url).netloc}"
            pages = (await discover_contact_pages(base, http))[:MAX_CONTACT_PAGES]
            signals.contact_pages_checked = pages
            extra = await extract_from_pages(pages, http, signals.warnings)
            bundle = contacts.merge_bundles(bundle, *extra)
        signals.contacts = bundle
        signals.email_domains = contacts.validate_email_domains(bundle.emails, domain)
    return signals
