from __future__ import annotations

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

import tldextract

from ..errors import ValidationError
from ..models.results import DomainPatternSignals

DOMAIN_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$")
URL_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

MAX_DOMAIN_LENGTH = 253
MAX_LABELS = 6
MAX_LABEL_LENGTH = 63

SUSPICIOUS_PATTERNS = {
    "ip_address": re.compile(r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}"),
    "punycode": re.compile(r"xn--"),
    "cyrillic": re.compile(r"[а-я]"),
    "greek": re.compile(r"[α-ω]"),
    "url_shortener": re.compile(r"^(bit\.ly|tinyurl\.com|t\.co|goo\.gl|short\.link)$"),
    "repeated_separators": re.compile(r"[.-]{2,}"),
    "numbered_subdomain": re.compile(r"^www\d+\."),
}

SUSPICIOUS_TLDS = (
    ".tk", ".ml", ".ga", ".cf", ".gq",
    ".click", ".download", ".loan", ".xyz", ".top", ".zip", ".review",
    ".country", ".men", ".work", ".party", ".stream", ".cam", ".host",
    ".support", ".biz", ".cc",
)

LEGITIMATE_DOMAINS = ("titlecompany.com", "firsttitle.com", "escrow.com", "settlement.com")

# Bundled public suffix snapshot only; never fetched at runtime.
_SUFFIXES = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def normalize_domain(domain: str) -> str:
    value = domain.strip().lower()
    value = value.rstrip(".")
    return value


def validate_target(raw: str) -> str:
    """Accept a bare domain or an http(s) URL and return its normalized hostname."""
    if not raw or not isinstance(raw, str) or not raw.strip():
        raise ValidationError("URL or domain is required")
    value = raw.strip()
    if URL_SCHEME_RE.match(value):
        host = urlparse(value).hostname
        if not host:
            raise ValidationError("Could not extract domain from input")
    elif "/" in value or " " in value:
        raise ValidationError(
            "Invalid format. Provide a valid URL (e.g., https://example.com) or domain name (e.g., example.com)"
        )
    else:
        host = value.split(":", 1)[0]
    domain = normalize_domain(host)

    if domain == "localhost" or _is_private_address(domain):
        raise ValidationError("Local or private network domains are not allowed")
    if len(domain) > MAX_DOMAIN_LENGTH:
        raise ValidationError("Domain name too long (maximum 253 characters)")
    labels = domain.split(".")
    if len(labels) > MAX_LABELS:
        raise ValidationError("Domain has too many subdomains")
    if any(len(label) > MAX_LABEL_LENGTH for label in labels):
        raise ValidationError("Domain part too long (maximum 63 characters per part)")
    if not DOMAIN_RE.match(domain):
        raise ValidationError("Invalid domain format")
    return domain


def _is_private_address(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def strip_www(domain: str) -> str:
    return domain[4:] if domain.startswith("www.") else domain


def registrable_domain(host: str) -> str:
    """Domain registered under the public suffix: ``www.acme.co.uk`` -> ``acme.co.uk``."""
    return _SUFFIXES(host).top_domain_under_public_suffix or strip_www(host)


def public_suffix(host: str) -> str:
    return _SUFFIXES(host).suffix or host.rsplit(".", 1)[-1]


def domain_label(host: str) -> str:
    """The label just left of the public suffix, e.g. ``acmetitle`` for ``portal.acmetitle.com``."""
    return _SUFFIXES(host).domain or strip_www(host).split(".")[0]


def has_public_suffix(host: str) -> bool:
    return bool(_SUFFIXES(host).suffix)


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def typosquat_target(domain: str, legitimate: tuple[str, ...] = LEGITIMATE_DOMAINS) -> Optional[str]:
    candidate = strip_www(domain)
    for legit in legitimate:
        distance = levenshtein(candidate, legit)
        if 0 < distance <= max(2, int(len(legit) * 0.2)):
            return legit
    return None


def assess_domain_patterns(domain: str) -> DomainPatternSignals:
    value = domain.lower()
    matched = [name for name, pattern in SUSPICIOUS_PATTERNS.items() if pattern.search(value)]
    target = typosquat_target(value)
    return DomainPatternSignals(
        suspicious_patterns=matched,
        malicious_tld=value.endswith(SUSPICIOUS_TLDS),
        typosquatting=target is not None,
        typosquat_target=target,
        homograph_attack="xn--" in value or not value.isascii(),
    )
