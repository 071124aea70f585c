from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

import phonenumbers
from bs4 import BeautifulSoup
from email_validator import EmailNotValidError, validate_email

from ..models.results import ContactBundle, EmailDomainCheck
from ..utils.normalize import has_public_suffix, registrable_domain

DEFAULT_REGION = "US"

EMAIL_PATTERN = r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"
EMAIL_RE = re.compile(rf"\b({EMAIL_PATTERN})\b")
MAILTO_RE = re.compile(rf"mailto:({EMAIL_PATTERN})", re.IGNORECASE)
EMAIL_LABEL_RE = re.compile(rf"\bemail\s*:?\s*({EMAIL_PATTERN})\b", re.IGNORECASE)
STRUCTURED_EMAIL_RE = re.compile(
    r"<(?:input|span|div|td|th)[^>]*(?:name|id|class)=\"[^\"]*email[^\"]*\"[^>]*>([^<]*@[^<]*)<",
    re.IGNORECASE,
)
ADDRESS_RE = re.compile(
    r"\d+\s+[A-Za-z\s]+(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Court|Ct|Place|Pl|Way"
    r"|Terrace|Ter|Circle|Cir|Highway|Hwy|Parkway|Pkwy)[,\s]+[A-Za-z\s]+[,\s]+[A-Z]{2}\s+\d{5}(?:-\d{4})?"
)

# Text nodes glued together produce these shapes.
EMAIL_REJECT_PATTERNS = (
    re.compile(r"^\d{3}-\d{4}"),
    re.compile(r"^\d{4}[a-zA-Z]"),
    re.compile(r"\d{3}-\d{4}.*@"),
    re.compile(r"\.(com|net|org)\.(com|net|org)\b", re.IGNORECASE),
    re.compile(r"\.(com|net|org){2,}", re.IGNORECASE),
    re.compile(r"\.com[a-zA-Z0-9]+\.", re.IGNORECASE),
)
MAX_EMAIL_LENGTH = 80

CONTACT_PAGE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"/contact[\w-]*/?$",
        r"/about(?:-us)?/?$",
        r"/reach-us/?$",
        r"/get-in-touch/?$",
        r"/locations/?$",
        r"/offices/?$",
        r"/phone/?$",
        r"/email/?$",
        r"/address/?$",
        r"/directions/?$",
        r"/find-us/?$",
        r"/visit-us/?$",
        r"/connect/?$",
        r"/support/?$",
        r"/help/?$",
        r"/contact-info/?$",
        r"/inquiry/?$",
        r"/quote/?$",
        r"/consultation/?$",
        r"/appointment/?$",
    )
)


def _dedupe(values: Iterable[str], fold_case: bool = False, key=None) -> list[str]:
    seen = set()
    out = []
    for value in values:
        value = value.strip()
        if not value:
            continue
        if key is not None:
            marker = key(value)
        else:
            marker = value.lower() if fold_case else value
        if marker in seen:
            continue
        seen.add(marker)
        out.append(value)
    return out


def is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_valid_clean_email(email: str) -> bool:
    if email.count("@") != 1 or len(email) > MAX_EMAIL_LENGTH:
        return False
    local = email.split("@", 1)[0]
    if re.match(r"^\d{3,}", local):
        return False
    if any(pattern.search(email) for pattern in EMAIL_REJECT_PATTERNS):
        return False
    # "acme.comservices" style tails from glued text nodes
    if not has_public_suffix(email.rsplit("@", 1)[-1]):
        return False
    return is_valid_email(email)


def _parse_phone(phone: str) -> Optional[phonenumbers.PhoneNumber]:
    try:
        parsed = phonenumbers.parse(phone, DEFAULT_REGION)
    except phonenumbers.NumberParseException:
        return None
    return parsed if phonenumbers.is_valid_number(parsed) else None


def normalize_phone(phone: str) -> Optional[str]:
    """E.164 form of a valid number, or None."""
    parsed = _parse_phone(phone)
    if parsed is None:
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def _phone_key(phone: str) -> str:
    return normalize_phone(phone) or re.sub(r"\D", "", phone)


def is_valid_phone(phone: str) -> bool:
    raw = phone.strip()
    if raw.startswith(("-", ".")):
        return False
    digits = re.sub(r"\D", "", raw)
    if len(digits) < 10 or len(digits) > 15:
        return False
    parsed = _parse_phone(raw)
    if parsed is None:
        return False
    if parsed.country_code == 1:
        national = str(parsed.national_number)
        for part in (national[:3], national[3:6]):
            if part[0] in "01" or part in {"000", "111"}:
                return False
    return True


def extract_emails(text: str, html: Optional[str] = None) -> list[str]:
    candidates: list[str] = []
    if html:
        candidates.extend(MAILTO_RE.findall(html))
    candidates.extend(EMAIL_LABEL_RE.findall(text))
    if html:
        for inner in STRUCTURED_EMAIL_RE.findall(html):
            candidates.extend(EMAIL_RE.findall(inner))
    candidates.extend(EMAIL_RE.findall(text))
    return _dedupe((email for email in candidates if is_valid_clean_email(email)), fold_case=True)


def extract_phones(text: str) -> list[str]:
    phones = (
        match.raw_string.strip() for match in phonenumbers.PhoneNumberMatcher(text, DEFAULT_REGION)
    )
    return _dedupe((phone for phone in phones if is_valid_phone(phone)), key=_phone_key)


def extract_addresses(text: str) -> list[str]:
    return _dedupe(" ".join(match.split()) for match in ADDRESS_RE.findall(text))


def extract_from_html(html: str) -> ContactBundle:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ")

    emails = extract_emails(text, html)
    for element in soup.select('[class*="email"], [id*="email"], [data-email]'):
        for email in EMAIL_RE.findall(element.get("data-email") or element.get_text(" ")):
            if is_valid_clean_email(email):
                emails.append(email)

    phones = extract_phones(text)
    for link in soup.select('a[href^="tel:"]'):
        phone = unquote(link["href"][4:]).strip()
        if is_valid_phone(phone):
            phones.append(phone)
    for element in soup.select('[class*="phone"], [id*="phone"]'):
        phones.extend(extract_phones(element.get_text(" ")))

    return ContactBundle(
        emails=_dedupe(emails, fold_case=True),
        phones=_dedupe(phones, key=_phone_key),
        addresses=extract_addresses(text),
    )


def merge_bundles(*bundles: ContactBundle) -> ContactBundle:
    return ContactBundle(
        emails=_dedupe((e for b in bundles for e in b.emails), fold_case=True),
        phones=_dedupe((p for b in bundles for p in b.phones), key=_phone_key),
        addresses=_dedupe(a for b in bundles for a in b.addresses),
    )


def is_contact_page(url: str) -> bool:
    path = urlparse(url).path or "/"
    return any(pattern.search(path) for pattern in CONTACT_PAGE_PATTERNS)


def validate_email_domains(emails: list[str], target_domain: str) -> EmailDomainCheck:
    target = registrable_domain(target_domain.lower())
    valid, invalid = [], []
    for email in emails:
        domain = email.rsplit("@", 1)[-1].lower()
        if domain == target or domain.endswith(f".{target}"):
            valid.append(email)
        else:
            invalid.append(email)
    score = round(len(valid) / len(emails) * 100) if emails else 0
    return EmailDomainCheck(valid=valid, invalid=invalid, score=score)
