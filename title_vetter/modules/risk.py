from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

from pydantic import ValidationError as SchemaValidationError

from ..errors import ConfigurationError
from ..models.config import RiskConfiguration, RiskRule
from ..models.results import (
    CategoryRiskAssessment,
    RegistrarEvidence,
    RegistrationReport,
    RiskAssessmentResult,
    RiskEvaluationContext,
    RiskFactor,
    SocialCrawlResult,
    SocialEvidence,
    WebsiteEvidence,
    WebsiteSignals,
    WhoisEvidence,
)
from .registrar_reputation import assess_registrar

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "data" / "risk-config.json"

CATEGORIES = ("whois", "website", "socialMedia")


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


LEVEL_DESCRIPTIONS = {
    RiskLevel.low: "Low risk - Generally safe to proceed",
    RiskLevel.medium: "Medium risk - Exercise caution and additional verification",
    RiskLevel.high: "High risk - Significant concerns identified, thorough review required",
    RiskLevel.critical: "Critical risk - Major red flags, avoid or conduct extensive due diligence",
}

CONDITION_ADVICE = {
    "lessThan": "Verify the legitimacy of this recently registered domain",
    "hasPrivacyProtection": "Consider requesting disclosure of actual domain owner information",
    "noSSL": "Investigate the website security configuration",
    "invalidSSL": "Investigate the website security configuration",
    "noSocialMedia": "Verify the company through alternative channels",
    "registrarScoreBelow": "Verify the domain registrar reputation",
}

WHOIS_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%d-%b-%Y",
    "%d-%b-%Y %H:%M:%S",
    "%Y.%m.%d",
    "%Y/%m/%d",
    "%d.%m.%Y",
)

PRIVACY_MARKERS = ("privacy", "proxy", "redacted", "withheld", "whoisguard", "domains by proxy")


def load_risk_config(path: Optional[str] = None) -> RiskConfiguration:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Failed to load risk configuration from {config_path}: {exc}") from exc
    try:
        return RiskConfiguration.model_validate(raw)
    except SchemaValidationError as exc:
        raise ConfigurationError(f"Invalid risk configuration {config_path}: {exc}") from exc


def parse_whois_date(value: str) -> datetime:
    text = value.strip().split(" (")[0]
    iso = text.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = None
        for fmt in WHOIS_DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            raise ValueError(f"unrecognized date: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _days_since(value: str, now: datetime) -> float:
    return (now - parse_whois_date(value)).total_seconds() / 86400


def _days_until(value: str, now: datetime) -> float:
    return (parse_whois_date(value) - now).total_seconds() / 86400


Condition = Callable[[RiskRule, RiskEvaluationContext, RiskConfiguration, datetime], bool]


def _domain_age_below(rule, ctx, config, now) -> bool:
    if not ctx.whois.creation_date or not rule.value:
        return False
    return _days_since(ctx.whois.creation_date, now) < rule.value


def _expires_within(rule, ctx, config, now) -> bool:
    if not ctx.whois.expiration_date or not rule.value:
        return False
    remaining = _days_until(ctx.whois.expiration_date, now)
    return 0 < remaining < rule.value


def _non_western(rule, ctx, config, now) -> bool:
    country = ctx.whois.registrant_country
    if not country:
        return False
    return country.upper() not in {c.upper() for c in config.countries.western}


def _high_risk_country(rule, ctx, config, now) -> bool:
    country = ctx.whois.registrant_country
    if not country:
        return False
    return country.upper() in {c.upper() for c in config.countries.high_risk}


CONDITIONS: dict[str, Condition] = {
    # whois
    "lessThan": _domain_age_below,
    "expiresWithin": _expires_within,
    "hasPrivacyProtection": lambda r, c, cfg, now: c.whois.has_privacy_protection,
    "missingRegistrantEmail": lambda r, c, cfg, now: not c.whois.registrant_email,
    "missingRegistrantPhone": lambda r, c, cfg, now: not c.whois.registrant_phone,
    "missingRegistrantName": lambda r, c, cfg, now: not c.whois.registrant_name,
    "missingAdminContact": lambda r, c, cfg, now: not (c.whois.admin_email or c.whois.admin_phone or c.whois.admin_name),
    "nonWesternCountry": _non_western,
    "highRiskCountry": _high_risk_country,
    "registrarScoreBelow": lambda r, c, cfg, now: c.registrar.reputation_score < (r.value or 0),
    "unknownRegistrar": lambda r, c, cfg, now: not c.registrar.is_known,
    # website
    "noSSL": lambda r, c, cfg, now: not c.website.has_ssl,
    "selfSignedSSL": lambda r, c, cfg, now: c.website.ssl_self_signed,
    "expiredSSL": lambda r, c, cfg, now: c.website.ssl_expired,
    "invalidSSL": lambda r, c, cfg, now: not c.website.ssl_valid,
    "notAccessible": lambda r, c, cfg, now: not c.website.is_accessible,
    "noDNS": lambda r, c, cfg, now: not c.website.has_dns,
    "noWebsite": lambda r, c, cfg, now: not c.website.has_website,
    "suspiciousPattern": lambda r, c, cfg, now: bool(c.website.suspicious_patterns),
    "maliciousTLD": lambda r, c, cfg, now: c.website.malicious_tld,
    "typosquatting": lambda r, c, cfg, now: c.website.typosquatting,
    "homographAttack": lambda r, c, cfg, now: c.website.homograph_attack,
    "noContactInfo": lambda r, c, cfg, now: not (c.website.emails or c.website.phones or c.website.addresses),
    "invalidEmail": lambda r, c, cfg, now: bool(c.website.emails) and not c.website.valid_emails,
    "noPhoneNumber": lambda r, c, cfg, now: not c.website.phones,
    "missingAddress": lambda r, c, cfg, now: not c.website.addresses,
    # social media
    "noSocialMedia": lambda r, c, cfg, now: not c.social_media.platforms,
    "limitedPresence": lambda r, c, cfg, now: len(c.social_media.platforms) < 2,
    "inconsistentProfiles": lambda r, c, cfg, now: c.social_media.presence_score < 50,
    "credibilityScoreBelow": lambda r, c, cfg, now: c.social_media.credibility_score < (r.value or 0),
    "noVerifiedAccounts": lambda r, c, cfg, now: not c.social_media.verified_platforms,
    "suspiciousAccounts": lambda r, c, cfg, now: c.social_media.suspicious_accounts,
    "botDetected": lambda r, c, cfg, now: c.social_media.bot_detected,
}


def evaluate_rule(
    category: str,
    factor_id: str,
    rule: RiskRule,
    context: RiskEvaluationContext,
    config: RiskConfiguration,
    now: datetime,
) -> RiskFactor:
    factor_key = f"{category}_{factor_id}_{rule.condition}"
    triggered = False
    condition = CONDITIONS.get(rule.condition)
    if condition is None:
        logger.warning("unknown risk condition", extra={"factor": factor_key, "condition": rule.condition})
    else:
        try:
            triggered = bool(condition(rule, context, config, now))
        except (ValueError, TypeError) as exc:
            logger.warning("risk rule not evaluable", extra={"factor": factor_key, "error": str(exc)})
    return RiskFactor(
        id=factor_key,
        category=category,
        condition=rule.condition,
        score=rule.score,
        description=rule.description,
        triggered=triggered,
    )


def risk_level_from_score(score: float, max_score: float, config: RiskConfiguration) -> RiskLevel:
    levels = config.scoring.risk_levels
    percentage = score / max_score * 100
    if percentage >= levels.critical.min:
        return RiskLevel.critical
    if percentage >= levels.high.min:
        return RiskLevel.high
    if percentage >= levels.medium.min:
        return RiskLevel.medium
    return RiskLevel.low


def assess_category(
    category: str,
    context: RiskEvaluationContext,
    config: RiskConfiguration,
    now: datetime,
) -> CategoryRiskAssessment:
    max_score = config.scoring.max_score
    factors: list[RiskFactor] = []
    for factor_id, group in config.factor_groups(category).items():
        if not group.enabled:
            continue
        for rule in group.rules:
            factors.append(evaluate_rule(category, factor_id, rule, context, config, now))
    total = sum(f.score for f in factors if f.triggered)
    score = max(0, min(total, max_score))
    return CategoryRiskAssessment(
        category=category,
        score=score,
        max_score=max_score,
        risk_level=risk_level_from_score(score, max_score, config).value,
        factors=factors,
        contributing_factors=[f.description for f in factors if f.triggered],
    )


def build_recommendations(level: RiskLevel, factors: list[RiskFactor]) -> list[str]:
    recommendations = []
    if level == RiskLevel.low:
        recommendations.append("Risk level is acceptable for most transactions")
    else:
        recommendations.append("Additional verification recommended before proceeding")
    for factor in factors:
        advice = CONDITION_ADVICE.get(factor.condition) if factor.triggered else None
        if advice and advice not in recommendations:
            recommendations.append(advice)
    return recommendations


def assess_risk(
    context: RiskEvaluationContext,
    config: RiskConfiguration,
    now: Optional[datetime] = None,
) -> RiskAssessmentResult:
    now = now or datetime.now(timezone.utc)
    assessments = {category: assess_category(category, context, config, now) for category in CATEGORIES}
    weighted = sum(a.score * config.weight(category) for category, a in assessments.items())
    # half rounds up, never to even
    overall = math.floor(weighted + 0.5)
    level = risk_level_from_score(overall, config.scoring.max_score, config)
    factors = [f for a in assessments.values() for f in a.factors]
    return RiskAssessmentResult(
        overall_score=overall,
        max_score=config.scoring.max_score,
        risk_level=level.value,
        risk_level_description=LEVEL_DESCRIPTIONS[level],
        whois_assessment=assessments["whois"],
        website_assessment=assessments["website"],
        social_media_assessment=assessments["socialMedia"],
        contributing_factors=[f.description for f in factors if f.triggered],
        recommendations=build_recommendations(level, factors),
        config_version=config.version,
        timestamp=now,
    )


def _field(record: Mapping[str, str], *names: str) -> Optional[str]:
    lookup = {re.sub(r"[\W_]+", "", key.lower()): value for key, value in record.items()}
    for name in names:
        value = lookup.get(name)
        if value and value.strip():
            return value.strip()
    return None


def whois_evidence(record: Mapping[str, str]) -> WhoisEvidence:
    organization = _field(record, "registrantorganization", "registrantorg") or ""
    name = _field(record, "registrantname", "registrant")
    identity = f"{organization} {name or ''}".lower()
    return WhoisEvidence(
        creation_date=_field(record, "creationdate", "created", "registeredon", "domainregistrationdate", "registrationtime"),
        expiration_date=_field(
            record, "registryexpirydate", "expirationdate", "registrarregistrationexpirationdate", "expirydate", "paidtill", "expires"
        ),
        registrant_email=_field(record, "registrantemail"),
        registrant_phone=_field(record, "registrantphone"),
        registrant_name=name,
        registrant_country=_field(record, "registrantcountry", "registrantcountrycode"),
        admin_email=_field(record, "adminemail"),
        admin_phone=_field(record, "adminphone"),
        admin_name=_field(record, "adminname"),
        registrar=_field(record, "registrar", "sponsoringregistrar"),
        has_privacy_protection=any(marker in identity for marker in PRIVACY_MARKERS),
    )


def website_evidence(signals: WebsiteSignals) -> WebsiteEvidence:
    return WebsiteEvidence(
        has_website=signals.has_website,
        is_accessible=signals.is_accessible,
        has_dns=signals.has_dns,
        has_ssl=signals.ssl.has_ssl,
        ssl_valid=signals.ssl.is_valid,
        ssl_self_signed=signals.ssl.is_self_signed,
        ssl_expired=signals.ssl.is_expired,
        suspicious_patterns=signals.patterns.suspicious_patterns,
        malicious_tld=signals.patterns.malicious_tld,
        typosquatting=signals.patterns.typosquatting,
        homograph_attack=signals.patterns.homograph_attack,
        emails=signals.contacts.emails,
        valid_emails=signals.email_domains.valid,
        phones=signals.contacts.phones,
        addresses=signals.contacts.addresses,
    )


def social_evidence(result: SocialCrawlResult) -> SocialEvidence:
    return SocialEvidence(
        platforms=[p.platform for p in result.profiles if p.exists],
        verified_platforms=[p.platform for p in result.profiles if p.exists and p.verified],
        presence_score=result.presence_score,
        credibility_score=result.credibility_score,
    )


def build_context(
    registration: RegistrationReport,
    website: WebsiteSignals,
    social: SocialCrawlResult,
    registrar: Optional[RegistrarEvidence] = None,
) -> RiskEvaluationContext:
    whois = whois_evidence(registration.parsed_data)
    return RiskEvaluationContext(
        whois=whois,
        registrar=registrar or assess_registrar(whois.registrar),
        website=website_evidence(website),
        social_media=social_evidence(social),
    )
