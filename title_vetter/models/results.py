from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import StageResult


class RegistrationMetadata(BaseModel):
    lookup_time_ms: int = 0
    source: str = "whois"
    timestamp: str = ""
    servers_queried: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    total_fields: int = 0


class RegistrationLookup(BaseModel):
    domain: str
    tld: str
    root_server: str
    registry_server: Optional[str] = None
    registrar_server: Optional[str] = None
    raw: dict[str, dict[str, str]] = Field(default_factory=dict)
    servers_queried: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RegistrationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: str
    tld: str
    root_server: str
    registry_server: Optional[str] = None
    registrar_server: Optional[str] = None
    parsed_data: dict[str, str] = Field(default_factory=dict)
    raw_data: dict[str, dict[str, str]] = Field(default_factory=dict)
    metadata: RegistrationMetadata = Field(default_factory=RegistrationMetadata)


class ContactBundle(BaseModel):
    emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    addresses: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.emails or self.phones or self.addresses)


class EmailDomainCheck(BaseModel):
    valid: list[str] = Field(default_factory=list)
    invalid: list[str] = Field(default_factory=list)
    score: int = 0


class SslInfo(BaseModel):
    has_ssl: bool = False
    is_valid: bool = False
    is_self_signed: bool = False
    is_expired: bool = False
    issuer: Optional[str] = None
    not_after: Optional[str] = None
    days_to_expiry: Optional[int] = None
    error: Optional[str] = None


class DomainPatternSignals(BaseModel):
    suspicious_patterns: list[str] = Field(default_factory=list)
    malicious_tld: bool = False
    typosquatting: bool = False
    typosquat_target: Optional[str] = None
    homograph_attack: bool = False


class WebsiteSignals(BaseModel):
    url: Optional[str] = None
    has_website: bool = False
    is_accessible: bool = False
    has_dns: bool = False
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    title: Optional[str] = None
    response_time_ms: Optional[int] = None
    redirect_url: Optional[str] = None
    contacts: ContactBundle = Field(default_factory=ContactBundle)
    email_domains: EmailDomainCheck = Field(default_factory=EmailDomainCheck)
    contact_pages_checked: list[str] = Field(default_factory=list)
    ssl: SslInfo = Field(default_factory=SslInfo)
    patterns: DomainPatternSignals = Field(default_factory=DomainPatternSignals)
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class SocialProfile(BaseModel):
    platform: str
    exists: bool = False
    verified: bool = False
    urls: list[str] = Field(default_factory=list)
    search_term: Optional[str] = None
    bot_challenged: bool = False
    error: Optional[str] = None


class SocialCrawlResult(BaseModel):
    profiles: list[SocialProfile] = Field(default_factory=list)
    total_profiles: int = 0
    verified_profiles: int = 0
    has_consistent_presence: bool = False
    credibility_score: int = 0
    presence_score: int = 0
    search_terms: list[str] = Field(default_factory=list)
    challenged_platforms: list[str] = Field(default_factory=list)
    vetting_assessment: list[str] = Field(default_factory=list)


class RiskFactor(BaseModel):
    id: str
    category: str
    condition: str
    score: float
    description: str
    triggered: bool


class CategoryRiskAssessment(BaseModel):
    category: str
    score: float
    max_score: float
    risk_level: str
    factors: list[RiskFactor] = Field(default_factory=list)
    contributing_factors: list[str] = Field(default_factory=list)


class RiskAssessmentResult(BaseModel):
    overall_score: int
    max_score: float
    risk_level: str
    risk_level_description: str
    whois_assessment: CategoryRiskAssessment
    website_assessment: CategoryRiskAssessment
    social_media_assessment: CategoryRiskAssessment
    contributing_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    config_version: str = ""
    timestamp: datetime


class WhoisEvidence(BaseModel):
    creation_date: Optional[str] = None
    expiration_date: Optional[str] = None
    registrant_email: Optional[str] = None
    registrant_phone: Optional[str] = None
    registrant_name: Optional[str] = None
    registrant_country: Optional[str] = None
    admin_email: Optional[str] = None
    admin_phone: Optional[str] = None
    admin_name: Optional[str] = None
    registrar: Optional[str] = None
    has_privacy_protection: bool = False


class RegistrarEvidence(BaseModel):
    name: Optional[str] = None
    reputation_score: int = 0
    is_known: bool = False


class WebsiteEvidence(BaseModel):
    has_website: bool = False
    is_accessible: bool = False
    has_dns: bool = False
    has_ssl: bool = False
    ssl_valid: bool = False
    ssl_self_signed: bool = False
    ssl_expired: bool = False
    suspicious_patterns: list[str] = Field(default_factory=list)
    malicious_tld: bool = False
    typosquatting: bool = False
    homograph_attack: bool = False
    emails: list[str] = Field(default_factory=list)
    valid_emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    addresses: list[str] = Field(default_factory=list)


class SocialEvidence(BaseModel):
    platforms: list[str] = Field(default_factory=list)
    verified_platforms: list[str] = Field(default_factory=list)
    presence_score: int = 0
    credibility_score: int = 0
    suspicious_accounts: bool = False
    bot_detected: bool = False


class RiskEvaluationContext(BaseModel):
    whois: WhoisEvidence = Field(default_factory=WhoisEvidence)
    registrar: RegistrarEvidence = Field(default_factory=RegistrarEvidence)
    website: WebsiteEvidence = Field(default_factory=WebsiteEvidence)
    social_media: SocialEvidence = Field(default_factory=SocialEvidence)


class VettingReport(BaseModel):
    domain: str
    whois: RegistrationReport
    website: WebsiteSignals
    social_media: SocialCrawlResult
    risk_assessment: RiskAssessmentResult
    stages: list[StageResult] = Field(default_factory=list)
