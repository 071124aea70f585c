import json
from datetime import datetime, timedelta, timezone

import pytest

from title_vetter.errors import ConfigurationError
from title_vetter.models.results import (
    RegistrarEvidence,
    RegistrationReport,
    RiskEvaluationContext,
    SocialCrawlResult,
    SocialEvidence,
    WebsiteEvidence,
    WebsiteSignals,
    WhoisEvidence,
)
from title_vetter.modules import risk
from title_vetter.modules.registrar_reputation import assess_registrar
from title_vetter.modules.risk import (
    DEFAULT_CONFIG_PATH,
    RiskLevel,
    assess_risk,
    load_risk_config,
    parse_whois_date,
    risk_level_from_score,
    whois_evidence,
)

NOW = datetime(2026, 10, 18, tzinfo=timezone.utc)


def _raw_config():
    return json.loads(DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"))


def _write(tmp_path, raw):
    path = tmp_path / "risk-config.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    return str(path)


def _healthy_context():
    return RiskEvaluationContext(
        whois=WhoisEvidence(
            creation_date=(NOW - timedelta(days=3650)).isoformat(),
            expiration_date=(NOW + timedelta(days=400)).isoformat(),
            registrant_email="owner@acmetitle.com",
            registrant_phone="+1.3125550198",
            registrant_name="Acme Title LLC",
            registrant_country="US",
            admin_email="admin@acmetitle.com",
            registrar="GoDaddy.com, LLC",
        ),
        registrar=assess_registrar("GoDaddy.com, LLC"),
        website=WebsiteEvidence(
            has_website=True,
            is_accessible=True,
            has_dns=True,
            has_ssl=True,
            ssl_valid=True,
            emails=["info@acmetitle.com"],
            valid_emails=["info@acmetitle.com"],
            phones=["(312) 782-4410"],
            addresses=["123 Main Street, Springfield, IL 62701"],
        ),
        social_media=SocialEvidence(
            platforms=["linkedin", "facebook", "instagram"],
            verified_platforms=["linkedin", "facebook", "instagram"],
            presence_score=75,
            credibility_score=95,
        ),
    )


def test_default_config_loads():
    config = load_risk_config()
    assert config.version == "1.0.0"
    assert config.scoring.max_score == 100
    assert config.weight("socialMedia") == 0.25
    assert "domainAge" in config.factor_groups("whois")


def test_levels_follow_threshold_percentages():
    config = load_risk_config()
    assert risk_level_from_score(24, 100, config) == RiskLevel.low
    assert risk_level_from_score(25, 100, config) == RiskLevel.medium
    assert risk_level_from_score(50, 100, config) == RiskLevel.high
    assert risk_level_from_score(75, 100, config) == RiskLevel.critical


def test_empty_evidence_is_critical_and_clamped():
    result = assess_risk(RiskEvaluationContext(), load_risk_config(), now=NOW)

    assert result.whois_assessment.score == 80
    assert result.website_assessment.score == 100
    assert result.social_media_assessment.score == 95
    assert result.overall_score == 91
    assert result.risk_level == "critical"
    assert result.recommendations[0] == "Additional verification recommended before proceeding"
    assert "Verify the company through alternative channels" in result.recommendations
    assert "No social media profiles found" in result.contributing_factors
    for category in (result.whois_assessment, result.website_assessment, result.social_media_assessment):
        assert 0 <= category.score <= category.max_score


def test_healthy_evidence_is_low_risk():
    result = assess_risk(_healthy_context(), load_risk_config(), now=NOW)

    assert result.overall_score == 0
    assert result.risk_level == "low"
    assert result.contributing_factors == []
    assert result.recommendations == ["Risk level is acceptable for most transactions"]
    assert result.config_version == "1.0.0"


def test_young_domain_triggers_both_age_rules():
    ctx = _healthy_context()
    ctx.whois.creation_date = (NOW - timedelta(days=10)).strftime("%Y-%m-%d")
    result = assess_risk(ctx, load_risk_config(), now=NOW)
    triggered = [f.id for f in result.whois_assessment.factors if f.triggered]
    assert triggered == ["whois_domainAge_lessThan", "whois_domainAge_lessThan"]
    assert result.whois_assessment.score == 50
    assert result.overall_score == 20


def test_unparseable_dates_do_not_trigger():
    ctx = _healthy_context()
    ctx.whois.creation_date = "sometime last spring"
    ctx.whois.expiration_date = "never"
    result = assess_risk(ctx, load_risk_config(), now=NOW)
    assert result.whois_assessment.score == 0


def test_registrar_reputation_rules():
    ctx = _healthy_context()
    ctx.registrar = RegistrarEvidence(name="Anonymous Domains Ltd", reputation_score=20, is_known=False)
    result = assess_risk(ctx, load_risk_config(), now=NOW)
    assert result.whois_assessment.score == 25
    assert "Verify the domain registrar reputation" in result.recommendations


def test_unknown_condition_is_ignored(tmp_path):
    raw = _raw_config()
    raw["websiteRiskFactors"]["availability"]["rules"].append(
        {"condition": "madeUpCheck", "score": 50, "description": "Not a real check"}
    )
    config = load_risk_config(_write(tmp_path, raw))
    result = assess_risk(_healthy_context(), config, now=NOW)
    factor = next(f for f in result.website_assessment.factors if f.condition == "madeUpCheck")
    assert not factor.triggered
    assert result.website_assessment.score == 0


def test_disabled_groups_are_skipped(tmp_path):
    raw = _raw_config()
    raw["whoisRiskFactors"]["contactInfo"]["enabled"] = False
    config = load_risk_config(_write(tmp_path, raw))
    result = assess_risk(RiskEvaluationContext(), config, now=NOW)
    assert result.whois_assessment.score == 25
    assert not any(f.condition == "missingRegistrantEmail" for f in result.whois_assessment.factors)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda raw: raw["weights"].update({"website": -0.1}),
        lambda raw: raw["scoring"].update({"maxScore": 0}),
        lambda raw: raw["scoring"]["riskLevels"]["high"].update({"min": 80, "max": 90}),
        lambda raw: raw["scoring"]["riskLevels"]["low"].update({"min": 30, "max": 10}),
        lambda raw: raw.pop("weights"),
    ],
)
def test_invalid_configs_are_rejected(tmp_path, mutate):
    raw = _raw_config()
    mutate(raw)
    with pytest.raises(ConfigurationError):
        load_risk_config(_write(tmp_path, raw))


def test_missing_or_malformed_config_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_risk_config(str(tmp_path / "absent.json"))
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_risk_config(str(bad))


def test_whois_date_formats():
    assert parse_whois_date("2014-03-01T12:00:00Z") == datetime(2014, 3, 1, 12, tzinfo=timezone.utc)
    assert parse_whois_date("01-Mar-2014").year == 2014
    assert parse_whois_date("2014.03.01").month == 3
    with pytest.raises(ValueError):
        parse_whois_date("yesterday")


def test_whois_evidence_reads_normalized_fields_and_privacy():
    evidence = whois_evidence(
        {
            "Creation Date": "2014-03-01T12:00:00Z",
            "Registry Expiry Date": "2030-03-01T12:00:00Z",
            "Registrant Organization": "Domains By Proxy, LLC",
            "Registrant Name": "REDACTED FOR PRIVACY",
            "Registrant Country": "US",
            "Registrar": "GoDaddy.com, LLC",
            "Country": "CN",
        }
    )
    assert evidence.creation_date == "2014-03-01T12:00:00Z"
    assert evidence.expiration_date == "2030-03-01T12:00:00Z"
    assert evidence.registrant_country == "US"
    assert evidence.has_privacy_protection
    assert evidence.registrant_email is None


def test_build_context_looks_up_registrar_reputation():
    report = RegistrationReport(
        domain="acmetitle.com",
        tld="com",
        root_server="whois.iana.org",
        parsed_data={"Registrar": "NAMECHEAP INC"},
    )
    ctx = risk.build_context(report, WebsiteSignals(), SocialCrawlResult())
    assert ctx.registrar.is_known
    assert ctx.registrar.name == "NameCheap, Inc."
    assert ctx.registrar.reputation_score == 90


def test_registrar_assessment_tiers():
    assert assess_registrar(None).reputation_score == 0
    assert assess_registrar("Hidden Registrations Inc").reputation_score == 20
    assert assess_registrar("Example Registrar Co").reputation_score == 50
    assert not assess_registrar("Example Registrar Co").is_known


def test_overall_score_rounds_half_up():
    ctx = _healthy_context()
    ctx.social_media.verified_platforms = []
    result = assess_risk(ctx, load_risk_config(), now=NOW)
    assert result.social_media_assessment.score == 10
    assert result.overall_score == 3
