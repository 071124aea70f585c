from __future__ import annotations

from datetime import datetime, timezone


def build_summary(envelope: dict) -> str:
    data = envelope.get("data", {})
    assessment = envelope.get("riskAssessment", {})
    whois = data.get("whois", {})
    website = data.get("website", {})
    social = data.get("socialMedia", {})

    lines = [
        f"# Vetting Summary: {whois.get('domain', 'unknown')}",
        "",
        f"Generated: {datetime.now(timezone.utc).isoformat()}",
        "",
    ]
    lines.append("## Risk")
    lines.append(f"- Level: {assessment.get('risk_level', 'n/a')}")
    lines.append(f"- Overall score: {assessment.get('overall_score', 'n/a')} / {assessment.get('max_score', 'n/a')}")
    lines.append(f"- {assessment.get('risk_level_description', '')}")
    for key, label in (
        ("whois_assessment", "Registration"),
        ("website_assessment", "Website"),
        ("social_media_assessment", "Social media"),
    ):
        category = assessment.get(key, {})
        lines.append(f"- {label}: {category.get('score', 'n/a')}")
    lines.append("")

    lines.append("## Evidence")
    parsed = whois.get("parsed_data", {})
    lines.append(f"- Registrar: {parsed.get('Registrar', 'n/a')}")
    lines.append(f"- Website accessible: {website.get('is_accessible', False)}")
    lines.append(f"- TLS valid: {website.get('ssl', {}).get('is_valid', False)}")
    contacts = website.get("contacts", {})
    lines.append(f"- Emails: {', '.join(contacts.get('emails', [])) or 'none'}")
    lines.append(f"- Phones: {', '.join(contacts.get('phones', [])) or 'none'}")
    for profile in social.get("profiles", []):
        status = ", ".join(profile.get("urls", [])) if profile.get("exists") else "not found"
        lines.append(f"- {profile.get('platform')}: {status}")
    lines.append("")

    lines.append("## Contributing Factors")
    factors = assessment.get("contributing_factors", [])
    if not factors:
        lines.append("- None.")
    for factor in factors:
        lines.append(f"- {factor}")
    lines.append("")

    lines.append("## Recommendations")
    for item in assessment.get("recommendations", []):
        lines.append(f"- {item}")

    return "\n".join(lines)
