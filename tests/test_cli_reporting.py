import json

from typer.testing import CliRunner

from title_vetter import cli
from title_vetter.modules.risk import DEFAULT_CONFIG_PATH
from title_vetter.reporting.markdown import build_summary

runner = CliRunner()

ENVELOPE = {
    "success": True,
    "data": {
        "whois": {"domain": "acmetitle.com", "parsed_data": {"Registrar": "GoDaddy.com, LLC"}},
        "website": {
            "is_accessible": True,
            "ssl": {"is_valid": True},
            "contacts": {"emails": ["info@acmetitle.com"], "phones": []},
        },
        "socialMedia": {
            "profiles": [
                {"platform": "linkedin", "exists": True, "urls": ["https://www.linkedin.com/company/acme-title"]},
                {"platform": "x", "exists": False, "urls": []},
            ]
        },
    },
    "riskAssessment": {
        "overall_score": 32,
        "max_score": 100,
        "risk_level": "medium",
        "risk_level_description": "Medium risk - Exercise caution and additional verification",
        "whois_assessment": {"score": 10},
        "website_assessment": {"score": 10},
        "social_media_assessment": {"score": 95},
        "contributing_factors": ["No phone number published on website"],
        "recommendations": ["Additional verification recommended before proceeding"],
    },
}


def test_summary_sections():
    md = build_summary(ENVELOPE)
    assert md.startswith("# Vetting Summary: acmetitle.com")
    assert "- Level: medium" in md
    assert "- Overall score: 32 / 100" in md
    assert "- Registrar: GoDaddy.com, LLC" in md
    assert "- Phones: none" in md
    assert "- linkedin: https://www.linkedin.com/company/acme-title" in md
    assert "- x: not found" in md
    assert "- No phone number published on website" in md


def test_validate_config_accepts_bundled_config():
    result = runner.invoke(cli.app, ["validate-config", "--input", str(DEFAULT_CONFIG_PATH)])
    assert result.exit_code == 0
    assert "valid (version 1.0.0)" in result.stdout


def test_validate_config_rejects_bad_weights(tmp_path):
    raw = json.loads(DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"))
    raw["weights"]["whois"] = -1
    path = tmp_path / "risk.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    result = runner.invoke(cli.app, ["validate-config", "--input", str(path)])
    assert result.exit_code == 1


def test_report_regenerates_summary(tmp_path):
    report = tmp_path / "report.json"
    report.write_text(json.dumps(ENVELOPE), encoding="utf-8")
    result = runner.invoke(cli.app, ["report", "--input", str(report)])
    assert result.exit_code == 0
    assert "Vetting Summary" in (tmp_path / "summary.md").read_text(encoding="utf-8")


def test_vet_writes_artifacts_and_exit_code(tmp_path, monkeypatch):
    seen = {}

    def fake_run(url, settings, client_ip=None, organization=None):
        seen.update(url=url, social=settings.check_social_media, organization=organization)
        return ENVELOPE

    monkeypatch.setattr(cli, "run_vetting_sync", fake_run)
    out = tmp_path / "out"
    result = runner.invoke(
        cli.app,
        ["vet", "--url", "acmetitle.com", "--organization", "Acme Title", "--skip-social", "--out", str(out)],
    )
    assert result.exit_code == 0
    assert json.loads(result.stdout)["riskAssessment"]["risk_level"] == "medium"
    assert seen == {"url": "acmetitle.com", "social": False, "organization": "Acme Title"}
    assert (out / "report.json").exists()
    assert (out / "summary.md").exists()


def test_vet_failure_exits_nonzero(monkeypatch):
    failure = {"success": False, "error": "Invalid domain format", "errorType": "VALIDATION_ERROR", "statusCode": 400}
    monkeypatch.setattr(cli, "run_vetting_sync", lambda *args, **kwargs: failure)
    result = runner.invoke(cli.app, ["vet", "--url", "not a domain"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["statusCode"] == 400
