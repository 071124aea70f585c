from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models.config import Settings
from .modules.risk import load_risk_config
from .pipeline.runner import run_vetting_sync
from .reporting.markdown import build_summary

app = typer.Typer(add_completion=False)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "time": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(payload)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def load_settings() -> Settings:
    load_dotenv()
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    return settings


def _write_artifacts(out: str, envelope: dict) -> None:
    path = Path(out)
    path.mkdir(parents=True, exist_ok=True)
    (path / "report.json").write_text(json.dumps(envelope, indent=2, default=str), encoding="utf-8")
    if envelope.get("success"):
        (path / "summary.md").write_text(build_summary(envelope), encoding="utf-8")


@app.command()
def vet(
    url: str = typer.Option(..., "--url", help="Bare domain or http(s) URL of the company website."),
    organization: Optional[str] = typer.Option(None, "--organization", help="Company name used for social search."),
    client_ip: Optional[str] = typer.Option(None, "--client-ip"),
    out: Optional[str] = typer.Option(None, "--out", help="Directory for report.json and summary.md."),
    skip_social: bool = typer.Option(False, "--skip-social", help="Do not launch a browser for social search."),
) -> None:
    """Vet a title company domain and print the response envelope."""
    settings = load_settings()
    if skip_social:
        settings = settings.model_copy(update={"check_social_media": False})
    try:
        envelope = run_vetting_sync(url, settings, client_ip=client_ip, organization=organization)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(2)
    if out:
        _write_artifacts(out, envelope)
    typer.echo(json.dumps(envelope, indent=2, default=str))
    if not envelope.get("success"):
        raise typer.Exit(1)


@app.command()
def report(input: str = typer.Option(..., "--input")) -> None:
    """Regenerate summary.md from an existing report.json."""
    setup_logging()
    path = Path(input)
    if not path.exists():
        typer.echo("report.json not found", err=True)
        raise typer.Exit(1)
    envelope = json.loads(path.read_text(encoding="utf-8"))
    if not envelope.get("success"):
        typer.echo("report does not contain a successful assessment", err=True)
        raise typer.Exit(1)
    (path.parent / "summary.md").write_text(build_summary(envelope), encoding="utf-8")
    typer.echo("summary generated")


@app.command("validate-config")
def validate_config(input: str = typer.Option(..., "--input")) -> None:
    """Validate a risk configuration document."""
    setup_logging()
    try:
        config = load_risk_config(input)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1)
    typer.echo(f"valid (version {config.version})")


if __name__ == "__main__":
    app()
