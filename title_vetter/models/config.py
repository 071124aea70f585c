from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CacheMode(str, Enum):
    memory = "memory"
    sqlite = "sqlite"
    none = "none"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    environment: str = "development"
    api_rate_limit: int = 10
    rate_limit_window_seconds: float = 60.0
    whois_timeout_seconds: float = 30.0
    http_timeout_seconds: float = 10.0
    browser_timeout_ms: int = 15000
    max_concurrent_requests: int = 5
    outbound_requests_per_minute: int = 120
    retries: int = 1
    cache_mode: CacheMode = CacheMode.memory
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = 1000
    cache_path: str = "./.cache/vetting.db"
    risk_config_path: Optional[str] = None
    follow_contact_pages: bool = True
    check_social_media: bool = True
    screenshot_dir: Optional[str] = None
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values: dict = {}
        if "APP_ENV" in env:
            values["environment"] = env["APP_ENV"]
        if "API_RATE_LIMIT" in env:
            values["api_rate_limit"] = int(env["API_RATE_LIMIT"])
        if "RATE_LIMIT_WINDOW_SECONDS" in env:
            values["rate_limit_window_seconds"] = float(env["RATE_LIMIT_WINDOW_SECONDS"])
        # millisecond knobs
        if "WHOIS_TIMEOUT" in env:
            values["whois_timeout_seconds"] = int(env["WHOIS_TIMEOUT"]) / 1000
        if "HTTP_TIMEOUT" in env:
            values["http_timeout_seconds"] = int(env["HTTP_TIMEOUT"]) / 1000
        if "BROWSER_TIMEOUT" in env:
            values["browser_timeout_ms"] = int(env["BROWSER_TIMEOUT"])
        if "MAX_CONCURRENT_REQUESTS" in env:
            values["max_concurrent_requests"] = int(env["MAX_CONCURRENT_REQUESTS"])
        if "OUTBOUND_REQUESTS_PER_MINUTE" in env:
            values["outbound_requests_per_minute"] = int(env["OUTBOUND_REQUESTS_PER_MINUTE"])
        if "CACHE_MODE" in env:
            values["cache_mode"] = CacheMode(env["CACHE_MODE"].lower())
        if "CACHE_TTL_SECONDS" in env:
            values["cache_ttl_seconds"] = float(env["CACHE_TTL_SECONDS"])
        if "CACHE_MAX_ENTRIES" in env:
            values["cache_max_entries"] = int(env["CACHE_MAX_ENTRIES"])
        if "CACHE_PATH" in env:
            values["cache_path"] = env["CACHE_PATH"]
        if env.get("RISK_CONFIG_PATH"):
            values["risk_config_path"] = env["RISK_CONFIG_PATH"]
        if "FOLLOW_CONTACT_PAGES" in env:
            values["follow_contact_pages"] = _env_bool(env["FOLLOW_CONTACT_PAGES"])
        if "CHECK_SOCIAL_MEDIA" in env:
            values["check_social_media"] = _env_bool(env["CHECK_SOCIAL_MEDIA"])
        if env.get("SCREENSHOT_DIR"):
            values["screenshot_dir"] = env["SCREENSHOT_DIR"]
        if "LOG_LEVEL" in env:
            values["log_level"] = env["LOG_LEVEL"].upper()
        return cls(**values)


class StageResult(BaseModel):
    stage: str
    status: str
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskRule(_CamelModel):
    # Kept as a plain string: unknown conditions are ignored at evaluation time.
    condition: str
    value: Optional[float] = None
    score: float
    description: str


class RiskFactorGroup(_CamelModel):
    enabled: bool = True
    description: str = ""
    rules: list[RiskRule] = Field(default_factory=list)


class ScoreRange(_CamelModel):
    min: float
    max: float

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScoreRange":
        if self.min > self.max:
            raise ValueError("range min must not exceed max")
        return self


class RiskLevels(_CamelModel):
    low: ScoreRange
    medium: ScoreRange
    high: ScoreRange
    critical: ScoreRange

    @model_validator(mode="after")
    def _check_order(self) -> "RiskLevels":
        if not (self.critical.min > self.high.min > self.medium.min):
            raise ValueError("risk level thresholds must satisfy critical > high > medium")
        return self


class Scoring(_CamelModel):
    max_score: float = 100
    risk_levels: RiskLevels

    @field_validator("max_score")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("maxScore must be positive")
        return value


class CategoryWeights(_CamelModel):
    whois: float
    website: float
    social_media: float

    @model_validator(mode="after")
    def _non_negative(self) -> "CategoryWeights":
        if min(self.whois, self.website, self.social_media) < 0:
            raise ValueError("category weights must be non-negative")
        return self


class CountryLists(_CamelModel):
    western: list[str] = Field(default_factory=list)
    high_risk: list[str] = Field(default_factory=list)


class RiskConfiguration(_CamelModel):
    version: str
    last_updated: Optional[str] = None
    scoring: Scoring
    weights: CategoryWeights
    whois_risk_factors: dict[str, RiskFactorGroup] = Field(default_factory=dict)
    website_risk_factors: dict[str, RiskFactorGroup] = Field(default_factory=dict)
    social_media_risk_factors: dict[str, RiskFactorGroup] = Field(default_factory=dict)
    countries: CountryLists = Field(default_factory=CountryLists)

    def factor_groups(self, category: str) -> dict[str, RiskFactorGroup]:
        return {
            "whois": self.whois_risk_factors,
            "website": self.website_risk_factors,
            "socialMedia": self.social_media_risk_factors,
        }[category]

    def weight(self, category: str) -> float:
        return {
            "whois": self.weights.whois,
            "website": self.weights.website,
            "socialMedia": self.weights.social_media,
        }[category]
