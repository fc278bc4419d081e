from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


def repo_root() -> Path:
    # Assumes this file lives at: repo/src/digest_dates/config.py
    return Path(__file__).resolve().parents[2]


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


DEFAULT_BASE_SCORES: Dict[str, float] = {
    "cache": 0.95,
    "url_pattern": 0.75,
    "content_scan": 0.65,
    "rss_position": 0.35,
    "publishing_pattern": 0.20,
    "none": 0.0,
}

DEFAULT_SOURCE_MAX_AGE_HOURS: Dict[str, int] = {
    "bbc_business": 48,
    "investing_news": 12,
    "investing_market": 6,
    "investing_commodities": 8,
    "maeil_securities": 48,
}

METHOD_ORDER = ("cache", "url_pattern", "content_scan", "rss_position", "publishing_pattern", "none")


class PositionStep(BaseModel):
    """
    One segment of a feed-position curve: positions below `until` (None = the
    rest of the feed) sit `hours + (position - segment start) * per_item_hours`
    before now.
    """
    until: Optional[int] = Field(default=None, gt=0)
    hours: float = Field(ge=0.0)
    per_item_hours: float = Field(default=0.0, ge=0.0)


class TitleRule(BaseModel):
    keywords: List[str] = Field(min_length=1)
    hours: float = Field(ge=0.0)

    @field_validator("keywords")
    @classmethod
    def _lower_keywords(cls, v: List[str]) -> List[str]:
        return [k.strip().lower() for k in v if k and k.strip()]


def _check_curve(steps: List[PositionStep]) -> List[PositionStep]:
    if not steps:
        return steps
    bounds = [s.until for s in steps[:-1]]
    if any(b is None for b in bounds) or steps[-1].until is not None:
        raise ValueError("only the last position step may be open-ended, and it must be")
    if bounds != sorted(set(bounds)):
        raise ValueError("position steps must have strictly increasing bounds")
    return steps


def _steps(*rows) -> List[PositionStep]:
    return [PositionStep(until=u, hours=h, per_item_hours=p) for u, h, p in rows]


# 0 -> 1h, 1-2 -> 2+pos, 3-7 -> 4+pos, 8+ -> 12+pos (capped by max_position_hours)
DEFAULT_POSITION_CURVE = ((1, 1.0, 0.0), (3, 3.0, 1.0), (8, 7.0, 1.0), (None, 20.0, 1.0))

DEFAULT_TITLE_RULES = (
    (("breaking", "urgent", "flash", "alert"), 0.5),
    (("preview", "outlook"), 2.0),
)


class EstimationProfile(BaseModel):
    """
    Per-source overrides for the heuristic stages and base scores.
    Unset fields fall back to the global settings.
    """
    position_curve: List[PositionStep] = Field(default_factory=list)
    max_position_hours: Optional[float] = Field(default=None, gt=0.0)
    publishing_pattern_hours: Optional[float] = Field(default=None, ge=0.0)
    title_rules: List[TitleRule] = Field(default_factory=list)
    base_scores: Dict[str, float] = Field(default_factory=dict)

    @field_validator("position_curve")
    @classmethod
    def _valid_curve(cls, v: List[PositionStep]) -> List[PositionStep]:
        return _check_curve(v)

    @field_validator("base_scores")
    @classmethod
    def _scores_in_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        for k, score in v.items():
            if not 0.0 <= float(score) <= 1.0:
                raise ValueError(f"base score for {k} must be within [0, 1]")
        return {str(k): float(score) for k, score in v.items()}


def _default_profiles() -> Dict[str, EstimationProfile]:
    return {
        # very frequent updates: top item is minutes old, the tail stops at two days
        "bloomberg_economics": EstimationProfile(
            position_curve=_steps((1, 0.25, 0.0), (3, 1.0, 1.0), (8, 2.0, 2.0), (15, 12.0, 1.0), (None, 24.0, 1.0)),
            max_position_hours=48,
            publishing_pattern_hours=4,
            base_scores={"url_pattern": 0.90, "rss_position": 0.45, "publishing_pattern": 0.30},
        ),
        "ft_companies": EstimationProfile(
            position_curve=_steps((1, 0.5, 0.0), (5, 4.0, 2.0), (10, 12.0, 2.0), (None, 24.0, 1.0)),
            publishing_pattern_hours=1,
            base_scores={"url_pattern": 0.80, "rss_position": 0.40},
        ),
        "marketwatch": EstimationProfile(
            position_curve=_steps((1, 0.5, 0.0), (5, 2.0, 1.0), (12, 6.0, 2.0), (None, 24.0, 1.0)),
            max_position_hours=48,
            title_rules=[TitleRule(keywords=["stock", "market", "trading", "dow", "s&p", "nasdaq"], hours=2)],
            base_scores={"url_pattern": 0.70},
        ),
    }


DEFAULT_ESTIMATING_SOURCES: List[str] = [
    "ft_companies",
    "bloomberg_economics",
    "marketwatch",
    "economist",
    "kotra_overseas",
    "investing_stock",
    "investing_economic",
    "investing_finance",
    "investing_earnings",
]


class DateFilterSettings(BaseModel):
    """
    Tunables for date estimation and age-window filtering.
    Windows are hours; confidences are in [0, 1].
    """
    default_max_age_hours: int = Field(default=24, gt=0)
    universal_max_age_hours: int = Field(default=72, gt=0)
    source_max_age_hours: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_SOURCE_MAX_AGE_HOURS))
    # None means the universal strategy estimates for every source
    estimating_sources: Optional[List[str]] = Field(default_factory=lambda: list(DEFAULT_ESTIMATING_SOURCES))

    acceptance_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    cache_write_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    invalidation_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    cache_retention_days: int = Field(default=30, gt=0)

    enable_content_scan: bool = True
    content_scan_timeout: float = Field(default=10.0, gt=0.0)

    publishing_pattern_hours: float = Field(default=6, ge=0.0)
    position_curve: List[PositionStep] = Field(default_factory=lambda: _steps(*DEFAULT_POSITION_CURVE))
    max_position_hours: float = Field(default=72, gt=0.0)
    title_rules: List[TitleRule] = Field(
        default_factory=lambda: [TitleRule(keywords=list(k), hours=h) for k, h in DEFAULT_TITLE_RULES]
    )
    estimation_profiles: Dict[str, EstimationProfile] = Field(default_factory=_default_profiles)

    future_score_ceiling: float = Field(default=0.29, ge=0.0, lt=0.3)
    decay_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    decay_hours: Optional[float] = Field(default=None, gt=0.0)
    base_scores: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_BASE_SCORES))

    undated_allowance: int = Field(default=10, ge=0)
    max_workers: int = Field(default=3, gt=0)

    @field_validator("source_max_age_hours")
    @classmethod
    def _positive_windows(cls, v: Dict[str, int]) -> Dict[str, int]:
        bad = [k for k, hours in v.items() if int(hours) <= 0]
        if bad:
            raise ValueError(f"source_max_age_hours must be positive: {bad}")
        return {str(k).strip().lower(): int(hours) for k, hours in v.items()}

    @field_validator("estimating_sources")
    @classmethod
    def _clean_sources(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        return [s.strip().lower() for s in v if s and s.strip()]

    @field_validator("base_scores")
    @classmethod
    def _merge_base_scores(cls, v: Dict[str, float]) -> Dict[str, float]:
        merged = dict(DEFAULT_BASE_SCORES)
        for k, score in v.items():
            score = float(score)
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"base score for {k} must be within [0, 1]")
            merged[str(k)] = score
        return merged

    @field_validator("position_curve")
    @classmethod
    def _valid_curve(cls, v: List[PositionStep]) -> List[PositionStep]:
        if not v:
            raise ValueError("position_curve needs at least one step")
        return _check_curve(v)

    @field_validator("estimation_profiles")
    @classmethod
    def _lower_profile_keys(cls, v: Dict[str, EstimationProfile]) -> Dict[str, EstimationProfile]:
        return {str(k).strip().lower(): p for k, p in v.items()}

    @model_validator(mode="after")
    def _floors_below_acceptance(self) -> "DateFilterSettings":
        if self.cache_write_floor > self.acceptance_threshold:
            raise ValueError("cache_write_floor must not exceed acceptance_threshold")
        return self

    @model_validator(mode="after")
    def _scores_keep_method_order(self) -> "DateFilterSettings":
        for name in [None, *self.estimation_profiles]:
            scores = self.base_scores_for(name)
            ordered = [scores.get(m, 0.0) for m in METHOD_ORDER]
            if ordered != sorted(ordered, reverse=True):
                raise ValueError(f"base scores must not increase along {METHOD_ORDER} [{name or 'global'}]")
        return self

    def max_age_for(self, source_name: Optional[str], default: Optional[int] = None) -> int:
        key = (source_name or "").strip().lower()
        if key in self.source_max_age_hours:
            return self.source_max_age_hours[key]
        return default if default is not None else self.default_max_age_hours

    def profile_for(self, source_name: Optional[str]) -> Optional[EstimationProfile]:
        return self.estimation_profiles.get((source_name or "").strip().lower())

    def base_scores_for(self, source_name: Optional[str]) -> Dict[str, float]:
        profile = self.profile_for(source_name)
        if profile is None or not profile.base_scores:
            return self.base_scores
        return {**self.base_scores, **profile.base_scores}

    def position_curve_for(self, source_name: Optional[str]) -> Tuple[List[PositionStep], float]:
        profile = self.profile_for(source_name)
        curve = profile.position_curve if profile and profile.position_curve else self.position_curve
        cap = profile.max_position_hours if profile and profile.max_position_hours else self.max_position_hours
        return curve, cap

    def publishing_hours_for(self, source_name: Optional[str]) -> float:
        profile = self.profile_for(source_name)
        if profile is not None and profile.publishing_pattern_hours is not None:
            return profile.publishing_pattern_hours
        return self.publishing_pattern_hours

    def title_rules_for(self, source_name: Optional[str]) -> List[TitleRule]:
        """Source rules are tried before the global ones."""
        profile = self.profile_for(source_name)
        return [*(profile.title_rules if profile else []), *self.title_rules]


@dataclass(frozen=True)
class AppConfig:
    env: str
    cache_path: Path
    date_filter: DateFilterSettings
    settings: Dict[str, Any]


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    load_dotenv(repo_root() / ".env")

    settings_path = settings_path or (repo_root() / "configs" / "settings.yaml")
    settings = load_yaml(settings_path) if settings_path.exists() else {}

    raw_filter = settings.get("date_filter") or {}
    if not isinstance(raw_filter, dict):
        raise ValueError("configs/settings.yaml: date_filter must be a mapping")
    try:
        date_filter = DateFilterSettings.model_validate(raw_filter)
    except ValidationError as e:
        raise ValueError(f"configs/settings.yaml: invalid date_filter section: {e}") from e

    env = os.getenv("APP_ENV", settings.get("app", {}).get("env", "local"))

    cache_path = os.getenv("DATE_CACHE_PATH") or settings.get("cache", {}).get("path", "artifacts/date_cache.sqlite3")
    cache_path = Path(str(cache_path)).expanduser()
    if not cache_path.is_absolute():
        cache_path = repo_root() / cache_path

    return AppConfig(
        env=str(env),
        cache_path=cache_path,
        date_filter=date_filter,
        settings=settings,
    )
