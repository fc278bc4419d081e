from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EstimationMethod(str, Enum):
    CACHE = "cache"
    URL_PATTERN = "url_pattern"
    CONTENT_SCAN = "content_scan"
    RSS_POSITION = "rss_position"
    PUBLISHING_PATTERN = "publishing_pattern"
    NONE = "none"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes coming from feeds/collaborators are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Article(BaseModel):
    """
    Feed item as handed over by the collection step.
    The date engine only reads it; estimated dates are applied to copies.
    """
    source: str = Field(default="")
    url: str = Field(default="")
    title: str = Field(default="")
    published_at: Optional[datetime] = None
    position: int = Field(default=0, ge=0)
    total: int = Field(default=1, ge=0)
    body: Optional[str] = None

    @field_validator("published_at")
    @classmethod
    def _utc_published(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class DateEstimationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    estimated_date: Optional[datetime] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    method: EstimationMethod = EstimationMethod.NONE
    rationale: str = Field(default="")

    @field_validator("estimated_date")
    @classmethod
    def _utc_estimate(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @model_validator(mode="after")
    def _date_iff_method(self) -> "DateEstimationResult":
        empty = self.estimated_date is None
        terminal = self.method == EstimationMethod.NONE and self.confidence == 0.0
        if empty != terminal:
            raise ValueError(
                "estimated_date must be absent exactly when method is 'none' and confidence is 0"
            )
        return self

    @property
    def is_valid(self) -> bool:
        return self.estimated_date is not None

    @classmethod
    def none(cls, rationale: str) -> "DateEstimationResult":
        return cls(estimated_date=None, confidence=0.0, method=EstimationMethod.NONE, rationale=rationale)


class CacheEntry(BaseModel):
    url_hash: str = Field(min_length=1)
    source_name: str
    extracted_date: datetime
    extraction_method: str
    confidence_score: float = Field(ge=0.0, le=1.0)
    extraction_details: str = Field(default="")
    created_at: datetime
    last_verified_at: Optional[datetime] = None
    verification_count: int = Field(default=1, ge=0)
    is_valid: bool = True

    @field_validator("extracted_date", "created_at", "last_verified_at")
    @classmethod
    def _utc_fields(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def is_high_confidence(self, threshold: float = 0.7) -> bool:
        return self.confidence_score >= threshold


class MethodStats(BaseModel):
    method: str
    count: int = 0
    average_confidence: float = 0.0
