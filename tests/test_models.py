from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from digest_dates.models import Article, CacheEntry, DateEstimationResult, EstimationMethod


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_none_result():
    r = DateEstimationResult.none("nothing found")
    assert r.method == EstimationMethod.NONE
    assert r.confidence == 0.0
    assert not r.is_valid


def test_date_present_exactly_when_method_is_not_none():
    with pytest.raises(ValidationError):
        DateEstimationResult(estimated_date=NOW, confidence=0.0, method=EstimationMethod.NONE)
    with pytest.raises(ValidationError):
        DateEstimationResult(estimated_date=None, confidence=0.5, method=EstimationMethod.URL_PATTERN)
    with pytest.raises(ValidationError):
        DateEstimationResult(estimated_date=NOW, confidence=1.5, method=EstimationMethod.URL_PATTERN)


def test_result_is_frozen():
    r = DateEstimationResult(estimated_date=NOW, confidence=0.75, method=EstimationMethod.URL_PATTERN)
    with pytest.raises(ValidationError):
        r.confidence = 0.1


def test_naive_datetimes_are_utc():
    a = Article(source="x", url="https://x.test", published_at=datetime(2025, 3, 1, 9, 0))
    assert a.published_at == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_cache_entry_confidence_bounds():
    e = CacheEntry(
        url_hash="abc",
        source_name="x",
        extracted_date=NOW,
        extraction_method="url_pattern",
        confidence_score=0.75,
        created_at=NOW,
    )
    assert e.verification_count == 1
    assert e.is_high_confidence()
    assert not e.is_high_confidence(0.8)
    with pytest.raises(ValidationError):
        CacheEntry(
            url_hash="abc",
            source_name="x",
            extracted_date=NOW,
            extraction_method="url_pattern",
            confidence_score=1.2,
            created_at=NOW,
        )
