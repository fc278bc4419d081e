from datetime import datetime, timedelta, timezone

import pytest

from digest_dates.config import DateFilterSettings
from digest_dates.models import EstimationMethod
from digest_dates.scoring import age_factor, score


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
SETTINGS = DateFilterSettings()


@pytest.mark.parametrize(
    "method",
    [
        EstimationMethod.CACHE,
        EstimationMethod.URL_PATTERN,
        EstimationMethod.CONTENT_SCAN,
        EstimationMethod.RSS_POSITION,
        EstimationMethod.PUBLISHING_PATTERN,
    ],
)
def test_future_candidates_score_below_point_three(method):
    future = NOW + timedelta(days=2)
    assert score(future, method, "economist", now=NOW, settings=SETTINGS, stored_confidence=1.0) < 0.3


def test_method_ordering_for_the_same_recent_date():
    recent = NOW - timedelta(hours=3)
    scores = [
        score(recent, m, "economist", now=NOW, settings=SETTINGS)
        for m in (
            EstimationMethod.CACHE,
            EstimationMethod.URL_PATTERN,
            EstimationMethod.CONTENT_SCAN,
            EstimationMethod.RSS_POSITION,
            EstimationMethod.PUBLISHING_PATTERN,
        )
    ]
    assert scores == sorted(scores, reverse=True)
    assert len(set(scores)) == len(scores)


def test_within_window_gets_base_score():
    recent = NOW - timedelta(hours=10)
    assert score(recent, EstimationMethod.URL_PATTERN, "economist", now=NOW, settings=SETTINGS) == pytest.approx(0.75)


def test_decay_is_monotonic_in_age():
    ages = [1, 50, 80, 150, 400, 2000]
    values = [
        score(NOW - timedelta(hours=h), EstimationMethod.URL_PATTERN, "economist", now=NOW, settings=SETTINGS)
        for h in ages
    ]
    assert all(a >= b for a, b in zip(values, values[1:]))
    assert values[-1] < values[0]
    # decayed evidence never drops under the floor
    assert values[-1] >= 0.75 * SETTINGS.decay_floor - 1e-9


def test_old_url_date_still_outranks_position_guess():
    very_old = NOW - timedelta(days=60)
    url_score = score(very_old, EstimationMethod.URL_PATTERN, "economist", now=NOW, settings=SETTINGS)
    guess = score(NOW - timedelta(hours=1), EstimationMethod.RSS_POSITION, "economist", now=NOW, settings=SETTINGS)
    assert url_score > guess


def test_window_is_source_tunable():
    candidate = NOW - timedelta(hours=10)
    fast = score(candidate, EstimationMethod.URL_PATTERN, "investing_market", now=NOW, settings=SETTINGS)
    slow = score(candidate, EstimationMethod.URL_PATTERN, "economist", now=NOW, settings=SETTINGS)
    assert fast < slow


def test_cache_uses_stored_confidence_capped_by_base():
    recent = NOW - timedelta(hours=2)
    assert score(recent, EstimationMethod.CACHE, "x", now=NOW, settings=SETTINGS, stored_confidence=0.8) == pytest.approx(0.8)
    assert score(recent, EstimationMethod.CACHE, "x", now=NOW, settings=SETTINGS, stored_confidence=1.0) == pytest.approx(0.95)


def test_none_method_scores_zero_and_naive_datetimes_are_utc():
    assert score(NOW, EstimationMethod.NONE, "x", now=NOW, settings=SETTINGS) == 0.0
    naive = datetime(2025, 3, 1, 9, 0)
    assert score(naive, "url_pattern", "x", now=NOW, settings=SETTINGS) == pytest.approx(0.75)


def test_deterministic_for_fixed_now():
    c = NOW - timedelta(hours=100)
    a = score(c, EstimationMethod.CONTENT_SCAN, "economist", now=NOW, settings=SETTINGS)
    b = score(c, EstimationMethod.CONTENT_SCAN, "economist", now=NOW, settings=SETTINGS)
    assert a == b


def test_age_factor_boundaries():
    assert age_factor(72, 72, SETTINGS) == 1.0
    assert age_factor(73, 72, SETTINGS) < 1.0


def test_source_profile_overrides_base_score():
    recent = NOW - timedelta(hours=2)
    assert score(recent, EstimationMethod.URL_PATTERN, "bloomberg_economics", now=NOW, settings=SETTINGS) == pytest.approx(0.90)
    assert score(recent, EstimationMethod.RSS_POSITION, "bloomberg_economics", now=NOW, settings=SETTINGS) == pytest.approx(0.45)
    assert score(recent, EstimationMethod.CONTENT_SCAN, "bloomberg_economics", now=NOW, settings=SETTINGS) == pytest.approx(0.65)
    # profile heuristics stay below acceptance and the cache write floor
    for source in SETTINGS.estimation_profiles:
        for m in (EstimationMethod.RSS_POSITION, EstimationMethod.PUBLISHING_PATTERN):
            assert score(recent, m, source, now=NOW, settings=SETTINGS) < SETTINGS.cache_write_floor
