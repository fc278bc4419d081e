from __future__ import annotations

import math
from datetime import datetime
from typing import Optional, Union

from .config import DateFilterSettings
from .models import EstimationMethod, as_utc


FUTURE_PENALTY = 0.2


def _method_key(method: Union[EstimationMethod, str]) -> str:
    return method.value if isinstance(method, EstimationMethod) else str(method)


def base_score(
    method: Union[EstimationMethod, str],
    settings: DateFilterSettings,
    stored_confidence: Optional[float] = None,
    source_name: Optional[str] = None,
) -> float:
    key = _method_key(method)
    base = settings.base_scores_for(source_name).get(key, 0.0)
    if key == EstimationMethod.CACHE.value and stored_confidence is not None:
        # cache reuse is never trusted more than the cache base itself
        base = min(base, max(0.0, float(stored_confidence)))
    return base


def expected_window_hours(source_name: Optional[str], settings: DateFilterSettings) -> int:
    return settings.max_age_for(source_name, default=settings.universal_max_age_hours)


def age_factor(age_hours: float, window_hours: float, settings: DateFilterSettings) -> float:
    """
    1.0 inside the expected window, then an exponential slide towards decay_floor.
    Monotonically non-increasing in age.
    """
    if age_hours <= window_hours:
        return 1.0
    decay = settings.decay_hours or float(window_hours)
    excess = age_hours - window_hours
    floor = settings.decay_floor
    return floor + (1.0 - floor) * math.exp(-excess / decay)


def score(
    candidate: datetime,
    method: Union[EstimationMethod, str],
    source_name: Optional[str],
    *,
    now: datetime,
    settings: DateFilterSettings,
    stored_confidence: Optional[float] = None,
) -> float:
    """
    Calibrated confidence for a candidate publish date.

    Deterministic given `now`. Future candidates always land below 0.3;
    past candidates lose confidence smoothly once they are older than the
    window the source is expected to publish within.
    """
    base = base_score(method, settings, stored_confidence, source_name)
    candidate = as_utc(candidate)
    now = as_utc(now)

    age_hours = (now - candidate).total_seconds() / 3600.0
    if age_hours < 0:
        value = min(base * FUTURE_PENALTY, settings.future_score_ceiling)
    else:
        value = base * age_factor(age_hours, expected_window_hours(source_name, settings), settings)

    return min(1.0, max(0.0, value))
