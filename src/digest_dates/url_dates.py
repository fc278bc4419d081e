from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import List, Optional

from .models import utc_now


MIN_YEAR = 2000

# Ordered by priority. Each pattern yields either year/month/day or a unix timestamp.
URL_DATE_PATTERNS: List[re.Pattern] = [
    # /2025/08/25/
    re.compile(r"/(?P<year>\d{4})/(?P<month>\d{1,2})/(?P<day>\d{1,2})(?:/|$)"),
    # /2025-08-25/
    re.compile(r"/(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})(?:/|$)"),
    # /2025.08.25/
    re.compile(r"/(?P<year>\d{4})\.(?P<month>\d{1,2})\.(?P<day>\d{1,2})(?:/|$)"),
    # /20250825/
    re.compile(r"/(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})(?:/|$)"),
    # ?date=2025-08-25 or ?published=20250825
    re.compile(r"[?&](?:date|published|pubdate)=(?P<year>\d{4})[-.]?(?P<month>\d{1,2})[-.]?(?P<day>\d{1,2})"),
    # /content/<uuid>-1724580000
    re.compile(r"/content/[a-f0-9-]+-(?P<timestamp>\d{10})(?:\D|$)"),
    # /news/articles/2025-08-25/...
    re.compile(r"/articles/(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})/"),
    # /story/title-2025-08-25-uuid
    re.compile(r"/story/.*-(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})-"),
    # articleView.html?idxno=202508250001
    re.compile(r"idxno=(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})\d+"),
]

SOURCE_URL_PATTERNS = {
    "bloomberg": re.compile(r"/articles/(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})/"),
    "maeil": re.compile(r"idxno=(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})\d+"),
}


def _valid_day(year: int, month: int, day: int, max_year: int) -> Optional[date]:
    if year < MIN_YEAR or year > max_year:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_timestamp(raw: str) -> Optional[datetime]:
    """10-digit seconds or 13-digit milliseconds since the epoch."""
    try:
        ts = int(raw)
    except ValueError:
        return None
    if 1_000_000_000 < ts < 9_999_999_999:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    if 1_000_000_000_000 < ts < 9_999_999_999_999:
        return datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
    return None


def _from_match(m: re.Match, max_year: int) -> Optional[datetime]:
    groups = m.groupdict()
    if groups.get("timestamp"):
        ts = parse_timestamp(groups["timestamp"])
        if ts is not None and MIN_YEAR <= ts.year <= max_year:
            return ts
        return None

    d = _valid_day(int(groups["year"]), int(groups["month"]), int(groups["day"]), max_year)
    if d is None:
        return None
    # Day precision only: noon keeps the estimate in the middle of the day
    return datetime(d.year, d.month, d.day, 12, 0, tzinfo=timezone.utc)


def extract_date_from_url(url: Optional[str], *, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    First structurally and calendrically valid date embedded in the URL.
    Returns None for empty URLs, unknown layouts and impossible dates (e.g. month 13).
    """
    if not url or not url.strip():
        return None

    max_year = (now or utc_now()).year + 1
    normalized = url.strip().lower()

    for pattern in URL_DATE_PATTERNS:
        for m in pattern.finditer(normalized):
            found = _from_match(m, max_year)
            if found is not None:
                return found
    return None


def extract_date_for_source(
    url: Optional[str],
    source_name: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Source-specific layouts first, then the generic pattern list."""
    if not url or not url.strip():
        return None

    key = (source_name or "").lower()
    max_year = (now or utc_now()).year + 1
    for marker, pattern in SOURCE_URL_PATTERNS.items():
        if marker in key:
            m = pattern.search(url.lower())
            if m:
                found = _from_match(m, max_year)
                if found is not None:
                    return found

    return extract_date_from_url(url, now=now)
