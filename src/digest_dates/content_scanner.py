from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Tuple

import trafilatura
from trafilatura.metadata import extract_metadata

from .models import utc_now


logger = logging.getLogger(__name__)


class ContentDateScanner(Protocol):
    def __call__(self, title: str, body_text: str) -> Optional[datetime]:
        ...


_MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_LABEL = r"(?:published|posted|updated|created|작성일|발행일|등록일|업데이트)\s*(?:on|at)?\s*[:\-]?\s*"

# (pattern, kind) in priority order: labelled dates first, bare dates last
TEXT_DATE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    # Published: 2025-08-25T09:30
    (re.compile(_LABEL + r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2})", re.I), "ymd_hm"),
    # Published on August 25, 2025
    (re.compile(_LABEL + r"([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})", re.I), "mdy_name"),
    # Updated 25 Aug 2025
    (re.compile(_LABEL + r"(\d{1,2})\s+([A-Za-z]{3,9})\.?,?\s+(\d{4})", re.I), "dmy_name"),
    # Posted: 2025-08-25 / 2025.08.25 / 2025년 8월 25일
    (re.compile(_LABEL + r"(\d{4})\s*[-./년]\s*(\d{1,2})\s*[-./월]\s*(\d{1,2})", re.I), "ymd"),
    # Posted 08/25/2025
    (re.compile(_LABEL + r"(\d{1,2})[/-](\d{1,2})[/-](\d{4})", re.I), "mdy"),
    # 3 hours ago
    (re.compile(r"\b(\d{1,3})\s+(minute|hour|day)s?\s+ago\b", re.I), "relative"),
    # bare ISO date
    (re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b"), "ymd"),
]


def _safe_datetime(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> Optional[datetime]:
    try:
        return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None


def _from_match(m: re.Match, kind: str, now: datetime) -> Optional[datetime]:
    g = m.groups()
    if kind == "ymd_hm":
        return _safe_datetime(int(g[0]), int(g[1]), int(g[2]), int(g[3]), int(g[4]))
    if kind == "ymd":
        return _safe_datetime(int(g[0]), int(g[1]), int(g[2]))
    if kind == "mdy":
        return _safe_datetime(int(g[2]), int(g[0]), int(g[1]))
    if kind == "mdy_name":
        month = _MONTHS.get(g[0].lower())
        return _safe_datetime(int(g[2]), month, int(g[1])) if month else None
    if kind == "dmy_name":
        month = _MONTHS.get(g[1].lower())
        return _safe_datetime(int(g[2]), month, int(g[0])) if month else None
    if kind == "relative":
        amount = int(g[0])
        unit = g[1].lower()
        delta = {"minute": timedelta(minutes=amount), "hour": timedelta(hours=amount), "day": timedelta(days=amount)}[unit]
        return now - delta
    return None


def parse_iso_date(value: Optional[str]) -> Optional[datetime]:
    """Parse trafilatura/feeds style ISO dates ("2025-08-25" or full ISO timestamps)."""
    if not value:
        return None
    s = str(value).strip()
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        if len(s) <= 10:
            parsed = parsed.replace(hour=12)
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class TextDateScanner:
    """Regex scan over plain text; the title is scanned after the body."""

    def __init__(self, now_fn: Callable[[], datetime] = utc_now) -> None:
        self._now_fn = now_fn

    def __call__(self, title: str, body_text: str) -> Optional[datetime]:
        now = self._now_fn()
        for text in (body_text or "", title or ""):
            if not text.strip():
                continue
            for pattern, kind in TEXT_DATE_PATTERNS:
                for m in pattern.finditer(text):
                    found = _from_match(m, kind, now)
                    if found is not None:
                        return found
        return None


class HtmlDateScanner:
    """
    Page metadata first (trafilatura reads meta tags, JSON-LD and URL hints),
    then a text scan of the extracted article body.
    Plain text input skips straight to the text scan.
    """

    def __init__(self, text_scanner: Optional[TextDateScanner] = None) -> None:
        self._text_scanner = text_scanner or TextDateScanner()

    def __call__(self, title: str, body_text: str) -> Optional[datetime]:
        body = body_text or ""
        if "<" not in body or ">" not in body:
            return self._text_scanner(title, body)

        md = extract_metadata(body)
        found = parse_iso_date(getattr(md, "date", None) if md else None)
        if found is not None:
            return found

        text = trafilatura.extract(
            body,
            include_comments=False,
            include_tables=False,
            include_links=False,
            favor_precision=True,
        ) or ""
        return self._text_scanner(title, text)


def default_scanner() -> ContentDateScanner:
    return HtmlDateScanner()
