"""
Individual publish-date extraction stages.

Every estimating stage has the shape ``(article, source_name, now) -> Optional[datetime]``.
The cache stage lives on ``LearningCache.lookup`` since it already carries a
stored confidence.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from .config import DEFAULT_POSITION_CURVE, PositionStep, TitleRule
from .content_scanner import ContentDateScanner
from .models import Article, as_utc
from .url_dates import extract_date_for_source


logger = logging.getLogger(__name__)

BodyLoader = Callable[[str], Optional[str]]

DEFAULT_CURVE = [PositionStep(until=u, hours=h, per_item_hours=p) for u, h, p in DEFAULT_POSITION_CURVE]


def url_pattern_stage(article: Article, source_name: str, now: datetime) -> Optional[datetime]:
    found = extract_date_for_source(article.url, source_name, now=now)
    if found is None:
        return None
    # URL dates are day precision; today's noon can still be ahead of us
    if found > now and found.date() == now.date():
        return now
    return found


def rss_position_hours(
    position: int,
    total: int,
    curve: Optional[Sequence[PositionStep]] = None,
    cap_hours: float = 72.0,
) -> float:
    if total > 0:
        position = min(position, total - 1)
    position = max(position, 0)

    start = 0
    for step in curve or DEFAULT_CURVE:
        if step.until is None or position < step.until:
            return min(step.hours + (position - start) * step.per_item_hours, cap_hours)
        start = step.until
    return cap_hours


def rss_position_stage(
    position: int,
    total: int,
    now: datetime,
    curve: Optional[Sequence[PositionStep]] = None,
    cap_hours: float = 72.0,
) -> datetime:
    """Items further down the feed are assumed older, up to `cap_hours` back."""
    return now - timedelta(hours=rss_position_hours(position, total, curve, cap_hours))


def title_pattern_hours(title: Optional[str], rules: Sequence[TitleRule]) -> Optional[float]:
    text = (title or "").lower()
    if not text:
        return None
    for rule in rules:
        if any(re.search(r"\b" + re.escape(k), text) for k in rule.keywords):
            return rule.hours
    return None


def publishing_pattern_stage(
    now: datetime,
    hours: float = 6,
    *,
    title: Optional[str] = None,
    rules: Sequence[TitleRule] = (),
) -> datetime:
    # urgent or preview headlines are assumed fresher than the usual cadence
    matched = title_pattern_hours(title, rules)
    return now - timedelta(hours=hours if matched is None else matched)


class ContentScanStage:
    """
    Runs the content-date scanner under a hard time budget.

    Advisory only: a fault, a timeout or an implausible value means "no
    candidate". A timed-out scan keeps running on its worker thread but its
    answer is discarded.
    """

    def __init__(
        self,
        scanner: Optional[ContentDateScanner],
        *,
        timeout_s: float = 10.0,
        body_loader: Optional[BodyLoader] = None,
        executor: Optional[Executor] = None,
        enabled: bool = True,
    ) -> None:
        self.scanner = scanner
        self.timeout_s = timeout_s
        self.body_loader = body_loader
        self.enabled = enabled
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="content-scan")

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _scan(self, article: Article) -> Optional[datetime]:
        body = article.body or ""
        if not body.strip() and self.body_loader is not None:
            body = self.body_loader(article.url) or ""
        if not body.strip() and not article.title.strip():
            return None
        return self.scanner(article.title or "", body)

    def __call__(self, article: Article, source_name: str, now: datetime) -> Optional[datetime]:
        if not self.enabled or self.scanner is None:
            return None

        future = self._executor.submit(self._scan, article)
        try:
            found = future.result(timeout=self.timeout_s)
        except FutureTimeout:
            future.cancel()
            logger.warning(f"content scan timed out after {self.timeout_s:.1f}s [{source_name}]: {article.url}")
            return None
        except Exception as e:
            logger.warning(f"content scan failed [{source_name}]: {article.url} ({type(e).__name__}: {e})")
            return None

        if not isinstance(found, datetime):
            return None
        return as_utc(found)
