from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, Mapping, Optional, Protocol

from .chain import DateEstimator
from .config import DateFilterSettings
from .models import Article, DateEstimationResult, as_utc, utc_now


logger = logging.getLogger(__name__)


class TimeFilterStrategy(Protocol):
    name: str

    def supports(self, source_name: Optional[str]) -> bool:
        ...

    def should_include(self, article: Article, source_name: Optional[str], now: Optional[datetime] = None) -> bool:
        ...

    def max_age_hours(self, source_name: Optional[str]) -> int:
        ...


def _key(source_name: Optional[str]) -> str:
    return (source_name or "").strip().lower()


@dataclass(frozen=True)
class WindowStrategy:
    """
    Age window over the feed-reported timestamp; never estimates.
    Sources are claimed by exact name, by prefix, or all of them.
    """
    name: str
    default_hours: int
    sources: FrozenSet[str] = frozenset()
    prefix: Optional[str] = None
    match_all: bool = False
    overrides: Mapping[str, int] = field(default_factory=dict)
    include_undated: bool = True

    def supports(self, source_name: Optional[str]) -> bool:
        key = _key(source_name)
        if self.match_all:
            return True
        if key in self.sources:
            return True
        return bool(self.prefix and key.startswith(self.prefix))

    def max_age_hours(self, source_name: Optional[str]) -> int:
        return self.overrides.get(_key(source_name), self.default_hours)

    def cutoff(self, source_name: Optional[str], now: Optional[datetime] = None) -> datetime:
        return (as_utc(now) or utc_now()) - timedelta(hours=self.max_age_hours(source_name))

    def should_include(self, article: Article, source_name: Optional[str], now: Optional[datetime] = None) -> bool:
        if article.published_at is None:
            verdict = "included" if self.include_undated else "excluded"
            logger.info(f"{self.name}: no feed timestamp, {verdict} [{source_name}]: {article.url}")
            return self.include_undated

        cutoff = self.cutoff(source_name, now)
        include = article.published_at > cutoff
        if not include:
            logger.info(
                f"{self.name}: filtered [{source_name}, {self.max_age_hours(source_name)}h]: "
                f"{article.title} (published {article.published_at.isoformat()})"
            )
        return include


class UniversalStrategy:
    """
    For feeds whose timestamps are missing or unreliable: runs the
    fallback chain instead of trusting the feed.

    Undated articles whose best estimate is only a heuristic guess are
    admitted up to ``undated_allowance`` per run.
    """

    name = "UniversalSmartStrategy"

    def __init__(
        self,
        estimator: DateEstimator,
        settings: Optional[DateFilterSettings] = None,
        *,
        sources: Optional[FrozenSet[str]] = None,
    ) -> None:
        self.estimator = estimator
        self.settings = settings or estimator.settings
        self.sources = frozenset(_key(s) for s in sources) if sources is not None else None
        self._admitted_undated = 0
        self._lock = threading.Lock()

    def supports(self, source_name: Optional[str]) -> bool:
        if self.sources is None:
            return True
        return _key(source_name) in self.sources

    def max_age_hours(self, source_name: Optional[str]) -> int:
        return self.settings.universal_max_age_hours

    def estimate(
        self,
        article: Article,
        position: int,
        total: int,
        source_name: Optional[str],
        now: Optional[datetime] = None,
    ) -> DateEstimationResult:
        return self.estimator.estimate(article, source_name, position=position, total=total, now=now)

    def should_include(self, article: Article, source_name: Optional[str], now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utc_now()
        cutoff = now - timedelta(hours=self.max_age_hours(source_name))

        if article.published_at is not None:
            return article.published_at > cutoff

        result = self.estimate(article, article.position, article.total, source_name, now)
        if result.is_valid and result.estimated_date <= cutoff:
            logger.info(
                f"{self.name}: estimated too old [{source_name}]: {article.title} "
                f"({result.estimated_date.isoformat()}, {result.method.value})"
            )
            return False

        if self.estimator.accepts(result):
            logger.info(
                f"{self.name}: estimated recent [{source_name}]: {article.title} "
                f"({result.estimated_date.isoformat()}, {result.method.value}, {result.confidence:.2f})"
            )
            return True

        return self._take_allowance(article, source_name)

    def _take_allowance(self, article: Article, source_name: Optional[str]) -> bool:
        with self._lock:
            if self._admitted_undated < self.settings.undated_allowance:
                self._admitted_undated += 1
                logger.info(
                    f"{self.name}: no reliable date, admitted "
                    f"({self._admitted_undated}/{self.settings.undated_allowance}) [{source_name}]: {article.title}"
                )
                return True
        logger.info(f"{self.name}: no reliable date, allowance used up [{source_name}]: {article.title}")
        return False

    def reset_allowance(self) -> None:
        with self._lock:
            self._admitted_undated = 0


def default_window(settings: DateFilterSettings) -> WindowStrategy:
    return WindowStrategy(
        name="DefaultRssTimeFilter",
        default_hours=settings.default_max_age_hours,
        match_all=True,
        overrides=dict(settings.source_max_age_hours),
    )


def bbc_window(settings: DateFilterSettings) -> WindowStrategy:
    return WindowStrategy(
        name="BbcTimeFilter",
        default_hours=settings.max_age_for("bbc_business", 48),
        sources=frozenset({"bbc_business"}),
    )


def investing_window(settings: DateFilterSettings) -> WindowStrategy:
    # market tickers go stale fastest, analysis pieces slowest
    overrides = {k: v for k, v in settings.source_max_age_hours.items() if k.startswith("investing_")}
    return WindowStrategy(
        name="InvestingComTimeFilter",
        default_hours=overrides.get("investing_news", 12),
        prefix="investing_",
        overrides=overrides,
    )


def maeil_window(settings: DateFilterSettings) -> WindowStrategy:
    # this feed mixes in stale items, so undated ones are not given the benefit of the doubt
    return WindowStrategy(
        name="MaeilTimeFilter",
        default_hours=settings.max_age_for("maeil_securities", 48),
        sources=frozenset({"maeil_securities"}),
        include_undated=False,
    )
