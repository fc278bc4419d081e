from __future__ import annotations

import logging
from concurrent.futures import Executor
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .cache import LearningCache
from .config import DateFilterSettings
from .content_scanner import ContentDateScanner
from .models import Article, DateEstimationResult, EstimationMethod, as_utc, utc_now
from .scoring import score
from .stages import (
    BodyLoader,
    ContentScanStage,
    publishing_pattern_stage,
    rss_position_stage,
    url_pattern_stage,
)


logger = logging.getLogger(__name__)

Stage = Callable[[Article, str, datetime], Optional[datetime]]


class DateEstimator:
    """
    Fallback chain: cache -> url_pattern -> content_scan -> rss_position -> publishing_pattern.

    The chain stops at the first candidate whose confidence meets the
    acceptance threshold. Otherwise the most confident attempt wins, ties
    going to the earlier stage. It never raises: the worst case is a
    ``method=none`` result.
    """

    def __init__(
        self,
        settings: Optional[DateFilterSettings] = None,
        *,
        cache: Optional[LearningCache] = None,
        scanner: Optional[ContentDateScanner] = None,
        body_loader: Optional[BodyLoader] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.settings = settings or DateFilterSettings()
        self.cache = cache
        self.content_stage = ContentScanStage(
            scanner,
            timeout_s=self.settings.content_scan_timeout,
            body_loader=body_loader,
            executor=executor,
            enabled=self.settings.enable_content_scan,
        )

    def stages(self, position: int, total: int, source: Optional[str] = None) -> List[Tuple[EstimationMethod, Stage]]:
        curve, cap = self.settings.position_curve_for(source)
        hours = self.settings.publishing_hours_for(source)
        rules = self.settings.title_rules_for(source)

        def by_position(article: Article, source_name: str, now: datetime) -> datetime:
            return rss_position_stage(position, total, now, curve, cap)

        def by_pattern(article: Article, source_name: str, now: datetime) -> datetime:
            return publishing_pattern_stage(now, hours, title=article.title, rules=rules)

        return [
            (EstimationMethod.URL_PATTERN, url_pattern_stage),
            (EstimationMethod.CONTENT_SCAN, self.content_stage),
            (EstimationMethod.RSS_POSITION, by_position),
            (EstimationMethod.PUBLISHING_PATTERN, by_pattern),
        ]

    def accepts(self, result: DateEstimationResult) -> bool:
        return result.is_valid and result.confidence >= self.settings.acceptance_threshold

    def estimate(
        self,
        article: Article,
        source_name: Optional[str] = None,
        *,
        position: Optional[int] = None,
        total: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DateEstimationResult:
        source = source_name or article.source
        try:
            return self._run(
                article,
                source,
                article.position if position is None else position,
                article.total if total is None else total,
                as_utc(now) or utc_now(),
            )
        except Exception as e:
            logger.exception(f"date estimation aborted [{source}]: {article.url}")
            return DateEstimationResult.none(f"estimation error: {type(e).__name__}")

    def _run(self, article: Article, source: str, position: int, total: int, now: datetime) -> DateEstimationResult:
        attempts: List[DateEstimationResult] = []

        cached = self._lookup(article, source, now)
        if cached is not None:
            if self.accepts(cached):
                return cached
            attempts.append(cached)

        for method, stage in self.stages(position, total, source):
            try:
                candidate = stage(article, source, now)
            except Exception as e:
                logger.warning(f"{method.value} stage failed [{source}]: {type(e).__name__}: {e}")
                continue
            if candidate is None:
                continue

            confidence = score(candidate, method, source, now=now, settings=self.settings)
            if confidence <= 0.0:
                continue

            result = DateEstimationResult(
                estimated_date=candidate,
                confidence=confidence,
                method=method,
                rationale=self._rationale(method, article, position, total),
            )
            logger.debug(f"{method.value} [{source}]: {candidate.isoformat()} confidence={confidence:.2f}")

            if self.accepts(result):
                if cached is None:
                    self._write_back(article, source, result, now)
                return result
            attempts.append(result)

        if not attempts:
            return DateEstimationResult.none(f"no date signal found for: {article.url or '<no url>'}")

        # max() keeps the first of equal scores, i.e. the earliest stage
        best = max(attempts, key=lambda r: r.confidence)
        # a cache hit already counted this sighting
        if cached is None:
            self._write_back(article, source, best, now)
        return best

    def _lookup(self, article: Article, source: str, now: datetime) -> Optional[DateEstimationResult]:
        if self.cache is None:
            return None
        try:
            return self.cache.lookup(article.url, source, now)
        except Exception as e:
            logger.warning(f"cache stage failed [{source}]: {type(e).__name__}: {e}")
            return None

    def _write_back(self, article: Article, source: str, result: DateEstimationResult, now: datetime) -> None:
        if self.cache is None:
            return
        try:
            self.cache.remember(article.url, source, result, now)
        except Exception as e:
            logger.warning(f"cache write-back failed [{source}]: {type(e).__name__}: {e}")

    @staticmethod
    def _rationale(method: EstimationMethod, article: Article, position: int, total: int) -> str:
        if method == EstimationMethod.URL_PATTERN:
            return f"date pattern in url: {article.url}"
        if method == EstimationMethod.CONTENT_SCAN:
            return f"date found in article text: {article.url}"
        if method == EstimationMethod.RSS_POSITION:
            return f"feed position {position + 1} of {total}"
        return "assumed typical publishing cadence"

    def close(self) -> None:
        self.content_stage.shutdown()
