from __future__ import annotations

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional

from .chain import DateEstimator
from .models import Article, as_utc, utc_now


logger = logging.getLogger(__name__)


def _short(title: str, limit: int = 60) -> str:
    title = " ".join((title or "").split())
    return title if len(title) <= limit else title[: limit - 1] + "…"


class SmartDateFilter:
    """
    Batch filter for articles that arrived without a feed timestamp.

    Articles are grouped per source; each group is estimated on a bounded
    worker pool, keeping each article's index within its group as the feed
    position. Returned articles are copies carrying the estimated date.
    """

    def __init__(self, estimator: DateEstimator, max_workers: Optional[int] = None) -> None:
        self.estimator = estimator
        self.max_workers = max_workers or estimator.settings.max_workers

    def filter_articles(
        self,
        articles: List[Article],
        cutoff: datetime,
        now: Optional[datetime] = None,
    ) -> List[Article]:
        now = as_utc(now) or utc_now()
        cutoff = as_utc(cutoff)

        groups: Dict[str, List[Article]] = OrderedDict()
        for a in articles:
            groups.setdefault(a.source, []).append(a)

        logger.info(f"smart date filter: {len(articles)} undated articles from {len(groups)} sources, cutoff {cutoff.isoformat()}")

        kept: List[Article] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="smart-filter") as pool:
            futures = [
                (source, pool.submit(self._process_source, source, group, cutoff, now))
                for source, group in groups.items()
            ]
            for source, future in futures:
                try:
                    kept.extend(future.result())
                except Exception as e:
                    logger.error(f"smart date filter failed for source [{source}]: {type(e).__name__}: {e}")

        logger.info(f"smart date filter: {len(kept)} articles confirmed after cutoff")
        return kept

    def _process_source(self, source: str, group: List[Article], cutoff: datetime, now: datetime) -> List[Article]:
        valid: List[Article] = []
        total = len(group)
        for position, article in enumerate(group):
            result = self.estimator.estimate(article, source, position=position, total=total, now=now)
            if not result.is_valid:
                logger.info(f"[{source}] no estimate: {_short(article.title)} ({result.rationale})")
                continue

            if result.estimated_date > cutoff:
                logger.info(
                    f"[{source}] keep: {_short(article.title)} - {result.estimated_date.isoformat()} "
                    f"(confidence {result.confidence:.2f}, {result.method.value})"
                )
                valid.append(article.model_copy(update={"published_at": result.estimated_date}))
            else:
                logger.info(
                    f"[{source}] too old: {_short(article.title)} - {result.estimated_date.isoformat()} "
                    f"(confidence {result.confidence:.2f})"
                )
        return valid
