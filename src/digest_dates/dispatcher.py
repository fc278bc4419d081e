from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .cache import LearningCache, SqliteCacheStore
from .chain import DateEstimator
from .config import DateFilterSettings, load_config
from .content_scanner import ContentDateScanner, default_scanner
from .stages import BodyLoader
from .strategies import (
    TimeFilterStrategy,
    UniversalStrategy,
    bbc_window,
    default_window,
    investing_window,
    maeil_window,
)


logger = logging.getLogger(__name__)

KNOWN_SOURCES = (
    "bbc_business",
    "ft_companies",
    "marketwatch",
    "bloomberg_economics",
    "economist",
    "investing_news",
    "investing_market",
    "investing_commodities",
    "investing_stock",
    "investing_economic",
    "investing_finance",
    "investing_earnings",
    "kotra_overseas",
    "maeil_securities",
)


class StrategyDispatcher:
    """
    Priority-ordered registry: the first strategy that supports a source wins.
    The last registered strategy must accept every source.
    """

    def __init__(self, strategies: Sequence[TimeFilterStrategy]) -> None:
        if not strategies:
            raise ValueError("StrategyDispatcher needs at least one strategy")
        if not strategies[-1].supports("__any_source__"):
            raise ValueError(f"Last strategy must accept every source: {strategies[-1].name}")
        self.strategies: List[TimeFilterStrategy] = list(strategies)
        self._resolved: Dict[str, TimeFilterStrategy] = {}
        self._lock = threading.Lock()

    def resolve(self, source_name: Optional[str]) -> TimeFilterStrategy:
        key = (source_name or "").strip().lower()
        with self._lock:
            cached = self._resolved.get(key)
            if cached is not None:
                return cached

            for strategy in self.strategies:
                if strategy.supports(key):
                    logger.info(f"source [{key or '<none>'}] -> {strategy.name}")
                    self._resolved[key] = strategy
                    return strategy

        # unreachable: the last strategy accepts everything
        return self.strategies[-1]

    def time_settings(self, sources: Iterable[str] = KNOWN_SOURCES) -> List[Tuple[str, int, str]]:
        rows = []
        for source in sources:
            strategy = self.resolve(source)
            rows.append((source, strategy.max_age_hours(source), strategy.name))
        return rows

    def reset_run(self) -> None:
        """Call at the start of a collection run."""
        for strategy in self.strategies:
            if isinstance(strategy, UniversalStrategy):
                strategy.reset_allowance()


def build_dispatcher(
    settings: Optional[DateFilterSettings] = None,
    *,
    cache: Optional[LearningCache] = None,
    scanner: Optional[ContentDateScanner] = None,
    body_loader: Optional[BodyLoader] = None,
) -> StrategyDispatcher:
    settings = settings or DateFilterSettings()
    estimator = DateEstimator(settings, cache=cache, scanner=scanner, body_loader=body_loader)

    universal_sources = frozenset(settings.estimating_sources) if settings.estimating_sources is not None else None
    return StrategyDispatcher(
        [
            UniversalStrategy(estimator, settings, sources=universal_sources),
            bbc_window(settings),
            maeil_window(settings),
            investing_window(settings),
            default_window(settings),
        ]
    )


@lru_cache(maxsize=1)
def default_dispatcher() -> StrategyDispatcher:
    cfg = load_config()
    cache = LearningCache(SqliteCacheStore(cfg.cache_path), cfg.date_filter)
    return build_dispatcher(cfg.date_filter, cache=cache, scanner=default_scanner())


def resolve_strategy(source_name: Optional[str]) -> TimeFilterStrategy:
    return default_dispatcher().resolve(source_name)
