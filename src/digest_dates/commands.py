from __future__ import annotations

import logging
from typing import Optional

from rich import print
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .cache import LearningCache, SqliteCacheStore
from .chain import DateEstimator
from .config import load_config, repo_root
from .content_scanner import default_scanner
from .dispatcher import KNOWN_SOURCES, build_dispatcher
from .fetcher import PageLoader
from .models import Article
from .strategies import UniversalStrategy


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _cache_from_config() -> LearningCache:
    cfg = load_config()
    return LearningCache(SqliteCacheStore(cfg.cache_path), cfg.date_filter)


def cmd_ping() -> None:
    cfg = load_config()
    root = repo_root()

    print(f"[bold]digest-dates[/bold] version={__version__}")
    print(f"env={cfg.env}")
    print(f"repo_root={root}")

    settings_path = root / "configs" / "settings.yaml"
    print(f"settings.yaml exists={settings_path.exists()}")

    df = cfg.date_filter
    print(f"acceptance_threshold={df.acceptance_threshold} cache_write_floor={df.cache_write_floor}")
    print(f"content_scan enabled={df.enable_content_scan} timeout={df.content_scan_timeout}s")
    print(f"estimating sources count={len(df.estimating_sources or [])}")

    cache = _cache_from_config()
    print(f"cache_path={cfg.cache_path}")
    print(f"cache entries valid={cache.store.count()} total={cache.store.count(include_invalid=True)}")


def cmd_time_settings() -> None:
    cfg = load_config()
    dispatcher = build_dispatcher(cfg.date_filter)

    table = Table(title="Age windows per source")
    table.add_column("source")
    table.add_column("max age (h)", justify="right")
    table.add_column("strategy")
    for source, hours, name in dispatcher.time_settings(KNOWN_SOURCES):
        table.add_row(source, str(hours), name)
    print(table)


def cmd_resolve(source: str) -> None:
    cfg = load_config()
    strategy = build_dispatcher(cfg.date_filter).resolve(source)
    print(f"source={source}")
    print(f"strategy={strategy.name}")
    print(f"max_age_hours={strategy.max_age_hours(source)}")


def cmd_estimate(
    url: str,
    source: str,
    title: str = "",
    position: int = 0,
    total: int = 1,
    fetch: bool = False,
) -> None:
    cfg = load_config()
    body_loader = PageLoader(cfg.date_filter.content_scan_timeout) if fetch else None
    estimator = DateEstimator(
        cfg.date_filter,
        cache=_cache_from_config(),
        scanner=default_scanner(),
        body_loader=body_loader,
    )

    strategy = build_dispatcher(cfg.date_filter).resolve(source)
    if not isinstance(strategy, UniversalStrategy):
        print(f"[yellow]note[/yellow]: {source} is normally filtered by {strategy.name} without estimation")

    article = Article(source=source, url=url, title=title, position=position, total=total)
    try:
        result = UniversalStrategy(estimator, cfg.date_filter).estimate(article, position, total, source)
    finally:
        estimator.close()

    print(f"method={result.method.value}")
    print(f"confidence={result.confidence:.2f}")
    print(f"estimated_date={result.estimated_date.isoformat() if result.estimated_date else None}")
    print(f"rationale={result.rationale}")


def cmd_cache_stats(source: str, days: int = 7) -> None:
    cache = _cache_from_config()
    stats = cache.stats(source, days=days)

    table = Table(title=f"{source}: extraction methods (last {days} days)")
    table.add_column("method")
    table.add_column("count", justify="right")
    table.add_column("avg confidence", justify="right")
    for s in stats:
        table.add_row(s.method, str(s.count), f"{s.average_confidence:.2f}")
    print(table)
    print(f"repeat hits={cache.hits(source, days=days)}")


def cmd_cache_cleanup() -> None:
    deleted = _cache_from_config().cleanup()
    print(f"deleted={deleted}")


def cmd_cache_invalidate(min_conf: Optional[float] = None) -> None:
    n = _cache_from_config().invalidate(min_conf)
    print(f"invalidated={n}")
