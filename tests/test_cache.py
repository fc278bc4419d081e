import threading
from datetime import datetime, timedelta, timezone

import pytest

from digest_dates.cache import CacheStorageError, LearningCache, MemoryCacheStore, SqliteCacheStore
from digest_dates.config import DateFilterSettings
from digest_dates.models import DateEstimationResult, EstimationMethod
from digest_dates.url_utils import url_hash


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
PUB = datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryCacheStore()
        return
    s = SqliteCacheStore(tmp_path / "cache" / "dates.sqlite3")
    yield s
    s.close()


def put(store, key, *, source="ft_companies", method="url_pattern", conf=0.75, now=NOW):
    return store.put(key, source, PUB, method, conf, "date pattern in url", now)


def test_put_creates_entry_with_count_one(store):
    entry = put(store, "h1")
    assert entry.verification_count == 1
    assert entry.last_verified_at is None
    assert entry.extracted_date == PUB

    got = store.get("h1")
    assert got is not None
    assert got.source_name == "ft_companies"
    assert got.confidence_score == pytest.approx(0.75)
    assert store.get("missing") is None


def test_repeat_put_increments_by_one_and_keeps_provenance(store):
    put(store, "h1", method="url_pattern", conf=0.75)
    counts = []
    for i in range(1, 4):
        e = put(store, "h1", method="content_scan", conf=0.65, now=NOW + timedelta(minutes=i))
        counts.append(e.verification_count)

    assert counts == [2, 3, 4]
    got = store.get("h1")
    assert got.extraction_method == "url_pattern"
    assert got.confidence_score == pytest.approx(0.75)
    assert got.created_at == NOW
    assert got.last_verified_at == NOW + timedelta(minutes=3)


def test_last_verified_never_moves_backwards(store):
    put(store, "h1")
    put(store, "h1", now=NOW + timedelta(hours=2))
    e = put(store, "h1", now=NOW + timedelta(hours=1))
    assert e.verification_count == 3
    assert e.last_verified_at == NOW + timedelta(hours=2)


def test_verify_counts_hits(store):
    assert store.verify("h1", NOW) is None
    put(store, "h1")
    e = store.verify("h1", NOW + timedelta(minutes=5))
    assert e.verification_count == 2
    assert e.last_verified_at == NOW + timedelta(minutes=5)


def test_invalidate_low_confidence(store):
    put(store, "weak", conf=0.5)
    put(store, "strong", conf=0.8)

    assert store.invalidate_low_confidence(0.6) == 1
    assert store.get("weak") is None
    assert store.get("strong") is not None
    assert store.verify("weak", NOW) is None
    assert store.count() == 1
    assert store.count(include_invalid=True) == 2


def test_put_after_invalidation_starts_fresh(store):
    put(store, "h1", method="content_scan", conf=0.5)
    put(store, "h1", method="content_scan", conf=0.5)
    store.invalidate_low_confidence(0.6)

    e = put(store, "h1", method="url_pattern", conf=0.75, now=NOW + timedelta(hours=1))
    assert e.verification_count == 1
    assert e.extraction_method == "url_pattern"
    assert e.is_valid


def test_prune_older_than(store):
    put(store, "old", now=NOW - timedelta(days=40))
    put(store, "new", now=NOW)
    assert store.prune_older_than(NOW - timedelta(days=30)) == 1
    assert store.get("old") is None
    assert store.get("new") is not None


def test_stats_by_source(store):
    put(store, "a", method="url_pattern", conf=0.75)
    put(store, "b", method="url_pattern", conf=0.65)
    put(store, "c", method="content_scan", conf=0.6)
    put(store, "d", source="bbc_business", method="url_pattern", conf=0.9)
    put(store, "e", method="url_pattern", conf=0.75, now=NOW - timedelta(days=20))
    put(store, "f", method="content_scan", conf=0.4)
    store.invalidate_low_confidence(0.5)

    stats = store.stats_by_source("ft_companies", NOW - timedelta(days=7))
    assert [(s.method, s.count) for s in stats] == [("url_pattern", 2), ("content_scan", 1)]
    assert stats[0].average_confidence == pytest.approx(0.70)


def test_hit_rate_counts_re_sighted_entries(store):
    put(store, "a")
    put(store, "a")
    put(store, "b")
    store.verify("b", NOW)
    put(store, "c")
    assert store.hit_rate("ft_companies", NOW - timedelta(days=1)) == 2


def test_learning_data_newest_first(store):
    put(store, "a", conf=0.9, now=NOW - timedelta(hours=3))
    put(store, "b", conf=0.8, now=NOW - timedelta(hours=1))
    put(store, "c", conf=0.6, now=NOW)
    rows = store.learning_data("ft_companies", NOW - timedelta(days=1), 0.7)
    assert [r.url_hash for r in rows] == ["b", "a"]


def test_concurrent_puts_count_every_sighting(store):
    put(store, "hot")

    def worker():
        for _ in range(25):
            put(store, "hot")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("hot").verification_count == 1 + 8 * 25


def result(method=EstimationMethod.URL_PATTERN, conf=0.75):
    return DateEstimationResult(estimated_date=PUB, confidence=conf, method=method, rationale="test")


def test_learning_cache_lookup_and_remember():
    cache = LearningCache(MemoryCacheStore(), DateFilterSettings())
    url = "https://www.ft.com/content/abc?utm_source=rss"

    assert cache.lookup(url, "ft_companies", NOW) is None
    stored = cache.remember(url, "ft_companies", result(), NOW)
    assert stored.verification_count == 1

    hit = cache.lookup("https://ft.com/content/abc", "ft_companies", NOW)
    assert hit.method == EstimationMethod.CACHE
    assert hit.estimated_date == PUB
    assert hit.confidence == pytest.approx(0.75)
    assert cache.get(url).verification_count == 2
    assert cache.store.get(url_hash(url)) is not None


def test_learning_cache_skips_weak_and_cached_results():
    cache = LearningCache(MemoryCacheStore(), DateFilterSettings())
    url = "https://x.test/a"
    assert cache.remember(url, "x", result(EstimationMethod.RSS_POSITION, 0.35), NOW) is None
    assert cache.remember(url, "x", result(EstimationMethod.CACHE, 0.9), NOW) is None
    assert cache.remember(url, "x", DateEstimationResult.none("nothing"), NOW) is None
    assert cache.remember("", "x", result(), NOW) is None
    assert cache.store.count(include_invalid=True) == 0


class BrokenStore(MemoryCacheStore):
    def verify(self, url_hash, now):
        raise CacheStorageError("disk gone")

    def get(self, url_hash):
        raise CacheStorageError("disk gone")

    def put(self, *args, **kwargs):
        raise CacheStorageError("disk gone")


def test_storage_faults_degrade_to_miss():
    cache = LearningCache(BrokenStore(), DateFilterSettings())
    assert cache.lookup("https://x.test/a", "x", NOW) is None
    assert cache.get("https://x.test/a") is None
    assert cache.remember("https://x.test/a", "x", result(), NOW) is None


def test_cleanup_and_invalidate_use_settings():
    settings = DateFilterSettings(cache_retention_days=10, invalidation_floor=0.7)
    cache = LearningCache(MemoryCacheStore(), settings)
    cache.remember("https://x.test/old", "x", result(conf=0.9), NOW - timedelta(days=11))
    cache.remember("https://x.test/weak", "x", result(conf=0.65), NOW)
    cache.remember("https://x.test/good", "x", result(conf=0.75), NOW)

    assert cache.cleanup(NOW) == 1
    assert cache.invalidate() == 1
    assert cache.get("https://x.test/weak") is None
    assert cache.get("https://x.test/good") is not None
    assert [s.count for s in cache.stats("x", days=7, now=NOW)] == [1]
    assert cache.hits("x", days=7, now=NOW) == 0
    assert len(cache.learning_data("x", days=7, min_confidence=0.7, now=NOW)) == 1


def test_sqlite_store_persists_across_connections(tmp_path):
    path = tmp_path / "dates.sqlite3"
    s = SqliteCacheStore(path)
    put(s, "h1")
    s.close()

    s = SqliteCacheStore(path)
    try:
        assert s.get("h1").verification_count == 1
    finally:
        s.close()
