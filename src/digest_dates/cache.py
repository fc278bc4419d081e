from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from .config import DateFilterSettings
from .models import (
    CacheEntry,
    DateEstimationResult,
    EstimationMethod,
    MethodStats,
    as_utc,
    utc_now,
)
from .url_utils import url_hash


logger = logging.getLogger(__name__)


class CacheStorageError(Exception):
    """Raised by stores when the underlying storage cannot be read or written."""


class CacheStore(Protocol):
    def get(self, url_hash: str) -> Optional[CacheEntry]:
        ...

    def put(
        self,
        url_hash: str,
        source_name: str,
        extracted_date: datetime,
        extraction_method: str,
        confidence_score: float,
        extraction_details: str,
        now: datetime,
    ) -> CacheEntry:
        ...

    def verify(self, url_hash: str, now: datetime) -> Optional[CacheEntry]:
        ...

    def invalidate_low_confidence(self, min_confidence: float) -> int:
        ...

    def prune_older_than(self, cutoff: datetime) -> int:
        ...

    def stats_by_source(self, source_name: str, since: datetime) -> List[MethodStats]:
        ...

    def hit_rate(self, source_name: str, since: datetime) -> int:
        ...

    def learning_data(self, source_name: str, since: datetime, min_confidence: float) -> List[CacheEntry]:
        ...

    def count(self, include_invalid: bool = False) -> int:
        ...


def _later(current: Optional[datetime], candidate: datetime) -> datetime:
    if current is None or candidate > current:
        return candidate
    return current


class MemoryCacheStore:
    """Process-local store; one lock serializes every read-increment-write."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, url_hash: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(url_hash)
            return entry.model_copy() if entry and entry.is_valid else None

    def put(
        self,
        url_hash: str,
        source_name: str,
        extracted_date: datetime,
        extraction_method: str,
        confidence_score: float,
        extraction_details: str,
        now: datetime,
    ) -> CacheEntry:
        now = as_utc(now)
        with self._lock:
            existing = self._entries.get(url_hash)
            if existing is not None and existing.is_valid:
                existing.verification_count += 1
                existing.last_verified_at = _later(existing.last_verified_at, now)
                return existing.model_copy()

            entry = CacheEntry(
                url_hash=url_hash,
                source_name=source_name,
                extracted_date=extracted_date,
                extraction_method=extraction_method,
                confidence_score=confidence_score,
                extraction_details=extraction_details,
                created_at=now,
                verification_count=1,
            )
            self._entries[url_hash] = entry
            return entry.model_copy()

    def verify(self, url_hash: str, now: datetime) -> Optional[CacheEntry]:
        now = as_utc(now)
        with self._lock:
            entry = self._entries.get(url_hash)
            if entry is None or not entry.is_valid:
                return None
            entry.verification_count += 1
            entry.last_verified_at = _later(entry.last_verified_at, now)
            return entry.model_copy()

    def invalidate_low_confidence(self, min_confidence: float) -> int:
        n = 0
        with self._lock:
            for entry in self._entries.values():
                if entry.is_valid and (entry.confidence_score < min_confidence or entry.verification_count == 0):
                    entry.is_valid = False
                    n += 1
        return n

    def prune_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.created_at < cutoff]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def _valid_for(self, source_name: str, since: datetime) -> List[CacheEntry]:
        since = as_utc(since)
        return [
            e for e in self._entries.values()
            if e.is_valid and e.source_name == source_name and e.created_at >= since
        ]

    def stats_by_source(self, source_name: str, since: datetime) -> List[MethodStats]:
        with self._lock:
            grouped: Dict[str, List[float]] = {}
            for e in self._valid_for(source_name, since):
                grouped.setdefault(e.extraction_method, []).append(e.confidence_score)
        stats = [
            MethodStats(method=m, count=len(scores), average_confidence=sum(scores) / len(scores))
            for m, scores in grouped.items()
        ]
        return sorted(stats, key=lambda s: (-s.count, s.method))

    def hit_rate(self, source_name: str, since: datetime) -> int:
        with self._lock:
            return sum(1 for e in self._valid_for(source_name, since) if e.verification_count > 1)

    def learning_data(self, source_name: str, since: datetime, min_confidence: float) -> List[CacheEntry]:
        with self._lock:
            rows = [e.model_copy() for e in self._valid_for(source_name, since) if e.confidence_score >= min_confidence]
        return sorted(rows, key=lambda e: e.created_at, reverse=True)

    def count(self, include_invalid: bool = False) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if include_invalid or e.is_valid)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS article_date_cache (
    url_hash TEXT PRIMARY KEY,
    source_name TEXT NOT NULL,
    extracted_date TEXT NOT NULL,
    extraction_method TEXT NOT NULL,
    confidence_score REAL NOT NULL,
    extraction_details TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    last_verified_at TEXT,
    verification_count INTEGER NOT NULL DEFAULT 1,
    is_valid INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_source_created ON article_date_cache (source_name, created_at);
CREATE INDEX IF NOT EXISTS idx_extraction_method ON article_date_cache (extraction_method);
"""

# Re-sightings only bump verification; an invalidated row is replaced by the new extraction.
_UPSERT = """
INSERT INTO article_date_cache (
    url_hash, source_name, extracted_date, extraction_method, confidence_score,
    extraction_details, created_at, last_verified_at, verification_count, is_valid
) VALUES (?, ?, ?, ?, ?, ?, ?, NULL, 1, 1)
ON CONFLICT(url_hash) DO UPDATE SET
    verification_count = CASE WHEN is_valid = 1 THEN verification_count + 1 ELSE 1 END,
    last_verified_at = CASE
        WHEN is_valid = 0 THEN NULL
        WHEN last_verified_at IS NULL OR last_verified_at < excluded.created_at THEN excluded.created_at
        ELSE last_verified_at END,
    source_name = CASE WHEN is_valid = 1 THEN source_name ELSE excluded.source_name END,
    extracted_date = CASE WHEN is_valid = 1 THEN extracted_date ELSE excluded.extracted_date END,
    extraction_method = CASE WHEN is_valid = 1 THEN extraction_method ELSE excluded.extraction_method END,
    confidence_score = CASE WHEN is_valid = 1 THEN confidence_score ELSE excluded.confidence_score END,
    extraction_details = CASE WHEN is_valid = 1 THEN extraction_details ELSE excluded.extraction_details END,
    created_at = CASE WHEN is_valid = 1 THEN created_at ELSE excluded.created_at END,
    is_valid = 1
"""


def _ts(value: datetime) -> str:
    # fixed-width UTC text so that string comparison orders chronologically
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteCacheStore:
    """
    Durable store on a single SQLite file.
    Every statement runs under one connection lock; the upsert itself is atomic.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise CacheStorageError(f"Cache database unavailable at {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur
        except sqlite3.Error as e:
            self._conn.rollback()
            raise CacheStorageError(f"Cache query failed: {e}") from e

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
        return CacheEntry(
            url_hash=row["url_hash"],
            source_name=row["source_name"],
            extracted_date=_parse_ts(row["extracted_date"]),
            extraction_method=row["extraction_method"],
            confidence_score=row["confidence_score"],
            extraction_details=row["extraction_details"] or "",
            created_at=_parse_ts(row["created_at"]),
            last_verified_at=_parse_ts(row["last_verified_at"]),
            verification_count=row["verification_count"],
            is_valid=bool(row["is_valid"]),
        )

    def _select_valid(self, url_hash: str) -> Optional[CacheEntry]:
        row = self._execute(
            "SELECT * FROM article_date_cache WHERE url_hash = ? AND is_valid = 1",
            (url_hash,),
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def get(self, url_hash: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._select_valid(url_hash)

    def put(
        self,
        url_hash: str,
        source_name: str,
        extracted_date: datetime,
        extraction_method: str,
        confidence_score: float,
        extraction_details: str,
        now: datetime,
    ) -> CacheEntry:
        with self._lock:
            self._execute(
                _UPSERT,
                (
                    url_hash,
                    source_name,
                    _ts(extracted_date),
                    extraction_method,
                    float(confidence_score),
                    extraction_details or "",
                    _ts(now),
                ),
            )
            entry = self._select_valid(url_hash)
        if entry is None:
            raise CacheStorageError(f"Upsert did not persist entry {url_hash}")
        return entry

    def verify(self, url_hash: str, now: datetime) -> Optional[CacheEntry]:
        stamp = _ts(now)
        with self._lock:
            self._execute(
                """
                UPDATE article_date_cache
                SET verification_count = verification_count + 1,
                    last_verified_at = CASE
                        WHEN last_verified_at IS NULL OR last_verified_at < ? THEN ?
                        ELSE last_verified_at END
                WHERE url_hash = ? AND is_valid = 1
                """,
                (stamp, stamp, url_hash),
            )
            return self._select_valid(url_hash)

    def invalidate_low_confidence(self, min_confidence: float) -> int:
        with self._lock:
            cur = self._execute(
                """
                UPDATE article_date_cache SET is_valid = 0
                WHERE is_valid = 1 AND (confidence_score < ? OR verification_count = 0)
                """,
                (float(min_confidence),),
            )
            return cur.rowcount

    def prune_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            cur = self._execute("DELETE FROM article_date_cache WHERE created_at < ?", (_ts(cutoff),))
            return cur.rowcount

    def stats_by_source(self, source_name: str, since: datetime) -> List[MethodStats]:
        with self._lock:
            rows = self._execute(
                """
                SELECT extraction_method, COUNT(*) AS n, AVG(confidence_score) AS avg_conf
                FROM article_date_cache
                WHERE source_name = ? AND is_valid = 1 AND created_at >= ?
                GROUP BY extraction_method
                ORDER BY n DESC, extraction_method
                """,
                (source_name, _ts(since)),
            ).fetchall()
        return [
            MethodStats(method=r["extraction_method"], count=r["n"], average_confidence=r["avg_conf"] or 0.0)
            for r in rows
        ]

    def hit_rate(self, source_name: str, since: datetime) -> int:
        with self._lock:
            row = self._execute(
                """
                SELECT COUNT(*) AS n FROM article_date_cache
                WHERE source_name = ? AND is_valid = 1 AND verification_count > 1 AND created_at >= ?
                """,
                (source_name, _ts(since)),
            ).fetchone()
        return int(row["n"])

    def learning_data(self, source_name: str, since: datetime, min_confidence: float) -> List[CacheEntry]:
        with self._lock:
            rows = self._execute(
                """
                SELECT * FROM article_date_cache
                WHERE source_name = ? AND is_valid = 1 AND confidence_score >= ? AND created_at >= ?
                ORDER BY created_at DESC
                """,
                (source_name, float(min_confidence), _ts(since)),
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def count(self, include_invalid: bool = False) -> int:
        sql = "SELECT COUNT(*) AS n FROM article_date_cache"
        if not include_invalid:
            sql += " WHERE is_valid = 1"
        with self._lock:
            return int(self._execute(sql).fetchone()["n"])


class LearningCache:
    """
    Learned publish dates keyed by the content address of the article URL.

    The cache is an optimization: storage faults are logged and degrade to
    a miss (reads) or a dropped write, never an exception for the caller.
    """

    def __init__(self, store: CacheStore, settings: Optional[DateFilterSettings] = None) -> None:
        self.store = store
        self.settings = settings or DateFilterSettings()

    def lookup(self, url: str, source_name: str, now: Optional[datetime] = None) -> Optional[DateEstimationResult]:
        if not url or not url.strip():
            return None
        now = now or utc_now()
        try:
            entry = self.store.verify(url_hash(url), now)
        except Exception as e:
            logger.warning(f"date cache read failed, treating as miss [{source_name}]: {e}")
            return None

        if entry is None or entry.confidence_score <= 0.0:
            return None

        logger.info(
            f"date cache hit [{source_name}]: {entry.extraction_method} "
            f"(confidence {entry.confidence_score:.2f}, seen {entry.verification_count}x)"
        )
        return DateEstimationResult(
            estimated_date=entry.extracted_date,
            confidence=entry.confidence_score,
            method=EstimationMethod.CACHE,
            rationale=f"cached {entry.extraction_method}: {entry.extraction_details}",
        )

    def get(self, url: str) -> Optional[CacheEntry]:
        try:
            return self.store.get(url_hash(url))
        except Exception as e:
            logger.warning(f"date cache read failed: {e}")
            return None

    def remember(
        self,
        url: str,
        source_name: str,
        result: DateEstimationResult,
        now: Optional[datetime] = None,
    ) -> Optional[CacheEntry]:
        """Create-or-verify the entry for `url`. Cache hits and weak guesses are not stored."""
        if not url or not url.strip() or not result.is_valid:
            return None
        if result.method == EstimationMethod.CACHE:
            return None
        if result.confidence < self.settings.cache_write_floor:
            return None

        try:
            entry = self.store.put(
                url_hash(url),
                source_name,
                result.estimated_date,
                result.method.value,
                result.confidence,
                result.rationale,
                now or utc_now(),
            )
        except Exception as e:
            logger.warning(f"date cache write dropped [{source_name}]: {e}")
            return None

        logger.info(
            f"date cache stored [{source_name}]: {entry.extraction_method} "
            f"(confidence {entry.confidence_score:.2f}, seen {entry.verification_count}x)"
        )
        return entry

    def cleanup(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or utc_now()) - timedelta(days=self.settings.cache_retention_days)
        deleted = self.store.prune_older_than(cutoff)
        logger.info(f"date cache cleanup: {deleted} entries older than {cutoff.isoformat()} deleted")
        return deleted

    def invalidate(self, min_confidence: Optional[float] = None) -> int:
        floor = self.settings.invalidation_floor if min_confidence is None else min_confidence
        n = self.store.invalidate_low_confidence(floor)
        logger.info(f"date cache invalidated {n} entries below confidence {floor:.2f}")
        return n

    def stats(self, source_name: str, days: int = 7, now: Optional[datetime] = None) -> List[MethodStats]:
        return self.store.stats_by_source(source_name, (now or utc_now()) - timedelta(days=days))

    def hits(self, source_name: str, days: int = 7, now: Optional[datetime] = None) -> int:
        return self.store.hit_rate(source_name, (now or utc_now()) - timedelta(days=days))

    def learning_data(
        self,
        source_name: str,
        days: int = 7,
        min_confidence: float = 0.7,
        now: Optional[datetime] = None,
    ) -> List[CacheEntry]:
        return self.store.learning_data(source_name, (now or utc_now()) - timedelta(days=days), min_confidence)
