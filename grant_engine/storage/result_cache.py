"""
Result cache with TTL and per-fingerprint coalescing.

Concurrent requests for the same fingerprint share one in-flight computation;
every waiter receives the same result. Entries expire lazily: an expired
entry is ignored on read and recomputed, and only cleanup_expired() deletes.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from grant_engine.core.errors import CacheError, ResultTimeout
from grant_engine.core.time_utils import utcnow, ensure_aware
from .db import Database

logger = logging.getLogger(__name__)


class MemoryKeyValueCache:
    """In-process key/value store. Used when no cache path is configured."""

    def __init__(self):
        self._entries: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Tuple[str, datetime]]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value_json: str, stored_at: datetime) -> None:
        with self._lock:
            self._entries[key] = (value_json, stored_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [k for k, (_, stored_at) in self._entries.items() if stored_at < cutoff]
            for key in expired:
                del self._entries[key]
        return len(expired)


class SqliteKeyValueCache:
    """Key/value store in the result_cache table."""

    def __init__(self, db_path: str = "data/result_cache.db", db: Optional[Database] = None):
        self.db = db or Database(db_path)
        self._ph = self.db.placeholder

    def get(self, key: str) -> Optional[Tuple[str, datetime]]:
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT value_json, stored_at FROM result_cache WHERE cache_key = {self._ph}",
                (key,),
            )
            row = cursor.fetchone()

        if not row:
            return None
        return row["value_json"], ensure_aware(datetime.fromisoformat(row["stored_at"]))

    def set(self, key: str, value_json: str, stored_at: datetime) -> None:
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO result_cache (cache_key, value_json, stored_at)
                VALUES ({self._ph}, {self._ph}, {self._ph})
                ON CONFLICT(cache_key) DO UPDATE SET
                    value_json=excluded.value_json,
                    stored_at=excluded.stored_at
                """,
                (key, value_json, stored_at.isoformat()),
            )

    def delete(self, key: str) -> None:
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"DELETE FROM result_cache WHERE cache_key = {self._ph}", (key,))

    def delete_older_than(self, cutoff: datetime) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"DELETE FROM result_cache WHERE stored_at < {self._ph}", (cutoff.isoformat(),))
            return cursor.rowcount


class ResultCache:
    """
    TTL cache of JSON-serializable analysis results, with coalescing.

    Usage:
        cache = ResultCache(SqliteKeyValueCache("data/cache.db"), ttl_hours=24)
        value, hit = cache.get_or_compute(key, compute, timeout=30)
    """

    def __init__(
        self,
        store: Optional[Any] = None,
        ttl_hours: float = 24.0,
        max_workers: int = 8,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize result cache.

        Args:
            store: Key/value store (MemoryKeyValueCache or SqliteKeyValueCache)
            ttl_hours: Entry lifetime
            max_workers: Threads running shared computations
            clock: Current-time function (injectable for tests)
        """
        self.store = store if store is not None else MemoryKeyValueCache()
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="result-cache")

    # -------------------------------------------------------------------------
    # Plain get / set
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """
        Read a live entry.

        Returns:
            Decoded JSON value, or None when missing or expired

        Raises:
            CacheError: store read failed or the entry is corrupt
        """
        try:
            entry = self.store.get(key)
        except Exception as e:
            raise CacheError(f"cache read failed: {e}", field=key[:12])

        if entry is None:
            return None

        value_json, stored_at = entry
        if self._clock() - ensure_aware(stored_at) > self.ttl:
            logger.debug(f"Cache expired for {key[:12]}")
            return None

        try:
            return json.loads(value_json)
        except ValueError as e:
            raise CacheError(f"corrupt cache entry: {e}", field=key[:12])

    def set(self, key: str, value: Any) -> None:
        """
        Raises:
            CacheError: value not serializable or store write failed
        """
        try:
            value_json = json.dumps(value, sort_keys=True, default=str)
            self.store.set(key, value_json, self._clock())
        except Exception as e:
            raise CacheError(f"cache write failed: {e}", field=key[:12])

    def invalidate(self, key: str) -> None:
        try:
            self.store.delete(key)
        except Exception as e:
            raise CacheError(f"cache delete failed: {e}", field=key[:12])

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns the number deleted."""
        cutoff = self._clock() - self.ttl
        try:
            deleted = self.store.delete_older_than(cutoff)
        except Exception as e:
            raise CacheError(f"cache cleanup failed: {e}")

        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired cache entries")
        return deleted

    # -------------------------------------------------------------------------
    # Coalesced computation
    # -------------------------------------------------------------------------

    def _read_soft(self, key: str, decode: Callable[[Any], Any]) -> Optional[Any]:
        try:
            raw = self.get(key)
        except CacheError as e:
            logger.warning(f"{e}; computing directly")
            return None
        if raw is None:
            return None
        try:
            return decode(raw)
        except Exception as e:
            logger.warning(f"Discarding undecodable cache entry {key[:12]}: {e}")
            return None

    def _write_soft(self, key: str, value: Any, encode: Callable[[Any], Any]) -> None:
        try:
            self.set(key, encode(value))
        except CacheError as e:
            logger.warning(f"{e}; result not cached")

    def _run(self, key: str, compute: Callable[[], Any], encode: Callable[[Any], Any]) -> Any:
        try:
            value = compute()
            self._write_soft(key, value, encode)
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        encode: Callable[[Any], Any] = lambda v: v,
        decode: Callable[[Any], Any] = lambda v: v,
        timeout: Optional[float] = None,
    ) -> Tuple[Any, bool]:
        """
        Return the cached value for `key`, computing it at most once.

        A caller that times out stops waiting; the shared computation keeps
        running for the other waiters and still populates the cache.

        Args:
            key: Fingerprint
            compute: Zero-argument function producing the value
            encode: Value -> JSON-ready structure
            decode: JSON-ready structure -> value
            timeout: Seconds this caller is willing to wait

        Returns:
            (value, cache_hit)

        Raises:
            ResultTimeout: this caller gave up waiting
            Exception: whatever compute() raised (shared by all waiters)
        """
        cached = self._read_soft(key, decode)
        if cached is not None:
            logger.debug(f"Cache hit {key[:12]}")
            return cached, True

        with self._lock:
            future = self._inflight.get(key)

        if future is None:
            # A computation may have finished since the first read
            cached = self._read_soft(key, decode)
            if cached is not None:
                return cached, True
            with self._lock:
                future = self._inflight.get(key)
                if future is None:
                    future = self._executor.submit(self._run, key, compute, encode)
                    self._inflight[key] = future
                    logger.debug(f"Cache miss {key[:12]}, computing")
                else:
                    logger.debug(f"Joining in-flight computation {key[:12]}")
        else:
            logger.debug(f"Joining in-flight computation {key[:12]}")

        try:
            return future.result(timeout=timeout), False
        except FutureTimeout:
            logger.warning(f"Gave up waiting for {key[:12]} after {timeout}s; computation continues")
            raise ResultTimeout(f"result not ready after {timeout}s", field=key[:12])

    @property
    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
