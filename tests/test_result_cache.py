import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from grant_engine.core.errors import ResultTimeout
from grant_engine.storage.result_cache import MemoryKeyValueCache, ResultCache, SqliteKeyValueCache


class Clock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class BrokenStore:
    """Key/value store whose every call fails."""

    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value_json, stored_at):
        raise OSError("disk unavailable")

    def delete(self, key):
        raise OSError("disk unavailable")

    def delete_older_than(self, cutoff):
        raise OSError("disk unavailable")


@pytest.fixture
def cache():
    result_cache = ResultCache(MemoryKeyValueCache())
    yield result_cache
    result_cache.close()


def test_miss_then_hit(cache):
    calls = []

    def compute():
        calls.append(1)
        return {"score": 72}

    assert cache.get_or_compute("k1", compute) == ({"score": 72}, False)
    assert cache.get_or_compute("k1", compute) == ({"score": 72}, True)
    assert len(calls) == 1
    assert cache.inflight == 0


def test_concurrent_requests_share_one_computation(cache):
    started = threading.Event()
    release = threading.Event()
    calls = []

    def compute():
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        return {"value": "shared"}

    results = []

    def worker():
        results.append(cache.get_or_compute("same", compute, timeout=10))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    assert started.wait(timeout=5)
    time.sleep(0.1)
    release.set()
    for thread in threads:
        thread.join(timeout=10)

    assert len(calls) == 1
    assert len(results) == 8
    assert all(value == {"value": "shared"} for value, _ in results)


def test_timeout_leaves_computation_running(cache):
    release = threading.Event()

    def compute():
        release.wait(timeout=5)
        return "done"

    with pytest.raises(ResultTimeout) as exc:
        cache.get_or_compute("slow", compute, timeout=0.05)
    assert exc.value.recoverable is True

    release.set()
    deadline = time.time() + 5
    while cache.inflight and time.time() < deadline:
        time.sleep(0.01)

    assert cache.get_or_compute("slow", lambda: "recomputed") == ("done", True)


def test_compute_error_reaches_caller_and_is_not_cached(cache):
    def failing():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        cache.get_or_compute("bad", failing)

    assert cache.inflight == 0
    assert cache.get_or_compute("bad", lambda: 1) == (1, False)


def test_ttl_expiry_and_cleanup():
    clock = Clock()
    cache = ResultCache(MemoryKeyValueCache(), ttl_hours=24, clock=clock)
    try:
        cache.set("k", {"a": 1})
        clock.advance(hours=23)
        assert cache.get("k") == {"a": 1}

        clock.advance(hours=2)
        assert cache.get("k") is None
        assert cache.cleanup_expired() == 1
        assert cache.cleanup_expired() == 0
    finally:
        cache.close()


def test_broken_store_falls_back_to_compute():
    cache = ResultCache(BrokenStore())
    try:
        assert cache.get_or_compute("k", lambda: {"ok": True}) == ({"ok": True}, False)
        assert cache.get_or_compute("k", lambda: {"ok": True}) == ({"ok": True}, False)
    finally:
        cache.close()


def test_undecodable_entry_is_recomputed(cache):
    cache.set("k", {"unexpected": "shape"})

    def decode(raw):
        return raw["expected"]

    value, hit = cache.get_or_compute("k", lambda: "fresh", encode=lambda v: {"expected": v}, decode=decode)
    assert (value, hit) == ("fresh", False)
    assert cache.get("k") == {"expected": "fresh"}


def test_sqlite_store(database):
    store = SqliteKeyValueCache(db=database)
    stored_at = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    store.set("k", '{"a": 1}', stored_at)
    store.set("k", '{"a": 2}', stored_at)

    assert store.get("k") == ('{"a": 2}', stored_at)
    assert store.get("missing") is None
    assert store.delete_older_than(stored_at + timedelta(seconds=1)) == 1
    assert store.get("k") is None


def test_cache_over_sqlite(database):
    clock = Clock()
    cache = ResultCache(SqliteKeyValueCache(db=database), ttl_hours=1, clock=clock)
    try:
        assert cache.get_or_compute("k", lambda: [1, 2]) == ([1, 2], False)
        assert cache.get_or_compute("k", lambda: [3]) == ([1, 2], True)
        clock.advance(hours=2)
        assert cache.get_or_compute("k", lambda: [3]) == ([3], False)
    finally:
        cache.close()


class LateWriteStore(MemoryKeyValueCache):
    """The entry appears after the first read, as if another caller just finished."""

    def __init__(self):
        super().__init__()
        self.reads = 0
        self.reads_under_lock = 0
        self.cache = None

    def get(self, key):
        self.reads += 1
        if self.cache is not None and self.cache._lock.locked():
            self.reads_under_lock += 1
        if self.reads == 2:
            self.set(key, '{"value": "late"}', datetime.now(timezone.utc))
        return super().get(key)


def test_second_read_happens_outside_the_lock():
    store = LateWriteStore()
    cache = ResultCache(store)
    store.cache = cache
    calls = []
    try:
        result = cache.get_or_compute("k", lambda: calls.append(1) or {"value": "computed"})
    finally:
        cache.close()

    assert result == ({"value": "late"}, True)
    assert calls == []
    assert store.reads == 2
    assert store.reads_under_lock == 0
