import hashlib
import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


RESUME = "Jane Doe\nProduct Manager\nBuilt an LLM support bot used by 3k users.\n"
SCORE = {
    "total_score": 72.0,
    "recommendation_level": "Recommended with caution",
    "scores": {"ai_experience": {"score": 3, "reason": "bot project"}},
    "breakdown": [{"dimension": "Background & experience", "score": 60, "weight": 19}],
}


@pytest.fixture()
def cache(clock):
    from backend.jobdesk.services.score_cache import InMemoryCacheStore, ScoreResultCache

    return ScoreResultCache(InMemoryCacheStore(), clock=clock)


def test_set_then_get_returns_equal_payload(cache):
    assert cache.set(RESUME, "opp-1", SCORE) is True
    assert cache.get(RESUME, "opp-1") == SCORE


def test_key_ignores_surrounding_whitespace_only(cache):
    cache.set(RESUME, "opp-1", SCORE)
    assert cache.get("  " + RESUME.strip() + "\n\n", "opp-1") == SCORE


def test_single_character_difference_misses(cache):
    cache.set(RESUME, "opp-1", SCORE)
    assert cache.get(RESUME.replace("3k", "4k"), "opp-1") is None
    assert cache.get(RESUME, "opp-2") is None


def test_persisted_layout(cache):
    from backend.jobdesk.services.score_cache import make_cache_key

    cache.set(RESUME, "opp-9", SCORE)
    digest = hashlib.md5(RESUME.strip().encode("utf-8")).hexdigest()
    key = make_cache_key(RESUME, "opp-9")
    assert key == f"score_cache_opp-9_{digest}"

    stored = json.loads(cache.store.get(key))
    assert stored["score"] == SCORE
    assert stored["resumeHash"] == digest
    assert stored["timestamp"] == int(cache._clock() * 1000)


def test_expired_entry_is_a_miss_and_is_evicted(cache, clock):
    cache.set(RESUME, "opp-1", SCORE)
    clock.advance(24 * 60 * 60 - 1)
    assert cache.get(RESUME, "opp-1") == SCORE

    clock.advance(2)
    assert cache.get(RESUME, "opp-1") is None
    assert cache.store.keys("score_cache_") == []


def test_set_sweeps_other_expired_entries(cache, clock):
    cache.set(RESUME, "old", SCORE)
    clock.advance(25 * 60 * 60)
    cache.set(RESUME, "new", SCORE)
    assert len(cache.store.keys("score_cache_")) == 1
    assert cache.get(RESUME, "new") == SCORE


def test_set_overwrites_previous_entry(cache):
    cache.set(RESUME, "opp-1", SCORE)
    cache.set(RESUME, "opp-1", {"total_score": 10})
    assert cache.get(RESUME, "opp-1") == {"total_score": 10}


def test_corrupt_entry_is_a_miss(cache):
    from backend.jobdesk.services.score_cache import make_cache_key

    cache.store.set(make_cache_key(RESUME, "opp-1"), "{not json")
    assert cache.get(RESUME, "opp-1") is None


def test_clear_only_removes_score_entries(cache):
    cache.set(RESUME, "a", SCORE)
    cache.set(RESUME, "b", SCORE)
    cache.store.set("other_key", "keep me")
    assert cache.clear() == 2
    assert cache.get(RESUME, "a") is None
    assert cache.store.get("other_key") == "keep me"
    assert cache.stats()["entries"] == 0


class _BrokenStore:
    def get(self, key):
        raise RuntimeError("substrate down")

    def set(self, key, value):
        raise RuntimeError("substrate down")

    def delete(self, key):
        raise RuntimeError("substrate down")

    def keys(self, prefix=""):
        raise RuntimeError("substrate down")

    def delete_expired(self, prefix, cutoff_ms, *, skip=None):
        raise RuntimeError("substrate down")


def test_store_failures_degrade_to_miss():
    from backend.jobdesk.services.score_cache import ScoreResultCache

    cache = ScoreResultCache(_BrokenStore())
    assert cache.get(RESUME, "opp-1") is None
    assert cache.set(RESUME, "opp-1", SCORE) is False
    assert cache.clear() == 0
    assert cache.stats() == {}


def test_database_store_round_trip(tmp_path, clock):
    from backend.jobdesk.database import Base
    from backend.jobdesk.models.kv_cache import KVCacheEntry  # noqa: F401
    from backend.jobdesk.services.score_cache import DatabaseCacheStore, ScoreResultCache

    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'cache.sqlite3'}")
    Base.metadata.create_all(bind=engine)
    store = DatabaseCacheStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    cache = ScoreResultCache(store, clock=clock)

    cache.set(RESUME, "opp_1", SCORE)
    cache.set(RESUME, "opp_1", {"total_score": 88})
    assert cache.get(RESUME, "opp_1") == {"total_score": 88}
    assert len(store.keys("score_cache_")) == 1

    clock.advance(24 * 60 * 60 + 1)
    assert cache.get(RESUME, "opp_1") is None
    assert store.keys("score_cache_") == []


def test_database_store_sweeps_expired_rows_in_bulk(tmp_path, clock, monkeypatch):
    from backend.jobdesk.database import Base
    from backend.jobdesk.models.kv_cache import KVCacheEntry  # noqa: F401
    from backend.jobdesk.services.score_cache import DatabaseCacheStore, ScoreResultCache

    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'sweep.sqlite3'}")
    Base.metadata.create_all(bind=engine)
    store = DatabaseCacheStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    cache = ScoreResultCache(store, clock=clock)

    cache.set(RESUME, "old-1", SCORE)
    cache.set(RESUME, "old-2", SCORE)
    store.set("score_cache_garbage", "{not json")
    store.set("other_key", "keep me")
    clock.advance(12 * 60 * 60)
    cache.set(RESUME, "recent", SCORE)
    clock.advance(13 * 60 * 60)

    # The sweep must not fall back to reading entries one at a time.
    def _no_per_key_reads(key):
        raise AssertionError(f"unexpected per-key read of {key}")

    monkeypatch.setattr(store, "get", _no_per_key_reads)
    assert cache.set(RESUME, "new", SCORE) is True
    monkeypatch.undo()

    assert sorted(store.keys("score_cache_")) == sorted(
        [f"score_cache_recent_{hashlib.md5(RESUME.strip().encode()).hexdigest()}",
         f"score_cache_new_{hashlib.md5(RESUME.strip().encode()).hexdigest()}"]
    )
    assert store.get("other_key") == "keep me"
    assert cache.get(RESUME, "recent") == SCORE
