"""
Score Result Cache

Content-addressed cache for résumé/opportunity scoring results.
Key: score_cache_{opportunity_id}_{md5(trimmed résumé text)}
Value: JSON {"score": <result>, "timestamp": <ms since epoch>, "resumeHash": <md5>}

Editing a résumé changes the hash, so stale scores are never served for the new text;
nothing has to invalidate them explicitly. Entries older than the TTL are misses and are
evicted on read; `set` also sweeps other expired entries.

The cache never raises: substrate failures degrade to a miss (or a no-op on writes).
"""

import hashlib
import json
import logging
import time
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session, sessionmaker

from ..models.kv_cache import KVCacheEntry

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "score_cache_"
DEFAULT_TTL_S = 24 * 60 * 60


class CacheStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def delete_expired(self, prefix: str, cutoff_ms: int, *, skip: str | None = None) -> int: ...


def _is_expired(raw: str | None, cutoff_ms: int) -> bool:
    """True for payloads written at or before `cutoff_ms`, and for anything unreadable."""
    try:
        entry = json.loads(raw) if raw is not None else None
    except json.JSONDecodeError:
        return True
    if not isinstance(entry, dict):
        return True
    ts = entry.get("timestamp")
    return not isinstance(ts, (int, float)) or ts <= cutoff_ms


class InMemoryCacheStore:
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def delete_expired(self, prefix: str, cutoff_ms: int, *, skip: str | None = None) -> int:
        expired = [
            k for k, v in self._data.items()
            if k.startswith(prefix) and k != skip and _is_expired(v, cutoff_ms)
        ]
        for k in expired:
            del self._data[k]
        return len(expired)


class DatabaseCacheStore:
    """Key/value rows in the `kv_cache` table; one short-lived session per operation."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        db: Session = self._session_factory()
        try:
            row = db.query(KVCacheEntry).filter(KVCacheEntry.key == key).first()
            return row.value if row else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db: Session = self._session_factory()
        try:
            # merge() = last writer wins on the primary key.
            db.merge(KVCacheEntry(key=key, value=value))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db: Session = self._session_factory()
        try:
            db.query(KVCacheEntry).filter(KVCacheEntry.key == key).delete()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def keys(self, prefix: str = "") -> list[str]:
        db: Session = self._session_factory()
        try:
            rows = db.query(KVCacheEntry.key).filter(KVCacheEntry.key.startswith(prefix, autoescape=True)).all()
            return [r[0] for r in rows]
        finally:
            db.close()

    def delete_expired(self, prefix: str, cutoff_ms: int, *, skip: str | None = None) -> int:
        # Timestamps live inside the JSON payload, so rows are read once and the
        # expired ones removed with a single bulk DELETE, all in one session.
        db: Session = self._session_factory()
        try:
            q = db.query(KVCacheEntry.key, KVCacheEntry.value).filter(
                KVCacheEntry.key.startswith(prefix, autoescape=True)
            )
            if skip is not None:
                q = q.filter(KVCacheEntry.key != skip)
            expired = [key for key, value in q.all() if _is_expired(value, cutoff_ms)]
            if expired:
                db.query(KVCacheEntry).filter(KVCacheEntry.key.in_(expired)).delete(synchronize_session=False)
                db.commit()
            return len(expired)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def resume_hash(resume_text: str) -> str:
    return hashlib.md5((resume_text or "").strip().encode("utf-8")).hexdigest()


def make_cache_key(resume_text: str, opportunity_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}{opportunity_id}_{resume_hash(resume_text)}"


class ScoreResultCache:
    def __init__(
        self,
        store: CacheStore,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_ms = int(ttl_s * 1000)
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_fresh(self, timestamp: Any, now_ms: int) -> bool:
        return isinstance(timestamp, (int, float)) and now_ms - timestamp < self.ttl_ms

    def get(self, resume_text: str, opportunity_id: str) -> Any | None:
        """Cached score payload, or None on miss / expiry / substrate error."""
        try:
            key = make_cache_key(resume_text, opportunity_id)
            raw = self.store.get(key)
            if raw is None:
                logger.debug("Score cache MISS opportunity=%s", opportunity_id)
                return None

            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Score cache corruption for key %s: invalid JSON", key)
                self.store.delete(key)
                return None

            if not isinstance(entry, dict) or not self._is_fresh(entry.get("timestamp"), self._now_ms()):
                logger.debug("Score cache expired for key %s", key)
                self.store.delete(key)
                return None

            logger.debug("Score cache HIT opportunity=%s", opportunity_id)
            return entry.get("score")
        except Exception as e:
            logger.warning("Score cache retrieval error: %s", e)
            return None

    def set(self, resume_text: str, opportunity_id: str, score: Any) -> bool:
        """Store `score`; returns False (never raises) when the substrate fails."""
        try:
            key = make_cache_key(resume_text, opportunity_id)
            payload = {
                "score": score,
                "timestamp": self._now_ms(),
                "resumeHash": resume_hash(resume_text),
            }
            self.store.set(key, json.dumps(payload, ensure_ascii=False))
        except Exception as e:
            logger.warning("Score cache storage error: %s", e)
            return False

        try:
            self._sweep_expired(skip=key)
        except Exception as e:
            logger.warning("Score cache sweep error: %s", e)
        return True

    def _sweep_expired(self, *, skip: str) -> int:
        removed = self.store.delete_expired(CACHE_KEY_PREFIX, self._now_ms() - self.ttl_ms, skip=skip)
        if removed:
            logger.info("Swept %s expired score cache entries", removed)
        return removed

    def clear(self) -> int:
        try:
            keys = self.store.keys(CACHE_KEY_PREFIX)
            for key in keys:
                self.store.delete(key)
            logger.info("Cleared %s score cache entries", len(keys))
            return len(keys)
        except Exception as e:
            logger.warning("Score cache clear error: %s", e)
            return 0

    def stats(self) -> dict[str, Any]:
        try:
            return {
                "entries": len(self.store.keys(CACHE_KEY_PREFIX)),
                "ttl_s": self.ttl_ms // 1000,
            }
        except Exception as e:
            logger.warning("Score cache stats error: %s", e)
            return {}
