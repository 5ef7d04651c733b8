"""
Reputation Intel — Report Cache Layer

Every completed report is cached so repeat scans of the same entity don't
re-query four upstream providers.

Contract (both backends):
    get(key)              → report dict, or None when absent/expired
    put(key, report, ttl) → replaces any prior entry wholesale (last writer wins)
    delete(key)           → bool
    age_seconds(key)      → seconds since the entry was written, or None

Reads return a private copy; callers may mutate what they get back.

Key Schema (Redis):
    ri:report:{hash}       → Full JSON report (SETEX, expires with ttl)
    ri:report:meta:{hash}  → Cache metadata (entity key, cached_at, ttl, hits)

Dependencies: redis >= 5.0.0
"""
import abc
import hashlib
import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis
import structlog

from repintel.intel.errors import CacheUnavailable

logger = structlog.get_logger()

KEY_PREFIX = "ri:report"


def _normalize_key(key: str) -> str:
    """Hash an entity cache key into a Redis key suffix. Case is kept: base58 addresses are case-sensitive."""
    clean = key.strip()
    return hashlib.sha256(clean.encode("utf-8")).hexdigest()[:24]


class ReportCache(abc.ABC):
    backend = "abstract"

    @abc.abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    def put(self, key: str, report: Dict[str, Any], ttl: int) -> None:
        ...

    @abc.abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abc.abstractmethod
    def age_seconds(self, key: str) -> Optional[float]:
        ...

    def stats(self) -> Dict[str, Any]:
        return {"backend": self.backend}

    def close(self):
        pass


# =============================================
# REDIS
# =============================================

class RedisReportCache(ReportCache):
    """
    Production Redis cache for reports.

    Usage:
        cache = RedisReportCache("redis://localhost:6379/0")

        cached = cache.get("handle:someone")
        if cached:
            return cached

        # ... run the scan ...

        cache.put("handle:someone", report, ttl=21600)

    Connection and command failures raise CacheUnavailable; the scan
    orchestrator treats that as a miss on read and a no-op on write.
    """
    backend = "redis"

    def __init__(self, redis_url: str, prefix: str = KEY_PREFIX):
        self._url = redis_url
        self._prefix = prefix
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    def _connect(self) -> redis.Redis:
        """Lazy connect. Opens the pool on first use."""
        if self._client is None:
            try:
                self._pool = redis.ConnectionPool.from_url(
                    self._url,
                    max_connections=20,
                    decode_responses=True,
                    socket_connect_timeout=3,
                    socket_timeout=2,
                    retry_on_timeout=True,
                )
                client = redis.Redis(connection_pool=self._pool)
                client.ping()
                self._client = client
                logger.info("report_cache_connected", url=self._url.split("@")[-1])
            except redis.RedisError as e:
                logger.warning("report_cache_unavailable", error=str(e))
                self._disconnect()
                raise CacheUnavailable(f"Redis unavailable: {e}") from e
        return self._client

    def _disconnect(self):
        if self._pool:
            self._pool.disconnect()
        self._pool = None
        self._client = None

    def _keys(self, key: str) -> Tuple[str, str]:
        suffix = _normalize_key(key)
        return f"{self._prefix}:{suffix}", f"{self._prefix}:meta:{suffix}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        client = self._connect()
        data_key, meta_key = self._keys(key)
        try:
            raw = client.get(data_key)
            if not raw:
                return None
            client.hincrby(meta_key, "hits", 1)
        except redis.RedisError as e:
            raise CacheUnavailable(f"cache read failed: {e}") from e
        logger.debug("cache_hit", key=key[:80])
        return json.loads(raw)

    def put(self, key: str, report: Dict[str, Any], ttl: int) -> None:
        client = self._connect()
        data_key, meta_key = self._keys(key)
        now = time.time()
        try:
            pipe = client.pipeline()
            pipe.setex(data_key, ttl, json.dumps(report, default=str))
            pipe.delete(meta_key)
            pipe.hset(meta_key, mapping={
                "key": key[:200],
                "cached_at": now,
                "ttl": ttl,
                "hits": 0,
            })
            pipe.expire(meta_key, ttl)
            pipe.execute()
        except redis.RedisError as e:
            raise CacheUnavailable(f"cache write failed: {e}") from e
        logger.debug("cache_set", key=key[:80], ttl=ttl)

    def delete(self, key: str) -> bool:
        client = self._connect()
        data_key, meta_key = self._keys(key)
        try:
            return bool(client.delete(data_key, meta_key))
        except redis.RedisError as e:
            raise CacheUnavailable(f"cache delete failed: {e}") from e

    def age_seconds(self, key: str) -> Optional[float]:
        client = self._connect()
        data_key, meta_key = self._keys(key)
        try:
            if not client.exists(data_key):
                return None
            cached_at = client.hget(meta_key, "cached_at")
        except redis.RedisError as e:
            raise CacheUnavailable(f"cache read failed: {e}") from e
        if cached_at is None:
            return None
        return max(0.0, time.time() - float(cached_at))

    def stats(self) -> Dict[str, Any]:
        """Return cache statistics."""
        try:
            client = self._connect()
            info = client.info("memory")
            reports = sum(1 for k in client.scan_iter(f"{self._prefix}:*", count=500) if ":meta:" not in k)
            return {
                "backend": self.backend,
                "connected": True,
                "cached_reports": reports,
                "memory_used": info.get("used_memory_human", "?"),
            }
        except (CacheUnavailable, redis.RedisError) as e:
            return {"backend": self.backend, "connected": False, "error": str(e)}

    def close(self):
        """Shutdown cache connections."""
        if self._pool:
            self._disconnect()
            logger.info("report_cache_disconnected")


# =============================================
# IN-PROCESS
# =============================================

class MemoryReportCache(ReportCache):
    """
    Single-process cache. Entries are stored serialized, so every read is a
    snapshot and nothing the caller does to it leaks back into the cache.
    """
    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, int, str]] = {}  # key → (stored_at, ttl, json)

    def _live(self, key: str) -> Optional[Tuple[float, int, str]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, ttl, _ = entry
        if self._clock() - stored_at >= ttl:
            return None
        return entry

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._live(key)
        return json.loads(entry[2]) if entry else None

    def put(self, key: str, report: Dict[str, Any], ttl: int) -> None:
        self.purge_expired()
        self._entries[key] = (self._clock(), ttl, json.dumps(report, default=str))

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def age_seconds(self, key: str) -> Optional[float]:
        entry = self._live(key)
        return self._clock() - entry[0] if entry else None

    def purge_expired(self) -> int:
        expired = [k for k in self._entries if self._live(k) is None]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "connected": True,
            "cached_reports": sum(1 for k in self._entries if self._live(k)),
        }


def build_cache(settings) -> ReportCache:
    if settings.CACHE_BACKEND == "redis":
        return RedisReportCache(settings.REDIS_URL or "redis://localhost:6379/0")
    return MemoryReportCache()
