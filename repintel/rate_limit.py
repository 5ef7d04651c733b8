"""
Reputation Intel — Rate Limiting

Redis-backed sliding windows on scan submission. Two windows apply to every
submit:

    ri:rl:scan:{hash(ip)}                → all scans from one client
    ri:rl:scan:target:{hash(ip|entity)}  → repeat scans of one entity

Only admitted requests are recorded, so a client that keeps retrying after a
429 gets back in once its oldest admitted request leaves the window.
"""
import hashlib
import time
import uuid
from typing import List, Optional, Tuple

import redis
import structlog
from fastapi import HTTPException, Request

from repintel.config import get_settings
from repintel.intel.errors import EntityUnresolvable
from repintel.intel.resolver import resolve_target

logger = structlog.get_logger()

_redis = None


def _get_redis():
    """Lazy Redis connection. None when no REDIS_URL is configured or Redis is down."""
    global _redis
    if _redis is not None:
        return _redis
    settings = get_settings()
    if not settings.REDIS_URL:
        return None
    try:
        _redis = redis.from_url(settings.REDIS_URL, decode_responses=True)
        _redis.ping()
        logger.info("rate_limiter_redis_connected")
        return _redis
    except redis.RedisError as e:
        _redis = None
        logger.warning("rate_limiter_redis_unavailable", error=str(e))
        return None


def _client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For from a reverse proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _rate_key(scope: str, *parts: str) -> str:
    digest = hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]
    return f"ri:rl:{scope}:{digest}"


def target_scope(target: str) -> str:
    """Entity a submit counts against. Spellings of one entity share a window."""
    try:
        return resolve_target(target).cache_key
    except EntityUnresolvable:
        return target.strip().lower()


async def check_rate_limit(
    request: Request,
    endpoint: str = "scan",
    max_requests: int = 10,
    window_seconds: int = 60,
    target: Optional[str] = None,
    max_per_target: int = 0,
) -> None:
    """
    Sliding window rate limiter using Redis.
    Raises 429 if any window is full; the rejected request is not recorded.
    Falls through silently if Redis is unavailable (fail-open).
    """
    if not get_settings().RATE_LIMIT_ENABLED:
        return
    r = _get_redis()
    if r is None:
        return

    ip = _client_ip(request)
    windows: List[Tuple[str, int]] = [(_rate_key(endpoint, ip), max_requests)]
    if target and max_per_target:
        windows.append((_rate_key(f"{endpoint}:target", ip, target), max_per_target))

    now = time.time()
    try:
        # ── Count ──
        pipe = r.pipeline()
        for key, _ in windows:
            pipe.zremrangebyscore(key, 0, now - window_seconds)
            pipe.zcard(key)
        counts = pipe.execute()[1::2]

        for (key, limit), count in zip(windows, counts):
            if count >= limit:
                oldest = r.zrange(key, 0, 0, withscores=True)
                retry_after = int(window_seconds - (now - oldest[0][1])) + 1 if oldest else window_seconds

                logger.warning("rate_limit_exceeded",
                               ip=ip[:8] + "...", endpoint=endpoint, per_target=key != windows[0][0],
                               count=count, limit=limit)

                raise HTTPException(
                    status_code=429,
                    detail=f"Rate limit exceeded. Max {limit} requests per {window_seconds}s.",
                    headers={"Retry-After": str(max(1, retry_after))},
                )

        # ── Admit ──
        pipe = r.pipeline()
        for key, _ in windows:
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, window_seconds + 1)
        pipe.execute()
    except redis.RedisError as e:
        logger.warning("rate_limit_check_failed", error=str(e))


async def rate_limit_scan(request: Request, target: str) -> None:
    """Scans fan out to every paid source: limited per client and per client+entity."""
    settings = get_settings()
    await check_rate_limit(
        request,
        endpoint="scan",
        max_requests=settings.RATE_LIMIT_SCAN_PER_MINUTE,
        window_seconds=60,
        target=target_scope(target),
        max_per_target=settings.RATE_LIMIT_TARGET_PER_MINUTE,
    )
