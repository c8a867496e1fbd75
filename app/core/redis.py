"""Optional Redis connection shared by the badge cache and chain locks.

Redis is never required: with ``REDIS_URL`` empty, or the server down, callers
get ``None`` and use their database / in-process fallback. A failed connect is
not retried on every request; the next attempt waits ``_RETRY_SECONDS``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import redis
from redis import Redis

from app.core.config import settings

logger = logging.getLogger("form_portal.redis")

KEY_PREFIX = "form_portal"
_RETRY_SECONDS = 30.0

_client: Optional[Redis] = None
_next_attempt = 0.0


def redis_key(*parts: object) -> str:
    """Namespaced key, e.g. ``form_portal:badge:7``."""
    return ":".join([KEY_PREFIX, *(str(p) for p in parts)])


def get_redis() -> Optional[Redis]:
    global _client, _next_attempt
    if _client is not None:
        return _client
    url = (settings.REDIS_URL or "").strip()
    if not url or time.monotonic() < _next_attempt:
        return None
    try:
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=2)
        client.ping()
    except redis.RedisError as exc:
        _next_attempt = time.monotonic() + _RETRY_SECONDS
        logger.warning("Redis unavailable, using local fallbacks for %.0fs: %s", _RETRY_SECONDS, exc)
        return None
    logger.info("Connected to Redis at %s", url.rsplit("@", 1)[-1])
    _client = client
    return _client
