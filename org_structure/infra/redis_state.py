from __future__ import annotations

import os
from functools import lru_cache

import structlog
from redis import Redis

LOGGER = structlog.get_logger(__name__)

# Only the redis lock backend talks to this instance.
REDIS_URL = os.getenv("ORG_LOCK_REDIS_URL") or os.getenv("REDIS_URL", "redis://redis:6379/0")
REDIS_SOCKET_TIMEOUT_SECONDS = float(os.getenv("ORG_LOCK_REDIS_SOCKET_TIMEOUT_SECONDS", "2"))


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(
        REDIS_URL,
        decode_responses=True,
        socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=30,
    )


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        LOGGER.warning("org.redis.not_ready", exc_info=True)
        return False
