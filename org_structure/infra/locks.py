from __future__ import annotations

import os
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from redis.exceptions import LockError, RedisError

from org_structure.infra.redis_state import get_redis

LOGGER = structlog.get_logger(__name__)

ORG_LOCK_BACKEND = os.getenv("ORG_LOCK_BACKEND", "redis")
ORG_LOCK_TIMEOUT_SECONDS = float(os.getenv("ORG_LOCK_TIMEOUT_SECONDS", "10"))
ORG_LOCK_WAIT_SECONDS = float(os.getenv("ORG_LOCK_WAIT_SECONDS", "5"))
LOCK_KEY_PREFIX = "org-lock:"


class LockUnavailableError(Exception):
    pass


_local_guard = threading.Lock()
# Entries drop out once no holder or waiter references the lock.
_local_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()


def _local_lock(name: str) -> threading.Lock:
    with _local_guard:
        lock = _local_locks.get(name)
        if lock is None:
            lock = threading.Lock()
            _local_locks[name] = lock
        return lock


@contextmanager
def _hold_local(name: str) -> Iterator[None]:
    lock = _local_lock(name)
    if not lock.acquire(timeout=ORG_LOCK_WAIT_SECONDS):
        raise LockUnavailableError(f"Lock busy: {name}")
    try:
        yield
    finally:
        lock.release()


@contextmanager
def _hold_redis(name: str) -> Iterator[None]:
    lock = get_redis().lock(
        f"{LOCK_KEY_PREFIX}{name}",
        timeout=ORG_LOCK_TIMEOUT_SECONDS,
        blocking_timeout=ORG_LOCK_WAIT_SECONDS,
    )
    try:
        acquired = lock.acquire()
    except RedisError as exc:
        raise LockUnavailableError(f"Lock backend unavailable: {name}") from exc
    if not acquired:
        raise LockUnavailableError(f"Lock busy: {name}")
    try:
        yield
    finally:
        try:
            lock.release()
        except LockError:
            # Expired while held; the next holder already owns the key.
            LOGGER.warning("org.lock.release_failed", lock_name=name)


@contextmanager
def org_lock(name: str) -> Iterator[None]:
    """Mutual exclusion across workers for one read-modify-write section."""
    holder = _hold_local if ORG_LOCK_BACKEND == "local" else _hold_redis
    with holder(name):
        yield
