from __future__ import annotations

import gc
import threading
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from org_structure.infra import locks


class _StubLock:
    def __init__(self, acquire_result: bool | Exception, release_error: bool = False) -> None:
        self.acquire_result = acquire_result
        self.release_error = release_error
        self.released = False

    def acquire(self) -> bool:
        if isinstance(self.acquire_result, Exception):
            raise self.acquire_result
        return self.acquire_result

    def release(self) -> None:
        self.released = True
        if self.release_error:
            raise LockError("lock expired")


class _StubRedis:
    def __init__(self, lock: _StubLock) -> None:
        self._lock = lock
        self.calls: list[dict[str, Any]] = []

    def lock(self, name: str, **kwargs: Any) -> _StubLock:
        self.calls.append({"name": name, **kwargs})
        return self._lock


@pytest.fixture()
def local_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "local")
    monkeypatch.setattr(locks, "ORG_LOCK_WAIT_SECONDS", 0.05)


def test_local_lock_is_exclusive(local_backend: None) -> None:
    results: list[str] = []

    def _contender() -> None:
        try:
            with locks.org_lock("employee-assignment:e-1"):
                results.append("acquired")
        except locks.LockUnavailableError:
            results.append("busy")

    with locks.org_lock("employee-assignment:e-1"):
        worker = threading.Thread(target=_contender)
        worker.start()
        worker.join()
    assert results == ["busy"]

    worker = threading.Thread(target=_contender)
    worker.start()
    worker.join()
    assert results == ["busy", "acquired"]


def test_local_locks_are_per_name(local_backend: None) -> None:
    with locks.org_lock("a"), locks.org_lock("b"):
        pass


def test_local_lock_table_forgets_released_names(local_backend: None) -> None:
    for index in range(50):
        with locks.org_lock(f"employee-assignment:released-{index}"):
            assert f"employee-assignment:released-{index}" in locks._local_locks
    gc.collect()
    assert not any(name.startswith("employee-assignment:released-") for name in list(locks._local_locks))


def test_redis_lock_uses_prefix_and_timeouts(monkeypatch: pytest.MonkeyPatch) -> None:
    stub_lock = _StubLock(True)
    stub = _StubRedis(stub_lock)
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "redis")
    monkeypatch.setattr(locks, "get_redis", lambda: stub)

    with locks.org_lock("change-request:r-1"):
        pass

    assert stub.calls == [
        {
            "name": "org-lock:change-request:r-1",
            "timeout": locks.ORG_LOCK_TIMEOUT_SECONDS,
            "blocking_timeout": locks.ORG_LOCK_WAIT_SECONDS,
        }
    ]
    assert stub_lock.released is True


@pytest.mark.parametrize("acquire_result", [False, RedisConnectionError("down")])
def test_redis_lock_unavailable(monkeypatch: pytest.MonkeyPatch, acquire_result: bool | Exception) -> None:
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "redis")
    monkeypatch.setattr(locks, "get_redis", lambda: _StubRedis(_StubLock(acquire_result)))

    with pytest.raises(locks.LockUnavailableError):
        with locks.org_lock("employee-assignment:e-1"):
            pass


def test_expired_redis_lock_release_is_tolerated(monkeypatch: pytest.MonkeyPatch) -> None:
    stub_lock = _StubLock(True, release_error=True)
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "redis")
    monkeypatch.setattr(locks, "get_redis", lambda: _StubRedis(stub_lock))

    entered = False
    with locks.org_lock("employee-assignment:e-1"):
        entered = True
    assert entered
    assert stub_lock.released is True
