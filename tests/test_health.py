from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from org_structure import main as app_main
from org_structure.infra import locks


def test_healthz_ok() -> None:
    client = TestClient(app_main.app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_ok_when_dependencies_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "redis")
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: True)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"db": "ok", "redis": "ok"}}


def test_readyz_skips_redis_with_local_locks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "local")
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)

    def _unexpected() -> bool:
        raise AssertionError("redis should not be probed")

    monkeypatch.setattr(app_main, "check_redis_ready", _unexpected)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json()["checks"] == {"db": "ok"}


def test_readyz_reports_failed_dependency(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "redis")
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    monkeypatch.setattr(app_main, "check_redis_ready", lambda: False)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["status"] == "not_ready"
    assert detail["checks"]["redis"] == "fail"
