from __future__ import annotations

import random
from collections.abc import Generator
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from org_structure import main as app_main
from org_structure.domain.models import Department, Position
from org_structure.infra import db, locks
from org_structure.infra.auth import create_access_token
from org_structure.services import hierarchy_service

ADMIN_ID = str(uuid4())


@pytest.fixture()
def org_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "hierarchy_test.db"
    test_engine = db.build_engine(f"sqlite:///{db_path}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "local")
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header() -> dict[str, str]:
    token = create_access_token(user_id=ADMIN_ID, permissions=["*"])
    return {"Authorization": f"Bearer {token}"}


def _create_department(client: TestClient, code: str = "ENG") -> dict:
    response = client.post(
        "/api/org/departments",
        json={"code": code, "name": f"Department {code}"},
        headers=_auth_header(),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _create_position(
    client: TestClient,
    department_id: str,
    code: str,
    reports_to: str | None = None,
) -> dict:
    response = client.post(
        "/api/org/positions",
        json={
            "code": code,
            "title": code,
            "department_id": department_id,
            "reports_to_position_id": reports_to,
        },
        headers=_auth_header(),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _set_parent(client: TestClient, position_id: str, parent_id: str | None) -> int:
    response = client.patch(
        f"/api/org/positions/{position_id}",
        json={"reports_to_position_id": parent_id},
        headers=_auth_header(),
    )
    return response.status_code


def _parent_map(client: TestClient) -> dict[str, str | None]:
    response = client.get("/api/org/positions", headers=_auth_header())
    return {item["id"]: item["reports_to_position_id"] for item in response.json()}


def _reaches(parents: dict[str, str | None], start: str | None, target: str) -> bool:
    seen: set[str] = set()
    current = start
    while current is not None and current not in seen:
        if current == target:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


def _assert_acyclic(parents: dict[str, str | None]) -> None:
    for node in parents:
        seen: set[str] = set()
        current: str | None = node
        while current is not None:
            assert current not in seen, f"cycle through {current}"
            seen.add(current)
            current = parents[current]


def test_reporting_to_own_subordinate_is_rejected(org_client: TestClient) -> None:
    eng = _create_department(org_client)
    a = _create_position(org_client, eng["id"], "A")
    b = _create_position(org_client, eng["id"], "B", reports_to=a["id"])

    response = org_client.patch(
        f"/api/org/positions/{a['id']}",
        json={"reports_to_position_id": b["id"]},
        headers=_auth_header(),
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["reason_code"] == "REPORTING_CYCLE"
    assert detail["message"] == "This change would create a circular reporting structure"

    unchanged = org_client.get(f"/api/org/positions/{a['id']}", headers=_auth_header())
    assert unchanged.json()["reports_to_position_id"] is None


def test_self_reference_and_inactive_parent(org_client: TestClient) -> None:
    eng = _create_department(org_client)
    a = _create_position(org_client, eng["id"], "A")
    b = _create_position(org_client, eng["id"], "B")

    self_ref = org_client.patch(
        f"/api/org/positions/{a['id']}",
        json={"reports_to_position_id": a["id"]},
        headers=_auth_header(),
    )
    assert self_ref.status_code == 400
    assert self_ref.json()["detail"] == "Position cannot report to itself"

    org_client.post(f"/api/org/positions/{b['id']}/deactivate", headers=_auth_header())
    assert _set_parent(org_client, a["id"], b["id"]) == 400
    assert _set_parent(org_client, a["id"], str(uuid4())) == 404


def test_parent_can_be_cleared(org_client: TestClient) -> None:
    eng = _create_department(org_client)
    a = _create_position(org_client, eng["id"], "A")
    b = _create_position(org_client, eng["id"], "B", reports_to=a["id"])
    assert _set_parent(org_client, b["id"], None) == 200
    assert _parent_map(org_client)[b["id"]] is None


def test_random_reparenting_keeps_graph_acyclic(org_client: TestClient) -> None:
    eng = _create_department(org_client)
    ids = [_create_position(org_client, eng["id"], f"P{index}")["id"] for index in range(8)]
    rng = random.Random(20251017)

    for _ in range(60):
        child = rng.choice(ids)
        parent = rng.choice([*ids, None])
        before = _parent_map(org_client)
        status_code = _set_parent(org_client, child, parent)
        if parent == child:
            assert status_code == 400
        elif parent is not None and _reaches(before, parent, child):
            assert status_code == 409
        else:
            assert status_code == 200
        after = _parent_map(org_client)
        _assert_acyclic(after)
        if status_code != 200:
            assert after == before


def test_walk_stops_on_existing_corrupted_cycle(org_client: TestClient) -> None:
    eng = _create_department(org_client)
    x = _create_position(org_client, eng["id"], "X")
    y = _create_position(org_client, eng["id"], "Y")
    z = _create_position(org_client, eng["id"], "Z")

    # Corrupt the store directly: X -> Y -> X.
    with Session(db.get_engine()) as session:
        first = session.get(Position, x["id"])
        second = session.get(Position, y["id"])
        assert first is not None and second is not None
        first.reports_to_position_id = y["id"]
        second.reports_to_position_id = x["id"]
        session.add(first)
        session.add(second)
        session.commit()

    with Session(db.get_engine()) as session:
        assert hierarchy_service.would_create_cycle(session, z["id"], x["id"]) is False
        assert hierarchy_service.would_create_cycle(session, x["id"], y["id"]) is True
        chain = hierarchy_service.reporting_chain(session, x["id"])
    assert [item.id for item in chain] == [y["id"]]


def test_would_create_cycle_on_simple_chain(org_client: TestClient) -> None:
    with Session(db.get_engine()) as session:
        department = Department(code="D", name="D")
        session.add(department)
        session.commit()
        root = Position(code="R", title="R", department_id=department.id)
        session.add(root)
        session.commit()
        middle = Position(code="M", title="M", department_id=department.id, reports_to_position_id=root.id)
        session.add(middle)
        session.commit()
        leaf = Position(code="L", title="L", department_id=department.id, reports_to_position_id=middle.id)
        session.add(leaf)
        session.commit()

        assert hierarchy_service.would_create_cycle(session, root.id, leaf.id) is True
        assert hierarchy_service.would_create_cycle(session, leaf.id, root.id) is False
        assert hierarchy_service.would_create_cycle(session, root.id, None) is False
        assert hierarchy_service.count_active_subordinates(session, root.id) == 1


def test_subordinates_and_reporting_chain_endpoints(org_client: TestClient) -> None:
    eng = _create_department(org_client)
    ceo = _create_position(org_client, eng["id"], "CEO")
    cto = _create_position(org_client, eng["id"], "CTO", reports_to=ceo["id"])
    dev = _create_position(org_client, eng["id"], "DEV", reports_to=cto["id"])
    qa = _create_position(org_client, eng["id"], "QA", reports_to=cto["id"])
    org_client.post(f"/api/org/positions/{qa['id']}/deactivate", headers=_auth_header())

    subordinates = org_client.get(f"/api/org/positions/{cto['id']}/subordinates", headers=_auth_header())
    assert subordinates.status_code == 200
    assert [item["id"] for item in subordinates.json()] == [dev["id"]]

    chain = org_client.get(f"/api/org/positions/{dev['id']}/reporting-chain", headers=_auth_header())
    assert chain.status_code == 200
    assert [item["id"] for item in chain.json()] == [cto["id"], ceo["id"]]

    top = org_client.get(f"/api/org/positions/{ceo['id']}/reporting-chain", headers=_auth_header())
    assert top.json() == []
