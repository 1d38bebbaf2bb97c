from __future__ import annotations

import re
from collections.abc import Generator
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, select

from org_structure import main as app_main
from org_structure.domain.models import EventEnvelope, StructureChangeRequest, StructureRequestType
from org_structure.domain.permissions import PERM_ORG_READ, PERM_ORG_REQUEST
from org_structure.infra import db, locks
from org_structure.infra.auth import create_access_token
from org_structure.infra.events import EVENT_CHANGE_REQUEST_SUBMITTED, event_bus
from org_structure.services import change_request_service
from org_structure.services.change_request_service import generate_request_number

REQUESTER_ID = str(uuid4())
REQUEST_NUMBER_PATTERN = re.compile(r"^REQ-\d+-[A-Z0-9]{5}$")


@pytest.fixture()
def org_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "change_requests_test.db"
    test_engine = db.build_engine(f"sqlite:///{db_path}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(locks, "ORG_LOCK_BACKEND", "local")
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(user_id: str = REQUESTER_ID, permissions: list[str] | None = None) -> dict[str, str]:
    token = create_access_token(user_id=user_id, permissions=permissions or ["*"])
    return {"Authorization": f"Bearer {token}"}


def _create_position(client: TestClient) -> dict:
    department = client.post(
        "/api/org/departments",
        json={"code": "ENG", "name": "Engineering"},
        headers=_auth_header(),
    ).json()
    response = client.post(
        "/api/org/positions",
        json={"code": "DEV", "title": "Developer", "department_id": department["id"]},
        headers=_auth_header(),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _submit(client: TestClient, user_id: str = REQUESTER_ID, **body: str | None):
    payload = {"request_type": StructureRequestType.CLOSE_POSITION.value, **body}
    return client.post("/api/org/change-requests", json=payload, headers=_auth_header(user_id))


def test_generated_request_numbers_have_expected_shape() -> None:
    numbers = {generate_request_number() for _ in range(50)}
    assert all(REQUEST_NUMBER_PATTERN.match(number) for number in numbers)
    assert len(numbers) == 50


def test_duplicate_pending_request_is_rejected(org_client: TestClient) -> None:
    position = _create_position(org_client)
    seen: list[EventEnvelope] = []
    event_bus.subscribe(EVENT_CHANGE_REQUEST_SUBMITTED, seen.append)
    try:
        first = _submit(org_client, target_position_id=position["id"], reason="Role no longer needed")
    finally:
        event_bus.unsubscribe(EVENT_CHANGE_REQUEST_SUBMITTED, seen.append)

    assert first.status_code == 201
    body = first.json()
    assert body["status"] == "SUBMITTED"
    assert body["submitted_by_employee_id"] == REQUESTER_ID
    assert body["submitted_at"] is not None
    assert REQUEST_NUMBER_PATTERN.match(body["request_number"])
    assert seen[0].payload == {
        "request_number": body["request_number"],
        "requester_id": REQUESTER_ID,
        "request_type": "CLOSE_POSITION",
        "target_name": "Developer",
    }

    second = _submit(org_client, target_position_id=position["id"])
    assert second.status_code == 409
    assert second.json()["detail"] == "A similar pending request already exists"

    other_requester = _submit(org_client, user_id=str(uuid4()), target_position_id=position["id"])
    assert other_requester.status_code == 201

    other_type = _submit(
        org_client,
        request_type=StructureRequestType.UPDATE_POSITION.value,
        target_position_id=position["id"],
    )
    assert other_type.status_code == 201


def test_untargeted_requests_match_on_null_targets(org_client: TestClient) -> None:
    position = _create_position(org_client)
    first = _submit(org_client, request_type=StructureRequestType.NEW_DEPARTMENT.value)
    assert first.status_code == 201

    duplicate = _submit(org_client, request_type=StructureRequestType.NEW_DEPARTMENT.value)
    assert duplicate.status_code == 409

    targeted = _submit(
        org_client,
        request_type=StructureRequestType.NEW_DEPARTMENT.value,
        target_department_id=position["department_id"],
    )
    assert targeted.status_code == 201


def test_terminal_request_no_longer_blocks(org_client: TestClient) -> None:
    position = _create_position(org_client)
    first = _submit(org_client, target_position_id=position["id"]).json()
    canceled = org_client.post(f"/api/org/change-requests/{first['id']}/cancel", headers=_auth_header())
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "CANCELED"

    again = _submit(org_client, target_position_id=position["id"])
    assert again.status_code == 201


def test_legacy_lowercase_pending_row_blocks_duplicates(org_client: TestClient) -> None:
    position = _create_position(org_client)
    with Session(db.get_engine()) as session:
        session.add(
            StructureChangeRequest(
                request_number="REQ-1-LEGCY",
                requested_by_employee_id=REQUESTER_ID,
                request_type=StructureRequestType.CLOSE_POSITION,
                target_position_id=position["id"],
                status="pending",
            )
        )
        session.commit()

    response = _submit(org_client, target_position_id=position["id"])
    assert response.status_code == 409


def test_unknown_target_is_not_found(org_client: TestClient) -> None:
    response = _submit(org_client, target_position_id=str(uuid4()))
    assert response.status_code == 404

    malformed = _submit(org_client, target_department_id="dept-1")
    assert malformed.status_code == 400


def test_update_only_while_editable(org_client: TestClient) -> None:
    position = _create_position(org_client)
    created = _submit(org_client, target_position_id=position["id"]).json()

    updated = org_client.patch(
        f"/api/org/change-requests/{created['id']}",
        json={"details": "Merge into platform team", "status": "UNDER_REVIEW"},
        headers=_auth_header(),
    )
    assert updated.status_code == 200
    assert updated.json()["details"] == "Merge into platform team"
    assert updated.json()["status"] == "UNDER_REVIEW"
    assert updated.json()["target_position_id"] == position["id"]

    blocked = org_client.patch(
        f"/api/org/change-requests/{created['id']}",
        json={"details": "Too late"},
        headers=_auth_header(),
    )
    assert blocked.status_code == 400
    assert blocked.json()["detail"] == "Cannot update request with status UNDER_REVIEW"

    canceled = org_client.post(f"/api/org/change-requests/{created['id']}/cancel", headers=_auth_header())
    assert canceled.status_code == 200

    again = org_client.post(f"/api/org/change-requests/{created['id']}/cancel", headers=_auth_header())
    assert again.status_code == 400
    assert again.json()["detail"] == "Cannot cancel request with status CANCELED"


def test_lookup_search_and_pending_count(org_client: TestClient) -> None:
    position = _create_position(org_client)
    closing = _submit(org_client, target_position_id=position["id"]).json()
    _submit(org_client, request_type=StructureRequestType.NEW_POSITION.value)
    other = _submit(org_client, user_id=str(uuid4()), request_type=StructureRequestType.NEW_DEPARTMENT.value).json()
    org_client.post(f"/api/org/change-requests/{other['id']}/cancel", headers=_auth_header())

    by_number = org_client.get(
        f"/api/org/change-requests/by-number/{closing['request_number']}",
        headers=_auth_header(),
    )
    assert by_number.status_code == 200
    assert by_number.json()["id"] == closing["id"]
    missing = org_client.get("/api/org/change-requests/by-number/REQ-0-XXXXX", headers=_auth_header())
    assert missing.status_code == 404

    submitted = org_client.get(
        "/api/org/change-requests",
        params={"status": "submitted"},
        headers=_auth_header(),
    )
    assert submitted.status_code == 200
    assert submitted.json()["pagination"]["total"] == 2

    mine = org_client.get(
        "/api/org/change-requests",
        params={"requested_by": REQUESTER_ID, "request_type": "CLOSE_POSITION"},
        headers=_auth_header(),
    )
    assert [item["id"] for item in mine.json()["data"]] == [closing["id"]]

    count = org_client.get("/api/org/change-requests/count/pending", headers=_auth_header())
    assert count.json() == {"count": 2}

    fetched = org_client.get(f"/api/org/change-requests/{closing['id']}", headers=_auth_header())
    assert fetched.json()["request_number"] == closing["request_number"]


def test_requesting_needs_request_permission(org_client: TestClient) -> None:
    denied = org_client.post(
        "/api/org/change-requests",
        json={"request_type": "NEW_DEPARTMENT"},
        headers=_auth_header(permissions=[PERM_ORG_READ]),
    )
    assert denied.status_code == 403

    allowed = org_client.post(
        "/api/org/change-requests",
        json={"request_type": "NEW_DEPARTMENT"},
        headers=_auth_header(permissions=[PERM_ORG_REQUEST]),
    )
    assert allowed.status_code == 201


def test_retargeting_cannot_duplicate_an_open_request(org_client: TestClient) -> None:
    position = _create_position(org_client)
    department_id = position["department_id"]
    first = _submit(
        org_client,
        request_type=StructureRequestType.UPDATE_DEPARTMENT.value,
        target_department_id=department_id,
    ).json()
    second = _submit(org_client, request_type=StructureRequestType.UPDATE_DEPARTMENT.value).json()

    retargeted = org_client.patch(
        f"/api/org/change-requests/{second['id']}",
        json={"target_department_id": department_id},
        headers=_auth_header(),
    )
    assert retargeted.status_code == 409
    assert retargeted.json()["detail"] == "A similar pending request already exists"

    with Session(db.get_engine()) as session:
        open_for_tuple = session.exec(
            select(StructureChangeRequest)
            .where(StructureChangeRequest.requested_by_employee_id == REQUESTER_ID)
            .where(StructureChangeRequest.request_type == StructureRequestType.UPDATE_DEPARTMENT)
            .where(StructureChangeRequest.target_department_id == department_id)
        ).all()
    assert [row.id for row in open_for_tuple] == [first["id"]]

    own_target = org_client.patch(
        f"/api/org/change-requests/{first['id']}",
        json={"target_department_id": department_id, "details": "Rename to Platform"},
        headers=_auth_header(),
    )
    assert own_target.status_code == 200

    org_client.post(f"/api/org/change-requests/{first['id']}/cancel", headers=_auth_header())
    freed = org_client.patch(
        f"/api/org/change-requests/{second['id']}",
        json={"target_department_id": department_id},
        headers=_auth_header(),
    )
    assert freed.status_code == 200
    assert freed.json()["target_department_id"] == department_id


def test_cancel_follows_transition_table(org_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    with Session(db.get_engine()) as session:
        legacy = StructureChangeRequest(
            request_number="REQ-1-LEGC2",
            requested_by_employee_id=REQUESTER_ID,
            request_type=StructureRequestType.NEW_POSITION,
            status="pending",
        )
        session.add(legacy)
        session.commit()
        legacy_id = legacy.id

    canceled = org_client.post(f"/api/org/change-requests/{legacy_id}/cancel", headers=_auth_header())
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "CANCELED"

    approved = _submit(org_client, request_type=StructureRequestType.NEW_DEPARTMENT.value).json()
    org_client.post(
        f"/api/org/change-requests/{approved['id']}/approvals",
        json={"decision": "APPROVED"},
        headers=_auth_header(str(uuid4())),
    )

    # A cancel whose status check ran before the approval landed.
    monkeypatch.setattr(change_request_service, "can_transition", lambda *_: True)
    late = org_client.post(f"/api/org/change-requests/{approved['id']}/cancel", headers=_auth_header())
    assert late.status_code == 409
    fetched = org_client.get(f"/api/org/change-requests/{approved['id']}", headers=_auth_header())
    assert fetched.json()["status"] == "APPROVED"
