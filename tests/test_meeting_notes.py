from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import ActivityLog, Department, MeetingNote, Role, User
from app.infra import db
from app.infra.auth import create_access_token, hash_password
from app.services.seed_service import SeedService


@pytest.fixture()
def notes_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "meeting_notes_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    SeedService().seed_reference_data(include_helpdesk=False)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _make_user(username: str, role_type: str | None, department_key: str | None = None) -> int:
    with Session(db.get_engine()) as session:
        role = session.exec(select(Role).where(Role.type == role_type)).first() if role_type else None
        department = (
            session.exec(select(Department).where(Department.key == department_key)).first()
            if department_key
            else None
        )
        user = User(
            username=username,
            password_hash=hash_password("pass"),
            role_id=role.id if role is not None else None,
            department_id=department.id if department is not None else None,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        assert user.id is not None
        return user.id


def _auth_header(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}


def _create_project(client: TestClient, user_id: int) -> dict[str, Any]:
    data = {"title": "Модернизация сети", "owner": user_id, "startDate": "2026-02-01", "dueDate": "2026-03-31"}
    response = client.post("/api/projects", json={"data": data}, headers=_auth_header(user_id))
    assert response.status_code == 201, response.text
    return response.json()


def test_meeting_note_lifecycle(notes_client: TestClient) -> None:
    lead_id = _make_user("it_lead", "lead", "IT")
    member_id = _make_user("it_member", "member", "IT")
    project = _create_project(notes_client, lead_id)
    headers = _auth_header(member_id)

    first = notes_client.post(
        "/api/meeting-notes",
        json={"data": {"text": "  Согласовали график поставки  ", "project": project["document_id"]}},
        headers=headers,
    )
    assert first.status_code == 201, first.text
    note = first.json()
    assert note["text"] == "Согласовали график поставки"
    assert note["project_id"] == project["id"]
    assert note["author_id"] == member_id

    second = notes_client.post(
        "/api/meeting-notes",
        json={"data": {"text": "Перенесли демо", "project": {"connect": [{"id": project["id"]}]}}},
        headers=headers,
    )
    assert second.status_code == 201, second.text

    listed = notes_client.get("/api/meeting-notes", params={"project": project["id"]}, headers=headers)
    assert [item["id"] for item in listed.json()] == [second.json()["id"], note["id"]]

    edited = notes_client.put(
        f"/api/meeting-notes/{note['document_id']}",
        json={"data": {"text": "Согласовали новый график"}},
        headers=headers,
    )
    assert edited.status_code == 200
    assert edited.json()["text"] == "Согласовали новый график"

    removed = notes_client.delete(f"/api/meeting-notes/{note['id']}", headers=headers)
    assert removed.status_code == 204
    missing = notes_client.delete(f"/api/meeting-notes/{note['id']}", headers=headers)
    assert missing.status_code == 404

    with Session(db.get_engine()) as session:
        logs = session.exec(select(ActivityLog).order_by(ActivityLog.id)).all()
    assert [row.action for row in logs] == ["CREATE_PROJECT", "CREATE_MEETING", "CREATE_MEETING", "DELETE_MEETING"]
    assert logs[1].description == 'Добавлена заметка к проекту "Модернизация сети"'
    assert logs[1].details["text_preview"] == "Согласовали график поставки"
    assert logs[3].description == 'Удалена заметка из проекта "Модернизация сети"'


def test_meeting_note_requires_text_and_known_project(notes_client: TestClient) -> None:
    lead_id = _make_user("it_lead", "lead", "IT")
    project = _create_project(notes_client, lead_id)
    headers = _auth_header(lead_id)

    blank = notes_client.post(
        "/api/meeting-notes",
        json={"data": {"text": "   ", "project": project["id"]}},
        headers=headers,
    )
    assert blank.status_code == 400
    assert blank.json()["error"]["message"] == "Необходимо указать текст заметки"

    unknown = notes_client.post(
        "/api/meeting-notes",
        json={"data": {"text": "Итоги встречи", "project": "no-such-project"}},
        headers=headers,
    )
    assert unknown.status_code == 400
    assert unknown.json()["error"]["message"] == "Проект не найден"

    listed = notes_client.get("/api/meeting-notes", params={"project": 9999}, headers=headers)
    assert listed.status_code == 404


def test_notes_follow_project_visibility(notes_client: TestClient) -> None:
    root_id = _make_user("root", "superadmin")
    lead_id = _make_user("it_lead", "lead", "IT")
    project = _create_project(notes_client, lead_id)
    created = notes_client.post(
        "/api/meeting-notes",
        json={"data": {"text": "Протокол", "project": project["id"]}},
        headers=_auth_header(lead_id),
    )
    assert created.status_code == 201

    soft = notes_client.put(
        f"/api/projects/{project['id']}",
        json={"data": {"status": "DELETED"}},
        headers=_auth_header(lead_id),
    )
    assert soft.status_code == 200
    hidden = notes_client.get("/api/meeting-notes", params={"project": project["id"]}, headers=_auth_header(lead_id))
    assert hidden.status_code == 404
    visible = notes_client.get("/api/meeting-notes", params={"project": project["id"]}, headers=_auth_header(root_id))
    assert len(visible.json()) == 1

    removed = notes_client.delete(f"/api/projects/{project['id']}", headers=_auth_header(root_id))
    assert removed.status_code == 204
    with Session(db.get_engine()) as session:
        assert session.exec(select(MeetingNote)).all() == []


def test_meeting_notes_require_projects_feature(notes_client: TestClient) -> None:
    outsider_id = _make_user("engineer", "member", "ENGINEERING")
    denied = notes_client.get("/api/meeting-notes", params={"project": 1}, headers=_auth_header(outsider_id))
    assert denied.status_code == 403
    assert denied.json()["error"]["message"] == "Доступ к проектам запрещён"
