from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import ActivityLog, Department, Role, User
from app.infra import db
from app.infra.auth import create_access_token, hash_password
from app.services.seed_service import SeedService


@pytest.fixture()
def task_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "tasks_test.db"
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


def _create_project(client: TestClient, user_id: int, owner: int, **extra: Any) -> dict[str, Any]:
    data = {"title": "Внедрение ЛИС", "owner": owner, "startDate": "2026-02-01", "dueDate": "2026-03-31"}
    data.update(extra)
    response = client.post("/api/projects", json={"data": data}, headers=_auth_header(user_id))
    assert response.status_code == 201, response.text
    return response.json()


def test_task_lifecycle_within_department(task_client: TestClient) -> None:
    lead_id = _make_user("it_lead", "lead", "IT")
    member_id = _make_user("it_member", "member", "IT")
    project = _create_project(task_client, lead_id, lead_id)
    headers = _auth_header(member_id)

    created = task_client.post(
        "/api/tasks",
        json={
            "data": {
                "title": "Настроить интеграцию",
                "project": project["document_id"],
                "assignee": {"connect": [{"id": member_id}]},
                "dueDate": "2026-03-15",
                "progress": 40,
                "status": "IN_PROGRESS",
            }
        },
        headers=headers,
    )
    assert created.status_code == 201, created.text
    task = created.json()
    assert task["project_id"] == project["id"]
    assert task["assignee_id"] == member_id
    assert task["completed"] is None

    marked = task_client.put(f"/api/tasks/{task['id']}", json={"data": {"completed": 1}}, headers=headers)
    assert marked.status_code == 200
    assert marked.json()["completed"] is True

    refreshed = task_client.get(f"/api/projects/{project['id']}", headers=headers).json()
    assert refreshed["progress_percent"] == 100
    assert refreshed["done_tasks"] == 1

    listed = task_client.get("/api/tasks", params={"project": project["id"]}, headers=headers)
    assert [item["id"] for item in listed.json()] == [task["id"]]

    removed = task_client.delete(f"/api/tasks/{task['id']}", headers=headers)
    assert removed.status_code == 204

    with Session(db.get_engine()) as session:
        actions = [row.action for row in session.exec(select(ActivityLog).order_by(ActivityLog.id)).all()]
    assert actions == ["CREATE_PROJECT", "CREATE_TASK", "MARK_TASK", "DELETE_TASK"]


def test_task_in_foreign_department_project_is_forbidden(task_client: TestClient) -> None:
    it_lead = _make_user("it_lead", "lead", "IT")
    digital_member = _make_user("digital_member", "member", "DIGITALIZATION")
    project = _create_project(task_client, it_lead, it_lead)

    response = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Чужая задача", "project": project["id"]}},
        headers=_auth_header(digital_member),
    )

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Можно управлять задачами только в проектах своего отдела"


def test_task_assignee_must_belong_to_project_department(task_client: TestClient) -> None:
    it_lead = _make_user("it_lead", "lead", "IT")
    digital_member = _make_user("digital_member", "member", "DIGITALIZATION")
    project = _create_project(task_client, it_lead, it_lead)
    headers = _auth_header(it_lead)

    foreign = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Задача", "project": project["id"], "assignee": digital_member}},
        headers=headers,
    )
    assert foreign.status_code == 403
    assert foreign.json()["error"]["message"] == "Исполнитель должен быть из отдела проекта"

    missing = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Задача", "project": project["id"], "assignee": 9999}},
        headers=headers,
    )
    assert missing.status_code == 400

    no_project = task_client.post("/api/tasks", json={"data": {"title": "Задача"}}, headers=headers)
    assert no_project.status_code == 400


def test_task_dates_cannot_exceed_project_deadline(task_client: TestClient) -> None:
    it_lead = _make_user("it_lead", "lead", "IT")
    project = _create_project(task_client, it_lead, it_lead)
    headers = _auth_header(it_lead)

    late = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Поздняя", "project": project["id"], "endDate": "2026-04-02"}},
        headers=headers,
    )
    assert late.status_code == 400

    created = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Вовремя", "project": project["id"], "endDate": "2026-03-31"}},
        headers=headers,
    )
    assert created.status_code == 201

    renamed = task_client.put(
        f"/api/tasks/{created.json()['id']}",
        json={"data": {"title": "Переименована"}},
        headers=headers,
    )
    assert renamed.status_code == 200
    assert renamed.json()["end_date"] == "2026-03-31"


def test_super_admin_manages_any_task(task_client: TestClient) -> None:
    admin_id = _make_user("root", "superadmin")
    it_lead = _make_user("it_lead", "lead", "IT")
    digital_member = _make_user("digital_member", "member", "DIGITALIZATION")
    project = _create_project(task_client, it_lead, it_lead)

    response = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Межотдельная", "project": project["id"], "assignee": digital_member}},
        headers=_auth_header(admin_id),
    )

    assert response.status_code == 201
    assert response.json()["assignee_id"] == digital_member


def test_task_requester_without_department_is_forbidden(task_client: TestClient) -> None:
    it_lead = _make_user("it_lead", "lead", "IT")
    admin_without_department = _make_user("floating_admin", "admin")
    project = _create_project(task_client, it_lead, it_lead)

    response = task_client.post(
        "/api/tasks",
        json={"data": {"title": "Без отдела", "project": project["id"]}},
        headers=_auth_header(admin_without_department),
    )

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "У пользователя не указан отдел"
