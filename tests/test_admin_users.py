from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import Department, Role, User
from app.infra import db
from app.infra.auth import create_access_token, hash_password
from app.services.seed_service import SeedService


@pytest.fixture()
def admin_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "admin_users_test.db"
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


def _role_id(role_type: str) -> int:
    with Session(db.get_engine()) as session:
        role = session.exec(select(Role).where(Role.type == role_type)).one()
        assert role.id is not None
        return role.id


def _department_id(key: str) -> int:
    with Session(db.get_engine()) as session:
        department = session.exec(select(Department).where(Department.key == key)).one()
        assert department.id is not None
        return department.id


def _make_user(username: str, role_type: str) -> int:
    with Session(db.get_engine()) as session:
        user = User(username=username, password_hash=hash_password("pass"), role_id=_role_id(role_type))
        session.add(user)
        session.commit()
        session.refresh(user)
        assert user.id is not None
        return user.id


def _auth_header(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}


def test_admin_creates_and_updates_users(admin_client: TestClient) -> None:
    admin_id = _make_user("admin", "admin")
    headers = _auth_header(admin_id)

    created = admin_client.post(
        "/api/admin/users",
        json={
            "username": "aliya",
            "password": "secret",
            "first_name": "Алия",
            "role_id": _role_id("member"),
            "department_id": _department_id("IT"),
            "can_view_dashboard": False,
        },
        headers=headers,
    )
    assert created.status_code == 201, created.text
    user = created.json()
    assert user["can_view_dashboard"] is False
    assert "password_hash" not in user

    duplicate = admin_client.post(
        "/api/admin/users",
        json={"username": "aliya", "password": "other"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    updated = admin_client.put(
        f"/api/admin/users/{user['id']}",
        json={"department_id": None, "last_name": "Серикова"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["department_id"] is None
    assert updated.json()["role_id"] == _role_id("member")

    listed = admin_client.get("/api/admin/users", params={"search": "aliy"}, headers=headers)
    assert [item["username"] for item in listed.json()] == ["aliya"]

    blocked = admin_client.post(f"/api/admin/users/{user['id']}/block", headers=headers)
    assert blocked.json()["blocked"] is True
    only_blocked = admin_client.get("/api/admin/users", params={"blocked": True}, headers=headers).json()
    assert [item["username"] for item in only_blocked] == ["aliya"]


def test_only_super_admin_grants_super_admin(admin_client: TestClient) -> None:
    admin_id = _make_user("admin", "admin")
    root_id = _make_user("root", "superadmin")
    member_id = _make_user("member", "member")
    super_role = _role_id("superadmin")

    denied = admin_client.put(
        f"/api/admin/users/{member_id}",
        json={"role_id": super_role},
        headers=_auth_header(admin_id),
    )
    assert denied.status_code == 403

    granted = admin_client.put(
        f"/api/admin/users/{member_id}",
        json={"role_id": super_role},
        headers=_auth_header(root_id),
    )
    assert granted.status_code == 200
    assert granted.json()["role_id"] == super_role


def test_non_admins_are_rejected(admin_client: TestClient) -> None:
    lead_id = _make_user("lead", "lead")

    assert admin_client.get("/api/admin/users", headers=_auth_header(lead_id)).status_code == 403
    assert admin_client.get("/api/admin/roles", headers=_auth_header(lead_id)).status_code == 403
    assert admin_client.get("/api/admin/departments", headers=_auth_header(lead_id)).status_code == 403


def test_admin_cannot_block_self(admin_client: TestClient) -> None:
    admin_id = _make_user("admin", "admin")
    response = admin_client.post(f"/api/admin/users/{admin_id}/block", headers=_auth_header(admin_id))
    assert response.status_code == 400
