from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import BoardStage, Department, Role, User
from app.infra import db
from app.infra.auth import JWT_ALGORITHM, JWT_SECRET, create_access_token, decode_access_token


@pytest.fixture()
def auth_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "auth_test.db"
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
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _bootstrap(client: TestClient, username: str = "root", password: str = "root-pass") -> None:
    response = client.post("/api/auth/bootstrap", json={"username": username, "password": password})
    assert response.status_code == 201, response.text


def _login(client: TestClient, username: str, password: str) -> str:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


def test_bootstrap_seeds_reference_data_once(auth_client: TestClient) -> None:
    _bootstrap(auth_client)

    with Session(db.get_engine()) as session:
        assert len(session.exec(select(Department)).all()) == 4
        assert {role.type for role in session.exec(select(Role)).all()} == {"superadmin", "admin", "lead", "member"}
        assert [stage.order for stage in session.exec(select(BoardStage).order_by(BoardStage.order)).all()] == [
            1,
            2,
            3,
            4,
            5,
        ]

    again = auth_client.post("/api/auth/bootstrap", json={"username": "other", "password": "x"})
    assert again.status_code == 409
    assert again.json()["error"]["name"] == "ConflictError"


def test_login_and_profile(auth_client: TestClient) -> None:
    _bootstrap(auth_client)
    token = _login(auth_client, "root", "root-pass")

    me = auth_client.get("/api/auth/me", headers=_auth_header(token))
    assert me.status_code == 200
    body = me.json()
    assert body["user"]["username"] == "root"
    assert body["is_super_admin"] is True
    assert body["is_admin"] is True
    assert body["department"] is None

    departments = auth_client.get("/api/departments", headers=_auth_header(token))
    assert [item["key"] for item in departments.json()] == ["IT", "DIGITALIZATION", "MEDICAL_EQUIPMENT", "ENGINEERING"]


def test_login_rejects_bad_credentials_and_blocked_users(auth_client: TestClient) -> None:
    _bootstrap(auth_client)

    wrong = auth_client.post("/api/auth/login", json={"username": "root", "password": "nope"})
    assert wrong.status_code == 401
    assert wrong.json()["error"]["message"] == "Неверный логин или пароль"

    token = _login(auth_client, "root", "root-pass")
    with Session(db.get_engine()) as session:
        user = session.exec(select(User).where(User.username == "root")).one()
        user.blocked = True
        session.add(user)
        session.commit()

    blocked = auth_client.post("/api/auth/login", json={"username": "root", "password": "root-pass"})
    assert blocked.status_code == 403
    stale_token = auth_client.get("/api/auth/me", headers=_auth_header(token))
    assert stale_token.status_code == 401


def test_me_requires_token(auth_client: TestClient) -> None:
    response = auth_client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json() == {
        "error": {"status": 401, "name": "UnauthorizedError", "message": "Требуется авторизация"}
    }


def test_expired_and_foreign_tokens_are_rejected(auth_client: TestClient) -> None:
    _bootstrap(auth_client)
    with Session(db.get_engine()) as session:
        root = session.exec(select(User).where(User.username == "root")).one()
        assert root.id is not None
        root_id = root.id

    claims = decode_access_token(create_access_token(user_id=root_id))
    assert claims.user_id == root_id

    expired = create_access_token(user_id=root_id, expires_minutes=-5)
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(expired)
    assert auth_client.get("/api/auth/me", headers=_auth_header(expired)).status_code == 401

    named = jwt.encode({"sub": "root", "exp": 4102444800}, JWT_SECRET, algorithm=JWT_ALGORITHM)
    response = auth_client.get("/api/auth/me", headers=_auth_header(named))
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Недействительный токен"
