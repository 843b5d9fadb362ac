from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

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
def news_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "news_test.db"
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


def _publish(client: TestClient, user_id: int, **data: Any) -> dict[str, Any]:
    response = client.post("/api/news-posts", json={"data": data}, headers=_auth_header(user_id))
    assert response.status_code == 201, response.text
    return response.json()


def test_admin_publishes_and_everyone_reads(news_client: TestClient) -> None:
    admin_id = _make_user("it_admin", "admin", "IT")
    reader_id = _make_user("engineer", "member", "ENGINEERING")

    post = _publish(news_client, admin_id, title="Обновление МИС", content="Новая версия " * 30, category="UPDATE")
    assert post["author_id"] == admin_id
    assert post["published"] is True
    assert post["excerpt"] == ("Новая версия " * 30)[:200]

    page = news_client.get("/api/news-posts", headers=_auth_header(reader_id))
    assert page.status_code == 200
    assert [item["id"] for item in page.json()["data"]] == [post["id"]]
    assert page.json()["pagination"]["total"] == 1

    single = news_client.get(f"/api/news-posts/{post['document_id']}", headers=_auth_header(reader_id))
    assert single.json()["title"] == "Обновление МИС"

    anonymous = news_client.get("/api/news-posts")
    assert anonymous.status_code == 401


def test_only_admins_manage_news(news_client: TestClient) -> None:
    admin_id = _make_user("root", "superadmin")
    lead_id = _make_user("it_lead", "lead", "IT")
    post = _publish(news_client, admin_id, title="Субботник", content="В пятницу", category="EVENT")

    for response in (
        news_client.post(
            "/api/news-posts",
            json={"data": {"title": "Моя новость", "content": "Текст"}},
            headers=_auth_header(lead_id),
        ),
        news_client.put(
            f"/api/news-posts/{post['id']}",
            json={"data": {"pinned": True}},
            headers=_auth_header(lead_id),
        ),
        news_client.delete(f"/api/news-posts/{post['id']}", headers=_auth_header(lead_id)),
    ):
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Управлять новостями может только администратор"

    pinned = news_client.put(
        f"/api/news-posts/{post['id']}",
        json={"data": {"pinned": True}},
        headers=_auth_header(admin_id),
    )
    assert pinned.json()["pinned"] is True
    removed = news_client.delete(f"/api/news-posts/{post['id']}", headers=_auth_header(admin_id))
    assert removed.status_code == 204
    assert news_client.get(f"/api/news-posts/{post['id']}", headers=_auth_header(admin_id)).status_code == 404


def test_drafts_are_hidden_from_readers(news_client: TestClient) -> None:
    admin_id = _make_user("it_admin", "admin", "IT")
    reader_id = _make_user("it_member", "member", "IT")
    draft = _publish(news_client, admin_id, title="Черновик", content="Скоро", published=False)

    assert news_client.get("/api/news-posts", headers=_auth_header(reader_id)).json()["data"] == []
    hidden = news_client.get(f"/api/news-posts/{draft['id']}", headers=_auth_header(reader_id))
    assert hidden.status_code == 404
    ignored = news_client.get("/api/news-posts", params={"includeDrafts": True}, headers=_auth_header(reader_id))
    assert ignored.json()["data"] == []

    with_drafts = news_client.get("/api/news-posts", params={"includeDrafts": True}, headers=_auth_header(admin_id))
    assert [item["id"] for item in with_drafts.json()["data"]] == [draft["id"]]
    assert news_client.get("/api/news-posts", headers=_auth_header(admin_id)).json()["data"] == []


def test_feed_filters_and_ordering(news_client: TestClient) -> None:
    admin_id = _make_user("it_admin", "admin", "IT")
    headers = _auth_header(admin_id)
    older = _publish(news_client, admin_id, title="Собрание", content="Общее собрание коллектива", category="EVENT")
    pinned = _publish(news_client, admin_id, title="Важно", content="Плановые работы", category="ANNOUNCEMENT", pinned=True)
    newer = _publish(news_client, admin_id, title="Новости отдела", content="Запуск портала", excerpt="Кратко")

    feed = news_client.get("/api/news-posts", headers=headers).json()["data"]
    assert [item["id"] for item in feed] == [pinned["id"], newer["id"], older["id"]]
    assert feed[1]["excerpt"] == "Кратко"

    events = news_client.get("/api/news-posts", params={"category": "EVENT"}, headers=headers).json()["data"]
    assert [item["id"] for item in events] == [older["id"]]
    everything = news_client.get("/api/news-posts", params={"category": "ALL"}, headers=headers).json()["data"]
    assert len(everything) == 3

    found = news_client.get("/api/news-posts", params={"search": "портал"}, headers=headers).json()["data"]
    assert [item["id"] for item in found] == [newer["id"]]

    paged = news_client.get("/api/news-posts", params={"page": 2, "pageSize": 2}, headers=headers).json()
    assert [item["id"] for item in paged["data"]] == [older["id"]]
    assert paged["pagination"]["page_count"] == 2

    bad = news_client.get("/api/news-posts", params={"category": "GOSSIP"}, headers=headers)
    assert bad.status_code == 400
