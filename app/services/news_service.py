from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from app.domain.errors import ForbiddenError, NotFoundError, ValidationError
from app.domain.models import NewsCategory, NewsPageRead, NewsPost, NewsPostRead, PaginationRead, now_utc
from app.domain.relations import parse_numeric_id
from app.infra.db import get_engine
from app.services.assignment_service import Requester

logger = logging.getLogger("ops-portal.news")

DEFAULT_PAGE_SIZE = 50
EXCERPT_LENGTH = 200


@dataclass(frozen=True)
class NewsQuery:
    category: str | None = None
    search: str | None = None
    include_drafts: bool = False
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


def _required_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()


def _parse_category(value: Any) -> NewsCategory:
    try:
        return NewsCategory(value)
    except ValueError as exc:
        raise ValidationError("Недопустимая категория новости") from exc


class NewsService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_editor(self, requester: Requester) -> None:
        if not requester.role_flags.is_admin:
            raise ForbiddenError("Управлять новостями может только администратор")

    def _get_post(self, session: Session, requester: Requester, ref: str) -> NewsPost:
        numeric = parse_numeric_id(ref)
        if numeric is not None:
            post = session.get(NewsPost, numeric)
        else:
            post = session.exec(select(NewsPost).where(NewsPost.document_id == ref)).first()
        if post is None or (not post.published and not requester.role_flags.is_admin):
            raise NotFoundError("Новость не найдена")
        return post

    def _apply_fields(self, post: NewsPost, data: dict[str, Any]) -> None:
        if "title" in data:
            post.title = _required_text(data["title"], "Необходимо указать заголовок новости")
        if "content" in data:
            post.content = _required_text(data["content"], "Необходимо указать текст новости")
        if "excerpt" in data:
            post.excerpt = data["excerpt"] or None
        if "category" in data:
            post.category = _parse_category(data["category"])
        if "pinned" in data:
            post.pinned = bool(data["pinned"])
        if "published" in data:
            post.published = bool(data["published"])
        if not post.excerpt:
            post.excerpt = post.content[:EXCERPT_LENGTH]

    def list_posts(self, requester: Requester, query: NewsQuery) -> NewsPageRead:
        page = max(query.page, 1)
        page_size = query.page_size if query.page_size > 0 else DEFAULT_PAGE_SIZE
        conditions: list[Any] = []
        if not (query.include_drafts and requester.role_flags.is_admin):
            conditions.append(col(NewsPost.published).is_(True))
        if query.category and query.category != "ALL":
            conditions.append(NewsPost.category == _parse_category(query.category))
        if query.search:
            pattern = f"%{query.search}%"
            conditions.append(
                or_(
                    col(NewsPost.title).ilike(pattern),
                    col(NewsPost.excerpt).ilike(pattern),
                    col(NewsPost.content).ilike(pattern),
                )
            )
        with self._session() as session:
            total = session.exec(select(func.count()).select_from(NewsPost).where(*conditions)).one()
            rows = session.exec(
                select(NewsPost)
                .where(*conditions)
                .order_by(col(NewsPost.pinned).desc(), col(NewsPost.created_at).desc(), col(NewsPost.id).desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            return NewsPageRead(
                data=[NewsPostRead.model_validate(row) for row in rows],
                pagination=PaginationRead(
                    total=total,
                    page=page,
                    page_size=page_size,
                    page_count=math.ceil(total / page_size),
                ),
            )

    def get_post(self, requester: Requester, ref: str) -> NewsPostRead:
        with self._session() as session:
            return NewsPostRead.model_validate(self._get_post(session, requester, ref))

    def create_post(self, requester: Requester, data: dict[str, Any]) -> NewsPostRead:
        self._require_editor(requester)
        post = NewsPost(
            title=_required_text(data.get("title"), "Необходимо указать заголовок новости"),
            content=_required_text(data.get("content"), "Необходимо указать текст новости"),
            author_id=requester.user_id,
        )
        self._apply_fields(post, data)
        with self._session() as session:
            session.add(post)
            session.commit()
            session.refresh(post)
        logger.info("news post created id=%s by user=%s", post.id, requester.user_id)
        return NewsPostRead.model_validate(post)

    def update_post(self, requester: Requester, ref: str, data: dict[str, Any]) -> NewsPostRead:
        self._require_editor(requester)
        with self._session() as session:
            post = self._get_post(session, requester, ref)
            self._apply_fields(post, data)
            post.updated_at = now_utc()
            session.add(post)
            session.commit()
            session.refresh(post)
            return NewsPostRead.model_validate(post)

    def delete_post(self, requester: Requester, ref: str) -> None:
        self._require_editor(requester)
        with self._session() as session:
            session.delete(self._get_post(session, requester, ref))
            session.commit()
        logger.info("news post deleted ref=%s by user=%s", ref, requester.user_id)
