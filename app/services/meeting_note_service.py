from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, col, select

from app.domain.errors import NotFoundError, ValidationError
from app.domain.models import (
    ActivityAction,
    MeetingNote,
    MeetingNoteRead,
    Project,
    ProjectStatus,
    now_utc,
    persisted_id,
)
from app.domain.relations import parse_numeric_id
from app.infra.db import get_engine
from app.services.activity_service import ActivityEntry, ActivityService
from app.services.assignment_service import AssignmentPolicy, Requester

logger = logging.getLogger("ops-portal.meetings")

PREVIEW_LENGTH = 100


def _note_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Необходимо указать текст заметки")
    return value.strip()


class MeetingNoteService:
    def __init__(self) -> None:
        self._policy = AssignmentPolicy()
        self._activity = ActivityService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _project_for(self, session: Session, requester: Requester, value: Any) -> Project | None:
        project = self._policy.resolve_project(session, value)
        if project is None:
            return None
        if project.status == ProjectStatus.DELETED and not requester.role_flags.is_admin:
            return None
        return project

    def _get_note(self, session: Session, requester: Requester, ref: str) -> tuple[MeetingNote, Project]:
        numeric = parse_numeric_id(ref)
        if numeric is not None:
            note = session.get(MeetingNote, numeric)
        else:
            note = session.exec(select(MeetingNote).where(MeetingNote.document_id == ref)).first()
        project = self._project_for(session, requester, note.project_id) if note is not None else None
        if note is None or project is None:
            raise NotFoundError("Заметка не найдена")
        return note, project

    def list_notes(self, requester: Requester, project_ref: str) -> list[MeetingNoteRead]:
        with self._session() as session:
            project = self._project_for(session, requester, project_ref)
            if project is None:
                raise NotFoundError("Проект не найден")
            rows = session.exec(
                select(MeetingNote)
                .where(MeetingNote.project_id == project.id)
                .order_by(col(MeetingNote.created_at).desc(), col(MeetingNote.id).desc())
            ).all()
            return [MeetingNoteRead.model_validate(row) for row in rows]

    def create_note(self, requester: Requester, data: dict[str, Any]) -> MeetingNoteRead:
        text = _note_text(data.get("text"))
        with self._session() as session:
            project = self._project_for(session, requester, data.get("project"))
            if project is None:
                raise ValidationError("Проект не найден")
            note = MeetingNote(text=text, project_id=persisted_id(project), author_id=requester.user_id)
            session.add(note)
            session.commit()
            session.refresh(note)
            result = MeetingNoteRead.model_validate(note)
            project_title = project.title

        self._activity.record(
            requester.user_id,
            [
                ActivityEntry(
                    action=ActivityAction.CREATE_MEETING,
                    description=f'Добавлена заметка к проекту "{project_title}"',
                    project_id=result.project_id,
                    details={"project_title": project_title, "text_preview": text[:PREVIEW_LENGTH]},
                )
            ],
        )
        return result

    def update_note(self, requester: Requester, ref: str, data: dict[str, Any]) -> MeetingNoteRead:
        with self._session() as session:
            note, _project = self._get_note(session, requester, ref)
            note.text = _note_text(data.get("text"))
            note.updated_at = now_utc()
            session.add(note)
            session.commit()
            session.refresh(note)
            return MeetingNoteRead.model_validate(note)

    def delete_note(self, requester: Requester, ref: str) -> None:
        with self._session() as session:
            note, project = self._get_note(session, requester, ref)
            entry = ActivityEntry(
                action=ActivityAction.DELETE_MEETING,
                description=f'Удалена заметка из проекта "{project.title}"',
                project_id=project.id,
                details={"project_title": project.title, "text_preview": note.text[:PREVIEW_LENGTH]},
            )
            session.delete(note)
            session.commit()
        logger.info("meeting note deleted ref=%s by user=%s", ref, requester.user_id)
        self._activity.record(requester.user_id, [entry])
