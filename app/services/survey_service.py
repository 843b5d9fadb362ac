from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlmodel import Session, col, select

from app.domain.errors import NotFoundError, ValidationError
from app.domain.models import (
    Project,
    ProjectStatus,
    ProjectSurvey,
    ProjectSurveyRead,
    PublicSurveyRead,
    SurveyResponse,
    SurveyResponseRead,
    SurveyResultsRead,
    SurveyStatus,
    SurveySubmitRead,
    SurveySubmitRequest,
    now_utc,
    persisted_id,
)
from app.domain.relations import parse_numeric_id
from app.domain.surveys import missing_required_answers, normalize_questions, survey_statistics
from app.infra.db import get_engine
from app.services.assignment_service import AssignmentPolicy, Requester

logger = logging.getLogger("ops-portal.surveys")

DEFAULT_THANK_YOU = "Спасибо за участие в опросе!"
COPY_SUFFIX = " (копия)"

FLAG_FIELDS = {
    "isAnonymous": "is_anonymous",
    "showProgressBar": "show_progress_bar",
    "allowMultipleResponses": "allow_multiple_responses",
}


@dataclass(frozen=True)
class RespondentClient:
    ip_address: str
    user_agent: str


def new_public_token() -> str:
    return secrets.token_hex(16)


def parse_expires_at(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError("Некорректная дата окончания опроса")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError("Некорректная дата окончания опроса") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def is_expired(survey: ProjectSurvey, now: datetime | None = None) -> bool:
    if survey.expires_at is None:
        return False
    expires_at = survey.expires_at
    # SQLite hands timestamps back without a zone.
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at < (now or now_utc())


def _parse_status(value: Any) -> SurveyStatus:
    try:
        return SurveyStatus(value)
    except ValueError as exc:
        raise ValidationError("Недопустимый статус опроса") from exc


class SurveyService:
    def __init__(self) -> None:
        self._policy = AssignmentPolicy()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _project_for(self, session: Session, requester: Requester, value: Any) -> Project | None:
        project = self._policy.resolve_project(session, value)
        if project is None:
            return None
        if project.status == ProjectStatus.DELETED and not requester.role_flags.is_admin:
            return None
        return project

    def _get_survey(self, session: Session, requester: Requester, ref: str) -> ProjectSurvey:
        numeric = parse_numeric_id(ref)
        if numeric is not None:
            survey = session.get(ProjectSurvey, numeric)
        else:
            survey = session.exec(select(ProjectSurvey).where(ProjectSurvey.document_id == ref)).first()
        if survey is None or self._project_for(session, requester, survey.project_id) is None:
            raise NotFoundError("Опрос не найден")
        return survey

    def _open_survey(self, session: Session, token: str) -> ProjectSurvey:
        survey = session.exec(select(ProjectSurvey).where(ProjectSurvey.public_token == token)).first()
        if survey is None:
            raise NotFoundError("Опрос не найден")
        project = session.get(Project, survey.project_id)
        if project is None or project.status == ProjectStatus.DELETED:
            raise NotFoundError("Опрос не найден")
        if survey.status != SurveyStatus.ACTIVE:
            raise ValidationError("Опрос сейчас не активен")
        if is_expired(survey):
            raise ValidationError("Срок действия опроса истёк")
        return survey

    def _apply_fields(self, survey: ProjectSurvey, data: dict[str, Any]) -> None:
        if "title" in data:
            title = data["title"]
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Необходимо указать название опроса")
            survey.title = title.strip()
        if "description" in data:
            survey.description = data["description"] or None
        if "thankYouMessage" in data:
            survey.thank_you_message = data["thankYouMessage"] or None
        if "expiresAt" in data:
            survey.expires_at = parse_expires_at(data["expiresAt"])
        if "status" in data:
            survey.status = _parse_status(data["status"])
        if "questions" in data:
            survey.questions = normalize_questions(data["questions"])
        for field_name, column in FLAG_FIELDS.items():
            if field_name in data:
                setattr(survey, column, bool(data[field_name]))

    def list_surveys(self, requester: Requester, project_ref: str) -> list[ProjectSurveyRead]:
        with self._session() as session:
            project = self._project_for(session, requester, project_ref)
            if project is None:
                raise NotFoundError("Проект не найден")
            rows = session.exec(
                select(ProjectSurvey)
                .where(ProjectSurvey.project_id == project.id)
                .order_by(col(ProjectSurvey.created_at).desc(), col(ProjectSurvey.id).desc())
            ).all()
            return [ProjectSurveyRead.model_validate(row) for row in rows]

    def get_survey(self, requester: Requester, ref: str) -> ProjectSurveyRead:
        with self._session() as session:
            return ProjectSurveyRead.model_validate(self._get_survey(session, requester, ref))

    def create_survey(self, requester: Requester, data: dict[str, Any]) -> ProjectSurveyRead:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Необходимо указать название опроса")
        with self._session() as session:
            project = self._project_for(session, requester, data.get("project"))
            if project is None:
                raise ValidationError("Проект не найден")
            survey = ProjectSurvey(
                title=title.strip(),
                project_id=persisted_id(project),
                public_token=new_public_token(),
                created_by_id=requester.user_id,
            )
            self._apply_fields(survey, data)
            session.add(survey)
            session.commit()
            session.refresh(survey)
        logger.info("survey created id=%s project=%s by user=%s", survey.id, survey.project_id, requester.user_id)
        return ProjectSurveyRead.model_validate(survey)

    def update_survey(self, requester: Requester, ref: str, data: dict[str, Any]) -> ProjectSurveyRead:
        with self._session() as session:
            survey = self._get_survey(session, requester, ref)
            self._apply_fields(survey, data)
            survey.updated_at = now_utc()
            session.add(survey)
            session.commit()
            session.refresh(survey)
            return ProjectSurveyRead.model_validate(survey)

    def set_status(self, requester: Requester, ref: str, status: SurveyStatus) -> ProjectSurveyRead:
        return self.update_survey(requester, ref, {"status": status})

    def duplicate_survey(self, requester: Requester, ref: str) -> ProjectSurveyRead:
        with self._session() as session:
            source = self._get_survey(session, requester, ref)
            copy = ProjectSurvey(
                title=f"{source.title}{COPY_SUFFIX}",
                description=source.description,
                project_id=source.project_id,
                is_anonymous=source.is_anonymous,
                status=SurveyStatus.DRAFT,
                public_token=new_public_token(),
                thank_you_message=source.thank_you_message,
                show_progress_bar=source.show_progress_bar,
                allow_multiple_responses=source.allow_multiple_responses,
                questions=[dict(question) for question in source.questions],
                created_by_id=requester.user_id,
            )
            session.add(copy)
            session.commit()
            session.refresh(copy)
            return ProjectSurveyRead.model_validate(copy)

    def delete_survey(self, requester: Requester, ref: str) -> None:
        with self._session() as session:
            survey = self._get_survey(session, requester, ref)
            for response in session.exec(select(SurveyResponse).where(SurveyResponse.survey_id == survey.id)).all():
                session.delete(response)
            session.delete(survey)
            session.commit()
        logger.info("survey deleted ref=%s by user=%s", ref, requester.user_id)

    def results(self, requester: Requester, ref: str) -> SurveyResultsRead:
        with self._session() as session:
            survey = self._get_survey(session, requester, ref)
            responses = session.exec(
                select(SurveyResponse)
                .where(SurveyResponse.survey_id == survey.id)
                .order_by(col(SurveyResponse.created_at), col(SurveyResponse.id))
            ).all()
            return SurveyResultsRead(
                survey=ProjectSurveyRead.model_validate(survey),
                total_responses=len(responses),
                responses=[SurveyResponseRead.model_validate(row) for row in responses],
                statistics=survey_statistics(survey.questions, [row.answers for row in responses]),
            )

    def public_survey(self, token: str) -> PublicSurveyRead:
        with self._session() as session:
            survey = self._open_survey(session, token)
            project = session.get(Project, survey.project_id)
            return PublicSurveyRead(
                id=persisted_id(survey),
                title=survey.title,
                description=survey.description,
                project_title=project.title if project is not None else None,
                is_anonymous=survey.is_anonymous,
                questions=survey.questions,
                thank_you_message=survey.thank_you_message,
                show_progress_bar=survey.show_progress_bar,
            )

    def submit_response(
        self,
        token: str,
        payload: SurveySubmitRequest,
        client: RespondentClient,
    ) -> SurveySubmitRead:
        with self._session() as session:
            survey = self._open_survey(session, token)
            if not survey.allow_multiple_responses:
                existing = session.exec(
                    select(SurveyResponse.id).where(
                        SurveyResponse.survey_id == survey.id,
                        SurveyResponse.ip_address == client.ip_address,
                    )
                ).first()
                if existing is not None:
                    raise ValidationError("Вы уже ответили на этот опрос")
            if missing_required_answers(survey.questions, payload.answers):
                raise ValidationError("Не заполнены обязательные вопросы")

            anonymous = survey.is_anonymous
            email = (payload.respondent_email or "").strip()
            session.add(
                SurveyResponse(
                    survey_id=persisted_id(survey),
                    answers=payload.answers,
                    respondent_name=None if anonymous else payload.respondent_name or None,
                    respondent_position=None if anonymous else payload.respondent_position or None,
                    respondent_department=None if anonymous else payload.respondent_department or None,
                    respondent_email=None if anonymous else email or None,
                    is_anonymous=anonymous,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    completion_time=payload.completion_time,
                )
            )
            session.commit()
            message = survey.thank_you_message or DEFAULT_THANK_YOU
        logger.info("survey response stored survey_token=%s", token[:6])
        return SurveySubmitRead(success=True, message=message)
