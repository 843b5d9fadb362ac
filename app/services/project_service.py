from __future__ import annotations

import logging
from datetime import date
from enum import StrEnum
from typing import Any, TypeVar

from sqlmodel import Session, col, delete, select

from app.domain.errors import ForbiddenError, NotFoundError, ValidationError
from app.domain.models import (
    ActivityAction,
    AssignableUserRead,
    BoardStage,
    Department,
    DepartmentRead,
    MeetingNote,
    PriorityLight,
    Project,
    ProjectRead,
    ProjectResponsibleUser,
    ProjectStatus,
    ProjectSupportingSpecialist,
    ProjectSurvey,
    SurveyResponse,
    Task,
    User,
    now_utc,
    persisted_id,
)
from app.domain.mutations import ProjectMutation, normalize_date
from app.domain.progress import bucket_stage_order, compute_project_progress_from_tasks, project_deadline_flags
from app.domain.relations import RelationRef, get_assignable_user_filters
from app.infra.db import get_engine
from app.services.activity_service import ActivityEntry, ActivityService
from app.services.assignment_service import AssignmentPolicy, Requester

logger = logging.getLogger("ops-portal.projects")

EnumT = TypeVar("EnumT", bound=StrEnum)

ASSIGNMENT_FIELDS = ("owner", "supportingSpecialists", "responsibleUsers")


def parse_enum(enum_cls: type[EnumT], value: Any, message: str) -> EnumT:
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(message) from exc


def validate_project_dates(start_value: Any, due_value: Any) -> tuple[date, date]:
    start_date = normalize_date(start_value)
    due_date = normalize_date(due_value)
    if start_date is None or due_date is None:
        raise ValidationError("Необходимо указать даты начала и окончания проекта")
    if due_date < start_date:
        raise ValidationError("Срок проекта не может быть раньше даты начала")
    return start_date, due_date


class ProjectService:
    def __init__(self) -> None:
        self._policy = AssignmentPolicy()
        self._activity = ActivityService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_visible_project(self, session: Session, requester: Requester, ref: str) -> Project:
        project = self._policy.resolve_project(session, ref)
        if project is None:
            raise NotFoundError("Проект не найден")
        if project.status == ProjectStatus.DELETED and not requester.role_flags.is_admin:
            raise NotFoundError("Проект не найден")
        return project

    def _ensure_users_exist(self, session: Session, user_ids: list[int]) -> None:
        if not user_ids:
            return
        found = set(session.exec(select(User.id).where(col(User.id).in_(user_ids))).all())
        if any(user_id not in found for user_id in user_ids):
            raise ValidationError("Некоторые участники не найдены")

    def _resolve_stage(self, session: Session, ref: RelationRef) -> int | None:
        if ref.is_empty():
            return None
        stage = session.get(BoardStage, ref.first_id) if ref.first_id is not None else None
        if stage is None:
            raise ValidationError("Этап доски не найден")
        return stage.id

    def _first_stage_id(self, session: Session) -> int | None:
        stage = session.exec(select(BoardStage).order_by(col(BoardStage.order), col(BoardStage.id))).first()
        return stage.id if stage is not None else None

    def _replace_links(
        self,
        session: Session,
        model: type[ProjectSupportingSpecialist] | type[ProjectResponsibleUser],
        project_id: int,
        user_ids: tuple[int, ...],
    ) -> None:
        session.exec(delete(model).where(col(model.project_id) == project_id))  # type: ignore[call-overload]
        for user_id in user_ids:
            session.add(model(project_id=project_id, user_id=user_id))

    def to_read(self, session: Session, project: Project, *, today: date | None = None) -> ProjectRead:
        project_id = persisted_id(project)
        links = self._policy.load_project_links(session, project_id)
        tasks = list(session.exec(select(Task).where(Task.project_id == project_id)).all())
        progress = compute_project_progress_from_tasks(tasks)
        deadline = project_deadline_flags(project.due_date, project.status, today or date.today())
        stage = session.get(BoardStage, project.manual_stage_override) if project.manual_stage_override else None
        department = session.get(Department, project.department_id)
        return ProjectRead(
            id=project_id,
            document_id=project.document_id,
            title=project.title,
            description=project.description,
            department_id=project.department_id,
            department_key=department.key if department is not None else None,
            owner_id=project.owner_id,
            supporting_specialist_ids=links.supporting_specialist_ids,
            responsible_user_ids=links.responsible_user_ids,
            status=project.status,
            priority_light=project.priority_light,
            start_date=project.start_date,
            due_date=project.due_date,
            manual_stage_override=project.manual_stage_override,
            stage_bucket=bucket_stage_order(stage.order if stage is not None else None),
            progress_percent=progress.progress_percent,
            done_tasks=progress.done_tasks,
            total_tasks=progress.total_tasks,
            overdue=deadline.overdue,
            due_soon=deadline.due_soon,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )

    def list_projects(
        self,
        requester: Requester,
        *,
        department: str | None = None,
        status: ProjectStatus | None = None,
    ) -> list[ProjectRead]:
        with self._session() as session:
            statement = select(Project)
            if department:
                dept = self._policy.resolve_department(session, department)
                if dept is None:
                    return []
                statement = statement.where(Project.department_id == dept.id)
            if status is not None:
                statement = statement.where(Project.status == status)
            if not requester.role_flags.is_admin:
                statement = statement.where(Project.status != ProjectStatus.DELETED)
            rows = session.exec(statement.order_by(col(Project.created_at).desc(), col(Project.id).desc())).all()
            today = date.today()
            return [self.to_read(session, row, today=today) for row in rows]

    def get_project(self, requester: Requester, ref: str) -> ProjectRead:
        with self._session() as session:
            return self.to_read(session, self._get_visible_project(session, requester, ref))

    def create_project(self, requester: Requester, data: Any) -> ProjectRead:
        mutation = ProjectMutation.from_data(data)
        with self._session() as session:
            self._policy.validate_project_mutation(session, requester, mutation, is_create=True)

            department_id = requester.department_id
            if not mutation.department.is_empty():
                department = self._policy.resolve_department(session, mutation.department)
                if department is None:
                    raise ValidationError("Отдел проекта не найден")
                department_id = department.id
            if department_id is None:
                raise ValidationError("Необходимо указать отдел проекта")

            title = mutation.scalars.get("title")
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Необходимо указать название проекта")
            start_date, due_date = validate_project_dates(
                mutation.scalars.get("startDate"),
                mutation.scalars.get("dueDate"),
            )
            owner_id = mutation.owner.first_id
            if owner_id is None:
                raise ValidationError("Необходимо указать владельца проекта")
            self._ensure_users_exist(
                session,
                list(dict.fromkeys([owner_id, *mutation.supporting_specialists.ids, *mutation.responsible_users.ids])),
            )

            stage_id = self._resolve_stage(session, mutation.manual_stage_override)
            if stage_id is None:
                stage_id = self._first_stage_id(session)

            project = Project(
                title=title.strip(),
                description=mutation.scalars.get("description"),
                department_id=department_id,
                owner_id=owner_id,
                status=parse_enum(
                    ProjectStatus,
                    mutation.scalars.get("status", ProjectStatus.ACTIVE),
                    "Недопустимый статус проекта",
                ),
                priority_light=parse_enum(
                    PriorityLight,
                    mutation.scalars.get("priorityLight", PriorityLight.GREEN),
                    "Недопустимый приоритет проекта",
                ),
                start_date=start_date,
                due_date=due_date,
                manual_stage_override=stage_id,
            )
            session.add(project)
            session.flush()
            project_id = persisted_id(project)
            for user_id in mutation.supporting_specialists.ids:
                session.add(ProjectSupportingSpecialist(project_id=project_id, user_id=user_id))
            for user_id in mutation.responsible_users.ids:
                session.add(ProjectResponsibleUser(project_id=project_id, user_id=user_id))
            session.commit()
            session.refresh(project)
            result = self.to_read(session, project)

        logger.info("project created id=%s by user=%s", result.id, requester.user_id)
        self._activity.record(
            requester.user_id,
            [
                ActivityEntry(
                    action=ActivityAction.CREATE_PROJECT,
                    description=f'Создан проект: "{result.title}"',
                    project_id=result.id,
                    details={"project_title": result.title},
                )
            ],
        )
        return result

    def update_project(self, requester: Requester, ref: str, data: Any) -> ProjectRead:
        mutation = ProjectMutation.from_data(data)
        with self._session() as session:
            project = self._get_visible_project(session, requester, ref)
            self._policy.validate_project_mutation(
                session,
                requester,
                mutation,
                is_create=False,
                existing=project,
            )
            project_id = persisted_id(project)
            scalars = mutation.scalars

            if "title" in scalars:
                title = scalars["title"]
                if not isinstance(title, str) or not title.strip():
                    raise ValidationError("Необходимо указать название проекта")
                project.title = title.strip()
            if "description" in scalars:
                project.description = scalars["description"]
            if "status" in scalars:
                project.status = parse_enum(ProjectStatus, scalars["status"], "Недопустимый статус проекта")
            if "priorityLight" in scalars:
                project.priority_light = parse_enum(
                    PriorityLight,
                    scalars["priorityLight"],
                    "Недопустимый приоритет проекта",
                )
            if "startDate" in scalars or "dueDate" in scalars:
                project.start_date, project.due_date = validate_project_dates(
                    scalars.get("startDate", project.start_date),
                    scalars.get("dueDate", project.due_date),
                )

            if mutation.touches("department"):
                department = self._policy.resolve_department(session, mutation.department)
                if department is None or department.id is None:
                    raise ValidationError("Необходимо указать отдел проекта")
                project.department_id = department.id
            if mutation.touches("owner"):
                owner_id = mutation.owner.first_id
                if owner_id is None:
                    raise ValidationError("Необходимо указать владельца проекта")
                self._ensure_users_exist(session, [owner_id])
                project.owner_id = owner_id
            if mutation.touches("supportingSpecialists"):
                self._ensure_users_exist(session, list(mutation.supporting_specialists.ids))
                self._replace_links(session, ProjectSupportingSpecialist, project_id, mutation.supporting_specialists.ids)
            if mutation.touches("responsibleUsers"):
                self._ensure_users_exist(session, list(mutation.responsible_users.ids))
                self._replace_links(session, ProjectResponsibleUser, project_id, mutation.responsible_users.ids)
            if mutation.touches("manualStageOverride"):
                project.manual_stage_override = self._resolve_stage(session, mutation.manual_stage_override)

            project.updated_at = now_utc()
            session.add(project)
            session.commit()
            session.refresh(project)
            result = self.to_read(session, project)

        self._activity.record(requester.user_id, self._update_entries(result, mutation))
        return result

    def _update_entries(self, project: ProjectRead, mutation: ProjectMutation) -> list[ActivityEntry]:
        changes = sorted(mutation.touched)
        details: dict[str, Any] = {"project_title": project.title, "changes": changes}
        entries: list[ActivityEntry] = []
        if mutation.touches("manualStageOverride"):
            entries.append(
                ActivityEntry(
                    action=ActivityAction.MOVE_STAGE,
                    description=f'Перемещён проект: "{project.title}"',
                    project_id=project.id,
                    details=details,
                )
            )
        is_soft_delete = mutation.scalars.get("status") == ProjectStatus.DELETED
        if is_soft_delete:
            entries.append(
                ActivityEntry(
                    action=ActivityAction.DELETE_PROJECT,
                    description=f'Удалён проект: "{project.title}"',
                    project_id=project.id,
                    details=details,
                )
            )
        if mutation.touches_assignments:
            entries.append(
                ActivityEntry(
                    action=ActivityAction.ASSIGN_USER,
                    description=f'Назначены исполнители проекта: "{project.title}"',
                    project_id=project.id,
                    details={**details, "fields": list(ASSIGNMENT_FIELDS)},
                )
            )
        update_fields = [name for name in changes if name != "manualStageOverride" and name not in ASSIGNMENT_FIELDS]
        if update_fields and not is_soft_delete:
            entries.append(
                ActivityEntry(
                    action=ActivityAction.UPDATE_PROJECT,
                    description=f'Обновлён проект: "{project.title}"',
                    project_id=project.id,
                    details=details,
                )
            )
        return entries

    def delete_project(self, requester: Requester, ref: str) -> None:
        if not requester.role_flags.is_super_admin:
            raise ForbiddenError("Удалять проекты может только суперадминистратор")
        with self._session() as session:
            project = self._policy.resolve_project(session, ref)
            if project is None or project.id is None:
                raise NotFoundError("Проект не найден")
            session.exec(delete(Task).where(col(Task.project_id) == project.id))  # type: ignore[call-overload]
            survey_ids = select(ProjectSurvey.id).where(ProjectSurvey.project_id == project.id)
            session.exec(delete(SurveyResponse).where(col(SurveyResponse.survey_id).in_(survey_ids)))  # type: ignore[call-overload]
            session.exec(delete(ProjectSurvey).where(col(ProjectSurvey.project_id) == project.id))  # type: ignore[call-overload]
            session.exec(delete(MeetingNote).where(col(MeetingNote.project_id) == project.id))  # type: ignore[call-overload]
            session.exec(
                delete(ProjectSupportingSpecialist).where(  # type: ignore[call-overload]
                    col(ProjectSupportingSpecialist.project_id) == project.id
                )
            )
            session.exec(
                delete(ProjectResponsibleUser).where(  # type: ignore[call-overload]
                    col(ProjectResponsibleUser.project_id) == project.id
                )
            )
            session.delete(project)
            session.commit()
        logger.info("project hard-deleted ref=%s by user=%s", ref, requester.user_id)

    def assignable_users(self, requester: Requester, requested_department: str | None = None) -> list[AssignableUserRead]:
        is_super_admin = requester.role_flags.is_super_admin
        requested = requested_department or None
        if (
            not is_super_admin
            and requested is not None
            and requester.department_key is not None
            and requested != requester.department_key
        ):
            raise ForbiddenError("Можно запрашивать только сотрудников своего отдела")
        filters = get_assignable_user_filters(
            is_super_admin=is_super_admin,
            requester_department_key=requester.department_key,
            requested_department_key=requested,
        )
        if filters is None:
            raise ForbiddenError("У пользователя не указан отдел")

        with self._session() as session:
            statement = select(User, Department).join(
                Department,
                col(User.department_id) == col(Department.id),
                isouter=True,
            )
            statement = statement.where(col(User.blocked).is_(False))
            if filters.department_key is not None:
                statement = statement.where(Department.key == filters.department_key)
            statement = statement.order_by(col(User.first_name), col(User.last_name), col(User.username))
            rows = session.exec(statement).all()
            return [
                AssignableUserRead(
                    id=user.id,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    department=DepartmentRead.model_validate(department) if department is not None else None,
                )
                for user, department in rows
                if user.id is not None
            ]
