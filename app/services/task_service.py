from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, col, select

from app.domain.errors import NotFoundError, ValidationError
from app.domain.models import ActivityAction, Project, ProjectStatus, Task, TaskRead, User, now_utc, persisted_id
from app.domain.mutations import TASK_DATE_FIELDS, TaskMutation, normalize_date
from app.infra.db import get_engine
from app.services.activity_service import ActivityEntry, ActivityService
from app.services.assignment_service import AssignmentPolicy, Requester

logger = logging.getLogger("ops-portal.tasks")

DATE_COLUMNS = {"startDate": "start_date", "endDate": "end_date", "dueDate": "due_date"}


class TaskService:
    def __init__(self) -> None:
        self._policy = AssignmentPolicy()
        self._activity = ActivityService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _visible_project(self, session: Session, requester: Requester, project_id: int | None) -> Project:
        project = session.get(Project, project_id) if project_id is not None else None
        if project is None:
            raise NotFoundError("Проект не найден")
        if project.status == ProjectStatus.DELETED and not requester.role_flags.is_admin:
            raise NotFoundError("Проект не найден")
        return project

    def _get_task(self, session: Session, requester: Requester, ref: str) -> tuple[Task, Project]:
        task = self._policy.resolve_task(session, ref)
        if task is None:
            raise NotFoundError("Задача не найдена")
        try:
            project = self._visible_project(session, requester, task.project_id)
        except NotFoundError as exc:
            raise NotFoundError("Задача не найдена") from exc
        return task, project

    def _check_dates_within_project(self, mutation: TaskMutation, project: Project) -> None:
        if not mutation.touches_dates:
            return
        for name in TASK_DATE_FIELDS:
            value = normalize_date(mutation.scalars.get(name))
            if value is not None and value > project.due_date:
                raise ValidationError("Даты задачи не могут выходить за срок проекта")

    def _resolve_assignee(self, session: Session, mutation: TaskMutation) -> int | None:
        assignee_id = mutation.assignee.first_id
        if assignee_id is None:
            return None
        if session.get(User, assignee_id) is None:
            raise ValidationError("Исполнитель не найден")
        return assignee_id

    def _apply_scalars(self, task: Task, mutation: TaskMutation) -> None:
        scalars = mutation.scalars
        if "title" in scalars:
            title = scalars["title"]
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Необходимо указать название задачи")
            task.title = title.strip()
        if "description" in scalars:
            task.description = scalars["description"]
        if "completed" in scalars:
            task.completed = bool(scalars["completed"])
        for field_name, column in DATE_COLUMNS.items():
            if field_name in scalars:
                setattr(task, column, normalize_date(scalars[field_name]))

    def list_tasks(self, requester: Requester, project_ref: str) -> list[TaskRead]:
        with self._session() as session:
            project = self._policy.resolve_project(session, project_ref)
            project = self._visible_project(session, requester, project.id if project is not None else None)
            rows = session.exec(
                select(Task)
                .where(Task.project_id == project.id)
                .order_by(col(Task.created_at), col(Task.id))
            ).all()
            return [TaskRead.model_validate(row) for row in rows]

    def get_task(self, requester: Requester, ref: str) -> TaskRead:
        with self._session() as session:
            task, _project = self._get_task(session, requester, ref)
            return TaskRead.model_validate(task)

    def create_task(self, requester: Requester, data: Any) -> TaskRead:
        mutation = TaskMutation.from_data(data)
        with self._session() as session:
            self._policy.validate_task_mutation(session, requester, mutation)
            project_id = self._policy.resolve_task_project_id(session, mutation.project)
            if project_id is None:
                raise ValidationError("Необходимо указать проект задачи")
            project = self._visible_project(session, requester, project_id)
            self._check_dates_within_project(mutation, project)

            title = mutation.scalars.get("title")
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Необходимо указать название задачи")
            task = Task(title=title.strip(), project_id=persisted_id(project))
            self._apply_scalars(task, mutation)
            task.assignee_id = self._resolve_assignee(session, mutation)
            session.add(task)
            session.commit()
            session.refresh(task)
            result = TaskRead.model_validate(task)
            project_title = project.title

        self._activity.record(
            requester.user_id,
            [
                ActivityEntry(
                    action=ActivityAction.CREATE_TASK,
                    description=f'Добавлена задача "{result.title}" в проект "{project_title}"',
                    project_id=result.project_id,
                    details={"task_title": result.title, "project_title": project_title},
                )
            ],
        )
        return result

    def update_task(self, requester: Requester, ref: str, data: Any) -> TaskRead:
        mutation = TaskMutation.from_data(data)
        with self._session() as session:
            task, project = self._get_task(session, requester, ref)
            self._policy.validate_task_mutation(session, requester, mutation, existing=task)

            if mutation.touches("project") and not mutation.project.is_empty():
                project_id = self._policy.resolve_task_project_id(session, mutation.project)
                project = self._visible_project(session, requester, project_id)
                task.project_id = persisted_id(project)
            self._check_dates_within_project(mutation, project)
            self._apply_scalars(task, mutation)
            if mutation.touches("assignee"):
                task.assignee_id = self._resolve_assignee(session, mutation)

            task.updated_at = now_utc()
            session.add(task)
            session.commit()
            session.refresh(task)
            result = TaskRead.model_validate(task)
            project_title = project.title

        details = {"task_title": result.title, "project_title": project_title}
        entries: list[ActivityEntry] = []
        if "completed" in mutation.scalars:
            entries.append(
                ActivityEntry(
                    action=ActivityAction.MARK_TASK,
                    description=(
                        f'Отмечена выполненной задача "{result.title}"'
                        if result.completed
                        else f'Снята отметка выполнения с задачи "{result.title}"'
                    ),
                    project_id=result.project_id,
                    details=details,
                )
            )
        if mutation.touches("assignee"):
            entries.append(
                ActivityEntry(
                    action=ActivityAction.ASSIGN_USER,
                    description=f'Назначен исполнитель задачи "{result.title}"',
                    project_id=result.project_id,
                    details=details,
                )
            )
        self._activity.record(requester.user_id, entries)
        return result

    def delete_task(self, requester: Requester, ref: str) -> None:
        with self._session() as session:
            task, project = self._get_task(session, requester, ref)
            self._policy.validate_task_mutation(session, requester, TaskMutation(touched=frozenset()), existing=task)
            entry = ActivityEntry(
                action=ActivityAction.DELETE_TASK,
                description=f'Удалена задача "{task.title}" из проекта "{project.title}"',
                project_id=project.id,
                details={"task_title": task.title, "project_title": project.title},
            )
            session.delete(task)
            session.commit()
        logger.info("task deleted ref=%s by user=%s", ref, requester.user_id)
        self._activity.record(requester.user_id, [entry])
