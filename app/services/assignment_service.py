from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlmodel import Session, col, select

from app.domain.errors import ForbiddenError, PortalError, UnauthorizedError, ValidationError
from app.domain.models import (
    Department,
    Project,
    ProjectResponsibleUser,
    ProjectSupportingSpecialist,
    Role,
    Task,
    User,
)
from app.domain.mutations import ProjectMutation, TaskMutation
from app.domain.permissions import DepartmentKey, FeatureFlags
from app.domain.relations import RelationRef, decode_relation, parse_numeric_id
from app.domain.roles import RoleFlags, get_role_flags

logger = logging.getLogger("ops-portal.policy")


@dataclass(frozen=True)
class Requester:
    """The authenticated caller, resolved once per request and passed explicitly."""

    user_id: int
    username: str
    role_flags: RoleFlags = field(default_factory=RoleFlags)
    department_id: int | None = None
    department_key: str | None = None
    feature_flags: FeatureFlags = field(default_factory=FeatureFlags)


@dataclass(frozen=True)
class ProjectLinks:
    supporting_specialist_ids: list[int]
    responsible_user_ids: list[int]


class AssignmentPolicy:
    def _reject(self, requester: Requester | None, error: PortalError) -> PortalError:
        logger.info(
            "policy rejected request user=%s status=%s reason=%s",
            requester.user_id if requester is not None else None,
            error.status_code,
            error.message,
        )
        return error

    def load_requester(self, session: Session, user_id: int | None) -> Requester:
        if user_id is None:
            raise self._reject(None, UnauthorizedError("Требуется авторизация"))
        user = session.get(User, user_id)
        if user is None or user.blocked:
            raise self._reject(None, UnauthorizedError("Требуется авторизация"))
        role = session.get(Role, user.role_id) if user.role_id is not None else None
        department = session.get(Department, user.department_id) if user.department_id is not None else None
        return Requester(
            user_id=user_id,
            username=user.username,
            role_flags=get_role_flags(role),
            department_id=department.id if department is not None else None,
            department_key=department.key if department is not None else None,
            feature_flags=FeatureFlags(
                can_view_dashboard=user.can_view_dashboard,
                can_view_board=user.can_view_board,
                can_view_table=user.can_view_table,
                can_view_helpdesk=user.can_view_helpdesk,
            ),
        )

    def resolve_department(self, session: Session, value: object) -> Department | None:
        ref = value if isinstance(value, RelationRef) else decode_relation(value)
        if ref.first_id is not None:
            return session.get(Department, ref.first_id)
        text = ref.first_document_id
        if text is None:
            return None
        if text in {item.value for item in DepartmentKey}:
            by_key = session.exec(select(Department).where(Department.key == text)).first()
            if by_key is not None:
                return by_key
        return session.exec(select(Department).where(Department.document_id == text)).first()

    def resolve_department_key(self, session: Session, value: object) -> str | None:
        department = self.resolve_department(session, value)
        return department.key if department is not None else None

    def resolve_project(self, session: Session, value: object) -> Project | None:
        ref = value if isinstance(value, RelationRef) else decode_relation(value)
        if ref.first_id is not None:
            return session.get(Project, ref.first_id)
        if ref.first_document_id is None:
            return None
        return session.exec(select(Project).where(Project.document_id == ref.first_document_id)).first()

    def resolve_task(self, session: Session, value: object) -> Task | None:
        numeric = parse_numeric_id(value)
        if numeric is not None:
            return session.get(Task, numeric)
        if isinstance(value, str) and value.strip():
            return session.exec(select(Task).where(Task.document_id == value.strip())).first()
        return None

    def load_project_links(self, session: Session, project_id: int) -> ProjectLinks:
        supporting = session.exec(
            select(ProjectSupportingSpecialist.user_id)
            .where(ProjectSupportingSpecialist.project_id == project_id)
            .order_by(col(ProjectSupportingSpecialist.user_id))
        ).all()
        responsible = session.exec(
            select(ProjectResponsibleUser.user_id)
            .where(ProjectResponsibleUser.project_id == project_id)
            .order_by(col(ProjectResponsibleUser.user_id))
        ).all()
        return ProjectLinks(
            supporting_specialist_ids=list(supporting),
            responsible_user_ids=list(responsible),
        )

    def _user_department_keys(self, session: Session, user_ids: list[int]) -> dict[int, str | None]:
        rows = session.exec(
            select(User.id, Department.key)
            .join(Department, col(User.department_id) == col(Department.id), isouter=True)
            .where(col(User.id).in_(user_ids))
        ).all()
        return {user_id: key for user_id, key in rows if user_id is not None}

    def validate_project_mutation(
        self,
        session: Session,
        requester: Requester,
        mutation: ProjectMutation,
        *,
        is_create: bool,
        existing: Project | None = None,
    ) -> bool:
        # Archive, restore and soft delete never re-validate assignments.
        if not is_create and mutation.is_status_only:
            return True

        flags = requester.role_flags
        owner_ids = list(mutation.owner.ids)
        has_owner_field = mutation.touches("owner")

        if is_create and not owner_ids:
            raise self._reject(requester, ValidationError("Необходимо указать владельца проекта"))
        if has_owner_field and not is_create and not flags.can_manage_owner:
            raise self._reject(
                requester,
                ForbiddenError("Только администратор или руководитель может менять владельца проекта"),
            )
        if has_owner_field and not owner_ids:
            raise self._reject(requester, ValidationError("Необходимо указать владельца проекта"))

        if flags.is_super_admin:
            return True

        if not requester.department_key:
            raise self._reject(
                requester,
                ForbiddenError("Для назначения участников проекта у пользователя должен быть указан отдел"),
            )

        explicit_department_key: str | None = None
        if not mutation.department.is_empty():
            explicit_department_key = self.resolve_department_key(session, mutation.department)
            if explicit_department_key is None:
                raise self._reject(requester, ValidationError("Отдел проекта не найден"))

        existing_department_key: str | None = None
        if existing is not None:
            existing_department_key = self.resolve_department_key(session, existing.department_id)
        project_department_key = explicit_department_key or existing_department_key or requester.department_key

        links = self.load_project_links(session, existing.id) if existing is not None and existing.id else None
        owner_for_validation = owner_ids if has_owner_field else ([existing.owner_id] if existing is not None else [])
        if mutation.touches("supportingSpecialists"):
            supporting_ids = list(mutation.supporting_specialists.ids)
        else:
            supporting_ids = links.supporting_specialist_ids if links is not None else []
        if mutation.touches("responsibleUsers"):
            responsible_ids = list(mutation.responsible_users.ids)
        else:
            responsible_ids = links.responsible_user_ids if links is not None else []

        assignee_ids = list(dict.fromkeys([*owner_for_validation, *supporting_ids, *responsible_ids]))
        if not assignee_ids and not mutation.touches("department"):
            return True

        department_keys = self._user_department_keys(session, assignee_ids)
        if any(user_id not in department_keys for user_id in assignee_ids):
            raise self._reject(requester, ValidationError("Некоторые участники не найдены"))
        if any(key != project_department_key for key in department_keys.values()):
            raise self._reject(requester, ForbiddenError("Можно назначать только сотрудников отдела проекта"))
        return True

    def resolve_task_project_id(self, session: Session, ref: RelationRef) -> int | None:
        if ref.first_id is not None:
            return ref.first_id
        if ref.first_document_id is None:
            return None
        project = session.exec(select(Project).where(Project.document_id == ref.first_document_id)).first()
        return project.id if project is not None else None

    def validate_task_mutation(
        self,
        session: Session,
        requester: Requester,
        mutation: TaskMutation,
        *,
        existing: Task | None = None,
    ) -> bool:
        if requester.role_flags.is_super_admin:
            return True

        if not requester.department_key:
            raise self._reject(requester, ForbiddenError("У пользователя не указан отдел"))

        project_id = self.resolve_task_project_id(session, mutation.project)
        if project_id is None and existing is not None:
            project_id = existing.project_id
        if project_id is None:
            raise self._reject(requester, ValidationError("Необходимо указать проект задачи"))

        project = session.get(Project, project_id)
        project_department_key = (
            self.resolve_department_key(session, project.department_id) if project is not None else None
        )
        if not project_department_key:
            raise self._reject(requester, ForbiddenError("У проекта не указан отдел"))
        if project_department_key != requester.department_key:
            raise self._reject(
                requester,
                ForbiddenError("Можно управлять задачами только в проектах своего отдела"),
            )

        assignee_id = mutation.assignee.first_id
        if assignee_id is None and existing is not None:
            assignee_id = existing.assignee_id
        if assignee_id is None:
            return True

        department_keys = self._user_department_keys(session, [assignee_id])
        if assignee_id not in department_keys:
            raise self._reject(requester, ValidationError("Исполнитель не найден"))
        if department_keys[assignee_id] != project_department_key:
            raise self._reject(requester, ForbiddenError("Исполнитель должен быть из отдела проекта"))
        return True
