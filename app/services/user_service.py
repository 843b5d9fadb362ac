from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from app.domain.models import (
    BoardStage,
    BootstrapRequest,
    Department,
    DepartmentRead,
    ProfileRead,
    Role,
    RoleRead,
    User,
    UserCreate,
    UserRead,
    UserUpdate,
)
from app.domain.roles import RoleKind, classify_role, get_role_flags
from app.infra.auth import hash_password, verify_password
from app.infra.db import get_engine
from app.services.assignment_service import Requester
from app.services.seed_service import SeedService

logger = logging.getLogger("ops-portal.users")


class UserService:
    def __init__(self) -> None:
        self._seed = SeedService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def require_admin(self, requester: Requester) -> None:
        if not requester.role_flags.is_admin:
            raise ForbiddenError("Доступ разрешён только администраторам")

    def _check_role_grant(self, session: Session, requester: Requester, role_id: int | None) -> None:
        if role_id is None:
            return
        role = session.get(Role, role_id)
        if role is None:
            raise ValidationError("Роль не найдена")
        if classify_role(role.name, role.type) == RoleKind.SUPER_ADMIN and not requester.role_flags.is_super_admin:
            raise ForbiddenError("Только суперадминистратор может назначать роль суперадминистратора")

    def _check_department(self, session: Session, department_id: int | None) -> None:
        if department_id is not None and session.get(Department, department_id) is None:
            raise ValidationError("Отдел не найден")

    def _get_user(self, session: Session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("Пользователь не найден")
        return user

    def authenticate(self, username: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None or not verify_password(password, user.password_hash):
                logger.info("login failed username=%s", username)
                raise UnauthorizedError("Неверный логин или пароль")
            if user.blocked:
                raise ForbiddenError("Пользователь заблокирован")
            return user

    def bootstrap(self, payload: BootstrapRequest) -> User:
        with self._session() as session:
            existing = session.exec(select(func.count()).select_from(User)).one()
            if existing:
                raise ConflictError("Система уже инициализирована")

        self._seed.seed_reference_data()
        with self._session() as session:
            role = session.exec(select(Role).where(Role.type == "superadmin")).first()
            user = User(
                username=payload.username,
                email=payload.email,
                password_hash=hash_password(payload.password),
                role_id=role.id if role is not None else None,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
        logger.info("bootstrap super-admin created id=%s", user.id)
        return user

    def profile(self, requester: Requester) -> ProfileRead:
        with self._session() as session:
            user = self._get_user(session, requester.user_id)
            role = session.get(Role, user.role_id) if user.role_id is not None else None
            department = session.get(Department, user.department_id) if user.department_id is not None else None
            flags = get_role_flags(role)
            return ProfileRead(
                user=UserRead.model_validate(user),
                role=RoleRead.model_validate(role) if role is not None else None,
                department=DepartmentRead.model_validate(department) if department is not None else None,
                is_super_admin=flags.is_super_admin,
                is_admin=flags.is_admin,
                is_lead=flags.is_lead,
            )

    def list_users(
        self,
        requester: Requester,
        *,
        department: str | None = None,
        role_id: int | None = None,
        blocked: bool | None = None,
        search: str | None = None,
    ) -> list[User]:
        self.require_admin(requester)
        with self._session() as session:
            statement = select(User)
            if department:
                statement = statement.join(Department, col(User.department_id) == col(Department.id)).where(
                    Department.key == department
                )
            if role_id is not None:
                statement = statement.where(User.role_id == role_id)
            if blocked is not None:
                statement = statement.where(User.blocked == blocked)
            if search:
                pattern = f"%{search}%"
                statement = statement.where(
                    or_(
                        col(User.username).ilike(pattern),
                        col(User.email).ilike(pattern),
                        col(User.first_name).ilike(pattern),
                        col(User.last_name).ilike(pattern),
                    )
                )
            return list(session.exec(statement.order_by(col(User.username))).all())

    def get_user(self, requester: Requester, user_id: int) -> User:
        self.require_admin(requester)
        with self._session() as session:
            return self._get_user(session, user_id)

    def create_user(self, requester: Requester, payload: UserCreate) -> User:
        self.require_admin(requester)
        with self._session() as session:
            self._check_role_grant(session, requester, payload.role_id)
            self._check_department(session, payload.department_id)
            user = User(
                **payload.model_dump(exclude={"password"}),
                password_hash=hash_password(payload.password),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("Пользователь с таким логином уже существует") from exc
            session.refresh(user)
            logger.info("user created id=%s by user=%s", user.id, requester.user_id)
            return user

    def update_user(self, requester: Requester, user_id: int, payload: UserUpdate) -> User:
        self.require_admin(requester)
        changes = payload.model_dump(exclude_unset=True)
        with self._session() as session:
            user = self._get_user(session, user_id)
            if "role_id" in changes:
                self._check_role_grant(session, requester, changes["role_id"])
            if "department_id" in changes:
                self._check_department(session, changes["department_id"])
            password = changes.pop("password", None)
            if password:
                user.password_hash = hash_password(password)
            if "blocked" in changes and changes["blocked"] is None:
                changes.pop("blocked")
            for key, value in changes.items():
                setattr(user, key, value)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def set_blocked(self, requester: Requester, user_id: int, blocked: bool) -> User:
        self.require_admin(requester)
        if user_id == requester.user_id and blocked:
            raise ValidationError("Нельзя заблокировать собственную учётную запись")
        with self._session() as session:
            user = self._get_user(session, user_id)
            user.blocked = blocked
            session.add(user)
            session.commit()
            session.refresh(user)
            logger.info("user id=%s blocked=%s by user=%s", user_id, blocked, requester.user_id)
            return user

    def list_roles(self, requester: Requester) -> list[Role]:
        self.require_admin(requester)
        with self._session() as session:
            return list(session.exec(select(Role).order_by(col(Role.id))).all())

    def list_departments(self) -> list[Department]:
        with self._session() as session:
            return list(session.exec(select(Department).order_by(col(Department.id))).all())

    def list_stages(self) -> list[BoardStage]:
        with self._session() as session:
            return list(session.exec(select(BoardStage).order_by(col(BoardStage.order), col(BoardStage.id))).all())
