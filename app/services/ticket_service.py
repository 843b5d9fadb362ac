from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_
from sqlmodel import Session, col, delete, select

from app.domain.errors import NotFoundError, ValidationError
from app.domain.models import (
    AssignableUserRead,
    Department,
    DepartmentRead,
    PaginationRead,
    ServiceGroup,
    ServiceGroupRead,
    Ticket,
    TicketAssignee,
    TicketAssigneeRead,
    TicketCategory,
    TicketCategoryDefaultAssignee,
    TicketCategoryRead,
    TicketPageRead,
    TicketPublicSubmitRead,
    TicketPublicSubmitRequest,
    TicketRead,
    TicketReassignRequest,
    TicketStatus,
    User,
    now_utc,
    persisted_id,
)
from app.domain.relations import parse_numeric_id
from app.infra.db import get_engine
from app.services.assignment_service import Requester

logger = logging.getLogger("ops-portal.helpdesk")

DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class TicketQuery:
    status: str | None = None
    search: str | None = None
    assignee_id: int | None = None
    my_tickets: bool = False
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


def format_ticket_number(sequence: int) -> str:
    return f"HD-{sequence:04d}"


class TicketService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _department_group_ids(self, session: Session, department_id: int | None) -> list[int]:
        if department_id is None:
            return []
        rows = session.exec(select(ServiceGroup.id).where(ServiceGroup.department_id == department_id)).all()
        return [row for row in rows if row is not None]

    def _assigned_to(self, user_id: int) -> Any:
        return col(Ticket.id).in_(select(TicketAssignee.ticket_id).where(TicketAssignee.user_id == user_id))

    def _visibility_conditions(
        self,
        session: Session,
        requester: Requester,
        *,
        assignee_id: int | None = None,
        my_tickets: bool = False,
    ) -> list[Any] | None:
        """Return WHERE clauses limiting tickets to what the requester may see, or None for nothing."""
        flags = requester.role_flags
        conditions: list[Any] = []
        if not flags.is_admin:
            group_ids = self._department_group_ids(session, requester.department_id)
            if not requester.department_key or not group_ids:
                return None
            conditions.append(col(Ticket.service_group_id).in_(group_ids))
            if not flags.is_lead:
                conditions.append(self._assigned_to(requester.user_id))
                return conditions
        if my_tickets:
            conditions.append(self._assigned_to(requester.user_id))
        elif assignee_id is not None:
            conditions.append(self._assigned_to(assignee_id))
        return conditions

    def _assignees(self, session: Session, ticket_id: int) -> list[TicketAssigneeRead]:
        rows = session.exec(
            select(User)
            .join(TicketAssignee, col(TicketAssignee.user_id) == col(User.id))
            .where(TicketAssignee.ticket_id == ticket_id)
            .order_by(col(User.id))
        ).all()
        return [
            TicketAssigneeRead(
                id=user.id,
                username=user.username,
                first_name=user.first_name,
                last_name=user.last_name,
            )
            for user in rows
            if user.id is not None
        ]

    def _to_read(self, session: Session, ticket: Ticket) -> TicketRead:
        ticket_id = persisted_id(ticket)
        return TicketRead(
            id=ticket_id,
            document_id=ticket.document_id,
            ticket_number=ticket.ticket_number,
            requester_name=ticket.requester_name,
            requester_phone=ticket.requester_phone,
            requester_department=ticket.requester_department,
            comment=ticket.comment,
            status=ticket.status,
            service_group_id=ticket.service_group_id,
            category_id=ticket.category_id,
            assignees=self._assignees(session, ticket_id),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    def _ref_condition(self, ref: str) -> Any:
        numeric = parse_numeric_id(ref)
        if numeric is not None:
            return Ticket.id == numeric
        return Ticket.document_id == ref

    def _visible_ticket(self, session: Session, requester: Requester, ref: str) -> Ticket:
        conditions = self._visibility_conditions(session, requester)
        if conditions is None:
            raise NotFoundError("Заявка не найдена")
        ticket = session.exec(select(Ticket).where(self._ref_condition(ref), *conditions)).first()
        if ticket is None:
            raise NotFoundError("Заявка не найдена")
        return ticket

    def list_filtered(self, requester: Requester, query: TicketQuery) -> TicketPageRead:
        page = max(query.page, 1)
        page_size = query.page_size if query.page_size > 0 else DEFAULT_PAGE_SIZE
        with self._session() as session:
            conditions = self._visibility_conditions(
                session,
                requester,
                assignee_id=query.assignee_id,
                my_tickets=query.my_tickets,
            )
            if conditions is None:
                return TicketPageRead(
                    data=[],
                    pagination=PaginationRead(total=0, page=1, page_size=page_size, page_count=0),
                )
            if query.status and query.status != "ALL":
                try:
                    status = TicketStatus(query.status)
                except ValueError as exc:
                    raise ValidationError("Недопустимый статус заявки") from exc
                conditions.append(Ticket.status == status)
            if query.search:
                pattern = f"%{query.search}%"
                conditions.append(
                    or_(
                        col(Ticket.requester_name).ilike(pattern),
                        col(Ticket.ticket_number).ilike(pattern),
                        col(Ticket.requester_department).ilike(pattern),
                    )
                )

            total = session.exec(select(func.count()).select_from(Ticket).where(*conditions)).one()
            rows = session.exec(
                select(Ticket)
                .where(*conditions)
                .order_by(col(Ticket.created_at).desc(), col(Ticket.id).desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            return TicketPageRead(
                data=[self._to_read(session, row) for row in rows],
                pagination=PaginationRead(
                    total=total,
                    page=page,
                    page_size=page_size,
                    page_count=math.ceil(total / page_size),
                ),
            )

    def get_ticket(self, requester: Requester, ref: str) -> TicketRead:
        with self._session() as session:
            return self._to_read(session, self._visible_ticket(session, requester, ref))

    def public_submit(self, payload: TicketPublicSubmitRequest) -> TicketPublicSubmitRead:
        if (
            not payload.requester_name
            or not payload.comment
            or not payload.service_group_id
            or not payload.requester_department
        ):
            raise ValidationError(
                "Обязательные поля: requesterName, requesterDepartment, comment, serviceGroupId"
            )
        with self._session() as session:
            service_group = session.get(ServiceGroup, payload.service_group_id)
            if service_group is None:
                raise ValidationError("Служба не найдена")
            category: TicketCategory | None = None
            if payload.category_id:
                category = session.get(TicketCategory, payload.category_id)
                if category is None or category.service_group_id != service_group.id:
                    raise ValidationError("Категория не найдена")

            count = session.exec(select(func.count()).select_from(Ticket)).one()
            ticket = Ticket(
                ticket_number=format_ticket_number(count + 1),
                requester_name=payload.requester_name,
                requester_phone=payload.requester_phone or None,
                requester_department=payload.requester_department,
                comment=payload.comment,
                status=TicketStatus.NEW,
                service_group_id=payload.service_group_id,
                category_id=category.id if category is not None else None,
            )
            session.add(ticket)
            session.flush()
            ticket_id = persisted_id(ticket)

            if category is not None:
                default_ids = session.exec(
                    select(TicketCategoryDefaultAssignee.user_id)
                    .where(TicketCategoryDefaultAssignee.category_id == category.id)
                    .order_by(col(TicketCategoryDefaultAssignee.user_id))
                ).all()
                for user_id in default_ids:
                    session.add(TicketAssignee(ticket_id=ticket_id, user_id=user_id))
                if default_ids:
                    logger.info("ticket %s auto-assigned to users=%s", ticket.ticket_number, list(default_ids))
            session.commit()
            return TicketPublicSubmitRead(id=ticket_id, ticket_number=ticket.ticket_number)

    def public_categories(self) -> list[ServiceGroupRead]:
        with self._session() as session:
            groups = session.exec(select(ServiceGroup).order_by(col(ServiceGroup.name_ru))).all()
            result: list[ServiceGroupRead] = []
            for group in groups:
                categories = session.exec(
                    select(TicketCategory)
                    .where(TicketCategory.service_group_id == group.id)
                    .order_by(col(TicketCategory.order), col(TicketCategory.id))
                ).all()
                result.append(
                    ServiceGroupRead(
                        id=group.id,
                        document_id=group.document_id,
                        slug=group.slug,
                        name_ru=group.name_ru,
                        name_kz=group.name_kz,
                        categories=[TicketCategoryRead.model_validate(item) for item in categories],
                    )
                )
            return result

    def reassign(self, requester: Requester, ref: str, payload: TicketReassignRequest) -> TicketRead:
        if payload.assignee_ids is not None:
            raw_ids = list(payload.assignee_ids)
        elif payload.assignee_id is not None:
            raw_ids = [payload.assignee_id]
        else:
            raw_ids = []
        parsed = (parse_numeric_id(value) for value in raw_ids)
        assignee_ids = list(dict.fromkeys(value for value in parsed if value is not None and value > 0))
        if not assignee_ids:
            raise ValidationError("Необходимо указать исполнителей")

        with self._session() as session:
            found = session.exec(select(User.id).where(col(User.id).in_(assignee_ids))).all()
            if len(set(found)) != len(assignee_ids):
                raise ValidationError("Пользователь не найден")
            ticket = self._visible_ticket(session, requester, ref)
            ticket_id = persisted_id(ticket)
            session.exec(delete(TicketAssignee).where(col(TicketAssignee.ticket_id) == ticket_id))  # type: ignore[call-overload]
            for user_id in assignee_ids:
                session.add(TicketAssignee(ticket_id=ticket_id, user_id=user_id))
            ticket.updated_at = now_utc()
            session.add(ticket)
            session.commit()
            session.refresh(ticket)
            logger.info("ticket %s reassigned to users=%s by user=%s", ticket.ticket_number, assignee_ids, requester.user_id)
            return self._to_read(session, ticket)

    def update_status(self, requester: Requester, ref: str, status: TicketStatus) -> TicketRead:
        with self._session() as session:
            ticket = self._visible_ticket(session, requester, ref)
            ticket.status = status
            ticket.updated_at = now_utc()
            session.add(ticket)
            session.commit()
            session.refresh(ticket)
            return self._to_read(session, ticket)

    def assignable_users(self, requester: Requester) -> list[AssignableUserRead]:
        with self._session() as session:
            statement = select(User, Department).join(
                Department,
                col(User.department_id) == col(Department.id),
                isouter=True,
            )
            if not requester.role_flags.is_admin and requester.department_id is not None:
                statement = statement.where(User.department_id == requester.department_id)
            statement = statement.order_by(col(User.first_name), col(User.last_name), col(User.username))
            return [
                AssignableUserRead(
                    id=user.id,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    department=DepartmentRead.model_validate(department) if department is not None else None,
                )
                for user, department in session.exec(statement).all()
                if user.id is not None
            ]
