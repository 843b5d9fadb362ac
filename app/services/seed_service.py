from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, select

from app.domain.models import BoardStage, Department, Role, ServiceGroup, TicketCategory, persisted_id
from app.domain.permissions import DepartmentKey
from app.infra.db import get_engine

logger = logging.getLogger("ops-portal.seed")

DEPARTMENTS: tuple[dict[str, Any], ...] = (
    {"key": DepartmentKey.IT, "name_ru": "Отдел IT", "name_kz": "IT бөлімі"},
    {"key": DepartmentKey.DIGITALIZATION, "name_ru": "Отдел цифровизации", "name_kz": "Цифрландыру бөлімі"},
    {
        "key": DepartmentKey.MEDICAL_EQUIPMENT,
        "name_ru": "Служба медицинского оборудования",
        "name_kz": "Медициналық жабдық қызметі",
    },
    {"key": DepartmentKey.ENGINEERING, "name_ru": "Инженерная служба", "name_kz": "Инженерлік қызмет"},
)

ROLES: tuple[dict[str, str], ...] = (
    {"name": "SuperAdmin", "type": "superadmin", "description": "Суперадминистратор - полный доступ ко всему"},
    {"name": "Admin", "type": "admin", "description": "Администратор отдела"},
    {"name": "Lead", "type": "lead", "description": "Руководитель отдела"},
    {"name": "Member", "type": "member", "description": "Сотрудник отдела"},
)

BOARD_STAGES: tuple[dict[str, Any], ...] = (
    {"order": 1, "name": "Идеи / Запросы"},
    {"order": 2, "name": "Подготовка к проекту (ТЗ, аналитика)"},
    {"order": 3, "name": "В работе"},
    {"order": 4, "name": "Тестирование"},
    {"order": 5, "name": "В промышленной эксплуатации"},
)

SERVICE_GROUPS: tuple[dict[str, Any], ...] = (
    {
        "slug": "it-support",
        "name_ru": "IT-поддержка",
        "name_kz": "IT-қолдау",
        "department": DepartmentKey.IT,
        "categories": (
            ("computer-breakdown", "Поломка компьютера", "Компьютер бұзылуы"),
            ("printer", "Принтер / МФУ", "Принтер / МФУ"),
            ("network", "Интернет / Локальная сеть", "Интернет / Жергілікті желі"),
            ("email", "Электронная почта / Outlook", "Электрондық пошта / Outlook"),
            ("it-other", "Другое IT", "Басқа IT"),
        ),
    },
    {
        "slug": "medical-equipment",
        "name_ru": "Медицинское оборудование",
        "name_kz": "Медициналық жабдық",
        "department": DepartmentKey.MEDICAL_EQUIPMENT,
        "categories": (
            ("diagnostic-equipment", "Диагностическое оборудование", "Диагностикалық жабдық"),
            ("lab-equipment", "Лабораторное оборудование", "Зертханалық жабдық"),
            ("med-other", "Другое", "Басқа"),
        ),
    },
    {
        "slug": "engineering",
        "name_ru": "Инженерная служба",
        "name_kz": "Инженерлік қызмет",
        "department": DepartmentKey.ENGINEERING,
        "categories": (
            ("electrical", "Электроснабжение", "Электрмен жабдықтау"),
            ("plumbing", "Водоснабжение / Канализация", "Сумен жабдықтау / Кәріз"),
            ("eng-other", "Другое", "Басқа"),
        ),
    },
)


class SeedService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def seed_reference_data(self, *, include_helpdesk: bool = True) -> None:
        """Create departments, roles, board stages and helpdesk groups; existing rows are kept."""
        with self._session() as session:
            departments = self._seed_departments(session)
            self._seed_roles(session)
            self._seed_stages(session)
            if include_helpdesk:
                self._seed_service_groups(session, departments)
            session.commit()
        logger.info("reference data seeded")

    def _seed_departments(self, session: Session) -> dict[str, Department]:
        result: dict[str, Department] = {}
        for item in DEPARTMENTS:
            department = session.exec(select(Department).where(Department.key == item["key"])).first()
            if department is None:
                department = Department(**item)
                session.add(department)
                session.flush()
            result[department.key] = department
        return result

    def _seed_roles(self, session: Session) -> None:
        for item in ROLES:
            existing = session.exec(select(Role).where(Role.type == item["type"])).first()
            if existing is None:
                session.add(Role(**item))
        session.flush()

    def _seed_stages(self, session: Session) -> None:
        for item in BOARD_STAGES:
            stage = session.exec(select(BoardStage).where(BoardStage.order == item["order"])).first()
            if stage is None:
                session.add(BoardStage(**item))
            else:
                stage.name = item["name"]
                session.add(stage)
        session.flush()

    def _seed_service_groups(self, session: Session, departments: dict[str, Department]) -> None:
        for item in SERVICE_GROUPS:
            department = departments.get(item["department"])
            group = session.exec(select(ServiceGroup).where(ServiceGroup.slug == item["slug"])).first()
            if group is None:
                group = ServiceGroup(slug=item["slug"], name_ru=item["name_ru"], name_kz=item["name_kz"])
            group.department_id = department.id if department is not None else None
            session.add(group)
            session.flush()
            group_id = persisted_id(group)
            for order, (slug, name_ru, name_kz) in enumerate(item["categories"], start=1):
                category = session.exec(
                    select(TicketCategory).where(
                        TicketCategory.service_group_id == group_id,
                        TicketCategory.slug == slug,
                    )
                ).first()
                if category is None:
                    session.add(
                        TicketCategory(
                            slug=slug,
                            name_ru=name_ru,
                            name_kz=name_kz,
                            order=order,
                            service_group_id=group_id,
                        )
                    )
        session.flush()
