from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from app.domain.errors import ValidationError
from app.domain.relations import RelationRef, decode_relation

PROJECT_RELATION_FIELDS: tuple[str, ...] = (
    "owner",
    "supportingSpecialists",
    "responsibleUsers",
    "department",
    "manualStageOverride",
)
TASK_RELATION_FIELDS: tuple[str, ...] = ("project", "assignee")
TASK_DATE_FIELDS: tuple[str, ...] = ("startDate", "endDate", "dueDate")
TASK_DISCARDED_FIELDS: tuple[str, ...] = ("progress", "status", "subtasks")


def normalize_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValidationError("Поле data должно быть объектом")
    return data


@dataclass(frozen=True)
class ProjectMutation:
    touched: frozenset[str]
    owner: RelationRef = RelationRef()
    supporting_specialists: RelationRef = RelationRef()
    responsible_users: RelationRef = RelationRef()
    department: RelationRef = RelationRef()
    manual_stage_override: RelationRef = RelationRef()
    scalars: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_data(cls, data: Any) -> ProjectMutation:
        payload = _require_mapping(data)
        return cls(
            touched=frozenset(payload.keys()),
            owner=decode_relation(payload.get("owner")),
            supporting_specialists=decode_relation(payload.get("supportingSpecialists")),
            responsible_users=decode_relation(payload.get("responsibleUsers")),
            department=decode_relation(payload.get("department")),
            manual_stage_override=decode_relation(payload.get("manualStageOverride")),
            scalars={key: value for key, value in payload.items() if key not in PROJECT_RELATION_FIELDS},
        )

    def touches(self, name: str) -> bool:
        return name in self.touched

    @property
    def is_status_only(self) -> bool:
        return self.touched == frozenset({"status"})

    @property
    def touches_assignments(self) -> bool:
        return any(self.touches(name) for name in ("owner", "supportingSpecialists", "responsibleUsers"))


@dataclass(frozen=True)
class TaskMutation:
    touched: frozenset[str]
    project: RelationRef = RelationRef()
    assignee: RelationRef = RelationRef()
    scalars: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_data(cls, data: Any) -> TaskMutation:
        payload = _require_mapping(data)
        return cls(
            touched=frozenset(payload.keys()),
            project=decode_relation(payload.get("project")),
            assignee=decode_relation(payload.get("assignee")),
            scalars={
                key: value
                for key, value in payload.items()
                if key not in TASK_RELATION_FIELDS and key not in TASK_DISCARDED_FIELDS
            },
        )

    def touches(self, name: str) -> bool:
        return name in self.touched

    @property
    def touches_dates(self) -> bool:
        return any(self.touches(name) for name in TASK_DATE_FIELDS)
