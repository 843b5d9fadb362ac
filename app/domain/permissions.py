from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from app.domain.roles import RoleFlags


class DepartmentKey(StrEnum):
    IT = "IT"
    DIGITALIZATION = "DIGITALIZATION"
    MEDICAL_EQUIPMENT = "MEDICAL_EQUIPMENT"
    ENGINEERING = "ENGINEERING"


class FeatureKey(StrEnum):
    DASHBOARD = "dashboard"
    PROJECTS = "projects"
    HELPDESK = "helpdesk"


PROJECT_DEPARTMENTS: frozenset[str] = frozenset({DepartmentKey.IT, DepartmentKey.DIGITALIZATION})
HELPDESK_DEPARTMENTS: frozenset[str] = frozenset(
    {DepartmentKey.IT, DepartmentKey.MEDICAL_EQUIPMENT, DepartmentKey.ENGINEERING}
)

FEATURE_DEPARTMENTS: dict[FeatureKey, frozenset[str]] = {
    FeatureKey.DASHBOARD: PROJECT_DEPARTMENTS,
    FeatureKey.PROJECTS: PROJECT_DEPARTMENTS,
    FeatureKey.HELPDESK: HELPDESK_DEPARTMENTS,
}

FEATURE_DENIED_MESSAGES: dict[FeatureKey, str] = {
    FeatureKey.DASHBOARD: "Доступ к аналитике запрещён",
    FeatureKey.PROJECTS: "Доступ к проектам запрещён",
    FeatureKey.HELPDESK: "Доступ к хелпдеску запрещён",
}


@dataclass(frozen=True)
class FeatureFlags:
    """Per-user feature switches; ``None`` means the switch was never set."""

    can_view_dashboard: bool | None = None
    can_view_board: bool | None = None
    can_view_table: bool | None = None
    can_view_helpdesk: bool | None = None


def resolve_feature_flag(value: bool | None, fallback: bool = True) -> bool:
    return value if isinstance(value, bool) else fallback


def has_feature_switch(flags: FeatureFlags, feature: FeatureKey) -> bool:
    if feature == FeatureKey.DASHBOARD:
        return resolve_feature_flag(flags.can_view_dashboard)
    if feature == FeatureKey.PROJECTS:
        return resolve_feature_flag(flags.can_view_board) or resolve_feature_flag(flags.can_view_table)
    return resolve_feature_flag(flags.can_view_helpdesk)


def has_department_access(role_flags: RoleFlags, department_key: str | None, feature: FeatureKey) -> bool:
    if role_flags.is_super_admin or role_flags.is_admin:
        return True
    return department_key is not None and department_key in FEATURE_DEPARTMENTS[feature]


def feature_allowed(
    feature: FeatureKey,
    *,
    flags: FeatureFlags,
    role_flags: RoleFlags,
    department_key: str | None,
) -> bool:
    return has_feature_switch(flags, feature) and has_department_access(role_flags, department_key, feature)
