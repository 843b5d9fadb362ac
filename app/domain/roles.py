from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol


class RoleKind(StrEnum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    LEAD = "LEAD"
    MEMBER = "MEMBER"


@dataclass(frozen=True)
class RoleFlags:
    is_super_admin: bool = False
    is_admin: bool = False
    is_lead: bool = False

    @property
    def can_manage_owner(self) -> bool:
        return self.is_super_admin or self.is_admin or self.is_lead


class RoleLike(Protocol):
    name: str | None
    type: str | None


ROLE_CAPABILITIES: dict[RoleKind, RoleFlags] = {
    RoleKind.SUPER_ADMIN: RoleFlags(is_super_admin=True, is_admin=True),
    RoleKind.ADMIN: RoleFlags(is_admin=True),
    RoleKind.LEAD: RoleFlags(is_lead=True),
    RoleKind.MEMBER: RoleFlags(),
}

# Ordered by precedence: the first kind with a matching token wins.
ROLE_TOKENS: tuple[tuple[RoleKind, tuple[str, ...]], ...] = (
    (RoleKind.SUPER_ADMIN, ("superadmin", "суперадмин")),
    (RoleKind.ADMIN, ("admin",)),
    (RoleKind.LEAD, ("lead", "руководитель")),
    (RoleKind.MEMBER, ("member", "authenticated", "сотрудник")),
)

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_role_text(value: str | None) -> str:
    if not isinstance(value, str):
        return ""
    return _SEPARATORS.sub("", value.lower())


def matching_role_kinds(name: str | None, role_type: str | None = None) -> list[RoleKind]:
    candidates = [text for text in (normalize_role_text(name), normalize_role_text(role_type)) if text]
    return [
        kind
        for kind, tokens in ROLE_TOKENS
        if any(token in text for token in tokens for text in candidates)
    ]


def classify_role(name: str | None, role_type: str | None = None) -> RoleKind | None:
    kinds = matching_role_kinds(name, role_type)
    return kinds[0] if kinds else None


def get_role_flags(role: RoleLike | dict[str, Any] | None) -> RoleFlags:
    if role is None:
        return RoleFlags()
    if isinstance(role, dict):
        name = role.get("name")
        role_type = role.get("type")
    else:
        name = getattr(role, "name", None)
        role_type = getattr(role, "type", None)
    # Capabilities are additive: "Lead Admin" is both admin and lead.
    flags = RoleFlags()
    for kind in matching_role_kinds(name, role_type):
        granted = ROLE_CAPABILITIES[kind]
        flags = RoleFlags(
            is_super_admin=flags.is_super_admin or granted.is_super_admin,
            is_admin=flags.is_admin or granted.is_admin,
            is_lead=flags.is_lead or granted.is_lead,
        )
    return flags
