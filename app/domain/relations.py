"""Decoding of relation payloads sent by clients.

A relation field may arrive as a bare id, a numeric string, a document id,
``{"id": ...}``, ``{"documentId": ...}``, ``{"connect": ...}``,
``{"set": ...}`` or a list of any of these. Payloads are decoded once, at the
API boundary, into :class:`RelationRef` values; policies and services only
ever see decoded references.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

ASSIGNMENT_FIELDS: tuple[str, ...] = ("owner", "supportingSpecialists", "responsibleUsers")


def parse_numeric_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        if math.isfinite(parsed) and parsed.is_integer():
            return int(parsed)
    return None


def _dedupe(values: Iterable[Any]) -> list[Any]:
    seen: set[Any] = set()
    result: list[Any] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _walk_ids(value: Any) -> list[int]:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return [item for entry in value for item in _walk_ids(entry)]
    parsed = parse_numeric_id(value)
    if parsed is not None:
        return [parsed]
    if isinstance(value, Mapping):
        if "id" in value:
            return _walk_ids(value["id"])
        if "connect" in value:
            return _walk_ids(value["connect"])
        if "set" in value:
            return _walk_ids(value["set"])
    return []


def extract_ids(value: Any) -> list[int]:
    """Flatten any relation payload into ordered, de-duplicated numeric ids."""
    return _dedupe(_walk_ids(value))


def _walk_document_ids(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return [item for entry in value for item in _walk_document_ids(entry)]
    if isinstance(value, str):
        text = value.strip()
        if text and parse_numeric_id(text) is None:
            return [text]
        return []
    if isinstance(value, Mapping):
        if "id" in value:
            return _walk_document_ids(value["id"]) if isinstance(value["id"], str) else []
        if "documentId" in value:
            return _walk_document_ids(value["documentId"])
        if "connect" in value:
            return _walk_document_ids(value["connect"])
        if "set" in value:
            return _walk_document_ids(value["set"])
    return []


@dataclass(frozen=True)
class RelationRef:
    ids: tuple[int, ...] = ()
    document_ids: tuple[str, ...] = ()

    @property
    def first_id(self) -> int | None:
        return self.ids[0] if self.ids else None

    @property
    def first_document_id(self) -> str | None:
        return self.document_ids[0] if self.document_ids else None

    def is_empty(self) -> bool:
        return not self.ids and not self.document_ids


def decode_relation(value: Any) -> RelationRef:
    return RelationRef(
        ids=tuple(extract_ids(value)),
        document_ids=tuple(_dedupe(_walk_document_ids(value))),
    )


def collect_assignee_ids(data: Mapping[str, Any]) -> list[int]:
    return _dedupe(item for field in ASSIGNMENT_FIELDS for item in extract_ids(data.get(field)))


def get_owner_ids(data: Mapping[str, Any]) -> list[int]:
    return extract_ids(data.get("owner"))


@dataclass(frozen=True)
class AssignableUserFilter:
    department_key: str | None = None

    def as_dict(self) -> dict[str, Any]:
        if self.department_key is None:
            return {}
        return {"department": {"key": self.department_key}}


def get_assignable_user_filters(
    *,
    is_super_admin: bool,
    requester_department_key: str | None = None,
    requested_department_key: str | None = None,
) -> AssignableUserFilter | None:
    if is_super_admin:
        return AssignableUserFilter(department_key=requested_department_key or None)
    if not requester_department_key:
        return None
    return AssignableUserFilter(department_key=requested_department_key or requester_department_key)
