from __future__ import annotations

import pytest
from sqlmodel import Session, SQLModel, create_engine

from app.domain.models import Department, persisted_id
from app.domain.permissions import DepartmentKey


def test_persisted_id_requires_a_flushed_row() -> None:
    department = Department(key=DepartmentKey.IT, name_ru="ИТ")
    with pytest.raises(RuntimeError, match="Department has no primary key yet"):
        persisted_id(department)

    engine = create_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(department)
        session.flush()
        assert persisted_id(department) == department.id
        assert persisted_id(department) > 0
