from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.deps import get_current_requester
from app.domain.models import BoardStageRead, DepartmentRead
from app.services.user_service import UserService

router = APIRouter(dependencies=[Depends(get_current_requester)])


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


@router.get("/departments", response_model=list[DepartmentRead])
def list_departments(service: Service) -> list[DepartmentRead]:
    return [DepartmentRead.model_validate(item) for item in service.list_departments()]


@router.get("/stages", response_model=list[BoardStageRead])
def list_stages(service: Service) -> list[BoardStageRead]:
    return [BoardStageRead.model_validate(item) for item in service.list_stages()]
