from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import CurrentRequester
from app.domain.models import DepartmentRead, RoleRead, UserCreate, UserRead, UserUpdate
from app.infra.audit import set_audit_context
from app.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


@router.get("/users", response_model=list[UserRead])
def list_users(
    requester: CurrentRequester,
    service: Service,
    department: str | None = None,
    role_id: int | None = None,
    blocked: bool | None = None,
    search: str | None = None,
) -> list[UserRead]:
    users = service.list_users(
        requester,
        department=department,
        role_id=role_id,
        blocked=blocked,
        search=search,
    )
    return [UserRead.model_validate(item) for item in users]


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: int, requester: CurrentRequester, service: Service) -> UserRead:
    return UserRead.model_validate(service.get_user(requester, user_id))


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, request: Request, requester: CurrentRequester, service: Service) -> UserRead:
    set_audit_context(request, action="admin.user.create", what={"username": payload.username})
    user = service.create_user(requester, payload)
    set_audit_context(request, resource=f"user:{user.id}")
    return UserRead.model_validate(user)


@router.put("/users/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    requester: CurrentRequester,
    service: Service,
) -> UserRead:
    set_audit_context(
        request,
        action="admin.user.update",
        resource=f"user:{user_id}",
        what={"fields": sorted(payload.model_dump(exclude_unset=True, exclude={"password"}))},
    )
    return UserRead.model_validate(service.update_user(requester, user_id, payload))


@router.post("/users/{user_id}/block", response_model=UserRead)
def block_user(user_id: int, request: Request, requester: CurrentRequester, service: Service) -> UserRead:
    set_audit_context(request, action="admin.user.block", resource=f"user:{user_id}")
    return UserRead.model_validate(service.set_blocked(requester, user_id, True))


@router.post("/users/{user_id}/unblock", response_model=UserRead)
def unblock_user(user_id: int, request: Request, requester: CurrentRequester, service: Service) -> UserRead:
    set_audit_context(request, action="admin.user.unblock", resource=f"user:{user_id}")
    return UserRead.model_validate(service.set_blocked(requester, user_id, False))


@router.get("/roles", response_model=list[RoleRead])
def list_roles(requester: CurrentRequester, service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles(requester)]


@router.get("/departments", response_model=list[DepartmentRead])
def list_departments(requester: CurrentRequester, service: Service) -> list[DepartmentRead]:
    service.require_admin(requester)
    return [DepartmentRead.model_validate(item) for item in service.list_departments()]
