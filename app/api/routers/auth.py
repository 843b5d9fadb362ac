from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import CurrentRequester
from app.domain.models import BootstrapRequest, LoginRequest, ProfileRead, TokenResponse, UserRead, persisted_id
from app.infra.audit import set_audit_context
from app.infra.auth import create_access_token
from app.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, service: Service) -> TokenResponse:
    set_audit_context(request, action="auth.login", what={"username": payload.username})
    user_id = persisted_id(service.authenticate(payload.username, payload.password))
    request.state.actor_id = user_id
    return TokenResponse(access_token=create_access_token(user_id=user_id))


@router.post("/bootstrap", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap(payload: BootstrapRequest, request: Request, service: Service) -> UserRead:
    set_audit_context(request, action="auth.bootstrap")
    user = service.bootstrap(payload)
    return UserRead.model_validate(user)


@router.get("/me", response_model=ProfileRead)
def me(requester: CurrentRequester, service: Service) -> ProfileRead:
    return service.profile(requester)
