from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

import jwt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from app.domain.errors import ForbiddenError, UnauthorizedError
from app.domain.permissions import FEATURE_DENIED_MESSAGES, FeatureKey, feature_allowed
from app.infra.auth import decode_access_token
from app.infra.db import get_engine
from app.services.assignment_service import AssignmentPolicy, Requester

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_current_requester(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> Requester:
    if not token:
        raise UnauthorizedError("Требуется авторизация")
    try:
        claims = decode_access_token(token)
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Недействительный токен") from exc
    request.state.actor_id = claims.user_id
    with Session(get_engine()) as session:
        return AssignmentPolicy().load_requester(session, claims.user_id)


CurrentRequester = Annotated[Requester, Depends(get_current_requester)]


def require_feature(feature: FeatureKey) -> Callable[[Requester], Requester]:
    def _checker(requester: CurrentRequester) -> Requester:
        allowed = feature_allowed(
            feature,
            flags=requester.feature_flags,
            role_flags=requester.role_flags,
            department_key=requester.department_key,
        )
        if not allowed:
            raise ForbiddenError(FEATURE_DENIED_MESSAGES[feature])
        return requester

    return _checker
