from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.domain.models import AuditLog, now_utc
from app.infra.db import get_engine

logger = logging.getLogger("ops-portal.audit")

AUDITED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class AuditContext:
    """What a route handler knows about the write it is performing."""

    action: str | None = None
    resource: str | None = None
    what: dict[str, Any] = field(default_factory=dict)


def _context(request: Request) -> AuditContext:
    context = getattr(request.state, "audit", None)
    if not isinstance(context, AuditContext):
        context = AuditContext()
        request.state.audit = context
    return context


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    what: dict[str, Any] | None = None,
) -> None:
    context = _context(request)
    if action is not None:
        context.action = action
    if resource is not None:
        context.resource = resource
    if what:
        context.what.update(what)


def outcome_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in (401, 403, 404):
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def write_audit_log(
    *,
    actor_id: int | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any],
) -> None:
    with Session(get_engine()) as session:
        session.add(
            AuditLog(
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=method,
                status_code=status_code,
                detail=detail,
            )
        )
        session.commit()


class AuditMiddleware(BaseHTTPMiddleware):
    """Records one audit row per write request after the response is produced."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.method not in AUDITED_METHODS:
            return response

        path = request.url.path
        context = _context(request)
        actor_id = getattr(request.state, "actor_id", None)
        action = context.action or f"{request.method}:{path}"
        resource = context.resource or path
        route = request.scope.get("route")
        detail = {
            "actor": {"user_id": actor_id},
            "request": {
                "ts": now_utc().isoformat(),
                "route": getattr(route, "path", path),
                "client_ip": request.client.host if request.client is not None else None,
            },
            "what": context.what,
            "result": {"status_code": response.status_code, "outcome": outcome_for(response.status_code)},
        }
        try:
            write_audit_log(
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=request.method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            logger.error("failed to write audit log for %s %s", request.method, path, exc_info=True)
        return response
