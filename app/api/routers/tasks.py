from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from app.api.deps import require_feature
from app.domain.models import MutationRequest, TaskRead
from app.domain.permissions import FeatureKey
from app.infra.audit import set_audit_context
from app.services.assignment_service import Requester
from app.services.task_service import TaskService

router = APIRouter()


def get_task_service() -> TaskService:
    return TaskService()


ProjectsRequester = Annotated[Requester, Depends(require_feature(FeatureKey.PROJECTS))]
Service = Annotated[TaskService, Depends(get_task_service)]


@router.get("", response_model=list[TaskRead])
def list_tasks(project: str, requester: ProjectsRequester, service: Service) -> list[TaskRead]:
    return service.list_tasks(requester, project)


@router.get("/{ref}", response_model=TaskRead)
def get_task(ref: str, requester: ProjectsRequester, service: Service) -> TaskRead:
    return service.get_task(requester, ref)


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> TaskRead:
    set_audit_context(request, action="task.create", what={"fields": sorted(payload.data)})
    return service.create_task(requester, payload.data)


@router.put("/{ref}", response_model=TaskRead)
def update_task(
    ref: str,
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> TaskRead:
    set_audit_context(
        request,
        action="task.update",
        resource=f"task:{ref}",
        what={"fields": sorted(payload.data)},
    )
    return service.update_task(requester, ref, payload.data)


@router.delete("/{ref}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(ref: str, request: Request, requester: ProjectsRequester, service: Service) -> Response:
    set_audit_context(request, action="task.delete", resource=f"task:{ref}")
    service.delete_task(requester, ref)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
