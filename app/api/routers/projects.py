from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from app.api.deps import require_feature
from app.domain.models import AssignableUserRead, MutationRequest, ProjectRead, ProjectStatus
from app.domain.permissions import FeatureKey
from app.infra.audit import set_audit_context
from app.services.assignment_service import Requester
from app.services.project_service import ProjectService

router = APIRouter()


def get_project_service() -> ProjectService:
    return ProjectService()


ProjectsRequester = Annotated[Requester, Depends(require_feature(FeatureKey.PROJECTS))]
Service = Annotated[ProjectService, Depends(get_project_service)]


@router.get("", response_model=list[ProjectRead])
def list_projects(
    requester: ProjectsRequester,
    service: Service,
    department: str | None = None,
    status: ProjectStatus | None = None,
) -> list[ProjectRead]:
    return service.list_projects(requester, department=department, status=status)


@router.get("/assignable-users", response_model=list[AssignableUserRead])
def assignable_users(
    requester: ProjectsRequester,
    service: Service,
    department: str | None = None,
) -> list[AssignableUserRead]:
    return service.assignable_users(requester, department)


@router.get("/{ref}", response_model=ProjectRead)
def get_project(ref: str, requester: ProjectsRequester, service: Service) -> ProjectRead:
    return service.get_project(requester, ref)


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> ProjectRead:
    set_audit_context(request, action="project.create", what={"fields": sorted(payload.data)})
    project = service.create_project(requester, payload.data)
    set_audit_context(request, resource=f"project:{project.id}")
    return project


@router.put("/{ref}", response_model=ProjectRead)
def update_project(
    ref: str,
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> ProjectRead:
    set_audit_context(
        request,
        action="project.update",
        resource=f"project:{ref}",
        what={"fields": sorted(payload.data)},
    )
    return service.update_project(requester, ref, payload.data)


@router.delete("/{ref}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(ref: str, request: Request, requester: ProjectsRequester, service: Service) -> Response:
    set_audit_context(request, action="project.delete", resource=f"project:{ref}")
    service.delete_project(requester, ref)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
