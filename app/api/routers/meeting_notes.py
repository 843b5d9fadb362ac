from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from app.api.deps import require_feature
from app.domain.models import MeetingNoteRead, MutationRequest
from app.domain.permissions import FeatureKey
from app.infra.audit import set_audit_context
from app.services.assignment_service import Requester
from app.services.meeting_note_service import MeetingNoteService

router = APIRouter()


def get_meeting_note_service() -> MeetingNoteService:
    return MeetingNoteService()


ProjectsRequester = Annotated[Requester, Depends(require_feature(FeatureKey.PROJECTS))]
Service = Annotated[MeetingNoteService, Depends(get_meeting_note_service)]


@router.get("", response_model=list[MeetingNoteRead])
def list_meeting_notes(project: str, requester: ProjectsRequester, service: Service) -> list[MeetingNoteRead]:
    return service.list_notes(requester, project)


@router.post("", response_model=MeetingNoteRead, status_code=status.HTTP_201_CREATED)
def create_meeting_note(
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> MeetingNoteRead:
    set_audit_context(request, action="meeting_note.create")
    result = service.create_note(requester, payload.data)
    set_audit_context(request, resource=f"meeting_note:{result.id}", what={"project_id": result.project_id})
    return result


@router.put("/{ref}", response_model=MeetingNoteRead)
def update_meeting_note(
    ref: str,
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> MeetingNoteRead:
    set_audit_context(request, action="meeting_note.update", resource=f"meeting_note:{ref}")
    return service.update_note(requester, ref, payload.data)


@router.delete("/{ref}", status_code=status.HTTP_204_NO_CONTENT)
def delete_meeting_note(ref: str, request: Request, requester: ProjectsRequester, service: Service) -> Response:
    set_audit_context(request, action="meeting_note.delete", resource=f"meeting_note:{ref}")
    service.delete_note(requester, ref)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
