from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from app.api.deps import require_feature
from app.domain.models import (
    MutationRequest,
    ProjectSurveyRead,
    PublicSurveyRead,
    SurveyResultsRead,
    SurveyStatusUpdateRequest,
    SurveySubmitRead,
    SurveySubmitRequest,
)
from app.domain.permissions import FeatureKey
from app.infra.audit import set_audit_context
from app.services.assignment_service import Requester
from app.services.survey_service import RespondentClient, SurveyService

router = APIRouter()


def get_survey_service() -> SurveyService:
    return SurveyService()


ProjectsRequester = Annotated[Requester, Depends(require_feature(FeatureKey.PROJECTS))]
Service = Annotated[SurveyService, Depends(get_survey_service)]


def respondent_client(request: Request) -> RespondentClient:
    forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    host = request.client.host if request.client is not None else None
    return RespondentClient(
        ip_address=host or forwarded or "unknown",
        user_agent=request.headers.get("user-agent") or "unknown",
    )


@router.get("/public/{token}", response_model=PublicSurveyRead)
def public_survey(token: str, service: Service) -> PublicSurveyRead:
    return service.public_survey(token)


@router.post("/public/{token}/submit", response_model=SurveySubmitRead, status_code=status.HTTP_201_CREATED)
def submit_survey_response(
    token: str,
    payload: SurveySubmitRequest,
    request: Request,
    service: Service,
) -> SurveySubmitRead:
    set_audit_context(request, action="survey.submit", resource="survey:public")
    return service.submit_response(token, payload, respondent_client(request))


@router.get("", response_model=list[ProjectSurveyRead])
def list_surveys(project: str, requester: ProjectsRequester, service: Service) -> list[ProjectSurveyRead]:
    return service.list_surveys(requester, project)


@router.post("", response_model=ProjectSurveyRead, status_code=status.HTTP_201_CREATED)
def create_survey(
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> ProjectSurveyRead:
    set_audit_context(request, action="survey.create", what={"fields": sorted(payload.data)})
    result = service.create_survey(requester, payload.data)
    set_audit_context(request, resource=f"survey:{result.id}")
    return result


@router.get("/{ref}", response_model=ProjectSurveyRead)
def get_survey(ref: str, requester: ProjectsRequester, service: Service) -> ProjectSurveyRead:
    return service.get_survey(requester, ref)


@router.get("/{ref}/results", response_model=SurveyResultsRead)
def survey_results(ref: str, requester: ProjectsRequester, service: Service) -> SurveyResultsRead:
    return service.results(requester, ref)


@router.put("/{ref}", response_model=ProjectSurveyRead)
def update_survey(
    ref: str,
    payload: MutationRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> ProjectSurveyRead:
    set_audit_context(
        request,
        action="survey.update",
        resource=f"survey:{ref}",
        what={"fields": sorted(payload.data)},
    )
    return service.update_survey(requester, ref, payload.data)


@router.put("/{ref}/status", response_model=ProjectSurveyRead)
def update_survey_status(
    ref: str,
    payload: SurveyStatusUpdateRequest,
    request: Request,
    requester: ProjectsRequester,
    service: Service,
) -> ProjectSurveyRead:
    set_audit_context(
        request,
        action="survey.status",
        resource=f"survey:{ref}",
        what={"status": payload.status.value},
    )
    return service.set_status(requester, ref, payload.status)


@router.post("/{ref}/duplicate", response_model=ProjectSurveyRead, status_code=status.HTTP_201_CREATED)
def duplicate_survey(ref: str, request: Request, requester: ProjectsRequester, service: Service) -> ProjectSurveyRead:
    set_audit_context(request, action="survey.duplicate", resource=f"survey:{ref}")
    return service.duplicate_survey(requester, ref)


@router.delete("/{ref}", status_code=status.HTTP_204_NO_CONTENT)
def delete_survey(ref: str, request: Request, requester: ProjectsRequester, service: Service) -> Response:
    set_audit_context(request, action="survey.delete", resource=f"survey:{ref}")
    service.delete_survey(requester, ref)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
