from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from app.api.deps import require_feature
from app.domain.models import (
    AssignableUserRead,
    ServiceGroupRead,
    TicketPageRead,
    TicketPublicSubmitRead,
    TicketPublicSubmitRequest,
    TicketRead,
    TicketReassignRequest,
    TicketStatusUpdateRequest,
)
from app.domain.permissions import FeatureKey
from app.infra.audit import set_audit_context
from app.services.assignment_service import Requester
from app.services.ticket_service import DEFAULT_PAGE_SIZE, TicketQuery, TicketService

router = APIRouter()


def get_ticket_service() -> TicketService:
    return TicketService()


HelpdeskRequester = Annotated[Requester, Depends(require_feature(FeatureKey.HELPDESK))]
Service = Annotated[TicketService, Depends(get_ticket_service)]


@router.post("/public/submit", response_model=TicketPublicSubmitRead, status_code=status.HTTP_201_CREATED)
def public_submit(
    payload: TicketPublicSubmitRequest,
    request: Request,
    service: Service,
) -> TicketPublicSubmitRead:
    set_audit_context(request, action="ticket.public_submit")
    result = service.public_submit(payload)
    set_audit_context(request, resource=f"ticket:{result.id}")
    return result


@router.get("/public/categories", response_model=list[ServiceGroupRead])
def public_categories(service: Service) -> list[ServiceGroupRead]:
    return service.public_categories()


@router.get("/list", response_model=TicketPageRead)
def list_tickets(
    requester: HelpdeskRequester,
    service: Service,
    status: str | None = None,
    search: str | None = None,
    assignee_id: Annotated[int | None, Query(alias="assigneeId")] = None,
    my_tickets: Annotated[bool, Query(alias="myTickets")] = False,
    page: int = 1,
    page_size: Annotated[int, Query(alias="pageSize")] = DEFAULT_PAGE_SIZE,
) -> TicketPageRead:
    query = TicketQuery(
        status=status,
        search=search,
        assignee_id=assignee_id,
        my_tickets=my_tickets,
        page=page,
        page_size=page_size,
    )
    return service.list_filtered(requester, query)


@router.get("/assignable-users", response_model=list[AssignableUserRead])
def assignable_users(requester: HelpdeskRequester, service: Service) -> list[AssignableUserRead]:
    return service.assignable_users(requester)


@router.get("/{ref}", response_model=TicketRead)
def get_ticket(ref: str, requester: HelpdeskRequester, service: Service) -> TicketRead:
    return service.get_ticket(requester, ref)


@router.put("/{ref}/reassign", response_model=TicketRead)
def reassign_ticket(
    ref: str,
    payload: TicketReassignRequest,
    request: Request,
    requester: HelpdeskRequester,
    service: Service,
) -> TicketRead:
    set_audit_context(request, action="ticket.reassign", resource=f"ticket:{ref}")
    return service.reassign(requester, ref, payload)


@router.put("/{ref}/status", response_model=TicketRead)
def update_ticket_status(
    ref: str,
    payload: TicketStatusUpdateRequest,
    request: Request,
    requester: HelpdeskRequester,
    service: Service,
) -> TicketRead:
    set_audit_context(
        request,
        action="ticket.status",
        resource=f"ticket:{ref}",
        what={"status": payload.status.value},
    )
    return service.update_status(requester, ref, payload.status)
