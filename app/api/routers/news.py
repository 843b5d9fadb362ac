from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.api.deps import CurrentRequester
from app.domain.models import MutationRequest, NewsPageRead, NewsPostRead
from app.infra.audit import set_audit_context
from app.services.news_service import DEFAULT_PAGE_SIZE, NewsQuery, NewsService

router = APIRouter()


def get_news_service() -> NewsService:
    return NewsService()


Service = Annotated[NewsService, Depends(get_news_service)]


@router.get("", response_model=NewsPageRead)
def list_news(
    requester: CurrentRequester,
    service: Service,
    category: str | None = None,
    search: str | None = None,
    include_drafts: Annotated[bool, Query(alias="includeDrafts")] = False,
    page: int = 1,
    page_size: Annotated[int, Query(alias="pageSize")] = DEFAULT_PAGE_SIZE,
) -> NewsPageRead:
    query = NewsQuery(
        category=category,
        search=search,
        include_drafts=include_drafts,
        page=page,
        page_size=page_size,
    )
    return service.list_posts(requester, query)


@router.get("/{ref}", response_model=NewsPostRead)
def get_news_post(ref: str, requester: CurrentRequester, service: Service) -> NewsPostRead:
    return service.get_post(requester, ref)


@router.post("", response_model=NewsPostRead, status_code=status.HTTP_201_CREATED)
def create_news_post(
    payload: MutationRequest,
    request: Request,
    requester: CurrentRequester,
    service: Service,
) -> NewsPostRead:
    set_audit_context(request, action="news.create", what={"fields": sorted(payload.data)})
    return service.create_post(requester, payload.data)


@router.put("/{ref}", response_model=NewsPostRead)
def update_news_post(
    ref: str,
    payload: MutationRequest,
    request: Request,
    requester: CurrentRequester,
    service: Service,
) -> NewsPostRead:
    set_audit_context(
        request,
        action="news.update",
        resource=f"news_post:{ref}",
        what={"fields": sorted(payload.data)},
    )
    return service.update_post(requester, ref, payload.data)


@router.delete("/{ref}", status_code=status.HTTP_204_NO_CONTENT)
def delete_news_post(ref: str, request: Request, requester: CurrentRequester, service: Service) -> Response:
    set_audit_context(request, action="news.delete", resource=f"news_post:{ref}")
    service.delete_post(requester, ref)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
