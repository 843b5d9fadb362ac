from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.api.deps import require_feature
from app.domain.models import ActivityLogRead
from app.domain.permissions import FeatureKey
from app.services.activity_service import ActivityService
from app.services.assignment_service import Requester

router = APIRouter()


def get_activity_service() -> ActivityService:
    return ActivityService()


ProjectsRequester = Annotated[Requester, Depends(require_feature(FeatureKey.PROJECTS))]
Service = Annotated[ActivityService, Depends(get_activity_service)]


@router.get("", response_model=list[ActivityLogRead])
def list_activity_logs(
    requester: ProjectsRequester,
    service: Service,
    project: int | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[ActivityLogRead]:
    entries = service.list_entries(requester, project_id=project, limit=limit)
    return [ActivityLogRead.model_validate(item) for item in entries]
