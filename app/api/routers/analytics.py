from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.deps import require_feature
from app.domain.models import AnalyticsSummaryRead
from app.domain.permissions import FeatureKey
from app.services.analytics_service import AnalyticsService

router = APIRouter(dependencies=[Depends(require_feature(FeatureKey.DASHBOARD))])


def get_analytics_service() -> AnalyticsService:
    return AnalyticsService()


Service = Annotated[AnalyticsService, Depends(get_analytics_service)]


@router.get("/summary", response_model=AnalyticsSummaryRead)
def summary(service: Service, department: str | None = None) -> AnalyticsSummaryRead:
    return service.summary(department=department)
