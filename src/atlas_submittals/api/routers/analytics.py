from typing import Optional

from fastapi import APIRouter, Depends, Query

from atlas_submittals.api.deps import get_ingestion_service
from atlas_submittals.services.analytics import AnalyticsService
from atlas_submittals.services.ingestion import IngestionService

router = APIRouter(prefix="/projects", tags=["Analytics"])


def get_analytics_service(svc: IngestionService = Depends(get_ingestion_service)) -> AnalyticsService:
    return AnalyticsService(svc)


@router.get("")
def list_projects(svc: IngestionService = Depends(get_ingestion_service)):
    return {"projects": svc.projects()}


@router.get("/{project}/analytics/overview")
def project_overview(project: str, analytics: AnalyticsService = Depends(get_analytics_service)):
    return analytics.overview(project)


@router.get("/{project}/analytics/status-distribution")
def project_status_distribution(project: str, analytics: AnalyticsService = Depends(get_analytics_service)):
    return analytics.status_distribution(project)


@router.get("/{project}/analytics/vendor-distribution")
def project_vendor_distribution(
    project: str,
    top_n: Optional[int] = Query(None, ge=1, le=500),
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    return analytics.vendor_distribution(project, top_n=top_n)
